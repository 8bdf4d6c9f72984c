"""
Central data model definitions used across the project.

This module defines the canonical structure of the four record kinds
(courses, assignments, calendar events, announcements) so that:
- the API client, the cache file and the views share the same field names
- every record can be decoded from the service JSON and from the cache file
- cross references (assignment -> course) stay plain ids, resolved later

All records are frozen: a sync replaces them, nothing edits them in place.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from bs4 import BeautifulSoup


class Category(str, Enum):
    """One of the four resource kinds that are synchronized independently."""

    COURSES = "courses"
    ASSIGNMENTS = "assignments"
    CALENDAR_EVENTS = "calendar_events"
    ANNOUNCEMENTS = "announcements"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


# Courses first: the other three are scoped by course id.
ALL_CATEGORIES: tuple[Category, ...] = (
    Category.COURSES,
    Category.ASSIGNMENTS,
    Category.CALENDAR_EVENTS,
    Category.ANNOUNCEMENTS,
)


class SubmissionStatus(str, Enum):
    NOT_SUBMITTED = "not_submitted"
    SUBMITTED = "submitted"
    GRADED = "graded"
    MISSING = "missing"
    LATE = "late"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    SubmissionStatus.NOT_SUBMITTED: "Not submitted",
    SubmissionStatus.SUBMITTED: "Submitted",
    SubmissionStatus.GRADED: "Graded",
    SubmissionStatus.MISSING: "Missing!",
    SubmissionStatus.LATE: "Past due",
}

# Order used by the "Status" sort: most urgent first.
STATUS_PRIORITY: tuple[SubmissionStatus, ...] = (
    SubmissionStatus.MISSING,
    SubmissionStatus.LATE,
    SubmissionStatus.NOT_SUBMITTED,
    SubmissionStatus.SUBMITTED,
    SubmissionStatus.GRADED,
)

EXCERPT_LENGTH = 280

_SPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Small decoding helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Returns None for empty or invalid values instead of raising, because a
    broken date on one record must not break the whole list.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _opt_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _require_int(data: dict[str, Any], key: str) -> int:
    value = _opt_int(data.get(key))
    if value is None:
        raise ValueError(f"record without valid {key!r}: {data.get(key)!r}")
    return value


def course_id_from_context(context_code: Any) -> Optional[int]:
    """Turn a context code like 'course_123' into 123, anything else into None."""
    if not isinstance(context_code, str) or not context_code.startswith("course_"):
        return None
    return _opt_int(context_code[len("course_"):])


def html_to_text(message: Any) -> str:
    """Plain text of an HTML body, whitespace collapsed."""
    if not message:
        return ""
    text = BeautifulSoup(str(message), "html.parser").get_text(" ", strip=True)
    return _SPACE_RE.sub(" ", text).strip()


def truncate(text: str, limit: int = EXCERPT_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def derive_status(
    submission: Optional[dict[str, Any]], due_at: Optional[datetime], now: datetime
) -> SubmissionStatus:
    """
    Map a submission payload to one SubmissionStatus.

    Rules (first match wins):
    - missing flag                   -> MISSING
    - workflow 'graded'              -> GRADED
    - workflow submitted/in review   -> LATE if flagged late, else SUBMITTED
    - late flag                      -> LATE
    - nothing handed in, past due    -> LATE
    - otherwise                      -> NOT_SUBMITTED
    """
    past_due = due_at is not None and due_at < now
    if not submission:
        return SubmissionStatus.LATE if past_due else SubmissionStatus.NOT_SUBMITTED

    state = str(submission.get("workflow_state") or "")
    if submission.get("missing"):
        return SubmissionStatus.MISSING
    if state == "graded":
        return SubmissionStatus.GRADED
    if state in ("submitted", "pending_review"):
        return SubmissionStatus.LATE if submission.get("late") else SubmissionStatus.SUBMITTED
    if submission.get("late") or past_due:
        return SubmissionStatus.LATE
    return SubmissionStatus.NOT_SUBMITTED


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Course:
    """
    One course the user is enrolled in.

    current_score / current_grade come from the student enrollment and are
    None when the course hides grades.
    """

    id: int
    name: str
    course_code: str = ""
    term: Optional[str] = None
    current_score: Optional[float] = None
    current_grade: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.course_code or f"Course {self.id}"

    @classmethod
    def from_api(cls, data: dict[str, Any], now: Optional[datetime] = None) -> "Course":
        term = data.get("term") if isinstance(data.get("term"), dict) else {}
        score = None
        grade = None
        enrollments = data.get("enrollments")
        for enrollment in enrollments if isinstance(enrollments, list) else []:
            if isinstance(enrollment, dict) and enrollment.get("type") == "student":
                score = _opt_float(enrollment.get("computed_current_score"))
                grade = _opt_str(enrollment.get("computed_current_grade"))
                break
        return cls(
            id=_require_int(data, "id"),
            name=_opt_str(data.get("name")) or "",
            course_code=_opt_str(data.get("course_code")) or "",
            term=_opt_str(term.get("name")),
            current_score=score,
            current_grade=grade,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "course_code": self.course_code,
            "term": self.term,
            "current_score": self.current_score,
            "current_grade": self.current_grade,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Course":
        return cls(
            id=_require_int(data, "id"),
            name=_opt_str(data.get("name")) or "",
            course_code=_opt_str(data.get("course_code")) or "",
            term=_opt_str(data.get("term")),
            current_score=_opt_float(data.get("current_score")),
            current_grade=_opt_str(data.get("current_grade")),
        )


@dataclass(frozen=True)
class Assignment:
    """
    One assignment. course_id may point to a course that is not cached
    (partial sync); views resolve it with a fallback label.
    """

    id: int
    course_id: Optional[int]
    title: str
    due_at: Optional[datetime] = None
    status: SubmissionStatus = SubmissionStatus.NOT_SUBMITTED
    points_possible: Optional[float] = None
    score: Optional[float] = None
    html_url: Optional[str] = None
    description: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any], now: Optional[datetime] = None) -> "Assignment":
        now = now or utcnow()
        due_at = parse_timestamp(data.get("due_at"))
        submission = data.get("submission") if isinstance(data.get("submission"), dict) else None
        return cls(
            id=_require_int(data, "id"),
            course_id=_opt_int(data.get("course_id")),
            title=_opt_str(data.get("name")) or "Unnamed",
            due_at=due_at,
            status=derive_status(submission, due_at, now),
            points_possible=_opt_float(data.get("points_possible")),
            score=_opt_float(submission.get("score")) if submission else None,
            html_url=_opt_str(data.get("html_url")),
            description=html_to_text(data.get("description")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "title": self.title,
            "due_at": format_timestamp(self.due_at),
            "status": self.status.value,
            "points_possible": self.points_possible,
            "score": self.score,
            "html_url": self.html_url,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Assignment":
        try:
            status = SubmissionStatus(data.get("status"))
        except ValueError:
            status = SubmissionStatus.NOT_SUBMITTED
        return cls(
            id=_require_int(data, "id"),
            course_id=_opt_int(data.get("course_id")),
            title=_opt_str(data.get("title")) or "Unnamed",
            due_at=parse_timestamp(data.get("due_at")),
            status=status,
            points_possible=_opt_float(data.get("points_possible")),
            score=_opt_float(data.get("score")),
            html_url=_opt_str(data.get("html_url")),
            description=str(data.get("description") or ""),
        )


@dataclass(frozen=True)
class CalendarEvent:
    """
    One calendar entry.

    The id is a string because the service keys assignment entries as
    'assignment_<n>' next to numeric ids for plain events.
    """

    id: str
    title: str
    start_at: datetime
    end_at: Optional[datetime] = None
    course_id: Optional[int] = None
    location: Optional[str] = None
    kind: str = "event"
    assignment_id: Optional[int] = None

    @classmethod
    def from_api(cls, data: dict[str, Any], now: Optional[datetime] = None) -> "CalendarEvent":
        raw_id = _opt_str(data.get("id"))
        if raw_id is None:
            raise ValueError("calendar event without id")
        assignment = data.get("assignment") if isinstance(data.get("assignment"), dict) else {}
        start_at = parse_timestamp(data.get("start_at")) or parse_timestamp(assignment.get("due_at"))
        if start_at is None:
            raise ValueError(f"calendar event {raw_id} without start time")
        return cls(
            id=raw_id,
            title=_opt_str(data.get("title")) or "Untitled",
            start_at=start_at,
            end_at=parse_timestamp(data.get("end_at")),
            course_id=course_id_from_context(data.get("context_code")),
            location=_opt_str(data.get("location_name")),
            kind="assignment" if data.get("type") == "assignment" else "event",
            assignment_id=_opt_int(assignment.get("id")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "start_at": format_timestamp(self.start_at),
            "end_at": format_timestamp(self.end_at),
            "course_id": self.course_id,
            "location": self.location,
            "kind": self.kind,
            "assignment_id": self.assignment_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CalendarEvent":
        raw_id = _opt_str(data.get("id"))
        start_at = parse_timestamp(data.get("start_at"))
        if raw_id is None or start_at is None:
            raise ValueError(f"calendar event without id or start: {data!r}")
        kind = data.get("kind")
        return cls(
            id=raw_id,
            title=_opt_str(data.get("title")) or "Untitled",
            start_at=start_at,
            end_at=parse_timestamp(data.get("end_at")),
            course_id=_opt_int(data.get("course_id")),
            location=_opt_str(data.get("location")),
            kind=kind if kind in ("event", "assignment") else "event",
            assignment_id=_opt_int(data.get("assignment_id")),
        )


@dataclass(frozen=True)
class Announcement:
    """
    One course announcement.

    body is the full message as plain text; excerpt is its first
    EXCERPT_LENGTH characters for list rows. read_state is the service's
    "read" / "unread" marker, None when unknown.
    """

    id: int
    course_id: Optional[int]
    title: str
    posted_at: Optional[datetime] = None
    excerpt: str = ""
    author: Optional[str] = None
    body: str = ""
    read_state: Optional[str] = None

    @property
    def is_unread(self) -> bool:
        return self.read_state == "unread"

    @classmethod
    def from_api(cls, data: dict[str, Any], now: Optional[datetime] = None) -> "Announcement":
        body = html_to_text(data.get("message"))
        return cls(
            id=_require_int(data, "id"),
            course_id=course_id_from_context(data.get("context_code")),
            title=_opt_str(data.get("title")) or "Untitled",
            posted_at=parse_timestamp(data.get("posted_at")) or parse_timestamp(data.get("delayed_post_at")),
            excerpt=truncate(body),
            author=_opt_str(data.get("user_name")),
            body=body,
            read_state=_opt_str(data.get("read_state")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "title": self.title,
            "posted_at": format_timestamp(self.posted_at),
            "excerpt": self.excerpt,
            "author": self.author,
            "body": self.body,
            "read_state": self.read_state,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Announcement":
        excerpt = str(data.get("excerpt") or "")
        return cls(
            id=_require_int(data, "id"),
            course_id=_opt_int(data.get("course_id")),
            title=_opt_str(data.get("title")) or "Untitled",
            posted_at=parse_timestamp(data.get("posted_at")),
            excerpt=excerpt,
            author=_opt_str(data.get("author")),
            body=str(data.get("body") or excerpt),
            read_state=_opt_str(data.get("read_state")),
        )


@dataclass(frozen=True)
class UserProfile:
    """The signed-in user, as far as the dashboard greeting needs it."""

    id: int
    name: Optional[str] = None
    short_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.short_name or self.name or "Student"

    @classmethod
    def from_api(cls, data: dict[str, Any], now: Optional[datetime] = None) -> "UserProfile":
        return cls(
            id=_require_int(data, "id"),
            name=_opt_str(data.get("name")),
            short_name=_opt_str(data.get("short_name")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "short_name": self.short_name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserProfile":
        return cls.from_api(data)


Record = Course | Assignment | CalendarEvent | Announcement

RECORD_TYPES: dict[Category, type] = {
    Category.COURSES: Course,
    Category.ASSIGNMENTS: Assignment,
    Category.CALENDAR_EVENTS: CalendarEvent,
    Category.ANNOUNCEMENTS: Announcement,
}
