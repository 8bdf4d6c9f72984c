"""
View projection.

Given the cache snapshot and the interaction state, compute the ordered
list each tab shows. Nothing is cached: projecting is cheap and must always
reflect the current snapshot, so the render loop calls project() every tick.

Every function here is pure. Same inputs, same output list.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional

from canvasterm.model import STATUS_PRIORITY, Assignment, Course, SubmissionStatus, utcnow
from canvasterm.state import InteractionState, SortMode, Tab
from canvasterm.storage import Snapshot

DASHBOARD_WINDOW = timedelta(days=30)

NO_COURSE_LABEL = "No course"


@dataclass(frozen=True)
class CalendarItem:
    """
    One row of the Calendar tab: either a calendar event or the due date of
    an assignment that has no calendar entry of its own.
    """

    start_at: datetime
    title: str
    kind: str
    course_id: Optional[int]
    status: Optional[SubmissionStatus]
    source_id: str
    location: Optional[str] = None


# ---------------------------------------------------------------------------
# Reference resolution
# ---------------------------------------------------------------------------


def course_label(snapshot: Snapshot, course_id: Optional[int]) -> str:
    """Display name for a course reference, with a fallback for dangling ids."""
    if course_id is None:
        return NO_COURSE_LABEL
    course = snapshot.course(course_id)
    if course is None:
        return f"Unknown course ({course_id})"
    return course.display_name


def passes_filter(course_filter: frozenset[int], course_id: Optional[int]) -> bool:
    return not course_filter or course_id in course_filter


def filter_options(snapshot: Snapshot) -> list[tuple[int, str]]:
    """
    Courses offered in the filter popup: every cached course plus ids that
    assignments reference but that are not cached (so they stay filterable).
    """
    ids: set[int] = set(snapshot.courses)
    ids.update(a.course_id for a in snapshot.assignments.values() if a.course_id is not None)
    options = [(cid, course_label(snapshot, cid)) for cid in ids]
    options.sort(key=lambda o: (o[1].casefold(), o[0]))
    return options


# ---------------------------------------------------------------------------
# Sort keys
# ---------------------------------------------------------------------------


def _due_key(a: Assignment) -> tuple[Any, ...]:
    # Undated after all dated items, ordered by id among themselves.
    if a.due_at is None:
        return (1, datetime.min, a.id)
    return (0, a.due_at, a.id)


def _course_key(snapshot: Snapshot):
    def key(a: Assignment) -> tuple[Any, ...]:
        course = snapshot.course(a.course_id)
        # Equal names fall back to course id; unresolved references go last.
        name = course_label(snapshot, a.course_id).casefold()
        return (course is None, name, a.course_id if a.course_id is not None else -1) + _due_key(a)

    return key


def _status_key(a: Assignment) -> tuple[Any, ...]:
    return (STATUS_PRIORITY.index(a.status),) + _due_key(a)


def sort_assignments(assignments: list[Assignment], mode: SortMode, snapshot: Snapshot) -> list[Assignment]:
    if mode == SortMode.DUE_ASC:
        return sorted(assignments, key=_due_key)
    if mode == SortMode.DUE_DESC:
        dated = sorted((a for a in assignments if a.due_at is not None), key=_due_key, reverse=True)
        undated = sorted((a for a in assignments if a.due_at is None), key=lambda a: a.id)
        return dated + undated
    if mode == SortMode.COURSE:
        return sorted(assignments, key=_course_key(snapshot))
    if mode == SortMode.STATUS:
        return sorted(assignments, key=_status_key)
    raise ValueError(f"Unknown sort mode: {mode!r}")


# ---------------------------------------------------------------------------
# Per-tab projections
# ---------------------------------------------------------------------------


def _filtered_assignments(snapshot: Snapshot, state: InteractionState) -> list[Assignment]:
    return [a for a in snapshot.assignments.values() if passes_filter(state.course_filter, a.course_id)]


def project_courses(snapshot: Snapshot) -> list[Course]:
    return sorted(snapshot.courses.values(), key=lambda c: (c.display_name.casefold(), c.id))


def project_assignments(snapshot: Snapshot, state: InteractionState) -> list[Assignment]:
    return sort_assignments(_filtered_assignments(snapshot, state), state.sort, snapshot)


def project_dashboard(snapshot: Snapshot, state: InteractionState, now: datetime) -> list[Assignment]:
    today = now.date()
    horizon = now + DASHBOARD_WINDOW
    upcoming = [
        a
        for a in _filtered_assignments(snapshot, state)
        if a.due_at is not None and a.due_at.date() >= today and a.due_at <= horizon
    ]
    return sorted(upcoming, key=_due_key)


def project_calendar(snapshot: Snapshot, state: InteractionState) -> list[CalendarItem]:
    covered: set[int] = set()
    items: list[CalendarItem] = []
    for ev in snapshot.calendar_events.values():
        if ev.assignment_id is not None:
            covered.add(ev.assignment_id)
        # Events without a course are not course-scoped and always show.
        if ev.course_id is not None and not passes_filter(state.course_filter, ev.course_id):
            continue
        assignment = snapshot.assignments.get(ev.assignment_id) if ev.assignment_id is not None else None
        items.append(
            CalendarItem(
                start_at=ev.start_at,
                title=ev.title,
                kind=ev.kind,
                course_id=ev.course_id,
                status=assignment.status if assignment else None,
                source_id=f"event:{ev.id}",
                location=ev.location,
            )
        )

    for a in _filtered_assignments(snapshot, state):
        if a.due_at is None or a.id in covered:
            continue
        items.append(
            CalendarItem(
                start_at=a.due_at,
                title=a.title,
                kind="assignment",
                course_id=a.course_id,
                status=a.status,
                source_id=f"assignment:{a.id}",
            )
        )

    items.sort(key=lambda i: (i.start_at, i.title.casefold(), i.source_id))
    return items


def project_announcements(snapshot: Snapshot, state: InteractionState) -> list[Any]:
    visible = [n for n in snapshot.announcements.values() if passes_filter(state.course_filter, n.course_id)]
    dated = sorted((n for n in visible if n.posted_at is not None), key=lambda n: (n.posted_at, -n.id), reverse=True)
    undated = sorted((n for n in visible if n.posted_at is None), key=lambda n: n.id)
    return dated + undated


def project(tab: Tab, snapshot: Snapshot, state: InteractionState, now: Optional[datetime] = None) -> list[Any]:
    """
    Ordered, filtered records for one tab.
    """
    if tab == Tab.DASHBOARD:
        return project_dashboard(snapshot, state, now or utcnow())
    if tab == Tab.COURSES:
        return project_courses(snapshot)
    if tab == Tab.ASSIGNMENTS:
        return project_assignments(snapshot, state)
    if tab == Tab.CALENDAR:
        return project_calendar(snapshot, state)
    if tab == Tab.ANNOUNCEMENTS:
        return project_announcements(snapshot, state)
    raise ValueError(f"Unknown tab: {tab!r}")


# ---------------------------------------------------------------------------
# Navigation helpers
# ---------------------------------------------------------------------------


def _on_or_after(value: Optional[datetime], today: date) -> bool:
    return value is not None and value.date() >= today


def today_index(tab: Tab, snapshot: Snapshot, state: InteractionState, now: Optional[datetime] = None) -> Optional[int]:
    """
    Index JumpToday should land on, or None when the tab has no notion of
    "today".

    Calendar: first item starting today or later, else the last item.
    Assignments: in due-ascending order the first item due today or later,
    otherwise the top of the list.
    """
    now = now or utcnow()
    today = now.date()
    if tab == Tab.CALENDAR:
        items = project_calendar(snapshot, state)
        for i, item in enumerate(items):
            if _on_or_after(item.start_at, today):
                return i
        return max(len(items) - 1, 0)
    if tab == Tab.ASSIGNMENTS:
        if state.sort != SortMode.DUE_ASC:
            return 0
        for i, a in enumerate(project_assignments(snapshot, state)):
            if _on_or_after(a.due_at, today):
                return i
        return 0
    return None


def focal_assignment_id(snapshot: Snapshot, now: Optional[datetime] = None) -> Optional[int]:
    """
    The most actionable assignment: the earliest one due today or later
    that is neither submitted nor graded.
    """
    today = (now or utcnow()).date()
    for a in sorted(snapshot.assignments.values(), key=_due_key):
        if not _on_or_after(a.due_at, today):
            continue
        if a.status in (SubmissionStatus.SUBMITTED, SubmissionStatus.GRADED):
            continue
        return a.id
    return None
