"""
Local cache of everything fetched from the LMS.

This module manages the in-memory snapshot and its on-disk copy:

    ~/.canvasterm/cache.json

Design rationale:
- the snapshot is always available, even offline, because it is loaded
  from disk before any network request is made
- each category is replaced as a whole by the sync thread; readers grab
  the current snapshot reference once and never see a half-replaced list
- a broken or missing cache file is a cold start, never an error

Only the sync thread writes (merge / record_error / set_user). The render loop only
reads.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from loguru import logger

from canvasterm.config import home_dir
from canvasterm.model import (
    ALL_CATEGORIES,
    RECORD_TYPES,
    Assignment,
    Announcement,
    CalendarEvent,
    Category,
    Course,
    UserProfile,
    format_timestamp,
    parse_timestamp,
    utcnow,
)

SCHEMA_VERSION = 1


def _default_cache_path() -> Path:
    """
    Return the default path of cache.json.

    Using a function instead of a constant makes testing easier,
    because tests can override the path (or CANVASTERM_HOME).
    """
    return home_dir() / "cache.json"


def _freeze(records: Iterable[Any]) -> Mapping[Any, Any]:
    return MappingProxyType({r.id: r for r in records})


@dataclass(frozen=True)
class CategoryState:
    """Records of one category plus the outcome of its last sync attempt."""

    records: Mapping[Any, Any] = field(default_factory=lambda: MappingProxyType({}))
    synced_at: Optional[datetime] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable view of the whole cache at one point in time.

    version counts successful swaps and is ignored by ==, so a snapshot
    that went through persist + load still compares equal.
    """

    categories: Mapping[Category, CategoryState]
    user: Optional[UserProfile] = None
    version: int = field(default=0, compare=False)

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls(categories=MappingProxyType({c: CategoryState() for c in ALL_CATEGORIES}))

    def state(self, category: Category) -> CategoryState:
        return self.categories.get(category) or CategoryState()

    def records(self, category: Category) -> Mapping[Any, Any]:
        return self.state(category).records

    def synced_at(self, category: Category) -> Optional[datetime]:
        return self.state(category).synced_at

    def error(self, category: Category) -> Optional[str]:
        return self.state(category).error

    @property
    def courses(self) -> Mapping[int, Course]:
        return self.records(Category.COURSES)

    @property
    def assignments(self) -> Mapping[int, Assignment]:
        return self.records(Category.ASSIGNMENTS)

    @property
    def calendar_events(self) -> Mapping[str, CalendarEvent]:
        return self.records(Category.CALENDAR_EVENTS)

    @property
    def announcements(self) -> Mapping[int, Announcement]:
        return self.records(Category.ANNOUNCEMENTS)

    def course(self, course_id: Optional[int]) -> Optional[Course]:
        if course_id is None:
            return None
        return self.courses.get(course_id)

    @property
    def last_synced_at(self) -> Optional[datetime]:
        stamps = [s.synced_at for s in self.categories.values() if s.synced_at is not None]
        return max(stamps) if stamps else None

    @property
    def is_empty(self) -> bool:
        return all(not s.records for s in self.categories.values())

    def with_category(self, category: Category, state: CategoryState) -> "Snapshot":
        categories = dict(self.categories)
        categories[category] = state
        return replace(self, categories=MappingProxyType(categories), version=self.version + 1)

    def with_user(self, user: Optional[UserProfile]) -> "Snapshot":
        return replace(self, user=user, version=self.version + 1)


# ---------------------------------------------------------------------------
# File format
# ---------------------------------------------------------------------------


def snapshot_to_dict(snapshot: Snapshot, saved_at: Optional[datetime] = None) -> dict[str, Any]:
    categories: dict[str, Any] = {}
    for category in ALL_CATEGORIES:
        state = snapshot.state(category)
        categories[category.value] = {
            "synced_at": format_timestamp(state.synced_at),
            "records": [r.to_dict() for r in state.records.values()],
        }
    return {
        "schema": SCHEMA_VERSION,
        "saved_at": format_timestamp(saved_at or utcnow()),
        "user": snapshot.user.to_dict() if snapshot.user is not None else None,
        "categories": categories,
    }


def _user_from_dict(data: Any) -> Optional[UserProfile]:
    if not isinstance(data, dict):
        return None
    try:
        return UserProfile.from_dict(data)
    except (TypeError, ValueError):
        return None


def snapshot_from_dict(data: Any) -> Snapshot:
    """
    Build a snapshot from parsed JSON.

    Tolerant of the file format: unknown keys are ignored, missing
    categories are empty, and a record that cannot be decoded is skipped
    instead of discarding the whole file.
    """
    snapshot = Snapshot.empty()
    if not isinstance(data, dict):
        return snapshot
    raw_categories = data.get("categories")
    if not isinstance(raw_categories, dict):
        return snapshot

    categories = dict(snapshot.categories)
    for category in ALL_CATEGORIES:
        raw = raw_categories.get(category.value)
        if not isinstance(raw, dict):
            continue
        record_type = RECORD_TYPES[category]
        records = []
        skipped = 0
        raw_records = raw.get("records")
        for item in raw_records if isinstance(raw_records, list) else []:
            if not isinstance(item, dict):
                skipped += 1
                continue
            try:
                records.append(record_type.from_dict(item))
            except (TypeError, ValueError, AttributeError):
                skipped += 1
        if skipped:
            logger.warning("Skipped {} unreadable {} record(s) in cache", skipped, category.value)
        categories[category] = CategoryState(
            records=_freeze(records),
            synced_at=parse_timestamp(raw.get("synced_at")),
        )
    return Snapshot(categories=MappingProxyType(categories), user=_user_from_dict(data.get("user")))


def load_snapshot(path: str | Path | None = None) -> Snapshot:
    """
    Load the cache file.

    Returns an empty snapshot if the file does not exist or is invalid.
    """
    cache_path = Path(path) if path is not None else _default_cache_path()

    # First run: nothing cached yet
    if not cache_path.exists():
        logger.info("No cache file at {}, starting cold", cache_path)
        return Snapshot.empty()

    try:
        data = json.loads(cache_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Ignoring unreadable cache file {}: {}", cache_path, exc)
        return Snapshot.empty()
    return snapshot_from_dict(data)


def save_snapshot(snapshot: Snapshot, path: str | Path | None = None) -> None:
    """
    Write the snapshot to the cache file.

    Creates parent directories if needed. Writes to a temporary file first
    so a crash mid-write leaves the previous cache in place.
    """
    cache_path = Path(path) if path is not None else _default_cache_path()
    cache_path.parent.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(snapshot_to_dict(snapshot), indent=2, ensure_ascii=False)
    # One temp file per writer, so two overlapping saves never share it.
    tmp = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=cache_path.parent, prefix=cache_path.name + ".", suffix=".tmp", delete=False
    )
    try:
        with tmp:
            tmp.write(payload)
        os.replace(tmp.name, cache_path)
    except Exception:
        Path(tmp.name).unlink(missing_ok=True)
        raise


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class CacheStore:
    """
    Holder of the current snapshot.

    Writers build a new Snapshot and swap the reference under a lock; the
    lock is never held during a fetch. read() takes no lock at all, since
    rebinding an attribute is atomic and snapshots are never mutated.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else _default_cache_path()
        self._lock = threading.Lock()
        self._snapshot = Snapshot.empty()

    def load(self) -> Snapshot:
        snapshot = load_snapshot(self.path)
        with self._lock:
            self._snapshot = snapshot
        logger.debug("Cache loaded from {} ({} courses)", self.path, len(snapshot.courses))
        return snapshot

    def read(self) -> Snapshot:
        return self._snapshot

    def merge(self, category: Category, records: Iterable[Any], synced_at: Optional[datetime] = None) -> Snapshot:
        """Replace one category's records, stamp it and clear its error."""
        state = CategoryState(records=_freeze(records), synced_at=synced_at or utcnow())
        with self._lock:
            self._snapshot = self._snapshot.with_category(category, state)
            snapshot = self._snapshot
        logger.debug("Merged {} {} record(s)", len(state.records), category.value)
        return snapshot

    def record_error(self, category: Category, error: str | BaseException) -> Snapshot:
        """Mark the last attempt for a category as failed, keeping its records."""
        message = str(error) or type(error).__name__
        with self._lock:
            current = self._snapshot.state(category)
            self._snapshot = self._snapshot.with_category(category, replace(current, error=message))
            snapshot = self._snapshot
        logger.warning("Sync of {} failed: {}", category.value, message)
        return snapshot

    def set_user(self, user: Optional[UserProfile]) -> Snapshot:
        with self._lock:
            self._snapshot = self._snapshot.with_user(user)
            snapshot = self._snapshot
        return snapshot

    def persist(self) -> bool:
        """Write the current snapshot to disk. Failure is logged, not raised."""
        try:
            save_snapshot(self.read(), self.path)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Could not write cache file {}: {}", self.path, exc)
            return False
        logger.debug("Cache written to {}", self.path)
        return True
