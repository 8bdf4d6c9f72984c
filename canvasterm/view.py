"""
Render snapshot: the complete, frozen picture the renderer draws on one
tick. Building it is the last step of the core; drawing it is ui.py's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from canvasterm.model import ALL_CATEGORIES, Category, utcnow
from canvasterm.projector import course_label, filter_options, focal_assignment_id, project
from canvasterm.state import InteractionState, SortMode, Tab
from canvasterm.storage import Snapshot


@dataclass(frozen=True)
class CategoryStatus:
    category: Category
    synced_at: Optional[datetime]
    error: Optional[str]
    count: int


@dataclass(frozen=True)
class PopupView:
    options: tuple[tuple[int, str, bool], ...]
    cursor: int


@dataclass(frozen=True)
class Overview:
    """Dashboard header: greeting plus a few counts."""

    user_name: str
    course_count: int
    upcoming_count: int
    unread_count: int


@dataclass(frozen=True)
class RenderSnapshot:
    tab: Tab
    items: tuple[Any, ...]
    selected: Optional[int]
    sort: SortMode
    course_filter: frozenset[int]
    popup: Optional[PopupView]
    statuses: tuple[CategoryStatus, ...]
    syncing: bool
    status_message: str
    focal_assignment_id: Optional[int]
    course_names: dict[Optional[int], str]
    now: datetime
    overview: Optional[Overview] = None
    detail: Any = None

    @property
    def errors(self) -> list[CategoryStatus]:
        return [s for s in self.statuses if s.error]


def _local(ts: datetime) -> str:
    return ts.astimezone().strftime("%b %d %H:%M")


def countdown(due_at: datetime, now: datetime) -> str:
    """Time left until due_at, e.g. "2d 4h 10m"; "Past due" once it passed."""
    remaining = due_at - now
    if remaining <= timedelta(0):
        return "Past due"
    total_mins = int(remaining.total_seconds() // 60)
    days, rest = divmod(total_mins, 24 * 60)
    hours, mins = divmod(rest, 60)
    if days:
        return f"{days}d {hours}h {mins}m"
    if hours:
        return f"{hours}h {mins}m"
    return f"{mins}m"


def urgency(due_at: datetime, now: datetime) -> str:
    """Bucket for colouring a countdown: past, soon (<6h), hours, day, days, week."""
    remaining = due_at - now
    if remaining <= timedelta(0):
        return "past"
    if remaining >= timedelta(days=7):
        return "week"
    if remaining >= timedelta(days=3):
        return "days"
    if remaining >= timedelta(days=1):
        return "day"
    if remaining >= timedelta(hours=6):
        return "hours"
    return "soon"


def build_overview(snapshot: Snapshot, now: datetime) -> Overview:
    return Overview(
        user_name=snapshot.user.display_name if snapshot.user is not None else "Student",
        course_count=len(snapshot.courses),
        upcoming_count=sum(1 for ev in snapshot.calendar_events.values() if ev.start_at >= now),
        unread_count=sum(1 for n in snapshot.announcements.values() if n.is_unread),
    )


def status_message(snapshot: Snapshot, syncing: bool) -> str:
    failed = [c for c in ALL_CATEGORIES if snapshot.error(c)]
    if syncing:
        return "Syncing…"
    if failed:
        names = ", ".join(c.label.lower() for c in failed)
        return f"Sync error ({names}): {snapshot.error(failed[0])}"
    last = snapshot.last_synced_at
    if last is None:
        return "No cached data - press r to refresh."
    return f"Synced {_local(last)} - press r to refresh."


def build_render_snapshot(
    snapshot: Snapshot,
    state: InteractionState,
    syncing: bool = False,
    now: Optional[datetime] = None,
) -> RenderSnapshot:
    now = now or utcnow()
    items = tuple(project(state.tab, snapshot, state, now))
    selected = min(state.selected(), len(items) - 1) if items else None

    popup = None
    if state.popup is not None:
        options = tuple((cid, label, cid in state.course_filter) for cid, label in filter_options(snapshot))
        popup = PopupView(options=options, cursor=state.popup.cursor)

    statuses = tuple(
        CategoryStatus(
            category=c,
            synced_at=snapshot.synced_at(c),
            error=snapshot.error(c),
            count=len(snapshot.records(c)),
        )
        for c in ALL_CATEGORIES
    )

    referenced = {getattr(item, "course_id", None) for item in items}
    course_names = {cid: course_label(snapshot, cid) for cid in referenced | set(snapshot.courses)}

    return RenderSnapshot(
        tab=state.tab,
        items=items,
        selected=selected,
        sort=state.sort,
        course_filter=state.course_filter,
        popup=popup,
        statuses=statuses,
        syncing=syncing,
        status_message=status_message(snapshot, syncing),
        focal_assignment_id=focal_assignment_id(snapshot, now),
        course_names=course_names,
        now=now.astimezone(timezone.utc),
        overview=build_overview(snapshot, now) if state.tab == Tab.DASHBOARD else None,
        detail=items[selected] if selected is not None else None,
    )
