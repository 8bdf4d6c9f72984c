"""
Interaction state machine.

advance(state, event, snapshot) -> new state

Pure: no I/O, no clock unless `now` is omitted, no mutation. The snapshot is
only read to know how long each projected list is, so selections can be
clamped after every event (lists shrink under filtering or after a sync).
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional

from canvasterm.projector import filter_options, project, today_index
from canvasterm.state import (
    CloseFilterPopup,
    CycleSort,
    CycleTab,
    Event,
    FilterPopup,
    InteractionState,
    JumpBottom,
    JumpToday,
    JumpTop,
    Move,
    OpenFilterPopup,
    Quit,
    RequestRefresh,
    SwitchTab,
    SyncCompleted,
    Tab,
    ToggleCourseInFilter,
    ToggleFilterPopup,
)
from canvasterm.storage import Snapshot


def _clamp(index: int, length: int) -> int:
    if length <= 0:
        return 0
    return min(max(index, 0), length - 1)


def clamp_selections(state: InteractionState, snapshot: Snapshot, now: Optional[datetime] = None) -> InteractionState:
    """Pull every tab's selection (and the popup cursor) back into range."""
    selections = tuple(
        _clamp(state.selected(tab), len(project(tab, snapshot, state, now))) for tab in Tab
    )
    popup = state.popup
    if popup is not None:
        popup = FilterPopup(cursor=_clamp(popup.cursor, len(filter_options(snapshot))))
    if selections == state.selections and popup == state.popup:
        return state
    return replace(state, selections=selections, popup=popup)


def toggle_course(course_filter: frozenset[int], course_id: int) -> frozenset[int]:
    """Insert if absent, remove if present. Its own inverse."""
    if course_id in course_filter:
        return course_filter - {course_id}
    return course_filter | {course_id}


def _advance_popup(state: InteractionState, event: Event, snapshot: Snapshot) -> InteractionState:
    # The popup is modal: list navigation drives its cursor, tab and sort
    # changes are ignored until it closes.
    options = filter_options(snapshot)
    cursor = state.popup.cursor if state.popup else 0

    if isinstance(event, Move):
        cursor = _clamp(cursor + event.step, len(options))
    elif isinstance(event, JumpTop):
        cursor = 0
    elif isinstance(event, JumpBottom):
        cursor = _clamp(len(options) - 1, len(options))
    elif isinstance(event, ToggleCourseInFilter):
        course_id = event.course_id
        if course_id is None and options:
            course_id = options[_clamp(cursor, len(options))][0]
        if course_id is not None:
            state = replace(state, course_filter=toggle_course(state.course_filter, course_id))
    return replace(state, popup=FilterPopup(cursor=cursor))


def _advance(state: InteractionState, event: Event, snapshot: Snapshot, now: Optional[datetime]) -> InteractionState:
    if isinstance(event, Quit):
        return replace(state, running=False)
    if isinstance(event, (SyncCompleted, RequestRefresh)):
        # Sync results only reclamp; the refresh itself is the loop's job.
        return state

    if isinstance(event, OpenFilterPopup):
        return state if state.popup_open else replace(state, popup=FilterPopup())
    if isinstance(event, CloseFilterPopup):
        return replace(state, popup=None)
    if isinstance(event, ToggleFilterPopup):
        return replace(state, popup=None if state.popup_open else FilterPopup())

    if state.popup_open:
        return _advance_popup(state, event, snapshot)

    if isinstance(event, SwitchTab):
        return replace(state, tab=event.target)
    if isinstance(event, CycleTab):
        return replace(state, tab=state.tab.next() if event.step >= 0 else state.tab.prev())

    if isinstance(event, Move):
        length = len(project(state.tab, snapshot, state, now))
        return state.with_selection(state.tab, _clamp(state.selected() + event.step, length))
    if isinstance(event, JumpTop):
        return state.with_selection(state.tab, 0)
    if isinstance(event, JumpBottom):
        length = len(project(state.tab, snapshot, state, now))
        return state.with_selection(state.tab, _clamp(length - 1, length))
    if isinstance(event, JumpToday):
        index = today_index(state.tab, snapshot, state, now)
        return state if index is None else state.with_selection(state.tab, index)

    if isinstance(event, CycleSort):
        if state.tab != Tab.ASSIGNMENTS:
            return state
        return replace(state, sort=state.sort.next()).with_selection(Tab.ASSIGNMENTS, 0)

    # ToggleCourseInFilter outside the popup has nothing to point at.
    return state


def advance(
    state: InteractionState, event: Event, snapshot: Snapshot, now: Optional[datetime] = None
) -> InteractionState:
    """
    Apply one event and return the new state, with selections clamped to
    the freshly projected lists.
    """
    return clamp_selections(_advance(state, event, snapshot, now), snapshot, now)
