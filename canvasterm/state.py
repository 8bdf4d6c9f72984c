"""
Interaction state: which tab is open, what is selected, how lists are
sorted and filtered.

The state is a frozen value. Only canvasterm.transitions.advance() makes
new ones, one event at a time, and only the foreground loop calls it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Union

from canvasterm.model import Category


class Tab(Enum):
    DASHBOARD = 1
    COURSES = 2
    ASSIGNMENTS = 3
    CALENDAR = 4
    ANNOUNCEMENTS = 5

    @property
    def title(self) -> str:
        return self.name.capitalize()

    @property
    def index(self) -> int:
        return self.value - 1

    def next(self) -> "Tab":
        return _TAB_ORDER[(self.index + 1) % len(_TAB_ORDER)]

    def prev(self) -> "Tab":
        return _TAB_ORDER[(self.index - 1) % len(_TAB_ORDER)]


_TAB_ORDER: tuple[Tab, ...] = tuple(Tab)


class SortMode(Enum):
    """Assignment ordering; CycleSort walks them in declaration order."""

    DUE_ASC = "due_asc"
    DUE_DESC = "due_desc"
    COURSE = "course"
    STATUS = "status"

    @property
    def label(self) -> str:
        return _SORT_LABELS[self]

    def next(self) -> "SortMode":
        order = list(SortMode)
        return order[(order.index(self) + 1) % len(order)]


_SORT_LABELS = {
    SortMode.DUE_ASC: "Due ↑",
    SortMode.DUE_DESC: "Due ↓",
    SortMode.COURSE: "Course",
    SortMode.STATUS: "Status",
}


@dataclass(frozen=True)
class FilterPopup:
    cursor: int = 0


@dataclass(frozen=True)
class InteractionState:
    """
    Everything the user controls.

    selections holds one index per tab, in Tab order. course_filter empty
    means "all courses"; otherwise it is the explicit allow-list.
    """

    tab: Tab = Tab.DASHBOARD
    selections: tuple[int, ...] = (0, 0, 0, 0, 0)
    sort: SortMode = SortMode.DUE_ASC
    course_filter: frozenset[int] = field(default_factory=frozenset)
    popup: Optional[FilterPopup] = None
    running: bool = True

    def selected(self, tab: Optional[Tab] = None) -> int:
        return self.selections[(tab or self.tab).index]

    def with_selection(self, tab: Tab, index: int) -> "InteractionState":
        selections = list(self.selections)
        selections[tab.index] = index
        return replace(self, selections=tuple(selections))

    @property
    def popup_open(self) -> bool:
        return self.popup is not None


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SwitchTab:
    target: Tab


@dataclass(frozen=True)
class CycleTab:
    step: int = 1


@dataclass(frozen=True)
class Move:
    step: int = 1


@dataclass(frozen=True)
class JumpTop:
    pass


@dataclass(frozen=True)
class JumpBottom:
    pass


@dataclass(frozen=True)
class JumpToday:
    pass


@dataclass(frozen=True)
class CycleSort:
    pass


@dataclass(frozen=True)
class OpenFilterPopup:
    pass


@dataclass(frozen=True)
class CloseFilterPopup:
    pass


@dataclass(frozen=True)
class ToggleFilterPopup:
    pass


@dataclass(frozen=True)
class ToggleCourseInFilter:
    # None: the course under the popup cursor.
    course_id: Optional[int] = None


@dataclass(frozen=True)
class SyncCompleted:
    """Posted by the sync thread after each category, never applied by it."""

    category: Category
    ok: bool = True
    error: Optional[str] = None


@dataclass(frozen=True)
class RequestRefresh:
    pass


@dataclass(frozen=True)
class Quit:
    pass


Event = Union[
    SwitchTab,
    CycleTab,
    Move,
    JumpTop,
    JumpBottom,
    JumpToday,
    CycleSort,
    OpenFilterPopup,
    CloseFilterPopup,
    ToggleFilterPopup,
    ToggleCourseInFilter,
    SyncCompleted,
    RequestRefresh,
    Quit,
]
