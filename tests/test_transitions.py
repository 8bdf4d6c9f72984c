"""
Unit tests for the interaction state machine.

State machine contract:
- tabs and sort modes cycle with wraparound (sort has period 4)
- toggling a course in the filter twice restores the previous filter
- after every event the selection is inside the projected list
- SyncCompleted only reclamps, it never resets a valid position
"""

import random
import unittest
from datetime import datetime, timedelta, timezone

from canvasterm.model import Assignment, Category, Course
from canvasterm.projector import project
from canvasterm.state import (
    CloseFilterPopup,
    CycleSort,
    CycleTab,
    FilterPopup,
    InteractionState,
    JumpBottom,
    JumpToday,
    JumpTop,
    Move,
    OpenFilterPopup,
    Quit,
    RequestRefresh,
    SortMode,
    SwitchTab,
    SyncCompleted,
    Tab,
    ToggleCourseInFilter,
    ToggleFilterPopup,
)
from canvasterm.storage import CacheStore
from canvasterm.transitions import advance, toggle_course

NOW = datetime(2024, 4, 20, 12, 0, tzinfo=timezone.utc)


def day(offset: int) -> datetime:
    return NOW + timedelta(days=offset)


def build_store() -> CacheStore:
    store = CacheStore("/nonexistent/cache.json")
    store.merge(Category.COURSES, [Course(id=1, name="Algebra"), Course(id=2, name="Biology")], NOW)
    store.merge(
        Category.ASSIGNMENTS,
        [
            Assignment(id=1, course_id=1, title="a1", due_at=day(-3)),
            Assignment(id=2, course_id=1, title="a2", due_at=day(2)),
            Assignment(id=3, course_id=2, title="b1", due_at=day(4)),
            Assignment(id=4, course_id=2, title="b2"),
        ],
        NOW,
    )
    return store


def run(state: InteractionState, events, snapshot) -> InteractionState:
    for event in events:
        state = advance(state, event, snapshot, NOW)
    return state


class TestCycles(unittest.TestCase):
    def test_tab_wraparound(self) -> None:
        self.assertEqual(Tab.ANNOUNCEMENTS.next(), Tab.DASHBOARD)
        self.assertEqual(Tab.DASHBOARD.prev(), Tab.ANNOUNCEMENTS)

        snap = build_store().read()
        state = run(InteractionState(), [CycleTab(-1)], snap)
        self.assertEqual(state.tab, Tab.ANNOUNCEMENTS)
        state = run(state, [CycleTab(1), CycleTab(1)], snap)
        self.assertEqual(state.tab, Tab.COURSES)

    def test_switch_tab(self) -> None:
        state = run(InteractionState(), [SwitchTab(Tab.CALENDAR)], build_store().read())
        self.assertEqual(state.tab, Tab.CALENDAR)

    def test_cycle_sort_has_period_four(self) -> None:
        snap = build_store().read()
        state = InteractionState(tab=Tab.ASSIGNMENTS)
        seen = []
        for _ in range(4):
            state = advance(state, CycleSort(), snap, NOW)
            seen.append(state.sort)
        self.assertEqual(seen, [SortMode.DUE_DESC, SortMode.COURSE, SortMode.STATUS, SortMode.DUE_ASC])

    def test_cycle_sort_only_on_assignments(self) -> None:
        state = run(InteractionState(tab=Tab.COURSES), [CycleSort()], build_store().read())
        self.assertEqual(state.sort, SortMode.DUE_ASC)

    def test_cycle_sort_resets_assignment_selection(self) -> None:
        snap = build_store().read()
        state = run(InteractionState(tab=Tab.ASSIGNMENTS), [Move(1), Move(1), CycleSort()], snap)
        self.assertEqual(state.selected(), 0)


class TestNavigation(unittest.TestCase):
    def setUp(self) -> None:
        self.snap = build_store().read()
        self.state = InteractionState(tab=Tab.ASSIGNMENTS)

    def test_move_is_clamped(self) -> None:
        state = run(self.state, [Move(-1)], self.snap)
        self.assertEqual(state.selected(), 0)
        state = run(state, [Move(1)] * 10, self.snap)
        self.assertEqual(state.selected(), 3)

    def test_jump_top_and_bottom(self) -> None:
        state = run(self.state, [JumpBottom()], self.snap)
        self.assertEqual(state.selected(), 3)
        state = run(state, [JumpTop()], self.snap)
        self.assertEqual(state.selected(), 0)

    def test_selection_is_per_tab(self) -> None:
        state = run(self.state, [Move(1), SwitchTab(Tab.COURSES), Move(1), SwitchTab(Tab.ASSIGNMENTS)], self.snap)
        self.assertEqual(state.selected(), 1)
        self.assertEqual(state.selected(Tab.COURSES), 1)

    def test_jump_today(self) -> None:
        state = run(self.state, [JumpToday()], self.snap)
        self.assertEqual(state.selected(), 1)

        courses = run(InteractionState(tab=Tab.COURSES, selections=(0, 1, 0, 0, 0)), [JumpToday()], self.snap)
        self.assertEqual(courses.selected(), 1)

    def test_quit_and_refresh(self) -> None:
        state = run(self.state, [RequestRefresh()], self.snap)
        self.assertEqual(state, self.state)
        self.assertFalse(run(self.state, [Quit()], self.snap).running)

    def test_empty_list_selection_is_zero(self) -> None:
        empty = CacheStore("/nonexistent/cache.json").read()
        state = run(self.state, [Move(1), JumpBottom(), JumpToday()], empty)
        self.assertEqual(state.selected(), 0)


class TestFilter(unittest.TestCase):
    def setUp(self) -> None:
        self.snap = build_store().read()

    def visible(self, state) -> list:
        return [a.id for a in project(Tab.ASSIGNMENTS, self.snap, state, NOW)]

    def test_toggle_is_its_own_inverse(self) -> None:
        for start in (frozenset(), frozenset({2}), frozenset({1, 2})):
            self.assertEqual(toggle_course(toggle_course(start, 1), 1), start)

        state = run(InteractionState(course_filter=frozenset({2})), [OpenFilterPopup()], self.snap)
        again = run(state, [ToggleCourseInFilter(1), ToggleCourseInFilter(1)], self.snap)
        self.assertEqual(again.course_filter, frozenset({2}))

    def test_empty_then_allow_list_then_empty(self) -> None:
        state = run(InteractionState(tab=Tab.ASSIGNMENTS), [OpenFilterPopup()], self.snap)
        self.assertEqual(self.visible(state), [1, 2, 3, 4])

        state = run(state, [ToggleCourseInFilter(1)], self.snap)
        self.assertEqual(state.course_filter, frozenset({1}))
        self.assertEqual(self.visible(state), [1, 2])

        state = run(state, [ToggleCourseInFilter(1)], self.snap)
        self.assertEqual(state.course_filter, frozenset())
        self.assertEqual(self.visible(state), [1, 2, 3, 4])

    def test_toggle_under_cursor(self) -> None:
        # Options are sorted by name: Algebra (1), Biology (2)
        state = run(InteractionState(), [ToggleFilterPopup(), Move(1), ToggleCourseInFilter()], self.snap)
        self.assertEqual(state.popup, FilterPopup(cursor=1))
        self.assertEqual(state.course_filter, frozenset({2}))

    def test_toggle_ignored_while_popup_closed(self) -> None:
        state = run(InteractionState(), [ToggleCourseInFilter(1)], self.snap)
        self.assertEqual(state.course_filter, frozenset())

    def test_popup_is_modal(self) -> None:
        state = run(InteractionState(tab=Tab.ASSIGNMENTS), [OpenFilterPopup(), SwitchTab(Tab.COURSES), CycleSort()], self.snap)
        self.assertEqual(state.tab, Tab.ASSIGNMENTS)
        self.assertEqual(state.sort, SortMode.DUE_ASC)
        state = run(state, [Move(5)], self.snap)
        self.assertEqual(state.popup.cursor, 1)
        self.assertEqual(state.selected(), 0)
        closed = run(state, [CloseFilterPopup()], self.snap)
        self.assertIsNone(closed.popup)
        self.assertIsNone(run(state, [ToggleFilterPopup()], self.snap).popup)

    def test_filter_shrinks_selection(self) -> None:
        state = run(InteractionState(tab=Tab.ASSIGNMENTS), [JumpBottom()], self.snap)
        self.assertEqual(state.selected(), 3)
        state = run(state, [OpenFilterPopup(), ToggleCourseInFilter(1), CloseFilterPopup()], self.snap)
        self.assertEqual(state.selected(), 1)


class TestSyncCompleted(unittest.TestCase):
    def test_keeps_position_when_still_valid(self) -> None:
        store = build_store()
        state = run(InteractionState(tab=Tab.ASSIGNMENTS), [Move(1), Move(1)], store.read())
        store.merge(Category.ANNOUNCEMENTS, [], NOW)
        state = advance(state, SyncCompleted(Category.ANNOUNCEMENTS), store.read(), NOW)
        self.assertEqual(state.selected(), 2)

    def test_clamps_when_list_shrinks(self) -> None:
        store = build_store()
        state = run(InteractionState(tab=Tab.ASSIGNMENTS), [JumpBottom()], store.read())
        self.assertEqual(state.selected(), 3)

        store.merge(Category.ASSIGNMENTS, [Assignment(id=9, course_id=1, title="only")], NOW)
        state = advance(state, SyncCompleted(Category.ASSIGNMENTS), store.read(), NOW)
        self.assertEqual(state.selected(), 0)

        store.merge(Category.ASSIGNMENTS, [], NOW)
        state = advance(state, SyncCompleted(Category.ASSIGNMENTS, ok=False, error="x"), store.read(), NOW)
        self.assertEqual(state.selected(), 0)


class TestInvariantUnderRandomEvents(unittest.TestCase):
    def test_selection_always_in_range(self) -> None:
        rng = random.Random(1234)
        store = build_store()
        events = [
            CycleTab(1), CycleTab(-1), Move(1), Move(-1), Move(3), JumpTop(), JumpBottom(), JumpToday(),
            CycleSort(), ToggleFilterPopup(), ToggleCourseInFilter(), ToggleCourseInFilter(2),
            CloseFilterPopup(), RequestRefresh(),
        ] + [SwitchTab(t) for t in Tab]
        state = InteractionState()
        for step in range(500):
            if step % 50 == 25:
                # Shrink or grow the assignment list like a sync would
                n = rng.randint(0, 6)
                store.merge(
                    Category.ASSIGNMENTS,
                    [Assignment(id=i, course_id=rng.choice([1, 2, 3]), title=f"t{i}", due_at=day(i)) for i in range(n)],
                    NOW,
                )
                event = SyncCompleted(Category.ASSIGNMENTS)
            else:
                event = rng.choice(events)
            snap = store.read()
            state = advance(state, event, snap, NOW)
            for tab in Tab:
                length = len(project(tab, snap, state, NOW))
                if length:
                    self.assertTrue(0 <= state.selected(tab) < length)
                else:
                    self.assertEqual(state.selected(tab), 0)


if __name__ == "__main__":
    unittest.main()
