"""
Rich rendering of a RenderSnapshot.

No state lives here: render(view) turns one frozen RenderSnapshot into a
rich renderable, the app hands it to rich.live.Live.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from rich import box
from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from canvasterm.model import Announcement, Assignment, Course, SubmissionStatus
from canvasterm.projector import CalendarItem
from canvasterm.state import Tab
from canvasterm.view import Overview, RenderSnapshot, countdown, urgency

STATUS_STYLES = {
    SubmissionStatus.MISSING: "bold red",
    SubmissionStatus.LATE: "red",
    SubmissionStatus.NOT_SUBMITTED: "yellow",
    SubmissionStatus.SUBMITTED: "green",
    SubmissionStatus.GRADED: "bold green",
}

URGENCY_STYLES = {
    "past": "bold red",
    "soon": "red",
    "hours": "dark_orange",
    "day": "yellow",
    "days": "green_yellow",
    "week": "green",
}

HELP = "Tab/1-5 tabs | j/k move | g/G top/bottom | t today | s sort | f filter | r refresh | q quit"

SPINNER = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


def _fmt_dt(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%a %b %d %H:%M")


def _status_text(status: Optional[SubmissionStatus]) -> Text:
    if status is None:
        return Text("")
    return Text(status.label, style=STATUS_STYLES.get(status, ""))


def _points(a: Assignment) -> str:
    if a.points_possible is None:
        return ""
    if a.score is not None:
        return f"{a.score:g}/{a.points_possible:g}"
    return f"{a.points_possible:g} pts"


def _tab_bar(view: RenderSnapshot) -> Text:
    bar = Text()
    for tab in Tab:
        style = "bold reverse" if tab == view.tab else "dim"
        bar.append(f" {tab.value} {tab.title} ", style=style)
        bar.append(" ")
    return bar


def _table(title: str, columns: list[str]) -> Table:
    table = Table(title=title, box=box.SIMPLE, expand=True, show_lines=False)
    for col in columns:
        table.add_column(col, overflow="ellipsis", no_wrap=True)
    return table


def _countdown_text(due_at: Optional[datetime], now: datetime) -> Text:
    if due_at is None:
        return Text("")
    return Text(countdown(due_at, now), style=URGENCY_STYLES[urgency(due_at, now)])


def _assignment_row(view: RenderSnapshot, a: Assignment) -> list[Any]:
    title = Text(a.title)
    if a.id == view.focal_assignment_id:
        title.stylize("bold cyan")
    return [
        _fmt_dt(a.due_at),
        _countdown_text(a.due_at, view.now),
        view.course_names.get(a.course_id, ""),
        title,
        _status_text(a.status),
        _points(a),
    ]


def _rows(view: RenderSnapshot) -> Table:
    tab = view.tab
    if tab in (Tab.DASHBOARD, Tab.ASSIGNMENTS):
        title = "Upcoming (30 days)" if tab == Tab.DASHBOARD else f"Assignments - sort: {view.sort.label}"
        if view.course_filter and tab == Tab.ASSIGNMENTS:
            title += f" - filter: {len(view.course_filter)} course(s)"
        table = _table(title, ["Due", "Left", "Course", "Assignment", "Status", "Points"])
        for item in view.items:
            table.add_row(*_assignment_row(view, item))
        return table

    if tab == Tab.COURSES:
        table = _table("Courses", ["Course", "Code", "Term", "Grade"])
        for c in view.items:
            grade = ""
            if c.current_score is not None:
                grade = f"{c.current_score:.1f}%"
            if c.current_grade:
                grade = f"{grade} ({c.current_grade})".strip()
            table.add_row(c.display_name, c.course_code, c.term or "", grade)
        return table

    if tab == Tab.CALENDAR:
        table = _table("Calendar", ["When", "Kind", "Course", "Title", "Status"])
        for item in view.items:
            table.add_row(
                _fmt_dt(item.start_at),
                item.kind,
                view.course_names.get(item.course_id, "") if item.course_id is not None else "",
                item.title,
                _status_text(item.status),
            )
        return table

    table = _table("Announcements", ["Posted", "Course", "Title", "Excerpt"])
    for n in view.items:
        table.add_row(_fmt_dt(n.posted_at), view.course_names.get(n.course_id, ""), n.title, n.excerpt)
    return table


def _highlight(table: Table, view: RenderSnapshot) -> None:
    if view.selected is not None and table.row_count:
        table.rows[view.selected].style = "reverse"


def _popup(view: RenderSnapshot) -> Optional[Panel]:
    if view.popup is None:
        return None
    lines = Text()
    if not view.popup.options:
        lines.append("No courses cached yet.", style="dim")
    for i, (_cid, label, checked) in enumerate(view.popup.options):
        mark = "[x]" if checked else "[ ]"
        style = "reverse" if i == view.popup.cursor else ""
        lines.append(f"{mark} {label}\n", style=style)
    subtitle = "space toggle | enter/esc close"
    if not any(checked for _c, _l, checked in view.popup.options):
        subtitle = "all courses shown | " + subtitle
    return Panel(lines, title="Filter courses", subtitle=subtitle, border_style="cyan")


def _overview(overview: Overview) -> Panel:
    lines = Text()
    lines.append(f"Welcome back, {overview.user_name}.\n", style="bold")
    lines.append(f"{overview.course_count} courses enrolled    ")
    lines.append(f"{overview.upcoming_count} upcoming events    ", style="dim")
    unread = overview.unread_count
    lines.append(
        f"{unread} unread announcement{'' if unread == 1 else 's'}",
        style="red" if unread else "dim",
    )
    return Panel(lines, title="Overview", border_style="dim")


def _fields(rows: list[tuple[str, Any]]) -> Table:
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="cyan", no_wrap=True)
    grid.add_column()
    for label, value in rows:
        if value not in (None, ""):
            grid.add_row(label, value)
    return grid


def _detail_body(view: RenderSnapshot, item: Any) -> list[RenderableType]:
    if isinstance(item, Assignment):
        due = Text(_fmt_dt(item.due_at))
        if item.due_at is not None:
            due.append("  ")
            due.append_text(_countdown_text(item.due_at, view.now))
        score = None
        if item.score is not None:
            score = f"{item.score:g} / {item.points_possible or 0:g}"
        parts: list[RenderableType] = [
            Text(item.title, style="bold"),
            _fields(
                [
                    ("Course", view.course_names.get(item.course_id, "")),
                    ("Due", due),
                    ("Points", _points(item)),
                    ("Status", _status_text(item.status)),
                    ("Score", score),
                    ("Link", item.html_url),
                ]
            ),
        ]
        if item.description:
            parts.append(Text(item.description, style="dim"))
        return parts

    if isinstance(item, CalendarItem):
        course = view.course_names.get(item.course_id, "") if item.course_id is not None else ""
        return [
            Text(item.title, style="bold"),
            _fields(
                [
                    ("Date", item.start_at.astimezone().strftime("%A, %B %d, %Y")),
                    ("Time", item.start_at.astimezone().strftime("%H:%M")),
                    ("Kind", item.kind),
                    ("Course", course),
                    ("Location", item.location),
                    ("Status", _status_text(item.status) if item.status is not None else None),
                ]
            ),
        ]

    if isinstance(item, Course):
        grade = f"{item.current_score:.1f}%" if item.current_score is not None else None
        if item.current_grade:
            grade = f"{grade or ''} ({item.current_grade})".strip()
        return [
            Text(item.display_name, style="bold"),
            _fields([("Code", item.course_code), ("Term", item.term), ("Grade", grade)]),
        ]

    if isinstance(item, Announcement):
        posted = item.posted_at.astimezone().strftime("%B %d, %Y at %H:%M") if item.posted_at else ""
        return [
            Text(item.title, style="bold"),
            Text(f"by {item.author or 'Unknown'}  -  {posted}", style="dim"),
            Text(item.body or "(no content)"),
        ]

    return [Text(str(item))]


def _detail(view: RenderSnapshot) -> Optional[Panel]:
    if view.detail is None:
        return None
    return Panel(Group(*_detail_body(view, view.detail)), title="Detail", border_style="dim")


def _status_bar(view: RenderSnapshot, frame: int) -> Text:
    bar = Text()
    if view.syncing:
        bar.append(SPINNER[frame % len(SPINNER)] + " ", style="cyan")
    bar.append(view.status_message, style="red" if view.errors and not view.syncing else "")
    for status in view.statuses:
        marker = "!" if status.error else ""
        style = "red" if status.error else "dim"
        bar.append(f"  {status.category.label}: {status.count}{marker}", style=style)
    return bar


def render(view: RenderSnapshot, frame: int = 0) -> RenderableType:
    table = _rows(view)
    _highlight(table, view)
    parts: list[RenderableType] = [_tab_bar(view)]
    if view.overview is not None:
        parts.append(_overview(view.overview))
    parts.append(table)
    if not view.items:
        parts.append(Text("Nothing to show.", style="dim"))
    detail = _detail(view)
    if detail is not None:
        parts.append(detail)
    popup = _popup(view)
    if popup is not None:
        parts.append(popup)
    parts.append(_status_bar(view, frame))
    parts.append(Text(HELP, style="dim"))
    return Group(*parts)
