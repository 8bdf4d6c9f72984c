"""
Keyboard input.

Two thin layers:
- decode_keys(): raw terminal bytes -> key names ("j", "tab", "up", ...)
- translate(): key name -> state machine event, depending on whether the
  filter popup is open

KeyReader decodes in a daemon thread and hands key names to a callback;
the foreground loop translates them against its own state, so it can wait
on one queue for keys and sync results alike.
"""

from __future__ import annotations

import os
import select
import sys
import threading
from typing import Callable, Optional

from loguru import logger

from canvasterm.state import (
    CloseFilterPopup,
    CycleSort,
    CycleTab,
    Event,
    JumpBottom,
    JumpToday,
    JumpTop,
    Move,
    Quit,
    RequestRefresh,
    SwitchTab,
    Tab,
    ToggleCourseInFilter,
    ToggleFilterPopup,
)

ESCAPE_SEQUENCES = {
    "\x1b[A": "up",
    "\x1b[B": "down",
    "\x1b[C": "right",
    "\x1b[D": "left",
    "\x1b[H": "home",
    "\x1b[F": "end",
    "\x1b[1~": "home",
    "\x1b[4~": "end",
    "\x1b[Z": "shift+tab",
    "\x1bOA": "up",
    "\x1bOB": "down",
    "\x1bOH": "home",
    "\x1bOF": "end",
}

SINGLE_KEYS = {
    "\t": "tab",
    "\r": "enter",
    "\n": "enter",
    " ": "space",
    "\x03": "ctrl+c",
    "\x1b": "esc",
}

MAIN_KEYS: dict[str, Event] = {
    "q": Quit(),
    "ctrl+c": Quit(),
    "tab": CycleTab(1),
    "shift+tab": CycleTab(-1),
    "j": Move(1),
    "down": Move(1),
    "k": Move(-1),
    "up": Move(-1),
    "g": JumpTop(),
    "home": JumpTop(),
    "G": JumpBottom(),
    "end": JumpBottom(),
    "t": JumpToday(),
    "s": CycleSort(),
    "f": ToggleFilterPopup(),
    "r": RequestRefresh(),
}
MAIN_KEYS.update({str(tab.value): SwitchTab(tab) for tab in Tab})

POPUP_KEYS: dict[str, Event] = {
    "ctrl+c": Quit(),
    "j": Move(1),
    "down": Move(1),
    "k": Move(-1),
    "up": Move(-1),
    "g": JumpTop(),
    "home": JumpTop(),
    "G": JumpBottom(),
    "end": JumpBottom(),
    "space": ToggleCourseInFilter(),
    "enter": CloseFilterPopup(),
    "esc": CloseFilterPopup(),
    "f": CloseFilterPopup(),
}


def decode_keys(data: str) -> list[str]:
    """Split a chunk of terminal input into key names."""
    keys: list[str] = []
    i = 0
    while i < len(data):
        if data[i] == "\x1b":
            for seq, name in ESCAPE_SEQUENCES.items():
                if data.startswith(seq, i):
                    keys.append(name)
                    i += len(seq)
                    break
            else:
                keys.append("esc")
                i += 1
            continue
        ch = data[i]
        keys.append(SINGLE_KEYS.get(ch, ch))
        i += 1
    return keys


def translate(key: str, popup_open: bool = False) -> Optional[Event]:
    """Map a key name to an event; unknown keys map to None."""
    table = POPUP_KEYS if popup_open else MAIN_KEYS
    return table.get(key)


class KeyReader:
    """
    Reads raw keys from a TTY in a daemon thread.
    """

    def __init__(self, on_key: Callable[[str], None], stream=None) -> None:
        self.on_key = on_key
        self.stream = stream or sys.stdin
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._saved_attrs = None

    def start(self) -> None:
        if not self.stream.isatty():
            logger.warning("stdin is not a terminal; keyboard input disabled")
            return
        import termios
        import tty

        fd = self.stream.fileno()
        self._saved_attrs = termios.tcgetattr(fd)
        tty.setcbreak(fd)
        self._thread = threading.Thread(target=self._run, name="canvasterm-keys", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._saved_attrs is not None:
            import termios

            termios.tcsetattr(self.stream.fileno(), termios.TCSADRAIN, self._saved_attrs)
            self._saved_attrs = None

    def _run(self) -> None:
        fd = self.stream.fileno()
        while not self._stop.is_set():
            ready, _, _ = select.select([fd], [], [], 0.1)
            if not ready:
                continue
            data = os.read(fd, 32).decode("utf-8", errors="replace")
            for key in decode_keys(data):
                self.on_key(key)
