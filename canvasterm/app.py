"""
Foreground loop.

One queue feeds the loop: key names from the KeyReader thread and
SyncCompleted events from the sync thread. The loop is the only owner of
the InteractionState; it advances it, forwards refresh requests to the
coordinator and redraws with rich.live.Live. Nothing here waits on the
network.
"""

from __future__ import annotations

import queue
from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger
from rich.console import Console
from rich.live import Live

from canvasterm.keys import KeyReader, translate
from canvasterm.state import InteractionState, RequestRefresh
from canvasterm.storage import CacheStore
from canvasterm.sync import SyncCoordinator
from canvasterm.transitions import advance
from canvasterm.ui import render
from canvasterm.view import RenderSnapshot, build_render_snapshot

TICK_SECONDS = 0.1


class App:
    def __init__(
        self,
        store: CacheStore,
        coordinator: Optional[SyncCoordinator] = None,
        console: Optional[Console] = None,
        tick: float = TICK_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.console = console or Console()
        self.tick = tick
        self.clock = clock
        self.events: "queue.Queue[Any]" = queue.Queue()
        self.state = InteractionState()
        self.frame = 0

        if coordinator is not None:
            coordinator.notify = self.events.put

    def handle(self, item: Any) -> None:
        """Apply one queued item (key name or event) to the state."""
        event = translate(item, self.state.popup_open) if isinstance(item, str) else item
        if event is None:
            return
        if isinstance(event, RequestRefresh) and self.coordinator is not None:
            self.coordinator.request()
        now = self.clock() if self.clock else None
        self.state = advance(self.state, event, self.store.read(), now)

    def drain(self, timeout: float) -> None:
        """Wait up to `timeout` for the next item, then apply everything queued."""
        try:
            item = self.events.get(timeout=timeout)
        except queue.Empty:
            return
        self.handle(item)
        while self.state.running:
            try:
                item = self.events.get_nowait()
            except queue.Empty:
                return
            self.handle(item)

    def view(self) -> RenderSnapshot:
        # One snapshot per tick; it stays frozen while we draw it.
        snapshot = self.store.read()
        syncing = self.coordinator.is_syncing if self.coordinator is not None else False
        now = self.clock() if self.clock else None
        return build_render_snapshot(snapshot, self.state, syncing=syncing, now=now)

    def run(self) -> None:
        snapshot = self.store.load()
        logger.info("Starting with {} cached course(s)", len(snapshot.courses))

        reader = KeyReader(on_key=self.events.put)
        if self.coordinator is not None:
            self.coordinator.start()
        reader.start()
        try:
            with Live(render(self.view()), console=self.console, screen=True, auto_refresh=False) as live:
                while self.state.running:
                    self.drain(self.tick)
                    self.frame += 1
                    live.update(render(self.view(), self.frame), refresh=True)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            reader.stop()
            if self.coordinator is not None:
                self.coordinator.stop()
            self.store.persist()
            logger.info("Bye")
