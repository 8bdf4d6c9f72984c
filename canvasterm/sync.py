"""
Background sync for canvasterm.

Keeps the cache fresh while the UI is running:
- one cycle right after start (the cached copy may be old)
- one cycle whenever the user asks for a refresh
- optionally one cycle every `interval_seconds`

Runs in a background thread. At most one cycle is in flight; triggers that
arrive meanwhile collapse into a single "run again afterwards". The UI
thread never waits on this module: it learns about finished categories
through SyncCompleted events passed to `notify`.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Protocol, Sequence, runtime_checkable

from loguru import logger

from canvasterm.api import CanvasError
from canvasterm.model import ALL_CATEGORIES, Category, UserProfile, utcnow
from canvasterm.state import SyncCompleted
from canvasterm.storage import CacheStore

COURSES_UNAVAILABLE = "courses unavailable"


class Transport(Protocol):
    def fetch(self, category: Category, course_ids: Sequence[int] = ()) -> list[Any]: ...


@runtime_checkable
class ProfileSource(Protocol):
    def fetch_profile(self) -> UserProfile: ...


@dataclass
class CycleResult:
    """Outcome of one cycle: category -> error message, None on success."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    errors: dict[Category, Optional[str]] = field(default_factory=dict)
    discarded: bool = False

    @property
    def ok(self) -> bool:
        return bool(self.errors) and all(e is None for e in self.errors.values())

    @property
    def any_ok(self) -> bool:
        return any(e is None for e in self.errors.values())

    @property
    def failed(self) -> list[Category]:
        return [c for c, e in self.errors.items() if e is not None]


class SyncCoordinator:
    """
    Background sync manager.

    Usage:
        coordinator = SyncCoordinator(store, client, notify=events.put)
        coordinator.start()
        # ... UI runs, coordinator.request() on "r" ...
        coordinator.stop()
    """

    def __init__(
        self,
        store: CacheStore,
        transport: Transport,
        notify: Optional[Callable[[SyncCompleted], None]] = None,
        interval_seconds: Optional[float] = None,
        persist: bool = True,
        clock: Callable[[], datetime] = utcnow,
        max_workers: int = 3,
    ) -> None:
        self.store = store
        self.transport = transport
        self.notify = notify
        self.interval_seconds = interval_seconds or None
        self.persist = persist
        self.clock = clock
        self.max_workers = max_workers

        self.last_result: Optional[CycleResult] = None
        self._cond = threading.Condition()
        self._pending = False
        self._in_flight = False
        self._stopping = False
        self._thread: Optional[threading.Thread] = None

    @property
    def is_syncing(self) -> bool:
        return self._in_flight

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_cycle_at(self) -> Optional[datetime]:
        return self.last_result.finished_at if self.last_result else None

    def start(self) -> None:
        """Start the background thread and queue the startup cycle."""
        if self.is_running:
            logger.warning("Sync coordinator already running")
            return
        with self._cond:
            self._stopping = False
            self._pending = True
        self._thread = threading.Thread(target=self._loop, name="canvasterm-sync", daemon=True)
        self._thread.start()
        logger.info("Background sync started (interval: {})", self.interval_seconds or "off")

    def request(self) -> None:
        """
        Ask for a cycle. If one is running, it will run exactly once more
        when it finishes, however many requests arrive meanwhile.
        """
        with self._cond:
            if self._stopping:
                return
            self._pending = True
            self._cond.notify()

    def stop(self, timeout: float = 2.0) -> None:
        """
        Stop the background thread. An in-flight fetch is abandoned: its
        results are discarded when they arrive.
        """
        with self._cond:
            self._stopping = True
            self._pending = False
            self._cond.notify_all()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.info("Abandoning in-flight sync cycle")
        self._thread = None

    @property
    def stopping(self) -> bool:
        return self._stopping

    # -- thread body --------------------------------------------------------

    def _loop(self) -> None:
        while True:
            with self._cond:
                while not self._pending and not self._stopping:
                    woke = self._cond.wait(timeout=self.interval_seconds)
                    if not woke and self.interval_seconds:
                        logger.debug("Periodic refresh due")
                        self._pending = True
                if self._stopping:
                    return
                self._pending = False
                self._in_flight = True
            try:
                self.run_cycle()
            except Exception:
                # Keep the thread alive; the next trigger tries again.
                logger.exception("Sync cycle crashed")
            finally:
                with self._cond:
                    self._in_flight = False

    # -- one cycle ----------------------------------------------------------

    def run_cycle(self) -> CycleResult:
        """
        Fetch every category once. Courses go first, the other three then
        run side by side; a failure in one never touches another.
        """
        result = CycleResult(started_at=self.clock())
        logger.info("Sync cycle started")

        courses_error = self._sync_category(Category.COURSES, (), result)
        self._sync_profile()

        course_ids = sorted(self.store.read().courses)
        dependents = [c for c in ALL_CATEGORIES if c != Category.COURSES]

        if not course_ids and courses_error is not None:
            for category in dependents:
                self._fail(category, f"{COURSES_UNAVAILABLE}: {courses_error}", result)
        elif not self._stopping:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="canvasterm-fetch") as pool:
                futures = [pool.submit(self._sync_category, c, course_ids, result) for c in dependents]
                for future in futures:
                    future.result()

        result.finished_at = self.clock()
        result.discarded = self._stopping
        self.last_result = result

        if result.discarded:
            logger.info("Sync cycle discarded (shutting down)")
            return result
        if self.persist and result.any_ok:
            self.store.persist()
        logger.info(
            "Sync cycle finished: {} ok, {} failed",
            sum(1 for e in result.errors.values() if e is None),
            len(result.failed),
        )
        return result

    def _sync_category(self, category: Category, course_ids: Sequence[int], result: CycleResult) -> Optional[str]:
        if self._stopping:
            return None
        try:
            records = self.transport.fetch(category, course_ids)
        except (CanvasError, ValueError) as exc:
            return self._fail(category, str(exc) or type(exc).__name__, result)
        except Exception as exc:
            logger.exception("Unexpected error while syncing {}", category.value)
            return self._fail(category, f"{type(exc).__name__}: {exc}", result)

        if self._stopping:
            # Shutdown began while we were waiting on the network.
            return None
        self.store.merge(category, records, self.clock())
        result.errors[category] = None
        self._emit(SyncCompleted(category=category, ok=True))
        return None

    def _sync_profile(self) -> None:
        # A transport without profiles leaves the greeting generic.
        if self._stopping or not isinstance(self.transport, ProfileSource):
            return
        try:
            user = self.transport.fetch_profile()
        except (CanvasError, TypeError, ValueError) as exc:
            logger.warning("Could not fetch user profile: {}", exc)
            return
        except Exception:
            logger.exception("Unexpected error while fetching the user profile")
            return
        if not self._stopping:
            self.store.set_user(user)

    def _fail(self, category: Category, message: str, result: CycleResult) -> Optional[str]:
        if self._stopping:
            return None
        self.store.record_error(category, message)
        result.errors[category] = message
        self._emit(SyncCompleted(category=category, ok=False, error=message))
        return message

    def _emit(self, event: SyncCompleted) -> None:
        if self.notify is not None and not self._stopping:
            self.notify(event)
