"""
Clock and timer abstractions driving the routine runtime.

The runtime never talks to OS timers directly. It asks a ``Scheduler`` for the
current time and for one-shot or repeating callbacks. ``VirtualScheduler``
moves time forward only when told to, so tests can run hours of routine in
microseconds; ``AsyncioScheduler`` runs callbacks on a single event loop,
which keeps tick handling and user actions on one logical thread.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class TimerHandle:
    """Cancellable reference to a scheduled callback"""

    def __init__(self, callback: Callback, interval: float | None = None):
        self.callback = callback
        self.interval = interval
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    def cancel(self) -> None:
        self._cancelled = True


class Scheduler(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time (timezone aware)"""

    @abstractmethod
    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds"""

    @abstractmethod
    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` every ``interval`` seconds until cancelled"""


class VirtualScheduler(Scheduler):
    """Deterministic scheduler whose time only moves through ``advance``"""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2025, 1, 1, 7, 0, tzinfo=timezone.utc)
        self._queue: list[tuple[datetime, int, TimerHandle]] = []
        self._sequence = itertools.count()

    def now(self) -> datetime:
        return self._now

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle(callback)
        self._push(self._now + timedelta(seconds=max(0.0, delay)), handle)
        return handle

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        handle = TimerHandle(callback, interval=interval)
        self._push(self._now + timedelta(seconds=interval), handle)
        return handle

    def advance(self, seconds: float) -> None:
        """Move time forward, firing every due callback in chronological order."""
        target = self._now + timedelta(seconds=seconds)
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            if handle.repeating:
                self._push(due + timedelta(seconds=handle.interval), handle)
            handle.callback()
        self._now = target

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)

    def _push(self, due: datetime, handle: TimerHandle) -> None:
        heapq.heappush(self._queue, (due, next(self._sequence), handle))


class AsyncioScheduler(Scheduler):
    """
    Runs callbacks on one asyncio event loop.

    Without ``loop`` the scheduler binds to the loop running when it first
    schedules something, so it must then be used from inside a coroutine.
    Calls made from another thread are handed to the loop with
    ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ):
        self._loop = loop
        self._now_provider = now_provider or (lambda: datetime.now(tz=timezone.utc))

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError as e:
                raise RuntimeError(
                    "AsyncioScheduler has no event loop; pass loop= or create the "
                    "runtime inside a running coroutine"
                ) from e
        return self._loop

    def now(self) -> datetime:
        return self._now_provider()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle(callback)

        def _fire() -> None:
            if not handle.cancelled:
                self._invoke(handle)

        self._schedule(max(0.0, delay), _fire)
        return handle

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        handle = TimerHandle(callback, interval=interval)

        def _fire() -> None:
            if handle.cancelled:
                return
            # Re-arm first so a failing callback does not stop the cadence
            self.loop.call_later(interval, _fire)
            self._invoke(handle)

        self._schedule(interval, _fire)
        return handle

    def _schedule(self, delay: float, fire: Callback) -> None:
        loop = self.loop
        try:
            on_loop = asyncio.get_running_loop() is loop
        except RuntimeError:
            on_loop = False
        if on_loop:
            loop.call_later(delay, fire)
        else:
            loop.call_soon_threadsafe(loop.call_later, delay, fire)

    @staticmethod
    def _invoke(handle: TimerHandle) -> None:
        try:
            handle.callback()
        except Exception as e:
            logger.error(f"Scheduled callback failed: {e}", exc_info=True)
