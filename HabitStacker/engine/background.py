"""
Background task tracking.

A background task is pulled out of the main sequence but keeps counting down
on the runtime's shared tick. Entries are addressed by a stable
``background_id`` so that reordering or delaying the main sequence can never
invalidate a reference.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator
from uuid import uuid4

from HabitStacker.shared.models import BackgroundTaskSnapshot, ScheduledTask

logger = logging.getLogger(__name__)


def _background_id() -> str:
    return f"bg-{uuid4().hex[:8]}"


@dataclass
class BackgroundTaskState:
    scheduled: ScheduledTask
    remaining_seconds: float
    background_id: str = field(default_factory=_background_id)

    @property
    def task_id(self) -> str:
        return self.scheduled.task_id

    @property
    def name(self) -> str:
        return self.scheduled.name

    @property
    def allocated_duration(self) -> float:
        return self.scheduled.allocated_duration

    @property
    def is_overrun(self) -> bool:
        return self.remaining_seconds < 0

    @property
    def actual_duration(self) -> float:
        return self.allocated_duration - self.remaining_seconds

    def advance(self, seconds: float) -> bool:
        """Count down; returns True when this call crossed into overrun."""
        was_overrun = self.is_overrun
        self.remaining_seconds -= seconds
        return self.is_overrun and not was_overrun

    def to_snapshot(self) -> BackgroundTaskSnapshot:
        return BackgroundTaskSnapshot(
            background_id=self.background_id,
            task_id=self.task_id,
            task_name=self.name,
            allocated_duration=self.allocated_duration,
            remaining_seconds=self.remaining_seconds,
            is_overrun=self.is_overrun,
        )


class BackgroundTaskPool:
    """Ordered collection of background tasks sharing one tick"""

    def __init__(self, max_tasks: int = 1):
        self.max_tasks = max_tasks
        self._tasks: list[BackgroundTaskState] = []

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[BackgroundTaskState]:
        return iter(list(self._tasks))

    def __bool__(self) -> bool:
        return bool(self._tasks)

    @property
    def has_capacity(self) -> bool:
        return len(self._tasks) < self.max_tasks

    def add(self, scheduled: ScheduledTask, remaining_seconds: float) -> BackgroundTaskState:
        if self.contains_task(scheduled.task_id):
            raise ValueError(f"Task {scheduled.task_id} is already in the background")
        state = BackgroundTaskState(scheduled=scheduled, remaining_seconds=remaining_seconds)
        self._tasks.append(state)
        logger.info(
            f"Task '{state.name}' moved to background as {state.background_id} "
            f"with {remaining_seconds:.0f}s remaining"
        )
        return state

    def get(self, background_id: str) -> BackgroundTaskState | None:
        for state in self._tasks:
            if state.background_id == background_id:
                return state
        return None

    def pop(self, background_id: str) -> BackgroundTaskState | None:
        state = self.get(background_id)
        if state is not None:
            self._tasks.remove(state)
        return state

    def first(self) -> BackgroundTaskState | None:
        return self._tasks[0] if self._tasks else None

    def contains_task(self, task_id: str) -> bool:
        return any(state.task_id == task_id for state in self._tasks)

    def advance(self, seconds: float) -> list[BackgroundTaskState]:
        """Tick every background countdown; returns tasks that just went overrun."""
        crossed = []
        for state in self._tasks:
            if state.advance(seconds):
                logger.warning(f"Background task '{state.name}' passed 0 and is now overrun")
                crossed.append(state)
        return crossed

    def clear(self) -> None:
        self._tasks.clear()

    def snapshot(self) -> list[BackgroundTaskSnapshot]:
        return [state.to_snapshot() for state in self._tasks]
