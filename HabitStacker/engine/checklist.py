"""
Checklist gating for checklist tasks.

Completion state is kept per session and keyed by the task's stable id, so
delaying or reordering tasks cannot attach ticks to the wrong task. When the
last item of the current task is checked, completion is triggered after a
short delay; the trigger is armed at most once per task instance.
"""

from __future__ import annotations

import logging
from typing import Callable

from HabitStacker.shared.models import ChecklistItem, TaskSpec

from .clock import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class ChecklistCompletionMap:
    """task id -> {checklist item id -> completed}; reset at every session start"""

    def __init__(self):
        self._states: dict[str, dict[str, bool]] = {}

    def reset(self) -> None:
        self._states.clear()

    def is_checked(self, task_id: str, item_id: str) -> bool:
        return self._states.get(task_id, {}).get(item_id, False)

    def set(self, task_id: str, item_id: str, value: bool) -> None:
        self._states.setdefault(task_id, {})[item_id] = value

    def toggle(self, task_id: str, item_id: str) -> bool:
        value = not self.is_checked(task_id, item_id)
        self.set(task_id, item_id, value)
        return value

    def items_for(self, task: TaskSpec) -> list[ChecklistItem]:
        """Session view of a task's checklist; template completion flags are ignored."""
        return [
            item.model_copy(update={"is_completed": self.is_checked(task.id, item.id)})
            for item in task.ordered_checklist
        ]

    def completed_count(self, task: TaskSpec) -> int:
        return sum(1 for item in task.checklist_items if self.is_checked(task.id, item.id))

    def all_checked(self, task: TaskSpec) -> bool:
        return self.completed_count(task) == len(task.checklist_items)


class ChecklistGate:
    def __init__(
        self,
        scheduler: Scheduler,
        on_all_checked: Callable[[str], bool],
        delay: float = 0.5,
    ):
        self.scheduler = scheduler
        self.delay = delay
        self.completion_map = ChecklistCompletionMap()
        self._on_all_checked = on_all_checked
        self._pending: dict[str, TimerHandle] = {}
        self._fired: set[str] = set()

    @staticmethod
    def is_gated(task: TaskSpec) -> bool:
        return task.is_checklist_task

    def can_complete(self, task: TaskSpec) -> bool:
        if not self.is_gated(task):
            return True
        return self.completion_map.all_checked(task)

    def is_pending(self, task_id: str) -> bool:
        return task_id in self._pending

    def toggle(self, task: TaskSpec, item_id: str) -> bool | None:
        """Flip one item; returns the new value, or None for an unknown item."""
        if not any(item.id == item_id for item in task.checklist_items):
            logger.warning(f"Checklist item {item_id} does not belong to task '{task.name}'")
            return None

        value = self.completion_map.toggle(task.id, item_id)
        done = self.completion_map.completed_count(task)
        logger.debug(f"Checklist '{task.name}': {done}/{len(task.checklist_items)} completed")

        if self.completion_map.all_checked(task):
            self._arm(task)
        else:
            self.cancel(task.id)
        return value

    def mark_finished(self, task_id: str) -> None:
        """The task instance completed by any path; never auto-complete it again."""
        self.cancel(task_id)
        self._fired.add(task_id)

    def cancel(self, task_id: str) -> None:
        handle = self._pending.pop(task_id, None)
        if handle is not None:
            handle.cancel()
            logger.debug(f"Cancelled pending checklist completion for {task_id}")

    def cancel_all(self) -> None:
        for task_id in list(self._pending):
            self.cancel(task_id)

    def reset(self) -> None:
        self.cancel_all()
        self._fired.clear()
        self.completion_map.reset()

    def _arm(self, task: TaskSpec) -> None:
        if task.id in self._pending or task.id in self._fired:
            return
        logger.info(
            f"All checklist items done for '{task.name}'; "
            f"completing in {self.delay:.1f}s"
        )
        self._pending[task.id] = self.scheduler.call_later(
            self.delay, lambda: self._fire(task.id)
        )

    def _fire(self, task_id: str) -> None:
        if self._pending.pop(task_id, None) is None:
            return
        # A trigger the callback declined may arm again on the next full check
        if self._on_all_checked(task_id):
            self._fired.add(task_id)
