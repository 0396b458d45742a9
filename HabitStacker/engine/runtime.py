"""
Routine Runtime for HabitStacker
Drives one executed session of a planned routine: per-task countdown, overrun,
schedule drift, background tasks, checklist gating and safe mutation of the
tasks that have not been reached yet.
"""

from __future__ import annotations

import functools
import logging
import threading
from datetime import datetime, timedelta
from typing import Iterable

from HabitStacker.shared.models import (
    ChecklistItem,
    Essentiality,
    RoutineDefinition,
    RunnerStatus,
    RuntimeSnapshot,
    ScheduledTask,
    SessionSummary,
    TaskCompletionEvent,
    TaskSpec,
)

from .background import BackgroundTaskPool, BackgroundTaskState
from .checklist import ChecklistGate
from .clock import AsyncioScheduler, Scheduler, TimerHandle
from .config import PlannerConfig, RuntimeConfig, get_runtime_config
from .errors import ActionResult, InfeasibleScheduleError, Rejection
from .events import CompletionSink, EventDispatcher, EventType, Listener
from .formatting import format_finish_time, format_remaining, format_schedule_offset
from .planner import SchedulePlan, TimeBudgetPlanner

logger = logging.getLogger(__name__)

INTERRUPTION_NAME = "Interruption"
ACTIVE_STATES = (RunnerStatus.RUNNING, RunnerStatus.PAUSED)


def _serialized(method):
    """Run the method under the runtime lock so actions never interleave with a tick"""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class RoutineRuntime:
    """
    Tick-driven state machine for a single routine session.

    Without a ``scheduler`` the runtime uses an ``AsyncioScheduler`` bound to the
    running event loop, so it has to be started from inside a coroutine.
    """

    def __init__(
        self,
        plan: SchedulePlan,
        scheduler: Scheduler | None = None,
        config: RuntimeConfig | None = None,
        sink: CompletionSink | None = None,
    ):
        self.plan = plan
        self.scheduler = scheduler or AsyncioScheduler()
        self.config = config or get_runtime_config()
        self.events = EventDispatcher(sink)
        self._lock = threading.RLock()

        self.status = RunnerStatus.NOT_STARTED
        self.current_index = 0
        self.schedule_offset_seconds = 0.0
        self.completed_duration = 0.0
        self.total_routine_duration = plan.total_allocated
        self.completed_count = 0
        self.skipped_count = 0
        self.completion_events: list[TaskCompletionEvent] = []
        self.summary: SessionSummary | None = None

        self._sequence: list[ScheduledTask] = list(plan.scheduled_tasks)
        self._remaining = 0.0
        self._parked_remaining: dict[str, float] = {}
        self._tick_handle: TimerHandle | None = None
        self._last_settle: datetime | None = None
        self._interruption_id: str | None = None
        self.started_at: datetime | None = None
        self.original_finish: datetime | None = None

        self.background = BackgroundTaskPool(self.config.max_background_tasks)
        self.checklist = ChecklistGate(
            self.scheduler,
            self._on_checklist_complete,
            delay=self.config.checklist_auto_complete_delay,
        )

    @classmethod
    def from_routine(
        cls,
        routine: RoutineDefinition,
        total_available_time: float,
        scheduler: Scheduler | None = None,
        config: RuntimeConfig | None = None,
        planner_config: PlannerConfig | None = None,
        sink: CompletionSink | None = None,
    ) -> RoutineRuntime:
        plan = TimeBudgetPlanner(planner_config).plan(routine.tasks, total_available_time)
        return cls(plan, scheduler=scheduler, config=config, sink=sink)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def tasks(self) -> list[ScheduledTask]:
        return list(self._sequence)

    @property
    def current_task(self) -> ScheduledTask | None:
        if self.status in ACTIVE_STATES and 0 <= self.current_index < len(self._sequence):
            return self._sequence[self.current_index]
        return None

    @property
    def remaining_seconds(self) -> float:
        return self._remaining if self.current_task is not None else 0.0

    @property
    def is_overrun(self) -> bool:
        return self.current_task is not None and self._remaining < 0

    @property
    def overrun_seconds(self) -> float:
        return max(0.0, -self._remaining) if self.current_task is not None else 0.0

    @property
    def is_routine_complete(self) -> bool:
        return self.status == RunnerStatus.COMPLETE

    @property
    def is_handling_interruption(self) -> bool:
        return self._interruption_id is not None

    @property
    def phase(self) -> str:
        if self.status in ACTIVE_STATES and self.is_overrun:
            return f"{self.status.value}_overrun"
        return self.status.value

    @property
    def persistence_errors(self):
        return self.events.persistence_errors

    @property
    def live_offset_seconds(self) -> float:
        """Committed offset plus overrun that is still accruing right now."""
        accruing = self.overrun_seconds
        accruing += sum(max(0.0, -s.remaining_seconds) for s in self.background)
        return self.schedule_offset_seconds + accruing

    @property
    def task_progress_fraction(self) -> float:
        current = self.current_task
        if current is None:
            return 0.0
        if current.allocated_duration <= 0:
            return 1.0
        elapsed = current.allocated_duration - self._remaining
        return min(max(elapsed / current.allocated_duration, 0.0), 1.0)

    @property
    def overall_progress_fraction(self) -> float:
        if self.total_routine_duration <= 0:
            return 1.0 if self.is_routine_complete else 0.0
        fraction = self.completed_duration / self.total_routine_duration
        return min(max(fraction, 0.0), 1.0)

    @property
    def estimated_finish(self) -> datetime | None:
        if self.original_finish is None:
            return None
        return self.original_finish + timedelta(seconds=self.live_offset_seconds)

    @property
    def next_task_name(self) -> str | None:
        if self.current_task is None:
            return None
        next_index = self.current_index + 1
        if next_index < len(self._sequence):
            return self._sequence[next_index].name
        return None

    @property
    def can_delay_current_task(self) -> bool:
        return (
            self.current_task is not None
            and not self.is_handling_interruption
            and self.current_index < len(self._sequence) - 1
        )

    @property
    def can_move_to_background(self) -> bool:
        return (
            self.current_task is not None
            and not self.is_handling_interruption
            and self.current_index < len(self._sequence) - 1
            and self.background.has_capacity
        )

    def subscribe(self, listener: Listener):
        return self.events.subscribe(listener)

    @_serialized
    def snapshot(self) -> RuntimeSnapshot:
        self._settle()
        current = self.current_task
        return RuntimeSnapshot(
            status=self.status,
            phase=self.phase,
            current_index=self.current_index,
            current_task_id=current.task_id if current else None,
            current_task_name=current.name if current else None,
            next_task_name=self.next_task_name,
            remaining_seconds=self.remaining_seconds,
            is_overrun=self.is_overrun,
            overrun_seconds=self.overrun_seconds,
            schedule_offset_seconds=self.schedule_offset_seconds,
            live_offset_seconds=self.live_offset_seconds,
            completed_duration=self.completed_duration,
            total_routine_duration=self.total_routine_duration,
            is_routine_complete=self.is_routine_complete,
            task_progress_fraction=self.task_progress_fraction,
            overall_progress_fraction=self.overall_progress_fraction,
            remaining_time_string=format_remaining(self.remaining_seconds)
            if current
            else "--:--",
            schedule_offset_string=format_schedule_offset(self.live_offset_seconds),
            estimated_finish=self.estimated_finish,
            is_handling_interruption=self.is_handling_interruption,
            background_tasks=self.background.snapshot(),
            task_order=[t.name for t in self._sequence],
        )

    @property
    def estimated_finish_string(self) -> str:
        return format_finish_time(self.estimated_finish)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @_serialized
    def start(self, auto_run: bool = True, allow_infeasible: bool = False) -> ActionResult:
        if self.status != RunnerStatus.NOT_STARTED:
            return self._reject(Rejection.INVALID_STATE, f"Cannot start from {self.status.value}")
        if not self.plan.is_feasible and not allow_infeasible:
            raise InfeasibleScheduleError(self.plan)

        now = self.scheduler.now()
        self.started_at = now
        self.original_finish = now + timedelta(seconds=self.total_routine_duration)
        self.checklist.reset()
        logger.info(
            f"Starting routine with {len(self._sequence)} tasks, "
            f"{self.total_routine_duration / 60:.1f}m planned"
        )

        if not self._sequence:
            logger.warning("Routine started with no scheduled tasks.")
            self._complete_routine()
            return ActionResult.ok("No tasks scheduled")

        self.current_index = 0
        self._configure(self.current_index)
        self._set_running(auto_run)
        return ActionResult.ok()

    @_serialized
    def pause(self) -> ActionResult:
        if self.status != RunnerStatus.RUNNING:
            return self._reject(Rejection.INVALID_STATE, "Pause called but timer is not running")
        self._set_running(False)
        logger.info(f"Paused with {self._remaining:.1f}s remaining")
        return ActionResult.ok()

    @_serialized
    def resume(self) -> ActionResult:
        if self.status != RunnerStatus.PAUSED:
            return self._reject(Rejection.INVALID_STATE, "Resume called but runtime is not paused")
        self._set_running(True)
        logger.info(f"Resumed with {self._remaining:.1f}s remaining")
        return ActionResult.ok()

    @_serialized
    def end_routine(self) -> ActionResult:
        if self.status.is_terminal:
            return self._reject(Rejection.INVALID_STATE, "Routine already finished")
        self._stop_ticking()
        self.checklist.cancel_all()
        self.status = RunnerStatus.ENDED
        logger.info(
            f"Routine ended by user. Committed offset: {self.schedule_offset_seconds:.1f}s"
        )
        error = self._emit_summary(ended_by_user=True)
        self.background.clear()
        return ActionResult(True, payload=self.summary, persistence_error=error)

    # ------------------------------------------------------------------
    # Task transitions
    # ------------------------------------------------------------------
    @_serialized
    def mark_task_complete(self) -> ActionResult:
        current = self.current_task
        if current is None:
            return self._reject(Rejection.INVALID_STATE, "No task is active")
        if self._is_interruption(current):
            return self._finish_interruption()
        if not self.checklist.can_complete(current.task):
            done = self.checklist.completion_map.completed_count(current.task)
            return self._reject(
                Rejection.CHECKLIST_INCOMPLETE,
                f"'{current.name}' has {len(current.task.checklist_items) - done} "
                f"unchecked items",
            )
        return self._finish_current(skipped=False)

    @_serialized
    def skip_current_task(self) -> ActionResult:
        current = self.current_task
        if current is None:
            return self._reject(Rejection.INVALID_STATE, "No task is active")
        if self._is_interruption(current):
            return self._finish_interruption()
        return self._finish_current(skipped=True)

    @_serialized
    def reset_timer(self) -> ActionResult:
        current = self.current_task
        if current is None:
            return self._reject(Rejection.INVALID_STATE, "No task is active")
        self._set_running(False)
        self._parked_remaining.pop(current.task_id, None)
        self._remaining = current.allocated_duration
        logger.info(f"Timer reset for '{current.name}'")
        self.events.emit(EventType.STATE_CHANGED, self._snapshot_unlocked())
        return ActionResult.ok()

    @_serialized
    def delay_current_task(self, by: int | None = None) -> ActionResult:
        count = self.config.default_delay_count if by is None else by
        if self.current_task is None:
            return self._reject(Rejection.INVALID_STATE, "No task is active")
        if not self.can_delay_current_task:
            return self._reject(
                Rejection.INVALID_DELAY,
                f"Cannot delay task at index {self.current_index} of {len(self._sequence)}",
            )
        if count <= 0:
            return self._reject(Rejection.INVALID_DELAY, f"Delay count must be positive, got {count}")

        was_running = self.status == RunnerStatus.RUNNING
        self._stop_ticking()
        delayed = self._sequence.pop(self.current_index)
        self._park(delayed)
        self.checklist.cancel(delayed.task_id)
        insertion = min(self.current_index + count, len(self._sequence))
        self._sequence.insert(insertion, delayed)
        logger.info(f"Delayed '{delayed.name}' from {self.current_index} to {insertion}")

        self._configure(self.current_index)
        self._set_running(was_running)
        return ActionResult.ok(payload=insertion)

    @_serialized
    def reorder_tasks(self, from_indices: int | Iterable[int], to_index: int) -> ActionResult:
        """
        Move not-yet-reached tasks before the entry at ``to_index``.

        ``to_index`` is an insertion offset into the sequence as it is before the
        move; ``len(tasks)`` moves the tasks to the end.
        """
        if self.status.is_terminal:
            return self._reject(Rejection.INVALID_STATE, "Routine already finished")
        indices = [from_indices] if isinstance(from_indices, int) else sorted(set(from_indices))
        size = len(self._sequence)
        if (
            not indices
            or any(not self.current_index < i < size for i in indices)
            or not self.current_index < to_index <= size
        ):
            return self._reject(
                Rejection.INVALID_REORDER,
                f"Only tasks after index {self.current_index} can be reordered "
                f"(from={indices}, to={to_index})",
            )

        moved = [self._sequence[i] for i in indices]
        for i in reversed(indices):
            self._sequence.pop(i)
        insertion = to_index - sum(1 for i in indices if i < to_index)
        self._sequence[insertion:insertion] = moved
        logger.info(f"Reordered {[t.name for t in moved]} to index {insertion}")
        self.events.emit(EventType.STATE_CHANGED, self._snapshot_unlocked())
        return ActionResult.ok()

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------
    @_serialized
    def move_current_task_to_background(self) -> ActionResult:
        current = self.current_task
        if current is None:
            return self._reject(Rejection.INVALID_STATE, "No task is active")
        if self._is_interruption(current):
            return self._reject(Rejection.INTERRUPTION_ACTIVE, "Cannot background an interruption")
        if not self.background.has_capacity:
            return self._reject(
                Rejection.BACKGROUND_LIMIT,
                f"Background limit of {self.background.max_tasks} reached",
            )
        if not self.can_move_to_background:
            return self._reject(Rejection.INVALID_STATE, "The last task cannot be moved to background")

        was_running = self.status == RunnerStatus.RUNNING
        self._stop_ticking()
        self._sequence.pop(self.current_index)
        self.checklist.cancel(current.task_id)
        state = self.background.add(current, self._remaining)

        self._configure(self.current_index)
        self._set_running(was_running)
        self.events.emit(EventType.BACKGROUND_CHANGED, self.background.snapshot())
        return ActionResult.ok(payload=state.background_id)

    @_serialized
    def switch_background_task_to_foreground(self, background_id: str) -> ActionResult:
        if self.status not in ACTIVE_STATES:
            return self._reject(Rejection.INVALID_STATE, "Routine is not active")
        if self.is_handling_interruption:
            return self._reject(Rejection.INTERRUPTION_ACTIVE, "Finish the interruption first")
        if self.background.get(background_id) is None:
            return self._reject(
                Rejection.UNKNOWN_BACKGROUND_TASK, f"No background task {background_id}"
            )

        was_running = self.status == RunnerStatus.RUNNING
        self._stop_ticking()
        state = self.background.pop(background_id)

        demoted = self.current_task
        if demoted is not None:
            self._sequence.pop(self.current_index)
            self.checklist.cancel(demoted.task_id)
            self.background.add(demoted, self._remaining)

        self._bring_to_foreground(state)
        self._set_running(was_running)
        logger.info(f"Switched background task '{state.name}' to foreground")
        self.events.emit(EventType.BACKGROUND_CHANGED, self.background.snapshot())
        return ActionResult.ok()

    @_serialized
    def complete_background_task(self, background_id: str) -> ActionResult:
        if self.status not in ACTIVE_STATES:
            return self._reject(Rejection.INVALID_STATE, "Routine is not active")
        self._settle()
        state = self.background.pop(background_id)
        if state is None:
            return self._reject(
                Rejection.UNKNOWN_BACKGROUND_TASK, f"No background task {background_id}"
            )

        self._commit_offset(state.name, state.remaining_seconds)
        self.completed_duration += state.allocated_duration
        self.completed_count += 1
        self.checklist.mark_finished(state.task_id)
        event, error = self._record_completion(state.scheduled, state.actual_duration, True)
        self.events.emit(EventType.BACKGROUND_CHANGED, self.background.snapshot())
        return ActionResult(True, payload=event, persistence_error=error)

    # ------------------------------------------------------------------
    # Interruptions
    # ------------------------------------------------------------------
    @_serialized
    def handle_interruption(self) -> ActionResult:
        current = self.current_task
        if current is None:
            return self._reject(Rejection.INVALID_STATE, "No task is active")
        if self.is_handling_interruption:
            return self._reject(Rejection.INTERRUPTION_ACTIVE, "Already handling an interruption")

        self._stop_ticking()
        self._park(current, always=True)
        self.checklist.cancel(current.task_id)

        minutes = self.config.interruption_minutes
        interruption = ScheduledTask(
            task=TaskSpec(
                name=INTERRUPTION_NAME,
                min_duration=minutes,
                max_duration=minutes,
                essentiality=Essentiality.ESSENTIAL,
                should_track_average_time=False,
            ),
            allocated_duration=float(minutes * 60),
            is_session_task=True,
        )
        self._sequence.insert(self.current_index, interruption)
        self._interruption_id = interruption.task_id
        logger.info(f"Interruption started; '{current.name}' parked with {self._remaining:.0f}s")

        self._configure(self.current_index)
        self._set_running(True)
        return ActionResult.ok()

    # ------------------------------------------------------------------
    # Checklists
    # ------------------------------------------------------------------
    def checklist_items(self, task_id: str | None = None) -> list[ChecklistItem]:
        with self._lock:
            scheduled = self._find_task(task_id) if task_id else self.current_task
            if scheduled is None:
                return []
            return self.checklist.completion_map.items_for(scheduled.task)

    @_serialized
    def toggle_checklist_item(self, item_id: str) -> ActionResult:
        current = self.current_task
        if current is None:
            return self._reject(Rejection.INVALID_STATE, "No task is active")
        if not current.task.is_checklist_task:
            return self._reject(Rejection.INVALID_STATE, f"'{current.name}' is not a checklist task")
        value = self.checklist.toggle(current.task, item_id)
        if value is None:
            return self._reject(
                Rejection.UNKNOWN_CHECKLIST_ITEM, f"Unknown checklist item {item_id}"
            )
        self.events.emit(EventType.CHECKLIST_CHANGED, self.checklist_items(), task_id=current.task_id)
        return ActionResult.ok(payload=value)

    def _on_checklist_complete(self, task_id: str) -> bool:
        with self._lock:
            current = self.current_task
            if current is None or current.task_id != task_id:
                logger.debug(f"Checklist trigger for {task_id} ignored; task no longer current")
                return False
            return self.mark_task_complete().accepted

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _tick(self) -> None:
        with self._lock:
            if self.status != RunnerStatus.RUNNING:
                return
            self._settle()
            self.events.emit(EventType.TICK, self._snapshot_unlocked())

    def _settle(self, now: datetime | None = None) -> None:
        """Apply the wall-clock time elapsed since the last settle."""
        if self.status != RunnerStatus.RUNNING or self._last_settle is None:
            return
        now = now or self.scheduler.now()
        delta = (now - self._last_settle).total_seconds()
        self._last_settle = now
        if delta <= 0:
            return

        was_overrun = self._remaining < 0
        self._remaining -= delta
        crossed = self.background.advance(delta)
        if self._remaining < 0 and not was_overrun:
            current = self.current_task
            logger.warning(
                f"Task '{current.name if current else '?'}' timer passed 0; "
                f"entering overrun ({self._remaining:.1f}s)"
            )
            self.events.emit(EventType.OVERRUN_STARTED, current.task_id if current else None)
        for state in crossed:
            self.events.emit(EventType.OVERRUN_STARTED, state.task_id, background=True)

    def _set_running(self, running: bool) -> None:
        if running:
            self.status = RunnerStatus.RUNNING
            if self._tick_handle is None:
                self._last_settle = self.scheduler.now()
                self._tick_handle = self.scheduler.call_every(
                    self.config.tick_interval, self._tick
                )
        else:
            self._stop_ticking()
            self.status = RunnerStatus.PAUSED
        self.events.emit(EventType.STATE_CHANGED, self._snapshot_unlocked())

    def _stop_ticking(self) -> None:
        self._settle()
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None
        self._last_settle = None

    def _configure(self, index: int) -> None:
        scheduled = self._sequence[index]
        self.current_index = index
        self._remaining = self._parked_remaining.pop(
            scheduled.task_id, scheduled.allocated_duration
        )
        logger.info(
            f"Configuring task {index + 1}/{len(self._sequence)}: '{scheduled.name}', "
            f"allocated {scheduled.allocated_duration / 60:.1f}m, "
            f"remaining {self._remaining:.0f}s"
        )
        self.events.emit(EventType.TASK_STARTED, scheduled.task_id, index=index)

    def _park(self, scheduled: ScheduledTask, always: bool = False) -> None:
        if always or self._remaining != scheduled.allocated_duration:
            self._parked_remaining[scheduled.task_id] = self._remaining

    def _bring_to_foreground(self, state: BackgroundTaskState) -> None:
        self._sequence.insert(self.current_index, state.scheduled)
        self._parked_remaining[state.task_id] = state.remaining_seconds
        self._configure(self.current_index)

    def _commit_offset(self, name: str, remaining: float) -> None:
        # Finishing early moves the offset ahead (negative), overrun moves it behind
        if remaining < 0:
            self.schedule_offset_seconds += -remaining
        else:
            self.schedule_offset_seconds -= remaining
        logger.info(
            f"'{name}' finished with {remaining:.1f}s remaining; "
            f"schedule offset now {self.schedule_offset_seconds:.1f}s"
        )

    def _finish_current(self, skipped: bool) -> ActionResult:
        was_running = self.status == RunnerStatus.RUNNING
        self._stop_ticking()
        current = self._sequence[self.current_index]
        remaining = self._remaining

        self._commit_offset(current.name, remaining)
        self.completed_duration += current.allocated_duration
        self.checklist.mark_finished(current.task_id)

        event, error = None, None
        if skipped:
            self.skipped_count += 1
            logger.info(f"Skipped '{current.name}'")
            self.events.emit(EventType.TASK_SKIPPED, current.task_id)
        else:
            self.completed_count += 1
            actual = current.allocated_duration - remaining
            event, error = self._record_completion(current, actual, False)

        self.current_index += 1
        self._enter_next(was_running)
        return ActionResult(True, payload=event, persistence_error=error)

    def _finish_interruption(self) -> ActionResult:
        self._stop_ticking()
        interruption = self._sequence.pop(self.current_index)
        elapsed = max(0.0, interruption.allocated_duration - self._remaining)
        # Unplanned time: all of it is drift
        self.schedule_offset_seconds += elapsed
        self._interruption_id = None
        logger.info(
            f"Interruption finished after {elapsed:.0f}s; "
            f"schedule offset now {self.schedule_offset_seconds:.1f}s"
        )
        self._configure(self.current_index)
        self._set_running(True)
        return ActionResult.ok(payload=elapsed)

    def _enter_next(self, was_running: bool) -> None:
        if self.current_index < len(self._sequence):
            self._configure(self.current_index)
        elif self.background:
            state = self.background.pop(self.background.first().background_id)
            logger.info(
                f"No scheduled tasks left; bringing background task '{state.name}' forward"
            )
            self._bring_to_foreground(state)
        else:
            self._complete_routine()
            return
        self._set_running(was_running)

    def _complete_routine(self) -> None:
        self._stop_ticking()
        self.checklist.cancel_all()
        self.status = RunnerStatus.COMPLETE
        logger.info(
            f"Routine complete. Final schedule offset: {self.schedule_offset_seconds:.1f}s"
        )
        self._emit_summary(ended_by_user=False)

    def _record_completion(
        self, scheduled: ScheduledTask, actual: float, was_background: bool
    ):
        event = TaskCompletionEvent(
            task_id=scheduled.task_id,
            task_name=scheduled.name,
            allocated_duration=scheduled.allocated_duration,
            actual_duration=actual,
            completed_at=self.scheduler.now(),
            was_background=was_background,
        )
        self.completion_events.append(event)
        logger.info(
            f"Task '{scheduled.name}' completed in {actual:.1f}s "
            f"(allocated {scheduled.allocated_duration:.1f}s)"
        )
        error = self.events.deliver_completion(event)
        self.events.emit(EventType.TASK_COMPLETED, event)
        return event, error

    def _emit_summary(self, ended_by_user: bool):
        self.summary = SessionSummary(
            schedule_offset_seconds=self.schedule_offset_seconds,
            completed_count=self.completed_count,
            skipped_count=self.skipped_count,
            total_count=len(self.plan.scheduled_tasks),
            ended_by_user=ended_by_user,
            ended_at=self.scheduler.now(),
        )
        error = self.events.deliver_summary(self.summary)
        self.events.emit(EventType.SESSION_ENDED, self.summary)
        return error

    def _snapshot_unlocked(self) -> RuntimeSnapshot:
        # Callers already hold the lock; RLock makes the nested acquire safe
        return self.snapshot()

    def _find_task(self, task_id: str) -> ScheduledTask | None:
        for scheduled in self._sequence:
            if scheduled.task_id == task_id:
                return scheduled
        state = next((s for s in self.background if s.task_id == task_id), None)
        return state.scheduled if state else None

    def _is_interruption(self, scheduled: ScheduledTask) -> bool:
        return scheduled.task_id == self._interruption_id

    def _reject(self, reason: Rejection, message: str) -> ActionResult:
        logger.warning(f"Action rejected ({reason.value}): {message}")
        return ActionResult.rejected(reason, message)
