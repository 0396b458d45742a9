from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum, IntEnum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _new_id() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class Essentiality(IntEnum):
    OPTIONAL = 1
    CORE = 2
    ESSENTIAL = 3

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            # Accept tier names as well as numeric values
            value = value.strip().upper()
            for member in cls:
                if member.name == value:
                    return member
        return None


class RunnerStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETE = "complete"
    ENDED = "ended"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            # Normalize to lowercase before lookup
            value = value.lower()
            for member in cls:
                if member.value == value:
                    return member
        return None

    @property
    def is_terminal(self) -> bool:
        return self in (RunnerStatus.COMPLETE, RunnerStatus.ENDED)


class ChecklistItem(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    is_completed: bool = False
    order: int = 0


class TaskSpec(BaseModel):
    """A task template: duration range (minutes), tier and optional checklist."""

    id: str = Field(default_factory=_new_id)
    name: str
    min_duration: int = 5
    max_duration: int = 5
    essentiality: Essentiality = Essentiality.CORE
    checklist_items: list[ChecklistItem] = Field(default_factory=list)
    is_checklist_task: bool = False
    should_track_average_time: bool = True

    @model_validator(mode="after")
    def _check_durations(self) -> "TaskSpec":
        if self.min_duration < 0:
            raise ValueError(f"min_duration must be >= 0 (task {self.name!r})")
        if self.max_duration < self.min_duration:
            raise ValueError(
                f"max_duration ({self.max_duration}) is below min_duration "
                f"({self.min_duration}) for task {self.name!r}"
            )
        return self

    @property
    def min_seconds(self) -> float:
        return float(self.min_duration * 60)

    @property
    def max_seconds(self) -> float:
        return float(self.max_duration * 60)

    @property
    def ordered_checklist(self) -> list[ChecklistItem]:
        return sorted(self.checklist_items, key=lambda item: item.order)


class RoutineDefinition(BaseModel):
    """Ordered, mutable list of tasks a session is built from."""

    id: str = Field(default_factory=_new_id)
    name: str
    tasks: list[TaskSpec] = Field(default_factory=list)

    def add_task(self, task: TaskSpec, position: int | None = None) -> None:
        if position is None:
            self.tasks.append(task)
        else:
            self.tasks.insert(position, task)

    def remove_task(self, task_id: str) -> TaskSpec | None:
        for index, task in enumerate(self.tasks):
            if task.id == task_id:
                return self.tasks.pop(index)
        return None

    def move_task(self, from_index: int, to_index: int) -> None:
        if not 0 <= from_index < len(self.tasks):
            raise IndexError(f"Invalid task index: {from_index}")
        task = self.tasks.pop(from_index)
        self.tasks.insert(min(max(to_index, 0), len(self.tasks)), task)


class ScheduledTask(BaseModel):
    """A task with the concrete duration (seconds) chosen for one session."""

    model_config = ConfigDict(frozen=True)

    task: TaskSpec
    allocated_duration: float
    is_session_task: bool = False

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def name(self) -> str:
        return self.task.name


class BackgroundTaskSnapshot(BaseModel):
    background_id: str
    task_id: str
    task_name: str
    allocated_duration: float
    remaining_seconds: float
    is_overrun: bool


class TaskCompletionEvent(BaseModel):
    task_id: str
    task_name: str
    allocated_duration: float
    actual_duration: float
    completed_at: datetime = Field(default_factory=utc_now)
    was_background: bool = False


class SessionSummary(BaseModel):
    schedule_offset_seconds: float
    completed_count: int
    skipped_count: int = 0
    total_count: int
    ended_by_user: bool = False
    ended_at: datetime = Field(default_factory=utc_now)


class RuntimeSnapshot(BaseModel):
    status: RunnerStatus
    phase: str
    current_index: int
    current_task_id: str | None = None
    current_task_name: str | None = None
    next_task_name: str | None = None
    remaining_seconds: float = 0.0
    is_overrun: bool = False
    overrun_seconds: float = 0.0
    schedule_offset_seconds: float = 0.0
    live_offset_seconds: float = 0.0
    completed_duration: float = 0.0
    total_routine_duration: float = 0.0
    is_routine_complete: bool = False
    task_progress_fraction: float = 0.0
    overall_progress_fraction: float = 0.0
    remaining_time_string: str = "00:00"
    schedule_offset_string: str = "On schedule"
    estimated_finish: datetime | None = None
    is_handling_interruption: bool = False
    background_tasks: list[BackgroundTaskSnapshot] = Field(default_factory=list)
    task_order: list[str] = Field(default_factory=list)
