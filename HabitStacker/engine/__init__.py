"""
Routine engine for HabitStacker
Time budget planning and the tick-driven routine runtime
"""

from .background import BackgroundTaskPool, BackgroundTaskState
from .checklist import ChecklistCompletionMap, ChecklistGate
from .clock import AsyncioScheduler, Scheduler, TimerHandle, VirtualScheduler
from .config import PlannerConfig, RuntimeConfig, get_planner_config, get_runtime_config
from .errors import (
    ActionResult,
    InfeasibleScheduleError,
    PersistenceError,
    Rejection,
    RoutineError,
)
from .events import CompletionSink, EventDispatcher, EventType, RuntimeEvent
from .planner import (
    DurationLevels,
    SchedulePlan,
    TimeBudgetPlanner,
    determine_duration_level,
    estimate_level_durations,
    plan_schedule,
)
from .runtime import RoutineRuntime
from .suggestions import TaskDurationSuggestion, suggest_durations

__all__ = [
    "RoutineRuntime",
    "TimeBudgetPlanner",
    "SchedulePlan",
    "DurationLevels",
    "plan_schedule",
    "estimate_level_durations",
    "determine_duration_level",
    "Scheduler",
    "VirtualScheduler",
    "AsyncioScheduler",
    "TimerHandle",
    "PlannerConfig",
    "RuntimeConfig",
    "get_planner_config",
    "get_runtime_config",
    "ActionResult",
    "Rejection",
    "RoutineError",
    "InfeasibleScheduleError",
    "PersistenceError",
    "CompletionSink",
    "EventDispatcher",
    "EventType",
    "RuntimeEvent",
    "BackgroundTaskPool",
    "BackgroundTaskState",
    "ChecklistCompletionMap",
    "ChecklistGate",
    "TaskDurationSuggestion",
    "suggest_durations",
]
