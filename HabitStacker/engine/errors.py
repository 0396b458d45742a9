"""
Errors and action results for the routine engine.

Fatal conditions raise a ``RoutineError`` subclass. Recoverable rejections
(a reorder touching the current task, a delay with nothing after it, an
unfinished checklist) are returned as an ``ActionResult`` so callers can
surface them without unwinding.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .planner import SchedulePlan


class RoutineError(Exception):
    """Base class for routine engine errors"""


class InfeasibleScheduleError(RoutineError):
    def __init__(self, plan: SchedulePlan):
        self.plan = plan
        super().__init__(
            f"Essential tasks need {plan.essential_time / 60:.1f}m but only "
            f"{plan.total_available_time / 60:.1f}m are available "
            f"(minimum buffer {plan.minimum_buffer / 60:.0f}m)"
        )


class PersistenceError(RoutineError):
    """A collaborator failed to store an event. Runtime state is kept as is."""

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class Rejection(str, Enum):
    INVALID_STATE = "invalid_state"
    INVALID_REORDER = "invalid_reorder"
    INVALID_DELAY = "invalid_delay"
    CHECKLIST_INCOMPLETE = "checklist_incomplete"
    BACKGROUND_LIMIT = "background_limit"
    UNKNOWN_BACKGROUND_TASK = "unknown_background_task"
    UNKNOWN_CHECKLIST_ITEM = "unknown_checklist_item"
    INTERRUPTION_ACTIVE = "interruption_active"


@dataclass
class ActionResult:
    accepted: bool
    reason: Rejection | None = None
    message: str = ""
    persistence_error: PersistenceError | None = None
    payload: Any = None

    def __bool__(self) -> bool:
        return self.accepted

    @classmethod
    def ok(cls, message: str = "", payload: Any = None) -> ActionResult:
        return cls(True, message=message, payload=payload)

    @classmethod
    def rejected(cls, reason: Rejection, message: str) -> ActionResult:
        return cls(False, reason=reason, message=message)
