"""
Event delivery for the routine runtime.

Listeners get pushed every runtime event; a ``CompletionSink`` is the
persistence collaborator that stores completion events and session summaries.
Failures on either side are logged and reported, never allowed to roll back
or interrupt the state machine.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable

from HabitStacker.shared.models import SessionSummary, TaskCompletionEvent

from .errors import PersistenceError

logger = logging.getLogger(__name__)


class EventType:
    STATE_CHANGED = "state_changed"
    TICK = "tick"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_SKIPPED = "task_skipped"
    OVERRUN_STARTED = "overrun_started"
    BACKGROUND_CHANGED = "background_changed"
    CHECKLIST_CHANGED = "checklist_changed"
    SESSION_ENDED = "session_ended"


@dataclass
class RuntimeEvent:
    type: str
    payload: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[RuntimeEvent], Any]


@runtime_checkable
class CompletionSink(Protocol):
    def record_completion(self, event: TaskCompletionEvent) -> None: ...

    def record_summary(self, summary: SessionSummary) -> None: ...


class EventDispatcher:
    """Fan-out to listeners plus guarded calls into the persistence sink"""

    def __init__(self, sink: CompletionSink | None = None):
        self.sink = sink
        self._listeners: list[Listener] = []
        self.persistence_errors: list[PersistenceError] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event_type: str, payload: Any = None, **metadata: Any) -> None:
        event = RuntimeEvent(type=event_type, payload=payload, metadata=metadata)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    f"Listener failed while handling '{event_type}': {e}", exc_info=True
                )

    def deliver_completion(self, event: TaskCompletionEvent) -> PersistenceError | None:
        if self.sink is None:
            return None
        return self._guarded(
            f"record_completion({event.task_id})",
            lambda: self.sink.record_completion(event),
        )

    def deliver_summary(self, summary: SessionSummary) -> PersistenceError | None:
        if self.sink is None:
            return None
        return self._guarded("record_summary", lambda: self.sink.record_summary(summary))

    def _guarded(self, operation: str, call: Callable[[], None]) -> PersistenceError | None:
        try:
            call()
        except Exception as e:
            error = PersistenceError(operation, e)
            self.persistence_errors.append(error)
            logger.error(f"Persistence collaborator error: {error}", exc_info=True)
            return error
        return None
