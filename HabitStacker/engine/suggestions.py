"""
Duration suggestions for HabitStacker
Compares recorded completion times with each task's minimum duration and
proposes a new duration when the habit has clearly drifted.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Mapping, Sequence

from pydantic import BaseModel

from HabitStacker.shared.models import TaskSpec

logger = logging.getLogger(__name__)

MIN_COMPLETIONS = 30
THRESHOLD_PERCENT = 30.0


class TaskDurationSuggestion(BaseModel):
    task_id: str
    task_name: str
    current_duration: int  # minutes
    suggested_duration: int  # minutes
    average_completion_time: float  # seconds
    completion_count: int

    @property
    def percentage_difference(self) -> float:
        if self.current_duration == 0:
            return 0.0
        return abs(self.current_duration - self.suggested_duration) / self.current_duration * 100

    @property
    def change_description(self) -> str:
        relation = "less" if self.suggested_duration < self.current_duration else "more"
        return (
            f"Task usually takes {relation} time "
            f"({self.suggested_duration} min vs {self.current_duration} min)"
        )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def suggest_durations(
    tasks: Iterable[TaskSpec],
    history: Mapping[str, Sequence[float]],
    min_completions: int = MIN_COMPLETIONS,
    threshold_percent: float = THRESHOLD_PERCENT,
) -> list[TaskDurationSuggestion]:
    """
    Build duration suggestions from completion history.

    Args:
        tasks: Tasks to consider; duplicates by id are checked once.
        history: task id -> recorded actual durations in seconds.
        min_completions: Completions needed before the average is trusted.
        threshold_percent: Minimum difference from ``min_duration`` to report.

    Returns:
        One suggestion per qualifying task, in the order the tasks were given.
    """
    suggestions = []
    seen: set[str] = set()

    for task in tasks:
        if task.id in seen:
            continue
        seen.add(task.id)

        if not task.should_track_average_time:
            continue
        times = history.get(task.id, ())
        if len(times) < min_completions:
            logger.debug(
                f"Task '{task.name}' has only {len(times)} completions, need {min_completions}"
            )
            continue
        if task.min_duration <= 0:
            continue

        average = sum(times) / len(times)
        current_seconds = task.min_seconds
        percent = abs(average - current_seconds) / current_seconds * 100
        logger.debug(
            f"Task '{task.name}': avg={average:.1f}s, current={current_seconds:.0f}s, "
            f"diff={percent:.1f}%"
        )
        if percent < threshold_percent:
            continue

        suggestion = TaskDurationSuggestion(
            task_id=task.id,
            task_name=task.name,
            current_duration=task.min_duration,
            suggested_duration=_round_half_up(average / 60),
            average_completion_time=average,
            completion_count=len(times),
        )
        logger.info(f"Suggestion for '{task.name}': {suggestion.change_description}")
        suggestions.append(suggestion)

    return suggestions
