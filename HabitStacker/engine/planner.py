"""
Time Budget Planner for HabitStacker
Allocates a concrete duration to every task of a routine out of a fixed time budget.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from HabitStacker.shared.models import Essentiality, ScheduledTask, TaskSpec

from .config import PlannerConfig, get_planner_config

logger = logging.getLogger(__name__)

# Tiers that may receive slack above their minimum, in distribution order
SLACK_TIERS = (Essentiality.CORE, Essentiality.OPTIONAL)


@dataclass
class SchedulePlan:
    """Planner output: scheduled tasks in routine order plus the budget breakdown."""

    scheduled_tasks: list[ScheduledTask] = field(default_factory=list)
    is_feasible: bool = True
    total_available_time: float = 0.0
    essential_time: float = 0.0
    core_time: float = 0.0
    effective_buffer: float = 0.0
    effective_available_time: float = 0.0
    minimum_buffer: float = 0.0

    @property
    def total_allocated(self) -> float:
        return sum(t.allocated_duration for t in self.scheduled_tasks)

    @property
    def overcommitted_seconds(self) -> float:
        """How far the minimum durations alone exceed the effective budget."""
        return max(0.0, self.total_allocated - self.effective_available_time)

    @property
    def fits_all_minimums(self) -> bool:
        return self.overcommitted_seconds == 0.0

    def __len__(self) -> int:
        return len(self.scheduled_tasks)


@dataclass
class DurationLevels:
    """Minimum minutes needed per inclusion level"""

    essential: int = 0
    core_and_essential: int = 0
    all: int = 0


class TimeBudgetPlanner:
    """Turns an ordered task list and a time budget into a session plan"""

    def __init__(self, config: PlannerConfig | None = None):
        self.config = config or get_planner_config()

    def compute_effective_buffer(
        self, essential_time: float, total_available_time: float
    ) -> float:
        standard = self.config.standard_buffer
        minimum = self.config.minimum_buffer

        if (
            essential_time > total_available_time - standard
            and essential_time <= total_available_time - minimum
        ):
            buffer = total_available_time - essential_time
        else:
            buffer = standard
        return min(max(buffer, minimum), standard)

    def plan(
        self, tasks: Iterable[TaskSpec], total_available_time: float
    ) -> SchedulePlan:
        tasks = list(tasks)
        total = max(0.0, float(total_available_time))
        minimum_buffer = self.config.minimum_buffer

        if not tasks:
            logger.info("No tasks to schedule; returning an empty plan.")
            return SchedulePlan(
                is_feasible=True,
                total_available_time=total,
                effective_buffer=self.config.standard_buffer,
                effective_available_time=max(0.0, total - self.config.standard_buffer),
                minimum_buffer=minimum_buffer,
            )

        essential_time = sum(
            t.min_seconds for t in tasks if t.essentiality == Essentiality.ESSENTIAL
        )
        core_time = sum(
            t.min_seconds for t in tasks if t.essentiality >= Essentiality.CORE
        )
        is_feasible = essential_time <= total - minimum_buffer
        effective_buffer = self.compute_effective_buffer(essential_time, total)
        effective_available = max(0.0, total - effective_buffer)

        logger.info(
            f"Planning {len(tasks)} tasks with {total / 60:.1f}m available: "
            f"essential={essential_time / 60:.1f}m, core={core_time / 60:.1f}m, "
            f"buffer={effective_buffer / 60:.1f}m"
        )
        if not is_feasible:
            logger.warning(
                f"Essential tasks ({essential_time / 60:.1f}m) do not fit in "
                f"{total / 60:.1f}m minus the {minimum_buffer / 60:.0f}m minimum buffer"
            )

        allocations = self._allocate(tasks, effective_available)
        scheduled = [
            ScheduledTask(task=task, allocated_duration=allocations[index])
            for index, task in enumerate(tasks)
        ]

        plan = SchedulePlan(
            scheduled_tasks=scheduled,
            is_feasible=is_feasible,
            total_available_time=total,
            essential_time=essential_time,
            core_time=core_time,
            effective_buffer=effective_buffer,
            effective_available_time=effective_available,
            minimum_buffer=minimum_buffer,
        )
        if not plan.fits_all_minimums:
            logger.warning(
                f"Minimum durations exceed the budget by "
                f"{plan.overcommitted_seconds / 60:.1f}m; caller should demote tasks"
            )
        logger.info(
            f"Plan complete. Allocated {plan.total_allocated / 60:.1f}m of "
            f"{effective_available / 60:.1f}m"
        )
        return plan

    def plan_until(
        self, tasks: Iterable[TaskSpec], end_time: datetime, now: datetime
    ) -> SchedulePlan:
        return self.plan(tasks, (end_time - now).total_seconds())

    def _allocate(self, tasks: list[TaskSpec], budget: float) -> list[float]:
        # Every task starts at its minimum; nothing is ever dropped here
        allocations = [task.min_seconds for task in tasks]
        slack = budget - sum(allocations)
        if slack <= 0:
            return allocations

        for tier in SLACK_TIERS:
            for index, task in enumerate(tasks):
                if slack <= 0:
                    return allocations
                if task.essentiality != tier:
                    continue
                extra = min(task.max_seconds - task.min_seconds, slack)
                if extra > 0:
                    allocations[index] += extra
                    slack -= extra
                    logger.debug(
                        f"- '{task.name}' +{extra / 60:.1f}m slack "
                        f"({slack / 60:.1f}m left)"
                    )
        return allocations


def plan_schedule(
    tasks: Iterable[TaskSpec],
    total_available_time: float,
    config: PlannerConfig | None = None,
) -> SchedulePlan:
    """Convenience wrapper around ``TimeBudgetPlanner.plan``"""
    return TimeBudgetPlanner(config).plan(tasks, total_available_time)


def estimate_level_durations(tasks: Iterable[TaskSpec]) -> DurationLevels:
    """Sum of minimum durations (whole minutes) for each inclusion level"""
    tasks = list(tasks)

    def _minutes(level: Essentiality) -> int:
        return sum(t.min_duration for t in tasks if t.essentiality >= level)

    return DurationLevels(
        essential=_minutes(Essentiality.ESSENTIAL),
        core_and_essential=_minutes(Essentiality.CORE),
        all=_minutes(Essentiality.OPTIONAL),
    )


def determine_duration_level(
    available_minutes: int, durations: DurationLevels, buffer_minutes: int = 0
) -> int:
    """
    Pick the richest level that fits.

    Returns 3 for all tasks, 2 for core and essential, 1 for essential only,
    0 when not even the essential tasks fit.
    """
    if available_minutes >= durations.all + buffer_minutes:
        return 3
    if available_minutes >= durations.core_and_essential + buffer_minutes:
        return 2
    if available_minutes >= durations.essential + buffer_minutes:
        return 1
    return 0
