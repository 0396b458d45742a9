# Test configuration and fixtures
import os
from unittest.mock import Mock

import pytest

from HabitStacker.engine.clock import VirtualScheduler
from HabitStacker.engine.config import PlannerConfig, RuntimeConfig
from HabitStacker.engine.planner import SchedulePlan, TimeBudgetPlanner
from HabitStacker.engine.runtime import RoutineRuntime
from HabitStacker.shared.models import (
    ChecklistItem,
    Essentiality,
    ScheduledTask,
    TaskSpec,
)

# Set test environment variables
os.environ["REDIS_HOST"] = "localhost"
os.environ["REDIS_PORT"] = "6379"
os.environ["TESTING"] = "1"  # Signal that we're in test mode


@pytest.fixture(autouse=True)
def clean_habitstacker_env(monkeypatch):
    """Keep HABITSTACKER_* overrides from leaking into tests."""
    for name in list(os.environ):
        if name.startswith("HABITSTACKER_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def scheduler():
    """Virtual clock starting at 07:00 UTC."""
    return VirtualScheduler()


@pytest.fixture
def runtime_config():
    """Default runtime configuration."""
    return RuntimeConfig()


@pytest.fixture
def planner():
    """Planner with the default 15/5 minute buffers."""
    return TimeBudgetPlanner(PlannerConfig())


@pytest.fixture
def make_task():
    """Factory for TaskSpec objects with minute durations."""

    def _make(name, min_duration=5, max_duration=None, essentiality=Essentiality.CORE, **kwargs):
        return TaskSpec(
            name=name,
            min_duration=min_duration,
            max_duration=min_duration if max_duration is None else max_duration,
            essentiality=essentiality,
            **kwargs,
        )

    return _make


@pytest.fixture
def morning_tasks(make_task):
    """Example morning routine."""
    return [
        make_task("Wake up", 2, 2, Essentiality.ESSENTIAL),
        make_task("Stretch", 5, 10, Essentiality.CORE),
        make_task("Shower", 10, 15, Essentiality.ESSENTIAL),
        make_task("Journal", 5, 15, Essentiality.OPTIONAL),
        make_task("Breakfast", 10, 20, Essentiality.CORE),
    ]


@pytest.fixture
def checklist_task():
    """Checklist task with three ordered items."""
    return TaskSpec(
        name="Pack bag",
        min_duration=5,
        max_duration=5,
        is_checklist_task=True,
        checklist_items=[
            ChecklistItem(title="Laptop", order=0),
            ChecklistItem(title="Charger", order=1),
            ChecklistItem(title="Keys", order=2),
        ],
    )


@pytest.fixture
def build_plan():
    """Build a feasible plan directly from (task, allocated minutes) pairs or names."""

    def _build(*entries, feasible=True):
        scheduled = []
        for entry in entries:
            if isinstance(entry, TaskSpec):
                task, minutes = entry, entry.min_duration
            elif isinstance(entry, tuple):
                task, minutes = entry
                if isinstance(task, str):
                    task = TaskSpec(name=task, min_duration=minutes, max_duration=minutes)
            else:
                raise TypeError(f"Unsupported plan entry: {entry!r}")
            scheduled.append(ScheduledTask(task=task, allocated_duration=minutes * 60.0))
        total = sum(t.allocated_duration for t in scheduled)
        return SchedulePlan(
            scheduled_tasks=scheduled,
            is_feasible=feasible,
            total_available_time=total + 900.0,
            effective_buffer=900.0,
            effective_available_time=total,
            minimum_buffer=300.0,
        )

    return _build


@pytest.fixture
def recording_sink():
    """CompletionSink that keeps everything it receives."""

    class RecordingSink:
        def __init__(self):
            self.completions = []
            self.summaries = []

        def record_completion(self, event):
            self.completions.append(event)

        def record_summary(self, summary):
            self.summaries.append(summary)

    return RecordingSink()


@pytest.fixture
def make_runtime(scheduler, runtime_config, build_plan, recording_sink):
    """Factory for a runtime over named tasks with allocated minutes."""

    def _make(*entries, config=None, sink=recording_sink, start=True, auto_run=True):
        runtime = RoutineRuntime(
            build_plan(*entries),
            scheduler=scheduler,
            config=config or runtime_config,
            sink=sink,
        )
        if start:
            runtime.start(auto_run=auto_run)
        return runtime

    return _make


@pytest.fixture
def mock_redis():
    """Mock Redis client for testing."""
    mock_redis = Mock()
    mock_redis.ping.return_value = True
    mock_redis.get.return_value = None
    mock_redis.set.return_value = True
    mock_redis.lpush.return_value = 1
    mock_redis.rpush.return_value = 1
    mock_redis.lrange.return_value = []
    return mock_redis
