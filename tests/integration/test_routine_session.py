# Integration tests: planning and running a full routine session
import asyncio
from unittest.mock import patch

import pytest

from HabitStacker.engine import (
    AsyncioScheduler,
    RoutineRuntime,
    RuntimeConfig,
    TimeBudgetPlanner,
    suggest_durations,
)
from HabitStacker.engine.events import EventType
from HabitStacker.shared.models import RoutineDefinition, RunnerStatus
from HabitStacker.shared.redis_utils import RedisCompletionSink, RedisConfig, SyncRedisClient


@pytest.mark.integration
class TestMorningSession:
    """Plan a morning routine and drive it through a realistic session."""

    @pytest.fixture
    def session(self, morning_tasks, planner, scheduler, runtime_config, mock_redis):
        with patch("redis.Redis", return_value=mock_redis):
            client = SyncRedisClient(RedisConfig())
        sink = RedisCompletionSink(client, "morning-1")
        plan = planner.plan(morning_tasks, 60 * 60)
        runtime = RoutineRuntime(plan, scheduler=scheduler, config=runtime_config, sink=sink)
        runtime.subscribe(sink.checkpoint_listener)
        return runtime

    def test_full_session(self, session, scheduler, mock_redis):
        """Mix of early, late, delayed and background tasks ends with a consistent summary."""
        events = []
        session.subscribe(lambda event: events.append(event.type))
        session.start()
        # Wake up (2m): done in 1m
        scheduler.advance(60)
        session.mark_task_complete()
        # Stretch (10m): postponed behind Shower
        session.delay_current_task(by=1)
        assert session.current_task.name == "Shower"
        # Shower (10m): runs 2m long
        scheduler.advance(720)
        session.mark_task_complete()
        assert session.schedule_offset_seconds == 60
        # Stretch runs in the background while journaling
        assert session.current_task.name == "Stretch"
        background_id = session.move_current_task_to_background().payload
        assert session.current_task.name == "Journal"
        scheduler.advance(300)
        session.complete_background_task(background_id)
        session.skip_current_task()
        # Breakfast (18m): on time
        assert session.current_task.name == "Breakfast"
        scheduler.advance(18 * 60)
        session.mark_task_complete()

        assert session.status == RunnerStatus.COMPLETE
        summary = session.summary
        assert summary.completed_count == 4
        assert summary.skipped_count == 1
        assert summary.total_count == 5
        # -60 Wake up, +120 Shower, -300 Stretch; Journal and Breakfast used their full time
        assert summary.schedule_offset_seconds == -240
        assert session.overall_progress_fraction == 1.0
        assert EventType.SESSION_ENDED in events
        assert mock_redis.lpush.call_count == 5
        assert session.persistence_errors == []

    def test_checkpoints_written(self, session, mock_redis):
        """State changes are checkpointed through the sink listener."""
        session.start()
        session.pause()

        assert mock_redis.set.called
        mock_redis.sadd.assert_called_with("habitstacker:sessions:active", "morning-1")

    def test_history_feeds_suggestions(self, morning_tasks, mock_redis):
        """Completion history from Redis drives duration suggestions."""
        shower = morning_tasks[2]
        mock_redis.lrange.side_effect = lambda key, start, end: ["300"] * 30 if shower.id in key else []
        with patch("redis.Redis", return_value=mock_redis):
            client = SyncRedisClient(RedisConfig())

        history = client.completion_history(t.id for t in morning_tasks)
        suggestions = suggest_durations(morning_tasks, history)

        assert [s.task_name for s in suggestions] == ["Shower"]
        assert suggestions[0].suggested_duration == 5

    def test_tight_budget_keeps_every_task(self, morning_tasks):
        """An over-tight budget keeps every task and flags the overcommit."""
        plan = TimeBudgetPlanner().plan(morning_tasks, 20 * 60)

        assert plan.is_feasible
        assert len(plan) == len(morning_tasks)
        assert not plan.fits_all_minimums


@pytest.mark.integration
class TestAsyncioSession:
    """Run a session on a real event loop."""

    @pytest.mark.asyncio
    async def test_ticks_on_event_loop(self, morning_tasks):
        """The asyncio scheduler drives countdowns and the routine completes."""
        routine = RoutineDefinition(name="Morning", tasks=morning_tasks)
        config = RuntimeConfig(tick_interval=0.01)
        runtime = RoutineRuntime.from_routine(routine, 3600, scheduler=AsyncioScheduler(), config=config)
        ticks = []
        runtime.subscribe(lambda event: event.type == EventType.TICK and ticks.append(event))

        runtime.start()
        await asyncio.sleep(0.1)

        assert ticks
        assert runtime.remaining_seconds < 120
        while runtime.status == RunnerStatus.RUNNING:
            runtime.mark_task_complete()
        assert runtime.status == RunnerStatus.COMPLETE
