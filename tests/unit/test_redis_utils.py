# Unit tests for Redis event delivery
import json
from unittest.mock import Mock, patch

import pytest

import HabitStacker.shared.redis_utils as redis_utils
from HabitStacker.engine.events import CompletionSink, RuntimeEvent
from HabitStacker.shared.models import RunnerStatus, RuntimeSnapshot, SessionSummary, TaskCompletionEvent
from HabitStacker.shared.redis_utils import (
    RedisCompletionSink,
    RedisConfig,
    RedisKeys,
    RedisQueues,
    SyncRedisClient,
    get_sync_redis_client,
)


@pytest.fixture
def completion():
    return TaskCompletionEvent(task_id="t-1", task_name="Shower", allocated_duration=600.0, actual_duration=540.0)


@pytest.fixture
def client(mock_redis):
    with patch("redis.Redis", return_value=mock_redis):
        yield SyncRedisClient(RedisConfig())


@pytest.mark.unit
class TestRedisConfig:
    """Test Redis configuration."""

    def test_defaults(self):
        """Defaults point at a local server."""
        config = RedisConfig()
        assert config.url == "redis://localhost:6379/0"

    def test_from_env(self, monkeypatch):
        """Connection settings come from the environment."""
        monkeypatch.setenv("REDIS_HOST", "redis.internal")
        monkeypatch.setenv("REDIS_PORT", "6380")
        monkeypatch.setenv("REDIS_DB", "2")
        config = RedisConfig.from_env()

        assert (config.host, config.port, config.db) == ("redis.internal", 6380, 2)

    def test_session_queue_name(self):
        """Session queues extend the base name."""
        assert RedisQueues.session_specific(RedisQueues.COMPLETIONS, "s1") == "habitstacker:queue:completions:s1"


@pytest.mark.unit
class TestSyncRedisClient:
    """Test the Redis client."""

    def test_send_completion(self, client, mock_redis, completion):
        """Completions are queued and appended to task history."""
        client.send_completion("s1", completion)

        queue, data = mock_redis.lpush.call_args[0]
        payload = json.loads(data)
        assert queue == RedisQueues.COMPLETIONS
        assert payload["sessionId"] == "s1"
        assert payload["task_name"] == "Shower"
        mock_redis.rpush.assert_called_once_with(
            RedisKeys.TASK_COMPLETION_TIMES.format(task_id="t-1"), 540.0
        )

    def test_send_summary(self, client, mock_redis):
        """Summaries are queued, stored and the session deactivated."""
        summary = SessionSummary(schedule_offset_seconds=-60, completed_count=3, total_count=3)
        client.send_summary("s1", summary)

        assert mock_redis.lpush.call_args[0][0] == RedisQueues.SUMMARIES
        mock_redis.srem.assert_called_once_with(RedisKeys.ACTIVE_SESSIONS, "s1")

    def test_completion_history(self, client, mock_redis):
        """History values are parsed as floats."""
        mock_redis.lrange.return_value = ["300", "320.5"]
        assert client.completion_history(["t-1"]) == {"t-1": [300.0, 320.5]}

    def test_checkpoint_roundtrip(self, client, mock_redis):
        """Checkpoints restore as snapshots."""
        snapshot = RuntimeSnapshot(status=RunnerStatus.PAUSED, phase="paused", current_index=1)
        client.checkpoint("s1", snapshot)
        stored = mock_redis.set.call_args[0][1]
        mock_redis.get.return_value = stored

        assert client.restore_checkpoint("s1") == snapshot
        mock_redis.sadd.assert_called_once_with(RedisKeys.ACTIVE_SESSIONS, "s1")

    def test_restore_missing_checkpoint(self, client, mock_redis):
        """A missing checkpoint restores as None."""
        mock_redis.get.return_value = None
        assert client.restore_checkpoint("s1") is None

    @patch("redis.Redis")
    def test_global_client(self, mock_redis_class, monkeypatch):
        """The global client is created once."""
        mock_redis_class.return_value = Mock()
        monkeypatch.setattr(redis_utils, "_sync_client", None)

        client = get_sync_redis_client(RedisConfig(host="localhost", port=6379, db=0))
        assert get_sync_redis_client() is client
        assert client.config.port == 6379


@pytest.mark.unit
class TestRedisCompletionSink:
    """Test the runtime sink adapter."""

    def test_is_completion_sink(self, client):
        """The adapter satisfies the sink protocol."""
        assert isinstance(RedisCompletionSink(client, "s1"), CompletionSink)

    def test_forwards_to_client(self, completion):
        """Completions and summaries go to the client with the session id."""
        client = Mock()
        sink = RedisCompletionSink(client, "s1")
        summary = SessionSummary(schedule_offset_seconds=0, completed_count=1, total_count=1)

        sink.record_completion(completion)
        sink.record_summary(summary)

        client.send_completion.assert_called_once_with("s1", completion)
        client.send_summary.assert_called_once_with("s1", summary)

    def test_checkpoint_listener_skips_ticks(self):
        """Only non-tick snapshots are checkpointed."""
        client = Mock()
        sink = RedisCompletionSink(client, "s1")
        snapshot = RuntimeSnapshot(status=RunnerStatus.RUNNING, phase="running", current_index=0)

        sink.checkpoint_listener(RuntimeEvent(type="tick", payload=snapshot))
        sink.checkpoint_listener(RuntimeEvent(type="state_changed", payload=snapshot))
        sink.checkpoint_listener(RuntimeEvent(type="task_started", payload="t-1"))

        client.checkpoint.assert_called_once_with("s1", snapshot)

    def test_runtime_failure_becomes_persistence_error(self, make_runtime, mock_redis):
        """A Redis outage is reported without stopping the routine."""
        mock_redis.lpush.side_effect = ConnectionError("redis down")
        with patch("redis.Redis", return_value=mock_redis):
            sink = RedisCompletionSink(SyncRedisClient(RedisConfig()), "s1")
        runtime = make_runtime(("A", 5), ("B", 5), sink=sink)

        result = runtime.mark_task_complete()

        assert result
        assert result.persistence_error is not None
        assert runtime.current_task.name == "B"
