"""
Redis utilities for HabitStacker
Delivers completion events and session summaries to downstream consumers and
keeps per-task completion history for duration suggestions
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Iterable

try:
    import redis
except ImportError:
    raise ImportError("Redis is required. Install with: pip install redis")

from HabitStacker.shared.models import (
    RuntimeSnapshot,
    SessionSummary,
    TaskCompletionEvent,
)

logger = logging.getLogger(__name__)


class RedisConfig:
    """Redis configuration"""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        url: str | None = None,
    ):
        self.host = host
        self.port = port
        self.db = db
        self.url = url or f"redis://{host}:{port}/{db}"

    @classmethod
    def from_env(cls) -> RedisConfig:
        return cls(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            db=int(os.getenv("REDIS_DB", "0")),
        )


class RedisQueues:
    """Redis queue naming convention"""

    COMPLETIONS = "habitstacker:queue:completions"
    SUMMARIES = "habitstacker:queue:summaries"

    @staticmethod
    def session_specific(queue_base: str, session_id: str) -> str:
        """Get session-specific queue name"""
        return f"{queue_base}:{session_id}"


class RedisKeys:
    """Redis key patterns"""

    SESSION_CHECKPOINT = "habitstacker:session:{session_id}:checkpoint"
    SESSION_SUMMARY = "habitstacker:session:{session_id}:summary"
    TASK_COMPLETION_TIMES = "habitstacker:task:{task_id}:completion_times"
    ACTIVE_SESSIONS = "habitstacker:sessions:active"


class SyncRedisClient:
    """Synchronous Redis client used by the routine runtime"""

    def __init__(self, config: RedisConfig):
        self.config = config
        self.redis = redis.Redis(
            host=config.host, port=config.port, db=config.db, decode_responses=True
        )

    def send_completion(self, session_id: str, event: TaskCompletionEvent):
        """Queue a completion event and append it to the task's history"""
        payload = {
            "sessionId": session_id,
            "timestamp": int(time.time() * 1000),
            **event.model_dump(mode="json"),
        }
        self.redis.lpush(RedisQueues.COMPLETIONS, json.dumps(payload))
        key = RedisKeys.TASK_COMPLETION_TIMES.format(task_id=event.task_id)
        self.redis.rpush(key, event.actual_duration)

    def send_summary(self, session_id: str, summary: SessionSummary):
        """Queue the session summary and mark the session inactive"""
        payload = {
            "sessionId": session_id,
            "timestamp": int(time.time() * 1000),
            **summary.model_dump(mode="json"),
        }
        data = json.dumps(payload)
        self.redis.lpush(RedisQueues.SUMMARIES, data)
        self.redis.set(RedisKeys.SESSION_SUMMARY.format(session_id=session_id), data)
        self.redis.srem(RedisKeys.ACTIVE_SESSIONS, session_id)

    def completion_history(self, task_ids: Iterable[str]) -> dict[str, list[float]]:
        """Recorded actual durations (seconds) per task id"""
        history = {}
        for task_id in task_ids:
            key = RedisKeys.TASK_COMPLETION_TIMES.format(task_id=task_id)
            history[task_id] = [float(value) for value in self.redis.lrange(key, 0, -1)]
        return history

    def checkpoint(self, session_id: str, snapshot: RuntimeSnapshot):
        """Save checkpoint state"""
        key = RedisKeys.SESSION_CHECKPOINT.format(session_id=session_id)
        self.redis.set(key, snapshot.model_dump_json())
        self.redis.sadd(RedisKeys.ACTIVE_SESSIONS, session_id)

    def restore_checkpoint(self, session_id: str) -> RuntimeSnapshot | None:
        """Restore checkpoint state"""
        data = self.redis.get(RedisKeys.SESSION_CHECKPOINT.format(session_id=session_id))
        return RuntimeSnapshot.model_validate_json(data) if data else None


class RedisCompletionSink:
    """CompletionSink that forwards runtime output to Redis"""

    def __init__(self, client: SyncRedisClient, session_id: str):
        self.client = client
        self.session_id = session_id

    def record_completion(self, event: TaskCompletionEvent) -> None:
        self.client.send_completion(self.session_id, event)
        logger.debug(f"Completion for '{event.task_name}' sent to Redis")

    def record_summary(self, summary: SessionSummary) -> None:
        self.client.send_summary(self.session_id, summary)
        logger.info(f"Session {self.session_id} summary sent to Redis")

    def checkpoint_listener(self, event: Any) -> None:
        """Runtime listener that checkpoints every state change snapshot"""
        if isinstance(event.payload, RuntimeSnapshot) and event.type != "tick":
            self.client.checkpoint(self.session_id, event.payload)


# Global instance
_sync_client: SyncRedisClient | None = None


def get_sync_redis_client(config: RedisConfig | None = None) -> SyncRedisClient:
    """Get or create sync Redis client"""
    global _sync_client
    if _sync_client is None:
        _sync_client = SyncRedisClient(config or RedisConfig.from_env())
    return _sync_client
