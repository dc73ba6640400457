"""Redis list-backed task queue with delayed delivery for background notifications."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, cast

import redis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_SCHEDULED_SUFFIX = ":scheduled"
_DRAIN_BATCH_SIZE = 100


@dataclass(frozen=True)
class QueuedTask:
    """Task envelope stored as JSON in the queue."""

    task_type: str
    payload: dict[str, Any]
    created_at: datetime
    attempts: int = 0

    def to_json(self) -> str:
        return json.dumps(
            {
                "task_type": self.task_type,
                "payload": self.payload,
                "created_at": self.created_at.isoformat(),
                "attempts": self.attempts,
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> QueuedTask:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data: dict[str, Any] = json.loads(raw)
        created_raw = data.get("created_at")
        created_at = (
            datetime.fromisoformat(created_raw)
            if isinstance(created_raw, str)
            else datetime.now(UTC)
        )
        return cls(
            task_type=str(data["task_type"]),
            payload=dict(data.get("payload") or {}),
            created_at=created_at,
            attempts=int(data.get("attempts", 0)),
        )


def _redis_client(redis_url: str | None = None) -> redis.Redis:
    return redis.Redis.from_url(redis_url or settings.rq_redis_url)


def _scheduled_queue_name(queue_name: str) -> str:
    return f"{queue_name}{_SCHEDULED_SUFFIX}"


def _now_seconds() -> float:
    return time.time()


def _drain_ready_scheduled_tasks(
    client: redis.Redis,
    queue_name: str,
    *,
    max_items: int = _DRAIN_BATCH_SIZE,
) -> float | None:
    """Move due scheduled tasks onto the live list; return seconds until the next one."""
    scheduled_queue = _scheduled_queue_name(queue_name)
    now = _now_seconds()

    ready_items = cast(
        list[str | bytes],
        client.zrangebyscore(scheduled_queue, "-inf", now, start=0, num=max_items),
    )
    if ready_items:
        ready_values = tuple(ready_items)
        client.lpush(queue_name, *ready_values)
        client.zrem(scheduled_queue, *ready_values)
        logger.debug(
            "queue.drain_ready_scheduled",
            extra={"queue_name": queue_name, "count": len(ready_items)},
        )

    next_item = cast(
        list[tuple[str | bytes, float]],
        client.zrangebyscore(scheduled_queue, now, "+inf", start=0, num=1, withscores=True),
    )
    if not next_item:
        return None
    return max(0.0, float(next_item[0][1]) - now)


def _schedule_for_later(
    task: QueuedTask,
    queue_name: str,
    delay_seconds: float,
    *,
    redis_url: str | None = None,
) -> bool:
    client = _redis_client(redis_url=redis_url)
    client.zadd(_scheduled_queue_name(queue_name), {task.to_json(): _now_seconds() + delay_seconds})
    logger.info(
        "queue.scheduled",
        extra={
            "task_type": task.task_type,
            "queue_name": queue_name,
            "delay_seconds": delay_seconds,
        },
    )
    return True


def enqueue_task(
    task: QueuedTask,
    queue_name: str,
    *,
    redis_url: str | None = None,
    delay_seconds: float = 0,
) -> bool:
    """Push a task onto the queue, or schedule it when a delay is given.

    Returns False instead of raising when Redis is unavailable.
    """
    delay = max(0.0, float(delay_seconds))
    try:
        if delay > 0:
            return _schedule_for_later(task, queue_name, delay, redis_url=redis_url)
        client = _redis_client(redis_url=redis_url)
        client.lpush(queue_name, task.to_json())
    except Exception as exc:
        logger.warning(
            "queue.enqueue_failed",
            extra={
                "task_type": task.task_type,
                "queue_name": queue_name,
                "delay_seconds": delay,
                "error": str(exc),
            },
        )
        return False
    logger.info(
        "queue.enqueued",
        extra={"task_type": task.task_type, "queue_name": queue_name, "attempt": task.attempts},
    )
    return True


def dequeue_task(
    queue_name: str,
    *,
    redis_url: str | None = None,
    block: bool = False,
    block_timeout: float = 0,
) -> QueuedTask | None:
    """Pop one task envelope from the queue."""
    client = _redis_client(redis_url=redis_url)
    timeout = max(0.0, float(block_timeout))
    raw: str | bytes | None
    if block:
        next_delay = _drain_ready_scheduled_tasks(client, queue_name)
        if timeout == 0:
            timeout = next_delay if next_delay is not None else 0
        elif next_delay is not None:
            timeout = min(timeout, next_delay)
        raw_result = cast(
            tuple[bytes | str, bytes | str] | None,
            client.brpop([queue_name], timeout=timeout),
        )
        raw = raw_result[1] if raw_result is not None else None
    else:
        raw = cast(str | bytes | None, client.rpop(queue_name))
    if raw is None:
        _drain_ready_scheduled_tasks(client, queue_name)
        return None
    try:
        return QueuedTask.from_json(raw)
    except (ValueError, KeyError, TypeError) as exc:
        logger.error(
            "queue.decode_failed",
            extra={"queue_name": queue_name, "raw_payload": str(raw), "error": str(exc)},
        )
        raise


def requeue_if_failed(
    task: QueuedTask,
    queue_name: str,
    *,
    max_retries: int,
    redis_url: str | None = None,
    delay_seconds: float = 0,
) -> bool:
    """Requeue a failed task with capped retries.

    Returns True if requeued.
    """
    retried = QueuedTask(
        task_type=task.task_type,
        payload=task.payload,
        created_at=task.created_at,
        attempts=task.attempts + 1,
    )
    if retried.attempts > max_retries:
        logger.warning(
            "queue.drop_failed_task",
            extra={
                "task_type": task.task_type,
                "queue_name": queue_name,
                "attempts": retried.attempts,
            },
        )
        return False
    return enqueue_task(retried, queue_name, redis_url=redis_url, delay_seconds=delay_seconds)
