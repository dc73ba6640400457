# ruff: noqa: INP001

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from app.services import queue_worker
from app.services.governance_notifications.queue import GovernanceNotification, enqueue_notification
from app.services.queue import QueuedTask, enqueue_task


@pytest.mark.asyncio
async def test_flush_dispatches_notifications(fake_redis) -> None:
    enqueue_notification(GovernanceNotification(event_type="voting_session_opened"))
    enqueue_notification(GovernanceNotification(event_type="proposal_decided"))

    processed = await queue_worker.flush_queue()

    assert processed == 2
    assert fake_redis.queued("governance-notifications") == []


@pytest.mark.asyncio
async def test_failed_dispatch_is_rescheduled_with_backoff(
    fake_redis,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr("app.services.queue._now_seconds", lambda: 100.0)
    monkeypatch.setattr(queue_worker, "_compute_jitter", lambda base: 0.0)
    enqueue_notification(GovernanceNotification(event_type="not_a_real_event"))

    processed = await queue_worker.flush_queue()

    assert processed == 0
    scheduled = fake_redis.zsets["governance-notifications:scheduled"]
    assert len(scheduled) == 1
    raw, due = next(iter(scheduled.items()))
    assert QueuedTask.from_json(raw).attempts == 1
    # Base delay of two seconds doubled zero times.
    assert due == 102.0


@pytest.mark.asyncio
async def test_exhausted_retries_drop_the_task(fake_redis, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(queue_worker, "_compute_jitter", lambda base: 0.0)
    enqueue_notification(GovernanceNotification(event_type="not_a_real_event", attempts=5))

    assert await queue_worker.flush_queue() == 0
    assert fake_redis.zsets.get("governance-notifications:scheduled", {}) == {}
    assert fake_redis.queued("governance-notifications") == []


@pytest.mark.asyncio
async def test_unknown_task_types_are_skipped(fake_redis) -> None:
    enqueue_task(
        QueuedTask(task_type="legacy", payload={}, created_at=datetime.now(UTC)),
        "governance-notifications",
    )
    assert await queue_worker.flush_queue() == 0


def test_exponential_delay_is_capped() -> None:
    assert queue_worker._exponential_delay(0) == 2.0
    assert queue_worker._exponential_delay(3) == 16.0
    assert queue_worker._exponential_delay(20) == 300.0


def test_jitter_stays_small() -> None:
    for _ in range(20):
        assert 0 <= queue_worker._compute_jitter(10.0) <= 1.0
