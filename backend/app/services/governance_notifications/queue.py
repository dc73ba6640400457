"""Governance notification queue persistence helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from app.core.config import settings
from app.core.logging import get_logger
from app.services.queue import QueuedTask, enqueue_task
from app.services.queue import requeue_if_failed as generic_requeue_if_failed

logger = get_logger(__name__)
TASK_TYPE = "governance_notification"

EVENT_TYPES = frozenset(
    {
        "oversight_review_required",
        "voting_session_opened",
        "proposal_decided",
        "session_escalated",
        "auto_approval_applied",
        "auto_approval_conflict",
        "review_recorded",
        "review_requires_oversight",
        "session_overdue",
        "proposal_deferred",
        "changes_requested",
    },
)


@dataclass(frozen=True)
class GovernanceNotification:
    """Payload for a governance notification event."""

    event_type: str
    proposal_id: UUID | None = None
    recipient_ids: list[UUID] = field(default_factory=list)
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    attempts: int = 0


def _task_from_notification(notification: GovernanceNotification) -> QueuedTask:
    return QueuedTask(
        task_type=TASK_TYPE,
        payload={
            "event_type": notification.event_type,
            "proposal_id": str(notification.proposal_id) if notification.proposal_id else None,
            "recipient_ids": [str(rid) for rid in notification.recipient_ids],
            "payload": notification.payload,
        },
        created_at=notification.created_at,
        attempts=notification.attempts,
    )


def decode_notification_task(task: QueuedTask) -> GovernanceNotification:
    """Decode a QueuedTask into a GovernanceNotification."""
    if task.task_type != TASK_TYPE:
        raise ValueError(f"Unexpected task_type={task.task_type!r}; expected {TASK_TYPE!r}")

    p: dict[str, Any] = task.payload
    raw_proposal = p.get("proposal_id")
    return GovernanceNotification(
        event_type=str(p["event_type"]),
        proposal_id=UUID(raw_proposal) if raw_proposal else None,
        recipient_ids=[UUID(rid) for rid in p.get("recipient_ids", [])],
        payload=p.get("payload", {}),
        created_at=task.created_at,
        attempts=task.attempts,
    )


def enqueue_notification(notification: GovernanceNotification) -> bool:
    """Persist a governance notification in the Redis queue.

    Never raises; a False return means the event was logged and dropped.
    """
    try:
        queued = _task_from_notification(notification)
        enqueued = enqueue_task(queued, settings.rq_queue_name, redis_url=settings.rq_redis_url)
    except Exception as exc:
        logger.warning(
            "governance.notification.enqueue_failed",
            extra={
                "event_type": notification.event_type,
                "proposal_id": str(notification.proposal_id),
                "error": str(exc),
            },
        )
        return False
    if enqueued:
        logger.info(
            "governance.notification.enqueued",
            extra={
                "event_type": notification.event_type,
                "proposal_id": str(notification.proposal_id),
                "recipient_count": len(notification.recipient_ids),
            },
        )
    return enqueued


def requeue_if_failed(
    notification: GovernanceNotification,
    *,
    delay_seconds: float = 0,
) -> bool:
    """Requeue a failed notification with capped retries."""
    try:
        return generic_requeue_if_failed(
            _task_from_notification(notification),
            settings.rq_queue_name,
            max_retries=settings.rq_dispatch_max_retries,
            redis_url=settings.rq_redis_url,
            delay_seconds=delay_seconds,
        )
    except Exception as exc:
        logger.warning(
            "governance.notification.requeue_failed",
            extra={
                "event_type": notification.event_type,
                "error": str(exc),
            },
        )
        return False
