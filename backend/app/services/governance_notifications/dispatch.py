"""Governance notification dispatch handler."""

from __future__ import annotations

from app.core.logging import get_logger
from app.services.governance_notifications.queue import (
    EVENT_TYPES,
    GovernanceNotification,
    decode_notification_task,
    requeue_if_failed,
)
from app.services.queue import QueuedTask

logger = get_logger(__name__)


def _dispatch(notification: GovernanceNotification) -> None:
    """Hand a notification to the delivery channel.

    Delivery is a structured log record; mail or chat senders consume it
    downstream.
    """
    if notification.event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown governance event type {notification.event_type!r}")
    logger.info(
        "governance.notification.dispatch",
        extra={
            "event_type": notification.event_type,
            "proposal_id": str(notification.proposal_id),
            "recipient_ids": [str(rid) for rid in notification.recipient_ids],
            "payload_keys": sorted(notification.payload) if notification.payload else [],
        },
    )


async def process_notification_task(task: QueuedTask) -> None:
    """Decode and dispatch a governance notification task."""
    notification = decode_notification_task(task)
    _dispatch(notification)


def requeue_notification_task(task: QueuedTask, *, delay_seconds: float = 0) -> bool:
    """Requeue a failed notification task."""
    notification = decode_notification_task(task)
    return requeue_if_failed(notification, delay_seconds=delay_seconds)
