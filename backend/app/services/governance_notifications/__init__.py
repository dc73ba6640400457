"""Governance notification queueing + dispatch utilities."""

from app.services.governance_notifications.queue import (
    EVENT_TYPES,
    TASK_TYPE,
    GovernanceNotification,
    decode_notification_task,
    enqueue_notification,
)

__all__ = [
    "EVENT_TYPES",
    "TASK_TYPE",
    "GovernanceNotification",
    "decode_notification_task",
    "enqueue_notification",
]
