"""Audit logging service for governance state changes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from app.core.time import utcnow
from app.models.audit_entries import AuditEntry

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

SYSTEM_ACTOR = "system"
HUMAN_ACTOR = "human"


async def record_audit(
    session: AsyncSession,
    *,
    actor_id: UUID | None,
    action: str,
    actor_type: str = HUMAN_ACTOR,
    target_type: str = "",
    target_id: UUID | None = None,
    before: dict[str, object] | None = None,
    after: dict[str, object] | None = None,
    payload: dict[str, object] | None = None,
    commit: bool = True,
) -> AuditEntry:
    """Create an append-only audit log entry."""
    entry = AuditEntry(
        actor_id=actor_id,
        actor_type=actor_type if actor_id is not None else SYSTEM_ACTOR,
        action=action,
        target_type=target_type,
        target_id=target_id,
        before=before,
        after=after,
        payload=payload,
        created_at=utcnow(),
    )
    session.add(entry)
    if commit:
        await session.commit()
        await session.refresh(entry)
    return entry


def snapshot_fields(record: object, *fields: str) -> dict[str, object]:
    """Return JSON-safe values of ``fields`` on ``record`` for before/after diffs."""
    values: dict[str, object] = {}
    for name in fields:
        value = getattr(record, name, None)
        if value is not None and not isinstance(value, (str, int, float, bool, list, dict)):
            value = str(value)
        values[name] = value
    return values
