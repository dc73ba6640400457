"""Audit query endpoint for the governance audit trail."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter
from sqlmodel import col

from app.api.deps import SESSION_DEP
from app.models.audit_entries import AuditEntry
from app.schemas.audit import AuditEntryRead

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=list[AuditEntryRead])
async def list_audit_entries(
    session: AsyncSession = SESSION_DEP,
    action: str | None = None,
    actor_id: UUID | None = None,
    actor_type: str | None = None,
    target_type: str | None = None,
    target_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[AuditEntryRead]:
    """Query audit entries, newest first."""
    query = AuditEntry.objects.all()
    if action is not None:
        query = query.filter(col(AuditEntry.action) == action)
    if actor_id is not None:
        query = query.filter(col(AuditEntry.actor_id) == actor_id)
    if actor_type is not None:
        query = query.filter(col(AuditEntry.actor_type) == actor_type)
    if target_type is not None:
        query = query.filter(col(AuditEntry.target_type) == target_type)
    if target_id is not None:
        query = query.filter(col(AuditEntry.target_id) == target_id)

    entries = await query.order_by(
        col(AuditEntry.created_at).desc()
    ).offset(offset).limit(limit).all(session)

    return [AuditEntryRead.model_validate(e, from_attributes=True) for e in entries]
