"""Capability grants deciding who may vote on which voting pathway."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)

FAST_TRACK_VOTER = "fast_track_voter"
OVERSIGHT_PANEL = "oversight_panel"
PARTNER_SIGNOFF = "partner_signoff"
VOTER_CAPABILITIES = frozenset({FAST_TRACK_VOTER, OVERSIGHT_PANEL, PARTNER_SIGNOFF})


class VoterGrant(QueryModel, table=True):
    """Grant of a voting capability to one identity."""

    __tablename__ = "voter_grants"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        UniqueConstraint("user_id", "capability", name="uq_voter_grant_capability"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True)
    capability: str = Field(index=True)
    display_name: str = Field(default="")
    is_active: bool = Field(default=True, index=True)
    granted_by: UUID | None = None
    created_at: datetime = Field(default_factory=utcnow)
