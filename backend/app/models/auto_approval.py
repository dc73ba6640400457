"""Auto-approval rules and the record of decisions they produced."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class AutoApprovalRule(QueryModel, table=True):
    """Administrator-defined filter set that approves or rejects without a vote."""

    __tablename__ = "auto_approval_rules"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str
    description: str = Field(default="")
    is_active: bool = Field(default=True, index=True)
    max_cost: float | None = None
    max_risk_score: int | None = None
    allowed_data_classifications: list[str] | None = Field(
        default=None, sa_column=Column(JSON)
    )
    allowed_teams: list[str] | None = Field(default=None, sa_column=Column(JSON))
    require_all_conditions: bool = Field(default=True)
    auto_approve: bool = Field(default=True)
    approval_conditions: str | None = None
    created_by: UUID | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AutoApprovalDecision(QueryModel, table=True):
    """Applied auto-decision; unique per proposal so it happens at most once."""

    __tablename__ = "auto_approval_decisions"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    proposal_id: UUID = Field(foreign_key="proposals.id", unique=True, index=True)
    rule_id: UUID = Field(foreign_key="auto_approval_rules.id", index=True)
    rule_name: str = Field(default="")
    effect: str  # approve | reject
    pathway: str = Field(default="auto_approved")
    reason: str = Field(default="")
    created_at: datetime = Field(default_factory=utcnow)
