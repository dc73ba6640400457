"""Schemas for auto-approval rule management and match previews."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class AutoApprovalRuleCreate(SQLModel):
    """Payload for creating an auto-approval rule."""

    name: str
    description: str = ""
    is_active: bool = True
    max_cost: float | None = None
    max_risk_score: int | None = None
    allowed_data_classifications: list[str] | None = None
    allowed_teams: list[str] | None = None
    require_all_conditions: bool = True
    auto_approve: bool = True
    approval_conditions: str | None = None


class AutoApprovalRuleUpdate(SQLModel):
    """Partial update for an auto-approval rule."""

    name: str | None = None
    description: str | None = None
    is_active: bool | None = None
    max_cost: float | None = None
    max_risk_score: int | None = None
    allowed_data_classifications: list[str] | None = None
    allowed_teams: list[str] | None = None
    require_all_conditions: bool | None = None
    auto_approve: bool | None = None
    approval_conditions: str | None = None


class AutoApprovalRuleRead(SQLModel):
    id: UUID
    name: str
    description: str
    is_active: bool
    max_cost: float | None = None
    max_risk_score: int | None = None
    allowed_data_classifications: list[str] | None = None
    allowed_teams: list[str] | None = None
    require_all_conditions: bool
    auto_approve: bool
    approval_conditions: str | None = None
    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime


class RuleMatchRead(SQLModel):
    rule_id: UUID
    rule_name: str
    effect: str
    matched: bool
    reason: str


class RuleMatchPreview(SQLModel):
    """Dry-run of rule matching for one proposal."""

    proposal_id: UUID
    effect: str | None = None
    conflict: bool
    evaluated: list[RuleMatchRead]
