"""Schemas for proposal payloads and derived governance views."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import Field
from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (date, datetime, UUID)


class TimeSavingEntryPayload(SQLModel):
    """One staff grade and the weekly hours saved at that grade."""

    staff_level: str
    hours_per_week: float


class ProposalCreate(SQLModel):
    """Payload for creating a draft proposal."""

    title: str
    solution: str = ""
    team: str = ""
    cost: float | None = None
    time_savings: list[TimeSavingEntryPayload] = Field(default_factory=list)
    risk_score: int | None = None
    data_classification: str | None = None
    escalation_triggers: list[str] = Field(default_factory=list)


class ProposalUpdate(SQLModel):
    """Partial update applied to a draft proposal."""

    title: str | None = None
    solution: str | None = None
    team: str | None = None
    cost: float | None = None
    time_savings: list[TimeSavingEntryPayload] | None = None
    risk_score: int | None = None
    data_classification: str | None = None
    escalation_triggers: list[str] | None = None


class OversightNotesPayload(SQLModel):
    """Reviewer notes attached when a proposal is parked or reopened."""

    notes: str | None = None


class ProposalRead(SQLModel):
    """Proposal payload returned by read endpoints."""

    id: UUID
    title: str
    solution: str
    team: str
    submitted_by: UUID
    cost: float | None = None
    time_savings: list[dict[str, object]] | None = None
    risk_score: int | None = None
    data_classification: str | None = None
    escalation_triggers: list[str] | None = None
    status: str
    oversight_status: str
    decision_pathway: str | None = None
    oversight_reviewed_at: datetime | None = None
    oversight_notes: str
    oversight_conditions: str | None = None
    previous_revision_id: UUID | None = None
    created_at: datetime
    updated_at: datetime
    submitted_at: datetime | None = None


class RouteResult(SQLModel):
    """Where a submitted proposal ended up after routing."""

    proposal: ProposalRead
    route: str  # auto_decided | voting | conflict_voting | already_decided
    auto_approval_status: str | None = None
    voting_session_id: UUID | None = None
