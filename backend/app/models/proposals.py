"""Proposal model for AI-adoption identification forms under governance review."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class Proposal(QueryModel, table=True):
    """Identification form describing a problem, a candidate AI solution and its value."""

    __tablename__ = "proposals"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    title: str
    solution: str = Field(default="")
    team: str = Field(default="", index=True)
    submitted_by: UUID = Field(index=True)
    cost: float | None = Field(default=None, ge=0)
    # [{"staff_level": "senior", "hours_per_week": 2.5}, ...]
    time_savings: list[dict[str, object]] | None = Field(
        default=None, sa_column=Column(JSON)
    )
    risk_score: int | None = Field(default=None, ge=1, le=5)
    data_classification: str | None = Field(default=None, index=True)
    escalation_triggers: list[str] | None = Field(default=None, sa_column=Column(JSON))
    status: str = Field(default="draft", index=True)
    oversight_status: str = Field(default="not_required", index=True)
    decision_pathway: str | None = Field(default=None, index=True)
    oversight_reviewed_at: datetime | None = None
    oversight_notes: str = Field(default="")
    oversight_conditions: str | None = None
    previous_revision_id: UUID | None = Field(
        default=None, foreign_key="proposals.id", index=True
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    submitted_at: datetime | None = None
