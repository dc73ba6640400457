"""Pinned ROI valuations recorded at decision and review time."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (date, datetime)


class ValuationSnapshot(QueryModel, table=True):
    """ROI figures plus the exact rates and date they were computed with."""

    __tablename__ = "valuation_snapshots"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    proposal_id: UUID = Field(foreign_key="proposals.id", index=True)
    reason: str = Field(default="decision", index=True)  # decision | review
    as_of: date
    rates_used: dict[str, float] | None = Field(default=None, sa_column=Column(JSON))
    missing_rates: list[str] | None = Field(default=None, sa_column=Column(JSON))
    cost: float | None = None
    weekly_hours: float = Field(default=0.0)
    weekly_value: float = Field(default=0.0)
    annual_value: float = Field(default=0.0)
    roi_percent: float | None = None
    payback_months: float | None = None
    created_at: datetime = Field(default_factory=utcnow)
