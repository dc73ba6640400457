"""Schemas for ROI valuation responses and previews."""

from __future__ import annotations

from datetime import date

from pydantic import Field
from sqlmodel import SQLModel

from app.schemas.proposals import TimeSavingEntryPayload

RUNTIME_ANNOTATION_TYPES = (date,)


class ROIPreviewRequest(SQLModel):
    """Ad-hoc valuation of time savings without a stored proposal."""

    time_savings: list[TimeSavingEntryPayload] = Field(default_factory=list)
    cost: float | None = None
    as_of: date | None = None


class ROIBreakdownRead(SQLModel):
    staff_level: str
    hours_per_week: float
    hourly_rate: float | None = None
    weekly_value: float
    annual_value: float


class ROISummaryRead(SQLModel):
    """Valuation figures; ``roi_percent`` is null when no cost is known."""

    as_of: date
    cost: float | None = None
    weekly_hours: float
    weekly_value: float
    annual_value: float
    roi_percent: float | None = None
    payback_months: float | None = None
    roi_rating: str | None = None
    payback_rating: str | None = None
    breakdown: list[ROIBreakdownRead] = Field(default_factory=list)
    missing_rates: list[str] = Field(default_factory=list)
