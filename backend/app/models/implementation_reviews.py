"""Post-implementation review comparing projected and realised value."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (date, datetime)


class ImplementationReview(QueryModel, table=True):
    """One review event over an implemented proposal."""

    __tablename__ = "implementation_reviews"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    proposal_id: UUID = Field(foreign_key="proposals.id", index=True)
    review_type: str = Field(index=True)  # 30_day | 90_day | 180_day | 365_day | ad_hoc
    review_date: date = Field(index=True)
    projected_weekly_hours: float | None = None
    projected_annual_value: float = Field(default=0.0)
    projected_cost: float | None = None
    actual_time_saved: list[dict[str, object]] | None = Field(
        default=None, sa_column=Column(JSON)
    )
    actual_weekly_hours: float | None = None
    actual_annual_value: float = Field(default=0.0)
    actual_cost: float | None = None
    actual_roi: float | None = None
    variance_percentage: float = Field(default=0.0)
    accuracy: str = Field(default="accurate", index=True)
    recommendation: str
    recommendation_notes: str = Field(default="")
    lessons_learned: str = Field(default="")
    user_satisfaction_score: int | None = None
    adoption_rate_percentage: int | None = None
    next_review_date: date | None = None
    requires_oversight_review: bool = Field(default=False)
    reviewed_by: UUID = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
