"""Schemas for implementation reviews and estimation-accuracy reporting."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlmodel import SQLModel

from app.schemas.proposals import TimeSavingEntryPayload

RUNTIME_ANNOTATION_TYPES = (date, datetime, UUID)


class ReviewActuals(SQLModel):
    """Reviewer-entered outcomes for one review event.

    Either ``actual_time_saved`` or ``actual_annual_value`` must be given; an
    explicit annual value wins over one derived from time savings.
    """

    actual_time_saved: list[TimeSavingEntryPayload] | None = None
    actual_annual_value: float | None = None
    actual_cost: float | None = None
    recommendation: str
    recommendation_notes: str = ""
    lessons_learned: str = ""
    user_satisfaction_score: int | None = None
    adoption_rate_percentage: int | None = None
    next_review_date: date | None = None


class ImplementationReviewCreate(ReviewActuals):
    """Payload for recording a review against a proposal."""

    review_type: str
    review_date: date | None = None


class ImplementationReviewRead(SQLModel):
    id: UUID
    proposal_id: UUID
    review_type: str
    review_date: date
    projected_weekly_hours: float | None = None
    projected_annual_value: float
    projected_cost: float | None = None
    actual_time_saved: list[dict[str, object]] | None = None
    actual_weekly_hours: float | None = None
    actual_annual_value: float
    actual_cost: float | None = None
    actual_roi: float | None = None
    variance_percentage: float
    accuracy: str
    recommendation: str
    recommendation_notes: str
    lessons_learned: str
    user_satisfaction_score: int | None = None
    adoption_rate_percentage: int | None = None
    next_review_date: date | None = None
    requires_oversight_review: bool
    reviewed_by: UUID
    created_at: datetime


class TeamAccuracyRead(SQLModel):
    team: str
    total_reviews: int
    accurate_count: int
    overestimated_count: int
    underestimated_count: int
    average_variance: float


class EstimationTrendRead(SQLModel):
    label: str
    recent_mean_abs_variance: float | None = None
    prior_mean_abs_variance: float | None = None
    improvement: float
    recent_count: int
    prior_count: int


class AccuracySummaryRead(SQLModel):
    total_reviews: int
    accurate_count: int
    overestimated_count: int
    underestimated_count: int
    accuracy_rate: float
    average_variance: float
    total_projected_value: float
    total_actual_value: float
    teams: list[TeamAccuracyRead]
    trend: EstimationTrendRead
