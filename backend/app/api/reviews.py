"""Implementation review endpoints and estimation-accuracy reporting."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, status

from app.api.deps import ACTOR_DEP, SESSION_DEP
from app.core.time import utctoday
from app.schemas.reviews import (
    AccuracySummaryRead,
    EstimationTrendRead,
    ImplementationReviewCreate,
    ImplementationReviewRead,
    TeamAccuracyRead,
)
from app.services.reviews import accuracy_summary, list_reviews, load_review_points, record_review

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

router = APIRouter(tags=["reviews"])


@router.post(
    "/proposals/{proposal_id}/reviews",
    response_model=ImplementationReviewRead,
    status_code=status.HTTP_201_CREATED,
)
async def record_review_endpoint(
    proposal_id: UUID,
    payload: ImplementationReviewCreate,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> ImplementationReviewRead:
    review = await record_review(
        session,
        proposal_id=proposal_id,
        review_type=payload.review_type,
        actuals=payload,
        reviewed_by=actor_id,
        review_date=payload.review_date,
    )
    return ImplementationReviewRead.model_validate(review, from_attributes=True)


@router.get("/reviews", response_model=list[ImplementationReviewRead])
async def list_reviews_endpoint(
    session: AsyncSession = SESSION_DEP,
    proposal_id: UUID | None = None,
) -> list[ImplementationReviewRead]:
    reviews = await list_reviews(session, proposal_id=proposal_id)
    return [ImplementationReviewRead.model_validate(item, from_attributes=True) for item in reviews]


@router.get("/reviews/accuracy", response_model=AccuracySummaryRead)
async def get_accuracy_summary(
    session: AsyncSession = SESSION_DEP,
    today: date | None = None,
) -> AccuracySummaryRead:
    """Projection accuracy across all reviews, per team, with the recent trend."""
    summary = accuracy_summary(await load_review_points(session), today=today or utctoday())
    trend = summary.trend
    return AccuracySummaryRead(
        total_reviews=summary.total_reviews,
        accurate_count=summary.accurate_count,
        overestimated_count=summary.overestimated_count,
        underestimated_count=summary.underestimated_count,
        accuracy_rate=summary.accuracy_rate,
        average_variance=summary.average_variance,
        total_projected_value=summary.total_projected_value,
        total_actual_value=summary.total_actual_value,
        teams=[
            TeamAccuracyRead(
                team=team.team,
                total_reviews=team.total_reviews,
                accurate_count=team.accurate_count,
                overestimated_count=team.overestimated_count,
                underestimated_count=team.underestimated_count,
                average_variance=team.average_variance,
            )
            for team in summary.teams
        ],
        trend=EstimationTrendRead(
            label=trend.label,
            recent_mean_abs_variance=trend.recent_mean_abs_variance,
            prior_mean_abs_variance=trend.prior_mean_abs_variance,
            improvement=trend.improvement,
            recent_count=trend.recent_count,
            prior_count=trend.prior_count,
        ),
    )
