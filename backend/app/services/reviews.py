"""Post-implementation review: variance, accuracy classification and estimation trend."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING

from dateutil.relativedelta import relativedelta
from sqlmodel import col

from app.core.config import GovernanceThresholds, governance_thresholds
from app.core.errors import FieldError, InvalidTransition, NotFound, ValidationFailed
from app.core.logging import get_logger
from app.core.time import utcnow, utctoday
from app.models.implementation_reviews import ImplementationReview
from app.models.proposals import Proposal
from app.services.audit import record_audit
from app.services.governance_notifications.queue import (
    GovernanceNotification,
    enqueue_notification,
)
from app.services.rates import load_rate_table
from app.services.roi import (
    TimeSavingEntry,
    compute_roi,
    latest_valuation,
    parse_time_savings,
    proposal_roi,
    validate_roi_inputs,
)
from app.services.tiers import TierDefinition, classify_tier

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.schemas.reviews import ReviewActuals

logger = get_logger(__name__)

ACCURATE = "accurate"
VALUE_UNDERESTIMATED = "value_underestimated"
VALUE_OVERESTIMATED = "value_overestimated"

REVIEW_TYPES = ("30_day", "90_day", "180_day", "365_day", "ad_hoc")
RECOMMENDATIONS = ("continue", "expand", "modify", "pause", "discontinue")
ESCALATING_RECOMMENDATIONS = frozenset({"pause", "discontinue"})
REVIEW_OFFSET_DAYS: dict[str, int] = {
    "30_day": 30,
    "90_day": 90,
    "180_day": 180,
    "365_day": 365,
}


@dataclass(frozen=True)
class ReviewPoint:
    """Minimal view of a review used for aggregate reporting."""

    review_date: date
    variance_percentage: float
    team: str = ""
    projected_annual_value: float = 0.0
    actual_annual_value: float = 0.0


@dataclass(frozen=True)
class EstimationTrend:
    label: str  # improving | declining | stable
    recent_mean_abs_variance: float | None
    prior_mean_abs_variance: float | None
    recent_count: int
    prior_count: int

    @property
    def improvement(self) -> float:
        """Prior minus recent mean absolute variance; positive means improving."""
        if self.recent_mean_abs_variance is None or self.prior_mean_abs_variance is None:
            return 0.0
        return self.prior_mean_abs_variance - self.recent_mean_abs_variance


@dataclass(frozen=True)
class TeamAccuracy:
    team: str
    total_reviews: int
    accurate_count: int
    overestimated_count: int
    underestimated_count: int
    average_variance: float


@dataclass(frozen=True)
class AccuracySummary:
    total_reviews: int
    accurate_count: int
    overestimated_count: int
    underestimated_count: int
    accuracy_rate: float
    average_variance: float
    total_projected_value: float
    total_actual_value: float
    teams: tuple[TeamAccuracy, ...]
    trend: EstimationTrend


def compute_variance(projected: float, actual: float) -> float:
    """Percentage difference of actual from projected; 0 when nothing was projected."""
    if projected == 0:
        return 0.0
    return (actual - projected) / projected * 100


def classify_accuracy(variance: float, tolerance: float = 15.0) -> str:
    """Label a variance.

    A positive variance means the realised value beat the projection, so the
    value was underestimated.
    """
    if abs(variance) <= tolerance:
        return ACCURATE
    return VALUE_UNDERESTIMATED if variance > 0 else VALUE_OVERESTIMATED


def is_projection_miss(variance: float, tolerance: float = 15.0) -> bool:
    return classify_accuracy(variance, tolerance) != ACCURATE


def _mean(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def estimation_trend(
    reviews: Iterable[ReviewPoint],
    *,
    today: date,
    window_months: int = 3,
    stable_band: float = 1.0,
) -> EstimationTrend:
    """Compare mean |variance| of recent reviews with everything before the window."""
    cutoff = today - relativedelta(months=window_months)
    recent: list[float] = []
    prior: list[float] = []
    for review in reviews:
        bucket = recent if review.review_date >= cutoff else prior
        bucket.append(abs(review.variance_percentage))
    recent_mean = _mean(recent)
    prior_mean = _mean(prior)
    label = "stable"
    if recent_mean is not None and prior_mean is not None:
        delta = prior_mean - recent_mean
        if delta > stable_band:
            label = "improving"
        elif delta < -stable_band:
            label = "declining"
    return EstimationTrend(
        label=label,
        recent_mean_abs_variance=recent_mean,
        prior_mean_abs_variance=prior_mean,
        recent_count=len(recent),
        prior_count=len(prior),
    )


def accuracy_summary(
    reviews: Sequence[ReviewPoint],
    *,
    today: date,
    thresholds: GovernanceThresholds | None = None,
) -> AccuracySummary:
    cfg = thresholds or governance_thresholds()
    tolerance = cfg.variance_tolerance_percent
    by_team: dict[str, list[ReviewPoint]] = {}
    for review in reviews:
        by_team.setdefault(review.team, []).append(review)

    def _counts(items: Sequence[ReviewPoint]) -> tuple[int, int, int]:
        labels = [classify_accuracy(item.variance_percentage, tolerance) for item in items]
        return (
            labels.count(ACCURATE),
            labels.count(VALUE_OVERESTIMATED),
            labels.count(VALUE_UNDERESTIMATED),
        )

    teams = []
    for team in sorted(by_team):
        items = by_team[team]
        accurate, over, under = _counts(items)
        teams.append(
            TeamAccuracy(
                team=team,
                total_reviews=len(items),
                accurate_count=accurate,
                overestimated_count=over,
                underestimated_count=under,
                average_variance=_mean([item.variance_percentage for item in items]) or 0.0,
            ),
        )

    accurate, over, under = _counts(reviews)
    total = len(reviews)
    return AccuracySummary(
        total_reviews=total,
        accurate_count=accurate,
        overestimated_count=over,
        underestimated_count=under,
        accuracy_rate=accurate / total * 100 if total else 0.0,
        average_variance=_mean([review.variance_percentage for review in reviews]) or 0.0,
        total_projected_value=sum(review.projected_annual_value for review in reviews),
        total_actual_value=sum(review.actual_annual_value for review in reviews),
        teams=tuple(teams),
        trend=estimation_trend(
            reviews,
            today=today,
            window_months=cfg.trend_window_months,
            stable_band=cfg.trend_stable_band_percent,
        ),
    )


def next_review_date(tier: TierDefinition, review_type: str, review_date: date) -> date | None:
    """Date of the next scheduled review for the tier, or None when the schedule is done.

    Ad-hoc reviews do not advance the schedule.
    """
    if review_type not in REVIEW_OFFSET_DAYS:
        return None
    current = REVIEW_OFFSET_DAYS[review_type]
    later = sorted(
        REVIEW_OFFSET_DAYS[step]
        for step in tier.post_review_schedule
        if REVIEW_OFFSET_DAYS.get(step, 0) > current
    )
    if not later:
        return None
    return review_date + timedelta(days=later[0] - current)


def _validate_actuals(
    review_type: str,
    actuals: ReviewActuals,
    entries: Sequence[TimeSavingEntry],
    staff_grades: frozenset[str],
) -> None:
    errors: list[FieldError] = []
    if review_type not in REVIEW_TYPES:
        errors.append(
            FieldError("review_type", f"Review type must be one of: {', '.join(REVIEW_TYPES)}."),
        )
    if actuals.recommendation not in RECOMMENDATIONS:
        errors.append(
            FieldError(
                "recommendation",
                f"Recommendation must be one of: {', '.join(RECOMMENDATIONS)}.",
            ),
        )
    if actuals.actual_time_saved is None and actuals.actual_annual_value is None:
        errors.append(
            FieldError(
                "actual_annual_value",
                "Provide actual time saved or an actual annual value.",
            ),
        )
    if actuals.actual_annual_value is not None and actuals.actual_annual_value < 0:
        errors.append(FieldError("actual_annual_value", "Actual annual value cannot be negative."))
    score = actuals.user_satisfaction_score
    if score is not None and not 1 <= score <= 5:
        errors.append(
            FieldError("user_satisfaction_score", "Satisfaction must be between 1 and 5."),
        )
    adoption = actuals.adoption_rate_percentage
    if adoption is not None and not 0 <= adoption <= 100:
        errors.append(
            FieldError("adoption_rate_percentage", "Adoption rate must be between 0 and 100."),
        )
    errors.extend(
        validate_roi_inputs(
            entries,
            actuals.actual_cost,
            staff_grades=staff_grades,
            field_name="actual_time_saved",
        ),
    )
    # validate_roi_inputs reports cost under "cost"; rename for this payload.
    errors = [
        FieldError("actual_cost", error.message) if error.field == "cost" else error
        for error in errors
    ]
    if errors:
        raise ValidationFailed(errors)


async def record_review(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    review_type: str,
    actuals: ReviewActuals,
    reviewed_by: UUID,
    review_date: date | None = None,
    thresholds: GovernanceThresholds | None = None,
) -> ImplementationReview:
    """Record one review event for an approved proposal.

    Projections come from the valuation pinned at decision time so later rate
    changes do not move the baseline; proposals without one are valued live.
    """
    cfg = thresholds or governance_thresholds()
    raw_entries = (
        [entry.model_dump() for entry in actuals.actual_time_saved]
        if actuals.actual_time_saved is not None
        else None
    )
    entries = parse_time_savings(raw_entries, field_name="actual_time_saved")
    _validate_actuals(review_type, actuals, entries, cfg.staff_grades)

    proposal = await Proposal.objects.by_id(proposal_id).first(session)
    if proposal is None:
        raise NotFound("Proposal not found")
    if proposal.oversight_status != "approved":
        raise InvalidTransition("Only approved proposals can be reviewed.")

    when = review_date or utctoday()
    pinned = await latest_valuation(session, proposal.id, reason="decision")
    rate_table = await load_rate_table(session)
    if pinned is not None:
        projected_hours = pinned.weekly_hours
        projected_value = pinned.annual_value
        projected_cost = pinned.cost
    else:
        live = proposal_roi(proposal, rate_table, when, staff_grades=cfg.staff_grades)
        projected_hours = live.weekly_hours
        projected_value = live.annual_value
        projected_cost = live.cost
        logger.warning(
            "reviews.projection_unpinned",
            extra={"proposal_id": str(proposal.id)},
        )

    cost_basis = actuals.actual_cost if actuals.actual_cost is not None else projected_cost
    actual_hours: float | None = None
    if actuals.actual_time_saved is not None:
        actual_summary = compute_roi(
            entries,
            rate_table,
            when,
            cost_basis,
            staff_grades=cfg.staff_grades,
        )
        actual_hours = actual_summary.weekly_hours
        derived_value = actual_summary.annual_value
    else:
        derived_value = 0.0
    actual_value = (
        actuals.actual_annual_value if actuals.actual_annual_value is not None else derived_value
    )
    actual_roi = None
    if cost_basis is not None and cost_basis > 0:
        actual_roi = actual_value / cost_basis * 100

    variance = compute_variance(projected_value, actual_value)
    accuracy = classify_accuracy(variance, cfg.variance_tolerance_percent)
    requires_oversight = (
        actuals.recommendation in ESCALATING_RECOMMENDATIONS or accuracy != ACCURATE
    )
    scheduled = actuals.next_review_date or next_review_date(
        classify_tier(proposal, cfg),
        review_type,
        when,
    )

    now = utcnow()
    review = ImplementationReview(
        proposal_id=proposal.id,
        review_type=review_type,
        review_date=when,
        projected_weekly_hours=projected_hours,
        projected_annual_value=projected_value,
        projected_cost=projected_cost,
        actual_time_saved=raw_entries,
        actual_weekly_hours=actual_hours,
        actual_annual_value=actual_value,
        actual_cost=actuals.actual_cost,
        actual_roi=actual_roi,
        variance_percentage=variance,
        accuracy=accuracy,
        recommendation=actuals.recommendation,
        recommendation_notes=actuals.recommendation_notes,
        lessons_learned=actuals.lessons_learned,
        user_satisfaction_score=actuals.user_satisfaction_score,
        adoption_rate_percentage=actuals.adoption_rate_percentage,
        next_review_date=scheduled,
        requires_oversight_review=requires_oversight,
        reviewed_by=reviewed_by,
        created_at=now,
        updated_at=now,
    )
    session.add(review)
    await record_audit(
        session,
        actor_id=reviewed_by,
        action="review.recorded",
        target_type="implementation_review",
        target_id=review.id,
        after={
            "proposal_id": str(proposal.id),
            "review_type": review_type,
            "projected_annual_value": projected_value,
            "actual_annual_value": actual_value,
            "variance_percentage": variance,
            "accuracy": accuracy,
            "recommendation": actuals.recommendation,
            "requires_oversight_review": requires_oversight,
        },
        commit=False,
    )
    await session.commit()
    await session.refresh(review)
    logger.info(
        "reviews.recorded",
        extra={
            "proposal_id": str(proposal.id),
            "review_type": review_type,
            "variance_percentage": round(variance, 2),
            "accuracy": accuracy,
        },
    )
    payload = {
        "review_id": str(review.id),
        "title": proposal.title,
        "review_type": review_type,
        "variance_percentage": variance,
        "accuracy": accuracy,
        "recommendation": actuals.recommendation,
    }
    enqueue_notification(
        GovernanceNotification(
            event_type="review_recorded",
            proposal_id=proposal.id,
            recipient_ids=[proposal.submitted_by],
            payload=payload,
        ),
    )
    if requires_oversight:
        enqueue_notification(
            GovernanceNotification(
                event_type="review_requires_oversight",
                proposal_id=proposal.id,
                payload=payload,
            ),
        )
    return review


async def list_reviews(
    session: AsyncSession,
    *,
    proposal_id: UUID | None = None,
) -> list[ImplementationReview]:
    query = ImplementationReview.objects.all()
    if proposal_id is not None:
        query = query.filter(col(ImplementationReview.proposal_id) == proposal_id)
    return await query.order_by(
        col(ImplementationReview.review_date).desc(),
        col(ImplementationReview.created_at).desc(),
    ).all(session)


async def load_review_points(session: AsyncSession) -> list[ReviewPoint]:
    reviews = await ImplementationReview.objects.all().all(session)
    proposals = await Proposal.objects.by_ids({review.proposal_id for review in reviews}).all(
        session,
    )
    teams = {proposal.id: proposal.team for proposal in proposals}
    return [
        ReviewPoint(
            review_date=review.review_date,
            variance_percentage=review.variance_percentage,
            team=teams.get(review.proposal_id, ""),
            projected_annual_value=review.projected_annual_value,
            actual_annual_value=review.actual_annual_value,
        )
        for review in reviews
    ]
