# ruff: noqa: INP001

from __future__ import annotations

from datetime import date, timedelta
from uuid import uuid4

import pytest
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import GovernanceThresholds
from app.core.errors import InvalidTransition, NotFound, ValidationFailed
from app.models.valuations import ValuationSnapshot
from app.schemas.proposals import TimeSavingEntryPayload
from app.schemas.reviews import ReviewActuals
from app.services.reviews import (
    ReviewPoint,
    accuracy_summary,
    classify_accuracy,
    compute_variance,
    estimation_trend,
    is_projection_miss,
    list_reviews,
    load_review_points,
    next_review_date,
    record_review,
)
from app.services.tiers import TIER_DEFINITIONS, Tier

TODAY = date(2026, 6, 1)
THRESHOLDS = GovernanceThresholds(
    staff_grades=frozenset(
        {"admin", "junior", "senior", "assistant_manager", "manager", "director", "partner"},
    ),
)


def test_variance_and_accuracy_labels() -> None:
    assert compute_variance(1000.0, 1200.0) == pytest.approx(20.0)
    assert classify_accuracy(20.0) == "value_underestimated"
    assert is_projection_miss(20.0)

    assert classify_accuracy(compute_variance(1000.0, 800.0)) == "value_overestimated"
    assert classify_accuracy(compute_variance(1000.0, 900.0)) == "accurate"
    assert classify_accuracy(15.0) == "accurate"
    assert classify_accuracy(-15.0) == "accurate"
    assert classify_accuracy(10.0, tolerance=5.0) == "value_underestimated"


def test_nothing_projected_means_no_variance() -> None:
    assert compute_variance(0.0, 5000.0) == 0.0


def _point(days_ago: int, variance: float, team: str = "audit") -> ReviewPoint:
    return ReviewPoint(
        review_date=TODAY - timedelta(days=days_ago),
        variance_percentage=variance,
        team=team,
        projected_annual_value=1000.0,
        actual_annual_value=1000.0 * (1 + variance / 100),
    )


def test_trend_improves_when_recent_reviews_are_closer() -> None:
    reviews = [_point(10, 5.0), _point(20, -5.0), _point(200, 20.0), _point(300, -30.0)]
    trend = estimation_trend(reviews, today=TODAY)
    assert trend.label == "improving"
    assert trend.recent_mean_abs_variance == 5.0
    assert trend.prior_mean_abs_variance == 25.0
    assert trend.improvement == 20.0
    assert (trend.recent_count, trend.prior_count) == (2, 2)


def test_trend_declining_and_stable() -> None:
    declining = [_point(5, 40.0), _point(400, 10.0)]
    assert estimation_trend(declining, today=TODAY).label == "declining"

    within_band = [_point(5, 10.5), _point(400, 10.0)]
    assert estimation_trend(within_band, today=TODAY).label == "stable"

    only_recent = [_point(5, 50.0)]
    trend = estimation_trend(only_recent, today=TODAY)
    assert trend.label == "stable"
    assert trend.prior_mean_abs_variance is None
    assert trend.improvement == 0.0


def test_trend_window_clamps_to_month_end() -> None:
    month_end = date(2026, 5, 31)
    on_cutoff = ReviewPoint(
        review_date=date(2026, 2, 28),
        variance_percentage=5.0,
        team="audit",
        projected_annual_value=1000.0,
        actual_annual_value=1050.0,
    )
    before_cutoff = ReviewPoint(
        review_date=date(2026, 2, 27),
        variance_percentage=30.0,
        team="audit",
        projected_annual_value=1000.0,
        actual_annual_value=1300.0,
    )

    trend = estimation_trend([on_cutoff, before_cutoff], today=month_end)

    assert (trend.recent_count, trend.prior_count) == (1, 1)
    assert trend.label == "improving"


def test_accuracy_summary_groups_by_team() -> None:
    reviews = [
        _point(10, 5.0, "audit"),
        _point(20, 30.0, "audit"),
        _point(30, -40.0, "tax"),
    ]
    summary = accuracy_summary(reviews, today=TODAY, thresholds=THRESHOLDS)
    assert summary.total_reviews == 3
    assert summary.accurate_count == 1
    assert summary.underestimated_count == 1
    assert summary.overestimated_count == 1
    assert summary.accuracy_rate == pytest.approx(100 / 3)
    assert summary.average_variance == pytest.approx(-5 / 3)
    assert summary.total_projected_value == 3000.0
    assert [team.team for team in summary.teams] == ["audit", "tax"]
    assert summary.teams[0].total_reviews == 2
    assert summary.teams[0].average_variance == pytest.approx(17.5)

    empty = accuracy_summary([], today=TODAY, thresholds=THRESHOLDS)
    assert empty.total_reviews == 0
    assert empty.accuracy_rate == 0.0
    assert empty.trend.label == "stable"


def test_next_review_follows_tier_schedule() -> None:
    full = TIER_DEFINITIONS[Tier.FULL_OVERSIGHT]
    fast = TIER_DEFINITIONS[Tier.FAST_TRACK]
    start = date(2026, 1, 1)
    assert next_review_date(full, "30_day", start) == start + timedelta(days=60)
    assert next_review_date(full, "90_day", start) == start + timedelta(days=275)
    assert next_review_date(full, "365_day", start) is None
    assert next_review_date(full, "ad_hoc", start) is None
    assert next_review_date(fast, "90_day", start) is None


async def _approved_with_pin(session: AsyncSession, make_proposal, *, annual_value: float):
    proposal = await make_proposal(
        status="approved",
        oversight_status="approved",
        decision_pathway="fast_track",
        team="audit",
    )
    session.add(
        ValuationSnapshot(
            proposal_id=proposal.id,
            reason="decision",
            as_of=date(2026, 1, 1),
            rates_used={"admin": 80.0},
            cost=3000.0,
            weekly_hours=1.0,
            weekly_value=annual_value / 52,
            annual_value=annual_value,
        ),
    )
    await session.commit()
    return proposal


@pytest.mark.asyncio
async def test_review_beating_projection_is_flagged(
    session: AsyncSession,
    rates: None,
    make_proposal,
    fake_redis,
) -> None:
    proposal = await _approved_with_pin(session, make_proposal, annual_value=10000.0)
    review = await record_review(
        session,
        proposal_id=proposal.id,
        review_type="90_day",
        actuals=ReviewActuals(actual_annual_value=12000.0, recommendation="expand"),
        reviewed_by=uuid4(),
        review_date=TODAY,
    )
    assert review.projected_annual_value == 10000.0
    assert review.variance_percentage == pytest.approx(20.0)
    assert review.accuracy == "value_underestimated"
    assert review.requires_oversight_review is True
    assert review.actual_roi == pytest.approx(400.0)
    assert fake_redis.notification_events() == ["review_recorded", "review_requires_oversight"]


@pytest.mark.asyncio
async def test_review_from_time_saved_uses_current_rates(
    session: AsyncSession,
    rates: None,
    make_proposal,
    fake_redis,
) -> None:
    proposal = await _approved_with_pin(session, make_proposal, annual_value=8000.0)
    review = await record_review(
        session,
        proposal_id=proposal.id,
        review_type="30_day",
        actuals=ReviewActuals(
            actual_time_saved=[TimeSavingEntryPayload(staff_level="admin", hours_per_week=2.0)],
            recommendation="continue",
            user_satisfaction_score=4,
        ),
        reviewed_by=uuid4(),
        review_date=TODAY,
    )
    # 2h * 80 * 52 = 8320 against 8000 projected.
    assert review.actual_annual_value == 8320.0
    assert review.actual_weekly_hours == 2.0
    assert review.accuracy == "accurate"
    assert review.requires_oversight_review is False
    assert fake_redis.notification_events() == ["review_recorded"]


@pytest.mark.asyncio
async def test_pause_recommendation_needs_oversight(
    session: AsyncSession,
    rates: None,
    make_proposal,
) -> None:
    proposal = await _approved_with_pin(session, make_proposal, annual_value=5000.0)
    review = await record_review(
        session,
        proposal_id=proposal.id,
        review_type="ad_hoc",
        actuals=ReviewActuals(actual_annual_value=5000.0, recommendation="pause"),
        reviewed_by=uuid4(),
        review_date=TODAY,
    )
    assert review.accuracy == "accurate"
    assert review.requires_oversight_review is True
    assert review.next_review_date is None


@pytest.mark.asyncio
async def test_unpinned_proposal_is_valued_live(
    session: AsyncSession,
    rates: None,
    make_proposal,
) -> None:
    proposal = await make_proposal(status="approved", oversight_status="approved")
    review = await record_review(
        session,
        proposal_id=proposal.id,
        review_type="90_day",
        actuals=ReviewActuals(actual_annual_value=4160.0, recommendation="continue"),
        reviewed_by=uuid4(),
        review_date=TODAY,
    )
    assert review.projected_annual_value == 80.0 * 52
    assert review.variance_percentage == 0.0


@pytest.mark.asyncio
async def test_review_guards(session: AsyncSession, rates: None, make_proposal) -> None:
    pending = await make_proposal()
    with pytest.raises(InvalidTransition):
        await record_review(
            session,
            proposal_id=pending.id,
            review_type="30_day",
            actuals=ReviewActuals(actual_annual_value=100.0, recommendation="continue"),
            reviewed_by=uuid4(),
        )

    with pytest.raises(NotFound):
        await record_review(
            session,
            proposal_id=uuid4(),
            review_type="30_day",
            actuals=ReviewActuals(actual_annual_value=100.0, recommendation="continue"),
            reviewed_by=uuid4(),
        )

    with pytest.raises(ValidationFailed) as exc_info:
        await record_review(
            session,
            proposal_id=pending.id,
            review_type="weekly",
            actuals=ReviewActuals(
                recommendation="celebrate",
                actual_cost=-1.0,
                user_satisfaction_score=9,
            ),
            reviewed_by=uuid4(),
        )
    assert {error.field for error in exc_info.value.errors} == {
        "review_type",
        "recommendation",
        "actual_annual_value",
        "actual_cost",
        "user_satisfaction_score",
    }


@pytest.mark.asyncio
async def test_listing_and_points(session: AsyncSession, rates: None, make_proposal) -> None:
    proposal = await _approved_with_pin(session, make_proposal, annual_value=1000.0)
    for review_type, value in (("30_day", 1100.0), ("90_day", 700.0)):
        await record_review(
            session,
            proposal_id=proposal.id,
            review_type=review_type,
            actuals=ReviewActuals(actual_annual_value=value, recommendation="continue"),
            reviewed_by=uuid4(),
            review_date=TODAY,
        )
    reviews = await list_reviews(session, proposal_id=proposal.id)
    assert len(reviews) == 2
    points = await load_review_points(session)
    assert {point.team for point in points} == {"audit"}
    assert sorted(round(point.variance_percentage) for point in points) == [-30, 10]
    assert await list_reviews(session, proposal_id=uuid4()) == []
