"""ROI valuation of staff time savings against a rate table."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from math import isfinite
from typing import TYPE_CHECKING, Any

from sqlmodel import col

from app.core.errors import FieldError, ValidationFailed
from app.core.logging import get_logger
from app.core.time import utcnow
from app.models.valuations import ValuationSnapshot

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.models.proposals import Proposal
    from app.services.rates import RateTable

logger = get_logger(__name__)

WEEKS_PER_YEAR = 52

_ROI_RATINGS: tuple[tuple[float, str], ...] = (
    (500.0, "Exceptional"),
    (200.0, "Excellent"),
    (100.0, "Good"),
    (50.0, "Moderate"),
)
_PAYBACK_RATINGS: tuple[tuple[float, str], ...] = (
    (3.0, "Immediate"),
    (6.0, "Quick"),
    (12.0, "Standard"),
    (24.0, "Long"),
)


@dataclass(frozen=True)
class TimeSavingEntry:
    staff_level: str
    hours_per_week: float

    def as_dict(self) -> dict[str, Any]:
        return {"staff_level": self.staff_level, "hours_per_week": self.hours_per_week}


@dataclass(frozen=True)
class ROIBreakdownLine:
    """Per-grade contribution; repeated grades are already summed."""

    staff_level: str
    hours_per_week: float
    hourly_rate: float | None
    weekly_value: float
    annual_value: float


@dataclass(frozen=True)
class ROISummary:
    """Result of one valuation.

    ``roi_percent`` is ``None`` when no cost is known, which is different from
    a computed 0% return.
    """

    as_of: date
    cost: float | None
    weekly_hours: float
    weekly_value: float
    annual_value: float
    roi_percent: float | None
    payback_months: float | None
    breakdown: tuple[ROIBreakdownLine, ...] = ()
    missing_rates: tuple[str, ...] = ()
    rates_used: dict[str, float] = field(default_factory=dict)

    @property
    def roi_rating(self) -> str | None:
        return roi_rating(self.roi_percent)

    @property
    def payback_rating(self) -> str | None:
        return payback_rating(self.payback_months)


def roi_rating(roi_percent: float | None) -> str | None:
    if roi_percent is None:
        return None
    for floor, label in _ROI_RATINGS:
        if roi_percent >= floor:
            return label
    return "Low" if roi_percent > 0 else "Negative"


def payback_rating(payback_months: float | None) -> str | None:
    if payback_months is None:
        return None
    for ceiling, label in _PAYBACK_RATINGS:
        if payback_months <= ceiling:
            return label
    return "Extended"


def parse_time_savings(
    raw: Iterable[Any] | None,
    *,
    field_name: str = "time_savings",
) -> list[TimeSavingEntry]:
    """Coerce stored JSON or request data into entries, collecting shape errors."""
    entries: list[TimeSavingEntry] = []
    errors: list[FieldError] = []
    for index, item in enumerate(raw or ()):
        prefix = f"{field_name}[{index}]"
        if isinstance(item, TimeSavingEntry):
            entries.append(item)
            continue
        if not isinstance(item, dict):
            errors.append(
                FieldError(prefix, "Expected an object with staff_level and hours_per_week."),
            )
            continue
        grade = item.get("staff_level")
        hours = item.get("hours_per_week")
        if not isinstance(grade, str) or not grade:
            errors.append(FieldError(f"{prefix}.staff_level", "Staff grade is required."))
        if isinstance(hours, bool) or not isinstance(hours, (int, float)):
            errors.append(
                FieldError(f"{prefix}.hours_per_week", "Hours per week must be a number."),
            )
            continue
        if isinstance(grade, str) and grade:
            entries.append(TimeSavingEntry(staff_level=grade, hours_per_week=float(hours)))
    if errors:
        raise ValidationFailed(errors)
    return entries


def validate_roi_inputs(
    entries: Sequence[TimeSavingEntry],
    cost: float | None,
    *,
    staff_grades: frozenset[str] | None = None,
    field_name: str = "time_savings",
) -> list[FieldError]:
    errors: list[FieldError] = []
    for index, entry in enumerate(entries):
        prefix = f"{field_name}[{index}]"
        if not isfinite(entry.hours_per_week) or entry.hours_per_week < 0:
            errors.append(
                FieldError(f"{prefix}.hours_per_week", "Hours per week cannot be negative."),
            )
        if staff_grades is not None and entry.staff_level not in staff_grades:
            errors.append(
                FieldError(f"{prefix}.staff_level", f"Unknown staff grade '{entry.staff_level}'."),
            )
    if cost is not None and (not isfinite(cost) or cost < 0):
        errors.append(FieldError("cost", "Cost cannot be negative."))
    return errors


def compute_roi(
    entries: Sequence[TimeSavingEntry],
    rate_table: RateTable,
    as_of: date,
    cost: float | None,
    *,
    staff_grades: frozenset[str] | None = None,
) -> ROISummary:
    """Value weekly time savings at the rates effective on ``as_of``.

    Raises ``ValidationFailed`` before computing anything when an entry has
    negative hours or an unknown grade, or when cost is negative. A known grade
    without a rate on ``as_of`` contributes nothing and is reported in
    ``missing_rates``.
    """
    errors = validate_roi_inputs(entries, cost, staff_grades=staff_grades)
    if errors:
        raise ValidationFailed(errors)

    hours_by_grade: dict[str, float] = {}
    for entry in entries:
        hours_by_grade[entry.staff_level] = (
            hours_by_grade.get(entry.staff_level, 0.0) + entry.hours_per_week
        )

    breakdown: list[ROIBreakdownLine] = []
    missing: list[str] = []
    rates_used: dict[str, float] = {}
    for grade, hours in hours_by_grade.items():
        rate = rate_table.rate(grade, as_of)
        if rate is None:
            missing.append(grade)
            logger.warning(
                "roi.rate_missing",
                extra={"staff_level": grade, "as_of": as_of.isoformat(), "hours_per_week": hours},
            )
            weekly = 0.0
        else:
            rates_used[grade] = rate
            weekly = hours * rate
        breakdown.append(
            ROIBreakdownLine(
                staff_level=grade,
                hours_per_week=hours,
                hourly_rate=rate,
                weekly_value=weekly,
                annual_value=weekly * WEEKS_PER_YEAR,
            ),
        )

    weekly_hours = sum(hours_by_grade.values())
    weekly_value = sum(line.weekly_value for line in breakdown)
    annual_value = weekly_value * WEEKS_PER_YEAR
    roi_percent = annual_value / cost * 100 if cost is not None and cost > 0 else None
    payback_months = (
        cost / annual_value * 12
        if cost is not None and cost > 0 and annual_value > 0
        else None
    )
    return ROISummary(
        as_of=as_of,
        cost=cost,
        weekly_hours=weekly_hours,
        weekly_value=weekly_value,
        annual_value=annual_value,
        roi_percent=roi_percent,
        payback_months=payback_months,
        breakdown=tuple(breakdown),
        missing_rates=tuple(missing),
        rates_used=rates_used,
    )


def proposal_roi(
    proposal: Proposal,
    rate_table: RateTable,
    as_of: date,
    *,
    staff_grades: frozenset[str] | None = None,
) -> ROISummary:
    """Value a proposal's stored time savings."""
    entries = parse_time_savings(proposal.time_savings)
    return compute_roi(entries, rate_table, as_of, proposal.cost, staff_grades=staff_grades)


async def pin_valuation(
    session: AsyncSession,
    *,
    proposal: Proposal,
    rate_table: RateTable,
    as_of: date,
    reason: str = "decision",
    staff_grades: frozenset[str] | None = None,
) -> ValuationSnapshot:
    """Persist the valuation and the exact rates behind it. Caller commits."""
    summary = proposal_roi(proposal, rate_table, as_of, staff_grades=staff_grades)
    snapshot = ValuationSnapshot(
        proposal_id=proposal.id,
        reason=reason,
        as_of=as_of,
        rates_used=dict(summary.rates_used),
        missing_rates=list(summary.missing_rates),
        cost=summary.cost,
        weekly_hours=summary.weekly_hours,
        weekly_value=summary.weekly_value,
        annual_value=summary.annual_value,
        roi_percent=summary.roi_percent,
        payback_months=summary.payback_months,
        created_at=utcnow(),
    )
    session.add(snapshot)
    logger.info(
        "roi.valuation_pinned",
        extra={
            "proposal_id": str(proposal.id),
            "reason": reason,
            "as_of": as_of.isoformat(),
            "annual_value": summary.annual_value,
        },
    )
    return snapshot


async def latest_valuation(
    session: AsyncSession,
    proposal_id: object,
    *,
    reason: str = "decision",
) -> ValuationSnapshot | None:
    rows = (
        await ValuationSnapshot.objects.filter_by(proposal_id=proposal_id, reason=reason)
        .order_by(col(ValuationSnapshot.created_at).desc())
        .limit(1)
        .all(session)
    )
    return rows[0] if rows else None
