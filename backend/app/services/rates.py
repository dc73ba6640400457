"""Staff rate table: versioned grade-to-hourly-rate lookup with preserved history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING

from sqlmodel import col

from app.core.config import governance_thresholds
from app.core.errors import FieldError, ValidationFailed
from app.core.logging import get_logger
from app.core.time import utcnow
from app.models.staff_rates import StaffRate
from app.services.audit import record_audit

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)

DEFAULT_HOURLY_RATES: dict[str, float] = {
    "admin": 80.0,
    "junior": 100.0,
    "senior": 120.0,
    "assistant_manager": 150.0,
    "manager": 175.0,
    "director": 250.0,
    "partner": 400.0,
}

DISPLAY_NAMES: dict[str, str] = {
    "admin": "Admin",
    "junior": "Junior",
    "senior": "Senior",
    "assistant_manager": "Assistant Manager",
    "manager": "Manager",
    "director": "Director",
    "partner": "Partner",
}


@dataclass(frozen=True)
class RatePeriod:
    """Hourly rate for one grade over ``[effective_from, effective_to)``."""

    staff_level: str
    hourly_rate: float
    effective_from: date
    effective_to: date | None = None

    def covers(self, as_of: date) -> bool:
        if as_of < self.effective_from:
            return False
        return self.effective_to is None or as_of < self.effective_to


class RateTable:
    """Immutable in-memory view over rate periods.

    Lookups never fall back to a default: a grade with no period covering the
    requested date yields ``None`` and the caller decides what that means.
    """

    def __init__(self, periods: Iterable[RatePeriod] = ()) -> None:
        self._periods: tuple[RatePeriod, ...] = tuple(
            sorted(periods, key=lambda p: (p.staff_level, p.effective_from)),
        )

    @classmethod
    def from_mapping(
        cls,
        rates: Mapping[str, float],
        *,
        effective_from: date = date.min,
    ) -> RateTable:
        """Build a single-period table, mostly for tests and pinned snapshots."""
        return cls(
            RatePeriod(
                staff_level=grade,
                hourly_rate=float(rate),
                effective_from=effective_from,
            )
            for grade, rate in rates.items()
        )

    @property
    def periods(self) -> tuple[RatePeriod, ...]:
        return self._periods

    def rate(self, staff_level: str, as_of: date) -> float | None:
        """Return the hourly rate effective for ``staff_level`` on ``as_of``."""
        match: RatePeriod | None = None
        for period in self._periods:
            if period.staff_level != staff_level or not period.covers(as_of):
                continue
            # Overlapping periods resolve to the most recently started one.
            if match is None or period.effective_from >= match.effective_from:
                match = period
        return match.hourly_rate if match is not None else None

    def rates_at(self, as_of: date) -> dict[str, float]:
        grades = dict.fromkeys(period.staff_level for period in self._periods)
        rates: dict[str, float] = {}
        for grade in grades:
            value = self.rate(grade, as_of)
            if value is not None:
                rates[grade] = value
        return rates

    def __len__(self) -> int:
        return len(self._periods)


def _period_from_row(row: StaffRate) -> RatePeriod:
    return RatePeriod(
        staff_level=row.staff_level,
        hourly_rate=row.hourly_rate,
        effective_from=row.effective_from,
        effective_to=row.effective_to,
    )


async def load_rate_table(session: AsyncSession) -> RateTable:
    """Load all active rate periods, current and historical."""
    rows = await StaffRate.objects.filter_by(is_active=True).all(session)
    return RateTable(_period_from_row(row) for row in rows)


async def list_rates(session: AsyncSession, *, current_only: bool = False) -> list[StaffRate]:
    query = StaffRate.objects.filter_by(is_active=True)
    if current_only:
        query = query.filter(col(StaffRate.effective_to).is_(None))
    rows = await query.order_by(
        col(StaffRate.display_order),
        col(StaffRate.staff_level),
        col(StaffRate.effective_from),
    ).all(session)
    return rows


async def set_rate(
    session: AsyncSession,
    *,
    staff_level: str,
    hourly_rate: float,
    effective_from: date,
    actor_id: UUID | None,
) -> StaffRate:
    """Start a new rate period, closing the grade's currently open period.

    Earlier periods are kept untouched so past valuations stay reproducible.
    """
    errors: list[FieldError] = []
    grades = governance_thresholds().staff_grades
    if staff_level not in grades:
        errors.append(FieldError("staff_level", f"Unknown staff grade '{staff_level}'."))
    if hourly_rate < 0:
        errors.append(FieldError("hourly_rate", "Hourly rate cannot be negative."))

    current = (
        await StaffRate.objects.filter_by(staff_level=staff_level, is_active=True)
        .filter(col(StaffRate.effective_to).is_(None))
        .for_update()
        .first(session)
    )
    if current is not None and effective_from <= current.effective_from:
        errors.append(
            FieldError(
                "effective_from",
                f"Must be after the current period start ({current.effective_from.isoformat()}).",
            ),
        )
    if errors:
        raise ValidationFailed(errors)

    now = utcnow()
    before = None
    if current is not None:
        before = {
            "hourly_rate": current.hourly_rate,
            "effective_from": current.effective_from.isoformat(),
        }
        current.effective_to = effective_from
        current.updated_at = now
        current.updated_by = actor_id
        session.add(current)

    row = StaffRate(
        staff_level=staff_level,
        display_name=DISPLAY_NAMES.get(staff_level, staff_level.replace("_", " ").title()),
        hourly_rate=float(hourly_rate),
        display_order=list(DEFAULT_HOURLY_RATES).index(staff_level)
        if staff_level in DEFAULT_HOURLY_RATES
        else len(DEFAULT_HOURLY_RATES),
        effective_from=effective_from,
        updated_by=actor_id,
        created_at=now,
        updated_at=now,
    )
    session.add(row)
    await record_audit(
        session,
        actor_id=actor_id,
        action="staff_rate.set",
        target_type="staff_rate",
        target_id=row.id,
        before=before,
        after={
            "staff_level": staff_level,
            "hourly_rate": row.hourly_rate,
            "effective_from": effective_from.isoformat(),
        },
        commit=False,
    )
    await session.commit()
    await session.refresh(row)
    logger.info(
        "rates.period_started",
        extra={
            "staff_level": staff_level,
            "hourly_rate": row.hourly_rate,
            "effective_from": effective_from.isoformat(),
        },
    )
    return row


async def seed_default_rates(session: AsyncSession, *, effective_from: date) -> int:
    """Insert the default rate card when no rates exist yet. Returns rows added."""
    existing = await StaffRate.objects.all().limit(1).all(session)
    if existing:
        return 0
    now = utcnow()
    for order, (grade, rate) in enumerate(DEFAULT_HOURLY_RATES.items()):
        session.add(
            StaffRate(
                staff_level=grade,
                display_name=DISPLAY_NAMES[grade],
                hourly_rate=rate,
                display_order=order,
                effective_from=effective_from,
                created_at=now,
                updated_at=now,
            ),
        )
    await session.commit()
    logger.info("rates.seeded", extra={"count": len(DEFAULT_HOURLY_RATES)})
    return len(DEFAULT_HOURLY_RATES)
