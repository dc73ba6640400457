"""Staff rate card endpoints."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, status

from app.api.deps import ACTOR_DEP, SESSION_DEP
from app.core.time import utctoday
from app.schemas.rates import StaffRateRead, StaffRateSet
from app.services.rates import list_rates, seed_default_rates, set_rate

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

router = APIRouter(prefix="/staff-rates", tags=["staff-rates"])


@router.get("", response_model=list[StaffRateRead])
async def list_staff_rates(
    session: AsyncSession = SESSION_DEP,
    current_only: bool = False,
) -> list[StaffRateRead]:
    """List rate periods; ``current_only`` hides closed historical periods."""
    rows = await list_rates(session, current_only=current_only)
    return [StaffRateRead.model_validate(row, from_attributes=True) for row in rows]


@router.post("", response_model=StaffRateRead, status_code=status.HTTP_201_CREATED)
async def set_staff_rate(
    payload: StaffRateSet,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> StaffRateRead:
    row = await set_rate(
        session,
        staff_level=payload.staff_level,
        hourly_rate=payload.hourly_rate,
        effective_from=payload.effective_from,
        actor_id=actor_id,
    )
    return StaffRateRead.model_validate(row, from_attributes=True)


@router.post("/seed")
async def seed_staff_rates(
    session: AsyncSession = SESSION_DEP,
    effective_from: date | None = None,
) -> dict[str, int]:
    """Install the default rate card on an empty table."""
    added = await seed_default_rates(session, effective_from=effective_from or utctoday())
    return {"added": added}
