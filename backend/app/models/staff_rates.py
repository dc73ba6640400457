"""Staff rate model holding hourly rates per grade over effective periods."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (date, datetime)


class StaffRate(QueryModel, table=True):
    """Hourly rate for one staff grade, valid from ``effective_from`` until ``effective_to``."""

    __tablename__ = "staff_rates"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    staff_level: str = Field(index=True)
    display_name: str = Field(default="")
    hourly_rate: float = Field(ge=0)
    display_order: int = Field(default=0)
    is_active: bool = Field(default=True, index=True)
    effective_from: date = Field(index=True)
    # Exclusive upper bound; None means the rate is still current.
    effective_to: date | None = Field(default=None, index=True)
    updated_by: UUID | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
