"""Schemas for staff rate management."""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (date, datetime, UUID)


class StaffRateSet(SQLModel):
    """Start a new rate period for one grade."""

    staff_level: str
    hourly_rate: float
    effective_from: date


class StaffRateRead(SQLModel):
    id: UUID
    staff_level: str
    display_name: str
    hourly_rate: float
    display_order: int
    is_active: bool
    effective_from: date
    effective_to: date | None = None
    updated_by: UUID | None = None
    updated_at: datetime
