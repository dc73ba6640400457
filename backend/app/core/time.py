"""Time helpers shared by models and services."""

from __future__ import annotations

from datetime import UTC, date, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime for DB storage."""
    return datetime.now(UTC).replace(tzinfo=None)


def utctoday() -> date:
    """Return the current UTC calendar date."""
    return utcnow().date()
