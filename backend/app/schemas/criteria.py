"""Schemas for criteria evaluation and tier classification views."""

from __future__ import annotations

from pydantic import Field
from sqlmodel import SQLModel


class CriterionResultRead(SQLModel):
    criterion_name: str
    met: bool
    failure_reasons: list[str] = Field(default_factory=list)


class CriteriaEvaluationRead(SQLModel):
    """Ordered check results plus the two aggregates."""

    results: list[CriterionResultRead]
    all_criteria_met: bool
    fast_track_eligible: bool


class TierRead(SQLModel):
    key: str
    level: int
    name: str
    description: str
    approval_description: str
    target_approval_days: int
    post_review_schedule: list[str] = Field(default_factory=list)
