"""Structured error payload schemas used by API responses."""

from __future__ import annotations

from pydantic import Field
from sqlmodel import SQLModel


class FieldErrorRead(SQLModel):
    """One field-level validation problem."""

    field: str = Field(examples=["time_savings[0].hours_per_week"])
    message: str = Field(examples=["Hours per week cannot be negative."])


class ErrorResponse(SQLModel):
    """Error envelope produced by the shared exception handlers."""

    detail: str | dict[str, object] | list[object] = Field(
        description="Human-readable message, or a list of field errors for validation failures.",
        examples=[
            "Voting session is closed",
            [{"field": "decision", "message": "Decision is required."}],
        ],
    )
    request_id: str | None = Field(
        default=None,
        description="Request correlation identifier injected by middleware.",
    )
    code: str | None = Field(
        default=None,
        description="Machine-readable error code.",
        examples=["already_voted", "not_eligible", "session_closed", "validation_failed"],
    )
