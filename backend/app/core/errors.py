"""Typed governance failures raised by services and rendered by the API."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, status


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation problem."""

    field: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class GovernanceError(HTTPException):
    """Base class for domain failures; carries a machine-readable code."""

    code = "governance_error"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: object = None) -> None:
        super().__init__(
            status_code=self.status_code_default,
            detail=detail if detail is not None else self.code,
        )


class ValidationFailed(GovernanceError):
    """Input rejected before any write; detail lists every offending field."""

    code = "validation_failed"
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = list(errors)
        super().__init__(detail=[error.as_dict() for error in self.errors])


class NotFound(GovernanceError):
    code = "not_found"
    status_code_default = status.HTTP_404_NOT_FOUND


class AlreadyVoted(GovernanceError):
    code = "already_voted"
    status_code_default = status.HTTP_409_CONFLICT


class NotEligible(GovernanceError):
    code = "not_eligible"
    status_code_default = status.HTTP_403_FORBIDDEN


class SessionClosed(GovernanceError):
    code = "session_closed"
    status_code_default = status.HTTP_409_CONFLICT


class AlreadyDecided(GovernanceError):
    """Proposal already carries a final or automatic oversight decision."""

    code = "already_decided"
    status_code_default = status.HTTP_409_CONFLICT


class InvalidTransition(GovernanceError):
    code = "invalid_transition"
    status_code_default = status.HTTP_409_CONFLICT


class NoEligibleVoters(GovernanceError):
    """No active voter grant covers the pathway, so a ballot could never close."""

    code = "no_eligible_voters"
    status_code_default = status.HTTP_409_CONFLICT
