"""Proposal lifecycle and oversight status vocabularies and guarded transitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from app.core.errors import InvalidTransition
from app.core.time import utcnow

if TYPE_CHECKING:
    from app.models.proposals import Proposal

PROPOSAL_STATUSES = (
    "draft",
    "submitted",
    "under_review",
    "approved",
    "rejected",
    "in_progress",
    "completed",
)
OVERSIGHT_STATUSES = (
    "not_required",
    "pending_review",
    "under_review",
    "approved",
    "rejected",
    "deferred",
    "requires_changes",
)
FINAL_OVERSIGHT_STATUSES = frozenset({"approved", "rejected"})
# Parked proposals wait on a reviewer, not a vote.
PARKED_OVERSIGHT_STATUSES = frozenset({"deferred", "requires_changes"})

# Only these callers may put a final decision on a proposal.
DECISION_SOURCES = frozenset({"session_close", "auto_approval"})

_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"submitted"}),
    "submitted": frozenset({"under_review", "approved", "rejected"}),
    "under_review": frozenset({"approved", "rejected"}),
    "approved": frozenset({"in_progress"}),
    "rejected": frozenset(),
    "in_progress": frozenset({"completed"}),
    "completed": frozenset(),
}
_OVERSIGHT_TRANSITIONS: dict[str, frozenset[str]] = {
    "not_required": frozenset({"pending_review"}),
    "pending_review": frozenset(
        {"under_review", "approved", "rejected", "deferred", "requires_changes"},
    ),
    # A proposal in a vote leaves review only through the vote.
    "under_review": frozenset({"approved", "rejected"}),
    "deferred": frozenset({"pending_review"}),
    # Answered with a new revision, never reopened in place.
    "requires_changes": frozenset(),
    "approved": frozenset(),
    "rejected": frozenset(),
}


def transition_status(proposal: Proposal, new_status: str) -> str:
    """Move the lifecycle status forward, returning the previous value."""
    previous = proposal.status
    if previous == new_status:
        return previous
    if new_status not in _STATUS_TRANSITIONS.get(previous, frozenset()):
        raise InvalidTransition(f"Cannot move proposal from '{previous}' to '{new_status}'.")
    proposal.status = new_status
    proposal.updated_at = utcnow()
    return previous


def transition_oversight_status(proposal: Proposal, new_status: str, *, via: str) -> str:
    """Move the oversight status, returning the previous value.

    Final statuses can only be written by a closing voting session or an
    applied auto-approval rule.
    """
    previous = proposal.oversight_status
    if new_status in FINAL_OVERSIGHT_STATUSES and via not in DECISION_SOURCES:
        raise InvalidTransition(
            f"Oversight status '{new_status}' can only be set by a voting session "
            "or an auto-approval rule.",
        )
    if previous == new_status:
        return previous
    if new_status not in _OVERSIGHT_TRANSITIONS.get(previous, frozenset()):
        raise InvalidTransition(
            f"Cannot move oversight status from '{previous}' to '{new_status}'.",
        )
    proposal.oversight_status = new_status
    proposal.updated_at = utcnow()
    return previous


def is_finally_decided(proposal: Proposal) -> bool:
    return proposal.oversight_status in FINAL_OVERSIGHT_STATUSES
