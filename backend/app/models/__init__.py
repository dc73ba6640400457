"""Model exports for SQLAlchemy/SQLModel metadata discovery."""

from app.models.audit_entries import AuditEntry
from app.models.auto_approval import AutoApprovalDecision, AutoApprovalRule
from app.models.implementation_reviews import ImplementationReview
from app.models.proposals import Proposal
from app.models.staff_rates import StaffRate
from app.models.valuations import ValuationSnapshot
from app.models.voter_grants import VoterGrant
from app.models.voting import Vote, VotingSession

__all__ = [
    "AuditEntry",
    "AutoApprovalDecision",
    "AutoApprovalRule",
    "ImplementationReview",
    "Proposal",
    "StaffRate",
    "ValuationSnapshot",
    "Vote",
    "VoterGrant",
    "VotingSession",
]
