"""Public schema exports shared across API route modules."""

from app.schemas.audit import AuditEntryRead
from app.schemas.auto_approval import (
    AutoApprovalRuleCreate,
    AutoApprovalRuleRead,
    AutoApprovalRuleUpdate,
    RuleMatchPreview,
    RuleMatchRead,
)
from app.schemas.criteria import CriteriaEvaluationRead, CriterionResultRead, TierRead
from app.schemas.errors import ErrorResponse, FieldErrorRead
from app.schemas.health import HealthStatusResponse
from app.schemas.proposals import (
    OversightNotesPayload,
    ProposalCreate,
    ProposalRead,
    ProposalUpdate,
    RouteResult,
    TimeSavingEntryPayload,
)
from app.schemas.rates import StaffRateRead, StaffRateSet
from app.schemas.reviews import (
    AccuracySummaryRead,
    EstimationTrendRead,
    ImplementationReviewCreate,
    ImplementationReviewRead,
    ReviewActuals,
    TeamAccuracyRead,
)
from app.schemas.roi import ROIBreakdownRead, ROIPreviewRequest, ROISummaryRead
from app.schemas.voting import (
    VoteCreate,
    VoteRead,
    VoterGrantCreate,
    VoterGrantRead,
    VotingSessionRead,
)

__all__ = [
    "AccuracySummaryRead",
    "AuditEntryRead",
    "AutoApprovalRuleCreate",
    "AutoApprovalRuleRead",
    "AutoApprovalRuleUpdate",
    "CriteriaEvaluationRead",
    "CriterionResultRead",
    "ErrorResponse",
    "EstimationTrendRead",
    "FieldErrorRead",
    "HealthStatusResponse",
    "ImplementationReviewCreate",
    "ImplementationReviewRead",
    "OversightNotesPayload",
    "ProposalCreate",
    "ProposalRead",
    "ProposalUpdate",
    "ROIBreakdownRead",
    "ROIPreviewRequest",
    "ROISummaryRead",
    "ReviewActuals",
    "RouteResult",
    "RuleMatchPreview",
    "RuleMatchRead",
    "StaffRateRead",
    "StaffRateSet",
    "TeamAccuracyRead",
    "TierRead",
    "TimeSavingEntryPayload",
    "VoteCreate",
    "VoteRead",
    "VoterGrantCreate",
    "VoterGrantRead",
    "VotingSessionRead",
]
