"""Proposal lifecycle: drafting, submission, revisions and routing to a decision."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlmodel import col

from app.core.config import DATA_CLASSIFICATIONS, governance_thresholds
from app.core.errors import (
    FieldError,
    InvalidTransition,
    NotEligible,
    NotFound,
    ValidationFailed,
)
from app.core.logging import get_logger
from app.core.time import utcnow
from app.models.proposals import Proposal
from app.models.voter_grants import OVERSIGHT_PANEL, PARTNER_SIGNOFF, VoterGrant
from app.schemas.proposals import ProposalCreate
from app.services.audit import record_audit, snapshot_fields
from app.services.auto_approval import apply_auto_approval
from app.services.governance_notifications.queue import (
    GovernanceNotification,
    enqueue_notification,
)
from app.services.lifecycle import transition_oversight_status, transition_status
from app.services.roi import parse_time_savings, validate_roi_inputs
from app.services.tiers import ESCALATION_TRIGGERS
from app.services.voting import get_or_create_voting_session

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.models.voting import VotingSession
    from app.schemas.proposals import ProposalUpdate

logger = get_logger(__name__)

_EDITABLE_FIELDS = (
    "title",
    "solution",
    "team",
    "cost",
    "time_savings",
    "risk_score",
    "data_classification",
    "escalation_triggers",
)
RESUBMITTABLE_OVERSIGHT = frozenset({"rejected", "requires_changes"})
REVIEWER_CAPABILITIES = (OVERSIGHT_PANEL, PARTNER_SIGNOFF)
_OVERSIGHT_FIELDS = ("oversight_status", "oversight_notes", "oversight_reviewed_at")


@dataclass(frozen=True)
class RoutingResult:
    proposal: Proposal
    route: str  # auto_decided | voting | conflict_voting | already_decided
    auto_approval_status: str | None = None
    voting_session: VotingSession | None = None


def validate_proposal_fields(values: dict[str, Any]) -> None:
    """Reject malformed proposal values before anything is written."""
    errors: list[FieldError] = []
    if "title" in values and not (values["title"] or "").strip():
        errors.append(FieldError("title", "Describe the problem being solved."))
    risk = values.get("risk_score")
    if risk is not None and not 1 <= risk <= 5:
        errors.append(FieldError("risk_score", "Risk score must be between 1 and 5."))
    classification = values.get("data_classification")
    if classification is not None and classification not in DATA_CLASSIFICATIONS:
        errors.append(
            FieldError(
                "data_classification",
                f"Data classification must be one of: {', '.join(DATA_CLASSIFICATIONS)}.",
            ),
        )
    unknown = sorted(set(values.get("escalation_triggers") or ()) - set(ESCALATION_TRIGGERS))
    if unknown:
        errors.append(
            FieldError(
                "escalation_triggers",
                f"Unknown escalation triggers: {', '.join(unknown)}.",
            ),
        )
    try:
        entries = parse_time_savings(values.get("time_savings"))
    except ValidationFailed as exc:
        errors.extend(exc.errors)
        entries = []
    errors.extend(
        validate_roi_inputs(
            entries,
            values.get("cost"),
            staff_grades=governance_thresholds().staff_grades,
        ),
    )
    if errors:
        raise ValidationFailed(errors)


def _dump_fields(
    payload: ProposalCreate | ProposalUpdate,
    *,
    exclude_unset: bool,
) -> dict[str, Any]:
    values = payload.model_dump(exclude_unset=exclude_unset)
    if values.get("escalation_triggers") is not None:
        values["escalation_triggers"] = sorted(set(values["escalation_triggers"]))
    return values


async def get_proposal_or_404(session: AsyncSession, proposal_id: UUID) -> Proposal:
    proposal = await Proposal.objects.by_id(proposal_id).first(session)
    if proposal is None:
        raise NotFound("Proposal not found")
    return proposal


async def create_proposal(
    session: AsyncSession,
    *,
    submitted_by: UUID,
    payload: ProposalCreate,
    previous_revision_id: UUID | None = None,
) -> Proposal:
    """Create a draft proposal."""
    values = _dump_fields(payload, exclude_unset=False)
    validate_proposal_fields(values)
    now = utcnow()
    proposal = Proposal(
        **values,
        submitted_by=submitted_by,
        previous_revision_id=previous_revision_id,
        created_at=now,
        updated_at=now,
    )
    session.add(proposal)
    await record_audit(
        session,
        actor_id=submitted_by,
        action="proposal.create",
        target_type="proposal",
        target_id=proposal.id,
        after=snapshot_fields(proposal, *_EDITABLE_FIELDS),
        payload={"previous_revision_id": str(previous_revision_id)}
        if previous_revision_id
        else None,
        commit=False,
    )
    await session.commit()
    await session.refresh(proposal)
    return proposal


async def update_draft(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    payload: ProposalUpdate,
    actor_id: UUID,
) -> Proposal:
    """Edit a proposal that has not been submitted yet."""
    proposal = await get_proposal_or_404(session, proposal_id)
    if proposal.status != "draft":
        raise InvalidTransition("Only draft proposals can be edited.")
    updates = _dump_fields(payload, exclude_unset=True)
    validate_proposal_fields(updates)
    before = snapshot_fields(proposal, *updates)
    for key, value in updates.items():
        setattr(proposal, key, value)
    proposal.updated_at = utcnow()
    session.add(proposal)
    await record_audit(
        session,
        actor_id=actor_id,
        action="proposal.update",
        target_type="proposal",
        target_id=proposal.id,
        before=before,
        after=snapshot_fields(proposal, *updates),
        commit=False,
    )
    await session.commit()
    await session.refresh(proposal)
    return proposal


async def submit_proposal(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    actor_id: UUID,
) -> Proposal:
    """Move a draft into the oversight queue."""
    proposal = await Proposal.objects.by_id(proposal_id).for_update().first(session)
    if proposal is None:
        raise NotFound("Proposal not found")
    validate_proposal_fields(snapshot_fields(proposal, *_EDITABLE_FIELDS))
    before = snapshot_fields(proposal, "status", "oversight_status")
    transition_status(proposal, "submitted")
    transition_oversight_status(proposal, "pending_review", via="submission")
    proposal.submitted_at = utcnow()
    session.add(proposal)
    await record_audit(
        session,
        actor_id=actor_id,
        action="proposal.submit",
        target_type="proposal",
        target_id=proposal.id,
        before=before,
        after=snapshot_fields(proposal, "status", "oversight_status"),
        commit=False,
    )
    await session.commit()
    await session.refresh(proposal)
    logger.info("proposals.submitted", extra={"proposal_id": str(proposal.id)})
    return proposal


async def resubmit_proposal(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    actor_id: UUID,
    changes: ProposalUpdate | None = None,
) -> Proposal:
    """Start a new draft revision of a rejected or sent-back proposal.

    The earlier revision keeps its closed sessions and votes untouched.
    """
    previous = await get_proposal_or_404(session, proposal_id)
    if previous.oversight_status not in RESUBMITTABLE_OVERSIGHT:
        raise InvalidTransition("Only rejected or sent-back proposals can be revised.")
    values = {
        "title": previous.title,
        "solution": previous.solution,
        "team": previous.team,
        "cost": previous.cost,
        "time_savings": list(previous.time_savings or []),
        "risk_score": previous.risk_score,
        "data_classification": previous.data_classification,
        "escalation_triggers": list(previous.escalation_triggers or []),
    }
    if changes is not None:
        values.update(changes.model_dump(exclude_unset=True))
        values["time_savings"] = values.get("time_savings") or []
        values["escalation_triggers"] = values.get("escalation_triggers") or []
    revision = await create_proposal(
        session,
        submitted_by=actor_id,
        payload=ProposalCreate.model_validate(values),
        previous_revision_id=previous.id,
    )
    logger.info(
        "proposals.revised",
        extra={"proposal_id": str(revision.id), "previous_revision_id": str(previous.id)},
    )
    return revision


async def route_proposal(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    actor_id: UUID | None = None,
) -> RoutingResult:
    """Send a submitted proposal to an auto-decision or a voting session.

    Conflicting auto-approval rules never decide; such proposals go to the
    full committee instead of the fast track.
    """
    outcome = await apply_auto_approval(session, proposal_id=proposal_id, actor_id=actor_id)
    if outcome.status in ("applied", "already_applied", "already_decided"):
        return RoutingResult(
            proposal=outcome.proposal,
            route="already_decided" if outcome.status == "already_decided" else "auto_decided",
            auto_approval_status=outcome.status,
        )

    conflict = outcome.status == "conflict"
    voting_session = await get_or_create_voting_session(
        session,
        proposal_id=proposal_id,
        opened_by=actor_id,
        allow_fast_track=not conflict,
    )
    proposal = await get_proposal_or_404(session, proposal_id)
    if conflict:
        enqueue_notification(
            GovernanceNotification(
                event_type="oversight_review_required",
                proposal_id=proposal.id,
                recipient_ids=[],
                payload={
                    "title": proposal.title,
                    "reason": "auto_approval_conflict",
                    "session_id": str(voting_session.id),
                },
            ),
        )
    return RoutingResult(
        proposal=proposal,
        route="conflict_voting" if conflict else "voting",
        auto_approval_status=outcome.status,
        voting_session=voting_session,
    )


async def _require_reviewer(session: AsyncSession, actor_id: UUID) -> None:
    grant = await (
        VoterGrant.objects.filter_by(user_id=actor_id, is_active=True)
        .filter(col(VoterGrant.capability).in_(REVIEWER_CAPABILITIES))
        .first(session)
    )
    if grant is None:
        raise NotEligible("Only oversight panel members or partners can do this.")


async def _move_oversight(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    actor_id: UUID,
    oversight_status: str,
    action: str,
    notification: str,
    notes: str | None,
) -> Proposal:
    await _require_reviewer(session, actor_id)
    proposal = await Proposal.objects.by_id(proposal_id).for_update().first(session)
    if proposal is None:
        raise NotFound("Proposal not found")
    before = snapshot_fields(proposal, *_OVERSIGHT_FIELDS)
    transition_oversight_status(proposal, oversight_status, via="reviewer")
    proposal.oversight_notes = (notes or "").strip()
    proposal.oversight_reviewed_at = utcnow()
    session.add(proposal)
    await record_audit(
        session,
        actor_id=actor_id,
        action=action,
        target_type="proposal",
        target_id=proposal.id,
        before=before,
        after=snapshot_fields(proposal, *_OVERSIGHT_FIELDS),
        commit=False,
    )
    await session.commit()
    await session.refresh(proposal)
    logger.info(
        action,
        extra={"proposal_id": str(proposal.id), "oversight_status": proposal.oversight_status},
    )
    enqueue_notification(
        GovernanceNotification(
            event_type=notification,
            proposal_id=proposal.id,
            recipient_ids=[proposal.submitted_by],
            payload={"title": proposal.title, "notes": proposal.oversight_notes},
        ),
    )
    return proposal


async def defer_proposal(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    actor_id: UUID,
    notes: str | None = None,
) -> Proposal:
    """Park a queued proposal without deciding it; ``reopen_proposal`` returns it."""
    return await _move_oversight(
        session,
        proposal_id=proposal_id,
        actor_id=actor_id,
        oversight_status="deferred",
        action="proposal.deferred",
        notification="proposal_deferred",
        notes=notes,
    )


async def request_changes(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    actor_id: UUID,
    notes: str | None = None,
) -> Proposal:
    """Send a queued proposal back to its author, who answers with a new revision."""
    return await _move_oversight(
        session,
        proposal_id=proposal_id,
        actor_id=actor_id,
        oversight_status="requires_changes",
        action="proposal.changes_requested",
        notification="changes_requested",
        notes=notes,
    )


async def reopen_proposal(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    actor_id: UUID,
    notes: str | None = None,
) -> Proposal:
    return await _move_oversight(
        session,
        proposal_id=proposal_id,
        actor_id=actor_id,
        oversight_status="pending_review",
        action="proposal.reopened",
        notification="oversight_review_required",
        notes=notes,
    )


async def _advance_status(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    actor_id: UUID,
    new_status: str,
    action: str,
) -> Proposal:
    proposal = await Proposal.objects.by_id(proposal_id).for_update().first(session)
    if proposal is None:
        raise NotFound("Proposal not found")
    before = snapshot_fields(proposal, "status")
    transition_status(proposal, new_status)
    session.add(proposal)
    await record_audit(
        session,
        actor_id=actor_id,
        action=action,
        target_type="proposal",
        target_id=proposal.id,
        before=before,
        after=snapshot_fields(proposal, "status"),
        commit=False,
    )
    await session.commit()
    await session.refresh(proposal)
    logger.info(action, extra={"proposal_id": str(proposal.id)})
    return proposal


async def start_implementation(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    actor_id: UUID,
) -> Proposal:
    """Mark an approved proposal as being rolled out."""
    return await _advance_status(
        session,
        proposal_id=proposal_id,
        actor_id=actor_id,
        new_status="in_progress",
        action="proposal.implementation_started",
    )


async def complete_implementation(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    actor_id: UUID,
) -> Proposal:
    return await _advance_status(
        session,
        proposal_id=proposal_id,
        actor_id=actor_id,
        new_status="completed",
        action="proposal.completed",
    )
