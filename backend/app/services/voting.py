"""Voting session state machine: pathway selection, ballots, thresholds and closing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from app.core.config import GovernanceThresholds, governance_thresholds
from app.core.errors import (
    AlreadyDecided,
    AlreadyVoted,
    FieldError,
    InvalidTransition,
    NoEligibleVoters,
    NotEligible,
    NotFound,
    SessionClosed,
    ValidationFailed,
)
from app.core.logging import get_logger
from app.core.time import utcnow, utctoday
from app.models.auto_approval import AutoApprovalDecision
from app.models.proposals import Proposal
from app.models.voter_grants import (
    FAST_TRACK_VOTER,
    OVERSIGHT_PANEL,
    PARTNER_SIGNOFF,
    VOTER_CAPABILITIES,
    VoterGrant,
)
from app.models.voting import Vote, VotingSession
from app.services.audit import SYSTEM_ACTOR, record_audit, snapshot_fields
from app.services.auto_approval import load_active_rules, match_auto_approval_rules
from app.services.criteria import CriteriaEvaluationResult, evaluate_criteria
from app.services.governance_notifications.queue import (
    GovernanceNotification,
    enqueue_notification,
)
from app.services.lifecycle import (
    PARKED_OVERSIGHT_STATUSES,
    is_finally_decided,
    transition_oversight_status,
    transition_status,
)
from app.services.rates import load_rate_table
from app.services.roi import pin_valuation
from app.services.tiers import Tier, TierDefinition, classify_tier

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)

FAST_TRACK = "fast_track"
FULL_OVERSIGHT = "full_oversight"
PARTNER_ESCALATION = "partner_escalation"
AUTO_APPROVED = "auto_approved"
VOTING_PATHWAYS = (FAST_TRACK, FULL_OVERSIGHT, PARTNER_ESCALATION)

APPROVE = "approve"
REJECT = "reject"
ABSTAIN = "abstain"
DEFER = "defer"
DECISIONS = (APPROVE, REJECT, ABSTAIN, DEFER)

OUTCOME_APPROVED = "approved"
OUTCOME_REJECTED = "rejected"
OUTCOME_ESCALATED = "escalated"

PATHWAY_CAPABILITIES: dict[str, str] = {
    FAST_TRACK: FAST_TRACK_VOTER,
    FULL_OVERSIGHT: OVERSIGHT_PANEL,
    PARTNER_ESCALATION: PARTNER_SIGNOFF,
}

_PROPOSAL_DECISION_FIELDS = (
    "status",
    "oversight_status",
    "decision_pathway",
    "oversight_reviewed_at",
    "oversight_conditions",
)


@dataclass(frozen=True)
class VoteTally:
    approve: int = 0
    reject: int = 0
    abstain: int = 0
    defer: int = 0

    @property
    def total(self) -> int:
        return self.approve + self.reject + self.abstain + self.defer


@dataclass
class _CloseEffects:
    """Work left for after commit once a session closes."""

    voting_session: VotingSession
    proposal: Proposal
    voter_ids: list[UUID] = field(default_factory=list)
    successor: VotingSession | None = None


def tally_votes(decisions: Iterable[str]) -> VoteTally:
    counts = dict.fromkeys(DECISIONS, 0)
    for decision in decisions:
        if decision in counts:
            counts[decision] += 1
    return VoteTally(**counts)


def select_pathway(
    tier: TierDefinition,
    criteria: CriteriaEvaluationResult,
    *,
    allow_fast_track: bool = True,
) -> str:
    """Pick the review route for a proposal entering a vote."""
    if tier.tier == Tier.PARTNER_ESCALATION:
        return PARTNER_ESCALATION
    if allow_fast_track and criteria.fast_track_eligible:
        return FAST_TRACK
    return FULL_OVERSIGHT


def decide_outcome(
    *,
    pathway: str,
    tally: VoteTally,
    all_criteria_met: bool,
    eligible_count: int,
    thresholds: GovernanceThresholds,
) -> str | None:
    """Return the terminal outcome the tally has reached, or None to stay open."""
    if pathway == FAST_TRACK:
        if tally.approve >= thresholds.fast_track_approvals_with_criteria and all_criteria_met:
            return OUTCOME_APPROVED
        if tally.approve >= thresholds.fast_track_unanimous_approvals:
            return OUTCOME_APPROVED
        if tally.reject >= thresholds.fast_track_rejections:
            return OUTCOME_REJECTED
        if eligible_count > 0 and tally.total >= eligible_count:
            return OUTCOME_ESCALATED
        return None
    if pathway == FULL_OVERSIGHT:
        if tally.approve >= thresholds.full_oversight_quorum:
            return OUTCOME_APPROVED
        if tally.reject >= thresholds.full_oversight_quorum:
            return OUTCOME_REJECTED
        return None
    if pathway == PARTNER_ESCALATION:
        # A single partner sign-off decides; abstain and defer keep it open.
        if tally.approve > 0:
            return OUTCOME_APPROVED
        if tally.reject > 0:
            return OUTCOME_REJECTED
        return None
    raise ValueError(f"Pathway {pathway!r} is not decided by vote")


async def _eligible_voter_ids(session: AsyncSession, pathway: str) -> list[str]:
    grants = await VoterGrant.objects.filter_by(
        capability=PATHWAY_CAPABILITIES[pathway],
        is_active=True,
    ).all(session)
    return sorted({str(grant.user_id) for grant in grants})


async def find_open_session(session: AsyncSession, proposal_id: UUID) -> VotingSession | None:
    return await (
        VotingSession.objects.filter_by(proposal_id=proposal_id)
        .filter(col(VotingSession.closed_at).is_(None))
        .first(session)
    )


async def _build_session(
    session: AsyncSession,
    *,
    proposal: Proposal,
    pathway: str,
    criteria: CriteriaEvaluationResult,
    opened_by: UUID | None,
    thresholds: GovernanceThresholds,
    now: datetime,
    escalated_from_id: UUID | None = None,
    require_voters: bool = True,
) -> VotingSession:
    voter_ids = await _eligible_voter_ids(session, pathway)
    if pathway == FAST_TRACK and not voter_ids:
        # Nobody could ever close a fast-track ballot; send it to the panel.
        logger.warning(
            "voting.fast_track.no_voters",
            extra={"proposal_id": str(proposal.id)},
        )
        pathway = FULL_OVERSIGHT
        voter_ids = await _eligible_voter_ids(session, pathway)
    if not voter_ids:
        logger.warning(
            "voting.session.no_eligible_voters",
            extra={"proposal_id": str(proposal.id), "pathway": pathway},
        )
        if require_voters:
            raise NoEligibleVoters(
                f"No active {PATHWAY_CAPABILITIES[pathway]} grant exists; "
                f"grant voters before opening a {pathway} vote.",
            )
    elif pathway == FULL_OVERSIGHT and len(voter_ids) != thresholds.full_oversight_panel_size:
        logger.warning(
            "voting.panel_size_mismatch",
            extra={
                "proposal_id": str(proposal.id),
                "panel_size": len(voter_ids),
                "expected": thresholds.full_oversight_panel_size,
            },
        )
    deadline = (
        now + timedelta(days=thresholds.full_oversight_deadline_days)
        if pathway == FULL_OVERSIGHT
        else None
    )
    return VotingSession(
        proposal_id=proposal.id,
        pathway=pathway,
        deadline=deadline,
        fast_track_eligible=criteria.fast_track_eligible,
        all_criteria_met=criteria.all_criteria_met,
        criteria_snapshot=criteria.as_dict(),
        eligible_voter_ids=voter_ids,
        opened_by=opened_by,
        escalated_from_id=escalated_from_id,
        created_at=now,
    )


def _session_opened_notification(
    voting_session: VotingSession,
    proposal: Proposal,
) -> GovernanceNotification:
    return GovernanceNotification(
        event_type="voting_session_opened",
        proposal_id=proposal.id,
        recipient_ids=[UUID(raw) for raw in voting_session.eligible_voter_ids or []],
        payload={
            "session_id": str(voting_session.id),
            "title": proposal.title,
            "pathway": voting_session.pathway,
            "deadline": voting_session.deadline.isoformat() if voting_session.deadline else None,
        },
    )


async def get_or_create_voting_session(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    opened_by: UUID | None = None,
    as_of: date | None = None,
    allow_fast_track: bool = True,
    thresholds: GovernanceThresholds | None = None,
) -> VotingSession:
    """Return the proposal's open session, creating one when none is open.

    The partial unique index on open sessions is what guarantees a single
    open ballot; a losing concurrent insert re-reads the winner. A proposal an
    active rule would auto-decide never gets a session.
    """
    cfg = thresholds or governance_thresholds()
    proposal = await Proposal.objects.by_id(proposal_id).for_update().first(session)
    if proposal is None:
        raise NotFound("Proposal not found")

    existing = await find_open_session(session, proposal.id)
    if existing is not None:
        return existing

    auto_decision = await AutoApprovalDecision.objects.filter_by(proposal_id=proposal.id).first(
        session,
    )
    if auto_decision is not None or is_finally_decided(proposal):
        raise AlreadyDecided("Proposal already has a final decision")
    if proposal.status not in ("submitted", "under_review"):
        raise InvalidTransition(
            f"Proposal must be submitted before review (status is '{proposal.status}').",
        )
    if proposal.oversight_status in PARKED_OVERSIGHT_STATUSES:
        raise InvalidTransition(
            f"Proposal is parked as '{proposal.oversight_status}' and cannot go to a vote.",
        )
    if proposal.status == "submitted":
        rule_match = match_auto_approval_rules(proposal, await load_active_rules(session))
        if rule_match.effect is not None:
            raise AlreadyDecided(
                "An active auto-approval rule decides this proposal; route it instead.",
            )
        if rule_match.conflict:
            allow_fast_track = False

    rate_table = await load_rate_table(session)
    criteria = evaluate_criteria(
        proposal,
        rate_table=rate_table,
        as_of=as_of or utctoday(),
        thresholds=cfg,
    )
    tier = classify_tier(proposal, cfg)
    pathway = select_pathway(tier, criteria, allow_fast_track=allow_fast_track)
    now = utcnow()
    voting_session = await _build_session(
        session,
        proposal=proposal,
        pathway=pathway,
        criteria=criteria,
        opened_by=opened_by,
        thresholds=cfg,
        now=now,
    )
    session.add(voting_session)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        winner = await find_open_session(session, proposal_id)
        if winner is None:
            raise
        logger.info(
            "voting.session.create_race_lost",
            extra={"proposal_id": str(proposal_id), "session_id": str(winner.id)},
        )
        return winner

    before = snapshot_fields(proposal, *_PROPOSAL_DECISION_FIELDS)
    transition_oversight_status(proposal, "under_review", via="session_open")
    transition_status(proposal, "under_review")
    proposal.decision_pathway = voting_session.pathway
    session.add(proposal)
    await record_audit(
        session,
        actor_id=opened_by,
        action="voting_session.opened",
        target_type="voting_session",
        target_id=voting_session.id,
        before=before,
        after=snapshot_fields(proposal, *_PROPOSAL_DECISION_FIELDS),
        payload={
            "proposal_id": str(proposal.id),
            "pathway": voting_session.pathway,
            "tier": tier.key,
            "fast_track_eligible": criteria.fast_track_eligible,
            "all_criteria_met": criteria.all_criteria_met,
            "eligible_voter_ids": list(voting_session.eligible_voter_ids or []),
        },
        commit=False,
    )
    await session.commit()
    await session.refresh(voting_session)
    logger.info(
        "voting.session.opened",
        extra={
            "proposal_id": str(proposal.id),
            "session_id": str(voting_session.id),
            "pathway": voting_session.pathway,
            "tier": tier.key,
        },
    )
    enqueue_notification(_session_opened_notification(voting_session, proposal))
    return voting_session


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _same_ballot(
    vote: Vote,
    *,
    decision: str,
    reason: str,
    conditions: str | None,
    concerns: str | None,
) -> bool:
    return (
        vote.decision == decision
        and (vote.reason or "") == reason
        and _clean(vote.conditions) == conditions
        and _clean(vote.concerns) == concerns
    )


async def _find_existing_vote(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    pathway: str,
    voter_id: UUID,
) -> Vote | None:
    return await Vote.objects.filter_by(
        proposal_id=proposal_id,
        pathway=pathway,
        voter_id=voter_id,
    ).first(session)


def _validate_ballot(decision: str | None) -> str:
    if not decision:
        raise ValidationFailed([FieldError("decision", "Decision is required.")])
    normalized = decision.strip().lower()
    if normalized not in DECISIONS:
        raise ValidationFailed(
            [FieldError("decision", f"Decision must be one of: {', '.join(DECISIONS)}.")],
        )
    return normalized


async def submit_vote(
    session: AsyncSession,
    *,
    session_id: UUID,
    voter_id: UUID,
    decision: str,
    reason: str = "",
    conditions: str | None = None,
    concerns: str | None = None,
    as_of: date | None = None,
    thresholds: GovernanceThresholds | None = None,
) -> Vote:
    """Record one ballot and close the session in the same commit when it decides.

    Resubmitting an identical ballot returns the stored vote; a different
    ballot from the same voter raises ``AlreadyVoted``. Each vote carries the
    criteria evaluation the session was opened with.
    """
    cfg = thresholds or governance_thresholds()
    decision = _validate_ballot(decision)
    reason = (reason or "").strip()
    conditions = _clean(conditions) if decision == APPROVE else None
    concerns = _clean(concerns)
    ballot = {
        "decision": decision,
        "reason": reason,
        "conditions": conditions,
        "concerns": concerns,
    }

    voting_session = await VotingSession.objects.by_id(session_id).for_update().first(session)
    if voting_session is None:
        raise NotFound("Voting session not found")

    proposal_id = voting_session.proposal_id
    pathway = voting_session.pathway
    prior = await _find_existing_vote(
        session,
        proposal_id=proposal_id,
        pathway=pathway,
        voter_id=voter_id,
    )
    if prior is not None:
        if _same_ballot(prior, **ballot):
            return prior
        raise AlreadyVoted("A different vote from this voter is already recorded")
    if voting_session.closed_at is not None:
        raise SessionClosed("Voting session is closed")
    if not voting_session.eligible_voter_ids:
        # Escalated sessions can open before any panel grant exists.
        voting_session.eligible_voter_ids = await _eligible_voter_ids(session, pathway)
        session.add(voting_session)
    if str(voter_id) not in (voting_session.eligible_voter_ids or []):
        raise NotEligible(f"Voter is not eligible for the {voting_session.pathway} pathway")

    vote = Vote(
        proposal_id=voting_session.proposal_id,
        session_id=voting_session.id,
        voter_id=voter_id,
        pathway=voting_session.pathway,
        criteria_snapshot=dict(voting_session.criteria_snapshot or {}),
        all_criteria_met=voting_session.all_criteria_met,
        created_at=utcnow(),
        **ballot,
    )
    session.add(vote)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        # Rollback expired every loaded row; only use captured values here.
        stored = await _find_existing_vote(
            session,
            proposal_id=proposal_id,
            pathway=pathway,
            voter_id=voter_id,
        )
        if stored is None:
            raise
        if _same_ballot(stored, **ballot):
            return stored
        raise AlreadyVoted("A different vote from this voter is already recorded") from None

    await record_audit(
        session,
        actor_id=voter_id,
        action="vote.recorded",
        target_type="vote",
        target_id=vote.id,
        after={
            "proposal_id": str(vote.proposal_id),
            "session_id": str(vote.session_id),
            "pathway": vote.pathway,
            **ballot,
        },
        payload={"criteria_snapshot": vote.criteria_snapshot},
        commit=False,
    )
    effects = await _tally_and_close(session, voting_session, thresholds=cfg, as_of=as_of)
    await session.commit()
    await session.refresh(vote)
    logger.info(
        "voting.vote.recorded",
        extra={
            "session_id": str(voting_session.id),
            "proposal_id": str(voting_session.proposal_id),
            "decision": decision,
            "closed": effects is not None,
        },
    )
    if effects is not None:
        _notify_close(effects)
    return vote


async def close_session_if_threshold_met(
    session: AsyncSession,
    session_id: UUID,
    *,
    thresholds: GovernanceThresholds | None = None,
    as_of: date | None = None,
) -> VotingSession:
    """Recompute tallies and close when a threshold is reached. Safe to repeat."""
    cfg = thresholds or governance_thresholds()
    voting_session = await VotingSession.objects.by_id(session_id).for_update().first(session)
    if voting_session is None:
        raise NotFound("Voting session not found")
    if voting_session.closed_at is not None:
        return voting_session
    effects = await _tally_and_close(session, voting_session, thresholds=cfg, as_of=as_of)
    await session.commit()
    await session.refresh(voting_session)
    if effects is not None:
        _notify_close(effects)
    return voting_session


async def _tally_and_close(
    session: AsyncSession,
    voting_session: VotingSession,
    *,
    thresholds: GovernanceThresholds,
    as_of: date | None,
) -> _CloseEffects | None:
    """Refresh tallies on the locked session row and close it if decided.

    Runs inside the caller's transaction; the caller commits.
    """
    votes = await Vote.objects.filter_by(session_id=voting_session.id).all(session)
    tally = tally_votes(vote.decision for vote in votes)
    voting_session.votes_approve = tally.approve
    voting_session.votes_reject = tally.reject
    voting_session.votes_abstain = tally.abstain
    voting_session.votes_defer = tally.defer
    session.add(voting_session)

    outcome = decide_outcome(
        pathway=voting_session.pathway,
        tally=tally,
        all_criteria_met=voting_session.all_criteria_met,
        eligible_count=len(voting_session.eligible_voter_ids or []),
        thresholds=thresholds,
    )
    if outcome is None:
        return None

    proposal = await Proposal.objects.by_id(voting_session.proposal_id).for_update().first(session)
    if proposal is None:
        raise NotFound("Proposal not found")
    now = utcnow()
    before = snapshot_fields(proposal, *_PROPOSAL_DECISION_FIELDS)
    voting_session.closed_at = now
    voting_session.outcome = outcome
    session.add(voting_session)
    effects = _CloseEffects(
        voting_session=voting_session,
        proposal=proposal,
        voter_ids=[vote.voter_id for vote in votes],
    )

    if outcome == OUTCOME_ESCALATED:
        proposal.oversight_reviewed_at = now
        proposal.oversight_notes = (
            f"Fast-track vote inconclusive ({tally.approve} approve, {tally.reject} reject, "
            f"{tally.abstain} abstain, {tally.defer} defer); escalated to full oversight."
        )
        # The closed row must hit the database before the successor is inserted.
        await session.flush()
        rate_table = await load_rate_table(session)
        criteria = evaluate_criteria(
            proposal,
            rate_table=rate_table,
            as_of=as_of or utctoday(),
            thresholds=thresholds,
        )
        successor = await _build_session(
            session,
            proposal=proposal,
            pathway=FULL_OVERSIGHT,
            criteria=criteria,
            opened_by=None,
            thresholds=thresholds,
            now=now,
            escalated_from_id=voting_session.id,
            require_voters=False,
        )
        session.add(successor)
        proposal.decision_pathway = successor.pathway
        effects.successor = successor
    else:
        transition_oversight_status(proposal, outcome, via="session_close")
        transition_status(proposal, outcome)
        proposal.oversight_reviewed_at = now
        proposal.oversight_notes = (
            f"Closed {outcome} on the {voting_session.pathway} pathway "
            f"({tally.approve} approve, {tally.reject} reject)."
        )
        if outcome == OUTCOME_APPROVED:
            approval_conditions = [
                vote.conditions for vote in votes if vote.decision == APPROVE and vote.conditions
            ]
            if approval_conditions:
                proposal.oversight_conditions = "\n".join(approval_conditions)
        await pin_valuation(
            session,
            proposal=proposal,
            rate_table=await load_rate_table(session),
            as_of=as_of or utctoday(),
            reason="decision",
        )
    session.add(proposal)

    await record_audit(
        session,
        actor_id=None,
        actor_type=SYSTEM_ACTOR,
        action="voting_session.closed",
        target_type="voting_session",
        target_id=voting_session.id,
        before=before,
        after=snapshot_fields(proposal, *_PROPOSAL_DECISION_FIELDS),
        payload={
            "proposal_id": str(proposal.id),
            "pathway": voting_session.pathway,
            "outcome": outcome,
            "tally": {
                APPROVE: tally.approve,
                REJECT: tally.reject,
                ABSTAIN: tally.abstain,
                DEFER: tally.defer,
            },
            "successor_session_id": str(effects.successor.id) if effects.successor else None,
        },
        commit=False,
    )
    logger.info(
        "voting.session.closed",
        extra={
            "session_id": str(voting_session.id),
            "proposal_id": str(proposal.id),
            "pathway": voting_session.pathway,
            "outcome": outcome,
        },
    )
    return effects


def _notify_close(effects: _CloseEffects) -> None:
    voting_session = effects.voting_session
    proposal = effects.proposal
    if effects.successor is not None:
        enqueue_notification(
            GovernanceNotification(
                event_type="session_escalated",
                proposal_id=proposal.id,
                recipient_ids=list(effects.voter_ids),
                payload={
                    "title": proposal.title,
                    "closed_session_id": str(voting_session.id),
                    "successor_session_id": str(effects.successor.id),
                },
            ),
        )
        enqueue_notification(_session_opened_notification(effects.successor, proposal))
        return
    enqueue_notification(
        GovernanceNotification(
            event_type="proposal_decided",
            proposal_id=proposal.id,
            recipient_ids=[proposal.submitted_by, *effects.voter_ids],
            payload={
                "title": proposal.title,
                "outcome": voting_session.outcome,
                "pathway": voting_session.pathway,
                "conditions": proposal.oversight_conditions,
            },
        ),
    )


async def list_session_votes(session: AsyncSession, session_id: UUID) -> list[Vote]:
    return await (
        Vote.objects.filter_by(session_id=session_id)
        .order_by(col(Vote.created_at), col(Vote.id))
        .all(session)
    )


async def list_overdue_sessions(
    session: AsyncSession,
    *,
    now: datetime | None = None,
) -> list[VotingSession]:
    """Open full-oversight sessions past their advisory deadline, oldest first."""
    moment = now or utcnow()
    return await (
        VotingSession.objects.filter_by(pathway=FULL_OVERSIGHT)
        .filter(
            col(VotingSession.closed_at).is_(None),
            col(VotingSession.deadline).is_not(None),
            col(VotingSession.deadline) < moment,
        )
        .order_by(col(VotingSession.deadline))
        .all(session)
    )


def pending_voter_ids(voting_session: VotingSession, votes: Sequence[Vote]) -> list[UUID]:
    voted = {str(vote.voter_id) for vote in votes}
    return [UUID(raw) for raw in voting_session.eligible_voter_ids or [] if raw not in voted]


async def remind_overdue_sessions(
    session: AsyncSession,
    *,
    now: datetime | None = None,
) -> int:
    """Enqueue a reminder to each overdue session's outstanding voters."""
    overdue = await list_overdue_sessions(session, now=now)
    for voting_session in overdue:
        votes = await list_session_votes(session, voting_session.id)
        enqueue_notification(
            GovernanceNotification(
                event_type="session_overdue",
                proposal_id=voting_session.proposal_id,
                recipient_ids=pending_voter_ids(voting_session, votes),
                payload={
                    "session_id": str(voting_session.id),
                    "deadline": voting_session.deadline.isoformat()
                    if voting_session.deadline
                    else None,
                    "approve": voting_session.votes_approve,
                    "reject": voting_session.votes_reject,
                },
            ),
        )
    if overdue:
        logger.info("voting.overdue_reminders", extra={"count": len(overdue)})
    return len(overdue)


async def list_voter_grants(
    session: AsyncSession,
    *,
    capability: str | None = None,
    include_inactive: bool = False,
) -> list[VoterGrant]:
    query = VoterGrant.objects.all()
    if capability is not None:
        query = query.filter(col(VoterGrant.capability) == capability)
    if not include_inactive:
        query = query.filter(col(VoterGrant.is_active).is_(True))
    return await query.order_by(col(VoterGrant.capability), col(VoterGrant.created_at)).all(
        session,
    )


async def grant_voter_capability(
    session: AsyncSession,
    *,
    user_id: UUID,
    capability: str,
    display_name: str = "",
    granted_by: UUID | None,
) -> VoterGrant:
    """Grant a voting capability, reactivating an earlier revoked grant.

    Open sessions keep the voter snapshot taken when they were created.
    """
    if capability not in VOTER_CAPABILITIES:
        raise ValidationFailed(
            [
                FieldError(
                    "capability",
                    f"Capability must be one of: {', '.join(sorted(VOTER_CAPABILITIES))}.",
                ),
            ],
        )
    grant = await VoterGrant.objects.filter_by(user_id=user_id, capability=capability).first(
        session,
    )
    if grant is None:
        grant = VoterGrant(
            user_id=user_id,
            capability=capability,
            display_name=display_name,
            granted_by=granted_by,
        )
    else:
        grant.is_active = True
        grant.granted_by = granted_by
        if display_name:
            grant.display_name = display_name
    session.add(grant)
    await record_audit(
        session,
        actor_id=granted_by,
        action="voter_grant.grant",
        target_type="voter_grant",
        target_id=grant.id,
        after={"user_id": str(user_id), "capability": capability},
        commit=False,
    )
    await session.commit()
    await session.refresh(grant)
    return grant


async def revoke_voter_capability(
    session: AsyncSession,
    *,
    grant_id: UUID,
    revoked_by: UUID | None,
) -> VoterGrant:
    grant = await VoterGrant.objects.by_id(grant_id).first(session)
    if grant is None:
        raise NotFound("Voter grant not found")
    if grant.is_active:
        grant.is_active = False
        session.add(grant)
        await record_audit(
            session,
            actor_id=revoked_by,
            action="voter_grant.revoke",
            target_type="voter_grant",
            target_id=grant.id,
            before={"is_active": True},
            after={"is_active": False},
            commit=False,
        )
        await session.commit()
        await session.refresh(grant)
    return grant
