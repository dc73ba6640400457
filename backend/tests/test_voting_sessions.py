# ruff: noqa: INP001

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import (
    AlreadyDecided,
    AlreadyVoted,
    InvalidTransition,
    NoEligibleVoters,
    NotEligible,
    NotFound,
    SessionClosed,
    ValidationFailed,
)
from app.core.time import utcnow, utctoday
from app.models.audit_entries import AuditEntry
from app.models.auto_approval import AutoApprovalRule
from app.models.proposals import Proposal
from app.models.valuations import ValuationSnapshot
from app.models.voter_grants import FAST_TRACK_VOTER, OVERSIGHT_PANEL, PARTNER_SIGNOFF
from app.models.voting import Vote, VotingSession
from app.services import voting as voting_service
from app.services.auto_approval import apply_auto_approval
from app.services.criteria import evaluate_criteria
from app.services.rates import load_rate_table, set_rate
from app.services.voting import (
    close_session_if_threshold_met,
    get_or_create_voting_session,
    grant_voter_capability,
    list_overdue_sessions,
    list_session_votes,
    list_voter_grants,
    pending_voter_ids,
    remind_overdue_sessions,
    revoke_voter_capability,
    submit_vote,
)


async def _reload(session: AsyncSession, proposal_id) -> Proposal:
    proposal = await Proposal.objects.by_id(proposal_id).first(session)
    assert proposal is not None
    return proposal


@pytest.mark.asyncio
async def test_find_or_create_returns_the_open_session(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
    fake_redis,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal()

    first = await get_or_create_voting_session(session, proposal_id=proposal.id)
    second = await get_or_create_voting_session(session, proposal_id=proposal.id)

    assert first.id == second.id
    assert first.pathway == "fast_track"
    assert first.deadline is None
    assert first.all_criteria_met is True
    assert first.fast_track_eligible is True
    assert sorted(first.eligible_voter_ids or []) == sorted(str(v) for v in voters)
    assert len(await VotingSession.objects.filter_by(proposal_id=proposal.id).all(session)) == 1

    reloaded = await _reload(session, proposal.id)
    assert reloaded.status == "under_review"
    assert reloaded.oversight_status == "under_review"
    assert reloaded.decision_pathway == "fast_track"
    assert fake_redis.notification_events() == ["voting_session_opened"]


@pytest.mark.asyncio
async def test_fast_track_closes_after_two_approvals_with_criteria_met(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
    fake_redis,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal()
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)

    await submit_vote(session, session_id=voting.id, voter_id=voters[0], decision="approve")
    still_open = await VotingSession.objects.by_id(voting.id).first(session)
    assert still_open is not None and still_open.closed_at is None

    await submit_vote(
        session,
        session_id=voting.id,
        voter_id=voters[1],
        decision="approve",
        conditions="Human review of every output",
    )
    closed = await VotingSession.objects.by_id(voting.id).first(session)
    assert closed is not None
    assert closed.outcome == "approved"
    assert closed.closed_at is not None
    assert closed.votes_approve == 2

    decided = await _reload(session, proposal.id)
    assert decided.status == "approved"
    assert decided.oversight_status == "approved"
    assert decided.oversight_conditions == "Human review of every output"

    with pytest.raises(SessionClosed):
        await submit_vote(session, session_id=voting.id, voter_id=voters[2], decision="approve")

    snapshots = await ValuationSnapshot.objects.filter_by(proposal_id=proposal.id).all(session)
    assert len(snapshots) == 1
    assert snapshots[0].annual_value == 80.0 * 52
    assert fake_redis.notification_events()[-1] == "proposal_decided"


@pytest.mark.asyncio
async def test_fast_track_without_criteria_needs_three_approvals(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    # 4160 a year against 5000 of cost misses the ROI floor but stays fast-track eligible.
    proposal = await make_proposal(cost=5000.0)
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    assert voting.pathway == "fast_track"
    assert voting.all_criteria_met is False

    for voter in voters[:2]:
        await submit_vote(session, session_id=voting.id, voter_id=voter, decision="approve")
    assert (await _reload(session, proposal.id)).status == "under_review"

    await submit_vote(session, session_id=voting.id, voter_id=voters[2], decision="approve")
    assert (await _reload(session, proposal.id)).status == "approved"


@pytest.mark.asyncio
async def test_fast_track_two_rejections(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal()
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)

    await submit_vote(session, session_id=voting.id, voter_id=voters[0], decision="reject")
    vote = await submit_vote(
        session,
        session_id=voting.id,
        voter_id=voters[1],
        decision="reject",
        conditions="ignored on a rejection",
        concerns="Vendor lock-in",
    )
    assert vote.conditions is None
    assert vote.concerns == "Vendor lock-in"
    decided = await _reload(session, proposal.id)
    assert decided.status == "rejected"
    assert decided.oversight_status == "rejected"


@pytest.mark.asyncio
async def test_votes_are_unique_per_voter(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal()
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)

    first = await submit_vote(
        session,
        session_id=voting.id,
        voter_id=voters[0],
        decision="abstain",
        reason="Need more detail",
    )
    repeat = await submit_vote(
        session,
        session_id=voting.id,
        voter_id=voters[0],
        decision="abstain",
        reason="Need more detail",
    )
    assert repeat.id == first.id
    assert first.criteria_snapshot is not None
    assert first.criteria_snapshot["all_criteria_met"] is True

    with pytest.raises(AlreadyVoted):
        await submit_vote(session, session_id=voting.id, voter_id=voters[0], decision="approve")

    with pytest.raises(NotEligible):
        await submit_vote(session, session_id=voting.id, voter_id=uuid4(), decision="approve")

    with pytest.raises(ValidationFailed):
        await submit_vote(session, session_id=voting.id, voter_id=voters[1], decision="maybe")

    with pytest.raises(NotFound):
        await submit_vote(session, session_id=uuid4(), voter_id=voters[1], decision="approve")

    assert len(await list_session_votes(session, voting.id)) == 1


@pytest.mark.asyncio
async def test_inconclusive_fast_track_escalates_to_full_oversight(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
    fake_redis,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    panel = await grant_voters(OVERSIGHT_PANEL, 5)
    proposal = await make_proposal()
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)

    for voter, decision in zip(voters, ("approve", "reject", "abstain"), strict=True):
        await submit_vote(session, session_id=voting.id, voter_id=voter, decision=decision)

    closed = await VotingSession.objects.by_id(voting.id).first(session)
    assert closed is not None
    assert closed.outcome == "escalated"

    successor = await VotingSession.objects.filter_by(escalated_from_id=voting.id).first(session)
    assert successor is not None
    assert successor.pathway == "full_oversight"
    assert successor.closed_at is None
    assert successor.deadline == successor.created_at + timedelta(days=5)
    assert sorted(successor.eligible_voter_ids or []) == sorted(str(v) for v in panel)

    escalated = await _reload(session, proposal.id)
    assert escalated.status == "under_review"
    assert escalated.decision_pathway == "full_oversight"
    assert "session_escalated" in fake_redis.notification_events()

    again = await get_or_create_voting_session(session, proposal_id=proposal.id)
    assert again.id == successor.id


@pytest.mark.asyncio
async def test_full_oversight_closes_at_three_of_five(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    panel = await grant_voters(OVERSIGHT_PANEL, 5)
    proposal = await make_proposal(cost=20000.0, risk_score=4)
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    assert voting.pathway == "full_oversight"
    assert voting.deadline == voting.created_at + timedelta(days=5)

    await submit_vote(session, session_id=voting.id, voter_id=panel[0], decision="approve")
    await submit_vote(session, session_id=voting.id, voter_id=panel[1], decision="reject")
    await submit_vote(session, session_id=voting.id, voter_id=panel[2], decision="approve")
    await submit_vote(session, session_id=voting.id, voter_id=panel[3], decision="reject")
    assert (await _reload(session, proposal.id)).status == "under_review"

    await submit_vote(session, session_id=voting.id, voter_id=panel[4], decision="approve")
    closed = await VotingSession.objects.by_id(voting.id).first(session)
    assert closed is not None
    assert closed.outcome == "approved"
    assert (closed.votes_approve, closed.votes_reject) == (3, 2)


@pytest.mark.asyncio
async def test_partner_signoff_decides_restricted_proposals(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    partners = await grant_voters(PARTNER_SIGNOFF, 2)
    await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal(data_classification="restricted")
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    assert voting.pathway == "partner_escalation"

    await submit_vote(session, session_id=voting.id, voter_id=partners[0], decision="defer")
    assert (await _reload(session, proposal.id)).status == "under_review"
    await submit_vote(session, session_id=voting.id, voter_id=partners[1], decision="reject")
    assert (await _reload(session, proposal.id)).status == "rejected"


@pytest.mark.asyncio
async def test_fast_track_without_voters_falls_back_to_panel(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    await grant_voters(OVERSIGHT_PANEL, 5)
    proposal = await make_proposal()
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    assert voting.pathway == "full_oversight"
    assert voting.fast_track_eligible is True


@pytest.mark.asyncio
async def test_session_creation_guards(
    session: AsyncSession,
    rates: None,
    make_proposal,
) -> None:
    draft = await make_proposal(status="draft", oversight_status="not_required")
    with pytest.raises(InvalidTransition):
        await get_or_create_voting_session(session, proposal_id=draft.id)

    decided = await make_proposal(status="approved", oversight_status="approved")
    with pytest.raises(AlreadyDecided):
        await get_or_create_voting_session(session, proposal_id=decided.id)

    with pytest.raises(NotFound):
        await get_or_create_voting_session(session, proposal_id=uuid4())


@pytest.mark.asyncio
async def test_close_is_safe_to_repeat(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal()
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    await submit_vote(session, session_id=voting.id, voter_id=voters[0], decision="approve")

    unchanged = await close_session_if_threshold_met(session, voting.id)
    assert unchanged.closed_at is None
    assert unchanged.votes_approve == 1

    await submit_vote(session, session_id=voting.id, voter_id=voters[1], decision="approve")
    first = await close_session_if_threshold_met(session, voting.id)
    second = await close_session_if_threshold_met(session, voting.id)
    assert first.closed_at == second.closed_at
    closes = await AuditEntry.objects.filter_by(action="voting_session.closed").all(session)
    assert len(closes) == 1


@pytest.mark.asyncio
async def test_overdue_sessions_get_reminders(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
    fake_redis,
) -> None:
    panel = await grant_voters(OVERSIGHT_PANEL, 5)
    proposal = await make_proposal(cost=20000.0)
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    await submit_vote(session, session_id=voting.id, voter_id=panel[0], decision="approve")
    assert voting.deadline is not None

    assert await list_overdue_sessions(session, now=voting.deadline - timedelta(hours=1)) == []
    late = voting.deadline + timedelta(days=1)
    overdue = await list_overdue_sessions(session, now=late)
    assert [item.id for item in overdue] == [voting.id]

    votes = await list_session_votes(session, voting.id)
    assert sorted(pending_voter_ids(voting, votes)) == sorted(panel[1:])

    assert await remind_overdue_sessions(session, now=late) == 1
    assert fake_redis.notification_events()[-1] == "session_overdue"


@pytest.mark.asyncio
async def test_voter_grants_can_be_revoked_and_restored(session: AsyncSession) -> None:
    admin = uuid4()
    member = uuid4()
    grant = await grant_voter_capability(
        session,
        user_id=member,
        capability=FAST_TRACK_VOTER,
        display_name="Reviewer",
        granted_by=admin,
    )
    grants = await list_voter_grants(session, capability=FAST_TRACK_VOTER)
    assert [g.id for g in grants] == [grant.id]

    revoked = await revoke_voter_capability(session, grant_id=grant.id, revoked_by=admin)
    assert revoked.is_active is False
    assert await list_voter_grants(session) == []
    assert len(await list_voter_grants(session, include_inactive=True)) == 1

    restored = await grant_voter_capability(
        session,
        user_id=member,
        capability=FAST_TRACK_VOTER,
        granted_by=admin,
    )
    assert restored.id == grant.id
    assert restored.is_active is True
    assert restored.display_name == "Reviewer"

    with pytest.raises(ValidationFailed):
        await grant_voter_capability(session, user_id=member, capability="owner", granted_by=admin)
    with pytest.raises(NotFound):
        await revoke_voter_capability(session, grant_id=uuid4(), revoked_by=admin)

    actions = sorted(entry.action for entry in await AuditEntry.objects.all().all(session))
    assert actions == ["voter_grant.grant", "voter_grant.grant", "voter_grant.revoke"]


@pytest.mark.asyncio
async def test_vote_rows_keep_pathway(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal()
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    await submit_vote(session, session_id=voting.id, voter_id=voters[0], decision="approve")
    stored = await Vote.objects.filter_by(session_id=voting.id).all(session)
    assert [vote.pathway for vote in stored] == ["fast_track"]


@pytest.mark.asyncio
async def test_rule_matched_proposal_refuses_a_direct_vote(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    await grant_voters(FAST_TRACK_VOTER, 3)
    session.add(AutoApprovalRule(name="Cheap tooling", max_cost=5000.0))
    await session.commit()
    proposal = await make_proposal()

    with pytest.raises(AlreadyDecided):
        await get_or_create_voting_session(session, proposal_id=proposal.id)
    assert await VotingSession.objects.filter_by(proposal_id=proposal.id).all(session) == []

    outcome = await apply_auto_approval(session, proposal_id=proposal.id)
    assert outcome.status == "applied"
    assert outcome.proposal.oversight_status == "approved"


@pytest.mark.asyncio
async def test_conflicting_rules_keep_a_direct_vote_off_the_fast_track(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    await grant_voters(FAST_TRACK_VOTER, 3)
    await grant_voters(OVERSIGHT_PANEL, 5)
    session.add(AutoApprovalRule(name="Approve cheap", max_cost=5000.0))
    session.add(
        AutoApprovalRule(name="Reject audit team", allowed_teams=["audit"], auto_approve=False),
    )
    await session.commit()
    proposal = await make_proposal(team="audit")

    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    assert voting.pathway == "full_oversight"
    assert voting.fast_track_eligible is True


@pytest.mark.asyncio
async def test_no_eligible_voters_opens_nothing(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
    fake_redis,
) -> None:
    await grant_voters(FAST_TRACK_VOTER, 3)
    restricted = await make_proposal(data_classification="restricted")

    with pytest.raises(NoEligibleVoters):
        await get_or_create_voting_session(session, proposal_id=restricted.id)

    unchanged = await _reload(session, restricted.id)
    assert unchanged.status == "submitted"
    assert unchanged.oversight_status == "pending_review"
    assert unchanged.decision_pathway is None
    assert await VotingSession.objects.all().all(session) == []
    assert await AuditEntry.objects.all().all(session) == []
    assert fake_redis.notification_events() == []

    partners = await grant_voters(PARTNER_SIGNOFF, 1)
    voting = await get_or_create_voting_session(session, proposal_id=restricted.id)
    assert voting.pathway == "partner_escalation"
    assert voting.eligible_voter_ids == [str(partners[0])]


@pytest.mark.asyncio
async def test_escalation_before_any_panel_grant_picks_up_later_grants(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal()
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    for voter, decision in zip(voters, ("approve", "reject", "abstain"), strict=True):
        await submit_vote(session, session_id=voting.id, voter_id=voter, decision=decision)

    successor = await VotingSession.objects.filter_by(escalated_from_id=voting.id).first(session)
    assert successor is not None
    assert successor.eligible_voter_ids == []

    panel = await grant_voters(OVERSIGHT_PANEL, 5)
    vote = await submit_vote(
        session,
        session_id=successor.id,
        voter_id=panel[0],
        decision="approve",
    )
    assert vote.pathway == "full_oversight"

    refreshed = await VotingSession.objects.by_id(successor.id).first(session)
    assert refreshed is not None
    assert sorted(refreshed.eligible_voter_ids or []) == sorted(str(v) for v in panel)
    assert refreshed.votes_approve == 1


@pytest.mark.asyncio
async def test_votes_carry_the_criteria_the_session_opened_with(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal()
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    assert voting.all_criteria_met is True
    assert voting.criteria_snapshot

    await set_rate(
        session,
        staff_level="admin",
        hourly_rate=10.0,
        effective_from=utctoday(),
        actor_id=None,
    )
    live = evaluate_criteria(
        await _reload(session, proposal.id),
        rate_table=await load_rate_table(session),
        as_of=utctoday(),
    )
    assert live.all_criteria_met is False

    for voter in voters[:2]:
        await submit_vote(session, session_id=voting.id, voter_id=voter, decision="approve")

    closed = await VotingSession.objects.by_id(voting.id).first(session)
    assert closed is not None
    assert closed.outcome == "approved"
    votes = await list_session_votes(session, voting.id)
    assert len(votes) == 2
    for vote in votes:
        assert vote.all_criteria_met is True
        assert vote.criteria_snapshot == closed.criteria_snapshot


@pytest.mark.asyncio
async def test_only_one_open_session_per_proposal(session: AsyncSession, make_proposal) -> None:
    proposal = await make_proposal()
    proposal_id = proposal.id
    session.add(VotingSession(proposal_id=proposal_id, pathway="fast_track"))
    await session.commit()

    session.add(VotingSession(proposal_id=proposal_id, pathway="full_oversight"))
    with pytest.raises(IntegrityError):
        await session.commit()
    await session.rollback()

    session.add(
        VotingSession(
            proposal_id=proposal_id,
            pathway="full_oversight",
            closed_at=utcnow(),
            outcome="rejected",
        ),
    )
    await session.commit()


@pytest.mark.asyncio
async def test_losing_session_insert_returns_the_winner(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal()
    find_open = voting_service.find_open_session
    calls: list[int] = []

    async def _competing_open(db: AsyncSession, proposal_id) -> VotingSession | None:
        calls.append(1)
        if len(calls) == 1:
            db.add(
                VotingSession(
                    proposal_id=proposal_id,
                    pathway="fast_track",
                    eligible_voter_ids=sorted(str(voter) for voter in voters),
                ),
            )
            await db.commit()
            return None
        return await find_open(db, proposal_id)

    monkeypatch.setattr(voting_service, "find_open_session", _competing_open)

    proposal_id = proposal.id
    returned = await get_or_create_voting_session(session, proposal_id=proposal_id)

    sessions = await VotingSession.objects.filter_by(proposal_id=proposal_id).all(session)
    assert len(sessions) == 1
    assert returned.id == sessions[0].id
    assert len(calls) == 2
    assert await AuditEntry.objects.filter_by(action="voting_session.opened").all(session) == []


@pytest.mark.asyncio
async def test_vote_is_unique_per_voter_and_pathway(session: AsyncSession, make_proposal) -> None:
    proposal = await make_proposal()
    voting = VotingSession(proposal_id=proposal.id, pathway="fast_track")
    session.add(voting)
    await session.commit()
    voter = uuid4()
    for decision in ("approve", "reject"):
        session.add(
            Vote(
                proposal_id=proposal.id,
                session_id=voting.id,
                voter_id=voter,
                pathway="fast_track",
                decision=decision,
            ),
        )
    with pytest.raises(IntegrityError):
        await session.commit()


async def _race_ballot_in(monkeypatch: pytest.MonkeyPatch, *, decision: str) -> None:
    """Make the duplicate-ballot lookup miss once while a competing ballot commits."""
    find_vote = voting_service._find_existing_vote
    calls: list[int] = []

    async def _competing_vote(db: AsyncSession, *, proposal_id, pathway, voter_id):
        calls.append(1)
        if len(calls) == 1:
            voting = await VotingSession.objects.filter_by(proposal_id=proposal_id).first(db)
            assert voting is not None
            db.add(
                Vote(
                    proposal_id=proposal_id,
                    session_id=voting.id,
                    voter_id=voter_id,
                    pathway=pathway,
                    decision=decision,
                ),
            )
            await db.commit()
            return None
        return await find_vote(db, proposal_id=proposal_id, pathway=pathway, voter_id=voter_id)

    monkeypatch.setattr(voting_service, "_find_existing_vote", _competing_vote)


@pytest.mark.asyncio
async def test_concurrent_identical_ballot_returns_the_stored_vote(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal()
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    await _race_ballot_in(monkeypatch, decision="approve")
    voting_id = voting.id

    vote = await submit_vote(session, session_id=voting_id, voter_id=voters[0], decision="approve")

    stored = await list_session_votes(session, voting_id)
    assert [row.id for row in stored] == [vote.id]
    assert await AuditEntry.objects.filter_by(action="vote.recorded").all(session) == []


@pytest.mark.asyncio
async def test_concurrent_different_ballot_is_already_voted(
    session: AsyncSession,
    rates: None,
    make_proposal,
    grant_voters,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    voters = await grant_voters(FAST_TRACK_VOTER, 3)
    proposal = await make_proposal()
    voting = await get_or_create_voting_session(session, proposal_id=proposal.id)
    await _race_ballot_in(monkeypatch, decision="reject")
    voting_id = voting.id

    with pytest.raises(AlreadyVoted):
        await submit_vote(session, session_id=voting_id, voter_id=voters[0], decision="approve")

    stored = await list_session_votes(session, voting_id)
    assert [row.decision for row in stored] == ["reject"]
