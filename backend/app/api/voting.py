"""Voting endpoints: sessions, ballots, closing and voter grants."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, status

from app.api.deps import ACTOR_DEP, ACTOR_OPTIONAL_DEP, SESSION_DEP
from app.core.errors import NotFound
from app.models.voting import VotingSession
from app.schemas.voting import (
    VoteCreate,
    VoteRead,
    VoterGrantCreate,
    VoterGrantRead,
    VotingSessionRead,
)
from app.services.voting import (
    close_session_if_threshold_met,
    find_open_session,
    get_or_create_voting_session,
    grant_voter_capability,
    list_overdue_sessions,
    list_session_votes,
    list_voter_grants,
    remind_overdue_sessions,
    revoke_voter_capability,
    submit_vote,
)

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

router = APIRouter(tags=["voting"])


async def _session_read(session: AsyncSession, voting_session: VotingSession) -> VotingSessionRead:
    model = VotingSessionRead.model_validate(voting_session, from_attributes=True)
    votes = await list_session_votes(session, voting_session.id)
    model.votes = [VoteRead.model_validate(vote, from_attributes=True) for vote in votes]
    return model


@router.post("/proposals/{proposal_id}/voting-session", response_model=VotingSessionRead)
async def open_voting_session(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID | None = ACTOR_OPTIONAL_DEP,
) -> VotingSessionRead:
    """Return the proposal's open session, creating one when none exists."""
    voting_session = await get_or_create_voting_session(
        session,
        proposal_id=proposal_id,
        opened_by=actor_id,
    )
    return await _session_read(session, voting_session)


@router.get("/proposals/{proposal_id}/voting-session", response_model=VotingSessionRead)
async def get_open_voting_session(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
) -> VotingSessionRead:
    voting_session = await find_open_session(session, proposal_id)
    if voting_session is None:
        raise NotFound("No open voting session for this proposal")
    return await _session_read(session, voting_session)


@router.get("/voting-sessions/overdue", response_model=list[VotingSessionRead])
async def list_overdue(
    session: AsyncSession = SESSION_DEP,
    now: datetime | None = None,
) -> list[VotingSessionRead]:
    """Open full-oversight sessions past their advisory deadline."""
    overdue = await list_overdue_sessions(session, now=now)
    return [await _session_read(session, item) for item in overdue]


@router.post("/voting-sessions/overdue/remind")
async def remind_overdue(
    session: AsyncSession = SESSION_DEP,
) -> dict[str, int]:
    return {"reminded": await remind_overdue_sessions(session)}


@router.get("/voting-sessions/{session_id}", response_model=VotingSessionRead)
async def get_voting_session(
    session_id: UUID,
    session: AsyncSession = SESSION_DEP,
) -> VotingSessionRead:
    voting_session = await VotingSession.objects.by_id(session_id).first(session)
    if voting_session is None:
        raise NotFound("Voting session not found")
    return await _session_read(session, voting_session)


@router.post(
    "/voting-sessions/{session_id}/votes",
    response_model=VoteRead,
    status_code=status.HTTP_201_CREATED,
)
async def cast_vote(
    session_id: UUID,
    payload: VoteCreate,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> VoteRead:
    """Record the caller's ballot; the session closes in the same commit when decided."""
    vote = await submit_vote(
        session,
        session_id=session_id,
        voter_id=actor_id,
        decision=payload.decision,
        reason=payload.reason,
        conditions=payload.conditions,
        concerns=payload.concerns,
    )
    return VoteRead.model_validate(vote, from_attributes=True)


@router.post("/voting-sessions/{session_id}/close", response_model=VotingSessionRead)
async def close_voting_session(
    session_id: UUID,
    session: AsyncSession = SESSION_DEP,
) -> VotingSessionRead:
    """Recompute tallies and close the session if a threshold is met."""
    voting_session = await close_session_if_threshold_met(session, session_id)
    return await _session_read(session, voting_session)


@router.get("/voter-grants", response_model=list[VoterGrantRead])
async def list_grants(
    session: AsyncSession = SESSION_DEP,
    capability: str | None = None,
    include_inactive: bool = False,
) -> list[VoterGrantRead]:
    grants = await list_voter_grants(
        session,
        capability=capability,
        include_inactive=include_inactive,
    )
    return [VoterGrantRead.model_validate(grant, from_attributes=True) for grant in grants]


@router.post("/voter-grants", response_model=VoterGrantRead, status_code=status.HTTP_201_CREATED)
async def create_grant(
    payload: VoterGrantCreate,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> VoterGrantRead:
    grant = await grant_voter_capability(
        session,
        user_id=payload.user_id,
        capability=payload.capability,
        display_name=payload.display_name,
        granted_by=actor_id,
    )
    return VoterGrantRead.model_validate(grant, from_attributes=True)


@router.delete("/voter-grants/{grant_id}", response_model=VoterGrantRead)
async def revoke_grant(
    grant_id: UUID,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> VoterGrantRead:
    grant = await revoke_voter_capability(session, grant_id=grant_id, revoked_by=actor_id)
    return VoterGrantRead.model_validate(grant, from_attributes=True)
