"""Schemas for voting sessions, ballots and voter grants."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field
from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class VoteCreate(SQLModel):
    """Ballot submitted by a committee member."""

    decision: str
    reason: str = ""
    conditions: str | None = None
    concerns: str | None = None


class VoteRead(SQLModel):
    id: UUID
    proposal_id: UUID
    session_id: UUID
    voter_id: UUID
    decision: str
    pathway: str
    reason: str
    conditions: str | None = None
    concerns: str | None = None
    criteria_snapshot: dict[str, object] | None = None
    all_criteria_met: bool
    created_at: datetime


class VotingSessionRead(SQLModel):
    """Voting session payload returned by read endpoints."""

    id: UUID
    proposal_id: UUID
    pathway: str
    deadline: datetime | None = None
    votes_approve: int
    votes_reject: int
    votes_abstain: int
    votes_defer: int
    fast_track_eligible: bool
    all_criteria_met: bool
    criteria_snapshot: dict[str, object] | None = None
    eligible_voter_ids: list[str] | None = None
    opened_by: UUID | None = None
    escalated_from_id: UUID | None = None
    created_at: datetime
    closed_at: datetime | None = None
    outcome: str | None = None
    votes: list[VoteRead] = Field(default_factory=list)


class VoterGrantCreate(SQLModel):
    user_id: UUID
    capability: str
    display_name: str = ""


class VoterGrantRead(SQLModel):
    id: UUID
    user_id: UUID
    capability: str
    display_name: str
    is_active: bool
    granted_by: UUID | None = None
    created_at: datetime
