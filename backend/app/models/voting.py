"""Voting session and vote models for committee decisions on proposals."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class VotingSession(QueryModel, table=True):
    """One ballot over a proposal; at most one open session per proposal."""

    __tablename__ = "voting_sessions"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        Index(
            "uq_voting_sessions_open_proposal",
            "proposal_id",
            unique=True,
            sqlite_where=text("closed_at IS NULL"),
            postgresql_where=text("closed_at IS NULL"),
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    proposal_id: UUID = Field(foreign_key="proposals.id", index=True)
    pathway: str = Field(index=True)  # fast_track | full_oversight | partner_escalation
    deadline: datetime | None = None
    votes_approve: int = Field(default=0)
    votes_reject: int = Field(default=0)
    votes_abstain: int = Field(default=0)
    votes_defer: int = Field(default=0)
    fast_track_eligible: bool = Field(default=False)
    all_criteria_met: bool = Field(default=False)
    # Criteria evaluation frozen at open; votes copy it and thresholds read it.
    criteria_snapshot: dict[str, object] | None = Field(
        default=None, sa_column=Column(JSON)
    )
    eligible_voter_ids: list[str] | None = Field(default=None, sa_column=Column(JSON))
    opened_by: UUID | None = None
    escalated_from_id: UUID | None = Field(
        default=None, foreign_key="voting_sessions.id"
    )
    created_at: datetime = Field(default_factory=utcnow)
    closed_at: datetime | None = None
    outcome: str | None = Field(default=None, index=True)  # approved | rejected | escalated


class Vote(QueryModel, table=True):
    """Single committee member's decision with a frozen criteria snapshot."""

    __tablename__ = "governance_votes"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        UniqueConstraint(
            "proposal_id",
            "pathway",
            "voter_id",
            name="uq_governance_vote_per_voter",
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    proposal_id: UUID = Field(foreign_key="proposals.id", index=True)
    session_id: UUID = Field(foreign_key="voting_sessions.id", index=True)
    voter_id: UUID = Field(index=True)
    decision: str  # approve | reject | abstain | defer
    pathway: str
    reason: str = Field(default="")
    conditions: str | None = None
    concerns: str | None = None
    criteria_snapshot: dict[str, object] | None = Field(
        default=None, sa_column=Column(JSON)
    )
    all_criteria_met: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)
