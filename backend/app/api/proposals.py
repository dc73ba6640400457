"""Proposal endpoints: drafting, submission, routing and derived governance views."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, status
from sqlmodel import col

from app.api.deps import ACTOR_DEP, ACTOR_OPTIONAL_DEP, SESSION_DEP
from app.core.config import governance_thresholds
from app.core.time import utctoday
from app.models.proposals import Proposal
from app.schemas.criteria import CriteriaEvaluationRead, CriterionResultRead, TierRead
from app.schemas.proposals import (
    OversightNotesPayload,
    ProposalCreate,
    ProposalRead,
    ProposalUpdate,
    RouteResult,
)
from app.schemas.roi import ROIBreakdownRead, ROIPreviewRequest, ROISummaryRead
from app.services.criteria import evaluate_criteria
from app.services.proposals import (
    complete_implementation,
    create_proposal,
    defer_proposal,
    get_proposal_or_404,
    reopen_proposal,
    request_changes,
    resubmit_proposal,
    route_proposal,
    start_implementation,
    submit_proposal,
    update_draft,
)
from app.services.rates import load_rate_table
from app.services.roi import compute_roi, parse_time_savings, proposal_roi
from app.services.tiers import classify_tier

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.services.criteria import CriteriaEvaluationResult
    from app.services.roi import ROISummary
    from app.services.tiers import TierDefinition

router = APIRouter(prefix="/proposals", tags=["proposals"])


def _proposal_read(proposal: Proposal) -> ProposalRead:
    return ProposalRead.model_validate(proposal, from_attributes=True)


def roi_summary_read(summary: ROISummary) -> ROISummaryRead:
    return ROISummaryRead(
        as_of=summary.as_of,
        cost=summary.cost,
        weekly_hours=summary.weekly_hours,
        weekly_value=summary.weekly_value,
        annual_value=summary.annual_value,
        roi_percent=summary.roi_percent,
        payback_months=summary.payback_months,
        roi_rating=summary.roi_rating,
        payback_rating=summary.payback_rating,
        breakdown=[
            ROIBreakdownRead(
                staff_level=line.staff_level,
                hours_per_week=line.hours_per_week,
                hourly_rate=line.hourly_rate,
                weekly_value=line.weekly_value,
                annual_value=line.annual_value,
            )
            for line in summary.breakdown
        ],
        missing_rates=list(summary.missing_rates),
    )


def _criteria_read(result: CriteriaEvaluationResult) -> CriteriaEvaluationRead:
    return CriteriaEvaluationRead(
        results=[
            CriterionResultRead(
                criterion_name=item.criterion_name,
                met=item.met,
                failure_reasons=list(item.failure_reasons),
            )
            for item in result.results
        ],
        all_criteria_met=result.all_criteria_met,
        fast_track_eligible=result.fast_track_eligible,
    )


def tier_read(definition: TierDefinition) -> TierRead:
    return TierRead(
        key=definition.key,
        level=definition.level,
        name=definition.name,
        description=definition.description,
        approval_description=definition.approval_description,
        target_approval_days=definition.target_approval_days,
        post_review_schedule=list(definition.post_review_schedule),
    )


@router.get("", response_model=list[ProposalRead])
async def list_proposals(
    session: AsyncSession = SESSION_DEP,
    status_filter: str | None = None,
    oversight_status: str | None = None,
    team: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ProposalRead]:
    """List proposals, newest first."""
    query = Proposal.objects.all()
    if status_filter is not None:
        query = query.filter(col(Proposal.status) == status_filter)
    if oversight_status is not None:
        query = query.filter(col(Proposal.oversight_status) == oversight_status)
    if team is not None:
        query = query.filter(col(Proposal.team) == team)
    proposals = await query.order_by(col(Proposal.created_at).desc()).offset(offset).limit(
        limit,
    ).all(session)
    return [_proposal_read(proposal) for proposal in proposals]


@router.post("", response_model=ProposalRead, status_code=status.HTTP_201_CREATED)
async def create_proposal_endpoint(
    payload: ProposalCreate,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> ProposalRead:
    """Create a draft proposal."""
    proposal = await create_proposal(session, submitted_by=actor_id, payload=payload)
    return _proposal_read(proposal)


@router.post("/roi-preview", response_model=ROISummaryRead)
async def preview_roi(
    payload: ROIPreviewRequest,
    session: AsyncSession = SESSION_DEP,
) -> ROISummaryRead:
    """Value time savings against the rates in force on ``as_of`` without storing anything."""
    entries = parse_time_savings([entry.model_dump() for entry in payload.time_savings])
    rate_table = await load_rate_table(session)
    summary = compute_roi(
        entries,
        rate_table,
        payload.as_of or utctoday(),
        payload.cost,
        staff_grades=governance_thresholds().staff_grades,
    )
    return roi_summary_read(summary)


@router.get("/{proposal_id}", response_model=ProposalRead)
async def get_proposal(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
) -> ProposalRead:
    return _proposal_read(await get_proposal_or_404(session, proposal_id))


@router.patch("/{proposal_id}", response_model=ProposalRead)
async def update_proposal(
    proposal_id: UUID,
    payload: ProposalUpdate,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> ProposalRead:
    """Edit a draft proposal."""
    proposal = await update_draft(
        session,
        proposal_id=proposal_id,
        payload=payload,
        actor_id=actor_id,
    )
    return _proposal_read(proposal)


@router.post("/{proposal_id}/submit", response_model=ProposalRead)
async def submit_proposal_endpoint(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> ProposalRead:
    proposal = await submit_proposal(session, proposal_id=proposal_id, actor_id=actor_id)
    return _proposal_read(proposal)


@router.post(
    "/{proposal_id}/revisions",
    response_model=ProposalRead,
    status_code=status.HTTP_201_CREATED,
)
async def resubmit_proposal_endpoint(
    proposal_id: UUID,
    payload: ProposalUpdate | None = None,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> ProposalRead:
    """Start a new draft revision of a rejected or sent-back proposal."""
    revision = await resubmit_proposal(
        session,
        proposal_id=proposal_id,
        actor_id=actor_id,
        changes=payload,
    )
    return _proposal_read(revision)


@router.post("/{proposal_id}/route", response_model=RouteResult)
async def route_proposal_endpoint(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID | None = ACTOR_OPTIONAL_DEP,
) -> RouteResult:
    """Apply auto-approval rules or open a voting session for a submitted proposal."""
    result = await route_proposal(session, proposal_id=proposal_id, actor_id=actor_id)
    return RouteResult(
        proposal=_proposal_read(result.proposal),
        route=result.route,
        auto_approval_status=result.auto_approval_status,
        voting_session_id=result.voting_session.id if result.voting_session else None,
    )


@router.post("/{proposal_id}/defer", response_model=ProposalRead)
async def defer_proposal_endpoint(
    proposal_id: UUID,
    payload: OversightNotesPayload | None = None,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> ProposalRead:
    """Park a queued proposal; reviewers only."""
    proposal = await defer_proposal(
        session,
        proposal_id=proposal_id,
        actor_id=actor_id,
        notes=payload.notes if payload else None,
    )
    return _proposal_read(proposal)


@router.post("/{proposal_id}/request-changes", response_model=ProposalRead)
async def request_changes_endpoint(
    proposal_id: UUID,
    payload: OversightNotesPayload | None = None,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> ProposalRead:
    """Send a queued proposal back to its author; reviewers only."""
    proposal = await request_changes(
        session,
        proposal_id=proposal_id,
        actor_id=actor_id,
        notes=payload.notes if payload else None,
    )
    return _proposal_read(proposal)


@router.post("/{proposal_id}/reopen", response_model=ProposalRead)
async def reopen_proposal_endpoint(
    proposal_id: UUID,
    payload: OversightNotesPayload | None = None,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> ProposalRead:
    proposal = await reopen_proposal(
        session,
        proposal_id=proposal_id,
        actor_id=actor_id,
        notes=payload.notes if payload else None,
    )
    return _proposal_read(proposal)


@router.post("/{proposal_id}/start-implementation", response_model=ProposalRead)
async def start_implementation_endpoint(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> ProposalRead:
    proposal = await start_implementation(session, proposal_id=proposal_id, actor_id=actor_id)
    return _proposal_read(proposal)


@router.post("/{proposal_id}/complete", response_model=ProposalRead)
async def complete_implementation_endpoint(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> ProposalRead:
    proposal = await complete_implementation(
        session,
        proposal_id=proposal_id,
        actor_id=actor_id,
    )
    return _proposal_read(proposal)


@router.get("/{proposal_id}/criteria", response_model=CriteriaEvaluationRead)
async def get_proposal_criteria(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
    as_of: date | None = None,
) -> CriteriaEvaluationRead:
    proposal = await get_proposal_or_404(session, proposal_id)
    rate_table = await load_rate_table(session)
    result = evaluate_criteria(proposal, rate_table=rate_table, as_of=as_of or utctoday())
    return _criteria_read(result)


@router.get("/{proposal_id}/tier", response_model=TierRead)
async def get_proposal_tier(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
) -> TierRead:
    proposal = await get_proposal_or_404(session, proposal_id)
    return tier_read(classify_tier(proposal))


@router.get("/{proposal_id}/roi", response_model=ROISummaryRead)
async def get_proposal_roi(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
    as_of: date | None = None,
) -> ROISummaryRead:
    """Value a stored proposal at ``as_of`` (today by default)."""
    proposal = await get_proposal_or_404(session, proposal_id)
    rate_table = await load_rate_table(session)
    summary = proposal_roi(
        proposal,
        rate_table,
        as_of or utctoday(),
        staff_grades=governance_thresholds().staff_grades,
    )
    return roi_summary_read(summary)
