"""Auto-approval rule management, match previews and manual application."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, status
from sqlmodel import col

from app.api.deps import ACTOR_DEP, ACTOR_OPTIONAL_DEP, SESSION_DEP
from app.models.auto_approval import AutoApprovalRule
from app.schemas.auto_approval import (
    AutoApprovalRuleCreate,
    AutoApprovalRuleRead,
    AutoApprovalRuleUpdate,
    RuleMatchPreview,
    RuleMatchRead,
)
from app.schemas.proposals import ProposalRead, RouteResult
from app.services.auto_approval import (
    apply_auto_approval,
    create_rule,
    load_active_rules,
    match_auto_approval_rules,
    update_rule,
)
from app.services.proposals import get_proposal_or_404

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

router = APIRouter(prefix="/auto-approval", tags=["auto-approval"])


def _rule_read(rule: AutoApprovalRule) -> AutoApprovalRuleRead:
    return AutoApprovalRuleRead.model_validate(rule, from_attributes=True)


@router.get("/rules", response_model=list[AutoApprovalRuleRead])
async def list_rules(
    session: AsyncSession = SESSION_DEP,
    include_inactive: bool = True,
) -> list[AutoApprovalRuleRead]:
    query = AutoApprovalRule.objects.all()
    if not include_inactive:
        query = query.filter(col(AutoApprovalRule.is_active).is_(True))
    rules = await query.order_by(
        col(AutoApprovalRule.created_at),
        col(AutoApprovalRule.name),
    ).all(session)
    return [_rule_read(rule) for rule in rules]


@router.post("/rules", response_model=AutoApprovalRuleRead, status_code=status.HTTP_201_CREATED)
async def create_rule_endpoint(
    payload: AutoApprovalRuleCreate,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> AutoApprovalRuleRead:
    return _rule_read(await create_rule(session, payload=payload, actor_id=actor_id))


@router.patch("/rules/{rule_id}", response_model=AutoApprovalRuleRead)
async def update_rule_endpoint(
    rule_id: UUID,
    payload: AutoApprovalRuleUpdate,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID = ACTOR_DEP,
) -> AutoApprovalRuleRead:
    """Edit or toggle a rule; send ``{"is_active": false}`` to disable it."""
    rule = await update_rule(session, rule_id=rule_id, payload=payload, actor_id=actor_id)
    return _rule_read(rule)


@router.get("/proposals/{proposal_id}/preview", response_model=RuleMatchPreview)
async def preview_rule_match(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
) -> RuleMatchPreview:
    """Dry-run the active rules against a proposal without deciding anything."""
    proposal = await get_proposal_or_404(session, proposal_id)
    result = match_auto_approval_rules(proposal, await load_active_rules(session))
    return RuleMatchPreview(
        proposal_id=proposal.id,
        effect=result.effect,
        conflict=result.conflict,
        evaluated=[
            RuleMatchRead(
                rule_id=match.rule.id,
                rule_name=match.rule.name,
                effect=match.effect,
                matched=match.matched,
                reason=match.reason,
            )
            for match in result.evaluated
        ],
    )


@router.post("/proposals/{proposal_id}/apply", response_model=RouteResult)
async def apply_rules(
    proposal_id: UUID,
    session: AsyncSession = SESSION_DEP,
    actor_id: UUID | None = ACTOR_OPTIONAL_DEP,
) -> RouteResult:
    """Apply a single matching rule effect; conflicts and misses leave the proposal as is."""
    outcome = await apply_auto_approval(session, proposal_id=proposal_id, actor_id=actor_id)
    return RouteResult(
        proposal=ProposalRead.model_validate(outcome.proposal, from_attributes=True),
        route="auto_decided" if outcome.status in ("applied", "already_applied") else "none",
        auto_approval_status=outcome.status,
    )
