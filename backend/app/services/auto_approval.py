"""Auto-approval rule matching with conflict surfacing, and exactly-once application."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from app.core.config import DATA_CLASSIFICATIONS
from app.core.errors import FieldError, InvalidTransition, NotFound, ValidationFailed
from app.core.logging import get_logger
from app.core.time import utcnow, utctoday
from app.models.auto_approval import AutoApprovalDecision, AutoApprovalRule
from app.models.proposals import Proposal
from app.models.voting import VotingSession
from app.services.audit import SYSTEM_ACTOR, record_audit, snapshot_fields
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

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.schemas.auto_approval import AutoApprovalRuleCreate, AutoApprovalRuleUpdate

logger = get_logger(__name__)

APPROVE = "approve"
REJECT = "reject"
AUTO_APPROVED_PATHWAY = "auto_approved"

_DECISION_FIELDS = (
    "status",
    "oversight_status",
    "decision_pathway",
    "oversight_reviewed_at",
    "oversight_conditions",
)


@dataclass(frozen=True)
class ConditionCheck:
    met: bool
    description: str

    def render(self) -> str:
        return f"{'✓' if self.met else '✗'} {self.description}"


@dataclass(frozen=True)
class RuleMatch:
    """Outcome of one rule against one proposal."""

    rule: AutoApprovalRule
    matched: bool
    conditions: tuple[ConditionCheck, ...] = ()

    @property
    def effect(self) -> str:
        return APPROVE if self.rule.auto_approve else REJECT

    @property
    def reason(self) -> str:
        if not self.conditions:
            return "Rule has no filters and matches every proposal"
        return "; ".join(check.render() for check in self.conditions)


@dataclass(frozen=True)
class RuleMatchResult:
    evaluated: tuple[RuleMatch, ...] = ()

    @property
    def matches(self) -> tuple[RuleMatch, ...]:
        return tuple(match for match in self.evaluated if match.matched)

    @property
    def effects(self) -> frozenset[str]:
        return frozenset(match.effect for match in self.matches)

    @property
    def conflict(self) -> bool:
        return len(self.effects) > 1

    @property
    def effect(self) -> str | None:
        """The single effect to apply, or None when nothing matched or rules disagree."""
        if len(self.effects) != 1:
            return None
        return next(iter(self.effects))

    @property
    def deciding_match(self) -> RuleMatch | None:
        effect = self.effect
        if effect is None:
            return None
        return next(match for match in self.matches if match.effect == effect)


@dataclass(frozen=True)
class AutoApprovalOutcome:
    """What happened when auto-approval was attempted for a proposal."""

    # applied | already_applied | already_decided | conflict | no_match | voting_in_progress
    status: str
    proposal: Proposal
    match_result: RuleMatchResult | None = None
    decision: AutoApprovalDecision | None = None

    @property
    def applied(self) -> bool:
        return self.status == "applied"


def _money(value: float) -> str:
    return f"£{value:,.0f}"


def _rule_conditions(rule: AutoApprovalRule, proposal: Proposal) -> list[ConditionCheck]:
    # A filter whose attribute is missing on the proposal counts as not met.
    checks: list[ConditionCheck] = []
    if rule.max_cost is not None:
        if proposal.cost is None:
            checks.append(ConditionCheck(False, f"Cost missing, limit {_money(rule.max_cost)}"))
        else:
            met = proposal.cost <= rule.max_cost
            checks.append(
                ConditionCheck(
                    met,
                    f"Cost {_money(proposal.cost)} {'≤' if met else '>'} {_money(rule.max_cost)}",
                ),
            )
    if rule.max_risk_score is not None:
        if proposal.risk_score is None:
            checks.append(ConditionCheck(False, f"Risk missing, limit {rule.max_risk_score}"))
        else:
            met = proposal.risk_score <= rule.max_risk_score
            checks.append(
                ConditionCheck(
                    met,
                    f"Risk {proposal.risk_score} {'≤' if met else '>'} {rule.max_risk_score}",
                ),
            )
    if rule.allowed_data_classifications:
        classification = proposal.data_classification
        met = classification is not None and classification in rule.allowed_data_classifications
        checks.append(
            ConditionCheck(
                met,
                f"Data classification {classification or 'none'} "
                f"{'is' if met else 'is not'} in allowed list",
            ),
        )
    if rule.allowed_teams:
        team = proposal.team or ""
        met = bool(team) and team in rule.allowed_teams
        checks.append(
            ConditionCheck(
                met,
                f"Team {team or 'none'} {'is' if met else 'is not'} in allowed list",
            ),
        )
    return checks


def evaluate_rule(rule: AutoApprovalRule, proposal: Proposal) -> RuleMatch:
    conditions = _rule_conditions(rule, proposal)
    if not conditions:
        matched = True
    elif rule.require_all_conditions:
        matched = all(check.met for check in conditions)
    else:
        matched = any(check.met for check in conditions)
    return RuleMatch(rule=rule, matched=matched, conditions=tuple(conditions))


def _rule_order(rule: AutoApprovalRule) -> tuple[object, ...]:
    return (rule.created_at, rule.name, str(rule.id))


def match_auto_approval_rules(
    proposal: Proposal,
    rules: Iterable[AutoApprovalRule],
) -> RuleMatchResult:
    """Evaluate active rules in a stable order; inactive rules are skipped."""
    active = sorted((rule for rule in rules if rule.is_active), key=_rule_order)
    return RuleMatchResult(evaluated=tuple(evaluate_rule(rule, proposal) for rule in active))


async def load_active_rules(session: AsyncSession) -> list[AutoApprovalRule]:
    return await (
        AutoApprovalRule.objects.filter_by(is_active=True)
        .order_by(
            col(AutoApprovalRule.created_at),
            col(AutoApprovalRule.name),
            col(AutoApprovalRule.id),
        )
        .all(session)
    )


def _validate_rule_fields(
    *,
    name: str | None,
    max_cost: float | None,
    max_risk_score: int | None,
    allowed_data_classifications: Sequence[str] | None,
) -> None:
    errors: list[FieldError] = []
    if name is not None and not name.strip():
        errors.append(FieldError("name", "Rule name is required."))
    if max_cost is not None and max_cost < 0:
        errors.append(FieldError("max_cost", "Maximum cost cannot be negative."))
    if max_risk_score is not None and not 1 <= max_risk_score <= 5:
        errors.append(FieldError("max_risk_score", "Maximum risk score must be between 1 and 5."))
    unknown = sorted(set(allowed_data_classifications or ()) - set(DATA_CLASSIFICATIONS))
    if unknown:
        errors.append(
            FieldError(
                "allowed_data_classifications",
                f"Unknown data classifications: {', '.join(unknown)}.",
            ),
        )
    if errors:
        raise ValidationFailed(errors)


async def create_rule(
    session: AsyncSession,
    *,
    payload: AutoApprovalRuleCreate,
    actor_id: UUID | None,
) -> AutoApprovalRule:
    _validate_rule_fields(
        name=payload.name,
        max_cost=payload.max_cost,
        max_risk_score=payload.max_risk_score,
        allowed_data_classifications=payload.allowed_data_classifications,
    )
    now = utcnow()
    rule = AutoApprovalRule(
        **payload.model_dump(),
        created_by=actor_id,
        created_at=now,
        updated_at=now,
    )
    session.add(rule)
    await record_audit(
        session,
        actor_id=actor_id,
        action="auto_approval_rule.create",
        target_type="auto_approval_rule",
        target_id=rule.id,
        after=payload.model_dump(),
        commit=False,
    )
    await session.commit()
    await session.refresh(rule)
    return rule


async def update_rule(
    session: AsyncSession,
    *,
    rule_id: UUID,
    payload: AutoApprovalRuleUpdate,
    actor_id: UUID | None,
) -> AutoApprovalRule:
    rule = await AutoApprovalRule.objects.by_id(rule_id).first(session)
    if rule is None:
        raise NotFound("Auto-approval rule not found")
    updates = payload.model_dump(exclude_unset=True)
    _validate_rule_fields(
        name=updates.get("name"),
        max_cost=updates.get("max_cost"),
        max_risk_score=updates.get("max_risk_score"),
        allowed_data_classifications=updates.get("allowed_data_classifications"),
    )
    before = snapshot_fields(rule, *updates)
    for key, value in updates.items():
        setattr(rule, key, value)
    rule.updated_at = utcnow()
    session.add(rule)
    await record_audit(
        session,
        actor_id=actor_id,
        action="auto_approval_rule.update",
        target_type="auto_approval_rule",
        target_id=rule.id,
        before=before,
        after=snapshot_fields(rule, *updates),
        commit=False,
    )
    await session.commit()
    await session.refresh(rule)
    return rule


async def apply_auto_approval(
    session: AsyncSession,
    *,
    proposal_id: UUID,
    actor_id: UUID | None = None,
    as_of: date | None = None,
) -> AutoApprovalOutcome:
    """Apply the single matching rule effect to a submitted proposal, at most once.

    Conflicting matches are audited and left for human review. A proposal with
    an open voting session is never auto-decided.
    """
    proposal = await Proposal.objects.by_id(proposal_id).for_update().first(session)
    if proposal is None:
        raise NotFound("Proposal not found")

    existing = await AutoApprovalDecision.objects.filter_by(proposal_id=proposal.id).first(session)
    if existing is not None:
        return AutoApprovalOutcome(status="already_applied", proposal=proposal, decision=existing)
    if is_finally_decided(proposal):
        return AutoApprovalOutcome(status="already_decided", proposal=proposal)
    open_session = await VotingSession.objects.filter_by(proposal_id=proposal.id).filter(
        col(VotingSession.closed_at).is_(None),
    ).first(session)
    if open_session is not None:
        return AutoApprovalOutcome(status="voting_in_progress", proposal=proposal)

    if proposal.status != "submitted":
        raise InvalidTransition(
            f"Only submitted proposals can be auto-decided (status is '{proposal.status}').",
        )
    if proposal.oversight_status in PARKED_OVERSIGHT_STATUSES:
        raise InvalidTransition(
            f"Proposal is parked as '{proposal.oversight_status}' and cannot be auto-decided.",
        )

    result = match_auto_approval_rules(proposal, await load_active_rules(session))
    if result.conflict:
        await _record_conflict(session, proposal=proposal, result=result, actor_id=actor_id)
        return AutoApprovalOutcome(status="conflict", proposal=proposal, match_result=result)

    deciding = result.deciding_match
    if deciding is None:
        return AutoApprovalOutcome(status="no_match", proposal=proposal, match_result=result)

    decision = AutoApprovalDecision(
        proposal_id=proposal.id,
        rule_id=deciding.rule.id,
        rule_name=deciding.rule.name,
        effect=deciding.effect,
        pathway=AUTO_APPROVED_PATHWAY,
        reason=deciding.reason,
        created_at=utcnow(),
    )
    session.add(decision)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        stored = await AutoApprovalDecision.objects.filter_by(
            proposal_id=proposal_id,
        ).first(session)
        refreshed = await Proposal.objects.by_id(proposal_id).first(session)
        logger.info(
            "auto_approval.already_applied",
            extra={"proposal_id": str(proposal_id)},
        )
        return AutoApprovalOutcome(
            status="already_applied",
            proposal=refreshed or proposal,
            decision=stored,
        )

    before = snapshot_fields(proposal, *_DECISION_FIELDS)
    final_status = "approved" if deciding.effect == APPROVE else "rejected"
    now = utcnow()
    transition_oversight_status(proposal, final_status, via="auto_approval")
    transition_status(proposal, final_status)
    proposal.decision_pathway = AUTO_APPROVED_PATHWAY
    proposal.oversight_reviewed_at = now
    verb = "approved" if deciding.effect == APPROVE else "rejected"
    proposal.oversight_notes = f"Auto-{verb} by rule '{deciding.rule.name}'"
    if deciding.effect == APPROVE and deciding.rule.approval_conditions:
        proposal.oversight_conditions = deciding.rule.approval_conditions
    session.add(proposal)

    rate_table = await load_rate_table(session)
    await pin_valuation(
        session,
        proposal=proposal,
        rate_table=rate_table,
        as_of=as_of or utctoday(),
        reason="decision",
    )
    await record_audit(
        session,
        actor_id=actor_id,
        actor_type=SYSTEM_ACTOR,
        action="auto_approval.applied",
        target_type="proposal",
        target_id=proposal.id,
        before=before,
        after=snapshot_fields(proposal, *_DECISION_FIELDS),
        payload={
            "rule_id": str(deciding.rule.id),
            "rule_name": deciding.rule.name,
            "effect": deciding.effect,
            "reason": deciding.reason,
        },
        commit=False,
    )
    await session.commit()
    await session.refresh(proposal)
    logger.info(
        "auto_approval.applied",
        extra={
            "proposal_id": str(proposal.id),
            "rule_id": str(deciding.rule.id),
            "effect": deciding.effect,
        },
    )
    enqueue_notification(
        GovernanceNotification(
            event_type="auto_approval_applied",
            proposal_id=proposal.id,
            recipient_ids=[proposal.submitted_by],
            payload={
                "title": proposal.title,
                "effect": deciding.effect,
                "rule_name": deciding.rule.name,
                "conditions": proposal.oversight_conditions,
            },
        ),
    )
    return AutoApprovalOutcome(
        status="applied",
        proposal=proposal,
        match_result=result,
        decision=decision,
    )


async def _record_conflict(
    session: AsyncSession,
    *,
    proposal: Proposal,
    result: RuleMatchResult,
    actor_id: UUID | None,
) -> None:
    conflicting = [
        {"rule_id": str(match.rule.id), "rule_name": match.rule.name, "effect": match.effect}
        for match in result.matches
    ]
    await record_audit(
        session,
        actor_id=actor_id,
        actor_type=SYSTEM_ACTOR,
        action="auto_approval.conflict",
        target_type="proposal",
        target_id=proposal.id,
        payload={"matches": conflicting},
        commit=False,
    )
    await session.commit()
    logger.warning(
        "auto_approval.conflict",
        extra={"proposal_id": str(proposal.id), "rule_count": len(conflicting)},
    )
    enqueue_notification(
        GovernanceNotification(
            event_type="auto_approval_conflict",
            proposal_id=proposal.id,
            payload={"title": proposal.title, "matches": conflicting},
        ),
    )
