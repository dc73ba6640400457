# ruff: noqa: INP001

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import InvalidTransition, NotFound, ValidationFailed
from app.models.audit_entries import AuditEntry
from app.models.auto_approval import AutoApprovalDecision, AutoApprovalRule
from app.models.proposals import Proposal
from app.models.valuations import ValuationSnapshot
from app.models.voting import VotingSession
from app.schemas.auto_approval import AutoApprovalRuleCreate, AutoApprovalRuleUpdate
from app.services import auto_approval as auto_approval_service
from app.services.auto_approval import (
    apply_auto_approval,
    create_rule,
    evaluate_rule,
    match_auto_approval_rules,
    update_rule,
)

BASE_TIME = datetime(2026, 1, 1, 9, 0)


def _rule(name: str = "Small public", *, offset: int = 0, **overrides: Any) -> AutoApprovalRule:
    values: dict[str, Any] = {
        "name": name,
        "max_cost": 1000.0,
        "allowed_data_classifications": ["public"],
        "require_all_conditions": True,
        "auto_approve": True,
        "created_at": BASE_TIME + timedelta(minutes=offset),
    }
    values.update(overrides)
    return AutoApprovalRule(**values)


def _proposal(**overrides: Any) -> Proposal:
    values: dict[str, Any] = {
        "title": "Meeting notes",
        "submitted_by": uuid4(),
        "team": "tax",
        "cost": 500.0,
        "risk_score": 1,
        "data_classification": "public",
        "status": "submitted",
        "oversight_status": "pending_review",
    }
    values.update(overrides)
    return Proposal(**values)


def test_rule_requires_every_filter_by_default() -> None:
    rule = _rule()
    assert evaluate_rule(rule, _proposal()).matched
    assert not evaluate_rule(rule, _proposal(data_classification="confidential")).matched
    assert not evaluate_rule(rule, _proposal(cost=1500.0)).matched


def test_rule_with_any_condition() -> None:
    rule = _rule(require_all_conditions=False)
    match = evaluate_rule(rule, _proposal(cost=1500.0))
    assert match.matched
    assert [check.met for check in match.conditions] == [False, True]
    assert match.reason.startswith("✗ Cost £1,500 > £1,000")


def test_missing_attribute_fails_its_filter() -> None:
    match = evaluate_rule(_rule(max_risk_score=2), _proposal(cost=None))
    assert not match.matched
    assert match.conditions[0].description == "Cost missing, limit £1,000"


def test_rule_without_filters_matches_everything() -> None:
    rule = _rule(max_cost=None, allowed_data_classifications=None)
    match = evaluate_rule(rule, _proposal(cost=90000.0, data_classification="restricted"))
    assert match.matched
    assert match.reason == "Rule has no filters and matches every proposal"


def test_team_filter() -> None:
    rule = _rule(max_cost=None, allowed_data_classifications=None, allowed_teams=["audit"])
    assert not evaluate_rule(rule, _proposal()).matched
    assert evaluate_rule(rule, _proposal(team="audit")).matched
    assert not evaluate_rule(rule, _proposal(team="")).matched


def test_matching_skips_inactive_rules_and_orders_deterministically() -> None:
    later = _rule("B later", offset=5)
    earlier = _rule("A earlier", offset=1)
    inactive = _rule("Disabled", offset=0, is_active=False)
    result = match_auto_approval_rules(_proposal(), [later, inactive, earlier])
    assert [match.rule.name for match in result.evaluated] == ["A earlier", "B later"]
    assert result.effect == "approve"
    assert not result.conflict
    assert result.deciding_match is not None
    assert result.deciding_match.rule.name == "A earlier"


def test_disagreeing_matches_are_a_conflict() -> None:
    approve = _rule("Approve small", offset=0)
    reject = _rule("Reject public", offset=1, max_cost=None, auto_approve=False)
    result = match_auto_approval_rules(_proposal(), [approve, reject])
    assert len(result.matches) == 2
    assert result.conflict
    assert result.effect is None
    assert result.deciding_match is None


def test_no_match_has_no_effect() -> None:
    result = match_auto_approval_rules(_proposal(cost=2000.0), [_rule()])
    assert result.matches == ()
    assert result.effect is None
    assert not result.conflict


@pytest.mark.asyncio
async def test_apply_decides_once_without_a_vote(
    session: AsyncSession,
    rates: None,
    make_proposal,
    fake_redis,
) -> None:
    session.add(_rule(approval_conditions="Review output weekly"))
    await session.commit()
    proposal = await make_proposal(cost=500.0, data_classification="public")

    outcome = await apply_auto_approval(session, proposal_id=proposal.id)
    assert outcome.status == "applied"
    decided = outcome.proposal
    assert decided.status == "approved"
    assert decided.oversight_status == "approved"
    assert decided.decision_pathway == "auto_approved"
    assert decided.oversight_notes == "Auto-approved by rule 'Small public'"
    assert decided.oversight_conditions == "Review output weekly"
    assert decided.oversight_reviewed_at is not None

    again = await apply_auto_approval(session, proposal_id=proposal.id)
    assert again.status == "already_applied"
    assert again.decision is not None

    decisions = await AutoApprovalDecision.objects.filter_by(proposal_id=proposal.id).all(session)
    assert len(decisions) == 1
    assert decisions[0].rule_name == "Small public"
    assert await VotingSession.objects.filter_by(proposal_id=proposal.id).all(session) == []

    snapshots = await ValuationSnapshot.objects.filter_by(proposal_id=proposal.id).all(session)
    assert len(snapshots) == 1
    assert snapshots[0].rates_used == {"admin": 80.0}
    assert "auto_approval_applied" in fake_redis.notification_events()


@pytest.mark.asyncio
async def test_apply_reject_rule(session: AsyncSession, rates: None, make_proposal) -> None:
    session.add(
        _rule(
            "No restricted",
            max_cost=None,
            allowed_data_classifications=["restricted"],
            auto_approve=False,
        ),
    )
    await session.commit()
    proposal = await make_proposal(data_classification="restricted")

    outcome = await apply_auto_approval(session, proposal_id=proposal.id)
    assert outcome.status == "applied"
    assert outcome.proposal.status == "rejected"
    assert outcome.proposal.oversight_notes == "Auto-rejected by rule 'No restricted'"


@pytest.mark.asyncio
async def test_apply_conflict_is_audited_and_not_decided(
    session: AsyncSession,
    make_proposal,
    fake_redis,
) -> None:
    session.add(_rule("Approve small", offset=0))
    session.add(_rule("Reject public", offset=1, max_cost=None, auto_approve=False))
    await session.commit()
    proposal = await make_proposal(cost=500.0, data_classification="public")

    outcome = await apply_auto_approval(session, proposal_id=proposal.id)
    assert outcome.status == "conflict"
    assert outcome.proposal.status == "submitted"
    assert outcome.proposal.decision_pathway is None

    audit = await AuditEntry.objects.filter_by(action="auto_approval.conflict").all(session)
    assert len(audit) == 1
    assert audit[0].actor_type == "system"
    assert len(audit[0].payload["matches"]) == 2
    assert fake_redis.notification_events() == ["auto_approval_conflict"]


@pytest.mark.asyncio
async def test_apply_skips_proposal_under_vote(session: AsyncSession, make_proposal) -> None:
    session.add(_rule())
    proposal = await make_proposal(cost=500.0, data_classification="public", status="under_review")
    session.add(VotingSession(proposal_id=proposal.id, pathway="fast_track"))
    await session.commit()

    outcome = await apply_auto_approval(session, proposal_id=proposal.id)
    assert outcome.status == "voting_in_progress"
    assert await AutoApprovalDecision.objects.filter_by(proposal_id=proposal.id).all(session) == []


@pytest.mark.asyncio
async def test_apply_no_match_and_guards(session: AsyncSession, make_proposal) -> None:
    session.add(_rule())
    await session.commit()

    costly = await make_proposal(cost=4000.0)
    assert (await apply_auto_approval(session, proposal_id=costly.id)).status == "no_match"

    draft = await make_proposal(status="draft", oversight_status="not_required")
    with pytest.raises(InvalidTransition):
        await apply_auto_approval(session, proposal_id=draft.id)

    decided = await make_proposal(status="approved", oversight_status="approved")
    assert (await apply_auto_approval(session, proposal_id=decided.id)).status == "already_decided"

    with pytest.raises(NotFound):
        await apply_auto_approval(session, proposal_id=uuid4())


@pytest.mark.asyncio
async def test_rule_crud_validates_and_audits(session: AsyncSession) -> None:
    actor = uuid4()
    with pytest.raises(ValidationFailed) as exc_info:
        await create_rule(
            session,
            payload=AutoApprovalRuleCreate(
                name=" ",
                max_risk_score=9,
                allowed_data_classifications=["secret"],
            ),
            actor_id=actor,
        )
    assert {error.field for error in exc_info.value.errors} == {
        "name",
        "max_risk_score",
        "allowed_data_classifications",
    }

    rule = await create_rule(
        session,
        payload=AutoApprovalRuleCreate(name="Cheap tools", max_cost=250.0),
        actor_id=actor,
    )
    updated = await update_rule(
        session,
        rule_id=rule.id,
        payload=AutoApprovalRuleUpdate(is_active=False),
        actor_id=actor,
    )
    assert updated.is_active is False
    assert updated.max_cost == 250.0

    actions = [entry.action for entry in await AuditEntry.objects.all().all(session)]
    assert sorted(actions) == ["auto_approval_rule.create", "auto_approval_rule.update"]

    with pytest.raises(NotFound):
        await update_rule(
            session,
            rule_id=uuid4(),
            payload=AutoApprovalRuleUpdate(),
            actor_id=actor,
        )


@pytest.mark.asyncio
async def test_decision_is_unique_per_proposal(session: AsyncSession, make_proposal) -> None:
    rule = _rule()
    session.add(rule)
    proposal = await make_proposal()
    for _ in range(2):
        session.add(
            AutoApprovalDecision(proposal_id=proposal.id, rule_id=rule.id, effect="approve"),
        )
    with pytest.raises(IntegrityError):
        await session.commit()


@pytest.mark.asyncio
async def test_concurrent_apply_returns_the_stored_decision(
    session: AsyncSession,
    rates: None,
    make_proposal,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session.add(_rule())
    await session.commit()
    proposal = await make_proposal(cost=500.0, data_classification="public")
    load_rules = auto_approval_service.load_active_rules
    winner: dict[str, AutoApprovalDecision] = {}

    async def _rules_then_competing_decision(db: AsyncSession) -> list[AutoApprovalRule]:
        rules = await load_rules(db)
        decision = AutoApprovalDecision(
            proposal_id=proposal.id,
            rule_id=rules[0].id,
            rule_name=rules[0].name,
            effect="approve",
        )
        db.add(decision)
        await db.commit()
        winner["decision"] = decision
        return rules

    monkeypatch.setattr(
        auto_approval_service,
        "load_active_rules",
        _rules_then_competing_decision,
    )

    outcome = await apply_auto_approval(session, proposal_id=proposal.id)

    assert outcome.status == "already_applied"
    assert outcome.decision is not None
    assert outcome.decision.id == winner["decision"].id
    decisions = await AutoApprovalDecision.objects.filter_by(proposal_id=proposal.id).all(session)
    assert len(decisions) == 1
    assert await AuditEntry.objects.filter_by(action="auto_approval.applied").all(session) == []
