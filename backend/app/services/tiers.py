"""Governance tier classification from cost, risk, data sensitivity and triggers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING

from app.core.config import GovernanceThresholds, governance_thresholds

if TYPE_CHECKING:
    from collections.abc import Iterable

    from app.models.proposals import Proposal


class Tier(IntEnum):
    """Governance tiers ordered from least to most scrutinised."""

    AUTO_APPROVABLE = 1
    FAST_TRACK = 2
    FULL_OVERSIGHT = 3
    PARTNER_ESCALATION = 4


@dataclass(frozen=True)
class TierDefinition:
    tier: Tier
    key: str
    name: str
    description: str
    approval_description: str
    target_approval_days: int
    post_review_schedule: tuple[str, ...] = ()

    @property
    def level(self) -> int:
        return int(self.tier)


@dataclass(frozen=True)
class EscalationTrigger:
    trigger: str
    description: str
    escalate_to: Tier


TIER_DEFINITIONS: dict[Tier, TierDefinition] = {
    Tier.AUTO_APPROVABLE: TierDefinition(
        tier=Tier.AUTO_APPROVABLE,
        key="auto_approvable",
        name="Tier 1: Minimal Investment",
        description="Low-cost, low-risk experiments using approved tools",
        approval_description="Auto-approved when an active rule covers it",
        target_approval_days=0,
    ),
    Tier.FAST_TRACK: TierDefinition(
        tier=Tier.FAST_TRACK,
        key="fast_track",
        name="Tier 2: Standard Investment",
        description="Moderate investment with clear ROI potential",
        approval_description="Fast-track vote by designated dual-committee members",
        target_approval_days=2,
        post_review_schedule=("90_day",),
    ),
    Tier.FULL_OVERSIGHT: TierDefinition(
        tier=Tier.FULL_OVERSIGHT,
        key="full_oversight",
        name="Tier 3: Significant Investment",
        description="Substantial investment requiring full oversight review",
        approval_description="Full oversight committee majority",
        target_approval_days=5,
        post_review_schedule=("30_day", "90_day", "365_day"),
    ),
    Tier.PARTNER_ESCALATION: TierDefinition(
        tier=Tier.PARTNER_ESCALATION,
        key="partner_escalation",
        name="Tier 4: Strategic Investment",
        description="Major investment or high-risk initiative requiring partner involvement",
        approval_description="Partner sign-off required",
        target_approval_days=10,
        post_review_schedule=("30_day", "90_day", "180_day", "365_day"),
    ),
}

ESCALATION_TRIGGERS: dict[str, EscalationTrigger] = {
    trigger.trigger: trigger
    for trigger in (
        EscalationTrigger(
            "restricted_data",
            "Any use of restricted data classification",
            Tier.PARTNER_ESCALATION,
        ),
        EscalationTrigger(
            "client_facing",
            "AI outputs shared directly with clients",
            Tier.FULL_OVERSIGHT,
        ),
        EscalationTrigger(
            "new_vendor",
            "Tool from vendor not yet in registry",
            Tier.FULL_OVERSIGHT,
        ),
        EscalationTrigger(
            "audit_use",
            "AI used in audit evidence or conclusions",
            Tier.FULL_OVERSIGHT,
        ),
        EscalationTrigger(
            "regulatory_filing",
            "AI used in regulatory filings (tax returns, etc.)",
            Tier.FULL_OVERSIGHT,
        ),
    )
}

CLASSIFICATION_TIERS: dict[str, Tier] = {
    "public": Tier.AUTO_APPROVABLE,
    "internal": Tier.AUTO_APPROVABLE,
    "confidential": Tier.FAST_TRACK,
    "restricted": Tier.PARTNER_ESCALATION,
}

# Sensitivity order used when comparing classifications.
CLASSIFICATION_RANK: dict[str, int] = {
    "public": 0,
    "internal": 1,
    "confidential": 2,
    "restricted": 3,
}


def cost_tier(cost: float | None, thresholds: GovernanceThresholds) -> Tier:
    if cost is None or cost <= thresholds.tier_auto_max_cost:
        return Tier.AUTO_APPROVABLE
    if cost <= thresholds.tier_fast_track_max_cost:
        return Tier.FAST_TRACK
    if cost <= thresholds.tier_full_oversight_max_cost:
        return Tier.FULL_OVERSIGHT
    return Tier.PARTNER_ESCALATION


def risk_tier(risk_score: int | None, thresholds: GovernanceThresholds) -> Tier:
    if risk_score is None or risk_score <= thresholds.tier_auto_max_risk_score:
        return Tier.AUTO_APPROVABLE
    if risk_score <= thresholds.tier_fast_track_max_risk_score:
        return Tier.FAST_TRACK
    if risk_score <= thresholds.tier_full_oversight_max_risk_score:
        return Tier.FULL_OVERSIGHT
    return Tier.PARTNER_ESCALATION


def classification_tier(data_classification: str | None) -> Tier:
    if data_classification is None:
        return Tier.AUTO_APPROVABLE
    # Unrecognised labels are treated as the most sensitive.
    return CLASSIFICATION_TIERS.get(data_classification, Tier.PARTNER_ESCALATION)


def trigger_tier(triggers: Iterable[str] | None) -> Tier:
    tier = Tier.AUTO_APPROVABLE
    for trigger_id in triggers or ():
        trigger = ESCALATION_TRIGGERS.get(trigger_id)
        implied = trigger.escalate_to if trigger is not None else Tier.FULL_OVERSIGHT
        tier = max(tier, implied)
    return tier


def classify(
    *,
    cost: float | None,
    risk_score: int | None,
    data_classification: str | None,
    escalation_triggers: Iterable[str] | None = None,
    thresholds: GovernanceThresholds | None = None,
) -> TierDefinition:
    """Return the most scrutinised tier implied by any single attribute.

    Each band is non-decreasing in its input, so the maximum is monotone too.
    """
    cfg = thresholds or governance_thresholds()
    tier = max(
        cost_tier(cost, cfg),
        risk_tier(risk_score, cfg),
        classification_tier(data_classification),
        trigger_tier(escalation_triggers),
    )
    return TIER_DEFINITIONS[tier]


def classify_tier(
    proposal: Proposal,
    thresholds: GovernanceThresholds | None = None,
) -> TierDefinition:
    return classify(
        cost=proposal.cost,
        risk_score=proposal.risk_score,
        data_classification=proposal.data_classification,
        escalation_triggers=proposal.escalation_triggers,
        thresholds=thresholds,
    )
