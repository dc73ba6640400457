"""Criteria evaluation: the fixed battery of governance checks run on a proposal."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

from app.core.config import GovernanceThresholds, governance_thresholds
from app.core.errors import ValidationFailed
from app.services.roi import proposal_roi

if TYPE_CHECKING:
    from collections.abc import Callable

    from app.models.proposals import Proposal
    from app.services.rates import RateTable

REQUIRED_FIELDS_PRESENT = "required_fields_present"
COST_WITHIN_FAST_TRACK_LIMIT = "cost_within_fast_track_limit"
RISK_WITHIN_FAST_TRACK_LIMIT = "risk_within_fast_track_limit"
DATA_CLASSIFICATION_PERMITTED = "data_classification_permitted"
NO_ESCALATION_TRIGGERS = "no_escalation_triggers"
ROI_MEETS_MINIMUM = "roi_meets_minimum"

# Checks that decide fast-track eligibility; the rest only inform all_criteria_met.
FAST_TRACK_GATING = frozenset(
    {
        COST_WITHIN_FAST_TRACK_LIMIT,
        RISK_WITHIN_FAST_TRACK_LIMIT,
        DATA_CLASSIFICATION_PERMITTED,
        NO_ESCALATION_TRIGGERS,
    },
)


@dataclass(frozen=True)
class CriterionResult:
    criterion_name: str
    met: bool
    failure_reasons: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "criterion_name": self.criterion_name,
            "met": self.met,
            "failure_reasons": list(self.failure_reasons),
        }


@dataclass(frozen=True)
class CriteriaEvaluationResult:
    results: tuple[CriterionResult, ...] = field(default_factory=tuple)

    @property
    def all_criteria_met(self) -> bool:
        return all(result.met for result in self.results)

    @property
    def fast_track_eligible(self) -> bool:
        return all(
            result.met for result in self.results if result.criterion_name in FAST_TRACK_GATING
        )

    def get(self, criterion_name: str) -> CriterionResult | None:
        for result in self.results:
            if result.criterion_name == criterion_name:
                return result
        return None

    def as_dict(self) -> dict[str, Any]:
        """Frozen JSON form stored alongside each vote."""
        return {
            "results": [result.as_dict() for result in self.results],
            "all_criteria_met": self.all_criteria_met,
            "fast_track_eligible": self.fast_track_eligible,
        }


@dataclass(frozen=True)
class _Context:
    proposal: Proposal
    rate_table: RateTable
    as_of: date
    thresholds: GovernanceThresholds


def _required_fields_present(ctx: _Context) -> list[str]:
    proposal = ctx.proposal
    reasons: list[str] = []
    if not (proposal.title or "").strip():
        reasons.append("Problem description (title) is missing.")
    if not (proposal.solution or "").strip():
        reasons.append("Proposed solution is missing.")
    if proposal.cost is None:
        reasons.append("Cost is missing.")
    if not proposal.time_savings:
        reasons.append("No time savings have been estimated.")
    if proposal.risk_score is None:
        reasons.append("Risk score is missing.")
    if proposal.data_classification is None:
        reasons.append("Data classification is missing.")
    return reasons


def _cost_within_limit(ctx: _Context) -> list[str]:
    cost = ctx.proposal.cost
    limit = ctx.thresholds.fast_track_max_cost
    if cost is None:
        return ["Cost is required for fast-track review."]
    if cost > limit:
        return [f"Cost {cost:,.2f} exceeds the fast-track limit of {limit:,.2f}."]
    return []


def _risk_within_limit(ctx: _Context) -> list[str]:
    risk = ctx.proposal.risk_score
    limit = ctx.thresholds.fast_track_max_risk_score
    if risk is None:
        return ["Risk score is required for fast-track review."]
    if risk > limit:
        return [f"Risk score {risk} exceeds the fast-track limit of {limit}."]
    return []


def _classification_permitted(ctx: _Context) -> list[str]:
    classification = ctx.proposal.data_classification
    allowed = ctx.thresholds.fast_track_data_classifications
    if classification is None:
        return ["Data classification is required for fast-track review."]
    if classification not in allowed:
        return [
            f"Data classification '{classification}' is not permitted for fast-track "
            f"(allowed: {', '.join(sorted(allowed))}).",
        ]
    return []


def _no_escalation_triggers(ctx: _Context) -> list[str]:
    return [
        f"Escalation trigger '{trigger}' is set."
        for trigger in ctx.proposal.escalation_triggers or ()
    ]


def _roi_meets_minimum(ctx: _Context) -> list[str]:
    minimum = ctx.thresholds.minimum_roi_percent
    try:
        summary = proposal_roi(
            ctx.proposal,
            ctx.rate_table,
            ctx.as_of,
            staff_grades=ctx.thresholds.staff_grades,
        )
    except ValidationFailed as exc:
        return [f"ROI cannot be computed: {error.field}: {error.message}" for error in exc.errors]
    if summary.roi_percent is None:
        return ["ROI is undefined without a positive cost."]
    if summary.roi_percent < minimum:
        return [f"ROI {summary.roi_percent:.1f}% is below the minimum of {minimum:.0f}%."]
    return []


_CHECKS: tuple[tuple[str, Callable[[_Context], list[str]]], ...] = (
    (REQUIRED_FIELDS_PRESENT, _required_fields_present),
    (COST_WITHIN_FAST_TRACK_LIMIT, _cost_within_limit),
    (RISK_WITHIN_FAST_TRACK_LIMIT, _risk_within_limit),
    (DATA_CLASSIFICATION_PERMITTED, _classification_permitted),
    (NO_ESCALATION_TRIGGERS, _no_escalation_triggers),
    (ROI_MEETS_MINIMUM, _roi_meets_minimum),
)


def evaluate_criteria(
    proposal: Proposal,
    *,
    rate_table: RateTable,
    as_of: date,
    thresholds: GovernanceThresholds | None = None,
) -> CriteriaEvaluationResult:
    """Run every check in order against the proposal's current state.

    Never mutates the proposal; the result is recomputed on every call.
    """
    ctx = _Context(
        proposal=proposal,
        rate_table=rate_table,
        as_of=as_of,
        thresholds=thresholds or governance_thresholds(),
    )
    results = []
    for name, check in _CHECKS:
        reasons = check(ctx)
        results.append(
            CriterionResult(criterion_name=name, met=not reasons, failure_reasons=tuple(reasons)),
        )
    return CriteriaEvaluationResult(results=tuple(results))
