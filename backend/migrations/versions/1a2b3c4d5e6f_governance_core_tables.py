"""Governance core: proposals, rates, rules, voting, valuations, reviews, audit.

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-09-01 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "1a2b3c4d5e6f"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "proposals" not in existing_tables:
        op.create_table(
            "proposals",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("solution", sa.String(), server_default="", nullable=False),
            sa.Column("team", sa.String(), server_default="", nullable=False),
            sa.Column("submitted_by", sa.Uuid(), nullable=False),
            sa.Column("cost", sa.Float(), nullable=True),
            sa.Column("time_savings", sa.JSON(), nullable=True),
            sa.Column("risk_score", sa.Integer(), nullable=True),
            sa.Column("data_classification", sa.String(), nullable=True),
            sa.Column("escalation_triggers", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(), server_default="draft", nullable=False),
            sa.Column(
                "oversight_status", sa.String(), server_default="not_required", nullable=False
            ),
            sa.Column("decision_pathway", sa.String(), nullable=True),
            sa.Column("oversight_reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("oversight_notes", sa.String(), server_default="", nullable=False),
            sa.Column("oversight_conditions", sa.String(), nullable=True),
            sa.Column("previous_revision_id", sa.Uuid(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("submitted_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["previous_revision_id"], ["proposals.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        for column in (
            "team",
            "submitted_by",
            "data_classification",
            "status",
            "oversight_status",
            "decision_pathway",
            "previous_revision_id",
        ):
            op.create_index(f"ix_proposals_{column}", "proposals", [column])

    if "staff_rates" not in existing_tables:
        op.create_table(
            "staff_rates",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("staff_level", sa.String(), nullable=False),
            sa.Column("display_name", sa.String(), server_default="", nullable=False),
            sa.Column("hourly_rate", sa.Float(), nullable=False),
            sa.Column("display_order", sa.Integer(), server_default="0", nullable=False),
            sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
            sa.Column("effective_from", sa.Date(), nullable=False),
            sa.Column("effective_to", sa.Date(), nullable=True),
            sa.Column("updated_by", sa.Uuid(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        for column in ("staff_level", "is_active", "effective_from", "effective_to"):
            op.create_index(f"ix_staff_rates_{column}", "staff_rates", [column])

    if "voter_grants" not in existing_tables:
        op.create_table(
            "voter_grants",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("user_id", sa.Uuid(), nullable=False),
            sa.Column("capability", sa.String(), nullable=False),
            sa.Column("display_name", sa.String(), server_default="", nullable=False),
            sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
            sa.Column("granted_by", sa.Uuid(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "capability", name="uq_voter_grant_capability"),
        )
        for column in ("user_id", "capability", "is_active"):
            op.create_index(f"ix_voter_grants_{column}", "voter_grants", [column])

    if "auto_approval_rules" not in existing_tables:
        op.create_table(
            "auto_approval_rules",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("description", sa.String(), server_default="", nullable=False),
            sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
            sa.Column("max_cost", sa.Float(), nullable=True),
            sa.Column("max_risk_score", sa.Integer(), nullable=True),
            sa.Column("allowed_data_classifications", sa.JSON(), nullable=True),
            sa.Column("allowed_teams", sa.JSON(), nullable=True),
            sa.Column(
                "require_all_conditions", sa.Boolean(), server_default=sa.true(), nullable=False
            ),
            sa.Column("auto_approve", sa.Boolean(), server_default=sa.true(), nullable=False),
            sa.Column("approval_conditions", sa.String(), nullable=True),
            sa.Column("created_by", sa.Uuid(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_auto_approval_rules_is_active", "auto_approval_rules", ["is_active"]
        )

    if "auto_approval_decisions" not in existing_tables:
        op.create_table(
            "auto_approval_decisions",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("proposal_id", sa.Uuid(), nullable=False),
            sa.Column("rule_id", sa.Uuid(), nullable=False),
            sa.Column("rule_name", sa.String(), server_default="", nullable=False),
            sa.Column("effect", sa.String(), nullable=False),
            sa.Column("pathway", sa.String(), server_default="auto_approved", nullable=False),
            sa.Column("reason", sa.String(), server_default="", nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"]),
            sa.ForeignKeyConstraint(["rule_id"], ["auto_approval_rules.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_auto_approval_decisions_proposal_id",
            "auto_approval_decisions",
            ["proposal_id"],
            unique=True,
        )
        op.create_index(
            "ix_auto_approval_decisions_rule_id", "auto_approval_decisions", ["rule_id"]
        )

    if "voting_sessions" not in existing_tables:
        op.create_table(
            "voting_sessions",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("proposal_id", sa.Uuid(), nullable=False),
            sa.Column("pathway", sa.String(), nullable=False),
            sa.Column("deadline", sa.DateTime(), nullable=True),
            sa.Column("votes_approve", sa.Integer(), server_default="0", nullable=False),
            sa.Column("votes_reject", sa.Integer(), server_default="0", nullable=False),
            sa.Column("votes_abstain", sa.Integer(), server_default="0", nullable=False),
            sa.Column("votes_defer", sa.Integer(), server_default="0", nullable=False),
            sa.Column(
                "fast_track_eligible", sa.Boolean(), server_default=sa.false(), nullable=False
            ),
            sa.Column("all_criteria_met", sa.Boolean(), server_default=sa.false(), nullable=False),
            sa.Column("criteria_snapshot", sa.JSON(), nullable=True),
            sa.Column("eligible_voter_ids", sa.JSON(), nullable=True),
            sa.Column("opened_by", sa.Uuid(), nullable=True),
            sa.Column("escalated_from_id", sa.Uuid(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("closed_at", sa.DateTime(), nullable=True),
            sa.Column("outcome", sa.String(), nullable=True),
            sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"]),
            sa.ForeignKeyConstraint(["escalated_from_id"], ["voting_sessions.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        for column in ("proposal_id", "pathway", "outcome"):
            op.create_index(f"ix_voting_sessions_{column}", "voting_sessions", [column])
        op.create_index(
            "uq_voting_sessions_open_proposal",
            "voting_sessions",
            ["proposal_id"],
            unique=True,
            sqlite_where=sa.text("closed_at IS NULL"),
            postgresql_where=sa.text("closed_at IS NULL"),
        )

    if "governance_votes" not in existing_tables:
        op.create_table(
            "governance_votes",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("proposal_id", sa.Uuid(), nullable=False),
            sa.Column("session_id", sa.Uuid(), nullable=False),
            sa.Column("voter_id", sa.Uuid(), nullable=False),
            sa.Column("decision", sa.String(), nullable=False),
            sa.Column("pathway", sa.String(), nullable=False),
            sa.Column("reason", sa.String(), server_default="", nullable=False),
            sa.Column("conditions", sa.String(), nullable=True),
            sa.Column("concerns", sa.String(), nullable=True),
            sa.Column("criteria_snapshot", sa.JSON(), nullable=True),
            sa.Column("all_criteria_met", sa.Boolean(), server_default=sa.false(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"]),
            sa.ForeignKeyConstraint(["session_id"], ["voting_sessions.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "proposal_id", "pathway", "voter_id", name="uq_governance_vote_per_voter"
            ),
        )
        for column in ("proposal_id", "session_id", "voter_id"):
            op.create_index(f"ix_governance_votes_{column}", "governance_votes", [column])

    if "valuation_snapshots" not in existing_tables:
        op.create_table(
            "valuation_snapshots",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("proposal_id", sa.Uuid(), nullable=False),
            sa.Column("reason", sa.String(), server_default="decision", nullable=False),
            sa.Column("as_of", sa.Date(), nullable=False),
            sa.Column("rates_used", sa.JSON(), nullable=True),
            sa.Column("missing_rates", sa.JSON(), nullable=True),
            sa.Column("cost", sa.Float(), nullable=True),
            sa.Column("weekly_hours", sa.Float(), server_default="0", nullable=False),
            sa.Column("weekly_value", sa.Float(), server_default="0", nullable=False),
            sa.Column("annual_value", sa.Float(), server_default="0", nullable=False),
            sa.Column("roi_percent", sa.Float(), nullable=True),
            sa.Column("payback_months", sa.Float(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_valuation_snapshots_proposal_id", "valuation_snapshots", ["proposal_id"]
        )
        op.create_index("ix_valuation_snapshots_reason", "valuation_snapshots", ["reason"])

    if "implementation_reviews" not in existing_tables:
        op.create_table(
            "implementation_reviews",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("proposal_id", sa.Uuid(), nullable=False),
            sa.Column("review_type", sa.String(), nullable=False),
            sa.Column("review_date", sa.Date(), nullable=False),
            sa.Column("projected_weekly_hours", sa.Float(), nullable=True),
            sa.Column("projected_annual_value", sa.Float(), server_default="0", nullable=False),
            sa.Column("projected_cost", sa.Float(), nullable=True),
            sa.Column("actual_time_saved", sa.JSON(), nullable=True),
            sa.Column("actual_weekly_hours", sa.Float(), nullable=True),
            sa.Column("actual_annual_value", sa.Float(), server_default="0", nullable=False),
            sa.Column("actual_cost", sa.Float(), nullable=True),
            sa.Column("actual_roi", sa.Float(), nullable=True),
            sa.Column("variance_percentage", sa.Float(), server_default="0", nullable=False),
            sa.Column("accuracy", sa.String(), server_default="accurate", nullable=False),
            sa.Column("recommendation", sa.String(), nullable=False),
            sa.Column("recommendation_notes", sa.String(), server_default="", nullable=False),
            sa.Column("lessons_learned", sa.String(), server_default="", nullable=False),
            sa.Column("user_satisfaction_score", sa.Integer(), nullable=True),
            sa.Column("adoption_rate_percentage", sa.Integer(), nullable=True),
            sa.Column("next_review_date", sa.Date(), nullable=True),
            sa.Column(
                "requires_oversight_review", sa.Boolean(), server_default=sa.false(), nullable=False
            ),
            sa.Column("reviewed_by", sa.Uuid(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["proposal_id"], ["proposals.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        for column in ("proposal_id", "review_type", "review_date", "accuracy", "reviewed_by"):
            op.create_index(
                f"ix_implementation_reviews_{column}", "implementation_reviews", [column]
            )

    if "audit_entries" not in existing_tables:
        op.create_table(
            "audit_entries",
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("actor_id", sa.Uuid(), nullable=True),
            sa.Column("actor_type", sa.String(), nullable=False),
            sa.Column("action", sa.String(), nullable=False),
            sa.Column("target_type", sa.String(), server_default="", nullable=False),
            sa.Column("target_id", sa.Uuid(), nullable=True),
            sa.Column("before", sa.JSON(), nullable=True),
            sa.Column("after", sa.JSON(), nullable=True),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        for column in ("actor_id", "actor_type", "action", "target_id"):
            op.create_index(f"ix_audit_entries_{column}", "audit_entries", [column])


def downgrade() -> None:
    for table in (
        "audit_entries",
        "implementation_reviews",
        "valuation_snapshots",
        "governance_votes",
        "voting_sessions",
        "auto_approval_decisions",
        "auto_approval_rules",
        "voter_grants",
        "staff_rates",
        "proposals",
    ):
        op.drop_table(table)
