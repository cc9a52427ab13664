"""Create LTIP allocation and settlement ledger tables"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_ltip_ledger"
down_revision = None
branch_labels = None
depends_on = None


def _uuid(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), **kwargs)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "audit_logs",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        _uuid("actor_id", nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_org_id", "audit_logs", ["org_id"])

    op.create_table(
        "ltip_pools",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("pool_code", sa.String(length=50), nullable=False),
        sa.Column("pool_name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("pool_type", sa.String(length=50), nullable=False, server_default="general"),
        sa.Column("total_shares_allocated", sa.BigInteger(), nullable=False),
        sa.Column("shares_used", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("shares_available", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.CheckConstraint("total_shares_allocated >= 0", name="ck_ltip_pools_total_nonnegative"),
        sa.CheckConstraint("shares_used >= 0", name="ck_ltip_pools_used_nonnegative"),
        sa.CheckConstraint(
            "shares_used + shares_available = total_shares_allocated",
            name="ck_ltip_pools_conservation",
        ),
        sa.UniqueConstraint("org_id", "pool_code", name="uq_ltip_pools_org_code"),
    )
    op.create_index("ix_ltip_pools_org_id", "ltip_pools", ["org_id"])

    op.create_table(
        "vesting_schedules",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("schedule_type", sa.String(length=30), nullable=False, server_default="time_based"),
        sa.Column("total_duration_months", sa.Integer(), nullable=False, server_default="48"),
        sa.Column("cliff_months", sa.Integer(), nullable=False, server_default="12"),
        sa.Column("vesting_frequency", sa.String(length=20), nullable=False, server_default="annually"),
        sa.Column("is_template", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_vesting_schedules_org_id", "vesting_schedules", ["org_id"])

    op.create_table(
        "performance_metrics",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metric_type", sa.String(length=50), nullable=True),
        sa.Column("unit_of_measure", sa.String(length=50), nullable=True),
        sa.Column("target_value", sa.Numeric(20, 4), nullable=True),
        sa.Column("actual_value", sa.Numeric(20, 4), nullable=True),
        sa.Column("is_achieved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("achieved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("confirmation_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_performance_metrics_org_id", "performance_metrics", ["org_id"])

    op.create_table(
        "vesting_milestones",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        _uuid(
            "vesting_schedule_id",
            sa.ForeignKey("vesting_schedules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("milestone_type", sa.String(length=20), nullable=False, server_default="time"),
        sa.Column("sequence_order", sa.Integer(), nullable=False),
        sa.Column("vesting_percentage", sa.Numeric(9, 4), nullable=False),
        sa.Column("months_from_start", sa.Integer(), nullable=False),
        _uuid(
            "performance_metric_id",
            sa.ForeignKey("performance_metrics.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("target_value", sa.Numeric(20, 4), nullable=True),
        sa.Column("actual_value", sa.Numeric(20, 4), nullable=True),
        sa.Column("is_achieved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("achieved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "vesting_percentage >= 0 AND vesting_percentage <= 100",
            name="ck_vesting_milestones_percentage_range",
        ),
        sa.UniqueConstraint("vesting_schedule_id", "sequence_order", name="uq_vesting_milestones_order"),
    )
    op.create_index("ix_vesting_milestones_org_id", "vesting_milestones", ["org_id"])
    op.create_index("ix_vesting_milestones_vesting_schedule_id", "vesting_milestones", ["vesting_schedule_id"])

    op.create_table(
        "incentive_plans",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        _uuid("ltip_pool_id", sa.ForeignKey("ltip_pools.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("plan_code", sa.String(length=50), nullable=False),
        sa.Column("plan_name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("plan_type", sa.String(length=20), nullable=False, server_default="LTIP_RSU"),
        sa.Column("vesting_schedule_type", sa.String(length=30), nullable=False, server_default="time_based"),
        sa.Column("vesting_config", sa.JSON(), nullable=True),
        _uuid(
            "vesting_schedule_id",
            sa.ForeignKey("vesting_schedules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("exercise_price", sa.Numeric(18, 6), nullable=True),
        sa.Column("total_shares_allocated", sa.BigInteger(), nullable=False),
        sa.Column("shares_granted", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("shares_available", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("approval_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("approved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("total_shares_allocated >= 0", name="ck_incentive_plans_total_nonnegative"),
        sa.CheckConstraint("shares_granted <= total_shares_allocated", name="ck_incentive_plans_granted_floor"),
        sa.UniqueConstraint("org_id", "plan_code", name="uq_incentive_plans_org_code"),
    )
    op.create_index("ix_incentive_plans_org_id", "incentive_plans", ["org_id"])
    op.create_index("ix_incentive_plans_ltip_pool_id", "incentive_plans", ["ltip_pool_id"])

    op.create_table(
        "grants",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        _uuid("plan_id", sa.ForeignKey("incentive_plans.id", ondelete="RESTRICT"), nullable=False),
        _uuid("employee_id", nullable=False),
        sa.Column("grant_number", sa.String(length=50), nullable=False),
        sa.Column("grant_date", sa.Date(), nullable=False),
        sa.Column("vesting_start_date", sa.Date(), nullable=False),
        sa.Column("total_shares", sa.BigInteger(), nullable=False),
        sa.Column("exercise_price", sa.Numeric(18, 6), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="pending_signature"),
        sa.Column("employee_acceptance_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _uuid(
            "vesting_schedule_id",
            sa.ForeignKey("vesting_schedules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("total_shares >= 0", name="ck_grants_total_shares_nonnegative"),
        sa.CheckConstraint(
            "exercise_price IS NULL OR exercise_price >= 0",
            name="ck_grants_exercise_price_nonnegative",
        ),
        sa.UniqueConstraint("org_id", "grant_number", name="uq_grants_org_number"),
    )
    op.create_index("ix_grants_org_id", "grants", ["org_id"])
    op.create_index("ix_grants_plan_id", "grants", ["plan_id"])
    op.create_index("ix_grants_employee_id", "grants", ["employee_id"])

    op.create_table(
        "grant_performance_metrics",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        _uuid("grant_id", sa.ForeignKey("grants.id", ondelete="CASCADE"), nullable=False),
        _uuid(
            "performance_metric_id",
            sa.ForeignKey("performance_metrics.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.UniqueConstraint("grant_id", "performance_metric_id", name="uq_grant_performance_metrics_pair"),
    )
    op.create_index("ix_grant_performance_metrics_org_id", "grant_performance_metrics", ["org_id"])
    op.create_index("ix_grant_performance_metrics_grant_id", "grant_performance_metrics", ["grant_id"])

    op.create_table(
        "vesting_events",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        _uuid("grant_id", sa.ForeignKey("grants.id", ondelete="CASCADE"), nullable=False),
        _uuid("employee_id", nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("vesting_date", sa.Date(), nullable=False),
        sa.Column("shares_to_vest", sa.BigInteger(), nullable=False),
        sa.Column("cumulative_shares_vested", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("event_type", sa.String(length=20), nullable=False, server_default="time_based"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        _uuid(
            "performance_metric_id",
            sa.ForeignKey("performance_metrics.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _uuid(
            "vesting_milestone_id",
            sa.ForeignKey("vesting_milestones.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("performance_condition_met", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("performance_notes", sa.Text(), nullable=True),
        sa.Column("exercise_price", sa.Numeric(18, 6), nullable=True),
        sa.Column("total_exercise_cost", sa.Numeric(20, 6), nullable=True),
        sa.Column("processed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _uuid("processed_by", nullable=True),
        *_timestamps(),
        sa.CheckConstraint("shares_to_vest >= 0", name="ck_vesting_events_shares_nonnegative"),
        sa.UniqueConstraint("grant_id", "sequence_number", name="uq_vesting_events_grant_sequence"),
    )
    op.create_index("ix_vesting_events_org_id", "vesting_events", ["org_id"])
    op.create_index("ix_vesting_events_grant_id", "vesting_events", ["grant_id"])
    op.create_index("ix_vesting_events_employee_id", "vesting_events", ["employee_id"])
    op.create_index("ix_vesting_events_vesting_date", "vesting_events", ["vesting_date"])
    op.create_index("ix_vesting_events_status", "vesting_events", ["status"])

    op.create_table(
        "portfolios",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("portfolio_type", sa.String(length=30), nullable=False),
        _uuid("employee_id", nullable=True),
        sa.Column("portfolio_number", sa.String(length=64), nullable=False),
        sa.Column("total_shares", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("available_shares", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("locked_shares", sa.BigInteger(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("available_shares <= total_shares", name="ck_portfolios_available_le_total"),
        sa.CheckConstraint("available_shares >= 0", name="ck_portfolios_available_nonnegative"),
        sa.CheckConstraint("locked_shares >= 0", name="ck_portfolios_locked_nonnegative"),
    )
    op.create_index("ix_portfolios_org_id", "portfolios", ["org_id"])
    op.create_index("ix_portfolios_employee_id", "portfolios", ["employee_id"])

    op.create_table(
        "share_transfers",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("transfer_number", sa.String(length=64), nullable=False, unique=True),
        _uuid("grant_id", sa.ForeignKey("grants.id", ondelete="SET NULL"), nullable=True),
        _uuid("employee_id", nullable=True),
        _uuid(
            "vesting_event_id",
            sa.ForeignKey("vesting_events.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _uuid("from_portfolio_id", sa.ForeignKey("portfolios.id"), nullable=False),
        _uuid("to_portfolio_id", sa.ForeignKey("portfolios.id"), nullable=False),
        sa.Column("shares_transferred", sa.BigInteger(), nullable=False),
        sa.Column("transfer_type", sa.String(length=30), nullable=False, server_default="vesting"),
        sa.Column("transfer_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("processed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _uuid("processed_by", nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("shares_transferred > 0", name="ck_share_transfers_shares_positive"),
    )
    op.create_index("ix_share_transfers_org_id", "share_transfers", ["org_id"])
    op.create_index("ix_share_transfers_grant_id", "share_transfers", ["grant_id"])
    op.create_index("ix_share_transfers_employee_id", "share_transfers", ["employee_id"])
    op.create_index("ix_share_transfers_vesting_event_id", "share_transfers", ["vesting_event_id"])
    op.create_index(
        "uq_share_transfers_open_event",
        "share_transfers",
        ["vesting_event_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'balances_moved', 'transferred')"),
    )

    op.create_table(
        "settlement_profiles",
        _uuid("id", primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        _uuid("employee_id", nullable=False),
        sa.Column("broker_custodian_name", sa.String(length=255), nullable=True),
        sa.Column("broker_account_number", sa.LargeBinary(), nullable=True),
        sa.Column("investor_number", sa.LargeBinary(), nullable=True),
        sa.Column("investment_account_number", sa.LargeBinary(), nullable=True),
        sa.Column("iban", sa.LargeBinary(), nullable=True),
        sa.Column("bank_name", sa.String(length=255), nullable=True),
        sa.Column("verification_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("verified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "employee_id", name="uq_settlement_profiles_employee"),
    )
    op.create_index("ix_settlement_profiles_org_id", "settlement_profiles", ["org_id"])
    op.create_index("ix_settlement_profiles_employee_id", "settlement_profiles", ["employee_id"])


def downgrade() -> None:
    for table in (
        "settlement_profiles",
        "share_transfers",
        "portfolios",
        "vesting_events",
        "grant_performance_metrics",
        "grants",
        "incentive_plans",
        "vesting_milestones",
        "performance_metrics",
        "vesting_schedules",
        "ltip_pools",
        "audit_logs",
    ):
        op.drop_table(table)
