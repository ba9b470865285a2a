"""Create the cost engine fin_ tables.

Revision ID: 001_fin_engine_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "001_fin_engine_initial"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(15, 2)

_TABLES = (
    "fin_daily_costs",
    "fin_service_usage_metrics",
    "fin_service_cost_breakdowns",
    "fin_anomaly_baselines",
    "fin_anomaly_events",
    "fin_budgets",
    "fin_budget_alerts",
    "fin_notifications",
)


def _tenant_columns() -> list[sa.Column]:
    return [
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", sa.String(255), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def _enable_rls(table: str) -> None:
    op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;")
    op.execute(
        f"CREATE POLICY {table}_tenant_isolation ON {table} "
        "USING (tenant_id = current_setting('app.current_tenant', true));"
    )


def upgrade() -> None:
    """Create all cost engine tables with unique keys and RLS policies."""

    # fin_daily_costs
    op.create_table(
        "fin_daily_costs",
        *_tenant_columns(),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("account_id", sa.String(255), nullable=True),
        sa.Column("cost_date", sa.Date, nullable=False),
        sa.Column("cost", MONEY, nullable=False, server_default="0"),
        sa.UniqueConstraint(
            "tenant_id", "provider_id", "account_id", "cost_date",
            name="uq_fin_daily_costs_tenant_provider_account_date",
            postgresql_nulls_not_distinct=True,
        ),
    )
    op.create_index("ix_fin_daily_costs_tenant_date", "fin_daily_costs", ["tenant_id", "cost_date"])

    # fin_service_usage_metrics
    op.create_table(
        "fin_service_usage_metrics",
        *_tenant_columns(),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("account_id", sa.String(255), nullable=True),
        sa.Column("service_name", sa.String(255), nullable=False),
        sa.Column("metric_date", sa.Date, nullable=False),
        sa.Column("usage_type", sa.String(255), nullable=True),
        sa.Column("cost", MONEY, nullable=False, server_default="0"),
        sa.Column("usage_quantity", sa.Numeric(15, 4), nullable=True),
        sa.Column("usage_unit", sa.String(64), nullable=True),
        sa.UniqueConstraint(
            "tenant_id", "provider_id", "account_id", "service_name", "metric_date", "usage_type",
            name="uq_fin_service_usage_metrics_key",
            postgresql_nulls_not_distinct=True,
        ),
    )
    op.create_index(
        "ix_fin_service_usage_metrics_service_date",
        "fin_service_usage_metrics",
        ["tenant_id", "provider_id", "service_name", "metric_date"],
    )

    # fin_service_cost_breakdowns
    op.create_table(
        "fin_service_cost_breakdowns",
        *_tenant_columns(),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("account_id", sa.String(255), nullable=True),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("month", sa.Integer, nullable=False),
        sa.Column("service_name", sa.String(255), nullable=False),
        sa.Column("cost", MONEY, nullable=False, server_default="0"),
        sa.UniqueConstraint(
            "tenant_id", "provider_id", "account_id", "year", "month", "service_name",
            name="uq_fin_service_cost_breakdowns_key",
            postgresql_nulls_not_distinct=True,
        ),
    )

    # fin_anomaly_baselines
    op.create_table(
        "fin_anomaly_baselines",
        *_tenant_columns(),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("account_id", sa.String(255), nullable=True),
        sa.Column("service_name", sa.String(255), nullable=False),
        sa.Column("baseline_date", sa.Date, nullable=False),
        sa.Column("baseline_cost", MONEY, nullable=False),
        sa.Column("rolling_30day_avg", MONEY, nullable=False),
        sa.Column("data_source", sa.String(50), nullable=False, server_default="service_usage"),
        sa.UniqueConstraint(
            "tenant_id", "provider_id", "service_name", "baseline_date",
            name="uq_fin_anomaly_baselines_key",
        ),
    )
    op.create_index("ix_fin_anomaly_baselines_tenant_date", "fin_anomaly_baselines", ["tenant_id", "baseline_date"])

    # fin_anomaly_events
    op.create_table(
        "fin_anomaly_events",
        *_tenant_columns(),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("account_id", sa.String(255), nullable=True),
        sa.Column("service_name", sa.String(255), nullable=False),
        sa.Column("detected_date", sa.Date, nullable=False),
        sa.Column("anomaly_type", sa.String(20), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("expected_cost", MONEY, nullable=False),
        sa.Column("actual_cost", MONEY, nullable=False),
        sa.Column("variance_percent", sa.Numeric(10, 2), nullable=False),
        sa.Column("root_cause", sa.Text, nullable=False),
        sa.Column("contributing_services", JSONB, nullable=False, server_default="[]"),
        sa.UniqueConstraint(
            "tenant_id", "provider_id", "service_name", "detected_date",
            name="uq_fin_anomaly_events_key",
        ),
    )

    # fin_budgets
    op.create_table(
        "fin_budgets",
        *_tenant_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("provider_id", sa.String(64), nullable=True),
        sa.Column("account_id", sa.String(255), nullable=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("period", sa.String(20), nullable=False, server_default="monthly"),
        sa.Column("alert_threshold", sa.Integer, nullable=False, server_default="80"),
        sa.Column("current_spend", MONEY, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.CheckConstraint("period IN ('monthly', 'quarterly', 'yearly')", name="ck_fin_budgets_period"),
        sa.CheckConstraint("status IN ('active', 'paused', 'exceeded')", name="ck_fin_budgets_status"),
        sa.CheckConstraint(
            "alert_threshold >= 0 AND alert_threshold <= 100",
            name="ck_fin_budgets_alert_threshold",
        ),
    )
    op.create_index("ix_fin_budgets_tenant_provider", "fin_budgets", ["tenant_id", "provider_id"])

    # fin_budget_alerts: the unique key is the cross-worker dedup guard
    op.create_table(
        "fin_budget_alerts",
        *_tenant_columns(),
        sa.Column(
            "budget_id",
            UUID(as_uuid=True),
            sa.ForeignKey("fin_budgets.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("alert_type", sa.String(20), nullable=False),
        sa.Column("alert_percentage", sa.Integer, nullable=False),
        sa.Column("alert_date", sa.Date, nullable=False),
        sa.UniqueConstraint("budget_id", "alert_type", "alert_date", name="uq_fin_budget_alerts_budget_type_date"),
        sa.CheckConstraint("alert_type IN ('threshold', 'exceeded')", name="ck_fin_budget_alerts_type"),
    )

    # fin_notifications
    op.create_table(
        "fin_notifications",
        *_tenant_columns(),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("link", sa.String(255), nullable=True),
        sa.Column("link_text", sa.String(255), nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("metadata", JSONB, nullable=False, server_default="{}"),
    )
    op.create_index(
        "ix_fin_notifications_tenant_read",
        "fin_notifications",
        ["tenant_id", "is_read", "created_at"],
    )

    for table in _TABLES:
        _enable_rls(table)


def downgrade() -> None:
    """Drop all cost engine tables."""
    for table in reversed(_TABLES):
        op.drop_table(table)
