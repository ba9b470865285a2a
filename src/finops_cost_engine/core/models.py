"""SQLAlchemy ORM models for the FinOps cost analytics engine.

All tables use the `fin_` prefix. Tenant-scoped tables extend TenantModel
which supplies id (UUID), tenant_id, created_at, and updated_at columns.

Domain model:
  DailyCostPoint        — per-provider (and per-account) daily cost, written by sync
  ServiceUsageMetric    — per-service daily cost + usage, finer grained when available
  ServiceCostBreakdown  — monthly per-service cost used to apportion aggregate cost
  AnomalyBaseline       — 30-day trailing average per service per day
  AnomalyEvent          — seasonal-detector findings with severity and attribution
  Budget                — spend cap over a calendar period with an alert threshold
  BudgetAlert           — at most one per (budget, alert_type, day)
  Notification          — in-app records consumed by the delivery subsystem

Monetary amounts are stored as NUMERIC(15, 2) and surfaced as floats; rounding
happens only when results are presented.
"""
from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from finops_cost_engine.database import TenantModel

MONEY = Numeric(15, 2, asdecimal=False)
QUANTITY = Numeric(15, 4, asdecimal=False)

BUDGET_PERIODS = ("monthly", "quarterly", "yearly")
BUDGET_STATUSES = ("active", "paused", "exceeded")
ALERT_TYPES = ("threshold", "exceeded")
NOTIFICATION_TYPES = ("budget", "anomaly", "warning", "info")


class DailyCostPoint(TenantModel):
    """Aggregate cost of one provider (optionally one account) for one day.

    Written by the sync pipeline; read by every engine component. Credits can
    make the cost negative.

    Table: fin_daily_costs
    """

    __tablename__ = "fin_daily_costs"

    provider_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Cloud provider key: aws | azure | gcp | digitalocean | ...",
    )
    account_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Provider account for multi-account tenants (null = single account)",
    )
    cost_date: Mapped[date] = mapped_column(Date, nullable=False)
    cost: Mapped[float] = mapped_column(MONEY, nullable=False, default=0.0)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "provider_id",
            "account_id",
            "cost_date",
            name="uq_fin_daily_costs_tenant_provider_account_date",
            postgresql_nulls_not_distinct=True,
        ),
        Index("ix_fin_daily_costs_tenant_date", "tenant_id", "cost_date"),
    )


class ServiceUsageMetric(TenantModel):
    """Per-service daily cost and usage quantity.

    Table: fin_service_usage_metrics
    """

    __tablename__ = "fin_service_usage_metrics"

    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    metric_date: Mapped[date] = mapped_column(Date, nullable=False)
    usage_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cost: Mapped[float] = mapped_column(MONEY, nullable=False, default=0.0)
    usage_quantity: Mapped[float | None] = mapped_column(QUANTITY, nullable=True)
    usage_unit: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "provider_id",
            "account_id",
            "service_name",
            "metric_date",
            "usage_type",
            name="uq_fin_service_usage_metrics_key",
            postgresql_nulls_not_distinct=True,
        ),
        Index(
            "ix_fin_service_usage_metrics_service_date",
            "tenant_id",
            "provider_id",
            "service_name",
            "metric_date",
        ),
    )


class ServiceCostBreakdown(TenantModel):
    """Monthly per-service cost returned by a provider billing pull.

    Used to apportion the aggregate daily series across services when no
    per-service usage metrics exist.

    Table: fin_service_cost_breakdowns
    """

    __tablename__ = "fin_service_cost_breakdowns"

    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    cost: Mapped[float] = mapped_column(MONEY, nullable=False, default=0.0)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "provider_id",
            "account_id",
            "year",
            "month",
            "service_name",
            name="uq_fin_service_cost_breakdowns_key",
            postgresql_nulls_not_distinct=True,
        ),
    )


class AnomalyBaseline(TenantModel):
    """Trailing 30-day average cost for one service as of one day.

    Recomputed idempotently; rolling_30day_avg is the mean of the trailing 30
    daily costs ending at baseline_date, or 0 without history.

    Table: fin_anomaly_baselines
    """

    __tablename__ = "fin_anomaly_baselines"

    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    baseline_date: Mapped[date] = mapped_column(Date, nullable=False)
    baseline_cost: Mapped[float] = mapped_column(
        MONEY,
        nullable=False,
        comment="Cost observed on baseline_date itself",
    )
    rolling_30day_avg: Mapped[float] = mapped_column(MONEY, nullable=False)
    data_source: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="service_usage",
        comment="service_usage | service_proportion | daily_aggregate | none",
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "provider_id",
            "service_name",
            "baseline_date",
            name="uq_fin_anomaly_baselines_key",
        ),
        Index("ix_fin_anomaly_baselines_tenant_date", "tenant_id", "baseline_date"),
    )


class AnomalyEvent(TenantModel):
    """A seasonal-model anomaly recorded for one service on one day.

    Table: fin_anomaly_events
    """

    __tablename__ = "fin_anomaly_events"

    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    detected_date: Mapped[date] = mapped_column(Date, nullable=False)
    anomaly_type: Mapped[str] = mapped_column(String(20), nullable=False, comment="spike | drop")
    severity: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="low | medium | high | critical",
    )
    expected_cost: Mapped[float] = mapped_column(MONEY, nullable=False)
    actual_cost: Mapped[float] = mapped_column(MONEY, nullable=False)
    variance_percent: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    root_cause: Mapped[str] = mapped_column(Text, nullable=False)
    contributing_services: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "provider_id",
            "service_name",
            "detected_date",
            name="uq_fin_anomaly_events_key",
        ),
    )


class Budget(TenantModel):
    """Spend cap over a calendar period, scoped to a provider and/or account.

    current_spend and status are mutated only by the budget evaluator.

    Table: fin_budgets
    """

    __tablename__ = "fin_budgets"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Provider scope (null = all providers)",
    )
    account_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Account scope (null = all accounts)",
    )
    amount: Mapped[float] = mapped_column(MONEY, nullable=False)
    period: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")
    alert_threshold: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=80,
        comment="Percentage of amount (0-100) that triggers a threshold alert",
    )
    current_spend: Mapped[float] = mapped_column(MONEY, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    alerts: Mapped[list[BudgetAlert]] = relationship(
        "BudgetAlert",
        back_populates="budget",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("period IN ('monthly', 'quarterly', 'yearly')", name="ck_fin_budgets_period"),
        CheckConstraint("status IN ('active', 'paused', 'exceeded')", name="ck_fin_budgets_status"),
        CheckConstraint(
            "alert_threshold >= 0 AND alert_threshold <= 100",
            name="ck_fin_budgets_alert_threshold",
        ),
        Index("ix_fin_budgets_tenant_provider", "tenant_id", "provider_id"),
    )


class BudgetAlert(TenantModel):
    """A threshold or exceeded alert recorded for a budget on a given day.

    The (budget_id, alert_type, alert_date) unique constraint is the dedup key
    that keeps re-evaluation idempotent across workers.

    Table: fin_budget_alerts
    """

    __tablename__ = "fin_budget_alerts"

    budget_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("fin_budgets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    alert_type: Mapped[str] = mapped_column(String(20), nullable=False, comment="threshold | exceeded")
    alert_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    alert_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Calendar day (UTC) of the evaluation that raised the alert",
    )

    budget: Mapped[Budget] = relationship("Budget", back_populates="alerts")

    __table_args__ = (
        UniqueConstraint(
            "budget_id",
            "alert_type",
            "alert_date",
            name="uq_fin_budget_alerts_budget_type_date",
        ),
        CheckConstraint("alert_type IN ('threshold', 'exceeded')", name="ck_fin_budget_alerts_type"),
    )


class Notification(TenantModel):
    """In-app notification produced by the evaluator, detectors and digests.

    Table: fin_notifications
    """

    __tablename__ = "fin_notifications"

    type: Mapped[str] = mapped_column(String(20), nullable=False, comment="budget | anomaly | warning | info")
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    link: Mapped[str | None] = mapped_column(String(255), nullable=True)
    link_text: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_fin_notifications_tenant_read", "tenant_id", "is_read", "created_at"),
    )
