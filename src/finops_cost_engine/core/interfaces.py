"""Abstract interfaces (Protocol classes) for the FinOps cost analytics engine.

All services depend on these interfaces, not concrete implementations.
This enables dependency injection and test doubles without coupling to
SQLAlchemy, PostgreSQL advisory locks, or the notification delivery system.
"""

import uuid
from contextlib import AbstractAsyncContextManager
from datetime import date
from typing import Any, Protocol, runtime_checkable

from finops_cost_engine.core.models import (
    AnomalyBaseline,
    AnomalyEvent,
    Budget,
    BudgetAlert,
    Notification,
)
from finops_cost_engine.core.series import DailySeriesPoint


@runtime_checkable
class IDailyCostRepository(Protocol):
    """Read access to the aggregate daily cost time-series store."""

    async def get_daily_series(
        self,
        tenant_id: str,
        start_date: date,
        end_date: date,
        provider_id: str | None = None,
        account_id: str | None = None,
    ) -> list[DailySeriesPoint]:
        """Return daily totals (summed across matching rows) ordered by day ascending."""
        ...

    async def sum_cost(
        self,
        tenant_id: str,
        start_date: date,
        end_date: date,
        provider_id: str | None = None,
        account_id: str | None = None,
    ) -> float:
        """Total cost in an inclusive date window, filtered by optional scope."""
        ...

    async def list_tenant_ids(self, since: date) -> list[str]:
        """Tenants with at least one daily cost point on or after `since`."""
        ...

    async def list_provider_scopes(self, tenant_id: str, since: date) -> list[tuple[str, str | None]]:
        """Distinct (provider_id, account_id) pairs with data on or after `since`."""
        ...


@runtime_checkable
class IServiceUsageRepository(Protocol):
    """Read access to per-service usage metrics and monthly service breakdowns."""

    async def get_service_series(
        self,
        tenant_id: str,
        provider_id: str,
        service_name: str,
        start_date: date,
        end_date: date,
        account_id: str | None = None,
    ) -> list[DailySeriesPoint]:
        """Per-day cost for one service, summed over usage types."""
        ...

    async def get_service_daily_costs(
        self,
        tenant_id: str,
        provider_id: str,
        start_date: date,
        end_date: date,
        account_id: str | None = None,
    ) -> dict[str, list[DailySeriesPoint]]:
        """Per-day cost for every service of a provider, keyed by service name."""
        ...

    async def list_service_names(
        self,
        tenant_id: str,
        provider_id: str,
        since: date,
        account_id: str | None = None,
    ) -> list[str]:
        """Distinct services with metrics or monthly breakdown rows since `since`."""
        ...

    async def get_latest_service_proportions(
        self,
        tenant_id: str,
        provider_id: str,
        account_id: str | None = None,
    ) -> dict[str, float]:
        """Share (0-1) of each service in the most recent monthly breakdown."""
        ...

    async def sum_cost_by_service(
        self,
        tenant_id: str,
        start_date: date,
        end_date: date,
        limit: int = 5,
    ) -> list[tuple[str, float]]:
        """Largest services by total cost across all providers, descending."""
        ...


@runtime_checkable
class IAnomalyBaselineRepository(Protocol):
    """Persistence for rolling per-service baselines."""

    async def upsert(self, baseline: AnomalyBaseline) -> None:
        """Insert or overwrite the baseline for (tenant, provider, service, date)."""
        ...

    async def list_since(
        self,
        tenant_id: str,
        since: date,
        provider_id: str | None = None,
        account_id: str | None = None,
    ) -> list[AnomalyBaseline]:
        """Baselines dated on or after `since`."""
        ...


@runtime_checkable
class IAnomalyEventRepository(Protocol):
    """Persistence for seasonal anomaly events."""

    async def exists_for(
        self,
        tenant_id: str,
        provider_id: str,
        service_name: str,
        detected_date: date,
    ) -> bool:
        """Whether an event was already recorded for the service on that day."""
        ...

    async def create(self, event: AnomalyEvent) -> AnomalyEvent:
        """Persist a new anomaly event."""
        ...


@runtime_checkable
class IBudgetRepository(Protocol):
    """Persistence for budgets."""

    async def create(self, budget: Budget) -> Budget:
        """Persist a new budget."""
        ...

    async def get_for_tenant(self, tenant_id: str, budget_id: uuid.UUID) -> Budget | None:
        """Retrieve a budget owned by the tenant."""
        ...

    async def list_active_budgets(self, tenant_id: str) -> list[Budget]:
        """Budgets the evaluator must process (status active or exceeded)."""
        ...

    async def update_spend(self, budget: Budget, current_spend: float, status: str) -> Budget:
        """Persist recalculated spend and status."""
        ...

    async def delete(self, budget: Budget) -> None:
        """Delete a budget and, by cascade, its alert history."""
        ...

    async def list_tenant_ids_with_active_budgets(self) -> list[str]:
        """Tenants owning at least one non-paused budget."""
        ...


@runtime_checkable
class IBudgetAlertRepository(Protocol):
    """Persistence for budget alerts."""

    async def create_if_absent(self, alert: BudgetAlert) -> BudgetAlert | None:
        """Insert unless (budget_id, alert_type, alert_date) exists; None when it did."""
        ...

    async def list_recent_for_tenant(self, tenant_id: str, limit: int = 10) -> list[BudgetAlert]:
        """Most recent alerts across the tenant's budgets."""
        ...


@runtime_checkable
class INotificationRepository(Protocol):
    """Persistence for in-app notifications."""

    async def create(self, notification: Notification) -> Notification:
        """Persist a new notification."""
        ...


@runtime_checkable
class ITransactionManager(Protocol):
    """Demarcates atomic units of work."""

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Context manager committing on success and rolling back on error."""
        ...


@runtime_checkable
class IKeyedLock(Protocol):
    """Serializes read-modify-write units that share a key."""

    def hold(self, key: str) -> AbstractAsyncContextManager[None]:
        """Hold the lock for `key` for the duration of the block."""
        ...


@runtime_checkable
class INotificationEmitter(Protocol):
    """Turns engine outputs into persisted notification records."""

    async def emit(
        self,
        tenant_id: str,
        notification_type: str,
        title: str,
        message: str | None,
        link: str | None = None,
        link_text: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """Persist one notification."""
        ...
