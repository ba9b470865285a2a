"""SQLAlchemy repositories for the FinOps cost analytics engine.

All repositories extend BaseRepository and implement the interfaces defined in
core/interfaces.py. They flush but never commit; services wrap each unit of
work in SessionTransactionManager.transaction(). Driver errors surface as
PersistenceError so the orchestrator can roll back and retry the tenant.
"""

import uuid
from collections import defaultdict
from datetime import date

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from finops_cost_engine.core.models import (
    AnomalyBaseline,
    AnomalyEvent,
    Budget,
    BudgetAlert,
    DailyCostPoint,
    Notification,
    ServiceCostBreakdown,
    ServiceUsageMetric,
)
from finops_cost_engine.core.series import DailySeriesPoint
from finops_cost_engine.database import BaseRepository
from finops_cost_engine.errors import PersistenceError
from finops_cost_engine.observability import get_logger

logger = get_logger(__name__)


class DailyCostRepository(BaseRepository[DailyCostPoint]):
    """Repository for fin_daily_costs — aggregate provider cost per day."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, DailyCostPoint)

    async def get_daily_series(
        self,
        tenant_id: str,
        start_date: date,
        end_date: date,
        provider_id: str | None = None,
        account_id: str | None = None,
    ) -> list[DailySeriesPoint]:
        """Daily totals in an inclusive window, summed across matching rows.

        Args:
            tenant_id: Tenant filter (RLS also enforces this).
            start_date: Window start (inclusive).
            end_date: Window end (inclusive).
            provider_id: Optional provider filter (None = all providers).
            account_id: Optional account filter (None = all accounts).

        Returns:
            One DailySeriesPoint per day that has data, ordered by day ascending.
        """
        query = (
            select(DailyCostPoint.cost_date, func.sum(DailyCostPoint.cost))
            .where(
                DailyCostPoint.tenant_id == tenant_id,
                DailyCostPoint.cost_date >= start_date,
                DailyCostPoint.cost_date <= end_date,
            )
            .group_by(DailyCostPoint.cost_date)
            .order_by(DailyCostPoint.cost_date.asc())
        )
        if provider_id is not None:
            query = query.where(DailyCostPoint.provider_id == provider_id)
        if account_id is not None:
            query = query.where(DailyCostPoint.account_id == account_id)

        try:
            result = await self._session.execute(query)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load daily series for tenant {tenant_id}: {exc}") from exc
        return [
            DailySeriesPoint(day=row[0], cost=None if row[1] is None else float(row[1]))
            for row in result.all()
        ]

    async def sum_cost(
        self,
        tenant_id: str,
        start_date: date,
        end_date: date,
        provider_id: str | None = None,
        account_id: str | None = None,
    ) -> float:
        """Total cost in an inclusive window (0.0 if no rows)."""
        query = select(func.coalesce(func.sum(DailyCostPoint.cost), 0.0)).where(
            DailyCostPoint.tenant_id == tenant_id,
            DailyCostPoint.cost_date >= start_date,
            DailyCostPoint.cost_date <= end_date,
        )
        if provider_id is not None:
            query = query.where(DailyCostPoint.provider_id == provider_id)
        if account_id is not None:
            query = query.where(DailyCostPoint.account_id == account_id)

        try:
            result = await self._session.execute(query)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to sum cost for tenant {tenant_id}: {exc}") from exc
        return float(result.scalar() or 0.0)

    async def list_tenant_ids(self, since: date) -> list[str]:
        """Tenants with at least one daily point on or after `since`."""
        query = (
            select(DailyCostPoint.tenant_id)
            .where(DailyCostPoint.cost_date >= since)
            .distinct()
            .order_by(DailyCostPoint.tenant_id)
        )
        result = await self._execute(query, "list tenants with daily costs")
        return list(result.scalars().all())

    async def list_provider_scopes(self, tenant_id: str, since: date) -> list[tuple[str, str | None]]:
        """Distinct (provider_id, account_id) pairs with data since `since`."""
        query = (
            select(DailyCostPoint.provider_id, DailyCostPoint.account_id)
            .where(DailyCostPoint.tenant_id == tenant_id, DailyCostPoint.cost_date >= since)
            .distinct()
            .order_by(DailyCostPoint.provider_id, DailyCostPoint.account_id)
        )
        result = await self._execute(query, f"list provider scopes for tenant {tenant_id}")
        return [(row[0], row[1]) for row in result.all()]


class ServiceUsageRepository(BaseRepository[ServiceUsageMetric]):
    """Repository for fin_service_usage_metrics and fin_service_cost_breakdowns."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, ServiceUsageMetric)

    def _scoped(self, query, tenant_id: str, provider_id: str, account_id: str | None):  # type: ignore[no-untyped-def]
        query = query.where(
            ServiceUsageMetric.tenant_id == tenant_id,
            ServiceUsageMetric.provider_id == provider_id,
        )
        if account_id is not None:
            query = query.where(ServiceUsageMetric.account_id == account_id)
        return query

    async def get_service_series(
        self,
        tenant_id: str,
        provider_id: str,
        service_name: str,
        start_date: date,
        end_date: date,
        account_id: str | None = None,
    ) -> list[DailySeriesPoint]:
        """Per-day cost for one service, summed over usage types.

        Returns:
            DailySeriesPoint list ordered by day ascending (empty if no metrics).
        """
        query = self._scoped(
            select(ServiceUsageMetric.metric_date, func.sum(ServiceUsageMetric.cost)),
            tenant_id,
            provider_id,
            account_id,
        ).where(
            ServiceUsageMetric.service_name == service_name,
            ServiceUsageMetric.metric_date >= start_date,
            ServiceUsageMetric.metric_date <= end_date,
        )
        query = query.group_by(ServiceUsageMetric.metric_date).order_by(ServiceUsageMetric.metric_date.asc())

        try:
            result = await self._session.execute(query)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load service series for {service_name}: {exc}") from exc
        return [
            DailySeriesPoint(day=row[0], cost=None if row[1] is None else float(row[1]))
            for row in result.all()
        ]

    async def get_service_daily_costs(
        self,
        tenant_id: str,
        provider_id: str,
        start_date: date,
        end_date: date,
        account_id: str | None = None,
    ) -> dict[str, list[DailySeriesPoint]]:
        """Per-day cost for every service of a provider, keyed by service name."""
        query = self._scoped(
            select(
                ServiceUsageMetric.service_name,
                ServiceUsageMetric.metric_date,
                func.sum(ServiceUsageMetric.cost),
            ),
            tenant_id,
            provider_id,
            account_id,
        ).where(
            ServiceUsageMetric.metric_date >= start_date,
            ServiceUsageMetric.metric_date <= end_date,
        )
        query = query.group_by(ServiceUsageMetric.service_name, ServiceUsageMetric.metric_date).order_by(
            ServiceUsageMetric.service_name, ServiceUsageMetric.metric_date.asc()
        )

        result = await self._execute(query, f"load service costs for provider {provider_id}")
        series: dict[str, list[DailySeriesPoint]] = defaultdict(list)
        for service_name, metric_date, cost in result.all():
            series[service_name].append(
                DailySeriesPoint(day=metric_date, cost=None if cost is None else float(cost))
            )
        return dict(series)

    async def list_service_names(
        self,
        tenant_id: str,
        provider_id: str,
        since: date,
        account_id: str | None = None,
    ) -> list[str]:
        """Services seen in usage metrics since `since` or in monthly breakdowns."""
        usage_query = self._scoped(
            select(ServiceUsageMetric.service_name).distinct(),
            tenant_id,
            provider_id,
            account_id,
        ).where(ServiceUsageMetric.metric_date >= since)

        breakdown_query = select(ServiceCostBreakdown.service_name).distinct().where(
            ServiceCostBreakdown.tenant_id == tenant_id,
            ServiceCostBreakdown.provider_id == provider_id,
            ServiceCostBreakdown.cost > 0,
            or_(
                ServiceCostBreakdown.year > since.year,
                and_(ServiceCostBreakdown.year == since.year, ServiceCostBreakdown.month >= since.month),
            ),
        )
        if account_id is not None:
            breakdown_query = breakdown_query.where(ServiceCostBreakdown.account_id == account_id)

        names: set[str] = set()
        for query in (usage_query, breakdown_query):
            result = await self._execute(query, f"list services for provider {provider_id}")
            names.update(result.scalars().all())
        return sorted(names)

    async def get_latest_service_proportions(
        self,
        tenant_id: str,
        provider_id: str,
        account_id: str | None = None,
    ) -> dict[str, float]:
        """Share of each service in the most recent monthly breakdown.

        Returns:
            Mapping of service name to a 0-1 share; empty when the latest month
            has no positive cost.
        """
        latest_query = select(ServiceCostBreakdown.year, ServiceCostBreakdown.month).where(
            ServiceCostBreakdown.tenant_id == tenant_id,
            ServiceCostBreakdown.provider_id == provider_id,
        )
        if account_id is not None:
            latest_query = latest_query.where(ServiceCostBreakdown.account_id == account_id)
        latest_query = latest_query.order_by(
            ServiceCostBreakdown.year.desc(), ServiceCostBreakdown.month.desc()
        ).limit(1)

        latest = (await self._execute(latest_query, f"load latest breakdown month for {provider_id}")).first()
        if latest is None:
            return {}

        query = (
            select(ServiceCostBreakdown.service_name, func.sum(ServiceCostBreakdown.cost))
            .where(
                ServiceCostBreakdown.tenant_id == tenant_id,
                ServiceCostBreakdown.provider_id == provider_id,
                ServiceCostBreakdown.year == latest[0],
                ServiceCostBreakdown.month == latest[1],
            )
            .group_by(ServiceCostBreakdown.service_name)
        )
        if account_id is not None:
            query = query.where(ServiceCostBreakdown.account_id == account_id)

        result = await self._execute(query, f"load service proportions for {provider_id}")
        rows = [(name, float(cost or 0.0)) for name, cost in result.all()]
        total = sum(cost for _, cost in rows if cost > 0)
        if total <= 0:
            return {}
        return {name: cost / total for name, cost in rows if cost > 0}

    async def sum_cost_by_service(
        self,
        tenant_id: str,
        start_date: date,
        end_date: date,
        limit: int = 5,
    ) -> list[tuple[str, float]]:
        """Largest services by total cost in an inclusive window, descending."""
        total = func.sum(ServiceUsageMetric.cost)
        query = (
            select(ServiceUsageMetric.service_name, total)
            .where(
                ServiceUsageMetric.tenant_id == tenant_id,
                ServiceUsageMetric.metric_date >= start_date,
                ServiceUsageMetric.metric_date <= end_date,
            )
            .group_by(ServiceUsageMetric.service_name)
            .order_by(total.desc())
            .limit(limit)
        )
        result = await self._execute(query, f"rank services for tenant {tenant_id}")
        return [(name, float(cost or 0.0)) for name, cost in result.all()]


class AnomalyBaselineRepository(BaseRepository[AnomalyBaseline]):
    """Repository for fin_anomaly_baselines — rolling 30-day averages."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, AnomalyBaseline)

    async def upsert(self, baseline: AnomalyBaseline) -> None:
        """Insert or overwrite the baseline for (tenant, provider, service, date).

        Re-running a refresh for the same key converges to the same row.
        """
        statement = pg_insert(AnomalyBaseline).values(
            id=baseline.id or uuid.uuid4(),
            tenant_id=baseline.tenant_id,
            provider_id=baseline.provider_id,
            account_id=baseline.account_id,
            service_name=baseline.service_name,
            baseline_date=baseline.baseline_date,
            baseline_cost=baseline.baseline_cost,
            rolling_30day_avg=baseline.rolling_30day_avg,
            data_source=baseline.data_source,
        )
        statement = statement.on_conflict_do_update(
            constraint="uq_fin_anomaly_baselines_key",
            set_={
                "account_id": statement.excluded.account_id,
                "baseline_cost": statement.excluded.baseline_cost,
                "rolling_30day_avg": statement.excluded.rolling_30day_avg,
                "data_source": statement.excluded.data_source,
                "updated_at": func.now(),
            },
        )
        try:
            await self._session.execute(statement)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to upsert baseline {baseline.service_name}@{baseline.baseline_date}: {exc}"
            ) from exc

    async def list_since(
        self,
        tenant_id: str,
        since: date,
        provider_id: str | None = None,
        account_id: str | None = None,
    ) -> list[AnomalyBaseline]:
        """Baselines dated on or after `since`, newest first."""
        query = (
            select(AnomalyBaseline)
            .where(AnomalyBaseline.tenant_id == tenant_id, AnomalyBaseline.baseline_date >= since)
            .order_by(AnomalyBaseline.baseline_date.desc())
        )
        if provider_id is not None:
            query = query.where(AnomalyBaseline.provider_id == provider_id)
        if account_id is not None:
            query = query.where(AnomalyBaseline.account_id == account_id)

        result = await self._execute(query, f"list baselines for tenant {tenant_id}")
        return list(result.scalars().all())


class AnomalyEventRepository(BaseRepository[AnomalyEvent]):
    """Repository for fin_anomaly_events — seasonal detector findings."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, AnomalyEvent)

    async def exists_for(
        self,
        tenant_id: str,
        provider_id: str,
        service_name: str,
        detected_date: date,
    ) -> bool:
        """Whether an event is already recorded for the service on that day."""
        query = select(func.count(AnomalyEvent.id)).where(
            AnomalyEvent.tenant_id == tenant_id,
            AnomalyEvent.provider_id == provider_id,
            AnomalyEvent.service_name == service_name,
            AnomalyEvent.detected_date == detected_date,
        )
        result = await self._execute(query, f"check anomaly event for {service_name}")
        return (result.scalar() or 0) > 0


class BudgetRepository(BaseRepository[Budget]):
    """Repository for fin_budgets — tenant spending caps."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, Budget)

    async def get_for_tenant(self, tenant_id: str, budget_id: uuid.UUID) -> Budget | None:
        """Retrieve a budget owned by the tenant (None if absent or foreign)."""
        query = select(Budget).where(Budget.id == budget_id, Budget.tenant_id == tenant_id)
        result = await self._execute(query, f"load budget {budget_id}")
        return result.scalar_one_or_none()

    async def list_active_budgets(self, tenant_id: str) -> list[Budget]:
        """Budgets to evaluate: status active or exceeded, oldest first."""
        query = (
            select(Budget)
            .where(Budget.tenant_id == tenant_id, Budget.status != "paused")
            .order_by(Budget.created_at.asc())
        )
        result = await self._execute(query, f"list budgets for tenant {tenant_id}")
        return list(result.scalars().all())

    async def update_spend(self, budget: Budget, current_spend: float, status: str) -> Budget:
        """Persist recalculated spend and status for one budget."""
        try:
            await self._session.execute(
                update(Budget)
                .where(Budget.id == budget.id, Budget.tenant_id == budget.tenant_id)
                .values(current_spend=current_spend, status=status, updated_at=func.now())
            )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update budget {budget.id}: {exc}") from exc
        budget.current_spend = current_spend
        budget.status = status
        return budget

    async def list_tenant_ids_with_active_budgets(self) -> list[str]:
        """Tenants owning at least one non-paused budget."""
        query = select(Budget.tenant_id).where(Budget.status != "paused").distinct().order_by(Budget.tenant_id)
        result = await self._execute(query, "list tenants with active budgets")
        return list(result.scalars().all())


class BudgetAlertRepository(BaseRepository[BudgetAlert]):
    """Repository for fin_budget_alerts — threshold and exceeded alerts."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, BudgetAlert)

    async def create_if_absent(self, alert: BudgetAlert) -> BudgetAlert | None:
        """Insert unless (budget_id, alert_type, alert_date) already exists.

        The unique constraint arbitrates between concurrent evaluators, so two
        workers racing on the same budget produce exactly one row.

        Returns:
            The inserted alert, or None when the key was already present.
        """
        alert_id = alert.id or uuid.uuid4()
        statement = (
            pg_insert(BudgetAlert)
            .values(
                id=alert_id,
                tenant_id=alert.tenant_id,
                budget_id=alert.budget_id,
                alert_type=alert.alert_type,
                alert_percentage=alert.alert_percentage,
                alert_date=alert.alert_date,
            )
            .on_conflict_do_nothing(constraint="uq_fin_budget_alerts_budget_type_date")
            .returning(BudgetAlert.id)
        )
        try:
            result = await self._session.execute(statement)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to insert budget alert for {alert.budget_id}: {exc}") from exc

        if result.scalar_one_or_none() is None:
            return None
        alert.id = alert_id
        return alert

    async def list_recent_for_tenant(self, tenant_id: str, limit: int = 10) -> list[BudgetAlert]:
        """Most recent alerts across the tenant's budgets, newest first."""
        query = (
            select(BudgetAlert)
            .where(BudgetAlert.tenant_id == tenant_id)
            .order_by(BudgetAlert.alert_date.desc(), BudgetAlert.created_at.desc())
            .limit(limit)
        )
        result = await self._execute(query, f"list budget alerts for tenant {tenant_id}")
        return list(result.scalars().all())


class NotificationRepository(BaseRepository[Notification]):
    """Repository for fin_notifications — in-app notification records."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, Notification)
