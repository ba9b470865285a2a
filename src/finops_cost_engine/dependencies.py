"""Service factories wiring repositories and adapters onto one session.

Each tenant unit of work gets its own AsyncSession, and every service built
for that unit shares the session's transaction manager, so the unit commits
once or rolls back as a whole.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from finops_cost_engine.adapters.locks import InProcessKeyedLock, PostgresAdvisoryLock
from finops_cost_engine.adapters.notifications import NotificationEmitter
from finops_cost_engine.adapters.repositories import (
    AnomalyBaselineRepository,
    AnomalyEventRepository,
    BudgetAlertRepository,
    BudgetRepository,
    DailyCostRepository,
    NotificationRepository,
    ServiceUsageRepository,
)
from finops_cost_engine.core.interfaces import IKeyedLock
from finops_cost_engine.core.pipeline import CostAnalyticsPipeline
from finops_cost_engine.core.services import (
    AnomalyDetectionService,
    BaselineTrackerService,
    BudgetEvaluatorService,
    ForecastService,
    WeeklyDigestService,
)
from finops_cost_engine.database import SessionTransactionManager
from finops_cost_engine.settings import Settings


@dataclass
class EngineServices:
    """Services bound to one session and one transaction manager."""

    transaction_manager: SessionTransactionManager
    daily_cost_repo: DailyCostRepository
    budget_repo: BudgetRepository
    baselines: BaselineTrackerService
    anomalies: AnomalyDetectionService
    forecasts: ForecastService
    budgets: BudgetEvaluatorService
    digests: WeeklyDigestService
    pipeline: CostAnalyticsPipeline


def _select_lock(session: AsyncSession, settings: Settings, process_lock: IKeyedLock | None) -> IKeyedLock:
    if settings.use_advisory_locks:
        return PostgresAdvisoryLock(session)
    return process_lock or InProcessKeyedLock()


def build_services(
    session: AsyncSession,
    settings: Settings,
    process_lock: IKeyedLock | None = None,
) -> EngineServices:
    """Build every engine service on top of `session`.

    Args:
        session: Session owning the unit of work.
        settings: Engine settings.
        process_lock: Shared in-process lock registry, used when advisory
            locks are disabled. Pass the same instance to every unit.

    Returns:
        EngineServices for the session.
    """
    transaction_manager = SessionTransactionManager(session)
    keyed_lock = _select_lock(session, settings, process_lock)

    daily_cost_repo = DailyCostRepository(session)
    usage_repo = ServiceUsageRepository(session)
    baseline_repo = AnomalyBaselineRepository(session)
    event_repo = AnomalyEventRepository(session)
    budget_repo = BudgetRepository(session)
    alert_repo = BudgetAlertRepository(session)
    emitter = NotificationEmitter(NotificationRepository(session))

    baselines = BaselineTrackerService(
        daily_cost_repo=daily_cost_repo,
        usage_repo=usage_repo,
        baseline_repo=baseline_repo,
        transaction_manager=transaction_manager,
        keyed_lock=keyed_lock,
        settings=settings,
    )
    anomalies = AnomalyDetectionService(
        baseline_repo=baseline_repo,
        event_repo=event_repo,
        usage_repo=usage_repo,
        notification_emitter=emitter,
        transaction_manager=transaction_manager,
        settings=settings,
    )
    forecasts = ForecastService(daily_cost_repo=daily_cost_repo, settings=settings)
    budgets = BudgetEvaluatorService(
        budget_repo=budget_repo,
        alert_repo=alert_repo,
        daily_cost_repo=daily_cost_repo,
        notification_emitter=emitter,
        transaction_manager=transaction_manager,
        keyed_lock=keyed_lock,
    )
    digests = WeeklyDigestService(
        daily_cost_repo=daily_cost_repo,
        usage_repo=usage_repo,
        notification_emitter=emitter,
        transaction_manager=transaction_manager,
    )

    return EngineServices(
        transaction_manager=transaction_manager,
        daily_cost_repo=daily_cost_repo,
        budget_repo=budget_repo,
        baselines=baselines,
        anomalies=anomalies,
        forecasts=forecasts,
        budgets=budgets,
        digests=digests,
        pipeline=CostAnalyticsPipeline(
            baseline_service=baselines,
            anomaly_service=anomalies,
            forecast_service=forecasts,
            transaction_manager=transaction_manager,
        ),
    )


@asynccontextmanager
async def tenant_unit(
    session_factory: async_sessionmaker[AsyncSession],
    tenant_id: str,
    settings: Settings,
    process_lock: IKeyedLock | None = None,
) -> AsyncIterator[EngineServices]:
    """Open a tenant-scoped session, yield its services, and commit the unit atomically.

    ``app.current_tenant`` is set for the transaction so the row-level security
    policies confine every statement of the unit to `tenant_id`.
    """
    async with session_factory() as session:
        services = build_services(session, settings, process_lock)
        async with services.transaction_manager.transaction():
            await session.execute(
                text("SELECT set_config('app.current_tenant', :tenant_id, true)"),
                {"tenant_id": tenant_id},
            )
            yield services
