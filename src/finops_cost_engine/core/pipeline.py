"""Post-sync analytics cycle and interruptible per-tenant sweeps.

After a provider sync writes new daily points, CostAnalyticsPipeline refreshes
baselines, runs both anomaly detectors and recomputes the month-end forecast.
TenantSweep drives any per-tenant unit of work (budget evaluation, baseline
refresh, weekly digest) across many tenants, one at a time.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from finops_cost_engine.adapters.cost_anomaly_detector import VarianceAnomaly
from finops_cost_engine.adapters.cost_forecaster import MonthEndForecast
from finops_cost_engine.core.interfaces import ITransactionManager
from finops_cost_engine.core.models import AnomalyEvent
from finops_cost_engine.core.services import (
    AnomalyDetectionService,
    BaselineResult,
    BaselineTrackerService,
    ForecastService,
)
from finops_cost_engine.observability import get_logger

logger = get_logger(__name__)


@dataclass
class SyncCycleResult:
    """Everything one post-sync cycle produced for a tenant provider."""

    tenant_id: str
    provider_id: str
    account_id: str | None
    baselines: list[BaselineResult] = field(default_factory=list)
    variance_anomalies: list[VarianceAnomaly] = field(default_factory=list)
    seasonal_events: list[AnomalyEvent] = field(default_factory=list)
    forecast: MonthEndForecast | None = None


class CostAnalyticsPipeline:
    """Run baselines, detectors and the forecaster in dependency order.

    Args:
        baseline_service: Refreshes rolling baselines.
        anomaly_service: Runs the variance and seasonal detectors.
        forecast_service: Projects month-end spend.
        transaction_manager: Makes the whole cycle one unit of work.
    """

    def __init__(
        self,
        baseline_service: BaselineTrackerService,
        anomaly_service: AnomalyDetectionService,
        forecast_service: ForecastService,
        transaction_manager: ITransactionManager,
    ) -> None:
        self._baselines = baseline_service
        self._anomalies = anomaly_service
        self._forecasts = forecast_service
        self._tx = transaction_manager

    async def process_sync(
        self,
        tenant_id: str,
        provider_id: str,
        account_id: str | None = None,
        as_of: date | None = None,
    ) -> SyncCycleResult:
        """Run the post-sync cycle for one tenant provider (and account).

        Returns:
            SyncCycleResult with the refreshed baselines, anomalies and forecast.
        """
        result = SyncCycleResult(tenant_id=tenant_id, provider_id=provider_id, account_id=account_id)

        async with self._tx.transaction():
            result.baselines = await self._baselines.refresh_baselines(
                tenant_id, provider_id, as_of=as_of, account_id=account_id
            )
            result.variance_anomalies = await self._anomalies.find_anomalies(
                tenant_id, provider_id=provider_id, account_id=account_id, as_of=as_of
            )
            result.seasonal_events = await self._anomalies.detect_seasonal_anomalies(
                tenant_id, provider_id, account_id=account_id, as_of=as_of
            )
            result.forecast = await self._forecasts.forecast_month_end(
                tenant_id, provider_id=provider_id, account_id=account_id, as_of=as_of
            )

        logger.info(
            "sync_cycle_completed",
            tenant_id=tenant_id,
            provider_id=provider_id,
            account_id=account_id,
            baselines=len(result.baselines),
            variance_anomalies=len(result.variance_anomalies),
            seasonal_events=len(result.seasonal_events),
            forecast=round(result.forecast.forecast, 2),
            confidence=result.forecast.confidence,
        )
        return result


@dataclass
class SweepResult:
    """Outcome of a sweep across tenants.

    Attributes:
        completed: Unit result per tenant that committed.
        failed: Error message per tenant whose unit rolled back; retry these.
        skipped: Tenants not started because the sweep was stopped.
        started_at: Sweep start time (UTC).
    """

    completed: dict[str, Any] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def stopped(self) -> bool:
        return bool(self.skipped)


class TenantSweep:
    """Run one unit of work per tenant, sequentially and interruptibly.

    A unit opens its own session and transaction, so a failure rolls back
    only that tenant. The stop event is checked between tenants; a unit in
    progress always runs to commit or rollback.

    Args:
        name: Sweep name used in log events.
        stop_event: Set to stop the sweep before the next tenant.
    """

    def __init__(self, name: str, stop_event: asyncio.Event | None = None) -> None:
        self._name = name
        self._stop_event = stop_event or asyncio.Event()

    def stop(self) -> None:
        self._stop_event.set()

    async def run(
        self,
        tenant_ids: Iterable[str],
        unit: Callable[[str], Awaitable[Any]],
    ) -> SweepResult:
        """Apply `unit` to each tenant until done or stopped.

        Args:
            tenant_ids: Tenants to process, in order.
            unit: Coroutine function taking a tenant id.

        Returns:
            SweepResult listing completed, failed and skipped tenants.
        """
        result = SweepResult()
        pending = list(tenant_ids)

        for index, tenant_id in enumerate(pending):
            if self._stop_event.is_set():
                result.skipped = pending[index:]
                logger.info("tenant_sweep_stopped", sweep=self._name, remaining=len(result.skipped))
                break
            try:
                result.completed[tenant_id] = await unit(tenant_id)
            except Exception as exc:
                result.failed[tenant_id] = str(exc)
                logger.error(
                    "tenant_unit_failed",
                    sweep=self._name,
                    tenant_id=tenant_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

        logger.info(
            "tenant_sweep_completed",
            sweep=self._name,
            completed=len(result.completed),
            failed=len(result.failed),
            skipped=len(result.skipped),
        )
        return result
