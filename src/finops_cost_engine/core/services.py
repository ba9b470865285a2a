"""Business logic services for the FinOps cost analytics engine.

All services depend on repository and adapter interfaces (not concrete
implementations) and receive dependencies via constructor injection.
No SQLAlchemy code belongs here.

Key invariants:
- BaselineTrackerService: rolling_30day_avg is the mean of the trailing 30 daily
  costs ending at baseline_date; writes are idempotent upserts under a per-key lock.
- AnomalyDetectionService: variance is 0 when the rolling average is 0, so
  services without history are never flagged; seasonal events are recorded at
  most once per service per day.
- ForecastService: an empty history yields forecast 0 with confidence 5.
- BudgetEvaluatorService: at most one alert per (budget, alert_type, day); the
  spend update, alert and notification commit together or not at all.
- WeeklyDigestService: summarises the last seven days against the seven before.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

from finops_cost_engine.adapters.cost_anomaly_detector import VarianceAnomaly, VarianceThresholdDetector
from finops_cost_engine.adapters.cost_forecaster import (
    MonthEndForecast,
    MonthEndForecaster,
    apply_scenario_adjustments,
    project_monthly_costs,
)
from finops_cost_engine.adapters.holt_winters import detect_anomalies_seasonal
from finops_cost_engine.adapters.locks import baseline_lock_key, budget_lock_key
from finops_cost_engine.adapters.series_sources import (
    BASELINE_WINDOW_DAYS,
    SeriesSource,
    cost_on,
    default_series_sources,
    resolve_series,
    rolling_average,
)
from finops_cost_engine.core.interfaces import (
    IAnomalyBaselineRepository,
    IAnomalyEventRepository,
    IBudgetAlertRepository,
    IBudgetRepository,
    IDailyCostRepository,
    IKeyedLock,
    INotificationEmitter,
    IServiceUsageRepository,
    ITransactionManager,
)
from finops_cost_engine.core.models import (
    BUDGET_PERIODS,
    AnomalyBaseline,
    AnomalyEvent,
    Budget,
    BudgetAlert,
)
from finops_cost_engine.core.periods import month_to_date, period_window
from finops_cost_engine.core.series import DailySeriesPoint
from finops_cost_engine.errors import InvalidBudgetError, NotFoundError
from finops_cost_engine.observability import get_logger
from finops_cost_engine.settings import Settings

logger = get_logger(__name__)

# Baselines for providers that report no per-service breakdown
AGGREGATE_SERVICE_NAME: str = "Total"

VARIANCE_LOOKBACK_DAYS: int = 7
CONTRIBUTOR_CHANGE_PERCENT: float = 10.0
MAX_CONTRIBUTING_SERVICES: int = 10
MONTHLY_PROJECTION_HISTORY_DAYS: int = 180
DIGEST_TOP_SERVICES: int = 5


def _today() -> date:
    return datetime.now(tz=timezone.utc).date()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass
class BaselineResult:
    """Outcome of one baseline computation.

    Attributes:
        service_name: Service the baseline belongs to.
        baseline_date: Day the baseline describes.
        baseline_cost: Cost on baseline_date (0 when that day has no point).
        rolling_30day_avg: Trailing 30-day mean (0 without history).
        data_source: Strategy that produced the series, or "none".
    """

    service_name: str
    baseline_date: date
    baseline_cost: float
    rolling_30day_avg: float
    data_source: str


class BaselineTrackerService:
    """Maintain 30-day rolling cost baselines per service.

    The per-service series comes from the first data-source strategy with data
    (usage metrics, then monthly proportions, then the aggregate series).
    """

    def __init__(
        self,
        daily_cost_repo: IDailyCostRepository,
        usage_repo: IServiceUsageRepository,
        baseline_repo: IAnomalyBaselineRepository,
        transaction_manager: ITransactionManager,
        keyed_lock: IKeyedLock,
        settings: Settings,
        series_sources: list[SeriesSource] | None = None,
    ) -> None:
        """Initialize BaselineTrackerService with required dependencies."""
        self._daily_repo = daily_cost_repo
        self._usage_repo = usage_repo
        self._baseline_repo = baseline_repo
        self._tx = transaction_manager
        self._lock = keyed_lock
        self._settings = settings
        self._sources = series_sources or default_series_sources(usage_repo, daily_cost_repo)

    async def compute_baseline(
        self,
        tenant_id: str,
        provider_id: str,
        service_name: str,
        baseline_date: date,
        account_id: str | None = None,
    ) -> BaselineResult:
        """Compute and upsert the baseline for one service on one day.

        Args:
            tenant_id: Owning tenant.
            provider_id: Cloud provider key.
            service_name: Service to baseline.
            baseline_date: Day to compute the baseline for.
            account_id: Optional provider account scope.

        Returns:
            The BaselineResult that was persisted.
        """
        async with self._tx.transaction():
            return await self._compute_and_upsert(
                tenant_id, provider_id, service_name, baseline_date, account_id
            )

    async def refresh_baselines(
        self,
        tenant_id: str,
        provider_id: str,
        as_of: date | None = None,
        account_id: str | None = None,
        days: int | None = None,
    ) -> list[BaselineResult]:
        """Recompute baselines for every known service over the last `days` days.

        The whole refresh is one transaction: either every baseline of the
        unit is written or none is.

        Returns:
            One BaselineResult per (service, day), ordered by service then day.
        """
        end_date = as_of or _today()
        window = days if days is not None else self._settings.baseline_refresh_days
        since = end_date - timedelta(days=window + BASELINE_WINDOW_DAYS)

        service_names = await self._usage_repo.list_service_names(
            tenant_id, provider_id, since, account_id=account_id
        )
        if not service_names:
            service_names = [AGGREGATE_SERVICE_NAME]

        results: list[BaselineResult] = []
        async with self._tx.transaction():
            for service_name in service_names:
                for offset in range(window - 1, -1, -1):
                    day = end_date - timedelta(days=offset)
                    results.append(
                        await self._compute_and_upsert(tenant_id, provider_id, service_name, day, account_id)
                    )

        logger.info(
            "baselines_refreshed",
            tenant_id=tenant_id,
            provider_id=provider_id,
            account_id=account_id,
            services=len(service_names),
            days=window,
            rows=len(results),
        )
        return results

    async def _compute_and_upsert(
        self,
        tenant_id: str,
        provider_id: str,
        service_name: str,
        baseline_date: date,
        account_id: str | None,
    ) -> BaselineResult:
        start_date = baseline_date - timedelta(days=BASELINE_WINDOW_DAYS)
        # The source read and the upsert form one unit per key.
        async with self._lock.hold(baseline_lock_key(tenant_id, provider_id, service_name, baseline_date)):
            points, data_source = await resolve_series(
                self._sources,
                tenant_id,
                provider_id,
                service_name,
                start_date,
                baseline_date,
                account_id=account_id,
            )
            result = BaselineResult(
                service_name=service_name,
                baseline_date=baseline_date,
                baseline_cost=cost_on(points, baseline_date),
                rolling_30day_avg=rolling_average(points, baseline_date),
                data_source=data_source,
            )
            await self._baseline_repo.upsert(
                AnomalyBaseline(
                    tenant_id=tenant_id,
                    provider_id=provider_id,
                    account_id=account_id,
                    service_name=service_name,
                    baseline_date=baseline_date,
                    baseline_cost=result.baseline_cost,
                    rolling_30day_avg=result.rolling_30day_avg,
                    data_source=data_source,
                )
            )

        logger.debug(
            "baseline_computed",
            tenant_id=tenant_id,
            provider_id=provider_id,
            service_name=service_name,
            baseline_date=baseline_date.isoformat(),
            rolling_30day_avg=round(result.rolling_30day_avg, 2),
            data_source=data_source,
        )
        return result


def classify_severity(variance_percent: float, actual_cost: float) -> str:
    """Severity from relative deviation and absolute daily cost."""
    abs_variance = abs(variance_percent)
    if abs_variance > 100 or actual_cost > 1000:
        return "critical"
    if abs_variance > 50 or actual_cost > 500:
        return "high"
    if abs_variance > 25:
        return "medium"
    return "low"


def find_contributing_services(
    service_costs: dict[str, list[DailySeriesPoint]],
    exclude_service: str,
    day: date,
) -> list[dict[str, Any]]:
    """Other services whose day-over-day change on `day` exceeds 10%.

    Returns:
        Dicts with name, cost and change (percent), largest |change| first.
    """
    previous_day = day - timedelta(days=1)
    contributors: list[dict[str, Any]] = []
    for name, points in service_costs.items():
        if name == exclude_service:
            continue
        by_day = {p.day: p.cost for p in points if p.cost is not None}
        current = by_day.get(day)
        previous = by_day.get(previous_day)
        if current is None or previous is None or previous <= 0:
            continue
        change = (current - previous) / previous * 100
        if abs(change) > CONTRIBUTOR_CHANGE_PERCENT:
            contributors.append({"name": name, "cost": current, "change": round(change, 2)})

    contributors.sort(key=lambda c: abs(c["change"]), reverse=True)
    return contributors[:MAX_CONTRIBUTING_SERVICES]


def describe_root_cause(
    expected_cost: float,
    actual_cost: float,
    variance_percent: float,
    contributing_services: list[dict[str, Any]],
) -> str:
    """Deterministic one or two sentence explanation of an anomaly."""
    direction = "increased" if variance_percent > 0 else "decreased"
    sentence = (
        f"Cost {direction} by {abs(variance_percent):.1f}% from the expected baseline of "
        f"${expected_cost:.2f}/day to ${actual_cost:.2f}/day."
    )
    if contributing_services:
        top = contributing_services[0]
        sign = "+" if top["change"] > 0 else ""
        sentence += f" Largest contributing service: {top['name']} ({sign}{top['change']:.1f}% day over day)."
    return sentence


class AnomalyDetectionService:
    """Run the variance-threshold and seasonal detectors for a tenant.

    The variance detector reads persisted baselines; the seasonal detector
    reads per-service daily costs and records AnomalyEvent rows plus an
    in-app notification for each new finding.
    """

    def __init__(
        self,
        baseline_repo: IAnomalyBaselineRepository,
        event_repo: IAnomalyEventRepository,
        usage_repo: IServiceUsageRepository,
        notification_emitter: INotificationEmitter,
        transaction_manager: ITransactionManager,
        settings: Settings,
    ) -> None:
        """Initialize AnomalyDetectionService with required dependencies."""
        self._baseline_repo = baseline_repo
        self._event_repo = event_repo
        self._usage_repo = usage_repo
        self._emitter = notification_emitter
        self._tx = transaction_manager
        self._settings = settings

    async def find_anomalies(
        self,
        tenant_id: str,
        provider_id: str | None = None,
        threshold_percent: float | None = None,
        account_id: str | None = None,
        as_of: date | None = None,
    ) -> list[VarianceAnomaly]:
        """Flag recent service-days whose cost deviates from the rolling baseline.

        Args:
            tenant_id: Owning tenant.
            provider_id: Optional provider scope.
            threshold_percent: Minimum absolute variance (default from settings).
            account_id: Optional account scope.
            as_of: Reference day; baselines from the previous seven days are scanned.

        Returns:
            Up to 50 VarianceAnomaly records, largest deviation first.
        """
        end_date = as_of or _today()
        threshold = (
            threshold_percent if threshold_percent is not None else self._settings.anomaly_threshold_percent
        )
        baselines = await self._baseline_repo.list_since(
            tenant_id,
            end_date - timedelta(days=VARIANCE_LOOKBACK_DAYS),
            provider_id=provider_id,
            account_id=account_id,
        )
        anomalies = VarianceThresholdDetector(threshold_percent=threshold).detect(
            b for b in baselines if b.baseline_date <= end_date
        )

        logger.info(
            "variance_anomalies_scanned",
            tenant_id=tenant_id,
            provider_id=provider_id,
            baselines=len(baselines),
            anomalies=len(anomalies),
            threshold_percent=threshold,
        )
        return anomalies

    async def detect_seasonal_anomalies(
        self,
        tenant_id: str,
        provider_id: str,
        account_id: str | None = None,
        as_of: date | None = None,
    ) -> list[AnomalyEvent]:
        """Run the Holt-Winters detector over each service and record new events.

        Services with fewer than ``seasonal_min_points`` daily points are
        skipped. Events already recorded for a (service, day) are not repeated.

        Returns:
            Newly recorded AnomalyEvent rows.
        """
        end_date = as_of or _today()
        start_date = end_date - timedelta(days=self._settings.seasonal_history_days)
        service_costs = await self._usage_repo.get_service_daily_costs(
            tenant_id, provider_id, start_date, end_date, account_id=account_id
        )

        events: list[AnomalyEvent] = []
        async with self._tx.transaction():
            for service_name, points in service_costs.items():
                if len(points) < self._settings.seasonal_min_points:
                    continue

                detection = detect_anomalies_seasonal(
                    [p.cost or 0.0 for p in points],
                    sensitivity_multiplier=self._settings.seasonal_sensitivity_multiplier,
                )
                for anomaly in detection.anomalies:
                    detected_date = points[anomaly.index].day
                    if await self._event_repo.exists_for(tenant_id, provider_id, service_name, detected_date):
                        continue

                    contributors = find_contributing_services(service_costs, service_name, detected_date)
                    severity = classify_severity(anomaly.variance, anomaly.value)
                    root_cause = describe_root_cause(
                        anomaly.expected, anomaly.value, anomaly.variance, contributors
                    )
                    event = await self._event_repo.create(
                        AnomalyEvent(
                            tenant_id=tenant_id,
                            provider_id=provider_id,
                            account_id=account_id,
                            service_name=service_name,
                            detected_date=detected_date,
                            anomaly_type=anomaly.type,
                            severity=severity,
                            expected_cost=anomaly.expected,
                            actual_cost=anomaly.value,
                            variance_percent=anomaly.variance,
                            root_cause=root_cause,
                            contributing_services=contributors,
                        )
                    )
                    await self._emitter.emit(
                        tenant_id=tenant_id,
                        notification_type="anomaly",
                        title=f"Cost {anomaly.type} detected: {service_name}",
                        message=root_cause,
                        link="/anomalies",
                        link_text="View anomaly details",
                        metadata={
                            "anomalyEventId": str(event.id),
                            "severity": severity,
                            "variance": anomaly.variance,
                        },
                    )
                    events.append(event)
                    logger.warning(
                        "seasonal_anomaly_detected",
                        tenant_id=tenant_id,
                        provider_id=provider_id,
                        service_name=service_name,
                        detected_date=detected_date.isoformat(),
                        severity=severity,
                        variance_percent=anomaly.variance,
                    )

        return events


class ForecastService:
    """Load recent history and project month-end and multi-month spend."""

    def __init__(
        self,
        daily_cost_repo: IDailyCostRepository,
        settings: Settings,
        forecaster: MonthEndForecaster | None = None,
    ) -> None:
        """Initialize ForecastService with required dependencies."""
        self._daily_repo = daily_cost_repo
        self._settings = settings
        self._forecaster = forecaster or MonthEndForecaster()

    async def forecast_month_end(
        self,
        tenant_id: str,
        provider_id: str | None = None,
        account_id: str | None = None,
        as_of: date | None = None,
    ) -> MonthEndForecast:
        """Project total spend for the calendar month containing `as_of`.

        An empty history is not an error: it yields forecast 0, confidence 5.
        """
        end_date = as_of or _today()
        series = await self._daily_repo.get_daily_series(
            tenant_id,
            end_date - timedelta(days=self._settings.forecast_history_days),
            end_date,
            provider_id=provider_id,
            account_id=account_id,
        )
        month_start, _ = month_to_date(end_date)
        current_month_actual = await self._daily_repo.sum_cost(
            tenant_id, month_start, end_date, provider_id=provider_id, account_id=account_id
        )

        forecast = self._forecaster.forecast(series, current_month_actual, as_of=end_date)

        logger.info(
            "month_end_forecast_computed",
            tenant_id=tenant_id,
            provider_id=provider_id,
            forecast=round(forecast.forecast, 2),
            confidence=forecast.confidence,
            method=forecast.method,
            points=len(series),
        )
        return forecast

    async def forecast_months(
        self,
        tenant_id: str,
        months: int = 6,
        provider_id: str | None = None,
        account_id: str | None = None,
        adjustments: list[dict[str, Any]] | None = None,
        as_of: date | None = None,
    ) -> list[dict[str, Any]]:
        """Monthly projection with optional what-if scenario adjustments."""
        end_date = as_of or _today()
        series = await self._daily_repo.get_daily_series(
            tenant_id,
            end_date - timedelta(days=MONTHLY_PROJECTION_HISTORY_DAYS),
            end_date,
            provider_id=provider_id,
            account_id=account_id,
        )
        projection = project_monthly_costs(series, months=months, as_of=end_date)
        return apply_scenario_adjustments(projection, adjustments or [])


@dataclass
class BudgetEvaluation:
    """Result of evaluating one budget.

    Attributes:
        budget_id: Evaluated budget.
        budget_name: Budget display name.
        current_spend: Spend in the current period window.
        amount: Budget cap.
        percentage: current_spend / amount * 100 (0 when amount <= 0).
        status: Status after evaluation (paused budgets keep theirs).
        alert_type: threshold | exceeded when at/above the alert threshold.
        alert_created: True when this evaluation inserted the day's alert.
        skipped: True for paused budgets, which are not evaluated.
    """

    budget_id: uuid.UUID
    budget_name: str
    current_spend: float
    amount: float
    percentage: float
    status: str
    alert_type: str | None = None
    alert_created: bool = False
    skipped: bool = False


class BudgetEvaluatorService:
    """Evaluate spend against budgets and raise deduplicated alerts.

    State transitions per evaluation:
      active   -> active     (below threshold, or threshold alert)
      active   -> exceeded   (at or above 100%)
      exceeded -> active     (period rollover below 100%)
      paused   -> paused     (skipped entirely)
    """

    def __init__(
        self,
        budget_repo: IBudgetRepository,
        alert_repo: IBudgetAlertRepository,
        daily_cost_repo: IDailyCostRepository,
        notification_emitter: INotificationEmitter,
        transaction_manager: ITransactionManager,
        keyed_lock: IKeyedLock,
    ) -> None:
        """Initialize BudgetEvaluatorService with required dependencies."""
        self._budget_repo = budget_repo
        self._alert_repo = alert_repo
        self._daily_repo = daily_cost_repo
        self._emitter = notification_emitter
        self._tx = transaction_manager
        self._lock = keyed_lock

    async def create_budget(
        self,
        tenant_id: str,
        name: str,
        amount: float,
        period: str = "monthly",
        alert_threshold: int = 80,
        provider_id: str | None = None,
        account_id: str | None = None,
    ) -> Budget:
        """Create a new budget for a tenant.

        Raises:
            InvalidBudgetError: If the name is empty, the amount is not positive,
                the period is unknown or the threshold is outside 0-100.
        """
        if not name or not name.strip():
            raise InvalidBudgetError("Budget name must not be empty")
        if amount <= 0:
            raise InvalidBudgetError(f"Budget amount must be positive, got {amount}")
        if period not in BUDGET_PERIODS:
            raise InvalidBudgetError(f"Budget period must be one of {BUDGET_PERIODS}, got '{period}'")
        if not 0 <= alert_threshold <= 100:
            raise InvalidBudgetError(f"Alert threshold must be between 0 and 100, got {alert_threshold}")

        budget = Budget(
            tenant_id=tenant_id,
            name=name.strip(),
            provider_id=provider_id,
            account_id=account_id,
            amount=amount,
            period=period,
            alert_threshold=alert_threshold,
            current_spend=0.0,
            status="active",
        )
        async with self._tx.transaction():
            persisted = await self._budget_repo.create(budget)

        logger.info(
            "budget_created",
            tenant_id=tenant_id,
            budget_id=str(persisted.id),
            name=persisted.name,
            amount=amount,
            period=period,
        )
        return persisted

    async def delete_budget(self, tenant_id: str, budget_id: uuid.UUID) -> None:
        """Delete a budget; its alert history is removed by cascade.

        Raises:
            NotFoundError: If the tenant owns no budget with this id.
        """
        budget = await self._budget_repo.get_for_tenant(tenant_id, budget_id)
        if budget is None:
            raise NotFoundError(f"Budget {budget_id} not found")

        async with self._tx.transaction():
            await self._budget_repo.delete(budget)

        logger.info("budget_deleted", tenant_id=tenant_id, budget_id=str(budget_id))

    async def list_budget_alerts(self, tenant_id: str, limit: int = 10) -> list[BudgetAlert]:
        """Most recent alerts across the tenant's budgets."""
        return await self._alert_repo.list_recent_for_tenant(tenant_id, limit=limit)

    async def evaluate(
        self,
        tenant_id: str,
        budget: Budget,
        now: datetime | None = None,
    ) -> BudgetEvaluation:
        """Recalculate spend for one budget and raise the day's alert if due.

        The spend update, alert insert and notification share one transaction
        and run under a per-budget lock, so concurrent evaluations of the same
        budget produce a single alert.

        Args:
            tenant_id: Owning tenant.
            budget: Budget to evaluate.
            now: Evaluation time (defaults to now, UTC).

        Returns:
            The BudgetEvaluation.
        """
        if budget.status == "paused":
            return BudgetEvaluation(
                budget_id=budget.id,
                budget_name=budget.name,
                current_spend=budget.current_spend,
                amount=budget.amount,
                percentage=0.0,
                status="paused",
                skipped=True,
            )

        check_time = now or datetime.now(tz=timezone.utc)
        today = check_time.astimezone(timezone.utc).date() if check_time.tzinfo else check_time.date()
        start_date, end_date = period_window(budget.period, today)

        async with self._tx.transaction():
            async with self._lock.hold(budget_lock_key(tenant_id, budget.id)):
                spend = await self._daily_repo.sum_cost(
                    tenant_id,
                    start_date,
                    end_date,
                    provider_id=budget.provider_id,
                    account_id=budget.account_id,
                )
                percentage = spend / budget.amount * 100 if budget.amount > 0 else 0.0
                status = "exceeded" if percentage >= 100 else "active"
                await self._budget_repo.update_spend(budget, spend, status)

                evaluation = BudgetEvaluation(
                    budget_id=budget.id,
                    budget_name=budget.name,
                    current_spend=spend,
                    amount=budget.amount,
                    percentage=percentage,
                    status=status,
                )
                if percentage >= budget.alert_threshold:
                    evaluation.alert_type = "exceeded" if percentage >= 100 else "threshold"
                    evaluation.alert_created = await self._raise_alert(
                        tenant_id, budget, evaluation, today
                    )

        logger.info(
            "budget_evaluated",
            tenant_id=tenant_id,
            budget_id=str(budget.id),
            current_spend=round(spend, 2),
            percentage=round(percentage, 1),
            status=status,
            alert_type=evaluation.alert_type,
            alert_created=evaluation.alert_created,
        )
        return evaluation

    async def _raise_alert(
        self,
        tenant_id: str,
        budget: Budget,
        evaluation: BudgetEvaluation,
        alert_date: date,
    ) -> bool:
        """Insert the day's alert and, only if it is new, its notification."""
        inserted = await self._alert_repo.create_if_absent(
            BudgetAlert(
                tenant_id=tenant_id,
                budget_id=budget.id,
                alert_type=evaluation.alert_type,
                alert_percentage=_round_half_up(evaluation.percentage),
                alert_date=alert_date,
            )
        )
        if inserted is None:
            return False

        if evaluation.alert_type == "exceeded":
            notification_type = "warning"
            title = f"Budget Exceeded: {budget.name}"
            message = f"Your budget has been exceeded by ${evaluation.current_spend - budget.amount:.2f}"
        else:
            notification_type = "budget"
            title = f"Budget Alert: {budget.name}"
            message = f"Your budget is at {evaluation.percentage:.1f}% of the limit"

        await self._emitter.emit(
            tenant_id=tenant_id,
            notification_type=notification_type,
            title=title,
            message=message,
            link=f"/provider/{budget.provider_id}" if budget.provider_id else "/budgets",
            link_text="View Budget",
            metadata={
                "budgetId": str(budget.id),
                "budgetName": budget.name,
                "percentage": _round_half_up(evaluation.percentage),
                "currentSpend": evaluation.current_spend,
                "budgetAmount": budget.amount,
            },
        )
        logger.warning(
            "budget_alert_raised",
            tenant_id=tenant_id,
            budget_id=str(budget.id),
            alert_type=evaluation.alert_type,
            percentage=round(evaluation.percentage, 1),
        )
        return True

    async def evaluate_all(
        self,
        tenant_id: str,
        now: datetime | None = None,
    ) -> list[BudgetEvaluation]:
        """Evaluate every non-paused budget of a tenant.

        Returns:
            Evaluations at or above their alert threshold.
        """
        budgets = await self._budget_repo.list_active_budgets(tenant_id)
        alerting: list[BudgetEvaluation] = []
        for budget in budgets:
            evaluation = await self.evaluate(tenant_id, budget, now=now)
            if evaluation.alert_type is not None:
                alerting.append(evaluation)
        return alerting


@dataclass
class WeeklyDigest:
    """Seven-day spend summary.

    Attributes:
        period_start: First day of the summarised week.
        period_end: Last day of the summarised week.
        total_cost: Spend in the week.
        previous_total_cost: Spend in the seven days before.
        change_percent: Week-over-week change (0 when the prior week was 0).
        top_services: Up to five (service, cost) pairs, largest first.
        emitted: True when a notification was written.
    """

    period_start: date
    period_end: date
    total_cost: float
    previous_total_cost: float
    change_percent: float
    top_services: list[tuple[str, float]] = field(default_factory=list)
    emitted: bool = False


class WeeklyDigestService:
    """Build the weekly cost summary and emit it as an info notification."""

    def __init__(
        self,
        daily_cost_repo: IDailyCostRepository,
        usage_repo: IServiceUsageRepository,
        notification_emitter: INotificationEmitter,
        transaction_manager: ITransactionManager,
    ) -> None:
        """Initialize WeeklyDigestService with required dependencies."""
        self._daily_repo = daily_cost_repo
        self._usage_repo = usage_repo
        self._emitter = notification_emitter
        self._tx = transaction_manager

    async def build_and_emit(self, tenant_id: str, as_of: date | None = None) -> WeeklyDigest:
        """Summarise the seven days ending yesterday relative to `as_of`.

        Tenants with no spend in either week get no notification.
        """
        period_end = (as_of or _today()) - timedelta(days=1)
        period_start = period_end - timedelta(days=6)
        previous_end = period_start - timedelta(days=1)
        previous_start = previous_end - timedelta(days=6)

        total = await self._daily_repo.sum_cost(tenant_id, period_start, period_end)
        previous_total = await self._daily_repo.sum_cost(tenant_id, previous_start, previous_end)
        top_services = await self._usage_repo.sum_cost_by_service(
            tenant_id, period_start, period_end, limit=DIGEST_TOP_SERVICES
        )
        change = (total - previous_total) / previous_total * 100 if previous_total > 0 else 0.0

        digest = WeeklyDigest(
            period_start=period_start,
            period_end=period_end,
            total_cost=total,
            previous_total_cost=previous_total,
            change_percent=change,
            top_services=top_services,
        )
        if total == 0 and previous_total == 0:
            logger.info("weekly_digest_skipped", tenant_id=tenant_id, reason="no_spend")
            return digest

        sign = "+" if change > 0 else ""
        message = (
            f"You spent ${total:,.2f} from {period_start.isoformat()} to {period_end.isoformat()} "
            f"({sign}{change:.1f}% vs the previous week)."
        )
        if top_services:
            message += " Top services: " + ", ".join(f"{name} ${cost:,.2f}" for name, cost in top_services) + "."

        async with self._tx.transaction():
            await self._emitter.emit(
                tenant_id=tenant_id,
                notification_type="info",
                title="Weekly Cost Summary",
                message=message,
                link="/dashboard",
                link_text="View Dashboard",
                metadata={
                    "periodStart": period_start.isoformat(),
                    "periodEnd": period_end.isoformat(),
                    "totalCost": round(total, 2),
                    "previousTotalCost": round(previous_total, 2),
                    "changePercent": round(change, 1),
                    "topServices": [{"name": name, "cost": round(cost, 2)} for name, cost in top_services],
                },
            )
        digest.emitted = True

        logger.info(
            "weekly_digest_emitted",
            tenant_id=tenant_id,
            total_cost=round(total, 2),
            change_percent=round(change, 1),
        )
        return digest
