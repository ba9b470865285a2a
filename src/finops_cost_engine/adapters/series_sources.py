"""Ordered data-source strategies that produce a per-service daily cost series.

Providers expose cost at different granularities. The baseline tracker asks
each source in turn and uses the first one that has data:

  ServiceUsageSeriesSource      — per-service usage metrics (most precise)
  ServiceProportionSeriesSource — aggregate daily cost x the service's share of
                                  the latest monthly breakdown
  AggregateDailySeriesSource    — aggregate daily cost as a proxy

A source returns None when it has nothing for the request; an empty chain
result means the service has no history at all.
"""

import math
from collections.abc import Sequence
from datetime import date
from typing import Protocol

from finops_cost_engine.core.interfaces import IDailyCostRepository, IServiceUsageRepository
from finops_cost_engine.core.series import DailySeriesPoint
from finops_cost_engine.observability import get_logger

logger = get_logger(__name__)

BASELINE_WINDOW_DAYS: int = 30
NO_DATA_SOURCE: str = "none"


class SeriesSource(Protocol):
    """One strategy for producing a service's daily series."""

    name: str

    async def fetch(
        self,
        tenant_id: str,
        provider_id: str,
        service_name: str,
        start_date: date,
        end_date: date,
        account_id: str | None = None,
    ) -> list[DailySeriesPoint] | None:
        ...


class ServiceUsageSeriesSource:
    """Per-service daily cost summed over usage types."""

    name = "service_usage"

    def __init__(self, usage_repository: IServiceUsageRepository) -> None:
        self._usage_repo = usage_repository

    async def fetch(
        self,
        tenant_id: str,
        provider_id: str,
        service_name: str,
        start_date: date,
        end_date: date,
        account_id: str | None = None,
    ) -> list[DailySeriesPoint] | None:
        points = await self._usage_repo.get_service_series(
            tenant_id, provider_id, service_name, start_date, end_date, account_id=account_id
        )
        return points or None


class ServiceProportionSeriesSource:
    """Aggregate daily cost apportioned by the service's latest monthly share."""

    name = "service_proportion"

    def __init__(
        self,
        usage_repository: IServiceUsageRepository,
        daily_cost_repository: IDailyCostRepository,
    ) -> None:
        self._usage_repo = usage_repository
        self._daily_repo = daily_cost_repository

    async def fetch(
        self,
        tenant_id: str,
        provider_id: str,
        service_name: str,
        start_date: date,
        end_date: date,
        account_id: str | None = None,
    ) -> list[DailySeriesPoint] | None:
        proportions = await self._usage_repo.get_latest_service_proportions(
            tenant_id, provider_id, account_id=account_id
        )
        share = proportions.get(service_name, 0.0)
        if share <= 0:
            return None

        aggregate = await self._daily_repo.get_daily_series(
            tenant_id, start_date, end_date, provider_id=provider_id, account_id=account_id
        )
        if not aggregate:
            return None

        return [
            DailySeriesPoint(day=point.day, cost=None if point.cost is None else point.cost * share)
            for point in aggregate
        ]


class AggregateDailySeriesSource:
    """Provider-level daily totals used when no service breakdown exists."""

    name = "daily_aggregate"

    def __init__(self, daily_cost_repository: IDailyCostRepository) -> None:
        self._daily_repo = daily_cost_repository

    async def fetch(
        self,
        tenant_id: str,
        provider_id: str,
        service_name: str,
        start_date: date,
        end_date: date,
        account_id: str | None = None,
    ) -> list[DailySeriesPoint] | None:
        points = await self._daily_repo.get_daily_series(
            tenant_id, start_date, end_date, provider_id=provider_id, account_id=account_id
        )
        return points or None


def default_series_sources(
    usage_repository: IServiceUsageRepository,
    daily_cost_repository: IDailyCostRepository,
) -> list[SeriesSource]:
    """The standard precision-first chain."""
    return [
        ServiceUsageSeriesSource(usage_repository),
        ServiceProportionSeriesSource(usage_repository, daily_cost_repository),
        AggregateDailySeriesSource(daily_cost_repository),
    ]


async def resolve_series(
    sources: Sequence[SeriesSource],
    tenant_id: str,
    provider_id: str,
    service_name: str,
    start_date: date,
    end_date: date,
    account_id: str | None = None,
) -> tuple[list[DailySeriesPoint], str]:
    """Ask each source in order and return the first non-None series.

    Returns:
        Tuple of (series sorted by day, name of the source that produced it).
        ``([], "none")`` when every source came back empty.
    """
    for source in sources:
        points = await source.fetch(
            tenant_id, provider_id, service_name, start_date, end_date, account_id=account_id
        )
        if points is not None:
            logger.debug(
                "series_source_selected",
                tenant_id=tenant_id,
                provider_id=provider_id,
                service_name=service_name,
                data_source=source.name,
                points=len(points),
            )
            return sorted(points, key=lambda p: p.day), source.name
    return [], NO_DATA_SOURCE


def rolling_average(
    points: Sequence[DailySeriesPoint],
    end_date: date,
    window: int = BASELINE_WINDOW_DAYS,
) -> float:
    """Mean of the trailing `window` known daily costs ending at `end_date`.

    Points after `end_date` and points without a cost are ignored. Returns 0.0
    when nothing remains.
    """
    known = [p.cost for p in points if p.day <= end_date and p.cost is not None]
    trailing = known[-window:]
    if not trailing:
        return 0.0
    return math.fsum(trailing) / len(trailing)


def cost_on(points: Sequence[DailySeriesPoint], day: date) -> float:
    """Cost recorded for `day`, or 0.0 when the series has no value for it."""
    for point in points:
        if point.day == day:
            return point.cost if point.cost is not None else 0.0
    return 0.0


__all__ = [
    "AggregateDailySeriesSource",
    "SeriesSource",
    "ServiceProportionSeriesSource",
    "ServiceUsageSeriesSource",
    "cost_on",
    "default_series_sources",
    "resolve_series",
    "rolling_average",
]
