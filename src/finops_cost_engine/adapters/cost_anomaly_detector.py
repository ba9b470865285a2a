"""Variance-threshold anomaly detection over persisted rolling baselines.

Compares each service's cost on a day against its 30-day rolling average and
flags the days where the relative deviation meets the tenant threshold. This is
a pure computation over AnomalyBaseline rows; loading them is the job of
AnomalyDetectionService.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from finops_cost_engine.core.models import AnomalyBaseline

DEFAULT_THRESHOLD_PERCENT: float = 20.0
MAX_RESULTS: int = 50


@dataclass
class VarianceAnomaly:
    """A service-day whose cost deviates from its rolling baseline.

    Attributes:
        provider_id: Cloud provider key.
        account_id: Provider account (None for single-account tenants).
        service_name: Service the baseline belongs to.
        baseline_date: Day the deviation was observed.
        baseline_cost: Cost on that day.
        rolling_avg: 30-day rolling average as of that day.
        variance_percent: Absolute relative deviation in percent.
        is_increase: True when the cost is above the average.
        message: Human-readable summary.
    """

    provider_id: str
    account_id: str | None
    service_name: str
    baseline_date: date
    baseline_cost: float
    rolling_avg: float
    variance_percent: float
    is_increase: bool
    message: str


def variance_percent(baseline_cost: float, rolling_avg: float) -> float:
    """Signed deviation of a day's cost from its rolling average, in percent.

    Returns 0.0 when the rolling average is zero so that services without
    history are never flagged.
    """
    if rolling_avg == 0:
        return 0.0
    return (baseline_cost - rolling_avg) / rolling_avg * 100


def format_variance_message(service_name: str, abs_variance: float, is_increase: bool) -> str:
    direction = "higher" if is_increase else "lower"
    return f"{service_name} costs are {abs_variance:.1f}% {direction} than their 30-day baseline"


class VarianceThresholdDetector:
    """Flags baselines whose absolute variance meets a percentage threshold.

    Args:
        threshold_percent: Minimum absolute variance (inclusive) to flag.
        max_results: Upper bound on the number of anomalies returned.
    """

    def __init__(
        self,
        threshold_percent: float = DEFAULT_THRESHOLD_PERCENT,
        max_results: int = MAX_RESULTS,
    ) -> None:
        self._threshold_percent = threshold_percent
        self._max_results = max_results

    def detect(self, baselines: Iterable[AnomalyBaseline]) -> list[VarianceAnomaly]:
        """Return flagged baselines sorted by descending absolute variance.

        Args:
            baselines: Baseline rows to scan (typically the last seven days).

        Returns:
            At most ``max_results`` VarianceAnomaly records.
        """
        anomalies: list[VarianceAnomaly] = []
        for baseline in baselines:
            signed = variance_percent(baseline.baseline_cost, baseline.rolling_30day_avg)
            if baseline.rolling_30day_avg == 0 or abs(signed) < self._threshold_percent:
                continue
            is_increase = signed > 0
            anomalies.append(
                VarianceAnomaly(
                    provider_id=baseline.provider_id,
                    account_id=baseline.account_id,
                    service_name=baseline.service_name,
                    baseline_date=baseline.baseline_date,
                    baseline_cost=baseline.baseline_cost,
                    rolling_avg=baseline.rolling_30day_avg,
                    variance_percent=abs(signed),
                    is_increase=is_increase,
                    message=format_variance_message(baseline.service_name, abs(signed), is_increase),
                )
            )

        anomalies.sort(key=lambda a: a.variance_percent, reverse=True)
        return anomalies[: self._max_results]


__all__ = [
    "VarianceAnomaly",
    "VarianceThresholdDetector",
    "format_variance_message",
    "variance_percent",
]
