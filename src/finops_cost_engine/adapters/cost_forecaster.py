"""Month-end spend forecaster with a heuristic confidence score.

Projects the rest of the current month from an exponentially weighted linear
regression over recent daily costs and adds it to the month-to-date actual.
Short or unusable histories fall back to progressively simpler projections
with lower confidence instead of raising.

The forecaster is a pure computation adapter: it receives the daily series as
values and never touches the database (ForecastService handles loading).
"""

import calendar
import math
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from finops_cost_engine.core.series import DailySeriesPoint
from finops_cost_engine.observability import get_logger

logger = get_logger(__name__)

# Regression window and recency decay
REGRESSION_WINDOW_DAYS: int = 30
MOVING_AVERAGE_DAYS: int = 7
MIN_POINTS_FOR_TREND: int = 3
DECAY: float = 0.95

# Confidence blend (points out of 100)
SAMPLE_SCORE_MAX: float = 30.0
SAMPLE_SCORE_FULL_AT: int = 20
FIT_SCORE_MAX: float = 40.0
STABILITY_SCORE_MAX: float = 30.0
MIN_CONFIDENCE: int = 5

CONFIDENCE_DAILY_AVERAGE: int = 15
CONFIDENCE_MOVING_AVERAGE: int = 25

# Forecasts above this multiple of the actual are log-dampened.
DAMPENING_RATIO: float = 5.0

_DENOMINATOR_EPSILON: float = 1e-10

# Multi-month projection
MIN_DAYS_FOR_MONTHLY_PROJECTION: int = 14
MONTHLY_LEVEL_ALPHA: float = 0.4
MONTHLY_TREND_BETA: float = 0.3
FALLBACK_MONTHLY_MARGIN: float = 0.15


@dataclass
class MonthEndForecast:
    """Projected month-end spend.

    Attributes:
        forecast: Projected total spend for the calendar month in USD.
        confidence: Heuristic trust score, 5-100.
        method: month_complete | daily_average | moving_average | weighted_regression | no_data
        dampened: True when the raw projection was log-dampened.
        slope_usd_per_day: Fitted trend (regression method only).
        r_squared: Weighted fit quality (regression method only).
    """

    forecast: float
    confidence: int
    method: str
    dampened: bool = False
    slope_usd_per_day: float = 0.0
    r_squared: float = 0.0


@dataclass
class WeightedFit:
    """Coefficients of an exponentially weighted least-squares line."""

    slope: float
    intercept: float
    r_squared: float


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def weighted_linear_regression(costs: Sequence[float], decay: float = DECAY) -> WeightedFit:
    """Fit y = slope * x + intercept, weighting point i by decay^(n-1-i).

    A degenerate denominator (a single point, or all weight on one x) yields a
    flat line at the weighted mean.
    """
    n = len(costs)
    if n == 0:
        return WeightedFit(slope=0.0, intercept=0.0, r_squared=0.0)

    weights = [decay ** (n - 1 - i) for i in range(n)]
    sum_w = math.fsum(weights)
    sum_wx = math.fsum(w * i for i, w in enumerate(weights))
    sum_wy = math.fsum(w * y for w, y in zip(weights, costs))
    sum_wxy = math.fsum(w * i * y for i, (w, y) in enumerate(zip(weights, costs)))
    sum_wx2 = math.fsum(w * i * i for i, w in enumerate(weights))

    denominator = sum_w * sum_wx2 - sum_wx * sum_wx
    if abs(denominator) < _DENOMINATOR_EPSILON:
        slope = 0.0
        intercept = sum_wy / sum_w
    else:
        slope = (sum_w * sum_wxy - sum_wx * sum_wy) / denominator
        intercept = (sum_wy - slope * sum_wx) / sum_w

    mean_y = sum_wy / sum_w
    ss_tot = math.fsum(w * (y - mean_y) ** 2 for w, y in zip(weights, costs))
    ss_res = math.fsum(
        w * (y - (slope * i + intercept)) ** 2 for i, (w, y) in enumerate(zip(weights, costs))
    )
    r_squared = max(0.0, 1.0 - ss_res / ss_tot) if ss_tot > _DENOMINATOR_EPSILON else 0.0
    return WeightedFit(slope=slope, intercept=intercept, r_squared=r_squared)


def coefficient_of_variation(costs: Sequence[float]) -> float:
    """Population std-dev over mean; 1.0 (least stable) when the mean is not positive."""
    if not costs:
        return 1.0
    mean = math.fsum(costs) / len(costs)
    if mean <= 0:
        return 1.0
    variance = math.fsum((c - mean) ** 2 for c in costs) / len(costs)
    return math.sqrt(variance) / mean


def confidence_score(sample_count: int, r_squared: float, cv: float) -> int:
    """Blend sample size, fit quality and stability into a 5-100 score."""
    data_score = min(1.0, sample_count / SAMPLE_SCORE_FULL_AT) * SAMPLE_SCORE_MAX
    fit_score = r_squared * FIT_SCORE_MAX
    stability_score = max(0.0, 1.0 - cv) * STABILITY_SCORE_MAX
    return _round_half_up(min(100.0, max(float(MIN_CONFIDENCE), data_score + fit_score + stability_score)))


def dampen_forecast(forecast: float, current_month_actual: float) -> tuple[float, bool]:
    """Compress projections above 5x the actual logarithmically instead of capping.

    Returns:
        Tuple of (forecast, dampened flag).
    """
    if current_month_actual <= 0 or forecast <= current_month_actual * DAMPENING_RATIO:
        return forecast, False
    ratio = forecast / current_month_actual
    multiplier = DAMPENING_RATIO + math.log(ratio / DAMPENING_RATIO)
    return current_month_actual * multiplier, True


class MonthEndForecaster:
    """Projects month-end spend from the month-to-date actual and recent trend."""

    def forecast(
        self,
        daily_series: Sequence[DailySeriesPoint],
        current_month_actual: float,
        as_of: date | None = None,
    ) -> MonthEndForecast:
        """Forecast total spend for the calendar month containing `as_of`.

        Args:
            daily_series: Daily costs, oldest first, ending at or before `as_of`.
            current_month_actual: Spend recorded so far this month.
            as_of: Reference day (defaults to today, UTC).

        Returns:
            MonthEndForecast with the projected total and confidence.
        """
        today = as_of or datetime.now(tz=timezone.utc).date()
        days_in_month = calendar.monthrange(today.year, today.month)[1]
        days_elapsed = today.day
        days_remaining = days_in_month - days_elapsed

        if days_remaining <= 0:
            return MonthEndForecast(forecast=current_month_actual, confidence=100, method="month_complete")

        if len(daily_series) < MIN_POINTS_FOR_TREND:
            return self._daily_average(current_month_actual, days_elapsed, days_in_month)

        recent = [
            point.cost
            for point in daily_series[-REGRESSION_WINDOW_DAYS:]
            if point.cost is not None and point.cost >= 0
        ]

        if len(recent) < MIN_POINTS_FOR_TREND:
            last_week = [
                point.cost
                for point in daily_series[-MOVING_AVERAGE_DAYS:]
                if point.cost is not None and point.cost > 0
            ]
            if last_week:
                average = math.fsum(last_week) / len(last_week)
                return MonthEndForecast(
                    forecast=current_month_actual + average * days_remaining,
                    confidence=CONFIDENCE_MOVING_AVERAGE,
                    method="moving_average",
                )
            return self._daily_average(current_month_actual, days_elapsed, days_in_month)

        fit = weighted_linear_regression(recent)
        last_index = len(recent) - 1
        projected_remaining = math.fsum(
            max(0.0, fit.slope * (last_index + step) + fit.intercept)
            for step in range(1, days_remaining + 1)
        )
        raw_forecast = current_month_actual + projected_remaining
        confidence = confidence_score(len(recent), fit.r_squared, coefficient_of_variation(recent))

        if raw_forecast < 0:
            return MonthEndForecast(
                forecast=current_month_actual,
                confidence=confidence,
                method="weighted_regression",
                slope_usd_per_day=fit.slope,
                r_squared=fit.r_squared,
            )

        forecast, dampened = dampen_forecast(raw_forecast, current_month_actual)
        if dampened:
            logger.warning(
                "forecast_dampened",
                original_forecast=round(raw_forecast, 2),
                dampened_forecast=round(forecast, 2),
                current_month_actual=round(current_month_actual, 2),
                slope_usd_per_day=round(fit.slope, 4),
            )

        return MonthEndForecast(
            forecast=forecast,
            confidence=confidence,
            method="weighted_regression",
            dampened=dampened,
            slope_usd_per_day=fit.slope,
            r_squared=fit.r_squared,
        )

    @staticmethod
    def _daily_average(current_month_actual: float, days_elapsed: int, days_in_month: int) -> MonthEndForecast:
        if days_elapsed > 0 and current_month_actual > 0:
            return MonthEndForecast(
                forecast=current_month_actual / days_elapsed * days_in_month,
                confidence=CONFIDENCE_DAILY_AVERAGE,
                method="daily_average",
            )
        return MonthEndForecast(forecast=current_month_actual, confidence=MIN_CONFIDENCE, method="no_data")


def _add_months(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def _forecast_months(
    months: int,
    level: float,
    trend: float,
    std_dev: float,
    as_of: date,
) -> list[dict[str, Any]]:
    """Monthly entries with 95% bands widening with the square root of the horizon."""
    results: list[dict[str, Any]] = []
    for step in range(1, months + 1):
        year, month = _add_months(as_of.year, as_of.month, step)
        forecast = max(0.0, level + trend * step)
        margin = std_dev * math.sqrt(step) * 1.96
        results.append({
            "month": f"{year:04d}-{month:02d}",
            "forecast": round(forecast, 2),
            "confidence_low": max(0.0, round(forecast - margin, 2)),
            "confidence_high": round(forecast + margin, 2),
        })
    return results


def project_monthly_costs(
    daily_series: Sequence[DailySeriesPoint],
    months: int = 6,
    as_of: date | None = None,
) -> list[dict[str, Any]]:
    """Project the next `months` calendar months from historical daily costs.

    Daily points are rolled up to monthly totals and smoothed with a level +
    trend model. Fewer than two months of history fall back to the daily mean
    times 30 with a flat 15% band; fewer than 14 days produce no projection.

    Args:
        daily_series: Historical daily costs, oldest first.
        months: Number of future months (1-12).
        as_of: Reference day; the first projected month is the one after it.

    Returns:
        List of dicts with month (YYYY-MM), forecast, confidence_low, confidence_high.
    """
    if len(daily_series) < MIN_DAYS_FOR_MONTHLY_PROJECTION:
        return []

    today = as_of or datetime.now(tz=timezone.utc).date()
    months = max(1, min(12, months))

    monthly_totals: dict[str, float] = defaultdict(float)
    for point in daily_series:
        monthly_totals[point.day.strftime("%Y-%m")] += point.cost or 0.0
    totals = [total for _, total in sorted(monthly_totals.items())]

    if len(totals) < 2:
        costs = [point.cost or 0.0 for point in daily_series]
        monthly_average = math.fsum(costs) / len(costs) * 30
        return _forecast_months(months, monthly_average, 0.0, monthly_average * FALLBACK_MONTHLY_MARGIN, today)

    level = totals[0]
    trend = (totals[-1] - totals[0]) / (len(totals) - 1)
    for total in totals[1:]:
        previous_level = level
        level = MONTHLY_LEVEL_ALPHA * total + (1 - MONTHLY_LEVEL_ALPHA) * (level + trend)
        trend = MONTHLY_TREND_BETA * (level - previous_level) + (1 - MONTHLY_TREND_BETA) * trend

    residuals = [0.0] + [totals[i] - (totals[0] + trend * i) for i in range(1, len(totals))]
    std_dev = math.sqrt(math.fsum(r * r for r in residuals) / max(len(residuals) - 1, 1))

    return _forecast_months(months, level, trend, std_dev, today)


def apply_scenario_adjustments(
    base_forecast: list[dict[str, Any]],
    adjustments: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Apply what-if adjustments to a monthly projection.

    Supported adjustment types:
      growth_rate     {"value": percent per month, compounded}
      service_change  {"action": "add" | "remove", "monthly_cost": usd}
      pricing_change  {"change_percent": percent}

    Unknown types are ignored.
    """
    if not adjustments:
        return base_forecast

    adjusted_months: list[dict[str, Any]] = []
    for offset, entry in enumerate(base_forecast):
        values = [entry["forecast"], entry["confidence_low"], entry["confidence_high"]]

        for adjustment in adjustments:
            kind = adjustment.get("type")
            if kind == "growth_rate":
                multiplier = (1 + float(adjustment.get("value") or 0) / 100) ** (offset + 1)
                values = [v * multiplier for v in values]
            elif kind == "service_change":
                monthly_cost = float(adjustment.get("monthly_cost") or 0)
                if adjustment.get("action") == "add":
                    values = [v + monthly_cost for v in values]
                elif adjustment.get("action") == "remove":
                    values = [v - monthly_cost for v in values]
            elif kind == "pricing_change":
                multiplier = 1 + float(adjustment.get("change_percent") or 0) / 100
                values = [v * multiplier for v in values]

        adjusted_months.append({
            **entry,
            "forecast": max(0.0, round(values[0], 2)),
            "confidence_low": max(0.0, round(values[1], 2)),
            "confidence_high": max(0.0, round(values[2], 2)),
        })

    return adjusted_months


__all__ = [
    "MonthEndForecast",
    "MonthEndForecaster",
    "WeightedFit",
    "apply_scenario_adjustments",
    "coefficient_of_variation",
    "confidence_score",
    "dampen_forecast",
    "project_monthly_costs",
    "weighted_linear_regression",
]
