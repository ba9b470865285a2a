"""Uniform daily cost series shared by the baseline, detector and forecaster code."""

from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class DailySeriesPoint:
    """One day of cost for a tenant series (aggregate or per-service).

    Attributes:
        day: Calendar day (UTC).
        cost: Cost for the day in USD; None when the provider returned no value.
    """

    day: date
    cost: float | None
