"""Holt-Winters triple exponential smoothing for seasonal cost anomaly detection.

Additive model with level, trend and weekly seasonal components. The detector
fits the model over the whole series, then flags only the most recent week
whose residuals sit outside ``std_dev * sensitivity_multiplier``.

Everything here is pure, synchronous and allocation-light: it runs once per
service per tenant per cycle.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

ALPHA: float = 0.3  # level
BETA: float = 0.1  # trend
GAMMA: float = 0.3  # seasonal
SEASON_LENGTH: int = 7
DEFAULT_SENSITIVITY_MULTIPLIER: float = 2.5

# Only the trailing window is reported; the whole series is used for fitting.
RECENT_WINDOW: int = 7
MIN_VALID_RESIDUALS: int = 3

# Residual spread below this fraction of the series scale is rounding noise.
_RELATIVE_STDDEV_EPSILON: float = 1e-9


@dataclass
class HoltWintersModel:
    """Fitted state of a Holt-Winters pass.

    Attributes:
        fitted: One-step fitted value per input point.
        residuals: actual - fitted per input point.
        forecast: Projections for the steps after the last point.
        level: Final level component.
        trend: Final trend component.
        seasonal: Final seasonal indices, one per season position.
        degraded: True when the series was too short to seed the model and a
            flat mean was used instead.
    """

    fitted: list[float]
    residuals: list[float]
    forecast: list[float]
    level: float
    trend: float
    seasonal: list[float]
    degraded: bool = False


@dataclass
class SeasonalAnomaly:
    """A recent point whose residual exceeds the seasonal threshold.

    Attributes:
        index: Position of the point in the input series.
        value: Observed cost.
        expected: Fitted cost, rounded to cents.
        residual: value - fitted, rounded to cents.
        variance: (value - expected) / expected * 100, rounded; 0 when expected is 0.
        type: "spike" when the residual is positive, otherwise "drop".
    """

    index: int
    value: float
    expected: float
    residual: float
    variance: float
    type: str


@dataclass
class SeasonalDetection:
    """Detector output: anomalies in the recent window and the fitted model."""

    anomalies: list[SeasonalAnomaly] = field(default_factory=list)
    model: HoltWintersModel | None = None
    residual_std_dev: float = 0.0
    threshold: float = 0.0


def _mean(values: Sequence[float]) -> float:
    return math.fsum(values) / len(values) if values else 0.0


def _initial_seasonal_components(data: Sequence[float], season_length: int) -> list[float]:
    """Seasonal indices as average deviation of each position from its season mean."""
    seasons = len(data) // season_length
    if seasons < 1:
        return [0.0] * season_length

    season_averages = [
        _mean(data[s * season_length:(s + 1) * season_length]) for s in range(seasons)
    ]
    return [
        math.fsum(data[s * season_length + i] - season_averages[s] for s in range(seasons)) / seasons
        for i in range(season_length)
    ]


def holt_winters(
    data: Sequence[float],
    season_length: int = SEASON_LENGTH,
    forecast_steps: int = RECENT_WINDOW,
) -> HoltWintersModel:
    """Fit an additive Holt-Winters model in a single smoothing pass.

    Series shorter than ``season_length + 2`` cannot be seeded; they get a flat
    model at the series mean (all-zero for an empty series).

    Args:
        data: Daily costs, oldest first.
        season_length: Points per season (7 = weekly).
        forecast_steps: Number of steps to project past the last point.

    Returns:
        The fitted HoltWintersModel.
    """
    values = [float(v) for v in data]

    if len(values) < season_length + 2:
        average = _mean(values)
        return HoltWintersModel(
            fitted=[average] * len(values),
            residuals=[v - average for v in values],
            forecast=[average] * forecast_steps,
            level=average,
            trend=0.0,
            seasonal=[0.0] * season_length,
            degraded=True,
        )

    seasonal = _initial_seasonal_components(values, season_length)
    level = _mean(values[:season_length])
    trend = 0.0
    if len(values) >= 2 * season_length:
        first_season = _mean(values[:season_length])
        second_season = _mean(values[season_length:2 * season_length])
        trend = (second_season - first_season) / season_length

    fitted: list[float] = []
    residuals: list[float] = []

    for i, value in enumerate(values):
        position = i % season_length
        previous_level = level
        previous_trend = trend

        level = ALPHA * (value - seasonal[position]) + (1 - ALPHA) * (previous_level + previous_trend)
        trend = BETA * (level - previous_level) + (1 - BETA) * previous_trend
        seasonal[position] = GAMMA * (value - level) + (1 - GAMMA) * seasonal[position]

        fitted_value = level + trend + seasonal[position]
        fitted.append(fitted_value)
        residuals.append(value - fitted_value)

    forecast = [
        level + trend * step + seasonal[(len(values) + step - 1) % season_length]
        for step in range(1, forecast_steps + 1)
    ]

    return HoltWintersModel(
        fitted=fitted,
        residuals=residuals,
        forecast=forecast,
        level=level,
        trend=trend,
        seasonal=seasonal,
    )


def detect_anomalies_seasonal(
    data: Sequence[float],
    sensitivity_multiplier: float = DEFAULT_SENSITIVITY_MULTIPLIER,
    season_length: int = SEASON_LENGTH,
) -> SeasonalDetection:
    """Flag recent points whose Holt-Winters residual is unusually large.

    Args:
        data: Daily costs, oldest first.
        sensitivity_multiplier: Residual std-dev multiple that counts as anomalous.
        season_length: Points per season.

    Returns:
        SeasonalDetection with anomalies from the last seven points only.
    """
    values = [float(v) for v in data]
    model = holt_winters(values, season_length=season_length, forecast_steps=1)

    valid = [r for r in model.residuals if math.isfinite(r)]
    if len(valid) < MIN_VALID_RESIDUALS:
        return SeasonalDetection(model=model)

    residual_mean = _mean(valid)
    std_dev = math.sqrt(math.fsum((r - residual_mean) ** 2 for r in valid) / len(valid))

    scale = max(1.0, _mean([abs(v) for v in values]))
    if std_dev <= _RELATIVE_STDDEV_EPSILON * scale:
        # Flat or perfectly periodic series: nothing can be anomalous.
        return SeasonalDetection(model=model, residual_std_dev=0.0, threshold=0.0)

    threshold = std_dev * sensitivity_multiplier
    anomalies: list[SeasonalAnomaly] = []

    for i in range(max(0, len(values) - RECENT_WINDOW), len(values)):
        residual = model.residuals[i]
        if not math.isfinite(residual) or abs(residual) <= threshold:
            continue
        expected = model.fitted[i]
        actual = values[i]
        variance = (actual - expected) / expected * 100 if expected != 0 else 0.0
        anomalies.append(
            SeasonalAnomaly(
                index=i,
                value=actual,
                expected=round(expected, 2),
                residual=round(residual, 2),
                variance=round(variance, 2),
                type="spike" if residual > 0 else "drop",
            )
        )

    return SeasonalDetection(
        anomalies=anomalies,
        model=model,
        residual_std_dev=std_dev,
        threshold=threshold,
    )


__all__ = [
    "HoltWintersModel",
    "SeasonalAnomaly",
    "SeasonalDetection",
    "detect_anomalies_seasonal",
    "holt_winters",
]
