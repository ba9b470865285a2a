"""Unit tests for the variance-threshold detector.

Verifies:
  - zero rolling averages are never flagged
  - the threshold is inclusive and applies to the absolute variance
  - results are ordered by descending variance and capped
"""
from __future__ import annotations

from datetime import date
from typing import Any

import pytest

from finops_cost_engine.adapters.cost_anomaly_detector import (
    VarianceThresholdDetector,
    format_variance_message,
    variance_percent,
)

TENANT = "test-tenant-001"
DAY = date(2026, 6, 25)


class TestVariancePercent:
    """Tests for variance_percent()."""

    def test_zero_average_is_zero(self) -> None:
        assert variance_percent(25.0, 0.0) == 0.0

    def test_signed_result(self) -> None:
        assert variance_percent(40.0, 20.0) == pytest.approx(100.0)
        assert variance_percent(10.0, 20.0) == pytest.approx(-50.0)


class TestVarianceThresholdDetector:
    """Tests for VarianceThresholdDetector.detect()."""

    def test_zero_average_never_flagged(self, baseline_factory: Any) -> None:
        detector = VarianceThresholdDetector(threshold_percent=0.0)

        assert detector.detect([baseline_factory(TENANT, "EC2", DAY, 500.0, 0.0)]) == []

    def test_threshold_is_inclusive(self, baseline_factory: Any) -> None:
        detector = VarianceThresholdDetector(threshold_percent=20.0)
        rows = [
            baseline_factory(TENANT, "S3", DAY, 120.0, 100.0),
            baseline_factory(TENANT, "RDS", DAY, 119.0, 100.0),
        ]

        anomalies = detector.detect(rows)

        assert [a.service_name for a in anomalies] == ["S3"]
        assert anomalies[0].variance_percent == pytest.approx(20.0)

    def test_decrease_uses_absolute_variance(self, baseline_factory: Any) -> None:
        detector = VarianceThresholdDetector(threshold_percent=20.0)

        anomalies = detector.detect([baseline_factory(TENANT, "Lambda", DAY, 50.0, 100.0)])

        assert len(anomalies) == 1
        assert anomalies[0].is_increase is False
        assert anomalies[0].variance_percent == pytest.approx(50.0)
        assert anomalies[0].message == "Lambda costs are 50.0% lower than their 30-day baseline"

    def test_sorted_by_descending_variance(self, baseline_factory: Any) -> None:
        detector = VarianceThresholdDetector(threshold_percent=10.0)
        rows = [
            baseline_factory(TENANT, "A", DAY, 130.0, 100.0),
            baseline_factory(TENANT, "B", DAY, 300.0, 100.0),
            baseline_factory(TENANT, "C", DAY, 20.0, 100.0),
        ]

        anomalies = detector.detect(rows)

        assert [a.service_name for a in anomalies] == ["B", "C", "A"]

    def test_results_are_capped(self, baseline_factory: Any) -> None:
        detector = VarianceThresholdDetector(threshold_percent=20.0, max_results=50)
        rows = [baseline_factory(TENANT, f"svc-{i}", DAY, 200.0 + i, 100.0) for i in range(60)]

        anomalies = detector.detect(rows)

        assert len(anomalies) == 50
        assert anomalies[0].service_name == "svc-59"

    def test_message_for_increase(self) -> None:
        assert (
            format_variance_message("EC2", 135.294, True)
            == "EC2 costs are 135.3% higher than their 30-day baseline"
        )
