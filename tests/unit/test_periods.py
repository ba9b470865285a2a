"""Unit tests for budget period windows."""
from __future__ import annotations

from datetime import date

import pytest

from finops_cost_engine.core.periods import month_to_date, period_window
from finops_cost_engine.errors import InvalidBudgetError


class TestPeriodWindow:
    """Tests for period_window()."""

    def test_monthly(self) -> None:
        assert period_window("monthly", date(2026, 6, 25)) == (date(2026, 6, 1), date(2026, 6, 30))

    def test_monthly_leap_february(self) -> None:
        assert period_window("monthly", date(2028, 2, 10)) == (date(2028, 2, 1), date(2028, 2, 29))

    @pytest.mark.parametrize(
        "today,expected",
        [
            (date(2026, 1, 1), (date(2026, 1, 1), date(2026, 3, 31))),
            (date(2026, 6, 25), (date(2026, 4, 1), date(2026, 6, 30))),
            (date(2026, 9, 30), (date(2026, 7, 1), date(2026, 9, 30))),
            (date(2026, 12, 31), (date(2026, 10, 1), date(2026, 12, 31))),
        ],
    )
    def test_quarterly(self, today: date, expected: tuple[date, date]) -> None:
        assert period_window("quarterly", today) == expected

    def test_yearly(self) -> None:
        assert period_window("yearly", date(2026, 6, 25)) == (date(2026, 1, 1), date(2026, 12, 31))

    def test_unknown_period_raises(self) -> None:
        with pytest.raises(InvalidBudgetError):
            period_window("weekly", date(2026, 6, 25))


def test_month_to_date() -> None:
    assert month_to_date(date(2026, 6, 25)) == (date(2026, 6, 1), date(2026, 6, 25))
