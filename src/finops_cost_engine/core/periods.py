"""Calendar windows for budget periods and month-to-date spend."""

import calendar
from datetime import date

from finops_cost_engine.errors import InvalidBudgetError


def period_window(period: str, today: date) -> tuple[date, date]:
    """Inclusive (start, end) of the calendar period containing `today`.

    Args:
        period: monthly | quarterly | yearly
        today: Reference day (UTC).

    Returns:
        Tuple of first and last day of the period.

    Raises:
        InvalidBudgetError: If the period is not recognised.
    """
    if period == "monthly":
        last_day = calendar.monthrange(today.year, today.month)[1]
        return date(today.year, today.month, 1), date(today.year, today.month, last_day)
    if period == "quarterly":
        first_month = 3 * ((today.month - 1) // 3) + 1
        last_month = first_month + 2
        last_day = calendar.monthrange(today.year, last_month)[1]
        return date(today.year, first_month, 1), date(today.year, last_month, last_day)
    if period == "yearly":
        return date(today.year, 1, 1), date(today.year, 12, 31)
    raise InvalidBudgetError(f"Unknown budget period '{period}'")


def month_to_date(today: date) -> tuple[date, date]:
    """First day of the month containing `today`, and `today` itself."""
    return today.replace(day=1), today
