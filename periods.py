from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from models import BudgetPeriod


BUDGET_MONTHLY_FACTORS: dict[BudgetPeriod, Decimal] = {
    BudgetPeriod.weekly: Decimal("4.33"),
    BudgetPeriod.monthly: Decimal("1"),
    BudgetPeriod.yearly: Decimal("1") / Decimal("12"),
}


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_end(first: date) -> date:
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1, day=1)
    else:
        next_month = first.replace(month=first.month + 1, day=1)
    return next_month - date.resolution


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        return Period("last_month", last_month_end.replace(day=1), last_month_end)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period != "this_month":
        raise ValueError(f"Unknown period: {period}")

    first = today.replace(day=1)
    return Period("this_month", first, month_end(first))


def budget_period_start(period: BudgetPeriod, start_date: date, today: date) -> date:
    """First day of the budget period that contains ``today``.

    Weekly periods start on Monday and monthly ones on the 1st, regardless of
    the budget's own start date. Yearly periods start on the 1st of the month
    the budget was started in, rolling forward every year.
    """
    if period == BudgetPeriod.weekly:
        return today - timedelta(days=today.weekday())
    if period == BudgetPeriod.yearly:
        fiscal_month = start_date.month
        if today.month >= fiscal_month:
            return date(today.year, fiscal_month, 1)
        return date(today.year - 1, fiscal_month, 1)
    return today.replace(day=1)


def normalize_budget_to_monthly(amount_cents: int, period: BudgetPeriod) -> Decimal:
    return Decimal(amount_cents) * BUDGET_MONTHLY_FACTORS[period]
