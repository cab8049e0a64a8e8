import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import NotFound
from ledger import LedgerEngine
from models import Frequency, RecurringTransaction, Transaction, TransactionType


logger = logging.getLogger(__name__)

MONTHLY_FACTORS: dict[Frequency, Decimal] = {
    Frequency.daily: Decimal("30"),
    Frequency.weekly: Decimal("4.33"),
    Frequency.biweekly: Decimal("2.17"),
    Frequency.monthly: Decimal("1"),
    Frequency.yearly: Decimal("1") / Decimal("12"),
}


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def compute_next_due_date(current: date, frequency: Frequency) -> date:
    """Advance ``current`` by one period using calendar arithmetic.

    Monthly and yearly steps keep the day of month, clamped to the last day
    of the target month (Jan 31 -> Feb 28/29, Feb 29 -> Feb 28 next year).
    """
    if frequency == Frequency.daily:
        return current + timedelta(days=1)
    if frequency == Frequency.weekly:
        return current + timedelta(weeks=1)
    if frequency == Frequency.biweekly:
        return current + timedelta(weeks=2)
    if frequency == Frequency.monthly:
        return _add_months(current, 1)
    if frequency == Frequency.yearly:
        return _add_months(current, 12)
    raise ValueError(f"Unsupported frequency: {frequency}")


def normalize_to_monthly(amount_cents: int, frequency: Frequency) -> Decimal:
    return Decimal(amount_cents) * MONTHLY_FACTORS[frequency]


@dataclass(frozen=True)
class ScheduleStatus:
    days_until_due: int
    is_overdue: bool
    is_due_today: bool
    is_due_soon: bool


def schedule_status(next_due_date: date, today: date) -> ScheduleStatus:
    days = (next_due_date - today).days
    return ScheduleStatus(
        days_until_due=days,
        is_overdue=days < 0,
        is_due_today=days == 0,
        is_due_soon=0 < days <= 7,
    )


class RecurringEngine:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.ledger = LedgerEngine(session)

    def materialize(self, template: RecurringTransaction) -> Transaction:
        """Post one occurrence of ``template`` and advance its schedule.

        The ledger posting happens before the schedule moves, so a failed
        posting leaves ``next_due_date`` where it was. Does not commit.
        """
        txn = Transaction(
            account_id=template.account_id,
            type=TransactionType(template.type.value),
            amount_cents=template.amount_cents,
            category_id=template.category_id,
            description=template.description,
            date=template.next_due_date,
            is_business_expense=False,
            notes=template.notes,
            tags=[],
            recurring_id=template.id,
        )
        self.ledger.post(txn)
        self.session.add(txn)
        template.next_due_date = compute_next_due_date(
            template.next_due_date, template.frequency
        )
        template.last_processed_at = datetime.utcnow()
        self.session.flush()
        logger.info(
            f"recurring_processed: template={template.id} txn={txn.id} "
            f"date={txn.date} next_due={template.next_due_date}"
        )
        return txn

    def skip(self, template: RecurringTransaction) -> date:
        template.next_due_date = compute_next_due_date(
            template.next_due_date, template.frequency
        )
        logger.info(
            f"recurring_skipped: template={template.id} "
            f"next_due={template.next_due_date}"
        )
        return template.next_due_date

    def catch_up(self, template: RecurringTransaction, today: date) -> int:
        posted = 0
        max_iterations = 365
        while template.next_due_date <= today and posted < max_iterations:
            try:
                self.materialize(template)
            except NotFound as exc:
                logger.warning(
                    f"recurring_catch_up_failed: template={template.id} error={exc}"
                )
                break
            self.session.commit()
            posted += 1
        return posted

    def process_due(self, today: Optional[date] = None) -> int:
        today = today or local_today()
        stmt = (
            select(RecurringTransaction)
            .where(
                RecurringTransaction.is_active.is_(True),
                RecurringTransaction.next_due_date <= today,
            )
            .order_by(RecurringTransaction.next_due_date)
        )
        templates = self.session.scalars(stmt).all()
        count = 0
        for template in templates:
            count += self.catch_up(template, today)
        return count
