from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import NotFound
from models import (
    Account,
    AccountType,
    Category,
    CategoryType,
    Frequency,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from recurrence import (
    RecurringEngine,
    compute_next_due_date,
    normalize_to_monthly,
    schedule_status,
)
from schemas import RecurringIn, RecurringUpdateIn
from services import RecurringService


def _seed(session: Session, frequency: Frequency = Frequency.monthly):
    account = Account(name="Checking", type=AccountType.bank, currency="USD")
    category = Category(name="Rent", type=CategoryType.expense)
    session.add_all([account, category])
    session.flush()
    template = RecurringTransaction(
        account_id=account.id,
        type=CategoryType.expense,
        amount_cents=120_000,
        category_id=category.id,
        description="Rent",
        frequency=frequency,
        next_due_date=date(2024, 1, 31),
        notes="flat 4",
    )
    session.add(template)
    session.commit()
    return account, template


@pytest.mark.parametrize("frequency", list(Frequency))
def test_next_due_date_is_strictly_later(frequency: Frequency) -> None:
    for current in (date(2024, 1, 31), date(2024, 2, 29), date(2023, 12, 31)):
        assert compute_next_due_date(current, frequency) > current


def test_monthly_clamps_to_month_end() -> None:
    assert compute_next_due_date(date(2024, 1, 31), Frequency.monthly) == date(
        2024, 2, 29
    )
    assert compute_next_due_date(date(2023, 1, 31), Frequency.monthly) == date(
        2023, 2, 28
    )
    assert compute_next_due_date(date(2024, 12, 15), Frequency.monthly) == date(
        2025, 1, 15
    )


def test_yearly_from_leap_day() -> None:
    assert compute_next_due_date(date(2024, 2, 29), Frequency.yearly) == date(
        2025, 2, 28
    )


def test_weekly_steps() -> None:
    assert compute_next_due_date(date(2024, 12, 30), Frequency.weekly) == date(
        2025, 1, 6
    )
    assert compute_next_due_date(date(2024, 12, 30), Frequency.biweekly) == date(
        2025, 1, 13
    )


def test_normalize_to_monthly_factors() -> None:
    assert normalize_to_monthly(100, Frequency.daily) == Decimal("3000")
    assert normalize_to_monthly(100, Frequency.weekly) == Decimal("433")
    assert normalize_to_monthly(100, Frequency.biweekly) == Decimal("217")
    yearly = normalize_to_monthly(1_200, Frequency.yearly)
    assert yearly.quantize(Decimal("1")) == Decimal("100")


def test_schedule_status_windows() -> None:
    today = date(2025, 5, 10)
    assert schedule_status(date(2025, 5, 9), today).is_overdue
    assert schedule_status(date(2025, 5, 10), today).is_due_today
    soon = schedule_status(date(2025, 5, 17), today)
    assert soon.is_due_soon and soon.days_until_due == 7
    assert not schedule_status(date(2025, 5, 18), today).is_due_soon


def test_process_creates_one_transaction_and_advances() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        account, template = _seed(session)

        txn = RecurringService(session).process(template.id)

        assert txn.recurring_id == template.id
        assert txn.type == TransactionType.expense
        assert txn.date == date(2024, 1, 31)
        assert txn.notes == "flat 4"
        assert template.next_due_date == date(2024, 2, 29)
        assert template.last_processed_at is not None
        assert account.balance_cents == -120_000
        assert len(session.scalars(select(Transaction)).all()) == 1


def test_skip_advances_without_posting() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        account, template = _seed(session)

        next_due = RecurringService(session).skip(template.id)

        assert next_due == date(2024, 2, 29)
        assert template.next_due_date == next_due
        assert account.balance_cents == 0
        assert session.scalars(select(Transaction)).all() == []


def test_process_with_missing_account_leaves_schedule() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        account, template = _seed(session)
        session.delete(account)
        session.commit()

        with pytest.raises(NotFound):
            RecurringService(session).process(template.id)

        reloaded = session.get(RecurringTransaction, template.id)
        assert reloaded.next_due_date == date(2024, 1, 31)
        assert session.scalars(select(Transaction)).all() == []


def test_process_due_catches_up_missed_occurrences() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        account, template = _seed(session)

        posted = RecurringEngine(session).process_due(today=date(2024, 4, 15))

        assert posted == 3
        dates = sorted(t.date for t in session.scalars(select(Transaction)).all())
        assert dates == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 29)]
        assert template.next_due_date == date(2024, 4, 29)
        assert account.balance_cents == -360_000

        assert RecurringEngine(session).process_due(today=date(2024, 4, 15)) == 0


def test_inactive_templates_are_not_processed() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        _, template = _seed(session)
        assert RecurringService(session).toggle_active(template.id) is False

        assert RecurringEngine(session).process_due(today=date(2024, 6, 1)) == 0


def test_summary_normalizes_and_counts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        account, _ = _seed(session)
        salary = Category(name="Salary", type=CategoryType.income)
        session.add(salary)
        session.commit()
        service = RecurringService(session)
        service.create(
            RecurringIn(
                account_id=account.id,
                type=CategoryType.income,
                amount_cents=100_000,
                category_id=salary.id,
                description="Pay",
                frequency=Frequency.biweekly,
                next_due_date=date(2024, 2, 5),
            )
        )

        summary = service.summary(today=date(2024, 2, 1))

        assert summary["total"] == 2
        assert summary["monthly_income"] == 217_000
        assert summary["monthly_expenses"] == 120_000
        assert summary["monthly_net"] == 97_000
        assert summary["overdue"] == 1
        assert summary["due_soon"] == 1

        upcoming = service.upcoming(days=7, today=date(2024, 2, 1))
        assert [row.template.description for row in upcoming] == ["Rent", "Pay"]
        assert upcoming[0].status.is_overdue


def test_update_clears_category_and_notes_but_keeps_required_fields() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        _, template = _seed(session)

        RecurringService(session).update(
            template.id,
            RecurringUpdateIn(category_id=None, notes=None, description=None),
        )

        assert template.category_id is None
        assert template.notes is None
        assert template.description == "Rent"
