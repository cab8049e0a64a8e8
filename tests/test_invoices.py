from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import NotFound, ValidationError
from models import (
    Account,
    AccountType,
    Category,
    CategoryType,
    InvoiceStatus,
    TransactionType,
)
from schemas import (
    ClientIn,
    InvoiceIn,
    InvoiceItemIn,
    InvoiceStatusIn,
    InvoiceUpdateIn,
    MarkPaidIn,
)
from services import CLIENT_PAYMENTS_CATEGORY, ClientService, InvoiceService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _client(session, name: str = "Acme"):
    return ClientService(session).create(ClientIn(name=name, currency="eur"))


def _invoice(session, client_id: int, **overrides):
    payload = {
        "client_id": client_id,
        "items": [InvoiceItemIn(description="Work", quantity=1, rate_cents=10_000)],
        "currency": "EUR",
        "issue_date": date(2025, 1, 1),
        "due_date": date(2025, 1, 31),
    }
    payload.update(overrides)
    return InvoiceService(session).create(InvoiceIn(**payload))


def test_create_computes_totals_and_numbers_sequentially() -> None:
    session = make_session()
    client = _client(session)

    first = _invoice(
        session,
        client.id,
        items=[
            InvoiceItemIn(
                description="Design", quantity=Decimal("2.5"), rate_cents=8_000
            ),
            InvoiceItemIn(description="Hosting", quantity=1, rate_cents=1_999),
        ],
        tax_rate_bps=1_900,
    )
    second = _invoice(session, client.id)

    assert first.invoice_number == "INV-00001"
    assert second.invoice_number == "INV-00002"
    assert first.subtotal_cents == 21_999
    assert first.tax_cents == 4_180
    assert first.total_cents == 26_179
    assert first.status == InvoiceStatus.draft
    assert first.items[0] == {
        "description": "Design",
        "quantity": "2.5",
        "rate_cents": 8_000,
        "amount_cents": 20_000,
    }


def test_create_requires_existing_client() -> None:
    session = make_session()
    with pytest.raises(NotFound):
        _invoice(session, 404)


def test_update_recomputes_totals() -> None:
    session = make_session()
    client = _client(session)
    invoice = _invoice(session, client.id)

    updated = InvoiceService(session).update(
        invoice.id, InvoiceUpdateIn(tax_rate_bps=1_000)
    )
    assert updated.tax_cents == 1_000
    assert updated.total_cents == 11_000

    updated = InvoiceService(session).update(
        invoice.id,
        InvoiceUpdateIn(
            items=[InvoiceItemIn(description="More", quantity=3, rate_cents=500)]
        ),
    )
    assert updated.subtotal_cents == 1_500
    assert updated.tax_cents == 150
    assert updated.total_cents == 1_650


def test_overdue_is_derived_not_stored() -> None:
    session = make_session()
    client = _client(session)
    invoice = _invoice(session, client.id)
    service = InvoiceService(session)

    service.update_status(invoice.id, InvoiceStatusIn(status=InvoiceStatus.sent))

    assert service.effective_status(invoice, date(2025, 1, 31)) == InvoiceStatus.sent
    assert service.effective_status(invoice, date(2025, 2, 1)) == InvoiceStatus.overdue
    assert invoice.status == InvoiceStatus.sent
    assert service.list(status=InvoiceStatus.overdue, today=date(2025, 2, 1)) == [
        invoice
    ]
    with pytest.raises(ValidationError):
        service.update_status(invoice.id, InvoiceStatusIn(status=InvoiceStatus.overdue))


def test_mark_as_paid_posts_converted_amount() -> None:
    session = make_session()
    account = Account(name="US Bank", type=AccountType.bank, currency="USD")
    session.add(account)
    session.commit()
    client = _client(session)
    invoice = _invoice(session, client.id)
    assert invoice.total_cents == 10_000

    txn = InvoiceService(session).mark_as_paid(
        invoice.id,
        MarkPaidIn(
            account_id=account.id,
            converted_amount_cents=10_850,
            exchange_rate=Decimal("1.085"),
        ),
    )

    assert invoice.status == InvoiceStatus.paid
    assert invoice.paid_at is not None
    assert invoice.paid_amount_cents == 10_850
    assert invoice.paid_currency == "USD"
    assert invoice.exchange_rate_micros == 1_085_000
    assert txn.type == TransactionType.income
    assert txn.amount_cents == 10_850
    assert txn.invoice_id == invoice.id
    assert txn.original_amount_cents == 10_000
    assert txn.original_currency == "EUR"
    assert txn.description == "Payment for INV-00001"
    assert txn.category.name == CLIENT_PAYMENTS_CATEGORY
    assert account.balance_cents == 10_850


def test_mark_as_paid_without_conversion_reuses_category() -> None:
    session = make_session()
    account = Account(name="EU Bank", type=AccountType.bank, currency="EUR")
    existing = Category(name=CLIENT_PAYMENTS_CATEGORY, type=CategoryType.income)
    session.add_all([account, existing])
    session.commit()
    client = _client(session)
    service = InvoiceService(session)
    first = _invoice(session, client.id)
    second = _invoice(session, client.id)

    txn = service.mark_as_paid(first.id, MarkPaidIn(account_id=account.id))
    service.mark_as_paid(second.id, MarkPaidIn(account_id=account.id))

    assert txn.amount_cents == 10_000
    assert txn.original_amount_cents is None
    assert txn.category_id == existing.id
    assert account.balance_cents == 20_000
    count = session.scalar(
        select(func.count(Category.id)).where(
            Category.name == CLIENT_PAYMENTS_CATEGORY
        )
    )
    assert count == 1


def test_mark_as_paid_twice_is_rejected() -> None:
    session = make_session()
    account = Account(name="EU Bank", type=AccountType.bank, currency="EUR")
    session.add(account)
    session.commit()
    client = _client(session)
    invoice = _invoice(session, client.id)
    service = InvoiceService(session)
    service.mark_as_paid(invoice.id, MarkPaidIn(account_id=account.id))

    with pytest.raises(ValidationError):
        service.mark_as_paid(invoice.id, MarkPaidIn(account_id=account.id))
    assert account.balance_cents == 10_000


def test_mark_as_paid_missing_account_changes_nothing() -> None:
    session = make_session()
    client = _client(session)
    invoice = _invoice(session, client.id)

    with pytest.raises(NotFound):
        InvoiceService(session).mark_as_paid(invoice.id, MarkPaidIn(account_id=77))
    assert invoice.status == InvoiceStatus.draft
    assert invoice.paid_at is None


def test_stats_use_effective_status() -> None:
    session = make_session()
    account = Account(name="EU Bank", type=AccountType.bank, currency="EUR")
    session.add(account)
    session.commit()
    client = _client(session)
    service = InvoiceService(session)
    draft = _invoice(session, client.id)
    late = _invoice(session, client.id, due_date=date(2025, 1, 10))
    paid = _invoice(session, client.id)
    service.update_status(late.id, InvoiceStatusIn(status=InvoiceStatus.sent))
    service.mark_as_paid(paid.id, MarkPaidIn(account_id=account.id))

    stats = service.stats(today=date(2025, 1, 20))

    assert draft.total_cents == 10_000
    assert stats["total"] == 3
    assert stats["draft"] == 1
    assert stats["overdue"] == 1
    assert stats["sent"] == 0
    assert stats["paid"] == 1
    assert stats["total_amount"] == 30_000
    assert stats["paid_amount"] == 10_000
    assert stats["pending_amount"] == 20_000


def test_client_delete_guard_and_invoice_stats() -> None:
    session = make_session()
    account = Account(name="EU Bank", type=AccountType.bank, currency="EUR")
    session.add(account)
    session.commit()
    busy = _client(session, "Busy")
    idle = _client(session, "Idle")
    first = _invoice(session, busy.id)
    _invoice(session, busy.id)
    InvoiceService(session).mark_as_paid(first.id, MarkPaidIn(account_id=account.id))
    service = ClientService(session)

    with pytest.raises(ValidationError):
        service.delete(busy.id)
    service.delete(idle.id)

    rows = service.list_with_invoice_stats()
    assert len(rows) == 1
    assert rows[0]["client"].name == "Busy"
    assert rows[0]["client"].currency == "EUR"
    assert rows[0]["invoice_count"] == 2
    assert rows[0]["total_billed"] == 20_000
    assert rows[0]["total_paid"] == 10_000
    assert rows[0]["outstanding"] == 10_000


def test_mark_as_paid_after_manual_paid_status_still_posts() -> None:
    session = make_session()
    account = Account(name="EU Bank", type=AccountType.bank, currency="EUR")
    session.add(account)
    session.commit()
    client = _client(session)
    invoice = _invoice(session, client.id)
    service = InvoiceService(session)
    service.update_status(invoice.id, InvoiceStatusIn(status=InvoiceStatus.paid))

    txn = service.mark_as_paid(invoice.id, MarkPaidIn(account_id=account.id))

    assert txn.invoice_id == invoice.id
    assert invoice.paid_amount_cents == 10_000
    assert account.balance_cents == 10_000
    with pytest.raises(ValidationError):
        service.mark_as_paid(invoice.id, MarkPaidIn(account_id=account.id))
