from datetime import date

import pytest
from pydantic import ValidationError as SchemaError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import NotFound, ValidationError
from ledger import leg_delta, posting_deltas
from models import AccountType, Category, CategoryType, Transaction, TransactionType
from schemas import (
    AccountIn,
    AccountUpdateIn,
    TransactionAmendIn,
    TransactionIn,
    TransactionUpdateIn,
)
from services import AccountService, TransactionService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _account(session, account_type: AccountType, balance: int = 0, name: str = "A"):
    return AccountService(session).create(
        AccountIn(name=name, type=account_type, balance_cents=balance, currency="usd")
    )


def _txn(account_id, txn_type, amount, to_account_id=None, **extra) -> TransactionIn:
    return TransactionIn(
        account_id=account_id,
        to_account_id=to_account_id,
        type=txn_type,
        amount_cents=amount,
        date=extra.pop("date", date(2025, 3, 10)),
        description=extra.pop("description", "Test"),
        **extra,
    )


def test_leg_delta_table() -> None:
    bank = AccountType.bank
    card = AccountType.credit_card
    assert leg_delta(TransactionType.income, 100, bank) == 100
    assert leg_delta(TransactionType.income, 100, card) == 100
    assert leg_delta(TransactionType.expense, 100, bank) == -100
    assert leg_delta(TransactionType.expense, 100, card) == 100
    assert leg_delta(TransactionType.transfer, 100, card) == -100
    assert posting_deltas(TransactionType.transfer, 100, bank, card) == (-100, -100)
    assert posting_deltas(TransactionType.transfer, 100, bank, bank) == (-100, 100)
    assert posting_deltas(TransactionType.expense, 100, bank) == (-100, None)


def test_leg_delta_rejects_negative_amount() -> None:
    with pytest.raises(ValidationError):
        leg_delta(TransactionType.expense, -1, AccountType.bank)


@pytest.mark.parametrize(
    "txn_type,source_type,dest_type",
    [
        (TransactionType.income, AccountType.bank, None),
        (TransactionType.income, AccountType.credit_card, None),
        (TransactionType.expense, AccountType.cash, None),
        (TransactionType.expense, AccountType.credit_card, None),
        (TransactionType.transfer, AccountType.bank, AccountType.investment),
        (TransactionType.transfer, AccountType.bank, AccountType.credit_card),
        (TransactionType.transfer, AccountType.credit_card, AccountType.bank),
        (TransactionType.transfer, AccountType.credit_card, AccountType.credit_card),
    ],
)
def test_create_then_delete_restores_balances(txn_type, source_type, dest_type) -> None:
    session = make_session()
    source = _account(session, source_type, balance=1_000, name="Source")
    dest = _account(session, dest_type, balance=250, name="Dest") if dest_type else None
    service = TransactionService(session)

    txn = service.create(
        _txn(source.id, txn_type, 375, to_account_id=dest.id if dest else None)
    )
    assert source.balance_cents != 1_000
    service.delete(txn.id)

    assert AccountService(session).get(source.id).balance_cents == 1_000
    if dest:
        assert AccountService(session).get(dest.id).balance_cents == 250
    assert session.get(Transaction, txn.id) is None


def test_credit_card_sign_asymmetry() -> None:
    session = make_session()
    bank = _account(session, AccountType.bank, balance=500, name="Bank")
    card = _account(session, AccountType.credit_card, name="Card")
    service = TransactionService(session)

    service.create(_txn(card.id, TransactionType.expense, 100))
    assert card.balance_cents == 100
    assert bank.balance_cents == 500

    service.create(_txn(bank.id, TransactionType.transfer, 40, to_account_id=card.id))
    assert card.balance_cents == 60
    assert bank.balance_cents == 460


def test_transfer_conserves_money_between_asset_accounts() -> None:
    session = make_session()
    checking = _account(session, AccountType.bank, balance=800, name="Checking")
    savings = _account(session, AccountType.bank, balance=200, name="Savings")

    TransactionService(session).create(
        _txn(checking.id, TransactionType.transfer, 300, to_account_id=savings.id)
    )

    assert checking.balance_cents == 500
    assert savings.balance_cents == 500
    assert checking.balance_cents + savings.balance_cents == 1_000


def test_end_to_end_card_payment_scenario() -> None:
    session = make_session()
    bank = _account(session, AccountType.bank, balance=500, name="A")
    card = _account(session, AccountType.credit_card, balance=0, name="C")
    service = TransactionService(session)

    expense = service.create(_txn(card.id, TransactionType.expense, 50))
    assert card.balance_cents == 50

    payment = service.create(
        _txn(bank.id, TransactionType.transfer, 30, to_account_id=card.id)
    )
    assert bank.balance_cents == 470
    assert card.balance_cents == 20

    service.delete(payment.id)
    assert bank.balance_cents == 500
    assert card.balance_cents == 50

    service.delete(expense.id)
    assert card.balance_cents == 0
    assert bank.balance_cents == 500


def test_transfer_shape_is_validated() -> None:
    session = make_session()
    bank = _account(session, AccountType.bank, balance=100)
    service = TransactionService(session)

    with pytest.raises(ValidationError):
        service.create(_txn(bank.id, TransactionType.transfer, 10))
    with pytest.raises(ValidationError):
        service.create(
            _txn(bank.id, TransactionType.transfer, 10, to_account_id=bank.id)
        )
    with pytest.raises(ValidationError):
        service.create(_txn(bank.id, TransactionType.expense, 10, to_account_id=99))
    assert bank.balance_cents == 100
    assert service.list() == []


def test_missing_destination_leaves_source_untouched() -> None:
    session = make_session()
    bank = _account(session, AccountType.bank, balance=100)
    service = TransactionService(session)

    with pytest.raises(NotFound):
        service.create(_txn(bank.id, TransactionType.transfer, 60, to_account_id=999))

    assert AccountService(session).get(bank.id).balance_cents == 100
    assert service.list() == []


def test_missing_source_account_raises_not_found() -> None:
    session = make_session()
    with pytest.raises(NotFound):
        TransactionService(session).create(_txn(42, TransactionType.income, 10))


def test_category_type_must_match_transaction_type() -> None:
    session = make_session()
    bank = _account(session, AccountType.bank)
    salary = Category(name="Salary", type=CategoryType.income)
    session.add(salary)
    session.commit()

    with pytest.raises(ValidationError):
        TransactionService(session).create(
            _txn(bank.id, TransactionType.expense, 10, category_id=salary.id)
        )
    with pytest.raises(NotFound):
        TransactionService(session).create(
            _txn(bank.id, TransactionType.income, 10, category_id=999)
        )
    assert bank.balance_cents == 0


def test_delete_after_account_removed_reverses_remaining_leg() -> None:
    session = make_session()
    bank = _account(session, AccountType.bank, balance=500, name="Bank")
    card = _account(session, AccountType.credit_card, balance=200, name="Card")
    service = TransactionService(session)
    payment = service.create(
        _txn(bank.id, TransactionType.transfer, 100, to_account_id=card.id)
    )
    assert card.balance_cents == 100

    AccountService(session).delete(bank.id)
    service.delete(payment.id)

    assert AccountService(session).get(card.id).balance_cents == 200
    assert session.get(Transaction, payment.id) is None


def test_update_only_touches_descriptive_fields() -> None:
    session = make_session()
    bank = _account(session, AccountType.bank, balance=100)
    service = TransactionService(session)
    txn = service.create(_txn(bank.id, TransactionType.expense, 30, tags=["Food"]))

    updated = service.update(
        txn.id,
        TransactionUpdateIn(
            description="Lunch", notes="team", tags=["food", "Work", " work "]
        ),
    )

    assert updated.description == "Lunch"
    assert updated.notes == "team"
    assert updated.tags == ["food", "Work"]
    assert updated.amount_cents == 30
    assert bank.balance_cents == 70
    with pytest.raises(SchemaError):
        TransactionUpdateIn(amount_cents=10)


def test_amend_reverses_then_reposts() -> None:
    session = make_session()
    bank = _account(session, AccountType.bank, balance=1_000, name="Bank")
    card = _account(session, AccountType.credit_card, balance=0, name="Card")
    service = TransactionService(session)
    txn = service.create(_txn(bank.id, TransactionType.expense, 200))
    assert bank.balance_cents == 800

    amended = service.amend(
        txn.id,
        TransactionAmendIn(
            account_id=card.id,
            type=TransactionType.expense,
            amount_cents=150,
            date=date(2025, 3, 11),
        ),
    )

    assert amended.account_id == card.id
    assert amended.amount_cents == 150
    assert bank.balance_cents == 1_000
    assert card.balance_cents == 150


def test_amend_failure_rolls_back_reversal() -> None:
    session = make_session()
    bank = _account(session, AccountType.bank, balance=1_000)
    service = TransactionService(session)
    txn = service.create(_txn(bank.id, TransactionType.expense, 200))

    with pytest.raises(NotFound):
        service.amend(
            txn.id,
            TransactionAmendIn(
                account_id=bank.id,
                type=TransactionType.transfer,
                amount_cents=200,
                date=date(2025, 3, 10),
                to_account_id=999,
            ),
        )

    assert AccountService(session).get(bank.id).balance_cents == 800
    reloaded = service.get(txn.id)
    assert reloaded.type == TransactionType.expense


def test_account_totals_treat_cards_as_liabilities() -> None:
    session = make_session()
    _account(session, AccountType.bank, balance=5_000, name="Bank")
    _account(session, AccountType.asset, balance=1_000, name="Car")
    _account(session, AccountType.credit_card, balance=1_500, name="Card")

    totals = AccountService(session).totals()

    assert totals == {"assets": 6_000, "liabilities": 1_500, "net_worth": 4_500}


def test_monthly_totals_exclude_transfers() -> None:
    session = make_session()
    bank = _account(session, AccountType.bank, balance=0, name="Bank")
    card = _account(session, AccountType.credit_card, balance=0, name="Card")
    service = TransactionService(session)
    service.create(_txn(bank.id, TransactionType.income, 3_000))
    service.create(_txn(card.id, TransactionType.expense, 700))
    service.create(_txn(bank.id, TransactionType.transfer, 700, to_account_id=card.id))
    service.create(_txn(bank.id, TransactionType.expense, 50, date=date(2025, 4, 1)))

    totals = service.monthly_totals(2025, 3)

    assert totals == {"income": 3_000, "expenses": 700, "net": 2_300, "count": 3}


def test_account_currency_is_upper_cased() -> None:
    session = make_session()
    account = _account(session, AccountType.cash)
    assert account.currency == "USD"
    assert account.version_id == 1


def test_account_type_cannot_flip_sign_with_transactions() -> None:
    session = make_session()
    card = _account(session, AccountType.credit_card, name="Card")
    savings = _account(session, AccountType.bank, name="Savings")
    service = AccountService(session)
    TransactionService(session).create(_txn(card.id, TransactionType.expense, 400))

    with pytest.raises(ValidationError):
        service.update(card.id, AccountUpdateIn(type=AccountType.bank))
    assert card.type == AccountType.credit_card

    moved = service.update(savings.id, AccountUpdateIn(type=AccountType.credit_card))
    assert moved.type == AccountType.credit_card
    assert service.update(card.id, AccountUpdateIn(name="Visa")).name == "Visa"
