from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterator, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, joinedload

from errors import DuplicateResourceError, NotFound, ValidationError
from fx_rates import FxRateService
from ledger import LedgerEngine
from models import (
    Account,
    AccountType,
    Budget,
    Category,
    CategoryType,
    Client,
    Goal,
    Invoice,
    InvoiceStatus,
    LIABILITY_ACCOUNT_TYPES,
    RecurringTransaction,
    Transaction,
    TransactionType,
)
from periods import budget_period_start, month_end, normalize_budget_to_monthly
from recurrence import (
    RecurringEngine,
    ScheduleStatus,
    local_today,
    normalize_to_monthly,
    schedule_status,
)
from schemas import (
    AccountIn,
    AccountUpdateIn,
    BudgetIn,
    BudgetUpdateIn,
    CategoryIn,
    CategoryUpdateIn,
    ClientIn,
    ClientUpdateIn,
    GoalIn,
    GoalUpdateIn,
    InvoiceIn,
    InvoiceItemIn,
    InvoiceStatusIn,
    InvoiceUpdateIn,
    MarkPaidIn,
    RecurringIn,
    RecurringUpdateIn,
    TransactionAmendIn,
    TransactionIn,
    TransactionUpdateIn,
)


logger = logging.getLogger(__name__)

CLIENT_PAYMENTS_CATEGORY = "Client Payments"

PERSONAL_CATEGORIES: list[tuple[str, CategoryType, str, str]] = [
    ("Salary", CategoryType.income, "Wallet", "#6366f1"),
    ("Freelance", CategoryType.income, "Briefcase", "#818cf8"),
    ("Investments", CategoryType.income, "TrendUp", "#a5b4fc"),
    ("Rental Income", CategoryType.income, "House", "#c7d2fe"),
    ("Gifts", CategoryType.income, "Gift", "#4f46e5"),
    ("Other Income", CategoryType.income, "Plus", "#4f46e5"),
    ("Food & Dining", CategoryType.expense, "ForkKnife", "#8b7355"),
    ("Groceries", CategoryType.expense, "ShoppingBag", "#a08060"),
    ("Transportation", CategoryType.expense, "Car", "#b58d6b"),
    ("Shopping", CategoryType.expense, "ShoppingCart", "#ca9a82"),
    ("Entertainment", CategoryType.expense, "GameController", "#d4b896"),
    ("Bills & Utilities", CategoryType.expense, "Lightning", "#705845"),
    ("Healthcare", CategoryType.expense, "FirstAid", "#9f8270"),
    ("Travel", CategoryType.expense, "Airplane", "#705845"),
    ("Subscriptions", CategoryType.expense, "Repeat", "#5c4a3d"),
    ("Insurance", CategoryType.expense, "Shield", "#d4b896"),
    ("Other Expenses", CategoryType.expense, "DotsThree", "#5c4a3d"),
]

BUSINESS_CATEGORIES: list[tuple[str, CategoryType, str, str]] = [
    (CLIENT_PAYMENTS_CATEGORY, CategoryType.income, "CurrencyCircleDollar", "#6366f1"),
    ("Project Revenue", CategoryType.income, "Briefcase", "#818cf8"),
    ("Consulting", CategoryType.income, "UserCircle", "#a5b4fc"),
    ("Retainer Income", CategoryType.income, "Repeat", "#c7d2fe"),
    ("Other Revenue", CategoryType.income, "Plus", "#4f46e5"),
    ("Office Supplies", CategoryType.expense, "Notebook", "#8b7355"),
    ("Software & Tools", CategoryType.expense, "Code", "#a08060"),
    ("Marketing", CategoryType.expense, "Megaphone", "#b58d6b"),
    ("Professional Services", CategoryType.expense, "UserCircle", "#ca9a82"),
    ("Travel & Meals", CategoryType.expense, "Airplane", "#d4b896"),
    ("Equipment", CategoryType.expense, "Desktop", "#705845"),
    ("Rent & Utilities", CategoryType.expense, "House", "#9f8270"),
    ("Taxes", CategoryType.expense, "Receipt", "#ca9a82"),
    ("Bank Fees", CategoryType.expense, "Bank", "#705845"),
    ("Contractors", CategoryType.expense, "Users", "#5c4a3d"),
    ("Other Expenses", CategoryType.expense, "DotsThree", "#5c4a3d"),
]


@contextmanager
def _atomic(session: Session) -> Iterator[None]:
    """Commit on success, roll back everything on any failure."""
    try:
        yield
        session.commit()
    except Exception:
        session.rollback()
        raise


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _clean_tags(tags: list[str]) -> list[str]:
    cleaned: list[str] = []
    seen: set[str] = set()
    for tag in tags:
        name = tag.strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        cleaned.append(name)
    return cleaned


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self) -> list[Account]:
        stmt = select(Account).order_by(Account.created_at, Account.id)
        return self.session.scalars(stmt).all()

    def list_by_type(self, account_type: AccountType) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.type == account_type)
            .order_by(Account.created_at, Account.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise NotFound("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(
            name=data.name.strip(),
            type=data.type,
            balance_cents=data.balance_cents,
            currency=data.currency.upper(),
            is_business_account=data.is_business_account,
            color=data.color,
            icon=data.icon,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        logger.info(
            f"account_created: id={account.id} type={account.type.value} "
            f"balance={account.balance_cents}"
        )
        return account

    def update(self, account_id: int, data: AccountUpdateIn) -> Account:
        account = self.get(account_id)
        updates = data.model_dump(exclude_unset=True)
        if "currency" in updates and updates["currency"]:
            updates["currency"] = updates["currency"].upper()
        new_type = updates.get("type")
        if new_type is not None and new_type != account.type:
            flips_sign = (new_type in LIABILITY_ACCOUNT_TYPES) != account.is_liability
            if flips_sign and self._has_transactions(account.id):
                raise ValidationError(
                    "Cannot switch between asset and liability while "
                    "transactions exist"
                )
            logger.info(
                f"account_type_changed: id={account.id} "
                f"old={account.type.value} new={new_type.value}"
            )
        if "balance_cents" in updates and updates["balance_cents"] is not None:
            logger.info(
                f"account_balance_edited: id={account.id} "
                f"old={account.balance_cents} new={updates['balance_cents']}"
            )
        for field, value in updates.items():
            if value is None:
                continue
            setattr(account, field, value)
        self.session.commit()
        self.session.refresh(account)
        return account

    def _has_transactions(self, account_id: int) -> bool:
        stmt = select(func.count(Transaction.id)).where(
            or_(
                Transaction.account_id == account_id,
                Transaction.to_account_id == account_id,
            )
        )
        return bool(self.session.scalar(stmt))

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        self.session.delete(account)
        self.session.commit()
        logger.info(f"account_deleted: id={account_id}")

    def totals(self) -> dict[str, int]:
        assets = 0
        liabilities = 0
        for account in self.list():
            if account.is_liability:
                liabilities += abs(account.balance_cents)
            else:
                assets += account.balance_cents
        return {
            "assets": assets,
            "liabilities": liabilities,
            "net_worth": assets - liabilities,
        }


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self) -> list[Category]:
        stmt = select(Category).order_by(Category.type, Category.name)
        return self.session.scalars(stmt).all()

    def list_by_type(self, category_type: CategoryType) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.type == category_type)
            .order_by(Category.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Category not found")
        return category

    def find(self, name: str, category_type: CategoryType) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.type == category_type,
                func.lower(Category.name) == name.strip().lower(),
            )
        )

    def create(self, data: CategoryIn) -> Category:
        if self.find(data.name, data.type):
            raise DuplicateResourceError("Category with this name already exists")
        category = Category(
            name=data.name.strip(),
            type=data.type,
            icon=data.icon,
            color=data.color,
            is_default=data.is_default,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def get_or_create(
        self,
        name: str,
        category_type: CategoryType,
        *,
        icon: str = "Tag",
        color: str = "#6366f1",
        is_default: bool = False,
    ) -> Category:
        """Idempotent lookup by name and type. Flushes but does not commit."""
        existing = self.find(name, category_type)
        if existing:
            return existing
        category = Category(
            name=name,
            type=category_type,
            icon=icon,
            color=color,
            is_default=is_default,
        )
        self.session.add(category)
        self.session.flush()
        logger.info(f"category_created: id={category.id} name={name!r}")
        return category

    def update(self, category_id: int, data: CategoryUpdateIn) -> Category:
        category = self.get(category_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            setattr(category, field, value.strip() if field == "name" else value)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if category.is_default:
            raise ValidationError("Cannot delete default categories")
        self.session.delete(category)
        self.session.commit()

    def seed_defaults(self, use_case: str = "personal") -> int:
        existing = self.session.scalar(select(func.count(Category.id))) or 0
        if existing:
            return 0
        defaults = (
            PERSONAL_CATEGORIES if use_case == "personal" else BUSINESS_CATEGORIES
        )
        for name, category_type, icon, color in defaults:
            self.session.add(
                Category(
                    name=name,
                    type=category_type,
                    icon=icon,
                    color=color,
                    is_default=True,
                )
            )
        self.session.commit()
        return len(defaults)


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.ledger = LedgerEngine(session)

    @staticmethod
    def _check_shape(
        txn_type: TransactionType, account_id: int, to_account_id: Optional[int]
    ) -> None:
        if txn_type == TransactionType.transfer:
            if to_account_id is None:
                raise ValidationError("Transfers require a destination account")
            if to_account_id == account_id:
                raise ValidationError("Cannot transfer to the same account")
        elif to_account_id is not None:
            raise ValidationError("Only transfers can have a destination account")

    def _check_category(
        self, category_id: Optional[int], txn_type: TransactionType
    ) -> None:
        if category_id is None:
            return
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Category not found")
        if txn_type == TransactionType.transfer:
            return
        if category.type.value != txn_type.value:
            raise ValidationError("Category type mismatch")

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def list(self, limit: Optional[int] = None) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if limit:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()

    def list_by_account(self, account_id: int) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                or_(
                    Transaction.account_id == account_id,
                    Transaction.to_account_id == account_id,
                )
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).all()

    def list_by_date_range(self, start: date, end: date) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.date.between(start, end))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).all()

    def create(self, data: TransactionIn) -> Transaction:
        self._check_shape(data.type, data.account_id, data.to_account_id)
        self._check_category(data.category_id, data.type)
        txn = Transaction(
            account_id=data.account_id,
            to_account_id=data.to_account_id,
            type=data.type,
            amount_cents=data.amount_cents,
            category_id=data.category_id,
            description=data.description.strip(),
            date=data.date,
            is_business_expense=data.is_business_expense,
            notes=data.notes,
            tags=_clean_tags(data.tags),
        )
        with _atomic(self.session):
            self.ledger.post(txn)
            self.session.add(txn)
            self.session.flush()
            logger.info(
                f"transaction_created: id={txn.id} type={txn.type.value} "
                f"amount={txn.amount_cents} account={txn.account_id} "
                f"to_account={txn.to_account_id}"
            )
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionUpdateIn) -> Transaction:
        """Edit descriptive fields. Amount, type, accounts and date stay fixed."""
        txn = self.get(transaction_id)
        updates = data.model_dump(exclude_unset=True)
        if updates.get("category_id") is not None:
            self._check_category(updates["category_id"], txn.type)
        if updates.get("description") is not None:
            txn.description = updates["description"].strip()
        if "category_id" in updates:
            txn.category_id = updates["category_id"]
        if updates.get("is_business_expense") is not None:
            txn.is_business_expense = updates["is_business_expense"]
        if "notes" in updates:
            txn.notes = updates["notes"]
        if updates.get("tags") is not None:
            txn.tags = _clean_tags(updates["tags"])
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def amend(self, transaction_id: int, data: TransactionAmendIn) -> Transaction:
        """Change financial fields by reversing the old posting and re-posting."""
        txn = self.get(transaction_id)
        self._check_shape(data.type, data.account_id, data.to_account_id)
        if txn.category_id is not None:
            self._check_category(txn.category_id, data.type)
        with _atomic(self.session):
            self.ledger.reverse(txn)
            txn.account_id = data.account_id
            txn.to_account_id = data.to_account_id
            txn.type = data.type
            txn.amount_cents = data.amount_cents
            txn.date = data.date
            self.ledger.post(txn)
            logger.info(
                f"transaction_amended: id={txn.id} type={txn.type.value} "
                f"amount={txn.amount_cents}"
            )
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        with _atomic(self.session):
            self.ledger.reverse(txn)
            self.session.delete(txn)
            logger.info(f"transaction_deleted: id={transaction_id}")

    def monthly_totals(self, year: int, month: int) -> dict[str, int]:
        """Income and expense totals for a month.

        Transfers (including credit card payments) move money between
        accounts and are counted only in ``count``.
        """
        start = date(year, month, 1)
        end = month_end(start)
        stmt = (
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("rows"),
            )
            .where(Transaction.date.between(start, end))
            .group_by(Transaction.type)
        )
        income = 0
        expenses = 0
        count = 0
        for row in self.session.execute(stmt):
            count += int(row.rows)
            if row.type == TransactionType.income:
                income = int(row.total)
            elif row.type == TransactionType.expense:
                expenses = int(row.total)
        return {
            "income": income,
            "expenses": expenses,
            "net": income - expenses,
            "count": count,
        }


@dataclass(frozen=True)
class UpcomingRecurring:
    template: RecurringTransaction
    status: ScheduleStatus


class RecurringService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _check_references(
        self,
        account_id: int,
        category_id: Optional[int],
        template_type: CategoryType,
    ) -> None:
        if not self.session.get(Account, account_id):
            raise NotFound("Account not found")
        if category_id is None:
            return
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Category not found")
        if category.type != template_type:
            raise ValidationError("Category type mismatch")

    def get(self, template_id: int) -> RecurringTransaction:
        template = self.session.get(RecurringTransaction, template_id)
        if not template:
            raise NotFound("Recurring transaction not found")
        return template

    def list(self) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .options(joinedload(RecurringTransaction.category))
            .order_by(RecurringTransaction.id)
        )
        return self.session.scalars(stmt).all()

    def list_active(self) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .options(joinedload(RecurringTransaction.category))
            .where(RecurringTransaction.is_active.is_(True))
            .order_by(RecurringTransaction.next_due_date, RecurringTransaction.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: RecurringIn) -> RecurringTransaction:
        self._check_references(data.account_id, data.category_id, data.type)
        template = RecurringTransaction(
            account_id=data.account_id,
            type=data.type,
            amount_cents=data.amount_cents,
            category_id=data.category_id,
            description=data.description.strip(),
            frequency=data.frequency,
            next_due_date=data.next_due_date,
            notes=data.notes,
            is_active=True,
        )
        self.session.add(template)
        self.session.commit()
        self.session.refresh(template)
        return template

    def update(
        self, template_id: int, data: RecurringUpdateIn
    ) -> RecurringTransaction:
        template = self.get(template_id)
        updates = {
            k: v
            for k, v in data.model_dump(exclude_unset=True).items()
            if v is not None or k in ("category_id", "notes")
        }
        if {"account_id", "category_id", "type"} & updates.keys():
            self._check_references(
                updates.get("account_id", template.account_id),
                updates.get("category_id", template.category_id),
                updates.get("type", template.type),
            )
        for field, value in updates.items():
            setattr(template, field, value)
        self.session.commit()
        self.session.refresh(template)
        return template

    def delete(self, template_id: int) -> None:
        template = self.get(template_id)
        self.session.delete(template)
        self.session.commit()

    def toggle_active(self, template_id: int) -> bool:
        template = self.get(template_id)
        template.is_active = not template.is_active
        self.session.commit()
        return template.is_active

    def process(self, template_id: int) -> Transaction:
        template = self.get(template_id)
        engine = RecurringEngine(self.session)
        with _atomic(self.session):
            txn = engine.materialize(template)
        self.session.refresh(txn)
        return txn

    def skip(self, template_id: int) -> date:
        template = self.get(template_id)
        next_due = RecurringEngine(self.session).skip(template)
        self.session.commit()
        return next_due

    def process_due(self, today: Optional[date] = None) -> int:
        return RecurringEngine(self.session).process_due(today)

    def upcoming(
        self, days: int = 30, today: Optional[date] = None
    ) -> list[UpcomingRecurring]:
        today = today or local_today()
        return [
            UpcomingRecurring(template, schedule_status(template.next_due_date, today))
            for template in self.list_active()
            if (template.next_due_date - today).days <= days
        ]

    def summary(self, today: Optional[date] = None) -> dict[str, int]:
        today = today or local_today()
        templates = self.list_active()
        monthly_income = Decimal("0")
        monthly_expenses = Decimal("0")
        due_soon = 0
        overdue = 0
        for template in templates:
            monthly = normalize_to_monthly(template.amount_cents, template.frequency)
            if template.type == CategoryType.income:
                monthly_income += monthly
            else:
                monthly_expenses += monthly
            status = schedule_status(template.next_due_date, today)
            if status.is_overdue:
                overdue += 1
            elif status.days_until_due <= 7:
                due_soon += 1
        income = _round_cents(monthly_income)
        expenses = _round_cents(monthly_expenses)
        return {
            "total": len(templates),
            "monthly_income": income,
            "monthly_expenses": expenses,
            "monthly_net": income - expenses,
            "due_soon": due_soon,
            "overdue": overdue,
        }


class ClientService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self) -> list[Client]:
        return self.session.scalars(select(Client).order_by(Client.id.desc())).all()

    def get(self, client_id: int) -> Client:
        client = self.session.get(Client, client_id)
        if not client:
            raise NotFound("Client not found")
        return client

    def create(self, data: ClientIn) -> Client:
        values = data.model_dump()
        if values.get("currency"):
            values["currency"] = values["currency"].upper()
        client = Client(**values)
        self.session.add(client)
        self.session.commit()
        self.session.refresh(client)
        return client

    def update(self, client_id: int, data: ClientUpdateIn) -> Client:
        client = self.get(client_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if field == "name" and value is None:
                continue
            if field == "currency" and value:
                value = value.upper()
            setattr(client, field, value)
        self.session.commit()
        self.session.refresh(client)
        return client

    def delete(self, client_id: int) -> None:
        client = self.get(client_id)
        invoice_count = self.session.scalar(
            select(func.count(Invoice.id)).where(Invoice.client_id == client_id)
        )
        if invoice_count:
            raise ValidationError("Cannot delete client with existing invoices")
        self.session.delete(client)
        self.session.commit()

    def list_with_invoice_stats(self) -> list[dict[str, object]]:
        result: list[dict[str, object]] = []
        for client in self.list():
            total_billed = sum(inv.total_cents for inv in client.invoices)
            total_paid = sum(
                inv.total_cents
                for inv in client.invoices
                if inv.status == InvoiceStatus.paid
            )
            result.append(
                {
                    "client": client,
                    "invoice_count": len(client.invoices),
                    "total_billed": total_billed,
                    "total_paid": total_paid,
                    "outstanding": total_billed - total_paid,
                }
            )
        return result


class InvoiceService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.ledger = LedgerEngine(session)

    @staticmethod
    def effective_status(invoice: Invoice, today: date) -> InvoiceStatus:
        if invoice.status == InvoiceStatus.sent and invoice.due_date < today:
            return InvoiceStatus.overdue
        return invoice.status

    @staticmethod
    def _build_items(items: list[InvoiceItemIn]) -> tuple[list[dict], int]:
        built: list[dict] = []
        subtotal = 0
        for item in items:
            amount = _round_cents(item.quantity * item.rate_cents)
            built.append(
                {
                    "description": item.description,
                    "quantity": str(item.quantity),
                    "rate_cents": item.rate_cents,
                    "amount_cents": amount,
                }
            )
            subtotal += amount
        return built, subtotal

    @staticmethod
    def _apply_totals(invoice: Invoice, subtotal: int, tax_rate_bps: int) -> None:
        tax = _round_cents(Decimal(subtotal) * tax_rate_bps / Decimal("10000"))
        invoice.subtotal_cents = subtotal
        invoice.tax_rate_bps = tax_rate_bps
        invoice.tax_cents = tax
        invoice.total_cents = subtotal + tax

    def _next_invoice_number(self) -> str:
        # Count-based numbering assumes a single writer.
        count = self.session.scalar(select(func.count(Invoice.id))) or 0
        return f"INV-{count + 1:05d}"

    def get(self, invoice_id: int) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if not invoice:
            raise NotFound("Invoice not found")
        return invoice

    def list(
        self,
        status: Optional[InvoiceStatus] = None,
        today: Optional[date] = None,
    ) -> list[Invoice]:
        today = today or local_today()
        stmt = (
            select(Invoice)
            .options(joinedload(Invoice.client))
            .order_by(Invoice.id.desc())
        )
        invoices = self.session.scalars(stmt).all()
        if status is None:
            return invoices
        return [inv for inv in invoices if self.effective_status(inv, today) == status]

    def create(self, data: InvoiceIn) -> Invoice:
        if not self.session.get(Client, data.client_id):
            raise NotFound("Client not found")
        if data.due_date < data.issue_date:
            raise ValidationError("Due date must not be before issue date")
        items, subtotal = self._build_items(data.items)
        invoice = Invoice(
            client_id=data.client_id,
            invoice_number=self._next_invoice_number(),
            items=items,
            status=InvoiceStatus.draft,
            currency=data.currency.upper(),
            issue_date=data.issue_date,
            due_date=data.due_date,
            notes=data.notes,
        )
        self._apply_totals(invoice, subtotal, data.tax_rate_bps)
        self.session.add(invoice)
        self.session.commit()
        self.session.refresh(invoice)
        logger.info(
            f"invoice_created: id={invoice.id} number={invoice.invoice_number} "
            f"total={invoice.total_cents} currency={invoice.currency}"
        )
        return invoice

    def update(self, invoice_id: int, data: InvoiceUpdateIn) -> Invoice:
        invoice = self.get(invoice_id)
        updates = data.model_dump(exclude_unset=True)
        if data.items is not None:
            items, subtotal = self._build_items(data.items)
            invoice.items = items
        else:
            subtotal = sum(item["amount_cents"] for item in invoice.items)
        tax_rate_bps = (
            data.tax_rate_bps if data.tax_rate_bps is not None else invoice.tax_rate_bps
        )
        self._apply_totals(invoice, subtotal, tax_rate_bps)
        if updates.get("currency"):
            invoice.currency = updates["currency"].upper()
        if updates.get("due_date"):
            invoice.due_date = updates["due_date"]
        if "notes" in updates:
            invoice.notes = updates["notes"]
        self.session.commit()
        self.session.refresh(invoice)
        return invoice

    def update_status(self, invoice_id: int, data: InvoiceStatusIn) -> Invoice:
        """Set a stored status. ``overdue`` is derived from the due date."""
        invoice = self.get(invoice_id)
        if data.status == InvoiceStatus.overdue:
            raise ValidationError("Overdue status is derived from the due date")
        invoice.status = data.status
        if data.status == InvoiceStatus.paid:
            invoice.paid_at = datetime.utcnow()
        self.session.commit()
        self.session.refresh(invoice)
        return invoice

    def delete(self, invoice_id: int) -> None:
        invoice = self.get(invoice_id)
        self.session.delete(invoice)
        self.session.commit()

    def mark_as_paid(self, invoice_id: int, data: MarkPaidIn) -> Transaction:
        invoice = self.get(invoice_id)
        account = self.session.get(Account, data.account_id)
        if not account:
            raise NotFound("Account not found")
        if invoice.paid_amount_cents is not None:
            raise ValidationError("Invoice is already paid")

        converted = data.converted_amount_cents is not None
        if not converted and invoice.currency != account.currency:
            logger.warning(
                f"invoice_paid_unconverted: id={invoice.id} "
                f"invoice_currency={invoice.currency} "
                f"account_currency={account.currency}"
            )
        record_amount = (
            data.converted_amount_cents if converted else invoice.total_cents
        )
        rate_micros = (
            FxRateService.rate_to_micros(data.exchange_rate)
            if data.exchange_rate is not None
            else None
        )

        with _atomic(self.session):
            category = CategoryService(self.session).get_or_create(
                CLIENT_PAYMENTS_CATEGORY,
                CategoryType.income,
                icon="CurrencyCircleDollar",
                color="#6366f1",
                is_default=True,
            )
            invoice.status = InvoiceStatus.paid
            invoice.paid_at = datetime.utcnow()
            invoice.paid_amount_cents = record_amount
            invoice.paid_currency = account.currency
            invoice.exchange_rate_micros = rate_micros

            txn = Transaction(
                account_id=account.id,
                type=TransactionType.income,
                amount_cents=record_amount,
                category_id=category.id,
                description=f"Payment for {invoice.invoice_number}",
                date=local_today(),
                is_business_expense=True,
                tags=[],
                invoice_id=invoice.id,
                original_amount_cents=invoice.total_cents if converted else None,
                original_currency=invoice.currency if converted else None,
                exchange_rate_micros=rate_micros,
            )
            self.ledger.post(txn, source=account)
            self.session.add(txn)
            self.session.flush()
            logger.info(
                f"invoice_paid: id={invoice.id} txn={txn.id} account={account.id} "
                f"amount={record_amount} currency={account.currency}"
            )
        self.session.refresh(txn)
        return txn

    def stats(self, today: Optional[date] = None) -> dict[str, int]:
        today = today or local_today()
        stats = {
            "total": 0,
            "draft": 0,
            "sent": 0,
            "paid": 0,
            "overdue": 0,
            "total_amount": 0,
            "paid_amount": 0,
            "pending_amount": 0,
        }
        for invoice in self.session.scalars(select(Invoice)).all():
            status = self.effective_status(invoice, today)
            stats["total"] += 1
            stats[status.value] += 1
            stats["total_amount"] += invoice.total_cents
            if status == InvoiceStatus.paid:
                stats["paid_amount"] += invoice.total_cents
            else:
                stats["pending_amount"] += invoice.total_cents
        return stats


@dataclass(frozen=True)
class BudgetProgress:
    budget: Budget
    spent_cents: int
    remaining_cents: int
    percent_used: float


class BudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget:
            raise NotFound("Budget not found")
        return budget

    def list(self) -> list[Budget]:
        stmt = (
            select(Budget).options(joinedload(Budget.category)).order_by(Budget.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: BudgetIn) -> Budget:
        category = self.session.get(Category, data.category_id)
        if not category:
            raise NotFound("Category not found")
        if category.type != CategoryType.expense:
            raise ValidationError("Budgets can only be set for expense categories")
        existing = self.session.scalar(
            select(Budget).where(Budget.category_id == data.category_id)
        )
        if existing:
            raise DuplicateResourceError("A budget already exists for this category")
        budget = Budget(
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            period=data.period,
            start_date=data.start_date or local_today(),
            is_active=True,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        budget = self.get(budget_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            setattr(budget, field, value)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def toggle_active(self, budget_id: int) -> bool:
        budget = self.get(budget_id)
        budget.is_active = not budget.is_active
        self.session.commit()
        return budget.is_active

    def spent(self, budget: Budget, today: Optional[date] = None) -> int:
        """Expenses in the budget's category since the current period began.

        Account type is not consulted: credit card purchases count too.
        """
        today = today or local_today()
        start = budget_period_start(budget.period, budget.start_date, today)
        total = self.session.scalar(
            select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                Transaction.category_id == budget.category_id,
                Transaction.type == TransactionType.expense,
                Transaction.date >= start,
            )
        )
        return int(total or 0)

    def progress(self, budget: Budget, today: Optional[date] = None) -> BudgetProgress:
        spent = self.spent(budget, today)
        percent = (
            spent / budget.amount_cents * 100 if budget.amount_cents > 0 else 0.0
        )
        return BudgetProgress(
            budget=budget,
            spent_cents=spent,
            remaining_cents=budget.amount_cents - spent,
            percent_used=percent,
        )

    def list_active(self, today: Optional[date] = None) -> list[BudgetProgress]:
        return [
            self.progress(budget, today)
            for budget in self.list()
            if budget.is_active
        ]

    def summary(self, today: Optional[date] = None) -> dict[str, object]:
        rows = self.list_active(today)
        total_budgeted = _round_cents(
            sum(
                (
                    normalize_budget_to_monthly(
                        row.budget.amount_cents, row.budget.period
                    )
                    for row in rows
                ),
                Decimal("0"),
            )
        )
        total_spent = sum(row.spent_cents for row in rows)
        on_track = sum(1 for row in rows if row.spent_cents <= row.budget.amount_cents)
        return {
            "total_budgets": len(rows),
            "total_budgeted": total_budgeted,
            "total_spent": total_spent,
            "remaining": total_budgeted - total_spent,
            "on_track": on_track,
            "over_budget": len(rows) - on_track,
            "percent_used": (
                total_spent / total_budgeted * 100 if total_budgeted > 0 else 0.0
            ),
        }


@dataclass(frozen=True)
class GoalProgress:
    goal: Goal
    percent_complete: float
    remaining_cents: int
    days_remaining: Optional[int]
    is_overdue: bool
    monthly_needed_cents: Optional[int]


class GoalService:
    """Savings goals. Progress only moves through explicit contributions."""

    _CLEARABLE = frozenset({"target_date", "linked_account_id"})

    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def progress(goal: Goal, today: date) -> GoalProgress:
        target = goal.target_amount_cents
        percent = (goal.current_amount_cents / target * 100) if target > 0 else 0.0
        remaining = target - goal.current_amount_cents
        days_remaining: Optional[int] = None
        is_overdue = False
        monthly_needed: Optional[int] = None
        if goal.target_date:
            days_remaining = (goal.target_date - today).days
            is_overdue = days_remaining < 0 and not goal.is_completed
            if days_remaining > 0 and remaining > 0:
                monthly_needed = _round_cents(
                    Decimal(remaining) * 30 / Decimal(days_remaining)
                )
        return GoalProgress(
            goal=goal,
            percent_complete=percent,
            remaining_cents=remaining,
            days_remaining=days_remaining,
            is_overdue=is_overdue,
            monthly_needed_cents=monthly_needed,
        )

    def get(self, goal_id: int) -> Goal:
        goal = self.session.get(Goal, goal_id)
        if not goal:
            raise NotFound("Goal not found")
        return goal

    def list(self, today: Optional[date] = None) -> list[GoalProgress]:
        today = today or local_today()
        goals = self.session.scalars(select(Goal).order_by(Goal.id)).all()
        rows = [self.progress(goal, today) for goal in goals]
        rows.sort(
            key=lambda row: (
                row.goal.is_completed,
                row.goal.target_date is None,
                row.goal.target_date or date.max,
            )
        )
        return rows

    def list_active(self, today: Optional[date] = None) -> list[GoalProgress]:
        return [row for row in self.list(today) if not row.goal.is_completed]

    def create(self, data: GoalIn) -> Goal:
        goal = Goal(
            name=data.name.strip(),
            target_amount_cents=data.target_amount_cents,
            current_amount_cents=data.current_amount_cents,
            target_date=data.target_date,
            linked_account_id=data.linked_account_id,
            icon=data.icon,
            color=data.color,
            is_completed=False,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def update(self, goal_id: int, data: GoalUpdateIn) -> Goal:
        goal = self.get(goal_id)
        updates = data.model_dump(exclude_unset=True)
        for field, value in updates.items():
            if value is None and field not in self._CLEARABLE:
                continue
            setattr(goal, field, value)
        if (
            updates.get("current_amount_cents") is not None
            and goal.current_amount_cents >= goal.target_amount_cents
        ):
            goal.is_completed = True
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()

    def add_contribution(self, goal_id: int, amount_cents: int) -> Goal:
        goal = self.get(goal_id)
        goal.current_amount_cents += amount_cents
        goal.is_completed = goal.current_amount_cents >= goal.target_amount_cents
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def mark_complete(self, goal_id: int) -> Goal:
        goal = self.get(goal_id)
        goal.is_completed = True
        goal.current_amount_cents = goal.target_amount_cents
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def reopen(self, goal_id: int) -> Goal:
        goal = self.get(goal_id)
        goal.is_completed = False
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def summary(self) -> dict[str, object]:
        goals = self.session.scalars(select(Goal)).all()
        total_target = sum(goal.target_amount_cents for goal in goals)
        total_saved = sum(goal.current_amount_cents for goal in goals)
        completed = sum(1 for goal in goals if goal.is_completed)
        return {
            "total_goals": len(goals),
            "active_goals": len(goals) - completed,
            "completed_goals": completed,
            "total_target": total_target,
            "total_saved": total_saved,
            "total_remaining": total_target - total_saved,
            "percent_complete": (
                total_saved / total_target * 100 if total_target > 0 else 0.0
            ),
        }
