from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    AccountType,
    BudgetPeriod,
    CategoryType,
    Frequency,
    InvoiceStatus,
    TransactionType,
)


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    balance_cents: int = 0
    currency: str = Field(..., min_length=3, max_length=3)
    is_business_account: bool = False
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=40)


class AccountUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    balance_cents: Optional[int] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    is_business_account: Optional[bool] = None
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=40)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    icon: str = Field(default="Tag", max_length=40)
    color: str = Field(default="#6366f1", max_length=9)
    is_default: bool = False


class CategoryUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=40)
    color: Optional[str] = Field(default=None, max_length=9)


class TransactionIn(BaseModel):
    account_id: int
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    date: date
    description: str = Field(..., min_length=1, max_length=200)
    category_id: Optional[int] = None
    to_account_id: Optional[int] = None
    is_business_expense: bool = False
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


class TransactionUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category_id: Optional[int] = None
    is_business_expense: Optional[bool] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None


class TransactionAmendIn(BaseModel):
    account_id: int
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    date: date
    to_account_id: Optional[int] = None


class RecurringIn(BaseModel):
    account_id: int
    type: CategoryType
    amount_cents: int = Field(..., ge=0)
    category_id: Optional[int] = None
    description: str = Field(..., min_length=1, max_length=200)
    frequency: Frequency
    next_due_date: date
    notes: Optional[str] = None


class RecurringUpdateIn(BaseModel):
    account_id: Optional[int] = None
    type: Optional[CategoryType] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    frequency: Optional[Frequency] = None
    next_due_date: Optional[date] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class ClientIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=40)
    address: Optional[str] = None
    company: Optional[str] = Field(default=None, max_length=120)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    notes: Optional[str] = None


class ClientUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    email: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=40)
    address: Optional[str] = None
    company: Optional[str] = Field(default=None, max_length=120)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    notes: Optional[str] = None


class InvoiceItemIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    quantity: Decimal = Field(..., gt=0)
    rate_cents: int = Field(..., ge=0)


class InvoiceIn(BaseModel):
    client_id: int
    items: list[InvoiceItemIn] = Field(..., min_length=1)
    currency: str = Field(..., min_length=3, max_length=3)
    issue_date: date
    due_date: date
    tax_rate_bps: int = Field(default=0, ge=0, le=100_000)
    notes: Optional[str] = None


class InvoiceUpdateIn(BaseModel):
    items: Optional[list[InvoiceItemIn]] = Field(default=None, min_length=1)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    due_date: Optional[date] = None
    tax_rate_bps: Optional[int] = Field(default=None, ge=0, le=100_000)
    notes: Optional[str] = None


class InvoiceStatusIn(BaseModel):
    status: InvoiceStatus


class MarkPaidIn(BaseModel):
    account_id: int
    converted_amount_cents: Optional[int] = Field(default=None, ge=0)
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)


class BudgetIn(BaseModel):
    category_id: int
    amount_cents: int = Field(..., ge=0)
    period: BudgetPeriod
    start_date: Optional[date] = None


class BudgetUpdateIn(BaseModel):
    amount_cents: Optional[int] = Field(default=None, ge=0)
    period: Optional[BudgetPeriod] = None
    is_active: Optional[bool] = None


class GoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    target_amount_cents: int = Field(..., ge=0)
    current_amount_cents: int = Field(default=0, ge=0)
    target_date: Optional[date] = None
    linked_account_id: Optional[int] = None
    icon: str = Field(default="Target", max_length=40)
    color: str = Field(default="#6366f1", max_length=9)


class GoalUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    target_amount_cents: Optional[int] = Field(default=None, ge=0)
    current_amount_cents: Optional[int] = Field(default=None, ge=0)
    target_date: Optional[date] = None
    linked_account_id: Optional[int] = None
    icon: Optional[str] = Field(default=None, max_length=40)
    color: Optional[str] = Field(default=None, max_length=9)


class ContributionIn(BaseModel):
    amount_cents: int
