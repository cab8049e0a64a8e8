"""initial schema

Revision ID: 202601050900
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202601050900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "bank",
                "credit_card",
                "cash",
                "investment",
                "asset",
                name="accounttype",
            ),
            nullable=False,
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column(
            "is_business_account",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("color", sa.String(length=9)),
        sa.Column("icon", sa.String(length=40)),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_accounts_type", "accounts", ["type"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="categorytype"), nullable=False
        ),
        sa.Column("icon", sa.String(length=40), nullable=False, server_default="Tag"),
        sa.Column(
            "color", sa.String(length=9), nullable=False, server_default="#6366f1"
        ),
        sa.Column(
            "is_default", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
    )
    op.create_index("ix_categories_type", "categories", ["type"])

    op.create_table(
        "recurring_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="categorytype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column(
            "frequency",
            sa.Enum(
                "daily", "weekly", "biweekly", "monthly", "yearly", name="frequency"
            ),
            nullable=False,
        ),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column("last_processed_at", sa.DateTime()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )
    op.create_index("ix_recurring_account", "recurring_transactions", ["account_id"])
    op.create_index(
        "ix_recurring_next_due", "recurring_transactions", ["next_due_date"]
    )
    op.create_index("ix_recurring_active", "recurring_transactions", ["is_active"])

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=200)),
        sa.Column("phone", sa.String(length=40)),
        sa.Column("address", sa.Text()),
        sa.Column("company", sa.String(length=120)),
        sa.Column("currency", sa.String(length=3)),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False
        ),
        sa.Column("invoice_number", sa.String(length=20), nullable=False),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("draft", "sent", "paid", "overdue", name="invoicestatus"),
            nullable=False,
            server_default="draft",
        ),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_rate_bps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text()),
        sa.Column("paid_at", sa.DateTime()),
        sa.Column("paid_amount_cents", sa.Integer()),
        sa.Column("paid_currency", sa.String(length=3)),
        sa.Column("exchange_rate_micros", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint("tax_rate_bps >= 0", name="ck_invoice_tax_rate_positive"),
    )
    op.create_index("ix_invoices_client", "invoices", ["client_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])
    op.create_index("ix_invoices_due_date", "invoices", ["due_date"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("to_account_id", sa.Integer()),
        sa.Column(
            "type",
            sa.Enum("income", "expense", "transfer", name="transactiontype"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "is_business_expense",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("notes", sa.Text()),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column(
            "recurring_id",
            sa.Integer(),
            sa.ForeignKey("recurring_transactions.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "invoice_id",
            sa.Integer(),
            sa.ForeignKey("invoices.id", ondelete="SET NULL"),
        ),
        sa.Column("original_amount_cents", sa.Integer()),
        sa.Column("original_currency", sa.String(length=3)),
        sa.Column("exchange_rate_micros", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_transactions_amount_positive"
        ),
    )
    op.create_index("ix_transactions_account", "transactions", ["account_id"])
    op.create_index("ix_transactions_to_account", "transactions", ["to_account_id"])
    op.create_index("ix_transactions_date", "transactions", ["date"])
    op.create_index("ix_transactions_category", "transactions", ["category_id"])
    op.create_index("ix_transactions_type", "transactions", ["type"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "period",
            sa.Enum("weekly", "monthly", "yearly", name="budgetperiod"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("category_id", name="uq_budget_category"),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
    )
    op.create_index("ix_budgets_active", "budgets", ["is_active"])

    op.create_table(
        "goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("target_amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "current_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("target_date", sa.Date()),
        sa.Column("linked_account_id", sa.Integer()),
        sa.Column(
            "icon", sa.String(length=40), nullable=False, server_default="Target"
        ),
        sa.Column(
            "color", sa.String(length=9), nullable=False, server_default="#6366f1"
        ),
        sa.Column(
            "is_completed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
    )
    op.create_index("ix_goals_completed", "goals", ["is_completed"])


def downgrade() -> None:
    op.drop_index("ix_goals_completed", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_budgets_active", table_name="budgets")
    op.drop_table("budgets")
    for name in (
        "ix_transactions_type",
        "ix_transactions_category",
        "ix_transactions_date",
        "ix_transactions_to_account",
        "ix_transactions_account",
    ):
        op.drop_index(name, table_name="transactions")
    op.drop_table("transactions")
    for name in ("ix_invoices_due_date", "ix_invoices_status", "ix_invoices_client"):
        op.drop_index(name, table_name="invoices")
    op.drop_table("invoices")
    op.drop_table("clients")
    for name in (
        "ix_recurring_active",
        "ix_recurring_next_due",
        "ix_recurring_account",
    ):
        op.drop_index(name, table_name="recurring_transactions")
    op.drop_table("recurring_transactions")
    op.drop_index("ix_categories_type", table_name="categories")
    op.drop_table("categories")
    op.drop_index("ix_accounts_type", table_name="accounts")
    op.drop_table("accounts")
