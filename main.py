import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from database import get_db
from errors import DuplicateResourceError, NotFound, ValidationError
from fx_rates import FxRateService
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
    RecurringTransaction,
    Transaction,
)
from periods import resolve_period
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountUpdateIn,
    BudgetIn,
    BudgetUpdateIn,
    CategoryIn,
    CategoryUpdateIn,
    ClientIn,
    ClientUpdateIn,
    ContributionIn,
    GoalIn,
    GoalUpdateIn,
    InvoiceIn,
    InvoiceStatusIn,
    InvoiceUpdateIn,
    MarkPaidIn,
    RecurringIn,
    RecurringUpdateIn,
    TransactionAmendIn,
    TransactionIn,
    TransactionUpdateIn,
)
from services import (
    AccountService,
    BudgetProgress,
    BudgetService,
    CategoryService,
    ClientService,
    GoalProgress,
    GoalService,
    InvoiceService,
    RecurringService,
    TransactionService,
    UpcomingRecurring,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="Personal Finance")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(NotFound)
def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(DuplicateResourceError)
def duplicate_handler(request: Request, exc: DuplicateResourceError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StaleDataError)
def stale_data_handler(request: Request, exc: StaleDataError) -> JSONResponse:
    logger.warning(f"concurrent_update_conflict: path={request.url.path}")
    return JSONResponse(
        status_code=409,
        content={"detail": "Account was modified concurrently, retry the request"},
    )


def account_out(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "balance_cents": account.balance_cents,
        "currency": account.currency,
        "is_business_account": account.is_business_account,
        "is_liability": account.is_liability,
        "color": account.color,
        "icon": account.icon,
    }


def category_out(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "icon": category.icon,
        "color": category.color,
        "is_default": category.is_default,
    }


def transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "to_account_id": txn.to_account_id,
        "type": txn.type.value,
        "amount_cents": txn.amount_cents,
        "category_id": txn.category_id,
        "category": txn.category.name if txn.category else None,
        "description": txn.description,
        "date": txn.date.isoformat(),
        "is_business_expense": txn.is_business_expense,
        "notes": txn.notes,
        "tags": list(txn.tags or []),
        "recurring_id": txn.recurring_id,
        "invoice_id": txn.invoice_id,
        "original_amount_cents": txn.original_amount_cents,
        "original_currency": txn.original_currency,
        "exchange_rate_micros": txn.exchange_rate_micros,
    }


def recurring_out(template: RecurringTransaction) -> dict[str, object]:
    return {
        "id": template.id,
        "account_id": template.account_id,
        "type": template.type.value,
        "amount_cents": template.amount_cents,
        "category_id": template.category_id,
        "description": template.description,
        "frequency": template.frequency.value,
        "next_due_date": template.next_due_date.isoformat(),
        "last_processed_at": (
            template.last_processed_at.isoformat()
            if template.last_processed_at
            else None
        ),
        "is_active": template.is_active,
        "notes": template.notes,
    }


def upcoming_out(row: UpcomingRecurring) -> dict[str, object]:
    payload = recurring_out(row.template)
    payload.update(
        {
            "days_until_due": row.status.days_until_due,
            "is_overdue": row.status.is_overdue,
            "is_due_today": row.status.is_due_today,
            "is_due_soon": row.status.is_due_soon,
        }
    )
    return payload


def client_out(client: Client) -> dict[str, object]:
    return {
        "id": client.id,
        "name": client.name,
        "email": client.email,
        "phone": client.phone,
        "address": client.address,
        "company": client.company,
        "currency": client.currency,
        "notes": client.notes,
    }


def invoice_out(invoice: Invoice, today: date) -> dict[str, object]:
    return {
        "id": invoice.id,
        "client_id": invoice.client_id,
        "client": invoice.client.name if invoice.client else None,
        "invoice_number": invoice.invoice_number,
        "items": invoice.items,
        "status": InvoiceService.effective_status(invoice, today).value,
        "currency": invoice.currency,
        "issue_date": invoice.issue_date.isoformat(),
        "due_date": invoice.due_date.isoformat(),
        "subtotal_cents": invoice.subtotal_cents,
        "tax_rate_bps": invoice.tax_rate_bps,
        "tax_cents": invoice.tax_cents,
        "total_cents": invoice.total_cents,
        "notes": invoice.notes,
        "paid_at": invoice.paid_at.isoformat() if invoice.paid_at else None,
        "paid_amount_cents": invoice.paid_amount_cents,
        "paid_currency": invoice.paid_currency,
        "exchange_rate_micros": invoice.exchange_rate_micros,
    }


def budget_out(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "category_id": budget.category_id,
        "category": budget.category.name if budget.category else None,
        "amount_cents": budget.amount_cents,
        "period": budget.period.value,
        "start_date": budget.start_date.isoformat(),
        "is_active": budget.is_active,
    }


def budget_progress_out(row: BudgetProgress) -> dict[str, object]:
    payload = budget_out(row.budget)
    payload.update(
        {
            "spent_cents": row.spent_cents,
            "remaining_cents": row.remaining_cents,
            "percent_used": round(row.percent_used, 2),
        }
    )
    return payload


def goal_out(goal: Goal) -> dict[str, object]:
    return {
        "id": goal.id,
        "name": goal.name,
        "target_amount_cents": goal.target_amount_cents,
        "current_amount_cents": goal.current_amount_cents,
        "target_date": goal.target_date.isoformat() if goal.target_date else None,
        "linked_account_id": goal.linked_account_id,
        "icon": goal.icon,
        "color": goal.color,
        "is_completed": goal.is_completed,
    }


def goal_progress_out(row: GoalProgress) -> dict[str, object]:
    payload = goal_out(row.goal)
    payload.update(
        {
            "percent_complete": round(row.percent_complete, 2),
            "remaining_cents": row.remaining_cents,
            "days_remaining": row.days_remaining,
            "is_overdue": row.is_overdue,
            "monthly_needed_cents": row.monthly_needed_cents,
        }
    )
    return payload


# Accounts


@app.get("/api/accounts")
def list_accounts(type: Optional[AccountType] = None, db: Session = Depends(get_db)):
    service = AccountService(db)
    accounts = service.list_by_type(type) if type else service.list()
    return [account_out(account) for account in accounts]


@app.get("/api/accounts/totals")
def account_totals(db: Session = Depends(get_db)):
    return AccountService(db).totals()


@app.post("/api/accounts", status_code=201)
def create_account(payload: AccountIn, db: Session = Depends(get_db)):
    return account_out(AccountService(db).create(payload))


@app.get("/api/accounts/{account_id}")
def get_account(account_id: int, db: Session = Depends(get_db)):
    return account_out(AccountService(db).get(account_id))


@app.patch("/api/accounts/{account_id}")
def update_account(
    account_id: int, payload: AccountUpdateIn, db: Session = Depends(get_db)
):
    return account_out(AccountService(db).update(account_id, payload))


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(account_id: int, db: Session = Depends(get_db)):
    AccountService(db).delete(account_id)
    return Response(status_code=204)


# Categories


@app.get("/api/categories")
def list_categories(type: Optional[CategoryType] = None, db: Session = Depends(get_db)):
    service = CategoryService(db)
    categories = service.list_by_type(type) if type else service.list()
    return [category_out(category) for category in categories]


@app.post("/api/categories", status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    return category_out(CategoryService(db).create(payload))


@app.post("/api/categories/seed")
def seed_categories(use_case: str = "personal", db: Session = Depends(get_db)):
    if use_case not in {"personal", "business"}:
        raise HTTPException(status_code=400, detail="Unknown use case")
    return {"created": CategoryService(db).seed_defaults(use_case)}


@app.patch("/api/categories/{category_id}")
def update_category(
    category_id: int, payload: CategoryUpdateIn, db: Session = Depends(get_db)
):
    return category_out(CategoryService(db).update(category_id, payload))


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    CategoryService(db).delete(category_id)
    return Response(status_code=204)


# Transactions


@app.get("/api/transactions")
def list_transactions(
    account_id: Optional[int] = None,
    period: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    service = TransactionService(db)
    if account_id is not None:
        items = service.list_by_account(account_id)
    elif period:
        try:
            window = resolve_period(period, start, end, today=local_today())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        items = service.list_by_date_range(window.start, window.end)
    else:
        items = service.list(limit=limit)
    return [transaction_out(txn) for txn in items[:limit]]


@app.get("/api/transactions/monthly-totals")
def monthly_totals(
    year: Optional[int] = None,
    month: Optional[int] = Query(default=None, ge=1, le=12),
    db: Session = Depends(get_db),
):
    today = local_today()
    return TransactionService(db).monthly_totals(
        year or today.year, month or today.month
    )


@app.post("/api/transactions", status_code=201)
def create_transaction(payload: TransactionIn, db: Session = Depends(get_db)):
    return transaction_out(TransactionService(db).create(payload))


@app.get("/api/transactions/{transaction_id}")
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    return transaction_out(TransactionService(db).get(transaction_id))


@app.patch("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int, payload: TransactionUpdateIn, db: Session = Depends(get_db)
):
    return transaction_out(TransactionService(db).update(transaction_id, payload))


@app.post("/api/transactions/{transaction_id}/amend")
def amend_transaction(
    transaction_id: int, payload: TransactionAmendIn, db: Session = Depends(get_db)
):
    return transaction_out(TransactionService(db).amend(transaction_id, payload))


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    TransactionService(db).delete(transaction_id)
    return Response(status_code=204)


# Recurring


@app.get("/api/recurring")
def list_recurring(active: bool = False, db: Session = Depends(get_db)):
    service = RecurringService(db)
    templates = service.list_active() if active else service.list()
    return [recurring_out(template) for template in templates]


@app.get("/api/recurring/upcoming")
def upcoming_recurring(
    days: int = Query(default=30, ge=0, le=366), db: Session = Depends(get_db)
):
    return [upcoming_out(row) for row in RecurringService(db).upcoming(days)]


@app.get("/api/recurring/summary")
def recurring_summary(db: Session = Depends(get_db)):
    return RecurringService(db).summary()


@app.post("/api/recurring", status_code=201)
def create_recurring(payload: RecurringIn, db: Session = Depends(get_db)):
    return recurring_out(RecurringService(db).create(payload))


@app.patch("/api/recurring/{template_id}")
def update_recurring(
    template_id: int, payload: RecurringUpdateIn, db: Session = Depends(get_db)
):
    return recurring_out(RecurringService(db).update(template_id, payload))


@app.delete("/api/recurring/{template_id}", status_code=204)
def delete_recurring(template_id: int, db: Session = Depends(get_db)):
    RecurringService(db).delete(template_id)
    return Response(status_code=204)


@app.post("/api/recurring/{template_id}/toggle")
def toggle_recurring(template_id: int, db: Session = Depends(get_db)):
    return {"is_active": RecurringService(db).toggle_active(template_id)}


@app.post("/api/recurring/{template_id}/process", status_code=201)
def process_recurring(template_id: int, db: Session = Depends(get_db)):
    return transaction_out(RecurringService(db).process(template_id))


@app.post("/api/recurring/{template_id}/skip")
def skip_recurring(template_id: int, db: Session = Depends(get_db)):
    next_due = RecurringService(db).skip(template_id)
    return {"next_due_date": next_due.isoformat()}


# Clients


@app.get("/api/clients")
def list_clients(db: Session = Depends(get_db)):
    rows = ClientService(db).list_with_invoice_stats()
    result = []
    for row in rows:
        payload = client_out(row["client"])
        payload.update(
            {
                "invoice_count": row["invoice_count"],
                "total_billed": row["total_billed"],
                "total_paid": row["total_paid"],
                "outstanding": row["outstanding"],
            }
        )
        result.append(payload)
    return result


@app.post("/api/clients", status_code=201)
def create_client(payload: ClientIn, db: Session = Depends(get_db)):
    return client_out(ClientService(db).create(payload))


@app.patch("/api/clients/{client_id}")
def update_client(
    client_id: int, payload: ClientUpdateIn, db: Session = Depends(get_db)
):
    return client_out(ClientService(db).update(client_id, payload))


@app.delete("/api/clients/{client_id}", status_code=204)
def delete_client(client_id: int, db: Session = Depends(get_db)):
    ClientService(db).delete(client_id)
    return Response(status_code=204)


# Invoices


@app.get("/api/invoices")
def list_invoices(
    status: Optional[InvoiceStatus] = None, db: Session = Depends(get_db)
):
    today = local_today()
    invoices = InvoiceService(db).list(status=status, today=today)
    return [invoice_out(invoice, today) for invoice in invoices]


@app.get("/api/invoices/stats")
def invoice_stats(db: Session = Depends(get_db)):
    return InvoiceService(db).stats()


@app.post("/api/invoices", status_code=201)
def create_invoice(payload: InvoiceIn, db: Session = Depends(get_db)):
    return invoice_out(InvoiceService(db).create(payload), local_today())


@app.get("/api/invoices/{invoice_id}")
def get_invoice(invoice_id: int, db: Session = Depends(get_db)):
    return invoice_out(InvoiceService(db).get(invoice_id), local_today())


@app.patch("/api/invoices/{invoice_id}")
def update_invoice(
    invoice_id: int, payload: InvoiceUpdateIn, db: Session = Depends(get_db)
):
    return invoice_out(InvoiceService(db).update(invoice_id, payload), local_today())


@app.delete("/api/invoices/{invoice_id}", status_code=204)
def delete_invoice(invoice_id: int, db: Session = Depends(get_db)):
    InvoiceService(db).delete(invoice_id)
    return Response(status_code=204)


@app.post("/api/invoices/{invoice_id}/status")
def update_invoice_status(
    invoice_id: int, payload: InvoiceStatusIn, db: Session = Depends(get_db)
):
    invoice = InvoiceService(db).update_status(invoice_id, payload)
    return invoice_out(invoice, local_today())


@app.post("/api/invoices/{invoice_id}/pay", status_code=201)
def pay_invoice(invoice_id: int, payload: MarkPaidIn, db: Session = Depends(get_db)):
    return transaction_out(InvoiceService(db).mark_as_paid(invoice_id, payload))


# Budgets


@app.get("/api/budgets")
def list_budgets(active: bool = False, db: Session = Depends(get_db)):
    service = BudgetService(db)
    if active:
        return [budget_progress_out(row) for row in service.list_active()]
    return [budget_out(budget) for budget in service.list()]


@app.get("/api/budgets/summary")
def budget_summary(db: Session = Depends(get_db)):
    return BudgetService(db).summary()


@app.post("/api/budgets", status_code=201)
def create_budget(payload: BudgetIn, db: Session = Depends(get_db)):
    return budget_out(BudgetService(db).create(payload))


@app.patch("/api/budgets/{budget_id}")
def update_budget(
    budget_id: int, payload: BudgetUpdateIn, db: Session = Depends(get_db)
):
    return budget_out(BudgetService(db).update(budget_id, payload))


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(budget_id: int, db: Session = Depends(get_db)):
    BudgetService(db).delete(budget_id)
    return Response(status_code=204)


@app.post("/api/budgets/{budget_id}/toggle")
def toggle_budget(budget_id: int, db: Session = Depends(get_db)):
    return {"is_active": BudgetService(db).toggle_active(budget_id)}


# Goals


@app.get("/api/goals")
def list_goals(active: bool = False, db: Session = Depends(get_db)):
    service = GoalService(db)
    rows = service.list_active() if active else service.list()
    return [goal_progress_out(row) for row in rows]


@app.get("/api/goals/summary")
def goal_summary(db: Session = Depends(get_db)):
    return GoalService(db).summary()


@app.post("/api/goals", status_code=201)
def create_goal(payload: GoalIn, db: Session = Depends(get_db)):
    return goal_out(GoalService(db).create(payload))


@app.patch("/api/goals/{goal_id}")
def update_goal(goal_id: int, payload: GoalUpdateIn, db: Session = Depends(get_db)):
    return goal_out(GoalService(db).update(goal_id, payload))


@app.delete("/api/goals/{goal_id}", status_code=204)
def delete_goal(goal_id: int, db: Session = Depends(get_db)):
    GoalService(db).delete(goal_id)
    return Response(status_code=204)


@app.post("/api/goals/{goal_id}/contribute")
def contribute_to_goal(
    goal_id: int, payload: ContributionIn, db: Session = Depends(get_db)
):
    return goal_out(GoalService(db).add_contribution(goal_id, payload.amount_cents))


@app.post("/api/goals/{goal_id}/complete")
def complete_goal(goal_id: int, db: Session = Depends(get_db)):
    return goal_out(GoalService(db).mark_complete(goal_id))


@app.post("/api/goals/{goal_id}/reopen")
def reopen_goal(goal_id: int, db: Session = Depends(get_db)):
    return goal_out(GoalService(db).reopen(goal_id))


# FX


@app.get("/api/fx/rate")
def fx_rate(
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
    on_date: Optional[date] = Query(default=None, alias="date"),
):
    rate = FxRateService().get_rate(from_currency, to_currency, on_date)
    if rate is None:
        raise HTTPException(status_code=502, detail="Exchange rate unavailable")
    return {
        "from": from_currency.upper(),
        "to": to_currency.upper(),
        "rate": str(rate),
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
