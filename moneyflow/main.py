from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.engine import Engine

from moneyflow import (
    assistant,
    bill_service,
    budget_service,
    dashboard_service,
    goal_service,
    investment_service,
    ledger_service,
    notifications,
)
from moneyflow.assistant import TextGenerator
from moneyflow.config import settings
from moneyflow.db import create_db_engine, init_db, users
from moneyflow.errors import LedgerError
from moneyflow.logging_setup import configure_logging
from moneyflow.notifications import DEFAULT_NOTIFIER, Notifier
from moneyflow.portfolio import Holding

# Keeps `date` usable as a type inside models that also have a `date` field.
DateValue = date


app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = create_db_engine(settings.database_url)


@app.on_event("startup")
def startup() -> None:
    configure_logging(settings.log_level)
    if settings.create_tables_on_startup:
        init_db(engine)


@app.exception_handler(LedgerError)
def ledger_error_handler(request, exc: LedgerError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def get_engine() -> Engine:
    return engine


def get_notifier() -> Notifier:
    return DEFAULT_NOTIFIER


def get_text_generator() -> Optional[TextGenerator]:
    # No provider ships with the service; deployments override this dependency.
    return None


def current_user(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    engine: Engine = Depends(get_engine),
) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def _validated(payload_cls, payload):
    try:
        return payload_cls.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _strip(value: str | None) -> str | None:
    return value.strip() if value else None


# Users


class UserPayload(BaseModel):
    email: str
    name: str | None = None
    home_currency: str | None = None


class UserResponse(BaseModel):
    id: int
    email: str
    name: str | None = None
    home_currency: str | None = None
    created_at: datetime | None = None


# Accounts


class AccountPayload(BaseModel):
    name: str
    type: str
    balance: Decimal = Decimal("0")
    currency: str | None = None
    institution: str | None = None
    include_in_total: bool = True

    @classmethod
    def validate_payload(cls, payload: "AccountPayload") -> "AccountPayload":
        payload.name = payload.name.strip()
        payload.type = payload.type.strip().lower()
        payload.institution = _strip(payload.institution)
        if not payload.name:
            raise ValueError("Account name required.")
        return payload


class AccountUpdatePayload(BaseModel):
    name: str | None = None
    type: str | None = None
    currency: str | None = None
    institution: str | None = None
    include_in_total: bool | None = None


class BalancePayload(BaseModel):
    balance: Decimal


class AccountResponse(BaseModel):
    id: int
    user_id: int
    name: str
    type: str
    balance: Decimal
    currency: str
    institution: str | None = None
    include_in_total: bool
    is_active: bool
    created_at: datetime | None = None


class TypeTotalResponse(BaseModel):
    total: Decimal
    count: int


class AccountSummaryResponse(BaseModel):
    total_balance: Decimal
    account_count: int
    by_type: dict[str, TypeTotalResponse]


# Transactions


class TransactionPayload(BaseModel):
    account_id: int
    type: str
    amount: Decimal
    category: str | None = None
    date: Optional[DateValue] = None
    description: str | None = None
    merchant: str | None = None
    notes: str | None = None
    recurring_frequency: str | None = None
    recurring_next_date: Optional[DateValue] = None
    recurring_end_date: Optional[DateValue] = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.type = payload.type.strip().lower()
        payload.category = _strip(payload.category)
        payload.description = _strip(payload.description)
        payload.merchant = _strip(payload.merchant)
        payload.notes = _strip(payload.notes)
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        return payload


class TransactionUpdatePayload(BaseModel):
    account_id: int | None = None
    type: str | None = None
    amount: Decimal | None = None
    category: str | None = None
    date: Optional[DateValue] = None
    description: str | None = None
    merchant: str | None = None
    notes: str | None = None
    recurring_frequency: str | None = None
    recurring_next_date: Optional[DateValue] = None
    recurring_end_date: Optional[DateValue] = None

    @classmethod
    def validate_payload(cls, payload: "TransactionUpdatePayload") -> "TransactionUpdatePayload":
        if payload.amount is not None and payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        for key in ("account_id", "type", "amount", "category", "date"):
            if key in payload.model_fields_set and getattr(payload, key) is None:
                raise ValueError(f"{key} cannot be null.")
        return payload


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    account_id: int
    type: str
    amount: Decimal
    category: str
    date: DateValue
    description: str | None = None
    merchant: str | None = None
    notes: str | None = None
    is_recurring: bool
    recurring_frequency: str | None = None
    recurring_next_date: Optional[DateValue] = None
    recurring_end_date: Optional[DateValue] = None
    created_at: datetime | None = None


class TransactionListResponse(BaseModel):
    items: list[TransactionResponse]
    total: int
    page: int
    limit: int


class TypeStatsResponse(BaseModel):
    total: Decimal
    count: int
    average: Decimal


class CategorySpendingResponse(BaseModel):
    category: str
    total: Decimal
    count: int
    percentage: int


class MerchantResponse(BaseModel):
    merchant: str
    total: Decimal
    count: int


class TransactionStatsResponse(BaseModel):
    period_days: int
    by_type: dict[str, TypeStatsResponse]
    by_category: list[CategorySpendingResponse]
    top_merchants: list[MerchantResponse]


# Budgets


class BudgetPayload(BaseModel):
    name: str
    category: str
    amount: Decimal
    period: str = "monthly"
    start_date: date | None = None
    end_date: date | None = None
    alert_threshold: int = 80

    @classmethod
    def validate_payload(cls, payload: "BudgetPayload") -> "BudgetPayload":
        payload.name = payload.name.strip()
        payload.category = payload.category.strip()
        payload.period = payload.period.strip().lower()
        if payload.amount <= 0:
            raise ValueError("Budget amount must be greater than zero.")
        return payload


class BudgetUpdatePayload(BaseModel):
    name: str | None = None
    category: str | None = None
    amount: Decimal | None = None
    period: str | None = None
    end_date: date | None = None
    alert_threshold: int | None = None
    is_active: bool | None = None


class BudgetResponse(BaseModel):
    id: int
    name: str
    category: str
    amount: Decimal
    period: str
    start_date: date
    end_date: date | None = None
    alert_threshold: int
    is_active: bool
    period_start: date
    spent: Decimal
    remaining: Decimal
    percent_used: int
    status: str


class BudgetSummaryResponse(BaseModel):
    total_budgets: int
    total_budgeted: Decimal
    total_spent: Decimal
    total_remaining: Decimal
    on_track: int
    warning: int
    exceeded: int
    percent_used: int


def _budget_response(item: budget_service.BudgetWithStatus) -> BudgetResponse:
    status = item.status
    return BudgetResponse(
        **dict(item.budget),
        period_start=status.period_start,
        spent=status.spent,
        remaining=status.remaining,
        percent_used=status.percent_used,
        status=status.status,
    )


# Bills


class BillPayload(BaseModel):
    name: str
    amount: Decimal
    category: str
    due_date: date
    frequency: str = "monthly"
    linked_account_id: int | None = None
    auto_pay: bool = False
    reminder_days: int = 3
    notes: str | None = None

    @classmethod
    def validate_payload(cls, payload: "BillPayload") -> "BillPayload":
        payload.name = payload.name.strip()
        payload.category = payload.category.strip()
        payload.notes = _strip(payload.notes)
        if payload.amount <= 0:
            raise ValueError("Bill amount must be greater than zero.")
        return payload


class BillUpdatePayload(BaseModel):
    name: str | None = None
    amount: Decimal | None = None
    category: str | None = None
    due_date: date | None = None
    frequency: str | None = None
    linked_account_id: int | None = None
    auto_pay: bool | None = None
    reminder_days: int | None = None
    notes: str | None = None
    is_active: bool | None = None


class BillResponse(BaseModel):
    id: int
    name: str
    amount: Decimal
    category: str
    due_date: date
    frequency: str
    status: str
    is_paid: bool
    paid_date: date | None = None
    linked_account_id: int | None = None
    auto_pay: bool
    reminder_days: int
    notes: str | None = None
    is_active: bool
    display_status: str
    days_until_due: int


class PaidBillResponse(BaseModel):
    bill: BillResponse
    next_bill: BillResponse | None = None


class BillsSummaryResponse(BaseModel):
    unpaid_count: int
    unpaid_total: Decimal
    paid_count: int
    paid_total: Decimal
    overdue_count: int
    overdue_total: Decimal
    total_monthly: Decimal


def _bill_response(row, today: date) -> BillResponse:
    view = bill_service.describe(row, today)
    return BillResponse(
        **dict(row), display_status=view.status, days_until_due=view.days_until_due
    )


# Goals


class GoalPayload(BaseModel):
    name: str
    target_amount: Decimal
    target_date: date
    category: str = "other"
    description: str | None = None
    priority: str = "medium"
    current_amount: Decimal = Decimal("0")
    linked_account_id: int | None = None

    @classmethod
    def validate_payload(cls, payload: "GoalPayload") -> "GoalPayload":
        payload.name = payload.name.strip()
        payload.priority = payload.priority.strip().lower()
        payload.description = _strip(payload.description)
        if payload.target_amount <= 0:
            raise ValueError("Target amount must be greater than zero.")
        if payload.current_amount < 0:
            raise ValueError("Current amount cannot be negative.")
        return payload


class GoalUpdatePayload(BaseModel):
    name: str | None = None
    description: str | None = None
    target_amount: Decimal | None = None
    category: str | None = None
    target_date: date | None = None
    priority: str | None = None
    linked_account_id: int | None = None
    is_active: bool | None = None


class AmountPayload(BaseModel):
    amount: Decimal

    @classmethod
    def validate_payload(cls, payload: "AmountPayload") -> "AmountPayload":
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        return payload


class GoalResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    target_amount: Decimal
    current_amount: Decimal
    category: str
    target_date: date
    priority: str
    is_completed: bool
    completed_at: datetime | None = None
    linked_account_id: int | None = None
    is_active: bool
    created_at: datetime | None = None
    progress: int
    remaining: Decimal
    days_left: int
    monthly_required: Decimal
    status: str
    completed_now: bool = False


class GoalsSummaryResponse(BaseModel):
    total_goals: int
    total_target: Decimal
    total_saved: Decimal
    overall_progress: int
    completed: int
    in_progress: int
    on_track: int
    behind: int
    at_risk: int


def _goal_response(item: goal_service.GoalWithProgress, completed_now: bool = False) -> GoalResponse:
    progress = item.progress
    return GoalResponse(
        **dict(item.goal),
        progress=progress.progress,
        remaining=progress.remaining,
        days_left=progress.days_left,
        monthly_required=progress.monthly_required,
        status=progress.status,
        completed_now=completed_now,
    )


# Investments


class InvestmentPayload(BaseModel):
    name: str
    type: str
    shares: Decimal
    purchase_price: Decimal
    purchase_date: date | None = None
    symbol: str | None = None
    current_price: Decimal | None = None
    linked_account_id: int | None = None
    notes: str | None = None

    @classmethod
    def validate_payload(cls, payload: "InvestmentPayload") -> "InvestmentPayload":
        payload.name = payload.name.strip()
        payload.type = payload.type.strip().lower()
        payload.symbol = _strip(payload.symbol)
        if payload.shares <= 0:
            raise ValueError("Shares must be greater than zero.")
        return payload


class InvestmentUpdatePayload(BaseModel):
    name: str | None = None
    symbol: str | None = None
    type: str | None = None
    shares: Decimal | None = None
    purchase_price: Decimal | None = None
    current_price: Decimal | None = None
    purchase_date: date | None = None
    linked_account_id: int | None = None
    notes: str | None = None
    is_active: bool | None = None


class InvestmentResponse(BaseModel):
    id: int
    name: str
    symbol: str | None = None
    type: str
    shares: Decimal
    purchase_price: Decimal
    current_price: Decimal | None = None
    purchase_date: date
    linked_account_id: int | None = None
    notes: str | None = None
    is_active: bool
    total_invested: Decimal
    current_value: Decimal
    gain_loss: Decimal
    gain_loss_percent: Decimal


class TypeBreakdownResponse(BaseModel):
    invested: Decimal
    current: Decimal
    count: int


class PortfolioResponse(BaseModel):
    total_investments: int
    total_invested: Decimal
    current_value: Decimal
    total_gain_loss: Decimal
    total_gain_loss_percent: Decimal
    by_type: dict[str, TypeBreakdownResponse]


def _investment_response(row) -> InvestmentResponse:
    holding: Holding = investment_service.to_holding(row)
    return InvestmentResponse(
        **dict(row),
        total_invested=holding.total_invested,
        current_value=holding.current_value,
        gain_loss=holding.gain_loss,
        gain_loss_percent=holding.gain_loss_percent,
    )


# Notifications


class NotificationResponse(BaseModel):
    id: int
    type: str
    title: str
    message: str
    priority: str
    data: dict | None = None
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime | None = None


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    total: int
    unread: int
    page: int
    limit: int


class CountResponse(BaseModel):
    count: int


# Dashboard and assistant


class TrendPointResponse(BaseModel):
    date: DateValue
    income: Decimal
    expense: Decimal


class DashboardResponse(BaseModel):
    as_of: date
    total_balance: Decimal
    account_count: int
    monthly_income: Decimal
    monthly_expense: Decimal
    monthly_net: Decimal
    income_change: int
    expense_change: int
    spending_by_category: list[CategorySpendingResponse]
    trend: list[TrendPointResponse]
    top_accounts: list[AccountResponse]
    recent_transactions: list[TransactionResponse]
    budgets: BudgetSummaryResponse


class AnalyticsResponse(BaseModel):
    start_date: date
    end_date: date
    income: Decimal
    expense: Decimal
    net: Decimal
    spending_by_category: list[CategorySpendingResponse]
    trend: list[TrendPointResponse]


class CategorizePayload(BaseModel):
    description: str | None = None
    merchant: str | None = None
    amount: Decimal


class CategorizeResponse(BaseModel):
    category: str


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatPayload(BaseModel):
    message: str
    history: list[ChatMessage] = []

    @classmethod
    def validate_payload(cls, payload: "ChatPayload") -> "ChatPayload":
        payload.message = payload.message.strip()
        if not payload.message:
            raise ValueError("Message required.")
        return payload


class AssistantResponse(BaseModel):
    text: str


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/users", response_model=UserResponse)
def create_user(payload: UserPayload, engine: Engine = Depends(get_engine)) -> UserResponse:
    row = ledger_service.create_user(engine, payload.email, payload.name, payload.home_currency)
    return UserResponse(**dict(row))


@app.get("/users/me", response_model=UserResponse)
def get_me(
    user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> UserResponse:
    return UserResponse(**dict(ledger_service.get_user(engine, user_id)))


@app.get("/accounts", response_model=list[AccountResponse])
def list_accounts(
    include_inactive: bool = Query(False),
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
) -> list[AccountResponse]:
    rows = ledger_service.list_accounts(engine, user_id, include_inactive=include_inactive)
    return [AccountResponse(**dict(row)) for row in rows]


@app.get("/accounts/summary", response_model=AccountSummaryResponse)
def account_summary(
    user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> AccountSummaryResponse:
    totals = ledger_service.account_summary(engine, user_id)
    return AccountSummaryResponse(
        total_balance=totals.total,
        account_count=totals.count,
        by_type={key: TypeTotalResponse(**asdict(value)) for key, value in totals.by_type.items()},
    )


@app.post("/accounts", response_model=AccountResponse)
def create_account(
    payload: AccountPayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> AccountResponse:
    payload = _validated(AccountPayload, payload)
    row = ledger_service.create_account(
        engine,
        user_id,
        name=payload.name,
        type=payload.type,
        balance=payload.balance,
        currency=payload.currency,
        institution=payload.institution,
        include_in_total=payload.include_in_total,
        notifier=notifier,
    )
    return AccountResponse(**dict(row))


@app.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: int, user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> AccountResponse:
    return AccountResponse(**dict(ledger_service.get_account(engine, user_id, account_id)))


@app.put("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: int,
    payload: AccountUpdatePayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> AccountResponse:
    row = ledger_service.update_account(
        engine, user_id, account_id, payload.model_dump(exclude_unset=True), notifier=notifier
    )
    return AccountResponse(**dict(row))


@app.put("/accounts/{account_id}/balance", response_model=AccountResponse)
def set_account_balance(
    account_id: int,
    payload: BalancePayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> AccountResponse:
    row = ledger_service.set_account_balance(
        engine, user_id, account_id, payload.balance, notifier=notifier
    )
    return AccountResponse(**dict(row))


@app.delete("/accounts/{account_id}")
def delete_account(
    account_id: int,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    ledger_service.delete_account(engine, user_id, account_id, notifier=notifier)
    return {"status": "deleted"}


@app.get("/transactions", response_model=TransactionListResponse)
def list_transactions(
    type: str | None = Query(None),
    category: str | None = Query(None),
    account_id: int | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
) -> TransactionListResponse:
    rows, total = ledger_service.list_transactions(
        engine,
        user_id,
        type=type,
        category=category,
        account_id=account_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
        page=page,
        limit=limit,
    )
    return TransactionListResponse(
        items=[TransactionResponse(**dict(row)) for row in rows], total=total, page=page, limit=limit
    )


@app.get("/transactions/stats", response_model=TransactionStatsResponse)
def transaction_stats(
    days: int = Query(30, ge=1, le=366),
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
) -> TransactionStatsResponse:
    stats = ledger_service.transaction_stats(engine, user_id, days=days)
    return TransactionStatsResponse(**asdict(stats))


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
    text_generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> TransactionResponse:
    payload = _validated(TransactionPayload, payload)
    row = ledger_service.create_transaction(
        engine,
        user_id,
        notifier=notifier,
        text_generator=text_generator,
        **payload.model_dump(),
    )
    return TransactionResponse(**dict(row))


@app.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: int, user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> TransactionResponse:
    return TransactionResponse(**dict(ledger_service.get_transaction(engine, user_id, transaction_id)))


@app.put("/transactions/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdatePayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> TransactionResponse:
    payload = _validated(TransactionUpdatePayload, payload)
    row = ledger_service.update_transaction(
        engine, user_id, transaction_id, payload.model_dump(exclude_unset=True), notifier=notifier
    )
    return TransactionResponse(**dict(row))


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    ledger_service.delete_transaction(engine, user_id, transaction_id, notifier=notifier)
    return {"status": "deleted"}


@app.get("/budgets", response_model=list[BudgetResponse])
def list_budgets(
    period: str | None = Query(None),
    include_inactive: bool = Query(False),
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
) -> list[BudgetResponse]:
    items = budget_service.get_budgets_with_status(
        engine, user_id, active_only=not include_inactive, period=period
    )
    return [_budget_response(item) for item in items]


@app.get("/budgets/summary", response_model=BudgetSummaryResponse)
def budget_summary(
    user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> BudgetSummaryResponse:
    return BudgetSummaryResponse(**asdict(budget_service.budget_summary(engine, user_id)))


@app.post("/budgets", response_model=BudgetResponse)
def create_budget(
    payload: BudgetPayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> BudgetResponse:
    payload = _validated(BudgetPayload, payload)
    item = budget_service.create_budget(engine, user_id, notifier=notifier, **payload.model_dump())
    return _budget_response(item)


@app.get("/budgets/{budget_id}", response_model=BudgetResponse)
def get_budget(
    budget_id: int, user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> BudgetResponse:
    return _budget_response(budget_service.get_budget(engine, user_id, budget_id))


@app.put("/budgets/{budget_id}", response_model=BudgetResponse)
def update_budget(
    budget_id: int,
    payload: BudgetUpdatePayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> BudgetResponse:
    item = budget_service.update_budget(
        engine, user_id, budget_id, payload.model_dump(exclude_unset=True), notifier=notifier
    )
    return _budget_response(item)


@app.delete("/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    budget_service.delete_budget(engine, user_id, budget_id, notifier=notifier)
    return {"status": "deleted"}


@app.get("/bills", response_model=list[BillResponse])
def list_bills(
    is_paid: bool | None = Query(None),
    category: str | None = Query(None),
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
) -> list[BillResponse]:
    today = date.today()
    rows = bill_service.list_bills(engine, user_id, is_paid=is_paid, category=category)
    return [_bill_response(row, today) for row in rows]


@app.get("/bills/upcoming", response_model=list[BillResponse])
def upcoming_bills(
    days: int = Query(7, ge=0, le=365),
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
) -> list[BillResponse]:
    today = date.today()
    return [_bill_response(row, today) for row in bill_service.upcoming_bills(engine, user_id, days, today)]


@app.get("/bills/overdue", response_model=list[BillResponse])
def overdue_bills(
    user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> list[BillResponse]:
    today = date.today()
    return [_bill_response(row, today) for row in bill_service.overdue_bills(engine, user_id, today)]


@app.get("/bills/summary", response_model=BillsSummaryResponse)
def bills_summary(
    user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> BillsSummaryResponse:
    return BillsSummaryResponse(**asdict(bill_service.bills_summary(engine, user_id)))


@app.post("/bills", response_model=BillResponse)
def create_bill(
    payload: BillPayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> BillResponse:
    payload = _validated(BillPayload, payload)
    row = bill_service.create_bill(engine, user_id, notifier=notifier, **payload.model_dump())
    return _bill_response(row, date.today())


@app.get("/bills/{bill_id}", response_model=BillResponse)
def get_bill(
    bill_id: int, user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> BillResponse:
    return _bill_response(bill_service.get_bill(engine, user_id, bill_id), date.today())


@app.put("/bills/{bill_id}", response_model=BillResponse)
def update_bill(
    bill_id: int,
    payload: BillUpdatePayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> BillResponse:
    row = bill_service.update_bill(
        engine, user_id, bill_id, payload.model_dump(exclude_unset=True), notifier=notifier
    )
    return _bill_response(row, date.today())


@app.post("/bills/{bill_id}/pay", response_model=PaidBillResponse)
def pay_bill(
    bill_id: int,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> PaidBillResponse:
    today = date.today()
    result = bill_service.pay_bill(engine, user_id, bill_id, as_of=today, notifier=notifier)
    return PaidBillResponse(
        bill=_bill_response(result.bill, today),
        next_bill=_bill_response(result.next_bill, today) if result.next_bill is not None else None,
    )


@app.delete("/bills/{bill_id}")
def delete_bill(
    bill_id: int,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    bill_service.delete_bill(engine, user_id, bill_id, notifier=notifier)
    return {"status": "deleted"}


@app.get("/goals", response_model=list[GoalResponse])
def list_goals(
    category: str | None = Query(None),
    is_completed: bool | None = Query(None),
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
) -> list[GoalResponse]:
    items = goal_service.list_goals(engine, user_id, category=category, is_completed=is_completed)
    return [_goal_response(item) for item in items]


@app.get("/goals/summary", response_model=GoalsSummaryResponse)
def goals_summary(
    user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> GoalsSummaryResponse:
    return GoalsSummaryResponse(**asdict(goal_service.goals_summary(engine, user_id)))


@app.post("/goals", response_model=GoalResponse)
def create_goal(
    payload: GoalPayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> GoalResponse:
    payload = _validated(GoalPayload, payload)
    item = goal_service.create_goal(engine, user_id, notifier=notifier, **payload.model_dump())
    return _goal_response(item)


@app.get("/goals/{goal_id}", response_model=GoalResponse)
def get_goal(
    goal_id: int, user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> GoalResponse:
    return _goal_response(goal_service.get_goal(engine, user_id, goal_id))


@app.put("/goals/{goal_id}", response_model=GoalResponse)
def update_goal(
    goal_id: int,
    payload: GoalUpdatePayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> GoalResponse:
    item = goal_service.update_goal(
        engine, user_id, goal_id, payload.model_dump(exclude_unset=True), notifier=notifier
    )
    return _goal_response(item)


@app.post("/goals/{goal_id}/contribute", response_model=GoalResponse)
def contribute_to_goal(
    goal_id: int,
    payload: AmountPayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> GoalResponse:
    payload = _validated(AmountPayload, payload)
    change = goal_service.contribute_to_goal(engine, user_id, goal_id, payload.amount, notifier=notifier)
    return _goal_response(change.goal, completed_now=change.completed_now)


@app.post("/goals/{goal_id}/withdraw", response_model=GoalResponse)
def withdraw_from_goal(
    goal_id: int,
    payload: AmountPayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> GoalResponse:
    payload = _validated(AmountPayload, payload)
    change = goal_service.withdraw_from_goal(engine, user_id, goal_id, payload.amount, notifier=notifier)
    return _goal_response(change.goal)


@app.delete("/goals/{goal_id}")
def delete_goal(
    goal_id: int,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    goal_service.delete_goal(engine, user_id, goal_id, notifier=notifier)
    return {"status": "deleted"}


@app.get("/investments", response_model=list[InvestmentResponse])
def list_investments(
    type: str | None = Query(None),
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
) -> list[InvestmentResponse]:
    return [_investment_response(row) for row in investment_service.list_investments(engine, user_id, type)]


@app.get("/investments/portfolio", response_model=PortfolioResponse)
def portfolio_summary(
    user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> PortfolioResponse:
    return PortfolioResponse(**asdict(investment_service.portfolio_summary(engine, user_id)))


@app.post("/investments", response_model=InvestmentResponse)
def create_investment(
    payload: InvestmentPayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> InvestmentResponse:
    payload = _validated(InvestmentPayload, payload)
    row = investment_service.create_investment(engine, user_id, notifier=notifier, **payload.model_dump())
    return _investment_response(row)


@app.get("/investments/{investment_id}", response_model=InvestmentResponse)
def get_investment(
    investment_id: int, user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> InvestmentResponse:
    return _investment_response(investment_service.get_investment(engine, user_id, investment_id))


@app.put("/investments/{investment_id}", response_model=InvestmentResponse)
def update_investment(
    investment_id: int,
    payload: InvestmentUpdatePayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> InvestmentResponse:
    row = investment_service.update_investment(
        engine, user_id, investment_id, payload.model_dump(exclude_unset=True), notifier=notifier
    )
    return _investment_response(row)


@app.delete("/investments/{investment_id}")
def delete_investment(
    investment_id: int,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    investment_service.delete_investment(engine, user_id, investment_id, notifier=notifier)
    return {"status": "deleted"}


@app.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False),
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
) -> NotificationListResponse:
    rows, total, unread = notifications.list_notifications(engine, user_id, page, limit, unread_only)
    return NotificationListResponse(
        items=[NotificationResponse(**dict(row)) for row in rows],
        total=total,
        unread=unread,
        page=page,
        limit=limit,
    )


@app.get("/notifications/unread-count", response_model=CountResponse)
def unread_notifications(
    user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> CountResponse:
    return CountResponse(count=notifications.unread_count(engine, user_id))


@app.put("/notifications/read-all", response_model=CountResponse)
def mark_all_notifications_read(
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> CountResponse:
    return CountResponse(count=notifications.mark_all_read(engine, user_id, notifier=notifier))


@app.delete("/notifications/clear-read", response_model=CountResponse)
def clear_read_notifications(
    user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> CountResponse:
    return CountResponse(count=notifications.clear_read(engine, user_id))


@app.put("/notifications/{notification_id}/read", response_model=NotificationResponse)
def mark_notification_read(
    notification_id: int,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    notifier: Notifier = Depends(get_notifier),
) -> NotificationResponse:
    row = notifications.mark_read(engine, user_id, notification_id, notifier=notifier)
    return NotificationResponse(**dict(row))


@app.delete("/notifications/{notification_id}")
def delete_notification(
    notification_id: int, user_id: int = Depends(current_user), engine: Engine = Depends(get_engine)
) -> dict:
    notifications.delete_notification(engine, user_id, notification_id)
    return {"status": "deleted"}


@app.get("/dashboard", response_model=DashboardResponse)
def dashboard(
    as_of: date | None = Query(None),
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
) -> DashboardResponse:
    snapshot = dashboard_service.get_dashboard_snapshot(engine, user_id, as_of=as_of)
    return DashboardResponse(
        as_of=snapshot.as_of,
        total_balance=snapshot.balances.total,
        account_count=snapshot.balances.count,
        monthly_income=snapshot.current_month.income,
        monthly_expense=snapshot.current_month.expense,
        monthly_net=snapshot.current_month.net,
        income_change=snapshot.income_change,
        expense_change=snapshot.expense_change,
        spending_by_category=[asdict(item) for item in snapshot.spending_by_category],
        trend=[asdict(point) for point in snapshot.trend],
        top_accounts=[AccountResponse(**dict(row)) for row in snapshot.top_accounts],
        recent_transactions=[TransactionResponse(**dict(row)) for row in snapshot.recent_transactions],
        budgets=BudgetSummaryResponse(**asdict(snapshot.budgets)),
    )


@app.get("/dashboard/analytics", response_model=AnalyticsResponse)
def analytics(
    days: int = Query(30, ge=1, le=366),
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
) -> AnalyticsResponse:
    view = dashboard_service.get_analytics(engine, user_id, days=days)
    return AnalyticsResponse(
        start_date=view.start_date,
        end_date=view.end_date,
        income=view.totals.income,
        expense=view.totals.expense,
        net=view.totals.net,
        spending_by_category=[asdict(item) for item in view.spending_by_category],
        trend=[asdict(point) for point in view.trend],
    )


@app.get("/assistant/insights", response_model=AssistantResponse)
def assistant_insights(
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    text_generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> AssistantResponse:
    context = dashboard_service.assistant_context(engine, user_id)
    return AssistantResponse(text=assistant.generate_insights(text_generator, context))


@app.post("/assistant/chat", response_model=AssistantResponse)
def assistant_chat(
    payload: ChatPayload,
    user_id: int = Depends(current_user),
    engine: Engine = Depends(get_engine),
    text_generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> AssistantResponse:
    payload = _validated(ChatPayload, payload)
    context = dashboard_service.assistant_context(engine, user_id)
    reply = assistant.chat(
        text_generator,
        payload.message,
        context,
        [(message.role, message.content) for message in payload.history],
    )
    return AssistantResponse(text=reply)


@app.post("/assistant/categorize", response_model=CategorizeResponse)
def assistant_categorize(
    payload: CategorizePayload,
    user_id: int = Depends(current_user),
    text_generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> CategorizeResponse:
    category = assistant.categorize_transaction(
        text_generator, payload.description, payload.merchant, payload.amount
    )
    return CategorizeResponse(category=category)
