from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")
SUPPORTED_PERIODS = {"weekly", "monthly", "yearly"}
DEFAULT_ALERT_THRESHOLD = 80

STATUS_ON_TRACK = "on-track"
STATUS_WARNING = "warning"
STATUS_EXCEEDED = "exceeded"
STATUS_SEVERITY = {STATUS_ON_TRACK: 0, STATUS_WARNING: 1, STATUS_EXCEEDED: 2}


@dataclass(frozen=True)
class Transaction:
    amount: Decimal
    type: str
    date: date
    category: Optional[str] = None
    account_id: Optional[int] = None


@dataclass(frozen=True)
class Budget:
    category: str
    amount: Decimal
    period: str = "monthly"
    alert_threshold: int = DEFAULT_ALERT_THRESHOLD


@dataclass(frozen=True)
class BudgetStatus:
    period_start: date
    period_end: date
    spent: Decimal
    remaining: Decimal
    percent_used: int
    status: str


@dataclass(frozen=True)
class BudgetSummary:
    total_budgets: int
    total_budgeted: Decimal
    total_spent: Decimal
    total_remaining: Decimal
    on_track: int
    warning: int
    exceeded: int
    percent_used: int


def normalize_period(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in SUPPORTED_PERIODS:
        raise ValueError("Budget period must be weekly, monthly, or yearly.")
    return normalized


def period_start(period: str, as_of: date) -> date:
    """Start of the budget window containing ``as_of``.

    Weeks start on Sunday.
    """
    normalized = normalize_period(period)
    if normalized == "monthly":
        return as_of.replace(day=1)
    if normalized == "weekly":
        days_since_sunday = (as_of.weekday() + 1) % 7
        return as_of - timedelta(days=days_since_sunday)
    return as_of.replace(month=1, day=1)


def sum_category_spending(
    transactions: Iterable[Transaction],
    category: str,
    start_date: date,
    end_date: date,
) -> Decimal:
    total = ZERO
    for txn in transactions:
        if txn.type.strip().lower() != "expense":
            continue
        if txn.category != category:
            continue
        if not start_date <= txn.date <= end_date:
            continue
        total += _coerce_amount(txn.amount)
    return total


def compute_budget_status(budget: Budget, spent: Decimal, as_of: date) -> BudgetStatus:
    amount = _coerce_amount(budget.amount)
    spent = _coerce_amount(spent)
    remaining = max(ZERO, amount - spent)
    percent_used = percent_of(spent, amount, cap=100)
    return BudgetStatus(
        period_start=period_start(budget.period, as_of),
        period_end=as_of,
        spent=spent,
        remaining=remaining,
        percent_used=percent_used,
        status=classify_status(percent_used, budget.alert_threshold),
    )


def evaluate_budget(
    transactions: Iterable[Transaction],
    budget: Budget,
    as_of: date,
) -> BudgetStatus:
    start = period_start(budget.period, as_of)
    spent = sum_category_spending(transactions, budget.category, start, as_of)
    return compute_budget_status(budget, spent, as_of)


def classify_status(percent_used: int, alert_threshold: int) -> str:
    if percent_used >= 100:
        return STATUS_EXCEEDED
    if percent_used >= alert_threshold:
        return STATUS_WARNING
    return STATUS_ON_TRACK


def is_escalation(previous_status: str, current_status: str) -> bool:
    return STATUS_SEVERITY[current_status] > STATUS_SEVERITY[previous_status]


def summarize_budgets(
    budgets: Iterable[Budget], statuses: Iterable[BudgetStatus]
) -> BudgetSummary:
    total_budgeted = ZERO
    total_spent = ZERO
    counts = {STATUS_ON_TRACK: 0, STATUS_WARNING: 0, STATUS_EXCEEDED: 0}
    total = 0
    for budget, status in zip(budgets, statuses):
        total += 1
        total_budgeted += _coerce_amount(budget.amount)
        total_spent += status.spent
        counts[status.status] += 1
    return BudgetSummary(
        total_budgets=total,
        total_budgeted=total_budgeted,
        total_spent=total_spent,
        total_remaining=max(ZERO, total_budgeted - total_spent),
        on_track=counts[STATUS_ON_TRACK],
        warning=counts[STATUS_WARNING],
        exceeded=counts[STATUS_EXCEEDED],
        percent_used=percent_of(total_spent, total_budgeted),
    )


def percent_of(part: Decimal, whole: Decimal, cap: int | None = None) -> int:
    """Whole percent of ``part`` in ``whole``, rounding half up; 0 when whole <= 0."""
    if whole <= ZERO:
        return 0
    ratio = (_coerce_amount(part) / _coerce_amount(whole) * HUNDRED).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    value = int(ratio)
    if cap is not None:
        value = min(cap, value)
    return value


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
