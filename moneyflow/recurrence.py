from __future__ import annotations

from dataclasses import dataclass
from calendar import monthrange
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

TRANSACTION_FREQUENCIES = {"daily", "weekly", "monthly", "yearly"}
BILL_FREQUENCIES = {"once", "weekly", "biweekly", "monthly", "quarterly", "yearly"}
DEFAULT_TRANSACTION_FREQUENCY = "monthly"

# (days, months) per step.
TRANSACTION_STEPS = {
    "daily": (1, 0),
    "weekly": (7, 0),
    "monthly": (0, 1),
    "yearly": (0, 12),
}
BILL_STEPS = {
    "weekly": (7, 0),
    "biweekly": (14, 0),
    "monthly": (0, 1),
    "quarterly": (0, 3),
    "yearly": (0, 12),
}

BILL_PAID = "paid"
BILL_OVERDUE = "overdue"
BILL_UPCOMING = "upcoming"
BILL_SCHEDULED = "scheduled"


@dataclass(frozen=True)
class RecurringRule:
    frequency: str
    next_date: date
    end_date: Optional[date] = None


@dataclass(frozen=True)
class BillSnapshot:
    amount: Decimal
    due_date: date
    is_paid: bool
    paid_date: Optional[date] = None
    reminder_days: int = 3
    is_active: bool = True


@dataclass(frozen=True)
class BillsSummary:
    unpaid_count: int
    unpaid_total: Decimal
    paid_count: int
    paid_total: Decimal
    overdue_count: int
    overdue_total: Decimal
    total_monthly: Decimal


def normalize_frequency(value: str) -> str:
    normalized = "".join(ch for ch in value.strip().lower() if ch.isalnum())
    if normalized == "byweekly":
        return "biweekly"
    if normalized == "onetime":
        return "once"
    return normalized


def validate_transaction_frequency(value: str) -> str:
    normalized = normalize_frequency(value)
    if normalized not in TRANSACTION_FREQUENCIES:
        raise ValueError("Recurring frequency must be daily, weekly, monthly, or yearly.")
    return normalized


def validate_bill_frequency(value: str) -> str:
    normalized = normalize_frequency(value)
    if normalized not in BILL_FREQUENCIES:
        raise ValueError(
            "Bill frequency must be once, weekly, biweekly, monthly, quarterly, or yearly."
        )
    return normalized


def next_transaction_date(current: date, frequency: str | None) -> date:
    """One recurrence step; unknown frequencies step monthly."""
    normalized = normalize_frequency(frequency or "")
    days, months = TRANSACTION_STEPS.get(
        normalized, TRANSACTION_STEPS[DEFAULT_TRANSACTION_FREQUENCY]
    )
    return _step(current, days, months)


def advance_past(current: date, frequency: str | None, today: date) -> date:
    """Step ``current`` forward until it is strictly after ``today``."""
    candidate = next_transaction_date(current, frequency)
    while candidate <= today:
        candidate = next_transaction_date(candidate, frequency)
    return candidate


def is_occurrence_due(rule: RecurringRule, today: date) -> bool:
    if rule.next_date > today:
        return False
    return rule.end_date is None or rule.end_date >= today


def next_bill_due_date(due_date: date, frequency: str) -> Optional[date]:
    """Due date of the successor bill, or None for one-off bills."""
    normalized = validate_bill_frequency(frequency)
    if normalized == "once":
        return None
    days, months = BILL_STEPS[normalized]
    return _step(due_date, days, months)


def days_until_due(due_date: date, today: date) -> int:
    return (due_date - today).days


def bill_status(bill: BillSnapshot, today: date) -> str:
    if bill.is_paid:
        return BILL_PAID
    days = days_until_due(bill.due_date, today)
    if days < 0:
        return BILL_OVERDUE
    if days <= bill.reminder_days:
        return BILL_UPCOMING
    return BILL_SCHEDULED


def reminder_priority(days_left: int) -> str:
    return "high" if days_left <= 1 else "medium"


def summarize_bills(bills: Iterable[BillSnapshot], today: date) -> BillsSummary:
    month_begin = today.replace(day=1)
    month_end = today.replace(day=monthrange(today.year, today.month)[1])
    unpaid: list[BillSnapshot] = []
    paid: list[BillSnapshot] = []
    overdue: list[BillSnapshot] = []
    for bill in bills:
        if not bill.is_active:
            continue
        if bill.is_paid:
            if bill.paid_date is not None and bill.paid_date >= month_begin:
                paid.append(bill)
            continue
        if bill.due_date <= month_end:
            unpaid.append(bill)
        if bill.due_date < today:
            overdue.append(bill)
    unpaid_total = _total(unpaid)
    paid_total = _total(paid)
    return BillsSummary(
        unpaid_count=len(unpaid),
        unpaid_total=unpaid_total,
        paid_count=len(paid),
        paid_total=paid_total,
        overdue_count=len(overdue),
        overdue_total=_total(overdue),
        total_monthly=unpaid_total + paid_total,
    )


def _total(bills: Iterable[BillSnapshot]) -> Decimal:
    total = Decimal("0")
    for bill in bills:
        total += _coerce_amount(bill.amount)
    return total


def _step(current: date, days: int, months: int) -> date:
    if months:
        return _add_months(current, months, current.day)
    return current + timedelta(days=days)


def _add_months(start_date: date, months: int, anchor_day: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    day = min(anchor_day, last_day)
    return date(year, month, day)


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
