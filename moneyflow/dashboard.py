from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from moneyflow.budget_engine import percent_of

ZERO = Decimal("0")


@dataclass(frozen=True)
class AccountBalance:
    type: str
    balance: Decimal
    is_active: bool = True
    include_in_total: bool = True


@dataclass(frozen=True)
class TypeTotal:
    total: Decimal
    count: int


@dataclass(frozen=True)
class BalanceTotals:
    total: Decimal
    count: int
    by_type: dict[str, TypeTotal] = field(default_factory=dict)


@dataclass(frozen=True)
class MonthlySummary:
    income: Decimal = ZERO
    expense: Decimal = ZERO
    transfer: Decimal = ZERO
    income_count: int = 0
    expense_count: int = 0
    transfer_count: int = 0

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


@dataclass(frozen=True)
class CategorySpending:
    category: str
    total: Decimal
    count: int
    percentage: int = 0


@dataclass(frozen=True)
class TrendPoint:
    date: date
    income: Decimal = ZERO
    expense: Decimal = ZERO


@dataclass(frozen=True)
class TypeStats:
    total: Decimal
    count: int
    average: Decimal


@dataclass(frozen=True)
class MerchantTotal:
    merchant: str
    total: Decimal
    count: int


def total_balance(accounts: Iterable[AccountBalance]) -> BalanceTotals:
    """Totals over active accounts flagged include_in_total."""
    total = ZERO
    count = 0
    by_type: dict[str, list] = {}
    for account in accounts:
        if not account.is_active or not account.include_in_total:
            continue
        balance = _coerce_amount(account.balance)
        total += balance
        count += 1
        bucket = by_type.setdefault(account.type, [ZERO, 0])
        bucket[0] += balance
        bucket[1] += 1
    return BalanceTotals(
        total=total,
        count=count,
        by_type={key: TypeTotal(total=value[0], count=value[1]) for key, value in by_type.items()},
    )


def monthly_summary(rows: Iterable[tuple[str, Decimal, int]]) -> MonthlySummary:
    """Fold ``(type, total, count)`` rows into a summary."""
    values: dict[str, object] = {}
    for txn_type, total, count in rows:
        if txn_type not in {"income", "expense", "transfer"}:
            continue
        values[txn_type] = _coerce_amount(total)
        values[f"{txn_type}_count"] = int(count or 0)
    return MonthlySummary(**values)


def percent_change(current: Decimal, previous: Decimal) -> int:
    current = _coerce_amount(current)
    previous = _coerce_amount(previous)
    if previous <= ZERO:
        return 0
    change = ((current - previous) / previous * Decimal("100")).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(change)


def spending_by_category(
    rows: Iterable[tuple[Optional[str], Decimal, int]], limit: int | None = None
) -> list[CategorySpending]:
    """Expense totals per category, largest first, with share of the total."""
    items = [
        (category or "Uncategorized", _coerce_amount(total), int(count or 0))
        for category, total, count in rows
    ]
    items.sort(key=lambda item: (-item[1], item[0]))
    grand_total = sum((item[1] for item in items), ZERO)
    breakdown = [
        CategorySpending(
            category=category,
            total=total,
            count=count,
            percentage=percent_of(total, grand_total),
        )
        for category, total, count in items
    ]
    if limit is not None:
        return breakdown[:limit]
    return breakdown


def type_stats(rows: Iterable[tuple[str, Decimal, int]]) -> dict[str, TypeStats]:
    stats = {}
    for txn_type, total, count in rows:
        total = _coerce_amount(total)
        count = int(count or 0)
        average = (total / count).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) if count else ZERO
        stats[txn_type] = TypeStats(total=total, count=count, average=average)
    return stats


def top_merchants(
    rows: Iterable[tuple[Optional[str], Decimal, int]], limit: int = 5
) -> list[MerchantTotal]:
    merchants = [
        MerchantTotal(merchant=merchant, total=_coerce_amount(total), count=int(count or 0))
        for merchant, total, count in rows
        if merchant
    ]
    merchants.sort(key=lambda item: (-item.total, item.merchant))
    return merchants[:limit]


def trend_window_start(as_of: date, days: int) -> date:
    """First day of a ``days``-long window that ends on ``as_of`` inclusive."""
    return as_of - timedelta(days=max(days, 1) - 1)


def daily_trend(rows: Iterable[tuple[date, str, Decimal]]) -> list[TrendPoint]:
    """Merge ``(day, type, total)`` rows into one point per day, oldest first."""
    merged: dict[date, dict[str, Decimal]] = {}
    for day, txn_type, total in rows:
        if txn_type not in {"income", "expense"}:
            continue
        bucket = merged.setdefault(day, {"income": ZERO, "expense": ZERO})
        bucket[txn_type] += _coerce_amount(total)
    return [
        TrendPoint(date=day, income=values["income"], expense=values["expense"])
        for day, values in sorted(merged.items())
    ]


def previous_month(as_of: date) -> tuple[int, int]:
    if as_of.month == 1:
        return as_of.year - 1, 12
    return as_of.year, as_of.month - 1


def _coerce_amount(amount: Decimal) -> Decimal:
    if amount is None:
        return ZERO
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
