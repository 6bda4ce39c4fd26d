from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import logging
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine, RowMapping
from sqlalchemy.exc import IntegrityError

from moneyflow.balance_engine import to_cents
from moneyflow.budget_engine import (
    DEFAULT_ALERT_THRESHOLD,
    STATUS_EXCEEDED,
    Budget,
    BudgetStatus,
    BudgetSummary,
    compute_budget_status,
    is_escalation,
    normalize_period,
    period_start,
    summarize_budgets,
)
from moneyflow.db import budgets, transactions
from moneyflow.errors import Conflict, InvalidArgument, NotFound
from moneyflow.notifications import Notifier, record_notification, safe_notify
from moneyflow.repository import OwnerScope

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
DUPLICATE_BUDGET = "An active budget already exists for this category and period."
UPDATABLE_FIELDS = {"name", "category", "amount", "period", "end_date", "alert_threshold", "is_active"}


@dataclass(frozen=True)
class BudgetWithStatus:
    budget: RowMapping
    status: BudgetStatus


def to_budget(row: Mapping[str, Any]) -> Budget:
    return Budget(
        category=row["category"],
        amount=_coerce_amount(row["amount"]),
        period=row["period"],
        alert_threshold=row["alert_threshold"],
    )


def category_spending(
    conn: Connection,
    user_id: int,
    categories: Iterable[str],
    start_date: date,
    end_date: date,
) -> dict[str, Decimal]:
    """Expense totals per category over ``[start_date, end_date]`` in one grouped query."""
    wanted = sorted(set(categories))
    if not wanted:
        return {}
    rows = conn.execute(
        select(transactions.c.category, func.sum(transactions.c.amount))
        .where(
            transactions.c.user_id == user_id,
            transactions.c.type == "expense",
            transactions.c.category.in_(wanted),
            transactions.c.date >= start_date,
            transactions.c.date <= end_date,
        )
        .group_by(transactions.c.category)
    ).all()
    return {category: _coerce_amount(total) for category, total in rows}


def evaluate_rows(
    conn: Connection, user_id: int, rows: Iterable[Mapping[str, Any]], as_of: date
) -> list[BudgetStatus]:
    rows = list(rows)
    windows: dict[date, set[str]] = {}
    for row in rows:
        windows.setdefault(period_start(row["period"], as_of), set()).add(row["category"])
    spent = {
        start: category_spending(conn, user_id, categories, start, as_of)
        for start, categories in windows.items()
    }
    return [
        compute_budget_status(
            to_budget(row),
            spent[period_start(row["period"], as_of)].get(row["category"], ZERO),
            as_of,
        )
        for row in rows
    ]


def create_budget(
    engine: Engine,
    user_id: int,
    *,
    name: str,
    category: str,
    amount: Decimal,
    period: str = "monthly",
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    alert_threshold: int = DEFAULT_ALERT_THRESHOLD,
    as_of: Optional[date] = None,
    notifier: Notifier | None = None,
) -> BudgetWithStatus:
    as_of = as_of or date.today()
    values = _validate(
        {
            "name": name,
            "category": category,
            "amount": amount,
            "period": period,
            "end_date": end_date,
            "alert_threshold": alert_threshold,
        }
    )
    try:
        with engine.begin() as conn:
            scope = OwnerScope(conn, user_id)
            duplicate = scope.find(
                budgets,
                budgets.c.category == values["category"],
                budgets.c.period == values["period"],
                budgets.c.is_active.is_(True),
                limit=1,
            )
            if duplicate:
                raise Conflict(DUPLICATE_BUDGET)
            row = scope.insert(
                budgets,
                start_date=start_date or as_of,
                is_active=True,
                **values,
            )
            status = evaluate_rows(conn, user_id, [row], as_of)[0]
    except IntegrityError as exc:
        raise Conflict(DUPLICATE_BUDGET) from exc
    safe_notify(notifier, user_id, "budget:created", row)
    return BudgetWithStatus(budget=row, status=status)


def get_budgets_with_status(
    engine: Engine,
    user_id: int,
    as_of: Optional[date] = None,
    active_only: bool = True,
    period: Optional[str] = None,
) -> list[BudgetWithStatus]:
    as_of = as_of or date.today()
    criteria = []
    if active_only:
        criteria.append(budgets.c.is_active.is_(True))
    if period:
        criteria.append(budgets.c.period == _normalize_period(period))
    with engine.begin() as conn:
        rows = OwnerScope(conn, user_id).find(
            budgets, *criteria, order_by=[budgets.c.created_at.desc(), budgets.c.id.desc()]
        )
        statuses = evaluate_rows(conn, user_id, rows, as_of)
    return [BudgetWithStatus(budget=row, status=status) for row, status in zip(rows, statuses)]


def get_budget(
    engine: Engine, user_id: int, budget_id: int, as_of: Optional[date] = None
) -> BudgetWithStatus:
    as_of = as_of or date.today()
    with engine.begin() as conn:
        row = OwnerScope(conn, user_id).require(budgets, budget_id, "Budget")
        status = evaluate_rows(conn, user_id, [row], as_of)[0]
    return BudgetWithStatus(budget=row, status=status)


def update_budget(
    engine: Engine,
    user_id: int,
    budget_id: int,
    changes: Mapping[str, Any],
    as_of: Optional[date] = None,
    notifier: Notifier | None = None,
) -> BudgetWithStatus:
    as_of = as_of or date.today()
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise InvalidArgument(f"Unsupported budget fields: {', '.join(sorted(unknown))}")
    values = _validate(changes)
    try:
        with engine.begin() as conn:
            scope = OwnerScope(conn, user_id)
            scope.require(budgets, budget_id, "Budget")
            row = scope.update(budgets, budget_id, **values) if values else scope.get(budgets, budget_id)
            status = evaluate_rows(conn, user_id, [row], as_of)[0]
    except IntegrityError as exc:
        raise Conflict(DUPLICATE_BUDGET) from exc
    safe_notify(notifier, user_id, "budget:updated", row)
    return BudgetWithStatus(budget=row, status=status)


def delete_budget(
    engine: Engine, user_id: int, budget_id: int, notifier: Notifier | None = None
) -> None:
    with engine.begin() as conn:
        if not OwnerScope(conn, user_id).delete(budgets, budget_id):
            raise NotFound("Budget not found.")
    safe_notify(notifier, user_id, "budget:deleted", {"id": budget_id})


def budget_summary(engine: Engine, user_id: int, as_of: Optional[date] = None) -> BudgetSummary:
    items = get_budgets_with_status(engine, user_id, as_of=as_of)
    return summarize_budgets(
        [to_budget(item.budget) for item in items], [item.status for item in items]
    )


def check_budget_alerts(
    scope: OwnerScope, category: str, amount: Decimal, txn_date: date, as_of: date
) -> list[RowMapping]:
    """Notify budgets whose status got worse because of a new expense.

    Runs inside the caller's transaction, after the expense row is written.
    """
    rows = scope.find(budgets, budgets.c.category == category, budgets.c.is_active.is_(True))
    created = []
    for row in rows:
        start = period_start(row["period"], as_of)
        if not start <= txn_date <= as_of:
            continue
        budget = to_budget(row)
        spent = category_spending(scope.conn, scope.user_id, [category], start, as_of).get(
            category, ZERO
        )
        before = compute_budget_status(budget, max(ZERO, spent - amount), as_of)
        after = compute_budget_status(budget, spent, as_of)
        if not is_escalation(before.status, after.status):
            continue
        created.append(_record_alert(scope, row, after))
    return created


def _record_alert(scope: OwnerScope, row: Mapping[str, Any], status: BudgetStatus) -> RowMapping:
    data = {
        "budgetId": row["id"],
        "category": row["category"],
        "spent": status.spent,
        "amount": row["amount"],
        "percentUsed": status.percent_used,
    }
    if status.status == STATUS_EXCEEDED:
        logger.info("Budget %s exceeded for user %s", row["id"], scope.user_id)
        return record_notification(
            scope,
            "budget_exceeded",
            "Budget Exceeded",
            f"You've exceeded your {row['name']} budget ({status.percent_used}% used).",
            priority="high",
            data=data,
        )
    return record_notification(
        scope,
        "budget_warning",
        "Budget Warning",
        f"You've used {status.percent_used}% of your {row['name']} budget.",
        priority="medium",
        data=data,
    )


def _validate(values: Mapping[str, Any]) -> dict[str, Any]:
    cleaned = dict(values)
    if "name" in cleaned:
        cleaned["name"] = (cleaned["name"] or "").strip()
        if not cleaned["name"]:
            raise InvalidArgument("Budget name required.")
    if "category" in cleaned:
        cleaned["category"] = (cleaned["category"] or "").strip()
        if not cleaned["category"]:
            raise InvalidArgument("Budget category required.")
    if "amount" in cleaned:
        cleaned["amount"] = _coerce_amount(cleaned["amount"])
        if cleaned["amount"] <= ZERO:
            raise InvalidArgument("Budget amount must be greater than zero.")
    if "period" in cleaned:
        cleaned["period"] = _normalize_period(cleaned["period"])
    if "alert_threshold" in cleaned:
        threshold = cleaned["alert_threshold"]
        if threshold is None or not 0 <= int(threshold) <= 100:
            raise InvalidArgument("Alert threshold must be between 0 and 100.")
        cleaned["alert_threshold"] = int(threshold)
    if "is_active" in cleaned:
        cleaned["is_active"] = bool(cleaned["is_active"])
    return cleaned


def _normalize_period(value: str) -> str:
    try:
        return normalize_period(value or "")
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc


def _coerce_amount(amount: Any) -> Decimal:
    if amount is None:
        return ZERO
    try:
        return to_cents(amount)
    except ArithmeticError as exc:
        raise InvalidArgument("Amount must be a number.") from exc
