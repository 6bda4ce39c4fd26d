from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine, RowMapping

from moneyflow.assistant import build_financial_context
from moneyflow.budget_engine import BudgetSummary, summarize_budgets
from moneyflow.budget_service import evaluate_rows, to_budget
from moneyflow.config import settings
from moneyflow.dashboard import (
    AccountBalance,
    BalanceTotals,
    CategorySpending,
    MonthlySummary,
    TrendPoint,
    daily_trend,
    monthly_summary,
    percent_change,
    previous_month,
    spending_by_category,
    total_balance,
    trend_window_start,
)
from moneyflow.db import accounts, budgets, transactions
from moneyflow.repository import OwnerScope

TOP_ACCOUNTS = 4
RECENT_TRANSACTIONS = 5
TOP_CATEGORIES = 6


@dataclass(frozen=True)
class DashboardSnapshot:
    as_of: date
    balances: BalanceTotals
    current_month: MonthlySummary
    previous_month: MonthlySummary
    income_change: int
    expense_change: int
    spending_by_category: list[CategorySpending]
    trend: list[TrendPoint]
    top_accounts: list[RowMapping]
    recent_transactions: list[RowMapping]
    budgets: BudgetSummary


@dataclass(frozen=True)
class Analytics:
    start_date: date
    end_date: date
    totals: MonthlySummary
    spending_by_category: list[CategorySpending]
    trend: list[TrendPoint]


def get_dashboard_snapshot(
    engine: Engine, user_id: int, as_of: Optional[date] = None, trend_days: Optional[int] = None
) -> DashboardSnapshot:
    """Read-only cross-entity view, computed fresh on every call."""
    as_of = as_of or date.today()
    trend_days = trend_days or settings.dashboard_trend_days
    month_begin, month_end = _month_bounds(as_of.year, as_of.month)
    prev_begin, prev_end = _month_bounds(*previous_month(as_of))

    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        account_rows = scope.find(accounts, accounts.c.is_active.is_(True))
        current = monthly_summary(_type_totals(conn, user_id, month_begin, month_end))
        previous = monthly_summary(_type_totals(conn, user_id, prev_begin, prev_end))
        categories = spending_by_category(
            _category_totals(conn, user_id, month_begin, month_end), limit=TOP_CATEGORIES
        )
        trend = daily_trend(_daily_totals(conn, user_id, trend_window_start(as_of, trend_days), as_of))
        top_accounts = scope.find(
            accounts,
            accounts.c.is_active.is_(True),
            order_by=[accounts.c.balance.desc(), accounts.c.id.asc()],
            limit=TOP_ACCOUNTS,
        )
        recent = scope.find(
            transactions,
            order_by=[transactions.c.date.desc(), transactions.c.id.desc()],
            limit=RECENT_TRANSACTIONS,
        )
        budget_rows = scope.find(budgets, budgets.c.is_active.is_(True))
        budget_statuses = evaluate_rows(conn, user_id, budget_rows, as_of)

    return DashboardSnapshot(
        as_of=as_of,
        balances=total_balance(
            AccountBalance(
                type=row["type"],
                balance=row["balance"],
                is_active=row["is_active"],
                include_in_total=row["include_in_total"],
            )
            for row in account_rows
        ),
        current_month=current,
        previous_month=previous,
        income_change=percent_change(current.income, previous.income),
        expense_change=percent_change(current.expense, previous.expense),
        spending_by_category=categories,
        trend=trend,
        top_accounts=top_accounts,
        recent_transactions=recent,
        budgets=summarize_budgets([to_budget(row) for row in budget_rows], budget_statuses),
    )


def get_analytics(
    engine: Engine, user_id: int, days: int = 30, as_of: Optional[date] = None
) -> Analytics:
    as_of = as_of or date.today()
    start = trend_window_start(as_of, days)
    with engine.begin() as conn:
        totals = monthly_summary(_type_totals(conn, user_id, start, as_of))
        categories = spending_by_category(_category_totals(conn, user_id, start, as_of))
        trend = daily_trend(_daily_totals(conn, user_id, start, as_of))
    return Analytics(
        start_date=start,
        end_date=as_of,
        totals=totals,
        spending_by_category=categories,
        trend=trend,
    )


def assistant_context(engine: Engine, user_id: int, as_of: Optional[date] = None) -> str:
    snapshot = get_dashboard_snapshot(engine, user_id, as_of=as_of)
    return build_financial_context(
        total_balance=snapshot.balances.total,
        monthly_income=snapshot.current_month.income,
        monthly_expense=snapshot.current_month.expense,
        account_count=snapshot.balances.count,
        budget_count=snapshot.budgets.total_budgets,
        budgets_over_limit=snapshot.budgets.exceeded,
        top_categories=[item.category for item in snapshot.spending_by_category[:3]],
    )


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def _type_totals(conn: Connection, user_id: int, start: date, end: date):
    return conn.execute(
        select(transactions.c.type, func.sum(transactions.c.amount), func.count())
        .where(
            transactions.c.user_id == user_id,
            transactions.c.date >= start,
            transactions.c.date <= end,
        )
        .group_by(transactions.c.type)
    ).all()


def _category_totals(conn: Connection, user_id: int, start: date, end: date):
    return conn.execute(
        select(transactions.c.category, func.sum(transactions.c.amount), func.count())
        .where(
            transactions.c.user_id == user_id,
            transactions.c.type == "expense",
            transactions.c.date >= start,
            transactions.c.date <= end,
        )
        .group_by(transactions.c.category)
    ).all()


def _daily_totals(conn: Connection, user_id: int, start: date, end: date):
    return conn.execute(
        select(transactions.c.date, transactions.c.type, func.sum(transactions.c.amount))
        .where(
            transactions.c.user_id == user_id,
            transactions.c.type.in_(["income", "expense"]),
            transactions.c.date >= start,
            transactions.c.date <= end,
        )
        .group_by(transactions.c.date, transactions.c.type)
        .order_by(transactions.c.date)
    ).all()
