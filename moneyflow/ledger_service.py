"""Users, accounts and transactions.

Transaction writes and the balance change they cause share one
``engine.begin()`` block. Balances are moved with signed-delta increments
(``balance = balance + delta``) instead of read-modify-write, so concurrent
writers on one account never lose an update.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import logging
from typing import Any, Mapping, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine, RowMapping
from sqlalchemy.exc import IntegrityError

from moneyflow.assistant import TextGenerator, categorize_transaction
from moneyflow.balance_engine import (
    balance_effect,
    normalize_transaction_type,
    plan_balance_changes,
    to_cents,
)
from moneyflow.budget_service import check_budget_alerts
from moneyflow.config import normalize_currency, settings
from moneyflow.dashboard import (
    AccountBalance,
    BalanceTotals,
    CategorySpending,
    MerchantTotal,
    TypeStats,
    spending_by_category,
    top_merchants,
    trend_window_start,
    total_balance,
    type_stats,
)
from moneyflow.db import accounts, transactions, users
from moneyflow.errors import Conflict, InvalidArgument, NotFound
from moneyflow.notifications import Notifier, safe_notify
from moneyflow.recurrence import next_transaction_date, validate_transaction_frequency
from moneyflow.repository import OwnerScope

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ACCOUNT_TYPES = {"checking", "savings", "credit", "investment", "cash"}
ACCOUNT_FIELDS = {"name", "type", "currency", "institution", "include_in_total"}
TRANSACTION_FIELDS = {
    "account_id",
    "type",
    "amount",
    "category",
    "date",
    "description",
    "merchant",
    "notes",
    "recurring_frequency",
    "recurring_next_date",
    "recurring_end_date",
}
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class TransactionStats:
    period_days: int
    by_type: dict[str, TypeStats]
    by_category: list[CategorySpending]
    top_merchants: list[MerchantTotal]


# Users


def create_user(
    engine: Engine, email: str, name: Optional[str] = None, home_currency: Optional[str] = None
) -> RowMapping:
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise InvalidArgument("A valid email is required.")
    currency = _currency(home_currency) if home_currency else settings.default_currency
    try:
        with engine.begin() as conn:
            row = conn.execute(
                users.insert()
                .values(email=email, name=(name or "").strip() or None, home_currency=currency)
                .returning(*users.c)
            ).mappings().first()
    except IntegrityError as exc:
        raise Conflict("Email already registered.") from exc
    return row


def get_user(engine: Engine, user_id: int) -> RowMapping:
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
    if row is None:
        raise NotFound("User not found.")
    return row


# Accounts


def create_account(
    engine: Engine,
    user_id: int,
    *,
    name: str,
    type: str,
    balance: Decimal = ZERO,
    currency: Optional[str] = None,
    institution: Optional[str] = None,
    include_in_total: bool = True,
    notifier: Notifier | None = None,
) -> RowMapping:
    values = _validate_account(
        {
            "name": name,
            "type": type,
            "currency": currency or settings.default_currency,
            "institution": institution,
            "include_in_total": include_in_total,
        }
    )
    with engine.begin() as conn:
        row = OwnerScope(conn, user_id).insert(
            accounts, balance=_money(balance), is_active=True, **values
        )
    safe_notify(notifier, user_id, "account:created", row)
    return row


def list_accounts(engine: Engine, user_id: int, include_inactive: bool = False) -> list[RowMapping]:
    criteria = [] if include_inactive else [accounts.c.is_active.is_(True)]
    with engine.begin() as conn:
        return OwnerScope(conn, user_id).find(
            accounts, *criteria, order_by=[accounts.c.created_at.desc(), accounts.c.id.desc()]
        )


def get_account(engine: Engine, user_id: int, account_id: int) -> RowMapping:
    with engine.begin() as conn:
        return OwnerScope(conn, user_id).require(accounts, account_id, "Account")


def update_account(
    engine: Engine,
    user_id: int,
    account_id: int,
    changes: Mapping[str, Any],
    notifier: Notifier | None = None,
) -> RowMapping:
    unknown = set(changes) - ACCOUNT_FIELDS
    if unknown:
        raise InvalidArgument(f"Unsupported account fields: {', '.join(sorted(unknown))}")
    values = _validate_account(changes)
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        row = scope.require(accounts, account_id, "Account")
        if values:
            row = scope.update(accounts, account_id, **values)
    safe_notify(notifier, user_id, "account:updated", row)
    return row


def delete_account(
    engine: Engine, user_id: int, account_id: int, notifier: Notifier | None = None
) -> None:
    """Soft delete: the row and its transactions stay."""
    with engine.begin() as conn:
        row = OwnerScope(conn, user_id).update(
            accounts, account_id, accounts.c.is_active.is_(True), is_active=False
        )
    if row is None:
        raise NotFound("Account not found.")
    safe_notify(notifier, user_id, "account:deleted", {"id": account_id})


def set_account_balance(
    engine: Engine,
    user_id: int,
    account_id: int,
    balance: Decimal,
    notifier: Notifier | None = None,
) -> RowMapping:
    """Administrative overwrite of a balance, outside the transaction ledger."""
    with engine.begin() as conn:
        row = OwnerScope(conn, user_id).update(
            accounts, account_id, balance=_money(balance)
        )
    if row is None:
        raise NotFound("Account not found.")
    logger.info("Balance of account %s set by user %s", account_id, user_id)
    safe_notify(notifier, user_id, "account:updated", row)
    return row


def account_summary(engine: Engine, user_id: int) -> BalanceTotals:
    rows = list_accounts(engine, user_id)
    return total_balance(
        AccountBalance(
            type=row["type"],
            balance=_money(row["balance"]),
            is_active=row["is_active"],
            include_in_total=row["include_in_total"],
        )
        for row in rows
    )


# Transactions


def create_transaction(
    engine: Engine,
    user_id: int,
    *,
    account_id: int,
    type: str,
    amount: Decimal,
    category: Optional[str] = None,
    date: Optional[date] = None,
    description: Optional[str] = None,
    merchant: Optional[str] = None,
    notes: Optional[str] = None,
    recurring_frequency: Optional[str] = None,
    recurring_next_date: Optional[date] = None,
    recurring_end_date: Optional[date] = None,
    as_of: Optional[date] = None,
    notifier: Notifier | None = None,
    text_generator: TextGenerator | None = None,
) -> RowMapping:
    today = as_of or _today()
    values = _validate_transaction(
        {
            "account_id": account_id,
            "type": type,
            "amount": amount,
            "category": category,
            "date": date or today,
            "description": description,
            "merchant": merchant,
            "notes": notes,
        }
    )
    values.update(
        _recurring_values(recurring_frequency, recurring_next_date, recurring_end_date, values["date"])
    )
    if not values.get("category"):
        values["category"] = categorize_transaction(
            text_generator, values["description"], values["merchant"], values["amount"]
        )

    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        if not scope.exists(accounts, values["account_id"], accounts.c.is_active.is_(True)):
            raise NotFound("Account not found.")
        row = scope.insert(transactions, **values)
        apply_balance_delta(scope, row["account_id"], balance_effect(row["type"], row["amount"]))
        alerts = []
        if row["type"] == "expense":
            alerts = check_budget_alerts(scope, row["category"], row["amount"], row["date"], today)

    safe_notify(notifier, user_id, "transaction:created", row)
    for alert in alerts:
        safe_notify(notifier, user_id, "notification:new", alert)
    return row


def get_transaction(engine: Engine, user_id: int, transaction_id: int) -> RowMapping:
    with engine.begin() as conn:
        return OwnerScope(conn, user_id).require(transactions, transaction_id, "Transaction")


def update_transaction(
    engine: Engine,
    user_id: int,
    transaction_id: int,
    changes: Mapping[str, Any],
    notifier: Notifier | None = None,
) -> RowMapping:
    unknown = set(changes) - TRANSACTION_FIELDS
    if unknown:
        raise InvalidArgument(f"Unsupported transaction fields: {', '.join(sorted(unknown))}")
    values = _validate_transaction(
        {key: value for key, value in changes.items() if not key.startswith("recurring_")}
    )
    # Only creation auto-categorizes; an edit has to name a category.
    if "category" in values and not values["category"]:
        raise InvalidArgument("Transaction category required.")

    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        # Locking the row keeps two edits from reversing the same old effect.
        current = scope.require(transactions, transaction_id, "Transaction", for_update=True)
        if any(key.startswith("recurring_") for key in changes):
            values.update(
                _recurring_values(
                    changes.get("recurring_frequency", current["recurring_frequency"]),
                    changes.get("recurring_next_date", current["recurring_next_date"]),
                    changes.get("recurring_end_date", current["recurring_end_date"]),
                    values.get("date", current["date"]),
                )
            )
        new_account_id = values.get("account_id", current["account_id"])
        if new_account_id != current["account_id"] and not scope.exists(
            accounts, new_account_id, accounts.c.is_active.is_(True)
        ):
            raise NotFound("Account not found.")

        changes_to_apply = plan_balance_changes(
            current["account_id"],
            current["type"],
            current["amount"],
            new_account_id,
            values.get("type", current["type"]),
            values.get("amount", current["amount"]),
        )
        row = scope.update(transactions, transaction_id, **values) if values else current
        for change in changes_to_apply:
            apply_balance_delta(scope, change.account_id, change.delta)

    safe_notify(notifier, user_id, "transaction:updated", row)
    return row


def delete_transaction(
    engine: Engine, user_id: int, transaction_id: int, notifier: Notifier | None = None
) -> None:
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        current = scope.require(transactions, transaction_id, "Transaction", for_update=True)
        apply_balance_delta(
            scope, current["account_id"], -balance_effect(current["type"], current["amount"])
        )
        scope.delete(transactions, transaction_id)
    safe_notify(notifier, user_id, "transaction:deleted", {"id": transaction_id})


def list_transactions(
    engine: Engine,
    user_id: int,
    *,
    type: Optional[str] = None,
    category: Optional[str] = None,
    account_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[RowMapping], int]:
    """One page of transactions, newest first, and the total match count."""
    criteria = []
    if type:
        criteria.append(transactions.c.type == _transaction_type(type))
    if category:
        criteria.append(transactions.c.category == category)
    if account_id is not None:
        criteria.append(transactions.c.account_id == account_id)
    if start_date:
        criteria.append(transactions.c.date >= start_date)
    if end_date:
        criteria.append(transactions.c.date <= end_date)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        criteria.append(
            or_(
                transactions.c.description.ilike(pattern),
                transactions.c.merchant.ilike(pattern),
                transactions.c.category.ilike(pattern),
            )
        )
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    with engine.begin() as conn:
        rows = OwnerScope(conn, user_id).find(
            transactions,
            *criteria,
            order_by=[transactions.c.date.desc(), transactions.c.id.desc()],
            limit=limit,
            offset=(page - 1) * limit,
        )
        total = conn.execute(
            select(func.count()).where(transactions.c.user_id == user_id, *criteria)
        ).scalar_one()
    return rows, int(total)


def transaction_stats(
    engine: Engine, user_id: int, days: int = 30, as_of: Optional[date] = None
) -> TransactionStats:
    as_of = as_of or _today()
    window = (
        transactions.c.user_id == user_id,
        transactions.c.date >= trend_window_start(as_of, days),
        transactions.c.date <= as_of,
    )
    with engine.begin() as conn:
        by_type = conn.execute(
            select(transactions.c.type, func.sum(transactions.c.amount), func.count())
            .where(*window)
            .group_by(transactions.c.type)
        ).all()
        by_category = conn.execute(
            select(transactions.c.category, func.sum(transactions.c.amount), func.count())
            .where(*window, transactions.c.type == "expense")
            .group_by(transactions.c.category)
        ).all()
        merchants = conn.execute(
            select(transactions.c.merchant, func.sum(transactions.c.amount), func.count())
            .where(*window, transactions.c.type == "expense", transactions.c.merchant.is_not(None))
            .group_by(transactions.c.merchant)
        ).all()
    return TransactionStats(
        period_days=days,
        by_type=type_stats(by_type),
        by_category=spending_by_category(by_category),
        top_merchants=top_merchants(merchants, limit=5),
    )


def apply_balance_delta(scope: OwnerScope, account_id: int, delta: Decimal) -> None:
    if delta == ZERO:
        return
    row = scope.update(accounts, account_id, balance=accounts.c.balance + delta)
    if row is None:
        raise NotFound("Account not found.")


def _recurring_values(
    frequency: Optional[str],
    next_date: Optional[date],
    end_date: Optional[date],
    txn_date: date,
) -> dict[str, Any]:
    if not frequency:
        return {
            "is_recurring": False,
            "recurring_frequency": None,
            "recurring_next_date": None,
            "recurring_end_date": None,
        }
    try:
        frequency = validate_transaction_frequency(frequency)
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc
    if end_date is not None and end_date < txn_date:
        raise InvalidArgument("Recurring end date must not be before the transaction date.")
    return {
        "is_recurring": True,
        "recurring_frequency": frequency,
        "recurring_next_date": next_date or next_transaction_date(txn_date, frequency),
        "recurring_end_date": end_date,
    }


def _validate_account(values: Mapping[str, Any]) -> dict[str, Any]:
    cleaned = dict(values)
    if "name" in cleaned:
        cleaned["name"] = (cleaned["name"] or "").strip()
        if not cleaned["name"]:
            raise InvalidArgument("Account name required.")
    if "type" in cleaned:
        account_type = (cleaned["type"] or "").strip().lower()
        if account_type not in ACCOUNT_TYPES:
            raise InvalidArgument("Invalid account type.")
        cleaned["type"] = account_type
    if "currency" in cleaned:
        cleaned["currency"] = _currency(cleaned["currency"])
    if "institution" in cleaned:
        cleaned["institution"] = (cleaned["institution"] or "").strip() or None
    if "include_in_total" in cleaned:
        cleaned["include_in_total"] = bool(cleaned["include_in_total"])
    return cleaned


def _validate_transaction(values: Mapping[str, Any]) -> dict[str, Any]:
    cleaned = dict(values)
    if "type" in cleaned:
        cleaned["type"] = _transaction_type(cleaned["type"])
    if "amount" in cleaned:
        cleaned["amount"] = _money(cleaned["amount"])
        if cleaned["amount"] <= ZERO:
            raise InvalidArgument("Amount must be greater than zero.")
    if "date" in cleaned and cleaned["date"] is None:
        raise InvalidArgument("Transaction date required.")
    for key in ("category", "description", "merchant", "notes"):
        if key in cleaned:
            cleaned[key] = (cleaned[key] or "").strip() or None
    return cleaned


def _transaction_type(value: str) -> str:
    try:
        return normalize_transaction_type(value or "")
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc


def _currency(value: str) -> str:
    try:
        return normalize_currency(value or "")
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc


def _today():
    return date.today()


def _money(amount: Any) -> Decimal:
    if amount is None:
        return ZERO
    try:
        return to_cents(amount)
    except ArithmeticError as exc:
        raise InvalidArgument("Amount must be a number.") from exc
