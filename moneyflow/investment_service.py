from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional

from sqlalchemy.engine import Engine, RowMapping

from moneyflow.db import accounts, investments
from moneyflow.errors import InvalidArgument, NotFound
from moneyflow.notifications import Notifier, safe_notify
from moneyflow.portfolio import Holding, PortfolioSummary, normalize_investment_type, summarize_portfolio
from moneyflow.repository import OwnerScope

ZERO = Decimal("0")
INVESTMENT_FIELDS = {
    "name",
    "symbol",
    "type",
    "shares",
    "purchase_price",
    "current_price",
    "purchase_date",
    "linked_account_id",
    "notes",
    "is_active",
}


def to_holding(row: Mapping[str, Any]) -> Holding:
    return Holding(
        type=row["type"],
        shares=Decimal(str(row["shares"])),
        purchase_price=Decimal(str(row["purchase_price"])),
        current_price=Decimal(str(row["current_price"])) if row["current_price"] is not None else None,
        is_active=row["is_active"],
    )


def create_investment(
    engine: Engine,
    user_id: int,
    *,
    name: str,
    type: str,
    shares: Decimal,
    purchase_price: Decimal,
    purchase_date: Optional[date] = None,
    symbol: Optional[str] = None,
    current_price: Optional[Decimal] = None,
    linked_account_id: Optional[int] = None,
    notes: Optional[str] = None,
    notifier: Notifier | None = None,
) -> RowMapping:
    values = _validate(
        {
            "name": name,
            "type": type,
            "shares": shares,
            "purchase_price": purchase_price,
            "purchase_date": purchase_date or date.today(),
            "symbol": symbol,
            "current_price": current_price,
            "linked_account_id": linked_account_id,
            "notes": notes,
        }
    )
    if values["current_price"] is None:
        values["current_price"] = values["purchase_price"]
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        _check_linked_account(scope, values["linked_account_id"])
        row = scope.insert(investments, is_active=True, **values)
    safe_notify(notifier, user_id, "investment:created", row)
    return row


def list_investments(
    engine: Engine, user_id: int, type: Optional[str] = None, include_inactive: bool = False
) -> list[RowMapping]:
    criteria = []
    if not include_inactive:
        criteria.append(investments.c.is_active.is_(True))
    if type:
        criteria.append(investments.c.type == _investment_type(type))
    with engine.begin() as conn:
        return OwnerScope(conn, user_id).find(
            investments, *criteria, order_by=[investments.c.purchase_date.desc(), investments.c.id.desc()]
        )


def get_investment(engine: Engine, user_id: int, investment_id: int) -> RowMapping:
    with engine.begin() as conn:
        return OwnerScope(conn, user_id).require(investments, investment_id, "Investment")


def update_investment(
    engine: Engine,
    user_id: int,
    investment_id: int,
    changes: Mapping[str, Any],
    notifier: Notifier | None = None,
) -> RowMapping:
    unknown = set(changes) - INVESTMENT_FIELDS
    if unknown:
        raise InvalidArgument(f"Unsupported investment fields: {', '.join(sorted(unknown))}")
    values = _validate(changes)
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        current = scope.require(investments, investment_id, "Investment")
        if "linked_account_id" in values:
            _check_linked_account(scope, values["linked_account_id"])
        row = scope.update(investments, investment_id, **values) if values else current
    safe_notify(notifier, user_id, "investment:updated", row)
    return row


def delete_investment(
    engine: Engine, user_id: int, investment_id: int, notifier: Notifier | None = None
) -> None:
    with engine.begin() as conn:
        if not OwnerScope(conn, user_id).delete(investments, investment_id):
            raise NotFound("Investment not found.")
    safe_notify(notifier, user_id, "investment:deleted", {"id": investment_id})


def portfolio_summary(engine: Engine, user_id: int) -> PortfolioSummary:
    return summarize_portfolio(to_holding(row) for row in list_investments(engine, user_id))


def _check_linked_account(scope: OwnerScope, account_id: Optional[int]) -> None:
    if account_id is not None and not scope.exists(accounts, account_id):
        raise NotFound("Linked account not found.")


def _validate(values: Mapping[str, Any]) -> dict[str, Any]:
    cleaned = dict(values)
    if "name" in cleaned:
        cleaned["name"] = (cleaned["name"] or "").strip()
        if not cleaned["name"]:
            raise InvalidArgument("Investment name required.")
    if "type" in cleaned:
        cleaned["type"] = _investment_type(cleaned["type"])
    if "symbol" in cleaned:
        cleaned["symbol"] = (cleaned["symbol"] or "").strip().upper() or None
    if "shares" in cleaned:
        cleaned["shares"] = _decimal(cleaned["shares"], "Shares")
        if cleaned["shares"] <= ZERO:
            raise InvalidArgument("Shares must be greater than zero.")
    for key, label in (("purchase_price", "Purchase price"), ("current_price", "Current price")):
        if key in cleaned and cleaned[key] is not None:
            cleaned[key] = _decimal(cleaned[key], label)
            if cleaned[key] < ZERO:
                raise InvalidArgument(f"{label} cannot be negative.")
    if "purchase_price" in cleaned and cleaned["purchase_price"] is None:
        raise InvalidArgument("Purchase price required.")
    if "purchase_date" in cleaned and cleaned["purchase_date"] is None:
        raise InvalidArgument("Purchase date required.")
    if "notes" in cleaned:
        cleaned["notes"] = (cleaned["notes"] or "").strip() or None
    if "is_active" in cleaned:
        cleaned["is_active"] = bool(cleaned["is_active"])
    return cleaned


def _investment_type(value: str) -> str:
    try:
        return normalize_investment_type(value or "")
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc


def _decimal(value: Any, label: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except ArithmeticError as exc:
        raise InvalidArgument(f"{label} must be a number.") from exc
