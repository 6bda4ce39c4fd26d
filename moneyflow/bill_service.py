from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
import logging
from typing import Any, Mapping, Optional

from sqlalchemy import false
from sqlalchemy.engine import Engine, RowMapping

from moneyflow.balance_engine import to_cents
from moneyflow.db import accounts, bills
from moneyflow.errors import Conflict, InvalidArgument, NotFound
from moneyflow.notifications import Notifier, safe_notify
from moneyflow.recurrence import (
    BillSnapshot,
    BillsSummary,
    bill_status,
    days_until_due,
    next_bill_due_date,
    summarize_bills,
    validate_bill_frequency,
)
from moneyflow.repository import OwnerScope

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_OVERDUE = "overdue"
BILL_FIELDS = {
    "name",
    "amount",
    "category",
    "due_date",
    "frequency",
    "linked_account_id",
    "auto_pay",
    "reminder_days",
    "notes",
    "is_active",
}
# Fields a successor inherits from the bill that was paid.
CLONED_FIELDS = (
    "name",
    "amount",
    "category",
    "frequency",
    "linked_account_id",
    "auto_pay",
    "reminder_days",
    "notes",
)


@dataclass(frozen=True)
class BillView:
    bill: RowMapping
    status: str
    days_until_due: int


@dataclass(frozen=True)
class PaidBill:
    bill: RowMapping
    next_bill: Optional[RowMapping]


def to_snapshot(row: Mapping[str, Any]) -> BillSnapshot:
    return BillSnapshot(
        amount=_coerce_amount(row["amount"]),
        due_date=row["due_date"],
        is_paid=row["is_paid"],
        paid_date=row["paid_date"],
        reminder_days=row["reminder_days"],
        is_active=row["is_active"],
    )


def describe(row: RowMapping, today: date) -> BillView:
    return BillView(
        bill=row,
        status=bill_status(to_snapshot(row), today),
        days_until_due=days_until_due(row["due_date"], today),
    )


def create_bill(
    engine: Engine,
    user_id: int,
    *,
    name: str,
    amount: Decimal,
    category: str,
    due_date: date,
    frequency: str = "monthly",
    linked_account_id: Optional[int] = None,
    auto_pay: bool = False,
    reminder_days: int = 3,
    notes: Optional[str] = None,
    notifier: Notifier | None = None,
) -> RowMapping:
    values = _validate(
        {
            "name": name,
            "amount": amount,
            "category": category,
            "due_date": due_date,
            "frequency": frequency,
            "linked_account_id": linked_account_id,
            "auto_pay": auto_pay,
            "reminder_days": reminder_days,
            "notes": notes,
        }
    )
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        _check_linked_account(scope, values.get("linked_account_id"))
        row = scope.insert(bills, status=STATUS_PENDING, is_paid=False, is_active=True, **values)
    safe_notify(notifier, user_id, "bill:created", row)
    return row


def list_bills(
    engine: Engine,
    user_id: int,
    *,
    is_paid: Optional[bool] = None,
    category: Optional[str] = None,
    include_inactive: bool = False,
) -> list[RowMapping]:
    criteria = []
    if not include_inactive:
        criteria.append(bills.c.is_active.is_(True))
    if is_paid is not None:
        criteria.append(bills.c.is_paid.is_(bool(is_paid)))
    if category:
        criteria.append(bills.c.category == category)
    with engine.begin() as conn:
        return OwnerScope(conn, user_id).find(
            bills, *criteria, order_by=[bills.c.due_date.asc(), bills.c.id.asc()]
        )


def get_bill(engine: Engine, user_id: int, bill_id: int) -> RowMapping:
    with engine.begin() as conn:
        return OwnerScope(conn, user_id).require(bills, bill_id, "Bill")


def update_bill(
    engine: Engine,
    user_id: int,
    bill_id: int,
    changes: Mapping[str, Any],
    notifier: Notifier | None = None,
) -> RowMapping:
    unknown = set(changes) - BILL_FIELDS
    if unknown:
        raise InvalidArgument(f"Unsupported bill fields: {', '.join(sorted(unknown))}")
    values = _validate(changes)
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        current = scope.require(bills, bill_id, "Bill")
        if "linked_account_id" in values:
            _check_linked_account(scope, values["linked_account_id"])
        # A moved due date on an unpaid bill starts over as pending; the
        # daily tick marks it overdue again if needed.
        if "due_date" in values and not current["is_paid"]:
            values["status"] = STATUS_PENDING
            values["last_reminded_on"] = None
        row = scope.update(bills, bill_id, **values) if values else current
    safe_notify(notifier, user_id, "bill:updated", row)
    return row


def delete_bill(engine: Engine, user_id: int, bill_id: int, notifier: Notifier | None = None) -> None:
    with engine.begin() as conn:
        if not OwnerScope(conn, user_id).delete(bills, bill_id):
            raise NotFound("Bill not found.")
    safe_notify(notifier, user_id, "bill:deleted", {"id": bill_id})


def pay_bill(
    engine: Engine,
    user_id: int,
    bill_id: int,
    as_of: Optional[date] = None,
    notifier: Notifier | None = None,
) -> PaidBill:
    """Mark a bill paid and schedule its successor.

    The paid flag flips with a conditional update, so two racing payments
    cannot both succeed and the successor is created exactly once.
    """
    today = as_of or date.today()
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        current = scope.require(bills, bill_id, "Bill")
        paid = scope.update(
            bills,
            bill_id,
            bills.c.is_paid == false(),
            is_paid=True,
            paid_date=today,
            status=STATUS_PAID,
        )
        if paid is None:
            raise Conflict("Bill is already paid.")
        successor = None
        next_due = next_bill_due_date(current["due_date"], current["frequency"])
        if next_due is not None:
            successor = scope.insert(
                bills,
                due_date=next_due,
                status=STATUS_PENDING,
                is_paid=False,
                is_active=True,
                **{field: current[field] for field in CLONED_FIELDS},
            )
    logger.info("Bill %s paid by user %s", bill_id, user_id)
    safe_notify(notifier, user_id, "bill:paid", paid)
    if successor is not None:
        safe_notify(notifier, user_id, "bill:created", successor)
    return PaidBill(bill=paid, next_bill=successor)


def upcoming_bills(
    engine: Engine, user_id: int, days: int = 7, as_of: Optional[date] = None
) -> list[RowMapping]:
    today = as_of or date.today()
    with engine.begin() as conn:
        return OwnerScope(conn, user_id).find(
            bills,
            bills.c.is_active.is_(True),
            bills.c.is_paid.is_(False),
            bills.c.due_date >= today,
            bills.c.due_date <= today + timedelta(days=days),
            order_by=[bills.c.due_date.asc(), bills.c.id.asc()],
        )


def overdue_bills(engine: Engine, user_id: int, as_of: Optional[date] = None) -> list[RowMapping]:
    today = as_of or date.today()
    with engine.begin() as conn:
        return OwnerScope(conn, user_id).find(
            bills,
            bills.c.is_active.is_(True),
            bills.c.is_paid.is_(False),
            bills.c.due_date < today,
            order_by=[bills.c.due_date.asc(), bills.c.id.asc()],
        )


def bills_summary(engine: Engine, user_id: int, as_of: Optional[date] = None) -> BillsSummary:
    today = as_of or date.today()
    rows = list_bills(engine, user_id)
    return summarize_bills([to_snapshot(row) for row in rows], today)


def _check_linked_account(scope: OwnerScope, account_id: Optional[int]) -> None:
    if account_id is not None and not scope.exists(accounts, account_id):
        raise NotFound("Linked account not found.")


def _validate(values: Mapping[str, Any]) -> dict[str, Any]:
    cleaned = dict(values)
    for key, label in (("name", "Bill name"), ("category", "Bill category")):
        if key in cleaned:
            cleaned[key] = (cleaned[key] or "").strip()
            if not cleaned[key]:
                raise InvalidArgument(f"{label} required.")
    if "amount" in cleaned:
        cleaned["amount"] = _coerce_amount(cleaned["amount"])
        if cleaned["amount"] <= ZERO:
            raise InvalidArgument("Bill amount must be greater than zero.")
    if "due_date" in cleaned and cleaned["due_date"] is None:
        raise InvalidArgument("Due date required.")
    if "frequency" in cleaned:
        try:
            cleaned["frequency"] = validate_bill_frequency(cleaned["frequency"] or "")
        except ValueError as exc:
            raise InvalidArgument(str(exc)) from exc
    if "reminder_days" in cleaned:
        reminder_days = cleaned["reminder_days"]
        if reminder_days is None or not 0 <= int(reminder_days) <= 30:
            raise InvalidArgument("Reminder days must be between 0 and 30.")
        cleaned["reminder_days"] = int(reminder_days)
    if "notes" in cleaned:
        cleaned["notes"] = (cleaned["notes"] or "").strip() or None
    for key in ("auto_pay", "is_active"):
        if key in cleaned:
            cleaned[key] = bool(cleaned[key])
    return cleaned


def _coerce_amount(amount: Any) -> Decimal:
    try:
        return to_cents(amount)
    except ArithmeticError as exc:
        raise InvalidArgument("Amount must be a number.") from exc
