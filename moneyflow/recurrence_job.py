"""Daily recurrence tick.

Meant to be triggered once a day by an external scheduler (see
``moneyflow.cli``). Each occurrence is committed in its own database
transaction; a failing occurrence is logged and counted and never stops
the rest of the run. The tick assumes a single running instance; several
schedulers need a distributed lock around it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
import logging
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.engine import Engine, RowMapping

from moneyflow.balance_engine import balance_effect
from moneyflow.bill_service import STATUS_OVERDUE, STATUS_PENDING
from moneyflow.db import bills, transactions
from moneyflow.ledger_service import apply_balance_delta
from moneyflow.notifications import Notifier, record_notification, safe_notify
from moneyflow.recurrence import (
    RecurringRule,
    advance_past,
    days_until_due,
    is_occurrence_due,
    reminder_priority,
)
from moneyflow.repository import OwnerScope

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_WINDOW_DAYS = 3
RECURRING_SUFFIX = " (Recurring)"


@dataclass
class RecurrenceTickResult:
    as_of: date
    transactions_created: int = 0
    transactions_failed: int = 0
    reminders_sent: int = 0
    reminders_failed: int = 0
    bills_marked_overdue: int = 0
    overdue_failed: int = 0

    @property
    def failed(self) -> int:
        return self.transactions_failed + self.reminders_failed + self.overdue_failed


def run_daily_recurrence_tick(
    engine: Engine,
    as_of: Optional[date] = None,
    notifier: Notifier | None = None,
    reminder_window_days: int = DEFAULT_REMINDER_WINDOW_DAYS,
) -> RecurrenceTickResult:
    today = as_of or date.today()
    result = RecurrenceTickResult(as_of=today)
    logger.info("Recurrence tick started for %s", today)
    process_recurring_transactions(engine, today, result, notifier)
    send_bill_reminders(engine, today, result, notifier, reminder_window_days)
    mark_overdue_bills(engine, today, result, notifier)
    logger.info(
        "Recurrence tick finished for %s: %s transactions, %s reminders, %s overdue, %s failed",
        today,
        result.transactions_created,
        result.reminders_sent,
        result.bills_marked_overdue,
        result.failed,
    )
    return result


def process_recurring_transactions(
    engine: Engine, today: date, result: RecurrenceTickResult, notifier: Notifier | None = None
) -> None:
    with engine.begin() as conn:
        due = conn.execute(
            select(transactions.c.id, transactions.c.user_id).where(
                transactions.c.is_recurring.is_(True),
                transactions.c.recurring_next_date <= today,
                or_(
                    transactions.c.recurring_end_date.is_(None),
                    transactions.c.recurring_end_date >= today,
                ),
            ).order_by(transactions.c.id)
        ).all()

    for template_id, user_id in due:
        try:
            occurrence = _materialize_occurrence(engine, template_id, user_id, today)
        except Exception:
            logger.exception("Recurring transaction %s failed", template_id)
            result.transactions_failed += 1
            continue
        if occurrence is None:
            continue
        created, notification = occurrence
        result.transactions_created += 1
        safe_notify(notifier, user_id, "transaction:created", created)
        safe_notify(notifier, user_id, "notification:new", notification)


def _materialize_occurrence(
    engine: Engine, template_id: int, user_id: int, today: date
) -> Optional[tuple[RowMapping, RowMapping]]:
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        template = scope.get_for_update(transactions, template_id)
        if template is None or not template["is_recurring"]:
            return None
        rule = RecurringRule(
            frequency=template["recurring_frequency"] or "",
            next_date=template["recurring_next_date"],
            end_date=template["recurring_end_date"],
        )
        # Another run may have advanced the rule since it was selected.
        if rule.next_date is None or not is_occurrence_due(rule, today):
            return None

        description = (template["description"] or template["category"]) + RECURRING_SUFFIX
        created = scope.insert(
            transactions,
            account_id=template["account_id"],
            type=template["type"],
            amount=template["amount"],
            category=template["category"],
            description=description[:500],
            merchant=template["merchant"],
            notes=template["notes"],
            date=today,
            is_recurring=False,
        )
        apply_balance_delta(scope, created["account_id"], balance_effect(created["type"], created["amount"]))
        scope.update(
            transactions,
            template_id,
            recurring_next_date=advance_past(rule.next_date, rule.frequency, today),
        )
        notification = record_notification(
            scope,
            "transaction",
            "Recurring Transaction Created",
            f"{created['type'].capitalize()} of {created['amount']} for {description}.",
            priority="low",
            data={"transactionId": created["id"], "templateId": template_id},
        )
    logger.info("Recurring transaction %s produced %s", template_id, created["id"])
    return created, notification


def send_bill_reminders(
    engine: Engine,
    today: date,
    result: RecurrenceTickResult,
    notifier: Notifier | None = None,
    window_days: int = DEFAULT_REMINDER_WINDOW_DAYS,
) -> None:
    with engine.begin() as conn:
        due = conn.execute(
            select(bills.c.id, bills.c.user_id).where(
                bills.c.is_active.is_(True),
                bills.c.status == STATUS_PENDING,
                bills.c.due_date >= today,
                bills.c.due_date <= today + timedelta(days=window_days),
                or_(bills.c.last_reminded_on.is_(None), bills.c.last_reminded_on < today),
            ).order_by(bills.c.due_date, bills.c.id)
        ).all()

    for bill_id, user_id in due:
        try:
            with engine.begin() as conn:
                scope = OwnerScope(conn, user_id)
                bill = scope.update(
                    bills,
                    bill_id,
                    bills.c.status == STATUS_PENDING,
                    or_(bills.c.last_reminded_on.is_(None), bills.c.last_reminded_on < today),
                    last_reminded_on=today,
                )
                if bill is None:
                    continue
                days_left = days_until_due(bill["due_date"], today)
                notification = record_notification(
                    scope,
                    "bill_reminder",
                    "Bill Due Soon",
                    f"{bill['name']} ({bill['amount']}) is due {_due_phrase(days_left)}.",
                    priority=reminder_priority(days_left),
                    data={"billId": bill_id, "dueDate": bill["due_date"], "amount": bill["amount"]},
                )
        except Exception:
            logger.exception("Reminder for bill %s failed", bill_id)
            result.reminders_failed += 1
            continue
        result.reminders_sent += 1
        safe_notify(notifier, user_id, "notification:new", notification)


def mark_overdue_bills(
    engine: Engine, today: date, result: RecurrenceTickResult, notifier: Notifier | None = None
) -> None:
    with engine.begin() as conn:
        due = conn.execute(
            select(bills.c.id, bills.c.user_id).where(
                bills.c.is_active.is_(True),
                bills.c.status == STATUS_PENDING,
                bills.c.due_date < today,
            ).order_by(bills.c.due_date, bills.c.id)
        ).all()

    for bill_id, user_id in due:
        try:
            with engine.begin() as conn:
                scope = OwnerScope(conn, user_id)
                bill = scope.update(
                    bills, bill_id, bills.c.status == STATUS_PENDING, status=STATUS_OVERDUE
                )
                if bill is None:
                    continue
                notification = record_notification(
                    scope,
                    "bill_overdue",
                    "Bill Overdue",
                    f"{bill['name']} ({bill['amount']}) was due on {bill['due_date'].isoformat()}.",
                    priority="high",
                    data={"billId": bill_id, "dueDate": bill["due_date"], "amount": bill["amount"]},
                )
        except Exception:
            logger.exception("Overdue check for bill %s failed", bill_id)
            result.overdue_failed += 1
            continue
        result.bills_marked_overdue += 1
        safe_notify(notifier, user_id, "notification:new", notification)


def _due_phrase(days_left: int) -> str:
    if days_left <= 0:
        return "today"
    if days_left == 1:
        return "tomorrow"
    return f"in {days_left} days"
