from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Any, Mapping, Optional

from sqlalchemy.engine import Engine, RowMapping

from moneyflow import goal_engine
from moneyflow.balance_engine import to_cents
from moneyflow.db import accounts, goals
from moneyflow.errors import InvalidArgument, NotFound
from moneyflow.goal_engine import Goal, GoalProgress, GoalsSummary
from moneyflow.notifications import Notifier, record_notification, safe_notify
from moneyflow.repository import OwnerScope

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
GOAL_FIELDS = {
    "name",
    "description",
    "target_amount",
    "category",
    "target_date",
    "priority",
    "linked_account_id",
    "is_active",
}


@dataclass(frozen=True)
class GoalWithProgress:
    goal: RowMapping
    progress: GoalProgress


@dataclass(frozen=True)
class GoalChange:
    goal: GoalWithProgress
    completed_now: bool
    notification: Optional[RowMapping] = None


def to_goal(row: Mapping[str, Any]) -> Goal:
    return Goal(
        target_amount=_coerce_amount(row["target_amount"]),
        current_amount=_coerce_amount(row["current_amount"]),
        target_date=row["target_date"],
        created_at=row["created_at"],
        is_completed=row["is_completed"],
        completed_at=row["completed_at"],
    )


def with_progress(row: RowMapping, now: datetime) -> GoalWithProgress:
    return GoalWithProgress(goal=row, progress=goal_engine.goal_progress(to_goal(row), now))


def create_goal(
    engine: Engine,
    user_id: int,
    *,
    name: str,
    target_amount: Decimal,
    target_date: date,
    category: str = "other",
    description: Optional[str] = None,
    priority: str = "medium",
    current_amount: Decimal = ZERO,
    linked_account_id: Optional[int] = None,
    now: Optional[datetime] = None,
    notifier: Notifier | None = None,
) -> GoalWithProgress:
    now = now or datetime.now()
    values = _validate(
        {
            "name": name,
            "target_amount": target_amount,
            "target_date": target_date,
            "category": category,
            "description": description,
            "priority": priority,
            "linked_account_id": linked_account_id,
        },
        now.date(),
    )
    current = _coerce_amount(current_amount)
    if current < ZERO:
        raise InvalidArgument("Current amount cannot be negative.")
    completed = current >= values["target_amount"]
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        _check_linked_account(scope, values.get("linked_account_id"))
        row = scope.insert(
            goals,
            current_amount=current,
            is_completed=completed,
            completed_at=now if completed else None,
            is_active=True,
            created_at=now,
            **values,
        )
    safe_notify(notifier, user_id, "goal:created", row)
    return with_progress(row, now)


def list_goals(
    engine: Engine,
    user_id: int,
    *,
    category: Optional[str] = None,
    is_completed: Optional[bool] = None,
    include_inactive: bool = False,
    now: Optional[datetime] = None,
) -> list[GoalWithProgress]:
    now = now or datetime.now()
    criteria = []
    if not include_inactive:
        criteria.append(goals.c.is_active.is_(True))
    if category:
        criteria.append(goals.c.category == category)
    if is_completed is not None:
        criteria.append(goals.c.is_completed.is_(bool(is_completed)))
    with engine.begin() as conn:
        rows = OwnerScope(conn, user_id).find(
            goals, *criteria, order_by=[goals.c.target_date.asc(), goals.c.id.asc()]
        )
    return [with_progress(row, now) for row in rows]


def get_goal(
    engine: Engine, user_id: int, goal_id: int, now: Optional[datetime] = None
) -> GoalWithProgress:
    now = now or datetime.now()
    with engine.begin() as conn:
        row = OwnerScope(conn, user_id).require(goals, goal_id, "Goal")
    return with_progress(row, now)


def update_goal(
    engine: Engine,
    user_id: int,
    goal_id: int,
    changes: Mapping[str, Any],
    now: Optional[datetime] = None,
    notifier: Notifier | None = None,
) -> GoalWithProgress:
    now = now or datetime.now()
    unknown = set(changes) - GOAL_FIELDS
    if unknown:
        raise InvalidArgument(f"Unsupported goal fields: {', '.join(sorted(unknown))}")
    values = _validate(changes, now.date())
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        current = scope.require(goals, goal_id, "Goal", for_update=True)
        if "linked_account_id" in values:
            _check_linked_account(scope, values["linked_account_id"])
        if "target_amount" in values:
            moved = goal_engine.reconcile_completion(
                to_goal({**current, "target_amount": values["target_amount"]}), now
            )
            values["is_completed"] = moved.is_completed
            values["completed_at"] = moved.completed_at
        row = scope.update(goals, goal_id, **values) if values else current
    safe_notify(notifier, user_id, "goal:updated", row)
    return with_progress(row, now)


def delete_goal(engine: Engine, user_id: int, goal_id: int, notifier: Notifier | None = None) -> None:
    with engine.begin() as conn:
        if not OwnerScope(conn, user_id).delete(goals, goal_id):
            raise NotFound("Goal not found.")
    safe_notify(notifier, user_id, "goal:deleted", {"id": goal_id})


def contribute_to_goal(
    engine: Engine,
    user_id: int,
    goal_id: int,
    amount: Decimal,
    now: Optional[datetime] = None,
    notifier: Notifier | None = None,
) -> GoalChange:
    now = now or datetime.now()
    amount = _positive(amount)
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        current = scope.require(goals, goal_id, "Goal", for_update=True)
        before = to_goal(current)
        after = goal_engine.contribute(before, amount, now)
        row = _store(scope, goal_id, after)
        completed_now = after.is_completed and not before.is_completed
        notification = None
        if completed_now:
            notification = record_notification(
                scope,
                "goal_completed",
                "Goal Completed!",
                f"Congratulations! You've reached your {row['name']} goal.",
                priority="high",
                data={"goalId": goal_id, "targetAmount": row["target_amount"]},
            )
    safe_notify(notifier, user_id, "goal:contributed", row)
    if notification is not None:
        logger.info("Goal %s completed for user %s", goal_id, user_id)
        safe_notify(notifier, user_id, "notification:new", notification)
    return GoalChange(goal=with_progress(row, now), completed_now=completed_now, notification=notification)


def withdraw_from_goal(
    engine: Engine,
    user_id: int,
    goal_id: int,
    amount: Decimal,
    now: Optional[datetime] = None,
    notifier: Notifier | None = None,
) -> GoalChange:
    now = now or datetime.now()
    amount = _positive(amount)
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        current = scope.require(goals, goal_id, "Goal", for_update=True)
        after = goal_engine.withdraw(to_goal(current), amount)
        row = _store(scope, goal_id, after)
    safe_notify(notifier, user_id, "goal:withdrawn", row)
    return GoalChange(goal=with_progress(row, now), completed_now=False)


def goals_summary(engine: Engine, user_id: int, now: Optional[datetime] = None) -> GoalsSummary:
    now = now or datetime.now()
    with engine.begin() as conn:
        rows = OwnerScope(conn, user_id).find(goals, goals.c.is_active.is_(True))
    return goal_engine.summarize_goals([to_goal(row) for row in rows], now)


def _store(scope: OwnerScope, goal_id: int, goal: Goal) -> RowMapping:
    return scope.update(
        goals,
        goal_id,
        current_amount=goal.current_amount,
        is_completed=goal.is_completed,
        completed_at=goal.completed_at,
    )


def _check_linked_account(scope: OwnerScope, account_id: Optional[int]) -> None:
    if account_id is not None and not scope.exists(accounts, account_id):
        raise NotFound("Linked account not found.")


def _validate(values: Mapping[str, Any], today: date) -> dict[str, Any]:
    cleaned = dict(values)
    for key, label in (("name", "Goal name"), ("category", "Goal category")):
        if key in cleaned:
            cleaned[key] = (cleaned[key] or "").strip()
            if not cleaned[key]:
                raise InvalidArgument(f"{label} required.")
    if "target_amount" in cleaned:
        cleaned["target_amount"] = _positive(cleaned["target_amount"], "Target")
    if "target_date" in cleaned:
        if cleaned["target_date"] is None:
            raise InvalidArgument("Target date required.")
        try:
            goal_engine.validate_target_date(cleaned["target_date"], today)
        except ValueError as exc:
            raise InvalidArgument(str(exc)) from exc
    if "priority" in cleaned:
        priority = (cleaned["priority"] or "").strip().lower()
        if priority not in goal_engine.PRIORITIES:
            raise InvalidArgument("Priority must be low, medium, or high.")
        cleaned["priority"] = priority
    if "description" in cleaned:
        cleaned["description"] = (cleaned["description"] or "").strip() or None
    if "is_active" in cleaned:
        cleaned["is_active"] = bool(cleaned["is_active"])
    return cleaned


def _positive(amount: Any, label: str = "Amount") -> Decimal:
    value = _coerce_amount(amount)
    if value <= ZERO:
        raise InvalidArgument(f"{label} must be greater than zero.")
    return value


def _coerce_amount(amount: Any) -> Decimal:
    if amount is None:
        return ZERO
    try:
        return to_cents(amount)
    except ArithmeticError as exc:
        raise InvalidArgument("Amount must be a number.") from exc
