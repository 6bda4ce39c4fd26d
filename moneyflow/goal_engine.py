from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, time
from decimal import Decimal
import math
from typing import Iterable, Optional

from moneyflow.budget_engine import percent_of
from moneyflow.errors import InsufficientBalance

ZERO = Decimal("0")
SECONDS_PER_DAY = 24 * 60 * 60
DAYS_PER_MONTH = 30
PRIORITIES = {"low", "medium", "high"}

STATUS_COMPLETED = "completed"
STATUS_ON_TRACK = "on-track"
STATUS_BEHIND = "behind"
STATUS_AT_RISK = "at-risk"


@dataclass(frozen=True)
class Goal:
    target_amount: Decimal
    current_amount: Decimal
    target_date: date
    created_at: datetime
    is_completed: bool = False
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class GoalProgress:
    progress: int
    remaining: Decimal
    days_left: int
    monthly_required: Decimal
    expected_progress: float
    status: str


@dataclass(frozen=True)
class GoalsSummary:
    total_goals: int
    total_target: Decimal
    total_saved: Decimal
    overall_progress: int
    completed: int
    in_progress: int
    on_track: int
    behind: int
    at_risk: int


def contribute(goal: Goal, amount: Decimal, now: datetime) -> Goal:
    amount = _positive(amount, "Contribution")
    updated = replace(goal, current_amount=_coerce_amount(goal.current_amount) + amount)
    if not updated.is_completed and updated.current_amount >= _coerce_amount(goal.target_amount):
        updated = replace(updated, is_completed=True, completed_at=now)
    return updated


def withdraw(goal: Goal, amount: Decimal) -> Goal:
    amount = _positive(amount, "Withdrawal")
    current = _coerce_amount(goal.current_amount)
    if amount > current:
        raise InsufficientBalance("Withdrawal amount exceeds current balance.")
    updated = replace(goal, current_amount=current - amount)
    if updated.is_completed and updated.current_amount < _coerce_amount(goal.target_amount):
        updated = replace(updated, is_completed=False, completed_at=None)
    return updated


def reconcile_completion(goal: Goal, now: datetime) -> Goal:
    """Re-derive completion after the target moved."""
    reached = _coerce_amount(goal.current_amount) >= _coerce_amount(goal.target_amount)
    if reached and not goal.is_completed:
        return replace(goal, is_completed=True, completed_at=now)
    if not reached and goal.is_completed:
        return replace(goal, is_completed=False, completed_at=None)
    return goal


def goal_progress(goal: Goal, now: datetime) -> GoalProgress:
    target = _coerce_amount(goal.target_amount)
    current = _coerce_amount(goal.current_amount)
    progress = percent_of(current, target, cap=100)
    remaining = max(ZERO, target - current)
    target_moment = _as_datetime(goal.target_date)

    days_left = max(0, _ceil_days(target_moment - now))
    days_total = _ceil_days(target_moment - goal.created_at)
    days_passed = days_total - days_left
    expected = (days_passed / days_total) * 100 if days_total > 0 else 0.0

    if goal.is_completed:
        status = STATUS_COMPLETED
    elif progress >= expected * 0.9:
        status = STATUS_ON_TRACK
    elif progress >= expected * 0.5:
        status = STATUS_BEHIND
    else:
        status = STATUS_AT_RISK

    return GoalProgress(
        progress=progress,
        remaining=remaining,
        days_left=days_left,
        monthly_required=monthly_required(remaining, days_left),
        expected_progress=expected,
        status=status,
    )


def monthly_required(remaining: Decimal, days_left: int) -> Decimal:
    if days_left <= 0:
        return remaining
    months_left = Decimal(days_left) / Decimal(DAYS_PER_MONTH)
    return Decimal(math.ceil(remaining / months_left))


def summarize_goals(goals: Iterable[Goal], now: datetime) -> GoalsSummary:
    total = 0
    total_target = ZERO
    total_saved = ZERO
    completed = 0
    counts = {STATUS_ON_TRACK: 0, STATUS_BEHIND: 0, STATUS_AT_RISK: 0}
    for goal in goals:
        total += 1
        total_target += _coerce_amount(goal.target_amount)
        total_saved += _coerce_amount(goal.current_amount)
        if goal.is_completed:
            completed += 1
            continue
        counts[goal_progress(goal, now).status] += 1
    return GoalsSummary(
        total_goals=total,
        total_target=total_target,
        total_saved=total_saved,
        overall_progress=percent_of(total_saved, total_target),
        completed=completed,
        in_progress=total - completed,
        on_track=counts[STATUS_ON_TRACK],
        behind=counts[STATUS_BEHIND],
        at_risk=counts[STATUS_AT_RISK],
    )


def validate_target_date(target_date: date, today: date) -> date:
    if target_date <= today:
        raise ValueError("Target date must be in the future.")
    return target_date


def _ceil_days(delta) -> int:
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def _as_datetime(value: date) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _positive(amount: Decimal, label: str) -> Decimal:
    coerced = _coerce_amount(amount)
    if coerced <= ZERO:
        raise ValueError(f"{label} amount must be greater than zero.")
    return coerced


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
