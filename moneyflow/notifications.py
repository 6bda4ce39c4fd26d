from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Any, Mapping, Protocol

from sqlalchemy import func, select
from sqlalchemy.engine import Engine, RowMapping

from moneyflow.db import notifications
from moneyflow.errors import InvalidArgument, NotFound
from moneyflow.repository import OwnerScope

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = {
    "transaction",
    "budget_warning",
    "budget_exceeded",
    "goal_progress",
    "goal_completed",
    "bill_reminder",
    "bill_overdue",
    "account_update",
    "system",
    "ai_insight",
}
PRIORITIES = {"low", "medium", "high"}


class Notifier(Protocol):
    def notify(self, user_id: int, event: str, payload: Mapping[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Default push channel: writes events to the log."""

    def notify(self, user_id: int, event: str, payload: Mapping[str, Any]) -> None:
        logger.info("event %s for user %s: %s", event, user_id, dict(payload))


DEFAULT_NOTIFIER = LoggingNotifier()


def safe_notify(
    notifier: Notifier | None, user_id: int, event: str, payload: Mapping[str, Any]
) -> None:
    """Fire-and-forget push; a failing channel never fails the mutation."""
    channel = notifier or DEFAULT_NOTIFIER
    try:
        channel.notify(user_id, event, to_payload(payload))
    except Exception:
        logger.exception("Notifier failed for event %s (user %s)", event, user_id)


def to_payload(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(key): to_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_payload(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def record_notification(
    scope: OwnerScope,
    type: str,
    title: str,
    message: str,
    priority: str = "medium",
    data: Mapping[str, Any] | None = None,
) -> RowMapping:
    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unsupported notification type: {type}")
    if priority not in PRIORITIES:
        raise ValueError(f"Unsupported notification priority: {priority}")
    return scope.insert(
        notifications,
        type=type,
        title=title[:100],
        message=message[:500],
        priority=priority,
        data=to_payload(dict(data or {})),
        is_read=False,
    )


def create_notification(
    engine: Engine,
    user_id: int,
    type: str,
    title: str,
    message: str,
    priority: str = "medium",
    data: Mapping[str, Any] | None = None,
    notifier: Notifier | None = None,
) -> RowMapping:
    try:
        with engine.begin() as conn:
            row = record_notification(OwnerScope(conn, user_id), type, title, message, priority, data)
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc
    safe_notify(notifier, user_id, "notification:new", row)
    return row


def list_notifications(
    engine: Engine, user_id: int, page: int = 1, limit: int = 20, unread_only: bool = False
) -> tuple[list[RowMapping], int, int]:
    """Page of notifications, newest first, with total and unread counts."""
    page = max(1, page)
    limit = max(1, min(limit, 100))
    criteria = [notifications.c.is_read.is_(False)] if unread_only else []
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        rows = scope.find(
            notifications,
            *criteria,
            order_by=[notifications.c.created_at.desc(), notifications.c.id.desc()],
            limit=limit,
            offset=(page - 1) * limit,
        )
        total = conn.execute(
            select(func.count()).where(notifications.c.user_id == user_id, *criteria)
        ).scalar_one()
        unread = _unread_count(conn, user_id)
    return rows, int(total), unread


def unread_count(engine: Engine, user_id: int) -> int:
    with engine.begin() as conn:
        return _unread_count(conn, user_id)


def mark_read(
    engine: Engine, user_id: int, notification_id: int, notifier: Notifier | None = None
) -> RowMapping:
    with engine.begin() as conn:
        scope = OwnerScope(conn, user_id)
        row = scope.require(notifications, notification_id, "Notification")
        if not row["is_read"]:
            row = scope.update(notifications, notification_id, is_read=True, read_at=datetime.now())
    safe_notify(notifier, user_id, "notification:read", {"id": notification_id})
    return row


def mark_all_read(engine: Engine, user_id: int, notifier: Notifier | None = None) -> int:
    with engine.begin() as conn:
        count = OwnerScope(conn, user_id).update_where(
            notifications,
            notifications.c.is_read.is_(False),
            is_read=True,
            read_at=datetime.now(),
        )
    safe_notify(notifier, user_id, "notification:readAll", {"count": count})
    return count


def delete_notification(engine: Engine, user_id: int, notification_id: int) -> None:
    with engine.begin() as conn:
        if not OwnerScope(conn, user_id).delete(notifications, notification_id):
            raise NotFound("Notification not found.")


def clear_read(engine: Engine, user_id: int) -> int:
    with engine.begin() as conn:
        return OwnerScope(conn, user_id).delete_where(
            notifications, notifications.c.is_read.is_(True)
        )


def _unread_count(conn, user_id: int) -> int:
    return int(
        conn.execute(
            select(func.count()).where(
                notifications.c.user_id == user_id, notifications.c.is_read.is_(False)
            )
        ).scalar_one()
    )
