from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    func,
    true,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("name", String(255)),
    Column("home_currency", String(3)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("type", String(20), nullable=False),
    Column("balance", Numeric(12, 2), nullable=False, server_default="0"),
    Column("currency", String(3), nullable=False),
    Column("institution", String(100)),
    Column("include_in_total", Boolean, nullable=False, server_default="1"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_accounts_user_active", "user_id", "is_active"),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("type", String(20), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("category", String(100), nullable=False),
    Column("description", String(500)),
    Column("merchant", String(100)),
    Column("notes", String(500)),
    Column("date", Date, nullable=False),
    Column("is_recurring", Boolean, nullable=False, server_default="0"),
    Column("recurring_frequency", String(20)),
    Column("recurring_next_date", Date),
    Column("recurring_end_date", Date),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_transactions_user_date_type", "user_id", "date", "type"),
    Index("ix_transactions_user_category", "user_id", "category"),
    Index("ix_transactions_user_account", "user_id", "account_id"),
    Index("ix_transactions_recurring_next", "is_recurring", "recurring_next_date"),
)

budgets = Table(
    "budgets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("category", String(100), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("period", String(20), nullable=False),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date),
    Column("alert_threshold", Integer, nullable=False, server_default="80"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

# One active budget per (owner, category, period). Inactive rows are history.
Index(
    "uq_budgets_active_user_category_period",
    budgets.c.user_id,
    budgets.c.category,
    budgets.c.period,
    unique=True,
    sqlite_where=budgets.c.is_active == true(),
    postgresql_where=budgets.c.is_active == true(),
)

bills = Table(
    "bills",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("category", String(50), nullable=False),
    Column("due_date", Date, nullable=False),
    Column("frequency", String(20), nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("is_paid", Boolean, nullable=False, server_default="0"),
    Column("paid_date", Date),
    Column("linked_account_id", Integer, ForeignKey("accounts.id")),
    Column("auto_pay", Boolean, nullable=False, server_default="0"),
    Column("reminder_days", Integer, nullable=False, server_default="3"),
    Column("notes", String(500)),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("last_reminded_on", Date),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_bills_user_due", "user_id", "due_date"),
    Index("ix_bills_status_due", "status", "due_date"),
)

goals = Table(
    "goals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("description", String(500)),
    Column("target_amount", Numeric(12, 2), nullable=False),
    Column("current_amount", Numeric(12, 2), nullable=False, server_default="0"),
    Column("category", String(50), nullable=False),
    Column("target_date", Date, nullable=False),
    Column("priority", String(10), nullable=False, server_default="medium"),
    Column("is_completed", Boolean, nullable=False, server_default="0"),
    Column("completed_at", DateTime),
    Column("linked_account_id", Integer, ForeignKey("accounts.id")),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

investments = Table(
    "investments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("symbol", String(10)),
    Column("type", String(20), nullable=False),
    Column("shares", Numeric(18, 8), nullable=False),
    Column("purchase_price", Numeric(12, 5), nullable=False),
    Column("current_price", Numeric(12, 5)),
    Column("purchase_date", Date, nullable=False),
    Column("linked_account_id", Integer, ForeignKey("accounts.id")),
    Column("notes", String(500)),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

notifications = Table(
    "notifications",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("type", String(30), nullable=False),
    Column("title", String(100), nullable=False),
    Column("message", String(500), nullable=False),
    Column("priority", String(10), nullable=False, server_default="medium"),
    Column("data", JSON),
    Column("is_read", Boolean, nullable=False, server_default="0"),
    Column("read_at", DateTime),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_notifications_user_read", "user_id", "is_read"),
)


def create_db_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args)


def init_db(engine: Engine) -> None:
    metadata.create_all(engine)
