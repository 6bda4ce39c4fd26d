"""Run the daily recurrence tick from cron or a systemd timer.

Usage:
  moneyflow-daily-tick
  moneyflow-daily-tick --as-of 2024-02-15
"""

from __future__ import annotations

import argparse
from datetime import date
import sys

from moneyflow.config import settings
from moneyflow.db import create_db_engine, init_db
from moneyflow.logging_setup import configure_logging
from moneyflow.recurrence_job import run_daily_recurrence_tick


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the daily recurrence tick.")
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Business date to run for (YYYY-MM-DD); defaults to today.",
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="Database to run against; defaults to DATABASE_URL.",
    )
    parser.add_argument(
        "--reminder-days",
        type=int,
        default=settings.bill_reminder_window_days,
        help="How many days ahead bill reminders look.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(settings.log_level)
    engine = create_db_engine(args.database_url)
    if settings.create_tables_on_startup:
        init_db(engine)
    result = run_daily_recurrence_tick(
        engine, as_of=args.as_of, reminder_window_days=args.reminder_days
    )
    print(
        f"{result.as_of.isoformat()}: "
        f"{result.transactions_created} recurring transactions, "
        f"{result.reminders_sent} bill reminders, "
        f"{result.bills_marked_overdue} bills overdue, "
        f"{result.failed} failed"
    )
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
