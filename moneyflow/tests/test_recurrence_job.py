import unittest
from datetime import date
from decimal import Decimal
from unittest import mock

from sqlalchemy import select

from moneyflow import bill_service, ledger_service, recurrence_job
from moneyflow.db import notifications, transactions
from moneyflow.tests.support import RecordingNotifier, memory_engine, seed_account, seed_user


class RecurringTransactionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.user_id = seed_user(self.engine)
        self.account_id = seed_account(self.engine, self.user_id, balance="1000")

    def template(self, account_id=None, **extra):
        return ledger_service.create_transaction(
            self.engine,
            self.user_id,
            account_id=account_id or self.account_id,
            type="expense",
            amount=Decimal("100"),
            category="Subscriptions",
            description="Gym",
            date=date(2024, 1, 15),
            recurring_frequency="monthly",
            as_of=date(2024, 1, 15),
            **extra,
        )

    def balance(self, account_id=None) -> Decimal:
        row = ledger_service.get_account(self.engine, self.user_id, account_id or self.account_id)
        return Decimal(str(row["balance"]))

    def copies(self):
        with self.engine.begin() as conn:
            return conn.execute(
                select(transactions).where(transactions.c.is_recurring.is_(False))
            ).mappings().all()

    def test_due_template_produces_one_occurrence(self) -> None:
        template = self.template()
        self.assertEqual(template["recurring_next_date"], date(2024, 2, 15))
        notifier = RecordingNotifier()

        result = recurrence_job.run_daily_recurrence_tick(self.engine, as_of=date(2024, 2, 15), notifier=notifier)

        self.assertEqual(result.transactions_created, 1)
        self.assertEqual(result.failed, 0)
        copies = self.copies()
        self.assertEqual(len(copies), 1)
        self.assertEqual(copies[0]["date"], date(2024, 2, 15))
        self.assertEqual(copies[0]["description"], "Gym (Recurring)")
        self.assertEqual(self.balance(), Decimal("800"))
        refreshed = ledger_service.get_transaction(self.engine, self.user_id, template["id"])
        self.assertEqual(refreshed["recurring_next_date"], date(2024, 3, 15))
        self.assertEqual(notifier.names(), ["transaction:created", "notification:new"])

        again = recurrence_job.run_daily_recurrence_tick(self.engine, as_of=date(2024, 2, 15))
        self.assertEqual(again.transactions_created, 0)
        self.assertEqual(len(self.copies()), 1)

    def test_missed_days_are_not_backfilled(self) -> None:
        template = self.template()

        result = recurrence_job.run_daily_recurrence_tick(self.engine, as_of=date(2024, 5, 20))

        self.assertEqual(result.transactions_created, 1)
        refreshed = ledger_service.get_transaction(self.engine, self.user_id, template["id"])
        self.assertEqual(refreshed["recurring_next_date"], date(2024, 6, 15))

    def test_ended_template_is_skipped(self) -> None:
        self.template(recurring_end_date=date(2024, 2, 1))
        result = recurrence_job.run_daily_recurrence_tick(self.engine, as_of=date(2024, 2, 15))
        self.assertEqual(result.transactions_created, 0)
        self.assertEqual(self.balance(), Decimal("900"))

    def test_failed_occurrence_does_not_stop_the_run(self) -> None:
        wallet = seed_account(self.engine, self.user_id, balance="500", name="Wallet")
        broken = self.template()
        self.template(account_id=wallet)
        real_apply = recurrence_job.apply_balance_delta

        def flaky_apply(scope, account_id, delta):
            if account_id == self.account_id:
                raise RuntimeError("lock timeout")
            return real_apply(scope, account_id, delta)

        with mock.patch("moneyflow.recurrence_job.apply_balance_delta", side_effect=flaky_apply):
            result = recurrence_job.run_daily_recurrence_tick(self.engine, as_of=date(2024, 2, 15))

        self.assertEqual(result.transactions_created, 1)
        self.assertEqual(result.transactions_failed, 1)
        self.assertEqual(self.balance(), Decimal("900"))
        self.assertEqual(self.balance(wallet), Decimal("300"))
        refreshed = ledger_service.get_transaction(self.engine, self.user_id, broken["id"])
        self.assertEqual(refreshed["recurring_next_date"], date(2024, 2, 15))
        self.assertEqual([row["account_id"] for row in self.copies()], [wallet])


class BillSweepTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.user_id = seed_user(self.engine)

    def bill(self, name, due):
        return bill_service.create_bill(
            self.engine, self.user_id, name=name, amount=Decimal("50"), category="Utilities", due_date=due
        )

    def stored(self, type):
        with self.engine.begin() as conn:
            return conn.execute(
                select(notifications).where(notifications.c.type == type).order_by(notifications.c.id)
            ).mappings().all()

    def test_reminders_are_sent_once_per_day(self) -> None:
        self.bill("Water", date(2024, 1, 11))
        self.bill("Internet", date(2024, 1, 12))
        self.bill("Insurance", date(2024, 1, 20))

        first = recurrence_job.run_daily_recurrence_tick(self.engine, as_of=date(2024, 1, 10))
        second = recurrence_job.run_daily_recurrence_tick(self.engine, as_of=date(2024, 1, 10))

        self.assertEqual(first.reminders_sent, 2)
        self.assertEqual(second.reminders_sent, 0)
        reminders = self.stored("bill_reminder")
        self.assertEqual([row["priority"] for row in reminders], ["high", "medium"])
        self.assertIn("tomorrow", reminders[0]["message"])

        next_day = recurrence_job.run_daily_recurrence_tick(self.engine, as_of=date(2024, 1, 11))
        self.assertEqual(next_day.reminders_sent, 2)

    def test_overdue_bills_are_marked_once(self) -> None:
        late = self.bill("Phone", date(2024, 1, 5))
        paid = self.bill("Rent", date(2024, 1, 1))
        bill_service.pay_bill(self.engine, self.user_id, paid["id"], as_of=date(2024, 1, 1))
        notifier = RecordingNotifier()

        first = recurrence_job.run_daily_recurrence_tick(self.engine, as_of=date(2024, 1, 10), notifier=notifier)
        second = recurrence_job.run_daily_recurrence_tick(self.engine, as_of=date(2024, 1, 10))

        self.assertEqual(first.bills_marked_overdue, 1)
        self.assertEqual(second.bills_marked_overdue, 0)
        self.assertEqual(bill_service.get_bill(self.engine, self.user_id, late["id"])["status"], "overdue")
        overdue = self.stored("bill_overdue")
        self.assertEqual(len(overdue), 1)
        self.assertEqual(overdue[0]["priority"], "high")
        self.assertIn("notification:new", notifier.names())


if __name__ == "__main__":
    unittest.main()
