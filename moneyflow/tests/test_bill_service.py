import unittest
from datetime import date
from decimal import Decimal

from moneyflow import bill_service
from moneyflow.errors import Conflict, InvalidArgument, NotFound
from moneyflow.tests.support import RecordingNotifier, memory_engine, seed_account, seed_user

TODAY = date(2024, 1, 10)


class BillServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.user_id = seed_user(self.engine)

    def create(self, due=date(2024, 1, 15), frequency="monthly", amount="120", **extra):
        return bill_service.create_bill(
            self.engine,
            self.user_id,
            name="Electricity",
            amount=Decimal(amount),
            category="Utilities",
            due_date=due,
            frequency=frequency,
            **extra,
        )

    def test_paying_monthly_bill_spawns_successor(self) -> None:
        bill = self.create(notes="meter 42")
        notifier = RecordingNotifier()

        result = bill_service.pay_bill(self.engine, self.user_id, bill["id"], as_of=TODAY, notifier=notifier)

        self.assertTrue(result.bill["is_paid"])
        self.assertEqual(result.bill["paid_date"], TODAY)
        self.assertEqual(result.bill["status"], "paid")
        successor = result.next_bill
        self.assertIsNotNone(successor)
        self.assertEqual(successor["due_date"], date(2024, 2, 15))
        self.assertFalse(successor["is_paid"])
        self.assertEqual(successor["status"], "pending")
        self.assertEqual(successor["amount"], bill["amount"])
        self.assertEqual(successor["notes"], "meter 42")
        self.assertEqual(notifier.names(), ["bill:paid", "bill:created"])

    def test_one_off_bill_has_no_successor(self) -> None:
        bill = self.create(frequency="once")
        result = bill_service.pay_bill(self.engine, self.user_id, bill["id"], as_of=TODAY)
        self.assertIsNone(result.next_bill)
        self.assertEqual(len(bill_service.list_bills(self.engine, self.user_id)), 1)

    def test_paying_twice_conflicts_and_spawns_once(self) -> None:
        bill = self.create(frequency="quarterly")
        bill_service.pay_bill(self.engine, self.user_id, bill["id"], as_of=TODAY)
        with self.assertRaises(Conflict):
            bill_service.pay_bill(self.engine, self.user_id, bill["id"], as_of=TODAY)

        rows = bill_service.list_bills(self.engine, self.user_id)
        self.assertEqual([row["due_date"] for row in rows], [date(2024, 1, 15), date(2024, 4, 15)])

    def test_upcoming_overdue_and_summary(self) -> None:
        self.create(due=date(2024, 1, 5), amount="40")
        self.create(due=date(2024, 1, 12), amount="60")
        self.create(due=date(2024, 3, 1), amount="500")
        paid = self.create(due=date(2024, 1, 8), amount="25", frequency="once")
        bill_service.pay_bill(self.engine, self.user_id, paid["id"], as_of=TODAY)

        upcoming = bill_service.upcoming_bills(self.engine, self.user_id, days=7, as_of=TODAY)
        overdue = bill_service.overdue_bills(self.engine, self.user_id, as_of=TODAY)
        summary = bill_service.bills_summary(self.engine, self.user_id, as_of=TODAY)

        self.assertEqual([row["amount"] for row in upcoming], [Decimal("60")])
        self.assertEqual([row["amount"] for row in overdue], [Decimal("40")])
        self.assertEqual(summary.unpaid_total, Decimal("100"))
        self.assertEqual(summary.paid_total, Decimal("25"))
        self.assertEqual(summary.overdue_count, 1)

    def test_derived_view(self) -> None:
        bill = self.create(due=date(2024, 1, 12), reminder_days=3)
        view = bill_service.describe(bill, TODAY)
        self.assertEqual(view.status, "upcoming")
        self.assertEqual(view.days_until_due, 2)

    def test_moving_due_date_resets_status(self) -> None:
        bill = self.create(due=date(2024, 1, 15))
        updated = bill_service.update_bill(
            self.engine, self.user_id, bill["id"], {"due_date": date(2024, 1, 20), "amount": Decimal("130")}
        )
        self.assertEqual(updated["due_date"], date(2024, 1, 20))
        self.assertEqual(updated["status"], "pending")
        self.assertEqual(updated["amount"], Decimal("130"))

    def test_linked_account_must_be_owned(self) -> None:
        other = seed_user(self.engine, "other@example.com")
        foreign_account = seed_account(self.engine, other)
        with self.assertRaises(NotFound):
            self.create(linked_account_id=foreign_account)
        own = seed_account(self.engine, self.user_id)
        self.assertEqual(self.create(linked_account_id=own)["linked_account_id"], own)

    def test_amount_is_rounded_to_cents(self) -> None:
        self.assertEqual(self.create(amount="10.005")["amount"], Decimal("10.01"))
        with self.assertRaises(InvalidArgument):
            self.create(amount="0.004")

    def test_validation_and_tenancy(self) -> None:
        with self.assertRaises(InvalidArgument):
            self.create(frequency="hourly")
        with self.assertRaises(InvalidArgument):
            self.create(amount="-5")
        bill = self.create()
        other = seed_user(self.engine, "other@example.com")
        with self.assertRaises(NotFound):
            bill_service.pay_bill(self.engine, other, bill["id"], as_of=TODAY)
        with self.assertRaises(NotFound):
            bill_service.get_bill(self.engine, other, bill["id"])


if __name__ == "__main__":
    unittest.main()
