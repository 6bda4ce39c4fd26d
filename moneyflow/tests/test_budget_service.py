import unittest
from datetime import date
from decimal import Decimal
from unittest import mock

from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError

from moneyflow import budget_service, ledger_service
from moneyflow.db import budgets
from moneyflow.errors import Conflict, InvalidArgument, NotFound
from moneyflow.repository import OwnerScope
from moneyflow.tests.support import memory_engine, seed_account, seed_user

AS_OF = date(2024, 5, 15)


class BudgetServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.user_id = seed_user(self.engine)
        self.account_id = seed_account(self.engine, self.user_id)

    def spend(self, amount, category="Food", on=AS_OF, type="expense"):
        ledger_service.create_transaction(
            self.engine,
            self.user_id,
            account_id=self.account_id,
            type=type,
            amount=Decimal(amount),
            category=category,
            date=on,
            as_of=AS_OF,
        )

    def create(self, category="Food", period="monthly", amount="200", **extra):
        return budget_service.create_budget(
            self.engine,
            self.user_id,
            name=f"{category} {period}",
            category=category,
            amount=Decimal(amount),
            period=period,
            as_of=AS_OF,
            **extra,
        )

    def test_status_counts_only_matching_expenses_in_period(self) -> None:
        budget = self.create()
        self.spend("60")
        self.spend("40", on=date(2024, 5, 1))
        self.spend("500", on=date(2024, 4, 30))
        self.spend("70", category="Travel")
        self.spend("80", type="income")

        item = budget_service.get_budget(self.engine, self.user_id, budget.budget["id"], as_of=AS_OF)

        self.assertEqual(item.status.spent, Decimal("100"))
        self.assertEqual(item.status.remaining, Decimal("100"))
        self.assertEqual(item.status.percent_used, 50)
        self.assertEqual(item.status.status, "on-track")

    def test_reads_are_idempotent(self) -> None:
        self.create()
        self.create(category="Fun", period="weekly", amount="50")
        self.spend("45", category="Fun", on=date(2024, 5, 13))
        first = budget_service.get_budgets_with_status(self.engine, self.user_id, as_of=AS_OF)
        second = budget_service.get_budgets_with_status(self.engine, self.user_id, as_of=AS_OF)
        self.assertEqual([item.status for item in first], [item.status for item in second])
        fun = next(item for item in first if item.budget["category"] == "Fun")
        self.assertEqual(fun.status.period_start, date(2024, 5, 12))
        self.assertEqual(fun.status.status, "warning")

    def test_same_category_different_periods_are_evaluated_separately(self) -> None:
        self.create(period="monthly", amount="1000")
        self.create(period="weekly", amount="100")
        self.spend("30", on=date(2024, 5, 2))
        self.spend("20", on=date(2024, 5, 14))

        items = budget_service.get_budgets_with_status(self.engine, self.user_id, as_of=AS_OF)

        spent = {item.budget["period"]: item.status.spent for item in items}
        self.assertEqual(spent, {"monthly": Decimal("50"), "weekly": Decimal("20")})

    def test_duplicate_active_budget_conflicts(self) -> None:
        first = self.create()
        with self.assertRaises(Conflict):
            self.create(amount="300")

        budget_service.update_budget(self.engine, self.user_id, first.budget["id"], {"is_active": False})
        replacement = self.create(amount="300")
        self.assertTrue(replacement.budget["is_active"])

        with self.assertRaises(Conflict):
            budget_service.update_budget(self.engine, self.user_id, first.budget["id"], {"is_active": True})

    def test_unique_index_guards_direct_inserts(self) -> None:
        self.create()
        with self.assertRaises(IntegrityError):
            with self.engine.begin() as conn:
                conn.execute(
                    insert(budgets).values(
                        user_id=self.user_id,
                        name="Sneaky",
                        category="Food",
                        amount=Decimal("10"),
                        period="monthly",
                        start_date=AS_OF,
                        is_active=True,
                    )
                )

    def test_concurrent_create_that_loses_the_race_conflicts(self) -> None:
        self.create()
        # The duplicate lookup ran before the winning row committed.
        with mock.patch.object(OwnerScope, "find", return_value=[]):
            with self.assertRaises(Conflict):
                self.create(amount="300")

        with self.engine.begin() as conn:
            active = conn.execute(
                select(func.count())
                .select_from(budgets)
                .where(budgets.c.user_id == self.user_id, budgets.c.is_active.is_(True))
            ).scalar_one()
        self.assertEqual(active, 1)

    def test_amount_is_rounded_to_cents(self) -> None:
        budget = self.create(amount="99.995")
        self.assertEqual(Decimal(str(budget.budget["amount"])), Decimal("100.00"))
        with self.assertRaises(InvalidArgument):
            self.create(category="Fun", amount="0.004")

    def test_other_owners_have_their_own_namespace(self) -> None:
        self.create()
        other = seed_user(self.engine, "other@example.com")
        budget_service.create_budget(
            self.engine, other, name="Food", category="Food", amount=Decimal("10"), as_of=AS_OF
        )
        self.assertEqual(len(budget_service.get_budgets_with_status(self.engine, other, as_of=AS_OF)), 1)

    def test_validation(self) -> None:
        with self.assertRaises(InvalidArgument):
            self.create(amount="0")
        with self.assertRaises(InvalidArgument):
            self.create(period="daily")
        with self.assertRaises(InvalidArgument):
            self.create(alert_threshold=120)
        with self.assertRaises(NotFound):
            budget_service.get_budget(self.engine, self.user_id, 999)

    def test_summary_and_delete(self) -> None:
        food = self.create(amount="100")
        self.create(category="Fun", amount="100")
        self.spend("120")
        self.spend("30", category="Fun")

        summary = budget_service.budget_summary(self.engine, self.user_id, as_of=AS_OF)
        self.assertEqual(summary.total_budgets, 2)
        self.assertEqual(summary.exceeded, 1)
        self.assertEqual(summary.on_track, 1)
        self.assertEqual(summary.total_spent, Decimal("150"))

        budget_service.delete_budget(self.engine, self.user_id, food.budget["id"])
        with self.assertRaises(NotFound):
            budget_service.delete_budget(self.engine, self.user_id, food.budget["id"])


if __name__ == "__main__":
    unittest.main()
