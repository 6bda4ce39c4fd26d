import unittest
from datetime import date
from decimal import Decimal

from moneyflow import budget_service, dashboard_service, ledger_service
from moneyflow.tests.support import memory_engine, seed_account, seed_user

AS_OF = date(2024, 5, 20)


class DashboardServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.user_id = seed_user(self.engine)
        self.checking = seed_account(self.engine, self.user_id, balance="1000")
        self.savings = seed_account(self.engine, self.user_id, balance="3000", name="Savings")
        seed_account(self.engine, self.user_id, balance="250", name="Side pot", include_in_total=False)
        budget_service.create_budget(
            self.engine, self.user_id, name="Food", category="Food", amount=Decimal("200"), as_of=AS_OF
        )
        self.add("income", "2000", "Salary", date(2024, 5, 1))
        self.add("expense", "900", "Rent", date(2024, 5, 2))
        self.add("expense", "300", "Food", date(2024, 5, 10))
        self.add("income", "1600", "Salary", date(2024, 4, 1))
        self.add("expense", "1000", "Rent", date(2024, 4, 15))

    def add(self, type, amount, category, on):
        ledger_service.create_transaction(
            self.engine,
            self.user_id,
            account_id=self.checking,
            type=type,
            amount=Decimal(amount),
            category=category,
            date=on,
            as_of=AS_OF,
        )

    def test_snapshot(self) -> None:
        snapshot = dashboard_service.get_dashboard_snapshot(self.engine, self.user_id, as_of=AS_OF, trend_days=30)

        self.assertEqual(snapshot.balances.total, Decimal("5400"))
        self.assertEqual(snapshot.balances.count, 2)
        self.assertEqual(snapshot.current_month.income, Decimal("2000"))
        self.assertEqual(snapshot.current_month.expense, Decimal("1200"))
        self.assertEqual(snapshot.current_month.net, Decimal("800"))
        self.assertEqual(snapshot.income_change, 25)
        self.assertEqual(snapshot.expense_change, 20)
        self.assertEqual(
            [(item.category, item.percentage) for item in snapshot.spending_by_category],
            [("Rent", 75), ("Food", 25)],
        )
        self.assertEqual([point.date for point in snapshot.trend], [date(2024, 5, 1), date(2024, 5, 2), date(2024, 5, 10)])
        self.assertEqual([row["id"] for row in snapshot.top_accounts][:2], [self.savings, self.checking])
        self.assertEqual(len(snapshot.recent_transactions), 5)
        self.assertEqual(snapshot.recent_transactions[0]["date"], date(2024, 5, 10))
        self.assertEqual(snapshot.budgets.total_budgets, 1)
        self.assertEqual(snapshot.budgets.exceeded, 1)

    def test_snapshot_is_scoped_to_owner(self) -> None:
        other = seed_user(self.engine, "other@example.com")
        snapshot = dashboard_service.get_dashboard_snapshot(self.engine, other, as_of=AS_OF)
        self.assertEqual(snapshot.balances.total, Decimal("0"))
        self.assertEqual(snapshot.recent_transactions, [])
        self.assertEqual(snapshot.budgets.total_budgets, 0)

    def test_analytics_window(self) -> None:
        analytics = dashboard_service.get_analytics(self.engine, self.user_id, days=30, as_of=AS_OF)
        self.assertEqual(analytics.start_date, date(2024, 4, 21))
        self.assertEqual(analytics.totals.income, Decimal("2000"))
        self.assertEqual(analytics.totals.expense, Decimal("1200"))

    def test_assistant_context(self) -> None:
        context = dashboard_service.assistant_context(self.engine, self.user_id, as_of=AS_OF)
        self.assertIn("Total Balance: 5400", context)
        self.assertIn("Budgets Over Limit: 1", context)
        self.assertIn("Top Spending Categories: Rent, Food", context)


if __name__ == "__main__":
    unittest.main()
