import unittest
from datetime import date
from decimal import Decimal

from moneyflow.budget_engine import (
    Budget,
    BudgetStatus,
    Transaction,
    classify_status,
    compute_budget_status,
    evaluate_budget,
    is_escalation,
    percent_of,
    period_start,
    summarize_budgets,
)


class PeriodStartTests(unittest.TestCase):
    def test_monthly_starts_on_the_first(self) -> None:
        self.assertEqual(period_start("monthly", date(2024, 5, 17)), date(2024, 5, 1))

    def test_weekly_starts_on_sunday(self) -> None:
        # 2024-05-15 is a Wednesday.
        self.assertEqual(period_start("weekly", date(2024, 5, 15)), date(2024, 5, 12))
        self.assertEqual(period_start("weekly", date(2024, 5, 12)), date(2024, 5, 12))
        self.assertEqual(period_start("weekly", date(2024, 5, 18)), date(2024, 5, 12))

    def test_yearly_starts_on_january_first(self) -> None:
        self.assertEqual(period_start("yearly", date(2024, 11, 2)), date(2024, 1, 1))

    def test_unknown_period_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            period_start("daily", date(2024, 5, 1))


class BudgetEngineTests(unittest.TestCase):
    def test_sums_matching_expenses_inside_window(self) -> None:
        transactions = [
            Transaction(amount=Decimal("50"), type="expense", category="Food", date=date(2024, 5, 1)),
            Transaction(amount=Decimal("25"), type="expense", category="Food", date=date(2024, 5, 10)),
            Transaction(amount=Decimal("10"), type="expense", category="Travel", date=date(2024, 5, 2)),
            Transaction(amount=Decimal("99"), type="income", category="Food", date=date(2024, 5, 2)),
            Transaction(amount=Decimal("40"), type="expense", category="Food", date=date(2024, 4, 30)),
            Transaction(amount=Decimal("40"), type="expense", category="Food", date=date(2024, 5, 11)),
        ]
        budget = Budget(category="Food", amount=Decimal("100"))

        status = evaluate_budget(transactions, budget, as_of=date(2024, 5, 10))

        self.assertEqual(status.spent, Decimal("75"))
        self.assertEqual(status.remaining, Decimal("25"))
        self.assertEqual(status.percent_used, 75)
        self.assertEqual(status.status, "on-track")
        self.assertEqual(status.period_start, date(2024, 5, 1))

    def test_warning_at_alert_threshold(self) -> None:
        budget = Budget(category="Food", amount=Decimal("200"), alert_threshold=80)
        status = compute_budget_status(budget, Decimal("160"), date(2024, 5, 10))
        self.assertEqual(status.percent_used, 80)
        self.assertEqual(status.status, "warning")

    def test_overspend_is_capped_and_remaining_floors_at_zero(self) -> None:
        budget = Budget(category="Food", amount=Decimal("100"))
        status = compute_budget_status(budget, Decimal("130"), date(2024, 5, 10))
        self.assertEqual(status.percent_used, 100)
        self.assertEqual(status.remaining, Decimal("0"))
        self.assertEqual(status.status, "exceeded")

    def test_rounding_is_half_up(self) -> None:
        self.assertEqual(percent_of(Decimal("1"), Decimal("200")), 1)
        self.assertEqual(percent_of(Decimal("2"), Decimal("3")), 67)
        self.assertEqual(percent_of(Decimal("5"), Decimal("0")), 0)

    def test_near_limit_rounds_into_exceeded(self) -> None:
        budget = Budget(category="Food", amount=Decimal("1000"))
        status = compute_budget_status(budget, Decimal("996"), date(2024, 5, 10))
        self.assertEqual(status.percent_used, 100)
        self.assertEqual(status.status, "exceeded")

    def test_repeated_evaluation_is_identical(self) -> None:
        budget = Budget(category="Food", amount=Decimal("100"), period="weekly")
        transactions = [
            Transaction(amount=Decimal("30"), type="expense", category="Food", date=date(2024, 5, 13)),
        ]
        first = evaluate_budget(transactions, budget, date(2024, 5, 15))
        second = evaluate_budget(transactions, budget, date(2024, 5, 15))
        self.assertEqual(first, second)

    def test_escalation_order(self) -> None:
        self.assertTrue(is_escalation("on-track", "warning"))
        self.assertTrue(is_escalation("warning", "exceeded"))
        self.assertTrue(is_escalation("on-track", "exceeded"))
        self.assertFalse(is_escalation("warning", "warning"))
        self.assertFalse(is_escalation("exceeded", "warning"))
        self.assertEqual(classify_status(79, 80), "on-track")

    def test_summary_counts_statuses(self) -> None:
        budgets = [
            Budget(category="Food", amount=Decimal("100")),
            Budget(category="Fun", amount=Decimal("100")),
        ]
        statuses = [
            BudgetStatus(date(2024, 5, 1), date(2024, 5, 10), Decimal("50"), Decimal("50"), 50, "on-track"),
            BudgetStatus(date(2024, 5, 1), date(2024, 5, 10), Decimal("120"), Decimal("0"), 100, "exceeded"),
        ]

        summary = summarize_budgets(budgets, statuses)

        self.assertEqual(summary.total_budgets, 2)
        self.assertEqual(summary.total_budgeted, Decimal("200"))
        self.assertEqual(summary.total_spent, Decimal("170"))
        self.assertEqual(summary.total_remaining, Decimal("30"))
        self.assertEqual(summary.on_track, 1)
        self.assertEqual(summary.exceeded, 1)
        self.assertEqual(summary.percent_used, 85)


if __name__ == "__main__":
    unittest.main()
