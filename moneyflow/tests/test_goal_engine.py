import unittest
from datetime import date, datetime
from decimal import Decimal

from moneyflow.errors import InsufficientBalance
from moneyflow.goal_engine import (
    Goal,
    contribute,
    goal_progress,
    monthly_required,
    reconcile_completion,
    summarize_goals,
    validate_target_date,
    withdraw,
)

CREATED = datetime(2024, 1, 1)
NOW = datetime(2024, 7, 1)


def make_goal(current: str, target: str = "1000", **extra) -> Goal:
    return Goal(
        target_amount=Decimal(target),
        current_amount=Decimal(current),
        target_date=date(2024, 12, 31),
        created_at=CREATED,
        **extra,
    )


class GoalTransitionTests(unittest.TestCase):
    def test_contribution_reaching_target_completes(self) -> None:
        goal = contribute(make_goal("900"), Decimal("100"), NOW)
        self.assertEqual(goal.current_amount, Decimal("1000"))
        self.assertTrue(goal.is_completed)
        self.assertEqual(goal.completed_at, NOW)

    def test_withdrawal_below_target_clears_completion(self) -> None:
        completed = contribute(make_goal("900"), Decimal("100"), NOW)
        goal = withdraw(completed, Decimal("50"))
        self.assertEqual(goal.current_amount, Decimal("950"))
        self.assertFalse(goal.is_completed)
        self.assertIsNone(goal.completed_at)

    def test_completion_timestamp_set_only_on_transition(self) -> None:
        completed = contribute(make_goal("900"), Decimal("100"), NOW)
        later = contribute(completed, Decimal("10"), datetime(2024, 8, 1))
        self.assertTrue(later.is_completed)
        self.assertEqual(later.completed_at, NOW)

    def test_overdraw_is_rejected(self) -> None:
        with self.assertRaises(InsufficientBalance):
            withdraw(make_goal("40"), Decimal("40.01"))

    def test_withdrawing_everything_is_allowed(self) -> None:
        self.assertEqual(withdraw(make_goal("40"), Decimal("40")).current_amount, Decimal("0"))

    def test_non_positive_amounts_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            contribute(make_goal("0"), Decimal("0"), NOW)
        with self.assertRaises(ValueError):
            withdraw(make_goal("10"), Decimal("-1"))

    def test_reconcile_after_target_change(self) -> None:
        lowered = reconcile_completion(make_goal("600", target="500"), NOW)
        self.assertTrue(lowered.is_completed)
        raised = reconcile_completion(
            make_goal("600", target="800", is_completed=True, completed_at=NOW), NOW
        )
        self.assertFalse(raised.is_completed)
        self.assertIsNone(raised.completed_at)


class GoalProgressTests(unittest.TestCase):
    def test_pace_statuses(self) -> None:
        self.assertEqual(goal_progress(make_goal("500"), NOW).status, "on-track")
        self.assertEqual(goal_progress(make_goal("300"), NOW).status, "behind")
        self.assertEqual(goal_progress(make_goal("100"), NOW).status, "at-risk")
        completed = make_goal("1000", is_completed=True, completed_at=NOW)
        self.assertEqual(goal_progress(completed, NOW).status, "completed")

    def test_derived_numbers(self) -> None:
        progress = goal_progress(make_goal("500"), NOW)
        self.assertEqual(progress.progress, 50)
        self.assertEqual(progress.remaining, Decimal("500"))
        self.assertEqual(progress.days_left, 183)
        self.assertEqual(progress.monthly_required, Decimal("82"))

    def test_past_target_date_has_no_days_left(self) -> None:
        progress = goal_progress(make_goal("200"), datetime(2025, 2, 1))
        self.assertEqual(progress.days_left, 0)
        self.assertEqual(progress.monthly_required, Decimal("800"))

    def test_progress_is_capped(self) -> None:
        self.assertEqual(goal_progress(make_goal("1500", is_completed=True), NOW).progress, 100)
        self.assertEqual(monthly_required(Decimal("0"), 30), Decimal("0"))

    def test_summary(self) -> None:
        goals = [
            make_goal("500"),
            make_goal("100"),
            make_goal("1000", is_completed=True, completed_at=NOW),
        ]
        summary = summarize_goals(goals, NOW)
        self.assertEqual(summary.total_goals, 3)
        self.assertEqual(summary.total_target, Decimal("3000"))
        self.assertEqual(summary.total_saved, Decimal("1600"))
        self.assertEqual(summary.overall_progress, 53)
        self.assertEqual(summary.completed, 1)
        self.assertEqual(summary.in_progress, 2)
        self.assertEqual(summary.on_track, 1)
        self.assertEqual(summary.at_risk, 1)

    def test_target_date_must_be_in_future(self) -> None:
        with self.assertRaises(ValueError):
            validate_target_date(date(2024, 7, 1), date(2024, 7, 1))
        self.assertEqual(validate_target_date(date(2024, 7, 2), date(2024, 7, 1)), date(2024, 7, 2))


if __name__ == "__main__":
    unittest.main()
