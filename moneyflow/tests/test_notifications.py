import unittest
from datetime import date
from decimal import Decimal

from moneyflow import notifications
from moneyflow.errors import InvalidArgument, NotFound
from moneyflow.tests.support import FailingNotifier, RecordingNotifier, memory_engine, seed_user


class InboxTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.user_id = seed_user(self.engine)

    def post(self, title, user_id=None, **extra):
        return notifications.create_notification(
            self.engine, user_id or self.user_id, "system", title, f"{title} body", **extra
        )

    def test_listing_is_newest_first_with_counts(self) -> None:
        for index in range(5):
            self.post(f"note {index}")

        rows, total, unread = notifications.list_notifications(self.engine, self.user_id, page=1, limit=2)

        self.assertEqual([row["title"] for row in rows], ["note 4", "note 3"])
        self.assertEqual(total, 5)
        self.assertEqual(unread, 5)

    def test_read_state(self) -> None:
        first = self.post("first")
        self.post("second")
        notifier = RecordingNotifier()

        row = notifications.mark_read(self.engine, self.user_id, first["id"], notifier=notifier)
        self.assertTrue(row["is_read"])
        self.assertIsNotNone(row["read_at"])
        self.assertEqual(notifications.unread_count(self.engine, self.user_id), 1)

        rows, total, _ = notifications.list_notifications(self.engine, self.user_id, unread_only=True)
        self.assertEqual([item["title"] for item in rows], ["second"])
        self.assertEqual(total, 1)

        self.assertEqual(notifications.mark_all_read(self.engine, self.user_id, notifier=notifier), 1)
        self.assertEqual(notifications.unread_count(self.engine, self.user_id), 0)
        self.assertEqual(notifier.names(), ["notification:read", "notification:readAll"])

        self.assertEqual(notifications.clear_read(self.engine, self.user_id), 2)
        self.assertEqual(notifications.list_notifications(self.engine, self.user_id)[1], 0)

    def test_payload_data_is_json_safe(self) -> None:
        row = self.post("bill", data={"amount": Decimal("12.50"), "due": date(2024, 1, 5)})
        self.assertEqual(row["data"], {"amount": "12.50", "due": "2024-01-05"})

    def test_validation_and_ownership(self) -> None:
        with self.assertRaises(InvalidArgument):
            notifications.create_notification(self.engine, self.user_id, "spam", "x", "y")
        with self.assertRaises(InvalidArgument):
            self.post("loud", priority="urgent")

        mine = self.post("mine")
        other = seed_user(self.engine, "other@example.com")
        with self.assertRaises(NotFound):
            notifications.mark_read(self.engine, other, mine["id"])
        with self.assertRaises(NotFound):
            notifications.delete_notification(self.engine, other, mine["id"])
        self.assertEqual(notifications.mark_all_read(self.engine, other), 0)
        self.assertEqual(notifications.unread_count(self.engine, self.user_id), 1)

        notifications.delete_notification(self.engine, self.user_id, mine["id"])
        self.assertEqual(notifications.unread_count(self.engine, self.user_id), 0)

    def test_push_failure_is_swallowed(self) -> None:
        notifier = FailingNotifier()
        row = self.post("still stored", notifier=notifier)
        self.assertEqual(notifier.calls, 1)
        self.assertEqual(notifications.list_notifications(self.engine, self.user_id)[1], 1)
        self.assertEqual(row["title"], "still stored")


if __name__ == "__main__":
    unittest.main()
