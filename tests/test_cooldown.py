import unittest
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from domain import cooldown

LAGOS = ZoneInfo("Africa/Lagos")
HOUR = timedelta(hours=1)


class RollingCooldownTests(unittest.TestCase):
    def setUp(self) -> None:
        self.now = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_never_used_is_ready(self):
        self.assertTrue(cooldown.is_ready(None, HOUR, self.now))
        self.assertEqual(cooldown.remaining(None, HOUR, self.now), timedelta(0))

    def test_remaining_counts_down_from_last_use(self):
        last = self.now - timedelta(minutes=15)
        self.assertEqual(cooldown.remaining(last, HOUR, self.now), timedelta(minutes=45))
        self.assertFalse(cooldown.is_ready(last, HOUR, self.now))

    def test_remaining_never_negative(self):
        last = self.now - timedelta(hours=5)
        self.assertEqual(cooldown.remaining(last, HOUR, self.now), timedelta(0))
        self.assertTrue(cooldown.is_ready(last, HOUR, self.now))

    def test_remaining_is_monotonic_in_time(self):
        last = self.now
        previous = cooldown.remaining(last, HOUR, self.now)
        for minutes in range(1, 70, 7):
            current = cooldown.remaining(last, HOUR, self.now + timedelta(minutes=minutes))
            self.assertLessEqual(current, previous)
            previous = current

    def test_ready_once_remaining_has_elapsed(self):
        last = self.now - timedelta(minutes=20)
        left = cooldown.remaining(last, HOUR, self.now)
        self.assertFalse(cooldown.is_ready(last, HOUR, self.now))
        self.assertTrue(cooldown.is_ready(last, HOUR, self.now + left))

    def test_naive_datetimes_are_treated_as_utc(self):
        naive_last = datetime(2024, 3, 1, 11, 30)
        self.assertEqual(cooldown.remaining(naive_last, HOUR, self.now), timedelta(minutes=30))


class CalendarDayTests(unittest.TestCase):
    def test_date_key_uses_local_timezone(self):
        # 23:30 UTC is already the next day in Lagos (UTC+1).
        late = datetime(2024, 3, 1, 23, 30, tzinfo=timezone.utc)
        self.assertEqual(cooldown.date_key(late, LAGOS), "2024-03-02")
        self.assertEqual(cooldown.date_key(late, timezone.utc), "2024-03-01")

    def test_is_new_day(self):
        now = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        self.assertTrue(cooldown.is_new_day(None, now, LAGOS))
        self.assertTrue(cooldown.is_new_day("2024-02-29", now, LAGOS))
        self.assertFalse(cooldown.is_new_day("2024-03-01", now, LAGOS))

    def test_until_next_day_counts_to_local_midnight(self):
        # 12:00 UTC is 13:00 in Lagos; local midnight is 11 hours away.
        now = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        self.assertEqual(cooldown.until_next_day(now, LAGOS), timedelta(hours=11))


class StreakTests(unittest.TestCase):
    def test_first_claim_starts_at_one(self):
        self.assertEqual(cooldown.next_streak(None, "2024-03-01", 0), 1)

    def test_consecutive_day_extends(self):
        self.assertEqual(cooldown.next_streak("2024-02-29", "2024-03-01", 4), 5)

    def test_skipped_day_resets(self):
        self.assertEqual(cooldown.next_streak("2024-02-27", "2024-03-01", 4), 1)

    def test_year_boundary(self):
        self.assertEqual(cooldown.next_streak("2023-12-31", "2024-01-01", 2), 3)


if __name__ == "__main__":
    unittest.main()
