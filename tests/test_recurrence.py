import unittest
from datetime import datetime, timedelta, timezone

try:
    from agents.attendance_agent.models import Schedule, ScheduleType
    from agents.attendance_agent.recurrence import CIVIL_OFFSET, next_run, parse_time_of_day

    DEPS_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - depends on local environment
    DEPS_AVAILABLE = False


UTC = timezone.utc


def _schedule(day_of_week, time_of_day, **kwargs):
    return Schedule(id=1, course_id=1, day_of_week=day_of_week, time_of_day=time_of_day, **kwargs)


@unittest.skipUnless(DEPS_AVAILABLE, "pydantic not installed in this environment")
class NextRunTests(unittest.TestCase):
    # 2026-10-19 is a Monday; 01:00 UTC is 08:00 WIB on the same day.
    MONDAY_0800_WIB = datetime(2026, 10, 19, 1, 0, tzinfo=UTC)

    def test_initial_computation_allows_later_today(self) -> None:
        result = next_run(_schedule(1, "10:00"), self.MONDAY_0800_WIB, after_run=False)
        self.assertEqual(result, datetime(2026, 10, 19, 3, 0, tzinfo=UTC))

    def test_initial_computation_skips_today_once_time_passed(self) -> None:
        now = datetime(2026, 10, 19, 4, 0, tzinfo=UTC)  # 11:00 WIB
        result = next_run(_schedule(1, "10:00"), now, after_run=False)
        self.assertEqual(result, datetime(2026, 10, 26, 3, 0, tzinfo=UTC))

    def test_initial_computation_at_exact_time_moves_a_week(self) -> None:
        now = datetime(2026, 10, 19, 3, 0, tzinfo=UTC)
        result = next_run(_schedule(1, "10:00"), now, after_run=False)
        self.assertEqual(result, datetime(2026, 10, 26, 3, 0, tzinfo=UTC))

    def test_after_run_never_lands_on_the_same_civil_day(self) -> None:
        result = next_run(_schedule(1, "10:00"), self.MONDAY_0800_WIB, after_run=True)
        self.assertEqual(result, datetime(2026, 10, 26, 3, 0, tzinfo=UTC))

    def test_civil_day_differs_from_utc_day(self) -> None:
        # Sunday 20:00 UTC is already Monday 03:00 WIB.
        now = datetime(2026, 10, 18, 20, 0, tzinfo=UTC)
        result = next_run(_schedule(1, "07:30"), now, after_run=False)
        self.assertEqual(result, datetime(2026, 10, 19, 0, 30, tzinfo=UTC))

    def test_early_morning_target_falls_on_previous_utc_day(self) -> None:
        result = next_run(_schedule(3, "05:00"), self.MONDAY_0800_WIB)
        self.assertEqual(result, datetime(2026, 10, 20, 22, 0, tzinfo=UTC))

    def test_sunday_is_day_zero(self) -> None:
        result = next_run(_schedule(0, "23:30"), self.MONDAY_0800_WIB)
        self.assertEqual(result, datetime(2026, 10, 25, 16, 30, tzinfo=UTC))

    def test_naive_now_is_treated_as_utc(self) -> None:
        naive = self.MONDAY_0800_WIB.replace(tzinfo=None)
        self.assertEqual(
            next_run(_schedule(1, "10:00"), naive, after_run=False),
            next_run(_schedule(1, "10:00"), self.MONDAY_0800_WIB, after_run=False),
        )

    def test_result_matches_configured_civil_day_and_time(self) -> None:
        for day in range(7):
            for time_of_day in ("00:00", "06:59", "12:30", "23:59"):
                result = next_run(_schedule(day, time_of_day), self.MONDAY_0800_WIB)
                civil = (result + CIVIL_OFFSET).replace(tzinfo=None)
                self.assertEqual((civil.weekday() + 1) % 7, day)
                self.assertEqual(civil.strftime("%H:%M"), time_of_day)
                self.assertEqual(result.tzinfo, UTC)
                self.assertGreater(result, self.MONDAY_0800_WIB)

    def test_run_at_scheduled_time_moves_at_least_six_days(self) -> None:
        for day in range(7):
            for time_of_day in ("00:00", "09:15", "23:59"):
                schedule = _schedule(day, time_of_day)
                fired = next_run(schedule, self.MONDAY_0800_WIB, after_run=False)
                now = fired + timedelta(minutes=2)
                upcoming = next_run(schedule, now, after_run=True)
                self.assertGreaterEqual(upcoming - now, timedelta(days=6))
                self.assertEqual(upcoming - fired, timedelta(days=7))

    def test_cron_schedules_are_not_evaluated(self) -> None:
        schedule = _schedule(None, None, schedule_type=ScheduleType.CRON, cron_expression="0 10 * * 1")
        self.assertIsNone(next_run(schedule, self.MONDAY_0800_WIB))

    def test_incomplete_simple_schedule_yields_none(self) -> None:
        self.assertIsNone(next_run(_schedule(1, None), self.MONDAY_0800_WIB))
        self.assertIsNone(next_run(_schedule(None, "10:00"), self.MONDAY_0800_WIB))


@unittest.skipUnless(DEPS_AVAILABLE, "pydantic not installed in this environment")
class ParseTimeOfDayTests(unittest.TestCase):
    def test_valid_values(self) -> None:
        self.assertEqual(parse_time_of_day("07:05"), (7, 5))
        self.assertEqual(parse_time_of_day(" 23:59 "), (23, 59))

    def test_invalid_values(self) -> None:
        for value in ("24:00", "12:60", "noon", "12", "12:3a", ""):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    parse_time_of_day(value)


if __name__ == "__main__":
    unittest.main()
