from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from agents.attendance_agent.models import Schedule, ScheduleType


# Portal calendar is WIB (UTC+7) with no DST.
CIVIL_OFFSET = timedelta(hours=7)
CIVIL_TZ = timezone(CIVIL_OFFSET, name="WIB")


def parse_time_of_day(value: str) -> Tuple[int, int]:
    raw = str(value or "").strip()
    parts = raw.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid time_of_day '{raw}'. Use HH:MM")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time_of_day '{raw}'. Use HH:MM between 00:00 and 23:59")
    return hours, minutes


def _civil_weekday(moment: datetime) -> int:
    # Python counts Monday=0; schedules count Sunday=0.
    return (moment.weekday() + 1) % 7


def next_run(schedule: Schedule, now: datetime, *, after_run: bool = True) -> Optional[datetime]:
    """Next trigger instant (aware UTC) for a SIMPLE schedule.

    ``after_run`` is the recomputation done once a run finished: it never lands
    on the same civil day. The initial computation (``after_run=False``) may
    target today while the configured time is still ahead.

    CRON schedules are not evaluated and yield ``None``.
    """
    if schedule.schedule_type != ScheduleType.SIMPLE:
        return None
    if schedule.day_of_week is None or not schedule.time_of_day:
        return None

    hours, minutes = parse_time_of_day(schedule.time_of_day)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    # Shift into the civil calendar and drop tzinfo so arithmetic is pure wall-clock.
    civil_now = (now.astimezone(timezone.utc) + CIVIL_OFFSET).replace(tzinfo=None)

    days_until = (schedule.day_of_week - _civil_weekday(civil_now)) % 7
    if days_until == 0:
        if after_run:
            days_until = 7
        elif civil_now.hour * 60 + civil_now.minute >= hours * 60 + minutes:
            days_until = 7

    target_civil = (civil_now + timedelta(days=days_until)).replace(
        hour=hours, minute=minutes, second=0, microsecond=0
    )
    return (target_civil - CIVIL_OFFSET).replace(tzinfo=timezone.utc)
