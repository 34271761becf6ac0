from datetime import datetime
from typing import Optional

from agents.attendance_agent.models import AttemptRecord, Outcome, Schedule
from agents.attendance_agent.recurrence import next_run
from agents.attendance_agent.store import AttendanceStore


class OutcomeRecorder:
    """Writes the single attempt record of a run and advances its schedule."""

    def __init__(self, store: AttendanceStore, logger) -> None:
        self.store = store
        self.logger = logger

    def record(
        self,
        schedule_id: int,
        outcome: Outcome,
        attempted_at: datetime,
        attempt_number: int = 1,
    ) -> AttemptRecord:
        record = AttemptRecord(
            schedule_id=schedule_id,
            attempt_number=attempt_number,
            status=outcome.status,
            message=outcome.message,
            screenshot_ref=outcome.screenshot_path,
            attempted_at=attempted_at,
        )
        self.store.append_attempt(record)
        self.logger.info(
            "Attempt recorded schedule_id=%s status=%s",
            schedule_id,
            record.status.value,
        )
        return record

    def advance(self, schedule: Schedule, started_at: datetime, now: datetime) -> Optional[datetime]:
        """Set last_run_at to the run start and next_run_at one week ahead, whatever the outcome."""
        upcoming = next_run(schedule, now, after_run=True)
        self.store.update_run_times(schedule.id, last_run_at=started_at, next_run_at=upcoming)
        self.logger.info(
            "Schedule %s advanced: next_run_at=%s",
            schedule.id,
            upcoming.isoformat() if upcoming else "-",
        )
        return upcoming
