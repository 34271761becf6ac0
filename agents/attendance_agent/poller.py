from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from agents.attendance_agent.credentials import CredentialCipher
from agents.attendance_agent.engine import AttendanceEngine
from agents.attendance_agent.models import Outcome, Schedule, utc_now
from agents.attendance_agent.recorder import OutcomeRecorder
from agents.attendance_agent.store import AttendanceStore
from agents.notifications.dispatcher import NotificationDispatcher


class DueSchedulePoller:
    """Processes due schedules one after another: run, record, notify, advance."""

    def __init__(
        self,
        store: AttendanceStore,
        engine: AttendanceEngine,
        recorder: OutcomeRecorder,
        dispatcher: NotificationDispatcher,
        cipher: CredentialCipher,
        logger,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.engine = engine
        self.recorder = recorder
        self.dispatcher = dispatcher
        self.cipher = cipher
        self.logger = logger
        self.clock = clock
        self.last_tick: Dict[str, Any] = {}

    def _debug(self, message: str, **meta: Any) -> None:
        suffix = " | " + ", ".join(f"{k}={v}" for k, v in meta.items()) if meta else ""
        self.logger.debug("[DEBUG][attendance_poller] %s%s", message, suffix)

    async def tick(self) -> Dict[str, Any]:
        """One poll: every active schedule whose next_run_at has elapsed, sequentially."""
        now = self.clock()
        try:
            due = self.store.due_schedules(now)
        except Exception:
            self.logger.exception("Could not load due schedules")
            return {"ok": False, "due": 0, "processed": 0}

        if due:
            self.logger.info("Found %s due attendance schedules", len(due))
        processed: List[int] = []
        for schedule in due:
            try:
                if await self.process(schedule) is not None:
                    processed.append(schedule.id)
            except Exception:
                self.logger.exception("Attendance processing failed for schedule %s", schedule.id)

        self.last_tick = {
            "ok": True,
            "at": now.isoformat(),
            "due": len(due),
            "processed": processed,
        }
        return {"ok": True, "due": len(due), "processed": len(processed)}

    async def process(self, schedule: Schedule, *, advance: bool = True) -> Optional[Outcome]:
        """Run one schedule end to end. None when it was skipped before any run."""
        course = self.store.get_course(schedule.course_id)
        if course is None:
            self.logger.warning("Skipping schedule %s: course %s not found", schedule.id, schedule.course_id)
            return None
        user = self.store.get_user(course.user_id)
        if user is None or not user.portal_username or not user.portal_secret:
            self.logger.info("Skipping %s: no portal credentials", course.name)
            return None
        password = self.cipher.decrypt(user.portal_secret)
        if not password:
            self.logger.info("Skipping %s: stored portal secret is not decryptable", course.name)
            return None

        started_at = self.clock()
        self.logger.info("Running attendance for %s (attempt 1/%s)", course.name, schedule.max_retries)
        try:
            outcome = await self.engine.run(course.url, user.portal_username, password)
        except Exception as err:
            self.logger.exception("Attendance engine crashed for %s", course.name)
            outcome = Outcome.error(f"Error: {err}")

        try:
            self.recorder.record(schedule.id, outcome, attempted_at=started_at)
            if self.dispatcher.has_channels(user):
                try:
                    await self.dispatcher.dispatch(user, schedule, course.name, outcome)
                except Exception:
                    self.logger.exception("Notification dispatch failed for %s", course.name)
        finally:
            # Every run moves the schedule on, even when bookkeeping fails.
            if advance:
                try:
                    self.recorder.advance(schedule, started_at=started_at, now=self.clock())
                except Exception:
                    self.logger.exception("Could not advance schedule %s", schedule.id)
        self._debug("Schedule processed", schedule_id=schedule.id, status=outcome.status.value)
        return outcome

    async def run_now(self, course_id: int) -> Outcome:
        """Manual trigger for a course's schedule; records and notifies without moving next_run_at."""
        schedule = self.store.get_schedule_for_course(course_id)
        if schedule is None:
            raise RuntimeError(f"No schedule found for course {course_id}")
        outcome = await self.process(schedule, advance=False)
        if outcome is None:
            raise RuntimeError("Course or portal credentials are not configured")
        return outcome

    def status(self) -> Optional[Dict[str, Any]]:
        return dict(self.last_tick) if self.last_tick else None
