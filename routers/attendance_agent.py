import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from agents.attendance_agent.models import ScheduleType, utc_now
from agents.attendance_agent.poller import DueSchedulePoller
from agents.attendance_agent.recurrence import next_run, parse_time_of_day
from agents.attendance_agent.store import AttendanceStore
from routers.auth import ensure_request_authorized

logger = logging.getLogger("attendance_runner.attendance_router")


class ScheduleRequest(BaseModel):
    """Payload for creating or replacing a course's attendance schedule."""

    schedule_type: ScheduleType = ScheduleType.SIMPLE
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    time_of_day: Optional[str] = None
    cron_expression: Optional[str] = None
    max_retries: int = Field(default=6, ge=1)
    retry_interval_minutes: int = Field(default=5, ge=1)
    is_active: bool = True
    use_separate_channel_token: bool = False
    custom_token: Optional[str] = None


def create_attendance_router(
    store: AttendanceStore,
    poller: DueSchedulePoller,
    screenshot_dir: Path,
    job_secret: str,
    missing_config_fn: Callable[[], List[str]],
    tick_status_fn: Optional[Callable[[], Dict[str, Any]]] = None,
    clock: Callable[[], datetime] = utc_now,
) -> APIRouter:
    """HTTP surface for schedules, manual runs, attempt history and screenshots."""
    router = APIRouter(prefix="/attendance-agent", tags=["attendance-agent"])

    def ensure_auth(request: Request) -> None:
        ensure_request_authorized(request, job_secret, logger)

    def ensure_course(course_id: int):
        course = store.get_course(course_id)
        if course is None:
            raise HTTPException(status_code=404, detail="Course not found")
        return course

    @router.get("/schedules")
    def list_schedules(request: Request):
        ensure_auth(request)
        items = [s.model_dump(mode="json", exclude={"custom_token"}) for s in store.list_schedules()]
        return {"ok": True, "count": len(items), "items": items}

    @router.put("/courses/{course_id}/schedule")
    def update_schedule(course_id: int, req: ScheduleRequest, request: Request):
        """Create or replace the schedule; next_run_at may land later today."""
        ensure_auth(request)
        ensure_course(course_id)
        if req.schedule_type == ScheduleType.SIMPLE:
            if req.day_of_week is None or not req.time_of_day:
                raise HTTPException(status_code=400, detail="day_of_week and time_of_day are required")
            try:
                parse_time_of_day(req.time_of_day)
            except ValueError as err:
                raise HTTPException(status_code=400, detail=str(err)) from err

        fields = req.model_dump()
        if not req.use_separate_channel_token:
            fields["custom_token"] = None
        draft = store.upsert_schedule(course_id, fields)
        upcoming = next_run(draft, clock(), after_run=False)
        schedule = store.upsert_schedule(course_id, {"next_run_at": upcoming})
        logger.info(
            "Schedule saved course_id=%s next_run_at=%s",
            course_id,
            upcoming.isoformat() if upcoming else "-",
        )
        return {"ok": True, "item": schedule.model_dump(mode="json", exclude={"custom_token"})}

    @router.delete("/courses/{course_id}/schedule")
    def delete_schedule(course_id: int, request: Request):
        ensure_auth(request)
        ensure_course(course_id)
        if not store.delete_schedule(course_id):
            raise HTTPException(status_code=404, detail="No schedule found for this course")
        return {"ok": True}

    @router.post("/courses/{course_id}/run")
    async def run_now(course_id: int, request: Request):
        """Run the check-in immediately (records and notifies, schedule unchanged)."""
        ensure_auth(request)
        missing = missing_config_fn()
        if missing:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid attendance config. Missing: {', '.join(sorted(missing))}",
            )
        course = ensure_course(course_id)
        try:
            outcome = await poller.run_now(course_id)
        except RuntimeError as err:
            logger.warning("Manual run rejected for %s: %s", course.name, err)
            raise HTTPException(status_code=400, detail=str(err)) from err
        return {
            "ok": True,
            "message": "Attendance completed successfully!" if outcome.success else "Attendance attempt completed",
            "item": outcome.model_dump(mode="json"),
        }

    @router.get("/courses/{course_id}/logs")
    def logs(course_id: int, request: Request, limit: int = 10):
        ensure_auth(request)
        ensure_course(course_id)
        schedule = store.get_schedule_for_course(course_id)
        if schedule is None:
            return {"ok": True, "count": 0, "items": []}
        items = [r.model_dump(mode="json") for r in store.list_attempts(schedule.id, limit=limit)]
        return {"ok": True, "count": len(items), "items": items}

    @router.get("/status")
    def status(request: Request):
        ensure_auth(request)
        return {
            "ok": True,
            "last_tick": poller.status(),
            "jobs": tick_status_fn() if tick_status_fn else {},
        }

    @router.get("/screenshots/{name}")
    def screenshot(name: str):
        # No auth: the link channel embeds this URL in messages.
        if Path(name).name != name or not name.endswith(".png"):
            raise HTTPException(status_code=404, detail="Not found")
        path = screenshot_dir / name
        if not path.is_file():
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(path, media_type="image/png")

    return router
