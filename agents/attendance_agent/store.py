import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from agents.attendance_agent.models import (
    AttemptRecord,
    Course,
    Schedule,
    UserAccount,
)


class AttendanceStore:
    """JSON-file persistence for courses, users, schedules and the attempt log."""

    def __init__(self, data_dir: Path, logger) -> None:
        self.data_dir = data_dir
        self.logger = logger
        self._lock = threading.Lock()
        self.schedules_path = self.data_dir / "attendance_schedules.json"
        self.courses_path = self.data_dir / "attendance_courses.json"
        self.users_path = self.data_dir / "attendance_users.json"
        self.attempts_path = self.data_dir / "attendance_attempts.jsonl"
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _load_items(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except Exception:
            self.logger.exception("Could not read %s; using empty state", path.name)
            return []
        items = data.get("items", []) if isinstance(data, dict) else []
        return [item for item in items if isinstance(item, dict)]

    @staticmethod
    def _save_items(path: Path, items: List[Dict[str, Any]]) -> None:
        path.write_text(
            json.dumps({"items": items}, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )

    # --- courses / users (owned by the surrounding application) ---

    def get_course(self, course_id: int) -> Optional[Course]:
        with self._lock:
            for item in self._load_items(self.courses_path):
                if int(item.get("id", -1)) == int(course_id):
                    return Course.model_validate(item)
        return None

    def save_course(self, course: Course) -> Course:
        with self._lock:
            items = [i for i in self._load_items(self.courses_path) if int(i.get("id", -1)) != course.id]
            items.append(course.model_dump(mode="json"))
            self._save_items(self.courses_path, items)
        return course

    def get_user(self, user_id: int) -> Optional[UserAccount]:
        with self._lock:
            for item in self._load_items(self.users_path):
                if int(item.get("id", -1)) == int(user_id):
                    return UserAccount.model_validate(item)
        return None

    def save_user(self, user: UserAccount) -> UserAccount:
        with self._lock:
            items = [i for i in self._load_items(self.users_path) if int(i.get("id", -1)) != user.id]
            items.append(user.model_dump(mode="json"))
            self._save_items(self.users_path, items)
        return user

    # --- schedules ---

    def list_schedules(self) -> List[Schedule]:
        with self._lock:
            return [Schedule.model_validate(item) for item in self._load_items(self.schedules_path)]

    def get_schedule(self, schedule_id: int) -> Optional[Schedule]:
        for schedule in self.list_schedules():
            if schedule.id == int(schedule_id):
                return schedule
        return None

    def get_schedule_for_course(self, course_id: int) -> Optional[Schedule]:
        for schedule in self.list_schedules():
            if schedule.course_id == int(course_id):
                return schedule
        return None

    def due_schedules(self, now: datetime) -> List[Schedule]:
        return [
            s for s in self.list_schedules()
            if s.is_active and s.next_run_at is not None and s.next_run_at <= now
        ]

    def upsert_schedule(self, course_id: int, fields: Dict[str, Any]) -> Schedule:
        """Create or replace the schedule of a course, keeping its id and run history."""
        with self._lock:
            items = self._load_items(self.schedules_path)
            existing = next((i for i in items if int(i.get("course_id", -1)) == int(course_id)), None)
            if existing is not None:
                merged = {**existing, **fields, "id": existing["id"], "course_id": int(course_id)}
            else:
                next_id = max((int(i.get("id", 0)) for i in items), default=0) + 1
                merged = {**fields, "id": next_id, "course_id": int(course_id)}
            schedule = Schedule.model_validate(merged)
            items = [i for i in items if int(i.get("course_id", -1)) != int(course_id)]
            items.append(schedule.model_dump(mode="json"))
            self._save_items(self.schedules_path, items)
        return schedule

    def delete_schedule(self, course_id: int) -> bool:
        with self._lock:
            items = self._load_items(self.schedules_path)
            kept = [i for i in items if int(i.get("course_id", -1)) != int(course_id)]
            if len(kept) == len(items):
                return False
            self._save_items(self.schedules_path, kept)
        return True

    def update_run_times(self, schedule_id: int, last_run_at: datetime, next_run_at: Optional[datetime]) -> None:
        with self._lock:
            items = self._load_items(self.schedules_path)
            for item in items:
                if int(item.get("id", -1)) == int(schedule_id):
                    item["last_run_at"] = last_run_at.isoformat()
                    item["next_run_at"] = next_run_at.isoformat() if next_run_at else None
                    break
            else:
                raise RuntimeError(f"Schedule not found: {schedule_id}")
            self._save_items(self.schedules_path, items)

    # --- attempt log ---

    def append_attempt(self, record: AttemptRecord) -> AttemptRecord:
        with self._lock:
            with self.attempts_path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(record.model_dump(mode="json"), ensure_ascii=False) + "\n")
        return record

    def list_attempts(self, schedule_id: int, limit: int = 10) -> List[AttemptRecord]:
        if not self.attempts_path.exists():
            return []
        with self._lock:
            lines = self.attempts_path.read_text(encoding="utf-8").splitlines()
        records: List[AttemptRecord] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                record = AttemptRecord.model_validate(json.loads(line))
            except Exception:
                self.logger.warning("Skipping unreadable attempt log line")
                continue
            if record.schedule_id == int(schedule_id):
                records.append(record)
        records.sort(key=lambda r: r.attempted_at, reverse=True)
        return records[: max(1, min(int(limit), 500))]
