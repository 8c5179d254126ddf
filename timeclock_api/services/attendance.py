# timeclock_api/services/attendance.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pytz
from sqlalchemy.exc import SQLAlchemyError

from timeclock_api.extensions import db
from timeclock_api.models.employee import Employee
from timeclock_api.models.time_entry import TimeEntry
from timeclock_api.services.errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_BREAK_MINUTES = 45


@dataclass
class OpenInterval:
    entry: TimeEntry
    open_count: int

    @property
    def anomaly(self) -> bool:
        return self.open_count > 1


class AttendanceStore:
    """
    Persistence of attendance intervals (time entries).

    Writes are staged on the session and committed by the caller together
    with the audit row; ``commit`` rolls back and raises PersistenceError on
    failure so no half-written interval is left behind.
    """

    def lock_employee(self, employee_id: int):
        """
        Row-lock the employee until the next commit or rollback.

        Serializes check-ins of one employee across workers and terminals
        (SELECT ... FOR UPDATE on Postgres; a no-op on SQLite).
        """
        try:
            db.session.execute(
                db.select(Employee.id).where(Employee.id == employee_id).with_for_update()
            )
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError(f"Could not lock employee {employee_id}: {e}") from e

    def find_open(self, employee_id: int) -> Optional[OpenInterval]:
        try:
            rows = (
                TimeEntry.query
                .filter(TimeEntry.employee_id == employee_id, TimeEntry.check_out.is_(None))
                .order_by(TimeEntry.check_in.desc(), TimeEntry.id.desc())
                .all()
            )
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError(f"Could not read open time entries: {e}") from e

        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(
                "Employee %s has %d open time entries; using the latest (id=%s, check_in=%s)",
                employee_id, len(rows), rows[0].id, rows[0].check_in.isoformat(),
            )
        return OpenInterval(entry=rows[0], open_count=len(rows))

    def open_interval(self, employee_id: int, now: datetime) -> TimeEntry:
        entry = TimeEntry(employee_id=employee_id, check_in=now)
        db.session.add(entry)
        return entry

    def close_interval(self, entry: TimeEntry, now: datetime, break_minutes: Optional[int]) -> TimeEntry:
        entry.check_out = now
        entry.break_duration_minutes = break_minutes
        return entry

    def commit(self):
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception("Attendance write failed")
            raise PersistenceError(f"Attendance write failed: {e}") from e


def auto_checkout(now: Optional[datetime] = None, hour: int = 20, tz_name: str = "Europe/Berlin",
                  force: bool = False, default_break: int = DEFAULT_BREAK_MINUTES) -> dict:
    """
    Close every open time entry at ``hour``:00 local time.

    Runs only when the local hour equals ``hour`` (the job is scheduled
    hourly) unless ``force`` is set. Each employee's default break is applied
    and a marker is appended to the notes. A failing entry is rolled back and
    counted; the rest of the batch continues.
    """
    tz = pytz.timezone(tz_name)
    now = now or datetime.now(pytz.utc)
    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    local_now = now.astimezone(tz)

    logger.info("Starting auto-checkout at %s (local hour %d)", local_now.isoformat(), local_now.hour)
    if local_now.hour != hour and not force:
        return {"message": "Not time for auto-checkout", "hour": local_now.hour, "success": 0, "failed": 0}

    checkout_local = tz.localize(datetime(local_now.year, local_now.month, local_now.day, hour, 0, 0))
    # stored timestamps are naive UTC
    checkout_at = checkout_local.astimezone(pytz.utc).replace(tzinfo=None)
    marker = f"Automatic system checkout at {hour:02d}:00"

    entries = TimeEntry.query.filter(TimeEntry.check_out.is_(None)).order_by(TimeEntry.id).all()
    updates = []
    for entry in entries:
        entry_id = entry.id
        emp = entry.employee
        brk = (emp.default_break_minutes if emp and emp.default_break_minutes else None) or default_break
        try:
            entry.check_out = max(checkout_at, entry.check_in)
            entry.break_duration_minutes = brk
            entry.notes = f"{entry.notes} ({marker})" if entry.notes else marker
            db.session.commit()
            updates.append({"id": entry_id, "success": True})
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error updating entry %s: %s", entry_id, e)
            updates.append({"id": entry_id, "success": False, "error": str(e)})

    ok_count = sum(1 for u in updates if u["success"])
    failed = len(updates) - ok_count
    logger.info("Auto-checkout completed: %d successful, %d failed", ok_count, failed)
    return {"message": "Auto-checkout completed", "success": ok_count, "failed": failed, "updates": updates}
