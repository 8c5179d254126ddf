# timeclock_api/models/time_entry.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeclock_api.extensions import db


class TimeEntry(db.Model):
    """
    One attendance interval of an employee.

      check_in   -> start of the interval
      check_out  -> end; NULL while the employee is clocked in
      break_duration_minutes -> set on check-out from the employee default
      notes      -> free text (auto-checkout appends a marker here)

    Normal operation keeps at most one open row (check_out IS NULL) per
    employee; readers still order by check_in DESC and treat the newest one
    as canonical.
    """

    __tablename__ = "time_entries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"), index=True, nullable=False
    )

    check_in: Mapped[datetime] = mapped_column(index=True, nullable=False)
    check_out: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    break_duration_minutes: Mapped[Optional[int]] = mapped_column(nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(db.Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    employee = relationship("Employee", lazy="joined")

    __table_args__ = (
        Index("ix_time_entries_employee_open", "employee_id", "check_out"),
    )

    @property
    def is_open(self) -> bool:
        return self.check_out is None

    def to_dict(self):
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "check_in": self.check_in.isoformat(),
            "check_out": self.check_out.isoformat() if self.check_out else None,
            "break_duration_minutes": self.break_duration_minutes,
            "notes": self.notes,
        }
