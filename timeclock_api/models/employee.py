# timeclock_api/models/employee.py
from datetime import datetime
from timeclock_api.extensions import db

class Employee(db.Model):
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True, index=True)

    employee_number = db.Column(db.String(32), nullable=False, unique=True)
    first_name = db.Column(db.String(80), nullable=False)
    last_name  = db.Column(db.String(80), nullable=True)
    email      = db.Column(db.String(255), nullable=True)

    barcode = db.Column(db.String(128), nullable=True, unique=True)  # QR / badge token, exact match only
    default_break_minutes = db.Column(db.Integer, nullable=True)     # applied on check-out
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    location = db.relationship("Location", lazy="joined")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

    def to_dict(self):
        return {
            "id": self.id,
            "employee_number": self.employee_number,
            "name": self.full_name,
            "location_id": self.location_id,
            "is_active": self.is_active,
        }
