# timeclock_api/models/checkin_log.py
from datetime import datetime
from timeclock_api.extensions import db

class CheckInLog(db.Model):
    __tablename__ = "checkin_logs"

    id = db.Column(db.Integer, primary_key=True)
    terminal_id = db.Column(db.Integer, db.ForeignKey("terminals.id", ondelete="SET NULL"), nullable=True, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=True, index=True)
    time_entry_id = db.Column(db.Integer, db.ForeignKey("time_entries.id", ondelete="SET NULL"), nullable=True)

    method = db.Column(db.String(10), nullable=False)  # TOKEN, FACE
    action = db.Column(db.String(10), nullable=True)   # IN, OUT

    req_lat = db.Column(db.Numeric(9, 6), nullable=True)
    req_lng = db.Column(db.Numeric(9, 6), nullable=True)
    distance_m = db.Column(db.Float, nullable=True)
    face_similarity = db.Column(db.Float, nullable=True)

    result = db.Column(db.String(20), nullable=False)       # MARKED, REJECTED
    reason_code = db.Column(db.String(50), nullable=False)  # CHECKED_IN, GEOFENCE_DENIED, NO_MATCH, ...
    error_message = db.Column(db.Text, nullable=True)
    anomaly = db.Column(db.Boolean, default=False, nullable=False)  # several open intervals were found

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    employee = db.relationship("Employee")
    time_entry = db.relationship("TimeEntry")

    def to_dict(self):
        return {
            "id": self.id,
            "terminal_id": self.terminal_id,
            "employee_id": self.employee_id,
            "employee_name": self.employee.full_name if self.employee else None,
            "at": self.created_at.isoformat(),
            "method": self.method,
            "action": self.action,
            "result": self.result,
            "reason_code": self.reason_code,
            "face_similarity": self.face_similarity,
            "distance_m": self.distance_m,
            "time_entry_id": self.time_entry_id,
            "anomaly": self.anomaly,
            "error_message": self.error_message,
        }
