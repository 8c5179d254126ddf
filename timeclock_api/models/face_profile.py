# timeclock_api/models/face_profile.py
from datetime import datetime
from sqlalchemy.dialects.postgresql import JSONB
from timeclock_api.extensions import db

class FaceProfile(db.Model):
    """
    The single face enrollment of an employee.

    Re-registration overwrites embedding, embedding_version, image_url and
    updated_at in one UPDATE; the unique employee_id keeps it one per person.
    """
    __tablename__ = "face_profiles"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, unique=True)
    image_url = db.Column(db.Text, nullable=True)  # reference image, audit/display only
    embedding = db.Column(db.JSON().with_variant(JSONB, "postgresql"), nullable=False)  # Array of floats
    embedding_version = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    employee = db.relationship("Employee", backref=db.backref("face_profile", uselist=False))

    def to_dict(self):
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "embedding_version": self.embedding_version,
            "dimensions": len(self.embedding or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
