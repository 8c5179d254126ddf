# timeclock_api/models/master.py
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from timeclock_api.extensions import db


class Location(db.Model):
    """
    A physical work location / site.

    Geofence fields (both optional):

      latitude, longitude     -> center point of the location
      geofence_radius_meters  -> allowed radius for check-in

    If the center or the radius is missing, geofencing is disabled for the
    location and every check-in is allowed.
    """

    __tablename__ = "locations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    address = db.Column(db.String(255), nullable=True)

    # --- geofence config ---
    latitude = db.Column(db.Numeric(9, 6), nullable=True)
    longitude = db.Column(db.Numeric(9, 6), nullable=True)
    geofence_radius_meters = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def geo_center(self):
        """Return (lat, lon) or None if not configured."""
        if self.latitude is None or self.longitude is None:
            return None
        return float(self.latitude), float(self.longitude)

    def to_dict(self):
        center = self.geo_center()
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "latitude": center[0] if center else None,
            "longitude": center[1] if center else None,
            "geofence_radius_meters": self.geofence_radius_meters,
        }


class Terminal(db.Model):
    """A kiosk device bound to one location."""

    __tablename__ = "terminals"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    username = db.Column(db.String(80), nullable=False, unique=True)
    password_hash = db.Column(db.String(255), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    location = db.relationship("Location", lazy="joined")

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)
