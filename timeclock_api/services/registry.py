# timeclock_api/services/registry.py
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from timeclock_api.extensions import db
from timeclock_api.models.employee import Employee
from timeclock_api.models.master import Location
from timeclock_api.services.errors import PersistenceError


class IdentityRegistry:
    """Read-only view of employees and their locations."""

    def lookup_by_token(self, token: str) -> Optional[Employee]:
        # exact match only; inactive employees are returned so callers can say so
        if not token:
            return None
        try:
            return Employee.query.filter(Employee.barcode == token).one_or_none()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError(f"Employee lookup failed: {e}") from e

    def get(self, employee_id: int) -> Optional[Employee]:
        try:
            return db.session.get(Employee, employee_id)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceError(f"Employee lookup failed: {e}") from e

    def geofence_for(self, location_id: Optional[int]) -> Tuple[Optional[Tuple[float, float]], Optional[int]]:
        """(center, radius_m) of a location; (None, None) when it has none."""
        if location_id is None:
            return None, None
        loc = db.session.get(Location, location_id)
        if not loc:
            return None, None
        return loc.geo_center(), loc.geofence_radius_meters
