# timeclock_api/services/geofence.py
import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from timeclock_api.services.errors import PositionUnavailable

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000  # mean Earth radius


@dataclass(frozen=True)
class LatLon:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class GeofenceResult:
    allowed: bool
    distance_m: Optional[float] = None
    error: Optional[str] = None


# A position source blocks until it has a fix, or raises PositionUnavailable.
PositionSource = Callable[[], LatLon]


class GeofenceService:
    @staticmethod
    def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """
        Calculate the great circle distance between two points
        on the earth (specified in decimal degrees) using Haversine formula.
        Returns distance in meters.
        """
        # Convert to float just in case they are Decimal or strings
        lat1, lon1, lat2, lon2 = map(float, [lat1, lon1, lat2, lon2])

        phi1 = math.radians(lat1)
        phi2 = math.radians(lat2)
        dphi = math.radians(lat2 - lat1)
        dlambda = math.radians(lon2 - lon1)

        a = math.sin(dphi / 2.0)**2 + \
            math.cos(phi1) * math.cos(phi2) * \
            math.sin(dlambda / 2.0)**2

        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

        return EARTH_RADIUS_M * c

    @staticmethod
    def is_enabled(center: Optional[Tuple[float, float]], radius_m: Optional[float]) -> bool:
        # a zero radius counts as "not configured"
        return center is not None and None not in center and bool(radius_m)

    @staticmethod
    def check(center: Optional[Tuple[float, float]], radius_m: Optional[float],
              live_position: PositionSource) -> GeofenceResult:
        """
        Decide whether the live position lies inside the fence.

        No center or no radius means geofencing is off for the location and
        the check passes without asking for a position. A position that
        cannot be obtained never counts as inside.
        """
        if not GeofenceService.is_enabled(center, radius_m):
            return GeofenceResult(allowed=True)

        try:
            pos = live_position()
        except PositionUnavailable as e:
            logger.info("Geofence check failed closed: %s", e.message)
            return GeofenceResult(allowed=False, error=e.message)

        dist = GeofenceService.calculate_distance(center[0], center[1], pos.latitude, pos.longitude)
        if not math.isfinite(dist):
            logger.info("Geofence check failed closed: distance to %s is not finite", pos)
            return GeofenceResult(allowed=False, error=POSITION_ERRORS["invalid"])
        allowed = dist <= float(radius_m)
        if not allowed:
            logger.info("Outside geofence: %.0fm > %sm", dist, radius_m)
        return GeofenceResult(allowed=allowed, distance_m=dist)


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.1f} km"


POSITION_ERRORS = {
    "denied": "Location permission was denied",
    "unavailable": "Location information is unavailable",
    "timeout": "Timed out while acquiring location",
    "unsupported": "Geolocation is not supported by this device",
    "invalid": "Reported location is not a valid position",
}


def reported_position(lat: Optional[float], lng: Optional[float], error: Optional[str] = None) -> PositionSource:
    """
    Position source for a fix the kiosk already acquired (or failed to).

    The browser does the permission prompt and GPS fix; the request carries
    either coordinates or the reason there are none.
    """
    def _source() -> LatLon:
        if error:
            raise PositionUnavailable(POSITION_ERRORS.get(error, "Location could not be determined"),
                                      reason=error)
        if lat is None or lng is None:
            raise PositionUnavailable(POSITION_ERRORS["unavailable"], reason="missing")
        lat_f, lng_f = float(lat), float(lng)
        if not (math.isfinite(lat_f) and math.isfinite(lng_f)) or abs(lat_f) > 90 or abs(lng_f) > 180:
            raise PositionUnavailable(POSITION_ERRORS["invalid"], reason="invalid")
        return LatLon(lat_f, lng_f)
    return _source
