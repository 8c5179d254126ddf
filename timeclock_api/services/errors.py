# timeclock_api/services/errors.py
"""
Failure taxonomy of the check-in pipeline.

Every error carries a stable ``code`` that ends up as ``reason_code`` in the
orchestrator result and in the check-in audit log.
"""


class CheckInError(Exception):
    code = "CHECKIN_ERROR"

    def __init__(self, message: str = None, **detail):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.detail = detail


class QualityRejected(CheckInError):
    code = "QUALITY_REJECTED"


class ExtractionError(CheckInError):
    code = "EXTRACTION_ERROR"


class IncompatibleEnrollment(CheckInError):
    code = "INCOMPATIBLE_ENROLLMENT"


class NoMatch(CheckInError):
    """Not a failure of the system, a valid negative answer of the matcher."""
    code = "NO_MATCH"


class UnknownToken(CheckInError):
    code = "UNKNOWN_TOKEN"


class NotFoundError(CheckInError):
    code = "NOT_FOUND"


class IdentityInactive(CheckInError):
    code = "IDENTITY_INACTIVE"


class GeofenceDenied(CheckInError):
    code = "GEOFENCE_DENIED"


class PositionUnavailable(CheckInError):
    code = "POSITION_UNAVAILABLE"


class PersistenceError(CheckInError):
    code = "PERSISTENCE_ERROR"


class InvalidRequest(CheckInError):
    code = "INVALID_REQUEST"


class AlreadyCheckedIn(CheckInError):
    code = "ALREADY_CHECKED_IN"


class NotCheckedIn(CheckInError):
    code = "NOT_CHECKED_IN"


class InternalError(CheckInError):
    code = "INTERNAL_ERROR"
