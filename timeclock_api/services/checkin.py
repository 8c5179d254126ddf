# timeclock_api/services/checkin.py
from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from timeclock_api.extensions import db
from timeclock_api.models.checkin_log import CheckInLog
from timeclock_api.models.employee import Employee
from timeclock_api.services.attendance import AttendanceStore, DEFAULT_BREAK_MINUTES
from timeclock_api.services.enrollment import EnrollmentStore
from timeclock_api.services.errors import (
    AlreadyCheckedIn,
    CheckInError,
    ExtractionError,
    GeofenceDenied,
    IdentityInactive,
    IncompatibleEnrollment,
    InternalError,
    InvalidRequest,
    NoMatch,
    NotCheckedIn,
    NotFoundError,
    PersistenceError,
    PositionUnavailable,
    QualityRejected,
    UnknownToken,
)
from timeclock_api.services.face_engine import EmbeddingExtractor
from timeclock_api.services.face_matcher import (
    EMPTY_GALLERY,
    INCOMPATIBLE_ENROLLMENT,
    LOGIN_THRESHOLD,
    MATCH,
    SimilarityMatcher,
)
from timeclock_api.services.face_quality import FaceQualityGate
from timeclock_api.services.geofence import GeofenceService, PositionSource, format_distance
from timeclock_api.services.registry import IdentityRegistry
from timeclock_api.services.timeouts import call_with_timeout

logger = logging.getLogger(__name__)

DIRECTIONS = ("auto", "in", "out")


def _finite(v: Optional[float]) -> bool:
    return v is not None and math.isfinite(v)


@dataclass
class CheckInRequest:
    token: Optional[str] = None
    frame: Any = None
    position: Optional[PositionSource] = None
    direction: str = "auto"
    # as reported by the kiosk, kept for the audit log
    lat: Optional[float] = None
    lng: Optional[float] = None


@dataclass
class CheckInResult:
    success: bool
    reason_code: str
    detail: str
    action: Optional[str] = None  # "IN" | "OUT"
    employee: Optional[Dict[str, Any]] = None
    time_entry: Optional[Dict[str, Any]] = None
    similarity: Optional[float] = None
    distance_m: Optional[float] = None
    anomaly: bool = False
    # whether the kiosk should switch its camera / scanner back on
    rearm: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "success": self.success,
            "reason_code": self.reason_code,
            "detail": self.detail,
            "action": self.action,
            "employee": self.employee,
            "time_entry": self.time_entry,
            "similarity": self.similarity,
            "distance_m": round(self.distance_m) if _finite(self.distance_m) else None,
            "anomaly": self.anomaly,
            "rearm": self.rearm,
        }
        out.update(self.extra)
        return out


@dataclass
class _Attempt:
    """What is known about one scan so far; feeds the result and the audit row."""
    method: str
    employee: Optional[Employee] = None
    # plain copies, still readable after a rollback expired the ORM row
    employee_id: Optional[int] = None
    employee_info: Optional[Dict[str, Any]] = None
    similarity: Optional[float] = None
    distance_m: Optional[float] = None
    anomaly: bool = False


class CheckInOrchestrator:
    """
    Check-in / check-out state machine for one kiosk terminal.

    An employee is OUT (no open time entry) or IN (one open time entry). A
    scan resolves the employee from a token or a face, then toggles the
    state. Only OUT -> IN is geofenced; checking out always works so nobody
    gets stuck clocked in.

    One scan at a time: a scan arriving while another is in flight gets a
    BUSY result straight away and is not queued. All failures come back as a
    CheckInResult, never as an exception.
    """

    def __init__(self, extractor: EmbeddingExtractor, location_id: Optional[int] = None,
                 terminal_id: Optional[int] = None, threshold: float = LOGIN_THRESHOLD,
                 quality_gate: Optional[FaceQualityGate] = None,
                 enrollments: Optional[EnrollmentStore] = None,
                 registry: Optional[IdentityRegistry] = None,
                 attendance: Optional[AttendanceStore] = None,
                 default_break_minutes: int = DEFAULT_BREAK_MINUTES,
                 extraction_timeout: Optional[float] = 10,
                 position_timeout: Optional[float] = 10,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.extractor = extractor
        self.location_id = location_id
        self.terminal_id = terminal_id
        self.threshold = threshold
        self.quality_gate = quality_gate or FaceQualityGate()
        self.enrollments = enrollments or EnrollmentStore()
        self.registry = registry or IdentityRegistry()
        self.attendance = attendance or AttendanceStore()
        self.default_break_minutes = default_break_minutes
        self.extraction_timeout = extraction_timeout
        self.position_timeout = position_timeout
        self.clock = clock
        self._busy = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def process(self, req: CheckInRequest) -> CheckInResult:
        if not self._busy.acquire(blocking=False):
            logger.info("Terminal %s busy, scan ignored", self.terminal_id)
            # the scan in flight re-arms the kiosk when it finishes
            return CheckInResult(False, "BUSY", "Another scan is being processed", rearm=False)
        try:
            return self._process(req)
        finally:
            self._busy.release()

    # ---------- pipeline ----------

    def _process(self, req: CheckInRequest) -> CheckInResult:
        attempt = _Attempt(method="TOKEN" if req.token is not None else "FACE")
        try:
            if req.direction not in DIRECTIONS:
                raise InvalidRequest(f"Unknown direction {req.direction!r}")
            self._resolve(req, attempt)
            return self._transition(req, attempt)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception("Check-in aborted by a database error")
            result = self._failure(PersistenceError(f"Database error: {e}"), attempt)
            self._audit_rejection(req, attempt, result)
            return result
        except CheckInError as e:
            result = self._failure(e, attempt)
            self._audit_rejection(req, attempt, result)
            return result
        except Exception as e:
            db.session.rollback()
            logger.exception("Check-in failed unexpectedly")
            result = self._failure(InternalError(f"Unexpected error: {e}"), attempt)
            self._audit_rejection(req, attempt, result)
            return result

    def _resolve(self, req: CheckInRequest, attempt: _Attempt):
        if req.token is not None:
            if not isinstance(req.token, str):
                raise InvalidRequest("Token must be a string")
            token = req.token.strip()
            if not token:
                raise InvalidRequest("Empty token")
            emp = self.registry.lookup_by_token(token)
            if not emp:
                raise UnknownToken("Unknown code")
        elif req.frame is not None:
            emp = self._identify_face(req.frame, attempt)
        else:
            raise InvalidRequest("Either a token or an image is required")

        attempt.employee = emp
        attempt.employee_id = emp.id
        attempt.employee_info = emp.to_dict()
        if not emp.is_active:
            raise IdentityInactive("Employee is inactive, please contact an administrator")

    def _identify_face(self, frame, attempt: _Attempt) -> Employee:
        if not self.quality_gate.has_usable_face(frame):
            raise QualityRejected("No usable face in the picture, please position your face in the camera")

        try:
            probe = call_with_timeout(self.extractor.extract, self.extraction_timeout, frame)
        except FutureTimeout:
            raise ExtractionError(f"Face recognition timed out after {self.extraction_timeout}s")
        if len(probe) != self.extractor.dimensions:
            raise ExtractionError(
                f"Extractor returned {len(probe)} dimensions, expected {self.extractor.dimensions}"
            )

        matcher = SimilarityMatcher(self.extractor.dimensions, self.extractor.version)
        gallery = self.enrollments.get_gallery(self.location_id)
        report = matcher.match(probe, gallery, self.threshold)
        attempt.similarity = report.best_similarity

        if report.status == INCOMPATIBLE_ENROLLMENT:
            raise IncompatibleEnrollment(
                "Stored face profiles were made with another model, please re-register",
                skipped=report.skipped,
            )
        if report.status == EMPTY_GALLERY:
            raise NoMatch("No registered faces for this location", reason=EMPTY_GALLERY)
        if report.status != MATCH:
            raise NoMatch("Face not recognized", best_similarity=report.best_similarity)

        emp = self.registry.get(report.match.entry.employee_id)
        if not emp:
            raise NotFoundError("Matched employee no longer exists")
        return emp

    def _transition(self, req: CheckInRequest, attempt: _Attempt) -> CheckInResult:
        emp = attempt.employee
        now = self.clock()
        self.attendance.lock_employee(emp.id)
        current = self.attendance.find_open(emp.id)

        if current is None:
            if req.direction == "out":
                raise NotCheckedIn("Not checked in")
            self._require_geofence(emp, req, attempt)
            entry = self.attendance.open_interval(emp.id, now)
            action, reason, msg = "IN", "CHECKED_IN", f"{emp.full_name} checked in"
        else:
            attempt.anomaly = current.anomaly
            if req.direction == "in":
                raise AlreadyCheckedIn("Already checked in")
            brk = emp.default_break_minutes or self.default_break_minutes
            entry = self.attendance.close_interval(current.entry, now, brk)
            action, reason, msg = "OUT", "CHECKED_OUT", f"{emp.full_name} checked out"

        log = self._log_row(req, attempt, result="MARKED", reason_code=reason, action=action)
        log.time_entry = entry
        db.session.add(log)
        # interval and audit row land together or not at all
        self.attendance.commit()

        logger.info("Employee %s %s via %s (entry %s)", emp.id, reason, attempt.method, entry.id)
        return CheckInResult(
            True, reason, msg,
            action=action,
            employee=emp.to_dict(),
            time_entry=entry.to_dict(),
            similarity=attempt.similarity,
            distance_m=attempt.distance_m,
            anomaly=attempt.anomaly,
        )

    def _require_geofence(self, emp: Employee, req: CheckInRequest, attempt: _Attempt):
        center, radius = self.registry.geofence_for(emp.location_id or self.location_id)
        result = GeofenceService.check(center, radius, self._timed_position(req.position))
        attempt.distance_m = result.distance_m
        if result.allowed:
            return
        if result.error:
            raise PositionUnavailable(result.error)
        raise GeofenceDenied(
            f"You are {format_distance(result.distance_m)} away from the location (allowed {radius} m)",
            distance_m=result.distance_m,
        )

    def _timed_position(self, source: Optional[PositionSource]) -> PositionSource:
        def _source():
            if source is None:
                raise PositionUnavailable("Geolocation is not supported by this device", reason="unsupported")
            try:
                return call_with_timeout(source, self.position_timeout)
            except FutureTimeout:
                raise PositionUnavailable("Timed out while acquiring location", reason="timeout")
        return _source

    # ---------- results & audit ----------

    def _failure(self, e: CheckInError, attempt: _Attempt) -> CheckInResult:
        return CheckInResult(
            False, e.code, e.message,
            employee=attempt.employee_info,
            similarity=attempt.similarity,
            distance_m=attempt.distance_m,
            anomaly=attempt.anomaly,
            rearm=not isinstance(e, IdentityInactive),
            extra={k: v for k, v in e.detail.items() if k not in ("distance_m",)},
        )

    def _log_row(self, req: CheckInRequest, attempt: _Attempt, result: str, reason_code: str,
                 action: Optional[str] = None, error: Optional[str] = None) -> CheckInLog:
        return CheckInLog(
            terminal_id=self.terminal_id,
            employee_id=attempt.employee_id,
            method=attempt.method,
            action=action,
            req_lat=req.lat,
            req_lng=req.lng,
            distance_m=attempt.distance_m,
            face_similarity=attempt.similarity,
            result=result,
            reason_code=reason_code,
            error_message=error,
            anomaly=attempt.anomaly,
            created_at=self.clock(),
        )

    def _audit_rejection(self, req: CheckInRequest, attempt: _Attempt, result: CheckInResult):
        try:
            db.session.add(self._log_row(req, attempt, result="REJECTED",
                                         reason_code=result.reason_code, error=result.detail))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Could not write check-in audit row (%s)", result.reason_code)


# ---------- per-terminal instances ----------

_REGISTRY_LOCK = threading.Lock()


def get_extractor(app) -> EmbeddingExtractor:
    """The app-wide extractor; built from config on first use."""
    with _REGISTRY_LOCK:
        extractor = app.extensions.get("timeclock.extractor")
        if extractor is None:
            from timeclock_api.services.face_engine import DeepFaceExtractor
            extractor = DeepFaceExtractor(
                model_name=app.config["FACE_MODEL_NAME"],
                version=app.config["FACE_MODEL_VERSION"],
                dimensions=app.config["FACE_EMBEDDING_DIM"],
            )
            app.extensions["timeclock.extractor"] = extractor
        return extractor


def orchestrator_for(app, terminal) -> CheckInOrchestrator:
    """One orchestrator (and so one busy guard) per terminal, kept for the app's lifetime."""
    extractor = get_extractor(app)
    with _REGISTRY_LOCK:
        pool = app.extensions.setdefault("timeclock.orchestrators", {})
        orch = pool.get(terminal.id)
        if orch is None or orch.location_id != terminal.location_id:
            orch = CheckInOrchestrator(
                extractor,
                location_id=terminal.location_id,
                terminal_id=terminal.id,
                threshold=app.config["FACE_MATCH_THRESHOLD"],
                default_break_minutes=app.config["DEFAULT_BREAK_MINUTES"],
                extraction_timeout=app.config["EXTRACTION_TIMEOUT_S"],
                position_timeout=app.config["POSITION_TIMEOUT_S"],
            )
            pool[terminal.id] = orch
        return orch


def warm_up_extractor(app) -> threading.Thread:
    """
    Load the face model in the background so the first scans do not spend
    their extraction budget on it. Failures are logged; the first scan will
    try again.
    """
    extractor = get_extractor(app)

    def _run():
        try:
            extractor.warm_up()
            logger.info("Face extractor %s ready", extractor.version)
        except CheckInError as e:
            logger.error("Face extractor warm-up failed: %s", e.message)

    t = threading.Thread(target=_run, name="timeclock-warmup", daemon=True)
    t.start()
    return t
