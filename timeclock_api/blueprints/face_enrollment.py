# timeclock_api/blueprints/face_enrollment.py
from concurrent.futures import TimeoutError as FutureTimeout

from flask import Blueprint, request, g, current_app

from timeclock_api.common.auth import requires_terminal
from timeclock_api.common.http import ok, fail
from timeclock_api.extensions import db
from timeclock_api.models.employee import Employee
from timeclock_api.models.face_profile import FaceProfile
from timeclock_api.services.checkin import get_extractor
from timeclock_api.services.enrollment import EnrollmentStore, register_face
from timeclock_api.services.errors import CheckInError, ExtractionError, QualityRejected
from timeclock_api.services.face_matcher import SimilarityMatcher
from timeclock_api.services.face_quality import FaceQualityGate
from timeclock_api.services.frames import decode_frame, encode_reference_image
from timeclock_api.services.timeouts import call_with_timeout

bp = Blueprint("face_enrollment", __name__, url_prefix="/api/v1/terminal/faces")


def _image_from_request():
    if "image" in request.files:
        f = request.files["image"]
        if not f.filename:
            raise QualityRejected("Empty filename")
        return decode_frame(f)
    body = request.get_json(silent=True) or {}
    if body.get("image"):
        return decode_frame(body["image"])
    raise QualityRejected("No image provided")


def _form_value(key):
    if request.form:
        return request.form.get(key)
    return (request.get_json(silent=True) or {}).get(key)


@bp.post("/enroll")
@requires_terminal
def enroll_face():
    emp_id = _form_value("employee_id")
    if not emp_id:
        return fail("employee_id is required")
    try:
        emp_id = int(emp_id)
    except (TypeError, ValueError):
        return fail("employee_id must be an integer")

    emp = db.session.get(Employee, emp_id)
    if not emp or not emp.is_active:
        return fail("Employee not found or inactive", status=404, code="NOT_FOUND")

    app = current_app._get_current_object()
    extractor = get_extractor(app)
    try:
        frame = _image_from_request()
        existed = FaceProfile.query.filter_by(employee_id=emp_id).first() is not None
        profile = register_face(emp_id, frame, extractor,
                                reference_image=encode_reference_image(frame),
                                extraction_timeout=app.config["EXTRACTION_TIMEOUT_S"])
    except CheckInError as e:
        return fail(e.message, status=422, code=e.code, detail=e.detail or None)

    return ok({"profile": profile.to_dict(), "replaced": existed}, status=200 if existed else 201)


@bp.get("/profiles")
@requires_terminal
def list_profiles():
    """Enrollment overview of the terminal's location."""
    rows = (
        db.session.query(Employee, FaceProfile)
        .outerjoin(FaceProfile, FaceProfile.employee_id == Employee.id)
        .filter(Employee.is_active.is_(True), Employee.location_id == g.terminal.location_id)
        .order_by(Employee.id)
        .all()
    )
    current_version = current_app.config["FACE_MODEL_VERSION"]
    data = []
    for emp, profile in rows:
        item = emp.to_dict()
        item["face_profile"] = profile.to_dict() if profile else None
        item["needs_reenrollment"] = bool(profile and profile.embedding_version != current_version)
        data.append(item)
    return ok(data, total=len(data), enrolled=sum(1 for d in data if d["face_profile"]))


@bp.post("/verify")
@requires_terminal
def verify_match():
    """Administrative re-verification with the stricter threshold; no attendance change."""
    app = current_app._get_current_object()
    extractor = get_extractor(app)
    threshold = app.config["FACE_VERIFY_THRESHOLD"]
    try:
        frame = _image_from_request()
        if not FaceQualityGate().has_usable_face(frame):
            raise QualityRejected("No usable face in the picture")
        try:
            probe = call_with_timeout(extractor.extract, app.config["EXTRACTION_TIMEOUT_S"], frame)
        except FutureTimeout:
            raise ExtractionError("Face recognition timed out")
        gallery = EnrollmentStore().get_gallery(g.terminal.location_id)
        report = SimilarityMatcher(extractor.dimensions, extractor.version).match(probe, gallery, threshold)
    except CheckInError as e:
        return fail(e.message, status=422, code=e.code, detail=e.detail or None)

    if report.match:
        entry = report.match.entry
        return ok({
            "match_found": True,
            "employee": {"id": entry.employee_id, "name": entry.name, "employee_number": entry.employee_number},
            "similarity": report.match.similarity,
            "threshold": threshold,
        })
    return ok({
        "match_found": False,
        "status": report.status,
        "best_similarity": report.best_similarity,
        "threshold": threshold,
    })
