# timeclock_api/blueprints/terminal_checkin.py
from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any, Optional

from flask import Blueprint, request, g, current_app

from timeclock_api.common.auth import requires_terminal
from timeclock_api.common.http import ok, fail
from timeclock_api.models.checkin_log import CheckInLog
from timeclock_api.services.checkin import CheckInRequest, orchestrator_for
from timeclock_api.services.errors import QualityRejected
from timeclock_api.services.frames import decode_frame
from timeclock_api.services.geofence import reported_position

bp = Blueprint("terminal_checkin", __name__, url_prefix="/api/v1/terminal")

_STATUS = {
    "BUSY": 429,
    "INVALID_REQUEST": 400,
    "IDENTITY_INACTIVE": 403,
    "GEOFENCE_DENIED": 403,
    "POSITION_UNAVAILABLE": 403,
    "PERSISTENCE_ERROR": 503,
    "INTERNAL_ERROR": 500,
    "ALREADY_CHECKED_IN": 409,
    "NOT_CHECKED_IN": 409,
}


def _to_float(v: Any) -> Optional[float]:
    if v is None or v == "":
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    # "nan" and "inf" parse as floats but are no position
    return f if math.isfinite(f) else None


def _text(v: Any) -> Optional[str]:
    return None if v is None else str(v)


def _read_request():
    """Accepts multipart (image file + form fields) or JSON (token or data-URL image)."""
    if request.files or request.form:
        src = request.form
        image = request.files.get("image")
    else:
        src = request.get_json(silent=True)
        if not isinstance(src, dict):
            src = {}
        image = src.get("image")

    lat, lng = _to_float(src.get("lat")), _to_float(src.get("lng"))
    frame = decode_frame(image) if image else None
    return CheckInRequest(
        token=src.get("token"),
        frame=frame,
        position=reported_position(lat, lng, _text(src.get("position_error"))),
        direction=(_text(src.get("direction")) or "auto").lower(),
        lat=lat,
        lng=lng,
    )


@bp.post("/check")
@requires_terminal
def check():
    """
    One scan at the kiosk: identify (token or face) and toggle IN/OUT.

    The kiosk keeps its camera/scanner paused until this returns and
    switches it back on when ``rearm`` is true.
    """
    try:
        req = _read_request()
    except QualityRejected as e:
        return fail(e.message, status=422, code=e.code, detail={"rearm": True})

    res = orchestrator_for(current_app._get_current_object(), g.terminal).process(req)
    if res.success:
        return ok(res.to_dict())
    return fail(res.detail, status=_STATUS.get(res.reason_code, 422), code=res.reason_code, detail=res.to_dict())


@bp.get("/logs")
@requires_terminal
def list_logs():
    q = CheckInLog.query.filter(CheckInLog.terminal_id == g.terminal.id)

    emp_id = request.args.get("employee_id", type=int)
    if emp_id:
        q = q.filter(CheckInLog.employee_id == emp_id)

    date_str = request.args.get("date")
    if date_str:
        try:
            d = datetime.strptime(date_str, "%Y-%m-%d")
        except ValueError:
            return fail("date must be YYYY-MM-DD")
        q = q.filter(CheckInLog.created_at >= d, CheckInLog.created_at < d + timedelta(days=1))

    result = request.args.get("result")  # MARKED, REJECTED
    if result:
        q = q.filter(CheckInLog.result == result.upper())

    page = max(request.args.get("page", 1, type=int), 1)
    limit = min(max(request.args.get("limit", 50, type=int), 1), 200)

    total = q.count()
    rows = q.order_by(CheckInLog.created_at.desc(), CheckInLog.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return ok([r.to_dict() for r in rows], page=page, limit=limit, total=total)
