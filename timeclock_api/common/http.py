# timeclock_api/common/http.py
from typing import Any, Optional

from flask import jsonify


def ok(data: Any = None, status: int = 200, **meta):
    """``{"success": true, "data": ..., "meta": {...}}``; meta only when given."""
    body = {"success": True, "data": data}
    if meta:
        body["meta"] = meta
    return jsonify(body), status


def fail(message: str = "Bad Request", status: int = 400, code: Optional[str] = None,
         detail: Any = None, errors: Any = None):
    """
    ``{"success": false, "error": {"message", "code"?, "detail"?, "errors"?}}``.

    Kiosk clients switch on ``error.code`` (the check-in reason code) and
    read ``error.detail.rearm`` to decide whether to resume scanning.
    """
    error = {"message": message}
    for key, value in (("code", code), ("detail", detail), ("errors", errors)):
        if value:
            error[key] = value
    return jsonify({"success": False, "error": error}), status
