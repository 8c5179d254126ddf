# timeclock_api/blueprints/terminal_auth.py
from flask import Blueprint, request, g
from flask_jwt_extended import create_access_token

from timeclock_api.common.auth import requires_terminal, terminal_claims
from timeclock_api.common.http import ok, fail
from timeclock_api.models.master import Terminal

bp = Blueprint("terminal_auth", __name__, url_prefix="/api/v1/terminal")


@bp.post("/login")
def login():
    body = request.get_json(silent=True) or {}
    username = (body.get("username") or "").strip()
    password = body.get("password") or ""
    if not username or not password:
        return fail("username and password are required")

    term = Terminal.query.filter_by(username=username).first()
    if not term or not term.check_password(password):
        return fail("Invalid credentials", status=401, code="UNAUTHORIZED")
    if not term.is_active:
        return fail("Terminal is inactive", status=403, code="FORBIDDEN")

    token = create_access_token(identity=str(term.id), additional_claims=terminal_claims(term))
    return ok({
        "access_token": token,
        "terminal": {"id": term.id, "name": term.name},
        "location": term.location.to_dict() if term.location else None,
    })


@bp.get("/me")
@requires_terminal
def me():
    term = g.terminal
    return ok({
        "terminal": {"id": term.id, "name": term.name},
        "location": term.location.to_dict() if term.location else None,
    })
