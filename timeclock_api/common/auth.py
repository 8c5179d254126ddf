# timeclock_api/common/auth.py
from __future__ import annotations

from functools import wraps

from flask import g
from flask_jwt_extended import jwt_required, get_jwt, get_jwt_identity

from timeclock_api.common.http import fail
from timeclock_api.extensions import db
from timeclock_api.models.master import Terminal


def terminal_claims(terminal: Terminal) -> dict:
    """Additional JWT claims embedded at terminal login."""
    return {"kind": "terminal", "location_id": terminal.location_id}


def requires_terminal(fn):
    """
    Require a JWT issued to an active kiosk terminal.
    The resolved Terminal row is exposed as ``g.terminal``.
    """
    @wraps(fn)
    @jwt_required()
    def wrapper(*args, **kwargs):
        claims = get_jwt() or {}
        if claims.get("kind") != "terminal":
            return fail("Terminal token required", status=403, code="FORBIDDEN")

        try:
            terminal_id = int(get_jwt_identity())
        except (TypeError, ValueError):
            return fail("Invalid terminal identity", status=401, code="UNAUTHORIZED")

        terminal = db.session.get(Terminal, terminal_id)
        if not terminal or not terminal.is_active:
            return fail("Terminal not found or inactive", status=401, code="UNAUTHORIZED")

        g.terminal = terminal
        return fn(*args, **kwargs)
    return wrapper
