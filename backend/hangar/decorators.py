# Overview: Request and result decorators for API routes and administrative services.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .services import permission_service
from .validation import LedgerError


ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Resolve the acting user established by the upstream auth layer.

    Sets g.current_user. Returns 401 if the header is missing, malformed or
    names an unknown/inactive user. Role checks stay in the service layer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER, "").strip()
        if not raw.isdigit():
            return jsonify({"error": "Authentication required"}), 401

        user = permission_service.get_active_user(int(raw))
        if user is None:
            return jsonify({"error": "Invalid or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def structured_result(f):
    """
    Turn a service operation into a {success, error?} result.

    WHY: Manual and administrative operations are run by a human operator who
    needs an actionable message, not a stack trace. LedgerError subclasses are
    rolled back and reported; anything else is a bug and propagates.

    The wrapped function returns a dict of extra fields (or None).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            payload = f(*args, **kwargs) or {}
        except LedgerError as exc:
            db.session.rollback()
            current_app.logger.warning("%s failed: %s", f.__name__, exc)
            return {
                "success": False,
                "error": str(exc),
                "error_type": exc.__class__.__name__,
                "status_code": exc.status_code,
            }
        return {"success": True, **payload}

    return decorated_function


def json_result(result: dict, success_status: int = 200):
    """Render a structured_result dict as a Flask response."""
    if result.get("success"):
        return jsonify(result), success_status
    body = {k: v for k, v in result.items() if k != "status_code"}
    return jsonify(body), result.get("status_code", 400)
