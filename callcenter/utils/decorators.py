import hmac
from functools import wraps

from flask import abort, current_app, jsonify, request
from flask_login import current_user


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)
        if getattr(current_user, "role", None) != "admin":
            abort(403)
        return view(*args, **kwargs)
    return wrapped


def bearer_token():
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def service_token_required(view):
    """Guard for server-to-server triggers.

    Open when PROCESS_CALL_TOKEN is unset (local development).
    """
    @wraps(view)
    def wrapped(*args, **kwargs):
        expected = current_app.config.get("PROCESS_CALL_TOKEN")
        if expected:
            given = bearer_token() or ""
            if not hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8")):
                return jsonify({"error": "unauthorized"}), 401
        return view(*args, **kwargs)
    return wrapped


def get_scoped_or_404(model, obj_id):
    """Fetch a row belonging to the current user's account, or 404."""
    obj = model.query.get_or_404(obj_id)
    if obj.account_id != current_user.account_id:
        abort(404)
    return obj
