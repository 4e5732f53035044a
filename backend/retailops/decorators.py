# Overview: Request-context decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .auth_context import AuthContext, ROLES, ROLE_CASHIER


def _header_store_id():
    raw = (request.headers.get("X-Store-Id") or "").strip()
    if not raw:
        return None
    if not raw.isdigit():
        raise ValueError(raw)
    return int(raw)


def require_context(f):
    """
    Establish the request's AuthContext.

    Sets g.auth_context from:
    - X-User-Name (required)
    - X-User-Role (one of admin | manager | outlet | cashier; default cashier)
    - X-Store-Id (optional integer)

    Returns 401 when no user name is sent, 400 on a malformed role or store id.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_name = (request.headers.get("X-User-Name") or "").strip()
        if not user_name:
            return jsonify({"error": "Authentication required"}), 401

        role = (request.headers.get("X-User-Role") or ROLE_CASHIER).strip().lower()
        if role not in ROLES:
            return jsonify({"error": f"Unknown role {role}", "details": {"allowed": list(ROLES)}}), 400

        try:
            store_id = _header_store_id()
        except ValueError:
            return jsonify({"error": "X-Store-Id must be an integer"}), 400

        g.auth_context = AuthContext(role=role, store_id=store_id, user_name=user_name)
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require one of the given roles.

    MUST be used AFTER @require_context.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            ctx = getattr(g, "auth_context", None)
            if ctx is None:
                return jsonify({"error": "Authentication required"}), 401
            if ctx.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "details": {"role": ctx.role, "allowed": list(roles)},
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator
