# Overview: Request decorators that resolve the caller into an AuthContext.

from functools import wraps

from flask import g, jsonify, request

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets g.auth (AuthContext) before the view runs; the view passes it to
    the service layer explicitly. Returns 401 for a missing, unknown,
    expired or revoked token.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.auth = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require one of the given roles (admins always pass). Use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            ctx = getattr(g, "auth", None)
            if ctx is None:
                return jsonify({"error": "Authentication required"}), 401
            if not (ctx.is_admin or ctx.role in roles):
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator
