# Overview: Request decorators for API routes (authentication and role checks).

from functools import wraps
from flask import request, jsonify, g

from .services import session_service
from .services.balance_service import Actor


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def current_actor() -> Actor:
    """The Actor every mutation made by this request is attributed to."""
    return g.actor


def idempotency_key() -> str | None:
    key = request.headers.get("Idempotency-Key")
    if key is None:
        return None
    key = key.strip()
    return key[:128] or None


def require_auth(f):
    """
    Require a valid bearer token.

    Sets:
    - g.current_user: the authenticated User
    - g.actor: Actor(user id, display name, client ip) for balance mutations

    Returns 401 if the header is missing, the token is unknown, revoked or
    expired, or the user has been deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        user = session_service.validate_session(token)

        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        g.actor = Actor(user_id=user.id, name=user.name, ip=request.remote_addr)

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of the given roles. Must be stacked under @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.current_user.role_name not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
