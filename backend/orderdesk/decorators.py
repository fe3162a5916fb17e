# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import EngineError, Forbidden
from .services import session_service, permission_service


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def error_response(exc: EngineError):
    """JSON body and status for a domain error."""
    return jsonify(exc.to_dict()), exc.http_status


def require_auth(f):
    """
    Require a valid session token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object
    - g.token: The bearer token (needed for logout)

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, revoked, idle or expired token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        g.token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the authenticated user to hold one of roles.

    Denials are logged as PERMISSION_DENIED security events.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_role(g.current_user, roles, request.path, request.method)
            except Forbidden as e:
                return error_response(e)

            return f(*args, **kwargs)

        return decorated_function

    return decorator
