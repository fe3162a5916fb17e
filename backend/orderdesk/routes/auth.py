# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/orderdesk/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Login throttling with lockout after repeated failed attempts
- Generic failure message (no account enumeration)
- Challenge signal before the hard lockout
- Session management with token-based auth and remember-me
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import EngineError
from ..permissions import Roles, REVIEWER_ROLES
from ..services import auth_service, login_throttle_service, pending_service, permission_service
from ..decorators import bearer_token, error_response, require_auth, require_role


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _login_origin():
    """Throttle key origin; None unless throttling is per origin."""
    return request.remote_addr if current_app.config.get("RATE_LIMIT_PER_ORIGIN") else None


@auth_bp.post("/register")
def register_route():
    """
    Self-registration is disabled.

    Users are created by operators via the CLI: flask users create
    """
    return jsonify({
        "error": "Self-registration is disabled. Contact an administrator to create an account."
    }), 403


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Request: {"email": "...", "password": "...", "remember_me": false}

    Error responses:
        400: Missing fields
        401: Invalid email or password (details.challenge_required)
        429: Rate limited (details.remaining_minutes)
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email") or data.get("identity")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        result = auth_service.login(
            email,
            password,
            remember_me=bool(data.get("remember_me", False)),
            origin=_login_origin(),
            user_agent=request.headers.get("User-Agent"),
        )

        payload = result.to_dict()
        payload["message"] = "Login successful"
        return jsonify(payload), 200

    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/rate-limit")
def rate_limit_route():
    """
    Login form pre-check: is a challenge needed, is the identity locked?

    Query: ?email=...
    """
    email = request.args.get("email", "")
    if not email:
        return jsonify({"error": "email required"}), 400
    try:
        status = login_throttle_service.check_rate_limit(email, _login_origin())
        return jsonify(status.to_dict()), 200
    except Exception:
        current_app.logger.exception("Failed to check login rate limit")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/lockout-status/<identity>")
@require_auth
@require_role(Roles.SUPER_ADMIN)
def lockout_status_route(identity: str):
    """Detailed lockout status for an identity (operators only)."""
    return jsonify(login_throttle_service.get_lockout_status(identity))


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """
    Revoke session token (logout).

    Expects Authorization header: Bearer <token>
    """
    try:
        auth_service.logout(g.token, g.current_user)
        return jsonify({"message": "Logout successful"}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    """
    Current user, the columns the role may see/edit/propose, and the open
    pending count for the notification badge.
    """
    try:
        user = g.current_user
        table = permission_service.load_permission_table()
        return jsonify({
            "user": user.to_dict(),
            "session": g.session_context.session.to_dict(),
            "columns": {
                "visible": table.visible_columns(user.role),
                "editable": table.editable_columns(user.role),
                "approval": table.approval_columns(user.role),
            },
            "is_reviewer": user.role in REVIEWER_ROLES,
            "pending_count": pending_service.unread_count(user),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load current user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/validate")
def validate_route():
    """Check a token without touching anything else."""
    if bearer_token() is None:
        return jsonify({"error": "Authorization header required"}), 401
    return me_route()


@auth_bp.post("/password-reset")
def password_reset_route():
    """
    Request a password reset.

    Always answers 202 so the response does not reveal whether the account exists.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        if not email:
            return jsonify({"error": "email required"}), 400
        auth_service.request_password_reset(email)
        return jsonify({"message": "If the account exists, a reset email has been sent"}), 202
    except Exception:
        current_app.logger.exception("Failed to request password reset")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/verify-email")
@require_auth
def verify_email_route():
    """Send (or resend) the verification email for the signed-in user."""
    try:
        if not auth_service.request_verification_email(g.current_user):
            return jsonify({"message": "Email already verified"}), 200
        return jsonify({"message": "Verification email sent"}), 202
    except Exception:
        current_app.logger.exception("Failed to request verification email")
        return jsonify({"error": "Internal server error"}), 500
