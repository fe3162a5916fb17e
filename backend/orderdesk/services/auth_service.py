# Overview: Service-layer operations for auth; credential verification and the login flow.

"""
Authentication Service

WHY: Every action must be attributable. The engine authenticates through a
CredentialVerifier so the identity provider can be swapped; the bundled
LocalCredentialVerifier checks bcrypt hashes in the users table.

LOGIN FLOW:
1. Login guard: refuse while the identity is rate limited (RateLimited)
2. Verifier: authenticate identity + secret
3. Failure: record the attempt, answer with one generic message; the
   precise reason goes to the log and the security event trail only
4. Success: clear attempt history, stamp last_login_at, open a session

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12 by default)
- Minimum 8 characters, mixed case, digit and special character
- Unknown identity and wrong password are indistinguishable to the caller
- Password reset requests never reveal whether the account exists
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

import bcrypt
from flask import current_app, has_app_context

from ..config import current_policy
from ..errors import AuthenticationFailed, RateLimited, ValidationError
from ..extensions import db
from ..models import SessionToken, User
from ..permissions import ALL_ROLES
from ..time_utils import utcnow
from . import login_throttle_service, session_service
from .permission_service import log_security_event

logger = logging.getLogger(__name__)

LOGIN_RESOURCE = "/api/auth/login"


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    code = "weak_password"


@dataclass(frozen=True)
class Principal:
    """Authenticated identity as reported by a credential verifier."""
    user_id: int
    email: str
    display_name: str
    role: str
    email_verified: bool = False


class CredentialVerifier(Protocol):
    """
    Identity provider used by login().

    authenticate raises AuthenticationFailed with a precise `reason`; the
    login flow turns it into a generic message. Principals must map to a
    row in the users table (user_id) so sessions and audit rows can refer
    to them.
    """

    def authenticate(self, identity: str, secret: str) -> Principal: ...

    def send_password_reset(self, email: str) -> None: ...

    def send_verification_email(self, principal: Principal) -> None: ...


@dataclass
class LoginResult:
    user: User
    session: SessionToken
    token: str

    def to_dict(self) -> dict:
        return {
            "user": self.user.to_dict(),
            "token": self.token,
            "session": self.session.to_dict(),
        }


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def _bcrypt_rounds() -> int:
    if has_app_context():
        return current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    return 12


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=_bcrypt_rounds())
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class LocalCredentialVerifier:
    """Verifies credentials against the users table."""

    def init_app(self, app) -> None:
        app.extensions["credential_verifier"] = self

    def authenticate(self, identity: str, secret: str) -> Principal:
        user = db.session.query(User).filter_by(email=normalize_email(identity)).first()
        if user is None:
            raise AuthenticationFailed("unknown_identity")
        if not verify_password(secret or "", user.password_hash):
            raise AuthenticationFailed("wrong_password")
        if not user.is_active:
            raise AuthenticationFailed("account_disabled")
        return Principal(
            user_id=user.id,
            email=user.email,
            display_name=user.display_name,
            role=user.role,
            email_verified=user.email_verified,
        )

    def send_password_reset(self, email: str) -> None:
        # No mail transport here; the request is recorded for operators
        user = db.session.query(User).filter_by(email=normalize_email(email)).first()
        log_security_event(
            user_id=user.id if user else None,
            event_type="PASSWORD_RESET_REQUESTED",
            success=user is not None,
            resource="/api/auth/password-reset",
            action=normalize_email(email),
        )
        logger.info("Password reset requested for %s (known=%s)", normalize_email(email), user is not None)

    def send_verification_email(self, principal: Principal) -> None:
        log_security_event(
            user_id=principal.user_id,
            event_type="VERIFICATION_EMAIL_REQUESTED",
            success=True,
            resource="/api/auth/verify-email",
            action=principal.email,
        )
        logger.info("Verification email requested for user %s", principal.user_id)


def get_verifier() -> CredentialVerifier:
    return current_app.extensions["credential_verifier"]


def login(
    identity: str,
    secret: str,
    remember_me: bool = False,
    origin: str | None = None,
    user_agent: str | None = None,
) -> LoginResult:
    """
    Authenticate and open a session.

    Raises RateLimited while locked and AuthenticationFailed (generic
    message, challenge_required detail) on bad credentials.
    """
    email = normalize_email(identity)

    status = login_throttle_service.check_rate_limit(email, origin)
    if not status.allowed:
        log_security_event(
            user_id=None,
            event_type="LOGIN_LOCKED",
            success=False,
            resource=LOGIN_RESOURCE,
            action=email,
            reason=f"Locked for {status.remaining_minutes} more minute(s)",
            ip_address=origin,
            user_agent=user_agent,
        )
        raise RateLimited(status.remaining_minutes)

    try:
        principal = get_verifier().authenticate(email, secret)
    except AuthenticationFailed as exc:
        attempts = login_throttle_service.record_failed_attempt(
            email, origin, reason=exc.reason, user_agent=user_agent
        )
        logger.info("Login failed for %s: %s (%d attempt(s) in window)", email, exc.reason, attempts)
        raise AuthenticationFailed(
            exc.reason,
            challenge_required=attempts >= current_policy().login_challenge_threshold,
        ) from None

    login_throttle_service.clear(email, origin)

    user = db.session.get(User, principal.user_id)
    user.last_login_at = utcnow()
    session, token = session_service.create_session(
        user, remember_me, user_agent=user_agent, ip_address=origin, commit=False
    )
    log_security_event(
        user_id=user.id,
        event_type="LOGIN_SUCCESS",
        success=True,
        resource=LOGIN_RESOURCE,
        action=email,
        ip_address=origin,
        user_agent=user_agent,
        commit=False,
    )
    db.session.commit()

    return LoginResult(user=user, session=session, token=token)


def logout(token: str, user: User | None = None) -> bool:
    revoked = session_service.revoke_session(token, reason="User logout")
    if revoked and user is not None:
        log_security_event(user_id=user.id, event_type="LOGOUT", success=True, resource="/api/auth/logout")
    return revoked


def request_password_reset(email: str) -> None:
    get_verifier().send_password_reset(email)


def request_verification_email(user: User) -> bool:
    """
    Ask the verifier to send a verification email.

    Returns False without sending when the address is already verified.
    """
    if user.email_verified:
        return False
    get_verifier().send_verification_email(Principal(
        user_id=user.id,
        email=user.email,
        display_name=user.display_name,
        role=user.role,
        email_verified=user.email_verified,
    ))
    return True


def create_user(email: str, password: str, display_name: str, role: str, *, email_verified: bool = False) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises ValidationError for an unknown role or a taken email and
    PasswordValidationError for a weak password.
    """
    email = normalize_email(email)
    if not email or "@" not in email:
        raise ValidationError("A valid email is required", field="email")
    if role not in ALL_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ALL_ROLES)}", field="role")
    if not display_name or not display_name.strip():
        raise ValidationError("display_name is required", field="display_name")

    if db.session.query(User).filter_by(email=email).first():
        raise ValidationError("Email already exists", field="email")

    user = User(
        email=email,
        display_name=display_name.strip(),
        role=role,
        password_hash=hash_password(password),
        email_verified=email_verified,
        created_at=utcnow(),
    )

    db.session.add(user)
    db.session.commit()
    return user


def deactivate_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise ValidationError("User not found", field="user_id")
    user.is_active = False
    db.session.commit()
    session_service.revoke_all_user_sessions(user_id, reason="User deactivated")
    return user
