# Overview: Service-layer operations for session; lifetime policy plus token persistence.

"""
Session Token Management Service

WHY: Secure session management with automatic timeout and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

LIFETIME POLICY (start / touch / is_valid are pure functions):
- Absolute expiry: created_at + 24 hours, or + 30 days with remember-me
- Idle expiry: 30 minutes without activity, only without remember-me
- Both comparisons are strict: a session exactly at its limit is still valid
- Expiry is final; an expired session is revoked, never renewed

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Revocable on logout or security events
- Tracks client IP and user agent for security monitoring
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from ..config import Policy, current_policy
from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


@dataclass(frozen=True)
class SessionInfo:
    created_at: datetime
    last_activity: datetime
    remember_me: bool
    absolute_expiry: datetime


@dataclass
class SessionContext:
    """Session context returned by validate_session."""
    user: User
    session: SessionToken


def start(remember_me: bool, now: datetime, policy: Policy | None = None) -> SessionInfo:
    policy = policy or current_policy()
    lifetime = policy.session_remember_me_timeout if remember_me else policy.session_absolute_timeout
    return SessionInfo(
        created_at=now,
        last_activity=now,
        remember_me=remember_me,
        absolute_expiry=now + lifetime,
    )


def touch(info: SessionInfo, now: datetime) -> SessionInfo:
    return replace(info, last_activity=now)


def is_valid(info: SessionInfo, now: datetime, policy: Policy | None = None) -> bool:
    policy = policy or current_policy()
    if now > info.absolute_expiry:
        return False
    if not info.remember_me and now - info.last_activity > policy.session_idle_timeout:
        return False
    return True


def invalid_reason(info: SessionInfo, now: datetime, policy: Policy | None = None) -> str | None:
    """Why is_valid would refuse the session, or None."""
    policy = policy or current_policy()
    if now > info.absolute_expiry:
        return "Absolute timeout"
    if not info.remember_me and now - info.last_activity > policy.session_idle_timeout:
        return "Idle timeout"
    return None


def _info_from_row(session: SessionToken) -> SessionInfo:
    return SessionInfo(
        created_at=session.created_at,
        last_activity=session.last_used_at,
        remember_me=session.remember_me,
        absolute_expiry=session.expires_at,
    )


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(
    user: User,
    remember_me: bool = False,
    user_agent: str | None = None,
    ip_address: str | None = None,
    *,
    commit: bool = True,
) -> tuple[SessionToken, str]:
    """
    Create new session token for user.

    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    plaintext_token = generate_token()
    info = start(remember_me, utcnow())

    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=info.created_at,
        last_used_at=info.last_activity,
        expires_at=info.absolute_expiry,
        remember_me=remember_me,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )

    db.session.add(session)
    if commit:
        db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str, now: datetime) -> None:
    session.is_revoked = True
    session.revoked_at = now
    session.revoked_reason = reason


def validate_session(token: str) -> SessionContext | None:
    """
    Validate session token and return SessionContext if valid.

    Returns None if:
    - Token is unknown or revoked
    - Session passed its absolute or idle limit (it is revoked as well)
    - User account is deactivated (session revoked)

    Updates last_used_at on successful validation (activity tracking).
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return None

    reason = invalid_reason(_info_from_row(session), now)
    if reason is not None:
        _revoke(session, reason, now)
        db.session.commit()
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated", now)
        db.session.commit()
        return None

    session.last_used_at = touch(_info_from_row(session), now).last_activity
    db.session.commit()

    return SessionContext(user=user, session=session)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """
    Revoke session token.

    Returns True if session was revoked, False if not found.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return False

    _revoke(session, reason, utcnow())
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    """
    Revoke all active sessions for a user.

    Returns count of sessions revoked.
    """
    now = utcnow()

    sessions = db.session.query(SessionToken).filter_by(
        user_id=user_id,
        is_revoked=False,
    ).all()

    for session in sessions:
        _revoke(session, reason, now)

    db.session.commit()
    return len(sessions)


def cleanup_expired_sessions(*, older_than_days: int = 30) -> int:
    """
    Delete expired and revoked sessions created more than older_than_days ago.

    Returns count of sessions deleted.
    """
    now = utcnow()
    cutoff = now - timedelta(days=older_than_days)

    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True),
        ),
        SessionToken.created_at < cutoff,
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
