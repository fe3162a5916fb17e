"""
Login Throttling Service

WHY: Prevent brute-force password attacks by limiting failed login attempts.
After too many failures inside the trailing window, the identity is locked
for a full window.

SECURITY FEATURES:
- Tracks failed attempts per identity (optionally per identity + origin)
- Lockout after RATE_LIMIT_MAX_ATTEMPTS failures within RATE_LIMIT_WINDOW_MINUTES
- Lockout lasts one window from the moment it is detected
- Signals a human-verification challenge from LOGIN_CHALLENGE_THRESHOLD
  failures on, before the hard lockout
- Clears history on successful login
- Every failure is also written to security_events for monitoring
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..config import current_policy
from ..errors import RateLimited
from ..extensions import db
from ..models import LoginAttempt, LoginLockout, SecurityEvent
from ..time_utils import utcnow
from .permission_service import log_security_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    remaining_minutes: int
    failed_attempts: int
    challenge_required: bool

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "remaining_minutes": self.remaining_minutes,
            "failed_attempts": self.failed_attempts,
            "challenge_required": self.challenge_required,
        }


def _key(identity: str, origin: str | None) -> tuple[str, str]:
    return (identity or "").strip().lower(), origin or ""


def _minutes_until(moment: datetime, now: datetime) -> int:
    return max(1, math.ceil((moment - now).total_seconds() / 60))


def _recent_attempts(identity: str, origin: str, now: datetime, window: timedelta) -> int:
    # Strictly inside the window: an attempt exactly one window old has aged out
    return db.session.query(LoginAttempt).filter(
        LoginAttempt.identity == identity,
        LoginAttempt.origin == origin,
        LoginAttempt.attempted_at > now - window,
    ).count()


def _active_lockout(identity: str, origin: str, now: datetime) -> LoginLockout | None:
    lockout = db.session.query(LoginLockout).filter_by(identity=identity, origin=origin).first()
    if lockout is not None and now < lockout.locked_until:
        return lockout
    return None


def check_rate_limit(identity: str, origin: str | None = None) -> RateLimitStatus:
    """
    Decide whether a login attempt for identity may proceed.

    - Active lockout: not allowed, remaining = whole minutes left (rounded up)
    - Attempts in the window >= max: start a lockout of one window, not allowed
    - Otherwise allowed; challenge_required once attempts reach the threshold
    """
    identity, origin = _key(identity, origin)
    policy = current_policy()
    now = utcnow()

    attempts = _recent_attempts(identity, origin, now, policy.rate_limit_window)
    challenge = attempts >= policy.login_challenge_threshold

    lockout = _active_lockout(identity, origin, now)
    if lockout is not None:
        return RateLimitStatus(False, _minutes_until(lockout.locked_until, now), attempts, challenge)

    if attempts >= policy.rate_limit_max_attempts:
        locked_until = now + policy.rate_limit_window
        row = db.session.query(LoginLockout).filter_by(identity=identity, origin=origin).first()
        if row is None:
            db.session.add(LoginLockout(identity=identity, origin=origin, locked_until=locked_until))
        else:
            row.locked_until = locked_until
        db.session.commit()
        logger.warning("Login locked for %s after %d failed attempts", identity, attempts)
        return RateLimitStatus(False, _minutes_until(locked_until, now), attempts, True)

    return RateLimitStatus(True, 0, attempts, challenge)


def require_not_rate_limited(identity: str, origin: str | None = None) -> RateLimitStatus:
    """Raise RateLimited when check_rate_limit refuses; return the status otherwise."""
    status = check_rate_limit(identity, origin)
    if not status.allowed:
        raise RateLimited(status.remaining_minutes)
    return status


def record_failed_attempt(
    identity: str,
    origin: str | None = None,
    *,
    user_id: int | None = None,
    reason: str = "Invalid credentials",
    user_agent: str | None = None,
) -> int:
    """
    Record a failed login attempt.

    Prunes attempts that have left the window, then appends this one.
    Returns the number of attempts now inside the window.
    """
    identity, origin = _key(identity, origin)
    policy = current_policy()
    now = utcnow()

    db.session.query(LoginAttempt).filter(
        LoginAttempt.identity == identity,
        LoginAttempt.origin == origin,
        LoginAttempt.attempted_at <= now - policy.rate_limit_window,
    ).delete(synchronize_session=False)

    db.session.add(LoginAttempt(identity=identity, origin=origin, attempted_at=now))
    log_security_event(
        user_id=user_id,
        event_type="LOGIN_FAILED",
        success=False,
        resource="/api/auth/login",
        action=identity,
        reason=reason,
        ip_address=origin or None,
        user_agent=user_agent,
        commit=False,
    )
    db.session.commit()

    return _recent_attempts(identity, origin, now, policy.rate_limit_window)


def clear(identity: str, origin: str | None = None) -> None:
    """Wipe attempt history and any lockout (successful authentication)."""
    identity, origin = _key(identity, origin)
    db.session.query(LoginAttempt).filter_by(identity=identity, origin=origin).delete(synchronize_session=False)
    db.session.query(LoginLockout).filter_by(identity=identity, origin=origin).delete(synchronize_session=False)
    db.session.commit()


def get_lockout_status(identity: str, origin: str | None = None) -> dict:
    """
    Get detailed lockout status for an identity.

    Read-only: unlike check_rate_limit this never starts a lockout.
    """
    identity, origin = _key(identity, origin)
    policy = current_policy()
    now = utcnow()

    attempts = _recent_attempts(identity, origin, now, policy.rate_limit_window)
    lockout = _active_lockout(identity, origin, now)
    last_failure = db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == "LOGIN_FAILED",
        SecurityEvent.action == identity,
    ).order_by(SecurityEvent.occurred_at.desc()).first()

    return {
        "identity": identity,
        "locked": lockout is not None,
        "failed_attempts": attempts,
        "max_attempts": policy.rate_limit_max_attempts,
        "challenge_required": attempts >= policy.login_challenge_threshold,
        "minutes_until_unlock": _minutes_until(lockout.locked_until, now) if lockout else None,
        "lockout_window_minutes": int(policy.rate_limit_window.total_seconds() / 60),
        "last_failure_reason": last_failure.reason if last_failure else None,
    }


def cleanup_login_attempts() -> int:
    """
    Delete attempt rows outside the window and lockouts that have ended.

    Returns count of attempt rows deleted.
    """
    policy = current_policy()
    now = utcnow()
    deleted = db.session.query(LoginAttempt).filter(
        LoginAttempt.attempted_at <= now - policy.rate_limit_window
    ).delete(synchronize_session=False)
    db.session.query(LoginLockout).filter(
        LoginLockout.locked_until <= now
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
