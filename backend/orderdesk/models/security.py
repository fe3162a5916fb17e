from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event log.

    WHY: Track permission denials, login outcomes, lockouts and account
    requests. Critical for detecting unauthorized access attempts.

    IMMUTABLE: Never update. Only the retention job deletes old rows.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)  # Nullable for anonymous

    # PERMISSION_DENIED, LOGIN_FAILED, LOGIN_SUCCESS, LOGIN_LOCKED, LOGOUT, ...
    event_type = db.Column(db.String(64), nullable=False, index=True)
    resource = db.Column(db.String(128), nullable=True)  # e.g., "costs", "/api/auth/login"
    action = db.Column(db.String(255), nullable=True)    # e.g., "approve", login identity

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    user = db.relationship("User", backref=db.backref("security_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class LoginAttempt(db.Model):
    """
    One failed authentication attempt inside the rate window.

    Rows outside the trailing window are pruned on every new attempt;
    a successful login deletes all rows for the identity.
    """
    __tablename__ = "login_attempts"
    __table_args__ = (
        db.Index("ix_login_attempts_identity_origin", "identity", "origin", "attempted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    identity = db.Column(db.String(255), nullable=False)
    # Empty string when throttling per identity only
    origin = db.Column(db.String(64), nullable=False, default="")
    attempted_at = db.Column(db.DateTime(timezone=True), nullable=False)


class LoginLockout(db.Model):
    """Active lockout for an identity (and optional origin)."""
    __tablename__ = "login_lockouts"
    __table_args__ = (
        db.UniqueConstraint("identity", "origin", name="uq_login_lockouts_identity_origin"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    identity = db.Column(db.String(255), nullable=False)
    origin = db.Column(db.String(64), nullable=False, default="")
    locked_until = db.Column(db.DateTime(timezone=True), nullable=False)
