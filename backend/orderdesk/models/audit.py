from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z


AUDIT_ACTIONS = (
    "create",
    "update",
    "delete",
    "approve",
    "reject",
    "withdraw",
    "recover",
    "permanent_delete",
)


class AuditLogImmutableError(RuntimeError):
    """Raised when code tries to modify or remove an audit row."""


class AuditLog(db.Model):
    """
    Append-only record of every mutation.

    WHY: Every change to orders, costs, pending changes and column metadata is
    attributable to an actor. Details are redacted before they are stored.

    IMMUTABLE: mapper events below refuse UPDATE and DELETE through the ORM.
    Rows are written in the same transaction as the mutation they describe.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_target", "target_collection", "target_id"),
        db.Index("ix_audit_logs_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Null for system jobs (expiry sweep, purge)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    actor_name = db.Column(db.String(128), nullable=False)

    action = db.Column(db.String(32), nullable=False, index=True)
    target_collection = db.Column(db.String(32), nullable=False)
    target_id = db.Column(db.String(64), nullable=False)
    details = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "actor_name": self.actor_name,
            "action": self.action,
            "target_collection": self.target_collection,
            "target_id": self.target_id,
            "details": dict(self.details or {}),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(AuditLog, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise AuditLogImmutableError(f"AuditLog {target.id} is append-only")


@event.listens_for(AuditLog, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"AuditLog {target.id} is append-only")
