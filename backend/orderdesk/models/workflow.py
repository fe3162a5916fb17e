from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
WITHDRAWN = "withdrawn"
EXPIRED = "expired"

PENDING_STATUSES = (PENDING, APPROVED, REJECTED, WITHDRAWN, EXPIRED)
TERMINAL_STATUSES = frozenset({APPROVED, REJECTED, WITHDRAWN, EXPIRED})

# resolution_reason for entries rejected because their target was deleted
REASON_TARGET_DELETED = "target_deleted"


class PendingChange(db.Model):
    """
    A proposed single-field edit awaiting manager review.

    STATE MACHINE:
        pending -> approved | rejected | withdrawn | expired

    All outcomes are terminal. A resolved row is history and is never reused;
    a new proposal always inserts a new row.

    UNIQUENESS: the partial unique index below allows at most one row with
    status 'pending' per (target_collection, target_id, field). Two concurrent
    proposals race on the INSERT and exactly one of them gets IntegrityError.
    """
    __tablename__ = "pending_changes"
    __table_args__ = (
        db.Index(
            "uq_pending_changes_open_field",
            "target_collection",
            "target_id",
            "field",
            unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
        db.Index("ix_pending_changes_status_expires", "status", "expires_at"),
        db.Index("ix_pending_changes_target", "target_collection", "target_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    target_collection = db.Column(db.String(16), nullable=False)  # orders | costs
    target_id = db.Column(db.Integer, nullable=False)
    order_month = db.Column(db.String(7), nullable=True)  # denormalized YYYY-MM

    field = db.Column(db.String(64), nullable=False)
    base_value = db.Column(db.JSON, nullable=True)
    base_version = db.Column(db.Integer, nullable=False)
    new_value = db.Column(db.JSON, nullable=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    requested_by_name = db.Column(db.String(128), nullable=False)
    requested_at = db.Column(db.DateTime(timezone=True), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=PENDING, index=True)
    status_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    resolution_reason = db.Column(db.String(64), nullable=True)

    rejection_count = db.Column(db.Integer, nullable=False, default=0)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    @property
    def is_open(self) -> bool:
        return self.status == PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "target_collection": self.target_collection,
            "target_id": self.target_id,
            "order_month": self.order_month,
            "field": self.field,
            "base_value": self.base_value,
            "base_version": self.base_version,
            "new_value": self.new_value,
            "requested_by_user_id": self.requested_by_user_id,
            "requested_by_name": self.requested_by_name,
            "requested_at": to_utc_z(self.requested_at),
            "status": self.status,
            "status_updated_at": to_utc_z(self.status_updated_at) if self.status_updated_at else None,
            "reviewed_by_user_id": self.reviewed_by_user_id,
            "resolution_reason": self.resolution_reason,
            "rejection_count": self.rejection_count,
            "expires_at": to_utc_z(self.expires_at),
        }
