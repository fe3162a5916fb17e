from __future__ import annotations

from sqlalchemy.orm import declared_attr

from ..extensions import db
from ..permissions import ORDERS, COSTS
from ..time_utils import to_utc_z


class RecordMixin:
    """
    Columns shared by every versioned record collection.

    VERSIONING: each concrete model maps `version` as its version_id_col, so
    every UPDATE is issued as "... WHERE id = ? AND version = ?" and bumps the
    version by exactly one. A writer that lost the race matches zero rows and
    SQLAlchemy raises StaleDataError.

    SOFT DELETE: deleted_at/deleted_by hide the row from active views; it
    stays recoverable for the retention window, then becomes purgeable.
    """

    id = db.Column(db.Integer, primary_key=True)
    month = db.Column(db.String(7), nullable=False, index=True)  # YYYY-MM
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    created_by_name = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    # Open map of column key -> value; replaced wholesale on every write
    dynamic_fields = db.Column(db.JSON, nullable=False, default=dict)

    @declared_attr
    def created_by_user_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    @declared_attr
    def deleted_by_user_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_locked(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "collection": self.collection,
            "month": self.month,
            "status": self.status,
            "version": self.version,
            "created_by_user_id": self.created_by_user_id,
            "created_by_name": self.created_by_name,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "deleted_by_user_id": self.deleted_by_user_id,
            "dynamic_fields": dict(self.dynamic_fields or {}),
        }


class Order(RecordMixin, db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_month_deleted", "month", "deleted_at"),
        {"sqlite_autoincrement": True},
    )
    collection = ORDERS

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}


class Cost(RecordMixin, db.Model):
    """
    Cost entry. Same shape as Order plus an optional link to one order.

    Restricted to managers and super admins at the collection level.
    """
    __tablename__ = "costs"
    __table_args__ = (
        db.Index("ix_costs_month_deleted", "month", "deleted_at"),
        {"sqlite_autoincrement": True},
    )
    collection = COSTS

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["order_id"] = self.order_id
        return data


COLLECTION_MODELS = {
    ORDERS: Order,
    COSTS: Cost,
}
