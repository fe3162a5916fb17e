from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class ColumnDefinition(db.Model):
    """
    Spreadsheet column catalog shared by orders and costs.

    WHY: Records keep their business fields in dynamic_fields; this table
    names those keys, gives them a type, and drives permission lookups.

    RULES:
    - system_field columns (id, month, status) cannot be deleted or retyped
    - is_data_related columns cannot change type once any record holds a
      non-null value for the key
    - version guards concurrent metadata edits (compare-and-set on UPDATE)
    """
    __tablename__ = "column_definitions"

    key = db.Column(db.String(64), primary_key=True)
    label = db.Column(db.String(128), nullable=False)
    type = db.Column(db.String(16), nullable=False)  # text | number | date | select
    display_order = db.Column(db.Integer, nullable=False, default=0, index=True)
    options = db.Column(db.JSON, nullable=False, default=list)
    system_field = db.Column(db.Boolean, nullable=False, default=False)
    is_data_related = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "type": self.type,
            "display_order": self.display_order,
            "options": list(self.options or []),
            "system_field": self.system_field,
            "is_data_related": self.is_data_related,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version": self.version,
        }


class RolePermission(db.Model):
    """
    Column permissions for one role.

    permissions maps column key -> {"visible", "editable", "requires_approval"}.
    A key missing from the map means the column is invisible and read-only
    for the role.
    """
    __tablename__ = "role_permissions"

    role = db.Column(db.String(32), primary_key=True)
    permissions = db.Column(db.JSON, nullable=False, default=dict)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "permissions": dict(self.permissions or {}),
            "updated_at": to_utc_z(self.updated_at),
            "updated_by_user_id": self.updated_by_user_id,
            "version": self.version,
        }
