# Overview: Service-layer operations for column metadata and role permission maps.

"""
Column and Role Permission Administration

WHY: The spreadsheet shape (which columns exist, their types) and the
per-role permission maps are data, edited by super admins at runtime.

RULES:
- Only super_admin writes column definitions or role permissions
- System columns (id, month, status) cannot be deleted or retyped
- A data-related column cannot change type while any record (deleted ones
  included) holds a non-null value for it
- Both tables are versioned; an edit against an old version is refused
  with VersionConflict instead of clobbering a concurrent edit
"""

from __future__ import annotations

import logging

from sqlalchemy.orm.exc import StaleDataError

from ..errors import NotFound, ValidationError, VersionConflict
from ..extensions import db
from ..models import COLLECTION_MODELS, ColumnDefinition, RolePermission
from ..permissions import (
    ALL_ROLES,
    COLUMN_DEFINITIONS,
    DEFAULT_COLUMN_DEFINITIONS,
    DEFAULT_ROLE_PERMISSIONS,
    ROLE_PERMISSIONS,
    Roles,
)
from ..time_utils import utcnow
from ..validation import validate_column_key, validate_column_type
from . import audit_service, permission_service
from .concurrency import run_in_transaction
from .permission_service import ColumnPermission

logger = logging.getLogger(__name__)

UPDATABLE_COLUMN_FIELDS = {"label", "type", "display_order", "options", "is_data_related"}


def _require_super_admin(actor, resource: str, action: str) -> None:
    permission_service.require_role(actor, {Roles.SUPER_ADMIN}, resource, action)


def _get_column(key: str) -> ColumnDefinition:
    column = db.session.query(ColumnDefinition).filter_by(key=key).populate_existing().first()
    if column is None:
        raise NotFound(f"Column {key} not found", key=key)
    return column


def _validate_options(col_type: str, options) -> list:
    if options is None:
        options = []
    if not isinstance(options, list) or not all(isinstance(o, str) and o for o in options):
        raise ValidationError("options must be a list of non-empty strings", field="options")
    if col_type == "select" and not options:
        raise ValidationError("select columns need at least one option", field="options")
    if len(set(options)) != len(options):
        raise ValidationError("options must be unique", field="options")
    return options


def _validate_label(label) -> str:
    if not isinstance(label, str) or not label.strip():
        raise ValidationError("label is required", field="label")
    return label.strip()


def _validate_order(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("display_order must be an integer", field="display_order")
    return value


def column_has_data(key: str) -> bool:
    """True if any record in any collection holds a non-null value for key."""
    for model in COLLECTION_MODELS.values():
        for (fields,) in db.session.query(model.dynamic_fields).yield_per(500):
            if fields and fields.get(key) is not None:
                return True
    return False


def list_columns() -> list[ColumnDefinition]:
    return (
        db.session.query(ColumnDefinition)
        .order_by(ColumnDefinition.display_order, ColumnDefinition.key)
        .all()
    )


def create_column(actor, *, key: str, label: str, type: str, display_order: int | None = None,
                  options: list | None = None, is_data_related: bool = False) -> ColumnDefinition:
    _require_super_admin(actor, COLUMN_DEFINITIONS, "create")
    key = validate_column_key(key)
    col_type = validate_column_type(type)
    label = _validate_label(label)
    options = _validate_options(col_type, options)

    def _op():
        if db.session.get(ColumnDefinition, key) is not None:
            raise ValidationError(f"Column {key} already exists", field="key")

        order = display_order
        if order is None:
            current_max = db.session.query(db.func.max(ColumnDefinition.display_order)).scalar() or 0
            order = current_max + 10
        now = utcnow()
        column = ColumnDefinition(
            key=key,
            label=label,
            type=col_type,
            display_order=_validate_order(order),
            options=options,
            system_field=False,
            is_data_related=bool(is_data_related),
            created_at=now,
            updated_at=now,
        )
        db.session.add(column)
        db.session.flush()
        audit_service.record("create", COLUMN_DEFINITIONS, key, actor, column.to_dict())
        return column

    return run_in_transaction(_op)


def update_column(key: str, changes: dict, actor, expected_version: int) -> ColumnDefinition:
    """
    Change label, type, order, options or the data-related flag of a column.

    Raises ValidationError for a blocked type change and VersionConflict if
    another admin edited the column since expected_version.
    """
    _require_super_admin(actor, COLUMN_DEFINITIONS, "update")
    unknown = set(changes) - UPDATABLE_COLUMN_FIELDS
    if unknown:
        raise ValidationError(f"Cannot change: {', '.join(sorted(unknown))}")

    def _op():
        column = _get_column(key)
        if column.version != expected_version:
            raise VersionConflict(expected_version, column.version)

        new_type = column.type
        if "type" in changes and changes["type"] != column.type:
            new_type = validate_column_type(changes["type"])
            if column.system_field:
                raise ValidationError(f"{key} is a system column; its type cannot change", field="type")
            if column.is_data_related and column_has_data(key):
                raise ValidationError(
                    "Cannot change the type of a data-related column while records hold values for it",
                    field="type",
                )

        before = column.to_dict()
        if "label" in changes:
            column.label = _validate_label(changes["label"])
        if "display_order" in changes:
            column.display_order = _validate_order(changes["display_order"])
        if "is_data_related" in changes:
            column.is_data_related = bool(changes["is_data_related"])
        column.options = _validate_options(new_type, changes.get("options", column.options))
        column.type = new_type
        column.updated_at = utcnow()

        try:
            db.session.flush()
        except StaleDataError:
            db.session.rollback()
            actual = db.session.query(ColumnDefinition.version).filter_by(key=key).scalar()
            raise VersionConflict(expected_version, actual)

        after = column.to_dict()
        audit_service.record(
            "update", COLUMN_DEFINITIONS, key, actor,
            {
                "changes": {k: after[k] for k in changes if before.get(k) != after.get(k)},
                "version": column.version,
            },
        )
        return column

    return run_in_transaction(_op)


def delete_column(key: str, actor) -> None:
    """
    Remove a non-system column and strip it from every role's map.

    Values already stored under the key stay on the records; a data-related
    column that still holds values is refused.
    """
    _require_super_admin(actor, COLUMN_DEFINITIONS, "delete")

    def _op():
        actor_id = actor.id
        column = _get_column(key)
        if column.system_field:
            raise ValidationError(f"{key} is a system column and cannot be deleted", field="key")
        if column.is_data_related and column_has_data(key):
            raise ValidationError("Cannot delete a data-related column while records hold values for it", field="key")

        for row in db.session.query(RolePermission).all():
            if key in (row.permissions or {}):
                row.permissions = {k: v for k, v in row.permissions.items() if k != key}
                row.updated_at = utcnow()
                row.updated_by_user_id = actor_id

        snapshot = column.to_dict()
        db.session.delete(column)
        db.session.flush()
        audit_service.record("delete", COLUMN_DEFINITIONS, key, actor, snapshot)

    run_in_transaction(_op)


# =============================================================================
# ROLE PERMISSIONS
# =============================================================================

def get_role_permissions(role: str | None = None) -> list[RolePermission]:
    query = db.session.query(RolePermission)
    if role is not None:
        query = query.filter(RolePermission.role == role)
    return query.order_by(RolePermission.role).all()


def _normalize_permissions(permissions) -> dict:
    if not isinstance(permissions, dict):
        raise ValidationError("permissions must be an object keyed by column", field="permissions")
    known = {key for (key,) in db.session.query(ColumnDefinition.key).all()}
    normalized = {}
    for key, entry in permissions.items():
        if key not in known:
            raise ValidationError(f"Unknown column: {key}", field="permissions")
        if not isinstance(entry, dict):
            raise ValidationError(f"Permission for {key} must be an object", field="permissions")
        perm = ColumnPermission.from_mapping(entry)
        if (perm.editable or perm.requires_approval) and not perm.visible:
            raise ValidationError(f"{key} must be visible to be editable or proposable", field="permissions")
        normalized[key] = perm.to_dict()
    return normalized


def update_role_permissions(role: str, permissions: dict, actor, expected_version: int | None = None) -> RolePermission:
    """Replace one role's permission map (versioned when the row exists)."""
    _require_super_admin(actor, ROLE_PERMISSIONS, "update")
    if role not in ALL_ROLES:
        raise ValidationError(f"Unknown role: {role}", field="role")

    def _op():
        actor_id = actor.id
        normalized = _normalize_permissions(permissions)
        row = db.session.query(RolePermission).filter_by(role=role).populate_existing().first()
        now = utcnow()
        if row is None:
            row = RolePermission(role=role, permissions=normalized, updated_at=now, updated_by_user_id=actor_id)
            db.session.add(row)
            action = "create"
        else:
            if expected_version is not None and row.version != expected_version:
                raise VersionConflict(expected_version, row.version)
            row.permissions = normalized
            row.updated_at = now
            row.updated_by_user_id = actor_id
            action = "update"

        try:
            db.session.flush()
        except StaleDataError:
            db.session.rollback()
            actual = db.session.query(RolePermission.version).filter_by(role=role).scalar()
            raise VersionConflict(expected_version, actual)

        audit_service.record(action, ROLE_PERMISSIONS, role, actor, {"permissions": normalized, "version": row.version})
        logger.info("Role permissions for %s updated by user %s", role, actor.id)
        return row

    return run_in_transaction(_op)


def seed_defaults() -> dict:
    """
    Insert the default columns and role permission maps that are missing.

    Idempotent: existing rows are left untouched.
    """
    created = {"columns": 0, "roles": 0}
    now = utcnow()
    for key, label, col_type, order, options, system_field, is_data_related in DEFAULT_COLUMN_DEFINITIONS:
        if db.session.get(ColumnDefinition, key) is None:
            db.session.add(ColumnDefinition(
                key=key,
                label=label,
                type=col_type,
                display_order=order,
                options=list(options),
                system_field=system_field,
                is_data_related=is_data_related,
                created_at=now,
                updated_at=now,
            ))
            created["columns"] += 1

    for role, permissions in DEFAULT_ROLE_PERMISSIONS.items():
        if db.session.get(RolePermission, role) is None:
            db.session.add(RolePermission(
                role=role,
                permissions={key: dict(value) for key, value in permissions.items()},
                updated_at=now,
            ))
            created["roles"] += 1

    db.session.commit()
    return created
