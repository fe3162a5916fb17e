# Overview: Caller-facing mutate and read surface; role checks before every record operation.

"""
Role-checked mutation surface.

Routes and the CLI call these functions rather than record_service or
pending_service directly. Each one applies, in order:

1. the collection gate (costs: manager and super_admin only)
2. the column or role rule for the operation
3. the store operation itself, in one transaction

Reads are projected to the columns the viewer's role may see.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..errors import VersionConflict
from ..models import PendingChange
from ..permissions import RECOVERY_ROLES, RECORD_COLLECTIONS, Roles
from . import pending_service, permission_service, record_service
from .concurrency import run_in_transaction
from .permission_service import PermissionTable, load_permission_table


@dataclass
class EditOutcome:
    """
    Result of edit_field.

    applied=True: the field was written and `version` is the new version.
    applied=False: the role needs approval; `pending` holds the proposal and
    `version` is the unchanged record version.
    """
    applied: bool
    version: int
    pending: PendingChange | None = None

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "version": self.version,
            "pending": self.pending.to_dict() if self.pending is not None else None,
        }


def project(record, role: str, table: PermissionTable | None = None) -> dict:
    """Serialize a record with only the dynamic fields role may see."""
    table = table if table is not None else load_permission_table()
    data = record.to_dict()
    data["dynamic_fields"] = {
        key: value for key, value in (record.dynamic_fields or {}).items()
        if table.visible(role, key)
    }
    return data


# =============================================================================
# WRITES
# =============================================================================

def create_record(collection: str, fields: dict | None, actor, *, month: str | None = None,
                  status: str = "active", order_id: int | None = None):
    """Create a record; every initial field must be directly editable by the role."""
    permission_service.require_collection_access(actor, collection, action="create")
    table = load_permission_table()
    for key in (fields or {}):
        if not table.editable(actor.role, key):
            raise permission_service.deny(
                actor, collection, "create", f"Role {actor.role} may not set {key}"
            )
    return record_service.create_record(
        collection, fields, actor, month=month, status=status, order_id=order_id
    )


def edit_field(collection: str, record_id: int, field: str, new_value, expected_version: int, actor) -> EditOutcome:
    """
    Write a field directly, or route it through approval.

    A column flagged requires_approval for the role becomes a pending change
    based on the record as the caller saw it (expected_version); the caller's
    version is still checked so a proposal is never built on stale data.
    """
    permission_service.require_collection_access(actor, collection, action="update")
    permission = permission_service.get_permission(actor.role, field)

    if permission.requires_approval:
        record = record_service.get_record(collection, record_id)
        if record.version != expected_version:
            raise VersionConflict(expected_version, record.version)
        pending = pending_service.propose(
            collection,
            record_id,
            field,
            (record.dynamic_fields or {}).get(field),
            record.version,
            new_value,
            actor,
        )
        return EditOutcome(applied=False, version=expected_version, pending=pending)

    if permission.editable:
        version = record_service.update_field(collection, record_id, field, new_value, expected_version, actor)
        return EditOutcome(applied=True, version=version)

    raise permission_service.deny(actor, collection, "update", f"Role {actor.role} may not change {field}")


def change_status(collection: str, record_id: int, status: str, expected_version: int, actor) -> int:
    permission_service.require_collection_access(actor, collection, action="update")
    if not permission_service.editable(actor.role, "status"):
        raise permission_service.deny(actor, collection, "status", f"Role {actor.role} may not change status")
    return record_service.set_status(collection, record_id, status, expected_version, actor)


def delete_record(collection: str, record_id: int, actor) -> tuple[int, int]:
    """
    Soft-delete a record and void its open pending changes together.

    Returns (new version, number of voided pending changes).
    """
    permission_service.require_collection_access(actor, collection, action="delete")
    permission_service.require_role(actor, RECOVERY_ROLES, collection, "delete")

    def _op():
        version = record_service.soft_delete(collection, record_id, actor, commit=False)
        voided = pending_service.void_all_for_target(collection, record_id, actor, commit=False)
        return version, voided

    return run_in_transaction(_op)


def recover_record(collection: str, record_id: int, actor) -> int:
    permission_service.require_collection_access(actor, collection, action="recover")
    permission_service.require_role(actor, RECOVERY_ROLES, collection, "recover")
    return record_service.recover(collection, record_id, actor)


def purge_record(collection: str, record_id: int, actor) -> None:
    permission_service.require_collection_access(actor, collection, action="purge")
    permission_service.require_role(actor, {Roles.SUPER_ADMIN}, collection, "purge")
    record_service.purge(collection, record_id, actor)


# =============================================================================
# READS
# =============================================================================

def list_records(collection: str, viewer, *, month: str | None = None, deleted: bool = False) -> list[dict]:
    """Active records (or the recycle bin, for managers) projected for viewer."""
    permission_service.require_collection_access(viewer, collection, action="read")
    if deleted:
        permission_service.require_role(viewer, RECOVERY_ROLES, collection, "read_deleted")
    table = load_permission_table()
    records = record_service.list_records(collection, month=month, deleted_only=deleted)
    return [project(record, viewer.role, table) for record in records]


def get_record(collection: str, record_id: int, viewer) -> dict:
    permission_service.require_collection_access(viewer, collection, action="read")
    include_deleted = viewer.role in RECOVERY_ROLES
    record = record_service.get_record(collection, record_id, include_deleted=include_deleted)
    return project(record, viewer.role)


def changes_since(collection: str, since: datetime, viewer, *, month: str | None = None) -> list[dict]:
    """
    Poll read: records touched after `since`.

    Roles without recycle-bin access get a tombstone for deleted records so
    they can drop them from their view without seeing the contents.
    """
    permission_service.require_collection_access(viewer, collection, action="read")
    table = load_permission_table()
    changes = []
    for record in record_service.changes_since(collection, since, month=month):
        if record.is_deleted and viewer.role not in RECOVERY_ROLES:
            changes.append({
                "id": record.id,
                "collection": record.collection,
                "version": record.version,
                "deleted": True,
            })
        else:
            changes.append(project(record, viewer.role, table))
    return changes


def accessible_collections(viewer) -> list[str]:
    return [c for c in RECORD_COLLECTIONS if permission_service.can_access_collection(viewer.role, c)]
