# Overview: Service-layer operations for permission; field-level resolution and security event logging.

"""
Field-Level Permission Resolver and Security Event Logging

WHY: Every read projection and every write path asks the same questions:
may this role see the column, edit it directly, or only propose a change?
Answers come from one loaded table so a request sees a consistent snapshot.

DESIGN PRINCIPLES:
- Fail closed: a role or column missing from the table has no access
- Collection gate first: costs are refused to sales roles before any
  column is looked at
- System columns (id, month, status) are not part of the editable or
  approval column lists; they are record attributes, not cells
- Log denials only: grants are not logged
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from ..errors import Forbidden
from ..extensions import db
from ..models import ColumnDefinition, RolePermission, SecurityEvent
from ..permissions import ALL_ROLES, COST_ROLES, COSTS, ORDERS, RECORD_COLLECTIONS, SYSTEM_COLUMNS
from ..time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnPermission:
    visible: bool = False
    editable: bool = False
    requires_approval: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping | None) -> "ColumnPermission":
        if not data:
            return NO_ACCESS
        # Stored maps written by older clients use camelCase
        requires_approval = data.get("requires_approval", data.get("requiresApproval", False))
        return cls(
            visible=bool(data.get("visible", False)),
            editable=bool(data.get("editable", False)),
            requires_approval=bool(requires_approval),
        )

    def to_dict(self) -> dict:
        return {
            "visible": self.visible,
            "editable": self.editable,
            "requires_approval": self.requires_approval,
        }


NO_ACCESS = ColumnPermission()


class PermissionTable:
    """
    Snapshot of role -> column -> ColumnPermission.

    column_keys fixes the order of the *_columns lists (display order).
    """

    def __init__(self, roles: Mapping[str, Mapping[str, Mapping]], column_keys: Iterable[str] = ()):
        self._roles = {
            role: {key: ColumnPermission.from_mapping(perm) for key, perm in (perms or {}).items()}
            for role, perms in roles.items()
        }
        self.column_keys = list(column_keys)

    def get(self, role: str, key: str) -> ColumnPermission:
        return self._roles.get(role, {}).get(key, NO_ACCESS)

    def visible(self, role: str, key: str) -> bool:
        return self.get(role, key).visible

    def editable(self, role: str, key: str) -> bool:
        return self.get(role, key).editable

    def requires_approval(self, role: str, key: str) -> bool:
        return self.get(role, key).requires_approval

    def _keys(self, role: str) -> list[str]:
        known = self.column_keys or sorted(self._roles.get(role, {}))
        return [key for key in known if key not in SYSTEM_COLUMNS]

    def visible_columns(self, role: str) -> list[str]:
        return [key for key in self._keys(role) if self.visible(role, key)]

    def editable_columns(self, role: str) -> list[str]:
        return [key for key in self._keys(role) if self.editable(role, key)]

    def approval_columns(self, role: str) -> list[str]:
        return [key for key in self._keys(role) if self.requires_approval(role, key)]


def load_permission_table() -> PermissionTable:
    """Read column order and every role's permission map from the store."""
    keys = [
        key for (key,) in db.session.query(ColumnDefinition.key)
        .order_by(ColumnDefinition.display_order, ColumnDefinition.key)
        .all()
    ]
    roles = {row.role: row.permissions for row in db.session.query(RolePermission).all()}
    return PermissionTable(roles, keys)


def _table(table: PermissionTable | None) -> PermissionTable:
    return table if table is not None else load_permission_table()


def get_permission(role: str, key: str, table: PermissionTable | None = None) -> ColumnPermission:
    return _table(table).get(role, key)


def visible(role: str, key: str, table: PermissionTable | None = None) -> bool:
    return _table(table).visible(role, key)


def editable(role: str, key: str, table: PermissionTable | None = None) -> bool:
    return _table(table).editable(role, key)


def requires_approval(role: str, key: str, table: PermissionTable | None = None) -> bool:
    return _table(table).requires_approval(role, key)


def visible_columns(role: str, table: PermissionTable | None = None) -> list[str]:
    return _table(table).visible_columns(role)


def editable_columns(role: str, table: PermissionTable | None = None) -> list[str]:
    return _table(table).editable_columns(role)


def approval_columns(role: str, table: PermissionTable | None = None) -> list[str]:
    return _table(table).approval_columns(role)


def can_access_collection(role: str, collection: str) -> bool:
    """
    Collection-level gate.

    Orders are open to every role; costs only to managers and super admins.
    Unknown collections and unknown roles are refused.
    """
    if role not in ALL_ROLES:
        return False
    if collection == ORDERS:
        return True
    if collection == COSTS:
        return role in COST_ROLES
    return False


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    *,
    commit: bool = True,
) -> SecurityEvent:
    """
    Log security event to the security trail.

    WHY: Login outcomes, lockouts and permission denials are kept apart from
    the business audit log so they survive the rollback of the request that
    triggered them.

    event_type examples:
    - PERMISSION_DENIED
    - LOGIN_FAILED
    - LOGIN_SUCCESS
    - LOGIN_LOCKED
    - LOGOUT
    - PASSWORD_RESET_REQUESTED
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    if commit:
        db.session.commit()

    return event


def deny(user, resource: str, action: str, reason: str) -> Forbidden:
    """Log a denial and return the Forbidden error for the caller to raise."""
    user_id = getattr(user, "id", None)
    logger.warning("Permission denied: user=%s resource=%s action=%s (%s)", user_id, resource, action, reason)
    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=action,
        reason=reason,
    )
    return Forbidden(resource=resource, action=action)


def require_collection_access(user, collection: str, action: str = "read") -> None:
    """
    Raise Forbidden (and log the denial) unless user's role may use collection.

    SECURITY: evaluated before any column-level check so a sales role never
    learns anything about cost columns.
    """
    if collection not in RECORD_COLLECTIONS:
        raise deny(user, collection, action, "Unknown collection")
    if not can_access_collection(user.role, collection):
        raise deny(user, collection, action, f"Role {user.role} may not access {collection}")


def require_role(user, roles: Iterable[str], resource: str, action: str) -> None:
    """Raise Forbidden (and log the denial) unless user holds one of roles."""
    allowed = frozenset(roles)
    if user.role not in allowed:
        raise deny(user, resource, action, f"Requires one of: {', '.join(sorted(allowed))}")
