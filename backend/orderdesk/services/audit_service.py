# Overview: Service-layer operations for the audit trail; append-only writes and redaction.

"""
Audit Logger

WHY: Every mutation of orders, costs, pending changes and column metadata
must be attributable to an actor. Rows are written inside the caller's
transaction (no commit here) so the audit entry and the change it describes
succeed or fail together.

REDACTION: details may carry user input. Values whose key looks like a
credential are masked and long strings are truncated before storage.
"""

from __future__ import annotations

from typing import Any

from ..extensions import db
from ..models import AuditLog
from ..models.audit import AUDIT_ACTIONS
from ..time_utils import utcnow


SYSTEM_ACTOR_NAME = "system"

REDACTED = "[redacted]"
MAX_DETAIL_STRING = 500

_SENSITIVE_MARKERS = ("password", "secret", "token", "credential", "api_key")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


def redact(value: Any, *, key: str | None = None) -> Any:
    """Return a storage-safe copy of an audit detail value."""
    if key is not None and _is_sensitive(key):
        return REDACTED
    if isinstance(value, dict):
        return {str(k): redact(v, key=str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    if isinstance(value, str) and len(value) > MAX_DETAIL_STRING:
        return value[:MAX_DETAIL_STRING] + "..."
    return value


def record(
    action: str,
    target_collection: str,
    target_id,
    actor=None,
    details: dict | None = None,
) -> AuditLog:
    """
    Stage an audit row on the current session.

    actor is a User (or anything with id/display_name); None means a system
    job such as the expiry sweep or the purge task.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    entry = AuditLog(
        actor_user_id=getattr(actor, "id", None),
        actor_name=getattr(actor, "display_name", None) or SYSTEM_ACTOR_NAME,
        action=action,
        target_collection=target_collection,
        target_id=str(target_id),
        details=redact(details or {}),
        created_at=utcnow(),
    )
    db.session.add(entry)
    return entry


def list_entries(
    *,
    target_collection: str | None = None,
    target_id=None,
    actor_user_id: int | None = None,
    action: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[AuditLog]:
    """Newest-first audit rows with optional filters."""
    query = db.session.query(AuditLog)
    if target_collection:
        query = query.filter(AuditLog.target_collection == target_collection)
    if target_id is not None:
        query = query.filter(AuditLog.target_id == str(target_id))
    if actor_user_id is not None:
        query = query.filter(AuditLog.actor_user_id == actor_user_id)
    if action:
        query = query.filter(AuditLog.action == action)
    return (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
