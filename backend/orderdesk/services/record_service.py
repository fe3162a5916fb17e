# Overview: Service-layer operations for versioned records; optimistic concurrency, soft delete and purge.

"""
Versioned Record Store (orders and costs)

WHY: Many users edit the same monthly sheets at once. Every write carries
the version the caller last saw; a write against any other version is
refused instead of silently overwriting someone else's change.

VERSIONING:
- A record starts at version 1
- Every write that changes dynamic_fields, status or the delete marker
  bumps the version by exactly 1 (SQLAlchemy version_id_col issues
  UPDATE ... WHERE id = ? AND version = ?)
- A writer that loses the race between read and write matches zero rows;
  the resulting StaleDataError is reported as VersionConflict with the
  freshly read version

LIFECYCLE:
    active <-> cancelled -> completed (locked)
    any -> soft deleted -> recovered (within retention) | purged (after)

A completed record accepts no field or status writes. Soft delete is still
allowed so mistakes can be cleaned up by a manager.

Every mutation and its audit row commit together or not at all.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm.exc import StaleDataError

from .. import change_feed
from ..config import current_policy
from ..errors import NotDeleted, NotFound, RecordLocked, RetentionExpired, ValidationError, VersionConflict
from ..extensions import db
from ..models import COLLECTION_MODELS, ColumnDefinition, Order
from ..permissions import COSTS, SYSTEM_COLUMNS
from ..time_utils import current_month, utcnow
from ..validation import coerce_field_value, validate_month, validate_status
from . import audit_service
from .concurrency import lock_for_update, transactional

logger = logging.getLogger(__name__)


def model_for(collection: str):
    try:
        return COLLECTION_MODELS[collection]
    except KeyError:
        raise ValidationError(f"Unknown collection: {collection}", field="collection")


def _load(collection: str, record_id: int, *, include_deleted: bool = False, for_update: bool = False):
    """
    Load a record with its current stored state.

    populate_existing refreshes an object already in the identity map, so the
    version compared below is the one the store holds now.
    """
    model = model_for(collection)
    query = db.session.query(model).filter(model.id == record_id).populate_existing()
    if for_update:
        query = lock_for_update(query)
    record = query.first()
    if record is None or (record.is_deleted and not include_deleted):
        raise NotFound(f"{collection} record {record_id} not found", collection=collection, id=record_id)
    return record


def _current_version(collection: str, record_id: int) -> int | None:
    model = model_for(collection)
    return db.session.query(model.version).filter(model.id == record_id).scalar()


def _flush_versioned(record, collection: str, expected_version: int) -> None:
    """Flush a versioned write; a lost race becomes VersionConflict."""
    try:
        db.session.flush()
    except StaleDataError:
        db.session.rollback()
        actual = _current_version(collection, record.id)
        logger.info(
            "Concurrent write on %s %s: expected version %s, store has %s",
            collection, record.id, expected_version, actual,
        )
        raise VersionConflict(expected_version, actual)


def _column_definitions() -> dict[str, ColumnDefinition]:
    return {column.key: column for column in db.session.query(ColumnDefinition).all()}


def writable_column(field: str, columns: dict[str, ColumnDefinition] | None = None) -> ColumnDefinition:
    """The ColumnDefinition for a dynamic field, refusing system and unknown keys."""
    if field in SYSTEM_COLUMNS:
        raise ValidationError(f"{field} is a system column and cannot be edited as a field", field=field)
    columns = columns if columns is not None else _column_definitions()
    column = columns.get(field)
    if column is None:
        raise ValidationError(f"Unknown column: {field}", field=field)
    return column


def _validated_fields(initial_fields: dict | None) -> dict:
    if initial_fields is None:
        return {}
    if not isinstance(initial_fields, dict):
        raise ValidationError("fields must be an object")
    columns = _column_definitions()
    return {
        key: coerce_field_value(writable_column(key, columns), value)
        for key, value in initial_fields.items()
    }


def _publish(record, kind: str, **payload) -> None:
    change_feed.queue(
        db.session,
        change_feed.record_changed,
        change_feed.ChangeEvent(
            collection=record.collection,
            target_id=record.id,
            kind=kind,
            occurred_at=utcnow(),
            version=record.version,
            payload=payload,
        ),
    )


# =============================================================================
# WRITES
# =============================================================================

def create_record(
    collection: str,
    initial_fields: dict | None,
    actor,
    *,
    month: str | None = None,
    status: str = "active",
    order_id: int | None = None,
    commit: bool = True,
):
    """Insert a record at version 1 with the given dynamic fields."""
    model = model_for(collection)
    month = validate_month(month if month is not None else current_month())
    status = validate_status(status)
    fields = _validated_fields(initial_fields)

    if order_id is not None and collection != COSTS:
        raise ValidationError("order_id only applies to costs", field="order_id")

    def _op():
        if order_id is not None:
            order = db.session.get(Order, order_id)
            if order is None or order.is_deleted:
                raise NotFound(f"orders record {order_id} not found", collection="orders", id=order_id)

        now = utcnow()
        record = model(
            month=month,
            status=status,
            created_by_user_id=getattr(actor, "id", None),
            created_by_name=actor.display_name,
            created_at=now,
            updated_at=now,
            dynamic_fields=fields,
        )
        if order_id is not None:
            record.order_id = order_id
        db.session.add(record)
        db.session.flush()

        audit_service.record(
            "create", collection, record.id, actor,
            {"month": month, "status": status, "fields": fields, "version": record.version},
        )
        _publish(record, "created")
        return record

    return transactional(_op, commit=commit)


def update_field(
    collection: str,
    record_id: int,
    field: str,
    new_value,
    expected_version: int,
    actor,
    *,
    commit: bool = True,
) -> int:
    """
    Write one dynamic field if the caller's version is current.

    This is the only path that writes a cell: direct edits and approved
    pending changes both go through it.

    Raises:
    - NotFound: missing or soft-deleted record
    - VersionConflict: expected_version is not the stored version
    - RecordLocked: record is completed
    - ValidationError: unknown/system column or value of the wrong type

    Returns the new version.
    """
    def _op():
        record = _load(collection, record_id, for_update=True)
        if record.version != expected_version:
            raise VersionConflict(expected_version, record.version)
        if record.is_locked:
            raise RecordLocked(collection=collection, id=record_id)

        column = writable_column(field)
        value = coerce_field_value(column, new_value)

        # Replace the dict so the JSON column is flagged dirty
        fields = dict(record.dynamic_fields or {})
        fields[field] = value
        record.dynamic_fields = fields
        record.updated_at = utcnow()
        _flush_versioned(record, collection, expected_version)

        audit_service.record(
            "update", collection, record.id, actor,
            {"field": field, "new_value": value, "version": record.version},
        )
        _publish(record, "updated", field=field)
        return record.version

    return transactional(_op, commit=commit)


def set_status(
    collection: str,
    record_id: int,
    status: str,
    expected_version: int,
    actor,
    *,
    commit: bool = True,
) -> int:
    """Change the record status under the same version and lock rules as fields."""
    status = validate_status(status)

    def _op():
        record = _load(collection, record_id, for_update=True)
        if record.version != expected_version:
            raise VersionConflict(expected_version, record.version)
        if record.is_locked:
            raise RecordLocked(collection=collection, id=record_id)

        previous = record.status
        record.status = status
        record.updated_at = utcnow()
        _flush_versioned(record, collection, expected_version)

        audit_service.record(
            "update", collection, record.id, actor,
            {"field": "status", "old_value": previous, "new_value": status, "version": record.version},
        )
        _publish(record, "updated", field="status")
        return record.version

    return transactional(_op, commit=commit)


def soft_delete(collection: str, record_id: int, actor, *, commit: bool = True) -> int:
    """
    Hide a record from active views and start its retention clock.

    Pending changes for the record must be voided in the same transaction
    (pending_service.void_all_for_target); mutation_service.delete_record
    does both.
    """
    def _op():
        # Read before touching the record: an expired actor would autoflush
        actor_id = getattr(actor, "id", None)
        record = _load(collection, record_id, for_update=True)
        expected = record.version

        record.deleted_at = utcnow()
        record.deleted_by_user_id = actor_id
        record.updated_at = record.deleted_at
        _flush_versioned(record, collection, expected)

        audit_service.record(
            "delete", collection, record.id, actor,
            {"month": record.month, "version": record.version},
        )
        _publish(record, "deleted")
        return record.version

    return transactional(_op, commit=commit)


def _retention_deadline(record) -> datetime:
    return record.deleted_at + current_policy().deleted_retention


def recover(collection: str, record_id: int, actor, *, commit: bool = True) -> int:
    """Undo a soft delete while the record is inside the retention window."""
    def _op():
        record = _load(collection, record_id, include_deleted=True, for_update=True)
        if not record.is_deleted:
            raise NotDeleted(collection=collection, id=record_id)
        if utcnow() > _retention_deadline(record):
            raise RetentionExpired(collection=collection, id=record_id)

        expected = record.version
        record.deleted_at = None
        record.deleted_by_user_id = None
        record.updated_at = utcnow()
        _flush_versioned(record, collection, expected)

        audit_service.record(
            "recover", collection, record.id, actor,
            {"month": record.month, "version": record.version},
        )
        _publish(record, "recovered")
        return record.version

    return transactional(_op, commit=commit)


def purge(collection: str, record_id: int, actor=None, *, commit: bool = True) -> None:
    """
    Permanently remove a soft-deleted record past its retention window.

    Pending change rows that referenced it are kept as history.
    """
    def _op():
        record = _load(collection, record_id, include_deleted=True, for_update=True)
        if not record.is_deleted:
            raise NotDeleted(collection=collection, id=record_id)
        if utcnow() <= _retention_deadline(record):
            raise ValidationError(
                "Record is still inside the recovery window",
                collection=collection,
                id=record_id,
            )

        snapshot = {
            "month": record.month,
            "status": record.status,
            "version": record.version,
            "fields": dict(record.dynamic_fields or {}),
        }
        _publish(record, "purged")
        db.session.delete(record)
        db.session.flush()

        audit_service.record("permanent_delete", collection, record_id, actor, snapshot)

    transactional(_op, commit=commit)


def purgeable_ids(collection: str, now: datetime | None = None) -> list[int]:
    """Ids of soft-deleted records whose retention window has passed."""
    model = model_for(collection)
    cutoff = (now or utcnow()) - current_policy().deleted_retention
    rows = (
        db.session.query(model.id)
        .filter(model.deleted_at.isnot(None), model.deleted_at < cutoff)
        .order_by(model.id)
        .all()
    )
    return [row_id for (row_id,) in rows]


# =============================================================================
# READS
# =============================================================================

def get_record(collection: str, record_id: int, *, include_deleted: bool = False):
    return _load(collection, record_id, include_deleted=include_deleted)


def list_records(
    collection: str,
    *,
    month: str | None = None,
    include_deleted: bool = False,
    deleted_only: bool = False,
) -> list:
    """Records ordered by creation; deleted rows only when asked for."""
    model = model_for(collection)
    query = db.session.query(model)
    if month is not None:
        query = query.filter(model.month == validate_month(month))
    if deleted_only:
        query = query.filter(model.deleted_at.isnot(None))
    elif not include_deleted:
        query = query.filter(model.deleted_at.is_(None))
    return query.order_by(model.created_at, model.id).all()


def records_by_month(collection: str, month: str) -> list:
    return list_records(collection, month=month)


def changes_since(collection: str, since: datetime, *, month: str | None = None) -> list:
    """
    Records (deleted ones included) touched after `since`.

    Poll counterpart of the change feed: a reader that missed signals can
    resynchronize by comparing versions.
    """
    model = model_for(collection)
    query = db.session.query(model).filter(model.updated_at > since)
    if month is not None:
        query = query.filter(model.month == validate_month(month))
    return query.order_by(model.updated_at, model.id).all()
