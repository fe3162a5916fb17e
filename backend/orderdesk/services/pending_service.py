# Overview: Service-layer operations for pending changes; the approval state machine.

"""
Pending Change Workflow

WHY: Sales roles may not write sensitive fields (price, payment status)
directly. They propose a change; a manager approves, rejects, or lets it
expire. The requester may withdraw it while it is still open.

STATE MACHINE:
    pending -> approved   (reviewer; applies the field through record_service)
    pending -> rejected   (reviewer; or voided because the target was deleted)
    pending -> withdrawn  (original requester)
    pending -> expired    (7 days after the request; sweep or late approve)

Resolved entries never transition again and are never reused.

SECURITY:
- Reviewer actions require manager or super_admin
- Cost pendings require manager or super_admin to propose
- At most one open entry per (collection, target, field); the partial unique
  index makes the check-and-insert atomic under concurrent proposals
- A requester whose proposal was rejected waits out a cooldown before
  proposing the same field again
"""

from __future__ import annotations

import logging
import math
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from .. import change_feed
from ..config import current_policy
from ..errors import CooldownActive, DuplicatePending, Expired, NotFound, NotPending, RecordLocked, StaleBase, ValidationError
from ..extensions import db
from ..models import PendingChange
from ..models.workflow import APPROVED, EXPIRED, PENDING, PENDING_STATUSES, REASON_TARGET_DELETED, REJECTED, WITHDRAWN
from ..permissions import PENDING_CHANGES, RECORD_COLLECTIONS, REVIEWER_ROLES
from ..time_utils import utcnow
from ..validation import coerce_field_value
from . import audit_service, permission_service, record_service
from .concurrency import lock_for_update, run_in_transaction, transactional

logger = logging.getLogger(__name__)


def _publish(pending: PendingChange, kind: str) -> None:
    change_feed.queue(
        db.session,
        change_feed.pending_changed,
        change_feed.ChangeEvent(
            collection=PENDING_CHANGES,
            target_id=pending.id,
            kind=kind,
            occurred_at=utcnow(),
            payload={
                "target_collection": pending.target_collection,
                "target_id": pending.target_id,
                "field": pending.field,
                "status": pending.status,
            },
        ),
    )


def _get(pending_id: int, *, for_update: bool = False) -> PendingChange:
    query = db.session.query(PendingChange).filter(PendingChange.id == pending_id).populate_existing()
    if for_update:
        query = lock_for_update(query)
    pending = query.first()
    if pending is None:
        raise NotFound(f"Pending change {pending_id} not found", id=pending_id)
    return pending


def _resolve(pending: PendingChange, status: str, now: datetime, reviewer=None) -> None:
    pending.status = status
    pending.status_updated_at = now
    if reviewer is not None:
        pending.reviewed_by_user_id = reviewer.id


def _cooldown_remaining(requester, collection: str, target_id: int, field: str, now: datetime) -> int:
    """Whole minutes left on the post-rejection cooldown; 0 when clear."""
    cooldown = current_policy().rejection_cooldown
    last_rejection = (
        db.session.query(PendingChange)
        .filter(
            PendingChange.requested_by_user_id == requester.id,
            PendingChange.target_collection == collection,
            PendingChange.target_id == target_id,
            PendingChange.field == field,
            PendingChange.status == REJECTED,
            # Entries voided by a delete are not a reviewer's verdict
            PendingChange.resolution_reason.is_(None),
            PendingChange.status_updated_at > now - cooldown,
        )
        .order_by(PendingChange.status_updated_at.desc())
        .first()
    )
    if last_rejection is None:
        return 0
    remaining = last_rejection.status_updated_at + cooldown - now
    return max(1, math.ceil(remaining.total_seconds() / 60))


def _prior_rejections(requester, collection: str, target_id: int, field: str) -> int:
    latest = (
        db.session.query(PendingChange.rejection_count)
        .filter(
            PendingChange.requested_by_user_id == requester.id,
            PendingChange.target_collection == collection,
            PendingChange.target_id == target_id,
            PendingChange.field == field,
            PendingChange.status == REJECTED,
            PendingChange.resolution_reason.is_(None),
        )
        .order_by(PendingChange.status_updated_at.desc(), PendingChange.id.desc())
        .first()
    )
    return latest[0] if latest else 0


# =============================================================================
# TRANSITIONS
# =============================================================================

def propose(
    collection: str,
    target_id: int,
    field: str,
    base_value,
    base_version: int,
    new_value,
    requester,
    *,
    commit: bool = True,
) -> PendingChange:
    """
    Open a pending change for one field of one record.

    Raises:
    - Forbidden: cost collection for a sales role, or the role may neither
      edit nor propose the field
    - NotFound: target missing or soft-deleted
    - RecordLocked: target is completed
    - CooldownActive: same requester had this field rejected recently
    - DuplicatePending: an open entry already exists for the field
    """
    permission_service.require_collection_access(requester, collection, action="propose")
    permission = permission_service.get_permission(requester.role, field)
    if not (permission.editable or permission.requires_approval):
        raise permission_service.deny(
            requester, collection, "propose", f"Role {requester.role} may not change {field}"
        )
    if isinstance(base_version, bool) or not isinstance(base_version, int):
        raise ValidationError("base_version must be an integer", field="base_version")

    column = record_service.writable_column(field)

    def _op():
        record = record_service.get_record(collection, target_id)
        if record.is_locked:
            raise RecordLocked(collection=collection, id=target_id)

        value = coerce_field_value(column, new_value)

        now = utcnow()
        remaining = _cooldown_remaining(requester, collection, target_id, field, now)
        if remaining:
            raise CooldownActive(remaining)

        existing = pending_for_field(collection, target_id, field)
        if existing is not None:
            raise DuplicatePending(pending_id=existing.id, field=field)

        pending = PendingChange(
            target_collection=collection,
            target_id=target_id,
            order_month=record.month,
            field=field,
            base_value=base_value,
            base_version=base_version,
            new_value=value,
            requested_by_user_id=requester.id,
            requested_by_name=requester.display_name,
            requested_at=now,
            status=PENDING,
            rejection_count=_prior_rejections(requester, collection, target_id, field),
            expires_at=now + current_policy().pending_expiry,
        )
        db.session.add(pending)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Lost the race against a concurrent proposal for the same field
            raise DuplicatePending(field=field) from exc

        _publish(pending, "proposed")
        return pending

    return transactional(_op, commit=commit)


def approve(pending_id: int, reviewer, acknowledged_version: int | None = None) -> PendingChange:
    """
    Apply a pending change to its record.

    STALENESS: if the record moved past base_version since the proposal, the
    approval is refused with StaleBase (carrying the live value and version)
    unless the reviewer passes acknowledged_version equal to the live version,
    confirming they reviewed the change against the current value.

    EXPIRY: an entry at or past expires_at is transitioned to expired (and
    that transition is committed) before Expired is raised.
    """
    permission_service.require_role(reviewer, REVIEWER_ROLES, PENDING_CHANGES, "approve")

    def _op():
        pending = _get(pending_id, for_update=True)
        if not pending.is_open:
            raise NotPending(id=pending_id, status=pending.status)

        now = utcnow()
        if now >= pending.expires_at:
            _resolve(pending, EXPIRED, now)
            _publish(pending, "expired")
            return pending

        record = record_service.get_record(pending.target_collection, pending.target_id)
        expected_version = pending.base_version
        if record.version != pending.base_version:
            if acknowledged_version is None or acknowledged_version != record.version:
                logger.info(
                    "Stale approval refused for pending %s: base v%s, live v%s",
                    pending.id, pending.base_version, record.version,
                )
                raise StaleBase(
                    pending.base_version,
                    record.version,
                    (record.dynamic_fields or {}).get(pending.field),
                )
            expected_version = acknowledged_version

        applied_version = record_service.update_field(
            pending.target_collection,
            pending.target_id,
            pending.field,
            pending.new_value,
            expected_version,
            reviewer,
            commit=False,
        )

        _resolve(pending, APPROVED, now, reviewer)
        audit_service.record(
            "approve", PENDING_CHANGES, pending.id, reviewer,
            {
                "target_collection": pending.target_collection,
                "target_id": pending.target_id,
                "field": pending.field,
                "new_value": pending.new_value,
                "base_version": pending.base_version,
                "version": applied_version,
            },
        )
        _publish(pending, "approved")
        return pending

    pending = run_in_transaction(_op)
    if pending.status == EXPIRED:
        raise Expired(id=pending_id)
    return pending


def reject(pending_id: int, reviewer) -> PendingChange:
    """Close a pending change without applying it; starts the requester's cooldown."""
    permission_service.require_role(reviewer, REVIEWER_ROLES, PENDING_CHANGES, "reject")

    def _op():
        pending = _get(pending_id, for_update=True)
        if not pending.is_open:
            raise NotPending(id=pending_id, status=pending.status)

        _resolve(pending, REJECTED, utcnow(), reviewer)
        pending.rejection_count = (pending.rejection_count or 0) + 1
        audit_service.record(
            "reject", PENDING_CHANGES, pending.id, reviewer,
            {
                "target_collection": pending.target_collection,
                "target_id": pending.target_id,
                "field": pending.field,
                "rejection_count": pending.rejection_count,
            },
        )
        _publish(pending, "rejected")
        return pending

    return run_in_transaction(_op)


def withdraw(pending_id: int, requester) -> PendingChange:
    """Let the original requester take back an open proposal."""
    owner_id = _get(pending_id).requested_by_user_id
    if owner_id != requester.id:
        raise permission_service.deny(
            requester, PENDING_CHANGES, "withdraw", "Only the requester can withdraw a pending change"
        )

    def _op():
        pending = _get(pending_id, for_update=True)
        if not pending.is_open:
            raise NotPending(id=pending_id, status=pending.status)

        _resolve(pending, WITHDRAWN, utcnow())
        audit_service.record(
            "withdraw", PENDING_CHANGES, pending.id, requester,
            {
                "target_collection": pending.target_collection,
                "target_id": pending.target_id,
                "field": pending.field,
            },
        )
        _publish(pending, "withdrawn")
        return pending

    return run_in_transaction(_op)


def expire_sweep(now: datetime | None = None) -> int:
    """
    Transition every open entry with expires_at <= now to expired.

    Idempotent: the UPDATE is conditional on status = 'pending', so a second
    run (or a concurrent one) matches nothing already resolved.
    """
    now = now or utcnow()

    def _op():
        due = [
            pending_id for (pending_id,) in db.session.query(PendingChange.id)
            .filter(PendingChange.status == PENDING, PendingChange.expires_at <= now)
            .all()
        ]
        if not due:
            return 0

        count = (
            db.session.query(PendingChange)
            .filter(PendingChange.id.in_(due), PendingChange.status == PENDING)
            .update(
                {PendingChange.status: EXPIRED, PendingChange.status_updated_at: now},
                synchronize_session=False,
            )
        )
        for pending in db.session.query(PendingChange).filter(PendingChange.id.in_(due)).populate_existing():
            _publish(pending, "expired")
        return count

    count = run_in_transaction(_op)
    if count:
        logger.info("Expired %d pending change(s)", count)
    return count


def void_all_for_target(collection: str, target_id: int, actor, *, commit: bool = True) -> int:
    """
    Reject every open entry for a record that is being deleted.

    Runs inside the soft delete's transaction (commit=False) so no approval
    can later apply to a record that is gone. Voided entries carry
    resolution_reason='target_deleted' and do not count as a reviewer's
    rejection (no rejection_count bump, no cooldown).
    """
    def _op():
        open_entries = lock_for_update(
            db.session.query(PendingChange).filter(
                PendingChange.target_collection == collection,
                PendingChange.target_id == target_id,
                PendingChange.status == PENDING,
            )
        ).all()

        now = utcnow()
        for pending in open_entries:
            _resolve(pending, REJECTED, now, actor)
            pending.resolution_reason = REASON_TARGET_DELETED
            audit_service.record(
                "reject", PENDING_CHANGES, pending.id, actor,
                {
                    "target_collection": collection,
                    "target_id": target_id,
                    "field": pending.field,
                    "reason": REASON_TARGET_DELETED,
                },
            )
            _publish(pending, "rejected")
        return len(open_entries)

    return transactional(_op, commit=commit)


# =============================================================================
# READS
# =============================================================================

def get_pending(pending_id: int, viewer=None) -> PendingChange:
    pending = _get(pending_id)
    if viewer is not None and viewer.role not in REVIEWER_ROLES and pending.requested_by_user_id != viewer.id:
        raise NotFound(f"Pending change {pending_id} not found", id=pending_id)
    return pending


def list_pendings(viewer, status: str | None = None, *, mine_only: bool = False) -> list[PendingChange]:
    """
    Newest-first pending changes visible to viewer.

    Reviewers see every entry; other roles only their own.
    """
    if status is not None and status not in PENDING_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PENDING_STATUSES)}", field="status")

    query = db.session.query(PendingChange)
    if mine_only or viewer.role not in REVIEWER_ROLES:
        query = query.filter(PendingChange.requested_by_user_id == viewer.id)
    if status is not None:
        query = query.filter(PendingChange.status == status)
    return query.order_by(PendingChange.requested_at.desc(), PendingChange.id.desc()).all()


def pending_for_field(collection: str, target_id: int, field: str) -> PendingChange | None:
    """The open entry for a field, if any."""
    return (
        db.session.query(PendingChange)
        .filter(
            PendingChange.target_collection == collection,
            PendingChange.target_id == target_id,
            PendingChange.field == field,
            PendingChange.status == PENDING,
        )
        .first()
    )


def pendings_for_target(collection: str, target_id: int) -> list[PendingChange]:
    if collection not in RECORD_COLLECTIONS:
        raise ValidationError(f"Unknown collection: {collection}", field="collection")
    return (
        db.session.query(PendingChange)
        .filter(PendingChange.target_collection == collection, PendingChange.target_id == target_id)
        .order_by(PendingChange.requested_at.desc(), PendingChange.id.desc())
        .all()
    )


def unread_count(viewer) -> int:
    """Open entries the viewer can see (badge count)."""
    query = db.session.query(PendingChange).filter(PendingChange.status == PENDING)
    if viewer.role not in REVIEWER_ROLES:
        query = query.filter(PendingChange.requested_by_user_id == viewer.id)
    return query.count()
