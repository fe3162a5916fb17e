"""
Pending change workflow tests.

Verifies:
- Approval applies the field and bumps the record version once
- Reject and withdraw leave the record untouched
- One open entry per (collection, target, field)
- Expiry is inclusive of the boundary and the sweep is idempotent
- Deleting the target voids open entries in the same transaction
- Stale approvals need an explicit acknowledgement
"""

import pytest
from sqlalchemy.exc import IntegrityError

from orderdesk.errors import (
    CooldownActive,
    DuplicatePending,
    Expired,
    Forbidden,
    NotFound,
    NotPending,
    RecordLocked,
    StaleBase,
)
from orderdesk.extensions import db
from orderdesk.models import AuditLog, PendingChange
from orderdesk.models.workflow import APPROVED, EXPIRED, PENDING, REASON_TARGET_DELETED, REJECTED, WITHDRAWN
from orderdesk.services import mutation_service, pending_service, record_service


def _propose(order, requester, value=150, field="price"):
    return pending_service.propose("orders", order.id, field, 100, order.version, value, requester)


# =============================================================================
# ROUND TRIP
# =============================================================================


class TestApprove:

    def test_approve_applies_field(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)
        assert pending.status == PENDING
        assert pending.base_version == 1

        approved = pending_service.approve(pending.id, manager)

        assert approved.status == APPROVED
        assert approved.reviewed_by_user_id == manager.id
        record = record_service.get_record("orders", order.id)
        assert record.dynamic_fields["price"] == 150
        assert record.version == 2

    def test_approve_is_audited_on_both_targets(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)
        pending_service.approve(pending.id, manager)

        record_entry = db.session.query(AuditLog).filter_by(
            target_collection="orders", action="update"
        ).one()
        assert record_entry.actor_user_id == manager.id
        pending_entry = db.session.query(AuditLog).filter_by(
            target_collection="pending_changes", action="approve"
        ).one()
        assert pending_entry.target_id == str(pending.id)
        assert pending_entry.details["version"] == 2

    def test_sales_cannot_approve(self, order, sr_sales, jr_sales):
        pending = _propose(order, sr_sales)
        with pytest.raises(Forbidden):
            pending_service.approve(pending.id, jr_sales)
        assert pending_service.get_pending(pending.id).status == PENDING

    def test_approve_resolved_entry(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)
        pending_service.approve(pending.id, manager)
        with pytest.raises(NotPending):
            pending_service.approve(pending.id, manager)
        assert record_service.get_record("orders", order.id).version == 2

    def test_approve_missing(self, app, manager):
        with pytest.raises(NotFound):
            pending_service.approve(999, manager)


class TestRejectAndWithdraw:

    def test_reject_leaves_record_unchanged(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)
        rejected = pending_service.reject(pending.id, manager)

        assert rejected.status == REJECTED
        assert rejected.rejection_count == 1
        record = record_service.get_record("orders", order.id)
        assert record.version == 1
        assert record.dynamic_fields["price"] == 100

    def test_withdraw_leaves_record_unchanged(self, order, sr_sales):
        pending = _propose(order, sr_sales)
        withdrawn = pending_service.withdraw(pending.id, sr_sales)

        assert withdrawn.status == WITHDRAWN
        assert record_service.get_record("orders", order.id).version == 1

    def test_only_requester_withdraws(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)
        with pytest.raises(Forbidden):
            pending_service.withdraw(pending.id, manager)
        assert pending_service.get_pending(pending.id).status == PENDING

    def test_terminal_states_are_final(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)
        pending_service.withdraw(pending.id, sr_sales)
        with pytest.raises(NotPending):
            pending_service.reject(pending.id, manager)
        with pytest.raises(NotPending):
            pending_service.withdraw(pending.id, sr_sales)


# =============================================================================
# UNIQUENESS
# =============================================================================


class TestUniqueness:

    def test_second_open_entry_refused(self, order, sr_sales, jr_sales):
        first = _propose(order, sr_sales)
        with pytest.raises(DuplicatePending) as excinfo:
            pending_service.propose("orders", order.id, "price", 100, 1, 175, sr_sales)
        assert excinfo.value.details["pending_id"] == first.id

    def test_other_field_is_independent(self, order, sr_sales):
        _propose(order, sr_sales)
        other = _propose(order, sr_sales, value="paid", field="payment_status")
        assert other.status == PENDING

    def test_new_entry_after_resolution(self, order, sr_sales):
        first = _propose(order, sr_sales)
        pending_service.withdraw(first.id, sr_sales)
        second = _propose(order, sr_sales, value=160)
        assert second.id != first.id
        assert pending_service.pending_for_field("orders", order.id, "price").id == second.id

    def test_partial_index_guards_the_insert(self, order, sr_sales):
        # Bypass the pre-check: the store itself refuses a second open row
        _propose(order, sr_sales)
        db.session.add(PendingChange(
            target_collection="orders",
            target_id=order.id,
            field="price",
            base_value=100,
            base_version=1,
            new_value=190,
            requested_by_user_id=sr_sales.id,
            requested_by_name=sr_sales.display_name,
            requested_at=order.created_at,
            status=PENDING,
            rejection_count=0,
            expires_at=order.created_at,
        ))
        with pytest.raises(IntegrityError):
            db.session.flush()
        db.session.rollback()

    def test_concurrent_proposal_loses_at_the_index(self, order, sr_sales, monkeypatch):
        # Second proposer read "no open entry" before the first one committed
        first = _propose(order, sr_sales)
        monkeypatch.setattr(pending_service, "pending_for_field", lambda *args: None)

        with pytest.raises(DuplicatePending) as excinfo:
            pending_service.propose("orders", order.id, "price", 100, 1, 175, sr_sales)
        assert excinfo.value.details["field"] == "price"

        rows = db.session.query(PendingChange).filter_by(
            target_collection="orders", target_id=order.id, field="price", status=PENDING
        ).all()
        assert [row.id for row in rows] == [first.id]
        assert rows[0].new_value == 150


# =============================================================================
# PROPOSE GUARDS
# =============================================================================


class TestProposeGuards:

    def test_sales_cannot_propose_costs(self, order, manager, sr_sales):
        cost = record_service.create_record("costs", {"price": 10}, manager)
        with pytest.raises(Forbidden):
            pending_service.propose("costs", cost.id, "price", 10, 1, 20, sr_sales)

    def test_field_outside_role_map(self, order, jr_sales):
        # price is invisible to junior sales
        with pytest.raises(Forbidden):
            _propose(order, jr_sales)

    def test_locked_target(self, order, sr_sales, manager):
        record_service.set_status("orders", order.id, "completed", 1, manager)
        with pytest.raises(RecordLocked):
            pending_service.propose("orders", order.id, "price", 100, 2, 150, sr_sales)

    def test_deleted_target(self, order, sr_sales, manager):
        record_service.soft_delete("orders", order.id, manager)
        with pytest.raises(NotFound):
            pending_service.propose("orders", order.id, "price", 100, 2, 150, sr_sales)

    def test_expiry_is_seven_days(self, order, sr_sales, clock):
        pending = _propose(order, sr_sales)
        assert pending.requested_at == clock.now()
        assert (pending.expires_at - pending.requested_at).days == 7


# =============================================================================
# EXPIRY
# =============================================================================


class TestExpiry:

    def test_sweep_at_boundary(self, order, sr_sales, clock):
        pending = _propose(order, sr_sales)
        clock.advance(days=7)

        assert pending_service.expire_sweep() == 1
        assert pending_service.get_pending(pending.id).status == EXPIRED

    def test_sweep_before_boundary(self, order, sr_sales, clock):
        pending = _propose(order, sr_sales)
        clock.advance(days=7, seconds=-1)

        assert pending_service.expire_sweep() == 0
        assert pending_service.get_pending(pending.id).status == PENDING

    def test_sweep_is_idempotent(self, order, sr_sales, clock):
        _propose(order, sr_sales)
        clock.advance(days=8)

        assert pending_service.expire_sweep() == 1
        assert pending_service.expire_sweep() == 0

    def test_sweep_leaves_resolved_entries(self, order, sr_sales, manager, clock):
        pending = _propose(order, sr_sales)
        pending_service.reject(pending.id, manager)
        clock.advance(days=8)

        assert pending_service.expire_sweep() == 0
        assert pending_service.get_pending(pending.id).status == REJECTED

    def test_approve_after_expiry(self, order, sr_sales, manager, clock):
        pending = _propose(order, sr_sales)
        clock.advance(days=7)

        with pytest.raises(Expired):
            pending_service.approve(pending.id, manager)

        assert pending_service.get_pending(pending.id).status == EXPIRED
        assert record_service.get_record("orders", order.id).version == 1


# =============================================================================
# TARGET DELETION
# =============================================================================


class TestTargetDeleted:

    def test_delete_voids_open_entries(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)

        version, voided = mutation_service.delete_record("orders", order.id, manager)

        assert (version, voided) == (2, 1)
        entry = pending_service.get_pending(pending.id)
        assert entry.status == REJECTED
        assert entry.resolution_reason == REASON_TARGET_DELETED
        assert entry.rejection_count == 0

        with pytest.raises(NotPending):
            pending_service.approve(pending.id, manager)

    def test_voiding_does_not_start_cooldown(self, order, sr_sales, manager):
        _propose(order, sr_sales)
        mutation_service.delete_record("orders", order.id, manager)
        record_service.recover("orders", order.id, manager)

        again = pending_service.propose("orders", order.id, "price", 100, 3, 150, sr_sales)
        assert again.status == PENDING
        assert again.rejection_count == 0


# =============================================================================
# STALENESS
# =============================================================================


class TestStaleBase:

    def test_stale_approval_refused(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)
        record_service.update_field("orders", order.id, "customer", "Globex", 1, manager)

        with pytest.raises(StaleBase) as excinfo:
            pending_service.approve(pending.id, manager)

        assert excinfo.value.base_version == 1
        assert excinfo.value.current_version == 2
        assert excinfo.value.current_value == 100
        assert pending_service.get_pending(pending.id).status == PENDING

    def test_acknowledged_stale_approval(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)
        record_service.update_field("orders", order.id, "customer", "Globex", 1, manager)

        approved = pending_service.approve(pending.id, manager, acknowledged_version=2)

        assert approved.status == APPROVED
        record = record_service.get_record("orders", order.id)
        assert record.version == 3
        assert record.dynamic_fields == {"customer": "Globex", "price": 150}

    def test_acknowledging_an_old_version(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)
        record_service.update_field("orders", order.id, "customer", "Globex", 1, manager)
        record_service.update_field("orders", order.id, "customer", "Initech", 2, manager)

        with pytest.raises(StaleBase):
            pending_service.approve(pending.id, manager, acknowledged_version=2)


# =============================================================================
# COOLDOWN
# =============================================================================


class TestCooldown:

    def test_reproposal_inside_cooldown(self, order, sr_sales, manager, clock):
        pending = _propose(order, sr_sales)
        pending_service.reject(pending.id, manager)
        clock.advance(minutes=20)

        with pytest.raises(CooldownActive) as excinfo:
            _propose(order, sr_sales)
        assert excinfo.value.remaining_minutes == 40

    def test_reproposal_after_cooldown_carries_count(self, order, sr_sales, manager, clock):
        pending = _propose(order, sr_sales)
        pending_service.reject(pending.id, manager)
        clock.advance(minutes=61)

        again = _propose(order, sr_sales)
        assert again.rejection_count == 1

    def test_cooldown_is_per_requester(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)
        pending_service.reject(pending.id, manager)

        # A manager may still route the field through approval explicitly
        other = pending_service.propose("orders", order.id, "price", 100, 1, 130, manager)
        assert other.status == PENDING


# =============================================================================
# READS
# =============================================================================


class TestVisibility:

    def test_sales_only_see_their_own(self, order, sr_sales, jr_sales, manager):
        mine = _propose(order, sr_sales)
        _propose(order, jr_sales, value=5, field="quantity")

        assert [p.id for p in pending_service.list_pendings(sr_sales)] == [mine.id]
        assert len(pending_service.list_pendings(manager)) == 2
        assert pending_service.unread_count(sr_sales) == 1
        assert pending_service.unread_count(manager) == 2

    def test_get_foreign_entry_is_not_found(self, order, sr_sales, jr_sales):
        pending = _propose(order, sr_sales)
        with pytest.raises(NotFound):
            pending_service.get_pending(pending.id, jr_sales)

    def test_filter_by_status(self, order, sr_sales, manager):
        pending = _propose(order, sr_sales)
        pending_service.reject(pending.id, manager)
        assert pending_service.list_pendings(manager, status=PENDING) == []
        assert [p.id for p in pending_service.list_pendings(manager, status=REJECTED)] == [pending.id]

    def test_history_for_target(self, order, sr_sales):
        first = _propose(order, sr_sales)
        pending_service.withdraw(first.id, sr_sales)
        second = _propose(order, sr_sales, value=170)
        assert {p.id for p in pending_service.pendings_for_target("orders", order.id)} == {first.id, second.id}
