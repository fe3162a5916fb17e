"""
Role-checked mutation tests.

Verifies:
- Direct edits for editable columns, pending changes for approval columns
- Projections only carry visible fields
- Delete, recover and purge are limited to their roles
"""

import pytest

from orderdesk.errors import Forbidden, VersionConflict
from orderdesk.models.workflow import PENDING
from orderdesk.services import mutation_service, pending_service, record_service


class TestEditField:

    def test_editable_column_is_written(self, order, sr_sales):
        outcome = mutation_service.edit_field("orders", order.id, "customer", "Globex", 1, sr_sales)
        assert outcome.applied
        assert outcome.version == 2
        assert outcome.pending is None

    def test_approval_column_becomes_pending(self, order, sr_sales):
        outcome = mutation_service.edit_field("orders", order.id, "price", 150, 1, sr_sales)

        assert not outcome.applied
        assert outcome.version == 1
        assert outcome.pending.status == PENDING
        assert outcome.pending.base_value == 100
        assert record_service.get_record("orders", order.id).dynamic_fields["price"] == 100

    def test_approval_on_stale_version(self, order, sr_sales, manager):
        record_service.update_field("orders", order.id, "customer", "Globex", 1, manager)
        with pytest.raises(VersionConflict):
            mutation_service.edit_field("orders", order.id, "price", 150, 1, sr_sales)
        assert pending_service.pending_for_field("orders", order.id, "price") is None

    def test_read_only_column(self, order, jr_sales):
        with pytest.raises(Forbidden):
            mutation_service.edit_field("orders", order.id, "product", "Widget", 1, jr_sales)

    def test_invisible_column(self, order, jr_sales):
        with pytest.raises(Forbidden):
            mutation_service.edit_field("orders", order.id, "price", 1, 1, jr_sales)

    def test_sales_cannot_change_status(self, order, sr_sales):
        with pytest.raises(Forbidden):
            mutation_service.change_status("orders", order.id, "completed", 1, sr_sales)

    def test_manager_changes_status(self, order, manager):
        assert mutation_service.change_status("orders", order.id, "completed", 1, manager) == 2


class TestCreate:

    def test_approval_fields_refused_at_creation(self, app, sr_sales):
        with pytest.raises(Forbidden):
            mutation_service.create_record("orders", {"customer": "Acme", "price": 5}, sr_sales)

    def test_editable_fields_accepted(self, app, sr_sales):
        record = mutation_service.create_record("orders", {"customer": "Acme"}, sr_sales, month="2026-01")
        assert record.created_by_user_id == sr_sales.id


class TestProjection:

    def test_hidden_fields_are_dropped(self, order, jr_sales):
        data = mutation_service.get_record("orders", order.id, jr_sales)
        assert data["dynamic_fields"] == {"customer": "Acme"}
        assert data["version"] == 1

    def test_list_for_sales(self, order, manager, sr_sales):
        rows = mutation_service.list_records("orders", sr_sales, month="2026-01")
        assert [row["id"] for row in rows] == [order.id]
        assert rows[0]["dynamic_fields"] == {"customer": "Acme", "price": 100}

    def test_accessible_collections(self, app, sr_sales, manager):
        assert mutation_service.accessible_collections(sr_sales) == ["orders"]
        assert mutation_service.accessible_collections(manager) == ["orders", "costs"]


class TestLifecycleRoles:

    def test_sales_cannot_delete(self, order, sr_sales):
        with pytest.raises(Forbidden):
            mutation_service.delete_record("orders", order.id, sr_sales)
        assert not record_service.get_record("orders", order.id, include_deleted=True).is_deleted

    def test_recycle_bin_is_for_managers(self, order, manager, sr_sales):
        mutation_service.delete_record("orders", order.id, manager)
        assert [r["id"] for r in mutation_service.list_records("orders", manager, deleted=True)] == [order.id]
        with pytest.raises(Forbidden):
            mutation_service.list_records("orders", sr_sales, deleted=True)

    def test_manager_cannot_purge(self, order, manager, clock):
        mutation_service.delete_record("orders", order.id, manager)
        clock.advance(days=31)
        with pytest.raises(Forbidden):
            mutation_service.purge_record("orders", order.id, manager)

    def test_super_admin_purges(self, order, manager, super_admin, clock):
        mutation_service.delete_record("orders", order.id, manager)
        clock.advance(days=31)
        mutation_service.purge_record("orders", order.id, super_admin)
        assert record_service.list_records("orders", include_deleted=True) == []

    def test_changes_feed_tombstones(self, order, manager, sr_sales, clock):
        cursor = clock.now()
        clock.advance(minutes=1)
        mutation_service.delete_record("orders", order.id, manager)

        assert mutation_service.changes_since("orders", cursor, sr_sales) == [
            {"id": order.id, "collection": "orders", "version": 2, "deleted": True}
        ]
        full = mutation_service.changes_since("orders", cursor, manager)
        assert full[0]["deleted_at"] is not None
