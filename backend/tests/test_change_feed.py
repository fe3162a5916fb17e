"""
Change feed tests: events are delivered after commit and never for rolled back work.
"""

import pytest

from orderdesk import change_feed
from orderdesk.errors import VersionConflict
from orderdesk.services import pending_service, record_service


def test_update_event_after_commit(order, manager):
    with change_feed.capture() as events:
        record_service.update_field("orders", order.id, "price", 110, 1, manager)

    assert [(e.collection, e.target_id, e.kind, e.version) for e in events] == [
        ("orders", order.id, "updated", 2)
    ]
    assert events[0].payload == {"field": "price"}


def test_no_event_for_refused_write(order, manager):
    with change_feed.capture() as events:
        with pytest.raises(VersionConflict):
            record_service.update_field("orders", order.id, "price", 110, 3, manager)
    assert events == []


def test_approval_emits_record_and_pending_events(order, sr_sales, manager):
    pending = pending_service.propose("orders", order.id, "price", 100, 1, 150, sr_sales)
    with change_feed.capture() as events:
        pending_service.approve(pending.id, manager)

    kinds = sorted((e.collection, e.kind) for e in events)
    assert kinds == [("orders", "updated"), ("pending_changes", "approved")]


def test_broken_subscriber_does_not_fail_the_write(order, manager):
    def _boom(sender, change, **kwargs):
        raise RuntimeError("subscriber down")

    change_feed.record_changed.connect(_boom)
    try:
        assert record_service.update_field("orders", order.id, "price", 110, 1, manager) == 2
    finally:
        change_feed.record_changed.disconnect(_boom)
