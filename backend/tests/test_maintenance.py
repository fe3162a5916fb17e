"""
Maintenance job tests. Every job is safe to run twice.
"""

from datetime import timedelta

from orderdesk.extensions import db
from orderdesk.models import Order, SecurityEvent
from orderdesk.services import maintenance_service, pending_service, permission_service, record_service


class TestMaintenance:

    def test_expire_pending_changes(self, order, sr_sales, clock):
        pending_service.propose("orders", order.id, "price", 100, 1, 150, sr_sales)
        clock.advance(days=7)
        assert maintenance_service.expire_pending_changes() == 1
        assert maintenance_service.expire_pending_changes() == 0

    def test_purge_expired_records(self, order, manager, clock):
        recent = record_service.create_record("orders", {}, manager, month="2026-01")
        record_service.soft_delete("orders", order.id, manager)
        clock.advance(days=20)
        record_service.soft_delete("orders", recent.id, manager)
        clock.advance(days=11)

        assert maintenance_service.purge_expired_records() == {"orders": 1, "costs": 0}
        assert maintenance_service.purge_expired_records() == {"orders": 0, "costs": 0}
        assert db.session.get(Order, recent.id) is not None

    def test_cleanup_security_events(self, app, clock):
        permission_service.log_security_event(None, "LOGIN_FAILED", False)
        clock.advance(days=91)
        permission_service.log_security_event(None, "LOGIN_FAILED", False)

        assert maintenance_service.cleanup_security_events(retention_days=90) == 1
        assert db.session.query(SecurityEvent).count() == 1

    def test_cleanup_login_attempts(self, app, clock):
        from orderdesk.services import login_throttle_service

        login_throttle_service.record_failed_attempt("u1")
        clock.advance(minutes=15)
        assert maintenance_service.cleanup_login_attempts() == 1
