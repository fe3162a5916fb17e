"""
HTTP API tests (Flask test client).

Verifies:
- Protected endpoints return 401 without a token
- Domain errors map to their status codes and error codes
- The edit endpoint answers 200 for direct writes and 202 for proposals
"""

import pytest

from orderdesk.extensions import db
from orderdesk.models import SecurityEvent
from orderdesk.services import record_service
from orderdesk.services.auth_service import create_user

from conftest import PASSWORD, auth_headers, get_auth_token


@pytest.fixture
def manager_headers(client, manager):
    return auth_headers(get_auth_token(client, manager.email))


@pytest.fixture
def sr_headers(client, sr_sales):
    return auth_headers(get_auth_token(client, sr_sales.email))


@pytest.fixture
def jr_headers(client, jr_sales):
    return auth_headers(get_auth_token(client, jr_sales.email))


@pytest.fixture
def admin_headers(client, super_admin):
    return auth_headers(get_auth_token(client, super_admin.email))


# =============================================================================
# AUTHENTICATION
# =============================================================================


class TestUnauthenticated:

    @pytest.mark.parametrize("method,path", [
        ("GET", "/api/orders"),
        ("GET", "/api/costs"),
        ("POST", "/api/orders"),
        ("GET", "/api/pendings"),
        ("GET", "/api/pendings/count"),
        ("GET", "/api/auth/me"),
        ("GET", "/api/admin/columns"),
        ("GET", "/api/admin/audit-logs"),
    ])
    def test_requires_auth(self, client, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_invalid_token(self, client):
        resp = client.get("/api/orders", headers=auth_headers("nope"))
        assert resp.status_code == 401


class TestAuthRoutes:

    def test_login_and_me(self, client, sr_sales):
        token = get_auth_token(client, sr_sales.email)
        resp = client.get("/api/auth/me", headers=auth_headers(token))

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["user"]["role"] == "sr_sales"
        assert data["columns"]["approval"] == ["price", "payment_status"]
        assert data["is_reviewer"] is False

    def test_bad_credentials_are_generic(self, client, sr_sales):
        resp = client.post("/api/auth/login", json={"email": sr_sales.email, "password": "nope"})
        assert resp.status_code == 401
        body = resp.get_json()
        assert body["error"] == "Invalid email or password."
        assert "reason" not in body.get("details", {})

    def test_lockout_is_429(self, client, sr_sales):
        for _ in range(5):
            client.post("/api/auth/login", json={"email": sr_sales.email, "password": "nope"})
        resp = client.post("/api/auth/login", json={"email": sr_sales.email, "password": PASSWORD})
        assert resp.status_code == 429
        assert resp.get_json()["details"]["remaining_minutes"] == 15

    def test_missing_fields(self, client):
        assert client.post("/api/auth/login", json={}).status_code == 400

    def test_register_is_disabled(self, client):
        assert client.post("/api/auth/register", json={}).status_code == 403

    def test_logout(self, client, manager):
        headers = auth_headers(get_auth_token(client, manager.email))
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_rate_limit_precheck(self, client):
        resp = client.get("/api/auth/rate-limit?email=u1@orderdesk.test")
        assert resp.status_code == 200
        assert resp.get_json()["allowed"] is True

    def test_rate_limit_precheck_per_origin(self, app, client, sr_sales):
        app.config["RATE_LIMIT_PER_ORIGIN"] = True
        for _ in range(3):
            client.post("/api/auth/login", json={"email": sr_sales.email, "password": "nope"})

        resp = client.get(f"/api/auth/rate-limit?email={sr_sales.email}")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["failed_attempts"] == 3
        assert data["challenge_required"] is True

    def test_verify_email_for_unverified_user(self, client):
        create_user("new@orderdesk.test", PASSWORD, "New Hire", "jr_sales")
        headers = auth_headers(get_auth_token(client, "new@orderdesk.test"))

        resp = client.post("/api/auth/verify-email", headers=headers)
        assert resp.status_code == 202
        event = db.session.query(SecurityEvent).filter_by(event_type="VERIFICATION_EMAIL_REQUESTED").one()
        assert event.action == "new@orderdesk.test"

    def test_verify_email_already_verified(self, client, manager):
        headers = auth_headers(get_auth_token(client, manager.email))
        resp = client.post("/api/auth/verify-email", headers=headers)
        assert resp.status_code == 200
        assert db.session.query(SecurityEvent).filter_by(
            event_type="VERIFICATION_EMAIL_REQUESTED"
        ).count() == 0


# =============================================================================
# RECORDS
# =============================================================================


class TestRecordRoutes:

    def test_create_and_list(self, client, manager_headers):
        resp = client.post(
            "/api/orders",
            json={"fields": {"customer": "Acme", "price": 100}, "month": "2026-01"},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["record"]["version"] == 1

        listed = client.get("/api/orders?month=2026-01", headers=manager_headers).get_json()
        assert listed["count"] == 1

    def test_costs_forbidden_for_sales(self, client, jr_headers):
        resp = client.get("/api/costs", headers=jr_headers)
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "forbidden"

    def test_direct_edit(self, client, order, sr_headers):
        resp = client.patch(
            f"/api/orders/{order.id}/fields/customer",
            json={"value": "Globex", "version": 1},
            headers=sr_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json() == {"applied": True, "version": 2, "pending": None}

    def test_edit_needing_approval(self, client, order, sr_headers):
        resp = client.patch(
            f"/api/orders/{order.id}/fields/price",
            json={"value": 150, "version": 1},
            headers=sr_headers,
        )
        assert resp.status_code == 202
        body = resp.get_json()
        assert body["applied"] is False
        assert body["pending"]["status"] == "pending"

    def test_version_conflict(self, client, order, manager_headers):
        client.patch(f"/api/orders/{order.id}/fields/price", json={"value": 110, "version": 1}, headers=manager_headers)
        resp = client.patch(
            f"/api/orders/{order.id}/fields/price",
            json={"value": 120, "version": 1},
            headers=manager_headers,
        )
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "version_conflict"
        assert body["details"] == {"expected": 1, "actual": 2}

    def test_version_is_required(self, client, order, manager_headers):
        resp = client.patch(f"/api/orders/{order.id}/fields/price", json={"value": 1}, headers=manager_headers)
        assert resp.status_code == 400

    def test_missing_record(self, client, manager_headers):
        resp = client.get("/api/orders/999", headers=manager_headers)
        assert resp.status_code == 404

    def test_delete_and_recover(self, client, order, manager_headers):
        resp = client.delete(f"/api/orders/{order.id}", headers=manager_headers)
        assert resp.get_json() == {"version": 2, "voided_pending_changes": 0}

        resp = client.post(f"/api/orders/{order.id}/recover", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.get_json()["version"] == 3

    def test_changes_requires_since(self, client, manager_headers):
        assert client.get("/api/orders/changes", headers=manager_headers).status_code == 400
        resp = client.get("/api/orders/changes?since=2026-01-01T00:00:00Z", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.get_json()["cursor"] == "2026-01-15T12:00:00Z"


# =============================================================================
# PENDING CHANGES
# =============================================================================


class TestPendingRoutes:

    def _propose(self, client, order, headers):
        return client.patch(
            f"/api/orders/{order.id}/fields/price",
            json={"value": 150, "version": 1},
            headers=headers,
        ).get_json()["pending"]

    def test_approve(self, client, order, sr_headers, manager_headers):
        pending = self._propose(client, order, sr_headers)
        resp = client.post(f"/api/pendings/{pending['id']}/approve", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.get_json()["pending"]["status"] == "approved"
        assert record_service.get_record("orders", order.id).dynamic_fields["price"] == 150

    def test_sales_cannot_approve(self, client, order, sr_headers):
        pending = self._propose(client, order, sr_headers)
        resp = client.post(f"/api/pendings/{pending['id']}/approve", headers=sr_headers)
        assert resp.status_code == 403

    def test_duplicate(self, client, order, sr_headers):
        self._propose(client, order, sr_headers)
        resp = client.post("/api/pendings", json={
            "target_collection": "orders",
            "target_id": order.id,
            "field": "price",
            "base_value": 100,
            "base_version": 1,
            "new_value": 175,
        }, headers=sr_headers)
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "duplicate_pending"

    def test_stale_approval(self, client, order, sr_headers, manager_headers):
        pending = self._propose(client, order, sr_headers)
        client.patch(
            f"/api/orders/{order.id}/fields/customer",
            json={"value": "Globex", "version": 1},
            headers=manager_headers,
        )

        resp = client.post(f"/api/pendings/{pending['id']}/approve", headers=manager_headers)
        assert resp.status_code == 409
        details = resp.get_json()["details"]
        assert details["current_version"] == 2

        resp = client.post(
            f"/api/pendings/{pending['id']}/approve",
            json={"acknowledged_version": 2},
            headers=manager_headers,
        )
        assert resp.status_code == 200

    def test_count_and_withdraw(self, client, order, sr_headers):
        pending = self._propose(client, order, sr_headers)
        assert client.get("/api/pendings/count", headers=sr_headers).get_json() == {"count": 1}

        resp = client.post(f"/api/pendings/{pending['id']}/withdraw", headers=sr_headers)
        assert resp.get_json()["pending"]["status"] == "withdrawn"
        assert client.get("/api/pendings/count", headers=sr_headers).get_json() == {"count": 0}


# =============================================================================
# ADMIN AND SYSTEM
# =============================================================================


class TestAdminRoutes:

    def test_manager_cannot_add_columns(self, client, manager_headers):
        resp = client.post("/api/admin/columns", json={"key": "region", "label": "Region", "type": "text"},
                           headers=manager_headers)
        assert resp.status_code == 403

    def test_super_admin_adds_column(self, client, admin_headers):
        resp = client.post("/api/admin/columns", json={"key": "region", "label": "Region", "type": "text"},
                           headers=admin_headers)
        assert resp.status_code == 201
        columns = client.get("/api/admin/columns", headers=admin_headers).get_json()["columns"]
        assert columns[-1]["key"] == "region"

    def test_audit_log(self, client, order, admin_headers):
        resp = client.get("/api/admin/audit-logs?target_collection=orders", headers=admin_headers)
        assert resp.status_code == 200
        assert [e["action"] for e in resp.get_json()["entries"]] == ["create"]


def test_health(client, app):
    resp = client.get("/api/system/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "healthy"
    assert body["checks"]["metadata"]["details"]["columns"] == 10
