"""
Login guard tests.

Verifies:
- Five failures inside the window lock the identity for a full window
- The window slides: old attempts age out
- The challenge signal starts before the lockout
- Success clears the history
"""

import pytest

from orderdesk.errors import AuthenticationFailed, RateLimited
from orderdesk.extensions import db
from orderdesk.models import LoginAttempt, SecurityEvent
from orderdesk.services import auth_service, login_throttle_service

from conftest import PASSWORD


def _fail(identity="u1"):
    return login_throttle_service.record_failed_attempt(identity)


class TestRateLimit:

    def test_fresh_identity_is_allowed(self, app):
        status = login_throttle_service.check_rate_limit("u1")
        assert status.allowed
        assert status.failed_attempts == 0
        assert not status.challenge_required

    def test_lockout_after_five_failures(self, app):
        for _ in range(5):
            _fail()

        status = login_throttle_service.check_rate_limit("u1")
        assert not status.allowed
        assert status.remaining_minutes == 15

        with pytest.raises(RateLimited) as excinfo:
            login_throttle_service.require_not_rate_limited("u1")
        assert excinfo.value.remaining_minutes == 15

    def test_remaining_minutes_round_up(self, app, clock):
        for _ in range(5):
            _fail()
        login_throttle_service.check_rate_limit("u1")

        clock.advance(minutes=4, seconds=30)
        assert login_throttle_service.check_rate_limit("u1").remaining_minutes == 11

    def test_allowed_after_window(self, app, clock):
        for _ in range(5):
            _fail()
        assert not login_throttle_service.check_rate_limit("u1").allowed

        clock.advance(minutes=15)
        status = login_throttle_service.check_rate_limit("u1")
        assert status.allowed
        assert status.failed_attempts == 0

    def test_window_slides(self, app, clock):
        for _ in range(4):
            _fail()
        clock.advance(minutes=10)
        _fail()
        # Five in the last 15 minutes
        assert not login_throttle_service.check_rate_limit("u1").allowed

    def test_old_attempts_age_out(self, app, clock):
        for _ in range(4):
            _fail()
        clock.advance(minutes=16)
        assert _fail() == 1
        assert db.session.query(LoginAttempt).count() == 1
        assert login_throttle_service.check_rate_limit("u1").allowed

    def test_identities_are_independent(self, app):
        for _ in range(5):
            _fail("u1")
        assert login_throttle_service.check_rate_limit("u2").allowed

    def test_identity_is_case_insensitive(self, app):
        for _ in range(5):
            _fail("U1@Example.com")
        assert not login_throttle_service.check_rate_limit("u1@example.com").allowed

    def test_origin_scoped_throttle(self, app):
        for _ in range(5):
            login_throttle_service.record_failed_attempt("u1", "10.0.0.1")
        assert not login_throttle_service.check_rate_limit("u1", "10.0.0.1").allowed
        assert login_throttle_service.check_rate_limit("u1", "10.0.0.2").allowed

    def test_challenge_threshold(self, app):
        for _ in range(2):
            _fail()
        assert not login_throttle_service.check_rate_limit("u1").challenge_required
        _fail()
        status = login_throttle_service.check_rate_limit("u1")
        assert status.allowed
        assert status.challenge_required

    def test_clear(self, app):
        for _ in range(5):
            _fail()
        login_throttle_service.check_rate_limit("u1")
        login_throttle_service.clear("u1")
        assert login_throttle_service.check_rate_limit("u1").allowed

    def test_lockout_status_is_read_only(self, app):
        for _ in range(5):
            _fail()
        status = login_throttle_service.get_lockout_status("u1")
        assert status["failed_attempts"] == 5
        assert status["locked"] is False

    def test_failures_are_security_events(self, app):
        _fail()
        event = db.session.query(SecurityEvent).filter_by(event_type="LOGIN_FAILED").one()
        assert event.action == "u1"


class TestLoginFlow:

    def test_sixth_attempt_is_rate_limited(self, app, sr_sales):
        for _ in range(5):
            with pytest.raises(AuthenticationFailed):
                auth_service.login(sr_sales.email, "wrong")

        with pytest.raises(RateLimited) as excinfo:
            auth_service.login(sr_sales.email, PASSWORD)
        assert excinfo.value.remaining_minutes == 15

    def test_rate_limited_login_is_not_counted(self, app, sr_sales):
        for _ in range(5):
            with pytest.raises(AuthenticationFailed):
                auth_service.login(sr_sales.email, "wrong")
        with pytest.raises(RateLimited):
            auth_service.login(sr_sales.email, "wrong")
        assert db.session.query(LoginAttempt).count() == 5

    def test_login_after_window(self, app, sr_sales, clock):
        for _ in range(5):
            with pytest.raises(AuthenticationFailed):
                auth_service.login(sr_sales.email, "wrong")
        clock.advance(minutes=15)

        result = auth_service.login(sr_sales.email, PASSWORD)
        assert result.user.id == sr_sales.id
        assert db.session.query(LoginAttempt).count() == 0

    def test_challenge_reported_on_third_failure(self, app, sr_sales):
        for attempt in range(1, 4):
            with pytest.raises(AuthenticationFailed) as excinfo:
                auth_service.login(sr_sales.email, "wrong")
            assert excinfo.value.details["challenge_required"] is (attempt >= 3)
