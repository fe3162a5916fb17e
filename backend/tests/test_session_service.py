"""
Session lifetime tests.

The policy functions are pure; the token tests go through the store.
"""

from datetime import datetime, timedelta

from orderdesk.config import DEFAULT_POLICY
from orderdesk.extensions import db
from orderdesk.models import SessionToken
from orderdesk.services import session_service
from orderdesk.services.session_service import is_valid, start, touch


T0 = datetime(2026, 1, 1, 9, 0, 0)


class TestPolicy:

    def test_absolute_limit_is_24_hours(self):
        info = start(False, T0, DEFAULT_POLICY)
        assert info.absolute_expiry == T0 + timedelta(hours=24)

    def test_remember_me_lasts_30_days(self):
        info = start(True, T0, DEFAULT_POLICY)
        assert info.absolute_expiry == T0 + timedelta(days=30)

    def test_idle_boundary_is_still_valid(self):
        info = start(False, T0, DEFAULT_POLICY)
        assert is_valid(info, T0 + timedelta(minutes=30), DEFAULT_POLICY)
        assert not is_valid(info, T0 + timedelta(minutes=30, seconds=1), DEFAULT_POLICY)

    def test_touch_extends_idle_but_not_absolute(self):
        info = start(False, T0, DEFAULT_POLICY)
        now = T0
        for _ in range(49):
            now += timedelta(minutes=29)
            assert is_valid(info, now, DEFAULT_POLICY)
            info = touch(info, now)
        # Last touch was 19 minutes before the absolute limit
        assert not is_valid(info, T0 + timedelta(hours=24, seconds=1), DEFAULT_POLICY)

    def test_remember_me_ignores_idle(self):
        info = start(True, T0, DEFAULT_POLICY)
        assert is_valid(info, T0 + timedelta(days=3), DEFAULT_POLICY)
        assert is_valid(info, T0 + timedelta(days=30), DEFAULT_POLICY)
        assert not is_valid(info, T0 + timedelta(days=30, seconds=1), DEFAULT_POLICY)

    def test_absolute_boundary(self):
        info = start(False, T0, DEFAULT_POLICY)
        info = touch(info, T0 + timedelta(hours=23, minutes=50))
        assert is_valid(info, T0 + timedelta(hours=24), DEFAULT_POLICY)


class TestTokens:

    def test_token_is_stored_hashed(self, app, manager):
        session, token = session_service.create_session(manager)
        assert len(token) == 64
        assert session.token_hash == session_service.hash_token(token)
        assert session.token_hash != token

    def test_validate_touches_session(self, app, manager, clock):
        _, token = session_service.create_session(manager)
        clock.advance(minutes=20)
        context = session_service.validate_session(token)
        assert context.user.id == manager.id
        assert context.session.last_used_at == clock.now()

        clock.advance(minutes=20)
        assert session_service.validate_session(token) is not None

    def test_idle_session_is_revoked(self, app, manager, clock):
        session, token = session_service.create_session(manager)
        clock.advance(minutes=31)
        assert session_service.validate_session(token) is None
        stored = db.session.get(SessionToken, session.id)
        assert stored.is_revoked
        assert stored.revoked_reason == "Idle timeout"

        # Expiry is final
        clock.set(clock.now() - timedelta(minutes=31))
        assert session_service.validate_session(token) is None

    def test_deactivated_user(self, app, manager):
        _, token = session_service.create_session(manager)
        manager.is_active = False
        db.session.commit()
        assert session_service.validate_session(token) is None

    def test_revoke_all(self, app, manager):
        session_service.create_session(manager)
        session_service.create_session(manager, remember_me=True)
        assert session_service.revoke_all_user_sessions(manager.id) == 2

    def test_cleanup(self, app, manager, clock):
        session_service.create_session(manager)
        clock.advance(days=31)
        assert session_service.cleanup_expired_sessions() == 1
        assert db.session.query(SessionToken).count() == 0
