"""
Pytest fixtures for OrderDesk backend tests.

Provides an in-memory app with seeded columns and role permissions, a
frozen clock, one user per role, and test client helpers.
"""

from datetime import datetime

import pytest

from orderdesk import create_app
from orderdesk.extensions import db
from orderdesk.permissions import Roles
from orderdesk.services import column_service, record_service
from orderdesk.services.auth_service import create_user
from orderdesk.time_utils import FrozenClock


START = datetime(2026, 1, 15, 12, 0, 0)
PASSWORD = "Password123!"


def _app_with_schema(database_uri):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': database_uri,
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_LOG_ROUNDS': 4,
        'TX_RETRY_BACKOFF_SECONDS': 0,
    })
    app.extensions['clock'] = FrozenClock(START)

    with app.app_context():
        db.create_all()
        column_service.seed_defaults()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def app():
    """Create application for testing (fresh schema per test)."""
    yield from _app_with_schema('sqlite:///:memory:')


@pytest.fixture(scope='function')
def disk_app(tmp_path):
    """
    Same app on a SQLite file, so a second connection is a real second writer.

    Override `app` with this fixture in tests that race two connections.
    """
    yield from _app_with_schema(f"sqlite:///{tmp_path / 'orderdesk.db'}")


@pytest.fixture(scope='function')
def clock(app):
    return app.extensions['clock']


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


def _user(email, name, role):
    return create_user(email, PASSWORD, name, role, email_verified=True)


@pytest.fixture(scope='function')
def super_admin(app):
    return _user("admin@orderdesk.test", "Admin", Roles.SUPER_ADMIN)


@pytest.fixture(scope='function')
def manager(app):
    return _user("manager@orderdesk.test", "Manager", Roles.MANAGER)


@pytest.fixture(scope='function')
def sr_sales(app):
    return _user("senior@orderdesk.test", "Senior Sales", Roles.SR_SALES)


@pytest.fixture(scope='function')
def jr_sales(app):
    return _user("junior@orderdesk.test", "Junior Sales", Roles.JR_SALES)


@pytest.fixture(scope='function')
def order(app, manager):
    """Order at version 1 with a price and a customer."""
    return record_service.create_record(
        "orders", {"customer": "Acme", "price": 100}, manager, month="2026-01"
    )


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password,
    })
    if response.status_code == 200:
        return response.get_json().get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
