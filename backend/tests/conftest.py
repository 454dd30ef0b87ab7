"""
Pytest fixtures for OrderDesk backend tests.

Provides the test database, seeded roles and policies, one user per role,
actor contexts for service calls and bearer headers for API calls.
"""

import pytest

from orderdesk import create_app
from orderdesk.extensions import db
from orderdesk.services import editable_status_service, permission_service, session_service, state_machine
from orderdesk.services import order_service
from orderdesk.services.auth_service import create_default_roles, create_user
from orderdesk.services.context import ActorContext
from orderdesk.validation import ItemInput


PASSWORD = "Password123"

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "BCRYPT_ROUNDS": 4,
    "LOG_LEVEL": "WARNING",
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def setup_roles(db_session):
    """Setup default roles, permissions and editable status policies."""
    create_default_roles()
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions()
    editable_status_service.seed_default_policies()
    db_session.commit()


def _make_user(username: str, role_name: str):
    return create_user(username, f"{username}@orderdesk.test", PASSWORD, role_name=role_name)


@pytest.fixture(scope='function')
def admin_user(setup_roles):
    return _make_user("admin", "admin")


@pytest.fixture(scope='function')
def manager_user(setup_roles):
    return _make_user("manager", "manager")


@pytest.fixture(scope='function')
def seller_user(setup_roles):
    return _make_user("seller", "seller")


@pytest.fixture(scope='function')
def other_seller(setup_roles):
    return _make_user("seller2", "seller")


@pytest.fixture(scope='function')
def admin_actor(admin_user):
    return ActorContext(user_id=admin_user.id, ip_address="127.0.0.1")


@pytest.fixture(scope='function')
def manager_actor(manager_user):
    return ActorContext(user_id=manager_user.id, ip_address="127.0.0.1")


@pytest.fixture(scope='function')
def seller_actor(seller_user):
    return ActorContext(user_id=seller_user.id, ip_address="127.0.0.1")


@pytest.fixture(scope='function')
def other_seller_actor(other_seller):
    return ActorContext(user_id=other_seller.id, ip_address="127.0.0.1")


def _headers_for(user) -> dict:
    _, token = session_service.create_session(user.id, user_agent="pytest", ip_address="127.0.0.1")
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return _headers_for(admin_user)


@pytest.fixture(scope='function')
def manager_headers(manager_user):
    return _headers_for(manager_user)


@pytest.fixture(scope='function')
def seller_headers(seller_user):
    return _headers_for(seller_user)


def sample_items() -> list[ItemInput]:
    """Subtotal 13000: one 10000 line and three 1000 lines."""
    return [
        ItemInput(description="Printed banner", quantity=1, unit_price_cents=10000),
        ItemInput(description="Flyers (pack)", quantity=3, unit_price_cents=1000),
    ]


def advance_order(order_id: int, actor: ActorContext, *statuses: str):
    order = None
    for status in statuses:
        order = order_service.change_status(order_id, status, actor)
    return order


@pytest.fixture(scope='function')
def draft_order(seller_actor):
    return order_service.create_order(seller_actor, sample_items(), client_name="Acme Print")


@pytest.fixture(scope='function')
def confirmed_order(draft_order, admin_actor):
    return advance_order(draft_order.id, admin_actor, state_machine.CONFIRMED)


@pytest.fixture(scope='function')
def ready_order(draft_order, admin_actor):
    return advance_order(
        draft_order.id,
        admin_actor,
        state_machine.CONFIRMED,
        state_machine.IN_PRODUCTION,
        state_machine.READY,
    )


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
