"""
Concurrency tests against a file-backed SQLite database.

Each worker thread runs in its own application context (own session and
connection), the way concurrent requests do.

Verifies:
- Concurrent number allocation yields distinct, gap-free numbers
- Concurrent duplicate approval requests leave exactly one PENDING row
"""

import threading

import pytest

from conftest import PASSWORD, TEST_CONFIG, sample_items
from orderdesk import create_app
from orderdesk.errors import ConflictError
from orderdesk.extensions import db
from orderdesk.models import OrderEditRequest
from orderdesk.services import (
    editable_status_service,
    order_service,
    permission_service,
    sequence_service,
    state_machine,
)
from orderdesk.services.approval_workflows import order_edit_workflow
from orderdesk.services.auth_service import create_default_roles, create_user
from orderdesk.services.context import ActorContext


WORKERS = 10


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        **TEST_CONFIG,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_workers(app, target):
    results = []
    errors = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            try:
                value = target()
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def test_document_sequence_concurrency(file_app):
    with file_app.app_context():
        # First use creates the row; the race under test is the UPDATE path
        first = sequence_service.issue_number("ORDER", year=2026)
    assert first == "OP-2026-0001"

    numbers, errors = _run_workers(file_app, lambda: sequence_service.issue_number("ORDER", year=2026))

    assert not errors
    assert len(numbers) == len(set(numbers)) == WORKERS
    assert sorted(numbers) == [f"OP-2026-{n:04d}" for n in range(2, WORKERS + 2)]

    with file_app.app_context():
        assert sequence_service.get_sequence("ORDER").last_number == WORKERS + 1


def test_duplicate_edit_requests_race(file_app):
    with file_app.app_context():
        create_default_roles()
        permission_service.initialize_permissions()
        permission_service.assign_default_role_permissions()
        editable_status_service.seed_default_policies()
        admin = create_user("admin", "admin@orderdesk.test", PASSWORD, role_name="admin")
        seller = create_user("seller", "seller@orderdesk.test", PASSWORD, role_name="seller")
        seller_actor = ActorContext(user_id=seller.id)

        order = order_service.create_order(seller_actor, sample_items())
        order_service.change_status(order.id, state_machine.CONFIRMED, ActorContext(user_id=admin.id))
        order_id = order.id

    created, errors = _run_workers(
        file_app,
        lambda: order_edit_workflow.request(order_id, seller_actor, justification="Fix quantities").id,
    )

    assert len(created) == 1
    assert len(errors) == WORKERS - 1
    assert all(isinstance(exc, ConflictError) for exc in errors)

    with file_app.app_context():
        pending = db.session.query(OrderEditRequest).filter_by(order_id=order_id, status="PENDING").all()
        assert [r.id for r in pending] == created
