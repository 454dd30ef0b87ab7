"""
Unit-of-work tests: transactions, retries and post-commit hooks.

Verifies:
- Hooks run only after a successful commit
- A failing hook is isolated from the other hooks and from committed data
- Lock conflicts are retried, then surfaced as ConflictError
- Audit writes are best-effort
"""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from orderdesk.errors import ConflictError, ValidationError
from orderdesk.models import AuditLog, Notification, OrderEditRequest
from orderdesk.services import audit_service, notification_service
from orderdesk.services.approval_workflows import order_edit_workflow
from orderdesk.services.concurrency import run_in_transaction
from orderdesk.services.hooks import PostCommitHooks


class TestPostCommitHooks:

    def test_failing_hook_does_not_stop_the_others(self, db_session):
        ran = []

        def broken():
            raise RuntimeError("boom")

        hooks = PostCommitHooks()
        hooks.add("first", ran.append, "first")
        hooks.add("broken", broken)
        hooks.add("last", ran.append, "last")

        results = hooks.run()

        assert ran == ["first", "last"]
        assert [(r.name, r.ok) for r in results] == [("first", True), ("broken", False), ("last", True)]
        assert results[1].error == "boom"
        assert len(hooks) == 0

    def test_hooks_run_after_commit(self, db_session):
        ran = []

        def _op(hooks):
            hooks.add("record", ran.append, "done")
            assert ran == []
            return 42

        assert run_in_transaction(_op) == 42
        assert ran == ["done"]

    def test_hooks_skipped_when_transaction_fails(self, db_session):
        ran = []

        def _op(hooks):
            hooks.add("record", ran.append, "done")
            raise ValidationError("nope")

        with pytest.raises(ValidationError):
            run_in_transaction(_op)
        assert ran == []

    def test_notification_failure_keeps_the_request(self, monkeypatch, db_session, confirmed_order, seller_actor):
        def broken_notify(*args, **kwargs):
            raise RuntimeError("notification store unavailable")

        monkeypatch.setattr(notification_service, "notify_all_privileged_users", broken_notify)

        edit_request = order_edit_workflow.request(confirmed_order.id, seller_actor)

        assert db_session.get(OrderEditRequest, edit_request.id).status == "PENDING"
        assert db_session.query(Notification).count() == 0
        # The audit hook queued after the failing one still ran
        assert audit_service.list_for_resource("order_edit_requests", edit_request.id)


class TestRetries:

    def test_transient_lock_is_retried(self, db_session):
        attempts = []

        def _op(hooks):
            attempts.append(1)
            if len(attempts) == 1:
                raise OperationalError("UPDATE orders", {}, Exception("database is locked"))
            return "ok"

        assert run_in_transaction(_op, backoff_base=0) == "ok"
        assert len(attempts) == 2

    def test_exhausted_retries_become_conflict(self, db_session):
        attempts = []

        def _op(hooks):
            attempts.append(1)
            raise StaleDataError("version mismatch")

        with pytest.raises(ConflictError):
            run_in_transaction(_op, attempts=3, backoff_base=0)
        assert len(attempts) == 3


class TestAudit:

    def test_log_change_records_actor(self, db_session, admin_actor):
        entry = audit_service.log_change("UPDATE", "order", 7, {"status": "DRAFT"}, {"status": "CONFIRMED"}, admin_actor)

        assert entry.actor_user_id == admin_actor.user_id
        assert entry.ip_address == "127.0.0.1"
        assert entry.to_dict()["after"] == {"status": "CONFIRMED"}

    def test_log_change_failure_is_swallowed(self, db_session):
        # Sets are not JSON serializable
        assert audit_service.log_change("UPDATE", "order", 7, None, {"bad": {1, 2}}) is None
        assert db_session.query(AuditLog).count() == 0
