"""
Grant expiry sweep and scheduler tests.

Verifies:
- Due edit grants flip to EXPIRED and their holders are notified
- Holders get an "expiring soon" warning inside the warning window
- A failed notification never blocks the sweep or the status flip
- The scheduler loop survives a failing sweep
"""

import threading
from datetime import timedelta

import pytest

from orderdesk.models import Notification
from orderdesk.scheduler import ExpiryScheduler
from orderdesk.services import expiry_service, notification_service
from orderdesk.services.approval_service import APPROVED, EXPIRED
from orderdesk.services.approval_workflows import order_edit_workflow
from orderdesk.time_utils import utcnow


@pytest.fixture
def approved_at():
    return utcnow()


@pytest.fixture
def edit_grant(confirmed_order, seller_actor, admin_actor, approved_at):
    edit_request = order_edit_workflow.request(confirmed_order.id, seller_actor)
    return order_edit_workflow.approve(edit_request.id, admin_actor, now=approved_at)


def _types_for(db_session, user_id):
    return [
        n.type
        for n in db_session.query(Notification).filter_by(user_id=user_id).order_by(Notification.id).all()
    ]


class TestExpireGrants:

    def test_nothing_due(self, edit_grant, approved_at):
        result = expiry_service.expire_grants(approved_at + timedelta(minutes=4, seconds=59))

        assert result.processed == 0
        assert order_edit_workflow.get_request(edit_grant.id).status == APPROVED

    def test_due_grant_expires_and_holder_is_notified(self, db_session, edit_grant, approved_at, seller_user):
        result = expiry_service.expire_grants(approved_at + timedelta(minutes=5, seconds=1))

        assert result.to_dict() == {"processed": 1, "notified": 1, "failed": 0, "request_ids": [edit_grant.id]}
        assert order_edit_workflow.get_request(edit_grant.id).status == EXPIRED
        assert _types_for(db_session, seller_user.id)[-1] == notification_service.EDIT_PERMISSION_EXPIRED

    def test_sweep_is_idempotent(self, edit_grant, approved_at):
        later = approved_at + timedelta(minutes=6)
        assert expiry_service.expire_grants(later).processed == 1
        assert expiry_service.expire_grants(later).processed == 0

    def test_failed_notification_is_isolated(
        self, monkeypatch, confirmed_order, seller_actor, other_seller_actor, admin_actor, approved_at
    ):
        grants = []
        for actor in (seller_actor, other_seller_actor):
            edit_request = order_edit_workflow.request(confirmed_order.id, actor)
            grants.append(order_edit_workflow.approve(edit_request.id, admin_actor, now=approved_at).id)

        real_notify = notification_service.notify

        def flaky_notify(user_id, *args, **kwargs):
            if user_id == seller_actor.user_id:
                raise RuntimeError("mail relay down")
            return real_notify(user_id, *args, **kwargs)

        monkeypatch.setattr(notification_service, "notify", flaky_notify)

        result = expiry_service.expire_grants(approved_at + timedelta(minutes=10))

        assert result.processed == 2
        assert result.notified == 1
        assert result.failed == 1
        assert all(order_edit_workflow.get_request(gid).status == EXPIRED for gid in grants)


class TestExpiringWarnings:

    def test_warns_inside_window(self, db_session, edit_grant, approved_at, seller_user):
        result = expiry_service.warn_expiring_grants(approved_at + timedelta(minutes=4, seconds=30))

        assert result.processed == 1
        assert result.notified == 1
        last = (
            db_session.query(Notification)
            .filter_by(user_id=seller_user.id)
            .order_by(Notification.id.desc())
            .first()
        )
        assert last.type == notification_service.EDIT_PERMISSION_EXPIRING
        assert "30 seconds" in last.message
        # Warnings never change the grant
        assert order_edit_workflow.get_request(edit_grant.id).status == APPROVED

    def test_no_warning_outside_window(self, edit_grant, approved_at):
        assert expiry_service.warn_expiring_grants(approved_at + timedelta(minutes=3)).processed == 0

    def test_run_sweep_reports_both_passes(self, edit_grant, approved_at):
        results = expiry_service.run_sweep(approved_at + timedelta(minutes=7))

        assert set(results) == {"expired", "expiring"}
        assert results["expired"].processed == 1
        assert results["expiring"].processed == 0


class TestExpiryScheduler:

    def test_run_once_returns_sweep_result(self, app, monkeypatch):
        calls = []

        def fake_sweep(now=None):
            calls.append(now)
            return {"expired": expiry_service.SweepResult(), "expiring": expiry_service.SweepResult()}

        monkeypatch.setattr(expiry_service, "run_sweep", fake_sweep)
        scheduler = ExpiryScheduler(app, interval_seconds=5)

        results = scheduler.run_once("sentinel")

        assert calls == ["sentinel"]
        assert results["expired"].processed == 0

    def test_failing_sweep_is_logged_not_raised(self, app, monkeypatch):
        def broken_sweep(now=None):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(expiry_service, "run_sweep", broken_sweep)

        ExpiryScheduler(app)._tick()

    def test_interval_defaults_to_config(self, app):
        assert ExpiryScheduler(app).interval_seconds == app.config["EXPIRY_SWEEP_INTERVAL_SECONDS"]

    def test_start_and_stop(self, app, monkeypatch):
        swept = threading.Event()

        def fake_sweep(now=None):
            swept.set()
            return {}

        monkeypatch.setattr(expiry_service, "run_sweep", fake_sweep)
        scheduler = ExpiryScheduler(app, interval_seconds=3600)

        scheduler.start()
        assert swept.wait(timeout=5)
        assert scheduler.running
        scheduler.stop(timeout=5)

        assert not scheduler.running
