"""
Approval workflow tests (edit requests, status change requests).

Verifies:
- Request -> approve/reject happens exactly once per request
- Edit grants are time-boxed and checked by the order service
- Status change grants unlock exactly the requested target
- Duplicate, privileged and stale requests are refused
- Reviewers and requesters are notified
"""

from datetime import timedelta

import pytest

from orderdesk.errors import (
    AuthorizationRequiredError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from orderdesk.models import Notification
from orderdesk.services import notification_service, order_service, state_machine as sm
from orderdesk.services.approval_service import APPROVED, EXPIRED, PENDING, REJECTED
from orderdesk.services.approval_workflows import order_edit_workflow, order_status_workflow
from orderdesk.time_utils import utcnow
from orderdesk.validation import ItemInput


NEW_ITEM = ItemInput(description="Extra lamination", quantity=2, unit_price_cents=500)


def _notification_types(db_session, user_id):
    rows = db_session.query(Notification).filter_by(user_id=user_id).order_by(Notification.id).all()
    return [n.type for n in rows]


class TestEditRequests:

    def test_request_is_pending_and_reviewers_are_notified(self, db_session, confirmed_order, seller_actor, admin_user):
        edit_request = order_edit_workflow.request(confirmed_order.id, seller_actor, justification="Wrong size")

        assert edit_request.status == PENDING
        assert edit_request.order_id == confirmed_order.id
        assert edit_request.expires_at is None
        assert _notification_types(db_session, admin_user.id) == [notification_service.EDIT_REQUEST_PENDING]

    def test_grant_window_is_time_boxed(self, db_session, confirmed_order, seller_actor, admin_actor):
        edit_request = order_edit_workflow.request(confirmed_order.id, seller_actor)
        approved_at = utcnow()

        approved = order_edit_workflow.approve(edit_request.id, admin_actor, notes="ok", now=approved_at)
        assert approved.status == APPROVED
        assert approved.expires_at == approved_at + timedelta(minutes=5)
        assert approved.reviewed_by_user_id == admin_actor.user_id

        inside = approved_at + timedelta(minutes=4, seconds=59)
        outside = approved_at + timedelta(minutes=5, seconds=1)
        assert order_edit_workflow.has_active_grant(confirmed_order.id, seller_actor.user_id, now=inside)
        assert not order_edit_workflow.has_active_grant(confirmed_order.id, seller_actor.user_id, now=outside)

        order = order_service.add_item(confirmed_order.id, NEW_ITEM, seller_actor, now=inside)
        assert order.subtotal_cents == 14000

        with pytest.raises(AuthorizationRequiredError):
            order_service.add_item(confirmed_order.id, NEW_ITEM, seller_actor, now=outside)

        assert notification_service.EDIT_REQUEST_APPROVED in _notification_types(db_session, seller_actor.user_id)

    def test_edit_permission_reports_grant_expiry(self, confirmed_order, seller_actor, admin_actor):
        edit_request = order_edit_workflow.request(confirmed_order.id, seller_actor)
        order_edit_workflow.approve(edit_request.id, admin_actor)

        permission = order_service.get_edit_permission(confirmed_order.id, seller_actor)
        assert permission["can_edit"] is True
        assert permission["reason"] == "edit_grant"
        assert permission["expires_at"].endswith("Z")

    def test_grant_belongs_to_the_requester(self, confirmed_order, seller_actor, other_seller_actor, admin_actor):
        edit_request = order_edit_workflow.request(confirmed_order.id, seller_actor)
        order_edit_workflow.approve(edit_request.id, admin_actor)

        with pytest.raises(AuthorizationRequiredError):
            order_service.add_item(confirmed_order.id, NEW_ITEM, other_seller_actor)

    def test_second_review_is_not_found(self, confirmed_order, seller_actor, admin_actor):
        edit_request = order_edit_workflow.request(confirmed_order.id, seller_actor)
        order_edit_workflow.approve(edit_request.id, admin_actor)

        with pytest.raises(NotFoundError):
            order_edit_workflow.approve(edit_request.id, admin_actor)
        with pytest.raises(NotFoundError):
            order_edit_workflow.reject(edit_request.id, admin_actor)

    def test_reject_notifies_with_reason(self, db_session, confirmed_order, seller_actor, admin_actor):
        edit_request = order_edit_workflow.request(confirmed_order.id, seller_actor)
        rejected = order_edit_workflow.reject(edit_request.id, admin_actor, notes="Already printed")

        assert rejected.status == REJECTED
        assert rejected.expires_at is None
        assert not order_edit_workflow.has_active_grant(confirmed_order.id, seller_actor.user_id)

        last = (
            db_session.query(Notification)
            .filter_by(user_id=seller_actor.user_id)
            .order_by(Notification.id.desc())
            .first()
        )
        assert last.type == notification_service.EDIT_REQUEST_REJECTED
        assert "Already printed" in last.message

    def test_duplicate_pending_request_conflicts(self, confirmed_order, seller_actor):
        first = order_edit_workflow.request(confirmed_order.id, seller_actor)

        with pytest.raises(ConflictError) as exc_info:
            order_edit_workflow.request(confirmed_order.id, seller_actor)

        assert exc_info.value.existing_request_id == first.id
        assert exc_info.value.to_dict()["existing_request_id"] == first.id

    def test_new_request_allowed_after_decision(self, confirmed_order, seller_actor, admin_actor):
        first = order_edit_workflow.request(confirmed_order.id, seller_actor)
        order_edit_workflow.reject(first.id, admin_actor)

        second = order_edit_workflow.request(confirmed_order.id, seller_actor)
        assert second.id != first.id
        assert second.status == PENDING

    def test_privileged_requester_is_refused(self, confirmed_order, admin_actor):
        with pytest.raises(ValidationError):
            order_edit_workflow.request(confirmed_order.id, admin_actor)

    def test_draft_orders_need_no_request(self, draft_order, seller_actor):
        with pytest.raises(ValidationError):
            order_edit_workflow.request(draft_order.id, seller_actor)

    def test_policy_blocks_closed_statuses(self, ready_order, admin_actor, seller_actor):
        order_service.change_status(ready_order.id, sm.CANCELLED, admin_actor)

        with pytest.raises(ValidationError):
            order_edit_workflow.request(ready_order.id, seller_actor)

    def test_only_admins_review(self, confirmed_order, seller_actor, manager_actor):
        edit_request = order_edit_workflow.request(confirmed_order.id, seller_actor)

        with pytest.raises(AuthorizationRequiredError):
            order_edit_workflow.approve(edit_request.id, manager_actor)
        assert order_edit_workflow.get_request(edit_request.id).status == PENDING

    def test_unknown_order(self, seller_actor):
        with pytest.raises(NotFoundError):
            order_edit_workflow.request(999999, seller_actor)

    def test_queries(self, confirmed_order, seller_actor, other_seller_actor, admin_actor):
        mine = order_edit_workflow.request(confirmed_order.id, seller_actor)
        theirs = order_edit_workflow.request(confirmed_order.id, other_seller_actor)
        order_edit_workflow.approve(theirs.id, admin_actor)

        assert [r.id for r in order_edit_workflow.list_pending()] == [mine.id]
        assert [r.id for r in order_edit_workflow.list_for_requester(seller_actor.user_id)] == [mine.id]
        assert order_edit_workflow.list_for_requester(other_seller_actor.user_id, status="approved")[0].id == theirs.id
        assert {r.id for r in order_edit_workflow.list_for_resource(confirmed_order.id)} == {mine.id, theirs.id}

        with pytest.raises(ValidationError):
            order_edit_workflow.list_for_requester(seller_actor.user_id, status="LOST")

    def test_expire_due_flips_only_past_grants(self, db_session, confirmed_order, seller_actor, admin_actor):
        edit_request = order_edit_workflow.request(confirmed_order.id, seller_actor)
        approved_at = utcnow()
        order_edit_workflow.approve(edit_request.id, admin_actor, now=approved_at)

        assert order_edit_workflow.expire_due(approved_at + timedelta(minutes=4)) == []

        expired = order_edit_workflow.expire_due(approved_at + timedelta(minutes=5))
        db_session.commit()
        assert [r.id for r in expired] == [edit_request.id]
        assert order_edit_workflow.get_request(edit_request.id).status == EXPIRED


class TestStatusChangeRequests:

    def test_credit_delivery_with_approval(self, ready_order, seller_actor, admin_actor, admin_user, db_session):
        with pytest.raises(AuthorizationRequiredError):
            order_service.change_status(ready_order.id, sm.DELIVERED_ON_CREDIT, seller_actor)

        status_request = order_status_workflow.request(
            ready_order.id,
            seller_actor,
            justification="Trusted client",
            requested_status="delivered_on_credit",
            current_status=sm.READY,
        )
        assert status_request.requested_status == sm.DELIVERED_ON_CREDIT
        assert status_request.current_status == sm.READY
        assert notification_service.STATUS_CHANGE_REQUEST_PENDING in _notification_types(db_session, admin_user.id)

        approved = order_status_workflow.approve(status_request.id, admin_actor)
        assert approved.expires_at is None

        order = order_service.change_status(ready_order.id, sm.DELIVERED_ON_CREDIT, seller_actor)
        assert order.status == sm.DELIVERED_ON_CREDIT

        # Grants are not consumed
        assert order_status_workflow.get_request(status_request.id).status == APPROVED

    def test_grant_is_for_one_target(self, ready_order, seller_actor, admin_actor):
        status_request = order_status_workflow.request(
            ready_order.id, seller_actor, requested_status=sm.DELIVERED_ON_CREDIT
        )
        order_status_workflow.approve(status_request.id, admin_actor)

        assert order_status_workflow.has_active_grant(ready_order.id, seller_actor.user_id, sm.DELIVERED_ON_CREDIT)
        assert not order_status_workflow.has_active_grant(ready_order.id, seller_actor.user_id, sm.PAID)

    def test_order_moved_before_approval(self, ready_order, seller_actor, admin_actor):
        status_request = order_status_workflow.request(
            ready_order.id, seller_actor, requested_status=sm.DELIVERED_ON_CREDIT
        )
        order_service.change_status(ready_order.id, sm.CANCELLED, admin_actor)

        with pytest.raises(ConflictError):
            order_status_workflow.approve(status_request.id, admin_actor)
        assert order_status_workflow.get_request(status_request.id).status == PENDING

    def test_stale_observed_status(self, ready_order, seller_actor):
        with pytest.raises(ConflictError):
            order_status_workflow.request(
                ready_order.id,
                seller_actor,
                requested_status=sm.DELIVERED_ON_CREDIT,
                current_status=sm.IN_PRODUCTION,
            )

    def test_target_must_be_reachable(self, confirmed_order, seller_actor):
        with pytest.raises(InvalidTransitionError) as exc_info:
            order_status_workflow.request(
                confirmed_order.id, seller_actor, requested_status=sm.DELIVERED_ON_CREDIT
            )
        assert exc_info.value.allowed == [sm.CANCELLED, sm.IN_PRODUCTION]

    def test_ungated_target_is_refused(self, ready_order, seller_actor):
        with pytest.raises(ValidationError):
            order_status_workflow.request(ready_order.id, seller_actor, requested_status=sm.DELIVERED)

    def test_duplicates_are_per_target(self, ready_order, seller_actor):
        first = order_status_workflow.request(ready_order.id, seller_actor, requested_status=sm.DELIVERED_ON_CREDIT)

        with pytest.raises(ConflictError) as exc_info:
            order_status_workflow.request(ready_order.id, seller_actor, requested_status=sm.DELIVERED_ON_CREDIT)
        assert exc_info.value.existing_request_id == first.id

    def test_status_grants_never_expire(self, ready_order, seller_actor, admin_actor):
        status_request = order_status_workflow.request(
            ready_order.id, seller_actor, requested_status=sm.DELIVERED_ON_CREDIT
        )
        order_status_workflow.approve(status_request.id, admin_actor)

        assert order_status_workflow.expire_due(utcnow() + timedelta(days=365)) == []
        assert order_status_workflow.has_active_grant(
            ready_order.id, seller_actor.user_id, sm.DELIVERED_ON_CREDIT, now=utcnow() + timedelta(days=365)
        )
