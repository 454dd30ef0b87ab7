# Overview: Flask API routes for approval requests; one blueprint per workflow, built from a shared factory.

# backend/orderdesk/routes/approvals.py
"""
Approval Request API Routes

Every workflow (order edit, order status change, expense authorization)
exposes the same review surface:

    GET  /pending             REVIEW_APPROVALS  Queue of PENDING requests
    GET  /mine                any user          Requests filed by the caller (?status=)
    GET  /<id>                any user          Own request; reviewers see all
    PUT  /<id>/approve        REVIEW_APPROVALS  {"notes": "..."}
    PUT  /<id>/reject         REVIEW_APPROVALS  {"notes": "..."}

Requests are filed from the resource routes (POST /api/orders/<id>/edit-requests,
POST /api/expense-orders/<id>/auth-requests) except status change requests,
which are filed here because they carry both the observed and the target status.

Only administrators can decide; REVIEW_APPROVALS gates the endpoint and the
service re-checks the privileged role.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import current_actor, require_auth, require_permission
from ..errors import AuthorizationRequiredError, OrderDeskError, error_response
from ..services import permission_service
from ..services.approval_service import ApprovalWorkflow
from ..services.approval_workflows import order_status_workflow, WORKFLOWS
from ..validation import get_int, get_str, require_object


URL_PREFIXES = {
    "order_edit": "/api/order-edit-requests",
    "order_status_change": "/api/order-status-change-requests",
    "expense_order_auth": "/api/expense-order-auth-requests",
}


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def build_approval_blueprint(workflow: ApprovalWorkflow, url_prefix: str) -> Blueprint:
    bp = Blueprint(f"{workflow.kind}_requests", __name__, url_prefix=url_prefix)

    @bp.get("/pending")
    @require_auth
    @require_permission("REVIEW_APPROVALS")
    def list_pending_route():
        try:
            return jsonify({"requests": [r.to_dict() for r in workflow.list_pending()]}), 200
        except Exception:
            return _internal_error(f"Failed to list pending {workflow.messages.noun}s")

    @bp.get("/mine")
    @require_auth
    def list_mine_route():
        try:
            requests = workflow.list_for_requester(g.current_user.id, status=request.args.get("status"))
            return jsonify({"requests": [r.to_dict() for r in requests]}), 200
        except OrderDeskError as e:
            return error_response(e)
        except Exception:
            return _internal_error(f"Failed to list {workflow.messages.noun}s")

    @bp.get("/<int:request_id>")
    @require_auth
    def get_request_route(request_id: int):
        try:
            approval_request = workflow.get_request(request_id)
            if approval_request.requested_by_user_id != g.current_user.id and not (
                permission_service.user_has_permission(g.current_user.id, "REVIEW_APPROVALS")
            ):
                raise AuthorizationRequiredError(
                    f"You can only view your own {workflow.messages.noun}s",
                    required_permission="REVIEW_APPROVALS",
                )
            return jsonify({"request": approval_request.to_dict()}), 200
        except OrderDeskError as e:
            return error_response(e)
        except Exception:
            return _internal_error(f"Failed to get {workflow.messages.noun}")

    @bp.put("/<int:request_id>/approve")
    @require_auth
    @require_permission("REVIEW_APPROVALS")
    def approve_route(request_id: int):
        """
        Returns:
            200: APPROVED request (expires_at set for edit grants)
            404: Not found or already processed
            409: Resource moved on since the request was filed
        """
        try:
            data = require_object(request.get_json(silent=True) or {})
            approval_request = workflow.approve(
                request_id,
                current_actor(),
                notes=get_str(data, "notes"),
            )
            return jsonify({"request": approval_request.to_dict()}), 200
        except OrderDeskError as e:
            return error_response(e)
        except Exception:
            return _internal_error(f"Failed to approve {workflow.messages.noun}")

    @bp.put("/<int:request_id>/reject")
    @require_auth
    @require_permission("REVIEW_APPROVALS")
    def reject_route(request_id: int):
        try:
            data = require_object(request.get_json(silent=True) or {})
            approval_request = workflow.reject(
                request_id,
                current_actor(),
                notes=get_str(data, "notes"),
            )
            return jsonify({"request": approval_request.to_dict()}), 200
        except OrderDeskError as e:
            return error_response(e)
        except Exception:
            return _internal_error(f"Failed to reject {workflow.messages.noun}")

    return bp


_blueprints = {
    kind: build_approval_blueprint(workflow, URL_PREFIXES[kind])
    for kind, workflow in WORKFLOWS.items()
}
status_change_requests_bp = _blueprints["order_status_change"]
approval_blueprints = list(_blueprints.values())


@status_change_requests_bp.post("/")
@require_auth
@require_permission("REQUEST_APPROVALS")
def create_status_change_request_route():
    """
    Ask an administrator to move an order into an approval-gated status.

    Request body:
    {
        "order_id": 12,
        "current_status": "READY",                (the status the requester saw)
        "requested_status": "DELIVERED_ON_CREDIT",
        "justification": "Trusted client, pays at month end"
    }
    """
    try:
        data = require_object(request.get_json(silent=True))
        status_request = order_status_workflow.request(
            get_int(data, "order_id", minimum=1),
            current_actor(),
            justification=get_str(data, "justification"),
            requested_status=get_str(data, "requested_status", required=True),
            current_status=get_str(data, "current_status"),
        )
        return jsonify({"request": status_request.to_dict()}), 201
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create status change request")
        return jsonify({"error": "Internal server error"}), 500
