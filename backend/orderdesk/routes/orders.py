# Overview: Flask API routes for order operations; parses input and returns JSON responses.

# backend/orderdesk/routes/orders.py
"""
Order API Routes

DESIGN:
- Create DRAFT orders with items (and an optional initial payment)
- Items, header fields and discounts are mutated through dedicated
  endpoints; every response carries the recomputed totals
- Status changes go through PUT /<id>/status, which enforces the
  transition table and its guards

SECURITY:
- VIEW_ORDERS for reads, CREATE_ORDERS / EDIT_ORDERS / DELETE_ORDERS for writes
- MANAGE_PAYMENTS for payments, APPLY_DISCOUNTS for discounts
- Editing after DRAFT additionally needs admin or an approved edit request
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import current_actor, require_auth, require_permission
from ..errors import OrderDeskError, error_response
from ..services import order_service
from ..services.approval_workflows import order_edit_workflow
from ..validation import (
    get_date,
    get_int,
    get_str,
    normalize_amount,
    normalize_item,
    normalize_items,
    normalize_payment,
    require_object,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_response(order, status: int = 200):
    return jsonify({"order": order.to_dict(include_lines=True)}), status


# =============================================================================
# ORDER CRUD
# =============================================================================

@orders_bp.post("/")
@require_auth
@require_permission("CREATE_ORDERS")
def create_order_route():
    """
    Create a DRAFT order.

    Request body:
    {
        "client_name": "ACME",
        "delivery_date": "2026-03-01",         (optional)
        "tax_rate_bps": 1900,                  (optional, defaults to ORDER_TAX_RATE_BPS)
        "items": [{"description": "Mugs", "quantity": 2, "unit_price_cents": 5000}],
        "initial_payment": {"amount_cents": 1000, "method": "CASH"}   (optional)
    }

    Returns:
        201: Order with items and totals
        400: Invalid input or initial payment above total
    """
    try:
        data = require_object(request.get_json(silent=True))
        items = normalize_items(data.get("items"))
        initial_payment = data.get("initial_payment")

        order = order_service.create_order(
            current_actor(),
            items,
            client_name=get_str(data, "client_name", max_length=255),
            notes=get_str(data, "notes"),
            delivery_date=get_date(data, "delivery_date"),
            tax_rate_bps=data.get("tax_rate_bps"),
            initial_payment=normalize_payment(initial_payment) if initial_payment is not None else None,
        )
        return _order_response(order, 201)

    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/")
@require_auth
@require_permission("VIEW_ORDERS")
def list_orders_route():
    """List orders, newest first. Query: status, limit (max 500), offset."""
    try:
        orders = order_service.list_orders(
            status=request.args.get("status"),
            limit=get_int(request.args, "limit", required=False, minimum=1, maximum=500, default=100),
            offset=get_int(request.args, "offset", required=False, minimum=0, default=0),
        )
        return jsonify({"orders": [order.to_dict() for order in orders]}), 200

    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
@require_permission("VIEW_ORDERS")
def get_order_route(order_id: int):
    try:
        return _order_response(order_service.get_order(order_id))
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>")
@require_auth
@require_permission("EDIT_ORDERS")
def update_order_route(order_id: int):
    """
    Update header fields.

    Postponing delivery_date requires delivery_date_reason.
    """
    try:
        data = require_object(request.get_json(silent=True))
        changes = {}
        for field in ("client_name", "notes", "delivery_date_reason"):
            if field in data:
                changes[field] = get_str(data, field, max_length=255 if field != "notes" else None)
        if "delivery_date" in data:
            changes["delivery_date"] = get_date(data, "delivery_date")
        if "tax_rate_bps" in data:
            changes["tax_rate_bps"] = data.get("tax_rate_bps")

        order = order_service.update_order(order_id, current_actor(), changes)
        return _order_response(order)

    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_auth
@require_permission("DELETE_ORDERS")
def delete_order_route(order_id: int):
    """Delete a DRAFT order."""
    try:
        order_service.delete_order(order_id, current_actor())
        return jsonify({"deleted": True, "order_id": order_id}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STATUS
# =============================================================================

@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_permission("CHANGE_ORDER_STATUS")
def change_status_route(order_id: int):
    """
    Change order status.

    Request body: {"status": "CONFIRMED"}

    Returns:
        200: Updated order
        403: Missing MARK_ORDERS_PAID, or approval required (DELIVERED_ON_CREDIT)
        409: Transition not allowed (response lists "allowed")
    """
    try:
        data = require_object(request.get_json(silent=True))
        order = order_service.change_status(order_id, get_str(data, "status", required=True), current_actor())
        return _order_response(order)

    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change order status")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ITEMS
# =============================================================================

@orders_bp.post("/<int:order_id>/items")
@require_auth
@require_permission("EDIT_ORDERS")
def add_item_route(order_id: int):
    try:
        item = normalize_item(request.get_json(silent=True))
        order = order_service.add_item(order_id, item, current_actor())
        return _order_response(order, 201)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/items/<int:item_id>")
@require_auth
@require_permission("EDIT_ORDERS")
def update_item_route(order_id: int, item_id: int):
    try:
        data = require_object(request.get_json(silent=True))
        changes = {
            "description": get_str(data, "description", max_length=500),
            "quantity": get_int(data, "quantity", required=False, minimum=1),
            "unit_price_cents": get_int(data, "unit_price_cents", required=False, minimum=0),
            "sort_order": get_int(data, "sort_order", required=False, minimum=0),
        }
        order = order_service.update_item(order_id, item_id, changes, current_actor())
        return _order_response(order)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/items/<int:item_id>")
@require_auth
@require_permission("EDIT_ORDERS")
def remove_item_route(order_id: int, item_id: int):
    try:
        order = order_service.remove_item(order_id, item_id, current_actor())
        return _order_response(order)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove order item")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENTS & DISCOUNTS
# =============================================================================

@orders_bp.post("/<int:order_id>/payments")
@require_auth
@require_permission("MANAGE_PAYMENTS")
def add_payment_route(order_id: int):
    """
    Record a payment.

    Request body: {"amount_cents": 5000, "method": "TRANSFER", "reference": "TX-1"}
    """
    try:
        payment = normalize_payment(request.get_json(silent=True))
        order = order_service.add_payment(order_id, payment, current_actor())
        return _order_response(order, 201)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add order payment")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/discounts")
@require_auth
@require_permission("APPLY_DISCOUNTS")
def apply_discount_route(order_id: int):
    """
    Apply a discount.

    Request body: {"amount_cents": 2000, "reason": "Loyal client"}
    """
    try:
        data = require_object(request.get_json(silent=True))
        order = order_service.apply_discount(
            order_id,
            normalize_amount(data.get("amount_cents")),
            current_actor(),
            reason=get_str(data, "reason", max_length=255),
        )
        return _order_response(order, 201)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply order discount")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/discounts/<int:discount_id>")
@require_auth
@require_permission("APPLY_DISCOUNTS")
def remove_discount_route(order_id: int, discount_id: int):
    try:
        order = order_service.remove_discount(order_id, discount_id, current_actor())
        return _order_response(order)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove order discount")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# EDIT PERMISSION
# =============================================================================

@orders_bp.post("/<int:order_id>/edit-requests")
@require_auth
@require_permission("REQUEST_APPROVALS")
def create_edit_request_route(order_id: int):
    """
    Ask an administrator for permission to edit an order that left DRAFT.

    Request body: {"justification": "Client changed the quantity"}

    Returns:
        201: PENDING request
        400: Status does not accept edit requests, or requester is an admin
        409: A pending request already exists (existing_request_id)
    """
    try:
        data = require_object(request.get_json(silent=True) or {})
        edit_request = order_edit_workflow.request(
            order_id,
            current_actor(),
            justification=get_str(data, "justification"),
        )
        return jsonify({"request": edit_request.to_dict()}), 201
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create edit request")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/edit-requests")
@require_auth
@require_permission("VIEW_ORDERS")
def list_edit_requests_route(order_id: int):
    try:
        order_service.get_order(order_id)
        requests = order_edit_workflow.list_for_resource(order_id)
        return jsonify({"requests": [r.to_dict() for r in requests]}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list edit requests")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/edit-permission")
@require_auth
@require_permission("VIEW_ORDERS")
def edit_permission_route(order_id: int):
    """Whether the current user may edit this order now (and until when)."""
    try:
        return jsonify(order_service.get_edit_permission(order_id, current_actor())), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check edit permission")
        return jsonify({"error": "Internal server error"}), 500
