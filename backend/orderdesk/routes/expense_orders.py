# Overview: Flask API routes for expense order operations; parses input and returns JSON responses.

"""
Expense Order API Routes

SECURITY:
- VIEW_EXPENSE_ORDERS for reads, MANAGE_EXPENSE_ORDERS for writes
- AUTHORIZED requires admin or an approved authorization request
- PAID requires APPROVE_EXPENSE_ORDERS (checked by the service)
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import current_actor, require_auth, require_permission
from ..errors import OrderDeskError, error_response
from ..services import expense_order_service
from ..services.approval_workflows import expense_auth_workflow
from ..validation import (
    get_int,
    get_str,
    normalize_amount,
    normalize_item,
    normalize_items,
    normalize_payment,
    require_object,
)


expense_orders_bp = Blueprint("expense_orders", __name__, url_prefix="/api/expense-orders")


def _response(expense_order, status: int = 200):
    return jsonify({"expense_order": expense_order.to_dict(include_lines=True)}), status


@expense_orders_bp.post("/")
@require_auth
@require_permission("MANAGE_EXPENSE_ORDERS")
def create_expense_order_route():
    """
    Create a DRAFT expense order.

    Request body:
    {
        "payee_name": "Paper Supplier",
        "items": [{"description": "Paper", "quantity": 10, "unit_price_cents": 250}],
        "tax_rate_bps": 0      (optional, defaults to EXPENSE_TAX_RATE_BPS)
    }
    """
    try:
        data = require_object(request.get_json(silent=True))
        expense_order = expense_order_service.create_expense_order(
            current_actor(),
            normalize_items(data.get("items")),
            payee_name=get_str(data, "payee_name", max_length=255),
            notes=get_str(data, "notes"),
            tax_rate_bps=data.get("tax_rate_bps"),
        )
        return _response(expense_order, 201)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create expense order")
        return jsonify({"error": "Internal server error"}), 500


@expense_orders_bp.get("/")
@require_auth
@require_permission("VIEW_EXPENSE_ORDERS")
def list_expense_orders_route():
    try:
        expense_orders = expense_order_service.list_expense_orders(
            status=request.args.get("status"),
            limit=get_int(request.args, "limit", required=False, minimum=1, maximum=500, default=100),
            offset=get_int(request.args, "offset", required=False, minimum=0, default=0),
        )
        return jsonify({"expense_orders": [e.to_dict() for e in expense_orders]}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list expense orders")
        return jsonify({"error": "Internal server error"}), 500


@expense_orders_bp.get("/<int:expense_order_id>")
@require_auth
@require_permission("VIEW_EXPENSE_ORDERS")
def get_expense_order_route(expense_order_id: int):
    try:
        return _response(expense_order_service.get_expense_order(expense_order_id))
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get expense order")
        return jsonify({"error": "Internal server error"}), 500


@expense_orders_bp.delete("/<int:expense_order_id>")
@require_auth
@require_permission("MANAGE_EXPENSE_ORDERS")
def delete_expense_order_route(expense_order_id: int):
    try:
        expense_order_service.delete_expense_order(expense_order_id, current_actor())
        return jsonify({"deleted": True, "expense_order_id": expense_order_id}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete expense order")
        return jsonify({"error": "Internal server error"}), 500


@expense_orders_bp.put("/<int:expense_order_id>/status")
@require_auth
@require_permission("MANAGE_EXPENSE_ORDERS")
def change_status_route(expense_order_id: int):
    """Request body: {"status": "AUTHORIZED"}"""
    try:
        data = require_object(request.get_json(silent=True))
        expense_order = expense_order_service.change_status(
            expense_order_id,
            get_str(data, "status", required=True),
            current_actor(),
        )
        return _response(expense_order)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change expense order status")
        return jsonify({"error": "Internal server error"}), 500


@expense_orders_bp.post("/<int:expense_order_id>/items")
@require_auth
@require_permission("MANAGE_EXPENSE_ORDERS")
def add_item_route(expense_order_id: int):
    try:
        item = normalize_item(request.get_json(silent=True))
        return _response(expense_order_service.add_item(expense_order_id, item, current_actor()), 201)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add expense order item")
        return jsonify({"error": "Internal server error"}), 500


@expense_orders_bp.delete("/<int:expense_order_id>/items/<int:item_id>")
@require_auth
@require_permission("MANAGE_EXPENSE_ORDERS")
def remove_item_route(expense_order_id: int, item_id: int):
    try:
        return _response(expense_order_service.remove_item(expense_order_id, item_id, current_actor()))
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove expense order item")
        return jsonify({"error": "Internal server error"}), 500


@expense_orders_bp.post("/<int:expense_order_id>/payments")
@require_auth
@require_permission("MANAGE_PAYMENTS")
def add_payment_route(expense_order_id: int):
    try:
        payment = normalize_payment(request.get_json(silent=True))
        return _response(expense_order_service.add_payment(expense_order_id, payment, current_actor()), 201)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add expense order payment")
        return jsonify({"error": "Internal server error"}), 500


@expense_orders_bp.post("/<int:expense_order_id>/discounts")
@require_auth
@require_permission("APPLY_DISCOUNTS")
def apply_discount_route(expense_order_id: int):
    try:
        data = require_object(request.get_json(silent=True))
        expense_order = expense_order_service.apply_discount(
            expense_order_id,
            normalize_amount(data.get("amount_cents")),
            current_actor(),
            reason=get_str(data, "reason", max_length=255),
        )
        return _response(expense_order, 201)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply expense order discount")
        return jsonify({"error": "Internal server error"}), 500


@expense_orders_bp.post("/<int:expense_order_id>/auth-requests")
@require_auth
@require_permission("REQUEST_APPROVALS")
def create_auth_request_route(expense_order_id: int):
    """
    Ask an administrator to authorize this expense order.

    Request body: {"justification": "Urgent supplier payment"}
    """
    try:
        data = require_object(request.get_json(silent=True) or {})
        auth_request = expense_auth_workflow.request(
            expense_order_id,
            current_actor(),
            justification=get_str(data, "justification"),
            requested_status=get_str(data, "requested_status"),
        )
        return jsonify({"request": auth_request.to_dict()}), 201
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create expense authorization request")
        return jsonify({"error": "Internal server error"}), 500
