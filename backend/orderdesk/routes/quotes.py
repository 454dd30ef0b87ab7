# Overview: Flask API routes for quotes; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import current_actor, require_auth, require_permission
from ..errors import OrderDeskError, error_response
from ..services import quote_service
from ..validation import (
    get_date,
    get_int,
    get_str,
    normalize_amount,
    normalize_item,
    normalize_items,
    require_object,
)


quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")


def _response(quote, status: int = 200):
    return jsonify({"quote": quote.to_dict(include_lines=True)}), status


@quotes_bp.post("/")
@require_auth
@require_permission("MANAGE_QUOTES")
def create_quote_route():
    try:
        data = require_object(request.get_json(silent=True))
        quote = quote_service.create_quote(
            current_actor(),
            normalize_items(data.get("items")),
            client_name=get_str(data, "client_name", max_length=255),
            notes=get_str(data, "notes"),
            valid_until=get_date(data, "valid_until"),
            tax_rate_bps=data.get("tax_rate_bps"),
        )
        return _response(quote, 201)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.get("/")
@require_auth
@require_permission("VIEW_QUOTES")
def list_quotes_route():
    try:
        quotes = quote_service.list_quotes(
            status=request.args.get("status"),
            limit=get_int(request.args, "limit", required=False, minimum=1, maximum=500, default=100),
            offset=get_int(request.args, "offset", required=False, minimum=0, default=0),
        )
        return jsonify({"quotes": [q.to_dict() for q in quotes]}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list quotes")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.get("/<int:quote_id>")
@require_auth
@require_permission("VIEW_QUOTES")
def get_quote_route(quote_id: int):
    try:
        return _response(quote_service.get_quote(quote_id))
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.delete("/<int:quote_id>")
@require_auth
@require_permission("MANAGE_QUOTES")
def delete_quote_route(quote_id: int):
    try:
        quote_service.delete_quote(quote_id, current_actor())
        return jsonify({"deleted": True, "quote_id": quote_id}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.put("/<int:quote_id>/status")
@require_auth
@require_permission("MANAGE_QUOTES")
def change_status_route(quote_id: int):
    try:
        data = require_object(request.get_json(silent=True))
        quote = quote_service.change_status(quote_id, get_str(data, "status", required=True), current_actor())
        return _response(quote)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change quote status")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.post("/<int:quote_id>/items")
@require_auth
@require_permission("MANAGE_QUOTES")
def add_item_route(quote_id: int):
    try:
        item = normalize_item(request.get_json(silent=True))
        return _response(quote_service.add_item(quote_id, item, current_actor()), 201)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add quote item")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.patch("/<int:quote_id>/items/<int:item_id>")
@require_auth
@require_permission("MANAGE_QUOTES")
def update_item_route(quote_id: int, item_id: int):
    try:
        data = require_object(request.get_json(silent=True))
        changes = {
            "description": get_str(data, "description", max_length=500),
            "quantity": get_int(data, "quantity", required=False, minimum=1),
            "unit_price_cents": get_int(data, "unit_price_cents", required=False, minimum=0),
            "sort_order": get_int(data, "sort_order", required=False, minimum=0),
        }
        return _response(quote_service.update_item(quote_id, item_id, changes, current_actor()))
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update quote item")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.delete("/<int:quote_id>/items/<int:item_id>")
@require_auth
@require_permission("MANAGE_QUOTES")
def remove_item_route(quote_id: int, item_id: int):
    try:
        return _response(quote_service.remove_item(quote_id, item_id, current_actor()))
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove quote item")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.post("/<int:quote_id>/discounts")
@require_auth
@require_permission("APPLY_DISCOUNTS")
def apply_discount_route(quote_id: int):
    try:
        data = require_object(request.get_json(silent=True))
        quote = quote_service.apply_discount(
            quote_id,
            normalize_amount(data.get("amount_cents")),
            current_actor(),
            reason=get_str(data, "reason", max_length=255),
        )
        return _response(quote, 201)
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply quote discount")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.post("/<int:quote_id>/convert")
@require_auth
@require_permission("CREATE_ORDERS")
def convert_quote_route(quote_id: int):
    """Convert a quote into a DRAFT order. Returns the new order."""
    try:
        order = quote_service.convert_to_order(quote_id, current_actor())
        return jsonify({"order": order.to_dict(include_lines=True)}), 201
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to convert quote")
        return jsonify({"error": "Internal server error"}), 500
