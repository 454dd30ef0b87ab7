# Overview: Flask API routes for the in-app notification inbox.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import OrderDeskError, error_response
from ..services import notification_service
from ..validation import get_int


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("/")
@require_auth
def list_notifications_route():
    """Query: unread_only=true|false, limit (max 200)."""
    try:
        unread_only = request.args.get("unread_only", "false").lower() == "true"
        limit = get_int(request.args, "limit", required=False, minimum=1, maximum=200, default=50)
        notifications = notification_service.list_for_user(
            g.current_user.id, unread_only=unread_only, limit=limit
        )
        return jsonify({"notifications": [n.to_dict() for n in notifications]}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.get("/unread-count")
@require_auth
def unread_count_route():
    try:
        return jsonify({"unread": notification_service.count_unread(g.current_user.id)}), 200
    except Exception:
        current_app.logger.exception("Failed to count notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.put("/<int:notification_id>/read")
@require_auth
def mark_read_route(notification_id: int):
    try:
        notification = notification_service.mark_read(notification_id, g.current_user.id)
        return jsonify({"notification": notification.to_dict()}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark notification read")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.put("/read-all")
@require_auth
def mark_all_read_route():
    try:
        return jsonify({"updated": notification_service.mark_all_read(g.current_user.id)}), 200
    except Exception:
        current_app.logger.exception("Failed to mark notifications read")
        return jsonify({"error": "Internal server error"}), 500
