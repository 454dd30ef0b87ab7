# Overview: Flask API routes for administrative settings (document sequences and edit policies).

"""
Admin API Routes

SECURITY:
- VIEW_SEQUENCES to inspect numbering counters
- MANAGE_SETTINGS to change which order statuses accept edit requests
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import current_actor, require_auth, require_permission
from ..errors import OrderDeskError, ValidationError, error_response
from ..services import editable_status_service, sequence_service
from ..validation import get_str, require_object


admin_bp = Blueprint("admin", __name__, url_prefix="/api")


@admin_bp.get("/sequences")
@require_auth
@require_permission("VIEW_SEQUENCES")
def list_sequences_route():
    try:
        return jsonify({"sequences": [s.to_dict() for s in sequence_service.list_sequences()]}), 200
    except Exception:
        current_app.logger.exception("Failed to list sequences")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/editable-statuses")
@require_auth
def list_editable_statuses_route():
    """Policies are readable by every user so the UI can offer "request edit" buttons."""
    try:
        policies = editable_status_service.list_policies()
        return jsonify({"policies": [p.to_dict() for p in policies]}), 200
    except Exception:
        current_app.logger.exception("Failed to list editable status policies")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.put("/editable-statuses/<order_status>")
@require_auth
@require_permission("MANAGE_SETTINGS")
def set_editable_status_route(order_status: str):
    """
    Request body: {"allow_edit_requests": true, "description": "..."}

    DRAFT has no policy (it is always editable).
    """
    try:
        data = require_object(request.get_json(silent=True))
        allowed = data.get("allow_edit_requests")
        if not isinstance(allowed, bool):
            raise ValidationError("allow_edit_requests must be true or false", field="allow_edit_requests")

        policy = editable_status_service.set_policy(
            order_status,
            allowed,
            current_actor(),
            description=get_str(data, "description", max_length=255),
        )
        return jsonify({"policy": policy.to_dict()}), 200
    except OrderDeskError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update editable status policy")
        return jsonify({"error": "Internal server error"}), 500
