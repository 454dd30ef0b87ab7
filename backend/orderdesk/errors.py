# Overview: Typed domain errors raised by services and translated to JSON responses by routes.

"""
Domain error taxonomy.

WHY: Services raise typed failures; routes decide the HTTP shape. Every error
carries a human-readable message plus structured details the UI relies on
(allowed next states for a rejected transition, the id of an existing pending
request for a duplicate submission).

HTTP MAPPING:
- NotFoundError               -> 404
- ValidationError             -> 400
- AuthorizationRequiredError  -> 403
- InvalidTransitionError      -> 409
- ConflictError               -> 409
"""

from __future__ import annotations

from typing import Iterable

from flask import jsonify


class OrderDeskError(Exception):
    """Base class for errors surfaced synchronously to API callers."""

    http_status = 400
    code = "error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        payload.update(self.details)
        return payload


class NotFoundError(OrderDeskError):
    """Resource id does not resolve (or no longer matches the required state)."""

    http_status = 404
    code = "not_found"


class ValidationError(OrderDeskError):
    """Input or financial guard violated (discount cap, payment > balance, last item)."""

    http_status = 400
    code = "validation_failed"

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.field = field


class AuthorizationRequiredError(OrderDeskError):
    """Restricted action attempted without privilege, permission, or active grant."""

    http_status = 403
    code = "authorization_required"

    def __init__(self, message: str, required_permission: str | None = None):
        details = {"required_permission": required_permission} if required_permission else {}
        super().__init__(message, details)
        self.required_permission = required_permission


class ConflictError(OrderDeskError):
    """Duplicate pending request, stale state, or exhausted lock retries."""

    http_status = 409
    code = "conflict"

    def __init__(self, message: str, existing_request_id: int | None = None):
        details = {"existing_request_id": existing_request_id} if existing_request_id else {}
        super().__init__(message, details)
        self.existing_request_id = existing_request_id


class InvalidTransitionError(OrderDeskError):
    """
    Requested status change is not in the transition table.

    The sorted list of allowed next states is always included so the caller
    can offer valid options.
    """

    http_status = 409
    code = "invalid_transition"

    def __init__(
        self,
        entity: str,
        current_status: str,
        requested_status: str,
        allowed: Iterable[str],
        message: str | None = None,
    ):
        allowed_list = sorted(allowed)
        if message is None:
            message = (
                f"Cannot move {entity} from {current_status} to {requested_status}. "
                f"Allowed transitions from {current_status}: {allowed_list or 'none'}"
            )
        super().__init__(
            message,
            {
                "current_status": current_status,
                "requested_status": requested_status,
                "allowed": allowed_list,
            },
        )
        self.entity = entity
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed = allowed_list


def error_response(exc: OrderDeskError):
    """Translate a domain error into a (json, status) tuple for a route handler."""
    return jsonify(exc.to_dict()), exc.http_status
