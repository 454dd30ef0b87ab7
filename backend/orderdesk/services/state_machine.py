# Overview: Status transition tables and checks for orders, expense orders and quotes.

"""
Document State Machine

WHY: Who may move a document where is business policy. Encoding each
lifecycle as an immutable table (status -> allowed next statuses) keeps the
rules in one place and lets tests enumerate every edge.

Guards that depend on money or on who is acting (balance must be zero,
elevated permission, approval grants) are layered on top of these tables by
the owning services; this module only answers "is this edge in the table?".

REVERT POLICY: No table contains an edge back to DRAFT, and
ensure_transition rejects DRAFT targets explicitly with a dedicated
message. Corrections after DRAFT go through an edit request instead.
"""

from __future__ import annotations

from types import MappingProxyType

from ..errors import InvalidTransitionError, ValidationError


ORDER_KIND = "order"
EXPENSE_KIND = "expense_order"
QUOTE_KIND = "quote"

DRAFT = "DRAFT"
CANCELLED = "CANCELLED"
PAID = "PAID"

# Order statuses
CONFIRMED = "CONFIRMED"
IN_PRODUCTION = "IN_PRODUCTION"
READY = "READY"
DELIVERED = "DELIVERED"
DELIVERED_ON_CREDIT = "DELIVERED_ON_CREDIT"

# Expense order statuses
CREATED = "CREATED"
AUTHORIZED = "AUTHORIZED"

# Quote statuses
SENT = "SENT"
ACCEPTED = "ACCEPTED"
REJECTED = "REJECTED"
CONVERTED = "CONVERTED"


ORDER_TRANSITIONS = MappingProxyType({
    DRAFT: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({IN_PRODUCTION, CANCELLED}),
    IN_PRODUCTION: frozenset({READY, CANCELLED}),
    READY: frozenset({DELIVERED, DELIVERED_ON_CREDIT, PAID, CANCELLED}),
    # Credit deliveries are settled later
    DELIVERED_ON_CREDIT: frozenset({PAID}),
    DELIVERED: frozenset(),
    PAID: frozenset(),
    CANCELLED: frozenset(),
})

EXPENSE_TRANSITIONS = MappingProxyType({
    DRAFT: frozenset({CREATED, AUTHORIZED}),
    CREATED: frozenset({AUTHORIZED}),
    AUTHORIZED: frozenset({PAID}),
    PAID: frozenset(),
})

QUOTE_TRANSITIONS = MappingProxyType({
    DRAFT: frozenset({SENT, CONVERTED, CANCELLED}),
    SENT: frozenset({ACCEPTED, REJECTED, CONVERTED, CANCELLED}),
    ACCEPTED: frozenset({CONVERTED, CANCELLED}),
    REJECTED: frozenset(),
    CONVERTED: frozenset(),
    CANCELLED: frozenset(),
})

TRANSITION_TABLES = MappingProxyType({
    ORDER_KIND: ORDER_TRANSITIONS,
    EXPENSE_KIND: EXPENSE_TRANSITIONS,
    QUOTE_KIND: QUOTE_TRANSITIONS,
})

# Target statuses a non-privileged actor may only enter with an approved request
APPROVAL_GATED_STATUSES = MappingProxyType({
    ORDER_KIND: frozenset({DELIVERED_ON_CREDIT}),
    EXPENSE_KIND: frozenset({AUTHORIZED}),
    QUOTE_KIND: frozenset(),
})

ENTITY_LABELS = MappingProxyType({
    ORDER_KIND: "order",
    EXPENSE_KIND: "expense order",
    QUOTE_KIND: "quote",
})


def _table(kind: str):
    try:
        return TRANSITION_TABLES[kind]
    except KeyError:
        raise ValidationError(f"Unknown document kind: {kind}")


def statuses(kind: str) -> frozenset[str]:
    return frozenset(_table(kind).keys())


def validate_status(kind: str, status) -> str:
    """Normalize and validate a status name; raises ValidationError if unknown."""
    if not isinstance(status, str) or not status.strip():
        raise ValidationError("status is required", field="status")
    normalized = status.strip().upper()
    if normalized not in _table(kind):
        raise ValidationError(
            f"Invalid {ENTITY_LABELS[kind]} status: {normalized}. Must be one of {sorted(statuses(kind))}",
            field="status",
        )
    return normalized


def allowed_transitions(kind: str, status: str) -> frozenset[str]:
    return _table(kind).get(status, frozenset())


def can_transition(kind: str, from_status: str, to_status: str) -> bool:
    return to_status in allowed_transitions(kind, from_status)


def is_terminal(kind: str, status: str) -> bool:
    return not allowed_transitions(kind, status)


def requires_approval(kind: str, to_status: str) -> bool:
    return to_status in APPROVAL_GATED_STATUSES.get(kind, frozenset())


def ensure_transition(kind: str, from_status: str, to_status: str) -> None:
    """
    Raise InvalidTransitionError unless from_status -> to_status is in the table.

    The error always lists the statuses that are allowed from from_status.
    """
    allowed = allowed_transitions(kind, from_status)
    label = ENTITY_LABELS[kind]
    if to_status == DRAFT:
        raise InvalidTransitionError(
            label,
            from_status,
            to_status,
            allowed,
            message=(
                f"A {label} cannot return to DRAFT once processed; "
                f"request edit permission instead. Allowed transitions from {from_status}: "
                f"{sorted(allowed) or 'none'}"
            ),
        )
    if to_status not in allowed:
        raise InvalidTransitionError(label, from_status, to_status, allowed)
