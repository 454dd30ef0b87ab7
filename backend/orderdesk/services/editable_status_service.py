# Overview: Service-layer operations for editable-status policies; encapsulates business logic and database work.

"""
Editable Status Policies

WHY: Admins decide in which order statuses a seller may even ask for
permission to edit. Once an order is delivered or paid, edit requests are
usually pointless; while it is in production they are common.

A status with no policy row does not accept edit requests.
"""

from __future__ import annotations

from ..errors import ValidationError
from ..extensions import db
from ..models import EditableStatusPolicy
from ..time_utils import utcnow
from . import state_machine
from .context import ActorContext


DEFAULT_POLICIES = {
    state_machine.CONFIRMED: (True, "Confirmed orders may be edited with approval"),
    state_machine.IN_PRODUCTION: (True, "Orders in production may be edited with approval"),
    state_machine.READY: (True, "Ready orders may be edited with approval"),
    state_machine.DELIVERED: (False, "Delivered orders are closed"),
    state_machine.DELIVERED_ON_CREDIT: (False, "Credit deliveries are closed"),
    state_machine.PAID: (False, "Paid orders are closed"),
    state_machine.CANCELLED: (False, "Cancelled orders are closed"),
}


def get_policy(order_status: str) -> EditableStatusPolicy | None:
    return db.session.query(EditableStatusPolicy).filter_by(order_status=order_status).first()


def allows_edit_requests(order_status: str) -> bool:
    policy = get_policy(order_status)
    return bool(policy and policy.allow_edit_requests)


def list_policies() -> list[EditableStatusPolicy]:
    return db.session.query(EditableStatusPolicy).order_by(EditableStatusPolicy.order_status).all()


def set_policy(
    order_status: str,
    allow_edit_requests: bool,
    actor: ActorContext,
    description: str | None = None,
) -> EditableStatusPolicy:
    """Create or update the policy for one order status (DRAFT excluded)."""
    order_status = state_machine.validate_status(state_machine.ORDER_KIND, order_status)
    if order_status == state_machine.DRAFT:
        raise ValidationError("DRAFT orders are always editable and have no policy", field="order_status")

    policy = get_policy(order_status)
    if policy is None:
        policy = EditableStatusPolicy(order_status=order_status)
        db.session.add(policy)
    policy.allow_edit_requests = bool(allow_edit_requests)
    if description is not None:
        policy.description = description
    policy.updated_by_user_id = actor.user_id
    policy.updated_at = utcnow()
    db.session.commit()
    return policy


def seed_default_policies() -> int:
    """Insert missing default policies. Idempotent; existing rows are left alone."""
    created = 0
    for order_status, (allowed, description) in DEFAULT_POLICIES.items():
        if get_policy(order_status) is None:
            db.session.add(
                EditableStatusPolicy(
                    order_status=order_status,
                    allow_edit_requests=allowed,
                    description=description,
                )
            )
            created += 1
    db.session.commit()
    return created
