# Overview: Service-layer operations for customer orders; encapsulates business logic and database work.

"""
Order Service

WHY: An order is an aggregate: header, items, payments and discounts whose
computed totals must always agree. Every mutation here follows the same
unit of work:

    lock order row -> check status/permission -> mutate owned rows
    -> recalculate -> commit -> post-commit audit

LIFECYCLE (see state_machine.ORDER_TRANSITIONS):
    DRAFT -> CONFIRMED -> IN_PRODUCTION -> READY
    READY -> DELIVERED | DELIVERED_ON_CREDIT | PAID
    DELIVERED_ON_CREDIT -> PAID
    any non-terminal -> CANCELLED (except from DELIVERED_ON_CREDIT)

EDITING:
- DRAFT orders are freely editable
- Later statuses need a privileged actor or an active edit grant
- Cancelled orders are never editable
- An order always keeps at least one item
"""

from __future__ import annotations

from datetime import date, datetime

from flask import current_app

from ..errors import AuthorizationRequiredError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, Quote
from ..time_utils import to_utc_z, utcnow
from ..validation import ItemInput, PaymentInput, normalize_tax_rate
from . import audit_service, financial_service, permission_service, state_machine
from .approval_workflows import order_edit_workflow, order_status_workflow
from .concurrency import lock_for_update, run_in_transaction
from .context import ActorContext
from .sequence_service import next_number


KIND = state_machine.ORDER_KIND

EDITABLE_STATUSES = frozenset({state_machine.DRAFT})
LOCKED_STATUSES = frozenset({state_machine.CANCELLED})

# Statuses in which money can move
DISCOUNTABLE_STATUSES = frozenset({
    state_machine.CONFIRMED,
    state_machine.IN_PRODUCTION,
    state_machine.READY,
    state_machine.DELIVERED_ON_CREDIT,
})
PAYABLE_STATUSES = DISCOUNTABLE_STATUSES

HEADER_FIELDS = frozenset({"client_name", "notes", "delivery_date", "delivery_date_reason", "tax_rate_bps"})


# =============================================================================
# Loading & access checks
# =============================================================================

def _load_order(order_id: int, lock: bool = False) -> Order:
    query = db.session.query(Order).filter(Order.id == order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def get_order(order_id: int) -> Order:
    return _load_order(order_id)


def list_orders(*, status: str | None = None, limit: int = 100, offset: int = 0) -> list[Order]:
    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == state_machine.validate_status(KIND, status))
    return query.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()


def edit_access(order: Order, actor: ActorContext, now: datetime | None = None) -> dict:
    """
    Describe whether actor may edit the order right now and why.

    Returns {"can_edit", "reason", "expires_at"}.
    """
    if order.status in LOCKED_STATUSES:
        return {"can_edit": False, "reason": "locked", "expires_at": None}
    if order.status in EDITABLE_STATUSES:
        return {"can_edit": True, "reason": "editable_status", "expires_at": None}
    if permission_service.is_privileged(actor.user_id):
        return {"can_edit": True, "reason": "privileged", "expires_at": None}
    grant = order_edit_workflow.active_grant(order.id, actor.user_id, now=now)
    if grant is not None:
        return {"can_edit": True, "reason": "edit_grant", "expires_at": to_utc_z(grant.expires_at)}
    return {"can_edit": False, "reason": "approval_required", "expires_at": None}


def ensure_editable(order: Order, actor: ActorContext, now: datetime | None = None) -> None:
    access = edit_access(order, actor, now)
    if access["can_edit"]:
        return
    if access["reason"] == "locked":
        raise ValidationError(f"Order {order.order_number} is {order.status} and cannot be modified")
    raise AuthorizationRequiredError(
        f"Order {order.order_number} is {order.status}; request edit permission before changing it",
    )


def get_edit_permission(order_id: int, actor: ActorContext, now: datetime | None = None) -> dict:
    order = _load_order(order_id)
    access = edit_access(order, actor, now)
    access["order_id"] = order.id
    access["status"] = order.status
    return access


def _audit(hooks, action: str, order: Order, before: dict | None, actor: ActorContext) -> None:
    hooks.add("audit", audit_service.log_change, action, "order", order.id, before, order.audit_snapshot(), actor)


# =============================================================================
# Creation
# =============================================================================

def insert_order(
    actor: ActorContext,
    items: list[ItemInput],
    *,
    tax_rate_bps: int,
    client_name: str | None = None,
    notes: str | None = None,
    delivery_date: date | None = None,
    source_quote_id: int | None = None,
    discounts: list[tuple[int, str | None]] = (),
) -> Order:
    """
    Insert a DRAFT order with its items and discounts inside the current transaction.

    Numbers are taken from the ORDER sequence in the same transaction, so a
    failed creation never consumes a number.
    """
    if not items:
        raise ValidationError("At least one item is required", field="items")

    order = Order(
        order_number=next_number("ORDER"),
        status=state_machine.DRAFT,
        client_name=client_name,
        notes=notes,
        delivery_date=delivery_date,
        source_quote_id=source_quote_id,
        tax_rate_bps=tax_rate_bps,
        created_by_user_id=actor.user_id,
    )
    db.session.add(order)
    db.session.flush()

    for item in items:
        financial_service.add_item_row(KIND, order.id, item)
    financial_service.recalculate(KIND, order.id)

    for amount_cents, reason in discounts:
        financial_service.ensure_discount_within_cap(order, amount_cents)
        financial_service.add_discount_row(KIND, order.id, amount_cents, reason, actor.user_id)
        financial_service.recalculate(KIND, order.id)
    return order


def create_order(
    actor: ActorContext,
    items: list[ItemInput],
    *,
    client_name: str | None = None,
    notes: str | None = None,
    delivery_date: date | None = None,
    tax_rate_bps: int | None = None,
    initial_payment: PaymentInput | None = None,
) -> Order:
    """
    Create a DRAFT order.

    An optional initial payment (deposit) is recorded in the same
    transaction and may not exceed the computed total.

    Raises:
        ValidationError: No items, or initial payment above the total
    """
    rate = normalize_tax_rate(tax_rate_bps, current_app.config.get("ORDER_TAX_RATE_BPS", 1900))

    def _op(hooks):
        order = insert_order(
            actor,
            items,
            tax_rate_bps=rate,
            client_name=client_name,
            notes=notes,
            delivery_date=delivery_date,
        )
        if initial_payment is not None:
            if initial_payment.amount_cents > order.total_cents:
                raise ValidationError(
                    f"Initial payment of {initial_payment.amount_cents} exceeds the order total of {order.total_cents}",
                    field="initial_payment",
                )
            financial_service.add_payment_row(KIND, order.id, initial_payment, actor.user_id)
            financial_service.recalculate(KIND, order.id)

        _audit(hooks, audit_service.CREATE, order, None, actor)
        return order

    return run_in_transaction(_op)


# =============================================================================
# Header
# =============================================================================

def update_order(order_id: int, actor: ActorContext, changes: dict, *, now: datetime | None = None) -> Order:
    """
    Update header fields (client_name, notes, delivery_date, delivery_date_reason, tax_rate_bps).

    Postponing an existing delivery date requires delivery_date_reason; the
    previous date is kept in previous_delivery_date.
    """
    unknown = set(changes) - HEADER_FIELDS
    if unknown:
        raise ValidationError(f"Unknown order fields: {sorted(unknown)}")

    def _op(hooks):
        order = _load_order(order_id, lock=True)
        ensure_editable(order, actor, now)
        before = order.audit_snapshot()

        if "client_name" in changes:
            order.client_name = changes["client_name"]
        if "notes" in changes:
            order.notes = changes["notes"]

        if "delivery_date" in changes and changes["delivery_date"] != order.delivery_date:
            new_date = changes["delivery_date"]
            reason = changes.get("delivery_date_reason")
            if order.delivery_date and new_date and new_date > order.delivery_date and not reason:
                raise ValidationError(
                    "A reason is required when postponing the delivery date",
                    field="delivery_date_reason",
                )
            order.previous_delivery_date = order.delivery_date
            order.delivery_date = new_date
            order.delivery_date_reason = reason

        if changes.get("tax_rate_bps") is not None:
            order.tax_rate_bps = normalize_tax_rate(changes["tax_rate_bps"], order.tax_rate_bps)
            financial_service.recalculate(KIND, order.id)
            financial_service.ensure_discounts_within_cap(order)

        db.session.flush()
        _audit(hooks, audit_service.UPDATE, order, before, actor)
        return order

    return run_in_transaction(_op)


# =============================================================================
# Items
# =============================================================================

def add_item(order_id: int, item: ItemInput, actor: ActorContext, *, now: datetime | None = None) -> Order:
    def _op(hooks):
        order = _load_order(order_id, lock=True)
        ensure_editable(order, actor, now)
        before = order.audit_snapshot()
        financial_service.add_item_row(KIND, order.id, item)
        financial_service.recalculate(KIND, order.id)
        _audit(hooks, audit_service.UPDATE, order, before, actor)
        return order

    return run_in_transaction(_op)


def update_item(
    order_id: int,
    item_id: int,
    changes: dict,
    actor: ActorContext,
    *,
    now: datetime | None = None,
) -> Order:
    def _op(hooks):
        order = _load_order(order_id, lock=True)
        ensure_editable(order, actor, now)
        before = order.audit_snapshot()
        financial_service.update_item_row(KIND, order.id, item_id, changes)
        financial_service.recalculate(KIND, order.id)
        financial_service.ensure_discounts_within_cap(order)
        _audit(hooks, audit_service.UPDATE, order, before, actor)
        return order

    return run_in_transaction(_op)


def remove_item(order_id: int, item_id: int, actor: ActorContext, *, now: datetime | None = None) -> Order:
    """
    Remove one item.

    The last item can never be removed, whatever the status or actor.
    """
    def _op(hooks):
        order = _load_order(order_id, lock=True)
        row = financial_service.get_item_row(KIND, order.id, item_id)
        financial_service.ensure_not_last_item(KIND, order.id)
        ensure_editable(order, actor, now)

        before = order.audit_snapshot()
        db.session.delete(row)
        db.session.flush()
        financial_service.recalculate(KIND, order.id)
        financial_service.ensure_discounts_within_cap(order)
        _audit(hooks, audit_service.UPDATE, order, before, actor)
        return order

    return run_in_transaction(_op)


# =============================================================================
# Money
# =============================================================================

def add_payment(order_id: int, payment: PaymentInput, actor: ActorContext) -> Order:
    """
    Record a payment.

    Raises:
        ValidationError: Status does not take payments, or amount > balance
    """
    def _op(hooks):
        order = _load_order(order_id, lock=True)
        if order.status not in PAYABLE_STATUSES:
            raise ValidationError(
                f"Payments cannot be recorded on {order.status} orders; allowed in {sorted(PAYABLE_STATUSES)}",
            )
        financial_service.ensure_payment_within_balance(order, payment.amount_cents)

        before = order.audit_snapshot()
        financial_service.add_payment_row(KIND, order.id, payment, actor.user_id)
        financial_service.recalculate(KIND, order.id)
        _audit(hooks, audit_service.UPDATE, order, before, actor)
        return order

    return run_in_transaction(_op)


def apply_discount(order_id: int, amount_cents: int, actor: ActorContext, reason: str | None = None) -> Order:
    """
    Apply a discount.

    Raises:
        ValidationError: Status does not take discounts, or cumulative
            discounts would exceed subtotal + tax
    """
    def _op(hooks):
        order = _load_order(order_id, lock=True)
        if order.status not in DISCOUNTABLE_STATUSES:
            raise ValidationError(
                f"Discounts cannot be applied to {order.status} orders; allowed in {sorted(DISCOUNTABLE_STATUSES)}",
            )
        financial_service.ensure_discount_within_cap(order, amount_cents)

        before = order.audit_snapshot()
        financial_service.add_discount_row(KIND, order.id, amount_cents, reason, actor.user_id)
        financial_service.recalculate(KIND, order.id)
        _audit(hooks, audit_service.UPDATE, order, before, actor)
        return order

    return run_in_transaction(_op)


def remove_discount(order_id: int, discount_id: int, actor: ActorContext, *, now: datetime | None = None) -> Order:
    def _op(hooks):
        order = _load_order(order_id, lock=True)
        models = financial_service.get_aggregate_models(KIND)
        row = financial_service.get_owned_row(models.discount, models.foreign_key, order.id, discount_id, "Discount")
        ensure_editable(order, actor, now)

        before = order.audit_snapshot()
        db.session.delete(row)
        db.session.flush()
        financial_service.recalculate(KIND, order.id)
        _audit(hooks, audit_service.UPDATE, order, before, actor)
        return order

    return run_in_transaction(_op)


# =============================================================================
# Status
# =============================================================================

def _check_status_guards(order: Order, target: str, actor: ActorContext, now: datetime | None) -> None:
    if target == state_machine.PAID:
        if order.balance_cents != 0:
            raise ValidationError(
                f"Order {order.order_number} still has a balance of {order.balance_cents}; it cannot be marked PAID",
                details={"balance_cents": order.balance_cents},
            )
        permission_service.require_permission(actor.user_id, "MARK_ORDERS_PAID")

    elif target == state_machine.DELIVERED:
        if order.balance_cents != 0:
            raise ValidationError(
                f"Order {order.order_number} has a balance of {order.balance_cents}; "
                f"deliver it on credit or collect payment first",
                details={"balance_cents": order.balance_cents},
            )

    elif state_machine.requires_approval(KIND, target):
        if permission_service.is_privileged(actor.user_id):
            return
        grant = order_status_workflow.consume(order.id, actor.user_id, target, now)
        if grant is None:
            raise AuthorizationRequiredError(
                f"Moving an order to {target} requires administrator approval; file a status change request",
            )


def change_status(order_id: int, new_status: str, actor: ActorContext, *, now: datetime | None = None) -> Order:
    """
    Move an order to new_status.

    Same status is a no-op. DRAFT is never a valid target.

    Raises:
        InvalidTransitionError: Edge not in the transition table (lists allowed targets)
        ValidationError: Unknown status, or non-zero balance for PAID/DELIVERED
        AuthorizationRequiredError: Missing MARK_ORDERS_PAID, or no approval
            for an approval-gated target
    """
    target = state_machine.validate_status(KIND, new_status)

    def _op(hooks):
        order = _load_order(order_id, lock=True)
        if order.status == target:
            return order

        state_machine.ensure_transition(KIND, order.status, target)
        _check_status_guards(order, target, actor, now)

        before = order.audit_snapshot()
        order.status = target
        order.status_changed_at = now or utcnow()
        db.session.flush()
        _audit(hooks, audit_service.UPDATE, order, before, actor)
        return order

    return run_in_transaction(_op)


# =============================================================================
# Deletion
# =============================================================================

def delete_order(order_id: int, actor: ActorContext) -> None:
    """Delete a DRAFT order with its items, payments and discounts."""
    def _op(hooks):
        order = _load_order(order_id, lock=True)
        if order.status != state_machine.DRAFT:
            raise ValidationError(f"Only DRAFT orders can be deleted; order {order.order_number} is {order.status}")
        if db.session.query(Quote.id).filter(Quote.converted_order_id == order.id).first():
            raise ValidationError(f"Order {order.order_number} was created from a quote and cannot be deleted")

        before = order.audit_snapshot()
        order_ref = order.id
        db.session.delete(order)
        db.session.flush()
        hooks.add("audit", audit_service.log_change, audit_service.DELETE, "order", order_ref, before, None, actor)

    run_in_transaction(_op)
