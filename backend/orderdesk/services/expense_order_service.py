# Overview: Service-layer operations for expense orders; encapsulates business logic and database work.

"""
Expense Order Service

Lifecycle: DRAFT -> CREATED -> AUTHORIZED -> PAID (DRAFT may skip to AUTHORIZED).

AUTHORIZATION:
- A privileged actor authorizes directly and is recorded as the authorizer
- Anyone else needs an APPROVED authorization request; the reviewing admin
  is recorded as the authorizer
- PAID requires a zero balance and APPROVE_EXPENSE_ORDERS

Items are freely editable in DRAFT and CREATED; afterwards only a
privileged actor may change them, and PAID expense orders are closed.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import AuthorizationRequiredError, NotFoundError, ValidationError
from ..extensions import db
from ..models import ExpenseOrder, ExpenseOrderAuthRequest
from ..time_utils import utcnow
from ..validation import ItemInput, PaymentInput, normalize_tax_rate
from . import audit_service, financial_service, permission_service, state_machine
from .approval_workflows import expense_auth_workflow
from .concurrency import lock_for_update, run_in_transaction
from .context import ActorContext
from .sequence_service import next_number


KIND = state_machine.EXPENSE_KIND

EDITABLE_STATUSES = frozenset({state_machine.DRAFT, state_machine.CREATED})
LOCKED_STATUSES = frozenset({state_machine.PAID})
DISCOUNTABLE_STATUSES = frozenset({state_machine.DRAFT, state_machine.CREATED, state_machine.AUTHORIZED})
PAYABLE_STATUSES = frozenset({state_machine.AUTHORIZED})


def _load(expense_order_id: int, lock: bool = False) -> ExpenseOrder:
    query = db.session.query(ExpenseOrder).filter(ExpenseOrder.id == expense_order_id)
    if lock:
        query = lock_for_update(query)
    expense_order = query.first()
    if expense_order is None:
        raise NotFoundError(f"Expense order {expense_order_id} not found")
    return expense_order


def get_expense_order(expense_order_id: int) -> ExpenseOrder:
    return _load(expense_order_id)


def list_expense_orders(*, status: str | None = None, limit: int = 100, offset: int = 0) -> list[ExpenseOrder]:
    query = db.session.query(ExpenseOrder)
    if status:
        query = query.filter(ExpenseOrder.status == state_machine.validate_status(KIND, status))
    return query.order_by(ExpenseOrder.created_at.desc(), ExpenseOrder.id.desc()).offset(offset).limit(limit).all()


def ensure_editable(expense_order: ExpenseOrder, actor: ActorContext) -> None:
    if expense_order.status in LOCKED_STATUSES:
        raise ValidationError(
            f"Expense order {expense_order.expense_number} is {expense_order.status} and cannot be modified",
        )
    if expense_order.status in EDITABLE_STATUSES:
        return
    if not permission_service.is_privileged(actor.user_id):
        raise AuthorizationRequiredError(
            f"Expense order {expense_order.expense_number} is {expense_order.status}; "
            f"only an administrator can change it",
        )


def _audit(hooks, action: str, expense_order: ExpenseOrder, before: dict | None, actor: ActorContext) -> None:
    hooks.add(
        "audit",
        audit_service.log_change,
        action,
        "expense_order",
        expense_order.id,
        before,
        expense_order.audit_snapshot(),
        actor,
    )


def create_expense_order(
    actor: ActorContext,
    items: list[ItemInput],
    *,
    payee_name: str | None = None,
    notes: str | None = None,
    tax_rate_bps: int | None = None,
) -> ExpenseOrder:
    if not items:
        raise ValidationError("At least one item is required", field="items")
    rate = normalize_tax_rate(tax_rate_bps, current_app.config.get("EXPENSE_TAX_RATE_BPS", 0))

    def _op(hooks):
        expense_order = ExpenseOrder(
            expense_number=next_number("EXPENSE"),
            status=state_machine.DRAFT,
            payee_name=payee_name,
            notes=notes,
            tax_rate_bps=rate,
            created_by_user_id=actor.user_id,
        )
        db.session.add(expense_order)
        db.session.flush()

        for item in items:
            financial_service.add_item_row(KIND, expense_order.id, item)
        financial_service.recalculate(KIND, expense_order.id)
        _audit(hooks, audit_service.CREATE, expense_order, None, actor)
        return expense_order

    return run_in_transaction(_op)


def add_item(expense_order_id: int, item: ItemInput, actor: ActorContext) -> ExpenseOrder:
    def _op(hooks):
        expense_order = _load(expense_order_id, lock=True)
        ensure_editable(expense_order, actor)
        before = expense_order.audit_snapshot()
        financial_service.add_item_row(KIND, expense_order.id, item)
        financial_service.recalculate(KIND, expense_order.id)
        _audit(hooks, audit_service.UPDATE, expense_order, before, actor)
        return expense_order

    return run_in_transaction(_op)


def remove_item(expense_order_id: int, item_id: int, actor: ActorContext) -> ExpenseOrder:
    def _op(hooks):
        expense_order = _load(expense_order_id, lock=True)
        row = financial_service.get_item_row(KIND, expense_order.id, item_id)
        financial_service.ensure_not_last_item(KIND, expense_order.id)
        ensure_editable(expense_order, actor)

        before = expense_order.audit_snapshot()
        db.session.delete(row)
        db.session.flush()
        financial_service.recalculate(KIND, expense_order.id)
        financial_service.ensure_discounts_within_cap(expense_order)
        _audit(hooks, audit_service.UPDATE, expense_order, before, actor)
        return expense_order

    return run_in_transaction(_op)


def add_payment(expense_order_id: int, payment: PaymentInput, actor: ActorContext) -> ExpenseOrder:
    def _op(hooks):
        expense_order = _load(expense_order_id, lock=True)
        if expense_order.status not in PAYABLE_STATUSES:
            raise ValidationError(
                f"Payments can only be recorded on {state_machine.AUTHORIZED} expense orders; "
                f"{expense_order.expense_number} is {expense_order.status}",
            )
        financial_service.ensure_payment_within_balance(expense_order, payment.amount_cents)

        before = expense_order.audit_snapshot()
        financial_service.add_payment_row(KIND, expense_order.id, payment, actor.user_id)
        financial_service.recalculate(KIND, expense_order.id)
        _audit(hooks, audit_service.UPDATE, expense_order, before, actor)
        return expense_order

    return run_in_transaction(_op)


def apply_discount(
    expense_order_id: int,
    amount_cents: int,
    actor: ActorContext,
    reason: str | None = None,
) -> ExpenseOrder:
    def _op(hooks):
        expense_order = _load(expense_order_id, lock=True)
        if expense_order.status not in DISCOUNTABLE_STATUSES:
            raise ValidationError(
                f"Discounts cannot be applied to {expense_order.status} expense orders; "
                f"allowed in {sorted(DISCOUNTABLE_STATUSES)}",
            )
        financial_service.ensure_discount_within_cap(expense_order, amount_cents)

        before = expense_order.audit_snapshot()
        financial_service.add_discount_row(KIND, expense_order.id, amount_cents, reason, actor.user_id)
        financial_service.recalculate(KIND, expense_order.id)
        _audit(hooks, audit_service.UPDATE, expense_order, before, actor)
        return expense_order

    return run_in_transaction(_op)


def change_status(
    expense_order_id: int,
    new_status: str,
    actor: ActorContext,
    *,
    now: datetime | None = None,
) -> ExpenseOrder:
    """
    Move an expense order to new_status.

    Raises:
        InvalidTransitionError: Edge not in the transition table
        AuthorizationRequiredError: AUTHORIZED without privilege or approval,
            PAID without APPROVE_EXPENSE_ORDERS
        ValidationError: PAID with a non-zero balance
    """
    target = state_machine.validate_status(KIND, new_status)

    def _op(hooks):
        expense_order = _load(expense_order_id, lock=True)
        if expense_order.status == target:
            return expense_order

        state_machine.ensure_transition(KIND, expense_order.status, target)
        moment = now or utcnow()
        before = expense_order.audit_snapshot()

        if target == state_machine.AUTHORIZED:
            if permission_service.is_privileged(actor.user_id):
                authorizer_id = actor.user_id
            else:
                grant = expense_auth_workflow.consume(expense_order.id, actor.user_id, state_machine.AUTHORIZED, now)
                if grant is None:
                    raise AuthorizationRequiredError(
                        "Authorizing an expense order requires administrator approval; "
                        "file an authorization request",
                    )
                authorizer_id = grant.reviewed_by_user_id
            expense_order.authorized_by_user_id = authorizer_id
            expense_order.authorized_at = moment

        elif target == state_machine.PAID:
            if expense_order.balance_cents != 0:
                raise ValidationError(
                    f"Expense order {expense_order.expense_number} still has a balance of "
                    f"{expense_order.balance_cents}; it cannot be marked PAID",
                    details={"balance_cents": expense_order.balance_cents},
                )
            permission_service.require_permission(actor.user_id, "APPROVE_EXPENSE_ORDERS")
            expense_order.paid_at = moment

        expense_order.status = target
        expense_order.status_changed_at = moment
        db.session.flush()
        _audit(hooks, audit_service.UPDATE, expense_order, before, actor)
        return expense_order

    return run_in_transaction(_op)


def delete_expense_order(expense_order_id: int, actor: ActorContext) -> None:
    def _op(hooks):
        expense_order = _load(expense_order_id, lock=True)
        if expense_order.status != state_machine.DRAFT:
            raise ValidationError(
                f"Only DRAFT expense orders can be deleted; "
                f"{expense_order.expense_number} is {expense_order.status}",
            )
        has_requests = (
            db.session.query(ExpenseOrderAuthRequest.id)
            .filter(ExpenseOrderAuthRequest.expense_order_id == expense_order.id)
            .first()
        )
        if has_requests:
            raise ValidationError(
                f"Expense order {expense_order.expense_number} has authorization requests and cannot be deleted",
            )

        before = expense_order.audit_snapshot()
        expense_order_ref = expense_order.id
        db.session.delete(expense_order)
        db.session.flush()
        hooks.add(
            "audit", audit_service.log_change, audit_service.DELETE, "expense_order", expense_order_ref, before, None, actor
        )

    run_in_transaction(_op)
