# Overview: Service-layer operations for quotes and quote conversion; encapsulates business logic and database work.

"""
Quote Service

WHY: A quote is an order that has not happened yet. It shares the order's
financial shape (items, discounts, tax) but never takes payments.

Lifecycle: DRAFT -> SENT -> ACCEPTED | REJECTED, any open quote -> CANCELLED,
and DRAFT/SENT/ACCEPTED -> CONVERTED through convert_to_order() only.

Converting copies items and discounts into a new DRAFT order in the same
transaction; the quote and the order point at each other and the quote is
immutable from then on.
"""

from __future__ import annotations

from datetime import date, datetime

from flask import current_app

from ..errors import AuthorizationRequiredError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, Quote
from ..time_utils import utcnow
from ..validation import ItemInput, normalize_tax_rate
from . import audit_service, financial_service, permission_service, state_machine
from .concurrency import lock_for_update, run_in_transaction
from .context import ActorContext
from .order_service import insert_order
from .sequence_service import next_number


KIND = state_machine.QUOTE_KIND

EDITABLE_STATUSES = frozenset({state_machine.DRAFT, state_machine.SENT})
LOCKED_STATUSES = frozenset({state_machine.CANCELLED, state_machine.CONVERTED})
DISCOUNTABLE_STATUSES = frozenset({state_machine.DRAFT, state_machine.SENT, state_machine.ACCEPTED})


def _load(quote_id: int, lock: bool = False) -> Quote:
    query = db.session.query(Quote).filter(Quote.id == quote_id)
    if lock:
        query = lock_for_update(query)
    quote = query.first()
    if quote is None:
        raise NotFoundError(f"Quote {quote_id} not found")
    return quote


def get_quote(quote_id: int) -> Quote:
    return _load(quote_id)


def list_quotes(*, status: str | None = None, limit: int = 100, offset: int = 0) -> list[Quote]:
    query = db.session.query(Quote)
    if status:
        query = query.filter(Quote.status == state_machine.validate_status(KIND, status))
    return query.order_by(Quote.created_at.desc(), Quote.id.desc()).offset(offset).limit(limit).all()


def ensure_editable(quote: Quote, actor: ActorContext) -> None:
    if quote.status in LOCKED_STATUSES:
        raise ValidationError(f"Quote {quote.quote_number} is {quote.status} and cannot be modified")
    if quote.status in EDITABLE_STATUSES:
        return
    if not permission_service.is_privileged(actor.user_id):
        raise AuthorizationRequiredError(
            f"Quote {quote.quote_number} is {quote.status}; only an administrator can change it",
        )


def _audit(hooks, action: str, quote: Quote, before: dict | None, actor: ActorContext) -> None:
    hooks.add("audit", audit_service.log_change, action, "quote", quote.id, before, quote.audit_snapshot(), actor)


def create_quote(
    actor: ActorContext,
    items: list[ItemInput],
    *,
    client_name: str | None = None,
    notes: str | None = None,
    valid_until: date | None = None,
    tax_rate_bps: int | None = None,
) -> Quote:
    if not items:
        raise ValidationError("At least one item is required", field="items")
    rate = normalize_tax_rate(tax_rate_bps, current_app.config.get("ORDER_TAX_RATE_BPS", 1900))

    def _op(hooks):
        quote = Quote(
            quote_number=next_number("QUOTE"),
            status=state_machine.DRAFT,
            client_name=client_name,
            notes=notes,
            valid_until=valid_until,
            tax_rate_bps=rate,
            created_by_user_id=actor.user_id,
        )
        db.session.add(quote)
        db.session.flush()

        for item in items:
            financial_service.add_item_row(KIND, quote.id, item)
        financial_service.recalculate(KIND, quote.id)
        _audit(hooks, audit_service.CREATE, quote, None, actor)
        return quote

    return run_in_transaction(_op)


def add_item(quote_id: int, item: ItemInput, actor: ActorContext) -> Quote:
    def _op(hooks):
        quote = _load(quote_id, lock=True)
        ensure_editable(quote, actor)
        before = quote.audit_snapshot()
        financial_service.add_item_row(KIND, quote.id, item)
        financial_service.recalculate(KIND, quote.id)
        _audit(hooks, audit_service.UPDATE, quote, before, actor)
        return quote

    return run_in_transaction(_op)


def update_item(quote_id: int, item_id: int, changes: dict, actor: ActorContext) -> Quote:
    def _op(hooks):
        quote = _load(quote_id, lock=True)
        ensure_editable(quote, actor)
        before = quote.audit_snapshot()
        financial_service.update_item_row(KIND, quote.id, item_id, changes)
        financial_service.recalculate(KIND, quote.id)
        financial_service.ensure_discounts_within_cap(quote)
        _audit(hooks, audit_service.UPDATE, quote, before, actor)
        return quote

    return run_in_transaction(_op)


def remove_item(quote_id: int, item_id: int, actor: ActorContext) -> Quote:
    def _op(hooks):
        quote = _load(quote_id, lock=True)
        row = financial_service.get_item_row(KIND, quote.id, item_id)
        financial_service.ensure_not_last_item(KIND, quote.id)
        ensure_editable(quote, actor)

        before = quote.audit_snapshot()
        db.session.delete(row)
        db.session.flush()
        financial_service.recalculate(KIND, quote.id)
        financial_service.ensure_discounts_within_cap(quote)
        _audit(hooks, audit_service.UPDATE, quote, before, actor)
        return quote

    return run_in_transaction(_op)


def apply_discount(quote_id: int, amount_cents: int, actor: ActorContext, reason: str | None = None) -> Quote:
    def _op(hooks):
        quote = _load(quote_id, lock=True)
        if quote.status not in DISCOUNTABLE_STATUSES:
            raise ValidationError(
                f"Discounts cannot be applied to {quote.status} quotes; allowed in {sorted(DISCOUNTABLE_STATUSES)}",
            )
        financial_service.ensure_discount_within_cap(quote, amount_cents)

        before = quote.audit_snapshot()
        financial_service.add_discount_row(KIND, quote.id, amount_cents, reason, actor.user_id)
        financial_service.recalculate(KIND, quote.id)
        _audit(hooks, audit_service.UPDATE, quote, before, actor)
        return quote

    return run_in_transaction(_op)


def change_status(quote_id: int, new_status: str, actor: ActorContext) -> Quote:
    """
    Move a quote to new_status. CONVERTED is only reachable through convert_to_order().
    """
    target = state_machine.validate_status(KIND, new_status)
    if target == state_machine.CONVERTED:
        raise ValidationError("Use the convert operation to turn a quote into an order", field="status")

    def _op(hooks):
        quote = _load(quote_id, lock=True)
        if quote.status == target:
            return quote

        state_machine.ensure_transition(KIND, quote.status, target)
        before = quote.audit_snapshot()
        quote.status = target
        db.session.flush()
        _audit(hooks, audit_service.UPDATE, quote, before, actor)
        return quote

    return run_in_transaction(_op)


def convert_to_order(quote_id: int, actor: ActorContext, *, now: datetime | None = None) -> Order:
    """
    Create a DRAFT order from a quote and mark the quote CONVERTED.

    Items, discounts, client and tax rate are copied; both sides are linked.

    Raises:
        InvalidTransitionError: Quote is REJECTED, CANCELLED or already CONVERTED
    """
    def _op(hooks):
        quote = _load(quote_id, lock=True)
        state_machine.ensure_transition(KIND, quote.status, state_machine.CONVERTED)

        items = [
            ItemInput(
                description=item.description,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                sort_order=item.sort_order,
            )
            for item in quote.items
        ]
        discounts = [(discount.amount_cents, discount.reason) for discount in quote.discounts]

        order = insert_order(
            actor,
            items,
            tax_rate_bps=quote.tax_rate_bps,
            client_name=quote.client_name,
            notes=quote.notes,
            source_quote_id=quote.id,
            discounts=discounts,
        )

        before = quote.audit_snapshot()
        quote.status = state_machine.CONVERTED
        quote.converted_order_id = order.id
        quote.converted_at = now or utcnow()
        db.session.flush()

        _audit(hooks, audit_service.UPDATE, quote, before, actor)
        hooks.add(
            "audit_order", audit_service.log_change, audit_service.CREATE, "order", order.id, None,
            order.audit_snapshot(), actor,
        )
        return order

    return run_in_transaction(_op)


def delete_quote(quote_id: int, actor: ActorContext) -> None:
    def _op(hooks):
        quote = _load(quote_id, lock=True)
        if quote.status != state_machine.DRAFT:
            raise ValidationError(f"Only DRAFT quotes can be deleted; quote {quote.quote_number} is {quote.status}")

        before = quote.audit_snapshot()
        quote_ref = quote.id
        db.session.delete(quote)
        db.session.flush()
        hooks.add("audit", audit_service.log_change, audit_service.DELETE, "quote", quote_ref, before, None, actor)

    run_in_transaction(_op)
