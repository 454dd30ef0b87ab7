# Overview: Service-layer operations for aggregate financials; encapsulates business logic and database work.

"""
Financial Recalculation for Orders, Quotes and Expense Orders

WHY: Totals are derived data. Storing them on the aggregate row keeps lists
and balance checks cheap, but they must be rewritten in the same
transaction as every item, discount or payment change or readers would see
a stale total.

FORMULA (all integer cents, tax rate in basis points):
    subtotal = sum(item.total_cents)
    tax      = round_half_up(subtotal * tax_rate_bps / 10000)
    discount = sum(discount.amount_cents)
    total    = subtotal + tax - discount
    paid     = sum(payment.amount_cents)
    balance  = total - paid

DESIGN PRINCIPLES:
- Recalculation reads current rows with SQL sums and performs one update
  of the aggregate row; it never commits (caller owns the transaction)
- Idempotent: recalculating twice without mutation changes nothing
- Guards (discount cap, payment <= balance) raise ValidationError; values
  are never silently clamped
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    ExpenseOrder,
    ExpenseOrderDiscount,
    ExpenseOrderItem,
    ExpenseOrderPayment,
    Order,
    OrderDiscount,
    OrderItem,
    OrderPayment,
    Quote,
    QuoteDiscount,
    QuoteItem,
)
from ..time_utils import utcnow
from ..validation import ItemInput, PaymentInput


BPS_DENOMINATOR = Decimal(10000)


@dataclass(frozen=True)
class FinancialTotals:
    subtotal_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    paid_cents: int
    balance_cents: int

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AggregateModels:
    """Tables that make up one aggregate kind."""
    label: str
    header: type
    item: type
    discount: type | None
    payment: type | None
    foreign_key: str


AGGREGATES = {
    "order": AggregateModels("Order", Order, OrderItem, OrderDiscount, OrderPayment, "order_id"),
    "expense_order": AggregateModels(
        "Expense order",
        ExpenseOrder,
        ExpenseOrderItem,
        ExpenseOrderDiscount,
        ExpenseOrderPayment,
        "expense_order_id",
    ),
    "quote": AggregateModels("Quote", Quote, QuoteItem, QuoteDiscount, None, "quote_id"),
}


def get_aggregate_models(kind: str) -> AggregateModels:
    try:
        return AGGREGATES[kind]
    except KeyError:
        raise ValidationError(f"Unknown aggregate kind: {kind}")


def compute_tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    amount = Decimal(subtotal_cents) * Decimal(tax_rate_bps) / BPS_DENOMINATOR
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_totals(
    item_totals: Iterable[int],
    tax_rate_bps: int,
    discount_amounts: Iterable[int] = (),
    payment_amounts: Iterable[int] = (),
) -> FinancialTotals:
    """Pure computation of the six derived fields."""
    subtotal = sum(item_totals)
    tax = compute_tax_cents(subtotal, tax_rate_bps)
    discount = sum(discount_amounts)
    total = subtotal + tax - discount
    paid = sum(payment_amounts)
    return FinancialTotals(
        subtotal_cents=subtotal,
        tax_cents=tax,
        discount_cents=discount,
        total_cents=total,
        paid_cents=paid,
        balance_cents=total - paid,
    )


def _sum(model, column_name: str, foreign_key: str, aggregate_id: int) -> int:
    if model is None:
        return 0
    return int(
        db.session.query(func.coalesce(func.sum(getattr(model, column_name)), 0))
        .filter(getattr(model, foreign_key) == aggregate_id)
        .scalar()
    )


def collect_totals(kind: str, aggregate) -> FinancialTotals:
    """Recompute totals for an aggregate from the rows currently in the session/DB."""
    models = get_aggregate_models(kind)
    subtotal = _sum(models.item, "total_cents", models.foreign_key, aggregate.id)
    discount = _sum(models.discount, "amount_cents", models.foreign_key, aggregate.id)
    paid = _sum(models.payment, "amount_cents", models.foreign_key, aggregate.id)
    return compute_totals([subtotal], aggregate.tax_rate_bps, [discount], [paid])


def apply_totals(aggregate, totals: FinancialTotals) -> None:
    for field, value in totals.as_dict().items():
        setattr(aggregate, field, value)


def recalculate(kind: str, aggregate_id: int):
    """
    Rewrite the computed financial fields of one aggregate.

    Must be called inside the transaction that mutated the aggregate's items,
    discounts or payments. Flushes but does not commit.

    Raises:
        NotFoundError: Aggregate id does not resolve
    """
    models = get_aggregate_models(kind)
    aggregate = db.session.get(models.header, aggregate_id)
    if aggregate is None:
        raise NotFoundError(f"{models.label} {aggregate_id} not found")
    apply_totals(aggregate, collect_totals(kind, aggregate))
    db.session.flush()
    return aggregate


def ensure_discount_within_cap(aggregate, amount_cents: int) -> None:
    """Reject a discount that would push cumulative discounts above subtotal + tax."""
    cap = aggregate.subtotal_cents + aggregate.tax_cents
    if aggregate.discount_cents + amount_cents > cap:
        available = max(cap - aggregate.discount_cents, 0)
        raise ValidationError(
            f"Discount of {amount_cents} exceeds the allowed maximum; "
            f"at most {available} can still be discounted (subtotal + tax = {cap})",
            field="amount_cents",
            details={"max_discount_cents": available},
        )


def ensure_discounts_within_cap(aggregate) -> None:
    """
    Reject an item or tax change that leaves existing discounts above subtotal + tax.

    Call after recalculate(); raising inside run_in_transaction rolls the change back.
    """
    cap = aggregate.subtotal_cents + aggregate.tax_cents
    if aggregate.discount_cents > cap:
        raise ValidationError(
            f"This change lowers subtotal + tax to {cap}, below the {aggregate.discount_cents} "
            f"already discounted; remove a discount first",
            details={"discount_cents": aggregate.discount_cents, "max_discount_cents": cap},
        )


def ensure_payment_within_balance(aggregate, amount_cents: int) -> None:
    if amount_cents > aggregate.balance_cents:
        raise ValidationError(
            f"Payment of {amount_cents} exceeds the outstanding balance of {aggregate.balance_cents}",
            field="amount_cents",
            details={"balance_cents": aggregate.balance_cents},
        )


# =============================================================================
# Owned-row helpers shared by the aggregate services
# =============================================================================

def count_items(kind: str, aggregate_id: int) -> int:
    models = get_aggregate_models(kind)
    return (
        db.session.query(func.count(models.item.id))
        .filter(getattr(models.item, models.foreign_key) == aggregate_id)
        .scalar()
    )


def next_sort_order(kind: str, aggregate_id: int) -> int:
    models = get_aggregate_models(kind)
    current = (
        db.session.query(func.max(models.item.sort_order))
        .filter(getattr(models.item, models.foreign_key) == aggregate_id)
        .scalar()
    )
    return 0 if current is None else current + 1


def add_item_row(kind: str, aggregate_id: int, item: ItemInput):
    models = get_aggregate_models(kind)
    sort_order = item.sort_order if item.sort_order is not None else next_sort_order(kind, aggregate_id)
    row = models.item(
        description=item.description,
        quantity=item.quantity,
        unit_price_cents=item.unit_price_cents,
        total_cents=item.total_cents,
        sort_order=sort_order,
    )
    setattr(row, models.foreign_key, aggregate_id)
    db.session.add(row)
    db.session.flush()
    return row


def get_item_row(kind: str, aggregate_id: int, item_id: int):
    models = get_aggregate_models(kind)
    return get_owned_row(models.item, models.foreign_key, aggregate_id, item_id, "Item")


def update_item_row(kind: str, aggregate_id: int, item_id: int, changes: dict):
    """Apply description/quantity/unit_price_cents/sort_order changes and refresh the line total."""
    row = get_item_row(kind, aggregate_id, item_id)
    for field in ("description", "quantity", "unit_price_cents", "sort_order"):
        if changes.get(field) is not None:
            setattr(row, field, changes[field])
    row.total_cents = row.quantity * row.unit_price_cents
    db.session.flush()
    return row


def ensure_not_last_item(kind: str, aggregate_id: int) -> None:
    if count_items(kind, aggregate_id) <= 1:
        raise ValidationError(
            f"Cannot remove the last item; a {get_aggregate_models(kind).label.lower()} needs at least one item",
            field="items",
        )


def add_discount_row(kind: str, aggregate_id: int, amount_cents: int, reason: str | None, user_id: int | None):
    models = get_aggregate_models(kind)
    row = models.discount(amount_cents=amount_cents, reason=reason, applied_by_user_id=user_id)
    setattr(row, models.foreign_key, aggregate_id)
    db.session.add(row)
    db.session.flush()
    return row


def add_payment_row(kind: str, aggregate_id: int, payment: PaymentInput, user_id: int | None):
    models = get_aggregate_models(kind)
    if models.payment is None:
        raise ValidationError(f"{models.label}s do not take payments")
    row = models.payment(
        amount_cents=payment.amount_cents,
        method=payment.method,
        reference=payment.reference,
        paid_at=payment.paid_at or utcnow(),
        recorded_by_user_id=user_id,
    )
    setattr(row, models.foreign_key, aggregate_id)
    db.session.add(row)
    db.session.flush()
    return row


def get_owned_row(model, foreign_key: str, aggregate_id: int, row_id: int, label: str):
    row = (
        db.session.query(model)
        .filter(model.id == row_id, getattr(model, foreign_key) == aggregate_id)
        .first()
    )
    if row is None:
        raise NotFoundError(f"{label} {row_id} not found")
    return row


# =============================================================================
# Integrity verification
# =============================================================================

def verify_totals(kind: str, aggregate_id: int) -> list[str]:
    """
    Compare stored financial fields with a fresh computation (read-only).

    Returns a list of human-readable mismatches; empty means consistent.
    """
    models = get_aggregate_models(kind)
    aggregate = db.session.get(models.header, aggregate_id)
    if aggregate is None:
        raise NotFoundError(f"{models.label} {aggregate_id} not found")

    problems: list[str] = []
    items = (
        db.session.query(models.item)
        .filter(getattr(models.item, models.foreign_key) == aggregate_id)
        .all()
    )
    for item in items:
        if item.total_cents != item.quantity * item.unit_price_cents:
            problems.append(
                f"item {item.id}: total_cents {item.total_cents} != "
                f"{item.quantity} x {item.unit_price_cents}"
            )

    expected = collect_totals(kind, aggregate)
    for field, value in expected.as_dict().items():
        stored = getattr(aggregate, field)
        if stored != value:
            problems.append(f"{field}: stored {stored}, expected {value}")
    return problems


def verify_all(kinds: Iterable[str] | None = None) -> dict[str, dict[int, list[str]]]:
    """Run verify_totals over every aggregate; only inconsistent ids are reported."""
    report: dict[str, dict[int, list[str]]] = {}
    for kind in kinds or AGGREGATES.keys():
        models = get_aggregate_models(kind)
        mismatches: dict[int, list[str]] = {}
        for (aggregate_id,) in db.session.query(models.header.id).order_by(models.header.id).all():
            problems = verify_totals(kind, aggregate_id)
            if problems:
                mismatches[aggregate_id] = problems
        report[kind] = mismatches
    return report
