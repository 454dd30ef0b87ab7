from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class FinancialTotalsMixin:
    """
    Computed money fields shared by orders, quotes and expense orders.

    All amounts in cents; tax rate in basis points (1900 = 19%).

    INVARIANTS (maintained by financial_service.recalculate):
        total_cents   = subtotal_cents + tax_cents - discount_cents
        balance_cents = total_cents - paid_cents
    """
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    def financial_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_cents": self.balance_cents,
        }


class LineItemMixin:
    """Line item columns; total_cents = quantity * unit_price_cents."""
    id = db.Column(db.Integer, primary_key=True)
    description = db.Column(db.String(500), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def item_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
            "sort_order": self.sort_order,
            "created_at": to_utc_z(self.created_at),
        }


class DiscountMixin:
    id = db.Column(db.Integer, primary_key=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    applied_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def discount_dict(self) -> dict:
        return {
            "id": self.id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "applied_by_user_id": self.applied_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class PaymentMixin:
    id = db.Column(db.Integer, primary_key=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    # CASH, TRANSFER, CARD, CHECK, OTHER
    method = db.Column(db.String(16), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    recorded_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def payment_dict(self) -> dict:
        return {
            "id": self.id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "paid_at": to_utc_z(self.paid_at),
            "recorded_by_user_id": self.recorded_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
