from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z, utcnow
from .financials import DiscountMixin, FinancialTotalsMixin, LineItemMixin, PaymentMixin


class Order(FinancialTotalsMixin, db.Model):
    """
    Customer order (production order) document.

    WHY: Orders are documents with a lifecycle (DRAFT -> CONFIRMED ->
    IN_PRODUCTION -> READY -> DELIVERED / DELIVERED_ON_CREDIT / PAID, or
    CANCELLED), not just a bag of lines. Financial fields are recomputed in the
    same transaction as every item/discount/payment change.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "OP-2026-0042")
    order_number = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(32), nullable=False, default="DRAFT", index=True)

    client_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Delivery scheduling; postponements keep the previous date and a reason
    delivery_date = db.Column(db.Date, nullable=True)
    previous_delivery_date = db.Column(db.Date, nullable=True)
    delivery_date_reason = db.Column(db.String(255), nullable=True)

    # Set when the order was produced by converting a quote
    source_quote_id = db.Column(db.Integer, nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    status_changed_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.sort_order",
    )
    payments = db.relationship(
        "OrderPayment",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderPayment.id",
    )
    discounts = db.relationship(
        "OrderDiscount",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderDiscount.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def audit_snapshot(self) -> dict:
        """Compact state used for audit before/after images."""
        snapshot = {
            "order_number": self.order_number,
            "status": self.status,
            "client_name": self.client_name,
            "delivery_date": to_iso_date(self.delivery_date),
        }
        snapshot.update(self.financial_dict())
        return snapshot

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "status": self.status,
            "client_name": self.client_name,
            "notes": self.notes,
            "delivery_date": to_iso_date(self.delivery_date),
            "previous_delivery_date": to_iso_date(self.previous_delivery_date),
            "delivery_date_reason": self.delivery_date_reason,
            "source_quote_id": self.source_quote_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "status_changed_at": to_utc_z(self.status_changed_at),
            "version_id": self.version_id,
        }
        data.update(self.financial_dict())
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
            data["discounts"] = [discount.to_dict() for discount in self.discounts]
        return data


class OrderItem(LineItemMixin, db.Model):
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        data = self.item_dict()
        data["order_id"] = self.order_id
        return data


class OrderPayment(PaymentMixin, db.Model):
    __tablename__ = "order_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        data = self.payment_dict()
        data["order_id"] = self.order_id
        return data


class OrderDiscount(DiscountMixin, db.Model):
    __tablename__ = "order_discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        data = self.discount_dict()
        data["order_id"] = self.order_id
        return data
