from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .financials import DiscountMixin, FinancialTotalsMixin, LineItemMixin, PaymentMixin


class ExpenseOrder(FinancialTotalsMixin, db.Model):
    """
    Expense order (purchase/expense authorization document).

    Lifecycle: DRAFT -> CREATED -> AUTHORIZED -> PAID. AUTHORIZED records who
    authorized it: the acting admin, or the admin who approved the
    requester's authorization request.
    """
    __tablename__ = "expense_orders"
    __table_args__ = (
        db.UniqueConstraint("expense_number", name="uq_expense_orders_expense_number"),
        db.Index("ix_expense_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "GAS-2026-0007")
    expense_number = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(32), nullable=False, default="DRAFT", index=True)

    payee_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    authorized_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    authorized_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    status_changed_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "ExpenseOrderItem",
        backref="expense_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ExpenseOrderItem.sort_order",
    )
    payments = db.relationship(
        "ExpenseOrderPayment",
        backref="expense_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ExpenseOrderPayment.id",
    )
    discounts = db.relationship(
        "ExpenseOrderDiscount",
        backref="expense_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ExpenseOrderDiscount.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def audit_snapshot(self) -> dict:
        snapshot = {
            "expense_number": self.expense_number,
            "status": self.status,
            "payee_name": self.payee_name,
            "authorized_by_user_id": self.authorized_by_user_id,
        }
        snapshot.update(self.financial_dict())
        return snapshot

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "expense_number": self.expense_number,
            "status": self.status,
            "payee_name": self.payee_name,
            "notes": self.notes,
            "authorized_by_user_id": self.authorized_by_user_id,
            "authorized_at": to_utc_z(self.authorized_at),
            "paid_at": to_utc_z(self.paid_at),
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


class ExpenseOrderItem(LineItemMixin, db.Model):
    __tablename__ = "expense_order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    expense_order_id = db.Column(db.Integer, db.ForeignKey("expense_orders.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        data = self.item_dict()
        data["expense_order_id"] = self.expense_order_id
        return data


class ExpenseOrderPayment(PaymentMixin, db.Model):
    __tablename__ = "expense_order_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    expense_order_id = db.Column(db.Integer, db.ForeignKey("expense_orders.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        data = self.payment_dict()
        data["expense_order_id"] = self.expense_order_id
        return data


class ExpenseOrderDiscount(DiscountMixin, db.Model):
    __tablename__ = "expense_order_discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    expense_order_id = db.Column(db.Integer, db.ForeignKey("expense_orders.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        data = self.discount_dict()
        data["expense_order_id"] = self.expense_order_id
        return data
