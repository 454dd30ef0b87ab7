from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z, utcnow
from .financials import DiscountMixin, FinancialTotalsMixin, LineItemMixin


class Quote(FinancialTotalsMixin, db.Model):
    """
    Customer quote (estimate).

    Shares the financial shape of orders but never takes payments, so
    paid_cents stays 0 and balance_cents equals total_cents. An accepted quote
    is converted into a DRAFT order; converted quotes are immutable.
    """
    __tablename__ = "quotes"
    __table_args__ = (
        db.UniqueConstraint("quote_number", name="uq_quotes_quote_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "COT-2026-0003")
    quote_number = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(32), nullable=False, default="DRAFT", index=True)

    client_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    valid_until = db.Column(db.Date, nullable=True)

    converted_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    converted_at = db.Column(db.DateTime, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "QuoteItem",
        backref="quote",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="QuoteItem.sort_order",
    )
    discounts = db.relationship(
        "QuoteDiscount",
        backref="quote",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="QuoteDiscount.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def audit_snapshot(self) -> dict:
        snapshot = {
            "quote_number": self.quote_number,
            "status": self.status,
            "client_name": self.client_name,
            "converted_order_id": self.converted_order_id,
        }
        snapshot.update(self.financial_dict())
        return snapshot

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "quote_number": self.quote_number,
            "status": self.status,
            "client_name": self.client_name,
            "notes": self.notes,
            "valid_until": to_iso_date(self.valid_until),
            "converted_order_id": self.converted_order_id,
            "converted_at": to_utc_z(self.converted_at),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        data.update(self.financial_dict())
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["discounts"] = [discount.to_dict() for discount in self.discounts]
        return data


class QuoteItem(LineItemMixin, db.Model):
    __tablename__ = "quote_items"
    __table_args__ = {"sqlite_autoincrement": True}

    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        data = self.item_dict()
        data["quote_id"] = self.quote_id
        return data


class QuoteDiscount(DiscountMixin, db.Model):
    __tablename__ = "quote_discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    quote_id = db.Column(db.Integer, db.ForeignKey("quotes.id"), nullable=False, index=True)

    def to_dict(self) -> dict:
        data = self.discount_dict()
        data["quote_id"] = self.quote_id
        return data
