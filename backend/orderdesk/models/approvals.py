from __future__ import annotations

from sqlalchemy.orm import declared_attr

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


_PENDING_ONLY = "status = 'PENDING'"


class ApprovalRequestMixin:
    """
    Columns shared by every approval request table.

    Lifecycle: PENDING -> APPROVED | REJECTED (reviewer, exactly once);
    APPROVED -> EXPIRED (expiry sweep, time-boxed grants only).
    Rows are never deleted; they are the audit trail of who allowed what.

    Subclasses name their resource foreign key in RESOURCE_KEY.
    """
    RESOURCE_KEY = ""

    id = db.Column(db.Integer, primary_key=True)

    # PENDING, APPROVED, REJECTED, EXPIRED
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    # Target value for status-change / authorization variants (None for edit grants)
    requested_status = db.Column(db.String(32), nullable=True)

    justification = db.Column(db.Text, nullable=True)
    review_notes = db.Column(db.Text, nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)

    # Only time-boxed grants expire
    expires_at = db.Column(db.DateTime, nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @declared_attr
    def requested_by_user_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    @declared_attr
    def reviewed_by_user_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    @property
    def resource_id(self) -> int:
        return getattr(self, self.RESOURCE_KEY)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            self.RESOURCE_KEY: self.resource_id,
            "status": self.status,
            "requested_status": self.requested_status,
            "current_status": getattr(self, "current_status", None),
            "justification": self.justification,
            "requested_by_user_id": self.requested_by_user_id,
            "reviewed_by_user_id": self.reviewed_by_user_id,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "review_notes": self.review_notes,
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
        }


class OrderEditRequest(ApprovalRequestMixin, db.Model):
    """
    Request to edit an order that has left DRAFT.

    An approved request is a time-boxed grant (EDIT_GRANT_MINUTES) during which
    the requester may change items, header fields and discounts.
    """
    __tablename__ = "order_edit_requests"
    __table_args__ = (
        db.Index(
            "uq_order_edit_requests_pending",
            "order_id",
            "requested_by_user_id",
            unique=True,
            sqlite_where=db.text(_PENDING_ONLY),
            postgresql_where=db.text(_PENDING_ONLY),
        ),
        {"sqlite_autoincrement": True},
    )
    RESOURCE_KEY = "order_id"

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)


class OrderStatusChangeRequest(ApprovalRequestMixin, db.Model):
    """
    Request to move an order into an approval-gated status (DELIVERED_ON_CREDIT).

    current_status captures the order's status at request time; approval fails
    if the order has moved since.
    """
    __tablename__ = "order_status_change_requests"
    __table_args__ = (
        db.Index(
            "uq_order_status_change_requests_pending",
            "order_id",
            "requested_by_user_id",
            "requested_status",
            unique=True,
            sqlite_where=db.text(_PENDING_ONLY),
            postgresql_where=db.text(_PENDING_ONLY),
        ),
        {"sqlite_autoincrement": True},
    )
    RESOURCE_KEY = "order_id"

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    current_status = db.Column(db.String(32), nullable=False)


class ExpenseOrderAuthRequest(ApprovalRequestMixin, db.Model):
    """Request for an admin to allow AUTHORIZED on an expense order."""
    __tablename__ = "expense_order_auth_requests"
    __table_args__ = (
        db.Index(
            "uq_expense_order_auth_requests_pending",
            "expense_order_id",
            "requested_by_user_id",
            "requested_status",
            unique=True,
            sqlite_where=db.text(_PENDING_ONLY),
            postgresql_where=db.text(_PENDING_ONLY),
        ),
        {"sqlite_autoincrement": True},
    )
    RESOURCE_KEY = "expense_order_id"

    expense_order_id = db.Column(db.Integer, db.ForeignKey("expense_orders.id"), nullable=False, index=True)


class EditableStatusPolicy(db.Model):
    """
    Per-order-status switch deciding whether edit requests may be filed.

    DRAFT orders are always editable and need no row here.
    """
    __tablename__ = "editable_status_policies"
    __table_args__ = (
        db.UniqueConstraint("order_status", name="uq_editable_status_policies_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_status = db.Column(db.String(32), nullable=False)
    allow_edit_requests = db.Column(db.Boolean, nullable=False, default=False)
    description = db.Column(db.String(255), nullable=True)

    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_status": self.order_status,
            "allow_edit_requests": self.allow_edit_requests,
            "description": self.description,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
