from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .sequences import DocumentSequence
from .orders import Order, OrderItem, OrderPayment, OrderDiscount
from .expenses import ExpenseOrder, ExpenseOrderItem, ExpenseOrderPayment, ExpenseOrderDiscount
from .quotes import Quote, QuoteItem, QuoteDiscount
from .approvals import (
    OrderEditRequest,
    OrderStatusChangeRequest,
    ExpenseOrderAuthRequest,
    EditableStatusPolicy,
)
from .activity import Notification, AuditLog

__all__ = [
    "User",
    "Role",
    "UserRole",
    "Permission",
    "RolePermission",
    "SessionToken",
    "DocumentSequence",
    "Order",
    "OrderItem",
    "OrderPayment",
    "OrderDiscount",
    "ExpenseOrder",
    "ExpenseOrderItem",
    "ExpenseOrderPayment",
    "ExpenseOrderDiscount",
    "Quote",
    "QuoteItem",
    "QuoteDiscount",
    "OrderEditRequest",
    "OrderStatusChangeRequest",
    "ExpenseOrderAuthRequest",
    "EditableStatusPolicy",
    "Notification",
    "AuditLog",
]
