# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- ORDERS --

ORDER_PERMISSIONS = [
    (
        "VIEW_ORDERS",
        "View Orders",
        "View orders with their items, payments and discounts",
        PermissionCategory.ORDERS,
    ),
    (
        "CREATE_ORDERS",
        "Create Orders",
        "Create DRAFT orders",
        PermissionCategory.ORDERS,
    ),
    (
        "EDIT_ORDERS",
        "Edit Orders",
        "Change order header fields and line items",
        PermissionCategory.ORDERS,
    ),
    (
        "DELETE_ORDERS",
        "Delete Orders",
        "Delete DRAFT orders",
        PermissionCategory.ORDERS,
    ),
    (
        "CHANGE_ORDER_STATUS",
        "Change Order Status",
        "Move orders through the production pipeline",
        PermissionCategory.ORDERS,
    ),
    (
        "MARK_ORDERS_PAID",
        "Mark Orders Paid",
        "Close fully paid orders as PAID",
        PermissionCategory.ORDERS,
    ),
    (
        "MANAGE_PAYMENTS",
        "Manage Payments",
        "Record payments against orders and expense orders",
        PermissionCategory.ORDERS,
    ),
    (
        "APPLY_DISCOUNTS",
        "Apply Discounts",
        "Apply and remove discounts",
        PermissionCategory.ORDERS,
    ),
]


# -- QUOTES --

QUOTE_PERMISSIONS = [
    (
        "VIEW_QUOTES",
        "View Quotes",
        "View quotes",
        PermissionCategory.QUOTES,
    ),
    (
        "MANAGE_QUOTES",
        "Manage Quotes",
        "Create, edit, send and convert quotes",
        PermissionCategory.QUOTES,
    ),
]


# -- EXPENSES --

EXPENSE_PERMISSIONS = [
    (
        "VIEW_EXPENSE_ORDERS",
        "View Expense Orders",
        "View expense orders",
        PermissionCategory.EXPENSES,
    ),
    (
        "MANAGE_EXPENSE_ORDERS",
        "Manage Expense Orders",
        "Create and edit expense orders and move them through their lifecycle",
        PermissionCategory.EXPENSES,
    ),
    (
        "APPROVE_EXPENSE_ORDERS",
        "Approve Expense Orders",
        "Mark authorized expense orders as PAID",
        PermissionCategory.EXPENSES,
    ),
]


# -- APPROVALS --

APPROVAL_PERMISSIONS = [
    (
        "REQUEST_APPROVALS",
        "Request Approvals",
        "File edit, status-change and authorization requests",
        PermissionCategory.APPROVALS,
    ),
    (
        "REVIEW_APPROVALS",
        "Review Approvals",
        "Approve or reject pending requests",
        PermissionCategory.APPROVALS,
    ),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    (
        "MANAGE_SETTINGS",
        "Manage Settings",
        "Configure editable-status policies",
        PermissionCategory.SYSTEM,
    ),
    (
        "VIEW_SEQUENCES",
        "View Sequences",
        "Inspect document number counters",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    ORDER_PERMISSIONS
    + QUOTE_PERMISSIONS
    + EXPENSE_PERMISSIONS
    + APPROVAL_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
