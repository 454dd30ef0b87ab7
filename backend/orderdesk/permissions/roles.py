# Overview: Default permission sets per role.

from .definitions import PERMISSION_DEFINITIONS


DEFAULT_ROLES = {
    "admin": "Privileged role; reviews approval requests and acts directly",
    "manager": "Closes orders and pays expenses",
    "seller": "Day-to-day order, quote and expense handling",
}

DEFAULT_ROLE_PERMISSIONS = {
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],
    "manager": [
        "VIEW_ORDERS",
        "CREATE_ORDERS",
        "EDIT_ORDERS",
        "DELETE_ORDERS",
        "CHANGE_ORDER_STATUS",
        "MARK_ORDERS_PAID",
        "MANAGE_PAYMENTS",
        "APPLY_DISCOUNTS",
        "VIEW_QUOTES",
        "MANAGE_QUOTES",
        "VIEW_EXPENSE_ORDERS",
        "MANAGE_EXPENSE_ORDERS",
        "APPROVE_EXPENSE_ORDERS",
        "REQUEST_APPROVALS",
        "VIEW_SEQUENCES",
    ],
    "seller": [
        "VIEW_ORDERS",
        "CREATE_ORDERS",
        "EDIT_ORDERS",
        "DELETE_ORDERS",
        "CHANGE_ORDER_STATUS",
        "MANAGE_PAYMENTS",
        "APPLY_DISCOUNTS",
        "VIEW_QUOTES",
        "MANAGE_QUOTES",
        "VIEW_EXPENSE_ORDERS",
        "MANAGE_EXPENSE_ORDERS",
        "REQUEST_APPROVALS",
    ],
}
