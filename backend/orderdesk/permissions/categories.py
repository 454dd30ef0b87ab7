# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and display."""
    ORDERS = "ORDERS"
    QUOTES = "QUOTES"
    EXPENSES = "EXPENSES"
    APPROVALS = "APPROVALS"
    SYSTEM = "SYSTEM"
