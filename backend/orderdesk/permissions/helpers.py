# Overview: Utility functions for permission lookups and validation.

from .definitions import PERMISSION_DEFINITIONS


def get_all_permission_codes() -> list[str]:
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def get_permissions_by_category(category: str) -> list[tuple]:
    return [perm for perm in PERMISSION_DEFINITIONS if perm[3] == category]


def validate_permission_code(code: str) -> bool:
    return code in get_all_permission_codes()
