# Overview: Service-layer operations for permissions and privilege lookup; encapsulates business logic and database work.

"""
Permission Checking and Privilege Lookup

WHY: Route access is permission-based (RBAC). Separately, the approval
workflow needs one yes/no question answered: is this user privileged? A
privileged user (the "admin" role) reviews requests and performs
restricted actions directly instead of asking for approval.

DESIGN PRINCIPLES:
- Fail closed: deny by default, require an explicit grant
- Permissions are the union over all of a user's roles
- Inactive users hold no permissions and are never privileged
"""

from __future__ import annotations

from ..errors import AuthorizationRequiredError
from ..extensions import db
from ..models import Permission, Role, RolePermission, User, UserRole
from ..permissions import DEFAULT_ROLE_PERMISSIONS, PERMISSION_DEFINITIONS


PRIVILEGED_ROLES = frozenset({"admin"})


def get_user_role_names(user_id: int) -> list[str]:
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.name)
        .all()
    )
    return [name for (name,) in rows]


def is_privileged(user_id: int | None) -> bool:
    """True when the user is active and holds a privileged role."""
    if not user_id:
        return False
    return (
        db.session.query(UserRole.id)
        .join(Role, Role.id == UserRole.role_id)
        .join(User, User.id == UserRole.user_id)
        .filter(
            UserRole.user_id == user_id,
            User.is_active.is_(True),
            Role.name.in_(PRIVILEGED_ROLES),
        )
        .first()
        is not None
    )


def list_privileged_user_ids() -> list[int]:
    rows = (
        db.session.query(User.id)
        .join(UserRole, UserRole.user_id == User.id)
        .join(Role, Role.id == UserRole.role_id)
        .filter(User.is_active.is_(True), Role.name.in_(PRIVILEGED_ROLES))
        .distinct()
        .order_by(User.id)
        .all()
    )
    return [user_id for (user_id,) in rows]


def get_user_permissions(user_id: int) -> set[str]:
    """
    Get all permission codes for a user.

    Returns set of permission codes (e.g., {"CREATE_ORDERS", "MANAGE_PAYMENTS"}).
    """
    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .join(User, User.id == UserRole.user_id)
        .filter(UserRole.user_id == user_id, User.is_active.is_(True))
        .distinct()
        .all()
    )
    return {code for (code,) in rows}


def user_has_permission(user_id: int, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user_id)


def require_permission(user_id: int, permission_code: str) -> None:
    """Raise AuthorizationRequiredError unless the user holds permission_code."""
    if not user_has_permission(user_id, permission_code):
        raise AuthorizationRequiredError(
            f"Permission denied: {permission_code}",
            required_permission=permission_code,
        )


def initialize_permissions() -> int:
    """
    Create Permission rows for every code in PERMISSION_DEFINITIONS.

    Idempotent: Safe to run multiple times.
    """
    created_count = 0

    for code, name, description, category in PERMISSION_DEFINITIONS:
        existing = db.session.query(Permission).filter_by(code=code).first()
        if not existing:
            db.session.add(Permission(code=code, name=name, description=description, category=category))
            created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions() -> int:
    """
    Link roles to their default permission sets.

    Idempotent: skips roles that do not exist and links already present.
    """
    created_count = 0

    for role_name, permission_codes in DEFAULT_ROLE_PERMISSIONS.items():
        role = db.session.query(Role).filter_by(name=role_name).first()
        if not role:
            continue

        for permission_code in permission_codes:
            permission = db.session.query(Permission).filter_by(code=permission_code).first()
            if not permission:
                continue

            existing = db.session.query(RolePermission).filter_by(
                role_id=role.id,
                permission_id=permission.id,
            ).first()
            if not existing:
                db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
                created_count += 1

    db.session.commit()
    return created_count
