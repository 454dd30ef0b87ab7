"""
Authorization tests.

Verifies:
- Permissions are the union of a user's roles; inactive users hold none
- Only the admin role is privileged
- Session tokens expire and can be revoked
- Bootstrap CLI commands seed roles, permissions and policies idempotently
"""

from datetime import timedelta

import pytest

from conftest import PASSWORD
from orderdesk.decorators import require_permission
from orderdesk.errors import AuthorizationRequiredError, ConflictError, NotFoundError, ValidationError
from orderdesk.models import EditableStatusPolicy, Permission, Role, SessionToken, User
from orderdesk.permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    PermissionCategory,
    get_all_permission_codes,
    get_permissions_by_category,
)
from orderdesk.services import auth_service, permission_service, session_service
from orderdesk.time_utils import utcnow


# =============================================================================
# PERMISSIONS & PRIVILEGE
# =============================================================================


class TestPermissions:

    def test_role_permission_sets(self, admin_user, manager_user, seller_user):
        admin = permission_service.get_user_permissions(admin_user.id)
        manager = permission_service.get_user_permissions(manager_user.id)
        seller = permission_service.get_user_permissions(seller_user.id)

        assert {"REVIEW_APPROVALS", "MANAGE_SETTINGS"} <= admin
        assert not {"REVIEW_APPROVALS", "MANAGE_SETTINGS"} & manager
        assert {"MARK_ORDERS_PAID", "APPROVE_EXPENSE_ORDERS", "VIEW_SEQUENCES"} <= manager
        assert not {"MARK_ORDERS_PAID", "APPROVE_EXPENSE_ORDERS", "VIEW_SEQUENCES"} & seller

    def test_permissions_union_across_roles(self, seller_user):
        auth_service.assign_role(seller_user.id, "manager")

        assert permission_service.user_has_permission(seller_user.id, "MARK_ORDERS_PAID")
        assert permission_service.get_user_role_names(seller_user.id) == ["manager", "seller"]

    def test_inactive_user_holds_nothing(self, db_session, admin_user):
        admin_user.is_active = False
        db_session.commit()

        assert permission_service.get_user_permissions(admin_user.id) == set()
        assert not permission_service.is_privileged(admin_user.id)
        assert permission_service.list_privileged_user_ids() == []

    def test_only_admin_is_privileged(self, admin_user, manager_user, seller_user):
        assert permission_service.is_privileged(admin_user.id)
        assert not permission_service.is_privileged(manager_user.id)
        assert not permission_service.is_privileged(seller_user.id)
        assert not permission_service.is_privileged(None)
        assert permission_service.list_privileged_user_ids() == [admin_user.id]

    def test_require_permission(self, seller_user):
        with pytest.raises(AuthorizationRequiredError) as exc_info:
            permission_service.require_permission(seller_user.id, "MARK_ORDERS_PAID")

        assert exc_info.value.required_permission == "MARK_ORDERS_PAID"
        assert exc_info.value.to_dict()["code"] == "authorization_required"

    def test_catalogue(self):
        codes = get_all_permission_codes()

        assert len(codes) == len(set(codes))
        assert set(DEFAULT_ROLE_PERMISSIONS["admin"]) == set(codes)
        for role_codes in DEFAULT_ROLE_PERMISSIONS.values():
            assert set(role_codes) <= set(codes)
        approval_codes = [perm[0] for perm in get_permissions_by_category(PermissionCategory.APPROVALS)]
        assert "REVIEW_APPROVALS" in approval_codes

    def test_route_guard_rejects_unknown_code(self):
        with pytest.raises(ValueError):
            require_permission("LAUNCH_ROCKETS")

    def test_unknown_role(self, seller_user):
        with pytest.raises(NotFoundError):
            auth_service.assign_role(seller_user.id, "superuser")


# =============================================================================
# USERS & SESSIONS
# =============================================================================


class TestUsers:

    @pytest.mark.parametrize("password", ["short1", "lettersonly", "12345678"])
    def test_weak_passwords(self, setup_roles, password):
        with pytest.raises(ValidationError) as exc_info:
            auth_service.create_user("weak", "weak@orderdesk.test", password)
        assert exc_info.value.field == "password"

    def test_duplicate_username(self, seller_user):
        with pytest.raises(ConflictError):
            auth_service.create_user("seller", "someone@orderdesk.test", PASSWORD)

    def test_email_is_case_insensitive(self, seller_user):
        assert auth_service.authenticate("SELLER@orderdesk.test", PASSWORD).id == seller_user.id

    def test_inactive_user_cannot_log_in(self, db_session, seller_user):
        seller_user.is_active = False
        db_session.commit()

        assert auth_service.authenticate("seller", PASSWORD) is None

    def test_password_is_hashed(self, seller_user):
        assert seller_user.password_hash != PASSWORD
        assert auth_service.verify_password(PASSWORD, seller_user.password_hash)
        assert not auth_service.verify_password(PASSWORD, "not-a-bcrypt-hash")


class TestSessions:

    def test_token_is_stored_hashed(self, db_session, seller_user):
        session, token = session_service.create_session(seller_user.id)

        assert len(token) == 64
        assert session.token_hash == session_service.hash_token(token)
        assert db_session.query(SessionToken).filter_by(token_hash=token).first() is None

    def test_validate_and_revoke(self, seller_user):
        _, token = session_service.create_session(seller_user.id)

        assert session_service.validate_session(token).user.id == seller_user.id
        assert session_service.revoke_session(token) is True
        assert session_service.revoke_session(token) is False
        assert session_service.validate_session(token) is None

    def test_expired_session(self, db_session, seller_user):
        session, token = session_service.create_session(seller_user.id)
        session.expires_at = utcnow() - timedelta(seconds=1)
        db_session.commit()

        assert session_service.validate_session(token) is None

    def test_unknown_token(self, db_session):
        assert session_service.validate_session("deadbeef") is None
        assert session_service.validate_session("") is None


# =============================================================================
# CLI
# =============================================================================


class TestCli:

    def test_system_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "init", "--with-users"])
        assert first.exit_code == 0, first.output
        assert "PASS Created user: seller" in first.output

        roles = db_session.query(Role).count()
        permissions = db_session.query(Permission).count()
        policies = db_session.query(EditableStatusPolicy).count()
        assert roles == 3
        assert permissions > 0
        assert policies > 0

        second = runner.invoke(args=["system", "init", "--with-users"])
        assert second.exit_code == 0, second.output
        assert "already exists" in second.output
        assert db_session.query(Role).count() == roles
        assert db_session.query(Permission).count() == permissions
        assert db_session.query(EditableStatusPolicy).count() == policies
        assert db_session.query(User).count() == 3

    def test_users_create(self, app, setup_roles):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            "users", "create",
            "--username", "ana",
            "--email", "ana@orderdesk.test",
            "--password", PASSWORD,
            "--role", "seller",
        ])

        assert result.exit_code == 0, result.output
        assert "PASS Created user: ana" in result.output
        listing = runner.invoke(args=["users", "list"])
        assert "ana" in listing.output
        assert "seller" in listing.output

    def test_users_create_rejects_weak_password(self, app, setup_roles):
        result = app.test_cli_runner().invoke(args=[
            "users", "create",
            "--username", "ana",
            "--email", "ana@orderdesk.test",
            "--password", "weak",
            "--role", "seller",
        ])

        assert "FAIL Password validation failed" in result.output

    def test_finance_verify_clean(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["finance", "verify"])

        assert result.exit_code == 0, result.output
        assert "PASS order: consistent" in result.output
