# backend/orderdesk/routes/system.py
"""
System health endpoint.

Checks the database and the seeded auth data so deployments can tell a
reachable-but-uninitialized instance from a healthy one.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import EditableStatusPolicy, Permission, Role, SessionToken, User
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with a few cheap counts."""
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at > utcnow(),
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "active_sessions": active_sessions,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_seed_health() -> dict:
    """Roles, permissions and edit policies must be initialized (flask system init)."""
    start_time = time.time()
    try:
        admin_role = db.session.query(Role).filter_by(name="admin").first()
        permission_count = db.session.query(Permission).count()
        policy_count = db.session.query(EditableStatusPolicy).count()

        elapsed_ms = (time.time() - start_time) * 1000
        details = {
            "admin_role": admin_role is not None,
            "permission_count": permission_count,
            "editable_status_policies": policy_count,
        }
        if admin_role is None or permission_count == 0 or policy_count == 0:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": "Run 'flask system init' to seed roles, permissions and policies",
                "details": details,
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Seed data health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Seed data check error",
        }


@system_bp.get("/api/health")
def health():
    """
    Health check.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    seed_health = check_seed_health()

    all_checks = [database_health, seed_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "seed_data": seed_health,
        },
    }, http_status
