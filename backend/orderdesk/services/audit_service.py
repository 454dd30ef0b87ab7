# Overview: Best-effort change log with before/after images.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import AuditLog
from .context import ActorContext


logger = logging.getLogger(__name__)


CREATE = "CREATE"
UPDATE = "UPDATE"
DELETE = "DELETE"


def log_change(
    action: str,
    resource_type: str,
    resource_id: int | None,
    before: dict | None,
    after: dict | None,
    actor: ActorContext | None = None,
) -> AuditLog | None:
    """
    Append one audit entry in its own commit.

    Best-effort: any failure is rolled back and logged, never raised.
    """
    entry = AuditLog(
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        actor_user_id=actor.user_id if actor else None,
        ip_address=actor.ip_address if actor else None,
        user_agent=actor.user_agent if actor else None,
        before_data=before,
        after_data=after,
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception(f"Failed to write audit entry {action} {resource_type}:{resource_id}")
        return None
    return entry


def list_for_resource(resource_type: str, resource_id: int) -> list[AuditLog]:
    return (
        db.session.query(AuditLog)
        .filter(AuditLog.resource_type == resource_type, AuditLog.resource_id == resource_id)
        .order_by(AuditLog.created_at, AuditLog.id)
        .all()
    )
