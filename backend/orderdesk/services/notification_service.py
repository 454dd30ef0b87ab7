# Overview: Service-layer operations for in-app notifications; encapsulates business logic and database work.

"""
In-App Notifications

WHY: Reviewers must learn about pending requests and requesters must learn
about decisions and expiring grants.

Delivery is synchronous and raises on failure. Callers only invoke it from
post-commit hooks or from isolated sweep loops, so a failed notification
never rolls back the change that triggered it.
"""

from __future__ import annotations

import logging

from ..errors import NotFoundError
from ..extensions import db
from ..models import Notification
from ..time_utils import utcnow
from . import permission_service


logger = logging.getLogger(__name__)


# Notification types
EDIT_REQUEST_PENDING = "EDIT_REQUEST_PENDING"
EDIT_REQUEST_APPROVED = "EDIT_REQUEST_APPROVED"
EDIT_REQUEST_REJECTED = "EDIT_REQUEST_REJECTED"
EDIT_PERMISSION_EXPIRED = "EDIT_PERMISSION_EXPIRED"
EDIT_PERMISSION_EXPIRING = "EDIT_PERMISSION_EXPIRING"
STATUS_CHANGE_REQUEST_PENDING = "STATUS_CHANGE_REQUEST_PENDING"
STATUS_CHANGE_REQUEST_APPROVED = "STATUS_CHANGE_REQUEST_APPROVED"
STATUS_CHANGE_REQUEST_REJECTED = "STATUS_CHANGE_REQUEST_REJECTED"
EXPENSE_ORDER_AUTH_REQUEST_PENDING = "EXPENSE_ORDER_AUTH_REQUEST_PENDING"
EXPENSE_ORDER_AUTH_REQUEST_APPROVED = "EXPENSE_ORDER_AUTH_REQUEST_APPROVED"
EXPENSE_ORDER_AUTH_REQUEST_REJECTED = "EXPENSE_ORDER_AUTH_REQUEST_REJECTED"
INFO = "INFO"


def notify(
    user_id: int,
    notification_type: str,
    title: str,
    message: str,
    related_id: int | None = None,
    related_type: str | None = None,
) -> Notification:
    """Persist one notification for one user. Raises on failure."""
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        related_id=related_id,
        related_type=related_type,
    )
    try:
        db.session.add(notification)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return notification


def notify_all_privileged_users(
    notification_type: str,
    title: str,
    message: str,
    related_id: int | None = None,
    related_type: str | None = None,
) -> list[Notification]:
    """Notify every active privileged user in a single commit."""
    user_ids = permission_service.list_privileged_user_ids()
    if not user_ids:
        logger.warning(f"No privileged users to notify for {notification_type}")
        return []

    notifications = [
        Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            related_id=related_id,
            related_type=related_type,
        )
        for user_id in user_ids
    ]
    try:
        db.session.add_all(notifications)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return notifications


# =============================================================================
# Inbox
# =============================================================================

def list_for_user(user_id: int, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    query = db.session.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def count_unread(user_id: int) -> int:
    return (
        db.session.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .count()
    )


def mark_read(notification_id: int, user_id: int) -> Notification:
    notification = (
        db.session.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not notification:
        raise NotFoundError("Notification not found")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.session.commit()
    return notification


def mark_all_read(user_id: int) -> int:
    updated = (
        db.session.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
    )
    db.session.commit()
    return updated
