# Overview: Generic approval workflow (request, review, grant, expiry) shared by every restricted action.

"""
Approval Workflow

WHY: Non-privileged users sometimes need to do something only an admin may
do: edit an order that left DRAFT, deliver an order on credit, authorize an
expense. Instead of handing out elevated roles, they file a request; an admin
reviews it; an approved request is a grant the owning service checks.

The three request kinds differ only in:
- which resource they point at and what "accepts requests" means for it
  (a ResourceAccessor), and
- what an approval grants (a GrantStrategy): a time-boxed window
  (edit permission) or one specific target value (a status).

LIFECYCLE:
    PENDING -> APPROVED | REJECTED      (reviewer, exactly once)
    APPROVED -> EXPIRED                  (expiry sweep, time-boxed grants only)

CONCURRENCY:
- request() locks the resource row before the duplicate check; a partial
  unique index on PENDING rows catches anything that slips past it
- approve()/reject() transition with UPDATE ... WHERE status = 'PENDING';
  a concurrent reviewer or sweep that got there first leaves zero rows and
  the loser sees NotFoundError
- Notifications and audit run after commit and never undo a decision
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..errors import AuthorizationRequiredError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import User
from ..time_utils import to_utc_z, utcnow
from . import audit_service, notification_service, permission_service
from .concurrency import lock_for_update, run_in_transaction
from .context import ActorContext


PENDING = "PENDING"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
EXPIRED = "EXPIRED"

REQUEST_STATUSES = frozenset({PENDING, APPROVED, REJECTED, EXPIRED})


# =============================================================================
# Grant strategies
# =============================================================================

class GrantStrategy:
    """What an approved request allows. Subclasses decide whether it expires."""

    time_boxed = False

    def expires_at(self, approved_at: datetime) -> datetime | None:
        return None


class TimeBoxedGrant(GrantStrategy):
    """
    Grant valid for a fixed window after approval.

    minutes=None reads EDIT_GRANT_MINUTES from the app config at approval time.
    """

    time_boxed = True

    def __init__(self, minutes: int | None = None):
        self._minutes = minutes

    @property
    def minutes(self) -> int:
        if self._minutes is not None:
            return self._minutes
        return current_app.config.get("EDIT_GRANT_MINUTES", 5)

    def expires_at(self, approved_at: datetime) -> datetime | None:
        return approved_at + timedelta(minutes=self.minutes)


class TargetValueGrant(GrantStrategy):
    """Grant to move a resource into one specific status; does not expire."""


# =============================================================================
# Resource accessors
# =============================================================================

class ResourceAccessor:
    """
    Adapter between the workflow and the resource a request points at.

    captures_state: the request row stores the resource's status at request
        time and approval fails if it has moved since.
    target_required: requests carry a requested_status, and duplicates and
        grants are matched per target.
    """

    model = None
    label = "resource"
    related_type = "resource"
    captures_state = False
    target_required = False

    def load(self, resource_id: int, lock: bool = False):
        query = db.session.query(self.model).filter(self.model.id == resource_id)
        if lock:
            query = lock_for_update(query)
        resource = query.first()
        if resource is None:
            raise NotFoundError(f"{self.label.capitalize()} {resource_id} not found")
        return resource

    def current_state(self, resource) -> str:
        return resource.status

    def describe(self, resource) -> str:
        return f"{self.label} {resource.id}"

    def action_text(self, requested_status: str | None) -> str:
        return "approval"

    def normalize_target(self, requested_status: str | None) -> str | None:
        return None

    def validate_request(self, resource, requested_status: str | None, current_status: str | None) -> None:
        """Raise unless the resource currently accepts this request."""

    def validate_approval(self, resource, approval_request) -> None:
        """Raise ConflictError when the resource moved on since the request was filed."""
        if self.captures_state:
            live = self.current_state(resource)
            if live != approval_request.current_status:
                raise ConflictError(
                    f"{self.describe(resource).capitalize()} is now {live}, but the request was filed "
                    f"while it was {approval_request.current_status}; the request can no longer be approved",
                )


@dataclass(frozen=True)
class WorkflowMessages:
    """Notification types and nouns used by one workflow."""
    noun: str
    pending_type: str
    approved_type: str
    rejected_type: str


# =============================================================================
# Workflow
# =============================================================================

class ApprovalWorkflow:
    """
    Request/approve/reject/expire state machine for one request table.

    Every mutating call runs in its own transaction and takes an explicit
    ActorContext; `now` may be passed for deterministic tests.
    """

    def __init__(
        self,
        kind: str,
        request_model,
        accessor: ResourceAccessor,
        grant: GrantStrategy,
        messages: WorkflowMessages,
    ):
        self.kind = kind
        self.request_model = request_model
        self.accessor = accessor
        self.grant = grant
        self.messages = messages

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow {self.kind}>"

    @property
    def time_boxed(self) -> bool:
        return self.grant.time_boxed

    @property
    def _resource_column(self):
        return getattr(self.request_model, self.request_model.RESOURCE_KEY)

    def _requests_for(self, resource_id: int, requester_id: int, requested_status: str | None):
        query = db.session.query(self.request_model).filter(
            self._resource_column == resource_id,
            self.request_model.requested_by_user_id == requester_id,
        )
        if self.accessor.target_required:
            query = query.filter(self.request_model.requested_status == requested_status)
        return query

    def _find_pending(self, resource_id: int, requester_id: int, requested_status: str | None):
        return (
            self._requests_for(resource_id, requester_id, requested_status)
            .filter(self.request_model.status == PENDING)
            .first()
        )

    def _display_name(self, user_id: int) -> str:
        user = db.session.get(User, user_id)
        return user.display_name if user else f"User {user_id}"

    # -------------------------------------------------------------------------
    # Request
    # -------------------------------------------------------------------------

    def request(
        self,
        resource_id: int,
        actor: ActorContext,
        justification: str | None = None,
        requested_status: str | None = None,
        current_status: str | None = None,
    ):
        """
        File a PENDING request.

        Raises:
            NotFoundError: Resource does not exist
            ValidationError: Resource does not accept this request, or the
                requester is privileged (privileged users act directly)
            ConflictError: Requester already has a PENDING request for this
                resource (and target); carries existing_request_id
        """
        def _op(hooks):
            resource = self.accessor.load(resource_id, lock=True)
            target = self.accessor.normalize_target(requested_status)
            self.accessor.validate_request(resource, target, current_status)

            if permission_service.is_privileged(actor.user_id):
                raise ValidationError(
                    f"Administrators do not need to file a {self.messages.noun}; act directly instead",
                )

            existing = self._find_pending(resource.id, actor.user_id, target)
            if existing:
                raise ConflictError(
                    f"You already have a pending {self.messages.noun} for {self.accessor.describe(resource)}",
                    existing_request_id=existing.id,
                )

            approval_request = self.request_model(
                requested_by_user_id=actor.user_id,
                status=PENDING,
                requested_status=target,
                justification=justification,
            )
            setattr(approval_request, self.request_model.RESOURCE_KEY, resource.id)
            if self.accessor.captures_state:
                approval_request.current_status = self.accessor.current_state(resource)

            try:
                with db.session.begin_nested():
                    db.session.add(approval_request)
            except IntegrityError:
                # Concurrent duplicate won the partial unique index
                existing = self._find_pending(resource.id, actor.user_id, target)
                raise ConflictError(
                    f"You already have a pending {self.messages.noun} for {self.accessor.describe(resource)}",
                    existing_request_id=existing.id if existing else None,
                )

            description = self.accessor.describe(resource)
            hooks.add(
                "notify_reviewers",
                notification_service.notify_all_privileged_users,
                self.messages.pending_type,
                f"New {self.messages.noun}",
                f"{self._display_name(actor.user_id)} requests "
                f"{self.accessor.action_text(target)} for {description}",
                related_id=approval_request.id,
                related_type=self.request_model.__name__,
            )
            hooks.add(
                "audit",
                audit_service.log_change,
                audit_service.CREATE,
                self.request_model.__tablename__,
                approval_request.id,
                None,
                approval_request.to_dict(),
                actor,
            )
            return approval_request

        return run_in_transaction(_op)

    # -------------------------------------------------------------------------
    # Review
    # -------------------------------------------------------------------------

    def _lock_pending(self, request_id: int):
        query = db.session.query(self.request_model).filter(
            self.request_model.id == request_id,
            self.request_model.status == PENDING,
        )
        approval_request = lock_for_update(query).first()
        if approval_request is None:
            raise NotFoundError(f"{self.messages.noun.capitalize()} {request_id} not found or already processed")
        return approval_request

    def _ensure_reviewer(self, actor: ActorContext) -> None:
        if not permission_service.is_privileged(actor.user_id):
            raise AuthorizationRequiredError(f"Only administrators can review a {self.messages.noun}")

    def _decide(self, request_id: int, values: dict) -> None:
        stmt = (
            update(self.request_model)
            .where(self.request_model.id == request_id, self.request_model.status == PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if not db.session.execute(stmt).rowcount:
            raise NotFoundError(f"{self.messages.noun.capitalize()} {request_id} not found or already processed")

    def approve(
        self,
        request_id: int,
        actor: ActorContext,
        *,
        notes: str | None = None,
        now: datetime | None = None,
    ):
        """
        Approve a PENDING request.

        Time-boxed grants get expires_at = now + grant window.

        Raises:
            NotFoundError: No PENDING request with that id (including a second review)
            AuthorizationRequiredError: Reviewer is not privileged
            ConflictError: The resource moved on since the request was filed
        """
        now = now or utcnow()

        def _op(hooks):
            approval_request = self._lock_pending(request_id)
            self._ensure_reviewer(actor)

            resource = self.accessor.load(approval_request.resource_id, lock=True)
            self.accessor.validate_approval(resource, approval_request)

            before = approval_request.to_dict()
            expires_at = self.grant.expires_at(now)
            self._decide(
                request_id,
                {
                    "status": APPROVED,
                    "reviewed_by_user_id": actor.user_id,
                    "reviewed_at": now,
                    "review_notes": notes,
                    "expires_at": expires_at,
                },
            )
            db.session.refresh(approval_request)

            description = self.accessor.describe(resource)
            message = f"Your {self.messages.noun} for {description} was approved."
            if expires_at is not None:
                message += f" You may proceed until {to_utc_z(expires_at)}."
            hooks.add(
                "notify_requester",
                notification_service.notify,
                approval_request.requested_by_user_id,
                self.messages.approved_type,
                f"{self.messages.noun.capitalize()} approved",
                message,
                related_id=resource.id,
                related_type=self.accessor.related_type,
            )
            hooks.add(
                "audit",
                audit_service.log_change,
                audit_service.UPDATE,
                self.request_model.__tablename__,
                approval_request.id,
                before,
                approval_request.to_dict(),
                actor,
            )
            return approval_request

        return run_in_transaction(_op)

    def reject(
        self,
        request_id: int,
        actor: ActorContext,
        *,
        notes: str | None = None,
        now: datetime | None = None,
    ):
        """
        Reject a PENDING request.

        Raises:
            NotFoundError: No PENDING request with that id
            AuthorizationRequiredError: Reviewer is not privileged
        """
        now = now or utcnow()

        def _op(hooks):
            approval_request = self._lock_pending(request_id)
            self._ensure_reviewer(actor)
            resource = self.accessor.load(approval_request.resource_id)

            before = approval_request.to_dict()
            self._decide(
                request_id,
                {
                    "status": REJECTED,
                    "reviewed_by_user_id": actor.user_id,
                    "reviewed_at": now,
                    "review_notes": notes,
                },
            )
            db.session.refresh(approval_request)

            message = f"Your {self.messages.noun} for {self.accessor.describe(resource)} was rejected."
            if notes:
                message += f" Reason: {notes}"
            hooks.add(
                "notify_requester",
                notification_service.notify,
                approval_request.requested_by_user_id,
                self.messages.rejected_type,
                f"{self.messages.noun.capitalize()} rejected",
                message,
                related_id=resource.id,
                related_type=self.accessor.related_type,
            )
            hooks.add(
                "audit",
                audit_service.log_change,
                audit_service.UPDATE,
                self.request_model.__tablename__,
                approval_request.id,
                before,
                approval_request.to_dict(),
                actor,
            )
            return approval_request

        return run_in_transaction(_op)

    # -------------------------------------------------------------------------
    # Grants
    # -------------------------------------------------------------------------

    def active_grant(
        self,
        resource_id: int,
        requester_id: int,
        requested_status: str | None = None,
        now: datetime | None = None,
    ):
        """Most recent APPROVED request whose expires_at is NULL or in the future."""
        now = now or utcnow()
        return (
            self._requests_for(resource_id, requester_id, requested_status)
            .filter(
                self.request_model.status == APPROVED,
                or_(self.request_model.expires_at.is_(None), self.request_model.expires_at > now),
            )
            .order_by(self.request_model.reviewed_at.desc(), self.request_model.id.desc())
            .first()
        )

    def has_active_grant(
        self,
        resource_id: int,
        requester_id: int,
        requested_status: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        return self.active_grant(resource_id, requester_id, requested_status, now) is not None

    def consume(
        self,
        resource_id: int,
        requester_id: int,
        requested_status: str | None = None,
        now: datetime | None = None,
    ):
        """
        Mark a grant as used. Currently a no-op: the grant stays APPROVED.

        Returns the active grant (or None) so callers can record who approved it.
        """
        # TODO: decide whether target-value grants become single-use (e.g. a CONSUMED status)
        return self.active_grant(resource_id, requester_id, requested_status, now)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_request(self, request_id: int):
        approval_request = db.session.get(self.request_model, request_id)
        if approval_request is None:
            raise NotFoundError(f"{self.messages.noun.capitalize()} {request_id} not found")
        return approval_request

    def list_pending(self) -> list:
        return (
            db.session.query(self.request_model)
            .filter(self.request_model.status == PENDING)
            .order_by(self.request_model.created_at, self.request_model.id)
            .all()
        )

    def list_for_resource(self, resource_id: int) -> list:
        return (
            db.session.query(self.request_model)
            .filter(self._resource_column == resource_id)
            .order_by(self.request_model.created_at.desc(), self.request_model.id.desc())
            .all()
        )

    def list_for_requester(self, user_id: int, status: str | None = None) -> list:
        query = db.session.query(self.request_model).filter(self.request_model.requested_by_user_id == user_id)
        if status:
            status = status.strip().upper()
            if status not in REQUEST_STATUSES:
                raise ValidationError(
                    f"Invalid request status: {status}. Must be one of {sorted(REQUEST_STATUSES)}",
                    field="status",
                )
            query = query.filter(self.request_model.status == status)
        return query.order_by(self.request_model.created_at.desc(), self.request_model.id.desc()).all()

    # -------------------------------------------------------------------------
    # Expiry support (time-boxed workflows only)
    # -------------------------------------------------------------------------

    def expire_due(self, now: datetime) -> list:
        """
        Flip APPROVED grants with expires_at <= now to EXPIRED.

        Runs inside the caller's transaction. The UPDATE re-checks
        status = 'APPROVED' so a row changed concurrently is left alone.
        Returns the rows that were expired.
        """
        if not self.time_boxed:
            return []
        query = db.session.query(self.request_model).filter(
            self.request_model.status == APPROVED,
            self.request_model.expires_at.isnot(None),
            self.request_model.expires_at <= now,
        )
        due = lock_for_update(query).all()
        if not due:
            return []

        ids = [row.id for row in due]
        db.session.execute(
            update(self.request_model)
            .where(self.request_model.id.in_(ids), self.request_model.status == APPROVED)
            .values(status=EXPIRED)
            .execution_options(synchronize_session=False)
        )
        for row in due:
            db.session.refresh(row)
        return [row for row in due if row.status == EXPIRED]

    def expiring_within(self, now: datetime, seconds: int) -> list:
        """APPROVED grants expiring in [now, now + seconds]; read-only."""
        if not self.time_boxed:
            return []
        return (
            db.session.query(self.request_model)
            .filter(
                self.request_model.status == APPROVED,
                self.request_model.expires_at >= now,
                self.request_model.expires_at <= now + timedelta(seconds=seconds),
            )
            .order_by(self.request_model.expires_at, self.request_model.id)
            .all()
        )

    def notify_expired(self, approval_request) -> None:
        resource = self.accessor.load(approval_request.resource_id)
        notification_service.notify(
            approval_request.requested_by_user_id,
            notification_service.EDIT_PERMISSION_EXPIRED,
            f"{self.messages.noun.capitalize()} expired",
            f"Your permission for {self.accessor.describe(resource)} has expired. "
            f"File a new {self.messages.noun} if you still need it.",
            related_id=resource.id,
            related_type=self.accessor.related_type,
        )

    def notify_expiring(self, approval_request, now: datetime) -> None:
        resource = self.accessor.load(approval_request.resource_id)
        remaining = max(int((approval_request.expires_at - now).total_seconds()), 0)
        notification_service.notify(
            approval_request.requested_by_user_id,
            notification_service.EDIT_PERMISSION_EXPIRING,
            f"{self.messages.noun.capitalize()} expiring soon",
            f"Your permission for {self.accessor.describe(resource)} expires in {remaining} seconds.",
            related_id=resource.id,
            related_type=self.accessor.related_type,
        )
