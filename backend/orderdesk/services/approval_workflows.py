# Overview: The three concrete approval workflows (order edit, order status change, expense authorization).

from __future__ import annotations

from ..errors import ConflictError, InvalidTransitionError, ValidationError
from ..models import ExpenseOrder, ExpenseOrderAuthRequest, Order, OrderEditRequest, OrderStatusChangeRequest
from . import editable_status_service, notification_service, state_machine
from .approval_service import ApprovalWorkflow, ResourceAccessor, TargetValueGrant, TimeBoxedGrant, WorkflowMessages


class OrderEditAccessor(ResourceAccessor):
    """Edit requests are accepted only in statuses whose policy allows them."""

    model = Order
    label = "order"
    related_type = "order"

    def describe(self, resource) -> str:
        return f"order {resource.order_number}"

    def action_text(self, requested_status):
        return "permission to edit"

    def validate_request(self, resource, requested_status, current_status):
        if resource.status == state_machine.DRAFT:
            raise ValidationError("DRAFT orders can be edited directly without a request")
        if not editable_status_service.allows_edit_requests(resource.status):
            raise ValidationError(f"Order status {resource.status} does not allow edit requests")


class OrderStatusChangeAccessor(ResourceAccessor):
    """
    Requests to move an order into an approval-gated status.

    The status the requester saw is captured; if the order moves before the
    request is filed or approved, the request is refused.
    """

    model = Order
    label = "order"
    related_type = "order"
    captures_state = True
    target_required = True

    def describe(self, resource) -> str:
        return f"order {resource.order_number}"

    def action_text(self, requested_status):
        return f"a status change to {requested_status}"

    def normalize_target(self, requested_status):
        return state_machine.validate_status(state_machine.ORDER_KIND, requested_status)

    def validate_request(self, resource, requested_status, current_status):
        if current_status is not None:
            captured = state_machine.validate_status(state_machine.ORDER_KIND, current_status)
            if captured != resource.status:
                raise ConflictError(
                    f"Order {resource.order_number} is now {resource.status}, not {captured}; "
                    f"refresh and try again",
                )
        state_machine.ensure_transition(state_machine.ORDER_KIND, resource.status, requested_status)
        if not state_machine.requires_approval(state_machine.ORDER_KIND, requested_status):
            raise ValidationError(
                f"{requested_status} does not require approval; change the status directly",
                field="requested_status",
            )


class ExpenseAuthAccessor(ResourceAccessor):
    """Authorization requests always target AUTHORIZED."""

    model = ExpenseOrder
    label = "expense order"
    related_type = "expense_order"
    target_required = True

    def describe(self, resource) -> str:
        return f"expense order {resource.expense_number}"

    def action_text(self, requested_status):
        return "authorization"

    def normalize_target(self, requested_status):
        if requested_status is not None:
            target = state_machine.validate_status(state_machine.EXPENSE_KIND, requested_status)
            if target != state_machine.AUTHORIZED:
                raise ValidationError(
                    f"Expense authorization requests can only target {state_machine.AUTHORIZED}",
                    field="requested_status",
                )
        return state_machine.AUTHORIZED

    def validate_request(self, resource, requested_status, current_status):
        state_machine.ensure_transition(state_machine.EXPENSE_KIND, resource.status, state_machine.AUTHORIZED)

    def validate_approval(self, resource, approval_request):
        try:
            state_machine.ensure_transition(state_machine.EXPENSE_KIND, resource.status, state_machine.AUTHORIZED)
        except InvalidTransitionError:
            raise ConflictError(
                f"Expense order {resource.expense_number} is now {resource.status} and can no longer be authorized",
            )


order_edit_workflow = ApprovalWorkflow(
    "order_edit",
    OrderEditRequest,
    OrderEditAccessor(),
    TimeBoxedGrant(),
    WorkflowMessages(
        noun="edit request",
        pending_type=notification_service.EDIT_REQUEST_PENDING,
        approved_type=notification_service.EDIT_REQUEST_APPROVED,
        rejected_type=notification_service.EDIT_REQUEST_REJECTED,
    ),
)

order_status_workflow = ApprovalWorkflow(
    "order_status_change",
    OrderStatusChangeRequest,
    OrderStatusChangeAccessor(),
    TargetValueGrant(),
    WorkflowMessages(
        noun="status change request",
        pending_type=notification_service.STATUS_CHANGE_REQUEST_PENDING,
        approved_type=notification_service.STATUS_CHANGE_REQUEST_APPROVED,
        rejected_type=notification_service.STATUS_CHANGE_REQUEST_REJECTED,
    ),
)

expense_auth_workflow = ApprovalWorkflow(
    "expense_order_auth",
    ExpenseOrderAuthRequest,
    ExpenseAuthAccessor(),
    TargetValueGrant(),
    WorkflowMessages(
        noun="authorization request",
        pending_type=notification_service.EXPENSE_ORDER_AUTH_REQUEST_PENDING,
        approved_type=notification_service.EXPENSE_ORDER_AUTH_REQUEST_APPROVED,
        rejected_type=notification_service.EXPENSE_ORDER_AUTH_REQUEST_REJECTED,
    ),
)

WORKFLOWS = {
    workflow.kind: workflow
    for workflow in (order_edit_workflow, order_status_workflow, expense_auth_workflow)
}


def time_boxed_workflows() -> list[ApprovalWorkflow]:
    return [workflow for workflow in WORKFLOWS.values() if workflow.time_boxed]
