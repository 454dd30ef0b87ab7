"""
Transition table tests.

Verifies:
- Every listed edge is accepted and everything else is refused
- Refusals carry the sorted list of allowed targets
- DRAFT is never a target
- Terminal statuses have no exits
"""

import pytest

from orderdesk.errors import InvalidTransitionError, ValidationError
from orderdesk.services import state_machine as sm


ALL_KINDS = [sm.ORDER_KIND, sm.EXPENSE_KIND, sm.QUOTE_KIND]


class TestTransitionTables:

    @pytest.mark.parametrize("kind", ALL_KINDS)
    def test_every_edge_matches_the_table(self, kind):
        table = sm.TRANSITION_TABLES[kind]
        for from_status in table:
            for to_status in table:
                expected = to_status in table[from_status]
                assert sm.can_transition(kind, from_status, to_status) is expected

    @pytest.mark.parametrize("kind", ALL_KINDS)
    def test_no_table_returns_to_draft(self, kind):
        for targets in sm.TRANSITION_TABLES[kind].values():
            assert sm.DRAFT not in targets

    def test_order_pipeline(self):
        assert sm.allowed_transitions(sm.ORDER_KIND, sm.READY) == {
            sm.DELIVERED, sm.DELIVERED_ON_CREDIT, sm.PAID, sm.CANCELLED,
        }
        assert sm.allowed_transitions(sm.ORDER_KIND, sm.DELIVERED_ON_CREDIT) == {sm.PAID}

    @pytest.mark.parametrize("status", [sm.DELIVERED, sm.PAID, sm.CANCELLED])
    def test_order_terminal_statuses(self, status):
        assert sm.is_terminal(sm.ORDER_KIND, status)

    def test_expense_can_skip_created(self):
        assert sm.can_transition(sm.EXPENSE_KIND, sm.DRAFT, sm.AUTHORIZED)
        assert not sm.can_transition(sm.EXPENSE_KIND, sm.CREATED, sm.PAID)

    def test_quote_conversion_edges(self):
        for status in (sm.DRAFT, sm.SENT, sm.ACCEPTED):
            assert sm.can_transition(sm.QUOTE_KIND, status, sm.CONVERTED)
        assert sm.is_terminal(sm.QUOTE_KIND, sm.REJECTED)


class TestEnsureTransition:

    def test_invalid_edge_lists_allowed_targets(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            sm.ensure_transition(sm.ORDER_KIND, sm.DRAFT, sm.READY)

        err = exc_info.value
        assert err.allowed == [sm.CANCELLED, sm.CONFIRMED]
        assert err.to_dict()["allowed"] == [sm.CANCELLED, sm.CONFIRMED]
        assert err.http_status == 409

    def test_draft_target_has_dedicated_message(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            sm.ensure_transition(sm.ORDER_KIND, sm.CONFIRMED, sm.DRAFT)

        assert "cannot return to DRAFT" in exc_info.value.message
        assert exc_info.value.allowed == [sm.CANCELLED, sm.IN_PRODUCTION]

    def test_terminal_status_allows_nothing(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            sm.ensure_transition(sm.ORDER_KIND, sm.PAID, sm.CANCELLED)
        assert exc_info.value.allowed == []

    def test_credit_delivery_cannot_be_cancelled(self):
        with pytest.raises(InvalidTransitionError):
            sm.ensure_transition(sm.ORDER_KIND, sm.DELIVERED_ON_CREDIT, sm.CANCELLED)


class TestStatusValidation:

    def test_normalizes_case_and_whitespace(self):
        assert sm.validate_status(sm.ORDER_KIND, "  in_production ") == sm.IN_PRODUCTION

    def test_unknown_status_is_validation_error(self):
        with pytest.raises(ValidationError):
            sm.validate_status(sm.ORDER_KIND, "SHIPPED")

    def test_status_from_another_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            sm.validate_status(sm.EXPENSE_KIND, sm.READY)

    def test_approval_gated_targets(self):
        assert sm.requires_approval(sm.ORDER_KIND, sm.DELIVERED_ON_CREDIT)
        assert sm.requires_approval(sm.EXPENSE_KIND, sm.AUTHORIZED)
        assert not sm.requires_approval(sm.ORDER_KIND, sm.PAID)
