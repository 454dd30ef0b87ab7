"""
Financial consistency tests.

Verifies:
- Tax rounding (half-up on basis points) and the totals formula
- Discount cap (subtotal + tax) and payment <= balance guards
- Recalculation is idempotent and verify_totals detects drift
"""

import pytest

from conftest import sample_items
from orderdesk.errors import ValidationError
from orderdesk.extensions import db
from orderdesk.models import Order
from orderdesk.services import financial_service, order_service
from orderdesk.validation import PaymentInput


class TestComputeTotals:

    def test_reference_order(self):
        totals = financial_service.compute_totals([10000, 3000], 1900)

        assert totals.subtotal_cents == 13000
        assert totals.tax_cents == 2470
        assert totals.total_cents == 15470
        assert totals.balance_cents == 15470

    def test_discount_and_payment(self):
        totals = financial_service.compute_totals([13000], 1900, [2000], [5000])

        assert totals.discount_cents == 2000
        assert totals.total_cents == 13470
        assert totals.paid_cents == 5000
        assert totals.balance_cents == 8470

    @pytest.mark.parametrize(
        "subtotal,rate,expected",
        [
            (50, 1900, 10),       # 9.5 rounds up
            (150, 1000, 15),
            (149, 1000, 15),      # 14.9
            (145, 1000, 15),      # 14.5 rounds up
            (144, 1000, 14),
            (0, 1900, 0),
            (12345, 0, 0),
        ],
    )
    def test_tax_rounds_half_up(self, subtotal, rate, expected):
        assert financial_service.compute_tax_cents(subtotal, rate) == expected


class TestOrderFinancials:

    def test_new_order_totals(self, draft_order):
        order = db.session.get(Order, draft_order.id)

        assert order.subtotal_cents == 13000
        assert order.tax_cents == 2470
        assert order.total_cents == 15470
        assert order.balance_cents == 15470
        assert order.paid_cents == 0

    def test_discount_reduces_total_and_balance(self, confirmed_order, manager_actor):
        order = order_service.apply_discount(confirmed_order.id, 2000, manager_actor, reason="Loyal client")

        assert order.discount_cents == 2000
        assert order.total_cents == 13470
        assert order.balance_cents == 13470

    def test_discount_above_cap_is_rejected(self, confirmed_order, manager_actor):
        order_service.apply_discount(confirmed_order.id, 2000, manager_actor)

        with pytest.raises(ValidationError) as exc_info:
            order_service.apply_discount(confirmed_order.id, 14000, manager_actor)

        assert exc_info.value.details["max_discount_cents"] == 13470
        order = db.session.get(Order, confirmed_order.id)
        assert order.discount_cents == 2000
        assert order.total_cents == 13470

    def test_discount_up_to_cap_is_allowed(self, confirmed_order, manager_actor):
        order = order_service.apply_discount(confirmed_order.id, 15470, manager_actor)

        assert order.total_cents == 0
        assert order.balance_cents == 0

    def test_payment_above_balance_is_rejected(self, confirmed_order, manager_actor):
        order_service.add_payment(confirmed_order.id, PaymentInput(amount_cents=15000, method="CASH"), manager_actor)

        with pytest.raises(ValidationError) as exc_info:
            order_service.add_payment(confirmed_order.id, PaymentInput(amount_cents=471, method="CARD"), manager_actor)

        assert exc_info.value.details["balance_cents"] == 470
        order = db.session.get(Order, confirmed_order.id)
        assert order.paid_cents == 15000
        assert order.balance_cents == 470

    def test_initial_payment_above_total_is_rejected(self, seller_actor):
        with pytest.raises(ValidationError):
            order_service.create_order(
                seller_actor,
                sample_items(),
                initial_payment=PaymentInput(amount_cents=15471, method="CASH"),
            )
        assert db.session.query(Order).count() == 0

    def test_initial_payment_is_recorded(self, seller_actor):
        order = order_service.create_order(
            seller_actor,
            sample_items(),
            initial_payment=PaymentInput(amount_cents=5000, method="TRANSFER", reference="DEP-1"),
        )

        assert order.paid_cents == 5000
        assert order.balance_cents == 10470
        assert len(order.payments) == 1

    def test_recalculate_is_idempotent(self, confirmed_order, manager_actor):
        order_service.apply_discount(confirmed_order.id, 470, manager_actor)
        first = financial_service.collect_totals("order", db.session.get(Order, confirmed_order.id))

        financial_service.recalculate("order", confirmed_order.id)
        financial_service.recalculate("order", confirmed_order.id)
        db.session.commit()

        second = financial_service.collect_totals("order", db.session.get(Order, confirmed_order.id))
        assert first == second
        assert financial_service.verify_totals("order", confirmed_order.id) == []


class TestVerifyTotals:

    def test_detects_stored_drift(self, draft_order):
        order = db.session.get(Order, draft_order.id)
        order.total_cents = 1
        db.session.commit()

        problems = financial_service.verify_totals("order", draft_order.id)
        assert any(p.startswith("total_cents") for p in problems)

        report = financial_service.verify_all(["order"])
        assert draft_order.id in report["order"]

    def test_consistent_aggregates_report_nothing(self, draft_order):
        report = financial_service.verify_all()
        assert report == {"order": {}, "expense_order": {}, "quote": {}}
