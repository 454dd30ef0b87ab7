"""
Quote tests.

Verifies:
- Quote lifecycle and the CONVERTED guard
- Conversion copies items, discounts and totals into a new DRAFT order
- Converted quotes and their orders stay linked and protected
"""

import pytest

from conftest import sample_items
from orderdesk.errors import InvalidTransitionError, ValidationError
from orderdesk.services import order_service, quote_service, state_machine as sm
from orderdesk.validation import ItemInput


@pytest.fixture
def quote(seller_actor):
    return quote_service.create_quote(seller_actor, sample_items(), client_name="Acme Print")


class TestLifecycle:

    def test_create(self, quote):
        assert quote.status == sm.DRAFT
        assert quote.quote_number.startswith("COT-")
        assert quote.total_cents == 15470
        assert quote.paid_cents == 0

    def test_send_accept(self, quote, seller_actor):
        quote_service.change_status(quote.id, sm.SENT, seller_actor)
        accepted = quote_service.change_status(quote.id, sm.ACCEPTED, seller_actor)
        assert accepted.status == sm.ACCEPTED

    def test_converted_only_through_conversion(self, quote, seller_actor):
        with pytest.raises(ValidationError):
            quote_service.change_status(quote.id, sm.CONVERTED, seller_actor)

    def test_rejected_is_terminal(self, quote, seller_actor):
        quote_service.change_status(quote.id, sm.SENT, seller_actor)
        quote_service.change_status(quote.id, sm.REJECTED, seller_actor)

        with pytest.raises(InvalidTransitionError):
            quote_service.change_status(quote.id, sm.ACCEPTED, seller_actor)

    def test_item_editing_and_discounts(self, quote, seller_actor):
        updated = quote_service.add_item(
            quote.id, ItemInput(description="Design hours", quantity=2, unit_price_cents=1500), seller_actor
        )
        assert updated.subtotal_cents == 16000

        discounted = quote_service.apply_discount(quote.id, 1000, seller_actor, reason="Bundle")
        assert discounted.total_cents == 16000 + 3040 - 1000

    def test_item_changes_keep_discounts_within_cap(self, quote, seller_actor):
        quote_service.apply_discount(quote.id, 12000, seller_actor)
        banner_id = quote.items[0].id

        with pytest.raises(ValidationError):
            quote_service.remove_item(quote.id, banner_id, seller_actor)
        with pytest.raises(ValidationError):
            quote_service.update_item(quote.id, banner_id, {"quantity": 1, "unit_price_cents": 500}, seller_actor)

        unchanged = quote_service.get_quote(quote.id)
        assert unchanged.subtotal_cents == 13000
        assert unchanged.total_cents == 15470 - 12000


class TestConversion:

    def test_convert_copies_the_quote(self, quote, seller_actor):
        quote_service.apply_discount(quote.id, 470, seller_actor)

        order = quote_service.convert_to_order(quote.id, seller_actor)

        assert order.status == sm.DRAFT
        assert order.order_number.startswith("OP-")
        assert order.source_quote_id == quote.id
        assert order.client_name == "Acme Print"
        assert [(i.description, i.quantity, i.unit_price_cents) for i in order.items] == [
            ("Printed banner", 1, 10000),
            ("Flyers (pack)", 3, 1000),
        ]
        assert order.discount_cents == 470
        assert order.total_cents == 15000

        converted = quote_service.get_quote(quote.id)
        assert converted.status == sm.CONVERTED
        assert converted.converted_order_id == order.id
        assert converted.converted_at is not None

    def test_cannot_convert_twice(self, quote, seller_actor):
        quote_service.convert_to_order(quote.id, seller_actor)

        with pytest.raises(InvalidTransitionError):
            quote_service.convert_to_order(quote.id, seller_actor)

    def test_converted_quote_is_locked(self, quote, seller_actor):
        quote_service.convert_to_order(quote.id, seller_actor)

        with pytest.raises(ValidationError):
            quote_service.add_item(
                quote.id, ItemInput(description="Late change", quantity=1, unit_price_cents=100), seller_actor
            )

    def test_order_from_quote_cannot_be_deleted(self, quote, seller_actor):
        order = quote_service.convert_to_order(quote.id, seller_actor)

        with pytest.raises(ValidationError):
            order_service.delete_order(order.id, seller_actor)

    def test_cancelled_quote_cannot_convert(self, quote, seller_actor):
        quote_service.change_status(quote.id, sm.CANCELLED, seller_actor)

        with pytest.raises(InvalidTransitionError):
            quote_service.convert_to_order(quote.id, seller_actor)


class TestDeletion:

    def test_delete_draft_only(self, quote, seller_actor):
        sent = quote_service.create_quote(seller_actor, sample_items())
        quote_service.change_status(sent.id, sm.SENT, seller_actor)

        quote_service.delete_quote(quote.id, seller_actor)
        with pytest.raises(ValidationError):
            quote_service.delete_quote(sent.id, seller_actor)
