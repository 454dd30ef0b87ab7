"""
Document numbering tests.

Verifies:
- Format "{prefix}-{year}-{NNNN}" and per-type prefixes
- Counters restart at 0001 when the year changes
- A rolled-back creation does not consume a number
- sync/reset repair operations
"""

import pytest

from conftest import sample_items
from orderdesk.errors import NotFoundError, ValidationError
from orderdesk.extensions import db
from orderdesk.models import DocumentSequence, Order
from orderdesk.services import order_service, sequence_service
from orderdesk.validation import PaymentInput


class TestNumberFormat:

    def test_format_pads_to_four_digits(self):
        assert sequence_service.format_number("OP", 2026, 7) == "OP-2026-0007"
        assert sequence_service.format_number("OP", 2026, 12345) == "OP-2026-12345"

    @pytest.mark.parametrize(
        "document_type,prefix",
        [("ORDER", "OP"), ("EXPENSE", "GAS"), ("QUOTE", "COT"), ("PRODUCTION", "PROD"), ("WORK_ORDER", "OT")],
    )
    def test_first_number_per_type(self, db_session, document_type, prefix):
        assert sequence_service.issue_number(document_type, year=2026) == f"{prefix}-2026-0001"

    def test_unknown_type_is_rejected(self, db_session):
        with pytest.raises(ValidationError):
            sequence_service.issue_number("INVOICE")

    def test_document_type_is_case_insensitive(self, db_session):
        assert sequence_service.issue_number("order", year=2026) == "OP-2026-0001"
        assert sequence_service.issue_number("ORDER", year=2026) == "OP-2026-0002"


class TestCounters:

    def test_numbers_increase_monotonically(self, db_session):
        numbers = [sequence_service.issue_number("QUOTE", year=2026) for _ in range(3)]
        assert numbers == ["COT-2026-0001", "COT-2026-0002", "COT-2026-0003"]

    def test_year_rollover_restarts_at_one(self, db_session):
        for _ in range(41):
            sequence_service.issue_number("ORDER", year=2026)

        assert sequence_service.issue_number("ORDER", year=2027) == "OP-2027-0001"

        seq = sequence_service.get_sequence("ORDER")
        assert seq.year == 2027
        assert seq.last_number == 1

    def test_failed_creation_does_not_consume_a_number(self, seller_actor):
        first = order_service.create_order(seller_actor, sample_items())
        with pytest.raises(ValidationError):
            order_service.create_order(
                seller_actor,
                sample_items(),
                initial_payment=PaymentInput(amount_cents=10**8, method="CASH"),
            )
        second = order_service.create_order(seller_actor, sample_items())

        first_no = int(first.order_number.rsplit("-", 1)[1])
        second_no = int(second.order_number.rsplit("-", 1)[1])
        assert second_no == first_no + 1


class TestRepair:

    def test_reset_restarts_numbering(self, db_session):
        sequence_service.issue_number("EXPENSE", year=2026)
        sequence_service.issue_number("EXPENSE", year=2026)

        seq = sequence_service.reset_sequence("EXPENSE")
        assert seq.last_number == 0
        assert sequence_service.issue_number("EXPENSE", year=2026) == "GAS-2026-0001"

    def test_reset_unknown_sequence(self, db_session):
        with pytest.raises(NotFoundError):
            sequence_service.reset_sequence("QUOTE")

    def test_sync_aligns_with_stored_numbers(self, seller_actor):
        order = order_service.create_order(seller_actor, sample_items())
        year = int(order.order_number.split("-")[1])
        db.session.add(
            Order(
                order_number=sequence_service.format_number("OP", year, 57),
                status="DRAFT",
                tax_rate_bps=1900,
            )
        )
        db.session.commit()

        seq = sequence_service.sync_sequence("ORDER", year=year)
        assert seq.last_number == 57

        next_order = order_service.create_order(seller_actor, sample_items())
        assert next_order.order_number == sequence_service.format_number("OP", year, 58)

    def test_sync_rejects_types_without_a_table(self, db_session):
        with pytest.raises(ValidationError):
            sequence_service.sync_sequence("WORK_ORDER")

    def test_list_sequences(self, db_session):
        sequence_service.issue_number("QUOTE", year=2026)
        sequence_service.issue_number("ORDER", year=2026)

        listed = [seq.document_type for seq in sequence_service.list_sequences()]
        assert listed == ["ORDER", "QUOTE"]
        assert db_session.query(DocumentSequence).count() == 2
