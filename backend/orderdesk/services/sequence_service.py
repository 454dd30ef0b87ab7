# Overview: Service-layer operations for document sequences; encapsulates business logic and database work.

"""
Document Number Sequences

WHY: Orders, quotes and expense orders carry human-readable numbers
("OP-2026-0042") that must be unique even when many requests create
documents at the same time.

DESIGN PRINCIPLES:
- One row per document type, holding (prefix, year, last_number)
- A single conditional UPDATE performs the read-modify-write:
      last_number = CASE WHEN year = :year THEN last_number + 1 ELSE 1 END
  so the row lock taken by the UPDATE is the only serialization point
- The number is read back while that lock is still held
- First use inserts the row inside a SAVEPOINT; losing that race to a
  concurrent insert falls back to the UPDATE
- next_number() joins the caller's transaction (so a rolled-back order
  does not commit its number); issue_number() is the standalone variant
"""

from __future__ import annotations

import re

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import DocumentSequence, ExpenseOrder, Order, Quote
from ..time_utils import current_year, utcnow
from .concurrency import run_in_transaction


DOCUMENT_PREFIXES = {
    "ORDER": "OP",
    "EXPENSE": "GAS",
    "QUOTE": "COT",
    "PRODUCTION": "PROD",
    "WORK_ORDER": "OT",
}

NUMBER_PAD = 4

# Tables whose numbers are minted from a sequence (used by sync_sequence)
SEQUENCE_OWNERS = {
    "ORDER": (Order, "order_number"),
    "EXPENSE": (ExpenseOrder, "expense_number"),
    "QUOTE": (Quote, "quote_number"),
}


def _resolve(document_type: str, prefix: str | None) -> tuple[str, str]:
    if not document_type or not isinstance(document_type, str):
        raise ValidationError("document_type is required", field="document_type")
    document_type = document_type.strip().upper()
    if prefix is None:
        prefix = DOCUMENT_PREFIXES.get(document_type)
        if prefix is None:
            raise ValidationError(
                f"Unknown document type: {document_type}. Must be one of {sorted(DOCUMENT_PREFIXES)}",
                field="document_type",
            )
    return document_type, prefix


def format_number(prefix: str, year: int, number: int, pad: int = NUMBER_PAD) -> str:
    return f"{prefix}-{year}-{number:0{pad}d}"


def _advance(document_type: str, prefix: str, year: int) -> int | None:
    """Bump the counter for `year`; returns None when the row does not exist yet."""
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(
            last_number=case(
                (DocumentSequence.year == year, DocumentSequence.last_number + 1),
                else_=1,
            ),
            year=year,
            prefix=prefix,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    return (
        db.session.query(DocumentSequence.last_number)
        .filter(DocumentSequence.document_type == document_type)
        .scalar()
    )


def next_number(document_type: str, *, prefix: str | None = None, year: int | None = None) -> str:
    """
    Allocate the next number for a document type inside the current transaction.

    Args:
        document_type: ORDER, EXPENSE, QUOTE, PRODUCTION or WORK_ORDER
        prefix: Override for the type's default prefix
        year: Numbering year (defaults to the current UTC year)

    Returns:
        "{prefix}-{year}-{NNNN}"

    Raises:
        ValidationError: Unknown document type
        ConflictError: The row vanished between the insert race and the retry
    """
    document_type, prefix = _resolve(document_type, prefix)
    year = year or current_year()

    number = _advance(document_type, prefix, year)
    if number is None:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(
                        document_type=document_type,
                        prefix=prefix,
                        year=year,
                        last_number=1,
                        updated_at=utcnow(),
                    )
                )
            number = 1
        except IntegrityError:
            # Another writer created the row first
            number = _advance(document_type, prefix, year)
            if number is None:
                raise ConflictError(f"Could not allocate a {document_type} number; retry the operation")

    return format_number(prefix, year, number)


def issue_number(document_type: str, *, prefix: str | None = None, year: int | None = None) -> str:
    """Allocate and commit a number in its own transaction."""
    return run_in_transaction(lambda hooks: next_number(document_type, prefix=prefix, year=year))


def get_sequence(document_type: str) -> DocumentSequence:
    document_type, _ = _resolve(document_type, None)
    seq = db.session.query(DocumentSequence).filter_by(document_type=document_type).first()
    if not seq:
        raise NotFoundError(f"No sequence exists for {document_type}")
    return seq


def list_sequences() -> list[DocumentSequence]:
    return db.session.query(DocumentSequence).order_by(DocumentSequence.document_type).all()


def reset_sequence(document_type: str) -> DocumentSequence:
    """
    Restart numbering for the stored year; the next call yields 0001.

    Intended for administrative repair only: reissuing a number that is
    already in use fails on the owning table's unique constraint.
    """
    def _op(hooks):
        seq = get_sequence(document_type)
        seq.last_number = 0
        seq.updated_at = utcnow()
        return seq

    return run_in_transaction(_op)


def sync_sequence(document_type: str, *, year: int | None = None) -> DocumentSequence:
    """
    Align last_number with the highest number already present in the owning table.

    Used after imports or manual inserts so the next number does not collide.
    """
    document_type, prefix = _resolve(document_type, None)
    owner = SEQUENCE_OWNERS.get(document_type)
    if owner is None:
        raise ValidationError(f"{document_type} numbers are not stored in a synced table", field="document_type")
    model, column_name = owner
    year = year or current_year()
    stem = f"{prefix}-{year}-"
    pattern = re.compile(rf"^{re.escape(stem)}(\d+)$")

    def _op(hooks):
        column = getattr(model, column_name)
        highest = 0
        for (value,) in db.session.query(column).filter(column.like(f"{stem}%")).all():
            match = pattern.match(value or "")
            if match:
                highest = max(highest, int(match.group(1)))

        seq = db.session.query(DocumentSequence).filter_by(document_type=document_type).first()
        if seq is None:
            seq = DocumentSequence(document_type=document_type, prefix=prefix, year=year, last_number=highest)
            db.session.add(seq)
        else:
            seq.prefix = prefix
            seq.year = year
            seq.last_number = highest
        seq.updated_at = utcnow()
        db.session.flush()
        return seq

    return run_in_transaction(_op)
