from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class DocumentSequence(db.Model):
    """
    Per-document-type, per-year counter for human-readable numbers.

    WHY: Order/quote/expense numbers ("OP-2026-0042") must never collide,
    even with concurrent writers. One row per document type; last_number
    restarts at 1 when the stored year differs from the requested one.

    Only sequence_service mutates this table, always through a single
    conditional UPDATE so the read-modify-write is atomic.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_document_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    prefix = db.Column(db.String(16), nullable=False)
    year = db.Column(db.Integer, nullable=False)

    # Last number handed out for `year` (0 means the next call yields 1)
    last_number = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "prefix": self.prefix,
            "year": self.year,
            "last_number": self.last_number,
            "updated_at": to_utc_z(self.updated_at),
        }
