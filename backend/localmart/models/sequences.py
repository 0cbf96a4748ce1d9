from __future__ import annotations

from ..extensions import db


class SequenceCounter(db.Model):
    """
    Monotonic counter per sequence type (ORDER, SETTLEMENT).

    next_number is incremented with a single UPDATE so concurrent writers
    never hand out the same number.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint("sequence_type", name="uq_sequence_counters_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sequence_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
