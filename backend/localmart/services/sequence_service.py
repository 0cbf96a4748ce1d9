# Overview: Atomic allocation of human-readable document numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import SequenceCounter


SEQUENCE_ORDER = "ORDER"
SEQUENCE_SETTLEMENT = "SETTLEMENT"


class SequenceError(Exception):
    """Raised when sequence operations fail."""
    pass


def next_sequence_number(*, sequence_type: str, prefix: str, pad: int = 6) -> str:
    """
    Allocate the next number for a sequence inside the caller's transaction.

    The increment is a single UPDATE, so two transactions can never read
    the same value. The first allocation for a type inserts the row; a
    concurrent first insert loses on the unique constraint and falls back
    to the UPDATE path. Nothing is committed here: the number belongs to
    the document being created and rolls back with it.
    """
    if not sequence_type:
        raise SequenceError("sequence_type is required")

    stmt = (
        update(SequenceCounter)
        .where(SequenceCounter.sequence_type == sequence_type)
        .values(next_number=SequenceCounter.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(SequenceCounter.next_number)
            .filter_by(sequence_type=sequence_type)
            .scalar()
        )
        next_num = current - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(SequenceCounter(sequence_type=sequence_type, next_number=2))
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            current = (
                db.session.query(SequenceCounter.next_number)
                .filter_by(sequence_type=sequence_type)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{next_num:0{pad}d}"
