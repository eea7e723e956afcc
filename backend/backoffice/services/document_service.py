# Overview: Service-layer operations for document numbering; atomic per-type sequences.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


DOCUMENT_TYPE_ORDER = "ORDER"
DOCUMENT_TYPE_CREDIT_NOTE = "CREDIT_NOTE"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _bump(document_type: str) -> int | None:
    """Advance an existing counter row; None when the row doesn't exist yet."""
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Allocate the next document number for a document type.

    Runs inside the caller's transaction (no commit): the number is only
    consumed if the document that uses it commits. The counter row is bumped
    with a single UPDATE, which takes the row's write lock, so concurrent
    callers serialize on it.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    next_num = _bump(document_type)
    if next_num is None:
        # First document of this type. The insert runs in a savepoint so losing
        # the race to another transaction leaves the caller's work intact.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _bump(document_type)
            if next_num is None:
                raise

    return f"{prefix}{str(next_num).zfill(pad)}"


def parse_document_number(value: str | None) -> int | None:
    """Numeric part of a document number ("PED012" -> 12), None when absent."""
    if not value:
        return None
    digits = "".join(ch for ch in value if ch.isdigit())
    return int(digits) if digits else None
