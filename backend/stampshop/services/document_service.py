# Overview: Atomic allocation of order and invoice numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence

ORDER_PREFIX = "DH"
INVOICE_PREFIX = "HD"


def _increment(document_type: str) -> int | None:
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


def next_document_number(*, document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Allocate the next number for `document_type` inside the caller's transaction.

    The counter row is bumped with a single UPDATE (increment-and-read), so two
    concurrent creators cannot receive the same number. A missing row is
    inserted under a savepoint; losing that insert race falls back to the
    UPDATE path. Numbers consumed by a rolled-back transaction are reused.
    """
    next_num = _increment(document_type)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _increment(document_type)
            if next_num is None:
                raise

    return f"{prefix}{next_num:0{pad}d}"


def next_order_number() -> str:
    return next_document_number(document_type="order", prefix=ORDER_PREFIX)


def next_invoice_number() -> str:
    return next_document_number(document_type="invoice", prefix=INVOICE_PREFIX)
