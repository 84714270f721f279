# Overview: Service-layer operations for document numbering; encapsulates the atomic counter.

from __future__ import annotations

import re

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence, Sale


SALE_DOCUMENT_TYPE = "SALE"
SALE_PREFIX = "VENDA"
SALE_PAD = 6

_SUFFIX_RE = re.compile(r"(\d+)$")


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def format_sale_number(number: int) -> str:
    return f"{SALE_PREFIX}-{number:0{SALE_PAD}d}"


def _highest_existing_sale_number() -> int:
    """Numeric suffix of the highest sale number already stored (0 when none)."""
    highest = 0
    rows = db.session.query(Sale.sale_number).filter(Sale.sale_number.like(f"{SALE_PREFIX}-%"))
    for (sale_number,) in rows:
        match = _SUFFIX_RE.search(sale_number)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def _bump(document_type: str) -> int | None:
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


def next_document_number(*, document_type: str, seed: int = 0) -> int:
    """
    Atomically allocate the next number for a document type.

    Runs inside the caller's transaction: the UPDATE takes the row lock, so
    a rolled-back caller also gives its number back. The first allocation
    creates the counter at seed + 1.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    number = _bump(document_type)
    if number is not None:
        return number

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_type=document_type, next_number=seed + 2))
        return seed + 1
    except IntegrityError:
        # Another request created the counter first
        number = _bump(document_type)
        if number is None:
            raise DocumentSequenceError(f"could not allocate a {document_type} number")
        return number


def next_sale_number() -> str:
    """Next VENDA-NNNNNN number, continuing from the last stored sale."""
    has_counter = (
        db.session.query(DocumentSequence.id)
        .filter_by(document_type=SALE_DOCUMENT_TYPE)
        .first()
    )
    seed = 0 if has_counter else _highest_existing_sale_number()
    return format_sale_number(next_document_number(document_type=SALE_DOCUMENT_TYPE, seed=seed))
