# Overview: Service-layer operations for identifiers; device codes and per-store invoice numbers.

"""
Identifier formats:

- Device code: UPPER(model[:3])-YYYYMMDDHHMMSS-XXXXXX (6 random upper-case hex chars)
- Invoice number: UPPER(store name[:3])-YYYYMMDD-NNNNNN (per-store running counter)

Uniqueness of both is backed by unique constraints; a collision surfaces as
IntegrityError at flush time and run_atomic turns it into a ConflictError.
"""

from __future__ import annotations

import re
import secrets
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow
from .concurrency import lock_for_update

INVOICE_DOCUMENT_TYPE = "INVOICE"

_PREFIX_STRIP = re.compile(r"[^0-9A-Za-z]")


def _prefix(text: str) -> str:
    cleaned = _PREFIX_STRIP.sub("", text or "")
    return (cleaned[:3] or "XXX").upper()


def generate_device_code(model: str, *, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"{_prefix(model)}-{now.strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3).upper()}"


def next_sequence_number(*, store_id: int, document_type: str) -> int:
    """
    Allocate the next number of a per-store sequence inside the caller's transaction.

    Uses row-level lock on (store_id, document_type); the first allocation
    creates the row.
    """
    seq = lock_for_update(
        db.session.query(DocumentSequence).filter_by(store_id=store_id, document_type=document_type)
    ).first()
    if seq is None:
        seq = DocumentSequence(store_id=store_id, document_type=document_type, next_number=1)
        db.session.add(seq)
        db.session.flush()

    number = seq.next_number
    seq.next_number = number + 1
    db.session.flush()
    return number


def next_invoice_number(*, store_id: int, store_name: str, on_date=None) -> str:
    number = next_sequence_number(store_id=store_id, document_type=INVOICE_DOCUMENT_TYPE)
    on_date = on_date or utcnow().date()
    return f"{_prefix(store_name)}-{on_date.strftime('%Y%m%d')}-{number:06d}"
