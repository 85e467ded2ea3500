# Overview: Service-layer receipt-number sequencing per receipt type.

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import and_, func, not_, or_

from ..errors import SequenceConflictError, ValidationError
from ..models import Receipt
from .unit_of_work import UnitOfWork

"""
Receipt Number Invariants (authoritative)

- Two independent sequences: NORMAL and TVA.
- TVA numbers always start with the reserved prefix (default "T", case-insensitive).
- The latest TVA receipt is the highest id whose type is TVA OR whose number has the prefix.
- The latest NORMAL receipt is the highest id whose type is NORMAL AND whose number lacks the prefix.
- Increment keeps zero-padding width and any prefix/suffix around the first digit run.
- Seeds: "1" (NORMAL), "<prefix>1" (TVA).
- Uniqueness is enforced by the receipt_no unique constraint; the receipt
  coordinator retries creation on collisions when the number was not supplied.
"""

_NUMBER_PATTERN = re.compile(r"^(\D*?)(\d+)(.*)$")


def _prefix() -> str:
    return current_app.config.get("TVA_RECEIPT_PREFIX", "T")


def has_tva_prefix(receipt_no: str | None) -> bool:
    if not receipt_no:
        return False
    return receipt_no.strip().upper().startswith(_prefix().upper())


def seed_for_type(receipt_type: str) -> str:
    return f"{_prefix()}1" if receipt_type == "TVA" else "1"


def increment_receipt_number(value: str | None, fallback: str) -> str:
    """
    Next number after `value`.

    "41" -> "42", "007" -> "008", "T0009" -> "T0010", "A12-x" -> "A13-x".
    Empty or digit-free values fall back to `fallback`.
    """
    if not value:
        return fallback
    trimmed = value.strip()
    if not trimmed:
        return fallback

    if trimmed.isdigit():
        incremented = str(int(trimmed) + 1)
        if len(trimmed) > 1 and trimmed.startswith("0"):
            return incremented.zfill(len(trimmed))
        return incremented

    match = _NUMBER_PATTERN.match(trimmed)
    if not match:
        return fallback
    prefix, digits, suffix = match.groups()
    return f"{prefix}{str(int(digits) + 1).zfill(len(digits))}{suffix}"


def enforce_prefix(value: str) -> str:
    return value if has_tva_prefix(value) else f"{_prefix()}{value}"


def _latest_receipt_no(uow: UnitOfWork, receipt_type: str) -> str | None:
    starts_with_prefix = func.upper(Receipt.receipt_no).like(f"{_prefix().upper()}%")
    if receipt_type == "TVA":
        criteria = or_(Receipt.type == "TVA", starts_with_prefix)
    else:
        criteria = and_(Receipt.type == "NORMAL", not_(starts_with_prefix))

    row = (
        uow.query(Receipt.receipt_no)
        .filter(criteria)
        .order_by(Receipt.id.desc())
        .first()
    )
    return row[0] if row else None


def next_number(uow: UnitOfWork, receipt_type: str) -> str:
    """The number that would be assigned to a new receipt of this type."""
    latest = _latest_receipt_no(uow, receipt_type)
    candidate = increment_receipt_number(latest, seed_for_type(receipt_type))
    if receipt_type == "TVA":
        return enforce_prefix(candidate)
    return candidate


def require_next(uow: UnitOfWork, receipt_type: str, provided: str | None) -> str:
    """
    Validate a caller-supplied number against the sequence.

    Returns the number to use: `provided` when it matches, otherwise the
    computed next number when nothing was supplied.
    """
    expected = next_number(uow, receipt_type)
    if not provided:
        return expected

    if receipt_type == "TVA" and not has_tva_prefix(provided):
        raise ValidationError(
            f'TVA receipts must start with "{_prefix()}". Next expected number is {expected}.',
            expected_next=expected,
        )
    if provided != expected:
        raise SequenceConflictError(
            f"Receipt number out of sequence. Next {receipt_type} receipt should be {expected}.",
            expected_next=expected,
        )
    return provided


def preview_numbers() -> dict:
    with UnitOfWork() as uow:
        return {
            "normal": next_number(uow, "NORMAL"),
            "tva": next_number(uow, "TVA"),
        }
