# Overview: Service-layer payment reconciliation; canonical paid amounts, health sweep and repair.

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func

from ..errors import NotFoundError
from ..extensions import db
from ..models import Payment, Receipt, ReceiptPayment, RECEIPT_PAYMENT_TYPES
from ..money import EPSILON, MISMATCH_TOLERANCE, is_settled, round_currency
from .unit_of_work import UnitOfWork, run_in_transaction

logger = logging.getLogger(__name__)

"""
Receivables Invariants (authoritative)

Payment sources per receipt (historically recorded along different paths):
- allocated: SUM(ReceiptPayment.amount) for the receipt
- direct:    SUM(Payment.amount) of RECEIPT / CUSTOMER_PAYMENT payments tagged with receipt_id
- stored:    Receipt.amount_paid
- flagged:   Receipt.total when Receipt.is_paid is set

Canonical paid amount = max of the four. The maximum is authoritative on
purpose; no source is discarded.

is_paid = total > epsilon AND canonical >= total - epsilon (epsilon = 1e-6).
A zero-total receipt (nothing priced yet) is never paid.

The health sweep only reports. Repair applies canonical values and is idempotent.
"""

TOP_OUTSTANDING_LIMIT = 20


@dataclass(frozen=True)
class PaymentSources:
    allocated: float = 0.0
    direct: float = 0.0
    stored: float = 0.0
    flagged_total: float = 0.0

    @property
    def canonical(self) -> float:
        return max(self.allocated, self.direct, self.stored, self.flagged_total)

    @property
    def recorded(self) -> float:
        """Paid amount backed by payment rows only (ignores the receipt's own fields)."""
        return max(self.allocated, self.direct)


def _allocated_sums(session, receipt_ids=None) -> dict[int, float]:
    query = session.query(ReceiptPayment.receipt_id, func.coalesce(func.sum(ReceiptPayment.amount), 0.0))
    if receipt_ids is not None:
        query = query.filter(ReceiptPayment.receipt_id.in_(receipt_ids))
    return {rid: float(total or 0.0) for rid, total in query.group_by(ReceiptPayment.receipt_id).all()}


def _direct_sums(session, receipt_ids=None) -> dict[int, float]:
    query = (
        session.query(Payment.receipt_id, func.coalesce(func.sum(Payment.amount), 0.0))
        .filter(Payment.receipt_id.isnot(None))
        .filter(Payment.type.in_(RECEIPT_PAYMENT_TYPES))
    )
    if receipt_ids is not None:
        query = query.filter(Payment.receipt_id.in_(receipt_ids))
    return {rid: float(total or 0.0) for rid, total in query.group_by(Payment.receipt_id).all()}


def _sources_for(receipt: Receipt, allocated: dict[int, float], direct: dict[int, float]) -> PaymentSources:
    return PaymentSources(
        allocated=allocated.get(receipt.id, 0.0),
        direct=direct.get(receipt.id, 0.0),
        stored=float(receipt.amount_paid or 0.0),
        flagged_total=float(receipt.total or 0.0) if receipt.is_paid else 0.0,
    )


def collect_payment_sources(uow: UnitOfWork, receipt: Receipt) -> PaymentSources:
    """Payment sources for one receipt, read inside the caller's transaction."""
    uow.flush()
    ids = [receipt.id]
    return _sources_for(receipt, _allocated_sums(uow.session, ids), _direct_sums(uow.session, ids))


def canonical_paid_map(receipts: list[Receipt]) -> dict[int, float]:
    """Canonical paid amount per receipt id, batched."""
    if not receipts:
        return {}
    ids = [r.id for r in receipts]
    allocated = _allocated_sums(db.session, ids)
    direct = _direct_sums(db.session, ids)
    return {r.id: _sources_for(r, allocated, direct).canonical for r in receipts}


def _diagnose(receipt: Receipt, sources: PaymentSources) -> dict | None:
    total = float(receipt.total or 0.0)
    stored = float(receipt.amount_paid or 0.0)
    canonical = sources.canonical
    should_be_paid = is_settled(canonical, total)
    delta = abs(stored - canonical)
    if delta <= MISMATCH_TOLERANCE and bool(receipt.is_paid) == should_be_paid:
        return None
    return {
        "id": receipt.id,
        "receipt_no": receipt.receipt_no,
        "customer_id": receipt.customer_id,
        "total": total,
        "stored_paid": stored,
        "allocated_paid": sources.allocated,
        "direct_paid": sources.direct,
        "canonical_paid": canonical,
        "stored_is_paid": bool(receipt.is_paid),
        "should_be_paid": should_be_paid,
        "delta": round_currency(delta),
    }


def find_orphan_allocations(session=None) -> list[dict]:
    """Allocation rows whose receipt or payment no longer exists. Never deleted here."""
    session = session or db.session
    receipt_exists = session.query(Receipt.id).filter(Receipt.id == ReceiptPayment.receipt_id).exists()
    payment_exists = session.query(Payment.id).filter(Payment.id == ReceiptPayment.payment_id).exists()
    rows = (
        session.query(ReceiptPayment)
        .filter(~receipt_exists | ~payment_exists)
        .order_by(ReceiptPayment.id)
        .all()
    )
    return [
        {
            "id": row.id,
            "receipt_id": row.receipt_id,
            "payment_id": row.payment_id,
            "amount": row.amount,
        }
        for row in rows
    ]


def find_invalid_payments(session=None) -> list[dict]:
    session = session or db.session
    rows = (
        session.query(Payment)
        .filter(
            ((Payment.type == "RECEIPT") & Payment.receipt_id.is_(None))
            | ((Payment.type == "CUSTOMER_PAYMENT") & Payment.customer_id.is_(None))
        )
        .order_by(Payment.id)
        .all()
    )
    return [
        {
            "id": p.id,
            "type": p.type,
            "amount": p.amount,
            "customer_id": p.customer_id,
            "receipt_id": p.receipt_id,
        }
        for p in rows
    ]


def receivables_health() -> dict:
    """Read-only sweep over every receipt."""
    receipts = db.session.query(Receipt).order_by(Receipt.id).all()
    allocated = _allocated_sums(db.session)
    direct = _direct_sums(db.session)

    mismatched = []
    outstanding_by_customer: dict[int, float] = {}
    for receipt in receipts:
        sources = _sources_for(receipt, allocated, direct)
        report = _diagnose(receipt, sources)
        if report:
            mismatched.append(report)
        if receipt.customer_id:
            outstanding = max(float(receipt.total or 0.0) - sources.canonical, 0.0)
            outstanding_by_customer[receipt.customer_id] = outstanding_by_customer.get(receipt.customer_id, 0.0) + outstanding

    top_outstanding = sorted(
        (
            {"customer_id": cid, "outstanding": round_currency(amount)}
            for cid, amount in outstanding_by_customer.items()
            if amount > EPSILON
        ),
        key=lambda row: row["outstanding"],
        reverse=True,
    )[:TOP_OUTSTANDING_LIMIT]

    return {
        "receipts_scanned": len(receipts),
        "mismatched_receipts": mismatched,
        "orphan_receipt_payments": find_orphan_allocations(),
        "invalid_payments": find_invalid_payments(),
        "top_outstanding": top_outstanding,
    }


def apply_canonical(receipt: Receipt, sources: PaymentSources) -> bool:
    """Write canonical values onto the receipt. Returns True when anything changed."""
    paid = sources.canonical
    should_be_paid = is_settled(paid, float(receipt.total or 0.0))
    changed = abs(paid - float(receipt.amount_paid or 0.0)) > EPSILON or bool(receipt.is_paid) != should_be_paid
    if changed:
        receipt.amount_paid = paid
        receipt.is_paid = should_be_paid
    return changed


def recompute_receipt_balances(*, receipt_id: int | None = None, customer_id: int | None = None) -> dict:
    """Recompute amount_paid/is_paid for a scope (or everything). Returns {updated, skipped}."""

    def _op(uow: UnitOfWork):
        query = uow.query(Receipt)
        if receipt_id is not None:
            query = query.filter(Receipt.id == receipt_id)
        if customer_id is not None:
            query = query.filter(Receipt.customer_id == customer_id)
        receipts = query.order_by(Receipt.id).all()
        if not receipts:
            return {"updated": 0, "skipped": 0}

        ids = [r.id for r in receipts]
        allocated = _allocated_sums(uow.session, ids)
        direct = _direct_sums(uow.session, ids)
        updated = 0
        for receipt in receipts:
            if apply_canonical(receipt, _sources_for(receipt, allocated, direct)):
                updated += 1
        return {"updated": updated, "skipped": len(receipts) - updated}

    result = run_in_transaction(_op)
    logger.info("Recomputed receipt balances: %s", result)
    return result


def repair_receivables() -> dict:
    """Apply canonical values to every receipt the health sweep would flag."""

    def _op(uow: UnitOfWork):
        receipts = uow.query(Receipt).order_by(Receipt.id).all()
        allocated = _allocated_sums(uow.session)
        direct = _direct_sums(uow.session)
        repaired = []
        for receipt in receipts:
            sources = _sources_for(receipt, allocated, direct)
            if _diagnose(receipt, sources) is None:
                continue
            apply_canonical(receipt, sources)
            repaired.append({
                "id": receipt.id,
                "new_paid": receipt.amount_paid,
                "is_paid": receipt.is_paid,
            })
        return {"repaired": repaired, "count": len(repaired)}

    result = run_in_transaction(_op)
    if result["count"]:
        logger.warning("Repaired %s receivable mismatches", result["count"])
    return result


def repair_receipt(receipt_id: int) -> Receipt:
    def _op(uow: UnitOfWork):
        receipt = uow.get(Receipt, receipt_id, lock=True)
        if receipt is None:
            raise NotFoundError("Receipt not found", details={"receipt_id": receipt_id})
        apply_canonical(receipt, collect_payment_sources(uow, receipt))
        return receipt

    return run_in_transaction(_op)
