# Overview: Service-layer invoice bundling; receipt selection, price overrides and VAT totals for a customer.

from __future__ import annotations

import logging

from flask import current_app

from ..errors import InvariantViolationError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, JobSite, Receipt
from ..money import EPSILON, apply_receipt_tax, is_settled, round_currency
from ..time_utils import to_utc_z, utcnow
from ..validation import InvoicePreviewInput, PriceOverride
from .audit_service import log_audit
from .reconciliation_service import canonical_paid_map
from .unit_of_work import UnitOfWork, run_in_transaction

logger = logging.getLogger(__name__)

"""
Invoice Bundle Invariants (authoritative)

Selection:
- Explicit receipt ids win; ids not owned by the customer are ignored.
- With an amount, candidates are taken oldest-first (date, id) until the
  running total reaches the amount.
- With neither, every candidate is selected.
- Candidates are unpaid unless include_paid; optionally narrowed to one job site.
- A bundle never mixes NORMAL and TVA receipts.

Totals:
- subtotal = SUM(receipt.total) of the selection
- vat = round2(subtotal * TVA_RATE) for TVA bundles, else 0
- amount_paid = SUM(canonical paid) of the selection
- outstanding = max(subtotal + vat - amount_paid, 0)
- old_balance = outstanding of the customer's other unpaid receipts

Price overrides are applied (and committed) before selection.
"""


def _tva_rate() -> float:
    return float(current_app.config.get("TVA_RATE", 0.11))


def apply_price_overrides(
    customer_id: int,
    overrides: tuple[PriceOverride, ...],
    actor: str | None = None,
) -> list[int]:
    """Reprice receipt items in one transaction. Returns the ids of updated receipts."""
    if not overrides:
        return []

    def _op(uow: UnitOfWork) -> list[dict]:
        updated = []
        for override in overrides:
            receipt = uow.get(Receipt, override.receipt_id, lock=True)
            if receipt is None or receipt.customer_id != customer_id:
                continue
            changed = False
            for item in receipt.items:
                price = override.prices.get(item.id)
                if price is None:
                    continue
                item.unit_price = price
                item.subtotal = float(item.quantity) * price
                changed = True
            if not changed:
                continue
            priced = [item.subtotal for item in receipt.items if item.subtotal is not None]
            receipt.total = apply_receipt_tax(sum(priced), receipt.type, _tva_rate()) if priced else 0.0
            receipt.is_paid = is_settled(float(receipt.amount_paid or 0.0), receipt.total)
            updated.append({"id": receipt.id, "total": receipt.total})
        return updated

    updated = run_in_transaction(_op)

    for entry in updated:
        log_audit(
            action="RECEIPT_PRICING_UPDATED",
            entity_type="receipt",
            entity_id=entry["id"],
            description=f"Receipt {entry['id']} pricing updated via invoice builder",
            user=actor,
            metadata={"total": entry["total"]},
        )
    return [entry["id"] for entry in updated]


def _candidates(customer_id: int, data: InvoicePreviewInput) -> list[Receipt]:
    query = db.session.query(Receipt).filter(Receipt.customer_id == customer_id)
    if not data.include_paid:
        query = query.filter(Receipt.is_paid.is_(False))
    if data.job_site_id is not None:
        query = query.filter(Receipt.job_site_id == data.job_site_id)
    return query.order_by(Receipt.date.asc(), Receipt.id.asc()).all()


def _select(candidates: list[Receipt], data: InvoicePreviewInput) -> list[Receipt]:
    if data.receipt_ids:
        wanted = set(data.receipt_ids)
        selected = [r for r in candidates if r.id in wanted]
        if not selected:
            raise ValidationError("No matching receipts found for this customer")
        return selected

    if data.amount is not None:
        selected = []
        running = 0.0
        for receipt in candidates:
            if running >= data.amount - EPSILON:
                break
            selected.append(receipt)
            running += float(receipt.total or 0.0)
        if not selected:
            raise ValidationError("No receipts available to meet the requested amount")
        return selected

    if not candidates:
        raise ValidationError("No receipts available to invoice for this customer")
    return list(candidates)


def _receipt_line(receipt: Receipt, paid: float) -> dict:
    total = float(receipt.total or 0.0)
    return {
        "id": receipt.id,
        "receipt_no": receipt.receipt_no,
        "date": to_utc_z(receipt.date),
        "type": receipt.type,
        "job_site_id": receipt.job_site_id,
        "job_site_name": receipt.job_site.name if receipt.job_site else None,
        "total": total,
        "amount_paid": paid,
        "outstanding": max(total - paid, 0.0),
        "is_paid": bool(receipt.is_paid),
        "items": [item.to_dict() for item in receipt.items],
    }


def _old_balance(customer_id: int, exclude_ids: set[int]) -> float:
    others = (
        db.session.query(Receipt)
        .filter(Receipt.customer_id == customer_id, Receipt.is_paid.is_(False))
        .all()
    )
    others = [r for r in others if r.id not in exclude_ids]
    paid = canonical_paid_map(others)
    return sum(max(float(r.total or 0.0) - paid.get(r.id, 0.0), 0.0) for r in others)


def build_invoice_preview(customer_id: int, data: InvoicePreviewInput, actor: str | None = None) -> dict:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})

    job_site = None
    if data.job_site_id is not None:
        job_site = db.session.get(JobSite, data.job_site_id)
        if job_site is None or job_site.customer_id != customer.id:
            raise ValidationError("Selected job site does not belong to this customer")

    apply_price_overrides(customer.id, data.price_overrides, actor)
    db.session.expire_all()

    selected = _select(_candidates(customer.id, data), data)

    types = {r.type for r in selected}
    if len(types) > 1:
        raise InvariantViolationError(
            "Invoices cannot mix NORMAL and TVA receipts. Please create separate invoices per type."
        )
    receipt_type = types.pop() if types else customer.receipt_type

    paid = canonical_paid_map(selected)
    subtotal = sum(float(r.total or 0.0) for r in selected)
    vat_rate = _tva_rate() if receipt_type == "TVA" else 0.0
    vat_amount = round_currency(subtotal * vat_rate) if receipt_type == "TVA" else 0.0
    total_with_vat = subtotal + vat_amount
    amount_paid = sum(paid.get(r.id, 0.0) for r in selected)

    logger.info(
        "Invoice preview for customer %s: %s receipts, subtotal %.2f",
        customer.id,
        len(selected),
        subtotal,
    )

    return {
        "generated_at": to_utc_z(utcnow()),
        "customer": customer.to_dict(),
        "job_site": job_site.to_dict() if job_site is not None else None,
        "receipt_type": receipt_type,
        "receipt_count": len(selected),
        "receipts": [_receipt_line(r, paid.get(r.id, 0.0)) for r in selected],
        "subtotal": round_currency(subtotal),
        "vat_rate": vat_rate,
        "vat_amount": vat_amount,
        "total_with_vat": total_with_vat,
        "amount_paid": round_currency(amount_paid),
        "outstanding": round_currency(max(total_with_vat - amount_paid, 0.0)),
        "old_balance": round_currency(_old_balance(customer.id, {r.id for r in selected})),
    }
