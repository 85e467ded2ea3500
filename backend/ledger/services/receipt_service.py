# Overview: Service-layer receipt lifecycle; atomic create/update/delete with stock and payment effects.

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import (
    InternalError,
    InvariantViolationError,
    NotFoundError,
    SequenceConflictError,
    SequenceExhaustedError,
    ValidationError,
)
from ..extensions import db
from ..models import Customer, JobSite, Payment, Product, Receipt, ReceiptItem, ReceiptPayment
from ..money import EPSILON, apply_receipt_tax, is_settled
from ..time_utils import utcnow
from ..validation import (
    FlagPaymentInput,
    ReceiptCreateInput,
    ReceiptItemInput,
    ReceiptUpdateInput,
    is_set,
)
from . import sequencer, stock_ledger
from .audit_service import log_audit
from .reconciliation_service import collect_payment_sources
from .unit_of_work import UnitOfWork, lock_for_update, run_in_transaction

logger = logging.getLogger(__name__)

"""
Receipt Lifecycle Invariants (authoritative)

Atomicity:
- Sequencing, the receipt row, its items and every stock/composite posting are
  written in ONE transaction. Any failure rolls all of it back.
- After inserting items, the persisted item count must equal the submitted count.

Numbers:
- Without an explicit number, a receipt_no collision retries the whole
  transaction (RECEIPT_NUMBER_MAX_ATTEMPTS, default 5), recomputing the number.
- With an explicit number, a collision fails immediately with 409.

Type:
- A customer's receipt_type locks the receipt type.
- TVA numbers carry the reserved prefix; NORMAL numbers must not.

Money:
- total = tax(type, sum of priced subtotals); 0 when nothing is priced.
- Paid in full at creation only when every item is priced. Unpaid receipts need a customer.
- On update amount_paid may never drop below the allocated sum.

Delete:
- Stock effects are reversed; generic payments are detached, never deleted;
  allocation rows, items and the receipt are deleted; movements are kept unlinked.
"""


def _tva_rate() -> float:
    return float(current_app.config.get("TVA_RATE", 0.11))


def compute_receipt_total(receipt_type: str, subtotals) -> float:
    priced = [s for s in subtotals if s is not None]
    if not priced:
        return 0.0
    return apply_receipt_tax(sum(priced), receipt_type, _tva_rate())


def _is_receipt_no_collision(exc: IntegrityError) -> bool:
    return "receipt_no" in str(getattr(exc, "orig", exc))


def _load_products(uow: UnitOfWork, items: tuple[ReceiptItemInput, ...]) -> dict[int, Product]:
    product_ids = sorted({item.product_id for item in items})
    query = uow.query(Product).filter(Product.id.in_(product_ids))
    products = {p.id: p for p in lock_for_update(query).all()}
    missing = [pid for pid in product_ids if pid not in products]
    if missing:
        raise NotFoundError("One or more products were not found", details={"product_ids": missing})
    return products


def _attach_items(uow: UnitOfWork, receipt: Receipt, items: tuple[ReceiptItemInput, ...], products: dict[int, Product]) -> None:
    """Insert items, verify the persisted count, then post each item's stock effect."""
    for item_input in items:
        receipt.items.append(
            ReceiptItem(
                product_id=item_input.product_id,
                quantity=item_input.quantity,
                unit_price=item_input.unit_price,
                subtotal=item_input.subtotal,
                display_quantity=item_input.display_quantity,
                display_unit=item_input.display_unit,
                stock_delta=0.0,
            )
        )
    uow.flush()

    persisted = (
        uow.query(func.count(ReceiptItem.id))
        .filter(ReceiptItem.receipt_id == receipt.id)
        .scalar()
    )
    if persisted != len(items):
        raise InternalError(
            "Receipt items were not fully persisted",
            details={"code": "RECEIPT_ITEM_MISMATCH", "expected": len(items), "persisted": persisted},
        )

    for item in receipt.items:
        stock_ledger.post_receipt_item(uow, receipt, item, products[item.product_id])
    uow.flush()


def _resolve_create_type(data: ReceiptCreateInput, customer: Customer | None) -> str:
    inferred = "TVA" if data.receipt_no and sequencer.has_tva_prefix(data.receipt_no) else None

    receipt_type = data.type
    if customer is not None:
        receipt_type = customer.receipt_type
        if inferred and inferred != customer.receipt_type:
            raise InvariantViolationError(
                f"Customer is locked to {customer.receipt_type} receipts. Receipt number prefix does not match.",
                details={"locked_type": customer.receipt_type},
            )
    elif inferred:
        receipt_type = inferred

    if receipt_type == "NORMAL" and data.receipt_no and sequencer.has_tva_prefix(data.receipt_no):
        raise ValidationError("NORMAL receipts cannot use the TVA prefix. Remove the prefix.")
    return receipt_type


def _check_job_site(job_site_id: int | None, customer_id: int | None) -> None:
    if not job_site_id:
        return
    if not customer_id:
        raise ValidationError("A job site must be associated with a customer")
    job_site = (
        db.session.query(JobSite)
        .filter(JobSite.id == job_site_id, JobSite.customer_id == customer_id)
        .first()
    )
    if job_site is None:
        raise ValidationError("Selected job site does not belong to the chosen customer")


def create_receipt(data: ReceiptCreateInput, actor: str | None = None) -> Receipt:
    customer = None
    if data.customer_id:
        customer = db.session.get(Customer, data.customer_id)
        if customer is None:
            raise NotFoundError("Customer not found", details={"customer_id": data.customer_id})
    _check_job_site(data.job_site_id, data.customer_id)

    receipt_type = _resolve_create_type(data, customer)

    if data.is_paid and any(item.unit_price is None for item in data.items):
        raise ValidationError("A receipt can only be marked paid when every item is priced")
    if not data.is_paid and not data.customer_id:
        raise ValidationError("Unpaid receipts must be linked to a customer account.")

    total = compute_receipt_total(receipt_type, [item.subtotal for item in data.items])
    amount_paid = total if data.is_paid else 0.0

    def _op(uow: UnitOfWork) -> Receipt:
        products = _load_products(uow, data.items)
        receipt_no = sequencer.require_next(uow, receipt_type, data.receipt_no)

        receipt = Receipt(
            receipt_no=receipt_no,
            date=data.date or utcnow(),
            type=receipt_type,
            customer_id=data.customer_id,
            job_site_id=data.job_site_id,
            walk_in_name=None if data.customer_id else data.walk_in_name,
            tehmil=data.tehmil,
            tenzil=data.tenzil,
            total=total,
            amount_paid=amount_paid,
            is_paid=is_settled(amount_paid, total),
            created_by=actor,
        )
        uow.add(receipt)
        uow.flush()

        _attach_items(uow, receipt, data.items, products)
        return receipt

    max_attempts = int(current_app.config.get("RECEIPT_NUMBER_MAX_ATTEMPTS", 5))
    for attempt in range(1, max_attempts + 1):
        try:
            receipt = run_in_transaction(_op)
        except IntegrityError as exc:
            if not _is_receipt_no_collision(exc):
                raise
            if data.receipt_no:
                with UnitOfWork() as uow:
                    expected = sequencer.next_number(uow, receipt_type)
                raise SequenceConflictError(
                    f"Receipt number already exists. Next {receipt_type} receipt should be {expected}.",
                    expected_next=expected,
                )
            logger.warning("Receipt number collision (attempt %s/%s), retrying", attempt, max_attempts)
            continue

        log_audit(
            action="RECEIPT_CREATED",
            entity_type="receipt",
            entity_id=receipt.id,
            description=f"Receipt {receipt.receipt_no} created for customer {receipt.customer_id or 'walk-in'}",
            user=actor,
            metadata={"total": receipt.total, "is_paid": receipt.is_paid, "type": receipt.type},
        )
        return receipt

    raise SequenceExhaustedError("Unable to generate a unique receipt number. Please try again.")


def _apply_party_changes(uow: UnitOfWork, receipt: Receipt, data: ReceiptUpdateInput) -> None:
    if is_set(data.customer_id):
        if data.customer_id is None:
            receipt.customer_id = None
            receipt.job_site_id = None
            receipt.walk_in_name = data.walk_in_name if is_set(data.walk_in_name) else None
        else:
            customer = uow.get(Customer, data.customer_id)
            if customer is None:
                raise NotFoundError("Customer not found", details={"customer_id": data.customer_id})
            receipt.customer_id = customer.id
            receipt.walk_in_name = None
            if receipt.job_site_id and not is_set(data.job_site_id):
                site = uow.get(JobSite, receipt.job_site_id)
                if site is None or site.customer_id != customer.id:
                    receipt.job_site_id = None
    elif is_set(data.walk_in_name):
        receipt.walk_in_name = data.walk_in_name

    if is_set(data.job_site_id):
        if data.job_site_id is None:
            receipt.job_site_id = None
        else:
            if not receipt.customer_id:
                raise ValidationError("A job site must belong to a customer account")
            site = (
                uow.query(JobSite)
                .filter(JobSite.id == data.job_site_id, JobSite.customer_id == receipt.customer_id)
                .first()
            )
            if site is None:
                raise ValidationError("Selected job site does not belong to the chosen customer")
            receipt.job_site_id = site.id

    if not receipt.customer_id and not receipt.walk_in_name:
        raise ValidationError("Provide either a customer_id or a walk_in_name for the receipt")


def _apply_type_change(uow: UnitOfWork, receipt: Receipt, data: ReceiptUpdateInput) -> None:
    if is_set(data.type):
        receipt.type = data.type
    if not (is_set(data.type) or is_set(data.customer_id)):
        return

    if receipt.customer_id:
        customer = uow.get(Customer, receipt.customer_id)
        if customer is not None and customer.receipt_type != receipt.type:
            raise InvariantViolationError(
                f"Customer is locked to {customer.receipt_type} receipts.",
                details={"locked_type": customer.receipt_type},
            )
    if receipt.type == "TVA" and not sequencer.has_tva_prefix(receipt.receipt_no):
        raise InvariantViolationError("TVA receipts must use a number with the TVA prefix.")
    if receipt.type == "NORMAL" and sequencer.has_tva_prefix(receipt.receipt_no):
        raise InvariantViolationError("NORMAL receipts cannot use a number with the TVA prefix.")


def _recompute_payment(uow: UnitOfWork, receipt: Receipt, data: ReceiptUpdateInput) -> None:
    """
    Recompute total / amount_paid / is_paid after an update.

    Paid is the larger of the caller's amount, the allocated sum, direct
    receipt payments and the prior stored value, clamped to the new total.
    is_paid=False without an amount resets to what payment rows back.
    """
    subtotals = [item.subtotal for item in receipt.items]
    has_priced = any(s is not None for s in subtotals)
    total = compute_receipt_total(receipt.type, subtotals)

    sources = collect_payment_sources(uow, receipt)
    explicit = data.amount_paid if is_set(data.amount_paid) else None
    if explicit is not None and explicit + EPSILON < sources.allocated:
        raise InvariantViolationError(
            "amount_paid cannot be less than existing allocated payments",
            details={"allocated": sources.allocated, "requested": explicit},
        )

    if data.is_paid is False and explicit is None:
        paid = sources.recorded
    else:
        candidates = [sources.stored, sources.allocated, sources.direct]
        if explicit is not None:
            candidates.append(explicit)
        if data.is_paid is True:
            candidates.append(total)
        paid = max(candidates)

    paid = min(paid, total) if has_priced else 0.0
    receipt.total = total
    receipt.amount_paid = max(paid, 0.0)
    receipt.is_paid = is_settled(receipt.amount_paid, total)


def update_receipt(receipt_id: int, data: ReceiptUpdateInput, actor: str | None = None) -> Receipt:
    def _op(uow: UnitOfWork) -> Receipt:
        receipt = uow.get(Receipt, receipt_id, lock=True)
        if receipt is None:
            raise NotFoundError("Receipt not found", details={"receipt_id": receipt_id})

        _apply_party_changes(uow, receipt, data)
        _apply_type_change(uow, receipt, data)

        if is_set(data.date) and data.date is not None:
            receipt.date = data.date
        if is_set(data.tehmil):
            receipt.tehmil = data.tehmil
        if is_set(data.tenzil):
            receipt.tenzil = data.tenzil

        if is_set(data.items):
            stock_ledger.reverse_receipt(uow, receipt)
            products = _load_products(uow, data.items)
            _attach_items(uow, receipt, data.items, products)

        _recompute_payment(uow, receipt, data)
        receipt.updated_at = utcnow()
        return receipt

    receipt = run_in_transaction(_op)

    log_audit(
        action="RECEIPT_UPDATED",
        entity_type="receipt",
        entity_id=receipt.id,
        description=f"Receipt {receipt.receipt_no} updated",
        user=actor,
        metadata={"total": receipt.total, "amount_paid": receipt.amount_paid, "is_paid": receipt.is_paid},
    )
    return receipt


def delete_receipt(receipt_id: int, actor: str | None = None) -> dict:
    def _op(uow: UnitOfWork) -> dict:
        receipt = uow.get(Receipt, receipt_id, lock=True)
        if receipt is None:
            raise NotFoundError("Receipt not found", details={"receipt_id": receipt_id})

        summary = {
            "id": receipt.id,
            "receipt_no": receipt.receipt_no,
            "total": receipt.total,
            "customer_id": receipt.customer_id,
        }

        summary["items_reversed"] = stock_ledger.reverse_receipt(uow, receipt)
        summary["allocations_removed"] = (
            uow.query(ReceiptPayment)
            .filter(ReceiptPayment.receipt_id == receipt.id)
            .delete(synchronize_session="fetch")
        )
        summary["payments_detached"] = (
            uow.query(Payment)
            .filter(Payment.receipt_id == receipt.id)
            .update({Payment.receipt_id: None}, synchronize_session="fetch")
        )
        stock_ledger.detach_receipt_movements(uow, receipt.id)
        uow.delete(receipt)
        return summary

    summary = run_in_transaction(_op)

    log_audit(
        action="RECEIPT_DELETED",
        entity_type="receipt",
        entity_id=summary["id"],
        description=f"Receipt {summary['receipt_no']} deleted",
        user=actor,
        metadata={
            "total": summary["total"],
            "customer_id": summary["customer_id"],
            "payments_detached": summary["payments_detached"],
        },
    )
    return summary


def override_receipt_number(receipt_id: int, receipt_no: str, actor: str | None = None) -> Receipt:
    """Replace a stored receipt number (admin action; caller enforces the role)."""

    def _op(uow: UnitOfWork) -> Receipt:
        receipt = uow.get(Receipt, receipt_id, lock=True)
        if receipt is None:
            raise NotFoundError("Receipt not found", details={"receipt_id": receipt_id})
        receipt.receipt_no = receipt_no
        uow.flush()
        return receipt

    try:
        receipt = run_in_transaction(_op)
    except IntegrityError as exc:
        if _is_receipt_no_collision(exc):
            raise SequenceConflictError("That receipt number already exists")
        raise

    log_audit(
        action="RECEIPT_NUMBER_OVERRIDE",
        entity_type="receipt",
        entity_id=receipt.id,
        description=f"Receipt number changed to {receipt_no}",
        user=actor,
        metadata={"receipt_no": receipt_no},
    )
    return receipt


def _note_with_quantity(quantity: float | None, note: str | None) -> str | None:
    if quantity is None:
        return note
    label = f"Quantity: {quantity:g}"
    return f"{label} | {note}" if note else label


def record_flag_payment(receipt_id: int, data: FlagPaymentInput, actor: str | None = None) -> dict:
    """Record the one-time tehmil/tenzil service payment of a flagged receipt."""
    label = data.flag.capitalize()

    def _op(uow: UnitOfWork) -> dict:
        receipt = uow.get(Receipt, receipt_id, lock=True)
        if receipt is None:
            raise NotFoundError("Receipt not found", details={"receipt_id": receipt_id})
        if not getattr(receipt, data.flag):
            raise ValidationError(f"This receipt is not flagged for {label}")
        if getattr(receipt, f"{data.flag}_paid_at") is not None:
            raise ValidationError(f"{label} payment already recorded for this receipt")

        paid_at = data.paid_at or utcnow()
        note = _note_with_quantity(data.quantity, data.note)
        setattr(receipt, f"{data.flag}_paid_at", paid_at)
        setattr(receipt, f"{data.flag}_payment_amount", data.amount)
        setattr(receipt, f"{data.flag}_payment_note", note)
        return {
            "id": receipt.id,
            "receipt_no": receipt.receipt_no,
            "flag": data.flag,
            "paid_at": paid_at,
            "amount": data.amount,
            "quantity": data.quantity,
            "note": note,
        }

    result = run_in_transaction(_op)

    log_audit(
        action=f"{data.flag.upper()}_PAYMENT_RECORDED",
        entity_type="receipt",
        entity_id=receipt_id,
        description=f"{label} payment recorded for receipt {result['receipt_no']}",
        user=actor,
        metadata={"amount": data.amount, "quantity": data.quantity},
    )
    return result


def get_receipt(receipt_id: int) -> Receipt:
    receipt = db.session.get(Receipt, receipt_id)
    if receipt is None:
        raise NotFoundError("Receipt not found", details={"receipt_id": receipt_id})
    return receipt


def list_receipts(
    *,
    receipt_type: str | None = None,
    customer_id: int | None = None,
    job_site_id: int | None = None,
    is_paid: bool | None = None,
    date_from=None,
    date_to=None,
    flagged: str | None = None,
    product_id: int | None = None,
    search: str | None = None,
    limit: int = 50,
    page: int = 1,
) -> dict:
    """Filtered, paginated receipt listing (newest first)."""
    limit = min(max(int(limit or 50), 1), 500)
    page = max(int(page or 1), 1)

    query = db.session.query(Receipt)
    if receipt_type:
        query = query.filter(Receipt.type == receipt_type)
    if customer_id is not None:
        query = query.filter(Receipt.customer_id == customer_id)
    if job_site_id is not None:
        query = query.filter(Receipt.job_site_id == job_site_id)
    if is_paid is not None:
        query = query.filter(Receipt.is_paid.is_(is_paid))
    if date_from is not None:
        query = query.filter(Receipt.date >= date_from)
    if date_to is not None:
        query = query.filter(Receipt.date <= date_to)
    if flagged == "tehmil":
        query = query.filter(Receipt.tehmil.is_(True))
    elif flagged == "tenzil":
        query = query.filter(Receipt.tenzil.is_(True))
    elif flagged == "any":
        query = query.filter(or_(Receipt.tehmil.is_(True), Receipt.tenzil.is_(True)))
    if product_id is not None:
        query = query.filter(Receipt.items.any(ReceiptItem.product_id == product_id))
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.outerjoin(Customer, Receipt.customer_id == Customer.id).filter(
            or_(
                func.lower(Receipt.receipt_no).like(pattern),
                func.lower(Receipt.walk_in_name).like(pattern),
                func.lower(Customer.name).like(pattern),
            )
        )

    total_count = query.order_by(None).count()
    receipts = (
        query.order_by(Receipt.date.desc(), Receipt.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "receipts": receipts,
        "page": page,
        "limit": limit,
        "total": total_count,
        "pages": (total_count + limit - 1) // limit,
    }
