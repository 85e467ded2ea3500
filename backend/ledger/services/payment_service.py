# Overview: Service-layer payment recording with receipt allocation and reversal.

from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, Payment, Receipt, ReceiptPayment
from ..money import EPSILON, is_settled
from ..time_utils import utcnow
from ..validation import PaymentInput
from .audit_service import log_audit
from .reconciliation_service import collect_payment_sources
from .unit_of_work import UnitOfWork, lock_for_update, run_in_transaction

"""
Payment Allocation Rules

- RECEIPT payments allocate min(amount, outstanding) to their receipt.
- CUSTOMER_PAYMENT payments allocate oldest-first (date, id) across the
  customer's unpaid receipts until the amount is used up.
- Every allocation is a ReceiptPayment row; amount_paid/is_paid of each touched
  receipt is updated in the same transaction.
- Deleting a payment subtracts its allocations, deletes the allocation rows and
  then the payment. Other payment types carry no allocations.
"""


def _outstanding(receipt: Receipt) -> float:
    return max(float(receipt.total or 0.0) - float(receipt.amount_paid or 0.0), 0.0)


def _allocate(payment: Payment, receipt: Receipt, amount: float) -> float:
    applied = min(amount, _outstanding(receipt))
    if applied <= EPSILON:
        return 0.0
    payment.allocations.append(ReceiptPayment(receipt_id=receipt.id, amount=applied))
    receipt.amount_paid = float(receipt.amount_paid or 0.0) + applied
    receipt.is_paid = is_settled(receipt.amount_paid, float(receipt.total or 0.0))
    return applied


def record_payment(data: PaymentInput, actor: str | None = None) -> Payment:
    def _op(uow: UnitOfWork) -> Payment:
        receipt = None
        if data.receipt_id:
            receipt = uow.get(Receipt, data.receipt_id, lock=True)
            if receipt is None:
                raise NotFoundError("Receipt not found", details={"receipt_id": data.receipt_id})
        if data.customer_id:
            if uow.get(Customer, data.customer_id) is None:
                raise NotFoundError("Customer not found", details={"customer_id": data.customer_id})
            if receipt is not None and receipt.customer_id != data.customer_id:
                raise ValidationError("Receipt does not belong to this customer")

        payment = Payment(
            date=data.date or utcnow(),
            amount=data.amount,
            type=data.type,
            description=data.description,
            category=data.category,
            reference=data.reference,
            customer_id=data.customer_id or (receipt.customer_id if receipt is not None else None),
            supplier_id=data.supplier_id if data.type == "SUPPLIER" else None,
            receipt_id=receipt.id if receipt is not None and data.type == "RECEIPT" else None,
            created_by=actor,
        )
        uow.add(payment)
        uow.flush()

        if data.type == "RECEIPT" and receipt is not None:
            _allocate(payment, receipt, data.amount)
        elif data.type == "CUSTOMER_PAYMENT" and data.apply_to_receipts:
            open_receipts = lock_for_update(
                uow.query(Receipt)
                .filter(Receipt.customer_id == data.customer_id, Receipt.is_paid.is_(False))
                .order_by(Receipt.date.asc(), Receipt.id.asc())
            ).all()
            remaining = data.amount
            for open_receipt in open_receipts:
                if remaining <= EPSILON:
                    break
                remaining -= _allocate(payment, open_receipt, remaining)

        uow.flush()
        return payment

    payment = run_in_transaction(_op)

    log_audit(
        action="PAYMENT_RECORDED",
        entity_type="payment",
        entity_id=payment.id,
        description=f"{payment.type} payment of {payment.amount:.2f} recorded",
        user=actor,
        metadata={
            "receipt_id": payment.receipt_id,
            "customer_id": payment.customer_id,
            "allocations": [{"receipt_id": a.receipt_id, "amount": a.amount} for a in payment.allocations],
        },
    )
    return payment


def delete_payment(payment_id: int, actor: str | None = None) -> dict:
    def _op(uow: UnitOfWork) -> dict:
        payment = uow.get(Payment, payment_id, lock=True)
        if payment is None:
            raise NotFoundError("Payment not found", details={"payment_id": payment_id})

        reverted = []
        touched: list[tuple[Receipt, float]] = []
        for allocation in list(payment.allocations):
            receipt = uow.get(Receipt, allocation.receipt_id, lock=True)
            if receipt is not None:
                touched.append((receipt, allocation.amount))
            reverted.append({"receipt_id": allocation.receipt_id, "amount": allocation.amount})

        summary = {"id": payment.id, "type": payment.type, "amount": payment.amount, "reverted": reverted}
        # delete-orphan cascade removes the allocation rows
        uow.delete(payment)
        uow.flush()

        for receipt, amount in touched:
            remaining = collect_payment_sources(uow, receipt)
            paid = max(float(receipt.amount_paid or 0.0) - amount, remaining.recorded, 0.0)
            receipt.amount_paid = paid
            receipt.is_paid = is_settled(paid, float(receipt.total or 0.0))
        return summary

    summary = run_in_transaction(_op)

    log_audit(
        action="PAYMENT_DELETED",
        entity_type="payment",
        entity_id=summary["id"],
        description=f"{summary['type']} payment {summary['id']} deleted",
        user=actor,
        metadata={"amount": summary["amount"], "reverted": summary["reverted"]},
    )
    return summary


def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found", details={"payment_id": payment_id})
    return payment
