from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PAYMENT_TYPES = (
    "GENERAL_EXPENSE",
    "SUPPLIER",
    "RECEIPT",
    "PAYROLL_SALARY",
    "PAYROLL_PIECEWORK",
    "CUSTOMER_PAYMENT",
    "DEBRIS_REMOVAL",
    "OWNER_DRAW",
)

# Payment types that count toward a receipt's paid amount when tagged with receipt_id
RECEIPT_PAYMENT_TYPES = ("RECEIPT", "CUSTOMER_PAYMENT")


class Payment(db.Model):
    """Money movement. Only RECEIPT / CUSTOMER_PAYMENT rows settle receipts."""
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    amount = db.Column(db.Float, nullable=False)
    type = db.Column(db.String(32), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=True)
    reference = db.Column(db.String(128), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, nullable=True, index=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("receipts.id"), nullable=True, index=True)

    created_by = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    allocations = db.relationship(
        "ReceiptPayment",
        primaryjoin="Payment.id == foreign(ReceiptPayment.payment_id)",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="ReceiptPayment.id",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": to_utc_z(self.date),
            "amount": self.amount,
            "type": self.type,
            "description": self.description,
            "category": self.category,
            "reference": self.reference,
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "receipt_id": self.receipt_id,
            "created_by": self.created_by,
            "allocations": [a.to_dict() for a in self.allocations],
            "created_at": to_utc_z(self.created_at),
        }


class ReceiptPayment(db.Model):
    """Allocation of part of a payment to a specific receipt."""
    __tablename__ = "receipt_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    # No FK constraints: orphan rows are detected and reported by the health sweep
    payment_id = db.Column(db.Integer, nullable=False, index=True)
    receipt_id = db.Column(db.Integer, nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment = db.relationship(
        "Payment",
        primaryjoin="foreign(ReceiptPayment.payment_id) == Payment.id",
        back_populates="allocations",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "receipt_id": self.receipt_id,
            "amount": self.amount,
            "created_at": to_utc_z(self.created_at),
        }
