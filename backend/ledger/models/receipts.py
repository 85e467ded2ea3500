from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


RECEIPT_TYPES = ("NORMAL", "TVA")


class Receipt(db.Model):
    """
    Sales receipt.

    Invariants (maintained by services.receipt_service):
    - receipt_no is unique and sequence-governed per type; TVA numbers carry the "T" prefix.
    - Exactly one of customer_id / walk_in_name identifies the buyer.
    - total = tax(type, sum(item.subtotal)); unpriced items contribute 0.
    - is_paid implies amount_paid >= total - epsilon.
    """
    __tablename__ = "receipts"
    __table_args__ = (
        db.Index("ix_receipts_customer_date", "customer_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_no = db.Column(db.String(64), nullable=False, unique=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    type = db.Column(db.String(16), nullable=False, default="NORMAL", index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    job_site_id = db.Column(db.Integer, db.ForeignKey("job_sites.id"), nullable=True, index=True)
    walk_in_name = db.Column(db.String(255), nullable=True)

    total = db.Column(db.Float, nullable=False, default=0.0)
    amount_paid = db.Column(db.Float, nullable=False, default=0.0)
    is_paid = db.Column(db.Boolean, nullable=False, default=False, index=True)

    # Loading (tehmil) / unloading (tenzil) service flags and their one-time payments
    tehmil = db.Column(db.Boolean, nullable=False, default=False)
    tenzil = db.Column(db.Boolean, nullable=False, default=False)
    tehmil_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    tehmil_payment_amount = db.Column(db.Float, nullable=True)
    tehmil_payment_note = db.Column(db.String(255), nullable=True)
    tenzil_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    tenzil_payment_amount = db.Column(db.Float, nullable=True)
    tenzil_payment_note = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", lazy="joined")
    job_site = db.relationship("JobSite", lazy="joined")
    items = db.relationship(
        "ReceiptItem",
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="ReceiptItem.id",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Receipt id={self.id} no={self.receipt_no!r} type={self.type} total={self.total}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "receipt_no": self.receipt_no,
            "date": to_utc_z(self.date),
            "type": self.type,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "job_site_id": self.job_site_id,
            "job_site_name": self.job_site.name if self.job_site else None,
            "walk_in_name": self.walk_in_name,
            "total": self.total,
            "amount_paid": self.amount_paid,
            "is_paid": self.is_paid,
            "tehmil": self.tehmil,
            "tenzil": self.tenzil,
            "tehmil_paid_at": to_utc_z(self.tehmil_paid_at),
            "tehmil_payment_amount": self.tehmil_payment_amount,
            "tehmil_payment_note": self.tehmil_payment_note,
            "tenzil_paid_at": to_utc_z(self.tenzil_paid_at),
            "tenzil_payment_amount": self.tenzil_payment_amount,
            "tenzil_payment_note": self.tenzil_payment_note,
            "created_by": self.created_by,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReceiptItem(db.Model):
    """
    One line of a receipt.

    unit_price is None while the line awaits pricing; subtotal follows it.
    stock_delta records the signed quantity posted against product_id
    (0 for composite products, whose stock effect lives in component usages).
    """
    __tablename__ = "receipt_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("receipts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Float, nullable=False)
    unit_price = db.Column(db.Float, nullable=True)
    subtotal = db.Column(db.Float, nullable=True)

    # Presentation only; never used for stock or money
    display_quantity = db.Column(db.Float, nullable=True)
    display_unit = db.Column(db.String(32), nullable=True)

    stock_delta = db.Column(db.Float, nullable=False, default=0.0)

    receipt = db.relationship("Receipt", back_populates="items")
    product = db.relationship("Product", lazy="joined")
    component_usages = db.relationship(
        "ReceiptItemComponent",
        back_populates="receipt_item",
        cascade="all, delete-orphan",
        order_by="ReceiptItemComponent.id",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_id": self.receipt_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "subtotal": self.subtotal,
            "display_quantity": self.display_quantity,
            "display_unit": self.display_unit,
            "stock_delta": self.stock_delta,
            "components": [usage.to_dict() for usage in self.component_usages],
        }


class ReceiptItemComponent(db.Model):
    """Component consumption recorded when a composite item was posted."""
    __tablename__ = "receipt_item_components"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    receipt_item_id = db.Column(db.Integer, db.ForeignKey("receipt_items.id"), nullable=False, index=True)
    component_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Float, nullable=False)
    stock_delta = db.Column(db.Float, nullable=False)

    receipt_item = db.relationship("ReceiptItem", back_populates="component_usages")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "component_product_id": self.component_product_id,
            "quantity": self.quantity,
            "stock_delta": self.stock_delta,
        }


class StockMovement(db.Model):
    """
    Append-only signed stock movement.

    SALE rows are negative, PURCHASE rows positive (debris intake and
    reversals of sales). is_reversal marks rows that undo an earlier posting.
    receipt_id is nulled when the receipt is deleted; the rows stay.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_date", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("receipts.id"), nullable=True, index=True)

    kind = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Float, nullable=False)
    is_reversal = db.Column(db.Boolean, nullable=False, default=False)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "receipt_id": self.receipt_id,
            "kind": self.kind,
            "quantity": self.quantity,
            "is_reversal": self.is_reversal,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
