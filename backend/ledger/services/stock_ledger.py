# Overview: Service-layer stock movements, composite expansion and reversal for receipt items.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, Receipt, ReceiptItem, ReceiptItemComponent, StockMovement
from ..errors import NotFoundError
from ..time_utils import utcnow
from .unit_of_work import UnitOfWork

"""
Stock Ledger Invariants (authoritative)

Movements:
- Every change to Product.stock_qty appends exactly one StockMovement with the same signed quantity.
- Movements are append-only; reversals are new rows with is_reversal=True.
- SALE rows are negative, PURCHASE rows positive.

Receipt postings:
- Selling Q of a product posts -Q, except the debris intake product which posts +Q.
- A composite product posts nothing against itself. Each recipe component posts
  ratio * Q (same debris rule) and a ReceiptItemComponent row records it.
- The signed quantities actually posted are stored on the item (stock_delta) and
  on each usage row, so reversal is the literal inverse of what was posted and
  never depends on the current recipe or product names.

Manufactured products:
- production_* ratios are NOT consumed here; that belongs to the production pathway.
"""


def is_debris_product(product: Product | None) -> bool:
    if product is None or not product.name:
        return False
    debris_name = current_app.config.get("DEBRIS_PRODUCT_NAME", "Debris")
    return product.name.strip().lower() == debris_name.strip().lower()


def signed_quantity(product: Product, quantity: float) -> float:
    """Stock effect of selling `quantity` of `product`."""
    return quantity if is_debris_product(product) else -quantity


def post_movement(
    uow: UnitOfWork,
    product: Product,
    delta: float,
    *,
    receipt: Receipt | None = None,
    note: str | None = None,
    is_reversal: bool = False,
    occurred_at=None,
) -> StockMovement:
    """Apply a signed stock delta to a product and append its movement."""
    product.stock_qty = (product.stock_qty or 0.0) + delta
    movement = StockMovement(
        product_id=product.id,
        receipt_id=receipt.id if receipt is not None else None,
        kind="PURCHASE" if delta > 0 else "SALE",
        quantity=delta,
        is_reversal=is_reversal,
        note=note,
        occurred_at=occurred_at or utcnow(),
    )
    uow.add(movement)
    return movement


def _load_product(uow: UnitOfWork, product_id: int) -> Product:
    product = uow.get(Product, product_id, lock=True)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def post_receipt_item(uow: UnitOfWork, receipt: Receipt, item: ReceiptItem, product: Product) -> None:
    """
    Post the stock effect of a new receipt item.

    The item must already be attached to the receipt and flushed.
    """
    note = f"Receipt {receipt.receipt_no}"

    if not product.is_composite:
        delta = signed_quantity(product, item.quantity)
        post_movement(uow, product, delta, receipt=receipt, note=note, occurred_at=receipt.date)
        item.stock_delta = delta
        return

    item.stock_delta = 0.0
    for recipe_line in product.components:
        component = _load_product(uow, recipe_line.component_product_id)
        consumed = recipe_line.quantity * item.quantity
        delta = signed_quantity(component, consumed)
        post_movement(
            uow,
            component,
            delta,
            receipt=receipt,
            note=f"{note} ({product.name})",
            occurred_at=receipt.date,
        )
        item.component_usages.append(
            ReceiptItemComponent(
                component_product_id=component.id,
                quantity=consumed,
                stock_delta=delta,
            )
        )


def reverse_receipt_item(uow: UnitOfWork, receipt: Receipt, item: ReceiptItem) -> None:
    """Undo exactly what post_receipt_item recorded, then delete the item and its usages."""
    note = f"Reversal: receipt {receipt.receipt_no}"

    if item.stock_delta:
        product = _load_product(uow, item.product_id)
        post_movement(uow, product, -item.stock_delta, receipt=receipt, note=note, is_reversal=True)

    for usage in list(item.component_usages):
        if usage.stock_delta:
            component = _load_product(uow, usage.component_product_id)
            post_movement(uow, component, -usage.stock_delta, receipt=receipt, note=note, is_reversal=True)

    # delete-orphan cascade removes the usage rows with the item
    receipt.items.remove(item)


def reverse_receipt(uow: UnitOfWork, receipt: Receipt) -> int:
    """Reverse every item of a receipt. Returns the number of items removed."""
    items = list(receipt.items)
    for item in items:
        reverse_receipt_item(uow, receipt, item)
    uow.flush()
    return len(items)


def detach_receipt_movements(uow: UnitOfWork, receipt_id: int) -> int:
    """Keep a deleted receipt's movement history, unlinked from the receipt row."""
    return (
        uow.query(StockMovement)
        .filter(StockMovement.receipt_id == receipt_id)
        .update({StockMovement.receipt_id: None}, synchronize_session=False)
    )


def list_movements(product_id: int, *, receipt_id: int | None = None, limit: int = 100) -> list[StockMovement]:
    query = db.session.query(StockMovement).filter(StockMovement.product_id == product_id)
    if receipt_id is not None:
        query = query.filter(StockMovement.receipt_id == receipt_id)
    return query.order_by(StockMovement.id.desc()).limit(limit).all()


def movement_balance(product_id: int) -> float:
    """Ledger-derived stock: SUM(quantity) over all movements of the product."""
    total = (
        db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0.0))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    return float(total or 0.0)
