import pytest

from ledger.extensions import db
from ledger.models import Product, ProductComponent, ReceiptItemComponent, StockMovement
from ledger.services import receipt_service, stock_ledger
from ledger.validation import ReceiptCreateInput, ReceiptUpdateInput


def _create(customer, *items, **extra):
    payload = {
        "customer_id": customer.id,
        "items": [{"product_id": pid, "quantity": qty, "unit_price": price} for pid, qty, price in items],
    }
    payload.update(extra)
    return receipt_service.create_receipt(ReceiptCreateInput.from_json(payload), actor="tester")


def _stock(product_id):
    return db.session.get(Product, product_id).stock_qty


def test_sale_posts_negative_movement(db_session, customer, sand):
    receipt = _create(customer, (sand.id, 4, 10.0))

    assert _stock(sand.id) == pytest.approx(96.0)
    movements = stock_ledger.list_movements(sand.id, receipt_id=receipt.id)
    assert len(movements) == 1
    assert movements[0].quantity == pytest.approx(-4.0)
    assert movements[0].kind == "SALE"
    assert receipt.items[0].stock_delta == pytest.approx(-4.0)


def test_debris_intake_adds_stock(db_session, customer, debris):
    _create(customer, (debris.id, 5, None))

    assert _stock(debris.id) == pytest.approx(5.0)
    movement = stock_ledger.list_movements(debris.id)[0]
    assert movement.quantity == pytest.approx(5.0)
    assert movement.kind == "PURCHASE"


def test_composite_consumes_components_only(db_session, customer, concrete_mix, sand, gravel, cement):
    receipt = _create(customer, (concrete_mix.id, 2, 90.0))

    assert _stock(concrete_mix.id) == pytest.approx(0.0)
    assert stock_ledger.list_movements(concrete_mix.id) == []
    assert _stock(sand.id) == pytest.approx(99.0)
    assert _stock(gravel.id) == pytest.approx(98.4)
    assert _stock(cement.id) == pytest.approx(86.0)

    item = receipt.items[0]
    assert item.stock_delta == 0.0
    usages = {u.component_product_id: u.stock_delta for u in item.component_usages}
    assert usages == {
        sand.id: pytest.approx(-1.0),
        gravel.id: pytest.approx(-1.6),
        cement.id: pytest.approx(-14.0),
    }


def test_delete_nets_movements_and_stock_to_zero(db_session, customer, sand, concrete_mix, gravel, cement, debris):
    before = {p.id: _stock(p.id) for p in (sand, gravel, cement, debris)}
    receipt = _create(customer, (sand.id, 3, 10.0), (concrete_mix.id, 1, 90.0), (debris.id, 2, None))

    receipt_service.delete_receipt(receipt.id, actor="tester")

    for product_id, stock in before.items():
        assert _stock(product_id) == pytest.approx(stock)
        assert stock_ledger.movement_balance(product_id) == pytest.approx(0.0)
    assert db_session.query(ReceiptItemComponent).count() == 0
    # history is kept, unlinked from the deleted receipt
    assert db_session.query(StockMovement).filter(StockMovement.receipt_id.isnot(None)).count() == 0
    assert db_session.query(StockMovement).filter(StockMovement.is_reversal.is_(True)).count() == 5


def test_reversal_uses_recorded_deltas_after_recipe_change(db_session, customer, concrete_mix, sand, gravel, cement):
    receipt = _create(customer, (concrete_mix.id, 1, 90.0))

    # Recipe edited after the sale; reversal must undo what was actually posted
    mix = db.session.get(Product, concrete_mix.id)
    mix.components[0].quantity = 5.0
    db.session.commit()

    receipt_service.delete_receipt(receipt.id, actor="tester")

    assert _stock(sand.id) == pytest.approx(100.0)
    assert _stock(gravel.id) == pytest.approx(100.0)
    assert _stock(cement.id) == pytest.approx(100.0)


def test_item_replacement_reverses_then_posts(db_session, customer, sand, gravel):
    receipt = _create(customer, (sand.id, 4, 10.0))

    receipt_service.update_receipt(
        receipt.id,
        ReceiptUpdateInput.from_json({"items": [{"product_id": gravel.id, "quantity": 2, "unit_price": 12}]}),
        actor="tester",
    )

    assert _stock(sand.id) == pytest.approx(100.0)
    assert _stock(gravel.id) == pytest.approx(98.0)
    assert stock_ledger.movement_balance(sand.id) == pytest.approx(0.0)


def test_item_replacement_drops_component_usages(db_session, customer, concrete_mix, sand, gravel, cement):
    receipt = _create(customer, (concrete_mix.id, 1, 90.0))
    assert db_session.query(ReceiptItemComponent).count() == 3

    receipt_service.update_receipt(
        receipt.id,
        ReceiptUpdateInput.from_json({"items": [{"product_id": sand.id, "quantity": 2, "unit_price": 10}]}),
        actor="tester",
    )

    assert db_session.query(ReceiptItemComponent).count() == 0
    assert _stock(sand.id) == pytest.approx(98.0)
    assert _stock(gravel.id) == pytest.approx(100.0)
    assert _stock(cement.id) == pytest.approx(100.0)


def test_debris_component_is_inverted(db_session, customer, sand, debris):
    fill = Product(name="Backfill", unit="m³", stock_qty=0.0, is_composite=True)
    fill.components.append(ProductComponent(component_product_id=sand.id, quantity=0.5))
    fill.components.append(ProductComponent(component_product_id=debris.id, quantity=1.0))
    db_session.add(fill)
    db_session.commit()

    receipt = _create(customer, (fill.id, 2, None))

    usages = {u.component_product_id: u.stock_delta for u in receipt.items[0].component_usages}
    assert usages == {sand.id: pytest.approx(-1.0), debris.id: pytest.approx(2.0)}
    assert _stock(debris.id) == pytest.approx(2.0)
    assert stock_ledger.list_movements(debris.id)[0].kind == "PURCHASE"

    receipt_service.delete_receipt(receipt.id, actor="tester")

    assert _stock(debris.id) == pytest.approx(0.0)
    assert _stock(sand.id) == pytest.approx(100.0)
    assert stock_ledger.movement_balance(debris.id) == pytest.approx(0.0)
