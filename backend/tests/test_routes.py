"""
HTTP surface tests: actor headers, role checks, status codes and payload shapes.
"""

import pytest

from ledger.extensions import db
from ledger.models import AuditLog, Receipt
from ledger.services import sequencer


def _create_receipt(client, headers, customer, product, quantity=2, unit_price=10):
    return client.post(
        "/receipts",
        json={
            "customer_id": customer.id,
            "items": [{"product_id": product.id, "quantity": quantity, "unit_price": unit_price}],
        },
        headers=headers,
    )


def test_missing_actor_is_unauthorized(client, db_session):
    response = client.get("/receipts")
    assert response.status_code == 401
    assert response.get_json()["error"] == "Authentication required"


def test_create_and_fetch_receipt(client, db_session, actor_headers, customer, sand):
    response = _create_receipt(client, actor_headers, customer, sand)
    assert response.status_code == 201
    receipt = response.get_json()["receipt"]
    assert receipt["receipt_no"] == "1"
    assert receipt["total"] == pytest.approx(20.0)
    assert receipt["created_by"] == "clerk@example.com"
    assert receipt["items"][0]["stock_delta"] == pytest.approx(-2.0)

    fetched = client.get(f"/receipts/{receipt['id']}", headers=actor_headers)
    assert fetched.status_code == 200
    assert fetched.get_json()["receipt"]["id"] == receipt["id"]


def test_create_rejects_bad_items(client, db_session, actor_headers, customer):
    response = client.post(
        "/receipts",
        json={"customer_id": customer.id, "items": [{"product_id": 1, "quantity": 0}]},
        headers=actor_headers,
    )
    assert response.status_code == 400
    assert response.get_json()["error"] == "Each item requires a product_id and valid quantity"


def test_out_of_sequence_number_returns_409(client, db_session, actor_headers, customer, sand):
    response = client.post(
        "/receipts",
        json={"receipt_no": "9", "customer_id": customer.id, "items": [{"product_id": sand.id, "quantity": 1}]},
        headers=actor_headers,
    )
    assert response.status_code == 409
    assert response.get_json()["expected_next"] == "1"


def test_number_collisions_surface_as_503_and_409(app, client, db_session, monkeypatch, actor_headers, customer, sand):
    _create_receipt(client, actor_headers, customer, sand)
    monkeypatch.setitem(app.config, "RECEIPT_NUMBER_MAX_ATTEMPTS", 2)
    monkeypatch.setattr(sequencer, "_latest_receipt_no", lambda uow, receipt_type: None)

    exhausted = _create_receipt(client, actor_headers, customer, sand)
    assert exhausted.status_code == 503

    duplicate = client.post(
        "/receipts",
        json={"receipt_no": "1", "customer_id": customer.id, "items": [{"product_id": sand.id, "quantity": 1}]},
        headers=actor_headers,
    )
    assert duplicate.status_code == 409
    assert duplicate.get_json()["expected_next"] == "1"


def test_next_number_preview(client, db_session, actor_headers, customer, sand):
    _create_receipt(client, actor_headers, customer, sand)

    response = client.get("/receipts/next-number", headers=actor_headers)
    assert response.status_code == 200
    assert response.get_json() == {"normal": "2", "tva": "T1"}


def test_list_receipts(client, db_session, actor_headers, customer, sand):
    _create_receipt(client, actor_headers, customer, sand)
    _create_receipt(client, actor_headers, customer, sand)

    response = client.get(f"/receipts?customer_id={customer.id}&limit=1", headers=actor_headers)
    body = response.get_json()
    assert response.status_code == 200
    assert body["total"] == 2
    assert body["pages"] == 2
    assert body["receipts"][0]["receipt_no"] == "2"
    assert "items" not in body["receipts"][0]


def test_update_and_delete_receipt(client, db_session, actor_headers, customer, sand):
    receipt_id = _create_receipt(client, actor_headers, customer, sand).get_json()["receipt"]["id"]

    updated = client.put(f"/receipts/{receipt_id}", json={"is_paid": True}, headers=actor_headers)
    assert updated.status_code == 200
    assert updated.get_json()["receipt"]["is_paid"] is True

    deleted = client.delete(f"/receipts/{receipt_id}", headers=actor_headers)
    assert deleted.status_code == 200
    assert deleted.get_json()["deleted"]["items_reversed"] == 1
    assert client.get(f"/receipts/{receipt_id}", headers=actor_headers).status_code == 404


def test_renumber_requires_admin(client, db_session, actor_headers, admin_headers, customer, sand):
    receipt_id = _create_receipt(client, actor_headers, customer, sand).get_json()["receipt"]["id"]

    denied = client.patch(f"/receipts/{receipt_id}/number", json={"receipt_no": "100"}, headers=actor_headers)
    assert denied.status_code == 403

    allowed = client.patch(f"/receipts/{receipt_id}/number", json={"receipt_no": "100"}, headers=admin_headers)
    assert allowed.status_code == 200
    assert allowed.get_json()["receipt"]["receipt_no"] == "100"
    assert db_session.query(AuditLog).filter_by(action="RECEIPT_NUMBER_OVERRIDE").count() == 1


def test_flag_payment_route(client, db_session, actor_headers, customer, sand):
    response = client.post(
        "/receipts",
        json={"customer_id": customer.id, "tenzil": True, "items": [{"product_id": sand.id, "quantity": 1}]},
        headers=actor_headers,
    )
    receipt_id = response.get_json()["receipt"]["id"]

    recorded = client.post(
        f"/receipts/{receipt_id}/flag-payments",
        json={"flag": "tenzil", "amount": 15, "date": "2024-06-01"},
        headers=actor_headers,
    )
    assert recorded.status_code == 200
    assert recorded.get_json()["paid_at"] == "2024-06-01T00:00:00Z"

    again = client.post(f"/receipts/{receipt_id}/flag-payments", json={"flag": "tenzil"}, headers=actor_headers)
    assert again.status_code == 400


def test_invoice_preview_route(client, db_session, actor_headers, customer, sand):
    _create_receipt(client, actor_headers, customer, sand, quantity=10, unit_price=10)
    _create_receipt(client, actor_headers, customer, sand, quantity=5, unit_price=10)

    response = client.post(
        f"/receipts/customers/{customer.id}/invoice-preview",
        json={"amount": 80},
        headers=actor_headers,
    )
    body = response.get_json()
    assert response.status_code == 200
    assert body["receipt_count"] == 1
    assert body["subtotal"] == pytest.approx(100.0)
    assert body["old_balance"] == pytest.approx(50.0)
    assert body["customer"]["id"] == customer.id


def test_invoice_preview_mixed_types_is_400(client, db_session, actor_headers, customer):
    db_session.add(Receipt(receipt_no="1", type="NORMAL", customer_id=customer.id, total=10.0, amount_paid=0.0))
    db_session.add(Receipt(receipt_no="T1", type="TVA", customer_id=customer.id, total=10.0, amount_paid=0.0))
    db_session.commit()

    response = client.post(f"/receipts/customers/{customer.id}/invoice-preview", json={}, headers=actor_headers)
    assert response.status_code == 400
    assert "cannot mix NORMAL and TVA" in response.get_json()["error"]


def test_invoice_preview_unknown_customer(client, db_session, actor_headers):
    response = client.post("/receipts/customers/999/invoice-preview", json={}, headers=actor_headers)
    assert response.status_code == 404


def test_payment_routes(client, db_session, actor_headers, customer, sand):
    receipt_id = _create_receipt(client, actor_headers, customer, sand).get_json()["receipt"]["id"]

    created = client.post(
        "/payments",
        json={"type": "RECEIPT", "amount": 20, "receipt_id": receipt_id},
        headers=actor_headers,
    )
    assert created.status_code == 201
    payment = created.get_json()["payment"]
    assert payment["allocations"][0]["amount"] == pytest.approx(20.0)
    assert db.session.get(Receipt, receipt_id).is_paid is True

    assert client.get(f"/payments/{payment['id']}", headers=actor_headers).status_code == 200

    deleted = client.delete(f"/payments/{payment['id']}", headers=actor_headers)
    assert deleted.status_code == 200
    assert db.session.get(Receipt, receipt_id).is_paid is False


def test_product_routes(client, db_session, actor_headers, sand, cement):
    created = client.post(
        "/products",
        json={
            "name": "Mortar",
            "is_composite": True,
            "components": [{"component_product_id": sand.id, "quantity": 1}],
        },
        headers=actor_headers,
    )
    assert created.status_code == 201
    product_id = created.get_json()["product"]["id"]

    nested = client.put(
        f"/products/{sand.id}",
        json={"is_composite": True, "components": [{"component_product_id": product_id, "quantity": 1}]},
        headers=actor_headers,
    )
    assert nested.status_code == 400

    updated = client.put(f"/products/{product_id}", json={"unit_price": 55}, headers=actor_headers)
    assert updated.status_code == 200
    assert updated.get_json()["product"]["unit_price"] == pytest.approx(55.0)


def test_product_movements_route(client, db_session, actor_headers, customer, sand):
    _create_receipt(client, actor_headers, customer, sand, quantity=3)

    response = client.get(f"/products/{sand.id}/movements", headers=actor_headers)
    body = response.get_json()
    assert response.status_code == 200
    assert body["stock_qty"] == pytest.approx(97.0)
    assert body["ledger_balance"] == pytest.approx(-3.0)
    assert body["movements"][0]["quantity"] == pytest.approx(-3.0)


def test_debug_routes_require_admin(client, db_session, actor_headers, admin_headers, customer):
    assert client.get("/debug/receivables-health", headers=actor_headers).status_code == 403

    db_session.add(Receipt(receipt_no="1", type="NORMAL", customer_id=customer.id, total=10.0, amount_paid=0.0, is_paid=True))
    db_session.commit()

    health = client.get("/debug/receivables-health", headers=admin_headers)
    assert health.status_code == 200
    assert len(health.get_json()["mismatched_receipts"]) == 1

    repaired = client.post("/debug/receivables-repair", headers=admin_headers)
    assert repaired.get_json()["count"] == 1

    recomputed = client.post("/debug/recompute-receipt-balances", json={}, headers=admin_headers)
    assert recomputed.get_json() == {"updated": 0, "skipped": 1}

    missing = client.post("/debug/receipts/999/repair", headers=admin_headers)
    assert missing.status_code == 404


def test_health_endpoint(client, db_session):
    response = client.get("/health")
    body = response.get_json()
    assert response.status_code == 200
    assert body["checks"]["database"]["status"] == "healthy"
    assert body["checks"]["catalog"]["status"] == "degraded"
