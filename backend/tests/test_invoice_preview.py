from datetime import datetime

import pytest

from ledger.errors import InvariantViolationError, NotFoundError, ValidationError
from ledger.extensions import db
from ledger.models import AuditLog, Payment, Receipt, ReceiptItem, ReceiptPayment
from ledger.services import invoice_service
from ledger.validation import InvoicePreviewInput


def _receipt(db_session, customer, receipt_no, total, *, day=1, receipt_type=None, job_site=None, is_paid=False, amount_paid=0.0):
    receipt = Receipt(
        receipt_no=receipt_no,
        type=receipt_type or customer.receipt_type,
        customer_id=customer.id,
        job_site_id=job_site.id if job_site else None,
        date=datetime(2024, 3, day),
        total=total,
        amount_paid=amount_paid,
        is_paid=is_paid,
    )
    db_session.add(receipt)
    db_session.commit()
    return receipt


def _preview(customer, **payload):
    return invoice_service.build_invoice_preview(customer.id, InvoicePreviewInput.from_json(payload), actor="tester")


def test_amount_target_selects_oldest_first(db_session, customer):
    a = _receipt(db_session, customer, "1", 100.0, day=1)
    b = _receipt(db_session, customer, "2", 100.0, day=2)
    c = _receipt(db_session, customer, "3", 100.0, day=3)
    _receipt(db_session, customer, "4", 100.0, day=4)

    preview = _preview(customer, amount=250)

    assert [r["id"] for r in preview["receipts"]] == [a.id, b.id, c.id]
    assert preview["subtotal"] == pytest.approx(300.0)
    assert preview["old_balance"] == pytest.approx(100.0)


def test_explicit_ids_win_over_amount(db_session, customer):
    _receipt(db_session, customer, "1", 100.0, day=1)
    b = _receipt(db_session, customer, "2", 40.0, day=2)

    preview = _preview(customer, receipt_ids=[b.id], amount=1000)

    assert preview["receipt_count"] == 1
    assert preview["receipts"][0]["receipt_no"] == "2"


def test_no_selection_takes_every_unpaid_receipt(db_session, customer):
    _receipt(db_session, customer, "1", 30.0)
    _receipt(db_session, customer, "2", 70.0)
    _receipt(db_session, customer, "3", 50.0, is_paid=True, amount_paid=50.0)

    preview = _preview(customer)
    assert preview["receipt_count"] == 2

    with_paid = _preview(customer, include_paid=True)
    assert with_paid["receipt_count"] == 3


def test_foreign_ids_are_rejected(db_session, customer, tva_customer):
    other = _receipt(db_session, tva_customer, "T1", 10.0)

    with pytest.raises(ValidationError) as exc:
        _preview(customer, receipt_ids=[other.id])
    assert exc.value.message == "No matching receipts found for this customer"


def test_amount_with_no_candidates(db_session, customer):
    with pytest.raises(ValidationError) as exc:
        _preview(customer, amount=10)
    assert exc.value.message == "No receipts available to meet the requested amount"


def test_mixed_types_are_rejected(db_session, customer):
    _receipt(db_session, customer, "1", 10.0, receipt_type="NORMAL")
    _receipt(db_session, customer, "T1", 10.0, receipt_type="TVA")

    with pytest.raises(InvariantViolationError) as exc:
        _preview(customer)
    assert exc.value.status_code == 400


def test_tva_bundle_adds_vat_on_subtotal(db_session, tva_customer):
    _receipt(db_session, tva_customer, "T1", 111.0)
    _receipt(db_session, tva_customer, "T2", 222.0)

    preview = _preview(tva_customer)

    assert preview["receipt_type"] == "TVA"
    assert preview["subtotal"] == pytest.approx(333.0)
    assert preview["vat_rate"] == pytest.approx(0.11)
    assert preview["vat_amount"] == pytest.approx(36.63)
    assert preview["total_with_vat"] == pytest.approx(369.63)


def test_normal_bundle_has_no_vat(db_session, customer):
    _receipt(db_session, customer, "1", 100.0)

    preview = _preview(customer)

    assert preview["vat_rate"] == 0.0
    assert preview["vat_amount"] == 0.0
    assert preview["total_with_vat"] == pytest.approx(100.0)


def test_paid_amounts_use_canonical_sources(db_session, customer):
    receipt = _receipt(db_session, customer, "1", 100.0, amount_paid=10.0)
    payment = Payment(amount=60.0, type="CUSTOMER_PAYMENT", customer_id=customer.id)
    db_session.add(payment)
    db_session.flush()
    db_session.add(ReceiptPayment(payment_id=payment.id, receipt_id=receipt.id, amount=60.0))
    db_session.commit()

    preview = _preview(customer)

    assert preview["amount_paid"] == pytest.approx(60.0)
    assert preview["outstanding"] == pytest.approx(40.0)
    assert preview["receipts"][0]["outstanding"] == pytest.approx(40.0)


def test_job_site_filter(db_session, customer, job_site):
    on_site = _receipt(db_session, customer, "1", 10.0, job_site=job_site)
    _receipt(db_session, customer, "2", 20.0)

    preview = _preview(customer, job_site_id=job_site.id)

    assert [r["id"] for r in preview["receipts"]] == [on_site.id]
    assert preview["job_site"]["name"] == "Block C"
    assert preview["old_balance"] == pytest.approx(20.0)


def test_job_site_of_other_customer(db_session, tva_customer, job_site):
    with pytest.raises(ValidationError) as exc:
        _preview(tva_customer, job_site_id=job_site.id)
    assert exc.value.message == "Selected job site does not belong to this customer"


def test_unknown_customer(db_session):
    with pytest.raises(NotFoundError):
        invoice_service.build_invoice_preview(999, InvoicePreviewInput.from_json({}))


def test_price_overrides_reprice_before_bundling(db_session, customer, sand):
    receipt = _receipt(db_session, customer, "1", 0.0)
    item = ReceiptItem(receipt_id=receipt.id, product_id=sand.id, quantity=4.0, stock_delta=-4.0)
    db_session.add(item)
    db_session.commit()

    preview = _preview(
        customer,
        price_overrides=[{"receipt_id": receipt.id, "items": [{"item_id": item.id, "unit_price": 12.5}]}],
    )

    assert preview["subtotal"] == pytest.approx(50.0)
    stored = db.session.get(ReceiptItem, item.id)
    assert stored.unit_price == pytest.approx(12.5)
    assert stored.subtotal == pytest.approx(50.0)
    entry = db_session.query(AuditLog).filter_by(action="RECEIPT_PRICING_UPDATED").one()
    assert entry.description == f"Receipt {receipt.id} pricing updated via invoice builder"


def test_price_overrides_skip_foreign_receipts(db_session, customer, tva_customer, sand):
    _receipt(db_session, customer, "1", 5.0)
    foreign = _receipt(db_session, tva_customer, "T1", 0.0)
    item = ReceiptItem(receipt_id=foreign.id, product_id=sand.id, quantity=1.0, stock_delta=-1.0)
    db_session.add(item)
    db_session.commit()

    _preview(customer, price_overrides=[{"receipt_id": foreign.id, "items": [{"item_id": item.id, "unit_price": 99}]}])

    assert db.session.get(ReceiptItem, item.id).unit_price is None
    assert db.session.get(Receipt, foreign.id).total == 0.0


def test_no_open_receipts_is_rejected(db_session, customer):
    _receipt(db_session, customer, "1", 50.0, is_paid=True, amount_paid=50.0)

    with pytest.raises(ValidationError) as exc:
        _preview(customer)
    assert exc.value.message == "No receipts available to invoice for this customer"
