import pytest

from ledger.extensions import db
from ledger.models import Payment, Receipt, ReceiptPayment
from ledger.money import is_settled
from ledger.services import reconciliation_service
from ledger.services.reconciliation_service import PaymentSources


def _receipt(db_session, customer, receipt_no, total, amount_paid=0.0, is_paid=False):
    receipt = Receipt(
        receipt_no=receipt_no,
        type="NORMAL",
        customer_id=customer.id,
        total=total,
        amount_paid=amount_paid,
        is_paid=is_paid,
    )
    db_session.add(receipt)
    db_session.commit()
    return receipt


def _allocation(db_session, receipt, amount, payment_type="CUSTOMER_PAYMENT"):
    payment = Payment(amount=amount, type=payment_type, customer_id=receipt.customer_id)
    db_session.add(payment)
    db_session.flush()
    db_session.add(ReceiptPayment(payment_id=payment.id, receipt_id=receipt.id, amount=amount))
    db_session.commit()
    return payment


def test_canonical_is_max_of_sources():
    sources = PaymentSources(allocated=30.0, direct=45.0, stored=10.0, flagged_total=0.0)
    assert sources.canonical == 45.0
    assert sources.recorded == 45.0

    flagged = PaymentSources(allocated=30.0, stored=10.0, flagged_total=100.0)
    assert flagged.canonical == 100.0
    assert flagged.recorded == 30.0


def test_zero_total_is_never_settled():
    assert not is_settled(0.0, 0.0)
    assert not is_settled(5.0, 0.0)
    assert is_settled(99.9999995, 100.0)
    assert not is_settled(99.99, 100.0)


def test_health_reports_mismatch_without_writing(db_session, customer):
    receipt = _receipt(db_session, customer, "1", total=100.0, amount_paid=20.0)
    _allocation(db_session, receipt, 60.0)

    report = reconciliation_service.receivables_health()

    assert report["receipts_scanned"] == 1
    [row] = report["mismatched_receipts"]
    assert row["id"] == receipt.id
    assert row["stored_paid"] == pytest.approx(20.0)
    assert row["canonical_paid"] == pytest.approx(60.0)
    assert row["should_be_paid"] is False
    assert report["top_outstanding"] == [{"customer_id": customer.id, "outstanding": 40.0}]
    assert db.session.get(Receipt, receipt.id).amount_paid == pytest.approx(20.0)


def test_health_reports_orphans_and_invalid_payments(db_session, customer):
    db_session.add(ReceiptPayment(payment_id=777, receipt_id=888, amount=5.0))
    db_session.add(Payment(amount=10.0, type="RECEIPT"))
    db_session.add(Payment(amount=10.0, type="CUSTOMER_PAYMENT"))
    db_session.add(Payment(amount=10.0, type="SUPPLIER"))
    db_session.commit()

    report = reconciliation_service.receivables_health()

    assert len(report["orphan_receipt_payments"]) == 1
    assert report["orphan_receipt_payments"][0]["payment_id"] == 777
    assert sorted(p["type"] for p in report["invalid_payments"]) == ["CUSTOMER_PAYMENT", "RECEIPT"]
    # orphans are reported, never deleted
    assert db_session.query(ReceiptPayment).count() == 1


def test_direct_receipt_payments_count_as_source(db_session, customer):
    receipt = _receipt(db_session, customer, "1", total=50.0)
    db_session.add(Payment(amount=50.0, type="RECEIPT", receipt_id=receipt.id, customer_id=customer.id))
    db_session.add(Payment(amount=500.0, type="SUPPLIER", receipt_id=receipt.id))
    db_session.commit()

    paid = reconciliation_service.canonical_paid_map([db.session.get(Receipt, receipt.id)])

    assert paid[receipt.id] == pytest.approx(50.0)


def test_repair_applies_canonical_and_is_idempotent(db_session, customer):
    short = _receipt(db_session, customer, "1", total=100.0, amount_paid=20.0)
    _allocation(db_session, short, 100.0)
    flagged = _receipt(db_session, customer, "2", total=80.0, amount_paid=0.0, is_paid=True)
    fine = _receipt(db_session, customer, "3", total=40.0, amount_paid=10.0)

    result = reconciliation_service.repair_receivables()

    assert result["count"] == 2
    repaired = {row["id"]: row for row in result["repaired"]}
    assert repaired[short.id]["new_paid"] == pytest.approx(100.0)
    assert repaired[short.id]["is_paid"] is True
    assert repaired[flagged.id]["new_paid"] == pytest.approx(80.0)
    assert fine.id not in repaired

    assert reconciliation_service.repair_receivables()["count"] == 0
    assert reconciliation_service.receivables_health()["mismatched_receipts"] == []


def test_zero_total_flagged_paid_is_repaired_to_unpaid(db_session, customer):
    receipt = _receipt(db_session, customer, "1", total=0.0, is_paid=True)

    reconciliation_service.repair_receivables()

    assert db.session.get(Receipt, receipt.id).is_paid is False


def test_recompute_scoped_to_customer(db_session, customer, tva_customer):
    mine = _receipt(db_session, customer, "1", total=100.0)
    _allocation(db_session, mine, 30.0)
    other = Receipt(receipt_no="T1", type="TVA", customer_id=tva_customer.id, total=50.0, amount_paid=0.0)
    db_session.add(other)
    db_session.commit()
    _allocation(db_session, other, 50.0)

    result = reconciliation_service.recompute_receipt_balances(customer_id=customer.id)

    assert result == {"updated": 1, "skipped": 0}
    assert db.session.get(Receipt, mine.id).amount_paid == pytest.approx(30.0)
    assert db.session.get(Receipt, other.id).amount_paid == pytest.approx(0.0)


def test_repair_single_receipt(db_session, customer):
    receipt = _receipt(db_session, customer, "1", total=60.0)
    _allocation(db_session, receipt, 60.0)

    repaired = reconciliation_service.repair_receipt(receipt.id)

    assert repaired.amount_paid == pytest.approx(60.0)
    assert repaired.is_paid is True
