from ledger.models import Product, Receipt


def test_catalog_seed_command(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["catalog", "seed"])
    assert result.exit_code == 0
    assert "PASS Created product: Debris" in result.output
    assert db_session.query(Product).filter_by(name="Diesel").count() == 1

    again = runner.invoke(args=["catalog", "seed"])
    assert "nothing to create" in again.output


def test_receivables_commands(app, db_session, customer):
    db_session.add(Receipt(receipt_no="1", type="NORMAL", customer_id=customer.id, total=10.0, amount_paid=0.0, is_paid=True))
    db_session.commit()
    runner = app.test_cli_runner()

    health = runner.invoke(args=["receivables", "health"])
    assert health.exit_code == 0
    assert "WARN 1 mismatched receipts" in health.output

    repair = runner.invoke(args=["receivables", "repair", "--yes"])
    assert repair.exit_code == 0
    assert "DONE Repaired 1 receipts" in repair.output

    clean = runner.invoke(args=["receivables", "health"])
    assert "PASS No mismatched receipts" in clean.output
