"""
Pytest fixtures for ledger backend tests.

Provides test database setup, catalog/customer fixtures, and test client.
"""

import pytest
from ledger import create_app
from ledger.extensions import db
from ledger.models import Customer, JobSite, Product, ProductComponent


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TVA_RATE': 0.11,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def actor_headers():
    return {"X-Actor-Id": "7", "X-Actor-Email": "clerk@example.com", "X-Actor-Role": "CLERK"}


@pytest.fixture(scope='function')
def admin_headers():
    return {"X-Actor-Id": "1", "X-Actor-Email": "admin@example.com", "X-Actor-Role": "ADMIN"}


def _product(db_session, name, **kwargs):
    product = Product(name=name, unit=kwargs.pop("unit", "m³"), stock_qty=kwargs.pop("stock_qty", 100.0), **kwargs)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def sand(db_session):
    return _product(db_session, "Sand", unit_price=10.0)


@pytest.fixture(scope='function')
def gravel(db_session):
    return _product(db_session, "Gravel", unit_price=12.0)


@pytest.fixture(scope='function')
def cement(db_session):
    return _product(db_session, "Cement", unit="bag", unit_price=8.0)


@pytest.fixture(scope='function')
def debris(db_session):
    return _product(db_session, "Debris", stock_qty=0.0)


@pytest.fixture(scope='function')
def concrete_mix(db_session, sand, gravel, cement):
    """Composite: 0.5 sand + 0.8 gravel + 7 cement per unit."""
    mix = Product(name="Concrete B250", unit="m³", unit_price=90.0, stock_qty=0.0, is_composite=True)
    mix.components.append(ProductComponent(component_product_id=sand.id, quantity=0.5))
    mix.components.append(ProductComponent(component_product_id=gravel.id, quantity=0.8))
    mix.components.append(ProductComponent(component_product_id=cement.id, quantity=7.0))
    db_session.add(mix)
    db_session.commit()
    return mix


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Nadim Contracting", receipt_type="NORMAL")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def tva_customer(db_session):
    customer = Customer(name="Cedar Builders", receipt_type="TVA")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def job_site(db_session, customer):
    site = JobSite(name="Block C", customer_id=customer.id)
    db_session.add(site)
    db_session.commit()
    return site
