"""
Pytest fixtures for stock ledger tests.

Provides the test database, company/product/formula factories and a test client.
"""

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Company, Product, ProductFormula


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF': 0.0,
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
def company(db_session):
    company = Company(name="Acme Foods", gst_number="27AAACA1234A1Z5")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def other_company(db_session):
    company = Company(name="Beta Traders")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def make_product(db_session, company):
    """Factory: make_product("Rice", primary_unit="BAG", secondary_unit="KG", conversion_rate=20)."""
    def _make(name, *, company_id=None, primary_unit="PCS", secondary_unit=None, conversion_rate=None, **flags):
        product = Product(
            company_id=company_id or company.id,
            name=name,
            primary_unit=primary_unit,
            secondary_unit=secondary_unit,
            conversion_rate=conversion_rate,
            has_dual_units=flags.pop("has_dual_units", secondary_unit is not None),
            maintain_stock=flags.pop("maintain_stock", True),
            is_manufactured=flags.pop("is_manufactured", False),
            formula_base_qty=flags.pop("formula_base_qty", 1.0),
            allow_backorder=flags.pop("allow_backorder", None),
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_formula(db_session):
    """Factory: one formula line, quantity already per one unit of output."""
    def _make(product, ingredient, quantity, unit_type="primary"):
        entry = ProductFormula(
            product_id=product.id,
            ingredient_id=ingredient.id,
            quantity=quantity,
            unit_type=unit_type,
        )
        db_session.add(entry)
        db_session.commit()
        return entry
    return _make


@pytest.fixture(scope='function')
def bag_product(make_product):
    """BAG primary, KG secondary, 20 KG per BAG."""
    return make_product("Basmati Rice", primary_unit="BAG", secondary_unit="KG", conversion_rate=20.0)


@pytest.fixture(scope='function')
def manufactured(make_product, make_formula):
    """Q made from R: 6 KG of R per unit of Q; R is BAG/KG at 20."""
    r = make_product("Flour", primary_unit="BAG", secondary_unit="KG", conversion_rate=20.0)
    q = make_product("Bread Mix", primary_unit="PCS", is_manufactured=True)
    make_formula(q, r, 6.0, unit_type="secondary")
    return q, r
