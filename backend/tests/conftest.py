"""
Pytest fixtures for rxledger tests.

Provides an in-memory database, a per-test clean session, catalog records
and a batch receiving helper.
"""

from datetime import date

import pytest

from rxledger import create_app
from rxledger.config import LedgerSettings
from rxledger.extensions import db
from rxledger.models.catalog import PARTY_AGENT, PARTY_CUSTOMER
from rxledger.services import catalog_service, stock_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF': 0.01,
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
def settings():
    return LedgerSettings(retry_backoff=0.01)


@pytest.fixture(scope='function')
def location(db_session):
    return catalog_service.create_location(db_session, code="MAIN", name="Main Pharmacy")


@pytest.fixture(scope='function')
def branch(db_session):
    return catalog_service.create_location(db_session, code="BR2", name="Branch 2")


@pytest.fixture(scope='function')
def product(db_session):
    return catalog_service.create_product(db_session, sku="AMX-500", name="Amoxicillin 500mg", unit="capsule")


@pytest.fixture(scope='function')
def other_product(db_session):
    return catalog_service.create_product(db_session, sku="PCM-500", name="Paracetamol 500mg", unit="tablet")


@pytest.fixture(scope='function')
def customer(db_session, location):
    return catalog_service.create_party(
        db_session,
        party_type=PARTY_CUSTOMER,
        name="Santos Drugstore",
        location_id=location.id,
    )


@pytest.fixture(scope='function')
def agent(db_session, location):
    return catalog_service.create_party(
        db_session,
        party_type=PARTY_AGENT,
        name="R. Cruz",
        location_id=location.id,
    )


@pytest.fixture(scope='function')
def receive(db_session, location, settings):
    """Receive a batch: receive(product, qty, made=date(...), expires=None, cost=100)."""
    def _receive(product, quantity, made=None, expires=None, cost=100, batch_no=None, location_id=None):
        return stock_service.receive_stock(
            db_session,
            product_id=product.id,
            location_id=location_id or location.id,
            quantity=quantity,
            unit_cost_cents=cost,
            batch_no=batch_no,
            manufactured_on=made,
            expires_on=expires or date(2099, 1, 1),
            settings=settings,
        )
    return _receive
