"""
Pytest fixtures for storeledger backend tests.

Provides the application, a wiped database per test, the test client,
and a few products and customers to bill against.
"""

import pytest

from storeledger import create_app
from storeledger.extensions import db
from storeledger.services import customer_service, inventory_service
from storeledger.services.events import ALL_EVENTS, get_event_bus


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RECON_RETRY_BACKOFF_BASE': 0,
        'CURRENCY_SYMBOL': 'Rs.',
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
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def events(app):
    """Collect every event published during the test."""
    captured = []
    bus = get_event_bus()
    handler = bus.subscribe(ALL_EVENTS, captured.append)
    yield captured
    bus.unsubscribe(ALL_EVENTS, handler)


@pytest.fixture(scope='function')
def customer(db_session):
    """Customer with an empty ledger."""
    return customer_service.create_customer(name="Hardware Mart", phone="0300-1234567")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return customer_service.create_customer(name="Builders Depot")


@pytest.fixture(scope='function')
def cement(db_session):
    """Bag product: 100 bags at Rs. 10.00, low-stock alert at 5 bags."""
    return inventory_service.create_product(
        name="Cement",
        unit_type="bag",
        rate_per_unit_cents=1000,
        current_stock="100",
        min_stock_alert="5",
    )


@pytest.fixture(scope='function')
def rice(db_session):
    """kg-grams product: 500 kg at Rs. 45.00 per kg, alert at 10 kg."""
    return inventory_service.create_product(
        name="Rice",
        unit_type="kg-grams",
        rate_per_unit_cents=4500,
        current_stock="500-0",
        min_stock_alert="10-0",
    )
