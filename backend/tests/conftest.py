"""
Pytest fixtures for back-office backend tests.

Provides test database setup, entity factories and test client.
"""

import pytest
from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Product, Customer
from backoffice.config import CASH_POLICY_AUTO_CREATE


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CASH_SESSION_POLICY': CASH_POLICY_AUTO_CREATE,
        'DEFAULT_TAX_RATE_BPS': 2100,
        'BUSINESS_TIMEZONE': 'UTC',
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
        app.config['CASH_SESSION_POLICY'] = CASH_POLICY_AUTO_CREATE


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for products with explicit counters."""
    counter = {'n': 0}

    def _make(stock=10, reserved=0, price_cents=1000, name=None, sku=None):
        counter['n'] += 1
        product = Product(
            sku=sku or f"TST{counter['n']:03d}",
            name=name or f"Test product {counter['n']}",
            price_cents=price_cents,
            stock=stock,
            reserved=reserved,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Product with stock=10, reserved=0, price 10.00."""
    return make_product(stock=10, price_cents=1000, name="Coffee beans")


@pytest.fixture(scope='function')
def make_customer(db_session):
    def _make(name, email=None):
        customer = Customer(name=name, email=email, balance_cents=0)
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture(scope='function')
def customer(make_customer):
    return make_customer("Ana Torres", email="ana@example.com")


# =============================================================================
# TEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "inventory: Stock and reservation counter tests")
    config.addinivalue_line("markers", "orders: Order lifecycle tests")
    config.addinivalue_line("markers", "cash: Cash session tests")
    config.addinivalue_line("markers", "ledger: Customer ledger tests")
    config.addinivalue_line("markers", "returns: Credit note tests")
    config.addinivalue_line("markers", "api: HTTP route tests")
    config.addinivalue_line("markers", "cli: CLI command tests")
    config.addinivalue_line("markers", "concurrency: Locking, retries and competing writers")
