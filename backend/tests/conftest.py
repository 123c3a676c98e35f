"""
Pytest fixtures for caja backend tests.

Provides test database setup, an open shift on the default terminal, order
helpers, and test client.
"""

import pytest
from caja import create_app
from caja.extensions import db
from caja.services import order_service, settings_service, shift_service


TERMINAL = "caja-1"
OPERATOR = "cajero-ana"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_TERMINAL_ID': TERMINAL,
        'PRINT_SERVER_URL': '',
        'STORE_RETRY_BACKOFF': 0,
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
def runner(app):
    return app.test_cli_runner()


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
def no_tax(db_session):
    """Turn tax off so amounts in a test equal the item subtotals."""
    settings_service.set_settings({"tax_enabled": False}, updated_by="test")


@pytest.fixture(scope='function')
def shift(db_session):
    """OPEN shift on the default terminal with a 100000 float."""
    return shift_service.open_shift(OPERATOR, 100000, TERMINAL)


@pytest.fixture(scope='function')
def table(db_session):
    return order_service.create_table("Mesa 1", area="Salon", capacity=4)


def make_order(total: int, *, table=None, name: str = "Bandeja paisa", terminal_id: str = TERMINAL):
    """Single-line order whose subtotal is `total`. Takeaway when no table is given."""
    return order_service.create_order(
        order_type="DINE_IN" if table is not None else "TAKEAWAY",
        table_id=table.id if table is not None else None,
        waiter_name="Luis",
        operator_id=OPERATOR,
        terminal_id=terminal_id,
        items=[{"product_name": name, "quantity": 1, "unit_price": total}],
    )


def operator_headers(operator: str = OPERATOR, terminal: str = TERMINAL) -> dict:
    """Helper to create identity headers."""
    return {'X-Operator-Id': operator, 'X-Terminal-Id': terminal}
