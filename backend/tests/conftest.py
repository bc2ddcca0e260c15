"""
Pytest fixtures for laundry backend tests.

Provides test database setup, owner fixtures, a fake identity provider and
test client.
"""

from datetime import date

import pytest
from laundry import create_app
from laundry.extensions import db
from laundry.services import catalog_store, identity_service, shipment_store


OWNER_A = "owner-a-uid"
OWNER_B = "owner-b-uid"
TOKEN_PREFIX = "test-token:"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PRODUCT_LOOKUP_CHUNK_SIZE': 10,
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


@pytest.fixture(autouse=True)
def fake_identity(monkeypatch):
    """Tokens of the form 'test-token:<uid>' verify as <uid>; anything else is rejected."""
    def verify(token):
        if token and token.startswith(TOKEN_PREFIX):
            return token[len(TOKEN_PREFIX):] or None
        return None

    monkeypatch.setattr(identity_service, "verify_id_token", verify)


def auth_headers(owner_id: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {TOKEN_PREFIX}{owner_id}'}


@pytest.fixture
def headers_a():
    return auth_headers(OWNER_A)


@pytest.fixture
def headers_b():
    return auth_headers(OWNER_B)


@pytest.fixture
def make_product(db_session):
    """Factory: create a product for an owner, return its id."""
    def _make(owner_id=OWNER_A, name="Bath towel", price_cents=350, category=None):
        created = catalog_store.create_product(
            owner_id=owner_id,
            patch={"name": name, "price_cents": price_cents, "category": category},
        )
        return created["id"]
    return _make


@pytest.fixture
def make_shipment(db_session):
    """
    Factory: create a shipment.

    items: list of (product_id, quantity_sent) or
           (product_id, quantity_sent, quantity_returned)
    """
    def _make(owner_id=OWNER_A, sent_at="2024-01-01", items=(), notes=None, expected_return_at=None):
        lines = []
        for item in items:
            product_id, quantity_sent, *rest = item
            lines.append({
                "product_id": product_id,
                "quantity_sent": quantity_sent,
                "quantity_returned": rest[0] if rest else 0,
            })
        meta = {
            "sent_at": date.fromisoformat(sent_at),
            "expected_return_at": date.fromisoformat(expected_return_at) if expected_return_at else None,
            "notes": notes,
        }
        return shipment_store.create_shipment(owner_id=owner_id, meta=meta, items=lines)
    return _make
