"""
Pytest fixtures for docflow backend tests.

Provides test database setup, two-tenant fixtures, document factories and
the Flask test client.
"""

from datetime import timedelta

import pytest

from docflow import create_app
from docflow.extensions import db
from docflow.models import Organization
from docflow.services import (
    conversion_service,
    invoice_service,
    quotation_service,
    work_order_service,
)
from docflow.services.auth_service import create_user
from docflow.services.session_service import create_session
from docflow.time_utils import utcnow


PASSWORD = "Password123!"

# Scenario line: 2 x 100.00 with 16% tax -> total 232.00
BRAKE_PADS = {"description": "Brake pads", "quantity": 2, "unit_price_cents": 10000, "tax_bps": 1600}
LABOUR = {"description": "Labour", "quantity": 1, "unit_price_cents": 5000, "kind": "SERVICE"}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Garage", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Motors", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def user_a(db_session, org_a):
    """Create User A in Organization A."""
    return create_user("user_a", "user_a@acme.com", PASSWORD, org_a.id, rounds=4)


@pytest.fixture(scope='function')
def user_b(db_session, org_b):
    """Create User B in Organization B."""
    return create_user("user_b", "user_b@beta.com", PASSWORD, org_b.id, rounds=4)


@pytest.fixture(scope='function')
def headers_a(user_a):
    _, token = create_session(user_id=user_a.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def headers_b(user_b):
    _, token = create_session(user_id=user_b.id)
    return auth_headers(token)


# =============================================================================
# DOCUMENT FACTORIES
# =============================================================================

@pytest.fixture(scope='function')
def make_quotation(db_session, org_a, user_a):
    """Create a quotation in Org A (or the given org) and walk it to a status."""
    def _make(status="DRAFT", items=None, org_id=None, user_id=None, **fields):
        org_id = org_id or org_a.id
        user_id = user_id or user_a.id
        payload = {"customer_id": 1, **fields}
        payload["items"] = [dict(BRAKE_PADS)] if items is None else items

        quotation = quotation_service.create_quotation(org_id, user_id, payload)
        if status in ("SENT", "APPROVED", "REJECTED"):
            quotation = quotation_service.transition_quotation(org_id, user_id, quotation.id, "SENT")
        if status in ("APPROVED", "REJECTED"):
            quotation = quotation_service.transition_quotation(org_id, user_id, quotation.id, status)
        return quotation

    return _make


@pytest.fixture(scope='function')
def make_invoice(db_session, org_a, user_a, make_quotation):
    """ISSUED invoice converted from an approved quotation (total 232.00 by default)."""
    def _make(items=None, org_id=None, user_id=None):
        org_id = org_id or org_a.id
        user_id = user_id or user_a.id
        quotation = make_quotation("APPROVED", items=items, org_id=org_id, user_id=user_id)
        return conversion_service.convert_quotation(org_id, user_id, quotation.id)

    return _make


@pytest.fixture(scope='function')
def make_draft_invoice(db_session, org_a, user_a):
    def _make(items=None, org_id=None, user_id=None, **fields):
        payload = {"customer_id": 1, **fields}
        payload["items"] = [dict(BRAKE_PADS)] if items is None else items
        return invoice_service.create_invoice(org_id or org_a.id, user_id or user_a.id, payload)

    return _make


@pytest.fixture(scope='function')
def make_work_order(db_session, org_a, user_a):
    """Create a work order and optionally move it to COMPLETED."""
    def _make(status="COMPLETED", items=None, org_id=None, user_id=None):
        org_id = org_id or org_a.id
        user_id = user_id or user_a.id
        payload = {"customer_id": 7, "description": "Front brake service"}
        payload["items"] = [dict(BRAKE_PADS), dict(LABOUR)] if items is None else items

        work_order = work_order_service.create_work_order(org_id, user_id, payload)
        if status != "PENDING":
            work_order = work_order_service.set_work_order_status(org_id, user_id, work_order.id, status)
        return work_order

    return _make


def days_from_now(days: int):
    return utcnow() + timedelta(days=days)


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
