"""
Pytest fixtures for the Tabacaria backend tests.

Provides the in-memory app, a clean database per test, staff accounts with
bearer tokens, and small factories for catalog and client records.
"""

import pytest

from tabacaria import create_app
from tabacaria.config import get_settings
from tabacaria.extensions import db
from tabacaria.models import User
from tabacaria.services import client_service, products_service, supplier_service
from tabacaria.services.auth_service import hash_password
from tabacaria.services.token_service import create_access_token


PASSWORD = "123456"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
        'APP_ENV': 'testing',
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
def settings(db_session):
    return get_settings()


def _make_user(session, name, email, is_admin):
    user = User(
        name=name,
        email=email,
        is_admin=is_admin,
        password_hash=hash_password(PASSWORD, rounds=4),
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    """Administrator account."""
    return _make_user(db_session, "Admin User", "admin@tabacaria.com", True)


@pytest.fixture(scope='function')
def seller_user(db_session):
    """Regular seller account."""
    return _make_user(db_session, "Vendedor 1", "vendedor1@tabacaria.com", False)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(admin_user, settings):
    return auth_headers(create_access_token(admin_user.id, settings))


@pytest.fixture(scope='function')
def seller_headers(seller_user, settings):
    return auth_headers(create_access_token(seller_user.id, settings))


@pytest.fixture(scope='function')
def make_product(admin_user, settings):
    """Factory: create a product through the service (initial stock is ledgered)."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        payload = {
            "name": f"Essência Teste {counter['n']}",
            "category": "Essências",
            "price_cents": 1590,
            "cost_price_cents": 850,
            "stock": 20,
            "min_stock": 5,
        }
        payload.update(overrides)
        return products_service.create_product(payload, user_id=admin_user.id, settings=settings)

    return _make


@pytest.fixture(scope='function')
def make_client(db_session):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        payload = {
            "name": f"Cliente {counter['n']}",
            "phone": f"(11) 90000-000{counter['n']}",
            "document": f"000.000.000-{counter['n']:02d}",
        }
        payload.update(overrides)
        return client_service.create_client(payload)

    return _make


@pytest.fixture(scope='function')
def make_supplier(db_session):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        payload = {
            "name": f"Fornecedor {counter['n']}",
            "document": f"1234567800019{counter['n']}",
            "categories": ["Essências"],
        }
        payload.update(overrides)
        return supplier_service.create_supplier(payload)

    return _make
