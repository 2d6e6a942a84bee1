"""
Pytest fixtures for shopdesk backend tests.

Provides test database setup, two tenants, users per role, and a test client.
"""

import pytest
from shopdesk import create_app
from shopdesk.extensions import db
from shopdesk.models import Organization, Store, User, Product, OrganizationInvoiceSettings, BusinessSettings
from shopdesk.services import session_service
from shopdesk.services.auth_service import hash_password


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow on purpose; hash once per run."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    storage_dir = tmp_path_factory.mktemp("invoice-files")
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'INVOICE_STORAGE_DIR': str(storage_dir),
        'INVOICE_NUMBERING_MAX_ATTEMPTS': 3,
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
    org = Organization(name="Org A - Acme Retail", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Foods", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def store_a(db_session, org_a):
    store = Store(org_id=org_a.id, name="Store A1", code="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, org_b):
    store = Store(org_id=org_b.id, name="Store B1", code="B1")
    db_session.add(store)
    db_session.commit()
    return store


def _make_user(db_session, org, store, username, role, password_hash):
    user = User(
        org_id=org.id,
        store_id=store.id,
        username=username,
        email=f"{username}@example.com",
        password_hash=password_hash,
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def user_a(db_session, org_a, store_a, password_hash):
    """Admin in Organization A."""
    return _make_user(db_session, org_a, store_a, "user_a", "admin", password_hash)


@pytest.fixture(scope='function')
def cashier_a(db_session, org_a, store_a, password_hash):
    return _make_user(db_session, org_a, store_a, "cashier_a", "cashier", password_hash)


@pytest.fixture(scope='function')
def user_b(db_session, org_b, store_b, password_hash):
    """Admin in Organization B."""
    return _make_user(db_session, org_b, store_b, "user_b", "admin", password_hash)


@pytest.fixture(scope='function')
def products_a(db_session, org_a):
    """Two products priced 100.00 and 50.00."""
    tea = Product(org_id=org_a.id, sku="TEA", name="Tea Chest", price_cents=10_000)
    mug = Product(org_id=org_a.id, sku="MUG", name="Mug", price_cents=5_000)
    db_session.add_all([tea, mug])
    db_session.commit()
    return tea, mug


@pytest.fixture(scope='function')
def product_b(db_session, org_b):
    product = Product(org_id=org_b.id, sku="B-1", name="Beta Product", price_cents=2_500)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def invoice_settings_a(db_session, org_a):
    settings = OrganizationInvoiceSettings(org_id=org_a.id)
    db_session.add(settings)
    db_session.add(BusinessSettings(org_id=org_a.id, business_name="Acme Retail"))
    db_session.commit()
    return settings


@pytest.fixture(scope='function')
def sale_a(db_session, org_a, store_a, user_a, products_a):
    """qty 2 @ 100.00 and qty 1 @ 50.00 -> 250.00"""
    from shopdesk.services import sales_service
    tea, mug = products_a
    return sales_service.record_sale(
        org_id=org_a.id,
        store_id=store_a.id,
        user_id=user_a.id,
        lines=[
            {"product_id": tea.id, "quantity": 2},
            {"product_id": mug.id, "quantity": 1},
        ],
    )


@pytest.fixture(scope='function')
def token_a(db_session, user_a):
    _, token = session_service.create_session(user_a.id)
    return token


@pytest.fixture(scope='function')
def cashier_token_a(db_session, cashier_a):
    _, token = session_service.create_session(cashier_a.id)
    return token


@pytest.fixture(scope='function')
def token_b(db_session, user_b):
    _, token = session_service.create_session(user_b.id)
    return token
