"""
Pytest fixtures for the pharmadist backend tests.

Provides the in-memory test database, a two-tenant world with warehouses in
two cities, users for every role, and helpers to put stock on shelves.
"""

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from pharmadist import create_app
from pharmadist.extensions import db
from pharmadist.models import (
    Batch,
    Customer,
    InventoryBalance,
    Location,
    Product,
    ProductPresentation,
    Tenant,
    User,
    Warehouse,
)
from pharmadist.services import realtime
from pharmadist.services.session_service import actor_for_user, issue_token
from pharmadist.time_utils import today_utc, utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'REALTIME_SINK': 'none',
        'LOG_LEVEL': 'WARNING',
        'TX_RETRY_ATTEMPTS': 1,
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
    # Clear all data but keep schema
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='function')
def events():
    """Capture realtime events published after commit."""
    sink = realtime.RecordingSink()
    realtime.set_sink(sink)
    yield sink
    realtime.set_sink(realtime.NullSink())


def _make_tenant(name, code):
    tenant = Tenant(name=name, code=code, is_active=True)
    db.session.add(tenant)
    db.session.flush()

    warehouses = {}
    locations = {}
    for city in ("LP", "SC"):
        warehouse = Warehouse(tenant_id=tenant.id, code=f"{city}-01", name=f"Almacen {city}", city=city)
        db.session.add(warehouse)
        db.session.flush()
        location = Location(tenant_id=tenant.id, warehouse_id=warehouse.id, code="MAIN")
        db.session.add(location)
        warehouses[city] = warehouse
        locations[city] = location
    # Second shelf in LP for transfers within a city
    lp_back = Location(tenant_id=tenant.id, warehouse_id=warehouses["LP"].id, code="BACK")
    db.session.add(lp_back)

    paracetamol = Product(tenant_id=tenant.id, sku="PARA-500", name="Paracetamol 500mg", price=Decimal("2.50"))
    amoxicilina = Product(tenant_id=tenant.id, sku="AMOX-250", name="Amoxicilina 250mg", price=Decimal("4.00"))
    db.session.add_all([paracetamol, amoxicilina])

    customer_lp = Customer(tenant_id=tenant.id, name="Farmacia Illimani", city="LP", address="Av. Arce 100")
    customer_sc = Customer(tenant_id=tenant.id, name="Farmacia Oriente", city="SC", address="Calle Junin 5")
    db.session.add_all([customer_lp, customer_sc])
    db.session.flush()

    def user(email, role, warehouse=None):
        u = User(
            tenant_id=tenant.id,
            email=f"{email}@{code.lower()}.test",
            full_name=email.replace("_", " ").title(),
            role=role,
            warehouse_id=warehouse.id if warehouse else None,
        )
        db.session.add(u)
        return u

    users = SimpleNamespace(
        admin=user("admin", "ADMIN"),
        seller=user("seller", "SELLER"),
        lp_seller=user("lp_seller", "BRANCH_SELLER", warehouses["LP"]),
        sc_seller=user("sc_seller", "BRANCH_SELLER", warehouses["SC"]),
        branchless=user("branchless", "BRANCH_SELLER"),
        warehouse=user("warehouse", "WAREHOUSE"),
        lp_warehouse=user("lp_warehouse", "BRANCH_WAREHOUSE", warehouses["LP"]),
        readonly=user("readonly", "READONLY"),
    )
    db.session.flush()

    return SimpleNamespace(
        tenant=tenant,
        warehouses=warehouses,
        lp=locations["LP"],
        lp_back=lp_back,
        sc=locations["SC"],
        paracetamol=paracetamol,
        amoxicilina=amoxicilina,
        customer_lp=customer_lp,
        customer_sc=customer_sc,
        users=users,
    )


@pytest.fixture(scope='function')
def world(db_session):
    """Tenant A: LP and SC warehouses, two products, customers and users."""
    w = _make_tenant("Distribuidora Andina", "ANDINA")
    db_session.commit()
    return w


@pytest.fixture(scope='function')
def other_world(db_session, world):
    """Tenant B, same shape as tenant A."""
    w = _make_tenant("Distribuidora Llanos", "LLANOS")
    db_session.commit()
    return w


def add_batch(product, number, *, expires_in_days=None, status="RELEASED"):
    expires_at = today_utc() + timedelta(days=expires_in_days) if expires_in_days is not None else None
    batch = Batch(
        tenant_id=product.tenant_id,
        product_id=product.id,
        batch_number=number,
        status=status,
        expires_at=expires_at,
    )
    db.session.add(batch)
    db.session.commit()
    return batch


def add_balance(product, location, quantity, *, batch=None, reserved=0, age_minutes=0):
    """Put stock on a shelf. age_minutes pushes updated_at into the past."""
    balance = InventoryBalance(
        tenant_id=product.tenant_id,
        product_id=product.id,
        batch_id=batch.id if batch else None,
        location_id=location.id,
        quantity=Decimal(str(quantity)),
        reserved_quantity=Decimal(str(reserved)),
        updated_at=utcnow() - timedelta(minutes=age_minutes),
    )
    db.session.add(balance)
    db.session.commit()
    return balance


def add_presentation(product, name, factor, *, is_default=False, price_override=None, sort_order=0):
    presentation = ProductPresentation(
        tenant_id=product.tenant_id,
        product_id=product.id,
        name=name,
        units_per_presentation=factor,
        is_default=is_default,
        price_override=Decimal(str(price_override)) if price_override is not None else None,
        sort_order=sort_order,
    )
    db.session.add(presentation)
    db.session.commit()
    return presentation


def actor(user):
    return actor_for_user(user)


def auth_headers(user) -> dict:
    """Issue a token for the user and build Authorization headers."""
    _, token = issue_token(user.id)
    return {'Authorization': f'Bearer {token}'}


def reload(obj):
    """Re-read a row after a request committed through another session."""
    db.session.expire_all()
    return db.session.get(type(obj), obj.id)
