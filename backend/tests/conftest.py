"""
Pytest fixtures for devicetrack tests.

Provides the application on in-memory SQLite, a per-test table wipe, the
organisation fixtures (two warehouses, each with a store), one user per role
and helpers that walk devices through the lifecycle.
"""

from datetime import date

import pytest
from sqlalchemy.pool import StaticPool

from devicetrack import create_app
from devicetrack.extensions import db
from devicetrack.models import Device, Store, User, Warehouse
from devicetrack.permissions import Role
from devicetrack.services import device_service, sales_service, transfer_service
from devicetrack.services.permission_service import Caller
from devicetrack.services.device_service import location_is_consistent


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_ENGINE_OPTIONS': {
            'poolclass': StaticPool,
            'connect_args': {'check_same_thread': False},
        },
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ARTIFACT_ROOT': str(tmp_path_factory.mktemp('artifacts')),
        'BCRYPT_ROUNDS': 4,
        'LOG_LEVEL': 'DEBUG',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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

        # Every device touched by the test must still satisfy the location table
        db.session.rollback()
        for device in db.session.query(Device).all():
            assert location_is_consistent(device), f"inconsistent location: {device.to_dict()}"


def _warehouse(name: str) -> Warehouse:
    return Warehouse(
        name=name,
        address="1 Dock Road",
        city="Pune",
        state="MH",
        pin="411001",
        contact_person="Ops Lead",
        phone="9000000000",
        is_active=True,
    )


def _store(name: str, warehouse: Warehouse) -> Store:
    return Store(
        warehouse_id=warehouse.id,
        name=name,
        address="2 Market Street",
        city="Pune",
        state="MH",
        pin="411002",
        contact_person="Store Lead",
        phone="9111111111",
        is_active=True,
    )


@pytest.fixture(scope='function')
def warehouse(db_session):
    """Warehouse W1."""
    w = _warehouse("Central Warehouse")
    db_session.add(w)
    db_session.commit()
    return w


@pytest.fixture(scope='function')
def other_warehouse(db_session):
    """Warehouse W2 (different tenant scope)."""
    w = _warehouse("North Warehouse")
    db_session.add(w)
    db_session.commit()
    return w


@pytest.fixture(scope='function')
def store(db_session, warehouse):
    """Store S1 under W1."""
    s = _store("Main Street Store", warehouse)
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def other_store(db_session, other_warehouse):
    """Store S2 under W2."""
    s = _store("Northside Store", other_warehouse)
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: persisted user of a role (password hash is a placeholder)."""
    counter = {"n": 0}

    def _make(role: Role, *, warehouse=None, store=None, active=True) -> User:
        counter["n"] += 1
        user = User(
            name=f"{role.value} user {counter['n']}",
            email=f"{role.value}{counter['n']}@devicetrack.test",
            password_hash="x",
            role=role.value,
            warehouse_id=warehouse.id if warehouse is not None else None,
            store_id=store.id if store is not None else None,
            is_active=active,
            first_login=False,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def superadmin(make_user):
    return Caller.from_user(make_user(Role.SUPERADMIN))


@pytest.fixture(scope='function')
def admin(make_user):
    return Caller.from_user(make_user(Role.ADMIN))


@pytest.fixture(scope='function')
def warehouse_caller(make_user, warehouse):
    return Caller.from_user(make_user(Role.WAREHOUSE, warehouse=warehouse))


@pytest.fixture(scope='function')
def other_warehouse_caller(make_user, other_warehouse):
    return Caller.from_user(make_user(Role.WAREHOUSE, warehouse=other_warehouse))


@pytest.fixture(scope='function')
def store_caller(make_user, store):
    return Caller.from_user(make_user(Role.STORE, store=store))


@pytest.fixture(scope='function')
def other_store_caller(make_user, other_store):
    return Caller.from_user(make_user(Role.STORE, store=other_store))


@pytest.fixture(scope='function')
def customer_caller(make_user):
    return Caller.from_user(make_user(Role.CUSTOMER))


@pytest.fixture(scope='function')
def make_devices(warehouse_caller):
    """Factory: n devices created in W1 by the warehouse user."""
    counter = {"n": 0}

    def _make(n: int = 1, *, caller=None, model: str = "Galaxy A15") -> list[Device]:
        devices = []
        for _ in range(n):
            counter["n"] += 1
            devices.append(device_service.create_device(
                caller or warehouse_caller,
                name=f"Phone {counter['n']}",
                model=model,
                imei_1=f"35000000000{counter['n']:04d}",
                imei_2=f"36000000000{counter['n']:04d}",
            ))
        return devices

    return _make


@pytest.fixture(scope='function')
def stock_store(make_devices, warehouse, store, warehouse_caller, store_caller):
    """Factory: n devices received into S1 (status in_store)."""
    def _stock(n: int = 1) -> list[Device]:
        devices = make_devices(n)
        transfer = transfer_service.create_transfer(
            warehouse_caller,
            warehouse_id=warehouse.id,
            store_id=store.id,
            device_ids=[d.id for d in devices],
        )
        transfer_service.receive_transfer(store_caller, transfer.id)
        return devices

    return _stock


SALE_DATE = date(2024, 1, 15)


@pytest.fixture(scope='function')
def sell(store, store_caller):
    """Factory: sell a device from S1, optionally on EMI."""
    def _sell(device: Device, *, price_cents: int = 500_00, emi=None, caller=None):
        return sales_service.sell_device(
            caller or store_caller,
            store_id=store.id,
            device_id=device.id,
            customer={"name": "Asha Rao", "phone": "9876543210", "email": "asha@example.com"},
            sale_price_cents=price_cents,
            emi_terms=emi,
            sale_date=SALE_DATE,
        )

    return _sell
