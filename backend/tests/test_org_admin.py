# Overview: Pytest coverage for warehouse, store and user administration and issued credentials.

"""
Organisation Administration Tests

Warehouses and stores come with generated logins, deactivation cascades to
their users and is refused while stock is still held, and passwords are
bcrypt-hashed and returned to the caller exactly once.
"""

import pytest

from devicetrack.extensions import db
from devicetrack.models import Store, User, Warehouse
from devicetrack.permissions import Role
from devicetrack.services import store_service, user_service, warehouse_service
from devicetrack.services.permission_service import Caller
from devicetrack.services.user_service import IssuedCredentials, PasswordValidationError
from devicetrack.validation import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)


WAREHOUSE_PAYLOAD = {
    "name": "Harbour Depot",
    "address": "7 Pier Lane",
    "city": "Mumbai",
    "state": "MH",
    "pin": "400001",
    "contact_person": "Kiran",
    "phone": "9222222222",
}


def _store_payload(warehouse_id, name="Lake View Store"):
    return {
        "warehouse_id": warehouse_id,
        "name": name,
        "address": "3 Lake Road",
        "city": "Mumbai",
        "state": "MH",
        "pin": "400002",
        "contact_person": "Nisha",
        "phone": "9333333333",
    }


class TestWarehouseService:

    def test_create_with_admin_login(self, db_session, admin):
        warehouse, creds = warehouse_service.create_warehouse(admin, WAREHOUSE_PAYLOAD, create_admin=True)

        assert warehouse.is_active is True
        assert creds.email == "harbour-depot_admin@warehouse.com"
        user = db.session.query(User).filter_by(email=creds.email).one()
        assert user.role == "warehouse"
        assert user.warehouse_id == warehouse.id
        assert user.first_login is True
        assert user.password_hash != creds.password
        assert user_service.verify_password(creds.password, user.password_hash)

    def test_create_without_admin_login(self, db_session, admin):
        warehouse, creds = warehouse_service.create_warehouse(admin, WAREHOUSE_PAYLOAD)
        assert creds is None
        assert db.session.query(User).filter_by(warehouse_id=warehouse.id).count() == 0

    def test_generated_email_gets_suffix_when_taken(self, db_session, admin):
        _, first = warehouse_service.create_warehouse(admin, WAREHOUSE_PAYLOAD, create_admin=True)
        _, second = warehouse_service.create_warehouse(admin, WAREHOUSE_PAYLOAD, create_admin=True)
        assert first.email == "harbour-depot_admin@warehouse.com"
        assert second.email == "harbour-depot_admin1@warehouse.com"

    def test_missing_field(self, db_session, admin):
        payload = dict(WAREHOUSE_PAYLOAD)
        del payload["pin"]
        with pytest.raises(ValidationError):
            warehouse_service.create_warehouse(admin, payload)

    def test_only_admins_manage(self, db_session, warehouse_caller):
        with pytest.raises(AuthorizationError):
            warehouse_service.create_warehouse(warehouse_caller, WAREHOUSE_PAYLOAD)

    def test_update(self, db_session, warehouse, admin):
        updated = warehouse_service.update_warehouse(admin, warehouse.id, {"city": "Nashik"})
        assert updated.city == "Nashik"
        with pytest.raises(ValidationError):
            warehouse_service.update_warehouse(admin, warehouse.id, {})

    def test_deactivate_refused_while_stocked(self, db_session, make_devices, warehouse, admin):
        make_devices(1)
        with pytest.raises(PreconditionFailedError):
            warehouse_service.set_warehouse_active(admin, warehouse.id, False)
        assert db.session.get(Warehouse, warehouse.id).is_active is True

    def test_deactivate_cascades_to_users(self, db_session, make_user, other_warehouse, admin):
        user = make_user(Role.WAREHOUSE, warehouse=other_warehouse)
        warehouse_service.set_warehouse_active(admin, other_warehouse.id, False)

        refreshed = db.session.get(User, user.id)
        assert refreshed.is_active is False
        with pytest.raises(AuthorizationError):
            Caller.from_user(refreshed)

        # Reactivation leaves users as they are
        warehouse_service.set_warehouse_active(admin, other_warehouse.id, True)
        assert db.session.get(User, user.id).is_active is False

    def test_listing(self, db_session, warehouse, other_warehouse, admin, warehouse_caller, store_caller):
        assert len(warehouse_service.list_warehouses(admin)) == 2
        assert [w.id for w in warehouse_service.list_warehouses(warehouse_caller)] == [warehouse.id]
        assert warehouse_service.get_warehouse(warehouse_caller, warehouse.id).id == warehouse.id
        with pytest.raises(AuthorizationError):
            warehouse_service.get_warehouse(warehouse_caller, other_warehouse.id)
        with pytest.raises(AuthorizationError):
            warehouse_service.list_warehouses(store_caller)


class TestStoreService:

    def test_create_issues_store_login(self, db_session, warehouse, warehouse_caller):
        store, creds = store_service.create_store(warehouse_caller, _store_payload(warehouse.id))

        assert store.warehouse_id == warehouse.id
        assert isinstance(creds, IssuedCredentials)
        assert creds.email == "lake-view-store@store.com"
        assert "***" in repr(creds)
        assert creds.password not in repr(creds)
        user = db.session.query(User).filter_by(store_id=store.id).one()
        assert user.role == "store"

    def test_warehouse_caller_forced_to_own_warehouse(
        self, db_session, warehouse, other_warehouse, warehouse_caller
    ):
        store, _ = store_service.create_store(warehouse_caller, _store_payload(other_warehouse.id))
        assert store.warehouse_id == warehouse.id

    def test_inactive_parent(self, db_session, warehouse, admin):
        warehouse.is_active = False
        db_session.commit()
        with pytest.raises(PreconditionFailedError):
            store_service.create_store(admin, _store_payload(warehouse.id))
        assert db.session.query(Store).count() == 0

    def test_store_user_cannot_create(self, db_session, warehouse, store_caller):
        with pytest.raises(AuthorizationError):
            store_service.create_store(store_caller, _store_payload(warehouse.id))

    def test_move_store_needs_admin(
        self, db_session, store, other_warehouse, warehouse_caller, admin
    ):
        with pytest.raises(AuthorizationError):
            store_service.update_store(warehouse_caller, store.id, {"warehouse_id": other_warehouse.id})
        moved = store_service.update_store(admin, store.id, {"warehouse_id": other_warehouse.id})
        assert moved.warehouse_id == other_warehouse.id

    def test_deactivate_refused_while_stocked(self, db_session, stock_store, store, warehouse_caller):
        stock_store(1)
        with pytest.raises(PreconditionFailedError):
            store_service.set_store_active(warehouse_caller, store.id, False)

    def test_deactivate_cascades_to_users(self, db_session, warehouse, admin):
        store, creds = store_service.create_store(admin, _store_payload(warehouse.id))
        store_service.set_store_active(admin, store.id, False)

        assert db.session.get(Store, store.id).is_active is False
        assert db.session.query(User).filter_by(email=creds.email).one().is_active is False

    def test_reset_password(self, db_session, warehouse, warehouse_caller):
        store, first = store_service.create_store(warehouse_caller, _store_payload(warehouse.id))
        second = store_service.reset_store_password(warehouse_caller, store.id)

        assert second.email == first.email
        user = db.session.query(User).filter_by(email=first.email).one()
        assert user_service.verify_password(second.password, user.password_hash)
        assert not user_service.verify_password(first.password, user.password_hash)
        assert user.first_login is True

    def test_reset_without_login(self, db_session, store, admin):
        with pytest.raises(NotFoundError):
            store_service.reset_store_password(admin, store.id)

    def test_listing(
        self, db_session, store, other_store, admin, warehouse_caller, store_caller, other_store_caller
    ):
        assert len(store_service.list_stores(admin)) == 2
        assert [s.id for s in store_service.list_stores(warehouse_caller)] == [store.id]
        assert [s.id for s in store_service.list_stores(store_caller)] == [store.id]
        assert store_service.get_store(store_caller, store.id).id == store.id
        with pytest.raises(AuthorizationError):
            store_service.get_store(other_store_caller, store.id)


class TestUserService:

    def test_generated_password_is_strong(self, db_session):
        for _ in range(20):
            user_service.validate_password_strength(user_service.generate_password())

    @pytest.mark.parametrize("weak", ["short1!", "alllower1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial11"])
    def test_weak_passwords(self, weak):
        with pytest.raises(PasswordValidationError):
            user_service.validate_password_strength(weak)

    def test_create_and_authenticate(self, db_session, warehouse, admin):
        user, creds = user_service.create_user(
            admin, name="Dev Ops", email="Ops@Example.com", role="warehouse", warehouse_id=warehouse.id,
        )
        assert user.email == "ops@example.com"
        assert user_service.authenticate("OPS@example.com", creds.password).id == user.id
        assert user_service.authenticate("ops@example.com", "wrong") is None

    def test_scoped_role_requires_scope(self, db_session, admin):
        with pytest.raises(ValidationError):
            user_service.create_user(admin, name="S", email="s@example.com", role="store")

    def test_unknown_role(self, db_session, admin):
        with pytest.raises(ValidationError):
            user_service.create_user(admin, name="S", email="s@example.com", role="auditor")

    def test_duplicate_email(self, db_session, admin):
        user_service.create_user(admin, name="A", email="dup@example.com", role="admin")
        with pytest.raises(ConflictError):
            user_service.create_user(admin, name="B", email="DUP@example.com", role="admin")

    def test_only_superadmin_creates_superadmin(self, db_session, admin, superadmin):
        with pytest.raises(AuthorizationError):
            user_service.create_user(admin, name="Root", email="root@example.com", role="superadmin")
        user, _ = user_service.create_user(superadmin, name="Root", email="root@example.com", role="superadmin")
        assert user.role == "superadmin"

    def test_non_admin_denied(self, db_session, warehouse_caller):
        with pytest.raises(AuthorizationError):
            user_service.create_user(warehouse_caller, name="A", email="a@example.com", role="admin")

    def test_change_password(self, db_session, admin):
        user, creds = user_service.create_user(admin, name="A", email="a@example.com", role="admin")

        with pytest.raises(AuthorizationError):
            user_service.change_password(user.id, "not-it", "Fresh#Pass1")
        with pytest.raises(PasswordValidationError):
            user_service.change_password(user.id, creds.password, "weak")

        changed = user_service.change_password(user.id, creds.password, "Fresh#Pass1")
        assert changed.first_login is False
        assert user_service.authenticate("a@example.com", "Fresh#Pass1").id == user.id

    def test_cannot_deactivate_self(self, db_session, admin):
        with pytest.raises(PreconditionFailedError):
            user_service.set_user_active(admin, admin.user_id, False)

    def test_reset_user_password(self, db_session, admin):
        user, first = user_service.create_user(admin, name="A", email="a@example.com", role="admin")
        user_service.change_password(user.id, first.password, "Fresh#Pass1")

        second = user_service.reset_user_password(admin, user.id)
        assert second.email == "a@example.com"
        refreshed = db.session.get(User, user.id)
        assert refreshed.first_login is True
        assert user_service.authenticate("a@example.com", second.password).id == user.id
        assert user_service.authenticate("a@example.com", "Fresh#Pass1") is None

    def test_admin_cannot_reset_superadmin(self, db_session, admin, make_user):
        root = make_user(Role.SUPERADMIN)
        with pytest.raises(AuthorizationError):
            user_service.reset_user_password(admin, root.id)

    def test_deactivated_user_cannot_log_in(self, db_session, admin):
        user, creds = user_service.create_user(admin, name="A", email="a@example.com", role="admin")
        user_service.set_user_active(admin, user.id, False)
        assert user_service.authenticate("a@example.com", creds.password) is None

    def test_create_superadmin_bootstrap(self, db_session):
        user, creds = user_service.create_superadmin(name="Owner", email="owner@example.com")
        assert user.role == "superadmin"
        assert user.first_login is True
        assert user_service.authenticate("owner@example.com", creds.password).id == user.id

    def test_list_users(self, db_session, warehouse, admin, warehouse_caller, store_caller):
        assert {u.role for u in user_service.list_users(admin)} == {"admin", "warehouse", "store"}
        assert [u.id for u in user_service.list_users(admin, role="store")] == [store_caller.user_id]
        assert [u.id for u in user_service.list_users(admin, warehouse_id=warehouse.id)] == [
            warehouse_caller.user_id
        ]
