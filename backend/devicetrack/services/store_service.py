# Overview: Service-layer operations for stores; creation with generated store credentials, edits, soft deactivation.

from __future__ import annotations

from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Device, Store, User, Warehouse
from ..permissions import Action, Role
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
    validate_email,
    validate_payload,
)
from .concurrency import lock_for_update, run_atomic
from .device_service import DEVICE_STATUS_IN_STORE
from .permission_service import Caller, require, require_role, store_scope, warehouse_scope
from .user_service import (
    IssuedCredentials,
    generate_password,
    hash_password,
    issue_user,
    slugify,
    unique_generated_email,
)


STORE_POLICY = ModelValidationPolicy(
    writable_fields={
        "warehouse_id", "name", "address", "city", "state", "pin",
        "pan", "gst", "contact_person", "phone", "email",
    },
    required_on_create={"warehouse_id", "name", "address", "city", "state", "pin", "contact_person", "phone"},
)


def _clean(payload: dict, *, partial: bool) -> dict:
    cleaned = validate_payload(model=Store, payload=payload, policy=STORE_POLICY, partial=partial)
    if "email" in cleaned:
        cleaned["email"] = validate_email(cleaned["email"], required=False)
    return cleaned


def get_store_or_404(store_id: int, *, lock: bool = False) -> Store:
    q = db.session.query(Store).filter_by(id=store_id)
    if lock:
        q = lock_for_update(q)
    store = q.first()
    if store is None:
        raise NotFoundError(f"Store {store_id} not found")
    return store


def _store_user(store: Store) -> Optional[User]:
    return (
        db.session.query(User)
        .filter(User.store_id == store.id, User.role == Role.STORE.value)
        .order_by(User.id.asc())
        .first()
    )


def create_store(caller: Caller, payload: dict) -> tuple[Store, IssuedCredentials]:
    """
    Create a store under an active warehouse plus its store user
    (<slug>@store.com). The one-shot credentials are returned.

    Warehouse-role callers always create under their own warehouse.
    """
    payload = dict(payload or {})
    if caller.role == Role.WAREHOUSE:
        payload["warehouse_id"] = caller.warehouse_id
    data = _clean(payload, partial=False)
    require(caller, Action.STORE_MANAGE, warehouse_scope(data["warehouse_id"]))

    def _op():
        warehouse = db.session.get(Warehouse, data["warehouse_id"])
        if warehouse is None:
            raise NotFoundError(f"Warehouse {data['warehouse_id']} not found")
        if not warehouse.is_active:
            raise PreconditionFailedError("Warehouse is inactive.")

        store = Store(is_active=True, **data)
        db.session.add(store)
        db.session.flush()

        _, creds = issue_user(
            name=f"{store.name} User",
            email=unique_generated_email(slugify(store.name), "store.com"),
            role=Role.STORE,
            store_id=store.id,
        )
        return store, creds

    store, creds = run_atomic(_op)
    current_app.logger.info("Store %s created under warehouse %s", store.id, store.warehouse_id)
    return store, creds


def update_store(caller: Caller, store_id: int, payload: dict) -> Store:
    patch = _clean(payload, partial=True)
    if not patch:
        raise ValidationError("No fields to update")

    def _op():
        store = get_store_or_404(store_id, lock=True)
        require(caller, Action.STORE_MANAGE, store_scope(store))

        if "warehouse_id" in patch and patch["warehouse_id"] != store.warehouse_id:
            # Moving a store to another warehouse is an admin decision
            require(caller, Action.WAREHOUSE_MANAGE)
            target = db.session.get(Warehouse, patch["warehouse_id"])
            if target is None:
                raise NotFoundError(f"Warehouse {patch['warehouse_id']} not found")
            if not target.is_active:
                raise PreconditionFailedError("Warehouse is inactive.")

        for key, value in patch.items():
            setattr(store, key, value)
        return store

    return run_atomic(_op)


def set_store_active(caller: Caller, store_id: int, active: bool) -> Store:
    """
    Activate or deactivate a store.

    Deactivation is refused while devices are in_store and deactivates the
    store's users in the same transaction. Activation does not cascade.
    """
    def _op():
        store = get_store_or_404(store_id, lock=True)
        require(caller, Action.STORE_MANAGE, store_scope(store))

        if active:
            store.is_active = True
            return store

        in_store = (
            db.session.query(db.func.count(Device.id))
            .filter(Device.store_id == store.id, Device.status == DEVICE_STATUS_IN_STORE)
            .scalar()
        )
        if in_store:
            raise PreconditionFailedError(
                f"Store still holds {in_store} device(s) and cannot be deactivated."
            )

        store.is_active = False
        (
            db.session.query(User)
            .filter(User.store_id == store.id, User.is_active.is_(True))
            .update({User.is_active: False}, synchronize_session="fetch")
        )
        return store

    store = run_atomic(_op)
    current_app.logger.info("Store %s %s", store_id, "activated" if active else "deactivated")
    return store


def reset_store_password(caller: Caller, store_id: int) -> IssuedCredentials:
    """New one-shot password for the store's login; forces a change at next login."""
    def _op():
        store = get_store_or_404(store_id)
        require(caller, Action.STORE_MANAGE, store_scope(store))

        user = _store_user(store)
        if user is None:
            raise NotFoundError(f"Store {store_id} has no login user")

        password = generate_password()
        user.password_hash = hash_password(password)
        user.first_login = True
        return IssuedCredentials(email=user.email, password=password)

    creds = run_atomic(_op)
    current_app.logger.info("Store %s password reset", store_id)
    return creds


def get_store(caller: Caller, store_id: int) -> Store:
    store = get_store_or_404(store_id)
    if caller.role == Role.STORE:
        if store.id != caller.store_id:
            require(caller, Action.STORE_MANAGE, store_scope(store))
        return store
    require(caller, Action.STORE_MANAGE, store_scope(store))
    return store


def list_stores(
    caller: Caller,
    *,
    warehouse_id: Optional[int] = None,
    active: Optional[bool] = None,
) -> list[Store]:
    q = db.session.query(Store)
    if caller.role == Role.STORE:
        q = q.filter(Store.id == caller.store_id)
    else:
        require_role(caller, Action.STORE_MANAGE)
        if caller.role == Role.WAREHOUSE:
            q = q.filter(Store.warehouse_id == caller.warehouse_id)

    if warehouse_id is not None:
        q = q.filter(Store.warehouse_id == warehouse_id)
    if active is not None:
        q = q.filter(Store.is_active.is_(bool(active)))
    return q.order_by(Store.name.asc(), Store.id.asc()).all()
