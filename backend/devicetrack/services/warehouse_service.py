# Overview: Service-layer operations for warehouses; creation with an optional generated admin, edits, soft deactivation.

from __future__ import annotations

from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Device, User, Warehouse
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
from .device_service import DEVICE_STATUS_IN_WAREHOUSE, DEVICE_STATUS_RETURNED
from .permission_service import Caller, require, warehouse_scope
from .user_service import IssuedCredentials, issue_user, slugify, unique_generated_email


WAREHOUSE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "address", "city", "state", "pin", "contact_person", "phone", "email"},
    required_on_create={"name", "address", "city", "state", "pin", "contact_person", "phone"},
)

IN_STOCK_STATUSES = (DEVICE_STATUS_IN_WAREHOUSE, DEVICE_STATUS_RETURNED)


def _clean(payload: dict, *, partial: bool) -> dict:
    cleaned = validate_payload(model=Warehouse, payload=payload, policy=WAREHOUSE_POLICY, partial=partial)
    if "email" in cleaned:
        cleaned["email"] = validate_email(cleaned["email"], required=False)
    return cleaned


def get_warehouse_or_404(warehouse_id: int, *, lock: bool = False) -> Warehouse:
    q = db.session.query(Warehouse).filter_by(id=warehouse_id)
    if lock:
        q = lock_for_update(q)
    warehouse = q.first()
    if warehouse is None:
        raise NotFoundError(f"Warehouse {warehouse_id} not found")
    return warehouse


def create_warehouse(
    caller: Caller,
    payload: dict,
    *,
    create_admin: bool = False,
) -> tuple[Warehouse, Optional[IssuedCredentials]]:
    """
    Create a warehouse; with create_admin, also a warehouse user
    (<slug>_admin@warehouse.com) whose one-shot credentials are returned.
    """
    require(caller, Action.WAREHOUSE_MANAGE)
    data = _clean(payload, partial=False)

    def _op():
        warehouse = Warehouse(is_active=True, **data)
        db.session.add(warehouse)
        db.session.flush()

        creds = None
        if create_admin:
            email = unique_generated_email(f"{slugify(warehouse.name)}_admin", "warehouse.com")
            _, creds = issue_user(
                name=f"{warehouse.name} Admin",
                email=email,
                role=Role.WAREHOUSE,
                warehouse_id=warehouse.id,
            )
        return warehouse, creds

    warehouse, creds = run_atomic(_op)
    current_app.logger.info("Warehouse %s created (admin=%s)", warehouse.id, bool(creds))
    return warehouse, creds


def update_warehouse(caller: Caller, warehouse_id: int, payload: dict) -> Warehouse:
    require(caller, Action.WAREHOUSE_MANAGE)
    patch = _clean(payload, partial=True)
    if not patch:
        raise ValidationError("No fields to update")

    def _op():
        warehouse = get_warehouse_or_404(warehouse_id, lock=True)
        for key, value in patch.items():
            setattr(warehouse, key, value)
        return warehouse

    return run_atomic(_op)


def set_warehouse_active(caller: Caller, warehouse_id: int, active: bool) -> Warehouse:
    """
    Activate or deactivate a warehouse.

    Deactivation is refused while devices are in stock and deactivates the
    warehouse's users in the same transaction. Activation does not cascade.
    """
    require(caller, Action.WAREHOUSE_MANAGE)

    def _op():
        warehouse = get_warehouse_or_404(warehouse_id, lock=True)
        if active:
            warehouse.is_active = True
            return warehouse

        in_stock = (
            db.session.query(db.func.count(Device.id))
            .filter(Device.warehouse_id == warehouse.id, Device.status.in_(IN_STOCK_STATUSES))
            .scalar()
        )
        if in_stock:
            raise PreconditionFailedError(
                f"Warehouse still holds {in_stock} device(s) and cannot be deactivated."
            )

        warehouse.is_active = False
        (
            db.session.query(User)
            .filter(User.warehouse_id == warehouse.id, User.is_active.is_(True))
            .update({User.is_active: False}, synchronize_session="fetch")
        )
        return warehouse

    warehouse = run_atomic(_op)
    current_app.logger.info("Warehouse %s %s", warehouse_id, "activated" if active else "deactivated")
    return warehouse


def get_warehouse(caller: Caller, warehouse_id: int) -> Warehouse:
    warehouse = get_warehouse_or_404(warehouse_id)
    if caller.role == Role.WAREHOUSE:
        require(caller, Action.STORE_MANAGE, warehouse_scope(warehouse.id))
    else:
        require(caller, Action.WAREHOUSE_MANAGE)
    return warehouse


def list_warehouses(caller: Caller, *, active: Optional[bool] = None) -> list[Warehouse]:
    q = db.session.query(Warehouse)
    if caller.role == Role.WAREHOUSE:
        q = q.filter(Warehouse.id == caller.warehouse_id)
    else:
        require(caller, Action.WAREHOUSE_MANAGE)
    if active is not None:
        q = q.filter(Warehouse.is_active.is_(bool(active)))
    return q.order_by(Warehouse.name.asc(), Warehouse.id.asc()).all()
