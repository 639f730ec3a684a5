# backend/devicetrack/services/device_service.py
"""
Device registry: intake, edits, QC, QR artifacts, deletion and lookups.

STATE MACHINE (status -> location):
- in_warehouse: warehouse_id set, store_id NULL
- transferred:  source warehouse_id set, store_id NULL
- in_store:     store_id set, warehouse_id NULL
- sold:         store_id set, warehouse_id NULL
- returned:     selling store's parent warehouse_id set, store_id NULL

Every transition appends exactly one DeviceLog entry in the same transaction.
A failing guard raises before anything is mutated.
"""
from __future__ import annotations

import json
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Device, DeviceLog, QcCheck, Store, TransferItem, Warehouse
from ..permissions import Action, Role
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
    normalize_imei,
    optional_text,
    require_text,
    validate_payload,
)
from ..time_utils import parse_iso_date
from . import artifact_service
from .audit_service import (
    ACTION_CREATED,
    ACTION_DELETED,
    ACTION_QC_CHECKED,
    ACTION_UPDATED,
    append_device_log,
    device_logs,
)
from .concurrency import lock_for_update, run_atomic
from .identifier_service import generate_device_code
from .permission_service import (
    Caller,
    device_scope,
    require,
    require_role,
    warehouse_scope,
)


# Device status constants
DEVICE_STATUS_IN_WAREHOUSE = "in_warehouse"
DEVICE_STATUS_TRANSFERRED = "transferred"
DEVICE_STATUS_IN_STORE = "in_store"
DEVICE_STATUS_SOLD = "sold"
DEVICE_STATUS_RETURNED = "returned"

DEVICE_STATUSES = (
    DEVICE_STATUS_IN_WAREHOUSE,
    DEVICE_STATUS_TRANSFERRED,
    DEVICE_STATUS_IN_STORE,
    DEVICE_STATUS_SOLD,
    DEVICE_STATUS_RETURNED,
)

# Statuses a transfer may pick a device up from
TRANSFERABLE_STATUSES = (DEVICE_STATUS_IN_WAREHOUSE, DEVICE_STATUS_RETURNED)

WAREHOUSE_HELD_STATUSES = (
    DEVICE_STATUS_IN_WAREHOUSE,
    DEVICE_STATUS_TRANSFERRED,
    DEVICE_STATUS_RETURNED,
)

QC_CHECK_TYPES = ("warehouse", "store", "customer")

DEVICE_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "model", "imei_1", "imei_2", "purchase_date"},
)


def location_is_consistent(device: Device) -> bool:
    """True when warehouse_id / store_id match what the status requires."""
    if device.status in WAREHOUSE_HELD_STATUSES:
        return device.warehouse_id is not None and device.store_id is None
    if device.status in (DEVICE_STATUS_IN_STORE, DEVICE_STATUS_SOLD):
        return device.store_id is not None and device.warehouse_id is None
    return False


def get_device_or_404(device_id: int, *, lock: bool = False) -> Device:
    q = db.session.query(Device).filter_by(id=device_id)
    if lock:
        q = lock_for_update(q)
    device = q.first()
    if device is None:
        raise NotFoundError(f"Device {device_id} not found")
    return device


def imei_in_use(imei: str, *, exclude_device_id: Optional[int] = None) -> bool:
    """An IMEI value is unique across both IMEI columns of all devices."""
    q = db.session.query(Device.id).filter(
        db.or_(Device.imei_1 == imei, Device.imei_2 == imei)
    )
    if exclude_device_id is not None:
        q = q.filter(Device.id != exclude_device_id)
    return db.session.query(q.exists()).scalar()


def _check_imeis(imei_1: str, imei_2: Optional[str], *, exclude_device_id: Optional[int] = None) -> None:
    if imei_2 is not None and imei_2 == imei_1:
        raise ValidationError("imei_2 must differ from imei_1")
    for field, value in (("imei_1", imei_1), ("imei_2", imei_2)):
        if value is not None and imei_in_use(value, exclude_device_id=exclude_device_id):
            raise ConflictError(f"IMEI {value} is already registered", {"field": field})


def create_device(
    caller: Caller,
    *,
    name: str,
    model: str,
    imei_1: str,
    imei_2: str | None = None,
    warehouse_id: int | None = None,
    purchase_date=None,
) -> Device:
    """
    Register a new device into a warehouse (status in_warehouse).

    Warehouse-role callers always create into their own warehouse; other
    callers must name the warehouse.
    """
    name = require_text(name, "name", max_length=255)
    model = require_text(model, "model", max_length=100)
    imei_1 = normalize_imei(imei_1, "imei_1", required=True)
    imei_2 = normalize_imei(imei_2, "imei_2", required=False)
    try:
        purchase_date = parse_iso_date(purchase_date)
    except ValueError:
        raise ValidationError("purchase_date must be an ISO-8601 date")

    if caller.role == Role.WAREHOUSE:
        warehouse_id = caller.warehouse_id
    if not warehouse_id:
        raise ValidationError("warehouse_id is required")

    require(caller, Action.DEVICE_CREATE, warehouse_scope(warehouse_id))

    def _op():
        warehouse = db.session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise NotFoundError(f"Warehouse {warehouse_id} not found")
        if not warehouse.is_active:
            raise PreconditionFailedError("Warehouse is inactive.")

        _check_imeis(imei_1, imei_2)

        device = Device(
            device_code=generate_device_code(model),
            name=name,
            model=model,
            imei_1=imei_1,
            imei_2=imei_2,
            status=DEVICE_STATUS_IN_WAREHOUSE,
            warehouse_id=warehouse.id,
            store_id=None,
            on_loan=False,
            purchase_date=purchase_date,
        )
        db.session.add(device)
        db.session.flush()

        append_device_log(
            device=device,
            action=ACTION_CREATED,
            description="Device created and added to warehouse inventory.",
            performed_by=caller.user_id,
        )
        return device

    device = run_atomic(_op)
    current_app.logger.info("Device %s created in warehouse %s", device.device_code, warehouse_id)
    return device


def update_device(caller: Caller, device_id: int, patch: dict) -> Device:
    """Edit descriptive fields (name, model, IMEIs, purchase date)."""
    cleaned = validate_payload(model=Device, payload=patch, policy=DEVICE_UPDATE_POLICY, partial=True)
    if not cleaned:
        raise ValidationError("No fields to update")
    if "imei_1" in cleaned:
        cleaned["imei_1"] = normalize_imei(cleaned["imei_1"], "imei_1", required=True)
    if "imei_2" in cleaned:
        cleaned["imei_2"] = normalize_imei(cleaned["imei_2"], "imei_2", required=False)

    def _op():
        device = get_device_or_404(device_id, lock=True)
        require(caller, Action.DEVICE_UPDATE, device_scope(device))

        imei_1 = cleaned.get("imei_1", device.imei_1)
        imei_2 = cleaned.get("imei_2", device.imei_2)
        if "imei_1" in cleaned or "imei_2" in cleaned:
            _check_imeis(imei_1, imei_2, exclude_device_id=device.id)

        for key, value in cleaned.items():
            setattr(device, key, value)

        append_device_log(
            device=device,
            action=ACTION_UPDATED,
            description="Device details updated.",
            performed_by=caller.user_id,
        )
        return device

    return run_atomic(_op)


def delete_device(caller: Caller, device_id: int) -> None:
    """
    Physically remove a device that never left the warehouse.

    The history survives (DeviceLog has no FK); the QR artifact is discarded
    once the delete has committed.
    """
    qr_key: list[Optional[str]] = [None]

    def _op():
        device = get_device_or_404(device_id, lock=True)
        require(caller, Action.DEVICE_DELETE, device_scope(device))

        if device.status != DEVICE_STATUS_IN_WAREHOUSE:
            raise PreconditionFailedError("Only devices in warehouse can be deleted.")
        ever_transferred = db.session.query(
            db.session.query(TransferItem.id).filter(TransferItem.device_id == device.id).exists()
        ).scalar()
        if ever_transferred:
            raise PreconditionFailedError("Device has transfer history and cannot be deleted.")

        append_device_log(
            device=device,
            action=ACTION_DELETED,
            description="Device deleted from inventory.",
            performed_by=caller.user_id,
        )
        qr_key[0] = device.qr_code
        db.session.delete(device)

    run_atomic(_op)
    current_app.logger.info("Device %s deleted", device_id)

    if qr_key[0]:
        artifact_service.delete(qr_key[0])


def perform_qc(
    caller: Caller,
    device_id: int,
    *,
    check_type: str,
    passed: bool,
    remarks: str | None = None,
) -> QcCheck:
    if check_type not in QC_CHECK_TYPES:
        raise ValidationError(f"check_type must be one of: {', '.join(QC_CHECK_TYPES)}")
    if not isinstance(passed, bool):
        raise ValidationError("passed must be a boolean")
    remarks = optional_text(remarks, "remarks", max_length=500)

    def _op():
        device = get_device_or_404(device_id, lock=True)
        require(caller, Action.DEVICE_QC, device_scope(device))

        check = QcCheck(
            device_id=device.id,
            check_type=check_type,
            passed=passed,
            remarks=remarks,
            performed_by=caller.user_id,
        )
        db.session.add(check)

        description = "QC check performed: " + ("Passed" if passed else "Failed")
        if remarks:
            description += f" - {remarks}"
        append_device_log(
            device=device,
            action=ACTION_QC_CHECKED,
            description=description,
            performed_by=caller.user_id,
        )
        return check

    return run_atomic(_op)


def qr_payload(device: Device) -> str:
    """JSON document a QR renderer should encode for this device."""
    return json.dumps(
        {
            "device_code": device.device_code,
            "name": device.name,
            "model": device.model,
            "imei_1": device.imei_1,
            "imei_2": device.imei_2,
        },
        sort_keys=True,
    )


def qr_artifact_key(device: Device) -> str:
    return f"qrcodes/{device.device_code}.png"


def attach_qr_artifact(caller: Caller, device_id: int, blob: bytes) -> Device:
    """Store an externally rendered QR image and record its key on the device."""
    device = get_device_or_404(device_id)
    require(caller, Action.DEVICE_UPDATE, device_scope(device))

    key = artifact_service.save(qr_artifact_key(device), blob)

    def _op():
        locked = get_device_or_404(device_id, lock=True)
        locked.qr_code = key
        return locked

    return run_atomic(_op)


def get_device(caller: Caller, device_id: int) -> Device:
    device = get_device_or_404(device_id)
    require(caller, Action.DEVICE_VIEW, device_scope(device))
    return device


def visible_devices_query(caller: Caller):
    """Devices the caller may see: everything, its warehouse (and that warehouse's stores), or its store."""
    q = db.session.query(Device)
    if caller.is_admin:
        return q
    if caller.role == Role.WAREHOUSE:
        store_ids = db.session.query(Store.id).filter(Store.warehouse_id == caller.warehouse_id)
        return q.filter(
            db.or_(Device.warehouse_id == caller.warehouse_id, Device.store_id.in_(store_ids))
        )
    if caller.role == Role.STORE:
        return q.filter(Device.store_id == caller.store_id)
    return q.filter(db.false())


def list_devices(
    caller: Caller,
    *,
    status: str | None = None,
    model: str | None = None,
    imei: str | None = None,
    device_code: str | None = None,
    warehouse_id: int | None = None,
    store_id: int | None = None,
    limit: int | None = None,
) -> list[Device]:
    """Filtered device list, always intersected with what the caller may see. Newest first."""
    require_role(caller, Action.DEVICE_VIEW)
    if status is not None and status not in DEVICE_STATUSES:
        raise ValidationError(f"Unknown status: {status}")

    q = visible_devices_query(caller)
    if status:
        q = q.filter(Device.status == status)
    if model:
        q = q.filter(Device.model.ilike(f"%{model.strip()}%"))
    if imei:
        pattern = f"%{imei.strip()}%"
        q = q.filter(db.or_(Device.imei_1.ilike(pattern), Device.imei_2.ilike(pattern)))
    if device_code:
        q = q.filter(Device.device_code.ilike(f"%{device_code.strip()}%"))
    if warehouse_id is not None:
        q = q.filter(Device.warehouse_id == warehouse_id)
    if store_id is not None:
        q = q.filter(Device.store_id == store_id)

    q = q.order_by(Device.created_at.desc(), Device.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()


def list_device_logs(caller: Caller, device_id: int) -> list[DeviceLog]:
    """History of a visible device, newest first."""
    device = get_device_or_404(device_id)
    require(caller, Action.DEVICE_VIEW, device_scope(device))
    return device_logs(device.id)
