# backend/devicetrack/services/transfer_service.py
"""
Warehouse-to-store transfer service.

WHY: Devices leave a warehouse only as part of a transfer batch so every
movement has a document, an initiator and a receiver.

LIFECYCLE:
1. pending: transfer created, every device marked transferred
2. in_transit: dispatched (no device change, no log entry)
3. received: devices now in_store at the destination store
4. cancelled: devices back in_warehouse (from pending or in_transit)

A batch is all-or-nothing: one bad device rejects the whole transfer.
"""
from __future__ import annotations

from typing import Iterable, Optional

from flask import current_app

from ..extensions import db
from ..models import Device, Store, Transfer, TransferItem, Warehouse
from ..permissions import Action, Role
from ..time_utils import today, utcnow
from ..validation import (
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
    optional_text,
)
from .audit_service import (
    ACTION_RECEIVED,
    ACTION_TRANSFER_CANCELLED,
    ACTION_TRANSFERRED,
    append_device_log,
)
from .concurrency import lock_for_update, run_atomic
from .device_service import (
    DEVICE_STATUS_IN_STORE,
    DEVICE_STATUS_IN_WAREHOUSE,
    DEVICE_STATUS_TRANSFERRED,
    TRANSFERABLE_STATUSES,
)
from .permission_service import (
    Caller,
    require,
    require_role,
    transfer_scope,
    warehouse_scope,
)


# Transfer status constants
TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_IN_TRANSIT = "in_transit"
TRANSFER_STATUS_RECEIVED = "received"
TRANSFER_STATUS_CANCELLED = "cancelled"

TRANSFER_STATUSES = (
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_RECEIVED,
    TRANSFER_STATUS_CANCELLED,
)

OPEN_TRANSFER_STATUSES = (TRANSFER_STATUS_PENDING, TRANSFER_STATUS_IN_TRANSIT)


def _clean_device_ids(device_ids: Iterable[int]) -> list[int]:
    if device_ids is None:
        raise ValidationError("At least one device is required")
    ids = list(device_ids)
    if not ids:
        raise ValidationError("At least one device is required")
    for device_id in ids:
        if isinstance(device_id, bool) or not isinstance(device_id, int):
            raise ValidationError("device_ids must be integers")
    if len(set(ids)) != len(ids):
        raise ValidationError("device_ids must not contain duplicates")
    return ids


def get_transfer_or_404(transfer_id: int, *, lock: bool = False) -> Transfer:
    q = db.session.query(Transfer).filter_by(id=transfer_id)
    if lock:
        q = lock_for_update(q)
    transfer = q.first()
    if transfer is None:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return transfer


def _transfer_devices(transfer: Transfer) -> list[Device]:
    device_ids = [item.device_id for item in transfer.items]
    return (
        lock_for_update(db.session.query(Device).filter(Device.id.in_(device_ids)))
        .order_by(Device.id)
        .all()
    )


def create_transfer(
    caller: Caller,
    *,
    warehouse_id: int | None,
    store_id: int,
    device_ids: Iterable[int],
    notes: str | None = None,
    qc_passed: bool = False,
) -> Transfer:
    """
    Create a transfer batch (status pending) and move every device to transferred.

    Raises:
        ValidationError: empty or duplicate device list
        NotFoundError: warehouse, store or a device does not exist
        PreconditionFailedError: store inactive / not under the warehouse, or a
            device not in the warehouse or not transferable
    """
    ids = _clean_device_ids(device_ids)
    notes = optional_text(notes, "notes")
    if caller.role == Role.WAREHOUSE:
        warehouse_id = caller.warehouse_id
    if not warehouse_id:
        raise ValidationError("warehouse_id is required")
    if not store_id:
        raise ValidationError("store_id is required")

    require(caller, Action.TRANSFER_CREATE, warehouse_scope(warehouse_id))

    def _op():
        warehouse = db.session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise NotFoundError(f"Warehouse {warehouse_id} not found")
        if not warehouse.is_active:
            raise PreconditionFailedError("Warehouse is inactive.")

        store = db.session.get(Store, store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")
        if not store.is_active:
            raise PreconditionFailedError("Store is inactive.")
        if store.warehouse_id != warehouse.id:
            raise PreconditionFailedError("Store does not belong to the selected warehouse.")

        devices = (
            lock_for_update(db.session.query(Device).filter(Device.id.in_(ids)))
            .order_by(Device.id)
            .all()
        )
        found = {d.id for d in devices}
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError(f"Devices not found: {missing}")

        for device in devices:
            if device.status not in TRANSFERABLE_STATUSES:
                raise PreconditionFailedError(
                    f"Device {device.device_code} is not available for transfer."
                )
            if device.warehouse_id != warehouse.id:
                raise PreconditionFailedError(
                    f"Device {device.device_code} does not belong to the selected warehouse."
                )

        transfer = Transfer(
            warehouse_id=warehouse.id,
            store_id=store.id,
            status=TRANSFER_STATUS_PENDING,
            initiated_by=caller.user_id,
            transfer_date=today(),
            notes=notes,
            qc_passed=bool(qc_passed),
        )
        db.session.add(transfer)
        db.session.flush()

        for device in devices:
            db.session.add(TransferItem(transfer_id=transfer.id, device_id=device.id))
            device.status = DEVICE_STATUS_TRANSFERRED
            device.store_id = None
            append_device_log(
                device=device,
                action=ACTION_TRANSFERRED,
                description=f"Device transferred from warehouse to store (Transfer #{transfer.id})",
                performed_by=caller.user_id,
            )

        db.session.flush()
        return transfer

    transfer = run_atomic(_op)
    current_app.logger.info(
        "Transfer %s created: warehouse %s -> store %s (%d devices)",
        transfer.id, warehouse_id, store_id, len(ids),
    )
    return transfer


def mark_in_transit(caller: Caller, transfer_id: int) -> Transfer:
    """pending -> in_transit. Devices are untouched."""
    def _op():
        transfer = get_transfer_or_404(transfer_id, lock=True)
        require(caller, Action.TRANSFER_IN_TRANSIT, transfer_scope(transfer))

        if transfer.status != TRANSFER_STATUS_PENDING:
            raise PreconditionFailedError("Only pending transfers can be marked in transit.")

        transfer.status = TRANSFER_STATUS_IN_TRANSIT
        return transfer

    return run_atomic(_op)


def receive_transfer(caller: Caller, transfer_id: int) -> Transfer:
    """Receive every device of an open transfer into the destination store."""
    def _op():
        transfer = get_transfer_or_404(transfer_id, lock=True)
        require(caller, Action.TRANSFER_RECEIVE, transfer_scope(transfer))

        if transfer.status not in OPEN_TRANSFER_STATUSES:
            raise PreconditionFailedError("This transfer cannot be received.")

        for device in _transfer_devices(transfer):
            if device.status != DEVICE_STATUS_TRANSFERRED:
                raise PreconditionFailedError(
                    f"Device {device.device_code} is not in transferred status."
                )
            device.status = DEVICE_STATUS_IN_STORE
            device.store_id = transfer.store_id
            device.warehouse_id = None
            append_device_log(
                device=device,
                action=ACTION_RECEIVED,
                description=f"Device received at store (Transfer #{transfer.id})",
                performed_by=caller.user_id,
            )

        transfer.status = TRANSFER_STATUS_RECEIVED
        transfer.received_by = caller.user_id
        transfer.received_date = today()
        return transfer

    transfer = run_atomic(_op)
    current_app.logger.info("Transfer %s received at store %s", transfer.id, transfer.store_id)
    return transfer


def cancel_transfer(caller: Caller, transfer_id: int, reason: str | None = None) -> Transfer:
    """Cancel an open transfer; devices go back to in_warehouse at the source warehouse."""
    reason = optional_text(reason, "reason")

    def _op():
        transfer = get_transfer_or_404(transfer_id, lock=True)
        require(caller, Action.TRANSFER_CANCEL, transfer_scope(transfer))

        if transfer.status not in OPEN_TRANSFER_STATUSES:
            raise PreconditionFailedError("This transfer cannot be cancelled.")

        for device in _transfer_devices(transfer):
            if device.status != DEVICE_STATUS_TRANSFERRED:
                raise PreconditionFailedError(
                    f"Device {device.device_code} is not in transferred status."
                )
            device.status = DEVICE_STATUS_IN_WAREHOUSE
            device.store_id = None
            device.warehouse_id = transfer.warehouse_id
            append_device_log(
                device=device,
                action=ACTION_TRANSFER_CANCELLED,
                description=(
                    f"Transfer cancelled, device returned to warehouse (Transfer #{transfer.id})"
                ),
                performed_by=caller.user_id,
            )

        transfer.status = TRANSFER_STATUS_CANCELLED
        transfer.cancelled_by = caller.user_id
        transfer.cancelled_at = utcnow()
        transfer.cancellation_reason = reason
        return transfer

    transfer = run_atomic(_op)
    current_app.logger.info("Transfer %s cancelled", transfer.id)
    return transfer


def get_transfer_summary(caller: Caller, transfer_id: int) -> dict:
    """Transfer header plus its devices."""
    transfer = get_transfer_or_404(transfer_id)
    require(caller, Action.TRANSFER_VIEW, transfer_scope(transfer))

    devices = [item.device for item in transfer.items]
    summary = transfer.to_dict()
    summary["device_count"] = len(devices)
    summary["devices"] = [d.to_dict() for d in devices if d is not None]
    return summary


def list_transfers(
    caller: Caller,
    *,
    status: Optional[str] = None,
    warehouse_id: Optional[int] = None,
    store_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> list[Transfer]:
    """Transfers visible to the caller, newest first."""
    require_role(caller, Action.TRANSFER_VIEW)
    if status is not None and status not in TRANSFER_STATUSES:
        raise ValidationError(f"Unknown status: {status}")

    q = db.session.query(Transfer)
    if caller.role == Role.WAREHOUSE:
        q = q.filter(Transfer.warehouse_id == caller.warehouse_id)
    elif caller.role == Role.STORE:
        q = q.filter(Transfer.store_id == caller.store_id)

    if status:
        q = q.filter(Transfer.status == status)
    if warehouse_id is not None:
        q = q.filter(Transfer.warehouse_id == warehouse_id)
    if store_id is not None:
        q = q.filter(Transfer.store_id == store_id)

    q = q.order_by(Transfer.created_at.desc(), Transfer.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()
