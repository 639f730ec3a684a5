# Overview: Read-only reporting; dashboard counters and per-store / per-warehouse device summaries.

from __future__ import annotations

from ..extensions import db
from ..models import Device, EmiDetail, Sale, Store, Transfer, TransferItem
from ..permissions import Action, Role
from .audit_service import recent_activity
from .device_service import (
    DEVICE_STATUSES,
    DEVICE_STATUS_IN_STORE,
    DEVICE_STATUS_IN_WAREHOUSE,
    DEVICE_STATUS_RETURNED,
    DEVICE_STATUS_SOLD,
    DEVICE_STATUS_TRANSFERRED,
    visible_devices_query,
)
from .permission_service import Caller, require, require_role, store_scope, warehouse_scope
from .store_service import get_store_or_404
from .transfer_service import TRANSFER_STATUS_RECEIVED
from .warehouse_service import get_warehouse_or_404


def _count(q) -> int:
    return q.order_by(None).count()


def dashboard_stats(caller: Caller) -> dict:
    """Headline counters scoped to what the caller can see."""
    require_role(caller, Action.REPORT_VIEW)

    devices = visible_devices_query(caller)
    sales = db.session.query(Sale)
    emis = (
        db.session.query(EmiDetail)
        .join(Sale, Sale.id == EmiDetail.sale_id)
        .filter(EmiDetail.is_active.is_(True))
    )

    if caller.role == Role.WAREHOUSE:
        store_ids = db.session.query(Store.id).filter(Store.warehouse_id == caller.warehouse_id)
        sales = sales.filter(Sale.store_id.in_(store_ids))
        emis = emis.filter(Sale.store_id.in_(store_ids))
        in_stock = devices.filter(
            Device.warehouse_id == caller.warehouse_id,
            Device.status == DEVICE_STATUS_IN_WAREHOUSE,
        )
    elif caller.role == Role.STORE:
        sales = sales.filter(Sale.store_id == caller.store_id)
        emis = emis.filter(Sale.store_id == caller.store_id)
        in_stock = devices.filter(Device.status == DEVICE_STATUS_IN_STORE)
    else:
        in_stock = devices.filter(
            Device.status.in_((DEVICE_STATUS_IN_WAREHOUSE, DEVICE_STATUS_IN_STORE))
        )

    return {
        "total_devices": _count(devices),
        "devices_in_stock": _count(in_stock),
        "total_sales": _count(sales),
        "active_emis": _count(emis),
        "recent_activity": [
            entry.to_dict()
            for entry in recent_activity(
                warehouse_id=caller.warehouse_id if caller.role == Role.WAREHOUSE else None,
                store_id=caller.store_id if caller.role == Role.STORE else None,
                limit=10,
            )
        ],
    }


def device_status_counts(caller: Caller) -> dict[str, int]:
    """Visible devices per status (every status present, zero when empty)."""
    require_role(caller, Action.REPORT_VIEW)
    rows = (
        visible_devices_query(caller)
        .with_entities(Device.status, db.func.count(Device.id))
        .group_by(Device.status)
        .all()
    )
    counts = {status: 0 for status in DEVICE_STATUSES}
    counts.update({status: n for status, n in rows})
    return counts


def store_device_summary(caller: Caller, store_id: int) -> dict:
    store = get_store_or_404(store_id)
    require(caller, Action.REPORT_VIEW, store_scope(store))

    sent = _count(
        db.session.query(TransferItem)
        .join(Transfer, Transfer.id == TransferItem.transfer_id)
        .filter(Transfer.store_id == store.id, Transfer.status == TRANSFER_STATUS_RECEIVED)
    )
    sold = _count(db.session.query(Sale).filter(Sale.store_id == store.id))
    returned = _count(
        db.session.query(Sale).filter(Sale.store_id == store.id, Sale.returned_at.isnot(None))
    )
    in_stock = _count(
        db.session.query(Device).filter(
            Device.store_id == store.id, Device.status == DEVICE_STATUS_IN_STORE
        )
    )
    return {
        "store_id": store.id,
        "total_sent": sent,
        "total_sold": sold,
        "total_returned": returned,
        "total_in_stock": in_stock,
    }


def warehouse_device_summary(caller: Caller, warehouse_id: int) -> dict:
    warehouse = get_warehouse_or_404(warehouse_id)
    require(caller, Action.REPORT_VIEW, warehouse_scope(warehouse.id))

    store_ids = db.session.query(Store.id).filter(Store.warehouse_id == warehouse.id)
    held = db.session.query(Device).filter(Device.warehouse_id == warehouse.id)
    in_stores = db.session.query(Device).filter(Device.store_id.in_(store_ids))

    in_warehouse = _count(held.filter(Device.status == DEVICE_STATUS_IN_WAREHOUSE))
    transferred = _count(held.filter(Device.status == DEVICE_STATUS_TRANSFERRED))
    returned = _count(held.filter(Device.status == DEVICE_STATUS_RETURNED))
    in_store = _count(in_stores.filter(Device.status == DEVICE_STATUS_IN_STORE))
    sold = _count(in_stores.filter(Device.status == DEVICE_STATUS_SOLD))

    return {
        "warehouse_id": warehouse.id,
        "total": in_warehouse + transferred + returned + in_store + sold,
        "in_warehouse": in_warehouse,
        "transferred_or_in_store": transferred + in_store,
        "sold": sold,
        "returned": returned,
    }
