# Overview: Service-layer operations for the device audit log; append-only history of every lifecycle event.

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..models import Device, DeviceLog, Store
"""
Device Log Invariants (authoritative)

- append_device_log is the only writer.
- No deletes/updates of existing entries, ever.
- Entries are written inside the same DB transaction as the transition they
  record, so a rolled-back transition leaves no entry behind.
- Reads are newest-first (created_at desc, id desc).
"""

# Action tags
ACTION_CREATED = "created"
ACTION_TRANSFERRED = "transferred"
ACTION_RECEIVED = "received"
ACTION_TRANSFER_CANCELLED = "transfer_cancelled"
ACTION_SOLD = "sold"
ACTION_RETURNED = "returned"
ACTION_EMI_PAYMENT = "emi_payment"
ACTION_EMI_COMPLETED = "emi_completed"
ACTION_EMI_CLOSED = "emi_closed"
ACTION_QC_CHECKED = "qc_checked"
ACTION_UPDATED = "updated"
ACTION_DELETED = "deleted"


def append_device_log(
    *,
    device: Device,
    action: str,
    description: str,
    performed_by: int | None,
) -> DeviceLog:
    """
    Append one history entry for a device.

    The device must already have an id (flush first when creating).
    """
    entry = DeviceLog(
        device_id=device.id,
        device_code=device.device_code,
        action=action,
        description=description,
        performed_by=performed_by,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _newest_first(query):
    return query.order_by(DeviceLog.created_at.desc(), DeviceLog.id.desc())


def device_logs(device_id: int, *, limit: Optional[int] = None) -> list[DeviceLog]:
    """History of one device, newest first. Works for deleted devices too."""
    q = _newest_first(db.session.query(DeviceLog).filter(DeviceLog.device_id == device_id))
    if limit:
        q = q.limit(limit)
    return q.all()


def device_logs_by_code(device_code: str) -> list[DeviceLog]:
    q = db.session.query(DeviceLog).filter(DeviceLog.device_code == device_code)
    return _newest_first(q).all()


def recent_activity(
    *,
    warehouse_id: Optional[int] = None,
    store_id: Optional[int] = None,
    limit: int = 20,
) -> list[DeviceLog]:
    """
    Latest entries across devices, optionally limited to devices currently
    held by a warehouse (or its stores) or by a single store.
    """
    q = db.session.query(DeviceLog)
    if store_id is not None or warehouse_id is not None:
        q = q.join(Device, Device.id == DeviceLog.device_id)
        if store_id is not None:
            q = q.filter(Device.store_id == store_id)
        else:
            store_ids = db.session.query(Store.id).filter(Store.warehouse_id == warehouse_id)
            q = q.filter(
                db.or_(
                    Device.warehouse_id == warehouse_id,
                    Device.store_id.in_(store_ids),
                )
            )
    return _newest_first(q).limit(limit).all()
