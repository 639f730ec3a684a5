# backend/devicetrack/services/return_service.py
"""
Customer returns.

WHY: A returned device goes back to stock, not back to the shelf it was
sold from: it is relocated to the selling store's parent warehouse and
must be transferred again before it can be resold.

RULES:
- Only a sold device under an open sale can be returned.
- An EMI sale with unpaid installments on an active loan cannot be returned.
  An administratively closed loan does not block the return.
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Device, EmiDetail, Sale, Store
from ..time_utils import utcnow
from ..validation import PreconditionFailedError, require_text
from ..permissions import Action
from .audit_service import ACTION_RETURNED, append_device_log
from .concurrency import lock_for_update, run_atomic
from .device_service import DEVICE_STATUS_RETURNED, DEVICE_STATUS_SOLD
from .permission_service import Caller, require, sale_scope
from .sales_service import get_sale_or_404


def has_pending_emi(sale: Sale, device: Device) -> bool:
    if not (device.on_loan and sale.on_emi):
        return False
    emi = db.session.query(EmiDetail).filter_by(sale_id=sale.id).first()
    if emi is None:
        return False
    return emi.is_active and not emi.is_fully_paid()


def return_device(caller: Caller, sale_id: int, reason: str) -> Sale:
    """
    Take a sold device back from the customer.

    Returns:
        Sale: the sale, stamped returned

    Raises:
        ValidationError: reason missing
        PreconditionFailedError: device not sold under this sale, or EMI pending
    """
    reason = require_text(reason, "return_reason", max_length=500)

    def _op():
        sale = get_sale_or_404(sale_id, lock=True)
        require(caller, Action.SALE_RETURN, sale_scope(sale))

        device = lock_for_update(db.session.query(Device).filter_by(id=sale.device_id)).first()
        if device is None or sale.returned_at is not None or device.status != DEVICE_STATUS_SOLD:
            raise PreconditionFailedError("Device is not in sold status.")

        if has_pending_emi(sale, device):
            raise PreconditionFailedError("Device cannot be returned with pending EMI payments.")

        store = db.session.get(Store, sale.store_id)

        device.status = DEVICE_STATUS_RETURNED
        device.on_loan = False
        device.store_id = None
        device.warehouse_id = store.warehouse_id

        emi = db.session.query(EmiDetail).filter_by(sale_id=sale.id).first()
        if emi is not None and emi.is_active:
            emi.is_active = False

        sale.returned_at = utcnow()
        sale.returned_by = caller.user_id
        sale.return_reason = reason

        append_device_log(
            device=device,
            action=ACTION_RETURNED,
            description=f"Device returned by customer. Reason: {reason}",
            performed_by=caller.user_id,
        )
        return sale

    sale = run_atomic(_op)
    current_app.logger.info("Sale %s returned; device %s back to warehouse stock", sale.invoice_number, sale.device_id)
    return sale
