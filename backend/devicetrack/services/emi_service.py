# backend/devicetrack/services/emi_service.py
"""
EMI (installment loan) ledger.

INVARIANTS:
- 0 <= installments_paid <= total_installments
- When installments_paid reaches total_installments the loan is inactive
  and the device is no longer on loan.
- next_emi_date = first_emi_date + installments_paid months. Computing from
  the first due date keeps month-end due dates from drifting (Jan 31 ->
  Feb 28 -> Mar 31).
- Payments are append-only.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Device, EmiDetail, EmiPayment, Sale, Store
from ..permissions import Action, Role
from ..time_utils import add_months, today, utcnow
from ..validation import (
    NotFoundError,
    PreconditionFailedError,
    optional_text,
    require_amount_cents,
    require_date,
    require_text,
)
from .audit_service import (
    ACTION_EMI_CLOSED,
    ACTION_EMI_COMPLETED,
    ACTION_EMI_PAYMENT,
    append_device_log,
)
from .concurrency import lock_for_update, run_atomic
from .permission_service import Caller, emi_scope, require, require_role


def get_emi_or_404(emi_id: int, *, lock: bool = False) -> EmiDetail:
    q = db.session.query(EmiDetail).filter_by(id=emi_id)
    if lock:
        q = lock_for_update(q)
    emi = q.first()
    if emi is None:
        raise NotFoundError(f"EMI {emi_id} not found")
    return emi


def _emi_device(emi: EmiDetail) -> Device:
    return lock_for_update(db.session.query(Device).filter_by(id=emi.sale.device_id)).first()


def record_payment(
    caller: Caller,
    emi_id: int,
    *,
    amount_cents: int,
    payment_method: str,
    payment_date=None,
    transaction_id: str | None = None,
) -> EmiPayment:
    """
    Record one installment payment.

    Raises:
        PreconditionFailedError: loan inactive or already fully paid
    """
    amount_cents = require_amount_cents(amount_cents, "amount_cents")
    payment_method = require_text(payment_method, "payment_method", max_length=50)
    payment_date = require_date(payment_date, "payment_date") if payment_date is not None else today()
    transaction_id = optional_text(transaction_id, "transaction_id", max_length=100)

    def _op():
        emi = get_emi_or_404(emi_id, lock=True)
        require(caller, Action.EMI_PAY, emi_scope(emi))

        if not emi.is_active:
            raise PreconditionFailedError("Cannot record payment for inactive EMI.")
        if emi.is_fully_paid():
            raise PreconditionFailedError("All installments are already paid.")

        payment = EmiPayment(
            emi_id=emi.id,
            amount_paid_cents=amount_cents,
            payment_date=payment_date,
            payment_method=payment_method,
            transaction_id=transaction_id,
            recorded_by=caller.user_id,
        )
        db.session.add(payment)

        emi.installments_paid += 1
        device = _emi_device(emi)

        if emi.is_fully_paid():
            emi.is_active = False
            if device is not None:
                device.on_loan = False
                append_device_log(
                    device=device,
                    action=ACTION_EMI_COMPLETED,
                    description="EMI completed: All payments received for the device.",
                    performed_by=caller.user_id,
                )
        else:
            emi.next_emi_date = add_months(emi.first_emi_date, emi.installments_paid)
            if device is not None:
                append_device_log(
                    device=device,
                    action=ACTION_EMI_PAYMENT,
                    description=(
                        f"EMI payment {emi.installments_paid}/{emi.total_installments} received "
                        f"({amount_cents} cents via {payment_method})"
                    ),
                    performed_by=caller.user_id,
                )

        db.session.flush()
        return payment

    payment = run_atomic(_op)
    current_app.logger.info("EMI %s payment recorded (%s cents)", emi_id, amount_cents)
    return payment


def close_emi(caller: Caller, emi_id: int, reason: str) -> EmiDetail:
    """Administratively close an active loan. No payment row is written."""
    reason = require_text(reason, "close_reason", max_length=500)

    def _op():
        emi = get_emi_or_404(emi_id, lock=True)
        require(caller, Action.EMI_CLOSE, emi_scope(emi))

        if not emi.is_active:
            raise PreconditionFailedError("EMI is already inactive.")

        emi.is_active = False
        emi.closed_at = utcnow()
        emi.closed_by = caller.user_id
        emi.close_reason = reason

        device = _emi_device(emi)
        if device is not None:
            device.on_loan = False
            append_device_log(
                device=device,
                action=ACTION_EMI_CLOSED,
                description=f"EMI closed administratively. Reason: {reason}",
                performed_by=caller.user_id,
            )
        return emi

    emi = run_atomic(_op)
    current_app.logger.info("EMI %s closed", emi_id)
    return emi


def get_emi(caller: Caller, emi_id: int) -> EmiDetail:
    emi = get_emi_or_404(emi_id)
    require(caller, Action.EMI_VIEW, emi_scope(emi))
    return emi


def list_emis(
    caller: Caller,
    *,
    active: Optional[bool] = None,
    customer: Optional[str] = None,
    overdue: bool = False,
    as_of: Optional[date] = None,
    store_id: Optional[int] = None,
) -> list[EmiDetail]:
    """
    Loans visible to the caller, ordered by next due date.

    overdue=True keeps active loans whose next due date is before as_of
    (default today).
    """
    require_role(caller, Action.EMI_VIEW)

    q = db.session.query(EmiDetail).join(Sale, Sale.id == EmiDetail.sale_id)
    if caller.role == Role.WAREHOUSE:
        store_ids = db.session.query(Store.id).filter(Store.warehouse_id == caller.warehouse_id)
        q = q.filter(Sale.store_id.in_(store_ids))
    elif caller.role == Role.STORE:
        q = q.filter(Sale.store_id == caller.store_id)

    if store_id is not None:
        q = q.filter(Sale.store_id == store_id)
    if active is not None:
        q = q.filter(EmiDetail.is_active.is_(bool(active)))
    if customer:
        pattern = f"%{customer.strip()}%"
        q = q.filter(
            db.or_(Sale.customer_name.ilike(pattern), Sale.customer_phone.ilike(pattern))
        )
    if overdue:
        cutoff = require_date(as_of, "as_of") if as_of is not None else today()
        q = q.filter(
            EmiDetail.is_active.is_(True),
            EmiDetail.installments_paid < EmiDetail.total_installments,
            EmiDetail.next_emi_date < cutoff,
        )

    return q.order_by(EmiDetail.next_emi_date.asc(), EmiDetail.id.asc()).all()
