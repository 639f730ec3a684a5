# backend/devicetrack/services/sales_service.py
"""
Device sales.

WHY: A sale is the only way a device leaves a store. It fixes the price,
issues the invoice number and, for installment sales, opens the EMI loan,
all in one transaction.

INVARIANTS:
- Only an in_store device held by the selling store can be sold.
- At most one open (not returned) sale per device.
- On-EMI sales create exactly one EmiDetail and set device.on_loan.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Device, EmiDetail, Sale, Store
from ..permissions import Action, Role
from ..time_utils import today
from ..validation import (
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
    optional_text,
    require_amount_cents,
    require_date,
    require_positive_int,
    require_text,
    validate_email,
)
from .audit_service import ACTION_SOLD, append_device_log
from .concurrency import lock_for_update, run_atomic
from .device_service import DEVICE_STATUS_IN_STORE, DEVICE_STATUS_SOLD
from .identifier_service import next_invoice_number
from .permission_service import Caller, require, require_role, sale_scope, store_scope


@dataclass(frozen=True)
class CustomerInfo:
    name: str
    phone: str
    email: Optional[str] = None


@dataclass(frozen=True)
class EmiTerms:
    total_installments: int
    emi_amount_cents: int
    next_emi_date: date


def _as_customer(customer) -> CustomerInfo:
    if isinstance(customer, dict):
        customer = CustomerInfo(
            name=customer.get("name"),
            phone=customer.get("phone"),
            email=customer.get("email"),
        )
    if not isinstance(customer, CustomerInfo):
        raise ValidationError("customer is required")
    return CustomerInfo(
        name=require_text(customer.name, "customer_name", max_length=255),
        phone=require_text(customer.phone, "customer_phone", max_length=20),
        email=validate_email(customer.email, "customer_email", required=False),
    )


def _as_emi_terms(terms, sale_date: date) -> EmiTerms:
    if isinstance(terms, dict):
        terms = EmiTerms(
            total_installments=terms.get("total_installments"),
            emi_amount_cents=terms.get("emi_amount_cents"),
            next_emi_date=terms.get("next_emi_date"),
        )
    if not isinstance(terms, EmiTerms):
        raise ValidationError("Invalid EMI terms")
    cleaned = EmiTerms(
        total_installments=require_positive_int(terms.total_installments, "total_installments"),
        emi_amount_cents=require_amount_cents(terms.emi_amount_cents, "emi_amount_cents"),
        next_emi_date=require_date(terms.next_emi_date, "next_emi_date"),
    )
    if cleaned.next_emi_date <= sale_date:
        raise ValidationError("next_emi_date must be after the sale date")
    return cleaned


def get_sale_or_404(sale_id: int, *, lock: bool = False) -> Sale:
    q = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        q = lock_for_update(q)
    sale = q.first()
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def open_sale_for_device(device_id: int) -> Optional[Sale]:
    return (
        db.session.query(Sale)
        .filter(Sale.device_id == device_id, Sale.returned_at.is_(None))
        .first()
    )


def sell_device(
    caller: Caller,
    *,
    store_id: int,
    device_id: int,
    customer,
    sale_price_cents: int,
    emi_terms=None,
    notes: str | None = None,
    sale_date=None,
) -> Sale:
    """
    Sell an in-store device to a customer.

    Args:
        customer: CustomerInfo or {"name", "phone", "email"}
        emi_terms: EmiTerms or {"total_installments", "emi_amount_cents",
            "next_emi_date"}; None for a cash sale

    Raises:
        PreconditionFailedError: device not in_store or held by another store
    """
    cust = _as_customer(customer)
    sale_price_cents = require_amount_cents(sale_price_cents, "sale_price_cents", allow_zero=True)
    notes = optional_text(notes, "notes", max_length=500)
    sale_date = require_date(sale_date, "sale_date") if sale_date is not None else today()
    terms = _as_emi_terms(emi_terms, sale_date) if emi_terms is not None else None

    if caller.role == Role.STORE and not store_id:
        store_id = caller.store_id
    if not store_id:
        raise ValidationError("store_id is required")

    def _op():
        store = db.session.get(Store, store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")
        require(caller, Action.SALE_CREATE, store_scope(store))

        device = lock_for_update(db.session.query(Device).filter_by(id=device_id)).first()
        if device is None:
            raise NotFoundError(f"Device {device_id} not found")
        if device.status != DEVICE_STATUS_IN_STORE:
            raise PreconditionFailedError("Device is not available for sale.")
        if device.store_id != store.id:
            raise PreconditionFailedError("Device does not belong to the selected store.")

        sale = Sale(
            invoice_number=next_invoice_number(store_id=store.id, store_name=store.name, on_date=sale_date),
            store_id=store.id,
            device_id=device.id,
            sold_by=caller.user_id,
            customer_name=cust.name,
            customer_email=cust.email,
            customer_phone=cust.phone,
            sale_price_cents=sale_price_cents,
            on_emi=terms is not None,
            sale_date=sale_date,
            notes=notes,
        )
        db.session.add(sale)
        db.session.flush()

        if terms is not None:
            db.session.add(EmiDetail(
                sale_id=sale.id,
                total_installments=terms.total_installments,
                emi_amount_cents=terms.emi_amount_cents,
                installments_paid=0,
                first_emi_date=terms.next_emi_date,
                next_emi_date=terms.next_emi_date,
                is_active=True,
            ))
            device.on_loan = True

        device.status = DEVICE_STATUS_SOLD
        append_device_log(
            device=device,
            action=ACTION_SOLD,
            description=f"Device sold to customer (Invoice #{sale.invoice_number})",
            performed_by=caller.user_id,
        )
        return sale

    sale = run_atomic(_op)
    current_app.logger.info(
        "Sale %s recorded: device %s at store %s (emi=%s)",
        sale.invoice_number, device_id, store_id, terms is not None,
    )
    return sale


def get_sale(caller: Caller, sale_id: int) -> Sale:
    sale = get_sale_or_404(sale_id)
    require(caller, Action.SALE_VIEW, sale_scope(sale))
    return sale


def list_sales(
    caller: Caller,
    *,
    store_id: Optional[int] = None,
    on_emi: Optional[bool] = None,
    customer: Optional[str] = None,
    include_returned: bool = True,
    limit: Optional[int] = None,
) -> list[Sale]:
    """Sales visible to the caller, newest first."""
    require_role(caller, Action.SALE_VIEW)

    q = db.session.query(Sale)
    if caller.role == Role.WAREHOUSE:
        store_ids = db.session.query(Store.id).filter(Store.warehouse_id == caller.warehouse_id)
        q = q.filter(Sale.store_id.in_(store_ids))
    elif caller.role == Role.STORE:
        q = q.filter(Sale.store_id == caller.store_id)

    if store_id is not None:
        q = q.filter(Sale.store_id == store_id)
    if on_emi is not None:
        q = q.filter(Sale.on_emi.is_(bool(on_emi)))
    if customer:
        pattern = f"%{customer.strip()}%"
        q = q.filter(
            db.or_(
                Sale.customer_name.ilike(pattern),
                Sale.customer_phone.ilike(pattern),
                Sale.customer_email.ilike(pattern),
            )
        )
    if not include_returned:
        q = q.filter(Sale.returned_at.is_(None))

    q = q.order_by(Sale.created_at.desc(), Sale.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()
