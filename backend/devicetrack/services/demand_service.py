# Overview: Service-layer operations for demand requests; stores ask their warehouse for stock.

"""
Demand requests.

LIFECYCLE: pending -> approved | rejected | fulfilled. A request is
processed once; processed requests cannot be re-processed.
"""

from __future__ import annotations

from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import DemandRequest, Store
from ..permissions import Action, Role
from ..time_utils import utcnow
from ..validation import (
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
    optional_text,
    require_positive_int,
    require_text,
)
from .concurrency import lock_for_update, run_atomic
from .permission_service import Caller, demand_scope, require, require_role, store_scope


DEMAND_STATUS_PENDING = "pending"
DEMAND_STATUS_APPROVED = "approved"
DEMAND_STATUS_REJECTED = "rejected"
DEMAND_STATUS_FULFILLED = "fulfilled"

DEMAND_STATUSES = (
    DEMAND_STATUS_PENDING,
    DEMAND_STATUS_APPROVED,
    DEMAND_STATUS_REJECTED,
    DEMAND_STATUS_FULFILLED,
)
PROCESSED_STATUSES = DEMAND_STATUSES[1:]


def get_demand_or_404(demand_id: int, *, lock: bool = False) -> DemandRequest:
    q = db.session.query(DemandRequest).filter_by(id=demand_id)
    if lock:
        q = lock_for_update(q)
    demand = q.first()
    if demand is None:
        raise NotFoundError(f"Demand request {demand_id} not found")
    return demand


def create_demand(
    caller: Caller,
    *,
    model: str,
    quantity: int,
    store_id: int | None = None,
    remarks: str | None = None,
) -> DemandRequest:
    model = require_text(model, "model", max_length=100)
    quantity = require_positive_int(quantity, "quantity")
    remarks = optional_text(remarks, "remarks", max_length=500)
    if caller.role == Role.STORE:
        store_id = caller.store_id
    if not store_id:
        raise ValidationError("store_id is required")

    def _op():
        store = db.session.get(Store, store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")
        require(caller, Action.DEMAND_CREATE, store_scope(store))
        if not store.is_active:
            raise PreconditionFailedError("Store is inactive.")

        demand = DemandRequest(
            store_id=store.id,
            requested_by=caller.user_id,
            model=model,
            quantity=quantity,
            status=DEMAND_STATUS_PENDING,
            remarks=remarks,
        )
        db.session.add(demand)
        db.session.flush()
        return demand

    demand = run_atomic(_op)
    current_app.logger.info("Demand request %s created by store %s", demand.id, store_id)
    return demand


def process_demand(
    caller: Caller,
    demand_id: int,
    *,
    status: str,
    remarks: str | None = None,
) -> DemandRequest:
    if status not in PROCESSED_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PROCESSED_STATUSES)}")
    remarks = optional_text(remarks, "remarks", max_length=500)

    def _op():
        demand = get_demand_or_404(demand_id, lock=True)
        require(caller, Action.DEMAND_PROCESS, demand_scope(demand))

        if demand.status != DEMAND_STATUS_PENDING:
            raise PreconditionFailedError("This request has already been processed.")

        demand.status = status
        demand.remarks = remarks
        demand.processed_by = caller.user_id
        demand.processed_at = utcnow()
        return demand

    demand = run_atomic(_op)
    current_app.logger.info("Demand request %s %s", demand_id, status)
    return demand


def list_demands(
    caller: Caller,
    *,
    status: Optional[str] = None,
    store_id: Optional[int] = None,
) -> list[DemandRequest]:
    """Requests visible to the caller, newest first."""
    require_role(caller, Action.DEMAND_VIEW)
    if status is not None and status not in DEMAND_STATUSES:
        raise ValidationError(f"Unknown status: {status}")

    q = db.session.query(DemandRequest)
    if caller.role == Role.WAREHOUSE:
        store_ids = db.session.query(Store.id).filter(Store.warehouse_id == caller.warehouse_id)
        q = q.filter(DemandRequest.store_id.in_(store_ids))
    elif caller.role == Role.STORE:
        q = q.filter(DemandRequest.store_id == caller.store_id)

    if status:
        q = q.filter(DemandRequest.status == status)
    if store_id is not None:
        q = q.filter(DemandRequest.store_id == store_id)
    return q.order_by(DemandRequest.created_at.desc(), DemandRequest.id.desc()).all()
