# Overview: Service-layer operations for authorization; one capability check over the policy table.

"""
Role and scope enforcement.

WHY: Every operation asks a single question, can(caller, action, scope),
answered from one (role, action) -> rule table. Tenant scope is checked
against the resource being touched, never against request input alone.

DESIGN PRINCIPLES:
- Fail closed: unknown roles, inactive users and DENY rules refuse.
- Log denials only: grants are not logged.
- Scope resolvers derive the scope from persisted rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Device, Store, Transfer, Sale, EmiDetail, User, DemandRequest
from ..permissions import Action, Role, Rule, POLICY, ADMIN_ROLES
from ..validation import AuthorizationError


@dataclass(frozen=True)
class Caller:
    """Authenticated identity performing an operation."""
    user_id: int
    role: Role
    warehouse_id: Optional[int] = None
    store_id: Optional[int] = None

    @classmethod
    def from_user(cls, user: User) -> "Caller":
        if user is None or not user.is_active:
            raise AuthorizationError("User account is inactive.")
        try:
            role = Role.parse(user.role)
        except ValueError:
            raise AuthorizationError(f"Unknown role: {user.role}")
        return cls(
            user_id=user.id,
            role=role,
            warehouse_id=user.warehouse_id if role == Role.WAREHOUSE else None,
            store_id=user.store_id if role == Role.STORE else None,
        )

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


@dataclass(frozen=True)
class ResourceScope:
    """Where a resource lives. A store-level resource also names its parent warehouse."""
    warehouse_id: Optional[int] = None
    store_id: Optional[int] = None


GLOBAL = ResourceScope()


def can(caller: Caller, action: Action, scope: ResourceScope = GLOBAL) -> bool:
    rule = POLICY.get((caller.role, action), Rule.DENY)
    if rule == Rule.ANY:
        return True
    if rule == Rule.OWN_WAREHOUSE:
        return caller.warehouse_id is not None and scope.warehouse_id == caller.warehouse_id
    if rule == Rule.OWN_STORE:
        return caller.store_id is not None and scope.store_id == caller.store_id
    return False


def can_role(caller: Caller, action: Action) -> bool:
    """Role-level check used before a caller-scoped listing query."""
    return POLICY.get((caller.role, action), Rule.DENY) != Rule.DENY


def require(caller: Caller, action: Action, scope: ResourceScope = GLOBAL) -> None:
    """Raise AuthorizationError (and log the denial) unless can() allows."""
    if can(caller, action, scope):
        return
    current_app.logger.warning(
        "Permission denied: user=%s role=%s action=%s scope=%s",
        caller.user_id, caller.role.value, action.value, scope,
    )
    raise AuthorizationError(f"Permission denied: {action.value}")


def require_role(caller: Caller, action: Action) -> None:
    if can_role(caller, action):
        return
    current_app.logger.warning(
        "Permission denied: user=%s role=%s action=%s",
        caller.user_id, caller.role.value, action.value,
    )
    raise AuthorizationError(f"Permission denied: {action.value}")


# -- Scope resolvers --

def store_scope(store: Store) -> ResourceScope:
    return ResourceScope(warehouse_id=store.warehouse_id, store_id=store.id)


def warehouse_scope(warehouse_id: int) -> ResourceScope:
    return ResourceScope(warehouse_id=warehouse_id)


def device_scope(device: Device) -> ResourceScope:
    """A device in a store is visible to that store and to the store's warehouse."""
    if device.store_id is not None:
        return _store_level_scope(device.store_id)
    return ResourceScope(warehouse_id=device.warehouse_id)


def transfer_scope(transfer: Transfer) -> ResourceScope:
    return ResourceScope(warehouse_id=transfer.warehouse_id, store_id=transfer.store_id)


def _store_level_scope(store_id: int) -> ResourceScope:
    store = db.session.get(Store, store_id)
    return ResourceScope(
        warehouse_id=store.warehouse_id if store else None,
        store_id=store_id,
    )


def sale_scope(sale: Sale) -> ResourceScope:
    return _store_level_scope(sale.store_id)


def emi_scope(emi: EmiDetail) -> ResourceScope:
    return _store_level_scope(emi.sale.store_id)


def demand_scope(demand: DemandRequest) -> ResourceScope:
    return _store_level_scope(demand.store_id)
