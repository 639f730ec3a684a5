# Overview: Actions, scope rules and the role x action policy table.
# Each entry maps (role, action) to the scope rule that must hold.

from enum import Enum

from .roles import Role


class Action(str, Enum):
    # -- DEVICES --
    DEVICE_CREATE = "device.create"
    DEVICE_UPDATE = "device.update"
    DEVICE_DELETE = "device.delete"
    DEVICE_VIEW = "device.view"
    DEVICE_QC = "device.qc"

    # -- TRANSFERS --
    TRANSFER_CREATE = "transfer.create"
    TRANSFER_IN_TRANSIT = "transfer.in_transit"
    TRANSFER_CANCEL = "transfer.cancel"
    TRANSFER_RECEIVE = "transfer.receive"
    TRANSFER_VIEW = "transfer.view"

    # -- SALES --
    SALE_CREATE = "sale.create"
    SALE_RETURN = "sale.return"
    SALE_VIEW = "sale.view"

    # -- EMI --
    EMI_PAY = "emi.pay"
    EMI_CLOSE = "emi.close"
    EMI_VIEW = "emi.view"

    # -- ORGANIZATION --
    STORE_MANAGE = "store.manage"
    WAREHOUSE_MANAGE = "warehouse.manage"
    USER_MANAGE = "user.manage"

    # -- DEMAND --
    DEMAND_CREATE = "demand.create"
    DEMAND_PROCESS = "demand.process"
    DEMAND_VIEW = "demand.view"

    # -- REPORTS --
    REPORT_VIEW = "report.view"


class Rule(str, Enum):
    """Scope predicate attached to a grant."""
    ANY = "any"
    OWN_WAREHOUSE = "own_warehouse"
    OWN_STORE = "own_store"
    DENY = "deny"


WAREHOUSE_GRANTS = {
    Action.DEVICE_CREATE,
    Action.DEVICE_UPDATE,
    Action.DEVICE_VIEW,
    Action.DEVICE_QC,
    Action.TRANSFER_CREATE,
    Action.TRANSFER_IN_TRANSIT,
    Action.TRANSFER_CANCEL,
    Action.TRANSFER_VIEW,
    Action.SALE_VIEW,
    Action.EMI_VIEW,
    Action.STORE_MANAGE,
    Action.DEMAND_PROCESS,
    Action.DEMAND_VIEW,
    Action.REPORT_VIEW,
}

STORE_GRANTS = {
    Action.DEVICE_VIEW,
    Action.DEVICE_QC,
    Action.TRANSFER_RECEIVE,
    Action.TRANSFER_VIEW,
    Action.SALE_CREATE,
    Action.SALE_RETURN,
    Action.SALE_VIEW,
    Action.EMI_PAY,
    Action.EMI_VIEW,
    Action.DEMAND_CREATE,
    Action.DEMAND_VIEW,
    Action.REPORT_VIEW,
}

# Admin-only actions: no tenant-scoped role may perform them
ADMIN_ONLY = {
    Action.DEVICE_DELETE,
    Action.EMI_CLOSE,
    Action.WAREHOUSE_MANAGE,
    Action.USER_MANAGE,
}


def _build_policy() -> dict[tuple[Role, Action], Rule]:
    policy: dict[tuple[Role, Action], Rule] = {}
    for action in Action:
        policy[(Role.SUPERADMIN, action)] = Rule.ANY
        policy[(Role.ADMIN, action)] = Rule.ANY
        policy[(Role.WAREHOUSE, action)] = (
            Rule.OWN_WAREHOUSE if action in WAREHOUSE_GRANTS else Rule.DENY
        )
        policy[(Role.STORE, action)] = (
            Rule.OWN_STORE if action in STORE_GRANTS else Rule.DENY
        )
        policy[(Role.CUSTOMER, action)] = Rule.DENY
    return policy


POLICY = _build_policy()


def check_policy_exhaustive(policy: dict[tuple[Role, Action], Rule]) -> None:
    """Every (role, action) pair must have a rule; admin-only actions stay admin-only."""
    missing = [(r.value, a.value) for r in Role for a in Action if (r, a) not in policy]
    if missing:
        raise RuntimeError(f"Policy table incomplete: {missing}")
    leaked = [
        (r.value, a.value)
        for (r, a), rule in policy.items()
        if a in ADMIN_ONLY and r in (Role.WAREHOUSE, Role.STORE, Role.CUSTOMER) and rule != Rule.DENY
    ]
    if leaked:
        raise RuntimeError(f"Admin-only actions granted to scoped roles: {leaked}")


check_policy_exhaustive(POLICY)
