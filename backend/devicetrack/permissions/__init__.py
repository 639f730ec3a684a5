# Overview: Permission system package.
# Re-exports the role/action enums and the policy table.

from .roles import Role, ADMIN_ROLES
from .definitions import (
    Action,
    Rule,
    POLICY,
    ADMIN_ONLY,
    WAREHOUSE_GRANTS,
    STORE_GRANTS,
    check_policy_exhaustive,
)

__all__ = [
    "Role",
    "ADMIN_ROLES",
    "Action",
    "Rule",
    "POLICY",
    "ADMIN_ONLY",
    "WAREHOUSE_GRANTS",
    "STORE_GRANTS",
    "check_policy_exhaustive",
]
