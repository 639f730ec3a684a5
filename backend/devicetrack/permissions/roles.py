# Overview: Closed set of user roles.

from enum import Enum


class Role(str, Enum):
    """
    Back-office roles, most to least privileged.

    customer exists so buyers can hold an account; it carries no
    back-office rights.
    """
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    WAREHOUSE = "warehouse"
    STORE = "store"
    CUSTOMER = "customer"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown role: {value}")


ADMIN_ROLES = frozenset({Role.SUPERADMIN, Role.ADMIN})
