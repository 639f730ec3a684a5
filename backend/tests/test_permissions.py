# Overview: Pytest coverage for the role x action policy table and scope checks.

"""
Authorization Policy Tests

SECURITY TESTS: Prove the single capability check fails closed and keeps
warehouse and store users inside their own scope.
"""

import pytest

from devicetrack.permissions import (
    ADMIN_ONLY,
    POLICY,
    Action,
    Role,
    Rule,
    check_policy_exhaustive,
)
from devicetrack.services.permission_service import (
    Caller,
    ResourceScope,
    can,
    device_scope,
    require,
)
from devicetrack.validation import AuthorizationError


class TestPolicyTable:
    """The table is total over Role x Action."""

    def test_every_pair_has_a_rule(self):
        assert len(POLICY) == len(Role) * len(Action)

    def test_missing_pair_is_rejected(self):
        broken = dict(POLICY)
        del broken[(Role.STORE, Action.SALE_CREATE)]
        with pytest.raises(RuntimeError):
            check_policy_exhaustive(broken)

    def test_admin_only_leak_is_rejected(self):
        broken = dict(POLICY)
        broken[(Role.WAREHOUSE, Action.EMI_CLOSE)] = Rule.OWN_WAREHOUSE
        with pytest.raises(RuntimeError):
            check_policy_exhaustive(broken)

    def test_customer_denied_everything(self):
        assert all(POLICY[(Role.CUSTOMER, a)] == Rule.DENY for a in Action)

    def test_admin_only_actions(self):
        for action in ADMIN_ONLY:
            assert POLICY[(Role.WAREHOUSE, action)] == Rule.DENY
            assert POLICY[(Role.STORE, action)] == Rule.DENY
            assert POLICY[(Role.ADMIN, action)] == Rule.ANY


class TestCan:
    """Scope predicates."""

    def test_admin_any_scope(self):
        caller = Caller(user_id=1, role=Role.ADMIN)
        assert can(caller, Action.DEVICE_DELETE, ResourceScope(warehouse_id=99))

    def test_warehouse_own_scope_only(self):
        caller = Caller(user_id=1, role=Role.WAREHOUSE, warehouse_id=5)
        assert can(caller, Action.TRANSFER_CREATE, ResourceScope(warehouse_id=5))
        assert not can(caller, Action.TRANSFER_CREATE, ResourceScope(warehouse_id=6))

    def test_warehouse_without_assignment_denied(self):
        caller = Caller(user_id=1, role=Role.WAREHOUSE, warehouse_id=None)
        assert not can(caller, Action.DEVICE_VIEW, ResourceScope(warehouse_id=None))

    def test_store_own_scope_only(self):
        caller = Caller(user_id=1, role=Role.STORE, store_id=3)
        assert can(caller, Action.SALE_CREATE, ResourceScope(warehouse_id=1, store_id=3))
        assert not can(caller, Action.SALE_CREATE, ResourceScope(warehouse_id=1, store_id=4))

    def test_store_cannot_create_transfer(self):
        caller = Caller(user_id=1, role=Role.STORE, store_id=3)
        assert not can(caller, Action.TRANSFER_CREATE, ResourceScope(warehouse_id=1, store_id=3))

    def test_require_raises_with_action_name(self, db_session):
        caller = Caller(user_id=1, role=Role.CUSTOMER)
        with pytest.raises(AuthorizationError, match="device.view"):
            require(caller, Action.DEVICE_VIEW)


class TestCaller:
    """Caller construction from persisted users."""

    def test_inactive_user_rejected(self, make_user):
        user = make_user(Role.ADMIN, active=False)
        with pytest.raises(AuthorizationError):
            Caller.from_user(user)

    def test_scope_kept_only_for_matching_role(self, make_user, warehouse, store):
        user = make_user(Role.STORE, warehouse=warehouse, store=store)
        caller = Caller.from_user(user)
        assert caller.store_id == store.id
        assert caller.warehouse_id is None

    def test_device_in_store_scoped_to_parent_warehouse(
        self, stock_store, store, warehouse, warehouse_caller
    ):
        device = stock_store(1)[0]
        scope = device_scope(device)
        assert scope.store_id == store.id
        assert scope.warehouse_id == warehouse.id
        assert can(warehouse_caller, Action.DEVICE_VIEW, scope)
