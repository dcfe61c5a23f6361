"""
Branch scope resolution for each role.
"""

from types import SimpleNamespace

import pytest

from errors import PermissionDenied, ValidationFailed
from models import UserRole
from scope_utils import BranchScope, resolve_branch_scope, require_writable_branch


def _user(role, assigned=None, managed=None):
    return SimpleNamespace(role=role, assigned_branch_id=assigned, managed_branch_ids=managed or [])


PHARMACIST = _user(UserRole.PHARMACIST, assigned="b1")
MANAGER = _user(UserRole.MANAGER, managed=["b1", "b2"])
OWNER = _user(UserRole.OWNER)

RECORDS = [SimpleNamespace(branch_id=b) for b in ("b1", "b2", "b3")]


def test_pharmacist_is_pinned_to_assigned_branch():
    for selection in (None, "all", "b2"):
        scope = resolve_branch_scope(PHARMACIST, selection)
        assert scope.branch_ids == frozenset({"b1"})
        assert scope.single_branch_id == "b1"


def test_pharmacist_without_branch_sees_nothing():
    scope = resolve_branch_scope(_user(UserRole.PHARMACIST))

    assert scope.filter(RECORDS) == []
    assert not scope.allows("b1")


def test_manager_all_means_managed_branches():
    scope = resolve_branch_scope(MANAGER, "all")

    assert [r.branch_id for r in scope.filter(RECORDS)] == ["b1", "b2"]
    assert scope.single_branch_id is None
    assert not scope.is_tenant_wide


def test_manager_may_select_a_managed_branch():
    scope = resolve_branch_scope(MANAGER, "b2")

    assert scope.branch_ids == frozenset({"b2"})
    assert scope.selected_branch_id == "b2"


def test_manager_selecting_unmanaged_branch_is_denied():
    with pytest.raises(PermissionDenied):
        resolve_branch_scope(MANAGER, "b3")


def test_owner_sees_whole_tenant_or_one_branch():
    assert resolve_branch_scope(OWNER).is_tenant_wide
    assert resolve_branch_scope(OWNER, "").is_tenant_wide
    assert len(resolve_branch_scope(OWNER, None).filter(RECORDS)) == 3
    assert resolve_branch_scope(OWNER, "b3").branch_ids == frozenset({"b3"})


def test_scope_filters_with_custom_key():
    branches = [SimpleNamespace(id="b1"), SimpleNamespace(id="b3")]

    visible = resolve_branch_scope(MANAGER).filter(branches, key=lambda b: b.id)

    assert [b.id for b in visible] == ["b1"]


def test_scope_is_immutable():
    scope = BranchScope(branch_ids=frozenset({"b1"}))

    with pytest.raises(Exception):
        scope.branch_ids = frozenset({"b2"})


def test_writable_branch_defaults_to_pharmacist_branch():
    assert require_writable_branch(PHARMACIST, None) == "b1"


def test_pharmacist_cannot_write_elsewhere():
    with pytest.raises(PermissionDenied):
        require_writable_branch(PHARMACIST, "b2")


def test_owner_write_needs_a_specific_branch():
    with pytest.raises(ValidationFailed):
        require_writable_branch(OWNER, None)
    with pytest.raises(ValidationFailed):
        require_writable_branch(OWNER, "all")
    assert require_writable_branch(OWNER, "b3") == "b3"


def test_manager_write_limited_to_managed_branches():
    assert require_writable_branch(MANAGER, "b2") == "b2"
    with pytest.raises(PermissionDenied):
        require_writable_branch(MANAGER, "b3")
