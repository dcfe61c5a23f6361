"""
Branch scope resolution.

Every listing, report, dashboard and write path asks one question: which
branches may this user see right now? The answer is a BranchScope, resolved
once from the user's role and the branch they selected (if any).

    PHARMACIST  pinned to the assigned branch; selection is ignored
    MANAGER     one managed branch, or all managed branches
    OWNER       one branch, or the whole tenant
"""
from typing import Iterable, List, Optional, FrozenSet

from pydantic import BaseModel
from sqlalchemy import true, false

from errors import PermissionDenied, ValidationFailed
from models import UserRole

ALL_BRANCHES = "all"


class BranchScope(BaseModel):
    """Visible branch set. `branch_ids` is None when every branch is visible."""
    branch_ids: Optional[FrozenSet[str]] = None
    selected_branch_id: Optional[str] = None

    class Config:
        frozen = True

    @property
    def is_tenant_wide(self) -> bool:
        return self.branch_ids is None

    @property
    def single_branch_id(self) -> Optional[str]:
        if self.branch_ids is not None and len(self.branch_ids) == 1:
            return next(iter(self.branch_ids))
        return None

    def allows(self, branch_id: Optional[str]) -> bool:
        if branch_id is None:
            return False
        return self.branch_ids is None or branch_id in self.branch_ids

    def filter(self, records: Iterable, key=lambda record: record.branch_id) -> List:
        """Keep only records whose branch is visible."""
        return [record for record in records if self.allows(key(record))]

    def clause(self, column):
        """SQL condition restricting `column` to the visible branches."""
        if self.branch_ids is None:
            return true()
        if not self.branch_ids:
            return false()
        return column.in_(sorted(self.branch_ids))


def normalize_branch_selection(selected: Optional[str]) -> Optional[str]:
    """Treat '', 'all' and None alike: no specific branch selected."""
    if selected is None:
        return None
    selected = selected.strip()
    if not selected or selected.lower() == ALL_BRANCHES:
        return None
    return selected


def resolve_branch_scope(user, selected_branch_id: Optional[str] = None) -> BranchScope:
    """
    Resolve the branches `user` may see given an optional branch selection.

    Raises PermissionDenied when a manager selects a branch they do not manage.
    """
    selected = normalize_branch_selection(selected_branch_id)

    if user.role == UserRole.PHARMACIST:
        if not user.assigned_branch_id:
            return BranchScope(branch_ids=frozenset())
        return BranchScope(
            branch_ids=frozenset({user.assigned_branch_id}),
            selected_branch_id=user.assigned_branch_id,
        )

    if user.role == UserRole.MANAGER:
        managed = frozenset(user.managed_branch_ids or [])
        if selected is None:
            return BranchScope(branch_ids=managed)
        if selected not in managed:
            raise PermissionDenied("You do not manage this branch")
        return BranchScope(branch_ids=frozenset({selected}), selected_branch_id=selected)

    if selected is None:
        return BranchScope()
    return BranchScope(branch_ids=frozenset({selected}), selected_branch_id=selected)


def require_writable_branch(user, branch_id: Optional[str]) -> str:
    """
    Pick the branch a write (new product, sale) targets and check the user may
    act on it. Pharmacists default to their assigned branch.
    """
    if branch_id is None and user.role == UserRole.PHARMACIST:
        branch_id = user.assigned_branch_id

    branch_id = normalize_branch_selection(branch_id)
    if branch_id is None:
        raise ValidationFailed("A specific branch is required for this action")

    scope = resolve_branch_scope(user, branch_id)
    if not scope.allows(branch_id):
        raise PermissionDenied("You can only act on your assigned branch")
    return branch_id
