"""
Client-side application state.

AppState is an immutable snapshot of everything the screens show: the
signed-in user, products, transactions and branches. DataFacade owns the
current snapshot and a data source (NexileApiClient in live mode, LocalStore
in mock mode). Every mutation goes to the source and is followed by one
re-fetch, whose result becomes the new snapshot; nothing is updated
optimistically.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel

from config import settings
from errors import AuthenticationFailed
from models import UserRole
from schemas import (
    BranchCreate, BranchResponse, ProductCreate, ProductResponse, ProductUpdate,
    RegisterRequest, TransactionCreate, TransactionResponse, UserResponse
)
from scope_utils import BranchScope, resolve_branch_scope

logger = logging.getLogger(__name__)


class AppState(BaseModel):
    user: Optional[UserResponse] = None
    token: Optional[str] = None
    products: List[ProductResponse] = []
    transactions: List[TransactionResponse] = []
    branches: List[BranchResponse] = []
    selected_branch_id: Optional[str] = None

    class Config:
        frozen = True

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def trial_days_left(self) -> Optional[int]:
        if self.user is None:
            return None
        ends = self.user.created_at + timedelta(days=settings.TRIAL_PERIOD_DAYS)
        return max(0, (ends - datetime.utcnow()).days)


class DataFacade:
    """Single owner of AppState. Mutations return the new snapshot."""

    def __init__(self, source):
        self.source = source
        self._state = AppState()

    @property
    def state(self) -> AppState:
        return self._state

    def _replace(self, **changes) -> AppState:
        self._state = self._state.model_copy(update=changes)
        return self._state

    def _require_user(self) -> UserResponse:
        if self._state.user is None:
            raise AuthenticationFailed("Not signed in")
        return self._state.user

    # ==================== SESSION ====================

    def login(self, email: str, password: str, role: UserRole, access_code: Optional[str] = None) -> AppState:
        token = self.source.login(email, password, role, access_code)
        self._state = AppState(user=token.user, token=token.token)
        return self.refresh()

    def register(self, data: RegisterRequest) -> AppState:
        token = self.source.register(data)
        self._state = AppState(user=token.user, token=token.token)
        return self.refresh()

    def logout(self) -> AppState:
        self.source.logout()
        self._state = AppState()
        return self._state

    def select_branch(self, branch_id: Optional[str]) -> AppState:
        """Change the branch filter; validated against the user's role"""
        scope = resolve_branch_scope(self._require_user(), branch_id)
        return self._replace(selected_branch_id=scope.selected_branch_id)

    def refresh(self) -> AppState:
        """Re-fetch every collection from the source"""
        if not self._state.is_authenticated:
            return self._state
        return self._replace(
            products=self.source.list_products(),
            transactions=self.source.list_transactions(),
            branches=self.source.list_branches(),
        )

    # ==================== MUTATIONS ====================

    def add_product(self, data: ProductCreate) -> AppState:
        self.source.create_product(data)
        return self.refresh()

    def update_product(self, product_id: str, data: ProductUpdate) -> AppState:
        self.source.update_product(product_id, data)
        return self.refresh()

    def delete_product(self, product_id: str) -> AppState:
        self.source.delete_product(product_id)
        return self.refresh()

    def add_branch(self, name: str, location: str = "New Location") -> AppState:
        self.source.create_branch(BranchCreate(name=name, location=location))
        return self.refresh()

    def record_sale(self, data: TransactionCreate) -> AppState:
        transaction = self.source.record_transaction(data)
        logger.info(f"Sale {transaction.id} recorded: {transaction.total_amount:.2f}")
        return self.refresh()

    # ==================== VIEWS ====================

    def scope(self) -> BranchScope:
        return resolve_branch_scope(self._require_user(), self._state.selected_branch_id)

    def scoped(self, scope: Optional[BranchScope] = None) -> AppState:
        """Snapshot restricted to the visible branches (branches list included)"""
        scope = scope or self.scope()
        return self._state.model_copy(update={
            "products": scope.filter(self._state.products),
            "transactions": scope.filter(self._state.transactions),
            "branches": scope.filter(self._state.branches, key=lambda b: b.id),
        })
