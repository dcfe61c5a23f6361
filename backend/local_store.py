"""
Local data store for mock mode.

Keeps the four collections in one JSON file under the keys nexile_products,
nexile_transactions, nexile_branches and nexile_users, seeded with the demo
records on first use. It offers the same methods as NexileApiClient and
applies the same registration and login rules, so the app runs without a
server. Stock never drops below zero here.
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel

from models import UserRole, generate_id
from schemas import (
    BranchCreate, BranchResponse, ProductBase, ProductCreate, ProductResponse, ProductUpdate,
    RegisterRequest, Token, TransactionCreate, TransactionResponse, TransactionItemResponse, UserResponse
)
from auth import get_password_hash, normalize_email, check_registration, check_login, build_user_response
from errors import AuthenticationFailed, NotFound, PermissionDenied, ValidationFailed
from product_utils import build_product_response, matches_search
from scope_utils import normalize_branch_selection, resolve_branch_scope, require_writable_branch
from stock_service import calculate_total
from date_utils import get_local_today
import ai_insights
import seed_demo_data

logger = logging.getLogger(__name__)

PRODUCTS_KEY = "nexile_products"
TRANSACTIONS_KEY = "nexile_transactions"
BRANCHES_KEY = "nexile_branches"
USERS_KEY = "nexile_users"

DEFAULT_OWNER_EMAIL = "owner@nexile.com"


class StoredProduct(ProductBase):
    id: str
    branch_id: str


class StoredUser(BaseModel):
    id: str
    name: str
    email: str
    hashed_password: str
    role: UserRole
    assigned_branch_id: Optional[str] = None
    managed_branch_ids: List[str] = []
    created_at: datetime


class LocalStore:
    """
    JSON-file backed store. With `path=None` nothing is written to disk.

    Like the API, the current user comes from login/register; every write
    needs one.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self.current_user: Optional[StoredUser] = None
        self._load()

    # ==================== PERSISTENCE ====================

    def _load(self):
        raw: Dict = {}
        if self.path and self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.error(f"Error loading local store {self.path}: {e}")
                raw = {}

        today = get_local_today()
        self.branches = [BranchResponse.model_validate(b) for b in raw.get(BRANCHES_KEY, seed_demo_data.DEMO_BRANCHES)]
        self.products = [
            StoredProduct.model_validate(p) for p in raw.get(PRODUCTS_KEY, seed_demo_data.demo_products(today))
        ]
        self.transactions = [
            TransactionResponse.model_validate(t)
            for t in raw.get(TRANSACTIONS_KEY, seed_demo_data.demo_transactions())
        ]

        if USERS_KEY in raw:
            self.users = [StoredUser.model_validate(u) for u in raw[USERS_KEY]]
        else:
            self.users = self._demo_users()

        # The default owner account is always available
        if not any(u.email == DEFAULT_OWNER_EMAIL for u in self.users):
            owner = next(u for u in self._demo_users() if u.email == DEFAULT_OWNER_EMAIL)
            self.users.insert(0, owner)

        self._save()

    def _demo_users(self) -> List[StoredUser]:
        hashed = get_password_hash(seed_demo_data.DEMO_PASSWORD)
        now = datetime.utcnow()
        return [
            StoredUser(hashed_password=hashed, created_at=now, **user)
            for user in seed_demo_data.DEMO_USERS
        ]

    def _save(self):
        if not self.path:
            return
        data = {
            PRODUCTS_KEY: [p.model_dump(mode="json") for p in self.products],
            TRANSACTIONS_KEY: [t.model_dump(mode="json") for t in self.transactions],
            BRANCHES_KEY: [b.model_dump(mode="json") for b in self.branches],
            USERS_KEY: [u.model_dump(mode="json") for u in self.users],
        }
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def _require_user(self) -> StoredUser:
        if self.current_user is None:
            raise AuthenticationFailed("Not signed in")
        return self.current_user

    def _branch_names(self) -> Dict[str, str]:
        return {b.id: b.name for b in self.branches}

    def _find_branch_by_name(self, name: str) -> Optional[BranchResponse]:
        needle = name.strip().lower()
        return next((b for b in self.branches if b.name.lower() == needle), None)

    def _get_or_create_branch(self, name: str, location: str) -> BranchResponse:
        branch = self._find_branch_by_name(name)
        if branch:
            return branch
        branch = BranchResponse(id=generate_id(), name=name.strip(), location=location)
        self.branches.append(branch)
        logger.info(f"Created new branch: {branch.name}")
        return branch

    def _token(self, user: StoredUser) -> Token:
        self.current_user = user
        return Token(token=f"local-{user.id}", user=build_user_response(user))

    # ==================== AUTH ====================

    def register(self, data: RegisterRequest) -> Token:
        email = normalize_email(data.email)
        email_taken = any(u.email == email for u in self.users)
        branch_name = check_registration(data.role, data.branch_name, data.access_code, email_taken)

        assigned_branch_id = None
        if data.role == UserRole.PHARMACIST:
            assigned_branch_id = self._get_or_create_branch(branch_name, "New Location").id
        elif data.role == UserRole.OWNER and branch_name:
            self._get_or_create_branch(branch_name, "HQ")

        user = StoredUser(
            id=generate_id(),
            name=data.name.strip(),
            email=email,
            hashed_password=get_password_hash(data.password),
            role=data.role,
            assigned_branch_id=assigned_branch_id,
            created_at=datetime.utcnow(),
        )
        self.users.append(user)
        self._save()
        return self._token(user)

    def login(self, email: str, password: str, role: UserRole, access_code: Optional[str] = None) -> Token:
        email = normalize_email(email)
        user = next((u for u in self.users if u.email == email), None)
        branch_exists = bool(user and any(b.id == user.assigned_branch_id for b in self.branches))
        check_login(user, role, password, access_code, branch_exists)
        return self._token(user)

    def logout(self):
        self.current_user = None

    def me(self) -> UserResponse:
        return build_user_response(self._require_user())

    # ==================== INVENTORY ====================

    def list_products(self, branch_id: Optional[str] = None, search: Optional[str] = None) -> List[ProductResponse]:
        """Products of one branch (or all); callers narrow to their branch scope."""
        branch_id = normalize_branch_selection(branch_id)
        names = self._branch_names()
        today = get_local_today()
        return [
            build_product_response(p, names, today) for p in self.products
            if (branch_id is None or p.branch_id == branch_id) and matches_search(p, search or "")
        ]

    def _get_visible_product(self, user: StoredUser, product_id: str) -> StoredProduct:
        product = next((p for p in self.products if p.id == product_id), None)
        # Out-of-scope products are reported as missing
        if product is None or not resolve_branch_scope(user).allows(product.branch_id):
            raise NotFound("Product not found")
        return product

    def _ensure_branch_exists(self, branch_id: str) -> None:
        if not any(b.id == branch_id for b in self.branches):
            raise NotFound("Branch not found")

    def create_product(self, data: ProductCreate) -> ProductResponse:
        user = self._require_user()
        branch_id = require_writable_branch(user, data.branch_id)
        self._ensure_branch_exists(branch_id)

        product = StoredProduct(id=generate_id(), branch_id=branch_id, **data.model_dump(exclude={"branch_id"}))
        self.products.append(product)
        self._save()
        return build_product_response(product, self._branch_names(), get_local_today())

    def update_product(self, product_id: str, data: ProductUpdate) -> ProductResponse:
        user = self._require_user()
        current = self._get_visible_product(user, product_id)
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None or k == "barcode"}

        # Moving a product requires write access to the target branch too
        if changes.get("branch_id") and changes["branch_id"] != current.branch_id:
            changes["branch_id"] = require_writable_branch(user, changes["branch_id"])
            self._ensure_branch_exists(changes["branch_id"])
        else:
            changes.pop("branch_id", None)

        updated = current.model_copy(update=changes)
        self.products = [updated if p.id == product_id else p for p in self.products]
        self._save()
        return build_product_response(updated, self._branch_names(), get_local_today())

    def delete_product(self, product_id: str) -> None:
        user = self._require_user()
        self._get_visible_product(user, product_id)
        self.products = [p for p in self.products if p.id != product_id]
        self._save()

    # ==================== BRANCHES ====================

    def list_branches(self) -> List[BranchResponse]:
        return list(self.branches)

    def create_branch(self, data: BranchCreate) -> BranchResponse:
        user = self._require_user()
        if user.role != UserRole.OWNER:
            raise PermissionDenied(f"Requires role: {UserRole.OWNER.value}")
        branch = self._get_or_create_branch(data.name, data.location)
        self._save()
        return branch

    # ==================== TRANSACTIONS ====================

    def list_transactions(self, branch_id: Optional[str] = None) -> List[TransactionResponse]:
        """Transactions of one branch (or all), newest first; callers narrow to their branch scope."""
        branch_id = normalize_branch_selection(branch_id)
        return sorted(
            (t for t in self.transactions if branch_id is None or t.branch_id == branch_id),
            key=lambda t: t.date,
            reverse=True,
        )

    def record_transaction(self, data: TransactionCreate) -> TransactionResponse:
        user = self._require_user()
        branch_id = require_writable_branch(user, data.branch_id)
        self._ensure_branch_exists(branch_id)

        names = {p.id: p.name for p in self.products}
        items = []
        for item in data.items:
            name = item.name or names.get(item.product_id)
            if not name:
                raise ValidationFailed(f"Product {item.product_id} not found")
            items.append(TransactionItemResponse(
                product_id=item.product_id,
                name=name,
                quantity=item.quantity,
                price=item.price,
            ))

        transaction = TransactionResponse(
            id=generate_id(),
            date=datetime.utcnow(),
            total_amount=calculate_total(data.items),
            items=items,
            branch_id=branch_id,
            user_id=user.id,
            payment_method=data.payment_method,
        )

        sold: Dict[str, int] = {}
        for item in data.items:
            sold[item.product_id] = sold.get(item.product_id, 0) + item.quantity
        self.products = [
            p.model_copy(update={"stock": max(0, p.stock - sold[p.id])}) if p.id in sold else p
            for p in self.products
        ]

        self.transactions.insert(0, transaction)
        self._save()
        return transaction

    # ==================== DASHBOARD ====================

    def get_insight(self, branch_id: Optional[str] = None) -> str:
        """Insight over the signed-in user's visible data"""
        scope = resolve_branch_scope(self._require_user(), branch_id)
        products = scope.filter(self.products)
        transactions = scope.filter(self.list_transactions())
        return asyncio.run(ai_insights.generate_insight(products, transactions))
