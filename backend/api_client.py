"""
HTTP client for the Nexile API (live mode).

Wraps an httpx.Client, keeps the bearer token after login/register and
returns the same schema types the server responds with. Any non-2xx response
becomes an ApiError carrying the server's message.
"""

import httpx
import logging
from typing import Any, Dict, List, Optional

from models import UserRole
from schemas import (
    BranchCreate, BranchResponse, ProductCreate, ProductResponse, ProductUpdate,
    RegisterRequest, LoginRequest, Token, TransactionCreate, TransactionResponse,
    UserResponse, DashboardStats, InsightResponse
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"


class ApiError(Exception):
    """Non-2xx response from the API"""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"API error: {response.status_code}"

    detail = data.get("detail") if isinstance(data, dict) else None
    if isinstance(detail, str):
        return detail
    if isinstance(detail, list) and detail:
        # Request validation errors: report the first one
        first = detail[0]
        return first.get("msg", str(first)) if isinstance(first, dict) else str(first)
    return f"API error: {response.status_code}"


class NexileApiClient:
    """Synchronous API client. Pass `client` to reuse a configured httpx.Client."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL, token: Optional[str] = None, client: Optional[httpx.Client] = None):
        self.client = client or httpx.Client(base_url=base_url, timeout=30.0)
        self.token = token

    def close(self):
        self.client.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, json: Any = None, params: Optional[Dict] = None) -> Any:
        if params:
            params = {key: value for key, value in params.items() if value is not None}

        try:
            response = self.client.request(method, path, json=json, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiError(0, f"Network error: {e}")

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(f"{method} {path} -> {response.status_code}: {message}")
            raise ApiError(response.status_code, message)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ==================== AUTH ====================

    def register(self, data: RegisterRequest) -> Token:
        token = Token.model_validate(self._request("POST", "/auth/register", json=data.model_dump(mode="json")))
        self.token = token.token
        return token

    def login(self, email: str, password: str, role: UserRole, access_code: Optional[str] = None) -> Token:
        data = LoginRequest(email=email, password=password, role=role, access_code=access_code)
        token = Token.model_validate(self._request("POST", "/auth/login", json=data.model_dump(mode="json")))
        self.token = token.token
        return token

    def logout(self):
        self.token = None

    def me(self) -> UserResponse:
        return UserResponse.model_validate(self._request("GET", "/auth/me"))

    # ==================== INVENTORY ====================

    def list_products(self, branch_id: Optional[str] = None, search: Optional[str] = None) -> List[ProductResponse]:
        data = self._request("GET", "/inventory", params={"branch_id": branch_id, "search": search})
        return [ProductResponse.model_validate(item) for item in data]

    def lookup_product(self, code: str, branch_id: Optional[str] = None) -> ProductResponse:
        return ProductResponse.model_validate(
            self._request("GET", "/inventory/lookup", params={"code": code, "branch_id": branch_id})
        )

    def create_product(self, data: ProductCreate) -> ProductResponse:
        return ProductResponse.model_validate(self._request("POST", "/inventory", json=data.model_dump(mode="json")))

    def update_product(self, product_id: str, data: ProductUpdate) -> ProductResponse:
        return ProductResponse.model_validate(
            self._request("PUT", f"/inventory/{product_id}", json=data.model_dump(mode="json", exclude_unset=True))
        )

    def delete_product(self, product_id: str) -> None:
        self._request("DELETE", f"/inventory/{product_id}")

    # ==================== BRANCHES ====================

    def list_branches(self) -> List[BranchResponse]:
        return [BranchResponse.model_validate(item) for item in self._request("GET", "/branches")]

    def create_branch(self, data: BranchCreate) -> BranchResponse:
        return BranchResponse.model_validate(self._request("POST", "/branches", json=data.model_dump(mode="json")))

    # ==================== TRANSACTIONS ====================

    def list_transactions(self, branch_id: Optional[str] = None) -> List[TransactionResponse]:
        data = self._request("GET", "/transactions", params={"branch_id": branch_id})
        return [TransactionResponse.model_validate(item) for item in data]

    def record_transaction(self, data: TransactionCreate) -> TransactionResponse:
        return TransactionResponse.model_validate(
            self._request("POST", "/transactions", json=data.model_dump(mode="json"))
        )

    # ==================== DASHBOARD ====================

    def dashboard_stats(self, branch_id: Optional[str] = None) -> DashboardStats:
        return DashboardStats.model_validate(self._request("GET", "/dashboard/stats", params={"branch_id": branch_id}))

    def get_insight(self, branch_id: Optional[str] = None) -> str:
        data = self._request("GET", "/dashboard/insight", params={"branch_id": branch_id})
        return InsightResponse.model_validate(data).insight
