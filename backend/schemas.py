from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List, Dict
from datetime import datetime, date
from enum import Enum
from models import UserRole, PaymentMethod


class ReportType(str, Enum):
    DAILY_SALES = "DAILY_SALES"
    STOCK_LEVELS = "STOCK_LEVELS"
    LOW_STOCK = "LOW_STOCK"
    EXPIRY_RISK = "EXPIRY_RISK"
    PROFIT_LOSS = "PROFIT_LOSS"
    BRANCH_PERF = "BRANCH_PERF"


# Branch Schemas
class BranchCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    location: str = Field(default="New Location", max_length=255)


class BranchResponse(BaseModel):
    id: str
    name: str
    location: str

    class Config:
        from_attributes = True


# User Schemas
class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: UserRole
    assigned_branch_id: Optional[str] = None  # Pharmacists
    managed_branch_ids: List[str] = []  # Managers
    created_at: datetime
    trial_expired: bool = False

    class Config:
        from_attributes = True


# Auth Schemas
class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=1)
    role: UserRole
    branch_name: Optional[str] = None  # Required for pharmacists, optional for owners
    access_code: Optional[str] = None  # Required for managers


class LoginRequest(BaseModel):
    email: str
    password: str
    role: UserRole
    access_code: Optional[str] = None  # Required for managers


class Token(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserResponse


# Product Schemas
class ProductBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    category: str = Field(default="General", max_length=50)
    barcode: Optional[str] = Field(None, max_length=50, description="Manufacturer barcode (EAN-13, UPC-A, etc.)")
    batch_number: str = Field(min_length=1, max_length=50)
    expiry_date: date
    cost_price: float = Field(ge=0)
    selling_price: float = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    min_stock_level: int = Field(default=10, ge=0)


class ProductCreate(ProductBase):
    branch_id: Optional[str] = None  # Defaults to the pharmacist's assigned branch


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    category: Optional[str] = Field(None, max_length=50)
    barcode: Optional[str] = Field(None, max_length=50)
    batch_number: Optional[str] = Field(None, min_length=1, max_length=50)
    expiry_date: Optional[date] = None
    cost_price: Optional[float] = Field(None, ge=0)
    selling_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    min_stock_level: Optional[int] = Field(None, ge=0)
    branch_id: Optional[str] = None


class ProductResponse(ProductBase):
    id: str
    branch_id: str
    stock: int = 0

    # Context-aware fields
    branch_name: Optional[str] = None
    is_low_stock: bool = False
    expiry_status: str = "GOOD"
    days_to_expiry: Optional[int] = None

    @field_validator("stock", mode="before")
    @classmethod
    def clamp_stock(cls, value):
        # Sales decrement without a floor; display never goes below zero
        return max(0, value or 0)

    class Config:
        from_attributes = True


# Transaction Schemas
class TransactionItemCreate(BaseModel):
    product_id: str
    quantity: int = Field(gt=0, description="Must be greater than 0")
    price: float = Field(ge=0, description="Unit selling price at time of sale")
    name: Optional[str] = None  # Snapshot; looked up from the product when omitted


class TransactionCreate(BaseModel):
    branch_id: Optional[str] = None  # Defaults to the pharmacist's assigned branch
    payment_method: PaymentMethod
    items: List[TransactionItemCreate] = Field(min_length=1, description="At least one item required")


class TransactionItemResponse(BaseModel):
    product_id: str
    name: str
    quantity: int
    price: float

    class Config:
        from_attributes = True


class TransactionResponse(BaseModel):
    id: str
    date: datetime
    total_amount: float
    items: List[TransactionItemResponse]
    branch_id: str
    user_id: str
    payment_method: PaymentMethod

    class Config:
        from_attributes = True


# Dashboard Schemas
class RevenueByDay(BaseModel):
    date: date
    label: str  # Short weekday name, e.g. "Mon"
    revenue: float


class TopProduct(BaseModel):
    name: str
    quantity: int
    price: float


class DashboardStats(BaseModel):
    branch_ids: Optional[List[str]] = None  # None when viewing the whole tenant
    branch_name: Optional[str] = None  # Set when scoped to a single branch
    low_stock_count: int
    low_stock_items: List[ProductResponse]  # First five
    today_sales: float
    transaction_count: int
    total_sales: float
    month_to_date_sales: Optional[float] = None  # Owners only
    revenue_by_day: List[RevenueByDay]
    top_products: List[TopProduct]
    branches: List[BranchResponse]


class InsightResponse(BaseModel):
    insight: str


# Report Schemas
class ReportInfo(BaseModel):
    id: ReportType
    title: str
    description: str
    roles: List[UserRole]


class ReportTable(BaseModel):
    report_type: ReportType
    title: str
    branch_name: str
    start: date
    end: date
    headers: List[str]
    rows: List[List[str]]
    total_rows: int
    summary: Dict[str, str] = {}


class ShareResponse(BaseModel):
    text: str
    url: str
