from sqlalchemy import Column, Integer, String, Float, DateTime, Date, JSON, ForeignKey, Enum as SQLEnum, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
import uuid
from database import Base


def generate_id() -> str:
    return uuid.uuid4().hex


class UserRole(str, enum.Enum):
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    PHARMACIST = "PHARMACIST"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    ONLINE = "ONLINE"


class Branch(Base):
    """A physical pharmacy location"""
    __tablename__ = "branches"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(100), nullable=False, index=True)
    location = Column(String(255), nullable=False, default="New Location")
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Branch {self.name}>"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, nullable=False, index=True)  # Stored lowercased
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False)

    # Soft references to branches.id (not enforced by the database)
    assigned_branch_id = Column(String(36), nullable=True)  # Pharmacists only
    managed_branch_ids = Column(JSON, nullable=False, default=list)  # Managers only

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<User {self.email} ({self.role.value})>"


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=generate_id)
    branch_id = Column(String(36), nullable=False, index=True)  # Soft reference to branches.id

    name = Column(String(100), nullable=False)
    category = Column(String(50), nullable=False, default="General")
    barcode = Column(String(50), nullable=True, index=True)  # Manufacturer barcode (EAN-13, UPC-A, etc.)
    batch_number = Column(String(50), nullable=False)
    expiry_date = Column(Date, nullable=False)
    cost_price = Column(Float, nullable=False, default=0.0)
    selling_price = Column(Float, nullable=False, default=0.0)
    stock = Column(Integer, nullable=False, default=0)
    min_stock_level = Column(Integer, nullable=False, default=10)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_products_branch_barcode', 'branch_id', 'barcode'),
    )

    def __repr__(self):
        return f"<Product {self.name} (Branch: {self.branch_id})>"


class Transaction(Base):
    """Completed sale. Append-only: never updated or deleted."""
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=generate_id)
    date = Column(DateTime, default=datetime.utcnow, nullable=False)
    total_amount = Column(Float, nullable=False)
    branch_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False, index=True)
    payment_method = Column(SQLEnum(PaymentMethod), nullable=False)

    items = relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionItem.position",
        lazy="selectin",
    )

    __table_args__ = (
        Index('idx_transactions_branch_date', 'branch_id', 'date'),
    )

    def __repr__(self):
        return f"<Transaction {self.id} (Branch: {self.branch_id})>"


class TransactionItem(Base):
    """Line item snapshot; name and price are copied at sale time"""
    __tablename__ = "transaction_items"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String(36), ForeignKey("transactions.id", ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String(36), nullable=False)  # Soft reference to products.id
    name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)

    transaction = relationship("Transaction", back_populates="items")

    def __repr__(self):
        return f"<TransactionItem {self.name} x{self.quantity}>"
