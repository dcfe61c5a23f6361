"""
Safe auto-seeding system for demo data.

This module provides idempotent seeding that:
- Only runs if SEED_DEMO_DATA is enabled
- Only runs if the database is empty (no branches or users)
- Uses the same demo records as the local (mock mode) store

Demo expiry dates are relative to today so the "expiring soon" and
"healthy" examples stay meaningful whenever the demo is started.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from config import settings
from date_utils import get_local_today
from models import Branch, Product, Transaction, TransactionItem, User, UserRole, PaymentMethod
from auth import get_password_hash

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "password"

DEMO_BRANCHES: List[Dict] = [
    {"id": "b1", "name": "Nexile Main St.", "location": "New York, NY"},
    {"id": "b2", "name": "Nexile Westside", "location": "Los Angeles, CA"},
    {"id": "b3", "name": "Nexile Downtown", "location": "Chicago, IL"},
]

DEMO_USERS: List[Dict] = [
    {"id": "u1", "name": "Admin Owner", "email": "owner@nexile.com", "role": UserRole.OWNER},
    {"id": "u2", "name": "John Pharmacist", "email": "john@nexile.com", "role": UserRole.PHARMACIST,
     "assigned_branch_id": "b1"},
    {"id": "u3", "name": "Sarah Manager", "email": "sarah@nexile.com", "role": UserRole.MANAGER,
     "managed_branch_ids": ["b1", "b2"]},
]


def demo_products(today: Optional[date] = None) -> List[Dict]:
    """Starter inventory for the main branch; Vitamin C expires soon, Ibuprofen is low."""
    today = today or get_local_today()
    return [
        {"id": "p1", "name": "Amoxicillin 500mg", "category": "Antibiotics", "barcode": "8901234567890",
         "batch_number": "AMX-2024-01", "expiry_date": today + timedelta(days=365),
         "cost_price": 5.00, "selling_price": 12.50, "stock": 150, "min_stock_level": 20, "branch_id": "b1"},
        {"id": "p2", "name": "Paracetamol 500mg", "category": "Pain Relief", "barcode": "8909876543210",
         "batch_number": "PCM-2023-99", "expiry_date": today + timedelta(days=540),
         "cost_price": 1.20, "selling_price": 4.50, "stock": 500, "min_stock_level": 50, "branch_id": "b1"},
        {"id": "p3", "name": "Vitamin C 1000mg", "category": "Supplements", "barcode": "8901122334455",
         "batch_number": "VTC-2024-05", "expiry_date": today + timedelta(days=20),
         "cost_price": 8.00, "selling_price": 18.00, "stock": 45, "min_stock_level": 10, "branch_id": "b1"},
        {"id": "p4", "name": "Ibuprofen 400mg", "category": "Pain Relief", "barcode": "8905544332211",
         "batch_number": "IBU-2024-22", "expiry_date": today + timedelta(days=270),
         "cost_price": 3.50, "selling_price": 9.00, "stock": 12, "min_stock_level": 25, "branch_id": "b1"},
    ]


def demo_transactions(now: Optional[datetime] = None) -> List[Dict]:
    """One sale yesterday and one today at the main branch."""
    now = now or datetime.utcnow()
    return [
        {"id": "t1", "date": now - timedelta(days=1), "total_amount": 25.00, "branch_id": "b1", "user_id": "u1",
         "payment_method": PaymentMethod.CARD,
         "items": [{"product_id": "p1", "name": "Amoxicillin 500mg", "quantity": 2, "price": 12.50}]},
        {"id": "t2", "date": now, "total_amount": 9.00, "branch_id": "b1", "user_id": "u1",
         "payment_method": PaymentMethod.CASH,
         "items": [{"product_id": "p2", "name": "Paracetamol 500mg", "quantity": 2, "price": 4.50}]},
    ]


async def is_database_empty(db: AsyncSession) -> bool:
    """True when there are no branches and no users yet."""
    result = await db.execute(select(func.count(Branch.id)))
    if result.scalar() or 0:
        return False
    result = await db.execute(select(func.count(User.id)))
    return not (result.scalar() or 0)


async def seed_demo_records(db: AsyncSession):
    """Insert the demo branches, users, products and sales. Caller checks emptiness."""
    for branch in DEMO_BRANCHES:
        db.add(Branch(**branch))

    hashed = get_password_hash(DEMO_PASSWORD)
    for user in DEMO_USERS:
        db.add(User(hashed_password=hashed, **user))

    for product in demo_products():
        db.add(Product(**product))

    for sale in demo_transactions():
        items = [TransactionItem(position=i, **item) for i, item in enumerate(sale["items"])]
        db.add(Transaction(**{**sale, "items": items}))

    await db.commit()
    logger.info(
        f"Seeded {len(DEMO_BRANCHES)} branches, {len(DEMO_USERS)} users, "
        f"{len(demo_products())} products and {len(demo_transactions())} transactions"
    )


async def seed_demo_data_on_startup(db: AsyncSession):
    """
    Main entry point for auto-seeding demo data on app startup.

    Behavior:
    - Controlled by the SEED_DEMO_DATA setting
    - Only runs if database is empty (no customer data)
    - Idempotent - safe to call multiple times
    """
    if not settings.SEED_DEMO_DATA:
        logger.info("Demo data seeding disabled via SEED_DEMO_DATA=false")
        return

    if not await is_database_empty(db):
        logger.info("Database contains data - skipping demo data seed")
        return

    logger.info("=" * 60)
    logger.info("Database is empty - seeding demo data...")
    logger.info("=" * 60)

    try:
        await seed_demo_records(db)
        logger.info("Demo data seeding completed successfully!")
    except Exception as e:
        logger.error(f"Error seeding demo data: {e}")
        await db.rollback()
        raise
