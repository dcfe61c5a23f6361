"""
Transaction API Endpoints
Sales listing and checkout. Transactions are append-only.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from datetime import date
from typing import List, Optional
import logging

from database import get_db
from models import Branch, Transaction, User
from schemas import TransactionCreate, TransactionResponse
from auth import get_current_user
from date_utils import utc_range_for_dates
from scope_utils import BranchScope, resolve_branch_scope, require_writable_branch
from stock_service import record_transaction

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


async def load_scoped_transactions(
    db: AsyncSession,
    scope: BranchScope,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Transaction]:
    """Visible transactions, newest first, optionally limited to local dates start..end"""
    query = select(Transaction).where(scope.clause(Transaction.branch_id))

    if start:
        start_utc, _ = utc_range_for_dates(start, start)
        query = query.where(Transaction.date >= start_utc)
    if end:
        _, end_utc = utc_range_for_dates(end, end)
        query = query.where(Transaction.date <= end_utc)

    result = await db.execute(query.order_by(Transaction.date.desc()))
    return list(result.scalars().all())


@router.get("", response_model=List[TransactionResponse])
async def list_transactions(
    branch_id: Optional[str] = Query(None, description="Branch id, or 'all'"),
    start: Optional[date] = Query(None, description="First local date (inclusive)"),
    end: Optional[date] = Query(None, description="Last local date (inclusive)"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")

    scope = resolve_branch_scope(current_user, branch_id)
    return await load_scoped_transactions(db, scope, start, end)


@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    sale_data: TransactionCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a sale and decrement stock for each item.

    The cashier is always the authenticated user; the total is computed from
    the items.
    """
    branch_id = require_writable_branch(current_user, sale_data.branch_id)

    result = await db.execute(select(Branch.id).where(Branch.id == branch_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Branch not found")

    return await record_transaction(db, sale_data, branch_id=branch_id, user_id=current_user.id)
