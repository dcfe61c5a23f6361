"""
Dashboard API Endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
import logging

from database import get_db
from models import Branch, User, UserRole
from schemas import BranchResponse, DashboardStats, InsightResponse
from auth import get_current_user
from date_utils import get_local_today
from inventory import load_scoped_products
from product_utils import build_product_response
from transactions import load_scoped_transactions
from scope_utils import resolve_branch_scope
import ai_insights
import report_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

LOW_STOCK_PREVIEW = 5


@router.get("/stats", response_model=DashboardStats)
async def get_dashboard_stats(
    branch_id: Optional[str] = Query(None, description="Branch id, or 'all'"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Headline numbers for the caller's visible branches"""
    scope = resolve_branch_scope(current_user, branch_id)
    today = get_local_today()

    products = await load_scoped_products(db, scope)
    transactions = await load_scoped_transactions(db, scope)

    result = await db.execute(select(Branch).order_by(Branch.created_at, Branch.name))
    branches = scope.filter(result.scalars().all(), key=lambda b: b.id)
    branch_names = {b.id: b.name for b in branches}

    low_stock = report_service.low_stock_products(products)
    todays = report_service.filter_transactions_by_date(transactions, today, today)

    return DashboardStats(
        branch_ids=None if scope.is_tenant_wide else sorted(scope.branch_ids),
        branch_name=branch_names.get(scope.single_branch_id) if scope.single_branch_id else None,
        low_stock_count=len(low_stock),
        low_stock_items=[build_product_response(p, branch_names, today) for p in low_stock[:LOW_STOCK_PREVIEW]],
        today_sales=report_service.sum_sales(todays),
        transaction_count=len(transactions),
        total_sales=report_service.sum_sales(transactions),
        month_to_date_sales=(
            report_service.month_to_date_sales(transactions, today)
            if current_user.role == UserRole.OWNER else None
        ),
        revenue_by_day=report_service.revenue_by_day(transactions, today),
        top_products=report_service.top_products(transactions, products),
        branches=[BranchResponse.model_validate(b) for b in branches],
    )


@router.get("/insight", response_model=InsightResponse)
async def get_dashboard_insight(
    branch_id: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """One short AI advisory over the visible inventory and recent sales"""
    scope = resolve_branch_scope(current_user, branch_id)
    products = await load_scoped_products(db, scope)
    transactions = await load_scoped_transactions(db, scope)

    insight = await ai_insights.generate_insight(products, transactions)
    return InsightResponse(insight=insight)
