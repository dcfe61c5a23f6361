"""
Report API Endpoints
Preview, CSV download and WhatsApp share for the six report types
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from datetime import date
from io import BytesIO
from typing import List, Optional
import logging

from database import get_db
from models import Branch, User
from schemas import ReportType, ReportInfo, ReportTable, ShareResponse
from auth import get_current_user
from date_utils import DatePreset, get_local_today, preset_date_range
from inventory import load_scoped_products
from transactions import load_scoped_transactions
from scope_utils import resolve_branch_scope
import report_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


def resolve_date_range(preset: Optional[str], start: Optional[date], end: Optional[date], today: date):
    """Explicit start/end win over a preset; the default is today only."""
    if start or end:
        start = start or end
        end = end or start
    elif preset:
        try:
            start, end = preset_date_range(preset.upper(), today)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    else:
        start = end = today

    if start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    return start, end


async def build_scoped_report(
    report_type: ReportType,
    current_user: User,
    db: AsyncSession,
    branch_id: Optional[str],
    preset: Optional[str],
    start: Optional[date],
    end: Optional[date],
    search: Optional[str] = None,
):
    """Report table plus the full-period transactions it was built from"""
    info = report_service.get_report_info(report_type)
    if current_user.role not in info.roles:
        raise HTTPException(status_code=403, detail=f"{info.title} is available to managers and owners only")

    today = get_local_today()
    start, end = resolve_date_range(preset, start, end, today)
    scope = resolve_branch_scope(current_user, branch_id)

    products = await load_scoped_products(db, scope)
    transactions = await load_scoped_transactions(db, scope, start, end)
    result = await db.execute(select(Branch).order_by(Branch.created_at, Branch.name))
    branches = scope.filter(result.scalars().all(), key=lambda b: b.id)

    table = report_service.build_report(
        report_type,
        products=products,
        transactions=transactions,
        branches=branches,
        start=start,
        end=end,
        today=today,
        selected_branch_id=scope.single_branch_id,
        search=search or "",
    )
    return table, transactions


@router.get("", response_model=List[ReportInfo])
async def list_reports(current_user: User = Depends(get_current_user)):
    """Reports the caller's role may generate"""
    return report_service.reports_for_role(current_user.role)


@router.get("/presets", response_model=List[str])
async def list_date_presets():
    return list(DatePreset.ALL)


@router.get("/{report_type}", response_model=ReportTable)
async def preview_report(
    report_type: ReportType,
    branch_id: Optional[str] = Query(None, description="Branch id, or 'all'"),
    preset: Optional[str] = Query(None, description="TODAY, WEEK, MONTH, LAST_MONTH or YTD"),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    search: Optional[str] = Query(None),
    limit: int = Query(report_service.PREVIEW_ROW_LIMIT, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """On-screen preview: at most `limit` rows, with the full row count"""
    table, _ = await build_scoped_report(report_type, current_user, db, branch_id, preset, start, end, search)
    return report_service.preview(table, limit)


@router.get("/{report_type}/csv")
async def download_report_csv(
    report_type: ReportType,
    branch_id: Optional[str] = Query(None),
    preset: Optional[str] = Query(None),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Full report as a CSV attachment"""
    table, _ = await build_scoped_report(report_type, current_user, db, branch_id, preset, start, end)
    filename = report_service.report_filename(table)

    logger.info(f"CSV export {report_type.value}: {table.total_rows} row(s) for {current_user.email}")

    return StreamingResponse(
        BytesIO(report_service.to_csv(table).encode("utf-8")),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{report_type}/share", response_model=ShareResponse)
async def share_report(
    report_type: ReportType,
    branch_id: Optional[str] = Query(None),
    preset: Optional[str] = Query(None),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Revenue summary text and a wa.me link for sharing over WhatsApp"""
    table, transactions = await build_scoped_report(report_type, current_user, db, branch_id, preset, start, end)
    text, url = report_service.share_message(table, transactions)
    return ShareResponse(text=text, url=url)
