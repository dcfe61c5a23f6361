"""
Branch API Endpoints
"""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List
import logging

from database import get_db
from models import Branch, User, UserRole
from schemas import BranchCreate, BranchResponse
from auth import get_current_user, require_role, find_branch_by_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/branches", tags=["branches"])


@router.get("", response_model=List[BranchResponse])
async def list_branches(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    List every branch in the tenant.

    Branch names are needed to label scoped data (e.g. a manager's branch
    switcher), so the full list is visible to all signed-in users.
    """
    result = await db.execute(select(Branch).order_by(Branch.created_at, Branch.name))
    return result.scalars().all()


@router.post("", response_model=BranchResponse, status_code=status.HTTP_201_CREATED)
async def create_branch(
    branch_data: BranchCreate,
    response: Response,
    current_user: User = Depends(require_role(UserRole.OWNER)),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a branch (owner only).

    A branch whose name matches ignoring case is returned instead of creating
    a duplicate, with 200 rather than 201.
    """
    existing = await find_branch_by_name(db, branch_data.name)
    if existing:
        response.status_code = status.HTTP_200_OK
        return existing

    branch = Branch(name=branch_data.name.strip(), location=branch_data.location)
    db.add(branch)
    await db.commit()
    await db.refresh(branch)

    logger.info(f"Branch created: {branch.name} ({branch.location}) by {current_user.email}")
    return branch
