"""
Inventory API Endpoints
Product CRUD, search and barcode lookup, restricted to the caller's branch scope
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from datetime import datetime
from typing import Dict, List, Optional
import logging

from database import get_db
from models import Branch, Product, User
from schemas import ProductCreate, ProductUpdate, ProductResponse
from auth import get_current_user
from date_utils import get_local_today
from product_utils import build_product_response, matches_search, find_product_by_code
from scope_utils import BranchScope, resolve_branch_scope, require_writable_branch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory", tags=["inventory"])


async def get_branch_names(db: AsyncSession) -> Dict[str, str]:
    result = await db.execute(select(Branch.id, Branch.name))
    return {branch_id: name for branch_id, name in result.all()}


async def load_scoped_products(db: AsyncSession, scope: BranchScope) -> List[Product]:
    result = await db.execute(
        select(Product).where(scope.clause(Product.branch_id)).order_by(Product.name)
    )
    return list(result.scalars().all())


async def _get_visible_product(db: AsyncSession, product_id: str, user: User) -> Product:
    result = await db.execute(select(Product).where(Product.id == product_id))
    product = result.scalar_one_or_none()

    # Out-of-scope products are reported as missing
    if not product or not resolve_branch_scope(user).allows(product.branch_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return product


async def _ensure_branch_exists(db: AsyncSession, branch_id: str) -> None:
    result = await db.execute(select(Branch.id).where(Branch.id == branch_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Branch not found")


@router.get("", response_model=List[ProductResponse])
async def list_products(
    branch_id: Optional[str] = Query(None, description="Branch id, or 'all'"),
    search: Optional[str] = Query(None, description="Match name, batch number or barcode"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List products in the caller's visible branches"""
    scope = resolve_branch_scope(current_user, branch_id)
    products = await load_scoped_products(db, scope)

    if search:
        products = [p for p in products if matches_search(p, search)]

    branch_names = await get_branch_names(db)
    today = get_local_today()
    return [build_product_response(p, branch_names, today) for p in products]


@router.get("/lookup", response_model=ProductResponse)
async def lookup_product(
    code: str = Query(..., min_length=1, description="Barcode, batch number or product name"),
    branch_id: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Resolve a scanned code to a single product in scope"""
    scope = resolve_branch_scope(current_user, branch_id)
    products = await load_scoped_products(db, scope)

    product = find_product_by_code(products, code)
    if not product:
        raise HTTPException(status_code=404, detail=f"Product not found: {code}")

    return build_product_response(product, await get_branch_names(db), get_local_today())


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    product = await _get_visible_product(db, product_id, current_user)
    return build_product_response(product, await get_branch_names(db), get_local_today())


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    product_data: ProductCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a product in one branch the caller may act on"""
    branch_id = require_writable_branch(current_user, product_data.branch_id)
    await _ensure_branch_exists(db, branch_id)

    product = Product(**product_data.model_dump(exclude={"branch_id"}), branch_id=branch_id)
    db.add(product)
    await db.commit()
    await db.refresh(product)

    logger.info(f"Product created: {product.name} (branch {branch_id}) by {current_user.email}")
    return build_product_response(product, await get_branch_names(db), get_local_today())


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: str,
    product_data: ProductUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update a product"""
    product = await _get_visible_product(db, product_id, current_user)

    # Only barcode may be cleared; other explicit nulls are ignored
    update_data = {
        key: value for key, value in product_data.model_dump(exclude_unset=True).items()
        if value is not None or key == "barcode"
    }

    # Moving a product requires write access to the target branch too
    if update_data.get("branch_id") and update_data["branch_id"] != product.branch_id:
        update_data["branch_id"] = require_writable_branch(current_user, update_data["branch_id"])
        await _ensure_branch_exists(db, update_data["branch_id"])
    else:
        update_data.pop("branch_id", None)

    for key, value in update_data.items():
        setattr(product, key, value)

    product.updated_at = datetime.utcnow()

    await db.commit()
    await db.refresh(product)

    return build_product_response(product, await get_branch_names(db), get_local_today())


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete a product. Past transactions keep their line item snapshots."""
    product = await _get_visible_product(db, product_id, current_user)

    await db.delete(product)
    await db.commit()

    logger.info(f"Product deleted: {product_id} by {current_user.email}")
