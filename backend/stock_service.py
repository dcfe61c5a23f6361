"""
Sale recording and stock adjustment.

Recording a sale writes one immutable transaction and decrements the stock of
every product it sold. When the database supports it, both effects commit as
one unit; otherwise each write commits on its own and a failure part-way
leaves the earlier writes in place.

Stock is decremented with a relative UPDATE (stock = stock - n), so two
sales of the same product never overwrite each other's decrement.
"""
import logging
from typing import Dict, List

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database import supports_atomic_writes
from errors import StockWriteError, ValidationFailed
from models import Product, Transaction, TransactionItem
from schemas import TransactionCreate, TransactionItemCreate

logger = logging.getLogger(__name__)


def calculate_total(items: List[TransactionItemCreate]) -> float:
    """Sale total: sum of unit price x quantity, rounded to cents"""
    return round(sum(item.price * item.quantity for item in items), 2)


async def _snapshot_names(db: AsyncSession, items: List[TransactionItemCreate]) -> Dict[str, str]:
    """Product names keyed by id, for the line item snapshots"""
    product_ids = {item.product_id for item in items}
    result = await db.execute(
        select(Product.id, Product.name).where(Product.id.in_(product_ids))
    )
    return {product_id: name for product_id, name in result.all()}


async def _decrement_stock(db: AsyncSession, product_id: str, quantity: int) -> int:
    """Subtract `quantity` from the product's stock in the database. Returns rows matched."""
    result = await db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def record_transaction(
    db: AsyncSession,
    sale_data: TransactionCreate,
    branch_id: str,
    user_id: str,
) -> Transaction:
    """
    Persist a sale and decrement stock for each item, in payload order.

    Stock is not re-checked here; the POS cart caps quantities at shelf stock
    before checkout.

    Raises:
        ValidationFailed: an item has no name and its product is unknown
        StockWriteError: a write failed (rolled back when atomic)
    """
    atomic = supports_atomic_writes()
    if not atomic:
        logger.warning(
            "Atomic writes not available on this database. "
            "Falling back to sequential writes for sale recording."
        )

    names = await _snapshot_names(db, sale_data.items)
    line_items = []
    for position, item in enumerate(sale_data.items):
        name = item.name or names.get(item.product_id)
        if not name:
            raise ValidationFailed(f"Product {item.product_id} not found")
        line_items.append(TransactionItem(
            position=position,
            product_id=item.product_id,
            name=name,
            quantity=item.quantity,
            price=item.price,
        ))

    transaction = Transaction(
        total_amount=calculate_total(sale_data.items),
        branch_id=branch_id,
        user_id=user_id,
        payment_method=sale_data.payment_method,
        items=line_items,
    )

    try:
        db.add(transaction)
        await db.flush()
        if not atomic:
            await db.commit()

        for item in sale_data.items:
            matched = await _decrement_stock(db, item.product_id, item.quantity)
            if not matched:
                logger.warning(f"Sale {transaction.id}: product {item.product_id} not found, stock unchanged")
            if not atomic:
                await db.commit()

        if atomic:
            await db.commit()

    except SQLAlchemyError as e:
        logger.error(f"Transaction failed: {e}")
        await db.rollback()
        if atomic:
            raise StockWriteError("Transaction failed. No changes were saved.")
        raise StockWriteError("Transaction failed part-way. Some changes may have been saved.")

    logger.info(
        f"Recorded sale {transaction.id}: {len(line_items)} item(s), "
        f"total {transaction.total_amount:.2f}, branch {branch_id}"
    )

    result = await db.execute(select(Transaction).where(Transaction.id == transaction.id))
    return result.scalar_one()
