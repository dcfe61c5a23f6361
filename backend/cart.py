"""
Point-of-sale cart.

Quantities are capped at the shelf stock the cart was given; the server does
not re-check stock when the sale is recorded.
"""
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel

from models import PaymentMethod
from product_utils import find_product_by_code
from schemas import TransactionCreate, TransactionItemCreate


class CartLine(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int
    stock: int  # Shelf stock when the line was last touched

    @property
    def subtotal(self) -> float:
        return self.price * self.quantity


class Cart:
    def __init__(self):
        self._lines: Dict[str, CartLine] = {}

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def total(self) -> float:
        return round(sum(line.subtotal for line in self._lines.values()), 2)

    def is_empty(self) -> bool:
        return not self._lines

    def add(self, product) -> bool:
        """
        Add one unit of `product`. Returns False (cart unchanged) when the
        product is out of stock or the cart already holds all of it.
        """
        if product.stock <= 0:
            return False

        line = self._lines.get(product.id)
        if line is None:
            self._lines[product.id] = CartLine(
                product_id=product.id,
                name=product.name,
                price=product.selling_price,
                quantity=1,
                stock=product.stock,
            )
            return True

        if line.quantity >= product.stock:
            return False
        self._lines[product.id] = line.model_copy(update={"quantity": line.quantity + 1, "stock": product.stock})
        return True

    def add_by_code(self, products: Iterable, code: str):
        """Scan or type a barcode, batch number or exact name. Returns the product added, or None."""
        product = find_product_by_code(products, code)
        if product is None or not self.add(product):
            return None
        return product

    def change_quantity(self, product_id: str, delta: int) -> bool:
        """Step a line's quantity by `delta`; never below 1, never above stock"""
        line = self._lines.get(product_id)
        if line is None:
            return False
        quantity = max(1, line.quantity + delta)
        if quantity > line.stock:
            return False
        self._lines[product_id] = line.model_copy(update={"quantity": quantity})
        return True

    def remove(self, product_id: str):
        self._lines.pop(product_id, None)

    def clear(self):
        self._lines.clear()

    def checkout(self, payment_method: PaymentMethod, branch_id: Optional[str] = None) -> TransactionCreate:
        """Build the sale payload and empty the cart"""
        if self.is_empty():
            raise ValueError("Cart is empty")

        sale = TransactionCreate(
            branch_id=branch_id,
            payment_method=payment_method,
            items=[
                TransactionItemCreate(
                    product_id=line.product_id,
                    name=line.name,
                    quantity=line.quantity,
                    price=line.price,
                )
                for line in self._lines.values()
            ],
        )
        self.clear()
        return sale
