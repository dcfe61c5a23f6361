"""
Helpers shared by inventory routes, reports, the POS cart and the local store.
"""
from datetime import date
from typing import Dict, Iterable, Optional

from schemas import ProductResponse

EXPIRY_WARNING_DAYS = 30


class ExpiryStatus:
    EXPIRED = "EXPIRED"
    WARNING = "WARNING"
    GOOD = "GOOD"


def display_stock(stock: int) -> int:
    """Stock as shown to users; never below zero."""
    return max(0, stock)


def is_low_stock(product) -> bool:
    return product.stock <= product.min_stock_level


def days_until_expiry(expiry_date: Optional[date], today: date) -> Optional[int]:
    if expiry_date is None:
        return None
    return (expiry_date - today).days


def expiry_status(expiry_date: Optional[date], today: date) -> str:
    days = days_until_expiry(expiry_date, today)
    if days is None:
        return ExpiryStatus.GOOD
    if days < 0:
        return ExpiryStatus.EXPIRED
    if days <= EXPIRY_WARNING_DAYS:
        return ExpiryStatus.WARNING
    return ExpiryStatus.GOOD


def matches_search(product, term: str) -> bool:
    """Case-insensitive match on name or batch number, substring match on barcode."""
    if not term:
        return True
    needle = term.strip().lower()
    return (
        needle in product.name.lower()
        or needle in product.batch_number.lower()
        or bool(product.barcode and term.strip() in product.barcode)
    )


def find_product_by_code(products: Iterable, code: str):
    """
    Resolve a scanned or typed code to a product.

    Matches an exact barcode, an exact batch number, or the product name
    ignoring case. Returns None when nothing matches.
    """
    code = (code or "").strip()
    if not code:
        return None

    for product in products:
        if (product.barcode and product.barcode == code) \
                or product.batch_number == code \
                or product.name.lower() == code.lower():
            return product
    return None


def build_product_response(product, branch_names: Dict[str, str], today: date) -> ProductResponse:
    """Product view with branch name, low-stock flag and expiry status filled in"""
    response = ProductResponse.model_validate(product)
    return response.model_copy(update={
        "branch_name": branch_names.get(product.branch_id),
        "is_low_stock": is_low_stock(product),
        "expiry_status": expiry_status(product.expiry_date, today),
        "days_to_expiry": days_until_expiry(product.expiry_date, today),
    })
