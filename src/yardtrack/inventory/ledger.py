# src/yardtrack/inventory/ledger.py
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from yardtrack.common.errors import ValidationError

logger = logging.getLogger(__name__)


def utcnow() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def to_tons(value, field: str = "tons") -> Decimal:
    """Coerce a request quantity; anything but a finite positive number is invalid."""
    if value is None or isinstance(value, bool) or value == "":
        raise ValidationError(f"{field} must be a positive number")
    try:
        tons = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a positive number")
    if not tons.is_finite() or tons <= 0:
        raise ValidationError(f"{field} must be a positive number")
    return tons


@dataclass(frozen=True)
class StockChange:
    product_id: str
    tons: Decimal
    previous_stock: Decimal
    new_stock: Decimal


class StockLedger:
    """Per-product stock in tons, never allowed below zero.

    `store` supplies the atomic primitives (`increment_stock`,
    `decrement_stock`, `get_stock`); this class owns validation and logging.
    Audit records are written by callers after the mutation succeeds.
    """

    def __init__(self, store, clock=utcnow):
        self.store = store
        self.clock = clock

    def available(self, product_id: str) -> Decimal:
        return self.store.get_stock(product_id)

    def increase(self, product_id: str, tons) -> StockChange:
        product_id = _product(product_id)
        tons = to_tons(tons)
        new_stock = self.store.increment_stock(product_id, tons, self.clock())
        logger.info("stock increased: %s +%s tons (now %s)", product_id, tons, new_stock)
        return StockChange(product_id, tons, new_stock - tons, new_stock)

    def decrease(self, product_id: str, tons) -> StockChange:
        """Raises InsufficientStock, leaving stock untouched, when tons > current stock."""
        product_id = _product(product_id)
        tons = to_tons(tons)
        new_stock = self.store.decrement_stock(product_id, tons, self.clock())
        logger.info("stock decreased: %s -%s tons (now %s)", product_id, tons, new_stock)
        return StockChange(product_id, tons, new_stock + tons, new_stock)

    def decrease_for_sale(self, sale_id: str, product_id: str, tons) -> StockChange | None:
        """Deplete at most once per (sale, product); None when already depleted.

        A failed decrease gives the claim back so the sale can be depleted later.
        """
        product_id = _product(product_id)
        tons = to_tons(tons)
        if not self.store.claim_depletion(sale_id, product_id):
            logger.info("sale %s already depleted %s, skipping", sale_id, product_id)
            return None
        try:
            return self.decrease(product_id, tons)
        except Exception:
            self.store.release_depletion(sale_id, product_id)
            raise


def _product(product_id) -> str:
    if not isinstance(product_id, str) or not product_id.strip():
        raise ValidationError("productId is required")
    return product_id.strip()
