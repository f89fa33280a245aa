"""
Catalog Gate

The core's view of the product catalog: availability, price resolution
and stock. Stock is only ever changed here, and only by callers already
holding the row lock of the order that consumes or returns it.
"""

import logging
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from pos_core.core.errors import BadRequest, NotFound
from pos_core.database import get_for_update
from pos_core.models import Product
from pos_core.services.totals import parse_amount, to_money

logger = logging.getLogger(__name__)


class CatalogGate:
    """Product lookups and stock bookkeeping for the order ledger."""

    async def get_product(
        self,
        session: AsyncSession,
        product_id: int,
        include_inactive: bool = False,
    ) -> Product:
        """
        Lock and return a product row.

        Items already on an open order keep working after their product is
        deactivated, so edits pass ``include_inactive=True``.

        Raises:
            NotFound: product missing, or inactive when not included
        """
        product = await get_for_update(session, Product, product_id)
        if product is None or (not product.is_active and not include_inactive):
            raise NotFound("Product not found")
        return product

    def ensure_orderable(self, product: Product) -> None:
        if not product.is_available:
            raise BadRequest("Product is not available")

    def resolve_unit_price(self, product: Product, requested: Optional[Any] = None) -> Decimal:
        """
        Price for a new order line.

        Variable-price products take the caller's price when one is given;
        everything else uses the catalog price.

        Raises:
            BadRequest: supplied price is negative or not a number
        """
        if product.variable_price and requested is not None and requested != "":
            try:
                return parse_amount(requested, "unit price")
            except BadRequest:
                raise BadRequest("Invalid unit price for variable-price product")
        return to_money(product.price)

    def available_stock(self, product: Product) -> int:
        return product.stock_quantity or 0

    def ensure_stock(self, product: Product, quantity: int) -> None:
        """Raise BadRequest if a tracked product cannot supply ``quantity`` more units."""
        if product.track_stock and self.available_stock(product) < quantity:
            raise BadRequest(
                f"Insufficient stock. Only {self.available_stock(product)} available.",
                details={"product_id": product.id, "requested": quantity},
            )

    def adjust_stock(self, product: Product, delta: int) -> None:
        """Add ``delta`` units (negative consumes) to a tracked product."""
        if not product.track_stock or delta == 0:
            return
        product.stock_quantity = self.available_stock(product) + delta
        logger.debug(f"Stock of product #{product.id} adjusted by {delta} to {product.stock_quantity}")
