"""Inventory ledger: all-or-nothing stock reservation for a cart.

A reservation either decrements stock for every product in the batch or for
none of them. The checks below reject a cart early; the conditional decrement is
what actually guarantees stock never goes negative when two carts race for the
same product. Callers must run :func:`reserve` inside a transaction and roll it
back on any error raised here.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal

from app.repositories import ProductRepository
from app.services.errors import InsufficientStockError, InvalidRequestError, ProductNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservedLine:
    product_id: int
    quantity: int
    price: Decimal
    discount: int
    hs_code: str | None


@dataclass(frozen=True)
class Reservation:
    lines: tuple[ReservedLine, ...]

    def quantity_for(self, product_id: int) -> int:
        return sum(line.quantity for line in self.lines if line.product_id == product_id)


def merge_cart_items(items: list[tuple[int, int]]) -> "OrderedDict[int, int]":
    """Sum quantities per product, keeping first-seen order."""
    merged: OrderedDict[int, int] = OrderedDict()
    for product_id, quantity in items:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidRequestError(f"Quantity for product {product_id} must be a positive integer")
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


def reserve(products: ProductRepository, items: list[tuple[int, int]]) -> Reservation:
    if not items:
        raise InvalidRequestError("Cart must contain at least one item")

    wanted = merge_cart_items(items)
    found = products.get_active_for_update(list(wanted))

    for product_id in wanted:
        if product_id not in found:
            raise ProductNotFoundError(product_id)

    for product_id, quantity in wanted.items():
        product = found[product_id]
        if product.stock < quantity:
            raise InsufficientStockError(product_id, product.title)

    lines = []
    for product_id, quantity in wanted.items():
        product = found[product_id]
        if not products.decrement_stock_if_available(product_id, quantity):
            # Another transaction took the stock after our check.
            logger.warning(
                "Stock for product %s changed during reservation of %s unit(s)",
                product_id,
                quantity,
            )
            raise InsufficientStockError(product_id, product.title)
        lines.append(
            ReservedLine(
                product_id=product_id,
                quantity=quantity,
                price=Decimal(str(product.price)),
                discount=int(product.discount or 0),
                hs_code=product.hs_code,
            )
        )

    logger.info("Reserved stock for %s product(s)", len(lines))
    return Reservation(lines=tuple(lines))
