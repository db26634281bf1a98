from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models import Product


class ProductRepository:
    """Stock access for the inventory ledger.

    Stock is only ever changed through :meth:`decrement_stock_if_available`, a
    single conditional UPDATE, so concurrent reservations on one product are
    serialized by the database rather than by application code.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_active_for_update(self, product_ids: list[int]) -> dict[int, Product]:
        """Load active products by id, row-locked where the dialect supports it."""
        if not product_ids:
            return {}
        products = (
            self.db.query(Product)
            .filter(Product.id.in_(product_ids), Product.is_active.is_(True))
            .with_for_update()
            .all()
        )
        return {product.id: product for product in products}

    def decrement_stock_if_available(self, product_id: int, quantity: int) -> bool:
        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
