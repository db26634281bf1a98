from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.orm import Session, selectinload

from app.models import Order, OrderStatus, SubOrder


class OrderRepository:
    """Persistence for the order aggregate.

    Every state change is a compare-and-swap: a conditional UPDATE whose WHERE
    clause carries the expected current state, returning the affected row count.
    Callers decide what a count of zero means.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: int) -> Order | None:
        return self.db.get(Order, order_id, populate_existing=True)

    def get_with_items(self, order_id: int) -> Order | None:
        return (
            self.db.query(Order)
            .options(selectinload(Order.sub_orders).selectinload(SubOrder.items))
            .filter(Order.id == order_id)
            .populate_existing()
            .first()
        )

    def get_by_payment_intent(self, payment_intent_id: str) -> Order | None:
        return (
            self.db.query(Order)
            .filter(Order.stripe_payment_intent_id == payment_intent_id)
            .populate_existing()
            .first()
        )

    def list_for_user(self, user_id: int) -> list[Order]:
        return (
            self.db.query(Order)
            .options(selectinload(Order.sub_orders).selectinload(SubOrder.items))
            .filter(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def list_recent_pending_with_intent(self, limit: int = 5) -> list[Order]:
        return (
            self.db.query(Order)
            .filter(
                Order.status == OrderStatus.PENDING.value,
                Order.stripe_payment_intent_id.is_not(None),
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
            .all()
        )

    def add(self, order: Order) -> Order:
        self.db.add(order)
        self.db.flush()
        return order

    def mark_processed_if_pending(
        self, order_id: int, payment_intent_id: str | None, processed_at: datetime
    ) -> int:
        values = {"status": OrderStatus.PROCESSED.value, "processed_at": processed_at}
        if payment_intent_id:
            values["stripe_payment_intent_id"] = func.coalesce(
                Order.stripe_payment_intent_id, payment_intent_id
            )
        return self._conditional_update(
            values,
            Order.id == order_id,
            Order.status == OrderStatus.PENDING.value,
        )

    def release_payment_intent(self, order_id: int, expected_intent_id: str) -> int:
        """Clear a superseded intent reference and advance the attempt counter."""
        return self._conditional_update(
            {
                "stripe_payment_intent_id": None,
                "payment_attempt": Order.payment_attempt + 1,
            },
            Order.id == order_id,
            Order.status == OrderStatus.PENDING.value,
            Order.stripe_payment_intent_id == expected_intent_id,
        )

    def attach_payment_intent(self, order_id: int, payment_intent_id: str) -> int:
        return self._conditional_update(
            {"stripe_payment_intent_id": payment_intent_id},
            Order.id == order_id,
            Order.status == OrderStatus.PENDING.value,
            Order.stripe_payment_intent_id.is_(None),
        )

    def _conditional_update(self, values: dict, *conditions) -> int:
        result = self.db.execute(
            update(Order)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
