import logging
import secrets
import time
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.exc import IntegrityError, OperationalError

from app.config import settings
from app.models import Order, OrderItem, OrderStatus, SubOrder, User
from app.models.database import TransactionTimeout, bounded_transaction
from app.repositories import OrderRepository, ProductRepository, UserRepository
from app.services import inventory_service
from app.services.errors import (
    AccessDeniedError,
    InvalidRequestError,
    OrderNotFoundError,
    ResourceNotFoundError,
    TransientPersistenceError,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def generate_order_number() -> str:
    """Human-readable order number: ``ORD-<epoch millis>-<4 random digits>``."""
    timestamp = int(time.time() * 1000)
    return f"ORD-{timestamp}-{secrets.randbelow(10000):04d}"


def compute_unit_price(price: Decimal, discount_percent: int) -> Decimal:
    discounted = Decimal(str(price)) * (Decimal(100) - Decimal(discount_percent)) / Decimal(100)
    return discounted.quantize(CENT, rounding=ROUND_HALF_UP)


def resolve_order_owner(users: UserRepository, payer: User, target_user_id: int | None) -> int:
    if target_user_id is None or target_user_id == payer.id:
        return payer.id
    if not payer.is_admin:
        raise AccessDeniedError("Only admins can create orders for other users")
    if users.get(target_user_id) is None:
        raise ResourceNotFoundError("Target user not found")
    return target_user_id


def create_order(
    orders: OrderRepository,
    products: ProductRepository,
    users: UserRepository,
    *,
    payer: User,
    items: list[tuple[int, int]],
    shipping_address: dict,
    billing_address: dict,
    target_user_id: int | None = None,
) -> Order:
    """
    Reserve stock and persist a PENDING order in one transaction.

    Prices are snapshotted from the same rows the reservation locked, so the
    order total always matches the price at the moment stock was taken. If any
    step fails the transaction is rolled back: no order row without reserved
    stock, no reserved stock without an order row.
    """
    if not items:
        raise InvalidRequestError("Cart must contain at least one item")
    owner_id = resolve_order_owner(users, payer, target_user_id)

    db = orders.db
    started = time.monotonic()
    try:
        with bounded_transaction(
            db,
            max_wait_ms=settings.ORDER_TX_MAX_WAIT_MS,
            timeout_ms=settings.ORDER_TX_TIMEOUT_MS,
        ):
            reservation = inventory_service.reserve(products, items)

            order_items = []
            total_amount = Decimal("0.00")
            for line in reservation.lines:
                unit_price = compute_unit_price(line.price, line.discount)
                total_amount += unit_price * line.quantity
                order_items.append(
                    OrderItem(
                        product_id=line.product_id,
                        quantity=line.quantity,
                        unit_price=unit_price,
                        hs_code=line.hs_code,
                    )
                )

            order = Order(
                order_number=generate_order_number(),
                user_id=owner_id,
                total_amount=total_amount.quantize(CENT),
                currency=settings.DEFAULT_CURRENCY,
                shipping_address=shipping_address,
                billing_address=billing_address,
                status=OrderStatus.PENDING.value,
                payment_attempt=0,
                sub_orders=[SubOrder(status=OrderStatus.PENDING.value, items=order_items)],
            )
            orders.add(order)
            order_id = order.id
            order_number = order.order_number
    except (OperationalError, IntegrityError, TransactionTimeout) as exc:
        logger.warning("Order creation rolled back for user %s: %s", owner_id, exc)
        raise TransientPersistenceError(
            "Order could not be created right now, please retry"
        ) from exc

    logger.info(
        "Order %s (%s) created for user %s in %.0fms",
        order_id,
        order_number,
        owner_id,
        (time.monotonic() - started) * 1000,
    )
    created = orders.get_with_items(order_id)
    if created is None:
        raise TransientPersistenceError("Order was created but could not be read back")
    return created


def get_order_for_viewer(orders: OrderRepository, order_id: int, viewer: User) -> Order:
    """Full order for its owner or an admin."""
    order = orders.get_with_items(order_id)
    if order is None:
        raise OrderNotFoundError()
    if not viewer.is_admin and order.user_id != viewer.id:
        raise AccessDeniedError()
    return order


def get_owned_order(orders: OrderRepository, order_id: int, owner: User) -> Order:
    order = orders.get(order_id)
    if order is None:
        raise OrderNotFoundError()
    if order.user_id != owner.id:
        raise AccessDeniedError()
    return order


def list_orders(orders: OrderRepository, user: User) -> list[Order]:
    return orders.list_for_user(user.id)
