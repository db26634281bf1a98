import logging
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.config import settings
from app.models import Order, OrderStatus, User
from app.repositories import OrderRepository
from app.services import stripe_service
from app.services.errors import (
    AccessDeniedError,
    AlreadyProcessedError,
    AmountInvalidError,
    ConflictError,
    InvalidRequestError,
    OrderNotFoundError,
    PaymentInProgressError,
    PaymentServiceUnavailableError,
)
from app.services.stripe_service import CHARGED_OR_CHARGING_STATUSES, PaymentIntentResult

logger = logging.getLogger(__name__)

CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")


def idempotency_key_for(order: Order) -> str:
    """Deterministic gateway idempotency key for the order's current payment attempt."""
    attempt = order.payment_attempt or 0
    if attempt == 0:
        return f"order-{order.id}"
    return f"order-{order.id}-{attempt}"


def to_minor_units(amount) -> int:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise AmountInvalidError("Invalid order amount")
    if not value.is_finite() or value <= 0:
        raise AmountInvalidError("Invalid order amount")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_currency(currency: str | None) -> str:
    if not currency or not CURRENCY_RE.match(currency):
        raise InvalidRequestError("Invalid currency")
    return currency.lower()


def _load_payable_order(orders: OrderRepository, order_id: int, user: User) -> Order:
    order = orders.get(order_id)
    if order is None:
        raise OrderNotFoundError()
    if order.user_id != user.id:
        raise AccessDeniedError()
    if order.status != OrderStatus.PENDING.value:
        raise AlreadyProcessedError()
    return order


def _supersede_previous_intent(orders: OrderRepository, order: Order) -> Order:
    """Cancel the order's current intent and clear the reference before a new one is created."""
    previous_id = order.stripe_payment_intent_id
    # Any gateway error other than "no such intent" propagates and keeps the reference.
    previous = stripe_service.find_payment_intent(previous_id)

    if previous is None:
        logger.info("Payment intent %s on order %s does not exist at Stripe", previous_id, order.id)
    else:
        if previous.status in CHARGED_OR_CHARGING_STATUSES:
            # The webhook will move the order to PROCESSED; a new intent could charge twice.
            raise PaymentInProgressError(
                f"Payment for this order is already {previous.status}; wait for confirmation"
            )
        if previous.status != "canceled" and not stripe_service.cancel_payment_intent(previous_id):
            # It was cancellable a moment ago, so its state moved under us.
            raise PaymentInProgressError(
                "Previous payment for this order could not be cancelled; check its status and retry"
            )

    released = orders.release_payment_intent(order.id, previous_id)
    orders.db.commit()
    if released != 1:
        raise ConflictError("Order payment state changed concurrently, please retry")
    logger.info("Cleared superseded payment intent %s from order %s", previous_id, order.id)

    refreshed = orders.get(order.id)
    if refreshed is None or refreshed.status != OrderStatus.PENDING.value:
        raise AlreadyProcessedError()
    return refreshed


def create_payment_intent(orders: OrderRepository, order_id: int, user: User) -> PaymentIntentResult:
    """
    Broker a gateway PaymentIntent for a PENDING order the caller owns.

    The creation call is keyed on the order and its attempt counter, so a
    retried request resolves to the same gateway intent. An intent the order
    already points at is cancelled and unlinked (committed) before a new one is
    requested, so a crash in between leaves no reference to a cancelled intent.
    """
    order = _load_payable_order(orders, order_id, user)
    amount_cents = to_minor_units(order.total_amount)
    currency = validate_currency(order.currency)

    if not stripe_service.is_configured():
        raise PaymentServiceUnavailableError(
            "Payment service not configured. Please set STRIPE_SECRET_KEY."
        )

    if amount_cents < settings.STRIPE_MIN_CHARGE_CENTS:
        minimum = Decimal(settings.STRIPE_MIN_CHARGE_CENTS) / 100
        raise AmountInvalidError(f"Amount too small. Minimum amount is {minimum:.2f} {currency.upper()}.")

    if order.stripe_payment_intent_id:
        order = _supersede_previous_intent(orders, order)

    intent = stripe_service.create_payment_intent(
        order_id=order.id,
        order_number=order.order_number,
        user_id=user.id,
        amount_cents=amount_cents,
        currency=currency,
        idempotency_key=idempotency_key_for(order),
    )

    attached = orders.attach_payment_intent(order.id, intent.intent_id)
    orders.db.commit()
    if attached != 1:
        current = orders.get(order.id)
        if current is None or current.stripe_payment_intent_id != intent.intent_id:
            logger.warning(
                "Could not attach payment intent %s to order %s: state changed concurrently",
                intent.intent_id,
                order.id,
            )
            raise ConflictError("Order payment state changed concurrently, please retry")

    logger.info(
        "Payment intent %s (status=%s) attached to order %s",
        intent.intent_id,
        intent.status,
        order.id,
    )
    return intent
