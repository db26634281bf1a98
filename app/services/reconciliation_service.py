"""
Payment reconciliation: converge an order's status with the gateway's view.

Two unordered signals can report a successful payment: the gateway webhook and
the client's own confirmation round-trip. Only the webhook writes. The write is
a single conditional UPDATE guarded on ``status = PENDING``; a duplicate or
concurrent delivery finds the order already PROCESSED and reports success
without touching it. Failed payments never change state, so the order stays
payable.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.models import Order, OrderStatus, User
from app.repositories import OrderRepository
from app.services import order_service, stripe_service
from app.services.errors import IntegrityViolationError, ServiceError
from app.services.payment_service import to_minor_units

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"


class ReconcileAction(str, Enum):
    TRANSITIONED = "transitioned"
    ALREADY_PROCESSED = "already_processed"
    PAYMENT_FAILED = "payment_failed"
    AMOUNT_MISMATCH = "amount_mismatch"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ReconcileOutcome:
    action: ReconcileAction
    order_id: int | None = None


@dataclass(frozen=True)
class GatewayEvent:
    event_id: str | None
    event_type: str
    payment_intent_id: str | None
    order_id: int | None
    amount: int | None
    currency: str | None

    @classmethod
    def from_stripe_event(cls, event) -> "GatewayEvent":
        intent = _field(_field(event, "data"), "object")
        metadata = _field(intent, "metadata") or {}
        return cls(
            event_id=_field(event, "id"),
            event_type=_field(event, "type") or "unknown",
            payment_intent_id=_field(intent, "id"),
            order_id=_parse_order_id(_field(metadata, "orderId")),
            amount=_parse_int(_field(intent, "amount")),
            currency=_field(intent, "currency"),
        )


@dataclass(frozen=True)
class PaymentConfirmation:
    order: Order
    payment_status: str | None
    payment_confirmed: bool


def _field(obj, key):
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def _parse_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_order_id(value) -> int | None:
    order_id = _parse_int(value)
    if value is not None and (order_id is None or order_id <= 0):
        logger.warning("Ignoring invalid orderId in payment intent metadata: %s", value)
        return None
    return order_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _within_fallback_window(order: Order, now: datetime) -> bool:
    window_hours = settings.WEBHOOK_ORDER_FALLBACK_WINDOW_HOURS
    if window_hours <= 0 or order.created_at is None:
        return True
    created_at = order.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return now - created_at <= timedelta(hours=window_hours)


def resolve_order(orders: OrderRepository, event: GatewayEvent) -> Order | None:
    """Find the order an event refers to: stored intent reference first, then metadata id.

    The metadata fallback covers a webhook that outruns the write of the intent
    reference. It is only trusted for recently created orders.
    """
    if event.payment_intent_id:
        order = orders.get_by_payment_intent(event.payment_intent_id)
        if order is not None:
            return order

    if event.order_id is None:
        return None

    order = orders.get(event.order_id)
    if order is None:
        return None
    if not _within_fallback_window(order, _utcnow()):
        logger.warning(
            "Order %s matched only by metadata and is outside the %sh fallback window",
            order.id,
            settings.WEBHOOK_ORDER_FALLBACK_WINDOW_HOURS,
        )
        return None
    if order.stripe_payment_intent_id and order.stripe_payment_intent_id != event.payment_intent_id:
        logger.warning(
            "Order %s references intent %s but event carries %s",
            order.id,
            order.stripe_payment_intent_id,
            event.payment_intent_id,
        )
    return order


def mark_order_processed(
    orders: OrderRepository, order_id: int, payment_intent_id: str | None
) -> ReconcileOutcome:
    """PENDING -> PROCESSED as one conditional update, verified after the write."""
    try:
        updated = orders.mark_processed_if_pending(order_id, payment_intent_id, _utcnow())
        orders.db.commit()
    except SQLAlchemyError:
        orders.db.rollback()
        raise

    current = orders.get(order_id)
    if current is None:
        raise IntegrityViolationError(f"Order {order_id} disappeared during reconciliation")

    if updated == 1:
        if current.status != OrderStatus.PROCESSED.value:
            raise IntegrityViolationError(
                f"Order status update failed. Expected PROCESSED, got {current.status}"
            )
        logger.info("Order %s (%s) moved PENDING -> PROCESSED", current.id, current.order_number)
        return ReconcileOutcome(ReconcileAction.TRANSITIONED, current.id)

    if current.status == OrderStatus.PROCESSED.value:
        logger.info("Order %s was processed by a concurrent delivery", current.id)
        return ReconcileOutcome(ReconcileAction.ALREADY_PROCESSED, current.id)

    raise IntegrityViolationError(
        f"Order {order_id} status update was lost (status is {current.status})"
    )


def _amount_matches(order: Order, event: GatewayEvent) -> bool:
    if event.amount is not None and event.amount != to_minor_units(order.total_amount):
        return False
    if event.currency and str(event.currency).lower() != (order.currency or "").lower():
        return False
    return True


def handle_payment_succeeded(orders: OrderRepository, event: GatewayEvent) -> ReconcileOutcome:
    order = resolve_order(orders, event)
    if order is None:
        raise IntegrityViolationError(
            f"Order not found for payment_intent {event.payment_intent_id} "
            f"(metadata orderId: {event.order_id})"
        )

    if order.status != OrderStatus.PENDING.value:
        logger.info("Order %s already %s, skipping", order.id, order.status)
        return ReconcileOutcome(ReconcileAction.ALREADY_PROCESSED, order.id)

    if not _amount_matches(order, event):
        logger.warning(
            "Payment intent %s does not match order %s: amount=%s %s, expected=%s %s",
            event.payment_intent_id,
            order.id,
            event.amount,
            event.currency,
            to_minor_units(order.total_amount),
            order.currency,
        )
        return ReconcileOutcome(ReconcileAction.AMOUNT_MISMATCH, order.id)

    return mark_order_processed(orders, order.id, event.payment_intent_id)


def handle_payment_failed(orders: OrderRepository, event: GatewayEvent) -> ReconcileOutcome:
    order = resolve_order(orders, event)
    if order is None:
        logger.info("No order found for failed payment_intent %s", event.payment_intent_id)
        return ReconcileOutcome(ReconcileAction.PAYMENT_FAILED)
    logger.info(
        "Payment failed for order %s (%s); keeping status %s for retry",
        order.id,
        order.order_number,
        order.status,
    )
    return ReconcileOutcome(ReconcileAction.PAYMENT_FAILED, order.id)


def handle_event(orders: OrderRepository, event: GatewayEvent) -> ReconcileOutcome:
    if event.event_type == PAYMENT_SUCCEEDED:
        return handle_payment_succeeded(orders, event)
    if event.event_type == PAYMENT_FAILED:
        return handle_payment_failed(orders, event)
    logger.info("Unhandled event type: %s", event.event_type)
    return ReconcileOutcome(ReconcileAction.IGNORED)


def confirm_payment(orders: OrderRepository, order_id: int, user: User) -> PaymentConfirmation:
    """Client confirmation path: read the gateway's view of the order's payment. Never writes."""
    order = order_service.get_order_for_viewer(orders, order_id, user)
    if order.status == OrderStatus.PROCESSED.value:
        return PaymentConfirmation(order=order, payment_status="succeeded", payment_confirmed=True)
    if not order.stripe_payment_intent_id:
        return PaymentConfirmation(order=order, payment_status=None, payment_confirmed=False)

    intent = stripe_service.retrieve_payment_intent(order.stripe_payment_intent_id)
    return PaymentConfirmation(
        order=order,
        payment_status=intent.status,
        payment_confirmed=intent.status == "succeeded",
    )


def webhook_diagnostics(orders: OrderRepository, endpoint: str) -> dict:
    configured = stripe_service.is_configured()
    recent = []
    for order in orders.list_recent_pending_with_intent(limit=5):
        entry = {
            "orderId": order.id,
            "orderNumber": order.order_number,
            "status": order.status,
            "paymentIntentId": order.stripe_payment_intent_id,
            "createdAt": order.created_at.isoformat() if order.created_at else None,
            "paymentIntentStatus": None,
        }
        if configured:
            try:
                entry["paymentIntentStatus"] = stripe_service.retrieve_payment_intent(
                    order.stripe_payment_intent_id
                ).status
            except ServiceError as exc:
                entry["paymentIntentStatus"] = f"Error: {exc.message}"
        recent.append(entry)

    return {
        "timestamp": _utcnow().isoformat(),
        "stripe": {
            "secretKeyConfigured": configured,
            "webhookSecretConfigured": bool(settings.STRIPE_WEBHOOK_SECRET),
        },
        "webhook": {"endpoint": endpoint},
        "recentOrders": recent,
    }
