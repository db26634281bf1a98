import logging
import time
from typing import Annotated

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request

from app.config import settings
from app.dependencies import get_order_repository, require_admin
from app.models import User
from app.repositories import OrderRepository
from app.schemas.payments import WebhookAck
from app.services import reconciliation_service, stripe_service
from app.services.errors import ServiceError
from app.services.reconciliation_service import GatewayEvent

router = APIRouter()
logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/payment-gateway"


@router.post(
    WEBHOOK_PATH,
    response_model=WebhookAck,
    summary="Payment gateway webhook",
)
async def payment_gateway_webhook(
    request: Request,
    orders: Annotated[OrderRepository, Depends(get_order_repository)],
):
    """
    Stripe sends PaymentIntent events here. payment_intent.succeeded moves the
    order from PENDING to PROCESSED; payment_intent.payment_failed leaves it
    PENDING so the customer can retry. Idempotent: a redelivered event is a no-op.
    Any processing failure returns 500 so Stripe redelivers.
    """
    started = time.monotonic()
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        logger.error("Webhook rejected: missing stripe-signature header")
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Webhook rejected: STRIPE_WEBHOOK_SECRET is not set, cannot verify signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = stripe_service.construct_webhook_event(payload, sig_header)
    except ValueError as e:
        logger.error("Invalid payload: %s", e)
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError as e:
        logger.error("Invalid signature: %s", e)
        raise HTTPException(status_code=400, detail="Invalid signature")

    gateway_event = GatewayEvent.from_stripe_event(event)
    logger.info(
        "Webhook event %s (%s) for payment intent %s",
        gateway_event.event_id,
        gateway_event.event_type,
        gateway_event.payment_intent_id,
    )

    try:
        outcome = reconciliation_service.handle_event(orders, gateway_event)
    except ServiceError as e:
        logger.error(
            "Webhook event %s (%s) failed: %s",
            gateway_event.event_id,
            gateway_event.event_type,
            e.message,
        )
        raise
    except Exception:
        logger.exception(
            "Webhook handler failed for event %s (%s)",
            gateway_event.event_id,
            gateway_event.event_type,
        )
        orders.db.rollback()
        raise HTTPException(status_code=500, detail="Webhook handler failed")

    logger.info(
        "Webhook event %s processed in %.0fms: %s (order %s)",
        gateway_event.event_id,
        (time.monotonic() - started) * 1000,
        outcome.action.value,
        outcome.order_id,
    )
    return WebhookAck(received=True)


@router.get(
    f"{WEBHOOK_PATH}/check",
    summary="Webhook configuration diagnostics",
)
def payment_gateway_webhook_check(
    _admin: Annotated[User, Depends(require_admin)],
    orders: Annotated[OrderRepository, Depends(get_order_repository)],
):
    """Admin only: Stripe configuration flags and recent PENDING orders awaiting a webhook."""
    return reconciliation_service.webhook_diagnostics(orders, endpoint=f"/webhooks{WEBHOOK_PATH}")
