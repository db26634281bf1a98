import logging
from dataclasses import dataclass

import stripe

from app.services.errors import (
    PaymentProcessingError,
    PaymentServiceUnavailableError,
    ServiceError,
)

logger = logging.getLogger(__name__)

# Intent states in which the customer may already have been charged.
CHARGED_OR_CHARGING_STATUSES = {"succeeded", "processing"}
RESOURCE_MISSING = "resource_missing"


@dataclass(frozen=True)
class PaymentIntentResult:
    intent_id: str
    client_secret: str | None
    status: str | None


def is_configured() -> bool:
    from app.config import settings

    return bool(settings.STRIPE_SECRET_KEY)


def _configure() -> None:
    from app.config import settings

    if not settings.STRIPE_SECRET_KEY:
        raise PaymentServiceUnavailableError(
            "Payment service not configured: STRIPE_SECRET_KEY is not set"
        )
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES
    stripe.default_http_client = stripe.new_default_http_client(
        timeout=settings.STRIPE_TIMEOUT_SECONDS
    )


def translate_stripe_error(exc: Exception) -> ServiceError:
    """Map a Stripe SDK exception onto the service error kinds."""
    if isinstance(exc, (stripe.APIConnectionError, stripe.AuthenticationError)):
        return PaymentServiceUnavailableError("Payment service temporarily unavailable")
    if isinstance(exc, stripe.StripeError):
        message = getattr(exc, "user_message", None) or str(exc) or "Payment provider error"
        return PaymentProcessingError(f"Payment processing error: {message}")
    return PaymentProcessingError("Payment processing error")


def _result(intent) -> PaymentIntentResult:
    return PaymentIntentResult(
        intent_id=intent.id,
        client_secret=getattr(intent, "client_secret", None),
        status=getattr(intent, "status", None),
    )


def create_payment_intent(
    order_id: int,
    order_number: str,
    user_id: int,
    amount_cents: int,
    currency: str,
    idempotency_key: str,
) -> PaymentIntentResult:
    """Create a PaymentIntent; repeated calls with the same key return the same intent."""
    _configure()
    try:
        intent = stripe.PaymentIntent.create(
            amount=amount_cents,
            currency=currency.lower(),
            automatic_payment_methods={"enabled": True},
            metadata={
                "orderId": str(order_id),
                "orderNumber": order_number,
                "userId": str(user_id),
            },
            idempotency_key=idempotency_key,
        )
    except stripe.StripeError as exc:
        logger.error("Stripe rejected payment intent for order %s: %s", order_id, exc)
        raise translate_stripe_error(exc) from exc
    logger.info("Created payment intent %s for order %s", intent.id, order_id)
    return _result(intent)


def retrieve_payment_intent(payment_intent_id: str) -> PaymentIntentResult:
    _configure()
    try:
        intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as exc:
        raise translate_stripe_error(exc) from exc
    return _result(intent)


def find_payment_intent(payment_intent_id: str) -> PaymentIntentResult | None:
    """Like :func:`retrieve_payment_intent`, but None when Stripe has no such intent."""
    _configure()
    try:
        intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.InvalidRequestError as exc:
        if getattr(exc, "code", None) == RESOURCE_MISSING:
            return None
        raise translate_stripe_error(exc) from exc
    except stripe.StripeError as exc:
        raise translate_stripe_error(exc) from exc
    return _result(intent)


def cancel_payment_intent(payment_intent_id: str) -> bool:
    """
    Cancel an intent. Returns False when Stripe refuses the cancel because the
    intent is no longer cancellable (already final or gone). Network, auth and
    rate-limit failures raise, since the intent may still be payable.
    """
    _configure()
    try:
        stripe.PaymentIntent.cancel(payment_intent_id)
    except stripe.InvalidRequestError as exc:
        logger.info("Payment intent %s cannot be cancelled: %s", payment_intent_id, exc)
        return False
    except stripe.StripeError as exc:
        logger.error("Cancelling payment intent %s failed: %s", payment_intent_id, exc)
        raise translate_stripe_error(exc) from exc
    logger.info("Cancelled superseded payment intent %s", payment_intent_id)
    return True


def construct_webhook_event(payload: bytes, sig_header: str):
    """Verify the signature over the raw body and return the parsed event.

    Raises ValueError for a malformed payload and
    ``stripe.SignatureVerificationError`` for a bad signature.
    """
    from app.config import settings

    return stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
