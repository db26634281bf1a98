from app.schemas.orders import (
    AddressSnapshot,
    CartItem,
    OrderCreateRequest,
    OrderCreateResponse,
    OrderResponse,
    OrderStatusResponse,
    PaymentConfirmationResponse,
)
from app.schemas.payments import PaymentIntentRequest, PaymentIntentResponse, WebhookAck

__all__ = [
    "AddressSnapshot",
    "CartItem",
    "OrderCreateRequest",
    "OrderCreateResponse",
    "OrderResponse",
    "OrderStatusResponse",
    "PaymentConfirmationResponse",
    "PaymentIntentRequest",
    "PaymentIntentResponse",
    "WebhookAck",
]
