from typing import Annotated

from fastapi import APIRouter, Depends

from app.dependencies import get_current_user, get_order_repository
from app.models import User
from app.repositories import OrderRepository
from app.schemas.payments import PaymentIntentRequest, PaymentIntentResponse
from app.services import payment_service

router = APIRouter()


@router.post(
    "",
    response_model=PaymentIntentResponse,
    summary="Create payment intent for an order",
)
def create_payment_intent(
    body: PaymentIntentRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    orders: Annotated[OrderRepository, Depends(get_order_repository)],
):
    """
    Returns the clientSecret to confirm the payment on the client with Stripe.
    Any intent the order already had is cancelled and replaced.
    """
    intent = payment_service.create_payment_intent(orders, body.order_id, current_user)
    return PaymentIntentResponse(client_secret=intent.client_secret, payment_intent_id=intent.intent_id)
