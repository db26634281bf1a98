from typing import Annotated

from fastapi import APIRouter, Depends, status

from app.dependencies import (
    get_current_user,
    get_order_repository,
    get_product_repository,
    get_user_repository,
)
from app.models import Order, User
from app.repositories import OrderRepository, ProductRepository, UserRepository
from app.schemas.orders import (
    OrderCreateRequest,
    OrderCreateResponse,
    OrderItemResponse,
    OrderResponse,
    OrderStatusResponse,
    PaymentConfirmationResponse,
    SubOrderResponse,
)
from app.services import order_service, reconciliation_service

router = APIRouter()


def order_to_response(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        total_amount=order.total_amount,
        currency=order.currency,
        status=order.status,
        stripe_payment_intent_id=order.stripe_payment_intent_id,
        shipping_address=order.shipping_address,
        billing_address=order.billing_address,
        sub_orders=[
            SubOrderResponse(
                id=sub_order.id,
                status=sub_order.status,
                tracking_number=sub_order.tracking_number,
                items=[
                    OrderItemResponse(
                        id=item.id,
                        product_id=item.product_id,
                        product_title=item.product.title if item.product else None,
                        product_slug=item.product.slug if item.product else None,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        hs_code=item.hs_code,
                    )
                    for item in sub_order.items
                ],
            )
            for sub_order in order.sub_orders
        ],
        created_at=order.created_at,
        processed_at=order.processed_at,
    )


@router.post(
    "",
    response_model=OrderCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create order and reserve stock",
)
def create_order(
    body: OrderCreateRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    orders: Annotated[OrderRepository, Depends(get_order_repository)],
    products: Annotated[ProductRepository, Depends(get_product_repository)],
    users: Annotated[UserRepository, Depends(get_user_repository)],
):
    """
    Create a PENDING order from the cart.
    Stock for every line is reserved in the same transaction that inserts the order;
    request a payment intent for the returned order id next.
    """
    order = order_service.create_order(
        orders,
        products,
        users,
        payer=current_user,
        items=[(item.product_id, item.quantity) for item in body.items],
        shipping_address=body.shipping_address.model_dump(by_alias=True, exclude_none=True),
        billing_address=body.billing_address.model_dump(by_alias=True, exclude_none=True),
        target_user_id=body.user_id,
    )
    return OrderCreateResponse(message="Order created successfully", order=order_to_response(order))


@router.get(
    "/me",
    response_model=list[OrderResponse],
    summary="List my orders",
)
def my_orders(
    current_user: Annotated[User, Depends(get_current_user)],
    orders: Annotated[OrderRepository, Depends(get_order_repository)],
):
    """Returns the current user's orders, newest first."""
    return [order_to_response(order) for order in order_service.list_orders(orders, current_user)]


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order",
)
def get_order(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    orders: Annotated[OrderRepository, Depends(get_order_repository)],
):
    """Owner or admin only."""
    return order_to_response(order_service.get_order_for_viewer(orders, order_id, current_user))


@router.get(
    "/{order_id}/status",
    response_model=OrderStatusResponse,
    summary="Get order status",
)
def order_status(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    orders: Annotated[OrderRepository, Depends(get_order_repository)],
):
    """Stored status of one of the current user's orders."""
    order = order_service.get_owned_order(orders, order_id, current_user)
    return OrderStatusResponse(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        total_amount=order.total_amount,
        payment_intent_id=order.stripe_payment_intent_id,
    )


@router.get(
    "/{order_id}/payment-status",
    response_model=PaymentConfirmationResponse,
    summary="Check payment with the gateway",
)
def payment_status(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    orders: Annotated[OrderRepository, Depends(get_order_repository)],
):
    """
    Read-only confirmation for the client after it paid against the gateway.
    paymentConfirmed is true as soon as the gateway reports the intent succeeded,
    even if the webhook has not moved the order to PROCESSED yet.
    """
    confirmation = reconciliation_service.confirm_payment(orders, order_id, current_user)
    order = confirmation.order
    return PaymentConfirmationResponse(
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        payment_intent_id=order.stripe_payment_intent_id,
        payment_status=confirmation.payment_status,
        payment_confirmed=confirmation.payment_confirmed,
    )
