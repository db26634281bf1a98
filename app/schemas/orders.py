from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _format_amount(value: Decimal) -> str:
    return format(Decimal(str(value)).quantize(Decimal("0.01")), "f")


class AddressSnapshot(CamelModel):
    full_name: str = Field(alias="fullName", min_length=1)
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    zip_code: str = Field(alias="zipCode", min_length=1)
    country: str = Field(min_length=1)
    phone: str | None = None


class CartItem(CamelModel):
    product_id: int = Field(alias="productId")
    quantity: int = Field(gt=0, strict=True)


class OrderCreateRequest(CamelModel):
    user_id: int | None = Field(default=None, alias="userId")
    items: list[CartItem] = Field(min_length=1)
    shipping_address: AddressSnapshot = Field(alias="shippingAddress")
    billing_address: AddressSnapshot = Field(alias="billingAddress")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "items": [{"productId": 1, "quantity": 2}],
                    "shippingAddress": {
                        "fullName": "Jane Doe",
                        "address": "1 Main St",
                        "city": "Springfield",
                        "zipCode": "12345",
                        "country": "US",
                    },
                    "billingAddress": {
                        "fullName": "Jane Doe",
                        "address": "1 Main St",
                        "city": "Springfield",
                        "zipCode": "12345",
                        "country": "US",
                    },
                }
            ]
        },
    )


class OrderItemResponse(CamelModel):
    id: int
    product_id: int = Field(alias="productId")
    product_title: str | None = Field(default=None, alias="productTitle")
    product_slug: str | None = Field(default=None, alias="productSlug")
    quantity: int
    unit_price: Decimal = Field(alias="unitPrice")
    hs_code: str | None = Field(default=None, alias="hsCode")

    @field_serializer("unit_price")
    def serialize_unit_price(self, value: Decimal) -> str:
        return _format_amount(value)


class SubOrderResponse(CamelModel):
    id: int
    status: str
    tracking_number: str | None = Field(default=None, alias="trackingNumber")
    items: list[OrderItemResponse]


class OrderResponse(CamelModel):
    id: int
    order_number: str = Field(alias="orderNumber")
    user_id: int = Field(alias="userId")
    total_amount: Decimal = Field(alias="totalAmount")
    currency: str
    status: str
    stripe_payment_intent_id: str | None = Field(default=None, alias="stripePaymentIntentId")
    shipping_address: dict = Field(alias="shippingAddress")
    billing_address: dict = Field(alias="billingAddress")
    sub_orders: list[SubOrderResponse] = Field(alias="subOrders")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    processed_at: datetime | None = Field(default=None, alias="processedAt")

    @field_serializer("total_amount")
    def serialize_total_amount(self, value: Decimal) -> str:
        return _format_amount(value)


class OrderCreateResponse(CamelModel):
    message: str
    order: OrderResponse


class OrderStatusResponse(CamelModel):
    id: int
    order_number: str = Field(alias="orderNumber")
    status: str
    total_amount: Decimal = Field(alias="totalAmount")
    payment_intent_id: str | None = Field(default=None, alias="paymentIntentId")

    @field_serializer("total_amount")
    def serialize_total_amount(self, value: Decimal) -> str:
        return _format_amount(value)


class PaymentConfirmationResponse(CamelModel):
    order_id: int = Field(alias="orderId")
    order_number: str = Field(alias="orderNumber")
    status: str
    payment_intent_id: str | None = Field(default=None, alias="paymentIntentId")
    payment_status: str | None = Field(default=None, alias="paymentStatus")
    payment_confirmed: bool = Field(alias="paymentConfirmed")
