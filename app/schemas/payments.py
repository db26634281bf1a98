from pydantic import Field

from app.schemas.orders import CamelModel


class PaymentIntentRequest(CamelModel):
    order_id: int = Field(alias="orderId")

    model_config = {"populate_by_name": True, "json_schema_extra": {"examples": [{"orderId": 1}]}}


class PaymentIntentResponse(CamelModel):
    client_secret: str | None = Field(alias="clientSecret")
    payment_intent_id: str = Field(alias="paymentIntentId")


class WebhookAck(CamelModel):
    received: bool = True
