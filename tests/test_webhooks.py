import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import stripe
from fastapi import status

from app.models.order import Order
from app.repositories import OrderRepository

WEBHOOK_URL = "/webhooks/payment-gateway"


def _event(event_type="payment_intent.succeeded", intent_id="pi_123", order_id=None, amount=1800, currency="usd"):
    metadata = {}
    if order_id is not None:
        metadata["orderId"] = str(order_id)
    return {
        "id": "evt_test",
        "type": event_type,
        "data": {
            "object": {
                "id": intent_id,
                "object": "payment_intent",
                "amount": amount,
                "currency": currency,
                "status": "succeeded" if event_type == "payment_intent.succeeded" else "requires_payment_method",
                "metadata": metadata,
            }
        },
    }


def _deliver(client, event_data, signature="test_signature"):
    with patch("stripe.Webhook.construct_event") as mock_construct:
        mock_construct.return_value = event_data
        return client.post(
            WEBHOOK_URL,
            content=json.dumps(event_data).encode(),
            headers={"stripe-signature": signature},
        )


@pytest.fixture
def order_with_intent(pending_order, db):
    pending_order.stripe_payment_intent_id = "pi_123"
    db.commit()
    return pending_order


def test_payment_succeeded_marks_order_processed(client, order_with_intent, db):
    response = _deliver(client, _event(order_id=order_with_intent.id))

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["received"] is True

    db.refresh(order_with_intent)
    assert order_with_intent.status == "PROCESSED"
    assert order_with_intent.processed_at is not None
    assert order_with_intent.stripe_payment_intent_id == "pi_123"


def test_payment_succeeded_matches_by_intent_without_metadata(client, order_with_intent, db):
    response = _deliver(client, _event())

    assert response.status_code == status.HTTP_200_OK
    db.refresh(order_with_intent)
    assert order_with_intent.status == "PROCESSED"


def test_payment_succeeded_before_intent_reference_uses_metadata(client, pending_order, db):
    """The webhook can outrun the write of the intent reference."""
    response = _deliver(client, _event(intent_id="pi_fast", order_id=pending_order.id))

    assert response.status_code == status.HTTP_200_OK
    db.refresh(pending_order)
    assert pending_order.status == "PROCESSED"
    assert pending_order.stripe_payment_intent_id == "pi_fast"


def test_payment_succeeded_is_idempotent(client, order_with_intent, db):
    first = _deliver(client, _event(order_id=order_with_intent.id))
    assert first.status_code == status.HTTP_200_OK
    db.refresh(order_with_intent)
    processed_at = order_with_intent.processed_at

    with patch.object(OrderRepository, "mark_processed_if_pending") as mock_mark:
        second = _deliver(client, _event(order_id=order_with_intent.id))

    assert second.status_code == status.HTTP_200_OK
    mock_mark.assert_not_called()
    db.refresh(order_with_intent)
    assert order_with_intent.status == "PROCESSED"
    assert order_with_intent.processed_at == processed_at


def test_payment_succeeded_concurrent_delivery_is_success(client, order_with_intent, db):
    """Losing the compare-and-swap to another delivery that already processed the order."""

    def other_delivery_wins(order_id, payment_intent_id, processed_at):
        db.query(Order).filter(Order.id == order_id).update(
            {"status": "PROCESSED", "processed_at": processed_at}, synchronize_session=False
        )
        return 0

    with patch.object(OrderRepository, "mark_processed_if_pending", side_effect=other_delivery_wins):
        response = _deliver(client, _event(order_id=order_with_intent.id))

    assert response.status_code == status.HTTP_200_OK
    db.refresh(order_with_intent)
    assert order_with_intent.status == "PROCESSED"


def test_payment_succeeded_lost_update_returns_500(client, order_with_intent, db):
    with patch.object(OrderRepository, "mark_processed_if_pending", return_value=0):
        response = _deliver(client, _event(order_id=order_with_intent.id))

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json()["code"] == "INTEGRITY_VIOLATION"
    db.refresh(order_with_intent)
    assert order_with_intent.status == "PENDING"


def test_payment_succeeded_order_not_found_returns_500(client):
    response = _deliver(client, _event(intent_id="pi_unknown", order_id=99999))

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert "Order not found" in response.json()["detail"]


def test_payment_succeeded_redelivered_after_order_commit(client, pending_order, db):
    """First delivery finds nothing; the gateway redelivers once the order is visible."""
    event = _event(intent_id="pi_early", order_id=pending_order.id)

    with patch("app.services.reconciliation_service.resolve_order", return_value=None):
        first = _deliver(client, event)
    assert first.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR

    second = _deliver(client, event)
    assert second.status_code == status.HTTP_200_OK
    db.refresh(pending_order)
    assert pending_order.status == "PROCESSED"


def test_payment_succeeded_metadata_fallback_outside_window(client, pending_order, db):
    pending_order.created_at = datetime.now(timezone.utc) - timedelta(days=30)
    db.commit()

    response = _deliver(client, _event(intent_id="pi_stale", order_id=pending_order.id))

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    db.refresh(pending_order)
    assert pending_order.status == "PENDING"


def test_payment_succeeded_fallback_window_disabled(client, pending_order, db, monkeypatch):
    monkeypatch.setenv("WEBHOOK_ORDER_FALLBACK_WINDOW_HOURS", "0")
    pending_order.created_at = datetime.now(timezone.utc) - timedelta(days=30)
    db.commit()

    response = _deliver(client, _event(intent_id="pi_stale", order_id=pending_order.id))

    assert response.status_code == status.HTTP_200_OK
    db.refresh(pending_order)
    assert pending_order.status == "PROCESSED"


def test_payment_succeeded_amount_mismatch_is_not_applied(client, order_with_intent, db):
    response = _deliver(client, _event(order_id=order_with_intent.id, amount=100))

    assert response.status_code == status.HTTP_200_OK
    db.refresh(order_with_intent)
    assert order_with_intent.status == "PENDING"


def test_payment_succeeded_currency_mismatch_is_not_applied(client, order_with_intent, db):
    response = _deliver(client, _event(order_id=order_with_intent.id, currency="eur"))

    assert response.status_code == status.HTTP_200_OK
    db.refresh(order_with_intent)
    assert order_with_intent.status == "PENDING"


def test_payment_failed_leaves_order_pending(client, order_with_intent, db):
    response = _deliver(client, _event(event_type="payment_intent.payment_failed", order_id=order_with_intent.id))

    assert response.status_code == status.HTTP_200_OK
    db.refresh(order_with_intent)
    assert order_with_intent.status == "PENDING"
    assert order_with_intent.stripe_payment_intent_id == "pi_123"


def test_payment_failed_for_unknown_order_is_acknowledged(client):
    response = _deliver(client, _event(event_type="payment_intent.payment_failed", intent_id="pi_unknown"))
    assert response.status_code == status.HTTP_200_OK


def test_other_event_type_is_ignored(client, order_with_intent, db):
    response = _deliver(client, _event(event_type="charge.refunded", order_id=order_with_intent.id))

    assert response.status_code == status.HTTP_200_OK
    db.refresh(order_with_intent)
    assert order_with_intent.status == "PENDING"


def test_webhook_invalid_signature(client, order_with_intent, db):
    with patch("stripe.Webhook.construct_event") as mock_construct:
        mock_construct.side_effect = stripe.SignatureVerificationError("Invalid", "sig")

        response = client.post(
            WEBHOOK_URL,
            content=json.dumps(_event(order_id=order_with_intent.id)).encode(),
            headers={"stripe-signature": "invalid"},
        )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "signature" in response.json()["detail"].lower()
    db.refresh(order_with_intent)
    assert order_with_intent.status == "PENDING"


def test_webhook_invalid_payload(client):
    with patch("stripe.Webhook.construct_event") as mock_construct:
        mock_construct.side_effect = ValueError("Invalid payload")

        response = client.post(
            WEBHOOK_URL,
            content=b"invalid json",
            headers={"stripe-signature": "test"},
        )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Invalid payload"


def test_webhook_missing_signature_header(client):
    with patch("stripe.Webhook.construct_event") as mock_construct:
        response = client.post(WEBHOOK_URL, content=b"{}")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Missing stripe-signature header"
    mock_construct.assert_not_called()


def test_webhook_rejected_without_webhook_secret(client, order_with_intent, db, monkeypatch):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "")

    response = _deliver(client, _event(order_id=order_with_intent.id))

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    db.refresh(order_with_intent)
    assert order_with_intent.status == "PENDING"


def test_webhook_unexpected_error_returns_500(client, order_with_intent):
    with patch(
        "app.services.reconciliation_service.handle_event",
        side_effect=RuntimeError("database exploded"),
    ):
        response = _deliver(client, _event(order_id=order_with_intent.id))

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json()["detail"] == "Webhook handler failed"


def test_webhook_check_requires_admin(client, auth_headers):
    response = client.get(f"{WEBHOOK_URL}/check", headers=auth_headers)
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_webhook_check_reports_pending_orders(client, admin_headers, order_with_intent):
    with patch("app.services.stripe_service.stripe.PaymentIntent.retrieve") as mock_retrieve:
        mock_retrieve.return_value = MagicMock(id="pi_123", status="requires_payment_method")
        response = client.get(f"{WEBHOOK_URL}/check", headers=admin_headers)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["stripe"] == {"secretKeyConfigured": True, "webhookSecretConfigured": True}
    assert data["webhook"]["endpoint"] == WEBHOOK_URL
    assert len(data["recentOrders"]) == 1
    entry = data["recentOrders"][0]
    assert entry["orderId"] == order_with_intent.id
    assert entry["paymentIntentId"] == "pi_123"
    assert entry["paymentIntentStatus"] == "requires_payment_method"


def test_webhook_check_reports_gateway_errors_inline(client, admin_headers, order_with_intent):
    with patch("app.services.stripe_service.stripe.PaymentIntent.retrieve") as mock_retrieve:
        mock_retrieve.side_effect = stripe.APIConnectionError("Network down")
        response = client.get(f"{WEBHOOK_URL}/check", headers=admin_headers)

    assert response.status_code == status.HTTP_200_OK
    entry = response.json()["recentOrders"][0]
    assert entry["paymentIntentStatus"].startswith("Error:")
