"""
Unit tests for StripeService.

Webhook signatures are computed with the real Stripe scheme
(HMAC-SHA256 over ``"{timestamp}.{payload}"``); API calls go to a mocked
client.
"""

import hashlib
import hmac
import json
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import stripe

from reflets.domain.interfaces import LineItem
from reflets.infrastructure.exceptions import (
    ConfigurationError,
    PaymentGatewayError,
    SignatureVerificationError,
)
from reflets.infrastructure.payments.stripe_service import StripeService


WEBHOOK_SECRET = "whsec_test_secret"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def service():
    svc = StripeService(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET, timeout_seconds=5)
    svc._client = MagicMock()
    return svc


@pytest.fixture
def event_payload():
    return json.dumps({
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_1", "metadata": {"type": "new_signup"}}},
    }).encode()


class TestConfiguration:

    def test_non_secret_key_disables_client(self):
        svc = StripeService(secret_key="pk_test_123", webhook_secret=None)
        assert svc.is_configured is False
        with pytest.raises(ConfigurationError):
            svc.client

    def test_secret_key_enables_client(self):
        assert StripeService(secret_key="sk_test_123", webhook_secret=None).is_configured


class TestWebhookSignature:

    def test_valid_signature(self, service, event_payload):
        event = service.verify_webhook_signature(event_payload, _sign(event_payload))

        assert event.id == "evt_1"
        assert event.type == "checkout.session.completed"
        assert event.data["id"] == "cs_1"

    def test_missing_header(self, service, event_payload):
        with pytest.raises(SignatureVerificationError) as exc_info:
            service.verify_webhook_signature(event_payload, None)
        assert exc_info.value.status_code == 400

    def test_wrong_secret(self, service, event_payload):
        with pytest.raises(SignatureVerificationError) as exc_info:
            service.verify_webhook_signature(event_payload, _sign(event_payload, secret="whsec_other"))
        assert exc_info.value.message == "Invalid signature"

    def test_tampered_body(self, service, event_payload):
        signature = _sign(event_payload)
        tampered = event_payload.replace(b"evt_1", b"evt_2")
        with pytest.raises(SignatureVerificationError):
            service.verify_webhook_signature(tampered, signature)

    def test_stale_timestamp(self, service, event_payload):
        old = int(time.time()) - 3600
        with pytest.raises(SignatureVerificationError):
            service.verify_webhook_signature(event_payload, _sign(event_payload, timestamp=old))

    def test_signed_but_malformed_payload(self, service):
        payload = b'{"no_id": true}'
        with pytest.raises(SignatureVerificationError) as exc_info:
            service.verify_webhook_signature(payload, _sign(payload))
        assert exc_info.value.message == "Invalid payload"

    def test_missing_webhook_secret(self, event_payload):
        svc = StripeService(secret_key=None, webhook_secret=None)
        with pytest.raises(ConfigurationError):
            svc.verify_webhook_signature(event_payload, "t=1,v1=abc")


class TestCheckoutSessions:

    @pytest.mark.asyncio
    async def test_create_checkout_session_params(self, service):
        service._client.checkout.sessions.create.return_value = SimpleNamespace(
            id="cs_1", url="https://checkout.stripe.com/c/cs_1"
        )

        session = await service.create_checkout_session(
            line_items=[LineItem(name="Plan", description="Desc", unit_amount=19900, currency="eur")],
            success_url="http://localhost:4321/signup/success?session_id={CHECKOUT_SESSION_ID}",
            cancel_url="http://localhost:4321/signup/cancel",
            metadata={"type": "new_signup", "slug": "alice-bob"},
            customer_email="alice@example.com",
        )

        assert session.id == "cs_1"
        params = service._client.checkout.sessions.create.call_args.kwargs["params"]
        assert params["mode"] == "payment"
        assert params["customer_email"] == "alice@example.com"
        assert "customer" not in params
        assert params["line_items"][0]["price_data"]["unit_amount"] == 19900
        assert params["payment_intent_data"]["metadata"]["slug"] == "alice-bob"

    @pytest.mark.asyncio
    async def test_upgrade_session_metadata(self, service):
        service._client.checkout.sessions.create.return_value = SimpleNamespace(id="cs_2", url="u")

        await service.create_upgrade_checkout_session(
            profile_id="p1",
            customer_id="cus_1",
            line_items=[],
            success_url="s",
            cancel_url="c",
        )

        params = service._client.checkout.sessions.create.call_args.kwargs["params"]
        assert params["metadata"] == {"profileId": "p1", "type": "initial_payment"}
        assert params["customer"] == "cus_1"
        assert "customer_email" not in params

    @pytest.mark.asyncio
    async def test_retrieve_session_expanded_customer(self, service):
        service._client.checkout.sessions.retrieve.return_value = SimpleNamespace(
            id="cs_1",
            payment_status="paid",
            customer=SimpleNamespace(id="cus_9"),
            metadata={"slug": "alice-bob"},
        )

        session = await service.retrieve_session("cs_1")

        assert session.is_paid
        assert session.customer_id == "cus_9"
        assert session.metadata == {"slug": "alice-bob"}

    @pytest.mark.asyncio
    async def test_stripe_error_becomes_gateway_error(self, service):
        service._client.checkout.sessions.retrieve.side_effect = stripe.APIConnectionError("timed out")

        with pytest.raises(PaymentGatewayError) as exc_info:
            await service.retrieve_session("cs_1")

        assert exc_info.value.status_code == 500
        assert "timed out" not in exc_info.value.message


class TestCustomers:

    @pytest.mark.asyncio
    async def test_existing_customer_reused(self, service):
        service._client.customers.retrieve.return_value = SimpleNamespace(id="cus_1", deleted=False)

        customer_id = await service.get_or_create_customer("p1", "a@b.co", existing_customer_id="cus_1")

        assert customer_id == "cus_1"
        service._client.customers.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_deleted_customer_replaced(self, service):
        service._client.customers.retrieve.return_value = SimpleNamespace(id="cus_1", deleted=True)
        service._client.customers.create.return_value = SimpleNamespace(id="cus_2")

        customer_id = await service.get_or_create_customer("p1", "a@b.co", "Alice & Bob", "cus_1")

        assert customer_id == "cus_2"
        params = service._client.customers.create.call_args.kwargs["params"]
        assert params == {"email": "a@b.co", "metadata": {"profileId": "p1"}, "name": "Alice & Bob"}

    @pytest.mark.asyncio
    async def test_portal_session_url(self, service):
        service._client.billing_portal.sessions.create.return_value = SimpleNamespace(url="https://billing")

        url = await service.create_portal_session("cus_1", "http://localhost:4321/admin")

        assert url == "https://billing"
