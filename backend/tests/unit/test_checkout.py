"""
Unit tests for CheckoutInitiator.

Verifies:
- Slug pre-checks against weddings and live reservations (409)
- Stripe session parameters
- Losing the reservation race after the Stripe session exists (409)
"""

import pytest

from reflets.domain.checkout import CheckoutInitiator, build_initial_line_items
from reflets.domain.signup import CreateCheckoutRequest
from reflets.infrastructure.exceptions import (
    ConflictError,
    DuplicateError,
    PaymentGatewayError,
    ValidationError,
)


@pytest.fixture
def initiator(mock_payments, mock_pending_signups, mock_weddings, test_settings):
    return CheckoutInitiator(
        payments=mock_payments,
        pending_signups=mock_pending_signups,
        weddings=mock_weddings,
        settings=test_settings,
    )


@pytest.fixture
def checkout_request(signup_payload):
    return CreateCheckoutRequest(**signup_payload)


class TestCheckoutInitiator:

    @pytest.mark.asyncio
    async def test_opens_session_and_reserves_slug(
        self, initiator, checkout_request, mock_payments, mock_pending_signups
    ):
        response = await initiator.start(checkout_request)

        assert response.sessionId == "cs_test_123"
        assert response.url.startswith("https://checkout.stripe.com/")

        kwargs = mock_payments.create_checkout_session.call_args.kwargs
        assert kwargs["metadata"] == {
            "email": "alice@example.com",
            "slug": "alice-bob",
            "type": "new_signup",
        }
        assert kwargs["success_url"] == (
            "http://localhost:4321/signup/success?session_id={CHECKOUT_SESSION_ID}"
        )
        assert kwargs["cancel_url"] == "http://localhost:4321/signup/cancel"
        assert kwargs["customer_email"] == "alice@example.com"

        create_kwargs = mock_pending_signups.create.call_args.kwargs
        assert create_kwargs["stripe_session_id"] == "cs_test_123"
        assert create_kwargs["slug"] == "alice-bob"
        assert create_kwargs["ttl_hours"] == 24
        assert "password" not in create_kwargs

    @pytest.mark.asyncio
    async def test_slug_used_by_wedding(self, initiator, checkout_request, mock_weddings, mock_payments):
        mock_weddings.slug_exists.return_value = True

        with pytest.raises(ConflictError) as exc_info:
            await initiator.start(checkout_request)

        assert exc_info.value.field == "slug"
        assert exc_info.value.status_code == 409
        mock_payments.create_checkout_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_slug_held_by_live_reservation(
        self, initiator, checkout_request, mock_pending_signups, mock_payments
    ):
        mock_pending_signups.is_slug_reserved.return_value = True

        with pytest.raises(ConflictError) as exc_info:
            await initiator.start(checkout_request)

        assert exc_info.value.to_dict()["error"] == "Slug reserved"
        mock_payments.create_checkout_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_reservation_race_lost(self, initiator, checkout_request, mock_pending_signups):
        mock_pending_signups.create.side_effect = DuplicateError(
            "Duplicate value for slug in pending_signups",
            field="slug",
        )

        with pytest.raises(ConflictError) as exc_info:
            await initiator.start(checkout_request)

        assert exc_info.value.field == "slug"
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_duplicate_session_id_propagates(self, initiator, checkout_request, mock_pending_signups):
        mock_pending_signups.create.side_effect = DuplicateError(
            "Duplicate value for stripe_session_id in pending_signups",
            field="stripe_session_id",
        )

        with pytest.raises(DuplicateError):
            await initiator.start(checkout_request)

    @pytest.mark.asyncio
    async def test_invalid_input_never_reaches_stripe(self, initiator, signup_payload, mock_payments):
        signup_payload["slug"] = "admin"

        with pytest.raises(ValidationError):
            await initiator.start(CreateCheckoutRequest(**signup_payload))

        mock_payments.create_checkout_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_stripe_failure_leaves_no_reservation(
        self, initiator, checkout_request, mock_payments, mock_pending_signups
    ):
        mock_payments.create_checkout_session.side_effect = PaymentGatewayError("Payment provider error")

        with pytest.raises(PaymentGatewayError):
            await initiator.start(checkout_request)

        mock_pending_signups.create.assert_not_called()


def test_initial_line_item_from_settings(test_settings):
    [item] = build_initial_line_items(test_settings)
    assert item.unit_amount == test_settings.initial_price_cents
    assert item.currency == "eur"
    assert item.quantity == 1
