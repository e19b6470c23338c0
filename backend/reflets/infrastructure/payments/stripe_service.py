"""
Stripe Payment Service

Infrastructure service for Stripe payment processing: hosted checkout for
new signups and trial upgrades, customer management, billing portal and
webhook verification.

The SDK is synchronous; every call runs in a worker thread behind a
bounded HTTP timeout, and any Stripe failure (including a timeout)
surfaces as ``PaymentGatewayError`` with a generic message.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import stripe

from reflets.config.settings import Settings
from reflets.domain.interfaces import (
    BillingEvent,
    CheckoutSession,
    LineItem,
    PaymentSession,
)
from reflets.domain.signup import SIGNUP_TYPE_INITIAL_PAYMENT
from reflets.infrastructure.exceptions import (
    ConfigurationError,
    PaymentGatewayError,
    SignatureVerificationError,
)


logger = logging.getLogger(__name__)

PROVIDER = "stripe"


class StripeService:
    """
    Stripe payment processing service.

    Args:
        secret_key: Stripe secret key (``sk_...``); None disables the service
        webhook_secret: Signing secret for webhook verification
        timeout_seconds: HTTP timeout applied to every API call
    """

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str],
        timeout_seconds: float = 10.0,
    ):
        self._webhook_secret = webhook_secret
        self._client: Optional[stripe.StripeClient] = None

        if secret_key and secret_key.startswith("sk_"):
            self._client = stripe.StripeClient(
                secret_key,
                http_client=stripe.RequestsClient(timeout=timeout_seconds),
                max_network_retries=0,
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeService":
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout_seconds=settings.gateway_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> stripe.StripeClient:
        if self._client is None:
            raise ConfigurationError(
                "Stripe is not configured.",
                missing_keys=["STRIPE_SECRET_KEY"],
            )
        return self._client

    async def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} failed: {e}")
            raise PaymentGatewayError(
                "Payment provider unavailable. Please try again.",
                provider=PROVIDER,
                operation=operation,
                original_error=e,
            ) from e

    # =========================================================================
    # Checkout Session
    # =========================================================================

    async def create_checkout_session(
        self,
        line_items: List[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a one-time-payment hosted checkout session.

        ``{CHECKOUT_SESSION_ID}`` in ``success_url`` is filled in by Stripe.
        """
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": item.currency,
                        "product_data": {
                            "name": item.name,
                            "description": item.description,
                        },
                        "unit_amount": item.unit_amount,
                    },
                    "quantity": item.quantity,
                }
                for item in line_items
            ],
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "allow_promotion_codes": True,
            "billing_address_collection": "auto",
            "payment_intent_data": {"metadata": metadata},
        }
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email

        session = await self._call(
            "checkout.sessions.create",
            self.client.checkout.sessions.create,
            params=params,
        )
        logger.info(f"Created checkout session {session.id} ({metadata.get('type')})")
        return CheckoutSession(id=session.id, url=session.url)

    async def create_upgrade_checkout_session(
        self,
        profile_id: str,
        customer_id: str,
        line_items: List[LineItem],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """Checkout for an existing trial account paying for the first time."""
        return await self.create_checkout_session(
            line_items=line_items,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={
                "profileId": profile_id,
                "type": SIGNUP_TYPE_INITIAL_PAYMENT,
            },
            customer_id=customer_id,
        )

    async def retrieve_session(self, session_id: str) -> PaymentSession:
        session = await self._call(
            "checkout.sessions.retrieve",
            self.client.checkout.sessions.retrieve,
            session_id,
        )
        customer = session.customer
        if customer is not None and not isinstance(customer, str):
            customer = customer.id
        return PaymentSession(
            id=session.id,
            payment_status=session.payment_status,
            customer_id=customer,
            metadata=dict(session.metadata or {}),
        )

    # =========================================================================
    # Customer Management
    # =========================================================================

    async def get_or_create_customer(
        self,
        profile_id: str,
        email: str,
        name: Optional[str] = None,
        existing_customer_id: Optional[str] = None,
    ) -> str:
        """Return a live customer id, creating the customer when needed."""
        if existing_customer_id:
            try:
                customer = await asyncio.to_thread(
                    self.client.customers.retrieve, existing_customer_id
                )
                if not getattr(customer, "deleted", False):
                    return customer.id
            except stripe.StripeError:
                logger.warning(f"Customer {existing_customer_id} not found, creating new")

        params: Dict[str, Any] = {
            "email": email,
            "metadata": {"profileId": profile_id},
        }
        if name:
            params["name"] = name

        customer = await self._call(
            "customers.create",
            self.client.customers.create,
            params=params,
        )
        logger.info(f"Created Stripe customer {customer.id} for profile {profile_id}")
        return customer.id

    # =========================================================================
    # Customer Portal
    # =========================================================================

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a billing portal session and return its URL."""
        session = await self._call(
            "billing_portal.sessions.create",
            self.client.billing_portal.sessions.create,
            params={"customer": customer_id, "return_url": return_url},
        )
        logger.info(f"Created portal session for customer {customer_id}")
        return session.url

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> BillingEvent:
        """
        Verify the Stripe-Signature header against the raw body.

        Raises:
            SignatureVerificationError: Missing header, bad signature or
                malformed payload
            ConfigurationError: No webhook secret configured
        """
        if not self._webhook_secret:
            raise ConfigurationError(
                "Stripe webhook secret is not configured.",
                missing_keys=["STRIPE_WEBHOOK_SECRET"],
            )
        if not signature:
            raise SignatureVerificationError(
                "Missing Stripe-Signature header",
                provider=PROVIDER,
                operation="webhook",
            )

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self._webhook_secret,
                stripe.Webhook.DEFAULT_TOLERANCE,
            )
            body = json.loads(payload)
            event = BillingEvent(
                id=body["id"],
                type=body["type"],
                data=(body.get("data") or {}).get("object") or {},
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationError(
                "Invalid signature",
                provider=PROVIDER,
                operation="webhook",
                original_error=e,
            ) from e
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise SignatureVerificationError(
                "Invalid payload",
                provider=PROVIDER,
                operation="webhook",
                original_error=e,
            ) from e

        return event
