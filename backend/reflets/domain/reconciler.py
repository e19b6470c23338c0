"""
Stripe Webhook Reconciliation

Verifies, claims and dispatches Stripe events exactly once.

Per event:
    1. verify the signature (nothing happens before this)
    2. claim the event in the ledger by inserting a ``processing`` row
       - claimed / re-claimed from ``failed``: dispatch
       - already ``processing`` or ``completed``: answer duplicate
       - ledger unavailable: log and dispatch anyway
    3. dispatch to the subscription transition for the event type
    4. mark the row ``completed``, or ``failed`` and answer 5xx so Stripe
       redelivers

Handled events:
- checkout.session.completed: Activate an upgraded trial, or confirm a new signup
- customer.subscription.updated: Sync status and period end
- customer.subscription.deleted: Cancel
- invoice.payment_succeeded: Extend on renewal invoices only
- invoice.payment_failed: Expire
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from reflets.config.settings import Settings
from reflets.domain.interfaces import BillingEvent, PaymentGateway
from reflets.domain.signup import SIGNUP_TYPE_NEW
from reflets.domain.subscription import (
    SubscriptionStatus,
    SubscriptionTransition,
    on_checkout_completed,
    on_invoice_payment_failed,
    on_invoice_payment_succeeded,
    on_subscription_deleted,
    on_subscription_updated,
    utcnow,
)
from reflets.infrastructure.db.repositories.pending_signup_repository import (
    PendingSignupRepository,
)
from reflets.infrastructure.db.repositories.profile_repository import ProfileRepository
from reflets.infrastructure.db.repositories.stripe_event_repository import (
    ClaimOutcome,
    StripeEventRepository,
)
from reflets.infrastructure.exceptions import DatabaseError, WebhookProcessingError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    received: bool = True
    duplicate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"received": self.received}
        if self.duplicate:
            body["duplicate"] = True
        return body


class WebhookReconciler:

    def __init__(
        self,
        payments: PaymentGateway,
        ledger: StripeEventRepository,
        profiles: ProfileRepository,
        pending_signups: PendingSignupRepository,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._payments = payments
        self._ledger = ledger
        self._profiles = profiles
        self._pending_signups = pending_signups
        self._settings = settings
        self._clock = clock
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            "checkout.session.completed": self.handle_checkout_completed,
            "customer.subscription.updated": self.handle_subscription_updated,
            "customer.subscription.deleted": self.handle_subscription_deleted,
            "invoice.payment_succeeded": self.handle_invoice_payment_succeeded,
            "invoice.payment_failed": self.handle_invoice_payment_failed,
        }

    async def handle(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Process one webhook delivery.

        Raises:
            SignatureVerificationError: Bad or missing signature (400)
            WebhookProcessingError: Dispatch failed; ledger row marked failed (500)
        """
        event = self._payments.verify_webhook_signature(payload, signature)

        try:
            outcome: Optional[ClaimOutcome] = await self._ledger.claim(event.id, event.type)
        except DatabaseError as e:
            # Double-processing is safer than dropping a billing event.
            logger.error(f"Ledger claim failed for {event.id}, processing anyway: {e}")
            outcome = None

        if outcome == ClaimOutcome.DUPLICATE:
            logger.info(f"Event {event.id} already claimed, skipping")
            return WebhookResult(duplicate=True)

        logger.info(f"Processing webhook event: {event.type} ({event.id})")

        try:
            await self.dispatch(event)
        except Exception as e:
            logger.error(f"Error processing webhook {event.type} ({event.id}): {e}")
            await self._mark_failed(event, e)
            raise WebhookProcessingError(
                "Webhook processing failed",
                original_error=e,
            ) from e

        try:
            await self._ledger.mark_completed(event.id)
        except DatabaseError as e:
            logger.error(f"Failed to mark event {event.id} completed: {e}")

        return WebhookResult()

    async def dispatch(self, event: BillingEvent) -> None:
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.debug(f"Unhandled event type: {event.type}")
            return
        await handler(event.data)

    async def _mark_failed(self, event: BillingEvent, error: Exception) -> None:
        try:
            await self._ledger.mark_failed(event.id, str(error) or type(error).__name__)
        except DatabaseError as e:
            logger.error(f"Failed to mark event {event.id} failed: {e}")

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def handle_checkout_completed(self, session: Dict[str, Any]) -> None:
        metadata = session.get("metadata") or {}
        customer_id = session.get("customer")

        profile_id = metadata.get("profileId")
        if profile_id:
            if session.get("payment_status") != "paid":
                logger.info(f"Checkout {session.get('id')} for profile {profile_id} not paid yet")
                return
            transition = on_checkout_completed(
                self._clock(),
                self._settings.initial_period_years,
                stripe_customer_id=customer_id,
            )
            await self._profiles.apply_transition(profile_id, transition)
            logger.info(f"Profile {profile_id} upgraded to active")
            return

        if metadata.get("type") == SIGNUP_TYPE_NEW:
            session_id = session.get("id")
            if session_id and await self._pending_signups.mark_checkout_completed(session_id):
                logger.info(f"Payment confirmed for pending signup {session_id}")
            if customer_id:
                profile = await self._profiles.get_by_stripe_customer_id(customer_id)
                if profile and profile.subscription_status != SubscriptionStatus.ACTIVE:
                    await self._profiles.apply_transition(
                        profile.id,
                        on_checkout_completed(self._clock(), self._settings.initial_period_years),
                    )
                    logger.info(f"Reactivated profile {profile.id} for customer {customer_id}")
            return

        logger.error("Checkout completed without profileId or signup type in metadata")

    async def handle_subscription_updated(self, subscription: Dict[str, Any]) -> None:
        customer_id = subscription.get("customer")
        profile = await self._find_profile(customer_id)
        if profile is None:
            return

        transition = on_subscription_updated(
            subscription.get("status"),
            subscription.get("current_period_end"),
            profile.subscription_end_date,
            self._clock(),
        )
        await self._profiles.apply_transition(profile.id, transition)
        logger.info(f"Synced subscription for customer {customer_id}: {transition.status.value}")

    async def handle_subscription_deleted(self, subscription: Dict[str, Any]) -> None:
        await self._apply_by_customer(subscription.get("customer"), on_subscription_deleted())

    async def handle_invoice_payment_succeeded(self, invoice: Dict[str, Any]) -> None:
        transition = on_invoice_payment_succeeded(
            invoice.get("billing_reason"),
            self._clock(),
            self._settings.renewal_period_years,
        )
        if transition is None:
            logger.debug(f"Ignoring invoice with billing_reason={invoice.get('billing_reason')}")
            return
        await self._apply_by_customer(invoice.get("customer"), transition)

    async def handle_invoice_payment_failed(self, invoice: Dict[str, Any]) -> None:
        await self._apply_by_customer(invoice.get("customer"), on_invoice_payment_failed())

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _find_profile(self, customer_id: Optional[str]):
        if not customer_id:
            logger.warning("Billing event without customer id")
            return None
        profile = await self._profiles.get_by_stripe_customer_id(customer_id)
        if profile is None:
            logger.info(f"No profile for customer {customer_id}, nothing to update")
        return profile

    async def _apply_by_customer(
        self,
        customer_id: Optional[str],
        transition: SubscriptionTransition,
    ) -> None:
        profile = await self._find_profile(customer_id)
        if profile is None:
            return
        await self._profiles.apply_transition(profile.id, transition)
        logger.info(f"Customer {customer_id} -> {transition.status.value}")
