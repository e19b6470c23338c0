"""
Checkout Initiation

Validates the signup wizard, reserves the slug and opens a Stripe checkout
session. The password is checked here but never persisted; it is supplied
again when the payment is verified.
"""

import logging
from typing import List

from reflets.config.settings import Settings
from reflets.domain.interfaces import LineItem, PaymentGateway
from reflets.domain.signup import (
    SIGNUP_TYPE_NEW,
    CheckoutResponse,
    CreateCheckoutRequest,
    validate_signup,
)
from reflets.infrastructure.db.repositories.pending_signup_repository import (
    PendingSignupRepository,
)
from reflets.infrastructure.db.repositories.wedding_repository import WeddingRepository
from reflets.infrastructure.exceptions import ConflictError, DuplicateError


logger = logging.getLogger(__name__)

SLUG_TAKEN_MESSAGE = "This URL is already in use. Please choose another."
SLUG_RESERVED_MESSAGE = (
    "This URL is currently being reserved by another signup. "
    "Please choose another or try again later."
)


def build_initial_line_items(settings: Settings) -> List[LineItem]:
    return [
        LineItem(
            name=settings.product_name,
            description=settings.product_description,
            unit_amount=settings.initial_price_cents,
            currency=settings.product_currency,
        )
    ]


class CheckoutInitiator:
    """
    Opens a paid signup.

    Order matters: the slug pre-checks are cheap and advisory, the Stripe
    session is created next, and the pending-signup insert is the real
    reservation. If that insert loses a race the Stripe session is left to
    expire on its own.
    """

    def __init__(
        self,
        payments: PaymentGateway,
        pending_signups: PendingSignupRepository,
        weddings: WeddingRepository,
        settings: Settings,
    ):
        self._payments = payments
        self._pending_signups = pending_signups
        self._weddings = weddings
        self._settings = settings

    async def start(self, request: CreateCheckoutRequest) -> CheckoutResponse:
        """
        Validate input, reserve the slug and return the hosted checkout URL.

        Raises:
            ValidationError: Malformed or reserved input
            ConflictError: Slug taken by a wedding or held by a live reservation
            PaymentGatewayError: Stripe failure
        """
        slug = validate_signup(request)

        if await self._weddings.slug_exists(slug):
            raise ConflictError(SLUG_TAKEN_MESSAGE, field="slug", error="Slug taken")

        if await self._pending_signups.is_slug_reserved(slug):
            raise ConflictError(SLUG_RESERVED_MESSAGE, field="slug", error="Slug reserved")

        site_url = self._settings.site_url.rstrip("/")
        session = await self._payments.create_checkout_session(
            line_items=build_initial_line_items(self._settings),
            success_url=f"{site_url}/signup/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{site_url}/signup/cancel",
            metadata={
                "email": request.email,
                "slug": slug,
                "type": SIGNUP_TYPE_NEW,
            },
            customer_email=request.email,
        )

        try:
            await self._pending_signups.create(
                stripe_session_id=session.id,
                email=request.email,
                partner1_name=request.partner1_name,
                partner2_name=request.partner2_name,
                slug=slug,
                theme_id=request.theme_id.value,
                wedding_date=request.wedding_date,
                ttl_hours=self._settings.pending_signup_ttl_hours,
            )
        except DuplicateError as e:
            if e.field != "slug":
                raise
            logger.info(
                f"Slug '{slug}' lost reservation race; abandoning checkout session {session.id}"
            )
            raise ConflictError(
                SLUG_RESERVED_MESSAGE,
                field="slug",
                error="Slug reserved",
                original_error=e,
            ) from e

        logger.info(f"Checkout session {session.id} opened for slug '{slug}'")
        return CheckoutResponse(sessionId=session.id, url=session.url)
