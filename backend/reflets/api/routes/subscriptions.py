"""
Subscription API Routes

Status, first-payment checkout and billing portal for signed-in accounts.
Every endpoint requires a Supabase bearer token; the profile id is its subject.
"""

import logging

from fastapi import APIRouter, Depends

from reflets.api.dependencies import (
    get_current_user_id,
    get_profiles,
    get_stripe_service,
    rate_limit,
)
from reflets.config.settings import get_settings
from reflets.domain.checkout import build_initial_line_items
from reflets.domain.signup import CheckoutResponse
from reflets.domain.subscription import (
    PortalResponse,
    PortalSessionRequest,
    Profile,
    SubscriptionInfo,
    UpgradeCheckoutRequest,
    build_subscription_info,
    is_same_origin,
)
from reflets.infrastructure.db.repositories.profile_repository import ProfileRepository
from reflets.infrastructure.exceptions import NotFoundError, ValidationError
from reflets.infrastructure.payments.stripe_service import StripeService


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Helpers
# =============================================================================

async def _require_profile(repo: ProfileRepository, user_id: str) -> Profile:
    profile = await repo.get_by_id(user_id)
    if profile is None:
        raise NotFoundError("Profile not found.", error="Profile not found")
    return profile


def _require_same_origin(url: str, field: str) -> None:
    if not is_same_origin(url, get_settings().site_url):
        raise ValidationError(
            "Redirect URL must point to this site.",
            field=field,
            error="Invalid redirect URL",
        )


# =============================================================================
# Subscription Status Endpoints
# =============================================================================

@router.get(
    "/subscriptions/status",
    response_model=SubscriptionInfo,
    response_model_by_alias=True,
    dependencies=[Depends(rate_limit("general"))],
)
async def get_subscription_status(
    user_id: str = Depends(get_current_user_id),
    repo: ProfileRepository = Depends(get_profiles),
):
    """
    Get the current account's subscription status.

    An expired trial is reported as ``expired`` even though the stored
    status is still ``trial``.
    """
    profile = await _require_profile(repo, user_id)
    return build_subscription_info(profile)


# =============================================================================
# Checkout Endpoints
# =============================================================================

@router.post(
    "/subscriptions/checkout",
    response_model=CheckoutResponse,
    dependencies=[Depends(rate_limit("stripe_checkout"))],
)
async def create_upgrade_checkout(
    request: UpgradeCheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    stripe_service: StripeService = Depends(get_stripe_service),
    repo: ProfileRepository = Depends(get_profiles),
):
    """
    Create a Stripe Checkout session for a trial account's first payment.

    The Stripe customer is created on first use and stored on the profile.
    Activation happens when the ``checkout.session.completed`` webhook arrives.
    """
    _require_same_origin(request.success_url, "success_url")
    _require_same_origin(request.cancel_url, "cancel_url")

    profile = await _require_profile(repo, user_id)

    customer_id = await stripe_service.get_or_create_customer(
        profile_id=profile.id,
        email=profile.email,
        name=profile.full_name,
        existing_customer_id=profile.stripe_customer_id,
    )
    if customer_id != profile.stripe_customer_id:
        await repo.set_stripe_customer_id(profile.id, customer_id)

    session = await stripe_service.create_upgrade_checkout_session(
        profile_id=profile.id,
        customer_id=customer_id,
        line_items=build_initial_line_items(get_settings()),
        success_url=request.success_url,
        cancel_url=request.cancel_url,
    )

    logger.info(f"Created upgrade checkout {session.id} for profile {profile.id}")
    return CheckoutResponse(sessionId=session.id, url=session.url)


# =============================================================================
# Portal Endpoints
# =============================================================================

@router.post(
    "/subscriptions/portal",
    response_model=PortalResponse,
    dependencies=[Depends(rate_limit("general"))],
)
async def create_portal_session(
    request: PortalSessionRequest,
    user_id: str = Depends(get_current_user_id),
    stripe_service: StripeService = Depends(get_stripe_service),
    repo: ProfileRepository = Depends(get_profiles),
):
    """
    Create a Stripe Customer Portal session.

    Allows customers to:
    - Update payment method
    - View invoices
    """
    _require_same_origin(request.return_url, "return_url")

    profile = await _require_profile(repo, user_id)
    if not profile.stripe_customer_id:
        raise NotFoundError(
            "No billing account found. Please subscribe first.",
            error="No Stripe customer found",
        )

    url = await stripe_service.create_portal_session(
        customer_id=profile.stripe_customer_id,
        return_url=request.return_url,
    )
    return PortalResponse(url=url)
