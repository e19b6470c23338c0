"""
Signup API Routes

Paid checkout, payment verification, trial signup and slug availability.
All four endpoints are public and rate limited per client IP.
"""

import logging

from fastapi import APIRouter, Depends, Query

from reflets.api.dependencies import (
    get_account_provisioner,
    get_checkout_initiator,
    get_pending_signups,
    get_weddings,
    rate_limit,
)
from reflets.domain.checkout import CheckoutInitiator
from reflets.domain.provisioning import AccountProvisioner
from reflets.domain.signup import (
    CheckoutResponse,
    CreateCheckoutRequest,
    ProvisioningResult,
    SlugAvailabilityResponse,
    TrialSignupRequest,
    VerifyPaymentRequest,
)
from reflets.domain.slugs import (
    generate_slug_suggestions,
    normalize_slug,
    slug_rejection_reason,
)
from reflets.infrastructure.db.repositories.pending_signup_repository import (
    PendingSignupRepository,
)
from reflets.infrastructure.db.repositories.wedding_repository import WeddingRepository


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Paid signup
# =============================================================================

@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    dependencies=[Depends(rate_limit("signup"))],
)
async def create_checkout(
    request: CreateCheckoutRequest,
    initiator: CheckoutInitiator = Depends(get_checkout_initiator),
):
    """
    Validate the signup wizard, reserve the slug and open a Stripe checkout.

    Returns the hosted checkout URL; the client redirects there.
    """
    return await initiator.start(request)


@router.post(
    "/verify-payment",
    response_model=ProvisioningResult,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit("verify_payment"))],
)
async def verify_payment(
    request: VerifyPaymentRequest,
    provisioner: AccountProvisioner = Depends(get_account_provisioner),
):
    """
    Confirm the checkout session is paid and provision the account.

    Safe to call again after success: the original redirect is returned
    with ``alreadyCompleted`` set.
    """
    return await provisioner.verify_payment(request)


# =============================================================================
# Trial signup
# =============================================================================

@router.post(
    "/signup",
    response_model=ProvisioningResult,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit("signup"))],
)
async def create_trial_account(
    request: TrialSignupRequest,
    provisioner: AccountProvisioner = Depends(get_account_provisioner),
):
    """Create an account on the free trial, without payment."""
    return await provisioner.start_trial(request)


# =============================================================================
# Slug availability
# =============================================================================

@router.get(
    "/weddings/check-slug",
    response_model=SlugAvailabilityResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit("slug_check"))],
)
async def check_slug(
    slug: str = Query(..., min_length=1),
    weddings: WeddingRepository = Depends(get_weddings),
    pending_signups: PendingSignupRepository = Depends(get_pending_signups),
):
    """
    Check whether a wedding URL can be claimed.

    A slug is unavailable when it is malformed, reserved by the platform,
    used by a wedding, or held by a live checkout reservation.
    """
    normalized = normalize_slug(slug)

    reason = slug_rejection_reason(normalized)
    if reason is not None:
        return SlugAvailabilityResponse(available=False, slug=normalized, reason=reason)

    if await weddings.slug_exists(normalized) or await pending_signups.is_slug_reserved(normalized):
        return SlugAvailabilityResponse(
            available=False,
            slug=normalized,
            reason="taken",
            suggestions=generate_slug_suggestions(normalized),
        )

    return SlugAvailabilityResponse(available=True, slug=normalized)
