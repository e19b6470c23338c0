"""
Subscription Domain Models

Four-state subscription model (trial, active, expired, cancelled) and the
pure transition functions driven by Stripe events and by account provisioning.
Nothing here touches the database; callers persist the returned transitions.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SubscriptionStatus(str, Enum):
    """Internal subscription lifecycle status."""
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Stripe subscription.status -> internal status
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "canceled": SubscriptionStatus.CANCELLED,
    "past_due": SubscriptionStatus.EXPIRED,
    "unpaid": SubscriptionStatus.EXPIRED,
    "incomplete": SubscriptionStatus.EXPIRED,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    "paused": SubscriptionStatus.EXPIRED,
}

RENEWAL_BILLING_REASON = "subscription_cycle"


def map_stripe_status(stripe_status: Optional[str]) -> SubscriptionStatus:
    """Map a Stripe subscription status; unknown values count as expired."""
    return STRIPE_STATUS_MAP.get(stripe_status or "", SubscriptionStatus.EXPIRED)


def add_years(moment: datetime, years: int) -> datetime:
    """Calendar-year arithmetic; Feb 29 falls back to Feb 28."""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Domain Entities
# =============================================================================

class Profile(BaseModel):
    """Customer profile, keyed by the identity provider's user id."""
    id: str
    email: str
    full_name: Optional[str] = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.TRIAL
    subscription_end_date: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


@dataclass(frozen=True)
class SubscriptionTransition:
    """
    A status change to apply to a profile.

    ``end_date`` of None leaves the stored end date untouched.
    """
    status: SubscriptionStatus
    end_date: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None


# =============================================================================
# Transitions
# =============================================================================

def trial_grant(now: datetime, trial_days: int) -> SubscriptionTransition:
    """Default grant for a new account that has not paid."""
    return SubscriptionTransition(
        status=SubscriptionStatus.TRIAL,
        end_date=now + timedelta(days=trial_days),
    )


def on_checkout_completed(
    now: datetime,
    initial_period_years: int,
    stripe_customer_id: Optional[str] = None,
) -> SubscriptionTransition:
    """Paid checkout: active for the initial period."""
    return SubscriptionTransition(
        status=SubscriptionStatus.ACTIVE,
        end_date=add_years(now, initial_period_years),
        stripe_customer_id=stripe_customer_id,
    )


def on_subscription_updated(
    stripe_status: Optional[str],
    period_end: Optional[int],
    current_end: Optional[datetime],
    now: datetime,
) -> SubscriptionTransition:
    """
    Sync from a customer.subscription.updated event.

    The end date never moves backwards: a redelivered older event cannot
    shorten a period a newer event already granted.
    """
    status = map_stripe_status(stripe_status)
    event_end = datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else now
    if current_end is not None and _aware(current_end) > event_end:
        event_end = _aware(current_end)
    return SubscriptionTransition(status=status, end_date=event_end)


def on_subscription_deleted() -> SubscriptionTransition:
    return SubscriptionTransition(status=SubscriptionStatus.CANCELLED)


def on_invoice_payment_succeeded(
    billing_reason: Optional[str],
    now: datetime,
    renewal_period_years: int = 1,
) -> Optional[SubscriptionTransition]:
    """
    Renewal invoices extend the subscription.

    Returns None for any other billing reason; the initial invoice is
    already covered by checkout completion.
    """
    if billing_reason != RENEWAL_BILLING_REASON:
        return None
    return SubscriptionTransition(
        status=SubscriptionStatus.ACTIVE,
        end_date=add_years(now, renewal_period_years),
    )


def on_invoice_payment_failed() -> SubscriptionTransition:
    return SubscriptionTransition(status=SubscriptionStatus.EXPIRED)


# =============================================================================
# Derived, read-time properties
# =============================================================================

def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def is_trial_expired(profile: Profile, now: datetime) -> bool:
    """Soft expiry: never persisted, computed on read."""
    return (
        profile.subscription_status == SubscriptionStatus.TRIAL
        and profile.subscription_end_date is not None
        and now > _aware(profile.subscription_end_date)
    )


def days_remaining(end_date: Optional[datetime], now: datetime) -> int:
    if end_date is None:
        return 0
    seconds = (_aware(end_date) - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


class SubscriptionInfo(BaseModel):
    """Read model returned by the subscription status endpoint."""
    status: SubscriptionStatus
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    stripe_customer_id: Optional[str] = None
    days_remaining: int = 0
    is_trial_expired: bool = False
    can_upload_to_cloud: bool = False

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def build_subscription_info(profile: Profile, now: Optional[datetime] = None) -> SubscriptionInfo:
    now = now or utcnow()
    trial_expired = is_trial_expired(profile, now)
    status = profile.subscription_status
    end_date = profile.subscription_end_date

    return SubscriptionInfo(
        status=SubscriptionStatus.EXPIRED if trial_expired else status,
        trial_ends_at=end_date if status == SubscriptionStatus.TRIAL else None,
        current_period_end=end_date if status == SubscriptionStatus.ACTIVE else None,
        stripe_customer_id=profile.stripe_customer_id,
        days_remaining=days_remaining(end_date, now),
        is_trial_expired=trial_expired,
        can_upload_to_cloud=status == SubscriptionStatus.ACTIVE,
    )


# =============================================================================
# Request/Response DTOs
# =============================================================================

class UpgradeCheckoutRequest(BaseModel):
    """Request DTO for a trial account's first payment."""
    success_url: str = Field(..., description="Where Stripe sends the customer after paying")
    cancel_url: str = Field(..., description="Where Stripe sends the customer on cancel")


class PortalSessionRequest(BaseModel):
    """Request DTO for creating a billing portal session."""
    return_url: str = Field(..., description="URL to return to after portal session")


class PortalResponse(BaseModel):
    url: str


def _origin(url: str) -> Optional[tuple]:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    return (parts.scheme.lower(), parts.netloc.lower())


def is_same_origin(url: str, site_url: str) -> bool:
    """True when ``url`` has the site's scheme and host, so it is safe to redirect to."""
    origin = _origin(url)
    return origin is not None and origin == _origin(site_url)
