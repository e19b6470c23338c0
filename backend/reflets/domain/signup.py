"""
Signup Domain Models

Request/response DTOs for checkout, payment verification and trial signup,
plus the validation rules and generated values shared by those flows.
"""

import re
import secrets
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from reflets.domain.slugs import normalize_slug, slug_rejection_reason
from reflets.infrastructure.exceptions import ValidationError


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_MIN_LENGTH = 8
PASSWORD_REQUIREMENTS_MESSAGE = (
    "Password must be at least 8 characters with uppercase, lowercase, and a number"
)

# No 0/O or 1/I so codes can be read aloud
GUEST_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
GUEST_CODE_LENGTH = 6

SIGNUP_TYPE_NEW = "new_signup"
SIGNUP_TYPE_INITIAL_PAYMENT = "initial_payment"


class ThemeId(str, Enum):
    CLASSIC = "classic"
    LUXE = "luxe"
    JARDIN = "jardin"
    COBALT = "cobalt"
    EDITORIAL = "editorial"
    FRENCH = "french"


class CheckoutStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


# =============================================================================
# Request DTOs
# =============================================================================

class CreateCheckoutRequest(BaseModel):
    """Wizard data submitted before payment. The password is validated, never stored."""
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    partner1_name: str = Field(..., min_length=1, max_length=100)
    partner2_name: str = Field(..., min_length=1, max_length=100)
    wedding_date: Optional[date] = None
    slug: str = Field(..., min_length=1)
    theme_id: ThemeId = ThemeId.CLASSIC


class TrialSignupRequest(CreateCheckoutRequest):
    """Same fields as checkout; the account is provisioned immediately on a trial."""


class VerifyPaymentRequest(BaseModel):
    session_id: str = Field(..., min_length=1, description="Stripe checkout session id")
    password: Optional[str] = Field(
        None,
        description="Password chosen at checkout; required until the account exists",
    )


# =============================================================================
# Response DTOs
# =============================================================================

class CheckoutResponse(BaseModel):
    sessionId: str
    url: str


class AuthSession(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: Optional[int] = None


class ProvisionedUser(BaseModel):
    id: str
    email: str
    wedding_id: Optional[str] = None


class ProvisioningResult(BaseModel):
    """Outcome of a successful (or replayed) provisioning."""
    success: bool = True
    slug: str
    redirect: str
    message: Optional[str] = None
    session: Optional[AuthSession] = None
    user: Optional[ProvisionedUser] = None
    needsLogin: Optional[bool] = None
    alreadyCompleted: Optional[bool] = None

    model_config = ConfigDict(populate_by_name=True)


class SlugAvailabilityResponse(BaseModel):
    available: bool
    slug: str
    reason: Optional[str] = None
    suggestions: Optional[List[str]] = None


# =============================================================================
# Domain Entities
# =============================================================================

class PendingSignup(BaseModel):
    """A reservation of intent to create a wedding, keyed by checkout session."""
    id: str
    stripe_session_id: str
    email: str
    partner1_name: str
    partner2_name: str
    wedding_date: Optional[date] = None
    slug: str
    theme_id: str = ThemeId.CLASSIC.value
    checkout_status: CheckoutStatus = CheckoutStatus.PENDING
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def couple_names(self) -> str:
        return f"{self.partner1_name} & {self.partner2_name}"

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


class Wedding(BaseModel):
    id: str
    owner_id: str
    slug: str
    guest_code: str
    name: str

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Validation
# =============================================================================

def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def validate_password(password: str) -> List[str]:
    """Return the list of unmet password requirements (empty when valid)."""
    errors = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append("Password must be at least 8 characters")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number")
    return errors


def validate_signup(request: CreateCheckoutRequest) -> str:
    """
    Validate wizard input and return the normalized slug.

    Raises:
        ValidationError: With ``field`` naming the offending input.
    """
    if not request.partner1_name.strip() or not request.partner2_name.strip():
        raise ValidationError(
            "Email, password, partner names, slug, and theme are required.",
            error="Missing required fields",
        )

    if not is_valid_email(request.email):
        raise ValidationError(
            "Please enter a valid email address.",
            field="email",
            error="Invalid email",
        )

    if validate_password(request.password):
        raise ValidationError(
            PASSWORD_REQUIREMENTS_MESSAGE,
            field="password",
            error="Weak password",
        )

    slug = normalize_slug(request.slug)
    reason = slug_rejection_reason(slug)
    if reason == "invalid_format":
        raise ValidationError(
            "URL must be 3-50 characters, lowercase letters, numbers, and hyphens only.",
            field="slug",
            error="Invalid slug format",
        )
    if reason == "reserved":
        raise ValidationError(
            "This URL is reserved and cannot be used.",
            field="slug",
            error="Slug reserved",
        )
    return slug


# =============================================================================
# Generated values
# =============================================================================

def generate_guest_code(length: int = GUEST_CODE_LENGTH) -> str:
    return "".join(secrets.choice(GUEST_CODE_ALPHABET) for _ in range(length))


def generate_admin_token() -> str:
    return secrets.token_urlsafe(32)


def build_wedding_name(partner1_name: str, partner2_name: str) -> str:
    return f"{partner1_name} & {partner2_name}'s Wedding"


def build_wedding_config(theme_id: str) -> Dict[str, Any]:
    """Initial site configuration for a freshly provisioned wedding."""
    return {
        "theme": {
            "name": theme_id,
            "primaryColor": "#ae1725",
            "secondaryColor": "#c92a38",
            "fontFamily": "playfair",
        },
        "features": {
            "gallery": True,
            "guestbook": True,
            "rsvp": True,
            "liveWall": False,
            "geoFencing": False,
        },
        "moderation": {
            "enabled": True,
            "autoApprove": True,
        },
        "timeline": [],
    }


def admin_redirect(slug: str) -> str:
    return f"/{slug}/admin"
