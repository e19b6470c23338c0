"""
Gateway Interfaces for Reflets

Protocols for the external collaborators the signup and billing flows
depend on, and the plain data they exchange. Infrastructure services
implement these; tests substitute fakes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


# =============================================================================
# Payment Gateway
# =============================================================================

@dataclass(frozen=True)
class CheckoutSession:
    """A hosted checkout page opened at the payment processor."""
    id: str
    url: str


@dataclass(frozen=True)
class PaymentSession:
    """Server-side view of a checkout session."""
    id: str
    payment_status: str
    customer_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


@dataclass(frozen=True)
class BillingEvent:
    """A verified webhook event; ``data`` is the event's ``data.object``."""
    id: str
    type: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LineItem:
    name: str
    description: str
    unit_amount: int
    currency: str
    quantity: int = 1


@runtime_checkable
class PaymentGateway(Protocol):

    async def create_checkout_session(
        self,
        line_items: List[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> CheckoutSession:
        ...

    async def retrieve_session(self, session_id: str) -> PaymentSession:
        ...

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> BillingEvent:
        """Raises SignatureVerificationError when the signature is absent or wrong."""
        ...


# =============================================================================
# Identity Gateway
# =============================================================================

@dataclass(frozen=True)
class IdentityUser:
    id: str
    email: str


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    refresh_token: str
    expires_at: Optional[int] = None


@runtime_checkable
class IdentityGateway(Protocol):

    async def create_user(
        self,
        email: str,
        password: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IdentityUser:
        """Raises AccountExistsError when the email is already registered."""
        ...

    async def delete_user(self, user_id: str) -> None:
        """Idempotent: deleting an unknown user succeeds."""
        ...

    async def sign_in(self, email: str, password: str) -> AuthTokens:
        ...
