"""
API Dependencies

FastAPI dependency injection for authentication, rate limiting and the
services built at startup.

Services live on ``app.state`` (constructed in the lifespan handler); the
providers below only read them, so tests replace any of them through
``app.dependency_overrides``.

Security: JWT tokens are verified cryptographically using Supabase JWKS (ES256)
with HS256 fallback via the JWT secret. Never decode without verification.
"""

import logging
from typing import Callable, Optional

import jwt
from jwt import PyJWKClient
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from reflets.config.settings import get_settings
from reflets.domain.checkout import CheckoutInitiator
from reflets.domain.provisioning import AccountProvisioner
from reflets.domain.reconciler import WebhookReconciler
from reflets.infrastructure.db.repositories.pending_signup_repository import (
    PendingSignupRepository,
    get_pending_signup_repository,
)
from reflets.infrastructure.db.repositories.profile_repository import (
    ProfileRepository,
    get_profile_repository,
)
from reflets.infrastructure.db.repositories.wedding_repository import (
    WeddingRepository,
    get_wedding_repository,
)
from reflets.infrastructure.exceptions import ConfigurationError
from reflets.infrastructure.payments.stripe_service import StripeService
from reflets.infrastructure.rate_limit import (
    RATE_LIMITS,
    RateLimiter,
    RateLimitResult,
    get_client_ip,
)


logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

AUDIENCE = "authenticated"
REQUIRED_CLAIMS = ["exp", "sub", "iss"]

_jwks_client: Optional[PyJWKClient] = None


def _issuer() -> str:
    return f"{get_settings().supabase_url}/auth/v1"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _verify(token: str, key, algorithm: str, issuer: str) -> dict:
    return jwt.decode(
        token,
        key,
        algorithms=[algorithm],
        issuer=issuer,
        audience=AUDIENCE,
        options={"require": REQUIRED_CLAIMS},
    )


def _decode_with_jwks(token: str, issuer: str) -> dict:
    """ES256 verification against the project's published signing keys."""
    global _jwks_client
    if _jwks_client is None:
        # PyJWKClient keeps its own key cache
        _jwks_client = PyJWKClient(f"{issuer}/.well-known/jwks.json", cache_keys=True)
    signing_key = _jwks_client.get_signing_key_from_jwt(token)
    return _verify(token, signing_key.key, "ES256", issuer)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Resolve the caller's profile id from a Supabase access token.

    Asymmetric (JWKS) tokens are tried first; projects still signing with
    the shared secret fall through to HS256. A token is never decoded
    without checking its signature, issuer and audience.
    """
    if credentials is None:
        raise _unauthorized("Missing authorization token")

    token = credentials.credentials
    issuer = _issuer()

    try:
        claims = _decode_with_jwks(token, issuer)
    except (jwt.exceptions.PyJWKClientError, jwt.InvalidTokenError) as e:
        logger.debug(f"JWKS verification failed: {e}")
        claims = None

    secret = get_settings().supabase_jwt_secret
    if claims is None and secret:
        try:
            claims = _verify(token, secret, "HS256", issuer)
        except jwt.ExpiredSignatureError:
            raise _unauthorized("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected bearer token: {e}")

    if not claims:
        raise _unauthorized("Invalid or unverifiable token")
    if not claims.get("sub"):
        raise _unauthorized("Invalid token: missing user ID")
    return claims["sub"]


# =============================================================================
# Service providers (app.state)
# =============================================================================

def _from_state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise ConfigurationError(f"Service '{name}' is not available.")
    return service


def get_rate_limiter(request: Request) -> RateLimiter:
    return _from_state(request, "rate_limiter")


def get_stripe_service(request: Request) -> StripeService:
    return _from_state(request, "stripe_service")


def get_checkout_initiator(request: Request) -> CheckoutInitiator:
    return _from_state(request, "checkout_initiator")


def get_account_provisioner(request: Request) -> AccountProvisioner:
    return _from_state(request, "account_provisioner")


def get_webhook_reconciler(request: Request) -> WebhookReconciler:
    return _from_state(request, "webhook_reconciler")


def get_profiles() -> ProfileRepository:
    return get_profile_repository()


def get_weddings() -> WeddingRepository:
    return get_wedding_repository()


def get_pending_signups() -> PendingSignupRepository:
    return get_pending_signup_repository()


# =============================================================================
# Rate limiting
# =============================================================================

def rate_limit(name: str) -> Callable[..., RateLimitResult]:
    """
    Dependency factory enforcing one of the ``RATE_LIMITS`` budgets per client IP.

    Usage:
        @router.post("/checkout", dependencies=[Depends(rate_limit("signup"))])
    """
    config = RATE_LIMITS[name]

    def enforce(
        request: Request,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> RateLimitResult:
        return limiter.enforce(get_client_ip(request), config)

    return enforce
