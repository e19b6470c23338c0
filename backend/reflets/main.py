"""
Reflets - FastAPI Application

Main entry point for the backend API.
Provides signup, payment verification, Stripe webhooks and subscription management.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reflets.config.settings import settings
from reflets.domain.checkout import CheckoutInitiator
from reflets.domain.provisioning import AccountProvisioner
from reflets.domain.reconciler import WebhookReconciler
from reflets.infrastructure.db.repositories import (
    get_pending_signup_repository,
    get_profile_repository,
    get_stripe_event_repository,
    get_support_ticket_repository,
    get_wedding_repository,
)
from reflets.infrastructure.exceptions import (
    RefletsError,
    RateLimitError,
)
from reflets.infrastructure.identity.supabase_auth import SupabaseIdentityService
from reflets.infrastructure.payments import StripeService
from reflets.infrastructure.rate_limit import RateLimiter

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_services(app: FastAPI) -> None:
    """Wire gateways, repositories and domain services onto ``app.state``."""
    stripe_service = StripeService.from_settings(settings)
    identity = SupabaseIdentityService.from_settings(settings)
    pending_signups = get_pending_signup_repository()
    profiles = get_profile_repository()
    weddings = get_wedding_repository()

    app.state.stripe_service = stripe_service
    app.state.identity_service = identity
    app.state.checkout_initiator = CheckoutInitiator(
        payments=stripe_service,
        pending_signups=pending_signups,
        weddings=weddings,
        settings=settings,
    )
    app.state.account_provisioner = AccountProvisioner(
        payments=stripe_service,
        identity=identity,
        pending_signups=pending_signups,
        profiles=profiles,
        weddings=weddings,
        tickets=get_support_ticket_repository(),
        settings=settings,
    )
    app.state.webhook_reconciler = WebhookReconciler(
        payments=stripe_service,
        ledger=get_stripe_event_repository(),
        profiles=profiles,
        pending_signups=pending_signups,
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(f"Reflets Backend starting in {settings.environment} mode...")

    build_services(app)
    if not settings.is_stripe_configured:
        logger.warning("Stripe is not configured; checkout endpoints will answer 503")

    if settings.is_database_configured:
        try:
            from reflets.infrastructure.db.database import init_db
            await init_db()
            logger.info("Database connection pool initialized")
        except Exception as e:
            logger.warning(f"Database initialization skipped: {e}")

    yield

    # Shutdown
    if settings.is_database_configured:
        try:
            from reflets.infrastructure.db.database import close_db
            await close_db()
            logger.info("Database connection pool closed")
        except Exception as e:
            logger.warning(f"Database shutdown error: {e}")

    logger.info("Reflets Backend shutting down...")


# ============================================================================
# Exception Handlers
# ============================================================================

async def rate_limit_error_handler(request: Request, exc: RateLimitError):
    """Handle rate limit errors."""
    return JSONResponse(
        status_code=429,
        content=exc.to_dict(),
        headers=exc.headers(),
    )


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies follow the same 400 contract as domain validation."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    content = {
        "error": "Validation failed",
        "message": first.get("msg", "Invalid request"),
        "details": jsonable_encoder(errors),
    }
    location = [part for part in first.get("loc", ()) if part not in ("body", "query")]
    if location:
        content["field"] = str(location[-1])
    return JSONResponse(status_code=400, content=content)


async def reflets_error_handler(request: Request, exc: RefletsError):
    """Handle all other application errors."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Reflets",
        description="Wedding photo platform: signup, payments and subscriptions",
        version="1.0.0",
        lifespan=lifespan,
        debug=settings.debug,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )

    # Process-local counters; each instance enforces its own budget
    app.state.rate_limiter = RateLimiter()

    # CORS configuration from Settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RateLimitError, rate_limit_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(RefletsError, reflets_error_handler)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "reflets"}

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "Reflets API",
            "version": "1.0.0",
            "docs": None if settings.is_production else "/docs",
        }

    from reflets.api.routes import signup, subscriptions, webhooks

    app.include_router(signup.router, prefix="/api", tags=["Signup"])
    app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
    app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])

    return app


app = create_app()
