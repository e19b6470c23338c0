"""
Test configuration and fixtures for Reflets.

Provides shared fixtures for unit and integration tests. Required settings
are seeded into the environment before any application module is imported.
"""

import os

os.environ.setdefault("SUPABASE_URL", "https://testproject.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-at-least-32-bytes!")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("ENVIRONMENT", "testing")

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from reflets.config.settings import Settings
from reflets.domain.interfaces import (
    AuthTokens,
    CheckoutSession,
    IdentityUser,
    PaymentSession,
)
from reflets.domain.signup import PendingSignup, Wedding


FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
USER_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application with clean overrides and counters."""
    from reflets.main import app

    app.state.rate_limiter.reset()
    yield app
    app.dependency_overrides.clear()
    app.state.rate_limiter.reset()


@pytest.fixture
def client(app):
    """Get synchronous test client (lifespan not run, so no database)."""
    return TestClient(app, raise_server_exceptions=False)


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def test_settings():
    """Settings with instant compensation backoff."""
    return Settings(
        supabase_url="https://testproject.supabase.co",
        supabase_service_role_key="test-service-role-key",
        site_url="http://localhost:4321",
        compensation_max_attempts=3,
        compensation_backoff_seconds=0.1,
        trial_days=31,
        initial_period_years=2,
        renewal_period_years=1,
    )


@pytest.fixture
def fixed_now():
    return FIXED_NOW


# =============================================================================
# Mock Fixtures
# =============================================================================

@pytest.fixture
def mock_payments():
    """Mock for the Stripe payment gateway."""
    mock = MagicMock()
    mock.create_checkout_session = AsyncMock(
        return_value=CheckoutSession(id="cs_test_123", url="https://checkout.stripe.com/c/cs_test_123")
    )
    mock.retrieve_session = AsyncMock(
        return_value=PaymentSession(
            id="cs_test_123",
            payment_status="paid",
            customer_id="cus_test",
            metadata={"type": "new_signup", "slug": "alice-bob"},
        )
    )
    mock.verify_webhook_signature = MagicMock()
    return mock


@pytest.fixture
def mock_identity():
    """Mock for the Supabase identity gateway."""
    mock = MagicMock()
    mock.create_user = AsyncMock(return_value=IdentityUser(id=USER_ID, email="alice@example.com"))
    mock.delete_user = AsyncMock(return_value=None)
    mock.sign_in = AsyncMock(
        return_value=AuthTokens(access_token="access", refresh_token="refresh", expires_at=1900000000)
    )
    return mock


@pytest.fixture
def mock_pending_signups():
    mock = AsyncMock()
    mock.is_slug_reserved.return_value = False
    mock.mark_checkout_completed.return_value = True
    return mock


@pytest.fixture
def mock_weddings():
    mock = AsyncMock()
    mock.slug_exists.return_value = False
    mock.get_by_slug.return_value = None
    mock.create.return_value = Wedding(
        id="wed_1",
        owner_id=USER_ID,
        slug="alice-bob",
        guest_code="ABC234",
        name="Alice & Bob's Wedding",
    )
    return mock


@pytest.fixture
def mock_profiles():
    return AsyncMock()


@pytest.fixture
def mock_tickets():
    mock = AsyncMock()
    mock.open_ticket.return_value = "ticket_1"
    return mock


@pytest.fixture
def mock_ledger():
    return AsyncMock()


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def signup_payload():
    """Valid signup wizard submission."""
    return {
        "email": "alice@example.com",
        "password": "Secret123",
        "partner1_name": "Alice",
        "partner2_name": "Bob",
        "wedding_date": "2026-09-12",
        "slug": "alice-bob",
        "theme_id": "classic",
    }


@pytest.fixture
def pending_signup():
    """Uncompleted reservation for ``alice-bob``."""
    return PendingSignup(
        id="ps_1",
        stripe_session_id="cs_test_123",
        email="alice@example.com",
        partner1_name="Alice",
        partner2_name="Bob",
        wedding_date=date(2026, 9, 12),
        slug="alice-bob",
        theme_id="classic",
        expires_at=FIXED_NOW + timedelta(hours=24),
    )
