"""
Supabase Identity Service

Account creation, deletion and password sign-in through Supabase Auth.

The admin client (service role key) creates and deletes users; sign-in uses
a separate anon-key client so no user session is ever stored on the admin
client. Calls run in a worker thread under ``asyncio.wait_for`` and a
timeout is reported as ``IdentityGatewayError``, as is a client that
cannot be built. Clients are resolved inside the worker call so a bad
key or URL surfaces through the same path.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import httpx
from supabase import (
    AuthApiError,
    AuthError,
    Client,
    ClientOptions,
    SupabaseException,
    create_client,
)

from reflets.config.settings import Settings
from reflets.domain.interfaces import AuthTokens, IdentityUser
from reflets.infrastructure.exceptions import (
    AccountExistsError,
    IdentityGatewayError,
)


logger = logging.getLogger(__name__)

PROVIDER = "supabase"
ALREADY_REGISTERED_CODES = {"email_exists", "user_already_exists"}
USER_NOT_FOUND_CODES = {"user_not_found"}


def _error_code(error: AuthError) -> Optional[str]:
    return getattr(error, "code", None)


def is_already_registered(error: AuthError) -> bool:
    if _error_code(error) in ALREADY_REGISTERED_CODES:
        return True
    return "already been registered" in str(error).lower()


def is_user_not_found(error: AuthError) -> bool:
    if _error_code(error) in USER_NOT_FOUND_CODES:
        return True
    return isinstance(error, AuthApiError) and getattr(error, "status", None) == 404


class SupabaseIdentityService:
    """
    Identity gateway backed by Supabase Auth.

    Args:
        supabase_url: Project URL
        service_role_key: Key for the admin API
        anon_key: Public key used for password sign-in
        timeout_seconds: Upper bound on every call
    """

    def __init__(
        self,
        supabase_url: str,
        service_role_key: str,
        anon_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
    ):
        self._url = supabase_url
        self._service_role_key = service_role_key
        self._anon_key = anon_key
        self._timeout = timeout_seconds
        self._admin_client: Optional[Client] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseIdentityService":
        return cls(
            supabase_url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            anon_key=settings.supabase_anon_key,
            timeout_seconds=settings.gateway_timeout_seconds,
        )

    def _options(self) -> ClientOptions:
        return ClientOptions(
            auto_refresh_token=False,
            persist_session=False,
            postgrest_client_timeout=self._timeout,
        )

    @property
    def admin(self) -> Client:
        if self._admin_client is None:
            self._admin_client = create_client(self._url, self._service_role_key, self._options())
        return self._admin_client

    def _new_auth_client(self) -> Client:
        # One client per sign-in so user sessions are never shared between requests.
        key = self._anon_key or self._service_role_key
        return create_client(self._url, key, self._options())

    async def _call(self, operation: str, fn: Callable[[], Any]) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Supabase {operation} timed out after {self._timeout}s")
            raise IdentityGatewayError(
                "Identity provider timed out. Please try again.",
                provider=PROVIDER,
                operation=operation,
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Supabase {operation} transport error: {e}")
            raise IdentityGatewayError(
                "Identity provider unavailable. Please try again.",
                provider=PROVIDER,
                operation=operation,
                original_error=e,
            ) from e
        except SupabaseException as e:
            logger.error(f"Supabase client unusable for {operation}: {e}")
            raise IdentityGatewayError(
                "Identity provider is not configured correctly.",
                provider=PROVIDER,
                operation=operation,
                original_error=e,
            ) from e

    # =========================================================================
    # Admin operations
    # =========================================================================

    async def create_user(
        self,
        email: str,
        password: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IdentityUser:
        """
        Create a pre-confirmed user.

        Raises:
            AccountExistsError: The email is already registered
            IdentityGatewayError: Any other failure
        """
        attributes = {
            "email": email,
            "password": password,
            "email_confirm": True,
            "user_metadata": metadata or {},
        }
        try:
            response = await self._call(
                "create_user",
                lambda: self.admin.auth.admin.create_user(attributes),
            )
        except AuthError as e:
            if is_already_registered(e):
                logger.info(f"Identity already exists for {email}")
                raise AccountExistsError(
                    "An account with this email already exists. Please contact support.",
                    original_error=e,
                ) from e
            logger.error(f"Supabase create_user failed: {e}")
            raise IdentityGatewayError(
                "Failed to create account. Please try again.",
                provider=PROVIDER,
                operation="create_user",
                original_error=e,
            ) from e

        user = getattr(response, "user", None)
        if user is None:
            raise IdentityGatewayError(
                "Failed to create account. Please try again.",
                provider=PROVIDER,
                operation="create_user",
            )
        logger.info(f"Created identity {user.id}")
        return IdentityUser(id=str(user.id), email=user.email or email)

    async def delete_user(self, user_id: str) -> None:
        """Delete a user; an already-deleted user counts as success."""
        try:
            await self._call(
                "delete_user",
                lambda: self.admin.auth.admin.delete_user(user_id),
            )
        except AuthError as e:
            if is_user_not_found(e):
                logger.info(f"Identity {user_id} already deleted")
                return
            raise IdentityGatewayError(
                "Failed to delete account.",
                provider=PROVIDER,
                operation="delete_user",
                original_error=e,
            ) from e
        logger.info(f"Deleted identity {user_id}")

    # =========================================================================
    # Sign-in
    # =========================================================================

    async def sign_in(self, email: str, password: str) -> AuthTokens:
        credentials = {"email": email, "password": password}
        try:
            response = await self._call(
                "sign_in",
                lambda: self._new_auth_client().auth.sign_in_with_password(credentials),
            )
        except AuthError as e:
            raise IdentityGatewayError(
                "Sign-in failed.",
                provider=PROVIDER,
                operation="sign_in",
                original_error=e,
            ) from e

        session = getattr(response, "session", None)
        if session is None:
            raise IdentityGatewayError(
                "Sign-in returned no session.",
                provider=PROVIDER,
                operation="sign_in",
            )
        return AuthTokens(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=session.expires_at,
        )
