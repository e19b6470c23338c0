"""
Unit tests for SupabaseIdentityService.

The Supabase client is replaced with a MagicMock; only error translation
and response mapping are exercised here.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from supabase import AuthApiError, SupabaseException

from reflets.infrastructure.exceptions import AccountExistsError, IdentityGatewayError
from reflets.infrastructure.identity.supabase_auth import (
    SupabaseIdentityService,
    is_already_registered,
    is_user_not_found,
)


@pytest.fixture
def service():
    svc = SupabaseIdentityService(
        supabase_url="https://testproject.supabase.co",
        service_role_key="service-role-key",
        anon_key="anon-key",
        timeout_seconds=2,
    )
    svc._admin_client = MagicMock()
    return svc


class TestErrorClassification:

    def test_already_registered_by_code(self):
        assert is_already_registered(AuthApiError("Conflict", 422, "email_exists"))

    def test_already_registered_by_message(self):
        error = AuthApiError("A user with this email address has already been registered", 422, None)
        assert is_already_registered(error)

    def test_other_error_not_registered(self):
        assert not is_already_registered(AuthApiError("Weak password", 422, "weak_password"))

    def test_user_not_found_by_code(self):
        assert is_user_not_found(AuthApiError("User not found", 404, "user_not_found"))

    def test_user_not_found_by_status(self):
        assert is_user_not_found(AuthApiError("Not found", 404, None))

    def test_server_error_is_not_not_found(self):
        assert not is_user_not_found(AuthApiError("Internal error", 500, None))


class TestCreateUser:

    @pytest.mark.asyncio
    async def test_creates_confirmed_user(self, service):
        service._admin_client.auth.admin.create_user.return_value = SimpleNamespace(
            user=SimpleNamespace(id="u1", email="alice@example.com")
        )

        user = await service.create_user("alice@example.com", "Secret123", {"full_name": "Alice"})

        assert user.id == "u1"
        attributes = service._admin_client.auth.admin.create_user.call_args.args[0]
        assert attributes["email_confirm"] is True
        assert attributes["user_metadata"] == {"full_name": "Alice"}

    @pytest.mark.asyncio
    async def test_existing_email(self, service):
        service._admin_client.auth.admin.create_user.side_effect = AuthApiError(
            "User already registered", 422, "email_exists"
        )

        with pytest.raises(AccountExistsError):
            await service.create_user("alice@example.com", "Secret123")

    @pytest.mark.asyncio
    async def test_other_auth_error(self, service):
        service._admin_client.auth.admin.create_user.side_effect = AuthApiError("Boom", 500, None)

        with pytest.raises(IdentityGatewayError):
            await service.create_user("alice@example.com", "Secret123")

    @pytest.mark.asyncio
    async def test_transport_error(self, service):
        service._admin_client.auth.admin.create_user.side_effect = httpx.ConnectError("refused")

        with pytest.raises(IdentityGatewayError) as exc_info:
            await service.create_user("alice@example.com", "Secret123")

        assert exc_info.value.status_code == 500


class TestDeleteUser:

    @pytest.mark.asyncio
    async def test_deletes(self, service):
        await service.delete_user("u1")
        service._admin_client.auth.admin.delete_user.assert_called_once_with("u1")

    @pytest.mark.asyncio
    async def test_already_deleted_is_success(self, service):
        service._admin_client.auth.admin.delete_user.side_effect = AuthApiError(
            "User not found", 404, "user_not_found"
        )

        await service.delete_user("u1")

    @pytest.mark.asyncio
    async def test_failure_raises(self, service):
        service._admin_client.auth.admin.delete_user.side_effect = AuthApiError("Boom", 500, None)

        with pytest.raises(IdentityGatewayError):
            await service.delete_user("u1")


class TestSignIn:

    @pytest.mark.asyncio
    async def test_returns_tokens(self, service, monkeypatch):
        auth_client = MagicMock()
        auth_client.auth.sign_in_with_password.return_value = SimpleNamespace(
            session=SimpleNamespace(access_token="at", refresh_token="rt", expires_at=1900000000)
        )
        monkeypatch.setattr(service, "_new_auth_client", lambda: auth_client)

        tokens = await service.sign_in("alice@example.com", "Secret123")

        assert tokens.access_token == "at"
        assert tokens.refresh_token == "rt"
        assert tokens.expires_at == 1900000000

    @pytest.mark.asyncio
    async def test_missing_session(self, service, monkeypatch):
        auth_client = MagicMock()
        auth_client.auth.sign_in_with_password.return_value = SimpleNamespace(session=None)
        monkeypatch.setattr(service, "_new_auth_client", lambda: auth_client)

        with pytest.raises(IdentityGatewayError):
            await service.sign_in("alice@example.com", "Secret123")

    @pytest.mark.asyncio
    async def test_unbuildable_client_is_gateway_error(self, service, monkeypatch):
        monkeypatch.setattr(
            "reflets.infrastructure.identity.supabase_auth.create_client",
            MagicMock(side_effect=SupabaseException("Invalid API key")),
        )

        with pytest.raises(IdentityGatewayError) as exc_info:
            await service.sign_in("alice@example.com", "Secret123")

        assert exc_info.value.status_code == 500


class TestClientConstruction:

    @pytest.fixture
    def broken_admin(self, monkeypatch):
        monkeypatch.setattr(
            "reflets.infrastructure.identity.supabase_auth.create_client",
            MagicMock(side_effect=SupabaseException("Invalid API key")),
        )
        return SupabaseIdentityService(
            supabase_url="https://testproject.supabase.co",
            service_role_key="not-a-key",
        )

    @pytest.mark.asyncio
    async def test_create_user(self, broken_admin):
        with pytest.raises(IdentityGatewayError):
            await broken_admin.create_user("alice@example.com", "Secret123")

    @pytest.mark.asyncio
    async def test_delete_user(self, broken_admin):
        with pytest.raises(IdentityGatewayError):
            await broken_admin.delete_user("u1")
