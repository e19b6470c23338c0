"""
Bearer-token verification for protected routes.

The JWKS lookup is patched to fail so tokens signed here with the shared
secret exercise the HS256 path end to end.
"""

import time
from unittest.mock import patch

import jwt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from reflets.api.dependencies import get_current_user_id
from reflets.config.settings import get_settings


PROFILE_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"

app = FastAPI()


@app.get("/me")
async def me(profile_id: str = Depends(get_current_user_id)):
    return {"profile_id": profile_id}


@pytest.fixture
def client():
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture(autouse=True)
def jwks():
    with patch(
        "reflets.api.dependencies._decode_with_jwks",
        side_effect=jwt.InvalidTokenError("offline"),
    ) as decode:
        yield decode


def sign(claims=None, drop=(), secret=None):
    settings = get_settings()
    body = {
        "sub": PROFILE_ID,
        "aud": "authenticated",
        "iss": f"{settings.supabase_url}/auth/v1",
        "exp": int(time.time()) + 600,
    }
    body.update(claims or {})
    for name in drop:
        body.pop(name)
    return jwt.encode(body, secret or settings.supabase_jwt_secret, algorithm="HS256")


def call(client, authorization=None):
    headers = {"Authorization": authorization} if authorization is not None else {}
    return client.get("/me", headers=headers)


@pytest.mark.parametrize(
    "authorization",
    [None, "Bearer ", "Basic abc123", "Bearer not.a.jwt", f"Bearer {PROFILE_ID}"],
)
def test_unusable_authorization_header(client, authorization):
    assert call(client, authorization).status_code == 401


@pytest.mark.parametrize(
    "claims",
    [
        {"iss": "https://other.supabase.co/auth/v1"},
        {"aud": "anon"},
    ],
)
def test_claims_from_another_project(client, claims):
    assert call(client, f"Bearer {sign(claims)}").status_code == 401


def test_signed_with_another_secret(client):
    token = sign(secret="another-secret-that-is-long-enough-123")
    assert call(client, f"Bearer {token}").status_code == 401


def test_expired_token_reports_expiry(client):
    resp = call(client, f"Bearer {sign({'exp': int(time.time()) - 60})}")

    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token has expired"


def test_subject_is_required(client):
    assert call(client, f"Bearer {sign(drop=['sub'])}").status_code == 401


def test_shared_secret_token_accepted(client):
    resp = call(client, f"Bearer {sign()}")

    assert resp.status_code == 200
    assert resp.json() == {"profile_id": PROFILE_ID}


def test_jwks_claims_take_precedence(client, jwks):
    jwks.side_effect = None
    jwks.return_value = {"sub": "from-jwks"}

    resp = call(client, "Bearer whatever")

    assert resp.status_code == 200
    assert resp.json()["profile_id"] == "from-jwks"
