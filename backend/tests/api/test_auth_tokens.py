"""Tests for bearer token decoding and role checks."""

import time

import jwt as pyjwt
import pytest
from fastapi import HTTPException

from rendezvous.core.auth import AuthUser, decode_token, require_role
from rendezvous.core.config import get_settings
from rendezvous.domain.lifecycle import UserRole

pytestmark = pytest.mark.unit

SECRET = "unit-test-secret-long-enough-for-hs256-keys"


@pytest.fixture(autouse=True)
def jwt_settings(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", SECRET)
    monkeypatch.setenv("JWT_AUDIENCE", "")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_token(secret=SECRET, **claims):
    payload = {"sub": "client-1", "exp": int(time.time()) + 300}
    payload.update(claims)
    return pyjwt.encode(payload, secret, algorithm="HS256")


def test_valid_token_decodes():
    assert decode_token(make_token())["sub"] == "client-1"


def test_expired_token_is_401():
    with pytest.raises(HTTPException) as exc_info:
        decode_token(make_token(exp=int(time.time()) - 10))

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Token expired"


def test_wrong_signature_is_401():
    with pytest.raises(HTTPException) as exc_info:
        decode_token(make_token(secret="another-secret-also-long-enough-for-hs256"))

    assert exc_info.value.status_code == 401


def test_missing_subject_is_401():
    token = pyjwt.encode({"exp": int(time.time()) + 300}, SECRET, algorithm="HS256")

    with pytest.raises(HTTPException) as exc_info:
        decode_token(token)

    assert exc_info.value.status_code == 401


async def test_require_role_rejects_other_roles():
    dependency = require_role(UserRole.PRO)

    with pytest.raises(HTTPException) as exc_info:
        await dependency(user=AuthUser("client-1", UserRole.CLIENT))

    assert exc_info.value.status_code == 403


async def test_require_role_passes_matching_role():
    dependency = require_role(UserRole.PRO, UserRole.ADMIN)
    user = AuthUser("pro-1", UserRole.PRO)

    assert await dependency(user=user) is user
