import base64
from types import SimpleNamespace

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi import HTTPException
from jose import jwt

from app.core import auth
from app.core.auth import get_current_user_id, verify_token
from tests.conftest import ALICE, make_token


def test_valid_token_returns_user_id():
    assert verify_token(make_token(ALICE)) == ALICE


def test_header_dependency():
    assert get_current_user_id(authorization=f"Bearer {make_token(ALICE)}") == ALICE


@pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer ", "Bearer"])
def test_malformed_header_is_rejected(header):
    with pytest.raises(HTTPException) as exc:
        get_current_user_id(authorization=header)
    assert exc.value.status_code == 401


def test_wrong_secret_is_rejected():
    token = jwt.encode({"sub": ALICE}, "some-other-secret", algorithm="HS256")
    with pytest.raises(HTTPException) as exc:
        verify_token(token)
    assert exc.value.status_code == 401


def test_missing_sub_is_rejected():
    token = jwt.encode({"role": "authenticated"}, "test-jwt-secret", algorithm="HS256")
    with pytest.raises(HTTPException) as exc:
        verify_token(token)
    assert exc.value.detail == "Token missing sub claim"


def test_non_uuid_sub_is_rejected():
    with pytest.raises(HTTPException) as exc:
        verify_token(make_token("not-a-uuid"))
    assert exc.value.status_code == 401


# ------------------------------------------------------------
# JWKS mode
# ------------------------------------------------------------
def _b64(n: int) -> str:
    return base64.urlsafe_b64encode(n.to_bytes(32, "big")).rstrip(b"=").decode()


@pytest.fixture
def es256_key(monkeypatch):
    private = ec.generate_private_key(ec.SECP256R1())
    numbers = private.public_key().public_numbers()
    jwks = {"keys": [{"kty": "EC", "crv": "P-256", "kid": "key-1", "x": _b64(numbers.x), "y": _b64(numbers.y)}]}

    calls = []

    def fake_get(url, headers=None, timeout=None):
        calls.append(url)
        return SimpleNamespace(status_code=200, json=lambda: jwks)

    monkeypatch.setattr(auth, "AUTH_VERIFY_MODE", "jwks")
    monkeypatch.setattr(auth.requests, "get", fake_get)
    monkeypatch.setattr(auth, "_jwks", auth.JwksCache("https://example.supabase.co", "anon-key", ttl=600))

    pem = private.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return pem, calls


def test_jwks_token_verifies_and_keys_are_cached(es256_key):
    pem, calls = es256_key
    token = jwt.encode({"sub": ALICE}, pem, algorithm="ES256", headers={"kid": "key-1"})

    assert verify_token(token) == ALICE
    assert verify_token(token) == ALICE
    assert calls == ["https://example.supabase.co/auth/v1/.well-known/jwks.json"]


def test_jwks_unknown_kid_refetches_then_rejects(es256_key):
    pem, calls = es256_key
    token = jwt.encode({"sub": ALICE}, pem, algorithm="ES256", headers={"kid": "rotated"})

    with pytest.raises(HTTPException) as exc:
        verify_token(token)
    assert exc.value.detail == "Public key not found for kid"
    assert len(calls) == 1


def test_jwks_rejects_hs256_tokens(es256_key):
    with pytest.raises(HTTPException) as exc:
        verify_token(make_token(ALICE))
    assert exc.value.status_code == 401
