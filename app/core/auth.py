import threading
import time
import uuid
from typing import Any, Dict, Optional

import requests
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi import Header, HTTPException
from jose import JWTError, jwt
from jose.utils import base64url_decode
from loguru import logger

from app.core.config import (
    AUTH_DEBUG,
    AUTH_VERIFY_MODE,
    JWKS_TTL_SECONDS,
    SUPABASE_ANON_KEY,
    SUPABASE_JWT_SECRET,
    SUPABASE_URL,
)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


# ------------------------------------------------------------
# Signing keys
# ------------------------------------------------------------
class JwksCache:
    """
    Signing keys published by Supabase Auth, refetched after `ttl` seconds
    or when a token names a kid we have not seen yet.
    """

    def __init__(self, base_url: Optional[str], api_key: Optional[str], ttl: int = JWKS_TTL_SECONDS):
        self._base_url = base_url
        self._api_key = api_key
        self._ttl = ttl
        self._keys: Optional[Dict[str, Dict[str, Any]]] = None
        self._fetched_at = 0.0
        self._lock = threading.Lock()

    def _fetch(self) -> Dict[str, Dict[str, Any]]:
        if not self._base_url or not self._api_key:
            raise HTTPException(
                status_code=500,
                detail="SUPABASE_URL / SUPABASE_ANON_KEY not set (required for JWKS mode)",
            )

        url = f"{self._base_url.rstrip('/')}/auth/v1/.well-known/jwks.json"
        try:
            resp = requests.get(url, headers={"apikey": self._api_key}, timeout=10)
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[auth] JWKS fetch failed | url={url} | error={e}")
            raise HTTPException(status_code=500, detail="Unable to fetch JWKS")

        if resp.status_code != 200 or "keys" not in body:
            raise HTTPException(status_code=500, detail=f"Invalid JWKS response: HTTP {resp.status_code}")

        logger.info(f"[auth] JWKS refreshed | keys={len(body['keys'])}")
        return {k["kid"]: k for k in body["keys"] if k.get("kid")}

    def get(self, kid: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            stale = self._keys is None or time.time() - self._fetched_at >= self._ttl
            if stale or kid not in self._keys:
                self._keys = self._fetch()
                self._fetched_at = time.time()
            return self._keys.get(kid)


def _ec_public_key(jwk: Dict[str, Any]):
    # Supabase publishes P-256 keys as bare x/y coordinates
    x = int.from_bytes(base64url_decode(jwk["x"].encode()), "big")
    y = int.from_bytes(base64url_decode(jwk["y"].encode()), "big")
    return ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1()).public_key(default_backend())


_jwks = JwksCache(SUPABASE_URL, SUPABASE_ANON_KEY)


# ------------------------------------------------------------
# Verification
# ------------------------------------------------------------
def _signing_key(token: str):
    """Key and algorithm to check `token` with, per AUTH_VERIFY_MODE."""
    if AUTH_VERIFY_MODE == "hs256":
        if not SUPABASE_JWT_SECRET:
            raise HTTPException(status_code=500, detail="SUPABASE_JWT_SECRET not set")
        return SUPABASE_JWT_SECRET, "HS256"

    if AUTH_VERIFY_MODE != "jwks":
        raise HTTPException(status_code=500, detail=f"Invalid AUTH_VERIFY_MODE: {AUTH_VERIFY_MODE}")

    try:
        header = jwt.get_unverified_header(token)
    except JWTError:
        raise _unauthorized("Invalid token header")

    if AUTH_DEBUG:
        logger.debug(f"[auth] header.alg={header.get('alg')} header.kid={header.get('kid')}")

    if header.get("alg") != "ES256":
        raise _unauthorized(f"Unsupported JWT alg: {header.get('alg')}")
    if not header.get("kid"):
        raise _unauthorized("Token missing kid")

    jwk = _jwks.get(header["kid"])
    if jwk is None:
        raise _unauthorized("Public key not found for kid")
    return _ec_public_key(jwk), "ES256"


def verify_token(token: str) -> str:
    """Verify a Supabase access token and return the user id it was issued to."""
    key, algorithm = _signing_key(token)

    try:
        claims = jwt.decode(token, key, algorithms=[algorithm], options={"verify_aud": False})
    except JWTError:
        raise _unauthorized("Invalid or expired token")

    sub = claims.get("sub")
    if not sub:
        raise _unauthorized("Token missing sub claim")

    try:
        return str(uuid.UUID(sub))
    except ValueError:
        raise _unauthorized("Invalid sub claim (not a UUID)")


# ------------------------------------------------------------
# Dependency
# ------------------------------------------------------------
def get_current_user_id(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization:
        raise _unauthorized("Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Invalid Authorization header format")

    user_id = verify_token(token.strip())
    if AUTH_DEBUG:
        logger.debug(f"[auth] mode={AUTH_VERIFY_MODE} user_id={user_id}")
    return user_id
