"""Supabase JWT validation with JWKS caching.

This module implements JWT validation for Supabase-issued tokens with:
- JWKS fetching with timeout
- In-memory key caching with TTL
- Fallback to cached keys when JWKS endpoint is unavailable
- Metrics and logging for every validation

Security considerations:
- Never logs tokens or keys
- Validates iss, aud, exp, nbf claims
- Only accepts RSA algorithms (asymmetric)
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import jwt
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
)

from backend.reelgen.telemetry.metrics import observe_jwt_validation

logger = logging.getLogger(__name__)

_ALLOWED_ALGORITHMS = ("RS256", "RS384", "RS512")


# =============================================================================
# Exceptions
# =============================================================================

class JWTValidationError(Exception):
    """Raised when token validation fails."""

    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        super().__init__(reason)


# =============================================================================
# User Principal
# =============================================================================

@dataclass
class UserPrincipal:
    """Represents an authenticated user derived from JWT claims.

    The subscription plan is deliberately not read from claims; it comes
    from the user record so that expiry is evaluated server-side.

    Attributes:
        id: User's unique identifier (sub claim)
        email: User's email address
        raw_claims: Original JWT claims for extension
    """
    id: uuid.UUID
    email: str = ""
    raw_claims: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "UserPrincipal":
        """Create UserPrincipal from JWT claims."""
        # Supabase stores user ID in 'sub' claim
        user_id = claims.get("sub")
        if not user_id:
            raise JWTValidationError("missing_sub", "Token missing 'sub' claim")

        try:
            user_uuid = uuid.UUID(str(user_id))
        except ValueError:
            raise JWTValidationError("invalid_sub", "Invalid UUID in 'sub' claim")

        return cls(
            id=user_uuid,
            email=claims.get("email", "") or "",
            raw_claims=claims,
        )


# =============================================================================
# JWKS Cache
# =============================================================================

@dataclass
class JWKSCache:
    """Thread-safe JWKS cache with TTL support."""

    keys: dict[str, Any] = field(default_factory=dict)
    fetched_at: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock)

    # Cache configuration
    ttl_seconds: float = 300.0  # 5 minutes
    stale_ttl_seconds: float = 3600.0  # 1 hour fallback

    def is_fresh(self) -> bool:
        """Check if cache is within TTL."""
        return time.time() - self.fetched_at < self.ttl_seconds

    def is_usable(self) -> bool:
        """Check if cache can be used as fallback (within stale TTL)."""
        return (
            bool(self.keys) and
            time.time() - self.fetched_at < self.stale_ttl_seconds
        )

    def update(self, keys: dict[str, Any]) -> None:
        """Update cache with new keys."""
        with self.lock:
            self.keys = keys
            self.fetched_at = time.time()

    def get_key(self, kid: str) -> Optional[Any]:
        """Get a key by key ID."""
        with self.lock:
            return self.keys.get(kid)


# Global cache instance
_jwks_cache = JWKSCache()


def get_jwks_cache() -> JWKSCache:
    return _jwks_cache


# =============================================================================
# JWKS Fetching
# =============================================================================

async def _fetch_jwks(jwks_url: str, timeout: float = 5.0) -> dict[str, Any]:
    """Fetch JWKS from the given URL.

    Returns:
        Dictionary mapping key IDs to key data

    Raises:
        JWTValidationError: If fetch fails
    """
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(jwks_url)
            response.raise_for_status()
            data = response.json()
    except httpx.TimeoutException:
        logger.warning("jwks_fetch_timeout", extra={"url": jwks_url})
        raise JWTValidationError("jwks_timeout", "JWKS fetch timed out")
    except httpx.HTTPStatusError as e:
        logger.warning("jwks_fetch_http_error", extra={"status": e.response.status_code})
        raise JWTValidationError("jwks_http_error", f"HTTP {e.response.status_code}")
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("jwks_fetch_error", extra={"error": str(e)})
        raise JWTValidationError("jwks_error", str(e))

    keys = {}
    for key_data in data.get("keys", []):
        kid = key_data.get("kid")
        if kid:
            keys[kid] = key_data

    if not keys:
        raise JWTValidationError("no_keys", "JWKS response contained no keys")

    return keys


async def refresh_jwks_if_needed(jwks_url: Optional[str]) -> None:
    """Refresh JWKS cache if needed.

    This function:
    1. Checks if cache is fresh (within TTL)
    2. If not, fetches new keys
    3. Falls back to cached keys if fetch fails
    """
    if not jwks_url:
        return

    if _jwks_cache.is_fresh():
        return

    try:
        keys = await _fetch_jwks(jwks_url)
        _jwks_cache.update(keys)
        logger.info("jwks_refreshed", extra={"key_count": len(keys)})
    except JWTValidationError:
        if _jwks_cache.is_usable():
            logger.warning(
                "jwks_refresh_failed_using_cache",
                extra={"cache_age_seconds": time.time() - _jwks_cache.fetched_at}
            )
        else:
            logger.error("jwks_refresh_failed_cache_stale")
            raise


def get_public_key(kid: str) -> Any:
    """Get the public key for a given key ID.

    Raises:
        JWTValidationError: If key not found
    """
    key_data = _jwks_cache.get_key(kid)

    if not key_data:
        raise JWTValidationError("unknown_kid", f"Unknown key ID: {kid}")

    try:
        return jwt.algorithms.RSAAlgorithm.from_jwk(key_data)
    except (InvalidTokenError, ValueError, TypeError) as e:
        raise JWTValidationError("invalid_key", f"Could not parse key: {e}")


# =============================================================================
# Token Validation
# =============================================================================

async def _decode(
    token: str,
    *,
    jwks_url: Optional[str],
    expected_issuer: Optional[str],
    expected_audience: Optional[str],
) -> UserPrincipal:
    await refresh_jwks_if_needed(jwks_url)

    # Get the unverified header to find the key ID
    try:
        unverified_header = jwt.get_unverified_header(token)
    except DecodeError:
        raise JWTValidationError("malformed_token", "Could not decode token header")

    kid = unverified_header.get("kid")
    if not kid:
        raise JWTValidationError("missing_kid", "Token header missing 'kid'")

    alg = unverified_header.get("alg", "RS256")
    if alg not in _ALLOWED_ALGORITHMS:
        raise JWTValidationError("invalid_algorithm", f"Unsupported algorithm: {alg}")

    public_key = get_public_key(kid)

    decode_kwargs: dict[str, Any] = {
        "algorithms": [alg],
        "options": {
            "verify_signature": True,
            "verify_exp": True,
            "verify_nbf": True,
            "verify_iat": True,
            "verify_aud": bool(expected_audience),
            "require": ["exp", "sub"],
        },
    }
    if expected_issuer:
        decode_kwargs["issuer"] = expected_issuer
    if expected_audience:
        decode_kwargs["audience"] = expected_audience

    try:
        claims = jwt.decode(token, key=public_key, **decode_kwargs)
    except ExpiredSignatureError:
        raise JWTValidationError("expired", "Token has expired")
    except InvalidSignatureError:
        raise JWTValidationError("invalid_signature", "Token signature is invalid")
    except InvalidIssuerError:
        raise JWTValidationError("invalid_issuer", "Token issuer is invalid")
    except InvalidAudienceError:
        raise JWTValidationError("invalid_audience", "Token audience is invalid")
    except InvalidTokenError as e:
        raise JWTValidationError("invalid_token", str(e))

    return UserPrincipal.from_claims(claims)


async def validate_jwt_async(
    token: str,
    *,
    jwks_url: Optional[str] = None,
    expected_issuer: Optional[str] = None,
    expected_audience: Optional[str] = None,
) -> UserPrincipal:
    """Validate a JWT and return a UserPrincipal.

    Args:
        token: The JWT token string (without "Bearer " prefix)
        jwks_url: JWKS endpoint URL
        expected_issuer: Expected token issuer (iss claim)
        expected_audience: Expected token audience (aud claim)

    Raises:
        JWTValidationError: If validation fails
    """
    start = time.perf_counter()
    issuer = expected_issuer or "supabase"

    try:
        principal = await _decode(
            token,
            jwks_url=jwks_url,
            expected_issuer=expected_issuer,
            expected_audience=expected_audience,
        )
    except JWTValidationError as e:
        observe_jwt_validation(
            issuer=issuer,
            outcome="invalid",
            reason=e.reason,
            duration_seconds=time.perf_counter() - start,
        )
        raise

    duration = time.perf_counter() - start
    observe_jwt_validation(
        issuer=issuer,
        outcome="valid",
        reason=None,
        duration_seconds=duration,
    )
    logger.debug(
        "jwt_validation_success",
        extra={"user_id": str(principal.id), "duration_ms": duration * 1000}
    )
    return principal
