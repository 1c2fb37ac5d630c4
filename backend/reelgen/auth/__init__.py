"""Authentication for the reelgen API.

Bearer JWTs issued by Supabase are validated against the project's JWKS.
"""
from .dependencies import get_current_user
from .jwt_validator import (
    JWKSCache,
    JWTValidationError,
    UserPrincipal,
    get_jwks_cache,
    refresh_jwks_if_needed,
    validate_jwt_async,
)

__all__ = [
    # Dependencies
    "get_current_user",
    # JWT Validation
    "JWKSCache",
    "JWTValidationError",
    "UserPrincipal",
    "get_jwks_cache",
    "refresh_jwks_if_needed",
    "validate_jwt_async",
]
