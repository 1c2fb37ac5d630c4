"""FastAPI authentication dependencies.

Usage:
    @router.get("/protected")
    async def protected_endpoint(
        user: UserPrincipal = Depends(get_current_user),
    ):
        return {"user_id": str(user.id)}
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.reelgen.config import get_settings

from .jwt_validator import (
    JWTValidationError,
    UserPrincipal,
    validate_jwt_async,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Security Scheme
# =============================================================================

# HTTPBearer extracts the token from Authorization header
_bearer_scheme = HTTPBearer(
    scheme_name="Bearer",
    description="Supabase JWT token",
    auto_error=False,  # We handle missing tokens ourselves
)

_FAILURE_DETAILS = {
    "expired": "Token has expired",
    "invalid_signature": "Invalid token signature",
    "invalid_audience": "Token not valid for this service",
    "invalid_issuer": "Token issuer not trusted",
}


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# =============================================================================
# Dependencies
# =============================================================================

async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> UserPrincipal:
    """Get the current authenticated user from the request.

    This dependency:
    1. Extracts the Bearer token from Authorization header
    2. Validates the token against Supabase JWKS
    3. Returns a UserPrincipal with user information

    Raises:
        HTTPException: 401 if authentication fails
    """
    if not credentials or not credentials.credentials:
        raise _unauthorized("Authentication required. Please log in.")

    settings = get_settings()

    try:
        user = await validate_jwt_async(
            credentials.credentials,
            jwks_url=settings.supabase_jwks_url,
            expected_issuer=settings.SUPABASE_URL,
            expected_audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except JWTValidationError as e:
        logger.info("authentication_failed", extra={"reason": e.reason})
        raise _unauthorized(_FAILURE_DETAILS.get(e.reason, "Authentication failed"))

    # Attach user to request state for logging/tracing
    request.state.user_id = str(user.id)
    return user
