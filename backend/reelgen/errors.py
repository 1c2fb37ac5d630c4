"""Error taxonomy shared by the quota, provider, job and HTTP layers.

Every error carries a stable ``kind`` (rendered to clients), a generic
``message`` that is safe to show to users, an HTTP ``status_code`` and an
optional ``detail`` mapping that is only exposed through logs or, in
development, the diagnostic field of error responses.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ReelgenError(Exception):
    """Base class for all domain errors."""

    kind: str = "internal_error"
    status_code: int = 500
    default_message: str = "An unexpected error occurred. Please try again."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        detail: Optional[dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.detail = detail or {}
        super().__init__(self.message)

    def public_fields(self) -> dict[str, Any]:
        """Extra fields that are safe to include in a client response."""
        return {}


class InvalidRequest(ReelgenError):
    kind = "invalid_request"
    status_code = 400
    default_message = "The request is invalid."


class Unauthenticated(ReelgenError):
    kind = "unauthenticated"
    status_code = 401
    default_message = "Authentication required. Please log in."


class QuotaExceeded(ReelgenError):
    """Raised when the daily generation limit for a kind is already used up."""

    kind = "quota_exceeded"
    status_code = 403
    default_message = "Daily generation limit reached. Upgrade your plan or try again tomorrow."

    def __init__(self, limit: int, used: int, *, kind: Optional[str] = None):
        self.limit = limit
        self.used = used
        self.generation_kind = kind
        super().__init__(detail={"limit": limit, "used": used, "kind": kind})

    def public_fields(self) -> dict[str, Any]:
        return {"limit": self.limit, "used": self.used}


class ProviderErrorKind(str, Enum):
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"
    MALFORMED_RESPONSE = "malformed_response"


class ProviderError(ReelgenError):
    """Failure reported by, or while talking to, the generation provider.

    Attributes:
        error_kind: unavailable, rejected or malformed_response
        provider_status: HTTP status returned by the provider, if any
        detail: structured provider payload (never shown to end users)
    """

    kind = "provider_error"
    status_code = 500
    default_message = "Generation service temporarily unavailable. Please try again later."

    def __init__(
        self,
        error_kind: ProviderErrorKind,
        message: Optional[str] = None,
        *,
        provider_status: Optional[int] = None,
        detail: Optional[dict[str, Any]] = None,
    ):
        self.error_kind = ProviderErrorKind(error_kind)
        self.provider_status = provider_status
        super().__init__(message, detail=detail)

    @property
    def retryable(self) -> bool:
        return self.error_kind is ProviderErrorKind.UNAVAILABLE

    def __repr__(self) -> str:
        return (
            f"<ProviderError(kind={self.error_kind.value}, "
            f"provider_status={self.provider_status})>"
        )


class GenerationFailed(ReelgenError):
    """Raised by the orchestrator after a provider failure was compensated."""

    kind = "generation_failed"
    status_code = 500
    default_message = "Generation service temporarily unavailable. Please try again later."

    def __init__(self, cause: ProviderError):
        self.cause = cause
        super().__init__(
            detail={
                "provider_error": cause.error_kind.value,
                "provider_status": cause.provider_status,
                "provider_detail": cause.detail,
                "provider_message": cause.message,
            }
        )

    def public_fields(self) -> dict[str, Any]:
        return {
            "providerError": self.cause.error_kind.value,
            "retryable": self.cause.retryable,
        }


class StorageError(ReelgenError):
    kind = "storage_error"
    status_code = 500
    default_message = "A storage error occurred. Please try again."


class JobNotFound(ReelgenError):
    kind = "not_found"
    status_code = 404
    default_message = "Generation job not found."


class InvalidTransition(ReelgenError):
    kind = "invalid_transition"
    status_code = 409
    default_message = "The requested job status change is not allowed."

    def __init__(self, current: str, requested: str, reason: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(
            detail={"current": current, "requested": requested, "reason": reason}
        )
