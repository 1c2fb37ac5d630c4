"""Contract between the request path and the external generation provider."""
from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from backend.reelgen.errors import ProviderError, ProviderErrorKind
from backend.reelgen.models import GenerationKind, JobStatus


# Provider vocabularies differ; everything collapses onto our three states.
_STATUS_ALIASES = {
    "queued": JobStatus.QUEUED,
    "pending": JobStatus.QUEUED,
    "started": JobStatus.QUEUED,
    "generating": JobStatus.QUEUED,
    "processing": JobStatus.QUEUED,
    "ready": JobStatus.READY,
    "completed": JobStatus.READY,
    "succeeded": JobStatus.READY,
    "error": JobStatus.FAILED,
    "failed": JobStatus.FAILED,
    "deleted": JobStatus.FAILED,
}


@dataclass(frozen=True)
class GenerationParams:
    """Resolved generation parameters sent along with a prompt."""
    model: str
    duration_seconds: float
    resolution_or_format: str


@dataclass(frozen=True)
class RemoteJob:
    """The provider's view of a generation job.

    ``media_url`` is only populated when ``status`` is ready.
    """
    provider_job_id: str
    status: JobStatus
    media_url: Optional[str] = None
    created_at: Optional[datetime] = None
    raw_status: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


def map_provider_status(value: object) -> JobStatus:
    """Translate a provider status string, raising MalformedResponse if unknown."""
    key = str(value or "").strip().lower()
    try:
        return _STATUS_ALIASES[key]
    except KeyError:
        raise ProviderError(
            ProviderErrorKind.MALFORMED_RESPONSE,
            "Provider returned an unknown job status.",
            detail={"status": value},
        )


class ProviderGateway(abc.ABC):
    """Abstract generation provider.

    Implementations never validate prompt content and never retry; every
    failure surfaces as a ProviderError carrying a structured payload.
    """

    name: str = "provider"

    @abc.abstractmethod
    async def submit(
        self,
        kind: GenerationKind,
        prompt: str,
        params: GenerationParams,
    ) -> RemoteJob:
        """Submit a prompt and return the provider's job descriptor."""

    @abc.abstractmethod
    async def fetch_status(self, kind: GenerationKind, provider_job_id: str) -> RemoteJob:
        """Return the provider's current view of a previously submitted job."""

    async def aclose(self) -> None:
        """Release any held resources."""
        return None
