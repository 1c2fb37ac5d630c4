"""HTTP provider gateway (Tavus-style JSON API) built on httpx."""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Optional

import httpx

from backend.reelgen.config import Settings
from backend.reelgen.errors import ProviderError, ProviderErrorKind
from backend.reelgen.models import GenerationKind, JobStatus
from backend.reelgen.telemetry.metrics import observe_provider_request
from backend.reelgen.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    get_circuit_breaker,
)

from .base import GenerationParams, ProviderGateway, RemoteJob, map_provider_status


logger = logging.getLogger(__name__)

_ID_FIELDS = ("video_id", "audio_id", "id", "job_id")
_URL_FIELDS = ("download_url", "media_url", "hosted_url", "url")
_MAX_ERROR_BODY = 2000


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except (ValueError, httpx.HTTPError):
        payload = response.text[:_MAX_ERROR_BODY]
    if not isinstance(payload, dict):
        payload = {"body": payload}
    return payload


class HttpProviderGateway(ProviderGateway):
    """Talks to the generation provider over HTTPS.

    Transport errors, timeouts, 429 and 5xx responses are ``unavailable``
    and count against the circuit breaker; other 4xx responses are
    ``rejected``; unusable 2xx bodies are ``malformed_response``.
    """

    name = "http"

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker[Any]] = None,
    ) -> None:
        self._paths = {
            GenerationKind.VIDEO: settings.PROVIDER_VIDEO_PATH,
            GenerationKind.AUDIO: settings.PROVIDER_AUDIO_PATH,
        }
        headers = {"Content-Type": "application/json"}
        if settings.PROVIDER_API_KEY:
            headers["x-api-key"] = settings.PROVIDER_API_KEY
        self._client = client or httpx.AsyncClient(
            base_url=settings.PROVIDER_BASE_URL,
            headers=headers,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )
        self._breaker = breaker or get_circuit_breaker(
            "generation_provider",
            target="provider",
            trip_on=(ProviderError,),
        )

    async def submit(
        self,
        kind: GenerationKind,
        prompt: str,
        params: GenerationParams,
    ) -> RemoteJob:
        kind = GenerationKind(kind)
        body: dict[str, Any] = {
            "script": prompt,
            "model": params.model,
            "duration": params.duration_seconds,
        }
        if kind is GenerationKind.VIDEO:
            body["resolution"] = params.resolution_or_format
        else:
            body["format"] = params.resolution_or_format

        data = await self._request("submit", "POST", self._paths[kind], json=body)
        return self._parse_job(data)

    async def fetch_status(self, kind: GenerationKind, provider_job_id: str) -> RemoteJob:
        kind = GenerationKind(kind)
        path = f"{self._paths[kind].rstrip('/')}/{provider_job_id}"
        data = await self._request("fetch_status", "GET", path)
        return self._parse_job(data)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        start = time.perf_counter()
        outcome = "success"
        try:
            try:
                response = await self._breaker.call_async(self._send, method, path, **kwargs)
            except CircuitOpenError:
                raise ProviderError(
                    ProviderErrorKind.UNAVAILABLE,
                    "Provider circuit is open.",
                    detail={"circuit": "open"},
                )

            if response.status_code >= 400:
                raise ProviderError(
                    ProviderErrorKind.REJECTED,
                    "Provider rejected the request.",
                    provider_status=response.status_code,
                    detail=_error_payload(response),
                )

            try:
                data = response.json()
            except (ValueError, httpx.HTTPError):
                raise ProviderError(
                    ProviderErrorKind.MALFORMED_RESPONSE,
                    "Provider response is not JSON.",
                    provider_status=response.status_code,
                    detail={"body": response.text[:_MAX_ERROR_BODY]},
                )
            if not isinstance(data, dict):
                raise ProviderError(
                    ProviderErrorKind.MALFORMED_RESPONSE,
                    "Provider response is not a JSON object.",
                    provider_status=response.status_code,
                    detail={"body": data},
                )
            return data
        except ProviderError as exc:
            outcome = exc.error_kind.value
            logger.warning(
                "provider_request_failed",
                extra={
                    "operation": operation,
                    "error_kind": exc.error_kind.value,
                    "provider_status": exc.provider_status,
                    "detail": exc.detail,
                },
            )
            raise
        finally:
            observe_provider_request(operation, outcome, time.perf_counter() - start)

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE,
                "Provider request timed out.",
                detail={"error": exc.__class__.__name__},
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE,
                "Provider could not be reached.",
                detail={"error": exc.__class__.__name__},
            ) from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE,
                "Provider is unavailable.",
                provider_status=response.status_code,
                detail=_error_payload(response),
            )
        return response

    @staticmethod
    def _parse_job(data: dict[str, Any]) -> RemoteJob:
        provider_job_id = next(
            (data[key] for key in _ID_FIELDS if isinstance(data.get(key), (str, int)) and data.get(key) != ""),
            None,
        )
        if provider_job_id is None:
            raise ProviderError(
                ProviderErrorKind.MALFORMED_RESPONSE,
                "Provider response has no job id.",
                detail={"fields": sorted(data)},
            )

        raw_status = data.get("status")
        status = map_provider_status(raw_status)

        media_url = None
        if status is JobStatus.READY:
            media_url = next(
                (data[key] for key in _URL_FIELDS if isinstance(data.get(key), str) and data[key]),
                None,
            )
            if media_url is None:
                raise ProviderError(
                    ProviderErrorKind.MALFORMED_RESPONSE,
                    "Provider reported a ready job without a media URL.",
                    detail={"provider_job_id": str(provider_job_id)},
                )

        return RemoteJob(
            provider_job_id=str(provider_job_id),
            status=status,
            media_url=media_url,
            created_at=_parse_timestamp(data.get("created_at")),
            raw_status=str(raw_status),
        )
