from __future__ import annotations

import json

import httpx
import pytest

from backend.reelgen.config import Settings
from backend.reelgen.errors import ProviderError, ProviderErrorKind
from backend.reelgen.models import GenerationKind, JobStatus
from backend.reelgen.providers import GenerationParams, HttpProviderGateway
from backend.reelgen.utils.circuit_breaker import CircuitBreaker, CircuitState


SETTINGS = Settings(
    POSTGRES_DSN="sqlite+aiosqlite:///:memory:",
    PROVIDER_BASE_URL="https://provider.test",
    PROVIDER_API_KEY="test-key",
)
VIDEO_PARAMS = GenerationParams(model="phoenix-3", duration_seconds=10.0, resolution_or_format="720p")
AUDIO_PARAMS = GenerationParams(model="voice-1", duration_seconds=30.0, resolution_or_format="mp3")


def _breaker(failure_threshold: int = 5) -> CircuitBreaker:
    return CircuitBreaker(
        "provider-test",
        failure_threshold=failure_threshold,
        rolling_window_seconds=60.0,
        recovery_timeout_seconds=60.0,
        success_threshold=1,
        trip_on=(ProviderError,),
    )


def _gateway(handler, breaker: CircuitBreaker | None = None) -> HttpProviderGateway:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://provider.test",
        headers={"x-api-key": "test-key"},
    )
    return HttpProviderGateway(SETTINGS, client=client, breaker=breaker or _breaker())


@pytest.mark.asyncio
async def test_submit_video_sends_prompt_and_parses_job() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["api_key"] = request.headers.get("x-api-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"video_id": "v-123", "status": "queued"})

    gateway = _gateway(handler)
    job = await gateway.submit(GenerationKind.VIDEO, "a cat", VIDEO_PARAMS)

    assert job.provider_job_id == "v-123"
    assert job.status is JobStatus.QUEUED
    assert job.media_url is None
    assert seen["path"] == "/v2/videos"
    assert seen["api_key"] == "test-key"
    assert seen["body"] == {
        "script": "a cat",
        "model": "phoenix-3",
        "duration": 10.0,
        "resolution": "720p",
    }
    await gateway.aclose()


@pytest.mark.asyncio
async def test_submit_audio_sends_format() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"audio_id": "a-1", "status": "processing"})

    gateway = _gateway(handler)
    job = await gateway.submit(GenerationKind.AUDIO, "hello", AUDIO_PARAMS)

    assert job.status is JobStatus.QUEUED
    assert seen["path"] == "/v2/audio"
    assert seen["body"]["format"] == "mp3"
    assert "resolution" not in seen["body"]


@pytest.mark.asyncio
async def test_fetch_status_ready_carries_media_url() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/v2/videos/v-123"
        return httpx.Response(
            200,
            json={"video_id": "v-123", "status": "completed", "download_url": "https://cdn.test/v.mp4"},
        )

    job = await _gateway(handler).fetch_status(GenerationKind.VIDEO, "v-123")

    assert job.status is JobStatus.READY
    assert job.media_url == "https://cdn.test/v.mp4"


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [429, 500, 503])
async def test_server_errors_are_unavailable(status_code: int) -> None:
    gateway = _gateway(lambda request: httpx.Response(status_code, json={"error": "busy"}))

    with pytest.raises(ProviderError) as exc_info:
        await gateway.submit(GenerationKind.VIDEO, "a cat", VIDEO_PARAMS)

    assert exc_info.value.error_kind is ProviderErrorKind.UNAVAILABLE
    assert exc_info.value.provider_status == status_code
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_timeout_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ProviderError) as exc_info:
        await _gateway(handler).submit(GenerationKind.VIDEO, "a cat", VIDEO_PARAMS)

    assert exc_info.value.error_kind is ProviderErrorKind.UNAVAILABLE


@pytest.mark.asyncio
async def test_client_errors_are_rejected_with_payload() -> None:
    gateway = _gateway(
        lambda request: httpx.Response(400, json={"message": "script violates policy"})
    )

    with pytest.raises(ProviderError) as exc_info:
        await gateway.submit(GenerationKind.VIDEO, "a cat", VIDEO_PARAMS)

    assert exc_info.value.error_kind is ProviderErrorKind.REJECTED
    assert exc_info.value.provider_status == 400
    assert exc_info.value.detail == {"message": "script violates policy"}
    assert not exc_info.value.retryable


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>oops</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"status": "queued"}),
        httpx.Response(200, json={"video_id": "v-1", "status": "teleporting"}),
        httpx.Response(200, json={"video_id": "v-1", "status": "ready"}),
    ],
    ids=["not-json", "not-object", "no-id", "unknown-status", "ready-without-url"],
)
async def test_unusable_responses_are_malformed(response: httpx.Response) -> None:
    gateway = _gateway(lambda request: response)

    with pytest.raises(ProviderError) as exc_info:
        await gateway.submit(GenerationKind.VIDEO, "a cat", VIDEO_PARAMS)

    assert exc_info.value.error_kind is ProviderErrorKind.MALFORMED_RESPONSE


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_unavailability() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    breaker = _breaker(failure_threshold=2)
    gateway = _gateway(handler, breaker)

    for _ in range(2):
        with pytest.raises(ProviderError):
            await gateway.submit(GenerationKind.VIDEO, "a cat", VIDEO_PARAMS)
    assert breaker.current_state is CircuitState.OPEN

    with pytest.raises(ProviderError) as exc_info:
        await gateway.submit(GenerationKind.VIDEO, "a cat", VIDEO_PARAMS)

    assert exc_info.value.error_kind is ProviderErrorKind.UNAVAILABLE
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_rejections_do_not_trip_the_circuit() -> None:
    breaker = _breaker(failure_threshold=1)
    gateway = _gateway(lambda request: httpx.Response(422, json={"message": "bad"}), breaker)

    for _ in range(3):
        with pytest.raises(ProviderError):
            await gateway.submit(GenerationKind.VIDEO, "a cat", VIDEO_PARAMS)

    assert breaker.current_state is CircuitState.CLOSED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [httpx.DecodingError("bad gzip stream"), httpx.TooManyRedirects("redirect loop")],
    ids=["decoding", "redirects"],
)
async def test_other_request_errors_are_unavailable(error: httpx.HTTPError) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    breaker = _breaker(failure_threshold=1)
    with pytest.raises(ProviderError) as exc_info:
        await _gateway(handler, breaker).submit(GenerationKind.VIDEO, "a cat", VIDEO_PARAMS)

    assert exc_info.value.error_kind is ProviderErrorKind.UNAVAILABLE
    assert exc_info.value.detail == {"error": error.__class__.__name__}
    assert breaker.current_state is CircuitState.OPEN
