from __future__ import annotations

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from backend.reelgen.auth import UserPrincipal, get_current_user
from backend.reelgen.deps import get_gateway
from backend.reelgen.errors import ProviderError, ProviderErrorKind
from backend.reelgen.main import app
from backend.reelgen.utils.db import get_session_factory


PROMPT = "A paper boat drifting down a rainy street"


@pytest.fixture
def principal():
    return {"user": None}


@pytest_asyncio.fixture
async def client(session_factory, gateway, principal):
    """Async HTTP client with storage, provider and identity overridden."""

    async def _session_factory():
        return session_factory

    def _current_user():
        return principal["user"]

    app.dependency_overrides[get_session_factory] = _session_factory
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_current_user] = _current_user

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def login(make_user, principal):
    async def _login(plan: str = "free"):
        user = await make_user(plan)
        principal["user"] = UserPrincipal(id=user.id, email=user.email)
        return user

    return _login


@pytest.mark.asyncio
async def test_generate_returns_accepted_job(client, login) -> None:
    await login()

    response = await client.post(
        "/generate/video",
        json={"prompt": PROMPT, "model": "phoenix-3"},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "queued"
    assert body["providerJobId"].startswith("fake-")
    uuid.UUID(body["jobId"])
    assert "started" in body["message"]


@pytest.mark.asyncio
async def test_second_free_generation_is_forbidden(client, login) -> None:
    await login("free")
    payload = {"prompt": PROMPT, "model": "phoenix-3"}

    await client.post("/generate/audio", json=payload)
    response = await client.post("/generate/audio", json=payload)

    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "quota_exceeded"
    assert body["limit"] == 1
    assert body["used"] == 1


@pytest.mark.asyncio
async def test_long_prompt_is_bad_request(client, login) -> None:
    await login("free")

    response = await client.post(
        "/generate/video",
        json={"prompt": " ".join(["word"] * 60), "model": "phoenix-3"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


@pytest.mark.asyncio
async def test_unknown_kind_is_bad_request(client, login) -> None:
    await login()

    response = await client.post("/generate/hologram", json={"prompt": PROMPT, "model": "m"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_malformed_body_is_bad_request(client, login) -> None:
    await login()

    response = await client.post(
        "/generate/video",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "invalid_request"
    assert "detail" not in body


@pytest.mark.asyncio
async def test_provider_failure_is_reported_without_raw_detail(client, login, gateway) -> None:
    await login()
    gateway.fail_with = ProviderError(
        ProviderErrorKind.UNAVAILABLE,
        provider_status=503,
        detail={"internal": "upstream stack trace"},
    )

    response = await client.post("/generate/video", json={"prompt": PROMPT, "model": "phoenix-3"})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "generation_failed"
    assert body["providerError"] == "unavailable"
    assert body["retryable"] is True
    assert "upstream stack trace" not in response.text

    usage = (await client.get("/usage/today")).json()
    assert usage["used"]["video"] == 0


@pytest.mark.asyncio
async def test_missing_token_is_unauthenticated(session_factory, gateway) -> None:
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.post("/generate/video", json={"prompt": PROMPT, "model": "m"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401
    assert response.json()["error"] == "unauthenticated"
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_job_lookup_is_owner_only(client, login) -> None:
    await login()
    created = (
        await client.post("/generate/video", json={"prompt": PROMPT, "model": "phoenix-3"})
    ).json()

    own = await client.get(f"/jobs/{created['jobId']}")
    assert own.status_code == 200
    assert own.json()["jobId"] == created["jobId"]
    assert own.json()["modelUsed"] == "phoenix-3"
    assert own.json()["mediaUrl"] is None

    await login()
    foreign = await client.get(f"/jobs/{created['jobId']}")
    assert foreign.status_code == 404
    assert foreign.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_list_jobs_newest_first(client, login) -> None:
    await login("pro")
    ids = []
    for _ in range(3):
        response = await client.post("/generate/video", json={"prompt": PROMPT, "model": "phoenix-3"})
        ids.append(response.json()["jobId"])

    page = (await client.get("/jobs", params={"limit": 2})).json()

    assert page["limit"] == 2
    assert len(page["items"]) == 2
    assert {item["jobId"] for item in page["items"]} <= set(ids)


@pytest.mark.asyncio
async def test_list_jobs_rejects_oversized_page(client, login) -> None:
    await login()

    response = await client.get("/jobs", params={"limit": 500})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_usage_today(client, login) -> None:
    await login("pro")
    await client.post("/generate/video", json={"prompt": PROMPT, "model": "phoenix-3"})

    body = (await client.get("/usage/today")).json()

    assert body["plan"] == "pro"
    assert body["limits"]["maxGenerationsPerDay"] == 5
    assert body["used"] == {"video": 1, "audio": 0}
    assert body["remaining"] == {"video": 4, "audio": 5}
