from __future__ import annotations

import time
import uuid

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from backend.reelgen.auth import JWTValidationError, get_jwks_cache, validate_jwt_async


ISSUER = "https://project.supabase.test"
JWKS_URL = f"{ISSUER}/auth/v1/.well-known/jwks.json"
KID = "test-key"


@pytest.fixture(scope="module")
def private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(autouse=True)
def primed_jwks(private_key):
    cache = get_jwks_cache()
    jwk = jwt.algorithms.RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    jwk["kid"] = KID
    cache.update({KID: jwk})
    yield cache
    cache.keys = {}
    cache.fetched_at = 0.0


def _token(private_key, **overrides) -> str:
    now = int(time.time())
    claims = {
        "sub": str(uuid.uuid4()),
        "email": "user@example.com",
        "aud": "authenticated",
        "iss": ISSUER,
        "iat": now,
        "exp": now + 600,
    }
    claims.update(overrides)
    return jwt.encode(claims, private_key, algorithm="RS256", headers={"kid": KID})


async def _validate(token: str):
    return await validate_jwt_async(
        token,
        jwks_url=JWKS_URL,
        expected_issuer=ISSUER,
        expected_audience="authenticated",
    )


@pytest.mark.asyncio
async def test_valid_token_yields_principal(private_key) -> None:
    user_id = uuid.uuid4()

    principal = await _validate(_token(private_key, sub=str(user_id)))

    assert principal.id == user_id
    assert principal.email == "user@example.com"


@pytest.mark.asyncio
async def test_expired_token_is_rejected(private_key) -> None:
    token = _token(private_key, exp=int(time.time()) - 60)

    with pytest.raises(JWTValidationError) as exc_info:
        await _validate(token)

    assert exc_info.value.reason == "expired"


@pytest.mark.asyncio
async def test_wrong_audience_is_rejected(private_key) -> None:
    with pytest.raises(JWTValidationError) as exc_info:
        await _validate(_token(private_key, aud="someone-else"))

    assert exc_info.value.reason == "invalid_audience"


@pytest.mark.asyncio
async def test_wrong_issuer_is_rejected(private_key) -> None:
    with pytest.raises(JWTValidationError) as exc_info:
        await _validate(_token(private_key, iss="https://evil.test"))

    assert exc_info.value.reason == "invalid_issuer"


@pytest.mark.asyncio
async def test_foreign_signature_is_rejected() -> None:
    other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    with pytest.raises(JWTValidationError) as exc_info:
        await _validate(_token(other_key))

    assert exc_info.value.reason == "invalid_signature"


@pytest.mark.asyncio
async def test_non_uuid_subject_is_rejected(private_key) -> None:
    with pytest.raises(JWTValidationError) as exc_info:
        await _validate(_token(private_key, sub="not-a-uuid"))

    assert exc_info.value.reason == "invalid_sub"


@pytest.mark.asyncio
async def test_garbage_token_is_malformed() -> None:
    with pytest.raises(JWTValidationError) as exc_info:
        await _validate("not.a.jwt")

    assert exc_info.value.reason == "malformed_token"
