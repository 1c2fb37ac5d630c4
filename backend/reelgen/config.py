from __future__ import annotations

import os
import threading
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError


_ENV_LOCK = threading.Lock()
_SETTINGS: "Settings | None" = None

_DEVELOPMENT_ENVS = {"local", "development", "dev"}


def _read_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    return default


class Settings(BaseModel):
    """Application configuration loaded from environment variables.

    Environment precedence is:

    1. Canonical env var names (e.g. POSTGRES_DSN, APP_ENV).
    2. Legacy aliases (e.g. DATABASE_URL, ENV) when canonical is unset.
    3. Built-in defaults where defined.
    """

    # Core
    APP_ENV: str = Field(default="local")
    SERVICE_NAME: str = Field(default="reelgen-api")
    LOG_LEVEL: str = Field(default="INFO")
    EXPOSE_ERROR_DETAILS: bool = Field(default=False)

    # Database
    POSTGRES_DSN: str
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=20)
    DB_POOL_TIMEOUT: float = Field(default=30.0)
    DB_CONNECT_ATTEMPTS: int = Field(default=3)

    # Redis
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    REELGEN_REDIS_PREFIX: str = Field(default="reelgen")
    REDIS_POOL_SIZE: int = Field(default=10)
    REDIS_MAX_CONNECTIONS: Optional[int] = Field(default=None)

    # Circuit breaker defaults
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = Field(default=5)
    CIRCUIT_BREAKER_ROLLING_WINDOW: int = Field(default=60)
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT: int = Field(default=30)
    CIRCUIT_BREAKER_SUCCESS_THRESHOLD: int = Field(default=2)

    # Generation provider
    PROVIDER_BACKEND: str = Field(default="http")
    PROVIDER_BASE_URL: str = Field(default="https://tavusapi.com")
    PROVIDER_API_KEY: Optional[str] = Field(default=None)
    PROVIDER_TIMEOUT_SECONDS: float = Field(default=30.0)
    PROVIDER_VIDEO_PATH: str = Field(default="/v2/videos")
    PROVIDER_AUDIO_PATH: str = Field(default="/v2/audio")

    # Auth
    SUPABASE_URL: Optional[str] = Field(default=None)
    SUPABASE_JWT_AUDIENCE: Optional[str] = Field(default="authenticated")

    # Status refresh worker
    STATUS_REFRESH_INTERVAL_SECONDS: float = Field(default=15.0)
    STATUS_REFRESH_BATCH_SIZE: int = Field(default=50)
    STATUS_REFRESH_LOCK_TTL: int = Field(default=60)

    class Config:
        frozen = True

    @property
    def env(self) -> str:
        """Canonical environment label used for metrics and namespacing."""
        return self.APP_ENV

    @property
    def service(self) -> str:
        """Canonical service name label used for metrics."""
        return self.SERVICE_NAME

    @property
    def supabase_jwks_url(self) -> Optional[str]:
        if not self.SUPABASE_URL:
            return None
        return f"{self.SUPABASE_URL.rstrip('/')}/auth/v1/.well-known/jwks.json"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build Settings from environment with support for legacy aliases.

        Canonical names are preferred; legacy aliases are only consulted if the
        canonical variable is unset.
        """

        env = os.environ

        def pick(
            primary: str,
            *aliases: str,
            default: Optional[str] = None,
        ) -> Optional[str]:
            if primary in env and env[primary]:
                return env[primary]
            for name in aliases:
                if name in env and env[name]:
                    return env[name]
            return default

        data: Dict[str, Any] = {}

        # Core
        data["APP_ENV"] = (pick("APP_ENV", "ENV", default="local") or "local").strip()
        data["SERVICE_NAME"] = (
            pick("SERVICE_NAME", default="reelgen-api") or "reelgen-api"
        ).strip()
        data["LOG_LEVEL"] = (
            pick("LOG_LEVEL", default="INFO") or "INFO"
        ).strip()
        data["EXPOSE_ERROR_DETAILS"] = _read_bool(
            pick("EXPOSE_ERROR_DETAILS", default=None),
            default=data["APP_ENV"].lower() in _DEVELOPMENT_ENVS,
        )

        # Database
        dsn = pick("POSTGRES_DSN", "DATABASE_URL")
        if not dsn:
            raise RuntimeError(
                "POSTGRES_DSN (or legacy DATABASE_URL) must be set in the environment."
            )
        data["POSTGRES_DSN"] = dsn
        data["DB_POOL_SIZE"] = int(pick("DB_POOL_SIZE", default="10") or "10")
        data["DB_MAX_OVERFLOW"] = int(pick("DB_MAX_OVERFLOW", default="20") or "20")
        data["DB_POOL_TIMEOUT"] = float(
            pick("DB_POOL_TIMEOUT", default="30.0") or "30.0"
        )
        data["DB_CONNECT_ATTEMPTS"] = int(
            pick("DB_CONNECT_ATTEMPTS", default="3") or "3"
        )

        # Redis
        data["REDIS_URL"] = (
            pick("REDIS_URL", default="redis://localhost:6379/0")
            or "redis://localhost:6379/0"
        )
        data["REELGEN_REDIS_PREFIX"] = (
            pick("REELGEN_REDIS_PREFIX", default="reelgen") or "reelgen"
        )
        data["REDIS_POOL_SIZE"] = int(
            pick("REDIS_POOL_SIZE", default="10") or "10"
        )
        max_conns_raw = pick("REDIS_MAX_CONNECTIONS", default="")
        data["REDIS_MAX_CONNECTIONS"] = (
            int(max_conns_raw) if max_conns_raw not in ("", None) else None
        )

        # Circuit breaker
        data["CIRCUIT_BREAKER_FAILURE_THRESHOLD"] = int(
            pick("CIRCUIT_BREAKER_FAILURE_THRESHOLD", default="5") or "5"
        )
        data["CIRCUIT_BREAKER_ROLLING_WINDOW"] = int(
            pick("CIRCUIT_BREAKER_ROLLING_WINDOW", default="60") or "60"
        )
        data["CIRCUIT_BREAKER_RECOVERY_TIMEOUT"] = int(
            pick("CIRCUIT_BREAKER_RECOVERY_TIMEOUT", default="30") or "30"
        )
        data["CIRCUIT_BREAKER_SUCCESS_THRESHOLD"] = int(
            pick("CIRCUIT_BREAKER_SUCCESS_THRESHOLD", default="2") or "2"
        )

        # Generation provider
        data["PROVIDER_BACKEND"] = (
            pick("PROVIDER_BACKEND", default="http") or "http"
        ).strip().lower()
        data["PROVIDER_BASE_URL"] = (
            pick("PROVIDER_BASE_URL", default="https://tavusapi.com")
            or "https://tavusapi.com"
        )
        data["PROVIDER_API_KEY"] = pick("PROVIDER_API_KEY", "TAVUS_API_KEY")
        data["PROVIDER_TIMEOUT_SECONDS"] = float(
            pick("PROVIDER_TIMEOUT_SECONDS", default="30.0") or "30.0"
        )
        data["PROVIDER_VIDEO_PATH"] = (
            pick("PROVIDER_VIDEO_PATH", default="/v2/videos") or "/v2/videos"
        )
        data["PROVIDER_AUDIO_PATH"] = (
            pick("PROVIDER_AUDIO_PATH", default="/v2/audio") or "/v2/audio"
        )

        # Auth
        data["SUPABASE_URL"] = pick("SUPABASE_URL", default=None)
        data["SUPABASE_JWT_AUDIENCE"] = pick(
            "SUPABASE_JWT_AUDIENCE", default="authenticated"
        )

        # Status refresh worker
        data["STATUS_REFRESH_INTERVAL_SECONDS"] = float(
            pick("STATUS_REFRESH_INTERVAL_SECONDS", default="15.0") or "15.0"
        )
        data["STATUS_REFRESH_BATCH_SIZE"] = int(
            pick("STATUS_REFRESH_BATCH_SIZE", default="50") or "50"
        )
        data["STATUS_REFRESH_LOCK_TTL"] = int(
            pick("STATUS_REFRESH_LOCK_TTL", default="60") or "60"
        )

        try:
            return cls(**data)
        except ValidationError as exc:
            raise RuntimeError(f"Invalid configuration: {exc}") from exc


def get_settings() -> Settings:
    """Return a cached Settings instance (process-wide singleton).

    The first call reads from environment; subsequent calls return the same
    immutable Settings object.
    """
    global _SETTINGS
    if _SETTINGS is None:
        with _ENV_LOCK:
            if _SETTINGS is None:
                _SETTINGS = Settings.from_env()
    return _SETTINGS
