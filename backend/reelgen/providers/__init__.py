"""Generation provider gateways and the process-wide gateway holder."""
from __future__ import annotations

import logging
import threading
from typing import Optional

from backend.reelgen.config import Settings, get_settings

from .base import GenerationParams, ProviderGateway, RemoteJob, map_provider_status
from .fake import FakeProviderGateway
from .http_gateway import HttpProviderGateway


logger = logging.getLogger(__name__)

_GATEWAY_LOCK = threading.Lock()
_GATEWAY: Optional[ProviderGateway] = None


def build_provider_gateway(settings: Settings) -> ProviderGateway:
    """Create the gateway selected by PROVIDER_BACKEND."""
    backend = settings.PROVIDER_BACKEND
    if backend == "fake":
        return FakeProviderGateway()
    if backend == "http":
        return HttpProviderGateway(settings)
    raise RuntimeError(f"Unknown PROVIDER_BACKEND: {backend!r}")


def get_provider_gateway() -> ProviderGateway:
    """Return the process-wide gateway, creating it on first use."""
    global _GATEWAY
    if _GATEWAY is None:
        with _GATEWAY_LOCK:
            if _GATEWAY is None:
                _GATEWAY = build_provider_gateway(get_settings())
                logger.info("provider_gateway_initialized", extra={"backend": _GATEWAY.name})
    return _GATEWAY


async def close_provider_gateway() -> None:
    global _GATEWAY
    with _GATEWAY_LOCK:
        gateway, _GATEWAY = _GATEWAY, None
    if gateway is not None:
        await gateway.aclose()


__all__ = [
    "FakeProviderGateway",
    "GenerationParams",
    "HttpProviderGateway",
    "ProviderGateway",
    "RemoteJob",
    "build_provider_gateway",
    "close_provider_gateway",
    "get_provider_gateway",
    "map_provider_status",
]
