from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import ReelgenError
from .middleware import (
    http_exception_handler,
    http_metrics_middleware,
    reelgen_exception_handler,
    validation_exception_handler,
)
from .providers import close_provider_gateway
from .routes.generation import router as generation_router
from .routes.jobs import router as jobs_router
from .routes.metrics import router as metrics_router
from .routes.usage import router as usage_router
from .utils.db import get_database


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Release the provider client and pooled database connections on shutdown."""
    yield
    await close_provider_gateway()
    await get_database().dispose()
    logger.info("app_shutdown_complete")


def create_app() -> FastAPI:
    """
    Application factory for the generation API.

    Settings are resolved lazily by the dependencies, so building the app
    does not require a configured environment.
    """
    app = FastAPI(title="reelgen-backend", lifespan=lifespan)

    app.middleware("http")(http_metrics_middleware)

    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(ReelgenError)(reelgen_exception_handler)

    # Metrics endpoint (no prefix) – scraped directly by Prometheus.
    app.include_router(metrics_router)
    app.include_router(generation_router)
    app.include_router(jobs_router)
    app.include_router(usage_router)

    return app


app = create_app()
