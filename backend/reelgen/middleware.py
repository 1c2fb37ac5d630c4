"""Exception handlers and HTTP middleware for the API.

Domain errors are rendered as ``{"error": <kind>, "message": <text>, ...}``.
Structured details are always logged and only returned to clients when
``EXPOSE_ERROR_DETAILS`` is enabled.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable

from fastapi import Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .errors import ReelgenError
from .telemetry.metrics import observe_api_request


logger = logging.getLogger(__name__)

_HTTP_ERROR_KINDS = {
    status.HTTP_400_BAD_REQUEST: "invalid_request",
    status.HTTP_401_UNAUTHORIZED: "unauthenticated",
    status.HTTP_403_FORBIDDEN: "forbidden",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
}

_METRICS_SKIP_PATHS = frozenset({"/metrics"})


def _expose_details() -> bool:
    try:
        return get_settings().EXPOSE_ERROR_DETAILS
    except RuntimeError:
        # No database configured; settings cannot be built.
        return False


def _error_body(kind: str, message: str, detail: Any = None, **fields: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"error": kind, "message": message, **fields}
    if detail and _expose_details():
        body["detail"] = detail
    return body


async def reelgen_exception_handler(request: Request, exc: ReelgenError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_failed",
        extra={
            "path": request.url.path,
            "error_kind": exc.kind,
            "status_code": exc.status_code,
            "detail": exc.detail,
        },
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.kind, exc.message, exc.detail, **exc.public_fields()),
        headers=headers,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render body, path and query validation failures as 400 invalid_request."""
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    logger.info(
        "request_validation_failed",
        extra={"path": request.url.path, "errors": errors},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("invalid_request", "The request is invalid.", errors),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    kind = _HTTP_ERROR_KINDS.get(exc.status_code, "http_error")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed."
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": kind, "message": message},
        headers=getattr(exc, "headers", None),
    )


async def http_metrics_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Record latency and count for every request, keyed by route template."""
    if request.url.path in _METRICS_SKIP_PATHS:
        return await call_next(request)

    start = time.perf_counter()
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        route = request.scope.get("route")
        observe_api_request(
            route=getattr(route, "path", "unmatched"),
            method=request.method,
            status_code=status_code,
            duration_seconds=time.perf_counter() - start,
        )
