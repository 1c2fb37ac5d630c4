"""Prometheus scrape endpoint for the reelgen API process."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..errors import ReelgenError
from ..telemetry.metrics import get_base_labels, get_registry


logger = logging.getLogger(__name__)

router = APIRouter(tags=["telemetry"])


class MetricsUnavailable(ReelgenError):
    kind = "metrics_unavailable"
    status_code = 500
    default_message = "Metrics are temporarily unavailable."


@router.get(
    "/metrics",
    summary="Prometheus metrics endpoint",
    include_in_schema=False,
)
async def metrics_endpoint() -> Response:
    """Render the process registry in the text exposition format.

    A rendering failure is reported through the standard error envelope
    as ``metrics_unavailable``.
    """
    try:
        payload = generate_latest(get_registry())
    except Exception as exc:
        logger.exception("metrics_exposition_failed", extra=get_base_labels())
        raise MetricsUnavailable(detail={"error": exc.__class__.__name__}) from exc
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
