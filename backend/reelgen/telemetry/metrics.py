from __future__ import annotations

import logging
import os
import threading
import time
from typing import Dict, Optional, Tuple

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


_logger = logging.getLogger(__name__)


# Single process-wide registry for all Prometheus metrics in this service.
_REGISTRY: CollectorRegistry = CollectorRegistry()

_BASE_LABELS_LOCK = threading.Lock()
_BASE_LABELS: Optional[Dict[str, str]] = None


def _detect_service_and_env() -> Tuple[str, str]:
    """
    Determine the base `service` and `env` labels.

    Preference order:
    1. backend.reelgen.config.get_settings() if it can be built.
    2. Environment variables (REELGEN_SERVICE_NAME / REELGEN_ENV, SERVICE_NAME / APP_ENV, etc.).
    3. Safe defaults: service="reelgen-api", env="local".
    """
    service = (
        os.getenv("REELGEN_SERVICE_NAME")
        or os.getenv("SERVICE_NAME")
        or "reelgen-api"
    )
    env = (
        os.getenv("REELGEN_ENV")
        or os.getenv("APP_ENV")
        or os.getenv("ENV")
        or "local"
    )

    from backend.reelgen.config import get_settings

    try:
        settings = get_settings()
    except RuntimeError:
        # Settings need a database DSN; metrics must work without one.
        return service, env

    if settings.SERVICE_NAME.strip():
        service = settings.SERVICE_NAME.strip()
    if settings.APP_ENV.strip():
        env = settings.APP_ENV.strip()

    return service, env


def get_base_labels() -> Dict[str, str]:
    """
    Return the mandatory base labels for all metrics.

    Always includes:
    - service
    - env
    """
    global _BASE_LABELS
    if _BASE_LABELS is None:
        with _BASE_LABELS_LOCK:
            if _BASE_LABELS is None:
                service, env = _detect_service_and_env()
                _BASE_LABELS = {"service": service, "env": env}
                _logger.info(
                    "Initialized Prometheus base labels",
                    extra={"service": service, "env": env},
                )
    # Return a shallow copy to prevent accidental mutation.
    return dict(_BASE_LABELS)


def get_registry() -> CollectorRegistry:
    """
    Access the shared CollectorRegistry for this process.
    """
    return _REGISTRY


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

# 1) API HTTP metrics
API_REQUEST_LATENCY_SECONDS = Histogram(
    "http_server_request_duration_seconds",
    "HTTP server request latency in seconds.",
    labelnames=["service", "env", "route", "method", "status_code"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
    registry=_REGISTRY,
)

API_REQUESTS_TOTAL = Counter(
    "http_server_requests_total",
    "Total HTTP server requests processed.",
    labelnames=["service", "env", "route", "method", "status_code"],
    registry=_REGISTRY,
)


# 2) Generation request path

GENERATION_REQUESTS_TOTAL = Counter(
    "reelgen_generation_requests_total",
    "Generation requests by kind and outcome.",
    labelnames=["service", "env", "kind", "outcome"],
    registry=_REGISTRY,
)

PROVIDER_REQUEST_DURATION_SECONDS = Histogram(
    "reelgen_provider_request_duration_seconds",
    "Latency of calls to the generation provider in seconds.",
    labelnames=["service", "env", "operation", "outcome"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
    registry=_REGISTRY,
)

QUOTA_REJECTIONS_TOTAL = Counter(
    "reelgen_quota_rejections_total",
    "Generation requests rejected because the daily limit was reached.",
    labelnames=["service", "env", "kind", "plan"],
    registry=_REGISTRY,
)

QUOTA_RELEASES_TOTAL = Counter(
    "reelgen_quota_releases_total",
    "Quota reservations handed back after a failed provider call.",
    labelnames=["service", "env", "kind"],
    registry=_REGISTRY,
)

JOB_TRANSITIONS_TOTAL = Counter(
    "reelgen_job_transitions_total",
    "Generation job status transitions.",
    labelnames=["service", "env", "from_status", "to_status"],
    registry=_REGISTRY,
)


# 3) Status refresh worker metrics

JOB_PROCESSING_DURATION_SECONDS = Histogram(
    "reelgen_job_processing_duration_seconds",
    "Status refresh processing duration per job in seconds.",
    labelnames=["service", "env", "job_type", "result"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
    registry=_REGISTRY,
)

JOB_ERRORS_TOTAL = Counter(
    "reelgen_job_errors_total",
    "Total status refresh errors by job type and error type.",
    labelnames=["service", "env", "job_type", "error_type"],
    registry=_REGISTRY,
)

PENDING_JOBS = Gauge(
    "reelgen_pending_jobs",
    "Queued generation jobs seen by the last status refresh cycle.",
    labelnames=["service", "env"],
    registry=_REGISTRY,
)

STATUS_REFRESH_LAST_SUCCESS_UNIXTIME = Gauge(
    "status_refresh_last_success_timestamp",
    "Unix timestamp of the last successful status refresh cycle.",
    labelnames=["service", "env"],
    registry=_REGISTRY,
)


# 4) JWT auth metrics

JWT_VALIDATION_DURATION_SECONDS = Histogram(
    "reelgen_jwt_validation_duration_seconds",
    "JWT validation latency in seconds.",
    labelnames=["service", "env", "issuer", "outcome"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
    registry=_REGISTRY,
)

JWT_INVALID_TOTAL = Counter(
    "auth_jwt_invalid_total",
    "Total invalid JWTs by reason.",
    labelnames=["service", "env", "reason"],
    registry=_REGISTRY,
)


# 5) Circuit breaker metrics

CIRCUIT_BREAKER_STATE = Gauge(
    "circuit_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open).",
    labelnames=["service", "env", "breaker_name", "target"],
    registry=_REGISTRY,
)


# ---------------------------------------------------------------------------
# Helper APIs
# ---------------------------------------------------------------------------


def _coerce_non_negative_duration(duration_seconds: float) -> float:
    if duration_seconds < 0:
        _logger.warning(
            "Received negative duration_seconds; coercing to 0.0",
            extra={"duration_seconds": duration_seconds},
        )
        return 0.0
    return duration_seconds


def observe_api_request(
    route: str,
    method: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """
    Record latency and count for a single HTTP API request.

    route: normalized path template, e.g. "/jobs/{job_id}"
    method: HTTP method, e.g. "GET"
    status_code: HTTP status code as integer
    duration_seconds: duration of the request in seconds
    """
    duration = _coerce_non_negative_duration(float(duration_seconds))
    labels = {
        **get_base_labels(),
        "route": route,
        "method": method.upper(),
        "status_code": str(int(status_code)),
    }
    API_REQUEST_LATENCY_SECONDS.labels(**labels).observe(duration)
    API_REQUESTS_TOTAL.labels(**labels).inc()


def observe_generation_request(kind: str, outcome: str) -> None:
    """
    Count one generation request.

    outcome: "accepted", "invalid_request", "quota_exceeded", "generation_failed", ...
    """
    GENERATION_REQUESTS_TOTAL.labels(
        **get_base_labels(), kind=kind, outcome=outcome
    ).inc()


def observe_provider_request(
    operation: str,
    outcome: str,
    duration_seconds: float,
) -> None:
    """
    Record one provider call.

    operation: "submit" or "fetch_status"
    outcome: "success" or a provider error kind
    """
    duration = _coerce_non_negative_duration(float(duration_seconds))
    PROVIDER_REQUEST_DURATION_SECONDS.labels(
        **get_base_labels(), operation=operation, outcome=outcome
    ).observe(duration)


def observe_quota_rejection(kind: str, plan: str) -> None:
    QUOTA_REJECTIONS_TOTAL.labels(**get_base_labels(), kind=kind, plan=plan).inc()


def observe_quota_release(kind: str) -> None:
    QUOTA_RELEASES_TOTAL.labels(**get_base_labels(), kind=kind).inc()


def observe_job_transition(from_status: str, to_status: str) -> None:
    JOB_TRANSITIONS_TOTAL.labels(
        **get_base_labels(), from_status=from_status, to_status=to_status
    ).inc()


def observe_job_result(
    job_type: str,
    result: str,
    duration_seconds: float,
    error_type: Optional[str] = None,
) -> None:
    """
    Record metrics for one processed status refresh item.

    job_type: logical job type, e.g. "status_refresh:video"
    result: "ready", "failed", "unchanged", "error"
    duration_seconds: processing time in seconds
    error_type: optional error classification, e.g. "unavailable"
    """
    duration = _coerce_non_negative_duration(float(duration_seconds))
    base_labels = get_base_labels()

    JOB_PROCESSING_DURATION_SECONDS.labels(
        **base_labels, job_type=job_type, result=result
    ).observe(duration)

    if error_type:
        JOB_ERRORS_TOTAL.labels(
            **base_labels, job_type=job_type, error_type=error_type
        ).inc()


def set_pending_jobs(count: int) -> None:
    value = int(count)
    if value < 0:
        _logger.warning(
            "Received negative pending job count; coercing to 0",
            extra={"count": count},
        )
        value = 0
    PENDING_JOBS.labels(**get_base_labels()).set(value)


def set_status_refresh_success(timestamp: Optional[float] = None) -> None:
    """
    Record the timestamp of the last successful status refresh cycle.

    timestamp: Unix epoch seconds; defaults to time.time() if omitted.
    """
    ts = float(timestamp) if timestamp is not None else time.time()
    if ts < 0:
        _logger.warning(
            "Received negative status refresh timestamp; coercing to current time",
            extra={"timestamp": timestamp},
        )
        ts = time.time()
    STATUS_REFRESH_LAST_SUCCESS_UNIXTIME.labels(**get_base_labels()).set(ts)


def observe_jwt_validation(
    issuer: str,
    outcome: str,
    reason: Optional[str],
    duration_seconds: float,
) -> None:
    """
    Record metrics for JWT validation.

    issuer: JWT issuer / provider, e.g. "supabase"
    outcome: "valid", "invalid", "expired", "signature_error", etc.
    reason: more detailed invalid reason; used for auth_jwt_invalid_total
    duration_seconds: validation latency in seconds
    """
    duration = _coerce_non_negative_duration(float(duration_seconds))
    base_labels = get_base_labels()

    JWT_VALIDATION_DURATION_SECONDS.labels(
        **base_labels, issuer=issuer, outcome=outcome
    ).observe(duration)

    if outcome.lower() != "valid":
        JWT_INVALID_TOTAL.labels(**base_labels, reason=reason or outcome).inc()


def set_circuit_breaker_state(
    breaker_name: str,
    target_system: str,
    state: int,
) -> None:
    """
    Set the circuit breaker state.

    state: 0 = closed, 1 = open, 2 = half_open
    """
    if state not in (0, 1, 2):
        raise ValueError(f"Invalid circuit breaker state: {state}. Expected 0, 1, or 2.")

    CIRCUIT_BREAKER_STATE.labels(
        **get_base_labels(), breaker_name=breaker_name, target=target_system
    ).set(int(state))


__all__ = [
    "get_registry",
    "get_base_labels",
    "observe_api_request",
    "observe_generation_request",
    "observe_provider_request",
    "observe_quota_rejection",
    "observe_quota_release",
    "observe_job_transition",
    "observe_job_result",
    "set_pending_jobs",
    "set_status_refresh_success",
    "observe_jwt_validation",
    "set_circuit_breaker_state",
]
