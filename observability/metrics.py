"""
Prometheus Metrics
==================

Validation and HTTP metrics for monitoring and alerting.
"""

import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

from sql_validation.models import ValidationResult

# Create a custom registry for this application
REGISTRY = CollectorRegistry()

APP_INFO = Info(
    "sql_validation",
    "SQL validation service information",
    registry=REGISTRY,
)

# Validation metrics
VALIDATIONS_TOTAL = Counter(
    "sql_validation_validations_total",
    "Total number of validations completed",
    ["level", "status"],  # status: valid, invalid
    registry=REGISTRY,
)

VALIDATION_DURATION = Histogram(
    "sql_validation_duration_seconds",
    "End-to-end validation duration in seconds",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

VALIDATION_SCORE = Histogram(
    "sql_validation_overall_score",
    "Overall validation score",
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
    registry=REGISTRY,
)

STAGE_OUTCOMES = Counter(
    "sql_validation_stage_outcomes_total",
    "Executed stage outcomes by stage and status",
    ["stage", "status"],
    registry=REGISTRY,
)

EARLY_EXITS = Counter(
    "sql_validation_early_exits_total",
    "Validations aborted after a critical finding",
    registry=REGISTRY,
)

CORRECTION_ATTEMPTS = Histogram(
    "sql_validation_correction_attempts",
    "Self-correction attempts per validation",
    buckets=[0, 1, 2, 3, 4, 5],
    registry=REGISTRY,
)

SELF_CORRECTIONS = Counter(
    "sql_validation_self_corrections_total",
    "Validations that ran the self-correction loop",
    ["outcome"],  # corrected, not_corrected
    registry=REGISTRY,
)

# HTTP metrics
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=REGISTRY,
)

ACTIVE_VALIDATIONS = Gauge(
    "sql_validation_active_requests",
    "Number of validation requests currently being processed",
    registry=REGISTRY,
)


def setup_metrics(app: FastAPI, version: str = "0.1.0") -> None:
    """
    Set up Prometheus metrics for the FastAPI application.

    Args:
        app: FastAPI application instance
        version: Reported application version
    """
    APP_INFO.info({"version": version})

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next: Callable) -> Response:
        """Middleware to track HTTP metrics."""
        start_time = time.perf_counter()

        is_validation_endpoint = request.url.path.startswith("/api/v1/validation/")
        if is_validation_endpoint:
            ACTIVE_VALIDATIONS.inc()

        try:
            response = await call_next(request)
            duration = time.perf_counter() - start_time

            HTTP_REQUESTS_TOTAL.labels(
                method=request.method,
                endpoint=request.url.path,
                status=response.status_code,
            ).inc()

            HTTP_REQUEST_DURATION.labels(
                method=request.method,
                endpoint=request.url.path,
            ).observe(duration)

            return response
        finally:
            if is_validation_endpoint:
                ACTIVE_VALIDATIONS.dec()


def track_validation_metrics(result: ValidationResult, duration_seconds: float) -> None:
    """
    Export a completed validation to Prometheus.

    Matches the service's telemetry sink signature.

    Args:
        result: The final validation result
        duration_seconds: Total processing time, including self-correction
    """
    VALIDATIONS_TOTAL.labels(
        level=result.validation_level.value,
        status="valid" if result.is_valid else "invalid",
    ).inc()
    VALIDATION_DURATION.observe(duration_seconds)
    VALIDATION_SCORE.observe(result.overall_score)

    for outcome in result.executed_stages:
        STAGE_OUTCOMES.labels(
            stage=outcome.stage.value,
            status=outcome.status.value,
        ).inc()

    if result.early_exit:
        EARLY_EXITS.inc()

    if result.correction_history:
        CORRECTION_ATTEMPTS.observe(len(result.correction_history))
        SELF_CORRECTIONS.labels(
            outcome="corrected" if result.is_self_corrected else "not_corrected"
        ).inc()


async def metrics_endpoint(request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    # Handle multiprocess mode if using gunicorn
    try:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        metrics = generate_latest(registry)
    except ValueError:
        # Not in multiprocess mode
        metrics = generate_latest(REGISTRY)

    return Response(
        content=metrics,
        media_type=CONTENT_TYPE_LATEST,
    )
