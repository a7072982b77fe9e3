"""
Observability Module
====================

Metrics, tracing, and structured logging for the validation service.
"""

from observability.metrics import metrics_endpoint, setup_metrics, track_validation_metrics
from observability.tracing import get_tracer, setup_tracing
from observability.logging_config import (
    bind_context,
    clear_context,
    get_logger,
    mask_sql_fields,
    setup_logging,
)

__all__ = [
    "setup_metrics",
    "track_validation_metrics",
    "metrics_endpoint",
    "setup_tracing",
    "get_tracer",
    "setup_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "mask_sql_fields",
]
