"""
Validation Metrics
==================

In-process aggregation of validation outcomes, forwarded to a telemetry sink.
"""

import threading
from typing import Callable, Optional

import structlog

from sql_validation.models import (
    StageMetrics,
    StageStatus,
    ValidationMetrics,
    ValidationResult,
)

logger = structlog.get_logger(__name__)

TelemetrySink = Callable[[ValidationResult, float], None]


class ValidationMetricsCollector:
    """
    Thread-safe running totals over completed validations.

    Every recorded result is also handed to ``sink`` (e.g. the Prometheus
    exporter); a failing sink is logged and does not affect the caller.
    """

    def __init__(self, sink: Optional[TelemetrySink] = None) -> None:
        self.sink = sink
        self._lock = threading.Lock()
        self._total = 0
        self._successful = 0
        self._correction_attempts = 0
        self._successful_corrections = 0
        self._score_sum = 0.0
        self._stages: dict[str, StageMetrics] = {}

    def record(self, result: ValidationResult, duration_seconds: float = 0.0) -> None:
        with self._lock:
            self._total += 1
            self._successful += int(result.is_valid)
            self._score_sum += result.overall_score
            self._correction_attempts += len(result.correction_history)
            self._successful_corrections += int(result.is_self_corrected)
            for outcome in result.executed_stages:
                stats = self._stages.setdefault(outcome.stage.value, StageMetrics())
                stats.runs += 1
                stats.total_score += outcome.score or 0.0
                if outcome.status is StageStatus.FAILED:
                    stats.failures += 1
                elif outcome.status is StageStatus.INDETERMINATE:
                    stats.indeterminate += 1

        if self.sink is not None:
            try:
                self.sink(result, duration_seconds)
            except Exception:
                logger.exception("telemetry_sink_failed")

    def snapshot(self) -> ValidationMetrics:
        with self._lock:
            return ValidationMetrics(
                total_validations=self._total,
                successful_validations=self._successful,
                self_correction_attempts=self._correction_attempts,
                successful_self_corrections=self._successful_corrections,
                average_validation_score=self._score_sum / self._total if self._total else 0.0,
                validation_type_metrics={
                    name: StageMetrics(
                        runs=stats.runs,
                        failures=stats.failures,
                        indeterminate=stats.indeterminate,
                        total_score=stats.total_score,
                    )
                    for name, stats in self._stages.items()
                },
            )

    def reset(self) -> None:
        with self._lock:
            self._total = 0
            self._successful = 0
            self._correction_attempts = 0
            self._successful_corrections = 0
            self._score_sum = 0.0
            self._stages = {}
