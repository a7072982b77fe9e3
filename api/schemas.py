"""
API Schemas
===========

Pydantic models for API request/response validation, with explicit
conversion from the pipeline's dataclasses.
"""

from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from sql_validation.models import (
    DryRunExecutionResult,
    EnhancedValidationResponse,
    SelfCorrectionAttempt,
    StageName,
    StageOutcome,
    StageStatus,
    ValidationIssue,
    ValidationLevel,
    ValidationMetrics,
    ValidationRequest,
    ValidationResult,
)


class EnhancedValidationRequest(BaseModel):
    """Request body for SQL validation."""

    sql: str = Field(
        ...,
        max_length=20000,
        description="SQL statement to validate",
        examples=["SELECT * FROM tbl_Daily_actions WHERE Date = GETDATE()"],
    )
    original_query: str = Field(
        ...,
        max_length=2000,
        description="Natural-language question the SQL is meant to answer",
        examples=["Show me today's daily actions"],
    )
    context: str | None = Field(None, description="Free-form extra context")
    user_id: str | None = Field(None, description="Caller identity for access checks")
    enable_self_correction: bool = Field(
        default=True,
        description="Attempt to correct failing SQL",
    )
    enable_dry_run: bool = Field(
        default=False,
        description="Preview the query on the execution engine when static stages pass",
    )
    validation_level: ValidationLevel = Field(default=ValidationLevel.STANDARD)
    skip_validation_types: list[StageName] = Field(
        default_factory=list,
        description="Stages to skip for this request",
    )

    def to_domain(self) -> ValidationRequest:
        return ValidationRequest(
            sql=self.sql,
            original_query=self.original_query,
            context=self.context,
            user_id=self.user_id,
            enable_self_correction=self.enable_self_correction,
            enable_dry_run=self.enable_dry_run,
            validation_level=self.validation_level,
            skip_validation_types=frozenset(self.skip_validation_types),
        )


class DryRunRequest(BaseModel):
    """Request body for a stand-alone dry run."""

    sql: str = Field(..., max_length=20000, description="SELECT statement to preview")
    max_rows_to_analyze: int | None = Field(None, ge=1, le=100000)
    max_execution_time: float | None = Field(None, gt=0, le=300)


class ValidationIssueResponse(BaseModel):
    category: str
    message: str
    severity: str
    fixable: bool

    @classmethod
    def from_issue(cls, issue: ValidationIssue) -> "ValidationIssueResponse":
        return cls(
            category=issue.category,
            message=issue.message,
            severity=issue.severity.value,
            fixable=issue.fixable,
        )


def _details(result: Any) -> dict[str, Any]:
    if result is None or not is_dataclass(result):
        return {}
    details = asdict(result)
    details.pop("issues", None)
    return details


class StageOutcomeResponse(BaseModel):
    """One stage of a validation run."""

    stage: StageName
    executed: bool = Field(..., description="False when the stage was skipped by policy")
    status: str = Field(..., description="passed, failed, skipped or indeterminate")
    score: float | None = None
    reason: str = ""
    issues: list[ValidationIssueResponse] = Field(default_factory=list)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Stage-specific sub-results",
    )

    @classmethod
    def from_outcome(cls, outcome: StageOutcome) -> "StageOutcomeResponse":
        return cls(
            stage=outcome.stage,
            executed=outcome.executed,
            status=outcome.status.value,
            score=outcome.score,
            reason=outcome.reason,
            issues=[ValidationIssueResponse.from_issue(i) for i in outcome.issues],
            details=_details(outcome.result),
        )


class SelfCorrectionAttemptResponse(BaseModel):
    attempt_number: int
    original_sql: str
    corrected_sql: str | None
    strategy: str
    correction_reason: str
    improvement_score: float
    was_successful: bool
    issues_addressed: list[str] = Field(default_factory=list)
    score_before: float
    score_after: float
    attempt_timestamp: datetime

    @classmethod
    def from_attempt(cls, attempt: SelfCorrectionAttempt) -> "SelfCorrectionAttemptResponse":
        return cls(
            attempt_number=attempt.attempt_number,
            original_sql=attempt.original_sql,
            corrected_sql=attempt.corrected_sql,
            strategy=attempt.strategy.value,
            correction_reason=attempt.correction_reason,
            improvement_score=attempt.improvement_score,
            was_successful=attempt.was_successful,
            issues_addressed=list(attempt.issues_addressed),
            score_before=attempt.score_before,
            score_after=attempt.score_after,
            attempt_timestamp=attempt.attempt_timestamp,
        )


class ValidationResultResponse(BaseModel):
    """Aggregate validation result."""

    sql: str = Field(..., description="Final SQL (the corrected candidate if corrected)")
    original_sql: str
    validation_level: ValidationLevel
    is_valid: bool
    overall_score: float = Field(..., ge=0.0, le=1.0)
    can_self_correct: bool
    is_self_corrected: bool
    correction_reason: str | None = None
    early_exit: bool
    stages: dict[str, StageOutcomeResponse]
    correction_history: list[SelfCorrectionAttemptResponse] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    validation_timestamp: datetime

    @classmethod
    def from_result(cls, result: ValidationResult) -> "ValidationResultResponse":
        return cls(
            sql=result.sql,
            original_sql=result.original_sql,
            validation_level=result.validation_level,
            is_valid=result.is_valid,
            overall_score=result.overall_score,
            can_self_correct=result.can_self_correct,
            is_self_corrected=result.is_self_corrected,
            correction_reason=result.correction_reason,
            early_exit=result.early_exit,
            stages={
                stage.value: StageOutcomeResponse.from_outcome(outcome)
                for stage, outcome in result.stages.items()
            },
            correction_history=[
                SelfCorrectionAttemptResponse.from_attempt(a) for a in result.correction_history
            ],
            warnings=list(result.warnings),
            validation_timestamp=result.validation_timestamp,
        )


class EnhancedValidationResponseModel(BaseModel):
    """Response body for SQL validation."""

    success: bool = Field(..., description="Whether the pipeline completed")
    message: str = Field(..., description="Status message")
    validation_result: ValidationResultResponse | None = None
    warnings: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = Field(None, description="Request ID if available")

    @classmethod
    def from_response(
        cls, response: EnhancedValidationResponse, request_id: str | None = None
    ) -> "EnhancedValidationResponseModel":
        result = response.validation_result
        return cls(
            success=response.success,
            message=response.message,
            validation_result=(
                ValidationResultResponse.from_result(result) if result is not None else None
            ),
            warnings=list(response.warnings),
            metadata=dict(response.metadata),
            request_id=request_id,
        )


class StageValidationResponse(BaseModel):
    """Response body for a single-stage validation."""

    success: bool
    message: str
    outcome: StageOutcomeResponse
    request_id: str | None = None

    @classmethod
    def from_outcome(
        cls, outcome: StageOutcome, request_id: str | None = None
    ) -> "StageValidationResponse":
        message = f"{outcome.stage.value} validation {outcome.status.value}"
        if outcome.reason:
            message = f"{message}: {outcome.reason}"
        return cls(
            success=outcome.status is not StageStatus.INDETERMINATE,
            message=message,
            outcome=StageOutcomeResponse.from_outcome(outcome),
            request_id=request_id,
        )


class PerformanceMetricsResponse(BaseModel):
    logical_reads: int | None = None
    physical_reads: int | None = None
    cpu_time_ms: float | None = None


class DryRunResponse(BaseModel):
    """Response body for a stand-alone dry run."""

    can_execute: bool
    executed_successfully: bool
    estimated_execution_time_ms: float | None = None
    estimated_row_count: int | None = None
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    execution_plan: str | None = None
    performance_metrics: PerformanceMetricsResponse
    timed_out: bool = False
    request_id: str | None = None

    @classmethod
    def from_result(
        cls, result: DryRunExecutionResult, request_id: str | None = None
    ) -> "DryRunResponse":
        return cls(
            can_execute=result.can_execute,
            executed_successfully=result.executed_successfully,
            estimated_execution_time_ms=result.estimated_execution_time_ms,
            estimated_row_count=result.estimated_row_count,
            warnings=list(result.warnings),
            errors=list(result.errors),
            execution_plan=result.execution_plan,
            performance_metrics=PerformanceMetricsResponse(
                **asdict(result.performance_metrics)
            ),
            timed_out=result.timed_out,
            request_id=request_id,
        )


class StageMetricsResponse(BaseModel):
    runs: int
    failures: int
    indeterminate: int
    average_score: float


class ValidationMetricsResponse(BaseModel):
    """Aggregated validation metrics since startup."""

    total_validations: int
    successful_validations: int
    self_correction_attempts: int
    successful_self_corrections: int
    average_validation_score: float
    validation_type_metrics: dict[str, StageMetricsResponse] = Field(default_factory=dict)

    @classmethod
    def from_metrics(cls, metrics: ValidationMetrics) -> "ValidationMetricsResponse":
        return cls(
            total_validations=metrics.total_validations,
            successful_validations=metrics.successful_validations,
            self_correction_attempts=metrics.self_correction_attempts,
            successful_self_corrections=metrics.successful_self_corrections,
            average_validation_score=metrics.average_validation_score,
            validation_type_metrics={
                name: StageMetricsResponse(
                    runs=stats.runs,
                    failures=stats.failures,
                    indeterminate=stats.indeterminate,
                    average_score=stats.average_score,
                )
                for name, stats in metrics.validation_type_metrics.items()
            },
        )


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Health check response."""

    status: HealthStatus = Field(..., description="Overall health status")
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    checks: dict[str, bool] = Field(
        default_factory=dict,
        description="Individual component health checks",
    )


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service is ready to handle requests")
    checks: dict[str, bool] = Field(
        default_factory=dict,
        description="Individual readiness checks",
    )


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = Field(default=False)
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    request_id: str | None = Field(None, description="Request ID if available")
    details: dict[str, Any] | None = Field(None, description="Additional error details")
