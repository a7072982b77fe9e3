"""
Validation Service
==================

Boundary facade: input checks, orchestration, optional self-correction,
metrics and the structured response returned to callers.
"""

import time
from dataclasses import replace
from typing import Optional

import structlog

from sql_validation.correction import LLMCorrectionGenerator, SelfCorrectionEngine
from sql_validation.dry_run import DryRunExecutor, SQLiteExecutionEngine
from sql_validation.exceptions import ExternalServiceError, MalformedInputError
from sql_validation.llm.base import LLMInterface
from sql_validation.metrics import TelemetrySink, ValidationMetricsCollector
from sql_validation.models import (
    DryRunExecutionResult,
    EnhancedValidationResponse,
    StageName,
    StageOutcome,
    ValidationMetrics,
    ValidationRequest,
    ValidationResult,
)
from sql_validation.orchestrator import ValidationOrchestrator, check_request
from sql_validation.settings import ValidationSettings

logger = structlog.get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "Validation could not be completed due to an internal error"


class ValidationService:
    """Entry point used by the HTTP layer and by library callers."""

    def __init__(
        self,
        orchestrator: ValidationOrchestrator,
        correction_engine: SelfCorrectionEngine | None = None,
        collector: ValidationMetricsCollector | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.correction_engine = correction_engine
        self.collector = collector or ValidationMetricsCollector()

    @property
    def schema_version(self) -> str:
        return self.orchestrator.business_schema.version

    async def validate(self, request: ValidationRequest) -> EnhancedValidationResponse:
        """
        Validate a request end to end.

        Raises:
            MalformedInputError: If sql or original_query is empty

        Returns:
            Structured response; internal failures yield ``success=False`` with
            a generic message
        """
        check_request(request)
        started = time.perf_counter()
        try:
            result = await self.orchestrator.validate(request)
            warnings = []
            if request.enable_self_correction and result.can_self_correct:
                if self.correction_engine is not None:
                    result = await self.correction_engine.correct(request, result)
                else:
                    warnings.append(
                        "Self-correction requested but no correction generator is configured"
                    )
        except MalformedInputError:
            raise
        except Exception:
            logger.exception("validation_failed", level=request.validation_level.value)
            return EnhancedValidationResponse(
                success=False,
                message=INTERNAL_ERROR_MESSAGE,
                metadata=self._metadata(request, started),
            )

        duration = time.perf_counter() - started
        self.collector.record(result, duration)
        return EnhancedValidationResponse(
            success=True,
            message=self._message(result),
            validation_result=result,
            warnings=result.warnings + warnings,
            metadata=self._metadata(request, started, result),
        )

    async def self_correct(self, request: ValidationRequest) -> EnhancedValidationResponse:
        """Validate with self-correction forced on."""
        return await self.validate(replace(request, enable_self_correction=True))

    async def validate_semantic(self, request: ValidationRequest) -> StageOutcome:
        return await self.orchestrator.run_stage(StageName.SEMANTIC, request)

    async def validate_business_logic(self, request: ValidationRequest) -> StageOutcome:
        return await self.orchestrator.run_stage(StageName.BUSINESS_LOGIC, request)

    async def dry_run(
        self,
        sql: str,
        max_rows_to_analyze: Optional[int] = None,
        max_execution_time: Optional[float] = None,
    ) -> DryRunExecutionResult:
        """
        Preview a query on its own, after a security check.

        Raises:
            MalformedInputError: If sql is empty
            ExternalServiceError: If no execution engine is configured or it
                stays unreachable
        """
        if not sql or not sql.strip():
            raise MalformedInputError("sql must not be empty")
        executor = self.orchestrator.dry_run_executor
        if executor is None:
            raise ExternalServiceError("execution_engine", "not configured", retryable=False)

        security = await self.orchestrator.run_stage(
            StageName.SECURITY, ValidationRequest(sql=sql, original_query="dry run")
        )
        if security.has_critical:
            return DryRunExecutionResult(
                can_execute=False,
                errors=[issue.message for issue in security.issues if issue.is_critical],
            )

        limits = self.orchestrator.config.dry_run
        return await executor.execute(
            sql,
            max_rows_to_analyze=max_rows_to_analyze or limits.max_rows_to_analyze,
            max_execution_time=max_execution_time or limits.max_execution_time,
        )

    def metrics(self) -> ValidationMetrics:
        """Running totals over every completed validation."""
        return self.collector.snapshot()

    @staticmethod
    def _message(result: ValidationResult) -> str:
        if result.is_valid and result.is_self_corrected:
            attempts = len(result.correction_history)
            return f"SQL passed validation after {attempts} correction attempt(s)"
        if result.is_valid:
            return "SQL passed validation"
        if result.early_exit:
            return "SQL rejected: critical issue found"
        return "SQL failed validation"

    def _metadata(
        self,
        request: ValidationRequest,
        started: float,
        result: ValidationResult | None = None,
    ) -> dict:
        metadata = {
            "validation_level": request.validation_level.value,
            "schema_version": self.schema_version,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        }
        if result is not None:
            metadata.update(
                correction_attempts=len(result.correction_history),
                early_exit=result.early_exit,
                stages_executed=[o.stage.value for o in result.executed_stages],
            )
        return metadata


def build_service(
    settings: ValidationSettings | None = None,
    llm: LLMInterface | None = None,
    telemetry_sink: TelemetrySink | None = None,
) -> ValidationService:
    """
    Wire a service from settings.

    Args:
        settings: Environment settings (loaded from the environment if omitted)
        llm: LLM used for self-correction; correction is disabled without one
        telemetry_sink: Receives every completed result (e.g. Prometheus)
    """
    settings = settings or ValidationSettings()
    config = settings.to_validation_config()
    business_schema = settings.load_business_schema()

    executor = None
    if settings.dry_run_enabled:
        engine = SQLiteExecutionEngine(database=settings.database_path, schema=business_schema)
        executor = DryRunExecutor(
            engine,
            retry_attempts=config.external_retry_attempts,
            retry_backoff=config.retry_backoff,
        )

    orchestrator = ValidationOrchestrator(
        business_schema, config=config, dry_run_executor=executor
    )
    correction_engine = None
    if llm is not None:
        correction_engine = SelfCorrectionEngine(
            orchestrator,
            LLMCorrectionGenerator(llm, business_schema),
            settings.to_correction_config(),
        )

    logger.info(
        "validation_service_configured",
        schema_version=business_schema.version,
        dry_run=executor is not None,
        self_correction=correction_engine is not None,
    )
    return ValidationService(
        orchestrator,
        correction_engine=correction_engine,
        collector=ValidationMetricsCollector(sink=telemetry_sink),
    )
