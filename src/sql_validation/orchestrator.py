"""
Validation Orchestrator
=======================

Runs the validation stages for one SQL candidate and aggregates their results.

Security runs first as a gate: a Critical finding there aborts everything
else. The remaining static stages are independent and run concurrently,
joined before the optional dry run and the score aggregation.
"""

import asyncio
import time
from typing import Optional

import structlog
from opentelemetry import trace

from sql_validation.config import ValidationConfig
from sql_validation.dry_run import DryRunExecutor
from sql_validation.exceptions import ExternalServiceError, MalformedInputError
from sql_validation.models import (
    STATIC_STAGES,
    StageName,
    StageOutcome,
    StageStatus,
    ValidationRequest,
    ValidationResult,
)
from sql_validation.retry import call_with_retry
from sql_validation.schema import BusinessSchema, SchemaProvider, StaticSchemaProvider
from sql_validation.sql_elements import SqlElements, extract_sql_elements
from sql_validation.validators import ValidationContext, Validator, default_validators

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

ABORTED_AFTER_CRITICAL = "aborted after critical finding"
SKIPPED_BY_REQUEST = "skipped by request"
SNAPSHOT_STAGES = (StageName.SCHEMA, StageName.BUSINESS_LOGIC)


def check_request(request: ValidationRequest) -> None:
    """Reject requests the pipeline cannot start on."""
    if not request.sql or not request.sql.strip():
        raise MalformedInputError("sql must not be empty")
    if not request.original_query or not request.original_query.strip():
        raise MalformedInputError("original_query must not be empty")


def skipped(stage: StageName, reason: str) -> StageOutcome:
    return StageOutcome(stage=stage, executed=False, status=StageStatus.SKIPPED, reason=reason)


def indeterminate(stage: StageName, reason: str, score: Optional[float] = 0.0) -> StageOutcome:
    """A stage that was due to run but could not produce a result (worst-case score)."""
    return StageOutcome(
        stage=stage,
        executed=True,
        status=StageStatus.INDETERMINATE,
        score=score,
        reason=reason,
    )


class ValidationOrchestrator:
    """
    Sequences and parallelizes the validation stages for a request.

    The orchestrator holds no per-request state; concurrent ``validate``
    calls are independent.
    """

    def __init__(
        self,
        business_schema: BusinessSchema,
        config: ValidationConfig | None = None,
        schema_provider: SchemaProvider | None = None,
        validators: list[Validator] | None = None,
        dry_run_executor: DryRunExecutor | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            business_schema: Versioned business schema (terms, access policy)
            config: Thresholds, weights and budgets (defaults if omitted)
            schema_provider: Table metadata catalog (defaults to the business schema)
            validators: One validator per static stage (defaults to the standard set)
            dry_run_executor: Preview executor; dry runs are skipped without one
        """
        self.business_schema = business_schema
        self.config = config or ValidationConfig()
        self.schema_provider = schema_provider or StaticSchemaProvider(business_schema)
        self.validators = {v.name: v for v in (validators or default_validators())}
        self.dry_run_executor = dry_run_executor

    def plan(self, request: ValidationRequest) -> dict[StageName, StageOutcome]:
        """Outcomes of the stages that will not run for this request."""
        policy = self.config.policy_for(request.validation_level)
        outcomes = {}
        for stage in STATIC_STAGES:
            if stage not in policy.stages:
                outcomes[stage] = skipped(
                    stage, f"not required at {request.validation_level.value} level"
                )
            elif stage in request.skip_validation_types:
                outcomes[stage] = skipped(stage, SKIPPED_BY_REQUEST)
        if not request.enable_dry_run:
            outcomes[StageName.DRY_RUN] = skipped(StageName.DRY_RUN, "dry run not requested")
        elif StageName.DRY_RUN in request.skip_validation_types:
            outcomes[StageName.DRY_RUN] = skipped(StageName.DRY_RUN, SKIPPED_BY_REQUEST)
        return outcomes

    async def validate(self, request: ValidationRequest) -> ValidationResult:
        """
        Validate one SQL candidate.

        Args:
            request: The validation request

        Returns:
            ValidationResult with one outcome per stage

        Raises:
            MalformedInputError: If sql or original_query is empty
        """
        check_request(request)
        started = time.perf_counter()
        result = ValidationResult(
            sql=request.sql,
            original_sql=request.sql,
            validation_level=request.validation_level,
        )
        outcomes = self.plan(request)
        pending = [s for s in STATIC_STAGES if s not in outcomes]

        with tracer.start_as_current_span("validation.orchestrate") as span:
            span.set_attribute("validation.level", request.validation_level.value)
            elements = extract_sql_elements(request.sql)
            context = self._context(request, elements, {})

            # Security gate
            if StageName.SECURITY in pending:
                pending.remove(StageName.SECURITY)
                security = await self._run_stage(StageName.SECURITY, request.sql, context)
                outcomes[StageName.SECURITY] = security
                if security.has_critical:
                    result.early_exit = True

            if pending and not result.early_exit:
                context, snapshot_error = await self._resolve_context(request, elements, pending)
                if snapshot_error:
                    for stage in SNAPSHOT_STAGES:
                        if stage in pending:
                            pending.remove(stage)
                            outcomes[stage] = indeterminate(stage, snapshot_error)
                await self._run_pending(pending, request.sql, context, outcomes, result)

            # Stages cut short by an early exit
            for stage in pending:
                outcomes.setdefault(stage, skipped(stage, ABORTED_AFTER_CRITICAL))

            for stage in STATIC_STAGES:
                outcome = outcomes[stage]
                if outcome.status is StageStatus.INDETERMINATE:
                    message = f"{stage.value} validation indeterminate: {outcome.reason}"
                    if message not in result.warnings:
                        result.warnings.append(message)

            if StageName.DRY_RUN not in outcomes:
                outcomes[StageName.DRY_RUN] = await self._dry_run(request, outcomes, result)

            result.stages = {
                stage: outcomes[stage] for stage in (*STATIC_STAGES, StageName.DRY_RUN)
            }
            self._aggregate(request, result)

            span.set_attribute("validation.overall_score", result.overall_score)
            span.set_attribute("validation.is_valid", result.is_valid)
            span.set_attribute("validation.early_exit", result.early_exit)

        if result.early_exit:
            logger.warning(
                "validation_early_exit",
                reason="critical finding",
                issues=[i.category for i in result.issues if i.is_critical],
            )
        logger.info(
            "validation_completed",
            level=request.validation_level.value,
            is_valid=result.is_valid,
            overall_score=round(result.overall_score, 4),
            can_self_correct=result.can_self_correct,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return result

    async def run_stage(self, stage: StageName, request: ValidationRequest) -> StageOutcome:
        """
        Run a single static stage regardless of the request's level.

        Used by the stand-alone semantic and business-logic operations.
        """
        check_request(request)
        elements = extract_sql_elements(request.sql)
        context, error = await self._resolve_context(request, elements, [stage])
        if error and stage in SNAPSHOT_STAGES:
            return indeterminate(stage, error)
        return await self._run_stage(stage, request.sql, context)

    def _context(
        self, request: ValidationRequest, elements: SqlElements, snapshot
    ) -> ValidationContext:
        return ValidationContext(
            original_query=request.original_query,
            policy=self.config.policy_for(request.validation_level),
            config=self.config,
            business_schema=self.business_schema,
            elements=elements,
            schema_snapshot=snapshot,
            user_id=request.user_id,
            request_context=request.context,
        )

    async def _resolve_context(
        self, request: ValidationRequest, elements: SqlElements, stages: list[StageName]
    ) -> tuple[ValidationContext, Optional[str]]:
        """Build the shared context, resolving the schema snapshot once if needed."""
        if not any(stage in SNAPSHOT_STAGES for stage in stages):
            return self._context(request, elements, {}), None

        names = [t.key for t in elements.all_tables()]
        try:
            snapshot = await call_with_retry(
                lambda: self.schema_provider.resolve(names),
                service="schema_provider",
                attempts=self.config.external_retry_attempts,
                base_delay=self.config.retry_backoff,
                timeout=self.config.stage_timeout,
            )
        except ExternalServiceError as e:
            logger.warning("schema_resolution_failed", error=e.message)
            return self._context(request, elements, {}), "schema metadata provider unavailable"
        except TimeoutError:
            logger.warning("schema_resolution_timeout", timeout=self.config.stage_timeout)
            return self._context(request, elements, {}), "schema metadata provider timed out"
        return self._context(request, elements, snapshot), None

    async def _run_pending(
        self,
        pending: list[StageName],
        sql: str,
        context: ValidationContext,
        outcomes: dict[StageName, StageOutcome],
        result: ValidationResult,
    ) -> None:
        if self.config.parallel_stages:
            finished = await asyncio.gather(
                *(self._run_stage(stage, sql, context) for stage in pending)
            )
            for outcome in finished:
                outcomes[outcome.stage] = outcome
            pending.clear()
            if any(outcome.has_critical for outcome in finished):
                result.early_exit = True
            return

        while pending:
            stage = pending.pop(0)
            outcome = await self._run_stage(stage, sql, context)
            outcomes[stage] = outcome
            if outcome.has_critical:
                result.early_exit = True
                return

    async def _run_stage(
        self, stage: StageName, sql: str, context: ValidationContext
    ) -> StageOutcome:
        """Run one validator; failures and timeouts become an indeterminate outcome."""
        validator = self.validators.get(stage)
        if validator is None:
            return indeterminate(stage, "no validator configured")

        with tracer.start_as_current_span(f"validation.{stage.value}") as span:
            try:
                stage_result = await asyncio.wait_for(
                    asyncio.to_thread(validator.validate, sql, context),
                    timeout=self.config.stage_timeout,
                )
            except TimeoutError:
                logger.warning("validation_stage_timeout", stage=stage.value)
                span.set_attribute("validation.stage.status", StageStatus.INDETERMINATE.value)
                return indeterminate(
                    stage, f"timed out after {self.config.stage_timeout:g}s"
                )
            except Exception as e:
                logger.exception("validation_stage_failed", stage=stage.value)
                span.record_exception(e)
                span.set_attribute("validation.stage.status", StageStatus.INDETERMINATE.value)
                return indeterminate(stage, "stage failed to run")

            status = StageStatus.PASSED if stage_result.is_valid else StageStatus.FAILED
            span.set_attribute("validation.stage.status", status.value)
            span.set_attribute("validation.stage.score", stage_result.score)

        logger.debug(
            "validation_stage_completed",
            stage=stage.value,
            status=status.value,
            score=round(stage_result.score, 4),
            issues=len(stage_result.issues),
        )
        return StageOutcome(
            stage=stage,
            executed=True,
            status=status,
            score=stage_result.score,
            result=stage_result,
        )

    async def _dry_run(
        self,
        request: ValidationRequest,
        outcomes: dict[StageName, StageOutcome],
        result: ValidationResult,
    ) -> StageOutcome:
        stage = StageName.DRY_RUN
        executed = [o for o in outcomes.values() if o.executed]
        if result.early_exit or any(o.has_critical for o in executed):
            return skipped(stage, ABORTED_AFTER_CRITICAL)
        if any(o.status is not StageStatus.PASSED for o in executed):
            return skipped(stage, "static validation did not pass")
        if self.dry_run_executor is None:
            result.warnings.append("Dry run requested but no execution engine is configured")
            return skipped(stage, "no execution engine configured")

        limits = self.config.dry_run
        with tracer.start_as_current_span("validation.dry_run") as span:
            try:
                preview = await self.dry_run_executor.execute(
                    request.sql,
                    max_rows_to_analyze=limits.max_rows_to_analyze,
                    max_execution_time=limits.max_execution_time,
                )
            except ExternalServiceError as e:
                logger.warning("dry_run_unavailable", error=e.message)
                result.warnings.append("dry_run indeterminate: execution engine unavailable")
                return indeterminate(stage, "execution engine unavailable", score=None)
            span.set_attribute("dry_run.can_execute", preview.can_execute)
            span.set_attribute("dry_run.timed_out", preview.timed_out)

        result.warnings.extend(f"Dry run: {warning}" for warning in preview.warnings)
        return StageOutcome(
            stage=stage,
            executed=True,
            status=StageStatus.PASSED if preview.can_execute else StageStatus.FAILED,
            result=preview,
        )

    def _aggregate(self, request: ValidationRequest, result: ValidationResult) -> None:
        """Weighted mean over the stages that actually produced a score."""
        policy = self.config.policy_for(request.validation_level)
        scored = [o for o in result.stages.values() if o.contributes_score]

        # Weights are renormalized over the stages that produced a score
        if not scored:
            result.overall_score = 0.0
            result.warnings.append("No validation stage was executed")
        else:
            weights = [self.config.weight_for(o.stage) for o in scored]
            total = sum(weights)
            if total > 0:
                overall = sum(w * o.score for w, o in zip(weights, scored)) / total
            else:
                overall = sum(o.score for o in scored) / len(scored)
            result.overall_score = max(0.0, min(1.0, overall))

        executed = result.executed_stages
        result.is_valid = (
            bool(scored)
            and result.overall_score >= policy.overall_threshold
            and not result.has_critical
            and all(o.status is StageStatus.PASSED for o in executed)
        )
        result.can_self_correct = (
            not result.is_valid
            and request.enable_self_correction
            and not any(o.has_unfixable_critical for o in executed)
        )
