"""
Unit Tests for ValidationOrchestrator
=====================================

Tests for stage sequencing, early exit, score aggregation and dry-run gating.
"""

from typing import Iterable

import pytest

from sql_validation.config import ValidationConfig
from sql_validation.exceptions import ExternalServiceError, MalformedInputError
from sql_validation.models import (
    StageName,
    StageResult,
    StageStatus,
    ValidationLevel,
    ValidationRequest,
)
from sql_validation.orchestrator import ValidationOrchestrator
from sql_validation.schema import BusinessSchema, SchemaProvider, TableInfo
from sql_validation.validators import SemanticValidator, default_validators


class UnavailableSchemaProvider(SchemaProvider):
    def __init__(self) -> None:
        self.calls = 0

    async def resolve(self, table_names: Iterable[str]) -> dict[str, TableInfo]:
        self.calls += 1
        raise ExternalServiceError("schema_provider", "catalog offline")


class BrokenSemanticValidator(SemanticValidator):
    def validate(self, sql, context):
        raise RuntimeError("boom")


def request_for(
    sql: str,
    original_query: str = "Show me all customers",
    level: ValidationLevel = ValidationLevel.COMPREHENSIVE,
    **kwargs,
) -> ValidationRequest:
    return ValidationRequest(
        sql=sql, original_query=original_query, validation_level=level, **kwargs
    )


class TestEarlyExit:
    """Security gate behaviour."""

    @pytest.mark.asyncio
    async def test_destructive_sql_aborts_pipeline(
        self, orchestrator_with_dry_run: ValidationOrchestrator
    ) -> None:
        request = request_for("DROP TABLE Users;", enable_dry_run=True)
        result = await orchestrator_with_dry_run.validate(request)

        assert result.early_exit is True
        assert result.is_valid is False
        assert result.overall_score == 0.0
        assert result.can_self_correct is False
        assert result.outcome(StageName.SECURITY).status is StageStatus.FAILED
        for stage in (StageName.SEMANTIC, StageName.SCHEMA, StageName.BUSINESS_LOGIC):
            outcome = result.outcome(stage)
            assert outcome.executed is False
            assert outcome.reason == "aborted after critical finding"
        assert result.outcome(StageName.DRY_RUN).executed is False
        assert result.dry_run_result is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "sql",
        [
            "WITH c AS (SELECT id FROM customers) "
            "DELETE FROM customers WHERE id IN (SELECT id FROM c)",
            "WITH c AS (SELECT 1 AS x) UPDATE customers SET name = 'x'",
            "WITH c AS (SELECT id FROM customers) INSERT INTO archive SELECT id FROM c",
        ],
    )
    async def test_write_behind_cte_is_not_correctable(
        self, orchestrator: ValidationOrchestrator, sql: str
    ) -> None:
        result = await orchestrator.validate(
            request_for(sql, "customers", level=ValidationLevel.BASIC)
        )

        assert result.is_valid is False
        assert result.overall_score == 0.0
        assert result.early_exit is True
        assert result.can_self_correct is False

    @pytest.mark.asyncio
    async def test_sequential_mode_stops_at_first_critical(
        self, business_schema: BusinessSchema, missing_join_sql: str
    ) -> None:
        orchestrator = ValidationOrchestrator(
            business_schema, config=ValidationConfig(parallel_stages=False, retry_backoff=0.0)
        )
        result = await orchestrator.validate(request_for(missing_join_sql))

        assert result.early_exit is True
        assert result.outcome(StageName.SCHEMA).status is StageStatus.FAILED
        assert result.outcome(StageName.BUSINESS_LOGIC).executed is False

    @pytest.mark.asyncio
    async def test_parallel_mode_runs_all_static_stages(
        self, orchestrator: ValidationOrchestrator, missing_join_request: ValidationRequest
    ) -> None:
        result = await orchestrator.validate(missing_join_request)

        assert result.early_exit is True
        assert all(result.outcome(stage).executed for stage in (
            StageName.SECURITY, StageName.SEMANTIC, StageName.SCHEMA, StageName.BUSINESS_LOGIC
        ))
        assert result.overall_score == pytest.approx(0.9375)
        assert result.is_valid is False
        assert result.can_self_correct is True


class TestLevels:
    """Stage selection by validation level and request."""

    @pytest.mark.asyncio
    async def test_basic_runs_security_only(self, orchestrator: ValidationOrchestrator) -> None:
        result = await orchestrator.validate(
            request_for("SELECT name FROM customers", level=ValidationLevel.BASIC)
        )
        assert [o.stage for o in result.executed_stages] == [StageName.SECURITY]
        assert result.outcome(StageName.SEMANTIC).reason == "not required at basic level"
        assert result.is_valid is True

    @pytest.mark.asyncio
    async def test_skip_by_request(self, orchestrator: ValidationOrchestrator) -> None:
        request = request_for(
            "SELECT name FROM customers",
            skip_validation_types=frozenset({StageName.BUSINESS_LOGIC}),
        )
        result = await orchestrator.validate(request)
        outcome = result.outcome(StageName.BUSINESS_LOGIC)
        assert outcome.status is StageStatus.SKIPPED
        assert outcome.reason == "skipped by request"

    @pytest.mark.asyncio
    async def test_every_stage_has_an_outcome(self, orchestrator: ValidationOrchestrator) -> None:
        result = await orchestrator.validate(request_for("SELECT name FROM customers"))
        assert set(result.stages) == set(StageName)


class TestDryRunGating:
    """Dry run runs only after every executed stage passed."""

    @pytest.mark.asyncio
    async def test_dry_run_after_passing_stages(
        self, orchestrator_with_dry_run: ValidationOrchestrator
    ) -> None:
        request = request_for(
            "SELECT * FROM tbl_Daily_actions WHERE Date = GETDATE()",
            original_query="Show me today's daily actions",
            level=ValidationLevel.STANDARD,
            enable_dry_run=True,
        )
        result = await orchestrator_with_dry_run.validate(request)

        assert result.security_validation.security_score == 1.0
        assert result.semantic_validation.alignment_score == 1.0
        assert result.outcome(StageName.SCHEMA).reason == "not required at standard level"
        assert result.outcome(StageName.DRY_RUN).status is StageStatus.PASSED
        assert result.dry_run_result.can_execute is True
        assert result.dry_run_result.estimated_row_count == 2
        assert any(w.startswith("Dry run: Full table scan") for w in result.warnings)
        assert result.is_valid is True

    @pytest.mark.asyncio
    async def test_dry_run_not_requested(
        self, orchestrator_with_dry_run: ValidationOrchestrator
    ) -> None:
        result = await orchestrator_with_dry_run.validate(request_for("SELECT name FROM customers"))
        outcome = result.outcome(StageName.DRY_RUN)
        assert outcome.executed is False
        assert outcome.reason == "dry run not requested"

    @pytest.mark.asyncio
    async def test_dry_run_skipped_after_failed_stage(
        self, orchestrator_with_dry_run: ValidationOrchestrator, missing_join_sql: str
    ) -> None:
        result = await orchestrator_with_dry_run.validate(
            request_for(missing_join_sql, enable_dry_run=True)
        )
        assert result.outcome(StageName.DRY_RUN).executed is False

    @pytest.mark.asyncio
    async def test_dry_run_without_engine_warns(
        self, orchestrator: ValidationOrchestrator
    ) -> None:
        result = await orchestrator.validate(
            request_for("SELECT name FROM customers", enable_dry_run=True)
        )
        assert result.outcome(StageName.DRY_RUN).reason == "no execution engine configured"
        assert "Dry run requested but no execution engine is configured" in result.warnings


class TestIndeterminate:
    """Stages that cannot run count as worst case."""

    @pytest.mark.asyncio
    async def test_unavailable_schema_provider(self, business_schema: BusinessSchema) -> None:
        provider = UnavailableSchemaProvider()
        orchestrator = ValidationOrchestrator(
            business_schema,
            config=ValidationConfig(retry_backoff=0.0),
            schema_provider=provider,
        )
        result = await orchestrator.validate(request_for("SELECT name FROM customers"))

        assert provider.calls == 3
        for stage in (StageName.SCHEMA, StageName.BUSINESS_LOGIC):
            outcome = result.outcome(stage)
            assert outcome.status is StageStatus.INDETERMINATE
            assert outcome.score == 0.0
        assert result.is_valid is False
        assert (
            "schema validation indeterminate: schema metadata provider unavailable"
            in result.warnings
        )

    @pytest.mark.asyncio
    async def test_validator_exception(self, business_schema: BusinessSchema) -> None:
        validators = [
            v for v in default_validators() if v.name is not StageName.SEMANTIC
        ] + [BrokenSemanticValidator()]
        orchestrator = ValidationOrchestrator(
            business_schema, config=ValidationConfig(retry_backoff=0.0), validators=validators
        )
        result = await orchestrator.validate(request_for("SELECT name FROM customers"))

        outcome = result.outcome(StageName.SEMANTIC)
        assert outcome.status is StageStatus.INDETERMINATE
        assert outcome.reason == "stage failed to run"
        assert result.is_valid is False


class TestAggregation:
    """Score aggregation properties."""

    SQLS = [
        "SELECT name FROM customers",
        "SELECT name, email FROM customers",
        "SELECT id FROM invoices",
        "DELETE FROM customers",
        "SELECT c.name, o.amount FROM customers c JOIN orders o ON o.customer_id = c.id",
    ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sql", SQLS)
    async def test_score_bounds_and_validity(
        self, orchestrator: ValidationOrchestrator, sql: str
    ) -> None:
        result = await orchestrator.validate(request_for(sql))
        assert 0.0 <= result.overall_score <= 1.0
        if result.is_valid:
            assert not result.has_critical
            assert all(o.status is StageStatus.PASSED for o in result.executed_stages)

    @pytest.mark.asyncio
    async def test_deterministic(self, orchestrator: ValidationOrchestrator) -> None:
        request = request_for("SELECT name, email FROM customers")
        first = await orchestrator.validate(request)
        second = await orchestrator.validate(request)
        assert first.overall_score == second.overall_score
        assert first.is_valid == second.is_valid
        assert [i.message for i in first.issues] == [i.message for i in second.issues]

    @pytest.mark.asyncio
    async def test_self_correction_disabled(self, orchestrator: ValidationOrchestrator) -> None:
        result = await orchestrator.validate(
            request_for("SELECT id FROM invoices", enable_self_correction=False)
        )
        assert result.is_valid is False
        assert result.can_self_correct is False

    def test_stage_result_base_is_abstract(self) -> None:
        with pytest.raises(TypeError):
            StageResult()


class TestRunStage:
    """Single-stage runs."""

    @pytest.mark.asyncio
    async def test_run_stage_ignores_level(self, orchestrator: ValidationOrchestrator) -> None:
        outcome = await orchestrator.run_stage(
            StageName.BUSINESS_LOGIC,
            request_for("SELECT name, email FROM customers", level=ValidationLevel.BASIC),
        )
        assert outcome.executed is True
        assert outcome.status is StageStatus.FAILED

    @pytest.mark.asyncio
    async def test_empty_sql_rejected(self, orchestrator: ValidationOrchestrator) -> None:
        with pytest.raises(MalformedInputError):
            await orchestrator.validate(request_for("   "))
