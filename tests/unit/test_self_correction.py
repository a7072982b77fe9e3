"""
Unit Tests for SelfCorrectionEngine
===================================

Tests for the bounded correction loop: success, plateau, budget, timeout and
generator failures.
"""

import pytest

from sql_validation.config import SelfCorrectionConfiguration
from sql_validation.correction import (
    CorrectionGenerator,
    LLMCorrectionGenerator,
    SelfCorrectionEngine,
)
from sql_validation.llm.mock import MockLLM
from sql_validation.models import (
    CorrectionStrategy,
    StageName,
    ValidationLevel,
    ValidationRequest,
)
from sql_validation.orchestrator import ValidationOrchestrator
from sql_validation.schema import BusinessSchema

# Rewrites that never add the join condition
NO_PROGRESS = [
    "SELECT c.name, o.amount FROM customers AS c, orders o WHERE o.status = 'shipped'",
    "SELECT c.name, o.amount FROM customers AS c, orders AS o WHERE o.status = 'shipped'",
]


class CrashingGenerator(CorrectionGenerator):
    def __init__(self) -> None:
        self.calls = 0

    async def correct(self, original_sql, failing, strategy, *, original_query):
        self.calls += 1
        raise RuntimeError("provider SDK error")


def build_engine(
    orchestrator: ValidationOrchestrator,
    schema: BusinessSchema,
    llm: MockLLM,
    **config,
) -> SelfCorrectionEngine:
    return SelfCorrectionEngine(
        orchestrator,
        LLMCorrectionGenerator(llm, schema),
        SelfCorrectionConfiguration(**config),
    )


class TestCorrectionLoop:
    """End-to-end correction behaviour."""

    @pytest.mark.asyncio
    async def test_missing_join_is_corrected(
        self,
        orchestrator: ValidationOrchestrator,
        correction_engine: SelfCorrectionEngine,
        missing_join_request: ValidationRequest,
        missing_join_sql: str,
        fixed_join_sql: str,
    ) -> None:
        initial = await orchestrator.validate(missing_join_request)
        assert initial.can_self_correct is True

        result = await correction_engine.correct(missing_join_request, initial)

        assert result.is_valid is True
        assert result.is_self_corrected is True
        assert result.sql == fixed_join_sql
        assert result.original_sql == missing_join_sql
        assert len(result.correction_history) == 1

        attempt = result.correction_history[0]
        assert attempt.strategy is CorrectionStrategy.SCHEMA
        assert attempt.was_successful is True
        assert attempt.improvement_score > 0
        assert attempt.score_before == pytest.approx(0.9375)
        assert attempt.score_after == 1.0

    @pytest.mark.asyncio
    async def test_plateau_stops_loop(
        self,
        orchestrator: ValidationOrchestrator,
        business_schema: BusinessSchema,
        missing_join_request: ValidationRequest,
        missing_join_sql: str,
    ) -> None:
        llm = MockLLM(responses={"missing join condition": NO_PROGRESS})
        engine = build_engine(orchestrator, business_schema, llm, max_correction_attempts=5)
        initial = await orchestrator.validate(missing_join_request)

        result = await engine.correct(missing_join_request, initial)

        assert len(result.correction_history) == 2
        assert result.is_self_corrected is False
        assert result.is_valid is False
        assert result.sql == missing_join_sql
        assert all(a.improvement_score == 0.0 for a in result.correction_history)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("budget", [0, 1])
    async def test_history_respects_budget(
        self,
        orchestrator: ValidationOrchestrator,
        business_schema: BusinessSchema,
        missing_join_request: ValidationRequest,
        budget: int,
    ) -> None:
        llm = MockLLM(responses={"missing join condition": NO_PROGRESS})
        engine = build_engine(
            orchestrator, business_schema, llm, max_correction_attempts=budget
        )
        initial = await orchestrator.validate(missing_join_request)

        result = await engine.correct(missing_join_request, initial)

        assert len(result.correction_history) == budget
        assert llm.total_calls == budget

    @pytest.mark.asyncio
    async def test_unfixable_critical_is_not_corrected(
        self,
        orchestrator: ValidationOrchestrator,
        correction_engine: SelfCorrectionEngine,
    ) -> None:
        request = ValidationRequest(
            sql="DROP TABLE Users;",
            original_query="Show me all users",
            validation_level=ValidationLevel.COMPREHENSIVE,
        )
        initial = await orchestrator.validate(request)

        result = await correction_engine.correct(request, initial)

        assert result.correction_history == ()
        assert result.is_self_corrected is False
        assert result.is_valid is False


class TestCorrectionFailures:
    """Generator failures and timeouts end in unsuccessful attempts."""

    @pytest.mark.asyncio
    async def test_correction_timeout(
        self,
        orchestrator: ValidationOrchestrator,
        business_schema: BusinessSchema,
        missing_join_request: ValidationRequest,
    ) -> None:
        llm = MockLLM(delay=1.0)
        engine = build_engine(orchestrator, business_schema, llm, correction_timeout=0.05)
        initial = await orchestrator.validate(missing_join_request)

        result = await engine.correct(missing_join_request, initial)

        assert len(result.correction_history) == 1
        assert result.correction_history[0].correction_reason == "correction generator timed out"
        assert "Self-correction stopped after exceeding 0.05s" in result.warnings
        assert result.is_valid is False

    @pytest.mark.asyncio
    async def test_generator_failure(
        self,
        orchestrator: ValidationOrchestrator,
        business_schema: BusinessSchema,
        missing_join_request: ValidationRequest,
        missing_join_sql: str,
    ) -> None:
        llm = MockLLM(failures=100)
        engine = build_engine(orchestrator, business_schema, llm)
        initial = await orchestrator.validate(missing_join_request)

        result = await engine.correct(missing_join_request, initial)

        assert len(result.correction_history) == 2
        for attempt in result.correction_history:
            assert attempt.was_successful is False
            assert attempt.corrected_sql is None
            assert attempt.correction_reason == (
                "correction generator failed: mock provider unavailable"
            )
        assert result.sql == missing_join_sql
        assert result.overall_score == initial.overall_score

    @pytest.mark.asyncio
    async def test_unexpected_generator_error_is_recorded(
        self,
        orchestrator: ValidationOrchestrator,
        missing_join_request: ValidationRequest,
        missing_join_sql: str,
    ) -> None:
        generator = CrashingGenerator()
        engine = SelfCorrectionEngine(orchestrator, generator)
        initial = await orchestrator.validate(missing_join_request)

        result = await engine.correct(missing_join_request, initial)

        assert generator.calls == 2
        assert len(result.correction_history) == 2
        assert result.correction_history[0].correction_reason == (
            "correction generator failed: unexpected RuntimeError"
        )
        assert "Self-correction stopped after an internal error" not in result.warnings
        assert result.sql == missing_join_sql

    @pytest.mark.asyncio
    async def test_unchanged_sql_is_not_revalidated(
        self,
        orchestrator: ValidationOrchestrator,
        business_schema: BusinessSchema,
        missing_join_request: ValidationRequest,
        missing_join_sql: str,
    ) -> None:
        llm = MockLLM(responses={"missing join condition": [missing_join_sql.lower()]})
        engine = build_engine(orchestrator, business_schema, llm)
        initial = await orchestrator.validate(missing_join_request)

        result = await engine.correct(missing_join_request, initial)

        assert result.correction_history[0].correction_reason == (
            "correction generator returned unchanged SQL"
        )


class TestStrategySelection:
    """Strategy selection for the weakest failing stage."""

    @pytest.mark.asyncio
    async def test_weakest_failing_stage_first(
        self,
        orchestrator: ValidationOrchestrator,
        correction_engine: SelfCorrectionEngine,
        missing_join_request: ValidationRequest,
    ) -> None:
        result = await orchestrator.validate(missing_join_request)
        tried: set[CorrectionStrategy] = set()

        strategy, failing = correction_engine.select_strategy(result, tried)

        assert strategy is CorrectionStrategy.SCHEMA
        assert failing.stage is StageName.SCHEMA
        assert tried == {CorrectionStrategy.SCHEMA}

    @pytest.mark.asyncio
    async def test_strategies_cycle(
        self,
        orchestrator: ValidationOrchestrator,
        correction_engine: SelfCorrectionEngine,
        missing_join_request: ValidationRequest,
    ) -> None:
        result = await orchestrator.validate(missing_join_request)
        tried = {CorrectionStrategy.SCHEMA}

        strategy, _ = correction_engine.select_strategy(result, tried)

        assert strategy is CorrectionStrategy.SCHEMA

    @pytest.mark.asyncio
    async def test_general_when_nothing_fails(
        self,
        orchestrator: ValidationOrchestrator,
        correction_engine: SelfCorrectionEngine,
    ) -> None:
        request = ValidationRequest(
            sql="SELECT name FROM customers",
            original_query="Show me all customers",
            validation_level=ValidationLevel.BASIC,
        )
        result = await orchestrator.validate(request)

        strategy, failing = correction_engine.select_strategy(result, set())

        assert strategy is CorrectionStrategy.GENERAL
        assert failing is None
