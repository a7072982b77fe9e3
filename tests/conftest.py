"""
Pytest Fixtures
===============

Shared fixtures for the SQL validation pipeline tests.
"""

import os
import sys
from datetime import date
from pathlib import Path
from typing import Callable, Optional

import pytest

# Add src and the repository root to path for imports
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT))

# Keep spans in-process during tests
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "disabled")

from sql_validation.config import SelfCorrectionConfiguration, ValidationConfig
from sql_validation.correction import LLMCorrectionGenerator, SelfCorrectionEngine
from sql_validation.dry_run import DryRunExecutor, SQLiteExecutionEngine
from sql_validation.llm.mock import MockLLM
from sql_validation.models import ValidationLevel, ValidationRequest
from sql_validation.orchestrator import ValidationOrchestrator
from sql_validation.sample_schema import SAMPLE_BUSINESS_SCHEMA
from sql_validation.schema import BusinessSchema
from sql_validation.sql_elements import extract_sql_elements
from sql_validation.validators import (
    BusinessLogicValidator,
    SchemaComplianceValidator,
    SecurityValidator,
    SemanticValidator,
    ValidationContext,
)

# SQL joining customers and orders without a join condition
MISSING_JOIN_SQL = "SELECT c.name, o.amount FROM customers c, orders o WHERE o.status = 'shipped'"
FIXED_JOIN_SQL = (
    "SELECT c.name, o.amount FROM customers c JOIN orders o ON o.customer_id = c.id "
    "WHERE o.status = 'shipped'"
)
JOIN_QUESTION = "Show customer names with their order amounts"


@pytest.fixture
def missing_join_sql() -> str:
    return MISSING_JOIN_SQL


@pytest.fixture
def fixed_join_sql() -> str:
    return FIXED_JOIN_SQL


@pytest.fixture
def business_schema() -> BusinessSchema:
    """Return the sample business schema."""
    return SAMPLE_BUSINESS_SCHEMA


@pytest.fixture
def validation_config() -> ValidationConfig:
    """Default configuration without retry backoff."""
    return ValidationConfig(retry_backoff=0.0)


@pytest.fixture
def make_context(
    business_schema: BusinessSchema, validation_config: ValidationConfig
) -> Callable[..., ValidationContext]:
    """Build a validation context with the schema snapshot resolved from the sample schema."""

    def _make(
        sql: str,
        original_query: str = "Show me all customers",
        level: ValidationLevel = ValidationLevel.COMPREHENSIVE,
        user_id: Optional[str] = None,
    ) -> ValidationContext:
        elements = extract_sql_elements(sql)
        snapshot = {}
        for table in elements.all_tables():
            info = business_schema.table(table.key)
            if info is not None:
                snapshot[info.key] = info
        return ValidationContext(
            original_query=original_query,
            policy=validation_config.policy_for(level),
            config=validation_config,
            business_schema=business_schema,
            elements=elements,
            schema_snapshot=snapshot,
            user_id=user_id,
        )

    return _make


@pytest.fixture
def security_validator() -> SecurityValidator:
    return SecurityValidator()


@pytest.fixture
def semantic_validator() -> SemanticValidator:
    return SemanticValidator()


@pytest.fixture
def schema_validator() -> SchemaComplianceValidator:
    return SchemaComplianceValidator()


@pytest.fixture
def business_logic_validator() -> BusinessLogicValidator:
    return BusinessLogicValidator()


@pytest.fixture
def seed_rows() -> dict:
    """A few rows so previews have something to count."""
    today = date.today().isoformat()
    return {
        "tbl_Daily_actions": [
            {"PlayerID": 1, "Date": today, "WhiteLabelID": 7, "Deposits": 10, "Bets": 5, "Wins": 2},
            {"PlayerID": 2, "Date": today, "WhiteLabelID": 7, "Deposits": 0, "Bets": 1, "Wins": 0},
            {"PlayerID": 3, "Date": "2020-01-01", "WhiteLabelID": 7, "Deposits": 3, "Bets": 3, "Wins": 3},
        ],
        "customers": [
            {"id": i, "name": f"Customer {i}", "email": f"c{i}@example.com", "tier": "basic"}
            for i in range(1, 6)
        ],
    }


@pytest.fixture
def sqlite_engine(business_schema: BusinessSchema, seed_rows: dict) -> SQLiteExecutionEngine:
    return SQLiteExecutionEngine(schema=business_schema, seed_rows=seed_rows)


@pytest.fixture
def dry_run_executor(sqlite_engine: SQLiteExecutionEngine) -> DryRunExecutor:
    return DryRunExecutor(sqlite_engine, retry_attempts=2, retry_backoff=0.0)


@pytest.fixture
def orchestrator(
    business_schema: BusinessSchema, validation_config: ValidationConfig
) -> ValidationOrchestrator:
    """Orchestrator without a dry-run engine."""
    return ValidationOrchestrator(business_schema, config=validation_config)


@pytest.fixture
def orchestrator_with_dry_run(
    business_schema: BusinessSchema,
    validation_config: ValidationConfig,
    dry_run_executor: DryRunExecutor,
) -> ValidationOrchestrator:
    return ValidationOrchestrator(
        business_schema, config=validation_config, dry_run_executor=dry_run_executor
    )


@pytest.fixture
def mock_llm_with_correction() -> MockLLM:
    """Create a mock LLM that adds the missing join condition."""
    return MockLLM(responses={"missing join condition": [FIXED_JOIN_SQL]})


@pytest.fixture
def correction_engine(
    orchestrator: ValidationOrchestrator,
    business_schema: BusinessSchema,
    mock_llm_with_correction: MockLLM,
) -> SelfCorrectionEngine:
    return SelfCorrectionEngine(
        orchestrator,
        LLMCorrectionGenerator(mock_llm_with_correction, business_schema),
        SelfCorrectionConfiguration(max_correction_attempts=3),
    )


@pytest.fixture
def missing_join_request() -> ValidationRequest:
    return ValidationRequest(
        sql=MISSING_JOIN_SQL,
        original_query=JOIN_QUESTION,
        validation_level=ValidationLevel.COMPREHENSIVE,
        enable_self_correction=True,
    )
