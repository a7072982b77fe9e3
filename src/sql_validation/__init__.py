"""
SQL Validation Pipeline
=======================

Multi-stage validation of generated SQL with bounded self-correction.
"""

from sql_validation.models import (
    CorrectionStrategy,
    DryRunExecutionResult,
    EnhancedValidationResponse,
    SelfCorrectionAttempt,
    Severity,
    StageName,
    StageOutcome,
    StageStatus,
    ValidationIssue,
    ValidationLevel,
    ValidationMetrics,
    ValidationRequest,
    ValidationResult,
)
from sql_validation.config import SelfCorrectionConfiguration, ValidationConfig
from sql_validation.exceptions import (
    ExternalServiceError,
    MalformedInputError,
    SqlValidationError,
)
from sql_validation.schema import BusinessSchema
from sql_validation.orchestrator import ValidationOrchestrator
from sql_validation.correction import (
    CorrectionGenerator,
    LLMCorrectionGenerator,
    SelfCorrectionEngine,
)
from sql_validation.dry_run import DryRunExecutor, ExecutionEngine, SQLiteExecutionEngine
from sql_validation.llm import LLMInterface, MockLLM
from sql_validation.service import ValidationService, build_service
from sql_validation.settings import ValidationSettings

__version__ = "0.1.0"

__all__ = [
    # Models
    "ValidationLevel",
    "StageName",
    "StageStatus",
    "Severity",
    "CorrectionStrategy",
    "ValidationIssue",
    "ValidationRequest",
    "StageOutcome",
    "ValidationResult",
    "DryRunExecutionResult",
    "SelfCorrectionAttempt",
    "EnhancedValidationResponse",
    "ValidationMetrics",
    # Configuration
    "ValidationConfig",
    "SelfCorrectionConfiguration",
    "ValidationSettings",
    "BusinessSchema",
    # Errors
    "SqlValidationError",
    "MalformedInputError",
    "ExternalServiceError",
    # Pipeline
    "ValidationOrchestrator",
    "SelfCorrectionEngine",
    "CorrectionGenerator",
    "LLMCorrectionGenerator",
    "ExecutionEngine",
    "SQLiteExecutionEngine",
    "DryRunExecutor",
    "ValidationService",
    "build_service",
    # LLM
    "LLMInterface",
    "MockLLM",
]
