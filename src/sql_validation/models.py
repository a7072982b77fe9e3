"""
Data Models
===========

Core data structures for the SQL validation and self-correction pipeline.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ValidationLevel(str, Enum):
    """Strictness tier controlling which stages run and their thresholds."""

    BASIC = "basic"
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"
    STRICT = "strict"


class StageName(str, Enum):
    """Pipeline stages, in canonical execution order."""

    SECURITY = "security"
    SEMANTIC = "semantic"
    SCHEMA = "schema"
    BUSINESS_LOGIC = "business_logic"
    DRY_RUN = "dry_run"


STATIC_STAGES = (
    StageName.SECURITY,
    StageName.SEMANTIC,
    StageName.SCHEMA,
    StageName.BUSINESS_LOGIC,
)


class StageStatus(Enum):
    """Status of a pipeline stage."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    INDETERMINATE = "indeterminate"


class Severity(str, Enum):
    """Severity of a validation finding."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class SecurityLevel(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    BLOCKED = "blocked"


class CorrectionStrategy(str, Enum):
    """Focus of a single self-correction attempt."""

    SEMANTIC = "semantic"
    SCHEMA = "schema"
    BUSINESS_LOGIC = "business_logic"
    SECURITY = "security"
    GENERAL = "general"

    @property
    def stage(self) -> Optional[StageName]:
        """Stage whose failure this strategy addresses (None for GENERAL)."""
        if self is CorrectionStrategy.GENERAL:
            return None
        return StageName(self.value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ValidationIssue:
    """A single finding produced by a validation stage."""

    category: str
    message: str
    severity: Severity
    fixable: bool = True

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL

    @property
    def is_blocking(self) -> bool:
        return self.severity in (Severity.ERROR, Severity.CRITICAL)


@dataclass(frozen=True)
class ValidationRequest:
    """Input to the pipeline. Created per call and never mutated."""

    sql: str
    original_query: str
    context: Optional[str] = None
    user_id: Optional[str] = None
    enable_self_correction: bool = True
    enable_dry_run: bool = False
    validation_level: ValidationLevel = ValidationLevel.STANDARD
    skip_validation_types: frozenset[StageName] = frozenset()

    def with_sql(self, sql: str) -> "ValidationRequest":
        """Return a copy of this request for a different SQL candidate."""
        return ValidationRequest(
            sql=sql,
            original_query=self.original_query,
            context=self.context,
            user_id=self.user_id,
            enable_self_correction=self.enable_self_correction,
            enable_dry_run=self.enable_dry_run,
            validation_level=self.validation_level,
            skip_validation_types=self.skip_validation_types,
        )


# =============================================================================
# Stage results
# =============================================================================


@dataclass
class StageResult(ABC):
    """Common shape of every static stage result."""

    is_valid: bool = True
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    @abstractmethod
    def score(self) -> float:
        """Stage score in [0, 1]."""

    @property
    def has_critical(self) -> bool:
        return any(issue.is_critical for issue in self.issues)


@dataclass
class SecurityValidationResult(StageResult):
    risk_score: int = 0
    security_level: SecurityLevel = SecurityLevel.SAFE
    security_score: float = 1.0
    recommendations: list[str] = field(default_factory=list)

    @property
    def score(self) -> float:
        return self.security_score


@dataclass
class BusinessTermValidationResult:
    is_valid: bool = True
    matched_terms: list[str] = field(default_factory=list)
    missing_terms: list[str] = field(default_factory=list)


@dataclass
class SemanticValidationResult(StageResult):
    alignment_score: float = 0.0
    alignment_reason: str = ""
    inconsistencies: list[str] = field(default_factory=list)
    business_term_validation: BusinessTermValidationResult = field(
        default_factory=BusinessTermValidationResult
    )
    confidence_score: float = 0.0

    @property
    def score(self) -> float:
        return self.alignment_score


@dataclass
class TableValidationResult:
    is_valid: bool = True
    score: float = 1.0
    valid_tables: list[str] = field(default_factory=list)
    invalid_tables: list[str] = field(default_factory=list)


@dataclass
class ColumnValidationResult:
    is_valid: bool = True
    score: float = 1.0
    valid_columns: list[str] = field(default_factory=list)
    invalid_columns: list[str] = field(default_factory=list)
    type_mismatches: list[str] = field(default_factory=list)


@dataclass
class JoinValidationResult:
    is_valid: bool = True
    score: float = 1.0
    valid_joins: list[str] = field(default_factory=list)
    invalid_joins: list[str] = field(default_factory=list)


@dataclass
class ContextValidationResult:
    is_valid: bool = True
    score: float = 1.0
    missing_filters: list[str] = field(default_factory=list)


@dataclass
class SchemaComplianceResult(StageResult):
    compliance_score: float = 0.0
    table_validation: TableValidationResult = field(default_factory=TableValidationResult)
    column_validation: ColumnValidationResult = field(default_factory=ColumnValidationResult)
    join_validation: JoinValidationResult = field(default_factory=JoinValidationResult)
    context_validation: ContextValidationResult = field(
        default_factory=ContextValidationResult
    )

    @property
    def score(self) -> float:
        return self.compliance_score


@dataclass
class AccessValidationResult:
    is_valid: bool = True
    score: float = 1.0
    roles: list[str] = field(default_factory=list)
    denied_tables: list[str] = field(default_factory=list)


@dataclass
class SensitivityValidationResult:
    is_valid: bool = True
    score: float = 1.0
    exposed_columns: list[str] = field(default_factory=list)
    pii_values: list[str] = field(default_factory=list)


@dataclass
class AggregationValidationResult:
    is_valid: bool = True
    score: float = 1.0
    problems: list[str] = field(default_factory=list)


@dataclass
class BusinessLogicValidationResult(StageResult):
    business_logic_score: float = 0.0
    rule_violations: list[str] = field(default_factory=list)
    access_validation: AccessValidationResult = field(default_factory=AccessValidationResult)
    sensitivity_validation: SensitivityValidationResult = field(
        default_factory=SensitivityValidationResult
    )
    aggregation_validation: AggregationValidationResult = field(
        default_factory=AggregationValidationResult
    )

    @property
    def score(self) -> float:
        return self.business_logic_score


@dataclass
class PerformanceMetrics:
    logical_reads: Optional[int] = None
    physical_reads: Optional[int] = None
    cpu_time_ms: Optional[float] = None


@dataclass
class DryRunExecutionResult:
    """Outcome of a bounded, read-only preview execution."""

    can_execute: bool = False
    executed_successfully: bool = False
    estimated_execution_time_ms: Optional[float] = None
    estimated_row_count: Optional[int] = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    execution_plan: Optional[str] = None
    performance_metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    timed_out: bool = False


# =============================================================================
# Aggregate result
# =============================================================================


@dataclass
class StageOutcome:
    """
    Tagged entry for one stage of a validation run.

    ``executed`` distinguishes a stage skipped by policy (level, request, early
    exit) from one that ran and either produced a result or failed to run
    (``INDETERMINATE``).
    """

    stage: StageName
    executed: bool
    status: StageStatus
    score: Optional[float] = None
    result: Any = None
    reason: str = ""

    @property
    def issues(self) -> list[ValidationIssue]:
        if isinstance(self.result, StageResult):
            return self.result.issues
        return []

    @property
    def has_critical(self) -> bool:
        return any(issue.is_critical for issue in self.issues)

    @property
    def has_unfixable_critical(self) -> bool:
        return any(issue.is_critical and not issue.fixable for issue in self.issues)

    @property
    def contributes_score(self) -> bool:
        return self.executed and self.score is not None


@dataclass(frozen=True)
class SelfCorrectionAttempt:
    """One correction cycle. Appended to the history, never mutated."""

    attempt_number: int
    original_sql: str
    corrected_sql: Optional[str]
    strategy: CorrectionStrategy
    correction_reason: str
    improvement_score: float
    was_successful: bool
    issues_addressed: tuple[str, ...] = ()
    score_before: float = 0.0
    score_after: float = 0.0
    attempt_timestamp: datetime = field(default_factory=utcnow)


@dataclass
class ValidationResult:
    """Aggregate outcome of one validation run (plus any self-correction)."""

    sql: str
    original_sql: str
    validation_level: ValidationLevel
    is_valid: bool = False
    overall_score: float = 0.0
    can_self_correct: bool = False
    is_self_corrected: bool = False
    correction_reason: Optional[str] = None
    early_exit: bool = False
    stages: dict[StageName, StageOutcome] = field(default_factory=dict)
    correction_history: tuple[SelfCorrectionAttempt, ...] = ()
    warnings: list[str] = field(default_factory=list)
    validation_timestamp: datetime = field(default_factory=utcnow)

    def outcome(self, stage: StageName) -> Optional[StageOutcome]:
        return self.stages.get(stage)

    def _executed_result(self, stage: StageName) -> Any:
        outcome = self.stages.get(stage)
        if outcome is None or not outcome.executed:
            return None
        return outcome.result

    @property
    def security_validation(self) -> Optional[SecurityValidationResult]:
        return self._executed_result(StageName.SECURITY)

    @property
    def semantic_validation(self) -> Optional[SemanticValidationResult]:
        return self._executed_result(StageName.SEMANTIC)

    @property
    def schema_compliance(self) -> Optional[SchemaComplianceResult]:
        return self._executed_result(StageName.SCHEMA)

    @property
    def business_logic_validation(self) -> Optional[BusinessLogicValidationResult]:
        return self._executed_result(StageName.BUSINESS_LOGIC)

    @property
    def dry_run_result(self) -> Optional[DryRunExecutionResult]:
        return self._executed_result(StageName.DRY_RUN)

    @property
    def executed_stages(self) -> list[StageOutcome]:
        return [o for o in self.stages.values() if o.executed]

    @property
    def issues(self) -> list[ValidationIssue]:
        return [issue for o in self.executed_stages for issue in o.issues]

    @property
    def has_critical(self) -> bool:
        return any(o.has_critical for o in self.executed_stages)


@dataclass
class EnhancedValidationResponse:
    """Boundary response: always a structured success/message pair."""

    success: bool
    message: str
    validation_result: Optional[ValidationResult] = None
    warnings: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StageMetrics:
    runs: int = 0
    failures: int = 0
    indeterminate: int = 0
    total_score: float = 0.0

    @property
    def average_score(self) -> float:
        return self.total_score / self.runs if self.runs else 0.0


@dataclass
class ValidationMetrics:
    total_validations: int = 0
    successful_validations: int = 0
    self_correction_attempts: int = 0
    successful_self_corrections: int = 0
    average_validation_score: float = 0.0
    validation_type_metrics: dict[str, StageMetrics] = field(default_factory=dict)


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    tokens_used: int = 0
