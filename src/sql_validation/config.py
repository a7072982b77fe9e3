"""
Pipeline Configuration
======================

Thresholds, weights and budgets for the validation pipeline.
"""

from dataclasses import dataclass, field
from typing import Mapping

from sql_validation.exceptions import MalformedInputError
from sql_validation.models import CorrectionStrategy, StageName, ValidationLevel

ALL_STATIC_STAGES = (
    StageName.SECURITY,
    StageName.SEMANTIC,
    StageName.SCHEMA,
    StageName.BUSINESS_LOGIC,
)


@dataclass(frozen=True)
class LevelPolicy:
    """Stages run at a validation level and the thresholds they must meet."""

    stages: tuple[StageName, ...]
    overall_threshold: float
    stage_thresholds: Mapping[StageName, float]

    def stage_threshold(self, stage: StageName) -> float:
        return self.stage_thresholds.get(stage, 0.0)


def default_level_policies() -> dict[ValidationLevel, LevelPolicy]:
    return {
        ValidationLevel.BASIC: LevelPolicy(
            stages=(StageName.SECURITY,),
            overall_threshold=0.5,
            stage_thresholds={StageName.SECURITY: 0.5},
        ),
        ValidationLevel.STANDARD: LevelPolicy(
            stages=(StageName.SECURITY, StageName.SEMANTIC),
            overall_threshold=0.6,
            stage_thresholds={StageName.SECURITY: 0.5, StageName.SEMANTIC: 0.6},
        ),
        ValidationLevel.COMPREHENSIVE: LevelPolicy(
            stages=ALL_STATIC_STAGES,
            overall_threshold=0.7,
            stage_thresholds={
                StageName.SECURITY: 0.5,
                StageName.SEMANTIC: 0.75,
                StageName.SCHEMA: 0.7,
                StageName.BUSINESS_LOGIC: 0.7,
            },
        ),
        ValidationLevel.STRICT: LevelPolicy(
            stages=ALL_STATIC_STAGES,
            overall_threshold=0.8,
            stage_thresholds={
                StageName.SECURITY: 0.7,
                StageName.SEMANTIC: 0.75,
                StageName.SCHEMA: 0.8,
                StageName.BUSINESS_LOGIC: 0.8,
            },
        ),
    }


def default_stage_weights() -> dict[StageName, float]:
    return {
        StageName.SECURITY: 0.25,
        StageName.SEMANTIC: 0.3,
        StageName.SCHEMA: 0.25,
        StageName.BUSINESS_LOGIC: 0.2,
    }


@dataclass(frozen=True)
class BusinessLogicWeights:
    """Access and sensitivity carry compliance risk, so they weigh more."""

    access: float = 0.4
    sensitivity: float = 0.4
    aggregation: float = 0.2


@dataclass(frozen=True)
class DryRunConfig:
    max_rows_to_analyze: int = 1000
    max_execution_time: float = 5.0


@dataclass(frozen=True)
class ValidationConfig:
    level_policies: Mapping[ValidationLevel, LevelPolicy] = field(
        default_factory=default_level_policies
    )
    stage_weights: Mapping[StageName, float] = field(default_factory=default_stage_weights)
    business_logic_weights: BusinessLogicWeights = field(default_factory=BusinessLogicWeights)
    # Accumulated security risk at which the security score reaches zero
    risk_ceiling: int = 20
    stage_timeout: float = 5.0
    parallel_stages: bool = True
    external_retry_attempts: int = 3
    retry_backoff: float = 0.2
    dry_run: DryRunConfig = field(default_factory=DryRunConfig)

    def __post_init__(self) -> None:
        if any(weight < 0 for weight in self.stage_weights.values()):
            raise MalformedInputError("stage weights must be non-negative")
        if self.risk_ceiling <= 0:
            raise MalformedInputError("risk_ceiling must be positive")

    def policy_for(self, level: ValidationLevel) -> LevelPolicy:
        return self.level_policies[level]

    def weight_for(self, stage: StageName) -> float:
        return self.stage_weights.get(stage, 0.0)


DEFAULT_CORRECTION_STRATEGIES = (
    CorrectionStrategy.SEMANTIC,
    CorrectionStrategy.SCHEMA,
    CorrectionStrategy.BUSINESS_LOGIC,
    CorrectionStrategy.SECURITY,
)


@dataclass(frozen=True)
class SelfCorrectionConfiguration:
    """Policy for the bounded self-correction loop."""

    max_correction_attempts: int = 3
    min_improvement_threshold: float = 0.05
    correction_timeout: float = 30.0
    correction_strategies: tuple[CorrectionStrategy, ...] = DEFAULT_CORRECTION_STRATEGIES
    plateau_patience: int = 2

    def __post_init__(self) -> None:
        if self.max_correction_attempts < 0:
            raise MalformedInputError("max_correction_attempts must be >= 0")
        if self.correction_timeout <= 0:
            raise MalformedInputError("correction_timeout must be positive")
        if self.plateau_patience < 1:
            raise MalformedInputError("plateau_patience must be >= 1")
