"""
Service Settings
================

Environment-driven settings (prefix ``SQL_VALIDATION_``) that build the
pipeline configuration objects.
"""

from dataclasses import replace
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from sql_validation.config import (
    DryRunConfig,
    SelfCorrectionConfiguration,
    ValidationConfig,
    default_level_policies,
)
from sql_validation.models import ValidationLevel
from sql_validation.sample_schema import SAMPLE_BUSINESS_SCHEMA
from sql_validation.schema import BusinessSchema


class ValidationSettings(BaseSettings):
    schema_path: Optional[str] = Field(
        default=None, description="JSON business schema; the bundled sample is used if unset"
    )
    database_path: Optional[str] = Field(
        default=None, description="SQLite database opened read-only for dry runs"
    )
    dry_run_enabled: bool = True

    stage_timeout: float = Field(default=5.0, gt=0)
    parallel_stages: bool = True
    risk_ceiling: int = Field(default=20, gt=0)
    external_retry_attempts: int = Field(default=3, ge=1)
    retry_backoff: float = Field(default=0.2, ge=0)
    # Overall threshold overrides keyed by level name, e.g. {"strict": 0.85}
    level_thresholds: dict[ValidationLevel, float] = Field(default_factory=dict)

    dry_run_max_rows: int = Field(default=1000, gt=0)
    dry_run_max_execution_time: float = Field(default=5.0, gt=0)

    max_correction_attempts: int = Field(default=3, ge=0)
    min_improvement_threshold: float = 0.05
    correction_timeout: float = Field(default=30.0, gt=0)
    plateau_patience: int = Field(default=2, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="SQL_VALIDATION_", env_file=".env", extra="ignore"
    )

    def to_validation_config(self) -> ValidationConfig:
        policies = default_level_policies()
        for level, threshold in self.level_thresholds.items():
            policies[level] = replace(policies[level], overall_threshold=threshold)
        return ValidationConfig(
            level_policies=policies,
            risk_ceiling=self.risk_ceiling,
            stage_timeout=self.stage_timeout,
            parallel_stages=self.parallel_stages,
            external_retry_attempts=self.external_retry_attempts,
            retry_backoff=self.retry_backoff,
            dry_run=DryRunConfig(
                max_rows_to_analyze=self.dry_run_max_rows,
                max_execution_time=self.dry_run_max_execution_time,
            ),
        )

    def to_correction_config(self) -> SelfCorrectionConfiguration:
        return SelfCorrectionConfiguration(
            max_correction_attempts=self.max_correction_attempts,
            min_improvement_threshold=self.min_improvement_threshold,
            correction_timeout=self.correction_timeout,
            plateau_patience=self.plateau_patience,
        )

    def load_business_schema(self) -> BusinessSchema:
        if self.schema_path:
            return BusinessSchema.from_json_file(self.schema_path)
        return SAMPLE_BUSINESS_SCHEMA
