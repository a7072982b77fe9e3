"""
Base Validator Classes
======================

Abstract base class for validation stages and the read-only context they
share.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, Optional

from sql_validation.config import LevelPolicy, ValidationConfig
from sql_validation.models import StageName, StageResult
from sql_validation.schema import BusinessSchema, TableInfo
from sql_validation.sql_elements import SqlElements


@dataclass(frozen=True)
class ValidationContext:
    """
    Immutable inputs shared by every stage of one validation run.

    Stages may run concurrently against the same context; nothing in it is
    written after construction.
    """

    original_query: str
    policy: LevelPolicy
    config: ValidationConfig
    business_schema: BusinessSchema
    elements: SqlElements
    schema_snapshot: Mapping[str, TableInfo] = field(default_factory=dict)
    user_id: Optional[str] = None
    request_context: Optional[str] = None

    def threshold(self, stage: StageName) -> float:
        return self.policy.stage_threshold(stage)


class Validator(ABC):
    """Base class for all validation stages."""

    @property
    @abstractmethod
    def name(self) -> StageName:
        """Stage implemented by this validator."""
        pass

    @abstractmethod
    def validate(self, sql: str, context: ValidationContext) -> StageResult:
        """
        Validate the SQL against this stage's rules.

        Args:
            sql: The SQL query to validate
            context: Shared, read-only validation context

        Returns:
            Stage-specific result with score and issues
        """
        pass


def clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
