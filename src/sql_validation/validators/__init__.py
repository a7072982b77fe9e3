"""
Validators Module
=================

Static validation stages run by the orchestrator.
"""

from sql_validation.validators.base import ValidationContext, Validator
from sql_validation.validators.business_logic import BusinessLogicValidator
from sql_validation.validators.schema import SchemaComplianceValidator
from sql_validation.validators.security import SecurityValidator
from sql_validation.validators.semantic import SemanticValidator
from sql_validation.validators.sensitivity import PIIDetector, PIIType


def default_validators() -> list[Validator]:
    """One validator per static stage, in canonical order."""
    return [
        SecurityValidator(),
        SemanticValidator(),
        SchemaComplianceValidator(),
        BusinessLogicValidator(),
    ]


__all__ = [
    "ValidationContext",
    "Validator",
    "SecurityValidator",
    "SemanticValidator",
    "SchemaComplianceValidator",
    "BusinessLogicValidator",
    "PIIDetector",
    "PIIType",
    "default_validators",
]
