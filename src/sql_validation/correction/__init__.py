"""
Correction Module
=================

Self-correction loop and the generators it calls.
"""

from sql_validation.correction.engine import SelfCorrectionEngine
from sql_validation.correction.generator import CorrectionGenerator, LLMCorrectionGenerator

__all__ = [
    "CorrectionGenerator",
    "LLMCorrectionGenerator",
    "SelfCorrectionEngine",
]
