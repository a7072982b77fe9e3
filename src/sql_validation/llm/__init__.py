"""
LLM Module
==========

Pluggable LLM interfaces for SQL correction.
"""

from sql_validation.llm.base import LLMInterface
from sql_validation.llm.mock import MockLLM

__all__ = [
    "LLMInterface",
    "MockLLM",
]
