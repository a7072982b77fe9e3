"""
LLM Provider Interface
======================

Text-generation provider used by the correction generator.
"""

from abc import ABC, abstractmethod

from sql_validation.models import LLMResponse


class LLMInterface(ABC):
    model_name: str = "unknown"

    @abstractmethod
    async def generate(self, prompt: str, system_prompt: str | None = None) -> LLMResponse:
        """
        Complete ``prompt``.

        Provider failures raise ``ExternalServiceError``; use
        ``retryable=False`` for errors a retry cannot fix, such as rejected
        credentials.
        """
        pass
