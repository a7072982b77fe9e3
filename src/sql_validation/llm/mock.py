"""
Mock LLM
========

Mock LLM implementation for testing and demonstration.
"""

import asyncio

from sql_validation.exceptions import ExternalServiceError
from sql_validation.llm.base import LLMInterface
from sql_validation.models import LLMResponse


class MockLLM(LLMInterface):
    """
    Mock LLM for demonstration and testing purposes.

    In production, replace with OpenAI, Anthropic, or other provider.
    """

    def __init__(
        self,
        responses: dict[str, list[str]] | None = None,
        delay: float = 0.0,
        failures: int = 0,
    ) -> None:
        """
        Initialize with canned responses.

        Args:
            responses: Dict mapping prompt substrings to list of SQL attempts.
                       Each attempt is returned in sequence (for testing correction).
            delay: Seconds to wait before answering (for timeout tests)
            failures: Number of initial calls that fail with a retryable error
        """
        self.responses = responses or {}
        self.delay = delay
        self.failures = failures
        self.call_counts: dict[str, int] = {}
        self.total_calls = 0

    async def generate(self, prompt: str, system_prompt: str | None = None) -> LLMResponse:
        """
        Generate a mock SQL response.

        Matches prompt against configured responses and returns
        successive attempts to simulate correction behavior.
        """
        self.total_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.total_calls <= self.failures:
            raise ExternalServiceError("llm", "mock provider unavailable")

        for key, sql_attempts in self.responses.items():
            if key.lower() in prompt.lower():
                count = self.call_counts.get(key, 0)
                self.call_counts[key] = count + 1

                attempt_idx = min(count, len(sql_attempts) - 1)
                return LLMResponse(
                    content=sql_attempts[attempt_idx],
                    model="mock-llm-v1",
                )

        # Default fallback
        return LLMResponse(
            content="SELECT * FROM unknown_table",
            model="mock-llm-v1",
        )

    def reset(self) -> None:
        """Reset call counts for fresh test runs."""
        self.call_counts = {}
        self.total_calls = 0
