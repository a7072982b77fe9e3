"""
Bounded Retry
=============

Retry helper for calls to external collaborators.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from sql_validation.exceptions import ExternalServiceError

T = TypeVar("T")

logger = structlog.get_logger(__name__)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    service: str,
    attempts: int = 3,
    base_delay: float = 0.2,
    timeout: Optional[float] = None,
) -> T:
    """
    Await ``operation()`` with exponential backoff on retryable failures.

    Every attempt is bounded by what is left of ``timeout`` (seconds), so the
    whole call, backoff included, never outlives its deadline. Cancellation of
    the caller propagates into the in-flight attempt.

    Args:
        operation: Zero-argument coroutine factory performing the call
        service: Name of the external service (for errors and logs)
        attempts: Maximum number of attempts (at least one is made)
        base_delay: Backoff before the second attempt; doubles each retry
        timeout: Overall deadline in seconds, or None for no deadline

    Returns:
        The operation's result

    Raises:
        ExternalServiceError: Non-retryable failure, or retries exhausted
        TimeoutError: The overall deadline elapsed
    """
    deadline = time.monotonic() + timeout if timeout is not None else None
    attempts = max(1, attempts)

    for attempt in range(attempts):
        remaining = None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"{service} call exceeded its deadline")

        try:
            return await asyncio.wait_for(operation(), timeout=remaining)
        except ExternalServiceError as e:
            if not e.retryable or attempt == attempts - 1:
                raise
            error = e

        delay = base_delay * (2**attempt)
        if deadline is not None:
            delay = min(delay, max(0.0, deadline - time.monotonic()))
        logger.warning(
            "external_call_retry",
            service=service,
            attempt=attempt + 1,
            max_attempts=attempts,
            delay_seconds=round(delay, 3),
            error=error.message,
        )
        await asyncio.sleep(delay)

    raise ExternalServiceError(service, "retries exhausted")
