"""
Bounded retries for object store calls.

Each attempt is wrapped in a timeout; a timeout or TransientError result is
retried with exponential backoff. NotFound and PermissionDenied are final
on the first attempt.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from imfolio.config import Settings
from imfolio.services.storage_audit.results import StoreResult, TransientError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for store calls."""

    max_attempts: int = 3
    initial_backoff: float = 0.5
    max_backoff: float = 8.0
    backoff_multiplier: float = 2.0
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.storage_max_retries,
            initial_backoff=settings.storage_retry_backoff_seconds,
            max_backoff=settings.storage_retry_max_backoff_seconds,
            timeout=settings.storage_call_timeout_seconds,
        )

    def backoff_for(self, attempt: int) -> float:
        """Delay before the attempt following `attempt` (1-based)."""
        delay = self.initial_backoff * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_backoff)


async def call_with_retry(
    operation: Callable[[], Awaitable[StoreResult]],
    key: str,
    policy: RetryPolicy,
    description: str = "storage call",
) -> StoreResult:
    """
    Run a store operation with timeout and bounded retries.

    Args:
        operation: Zero-argument coroutine factory performing one attempt
        key: Key or prefix the call concerns (for results and logs)
        policy: Retry configuration
        description: Short label used in log messages

    Returns:
        The first non-transient result, or the last TransientError
    """
    result: StoreResult = TransientError(key, "no attempt made")

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await asyncio.wait_for(operation(), timeout=policy.timeout)
        except asyncio.TimeoutError:
            result = TransientError(key, f"timed out after {policy.timeout:g}s")

        if not isinstance(result, TransientError):
            return result

        if attempt < policy.max_attempts:
            delay = policy.backoff_for(attempt)
            logger.warning(
                f"{description} failed for {key} "
                f"(attempt {attempt}/{policy.max_attempts}): {result.message}; retrying in {delay:g}s"
            )
            await asyncio.sleep(delay)

    logger.error(f"{description} failed for {key} after {policy.max_attempts} attempts: {result.message}")
    return result
