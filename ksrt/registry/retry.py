"""
Bounded retries for registry calls.

Every registry call made by the pipeline goes through call_with_retry():
the call gets a timeout, and timeouts or RegistryTransientError are
retried with exponential backoff. Anything else propagates at once.

Invariants:
    - At most 1 + max_retries attempts per call
    - Only timeouts and RegistryTransientError are retried
    - Exhausted retries raise RegistryUnavailableError
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import RegistryTransientError, RegistryUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry and timeout settings for registry calls.

    Attributes:
        max_retries: Additional attempts after the first failure
        retry_delay_ms: Delay before the first retry
        max_delay_ms: Upper bound for the backoff delay
        multiplier: Backoff growth factor
        timeout_seconds: Per-attempt timeout (None disables it)
    """

    max_retries: int = 3
    retry_delay_ms: int = 200
    max_delay_ms: int = 5000
    multiplier: float = 2.0
    timeout_seconds: Optional[float] = 30.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Backoff in seconds after the given (1-based) failed attempt."""
        delay_ms = self.retry_delay_ms * (self.multiplier ** (attempt - 1))
        return min(delay_ms, self.max_delay_ms) / 1000.0


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str,
) -> T:
    """Run a registry call with timeout and bounded retries.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        policy: Retry settings
        description: Human-readable call description for logs and errors

    Returns:
        The operation's result

    Raises:
        RegistryUnavailableError: If every attempt failed transiently
    """
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            if policy.timeout_seconds is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout=policy.timeout_seconds)
        except asyncio.TimeoutError as e:
            last_error = e
            reason = f"timed out after {policy.timeout_seconds}s"
        except RegistryTransientError as e:
            last_error = e
            reason = e.message

        if attempt < policy.max_attempts:
            delay = policy.delay_for(attempt)
            logger.warning(
                f"Registry call {description} failed ({reason}), "
                f"retrying in {delay:.2f}s (attempt {attempt}/{policy.max_attempts})"
            )
            await asyncio.sleep(delay)
        else:
            logger.error(f"Registry call {description} failed ({reason}), giving up")

    cause = str(last_error) if last_error and str(last_error) else "timed out"
    raise RegistryUnavailableError(description, policy.max_attempts, cause)
