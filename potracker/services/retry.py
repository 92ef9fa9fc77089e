"""
Retry with exponential backoff.

Presets:
- quick: 2 retries, 0.5s -> 2s
- standard: 3 retries, 1s -> 10s
- aggressive: 5 retries, 2s -> 30s

The error surfaced after the last attempt is that attempt's own
exception, never a wrapper.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from potracker.services.errors import ErrorKind

T = TypeVar("T")

RETRYABLE_KINDS = frozenset({ErrorKind.TRANSPORT, ErrorKind.SERVER})


def is_retryable_error(error: BaseException) -> bool:
    """Transport failures and 5xx responses are retryable; anything else is terminal."""
    return getattr(error, "kind", None) in RETRYABLE_KINDS


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry_with_backoff."""

    max_retries: int = 3
    initial_delay: timedelta = timedelta(seconds=1)
    max_delay: timedelta = timedelta(seconds=10)
    backoff_multiplier: float = 2.0
    should_retry: Callable[[BaseException], bool] = is_retryable_error

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


class RetryPresets:
    """Named retry policies."""

    # Fast operations
    quick = RetryPolicy(
        max_retries=2,
        initial_delay=timedelta(milliseconds=500),
        max_delay=timedelta(seconds=2),
    )
    # Normal operations
    standard = RetryPolicy(
        max_retries=3,
        initial_delay=timedelta(seconds=1),
        max_delay=timedelta(seconds=10),
    )
    # Critical operations
    aggressive = RetryPolicy(
        max_retries=5,
        initial_delay=timedelta(seconds=2),
        max_delay=timedelta(seconds=30),
    )

    @classmethod
    def get(cls, name: str) -> RetryPolicy:
        """Look up a preset by name."""
        policy = getattr(cls, name.lower(), None)
        if not isinstance(policy, RetryPolicy):
            raise KeyError(f"Unknown retry preset: {name}")
        return policy


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until it succeeds, retries run out, or an error is terminal.

    Args:
        operation: Async callable, invoked once per attempt
        policy: Retry configuration (standard preset if omitted)
        sleep: Awaitable delay function, injectable for tests

    Returns:
        The first successful result

    Raises:
        The exception of the final attempt, or the first terminal exception
    """
    policy = policy or RetryPresets.standard
    delay = policy.initial_delay

    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except Exception as e:
            if attempt == policy.max_retries:
                logger.error(f"Giving up after {policy.max_attempts} attempts: {e}")
                raise

            if not policy.should_retry(e):
                raise

            logger.warning(
                f"Attempt {attempt + 1}/{policy.max_attempts} failed ({e}), "
                f"retrying in {delay.total_seconds()}s"
            )
            await sleep(delay.total_seconds())
            delay = min(delay * policy.backoff_multiplier, policy.max_delay)

    raise AssertionError("unreachable")  # pragma: no cover
