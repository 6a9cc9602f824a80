"""Retry utility with exponential backoff and jitter.

Provides retry_with_backoff() for any awaitable-producing callable, a
with_timeout() wrapper that bounds a single await, and retry_with_timeout()
which applies the timeout to each attempt. RetryPolicy presets are built once
and shared by reference across concurrent calls.
"""

import asyncio
import logging
import math
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from functools import wraps
from typing import Any, TypeVar

from transcription_core.utils.errors import TranscriptionTimeoutError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration.

    Args:
        max_retries: Retries after the initial attempt (total calls = max_retries + 1).
        initial_delay: Delay in seconds before the first retry.
        max_delay: Cap applied to the exponential delay before jitter.
        backoff_factor: Multiplier applied per attempt.
        jitter_factor: Fraction of the delay added or removed at random.
        should_retry: Predicate classifying retryable errors. Defaults to
            is_retryable() when None.
        on_retry: Optional callback invoked as on_retry(attempt, exc, delay)
            before each retry sleep.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter_factor: float = 0.2
    should_retry: Callable[[BaseException], bool] | None = None
    on_retry: Callable[[int, BaseException, float], None] | None = None

    def is_retryable(self, exc: BaseException) -> bool:
        if self.should_retry is not None:
            return self.should_retry(exc)
        return is_retryable(exc)


def compute_delay(
    attempt: int,
    policy: RetryPolicy,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay in seconds before retrying after the given 0-indexed attempt.

    min(initial_delay * backoff_factor^attempt, max_delay), perturbed by
    +/- jitter_factor, clamped at zero and truncated to whole milliseconds.
    """
    capped = min(policy.initial_delay * policy.backoff_factor**attempt, policy.max_delay)
    jitter = capped * policy.jitter_factor * (rand() - 0.5) * 2
    return math.floor(max(0.0, capped + jitter) * 1000) / 1000


def _should_retry_api_call(exc: BaseException) -> bool:
    if getattr(exc, "terminal", False):
        return False
    status_code = getattr(exc, "status_code", None)
    if status_code == 429:
        return True
    if isinstance(status_code, int) and status_code >= 500:
        return True
    return is_retryable(exc)


API_CALL_POLICY = RetryPolicy(
    max_retries=3,
    initial_delay=2.0,
    max_delay=60.0,
    backoff_factor=2.0,
    should_retry=_should_retry_api_call,
)

DATABASE_POLICY = RetryPolicy(
    max_retries=2,
    initial_delay=0.5,
    max_delay=5.0,
    backoff_factor=2.0,
)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    operation_name: str = "Operation",
) -> T:
    """Run an async operation, retrying retryable failures with backoff.

    Attempt 0 runs immediately. The exception from the final attempt is
    re-raised unchanged, with _retry_count attached.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= policy.max_retries or not policy.is_retryable(exc):
                exc._retry_count = attempt  # type: ignore[attr-defined]
                if attempt > 0:
                    logger.error(
                        "%s failed after %d attempt(s): %s",
                        operation_name,
                        attempt + 1,
                        exc,
                        extra={"attempt": attempt + 1},
                    )
                raise

            delay = compute_delay(attempt, policy)
            attempt += 1
            logger.warning(
                "Retry %d/%d for %s after %.1fs: %s",
                attempt,
                policy.max_retries,
                operation_name,
                delay,
                exc,
                extra={"attempt": attempt},
            )
            if policy.on_retry is not None:
                policy.on_retry(attempt, exc, delay)
            await asyncio.sleep(delay)


async def with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout: float,
    operation_name: str = "Operation",
) -> T:
    """Await an operation for at most ``timeout`` seconds.

    On expiry the local task is cancelled without waiting for it to unwind
    and TranscriptionTimeoutError is raised. A remote side effect that was
    already in flight may still complete.
    """
    task = asyncio.ensure_future(operation())
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if task in done:
        return task.result()
    task.cancel()
    raise TranscriptionTimeoutError(operation_name, timeout)


async def retry_with_timeout(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    timeout: float | None,
    operation_name: str = "Operation",
    retry_on_timeout: bool = True,
) -> T:
    """retry_with_backoff() with a per-attempt timeout.

    Timeouts are retryable unless retry_on_timeout is False; all other
    errors go through the policy's own predicate.
    """
    if not timeout:
        return await retry_with_backoff(operation, policy, operation_name)

    def should_retry(exc: BaseException) -> bool:
        if isinstance(exc, TranscriptionTimeoutError):
            return retry_on_timeout
        return policy.is_retryable(exc)

    return await retry_with_backoff(
        lambda: with_timeout(operation, timeout, operation_name),
        replace(policy, should_retry=should_retry),
        operation_name,
    )


def retryable(
    policy: RetryPolicy, operation_name: str | None = None
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of retry_with_backoff() for async functions."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_with_backoff(
                lambda: func(*args, **kwargs),
                policy,
                operation_name or func.__name__,
            )

        return wrapper

    return decorator
