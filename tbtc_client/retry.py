"""
Bounded retry with exponential backoff for calls to remote services.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

import structlog

from .errors import AlreadyDone, BridgeClientError, TransientError

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_BACKOFF_STEP = 1.0  # seconds
MAX_JITTER = 0.5  # seconds

Sleep = Callable[[float], Awaitable[None]]


def is_retryable(error: BaseException) -> bool:
    """Domain errors are final except TransientError; anything else is a transport failure."""
    if isinstance(error, BridgeClientError):
        return isinstance(error, TransientError)
    return isinstance(error, Exception)


def backoff_delay(attempt: int, backoff_step: float) -> float:
    """Delay after the given failed attempt (1-based)."""
    return backoff_step * (2 ** (attempt - 1)) + random.uniform(0, MAX_JITTER) * backoff_step


def backoff_retrier(
    total_attempts: int,
    backoff_step: float = DEFAULT_BACKOFF_STEP,
    sleep: Sleep = asyncio.sleep,
) -> Callable[[Callable[[], Awaitable[T]]], Awaitable[T]]:
    """
    Build a retrier that runs an operation up to `total_attempts` times.

    Non-retryable errors (see is_retryable) are raised on the first
    occurrence. When attempts are exhausted the last underlying error is
    raised unchanged so callers can tell the root cause apart.

    Usage:
        request = await backoff_retrier(3)(lambda: contract.functions.x().call())
    """
    if total_attempts < 1:
        raise ValueError(f"total_attempts must be at least 1, got {total_attempts}")

    async def retry(operation: Callable[[], Awaitable[T]]) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e) or attempt >= total_attempts:
                    raise

                delay = backoff_delay(attempt, backoff_step)
                logger.warning(
                    "retry_attempt_failed",
                    attempt=attempt,
                    total_attempts=total_attempts,
                    delay=round(delay, 3),
                    error=str(e),
                )
                await sleep(delay)
                attempt += 1

    return retry


async def send_with_retry(
    operation: Callable[[], Awaitable[T]],
    total_attempts: int,
    expected_errors: Sequence[str] = (),
    backoff_step: float = DEFAULT_BACKOFF_STEP,
    sleep: Sleep = asyncio.sleep,
) -> Optional[T]:
    """
    Retry a mutating call, treating "already done" rejections as success.

    If the error message of a failed attempt contains any of
    `expected_errors`, the effect is considered to have already happened:
    no further attempts are made and None is returned. An AlreadyDone
    raised by the operation itself is absorbed the same way.
    """

    async def attempt() -> T:
        try:
            return await operation()
        except AlreadyDone:
            raise
        except Exception as e:
            message = str(e)
            for expected in expected_errors:
                if expected in message:
                    raise AlreadyDone(message) from e
            raise

    try:
        return await backoff_retrier(total_attempts, backoff_step, sleep)(attempt)
    except AlreadyDone as e:
        logger.info("expected_error_absorbed", error=str(e))
        return None
