"""Retry helpers for device sessions."""
import asyncio
import logging
from functools import wraps
from typing import Any, Callable, TypeVar

import paramiko
from tenacity import (
    AsyncRetrying,
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Session-level failures worth another attempt
RETRYABLE_EXCEPTIONS = (
    ConnectionRefusedError,
    ConnectionResetError,
    TimeoutError,
    OSError,
    EOFError,
    paramiko.SSHException,
)


def _policy(max_attempts: int, min_wait: float, max_wait: float, exceptions: tuple) -> dict[str, Any]:
    """tenacity arguments shared by ``with_retry`` and ``retrying``."""
    return {
        "stop": stop_after_attempt(max_attempts),
        "wait": wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        "retry": retry_if_exception_type(exceptions),
        "before_sleep": before_sleep_log(logger, logging.WARNING),
        "reraise": True,
    }


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    exceptions: tuple = RETRYABLE_EXCEPTIONS,
) -> Callable:
    """Decorator factory for retry logic with exponential backoff.

    Works on coroutines and plain functions. The last exception is
    re-raised once ``max_attempts`` is reached.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time between attempts (seconds)
        max_wait: Maximum wait time between attempts (seconds)
        exceptions: Tuple of exception types to retry on
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        policy = retry(**_policy(max_attempts, min_wait, max_wait, exceptions))

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> T:
                return await func(*args, **kwargs)  # type: ignore[misc]

            return policy(async_wrapper)  # type: ignore[return-value]

        return policy(func)

    return decorator


def retrying(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    exceptions: tuple = RETRYABLE_EXCEPTIONS,
) -> AsyncRetrying:
    """Async retry loop with the same policy as ``with_retry``.

    For call sites that keep state between attempts:

        async for attempt in retrying(max_attempts=3):
            with attempt:
                await send_remaining()
    """
    return AsyncRetrying(**_policy(max_attempts, min_wait, max_wait, exceptions))
