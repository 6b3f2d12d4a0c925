"""
Retry Decorator with Backoff

Provides a decorator for retrying async functions with a configurable
backoff. Used to establish the storage connection, where a fixed delay
between attempts is wanted (exponential_base=1.0, jitter off), but the
same helper covers exponential backoff with jitter.

Key features:
- Total attempt count, including the first call
- Fixed or exponential delay, capped by max_delay
- Optional jitter to prevent thundering herd
- Selective exception catching
- Logging of every failed attempt
"""

import asyncio
import functools
import logging
import random
from typing import Any, Callable, Tuple, Type

logger = logging.getLogger(__name__)


def compute_delay(
    attempt: int,
    base_delay: float,
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = False,
) -> float:
    """
    Delay to wait after the given zero-based failed attempt.

    Args:
        attempt: Zero-based index of the attempt that just failed
        base_delay: Delay after the first failure, in seconds
        exponential_base: Growth factor per attempt (1.0 = fixed delay)
        max_delay: Upper bound in seconds
        jitter: Add ±20% random jitter

    Returns:
        Non-negative delay in seconds
    """
    delay = min(base_delay * (exponential_base ** attempt), max_delay)

    if jitter:
        jitter_amount = delay * 0.2
        delay = delay + random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)


def retry_with_backoff(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "",
):
    """
    Decorator for retrying async functions with backoff.

    Args:
        max_attempts: Total number of calls, including the first (default: 3)
        base_delay: Delay in seconds after the first failure (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        exponential_base: Growth factor for the delay (default: 2.0)
            Use 1.0 for a fixed delay between attempts
        jitter: Whether to add ±20% random jitter (default: True)
        exceptions: Exceptions that trigger a retry (default: (Exception,))
            Anything else propagates immediately
        label: Name used in log lines (defaults to the function name)

    Returns:
        Decorated async function. When every attempt fails, the last
        exception is re-raised unchanged.

    Example:
        @retry_with_backoff(max_attempts=5, base_delay=1.0, exponential_base=1.0, jitter=False)
        async def ping():
            await client.admin.command("ping")
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: Callable) -> Callable:
        name = label or func.__name__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)

                except exceptions as e:
                    if attempt == max_attempts - 1:
                        logger.error(
                            f"{name} failed after {max_attempts} attempts: {e}",
                            extra={"attempt": attempt + 1},
                        )
                        raise

                    delay = compute_delay(
                        attempt,
                        base_delay,
                        exponential_base=exponential_base,
                        max_delay=max_delay,
                        jitter=jitter,
                    )

                    logger.info(
                        f"{name} attempt {attempt + 1}/{max_attempts} "
                        f"failed with {type(e).__name__}: {e}. "
                        f"Retrying in {delay:.2f}s...",
                        extra={"attempt": attempt + 1},
                    )

                    await asyncio.sleep(delay)

        return wrapper
    return decorator
