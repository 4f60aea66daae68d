"""
Retry helpers for backend I/O.

Exponential backoff with jitter for transient StoreErrors. Fatal errors
(auth, permission, missing objects) are raised on the first attempt.
"""

import asyncio
import logging
import random

from .errors import is_transient_error

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF = 0.5  # seconds
DEFAULT_MAX_BACKOFF = 30.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_JITTER_FACTOR = 0.25


def calculate_backoff_with_jitter(
    attempt: int,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    jitter_factor: float = DEFAULT_JITTER_FACTOR
) -> float:
    """
    Calculate exponential backoff with jitter.

    Args:
        attempt: Current retry attempt (0-indexed)
        initial_backoff: Initial backoff in seconds
        max_backoff: Maximum backoff in seconds
        multiplier: Backoff multiplier
        jitter_factor: Random jitter factor (0.0 to 1.0)

    Returns:
        Backoff duration in seconds
    """
    backoff = min(initial_backoff * (multiplier ** attempt), max_backoff)
    jitter = backoff * jitter_factor * (2 * random.random() - 1)
    return max(0.0, backoff + jitter)


async def retry_with_backoff(
    func,
    *args,
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    operation_name: str = "store operation",
    **kwargs
):
    """
    Execute an async function, retrying transient errors with backoff.

    Args:
        func: Async function to execute
        *args: Positional arguments for func
        max_retries: Maximum number of retry attempts
        initial_backoff: First backoff delay in seconds (0 disables sleeping)
        operation_name: Name for logging
        **kwargs: Keyword arguments for func

    Returns:
        Result from the successful call

    Raises:
        The last exception if all retries fail or the error is not transient
    """
    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not is_transient_error(e):
                logger.debug(f"{operation_name} failed with non-retryable error: {e}")
                raise

            if attempt >= max_retries:
                logger.error(
                    f"{operation_name} failed after {max_retries + 1} attempts. "
                    f"Last error: {e}"
                )
                raise

            backoff = calculate_backoff_with_jitter(attempt, initial_backoff=initial_backoff)
            logger.warning(
                f"{operation_name} transient error (attempt {attempt + 1}/{max_retries + 1}): {e}. "
                f"Retrying in {backoff:.2f}s..."
            )
            await asyncio.sleep(backoff)
