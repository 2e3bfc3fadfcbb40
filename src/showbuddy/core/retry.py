"""Retry utilities with exponential backoff.

Used for calls that are safe to repeat: payment verification (a read on the
payment provider) and ledger writes (idempotent on the hold token). Payment
capture itself is never retried here.
"""
import asyncio
import logging
import random
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds (doubles each retry)
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff
        jitter: Add up to 30% random delay so clients do not retry in lockstep
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 0.2,
        max_delay: float = 5.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-indexed)"""
        delay = min(self.initial_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, 0.3 * delay)
        return delay


async def retry_async(
    func: Callable[..., Any],
    *args: Any,
    config: Optional[RetryConfig] = None,
    retry_on_exceptions: tuple = (Exception,),
    **kwargs: Any,
) -> Any:
    """Retry an async function with exponential backoff.

    Args:
        func: Async function to retry
        *args: Positional arguments for func
        config: Retry configuration (uses defaults if None)
        retry_on_exceptions: Tuple of exception types to retry on
        **kwargs: Keyword arguments for func

    Returns:
        Result from the first successful call

    Raises:
        The last exception if all retries fail; exceptions outside
        ``retry_on_exceptions`` propagate immediately.
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_retries + 1):
        try:
            result = await func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"Retry succeeded for {func.__name__} on attempt {attempt + 1}")
            return result

        except retry_on_exceptions as e:
            if attempt >= config.max_retries:
                logger.error(
                    f"All retries exhausted for {func.__name__} after {attempt + 1} attempts: {e}"
                )
                raise

            delay = config.get_delay(attempt)
            logger.warning(
                f"{func.__name__} failed (attempt {attempt + 1}/{config.max_retries + 1}), "
                f"retrying in {delay:.2f}s: {e}"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Retry logic error")
