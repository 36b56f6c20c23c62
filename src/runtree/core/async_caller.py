"""
Retrying, concurrency-limited wrapper for outbound collector calls.

Usage:
    caller = AsyncCaller(max_concurrency=4, max_retries=3)
    response = await caller.call(http_client.post, url, json=payload)

Transport errors and responses with a retryable status are retried with
exponential backoff. When the budget is exhausted the last exception is
raised, or the last response is returned so callers can report its status
and body.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Collection, Optional, Tuple, Type, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (httpx.TransportError,)
RETRYABLE_STATUS_CODES = (429, 502, 503, 504)


class AsyncCaller:
    """
    Shared caller for tenant lookup, session creation and run submission.

    Attributes:
        max_concurrency: Maximum calls in flight at once (None for unlimited)
        max_retries: Retries after the first attempt
        backoff_base: Delay in seconds before the first retry
        backoff_factor: Multiplier applied per retry
        backoff_max: Upper bound on a single delay
        jitter: Randomize delays by up to 25% either way
        retry_on_status: Response status codes that trigger a retry
    """

    def __init__(
        self,
        max_concurrency: Optional[int] = None,
        max_retries: int = 6,
        backoff_base: float = 1.0,
        backoff_factor: float = 2.0,
        backoff_max: float = 60.0,
        jitter: bool = True,
        retry_on_status: Collection[int] = RETRYABLE_STATUS_CODES,
        retryable_exceptions: Tuple[Type[BaseException], ...] = RETRYABLE_EXCEPTIONS,
    ):
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")

        self.max_concurrency = max_concurrency
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_factor = backoff_factor
        self.backoff_max = backoff_max
        self.jitter = jitter
        self.retry_on_status = frozenset(retry_on_status)
        self.retryable_exceptions = retryable_exceptions
        self._semaphore = (
            asyncio.Semaphore(max_concurrency) if max_concurrency else None
        )

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before retry number ``attempt`` (0-indexed)."""
        delay = self.backoff_base * (self.backoff_factor**attempt)
        delay = min(delay, self.backoff_max)
        if self.jitter:
            delay = delay * (0.75 + random.random() * 0.5)
        return delay

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Await ``func(*args, **kwargs)`` under the retry and concurrency budget.

        Args:
            func: Coroutine function performing the request
            *args: Positional arguments for ``func``
            **kwargs: Keyword arguments for ``func``

        Returns:
            The result of the last attempt
        """
        if self._semaphore is None:
            return await self._call_with_retry(func, *args, **kwargs)
        async with self._semaphore:
            return await self._call_with_retry(func, *args, **kwargs)

    async def _call_with_retry(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        attempt = 0
        while True:
            try:
                result = await func(*args, **kwargs)
            except self.retryable_exceptions as e:
                if attempt >= self.max_retries:
                    raise
                reason = f"{type(e).__name__}: {e}"
            else:
                status = getattr(result, "status_code", None)
                if status not in self.retry_on_status or attempt >= self.max_retries:
                    return result
                reason = f"HTTP {status}"

            delay = self.get_delay(attempt)
            attempt += 1
            logger.warning(
                f"Retry {attempt}/{self.max_retries} after {reason}, waiting {delay:.2f}s"
            )
            await asyncio.sleep(delay)
