"""
Retry with exponential backoff for coroutine functions.

Only the wrapped call is repeated. Anything the caller did before the call
is not replayed.
"""
import asyncio
import logging
import random
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryWithBackoff:
    """
    Retry decorator with exponential backoff.

    Usage:
        @RetryWithBackoff(max_retries=2, exceptions=(ReasonerTimeout,))
        async def flaky_call():
            ...
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        exceptions: tuple = (Exception,),
        retry_if: Optional[Callable[[BaseException], bool]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            max_retries: Retries after the first attempt
            base_delay: Delay before the first retry (seconds)
            max_delay: Upper bound on any single delay (seconds)
            exponential_base: Multiplier per attempt
            jitter: Add up to 25% random jitter
            exceptions: Exception types eligible for retry
            retry_if: Extra predicate on a caught exception; False re-raises
            sleep: Awaitable sleep, injectable for tests
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.exceptions = exceptions
        self.retry_if = retry_if
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def _calculate_delay(self, attempt: int) -> float:
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)
        if self.jitter:
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)
        return max(0.0, delay)

    async def run(self, func: Callable[[], Awaitable[T]], name: str = "call") -> T:
        last_exception: Optional[BaseException] = None

        for attempt in range(self.max_attempts):
            try:
                return await func()
            except self.exceptions as e:
                if self.retry_if is not None and not self.retry_if(e):
                    raise
                last_exception = e
                if attempt < self.max_retries:
                    delay = self._calculate_delay(attempt)
                    logger.warning(
                        f"{name} failed (attempt {attempt + 1}/{self.max_attempts}): "
                        f"{e}. Retrying in {delay:.1f}s..."
                    )
                    await self._sleep(delay)
                else:
                    logger.error(f"{name} failed after {self.max_attempts} attempts: {e}")

        raise last_exception

    def __call__(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await self.run(lambda: func(*args, **kwargs), name=func.__name__)
        return wrapper
