"""
Retry and Rate Limiting

Reusable wrappers for external calls: a bounded retry policy with
exponential backoff, and a minimum-interval rate limiter. Both take
injectable sleep/clock callables so tests can drive them with a fake clock.
"""
import asyncio
import functools
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
import openai

from litbrief.core.exceptions import (
    SourceHTTPError,
    SourceRateLimitError,
    SourceTimeoutError,
)
from litbrief.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]
ClockFunc = Callable[[], float]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry policy.
    
    Attributes:
        max_attempts: Total attempts including the first call
        base_delay: Delay before the first retry, doubled on each further retry
        timeout: Per-attempt timeout in seconds (None disables it)
    """
    max_attempts: int = 4
    base_delay: float = 1.0
    timeout: Optional[float] = 30.0
    
    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given (1-indexed) failed attempt."""
        return self.base_delay * (2 ** (attempt - 1))
    
    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            timeout=settings.request_timeout_seconds,
        )


_TRANSIENT_TYPES = (
    SourceTimeoutError,
    SourceRateLimitError,
    httpx.TransportError,
    asyncio.TimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def is_transient_error(error: BaseException) -> bool:
    """Whether an error is worth retrying (network, timeout, 429 and 5xx)."""
    if isinstance(error, _TRANSIENT_TYPES):
        return True
    
    if isinstance(error, SourceHTTPError):
        return error.status_code == 429 or error.status_code >= 500
    
    if isinstance(error, sqlite3.OperationalError):
        message = str(error).lower()
        return "locked" in message or "busy" in message
    
    return False


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    sleep: SleepFunc = asyncio.sleep,
    is_transient: Callable[[BaseException], bool] = is_transient_error,
    label: str = "",
    **kwargs: Any,
) -> T:
    """
    Await func(*args, **kwargs), retrying transient failures.
    
    Permanent errors are raised immediately; the last transient error is
    raised once policy.max_attempts is exhausted.
    """
    policy = policy or RetryPolicy()
    label = label or getattr(func, "__name__", "call")
    
    for attempt in range(1, policy.max_attempts + 1):
        try:
            if policy.timeout is not None:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=policy.timeout)
            return await func(*args, **kwargs)
        except Exception as e:
            if not is_transient(e):
                raise
            
            if attempt >= policy.max_attempts:
                logger.warning(f"{label}: giving up after {attempt} attempts: {e!r}")
                raise
            
            delay = policy.delay_for(attempt)
            logger.info(
                f"{label}: transient error on attempt {attempt}/{policy.max_attempts}, "
                f"retrying in {delay}s: {e!r}"
            )
            await sleep(delay)
    
    raise RuntimeError("unreachable")


def with_retry(
    policy: Optional[RetryPolicy] = None,
    sleep: SleepFunc = asyncio.sleep,
    is_transient: Callable[[BaseException], bool] = is_transient_error,
):
    """
    Decorator form of call_with_retry for coroutine functions.
    
    Example:
        @with_retry(RetryPolicy(max_attempts=3, base_delay=0.5))
        async def fetch(url): ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await call_with_retry(
                func, *args,
                policy=policy,
                sleep=sleep,
                is_transient=is_transient,
                label=func.__name__,
                **kwargs,
            )
        return wrapper
    return decorator


class RateLimiter:
    """
    Enforces a minimum interval between consecutive dispatches.
    
    Each acquire() returns no earlier than min_interval seconds after the
    previous acquire() returned, measured on the injected monotonic clock.
    Concurrent callers are serialized, so the guarantee holds across tasks
    sharing one limiter.
    """
    
    def __init__(
        self,
        min_interval: float,
        clock: ClockFunc = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_dispatch: Optional[float] = None
        self._lock = asyncio.Lock()
    
    async def acquire(self) -> float:
        """Wait until a dispatch is allowed; returns the dispatch timestamp."""
        async with self._lock:
            if self._last_dispatch is not None:
                wait = self.min_interval - (self._clock() - self._last_dispatch)
                if wait > 0:
                    logger.debug(f"Rate limit: waiting {wait:.2f}s before next dispatch")
                    await self._sleep(wait)
            self._last_dispatch = self._clock()
            return self._last_dispatch
    
    def limit(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Wrap a coroutine function so every call first acquires the limiter."""
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            await self.acquire()
            return await func(*args, **kwargs)
        return wrapper
