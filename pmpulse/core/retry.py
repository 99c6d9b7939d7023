import asyncio
import random
import logging
from collections import deque
from typing import Awaitable, Callable, Any, Optional
import time

from pmpulse.core.error_handler import PermanentApiError, TransientApiError

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior"""
    def __init__(
        self,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_retries=settings.MAX_RETRIES,
            base_delay=settings.INITIAL_BACKOFF_SECONDS,
            max_delay=settings.MAX_BACKOFF_SECONDS,
            exponential_base=settings.BACKOFF_MULTIPLIER,
        )


class SlidingWindowRateLimiter:
    """
    Request budget over a rolling window (default 60 requests per 60 seconds).

    acquire() waits until the window has room; remaining_attempts() and
    wait_time() only inspect the budget.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    def remaining_attempts(self) -> int:
        """Current budget, without consuming a request"""
        self._prune(self._clock())
        return max(self.max_requests - len(self._timestamps), 0)

    def wait_time(self) -> float:
        """Seconds until one more request fits in the window"""
        now = self._clock()
        self._prune(now)
        if len(self._timestamps) < self.max_requests:
            return 0.0
        return max(self.window_seconds - (now - self._timestamps[0]), 0.0)

    async def acquire(self) -> float:
        """Acquire permission to make a request, returns the seconds spent waiting"""
        waited = 0.0
        async with self._lock:
            delay = self.wait_time()
            while delay > 0:
                logger.debug(f"Rate limiting: sleeping for {delay:.2f} seconds")
                await self._sleep(delay)
                waited += delay
                delay = self.wait_time()
            self._timestamps.append(self._clock())
        return waited


def calculate_delay(attempt: int, config: RetryConfig, retry_after: Optional[float] = None) -> float:
    """Calculate delay for exponential backoff with jitter (attempt is zero-based)"""
    if retry_after is not None:
        return min(float(retry_after), config.max_delay)

    delay = config.base_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay += random.uniform(0, delay * 0.1)  # 10% jitter

    return delay


async def call_with_retry(
    func: Callable[..., Awaitable[Any]],
    *args,
    config: RetryConfig,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    operation: Optional[str] = None,
    **kwargs
) -> Any:
    """
    Run func, retrying TransientApiError with exponential backoff.

    PermanentApiError propagates immediately; running out of retries turns the
    last transient error into a PermanentApiError.
    """
    name = operation or getattr(func, "__name__", "request")
    last_exception: Optional[TransientApiError] = None

    for attempt in range(config.max_retries + 1):
        try:
            if rate_limiter:
                await rate_limiter.acquire()

            result = await func(*args, **kwargs)

            if attempt > 0:
                logger.info(f"{name} succeeded on attempt {attempt + 1}")
            return result

        except PermanentApiError:
            raise

        except TransientApiError as e:
            last_exception = e

            if attempt == config.max_retries:
                logger.error(f"{name} failed after {config.max_retries + 1} attempts: {str(e)}")
                break

            delay = calculate_delay(attempt, config, e.retry_after)
            logger.warning(f"{name} failed on attempt {attempt + 1}: {str(e)}. Retrying in {delay:.2f} seconds...")
            await sleep(delay)

    raise PermanentApiError(
        f"Request failed after {config.max_retries} retries: {last_exception}",
        status_code=getattr(last_exception, "status_code", None),
    ) from last_exception

