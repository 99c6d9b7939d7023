import asyncio

import pytest

from pmpulse.core.error_handler import PermanentApiError, TransientApiError
from pmpulse.core.retry import RetryConfig, SlidingWindowRateLimiter, calculate_delay, call_with_retry


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_limiter(clock, max_requests=3, window_seconds=60.0):
    async def advance(delay):
        clock.now += delay

    return SlidingWindowRateLimiter(max_requests, window_seconds, clock=clock, sleep=advance)


def test_rate_limiter_budget_shrinks_and_recovers():
    clock = FakeClock()
    limiter = make_limiter(clock)

    assert limiter.remaining_attempts() == 3
    asyncio.run(limiter.acquire())
    asyncio.run(limiter.acquire())
    assert limiter.remaining_attempts() == 1

    clock.now += 60
    assert limiter.remaining_attempts() == 3


def test_rate_limiter_waits_until_window_has_room():
    clock = FakeClock()
    limiter = make_limiter(clock)

    for _ in range(3):
        asyncio.run(limiter.acquire())
        clock.now += 10

    # Oldest request is 30s old, so the 4th call waits out the remaining 30s
    assert limiter.wait_time() == pytest.approx(30.0)
    waited = asyncio.run(limiter.acquire())
    assert waited == pytest.approx(30.0)
    assert limiter.remaining_attempts() == 0


def test_remaining_attempts_does_not_consume_budget():
    limiter = make_limiter(FakeClock(), max_requests=1)
    for _ in range(5):
        assert limiter.remaining_attempts() == 1


def test_calculate_delay_exponential_and_capped():
    config = RetryConfig(base_delay=1.0, max_delay=10.0, exponential_base=2.0, jitter=False)

    assert [calculate_delay(n, config) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]


def test_calculate_delay_prefers_retry_after():
    config = RetryConfig(base_delay=1.0, max_delay=60.0, jitter=False)

    assert calculate_delay(0, config, retry_after=12) == 12.0
    assert calculate_delay(0, config, retry_after=600) == 60.0


def test_calculate_delay_jitter_is_bounded():
    config = RetryConfig(base_delay=4.0, jitter=True)
    for _ in range(20):
        delay = calculate_delay(0, config)
        assert 4.0 <= delay <= 4.4


def test_call_with_retry_recovers_from_transient_errors(fake_sleep):
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) <= 3:
            raise TransientApiError("server error", status_code=503)
        return {"ok": True}

    config = RetryConfig(max_retries=5, base_delay=1.0, jitter=False)
    result = asyncio.run(call_with_retry(flaky, config=config, sleep=fake_sleep))

    assert result == {"ok": True}
    assert len(attempts) == 4
    assert fake_sleep.delays == [1.0, 2.0, 4.0]


def test_call_with_retry_does_not_retry_permanent_errors(fake_sleep):
    attempts = []

    async def rejected():
        attempts.append(1)
        raise PermanentApiError("bad request", status_code=400)

    with pytest.raises(PermanentApiError):
        asyncio.run(call_with_retry(rejected, config=RetryConfig(jitter=False), sleep=fake_sleep))

    assert len(attempts) == 1
    assert fake_sleep.delays == []


def test_call_with_retry_exhaustion_becomes_permanent(fake_sleep):
    attempts = []

    async def always_down():
        attempts.append(1)
        raise TransientApiError("unavailable", status_code=503)

    config = RetryConfig(max_retries=2, base_delay=1.0, jitter=False)
    with pytest.raises(PermanentApiError) as exc_info:
        asyncio.run(call_with_retry(always_down, config=config, sleep=fake_sleep))

    assert len(attempts) == 3
    assert exc_info.value.status_code == 503
    assert "after 2 retries" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, TransientApiError)


def test_call_with_retry_consumes_rate_limit_per_attempt(fake_sleep):
    limiter = make_limiter(FakeClock(), max_requests=10)
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise TransientApiError("rate limited", status_code=429, retry_after=5)
        return "done"

    config = RetryConfig(jitter=False)
    assert asyncio.run(call_with_retry(flaky, config=config, rate_limiter=limiter, sleep=fake_sleep)) == "done"
    assert limiter.remaining_attempts() == 8
    assert fake_sleep.delays == [5.0]
