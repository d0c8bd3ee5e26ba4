"""Unit tests for the shared sports data rate limiter."""

import pytest
import redis.asyncio as redis

from matchday.services.sportsdata import SportsDataRateLimiter


class FakeRedis:
    """Returns scripted token bucket answers."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.calls = []

    async def eval(self, script, numkeys, *args):
        self.calls.append(args)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


class TestSportsDataRateLimiter:
    @pytest.mark.asyncio
    async def test_acquire(self):
        limiter = SportsDataRateLimiter(FakeRedis([[1, "0"], [0, "0.25"]]))

        assert await limiter.acquire("fixtures") == (True, 0.0)
        assert await limiter.acquire("fixtures") == (False, 0.25)

    @pytest.mark.asyncio
    async def test_bucket_key_per_endpoint(self):
        fake = FakeRedis([[1, "0"]])
        limiter = SportsDataRateLimiter(fake, key_prefix="rl")

        await limiter.acquire("fixtures")

        assert fake.calls[0][0] == "rl:fixtures"

    @pytest.mark.asyncio
    async def test_redis_failure_fails_open(self):
        limiter = SportsDataRateLimiter(FakeRedis([redis.ConnectionError("down")]))

        assert await limiter.acquire() == (True, 0.0)

    @pytest.mark.asyncio
    async def test_wait_if_needed_retries_until_token(self):
        fake = FakeRedis([[0, "0.01"], [0, "0.01"], [1, "0"]])
        limiter = SportsDataRateLimiter(fake, max_wait=1.0)

        await limiter.wait_if_needed("fixtures")

        assert len(fake.calls) == 3

    @pytest.mark.asyncio
    async def test_wait_if_needed_gives_up_after_max_wait(self):
        fake = FakeRedis([[0, "5"]] * 10)
        limiter = SportsDataRateLimiter(fake, max_wait=0.1)

        await limiter.wait_if_needed("fixtures")

        assert len(fake.calls) == 2
