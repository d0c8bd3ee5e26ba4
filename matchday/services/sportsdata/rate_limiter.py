"""Rate limiter for sports data API requests.

Token bucket kept in Redis so every scheduler process shares one budget.
Default: 3 requests/second with a burst of 5.
"""

import asyncio
import time

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)

# KEYS[1] bucket key; ARGV rate, burst, now, refill_interval
# Returns {acquired, wait_seconds}
TOKEN_BUCKET_SCRIPT = """
local key = KEYS[1]
local rate = tonumber(ARGV[1])
local burst = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local refill_interval = tonumber(ARGV[4])

local state = redis.call('HMGET', key, 'tokens', 'last_update')
local tokens = tonumber(state[1]) or burst
local last_update = tonumber(state[2]) or now

local elapsed = math.max(0, now - last_update)
tokens = math.min(burst, tokens + elapsed * rate)

if tokens >= 1 then
    tokens = tokens - 1
    redis.call('HSET', key, 'tokens', tokens, 'last_update', now)
    redis.call('EXPIRE', key, 60)
    return {1, '0'}
end

local wait_time = (1 - tokens) * refill_interval
return {0, tostring(wait_time)}
"""


class SportsDataRateLimiter:
    """Distributed token bucket shared by every client instance."""

    def __init__(
        self,
        redis_client: redis.Redis,
        rate: float = 3.0,
        burst: int = 5,
        key_prefix: str = "ratelimit:sportsdata",
        max_wait: float = 10.0,
    ):
        self.redis = redis_client
        self.rate = rate
        self.burst = burst
        self.key_prefix = key_prefix
        self.max_wait = max_wait
        self.refill_interval = 1.0 / rate

    def _get_key(self, endpoint: str) -> str:
        return f"{self.key_prefix}:{endpoint}"

    async def acquire(self, endpoint: str = "default") -> tuple[bool, float]:
        """
        Try to take a token.

        Returns:
            ``(acquired, wait_seconds)``; the wait is how long until the next
            token is due when nothing was acquired
        """
        try:
            acquired, wait_time = await self.redis.eval(
                TOKEN_BUCKET_SCRIPT,
                1,
                self._get_key(endpoint),
                str(self.rate),
                str(self.burst),
                str(time.time()),
                str(self.refill_interval),
            )
        except redis.RedisError as e:
            # Fail open, the upstream 429 handling still applies
            logger.error("rate_limiter_error", error=str(e), endpoint=endpoint)
            return True, 0.0

        return int(acquired) == 1, float(wait_time)

    async def wait_if_needed(self, endpoint: str = "default") -> None:
        """Block until a token is available, up to ``max_wait`` seconds."""
        total_wait = 0.0

        while True:
            acquired, wait_time = await self.acquire(endpoint)
            if acquired:
                return
            if total_wait >= self.max_wait:
                logger.warning(
                    "rate_limiter_max_wait_exceeded",
                    endpoint=endpoint,
                    total_wait=round(total_wait, 2),
                )
                return
            delay = min(max(wait_time, 0.05), self.max_wait - total_wait)
            logger.debug("rate_limited", endpoint=endpoint, wait_time=round(delay, 3))
            await asyncio.sleep(delay)
            total_wait += delay
