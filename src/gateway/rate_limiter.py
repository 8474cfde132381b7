"""Fixed-window request counter shared across gateway replicas through Redis."""

import logging
from dataclasses import dataclass

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate_limit:"

# Errors that make the limiter allow the request instead of failing it
FAIL_OPEN_ERRORS = (RedisError, OSError, TimeoutError)


@dataclass(frozen=True)
class RateLimitStatus:
    count: int
    limit: int
    remaining: int
    reset_in_seconds: int


class RateLimiter:
    """``limit`` requests per ``window_seconds`` per key.

    The first request of a window creates the counter and sets its TTL, so the
    window restarts once the key expires. Counts are approximate across
    replicas and fail open when Redis is unreachable.
    """

    def __init__(self, redis_client: redis.Redis, limit: int, window_seconds: int):
        if limit < 1 or window_seconds < 1:
            raise ValueError("limit and window_seconds must be positive")
        self.redis = redis_client
        self.limit = limit
        self.window_seconds = window_seconds

    @staticmethod
    def _make_key(key: str) -> str:
        return f"{KEY_PREFIX}{key}"

    async def allow(self, key: str) -> bool:
        """Count one request for ``key``; False once the window's limit is exceeded."""
        redis_key = self._make_key(key)
        try:
            count = await self.redis.incr(redis_key)
            if count == 1:
                await self.redis.expire(redis_key, self.window_seconds)
            elif count > self.limit and await self.redis.ttl(redis_key) == -1:
                # Counter survived a failed EXPIRE; give it a window again
                await self.redis.expire(redis_key, self.window_seconds)
        except FAIL_OPEN_ERRORS as exc:
            logger.warning(f"Rate limiter unavailable, allowing request for {key}: {exc}")
            return True

        if count > self.limit:
            logger.debug(f"Rate limit exceeded for {key}: {count}/{self.limit}")
            return False
        return True

    async def status(self, key: str) -> RateLimitStatus:
        """Current usage of ``key`` without counting a request."""
        redis_key = self._make_key(key)
        raw = await self.redis.get(redis_key)
        count = int(raw) if raw is not None else 0
        ttl = await self.redis.ttl(redis_key) if raw is not None else -2
        return RateLimitStatus(
            count=count,
            limit=self.limit,
            remaining=max(self.limit - count, 0),
            reset_in_seconds=ttl if ttl > 0 else self.window_seconds,
        )

    async def reset(self, key: str) -> None:
        await self.redis.delete(self._make_key(key))


def create_redis_client(url: str, socket_timeout: float) -> redis.Redis:
    """Lazily connecting client; no I/O happens until the first command."""
    return redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )
