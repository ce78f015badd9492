"""Leaky-bucket rate limiting for the unauthenticated auth endpoints.

Each client IP owns one Redis hash ``{level, updated}``.  Every request pours
one unit into the bucket; the bucket drains at ``RPM / 60`` units per second
and holds at most ``BURST`` units.  A request that would overflow it gets a
429.  If Redis cannot be reached the request is let through.
"""

import logging
import time
from dataclasses import dataclass

import redis
from fastapi import HTTPException, Request, status

from examily.config import settings

logger = logging.getLogger(__name__)

# KEYS[1] bucket  ARGV: capacity, drain per second, now, ttl
_POUR = """
local capacity = tonumber(ARGV[1])
local drain    = tonumber(ARGV[2])
local now      = tonumber(ARGV[3])

local level   = tonumber(redis.call('HGET', KEYS[1], 'level') or '0')
local updated = tonumber(redis.call('HGET', KEYS[1], 'updated') or ARGV[3])
level = math.max(0, level - math.max(0, now - updated) * drain)

local ok = 0
if level + 1 <= capacity then
    level = level + 1
    ok = 1
end
redis.call('HSET', KEYS[1], 'level', level, 'updated', now)
redis.call('EXPIRE', KEYS[1], tonumber(ARGV[4]))
return ok
"""

_client: redis.Redis | None = None


def _redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=10,
            socket_connect_timeout=0.5,
        )
    return _client


@dataclass(frozen=True)
class LeakyBucket:
    scope: str
    per_minute: int
    burst: int
    ttl_seconds: int = 300

    def key(self, client: str) -> str:
        return f"rl:{self.scope}:{client}"

    def pour(self, client: str) -> bool:
        """Return True if the request fits in the bucket."""
        if self.per_minute <= 0:
            return True
        try:
            script = _redis().register_script(_POUR)
            allowed = script(
                keys=[self.key(client)],
                args=[self.burst, self.per_minute / 60.0, time.time(), self.ttl_seconds],
            )
        except redis.RedisError as exc:
            logger.warning("Rate limiter unavailable, allowing %s: %s", client, exc)
            return True
        return bool(allowed)


def auth_bucket() -> LeakyBucket:
    return LeakyBucket(
        scope="auth",
        per_minute=settings.RATE_LIMIT_AUTH_RPM,
        burst=settings.RATE_LIMIT_AUTH_BURST,
    )


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def require_auth_rate_limit(request: Request) -> None:
    """FastAPI dependency for login / register; 429 when the bucket is full."""
    ip = client_ip(request)
    if not auth_bucket().pour(ip):
        logger.info("Rate-limited auth request from %s", ip)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many attempts, please wait a minute and try again",
        )
