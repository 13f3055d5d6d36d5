"""Per-client request limits for the API.

Limits are shared across workers through a Redis sorted set when Redis is
reachable; otherwise each process keeps its own token buckets.
"""
import time
from dataclasses import dataclass

from fastapi import Request, status
from fastapi.responses import JSONResponse
import redis
import structlog

from trust_analytics.core.config import settings

logger = structlog.get_logger()

_EXEMPT_PATHS = {"/health", "/"}


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int


class RequestRateLimiter:
    """Allows ``rate`` requests per ``period`` seconds for each client key"""

    def __init__(self, rate: int, period: int, redis_url: str | None = None, clock=time.time):
        self.rate = rate
        self.period = period
        self.clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._redis = None

        if redis_url:
            try:
                client = redis.from_url(redis_url, decode_responses=False)
                client.ping()
            except (redis.RedisError, ValueError) as e:
                logger.warning("rate_limit_redis_unavailable", error=str(e))
            else:
                self._redis = client
                logger.info("rate_limit_backend", backend="redis")

    @property
    def use_redis(self) -> bool:
        return self._redis is not None

    def check(self, key: str) -> RateDecision:
        """Consume one request for ``key`` if its budget allows it"""
        if self.use_redis:
            return self._check_redis(key)
        return self._check_memory(key)

    def _check_redis(self, key: str) -> RateDecision:
        # Sliding window: one sorted-set member per request, scored by time
        window_key = f"rate_limit:{key}"
        now = self.clock()

        pipe = self._redis.pipeline()
        pipe.zremrangebyscore(window_key, 0, now - self.period)
        pipe.zcard(window_key)
        pipe.zadd(window_key, {str(now): now})
        pipe.expire(window_key, self.period)
        _, seen, _, _ = pipe.execute()

        allowed = seen < self.rate
        used = seen + 1 if allowed else seen
        return RateDecision(allowed, max(0, self.rate - used))

    def _check_memory(self, key: str) -> RateDecision:
        now = self.clock()
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = _Bucket(tokens=float(self.rate), updated_at=now)

        elapsed = now - bucket.updated_at
        bucket.tokens = min(float(self.rate), bucket.tokens + elapsed * self.rate / self.period)
        bucket.updated_at = now

        if bucket.tokens < 1:
            return RateDecision(False, 0)
        bucket.tokens -= 1
        return RateDecision(True, int(bucket.tokens))

    def get_remaining(self, key: str) -> int:
        """Requests left for ``key`` without consuming one"""
        if self.use_redis:
            now = self.clock()
            used = self._redis.zcount(f"rate_limit:{key}", now - self.period, now)
            return max(0, self.rate - used)

        bucket = self._buckets.get(key)
        return self.rate if bucket is None else int(bucket.tokens)

    def headers(self, remaining: int) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.rate),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(self.period),
        }


_limiter: RequestRateLimiter | None = None


def get_rate_limiter() -> RequestRateLimiter:
    """Process-wide limiter, connected on first use"""
    global _limiter
    if _limiter is None:
        _limiter = RequestRateLimiter(
            rate=settings.rate_limit_requests,
            period=settings.rate_limit_period,
            redis_url=settings.redis_url
        )
    return _limiter


def rate_limit_key(request: Request) -> str:
    """Holders of the configured API key share one budget; others are keyed by IP"""
    presented = request.headers.get("X-API-Key")
    if settings.api_key and presented == settings.api_key:
        return f"api_key:{presented}"
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


async def rate_limit_middleware(request: Request, call_next):
    if request.url.path in _EXEMPT_PATHS:
        return await call_next(request)

    limiter = get_rate_limiter()
    key = rate_limit_key(request)
    decision = limiter.check(key)

    if not decision.allowed:
        logger.warning("rate_limit_exceeded", key=key, path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Too many requests", "retry_after": limiter.period},
            headers={**limiter.headers(0), "Retry-After": str(limiter.period)}
        )

    response = await call_next(request)
    response.headers.update(limiter.headers(decision.remaining))
    return response
