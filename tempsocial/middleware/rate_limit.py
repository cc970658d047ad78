"""Rate limiting middleware"""

import asyncio
import logging
import time
import uuid
from typing import Callable

import redis.asyncio as redis
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tempsocial.config import settings

logger = logging.getLogger(__name__)

# Paths with their own, tighter per-minute budget (each call sends an SMS)
SENSITIVE_PATHS = {
    "/api/auth/send-otp": 5,
    "/api/auth/verify-otp": 10,
}


class InMemoryRateLimiter:
    """Fixed-window limiter used when Redis is not reachable"""

    def __init__(self):
        # {key: (request_count, window_start)}
        self.windows: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def is_allowed(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
        """Returns (allowed, remaining, reset_time)"""
        async with self._lock:
            now = time.time()
            count, window_start = self.windows.get(key, (0, now))
            if now - window_start >= window_seconds:
                count, window_start = 0, now

            reset_time = int(window_start + window_seconds)
            if count >= limit:
                return False, 0, reset_time

            count += 1
            self.windows[key] = (count, window_start)
            return True, limit - count, reset_time


class RedisRateLimiter:
    """Sliding-window limiter shared by all workers"""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    async def is_allowed(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
        now = time.time()
        reset_time = int(now) + window_seconds

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(key, 0, now - window_seconds)
        pipe.zcard(key)
        pipe.zadd(key, {uuid.uuid4().hex: now})
        pipe.expire(key, window_seconds)
        results = await pipe.execute()

        current_requests = results[1]
        if current_requests >= limit:
            return False, 0, reset_time
        return True, limit - current_requests - 1, reset_time


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client rate limiting with Redis and in-memory fallback"""

    def __init__(
        self,
        app,
        requests_per_minute: int = 60,
        requests_per_hour: int = 1000,
        enable_rate_limiting: bool = True,
    ):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.requests_per_hour = requests_per_hour
        self.enable_rate_limiting = enable_rate_limiting
        self.redis_limiter: RedisRateLimiter | None = None
        self.memory_limiter = InMemoryRateLimiter()
        self._redis_setup_attempted = False

    async def _get_limiter(self) -> InMemoryRateLimiter | RedisRateLimiter:
        if not self._redis_setup_attempted:
            self._redis_setup_attempted = True
            if settings.redis_url:
                try:
                    redis_client = redis.from_url(str(settings.redis_url))
                    await redis_client.ping()
                    self.redis_limiter = RedisRateLimiter(redis_client)
                except Exception as e:
                    logger.warning(f"Redis unavailable for rate limiting, using memory: {e}")
        return self.redis_limiter or self.memory_limiter

    def _get_client_id(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if not self.enable_rate_limiting or path.startswith("/health"):
            return await call_next(request)

        limiter = await self._get_limiter()
        client_id = self._get_client_id(request)

        checks = [
            (f"rl:{client_id}:minute", self.requests_per_minute, 60),
            (f"rl:{client_id}:hour", self.requests_per_hour, 3600),
        ]
        if path in SENSITIVE_PATHS:
            checks.append((f"rl:{client_id}:{path}", SENSITIVE_PATHS[path], 60))

        remaining, reset_time = self.requests_per_hour, 0
        for key, limit, window in checks:
            allowed, left, reset = await limiter.is_allowed(key, limit, window)
            if not allowed:
                logger.warning(f"Rate limit exceeded for {client_id} on {path}")
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={"error": "Rate limit exceeded"},
                    headers={
                        "X-RateLimit-Remaining": "0",
                        "X-RateLimit-Reset": str(reset),
                        "Retry-After": str(max(0, reset - int(time.time()))),
                    },
                )
            remaining = min(remaining, left)
            reset_time = max(reset_time, reset)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit-Minute"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Limit-Hour"] = str(self.requests_per_hour)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_time)
        return response
