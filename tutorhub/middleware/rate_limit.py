from __future__ import annotations

import hashlib
import logging
import time
from typing import Awaitable, Callable

from fastapi import Request
from fastapi.responses import ORJSONResponse
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from tutorhub.core.config import settings
from tutorhub.db.redis import redis_client

logger = logging.getLogger(__name__)


class RedisRateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit_per_minute: int | None = None):
        super().__init__(app)
        self.limit_per_minute = limit_per_minute or settings.rate_limit_per_minute

    @staticmethod
    def _resolve_subject(request: Request) -> str:
        """Per profile when the gateway identifies one, else per token, else per client IP."""
        profile_id = (request.headers.get("x-profile-id") or "").strip()
        if profile_id:
            return f"profile:{profile_id}"

        auth = (request.headers.get("authorization") or "").strip()
        if auth.lower().startswith("bearer "):
            token = auth[7:].strip()
            if token:
                return f"jwt:{hashlib.sha256(token.encode('utf-8')).hexdigest()[:24]}"

        forwarded = (request.headers.get("x-forwarded-for") or "").strip()
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"

        ip = request.client.host if request.client else "unknown"
        return f"ip:{ip}"

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable]):
        path = request.url.path
        # Payment webhooks are signed and retried by the provider.
        if path.startswith("/health") or path.startswith("/metrics") or "/webhooks/" in path:
            return await call_next(request)

        subject = self._resolve_subject(request)
        minute_bucket = int(time.time() // 60)
        key = f"tutorhub:rl:{subject}:{minute_bucket}"

        try:
            count = await redis_client.incr(key)
            if count == 1:
                await redis_client.expire(key, 65)
            if count > self.limit_per_minute:
                return ORJSONResponse(
                    status_code=429,
                    content={"detail": "Rate limit exceeded", "code": "RATE_LIMITED"},
                    headers={"Retry-After": "60"},
                )
        except (RedisError, OSError):
            # Fail-open when Redis is unavailable.
            logger.debug("Rate limiter unavailable, letting request through", exc_info=True)

        return await call_next(request)
