"""Redis-backed fixed-window rate limiter with in-memory fallback.

Client SDK endpoints are limited per ``(deploymentKey, clientUniqueId)``
rather than per IP: many devices share carrier NAT addresses.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict

import redis
from fastapi import HTTPException

from release_engine.config import settings

logger = logging.getLogger(__name__)

_REDIS_RETRY_SECONDS = 5
_RATE_LIMIT_KEY_PREFIX = "rate_limit"


class RateLimiter:
    """Fixed-window counter keyed by an arbitrary identity string."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        max_keys: int = 100_000,
        name: str | None = None,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self.name = name or f"limiter-{id(self)}"
        self._windows: OrderedDict[str, tuple[int, int]] = OrderedDict()
        self._lock = threading.Lock()
        self._redis_client: redis.Redis | None = None
        self._redis_retry_after = 0.0

    def _window(self, now: float) -> int:
        return int(now // self.window_seconds)

    def _redis_key(self, identity: str, window: int) -> str:
        return f"{_RATE_LIMIT_KEY_PREFIX}:{self.name}:{identity}:{window}"

    def _get_redis_client(self) -> redis.Redis | None:
        if not settings.redis_url:
            return None
        if self._redis_client is not None:
            return self._redis_client
        now = time.time()
        if now < self._redis_retry_after:
            return None
        try:
            client = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
            client.ping()
            self._redis_client = client
            return client
        except redis.RedisError:
            logger.warning("Redis unavailable for rate limiter %s, using in-memory window", self.name)
            self._redis_retry_after = now + _REDIS_RETRY_SECONDS
            return None

    def _redis_hit(self, identity: str) -> int | None:
        client = self._get_redis_client()
        if client is None:
            return None
        key = self._redis_key(identity, self._window(time.time()))
        try:
            pipe = client.pipeline()
            pipe.incr(key)
            pipe.expire(key, self.window_seconds)
            count, _ = pipe.execute()
            return int(count)
        except redis.RedisError:
            self._redis_retry_after = time.time() + _REDIS_RETRY_SECONDS
            self._redis_client = None
            return None

    def _memory_hit(self, identity: str) -> int:
        window = self._window(time.time())
        with self._lock:
            seen_window, count = self._windows.get(identity, (window, 0))
            if seen_window != window:
                count = 0
            count += 1
            self._windows[identity] = (window, count)
            self._windows.move_to_end(identity)
            while len(self._windows) > self.max_keys:
                self._windows.popitem(last=False)
        return count

    def check(self, *parts: str) -> None:
        """Raise 429 once ``parts`` has exceeded its allowance this window."""
        identity = ":".join(str(p) for p in parts)
        count = self._redis_hit(identity)
        if count is None:
            count = self._memory_hit(identity)
        if count > self.max_requests:
            raise HTTPException(
                status_code=429,
                detail="Too many requests. Please try again later.",
                headers={"Retry-After": str(self.window_seconds)},
            )

    def reset(self) -> None:
        """Clear local fallback state and Redis keys for this limiter."""
        with self._lock:
            self._windows.clear()
        client = self._get_redis_client()
        if client is None:
            return
        try:
            keys = list(client.scan_iter(match=f"{_RATE_LIMIT_KEY_PREFIX}:{self.name}:*"))
            if keys:
                client.delete(*keys)
        except redis.RedisError:
            self._redis_retry_after = time.time() + _REDIS_RETRY_SECONDS
            self._redis_client = None


update_check_limiter = RateLimiter(
    max_requests=settings.update_check_rate_limit,
    window_seconds=settings.rate_limit_window_seconds,
    name="update-check",
)
report_status_limiter = RateLimiter(
    max_requests=settings.report_status_rate_limit,
    window_seconds=settings.rate_limit_window_seconds,
    name="report-status",
)
