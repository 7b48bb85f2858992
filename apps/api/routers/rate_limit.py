"""Per-caller request quotas, counted in Redis with an in-process fallback."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Callable, Dict

from fastapi import HTTPException, Request
import redis.asyncio as redis
from redis.exceptions import RedisError

from config import settings

logger = logging.getLogger(__name__)

_local_counters: Dict[str, int] = {}
_local_lock = asyncio.Lock()


def _caller_identity(request: Request) -> str:
    """Bearer token digest when present, so quotas follow the account rather than the IP."""
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        digest = hashlib.sha256(authorization[7:].strip().encode("utf-8")).hexdigest()
        return f"token:{digest[:32]}"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return "ip:unknown"


async def _count_locally(key: str) -> int:
    async with _local_lock:
        _local_counters[key] = _local_counters.get(key, 0) + 1
        # Windowed keys never repeat, so drop counters from earlier windows.
        window = key.rsplit(":", 1)[-1]
        for stale in [k for k in _local_counters if k.rsplit(":", 1)[-1] < window]:
            _local_counters.pop(stale, None)
        return _local_counters[key]


async def _count_in_redis(key: str, window_seconds: int) -> int:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, window_seconds)
            count, _ = await pipe.execute()
    finally:
        await client.aclose()
    return int(count)


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[[Request], None]:
    """Return a FastAPI dependency allowing ``limit`` calls per caller per fixed window."""

    async def _dependency(request: Request):
        if not settings.RATE_LIMITS_ENABLED or getattr(request.app.state, "disable_rate_limits", False):
            return

        window = int(time.time() // window_seconds)
        key = f"storywork:rate:{prefix}:{_caller_identity(request)}:{window:012d}"
        try:
            count = await _count_in_redis(key, window_seconds)
        except (RedisError, OSError) as exc:
            logger.debug("Redis unavailable for rate limiting, counting in process: %s", exc)
            count = await _count_locally(key)

        if count > limit:
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded for {prefix}. Try again later.",
            )

    return _dependency
