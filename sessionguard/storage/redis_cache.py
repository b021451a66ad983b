from __future__ import annotations

import contextlib
from typing import AsyncIterator, List, Optional, Protocol

import redis.asyncio as aioredis
from redis import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from sessionguard.logging import get_logger
from sessionguard.service.errors import CacheUnavailableError

logger = get_logger(__name__)


class KeyValueCache(Protocol):
    """Primitives the security core needs from the shared key/value store."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def keys_matching(self, pattern: str) -> List[str]: ...

    async def get_ttl(self, key: str) -> int: ...

    async def incr_with_expire(self, key: str, ttl_seconds: int) -> int: ...


def escape_pattern(value: str) -> str:
    """Escape glob metacharacters so ``value`` matches itself in a key pattern."""
    return "".join(f"\\{ch}" if ch in "*?[]\\" else ch for ch in value)


class RedisCache:
    """Thin Redis wrapper for session records and brute-force counters.

    Every redis-py failure is converted to :class:`CacheUnavailableError` so
    callers fail closed instead of treating an outage as a cache miss.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0
    # Connection attempts before the client gives up on a command
    MAX_RETRIES = 3

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            retry=Retry(ExponentialBackoff(cap=1.0, base=0.1), self.MAX_RETRIES),
            retry_on_error=[RedisConnectionError, RedisTimeoutError],
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # Use a short-lived synchronous client to avoid binding the async client to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        except RedisError as exc:
            raise CacheUnavailableError(f"Redis ping failed: {exc}") from exc
        finally:
            sync_client.close()

    @contextlib.asynccontextmanager
    async def _guard(self, operation: str, key: Optional[str] = None) -> AsyncIterator[None]:
        try:
            yield
        except RedisError as exc:
            logger.error(
                "redis_operation_failed",
                operation=operation,
                key=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise CacheUnavailableError(
                f"Redis {operation} failed", detail={"operation": operation}
            ) from exc

    async def get(self, key: str) -> Optional[str]:
        async with self._guard("get", key):
            return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Store ``value``; ``ttl_seconds=None`` keeps the key until deleted."""
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        async with self._guard("set", key):
            if ttl_seconds is not None:
                await self.client.set(key, value, ex=ttl_seconds)
            else:
                await self.client.set(key, value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        async with self._guard("delete", keys[0]):
            return int(await self.client.delete(*keys))

    async def keys_matching(self, pattern: str) -> List[str]:
        """Collect keys via SCAN so large keyspaces never block the server."""
        async with self._guard("scan", pattern):
            return [key async for key in self.client.scan_iter(match=pattern, count=100)]

    async def get_ttl(self, key: str) -> int:
        async with self._guard("ttl", key):
            return int(await self.client.ttl(key))

    async def incr_with_expire(self, key: str, ttl_seconds: int) -> int:
        """Increment ``key`` and (re)set its TTL in one MULTI/EXEC transaction.

        Returns the post-increment value, so concurrent callers each observe a
        distinct count.
        """
        async with self._guard("incr_with_expire", key):
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, ttl_seconds)
            results = await pipe.execute()
        if not results:
            raise CacheUnavailableError(
                "Transaction to record counter increment returned no result",
                detail={"operation": "incr_with_expire"},
            )
        return int(results[0])

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()
