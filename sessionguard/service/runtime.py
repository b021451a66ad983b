from __future__ import annotations

import asyncio
import threading
from typing import Optional, Set, Union
from urllib.parse import urlparse, urlunparse

from sessionguard.config import Settings, get_settings, reset_settings_cache
from sessionguard.logging import get_logger
from sessionguard.service.auth import AuthService
from sessionguard.service.brute_force import AccountStore, BruteForceGuard
from sessionguard.service.fingerprint import FingerprintDeriver
from sessionguard.service.session_cache import SessionCache
from sessionguard.service.tokens import TokenService
from sessionguard.storage.memory import MemoryAccountStore, MemoryCache
from sessionguard.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a connection URL so it can be logged.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    if parsed.username:
        netloc = f"{parsed.username}:***@{netloc}"
    else:
        netloc = f":***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Builds the process's service graph and owns the cache handle."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        accounts: Optional[AccountStore] = None,
        cache: Union[RedisCache, MemoryCache, None] = None,
    ) -> None:
        self.settings = settings or get_settings()
        use_memory = self.settings.use_memory_cache or self.settings.test_mode
        logger.info(
            "runtime_init_started",
            use_memory_cache=use_memory,
            test_mode=self.settings.test_mode,
        )

        if cache is not None:
            self.cache = cache
        elif use_memory:
            self.cache = MemoryCache()
        else:
            redis_cache = RedisCache(
                self.settings.redis_url, socket_timeout=self.settings.redis_socket_timeout
            )
            try:
                redis_cache.verify_connection()
            except Exception:
                logger.error(
                    "runtime_cache_unreachable",
                    redis_url=_mask_url_password(self.settings.redis_url),
                )
                raise
            self.cache = redis_cache

        self.accounts: AccountStore = accounts or MemoryAccountStore()
        self.tokens = TokenService.from_settings(self.settings)
        self.fingerprints = FingerprintDeriver()
        self.sessions = SessionCache(self.cache, self.tokens)
        self.guard = BruteForceGuard.from_settings(
            self.settings, self.cache, self.sessions, self.accounts
        )
        self.auth = AuthService.from_settings(
            self.settings,
            self.tokens,
            self.sessions,
            self.guard,
            self.accounts,
            fingerprints=self.fingerprints,
        )
        logger.info("runtime_init_completed", cache_type=type(self.cache).__name__)

    async def close(self) -> None:
        await self.cache.close()


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()
# Strong references to close tasks scheduled on a running loop until they finish
_pending_closes: Set["asyncio.Task[None]"] = set()


def get_runtime() -> Runtime:
    global runtime
    if runtime is None:
        with _runtime_lock:
            if runtime is None:
                runtime = Runtime()
    return runtime


def reset_runtime_for_tests() -> None:
    """Drop the runtime singleton and cached settings for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.cache, RedisCache):
            try:
                loop = asyncio.get_running_loop()
                task = loop.create_task(runtime.cache.close())
                _pending_closes.add(task)
                task.add_done_callback(_pending_closes.discard)
            except RuntimeError:
                asyncio.run(runtime.cache.close())
        runtime = None
        reset_settings_cache()
