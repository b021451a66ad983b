from __future__ import annotations

import re
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sessionguard.logging import get_logger
from sessionguard.service.errors import CacheUnavailableError
from sessionguard.storage.models import Account


def _glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a Redis-style glob (``*``, ``?``, backslash escapes) to a regex."""
    parts: List[str] = []
    chars = iter(pattern)
    for ch in chars:
        if ch == "\\":
            parts.append(re.escape(next(chars, "\\")))
        elif ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.DOTALL)


class MemoryCache:
    """In-process stand-in for Redis used in tests and single-node development.

    Mirrors the Redis semantics the core relies on: lazy TTL expiry, ``TTL``
    returning -2 for missing keys and -1 for keys without expiry, and an
    increment that is atomic with its expiry refresh.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.RLock()
        self.logger = get_logger(__name__)

    def _live(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        with self._lock:
            expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
            self._data[key] = (str(value), expires_at)

    async def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._live(key) is not None:
                    del self._data[key]
                    removed += 1
        return removed

    async def keys_matching(self, pattern: str) -> List[str]:
        regex = _glob_to_regex(pattern)
        with self._lock:
            return [key for key in list(self._data) if regex.fullmatch(key) and self._live(key)]

    async def get_ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return -2
            _, expires_at = entry
            if expires_at is None:
                return -1
            # Redis rounds the remaining lifetime to whole seconds
            return max(0, round(expires_at - self._clock()))

    async def incr_with_expire(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            entry = self._live(key)
            try:
                current = int(entry[0]) if entry else 0
            except ValueError as exc:
                # Redis answers INCR on a non-integer with an error reply
                self.logger.error("memory_cache_incr_failed", key=key)
                raise CacheUnavailableError(
                    f"value at {key} is not an integer",
                    detail={"operation": "incr_with_expire"},
                ) from exc
            current += 1
            self._data[key] = (str(current), self._clock() + ttl_seconds)
            return current

    async def close(self) -> None:
        with self._lock:
            self._data.clear()


class MemoryAccountStore:
    """Minimal in-memory account lookup for tests and local development."""

    def __init__(self) -> None:
        self.accounts: Dict[str, Account] = {}
        self._lock = threading.RLock()
        self.logger = get_logger(__name__)

    def add_account(self, account: Account) -> Account:
        with self._lock:
            self.accounts[account.id] = account
        return account

    def create_account(self, username: str, *, is_active: bool = True) -> Account:
        return self.add_account(Account.new(username, is_active=is_active))

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return self.accounts.get(account_id)

    def soft_delete(self, account_id: str) -> bool:
        with self._lock:
            account = self.accounts.get(account_id)
            if account is None:
                return False
            account.deleted_at = datetime.now(timezone.utc)
            return True

    async def find_active_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            account = self.accounts.get(account_id)
            if account is None or not account.is_active or account.is_deleted:
                return None
            return account

    async def set_account_active(self, account_id: str, active: bool) -> None:
        with self._lock:
            account = self.accounts.get(account_id)
            if account is None:
                self.logger.warning("account_activation_unknown_id", account_id=account_id)
                return
            account.is_active = active
