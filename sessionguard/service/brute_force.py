from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from sessionguard.config import Settings
from sessionguard.logging import get_logger
from sessionguard.service.errors import AccountDisabledError, RateLimitedError
from sessionguard.service.session_cache import AuthValueCategory, SessionCache
from sessionguard.storage.models import Account
from sessionguard.storage.redis_cache import KeyValueCache

logger = get_logger(__name__)

DEFAULT_MAX_FAILURES = 6
DEFAULT_BASE_COOLDOWN_SECONDS = 30
DEFAULT_COOLDOWN_EXPONENT_CAP = 5
# Longest cooldown plus a five minute buffer
DEFAULT_FAILURE_WINDOW_SECONDS = DEFAULT_BASE_COOLDOWN_SECONDS * 2**DEFAULT_COOLDOWN_EXPONENT_CAP + 300


class AccountStore(Protocol):
    async def find_active_account(self, account_id: str) -> Optional[Account]: ...

    async def set_account_active(self, account_id: str, active: bool) -> None: ...


@dataclass
class GuardState:
    in_cooldown: bool
    cooldown_expires_in: Optional[int]
    failure_count: int
    remaining_attempts: int
    is_disabled: bool


class BruteForceGuard:
    """Per-subject lockout with exponential backoff and permanent disablement.

    State lives entirely in the shared cache under three keys per subject:
    a failure counter (expires after the failure window), a cooldown flag
    (expires after the backoff duration) and a disabled flag (never expires).
    The guard holds no mutable state of its own, so any number of workers
    can share one cache.
    """

    def __init__(
        self,
        cache: KeyValueCache,
        sessions: SessionCache,
        accounts: AccountStore,
        *,
        max_failures: int = DEFAULT_MAX_FAILURES,
        base_cooldown_seconds: int = DEFAULT_BASE_COOLDOWN_SECONDS,
        cooldown_exponent_cap: int = DEFAULT_COOLDOWN_EXPONENT_CAP,
        failure_window_seconds: int = DEFAULT_FAILURE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache
        self.sessions = sessions
        self.accounts = accounts
        self.max_failures = max_failures
        self.base_cooldown_seconds = base_cooldown_seconds
        self.cooldown_exponent_cap = cooldown_exponent_cap
        self.failure_window_seconds = failure_window_seconds
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: KeyValueCache,
        sessions: SessionCache,
        accounts: AccountStore,
        **kwargs,
    ) -> "BruteForceGuard":
        return cls(
            cache,
            sessions,
            accounts,
            max_failures=settings.bfp_max_failures,
            base_cooldown_seconds=settings.bfp_base_cooldown_seconds,
            cooldown_exponent_cap=settings.bfp_cooldown_exponent_cap,
            failure_window_seconds=settings.bfp_failure_window_seconds,
            **kwargs,
        )

    @staticmethod
    def fail_key(subject_id: str) -> str:
        return f"bfp:{subject_id}:fails"

    @staticmethod
    def cooldown_key(subject_id: str) -> str:
        return f"bfp:{subject_id}:cooldown"

    @staticmethod
    def disabled_key(subject_id: str) -> str:
        return f"bfp:{subject_id}:disabled"

    def calculate_cooldown(self, failure_count: int) -> int:
        # 30, 60, 120, 240, 480, 960 with the defaults
        exponent = min(max(failure_count, 1) - 1, self.cooldown_exponent_cap)
        return self.base_cooldown_seconds * 2**exponent

    async def get_state(self, subject_id: str) -> GuardState:
        cooldown_raw, failures_raw, disabled_raw, cooldown_ttl = await asyncio.gather(
            self.cache.get(self.cooldown_key(subject_id)),
            self.cache.get(self.fail_key(subject_id)),
            self.cache.get(self.disabled_key(subject_id)),
            self.cache.get_ttl(self.cooldown_key(subject_id)),
        )
        failure_count = int(failures_raw) if failures_raw else 0
        return GuardState(
            in_cooldown=cooldown_raw is not None,
            cooldown_expires_in=cooldown_ttl if cooldown_ttl > 0 else None,
            failure_count=failure_count,
            remaining_attempts=max(0, self.max_failures - failure_count),
            is_disabled=disabled_raw is not None,
        )

    async def ensure_allowed(self, subject_id: str) -> None:
        """Refuse the attempt if the subject is disabled or cooling down.

        Read-only; the disabled flag wins over an active cooldown.
        """
        if await self.cache.get(self.disabled_key(subject_id)) is not None:
            logger.warning("bfp_blocked_disabled", subject_id=subject_id)
            raise AccountDisabledError("Account disabled. Contact support.")

        if await self.cache.get(self.cooldown_key(subject_id)) is not None:
            ttl = await self.cache.get_ttl(self.cooldown_key(subject_id))
            retry_after = ttl if ttl > 0 else self.base_cooldown_seconds
            logger.info("bfp_rate_limited", subject_id=subject_id, retry_after=retry_after)
            raise RateLimitedError(
                f"Too many attempts. Please wait for {retry_after} seconds before retrying.",
                retry_after,
            )

    async def record_failure(self, subject_id: str) -> None:
        # INCR and EXPIRE go out as one transaction so concurrent failures
        # each read a distinct post-increment count.
        failure_count = await self.cache.incr_with_expire(
            self.fail_key(subject_id), self.failure_window_seconds
        )
        cooldown_seconds = self.calculate_cooldown(failure_count)
        await self.cache.set(self.cooldown_key(subject_id), "1", cooldown_seconds)

        if failure_count >= self.max_failures:
            await self.cache.set(self.disabled_key(subject_id), self._timestamp_ms())
            await self.disable_account(subject_id)
            logger.warning(
                "bfp_account_disabled",
                subject_id=subject_id,
                failures=failure_count,
            )
            raise AccountDisabledError(
                "Account locked due to multiple failed auth attempts. "
                "Please contact support to restore access."
            )

        logger.info(
            "bfp_failure_recorded",
            subject_id=subject_id,
            failures=failure_count,
            cooldown_seconds=cooldown_seconds,
        )

    async def clear_failures(self, subject_id: str) -> None:
        await self.cache.delete(self.fail_key(subject_id), self.cooldown_key(subject_id))

    async def enable_account(self, subject_id: str) -> None:
        await self.cache.delete(
            self.disabled_key(subject_id),
            self.fail_key(subject_id),
            self.cooldown_key(subject_id),
        )
        await self.accounts.set_account_active(subject_id, True)
        logger.info("bfp_account_enabled", subject_id=subject_id)

    async def disable_account(self, subject_id: str) -> None:
        """Disable ``subject_id`` and revoke everything it is signed in with.

        Shared by the threshold path and administrative disablement. The
        counter and cooldown are cleared because the disabled flag supersedes
        them.
        """
        disabled_key = self.disabled_key(subject_id)
        if await self.cache.get(disabled_key) is None:
            await self.cache.set(disabled_key, self._timestamp_ms())
        await self.accounts.set_account_active(subject_id, False)
        await self.sessions.invalidate_cached_auth_value(
            subject_id, AuthValueCategory.BRUTE_FORCE_PROTECTION
        )
        revoked = await self.sessions.logout_all_sessions(subject_id)
        await self.cache.delete(self.fail_key(subject_id), self.cooldown_key(subject_id))
        logger.info("bfp_account_deactivated", subject_id=subject_id, sessions_revoked=revoked)

    def _timestamp_ms(self) -> str:
        return str(int(self._clock() * 1000))
