from __future__ import annotations

from enum import Enum
from typing import Optional

from sessionguard.logging import get_logger
from sessionguard.service.tokens import TokenService
from sessionguard.storage.redis_cache import KeyValueCache, escape_pattern

logger = get_logger(__name__)

KEY_SEPARATOR = ":"
SESSION_KEY_PREFIX = "auth:session:"


class AuthValueCategory(str, Enum):
    BRUTE_FORCE_PROTECTION = "brute-force-protection"
    VERIFICATION = "verification"


def session_key(subject_id: str, fingerprint_hash: str) -> str:
    # The fingerprint is the last key segment, so it must not contain the separator
    if KEY_SEPARATOR in fingerprint_hash:
        raise ValueError(f"fingerprint hash must not contain {KEY_SEPARATOR!r}")
    return f"{SESSION_KEY_PREFIX}{subject_id}{KEY_SEPARATOR}{fingerprint_hash}"


def auth_value_key(identifier: str, category: AuthValueCategory) -> str:
    return f"auth:{AuthValueCategory(category).value}:{identifier}"


class SessionCache:
    """Authoritative session record per (subject, device fingerprint).

    Each key holds the ``jti`` of the one token currently valid for that
    device, so a subject can be signed in on several devices at once and
    each device can be logged out on its own.
    """

    def __init__(self, cache: KeyValueCache, tokens: TokenService) -> None:
        self.cache = cache
        self.tokens = tokens

    async def cache_session(
        self, subject_id: str, token: str, fingerprint_hash: str, ttl_seconds: int
    ) -> None:
        if ttl_seconds is None or ttl_seconds <= 0:
            raise ValueError(f"session ttl must be positive, got {ttl_seconds}")
        key = session_key(subject_id, fingerprint_hash)
        jti = self.tokens.extract_token_identifier(token)
        await self.cache.set(key, jti, ttl_seconds)
        logger.debug(
            "session_cached",
            subject_id=subject_id,
            fingerprint=fingerprint_hash,
            ttl_seconds=ttl_seconds,
        )

    async def is_session_valid(
        self, subject_id: str, token: str, fingerprint_hash: str
    ) -> bool:
        """True iff ``token`` is the session on record for this device.

        Raises ``InvalidTokenError`` for a token that fails verification and
        ``CacheUnavailableError`` when the store is down; a missing or
        different record is simply ``False``.
        """
        jti = self.tokens.extract_token_identifier(token)
        stored = await self.cache.get(session_key(subject_id, fingerprint_hash))
        if stored is None:
            logger.debug("session_cache_miss", subject_id=subject_id, fingerprint=fingerprint_hash)
            return False
        return stored == jti

    async def logout_session(self, subject_id: str, fingerprint_hash: str) -> None:
        await self.cache.delete(session_key(subject_id, fingerprint_hash))
        logger.info("session_logged_out", subject_id=subject_id, fingerprint=fingerprint_hash)

    async def logout_all_sessions(self, subject_id: str) -> int:
        prefix = f"{SESSION_KEY_PREFIX}{subject_id}{KEY_SEPARATOR}"
        matched = await self.cache.keys_matching(f"{escape_pattern(prefix)}*")
        # "u1:*" also matches subject "u1:x"; keep keys whose remainder is a lone fingerprint
        keys = [key for key in matched if KEY_SEPARATOR not in key[len(prefix):]]
        if not keys:
            return 0
        removed = await self.cache.delete(*keys)
        logger.info("sessions_logged_out", subject_id=subject_id, count=removed)
        return removed

    async def cache_auth_value(
        self,
        identifier: str,
        value: str,
        category: AuthValueCategory,
        ttl_seconds: int,
    ) -> None:
        await self.cache.set(auth_value_key(identifier, category), value, ttl_seconds)

    async def is_auth_value_cached(
        self, identifier: str, value: str, category: AuthValueCategory
    ) -> bool:
        return await self.get_cached_auth_value(identifier, category) == value

    async def get_cached_auth_value(
        self, identifier: str, category: AuthValueCategory
    ) -> Optional[str]:
        return await self.cache.get(auth_value_key(identifier, category))

    async def invalidate_cached_auth_value(
        self, identifier: str, category: AuthValueCategory
    ) -> None:
        await self.cache.delete(auth_value_key(identifier, category))
