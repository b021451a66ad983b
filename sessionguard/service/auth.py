from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from sessionguard.config import Settings
from sessionguard.logging import bound_subject, get_logger
from sessionguard.service.brute_force import AccountStore, BruteForceGuard
from sessionguard.service.errors import (
    SecurityError,
    expose_message,
    should_report,
    status_code_for,
)
from sessionguard.service.fingerprint import FingerprintDeriver
from sessionguard.service.session_cache import SessionCache
from sessionguard.service.tokens import TokenCategory, TokenService, TTLUnit

logger = get_logger(__name__)

DEFAULT_SESSION_TTL_DAYS = 7
DEFAULT_SIGNUP_TTL_MINUTES = 30


@dataclass
class SessionValidation:
    subject_id: str
    # Set when the session was re-established and the caller must hand out a new token
    reissued_token: Optional[str] = None


class AuthService:
    """Entry point for authentication middleware.

    Ties the token service, fingerprinting, the session cache and the
    brute-force guard together. Every collaborator is passed in; nothing
    here reaches for process-wide state.
    """

    def __init__(
        self,
        tokens: TokenService,
        sessions: SessionCache,
        guard: BruteForceGuard,
        accounts: AccountStore,
        *,
        fingerprints: Optional[FingerprintDeriver] = None,
        session_ttl_days: int = DEFAULT_SESSION_TTL_DAYS,
        verbose_errors: bool = False,
    ) -> None:
        self.tokens = tokens
        self.sessions = sessions
        self.guard = guard
        self.accounts = accounts
        self.fingerprints = fingerprints or FingerprintDeriver()
        self.session_ttl_seconds = TokenService.ttl_from_units(session_ttl_days, TTLUnit.DAYS)
        self.verbose_errors = verbose_errors
        self.logger = logger

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        tokens: TokenService,
        sessions: SessionCache,
        guard: BruteForceGuard,
        accounts: AccountStore,
        **kwargs,
    ) -> "AuthService":
        return cls(
            tokens,
            sessions,
            guard,
            accounts,
            session_ttl_days=settings.session_ttl_days,
            verbose_errors=settings.log_verbose_errors,
            **kwargs,
        )

    async def issue_session(self, subject_id: str, fingerprint_hash: str) -> str:
        token = self.tokens.generate_token(
            {"id": subject_id, "token_category": TokenCategory.LOGIN.value},
            self.session_ttl_seconds,
        )
        await self.sessions.cache_session(
            subject_id, token, fingerprint_hash, self.session_ttl_seconds
        )
        return token

    def issue_signup_token(self, email: str, ttl_seconds: Optional[int] = None) -> str:
        if ttl_seconds is None:
            ttl_seconds = TokenService.ttl_from_units(DEFAULT_SIGNUP_TTL_MINUTES, TTLUnit.MINUTES)
        return self.tokens.generate_token(
            {"email": email, "token_category": TokenCategory.SIGNUP.value}, ttl_seconds
        )

    async def validate_session(
        self, token: str, fingerprint_hash: str
    ) -> Optional[SessionValidation]:
        """Resolve ``token`` to its subject for the device ``fingerprint_hash``.

        Returns ``None`` when the token is not a login token or the account is
        gone or inactive. A token that fails verification raises
        ``InvalidTokenError``; an unreachable cache raises
        ``CacheUnavailableError``.
        """
        claims = self.tokens.verify_and_decode_token(token)
        subject_id = claims.get("id")
        if claims.get("token_category") != TokenCategory.LOGIN.value or not subject_id:
            self.logger.warning(
                "session_wrong_token_category", category=claims.get("token_category")
            )
            return None

        with bound_subject(subject_id):
            if await self.sessions.is_session_valid(subject_id, token, fingerprint_hash):
                return SessionValidation(subject_id=subject_id)

            account = await self.accounts.find_active_account(subject_id)
            if account is None:
                self.logger.info("session_account_unavailable")
                return None

            new_token = await self.issue_session(subject_id, fingerprint_hash)
            self.logger.info("session_reestablished", fingerprint=fingerprint_hash)
            return SessionValidation(subject_id=subject_id, reissued_token=new_token)

    async def authenticate(
        self, token: str, user_agent: Optional[str]
    ) -> Optional[SessionValidation]:
        fingerprint_hash = self.fingerprints.derive_fingerprint(user_agent)
        return await self.validate_session(token, fingerprint_hash)

    async def ensure_not_locked_out(self, subject_id: str) -> None:
        with bound_subject(subject_id):
            await self.guard.ensure_allowed(subject_id)

    async def record_login_failure(self, subject_id: str) -> None:
        with bound_subject(subject_id):
            await self.guard.record_failure(subject_id)

    async def record_login_success(self, subject_id: str) -> None:
        with bound_subject(subject_id):
            await self.guard.clear_failures(subject_id)

    async def logout(self, subject_id: str, fingerprint_hash: str) -> None:
        with bound_subject(subject_id):
            await self.sessions.logout_session(subject_id, fingerprint_hash)

    async def logout_all(self, subject_id: str) -> int:
        with bound_subject(subject_id):
            return await self.sessions.logout_all_sessions(subject_id)

    async def enable_account(self, subject_id: str) -> None:
        with bound_subject(subject_id):
            await self.guard.enable_account(subject_id)

    async def disable_account(self, subject_id: str) -> None:
        with bound_subject(subject_id):
            await self.guard.disable_account(subject_id)

    def error_response(self, error: SecurityError) -> Tuple[int, str]:
        """Status code and client-safe message for a failure raised by this service.

        Infrastructure failures are logged at error level; the message only
        carries internal detail when verbose errors are enabled.
        """
        if should_report(error.kind):
            self.logger.error(
                "security_core_failure",
                kind=error.kind.value,
                error=error.message,
                detail=error.detail,
            )
        return status_code_for(error.kind), expose_message(error, verbose=self.verbose_errors)
