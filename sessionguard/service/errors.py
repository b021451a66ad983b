from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Every failure the security core reports to its callers."""

    INVALID_TOKEN = "invalid_token"
    TOKEN_SIGNING = "token_signing"
    RATE_LIMITED = "rate_limited"
    ACCOUNT_DISABLED = "account_disabled"
    CACHE_UNAVAILABLE = "cache_unavailable"


class TokenErrorKind(str, Enum):
    """Why a bearer token was rejected.

    Callers switch on this to tell an ordinary expiry apart from tampering.
    """

    EXPIRED = "expired"
    NOT_BEFORE = "not_before"
    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    BAD_AUDIENCE = "bad_audience"
    BAD_ISSUER = "bad_issuer"
    OTHER_CLAIM = "other_claim"
    UNEXPECTED = "unexpected"


class SecurityError(Exception):
    """Base class for errors raised across the security core boundary.

    The ``kind`` is the source of truth; the subclasses below only pin it so
    callers can write targeted ``except`` clauses. HTTP status codes and the
    exposed message are derived from the kind by :func:`status_code_for` and
    :func:`expose_message`.
    """

    kind: ErrorKind = ErrorKind.INVALID_TOKEN

    def __init__(self, message: str, *, detail: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class InvalidTokenError(SecurityError):
    """Token failed signature, format or claim checks (re-authenticate)."""

    kind = ErrorKind.INVALID_TOKEN

    def __init__(
        self,
        message: str,
        token_error: TokenErrorKind = TokenErrorKind.UNEXPECTED,
        *,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.token_error = token_error


class TokenSigningError(SecurityError):
    """The signer could not produce a token."""

    kind = ErrorKind.TOKEN_SIGNING


class RateLimitedError(SecurityError):
    """Subject is cooling down after a failed attempt."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self, message: str, retry_after_seconds: int, *, detail: Optional[dict] = None
    ) -> None:
        super().__init__(message, detail=detail)
        self.retry_after_seconds = retry_after_seconds


class AccountDisabledError(SecurityError):
    """Account is disabled until an administrator re-enables it."""

    kind = ErrorKind.ACCOUNT_DISABLED


class CacheUnavailableError(SecurityError):
    """The shared key/value store could not be reached; fail closed."""

    kind = ErrorKind.CACHE_UNAVAILABLE


_STATUS_CODES = {
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.RATE_LIMITED: 401,
    ErrorKind.ACCOUNT_DISABLED: 401,
    ErrorKind.CACHE_UNAVAILABLE: 503,
    ErrorKind.TOKEN_SIGNING: 500,
}

_REPORTABLE = frozenset({ErrorKind.CACHE_UNAVAILABLE, ErrorKind.TOKEN_SIGNING})

_DEFAULT_MESSAGES = {
    ErrorKind.INVALID_TOKEN: "Invalid or expired token",
    ErrorKind.TOKEN_SIGNING: "Could not issue token",
    ErrorKind.RATE_LIMITED: "Too many attempts. Please wait before retrying.",
    ErrorKind.ACCOUNT_DISABLED: "Account disabled. Contact support.",
    ErrorKind.CACHE_UNAVAILABLE: "Service temporarily unavailable",
}


def status_code_for(kind: ErrorKind) -> int:
    """HTTP status an adapter should answer with for ``kind``."""
    return _STATUS_CODES.get(kind, 500)


def should_report(kind: ErrorKind) -> bool:
    """Whether the failure points at our infrastructure rather than the client."""
    return kind in _REPORTABLE


def expose_message(error: SecurityError, verbose: bool = False) -> str:
    """Message that is safe to return to the client."""
    if isinstance(error, RateLimitedError):
        return (
            f"Too many attempts. Please wait for {error.retry_after_seconds} "
            "seconds before retrying."
        )
    if error.kind is ErrorKind.ACCOUNT_DISABLED:
        return error.message or _DEFAULT_MESSAGES[error.kind]
    if verbose:
        return error.message or _DEFAULT_MESSAGES.get(error.kind, "An error occurred")
    return _DEFAULT_MESSAGES.get(error.kind, "An error occurred")


__all__ = [
    "ErrorKind",
    "TokenErrorKind",
    "SecurityError",
    "InvalidTokenError",
    "TokenSigningError",
    "RateLimitedError",
    "AccountDisabledError",
    "CacheUnavailableError",
    "status_code_for",
    "should_report",
    "expose_message",
]
