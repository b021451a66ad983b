from __future__ import annotations

import time
import uuid
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, Mapping

import jwt
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    ImmatureSignatureError,
    InvalidAlgorithmError,
    InvalidAudienceError,
    InvalidIssuedAtError,
    InvalidIssuerError,
    InvalidSignatureError,
    MissingRequiredClaimError,
    PyJWTError,
)

from sessionguard.config import Settings
from sessionguard.logging import get_logger
from sessionguard.service.errors import InvalidTokenError, TokenErrorKind, TokenSigningError

logger = get_logger(__name__)

# The only algorithm ever used to sign or accepted when verifying
ALGORITHM = "HS256"
TOKEN_TYPE = "at+jwt"
DEFAULT_CLOCK_TOLERANCE_SECONDS = 30

# Claims that must be present for a token minted by this service
_REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud", "jti"]


class TokenCategory(str, Enum):
    LOGIN = "LOGIN"
    SIGNUP = "SIGNUP"


class TTLUnit(IntEnum):
    SECONDS = 1
    MINUTES = 60
    DAYS = 86_400


# Order matters: subclasses must be matched before their bases
_ERROR_KINDS: tuple[tuple[type[PyJWTError], TokenErrorKind, str], ...] = (
    (ExpiredSignatureError, TokenErrorKind.EXPIRED, "Token has expired"),
    (ImmatureSignatureError, TokenErrorKind.NOT_BEFORE, "Token is not yet valid"),
    (InvalidSignatureError, TokenErrorKind.BAD_SIGNATURE, "Token signature verification failed"),
    (InvalidAudienceError, TokenErrorKind.BAD_AUDIENCE, "Token audience claim is invalid"),
    (InvalidIssuerError, TokenErrorKind.BAD_ISSUER, "Token issuer claim is invalid"),
    (InvalidAlgorithmError, TokenErrorKind.MALFORMED, "Token algorithm is not allowed"),
    (DecodeError, TokenErrorKind.MALFORMED, "Token format is invalid"),
    (MissingRequiredClaimError, TokenErrorKind.OTHER_CLAIM, "Token is missing a required claim"),
    (InvalidIssuedAtError, TokenErrorKind.OTHER_CLAIM, "Token issued-at claim is invalid"),
    (jwt.InvalidTokenError, TokenErrorKind.OTHER_CLAIM, "Token claim is invalid"),
)


def map_jwt_error(exc: Exception) -> InvalidTokenError:
    """Translate a PyJWT exception into an :class:`InvalidTokenError`."""
    for exc_type, kind, message in _ERROR_KINDS:
        if isinstance(exc, exc_type):
            return InvalidTokenError(message, kind, detail={"reason": str(exc)})
    return InvalidTokenError(
        "Unexpected token validation error",
        TokenErrorKind.UNEXPECTED,
        detail={"reason": str(exc)},
    )


class TokenService:
    """Issue and verify HS256 bearer tokens.

    Every token carries the caller's payload plus ``iss``, ``aud``, a fresh
    ``jti`` and ``iat``/``exp``. Verification pins the algorithm, issuer and
    audience and allows a fixed clock-skew leeway on ``exp`` and ``nbf``.
    """

    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        audience: str,
        clock_tolerance_seconds: int = DEFAULT_CLOCK_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.clock_tolerance_seconds = clock_tolerance_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "TokenService":
        return cls(
            settings.jwt_secret or "",
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            clock_tolerance_seconds=settings.jwt_clock_tolerance_seconds,
            **kwargs,
        )

    @staticmethod
    def ttl_from_units(value: int, unit: TTLUnit) -> int:
        return int(value) * int(unit)

    def _now(self) -> int:
        return int(self._clock())

    def generate_token(self, payload: Mapping[str, Any], ttl_seconds: int) -> str:
        if not self._secret:
            raise TokenSigningError("Signing secret is not configured")
        issued_at = self._now()
        claims: Dict[str, Any] = {
            **payload,
            "iss": self.issuer,
            "aud": self.audience,
            "jti": str(uuid.uuid4()),
            "iat": issued_at,
            "exp": issued_at + int(ttl_seconds),
        }
        try:
            return jwt.encode(
                claims,
                self._secret,
                algorithm=ALGORITHM,
                headers={"typ": TOKEN_TYPE},
            )
        except (PyJWTError, TypeError, ValueError) as exc:
            logger.error("jwt_sign_failed", error_type=type(exc).__name__, error=str(exc))
            raise TokenSigningError(f"Could not sign token: {exc}") from exc

    def verify_and_decode_token(self, token: str | None) -> Dict[str, Any]:
        if not token:
            raise InvalidTokenError("No token supplied", TokenErrorKind.MALFORMED)
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.clock_tolerance_seconds,
                options={"require": _REQUIRED_CLAIMS},
            )
        except PyJWTError as exc:
            error = map_jwt_error(exc)
            logger.warning(
                "jwt_verification_failed",
                kind=error.token_error.value,
                reason=str(exc),
            )
            raise error from exc
        except Exception as exc:
            logger.error("jwt_verification_unexpected", error_type=type(exc).__name__)
            raise InvalidTokenError(
                "Unexpected token validation error", TokenErrorKind.UNEXPECTED
            ) from exc

    def extract_token_identifier(self, token: str | None) -> str:
        claims = self.verify_and_decode_token(token)
        jti = claims.get("jti")
        if not isinstance(jti, str) or not jti:
            raise InvalidTokenError("Token identifier claim is invalid", TokenErrorKind.OTHER_CLAIM)
        return jti
