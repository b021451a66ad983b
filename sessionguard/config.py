from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from sessionguard.logging import get_logger

logger = get_logger(__name__)

# HS256 keys shorter than the digest size weaken the MAC
MIN_JWT_SECRET_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the token, session and lockout core."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_socket_timeout: float = env_field(
        5.0,
        "REDIS_SOCKET_TIMEOUT",
        description="Upper bound in seconds for any single cache round trip",
    )
    use_memory_cache: bool = env_field(
        False,
        "USE_MEMORY_CACHE",
        description="Keep session and lockout state in process memory instead of Redis",
    )
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors and the in-memory cache.",
    )
    jwt_secret: str | None = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("sessionguard", "JWT_ISSUER")
    jwt_audience: str = env_field("sessionguard", "JWT_AUDIENCE")
    jwt_clock_tolerance_seconds: int = env_field(
        30,
        "JWT_CLOCK_TOLERANCE_SECONDS",
        description="Leeway applied to exp/nbf checks to absorb clock skew between nodes",
    )
    session_ttl_days: int = env_field(
        7, "SESSION_TTL_DAYS", description="Lifetime of LOGIN tokens and their session records"
    )
    bfp_max_failures: int = env_field(
        6,
        "BFP_MAX_FAILURES",
        description="Failed attempts after which the account is disabled",
    )
    bfp_base_cooldown_seconds: int = env_field(
        30,
        "BFP_BASE_COOLDOWN_SECONDS",
        description="Cooldown after the first failure; doubles per further failure",
    )
    bfp_cooldown_exponent_cap: int = env_field(
        5,
        "BFP_COOLDOWN_EXPONENT_CAP",
        description="Largest doubling exponent applied to the base cooldown",
    )
    bfp_failure_window_seconds: int = env_field(
        30 * 2**5 + 300,
        "BFP_FAILURE_WINDOW_SECONDS",
        description="TTL of the failure counter, refreshed on every failure",
    )
    log_verbose_errors: bool = env_field(
        False,
        "LOG_VERBOSE_ERRORS",
        description="Expose underlying error messages to callers instead of generic text",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("jwt_secret")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None, info: ValidationInfo) -> str:
        test_mode = bool(info.data.get("test_mode"))
        if value:
            if len(value) < MIN_JWT_SECRET_LENGTH and not test_mode:
                raise ValueError(
                    f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters"
                )
            return value
        if not test_mode:
            raise ValueError("JWT_SECRET is required")
        # Ephemeral secret: tokens do not survive a restart, which is fine for tests
        logger.warning("jwt_secret_generated", reason="test_mode_without_secret")
        return secrets.token_urlsafe(64)

    @field_validator(
        "bfp_max_failures",
        "bfp_base_cooldown_seconds",
        "bfp_failure_window_seconds",
        "session_ttl_days",
    )
    @classmethod
    def _ensure_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("bfp_cooldown_exponent_cap", "jwt_clock_tolerance_seconds")
    @classmethod
    def _ensure_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @model_validator(mode="after")
    def _check_failure_window(self) -> "Settings":
        max_cooldown = self.bfp_base_cooldown_seconds * 2**self.bfp_cooldown_exponent_cap
        if self.bfp_failure_window_seconds < max_cooldown:
            raise ValueError(
                "BFP_FAILURE_WINDOW_SECONDS must cover the longest cooldown "
                f"({max_cooldown}s)"
            )
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
