"""Configuration management for linkgate.

Centralises environment variable loading and validation logic while keeping the
public API intentionally simple.
"""

from __future__ import annotations

import os
import warnings
from typing import Any, Mapping, Optional, TypedDict

from linkgate.errors import ConfigurationError

_TRUTHY_VALUES = {"1", "true", "yes", "on"}

DEFAULT_JWT_SECRET = "dev-secret-CHANGE-ME-IN-PRODUCTION"


class AppConfig(TypedDict):
    """Typed representation of the application's configuration."""

    ENCRYPTION_KEY: Optional[str]
    ENCRYPTION_KDF_ITERATIONS: int
    HELIUS_API_KEY: Optional[str]
    ORACLE_RPC_URL: str
    ORACLE_TIMEOUT_SECONDS: float
    ORACLE_PAGE_LIMIT: int
    ORACLE_MAX_PAGES: int
    NATIVE_DECIMALS: int
    HOLDINGS_CACHE_TTL: int
    HOLDINGS_STALE_TTL: int
    HOLDINGS_RATE_LIMIT_REQUESTS: int
    HOLDINGS_RATE_LIMIT_WINDOW: int
    CACHE_BACKEND: str
    REDIS_HOST: str
    REDIS_PORT: int
    REDIS_PASSWORD: Optional[str]
    REDIS_DB: int
    REDIS_URL: Optional[str]
    DATABASE_URL: str
    FLASK_SECRET_KEY: Optional[str]
    FLASK_ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    RATE_LIMIT_ENABLED: bool
    RATE_LIMIT_DEFAULT: str
    SWAP_URL_TEMPLATE: str
    CLICK_HISTORY_LIMIT: int
    LOG_LEVEL: str
    APP_NAME: str
    APP_VERSION: str


def _get_env_bool(name: str, default: bool) -> bool:
    """Return an environment variable as a boolean."""

    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUTHY_VALUES


def _get_env_int(name: str, default: int) -> int:
    """Return an environment variable as an integer, raising on invalid input."""

    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer (got {raw_value!r})") from exc


def _get_env_float(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default

    try:
        return float(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number (got {raw_value!r})") from exc


def get_config() -> AppConfig:
    """Load application configuration from environment variables."""

    return {
        # URL cipher
        "ENCRYPTION_KEY": os.getenv("ENCRYPTION_KEY") or None,
        "ENCRYPTION_KDF_ITERATIONS": _get_env_int("ENCRYPTION_KDF_ITERATIONS", 1000),
        # Balance oracle (Helius-compatible JSON-RPC)
        "HELIUS_API_KEY": os.getenv("HELIUS_API_KEY") or os.getenv("NEXT_PUBLIC_HELIUS_API_KEY"),
        "ORACLE_RPC_URL": os.getenv("ORACLE_RPC_URL", "https://mainnet.helius-rpc.com/"),
        "ORACLE_TIMEOUT_SECONDS": _get_env_float("ORACLE_TIMEOUT_SECONDS", 5.0),
        "ORACLE_PAGE_LIMIT": _get_env_int("ORACLE_PAGE_LIMIT", 1000),
        "ORACLE_MAX_PAGES": _get_env_int("ORACLE_MAX_PAGES", 5),
        "NATIVE_DECIMALS": _get_env_int("NATIVE_DECIMALS", 9),
        # Holdings cache and per-wallet rate limiting
        "HOLDINGS_CACHE_TTL": _get_env_int("HOLDINGS_CACHE_TTL", 10),
        "HOLDINGS_STALE_TTL": _get_env_int("HOLDINGS_STALE_TTL", 3600),
        "HOLDINGS_RATE_LIMIT_REQUESTS": _get_env_int("HOLDINGS_RATE_LIMIT_REQUESTS", 3),
        "HOLDINGS_RATE_LIMIT_WINDOW": _get_env_int("HOLDINGS_RATE_LIMIT_WINDOW", 10),
        # Redis Configuration
        "CACHE_BACKEND": os.getenv("CACHE_BACKEND", "redis").strip().lower(),
        "REDIS_HOST": os.getenv("REDIS_HOST", "localhost"),
        "REDIS_PORT": _get_env_int("REDIS_PORT", 6379),
        "REDIS_PASSWORD": os.getenv("REDIS_PASSWORD"),
        "REDIS_DB": _get_env_int("REDIS_DB", 0),
        "REDIS_URL": os.getenv("REDIS_URL") or os.getenv("REDIS_DSN"),
        # Database Configuration
        "DATABASE_URL": os.getenv("DATABASE_URL", "sqlite:///linkgate.db"),
        # Flask Configuration
        "FLASK_SECRET_KEY": os.getenv("FLASK_SECRET_KEY"),
        "FLASK_ENV": os.getenv("FLASK_ENV", "development"),
        # JWT Configuration (wallet identity tokens)
        "JWT_SECRET": os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET),
        "JWT_ALGORITHM": os.getenv("JWT_ALGORITHM", "HS256"),
        # HTTP rate limiting
        "RATE_LIMIT_ENABLED": _get_env_bool("RATE_LIMIT_ENABLED", True),
        "RATE_LIMIT_DEFAULT": os.getenv("RATE_LIMIT_DEFAULT", "300/hour"),
        # Presentation
        "SWAP_URL_TEMPLATE": os.getenv("SWAP_URL_TEMPLATE", "https://jup.ag/swap/SOL-{token}"),
        "CLICK_HISTORY_LIMIT": _get_env_int("CLICK_HISTORY_LIMIT", 50),
        # Logging
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        # Application Settings
        "APP_NAME": os.getenv("APP_NAME", "linkgate"),
        "APP_VERSION": os.getenv("APP_VERSION", "0.1.0"),
    }


def validate_config(config: Mapping[str, Any]) -> bool:
    """Validate critical configuration values.

    Args:
        config: Configuration mapping to validate.

    Returns:
        True if configuration is valid.

    Raises:
        ConfigurationError: when the URL encryption secret is absent.
        ValueError: for insecure production settings or nonsensical tuning.
    """

    if not config.get("ENCRYPTION_KEY"):
        raise ConfigurationError("ENCRYPTION_KEY environment variable is required")

    for name in ("HOLDINGS_CACHE_TTL", "HOLDINGS_RATE_LIMIT_REQUESTS", "HOLDINGS_RATE_LIMIT_WINDOW"):
        value = config.get(name)
        if value is not None and int(value) <= 0:
            raise ValueError(f"{name} must be positive (got {value!r})")

    stale_ttl = config.get("HOLDINGS_STALE_TTL")
    cache_ttl = config.get("HOLDINGS_CACHE_TTL")
    if stale_ttl is not None and cache_ttl is not None and int(stale_ttl) < int(cache_ttl):
        raise ValueError("HOLDINGS_STALE_TTL must not be shorter than HOLDINGS_CACHE_TTL")

    if not config.get("HELIUS_API_KEY"):
        warnings.warn("⚠️  HELIUS_API_KEY not set - token balance checks will fail!", stacklevel=2)

    # Check for insecure defaults in production
    if config.get("FLASK_ENV") == "production":
        if config.get("JWT_SECRET") == DEFAULT_JWT_SECRET:
            raise ValueError("⚠️  JWT_SECRET must be changed for production!")

        if not config.get("FLASK_SECRET_KEY"):
            raise ValueError("⚠️  FLASK_SECRET_KEY must be set for production!")

        if config.get("CACHE_BACKEND") == "redis" and not config.get("REDIS_PASSWORD"):
            warnings.warn("⚠️  REDIS_PASSWORD not set - Redis will be unprotected!", stacklevel=2)

    return True
