"""Security helpers for configuring Flask in production."""
from __future__ import annotations

import logging
from typing import Any, Mapping

from flask import Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix

logger = logging.getLogger(__name__)

# Per-IP HTTP limits. Per-wallet oracle limits live in linkgate.holdings.
limiter = Limiter(key_func=get_remote_address, strategy="fixed-window")


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in {"1", "true", "yes", "on"}


def _build_redis_uri(cfg: Mapping[str, Any]) -> str:
    if cfg.get("REDIS_URL"):
        return str(cfg["REDIS_URL"])

    host = cfg.get("REDIS_HOST", "127.0.0.1")
    port = cfg.get("REDIS_PORT", 6379)
    db = cfg.get("REDIS_DB", 0)
    password = cfg.get("REDIS_PASSWORD")
    if password:
        return f"redis://:{password}@{host}:{port}/{db}"
    return f"redis://{host}:{port}/{db}"


def configure_logging(cfg: Mapping[str, Any]) -> None:
    log_level = str(cfg.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, log_level, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if not any(isinstance(handler, logging.StreamHandler) for handler in root_logger.handlers):
        handler = logging.StreamHandler()
        fmt = (
            "{\"level\":\"%(levelname)s\",\"msg\":\"%(message)s\",\"name\":\"%(name)s\",\"path\":\"%(pathname)s\","
            "\"lineno\":%(lineno)d}"
        )
        handler.setFormatter(logging.Formatter(fmt))
        root_logger.addHandler(handler)


def init_security(app: Flask, cfg: Mapping[str, Any]) -> Limiter:
    """Initialise proxy handling, HTTP rate limiting and logging."""

    # Respect reverse proxy headers for TLS detection and client IP extraction.
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)  # type: ignore[assignment]

    enabled = _as_bool(cfg.get("RATE_LIMIT_ENABLED"), True)
    if enabled and str(cfg.get("CACHE_BACKEND", "redis")).lower() == "redis":
        storage_uri = _build_redis_uri(cfg)
    else:
        storage_uri = "memory://"

    app.config.update(
        {
            "RATELIMIT_ENABLED": enabled,
            "RATELIMIT_DEFAULT": cfg.get("RATE_LIMIT_DEFAULT") or "300/hour",
            "RATELIMIT_STORAGE_URI": storage_uri,
            # Keep serving if the limiter's Redis is unreachable.
            "RATELIMIT_SWALLOW_ERRORS": True,
            "RATELIMIT_IN_MEMORY_FALLBACK_ENABLED": True,
        }
    )
    limiter.init_app(app)
    if not enabled:
        logger.warning("HTTP rate limiting disabled (RATE_LIMIT_ENABLED=false)")

    configure_logging(cfg)
    return limiter
