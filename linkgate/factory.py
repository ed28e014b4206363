"""
Application Factory for linkgate

Implements the Flask application factory pattern with:
- Service wiring (cipher, oracle, holdings cache, decision engine, resolver)
- Blueprint registration
- Security configuration (proxy headers, rate limiting, logging)
- JSON error handling
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from flask import Flask, jsonify

from linkgate.access import AccessDecisionEngine
from linkgate.analytics import ClickTracker
from linkgate.audit_logger import get_audit_logger, init_audit_logger
from linkgate.config import AppConfig, get_config, validate_config
from linkgate.database import init_database, init_redis
from linkgate.encryption import UrlCipher
from linkgate.errors import InvalidAmount, InvalidLinkItem, LinkConflict, NotFound, RateLimited
from linkgate.holdings import HoldingsCache
from linkgate.oracle import BalanceOracleClient
from linkgate.pages import PageStore
from linkgate.resolver import GatedLinkResolver
from linkgate.security import init_security

logger = logging.getLogger(__name__)

EXTENSION_KEY = "linkgate"


@dataclass
class Services:
    """Process-wide collaborators, built once at startup."""

    cipher: UrlCipher
    store: PageStore
    kv: Any
    oracle: BalanceOracleClient
    holdings: HoldingsCache
    engine: AccessDecisionEngine
    clicks: ClickTracker
    resolver: GatedLinkResolver


def build_services(
    cfg: AppConfig,
    oracle: Optional[BalanceOracleClient] = None,
    kv: Optional[Any] = None,
    session_factory: Optional[Any] = None,
) -> Services:
    """Construct the service graph; overrides let tests inject fakes."""
    cipher = UrlCipher(cfg["ENCRYPTION_KEY"], iterations=cfg.get("ENCRYPTION_KDF_ITERATIONS", 1000))

    if session_factory is None:
        session_factory = init_database(cfg["DATABASE_URL"])
    if kv is None:
        kv = init_redis(cfg)
    if oracle is None:
        oracle = BalanceOracleClient(
            rpc_url=cfg["ORACLE_RPC_URL"],
            api_key=cfg.get("HELIUS_API_KEY"),
            timeout=cfg.get("ORACLE_TIMEOUT_SECONDS", 5.0),
            page_limit=cfg.get("ORACLE_PAGE_LIMIT", 1000),
            max_pages=cfg.get("ORACLE_MAX_PAGES", 5),
            native_decimals=cfg.get("NATIVE_DECIMALS", 9),
        )

    store = PageStore(session_factory, cipher)
    holdings = HoldingsCache(
        kv,
        oracle,
        ttl=cfg.get("HOLDINGS_CACHE_TTL", 10),
        stale_ttl=cfg.get("HOLDINGS_STALE_TTL", 3600),
        max_requests=cfg.get("HOLDINGS_RATE_LIMIT_REQUESTS", 3),
        window=cfg.get("HOLDINGS_RATE_LIMIT_WINDOW", 10),
    )
    engine = AccessDecisionEngine(holdings)
    clicks = ClickTracker(kv)
    resolver = GatedLinkResolver(
        store,
        engine,
        cipher,
        click_tracker=clicks,
        swap_url_template=cfg.get("SWAP_URL_TEMPLATE"),
    )
    return Services(
        cipher=cipher,
        store=store,
        kv=kv,
        oracle=oracle,
        holdings=holdings,
        engine=engine,
        clicks=clicks,
        resolver=resolver,
    )


def get_services(app: Flask) -> Services:
    return app.extensions[EXTENSION_KEY]


def create_app(config_override: Optional[AppConfig] = None, **service_overrides: Any) -> Flask:
    """
    Create and configure the Flask application using the factory pattern.

    Args:
        config_override: Optional configuration override for testing
        service_overrides: ``oracle``, ``kv`` or ``session_factory`` fakes

    Returns:
        Configured Flask application instance

    Raises:
        ConfigurationError: ENCRYPTION_KEY is missing
    """
    cfg = config_override or get_config()
    validate_config(cfg)

    app = Flask(__name__)
    app.config["APP_CONFIG"] = cfg
    app.secret_key = cfg.get("FLASK_SECRET_KEY") or cfg["JWT_SECRET"]

    init_security(app, cfg)
    init_audit_logger()

    app.extensions[EXTENSION_KEY] = build_services(cfg, **service_overrides)
    logger.info("✅ Services initialized")

    register_blueprints(app)
    register_error_handlers(app)

    logger.info("🚀 Application factory completed successfully")
    return app


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""

    # Gated links, holdings and access checks
    from linkgate.blueprints.gate import gate_bp
    app.register_blueprint(gate_bp, url_prefix="/api")

    # Health and metrics
    from linkgate.blueprints.admin import admin_bp
    app.register_blueprint(admin_bp)

    logger.info("✅ All blueprints registered")


def register_error_handlers(app: Flask) -> None:
    """Register global error handlers."""

    @app.errorhandler(NotFound)
    def resource_missing(e):
        return jsonify({"error": "not_found", "message": str(e)}), 404

    @app.errorhandler(InvalidAmount)
    def invalid_amount(e):
        return jsonify({"error": "bad_request", "message": str(e)}), 400

    @app.errorhandler(InvalidLinkItem)
    def invalid_link_item(e):
        return jsonify({"error": "bad_request", "message": str(e)}), 400

    @app.errorhandler(LinkConflict)
    def link_conflict(e):
        return jsonify({"error": "conflict", "message": str(e)}), 409

    @app.errorhandler(RateLimited)
    def wallet_rate_limited(e):
        response = jsonify({"error": "rate_limited", "message": str(e), "retryAfter": e.retry_after})
        if e.retry_after:
            response.headers["Retry-After"] = str(e.retry_after)
        return response, 429

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "bad_request", "message": str(e)}), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "forbidden", "message": "Access denied"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "not_found", "message": "Resource not found"}), 404

    @app.errorhandler(429)
    def rate_limit_exceeded(e):
        return jsonify({"error": "rate_limit_exceeded", "message": str(e)}), 429

    @app.errorhandler(500)
    def internal_error(e):
        logger.error(f"Internal server error: {e}", exc_info=True)
        get_audit_logger().log_error(type(e).__name__, str(e))
        return jsonify({"error": "internal_error", "message": "An unexpected error occurred"}), 500
