"""
Admin Blueprint - Health Checks, Metrics, and Operational Endpoints

Provides monitoring endpoints for the page store, the holdings cache and the
gating counters.
"""

import logging
import time
from typing import Any, Dict

from flask import Blueprint, Response, current_app, jsonify
from prometheus_client import generate_latest

from linkgate import metrics
from linkgate.database import check_database_health, check_redis_health
from linkgate.factory import get_services

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)

SERVICE_NAME = "linkgate"
SERVICE_VERSION = "0.1.0"


@admin_bp.route("/health")
def health():
    """
    Comprehensive health check endpoint.

    Returns:
        JSON health status with component information
    """
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": time.time(),
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "components": {},
    }

    database = check_database_health()
    health_status["components"]["database"] = database
    if database["status"] != "healthy":
        health_status["status"] = "degraded"

    # Holdings are still served (uncached) without the cache, so it only degrades.
    cache = check_redis_health(get_services(current_app).kv, current_app.config["APP_CONFIG"].get("CACHE_BACKEND"))
    health_status["components"]["cache"] = cache
    if cache["status"] != "healthy":
        health_status["status"] = "degraded"

    health_status["components"]["oracle"] = {
        "status": "configured" if current_app.config["APP_CONFIG"].get("HELIUS_API_KEY") else "unconfigured"
    }

    return jsonify(health_status), 200 if health_status["status"] == "healthy" else 503


@admin_bp.route("/health/live")
def liveness():
    """
    Liveness probe - checks if app is running.
    """
    return jsonify({"status": "alive"}), 200


@admin_bp.route("/health/ready")
def readiness():
    """
    Readiness probe - the page store must be reachable.
    """
    database = check_database_health()
    if database["status"] == "healthy":
        return jsonify({"status": "ready"}), 200
    logger.warning(f"Readiness check failed: {database.get('error')}")
    return jsonify({"status": "not_ready", "error": database.get("error")}), 503


@admin_bp.route("/metrics")
def metrics_prometheus():
    """
    Prometheus metrics endpoint.

    Returns:
        Prometheus text format metrics
    """
    try:
        return Response(generate_latest(metrics.registry), mimetype="text/plain; version=0.0.4")
    except Exception as e:
        logger.error(f"Prometheus metrics failed: {e}", exc_info=True)
        return Response(f"# Error: {e}\n", mimetype="text/plain"), 500
