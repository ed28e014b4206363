"""
Gate Blueprint - Gated Link Resolution, Holdings and Access Checks

Public endpoints a page visitor's browser calls when opening links, plus the
owner-only link save and analytics endpoints.
"""

import logging
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import BadRequest

from linkgate.audit_logger import get_audit_logger
from linkgate.errors import NotFound, OracleError
from linkgate.factory import get_services
from linkgate.identity import current_wallet, is_page_owner, same_wallet
from linkgate.pages import public_view
from linkgate.resolver import ResolutionState, ResolvedLink
from linkgate.security import limiter

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()

gate_bp = Blueprint("gate", __name__)

RESOLVE_RATE_LIMIT = "60 per minute"
HOLDINGS_RATE_LIMIT = "20 per minute"
CHECK_RATE_LIMIT = "20 per minute"

DEFAULT_PAGE_REQUIRED_AMOUNT = "1"

STATUS_BY_STATE = {
    ResolutionState.GRANTED: 200,
    ResolutionState.DENIED: 403,
    ResolutionState.UNAUTHENTICATED: 401,
    ResolutionState.CHECK_FAILED: 503,
    ResolutionState.UNAVAILABLE: 409,
}


def _cfg() -> Dict[str, Any]:
    return current_app.config["APP_CONFIG"]


def _flag(name: str) -> bool:
    return str(request.args.get(name, "")).lower() in {"1", "true", "yes"}


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")
    return data


def _resolution_response(result: ResolvedLink):
    response = jsonify(result.to_dict())
    if result.retry_after:
        response.headers["Retry-After"] = str(result.retry_after)
    # Revealed destinations are per-visitor; never let a shared cache keep them.
    response.headers["Cache-Control"] = "no-store"
    return response, STATUS_BY_STATE[result.state]


def _oracle_failure(e: OracleError):
    logger.warning(f"Balance oracle failure: {e}")
    return jsonify({"error": "oracle_unavailable", "message": "Failed to fetch token holdings"}), 503


@gate_bp.route("/pages/<slug>", methods=["GET"])
def get_page(slug: str):
    """
    Public page view.

    Gated link URLs are withheld unless the visitor owns the page.
    """
    services = get_services(current_app)
    page = services.store.get_page(slug)
    if page is None:
        raise NotFound(f"Page not found: {slug}")

    is_owner = is_page_owner(page, current_wallet(_cfg()))
    links = services.store.get_links(slug)
    return jsonify({"page": public_view(page, links, is_owner=is_owner), "isOwner": is_owner})


@gate_bp.route("/pages/<slug>/links", methods=["PUT"])
def save_links(slug: str):
    """
    Replace the page's link list (owner only).

    Gated URLs are encrypted before they are stored.
    """
    services = get_services(current_app)
    page = services.store.get_page(slug)
    if page is None:
        raise NotFound(f"Page not found: {slug}")

    wallet = current_wallet(_cfg())
    if not wallet:
        return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401
    if not is_page_owner(page, wallet):
        audit_logger.log_security_event("links.save_denied", "medium", {"slug": slug, "ip": request.remote_addr})
        return jsonify({"error": "forbidden", "message": "Only the page owner can edit links"}), 403

    data = _json_body()
    items = data.get("items")
    if not isinstance(items, list):
        return jsonify({"error": "bad_request", "message": "items must be a list of links"}), 400

    links = services.store.save_links(slug, items)
    audit_logger.log_event("links.saved", slug=slug, count=len(links))
    return jsonify({"success": True, "page": public_view(page, links, is_owner=True)})


@gate_bp.route("/pages/<slug>/links/<link_id>", methods=["GET"])
@limiter.limit(RESOLVE_RATE_LIMIT)
def resolve_link(slug: str, link_id: str):
    """
    Resolve a link for the current visitor.

    Returns:
        200 granted, 401 wallet required, 403 denied (with balance),
        503 balance check failed (retry), 409 link cannot be resolved
    """
    services = get_services(current_app)
    result = services.resolver.resolve(slug, link_id, current_wallet(_cfg()))
    return _resolution_response(result)


@gate_bp.route("/pages/<slug>/links/<link_id>/check-again", methods=["POST"])
@limiter.limit(CHECK_RATE_LIMIT)
def check_again(slug: str, link_id: str):
    """
    Re-run the balance check with fresh holdings (e.g. after buying tokens).
    """
    services = get_services(current_app)
    context = services.resolver.load(slug, link_id)
    result = services.resolver.check_again(context, current_wallet(_cfg()))
    return _resolution_response(result)


@gate_bp.route("/token-holdings", methods=["GET"])
@limiter.limit(HOLDINGS_RATE_LIMIT)
def token_holdings():
    """
    Holdings of the signed-in wallet.

    Query params:
        - walletAddress: must be the visitor's own wallet
        - refresh: skip the fresh-cache shortcut
        - bypass: user-triggered refresh that skips per-wallet accounting
    """
    wallet_address = request.args.get("walletAddress")
    if not wallet_address:
        return jsonify({"error": "bad_request", "message": "Wallet address is required"}), 400

    wallet = current_wallet(_cfg())
    if not same_wallet(wallet, wallet_address):
        return jsonify({"error": "unauthorized", "message": "Wallet not owned by authenticated user"}), 401

    bypass = _flag("bypass")
    services = get_services(current_app)
    if bypass:
        audit_logger.log_event("holdings.bypass", wallet=wallet_address, ip=request.remote_addr)

    try:
        result = services.holdings.get_holdings(
            wallet_address,
            force_refresh=_flag("refresh") or bypass,
            bypass_rate_limit=bypass,
        )
    except OracleError as e:
        return _oracle_failure(e)

    return jsonify(result.to_dict())


@gate_bp.route("/verify-token-access", methods=["POST"])
@limiter.limit(CHECK_RATE_LIMIT)
def verify_token_access():
    """
    Check the signed-in wallet against an explicit token and amount.

    Expected JSON body:
        - tokenAddress: token to check
        - requiredAmount: decimal string
    """
    data = _json_body()
    token_address = data.get("tokenAddress")
    required_amount = data.get("requiredAmount")
    if not isinstance(token_address, str) or not token_address or required_amount in (None, ""):
        return jsonify({"error": "bad_request", "message": "Missing required parameters"}), 400

    wallet = current_wallet(_cfg())
    claimed = data.get("walletAddress")
    if claimed is not None and not isinstance(claimed, str):
        return jsonify({"error": "bad_request", "message": "walletAddress must be a string"}), 400
    if not wallet or (claimed and not same_wallet(wallet, claimed)):
        return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401

    services = get_services(current_app)
    try:
        decision = services.engine.evaluate(wallet, str(token_address), str(required_amount))
    except OracleError as e:
        return _oracle_failure(e)

    return jsonify(decision.to_dict())


@gate_bp.route("/check-token-access", methods=["POST"])
@limiter.limit(CHECK_RATE_LIMIT)
def check_token_access():
    """
    Check whether the signed-in wallet holds any of a page's connected token.

    Expected JSON body:
        - pageSlug: page whose connected token is checked
    """
    data = _json_body()
    page_slug = data.get("pageSlug")
    if not page_slug or not isinstance(page_slug, str):
        return jsonify({"error": "bad_request", "message": "Missing required parameters"}), 400

    wallet = current_wallet(_cfg())
    if not wallet:
        return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401

    services = get_services(current_app)
    page = services.store.get_page(page_slug)
    if page is None:
        raise NotFound(f"Page not found: {page_slug}")
    if not page.connected_token:
        return jsonify({"error": "bad_request", "message": "No token is connected to this page"}), 400

    try:
        decision = services.engine.evaluate(wallet, page.connected_token, DEFAULT_PAGE_REQUIRED_AMOUNT)
    except OracleError as e:
        return _oracle_failure(e)

    payload = decision.to_dict()
    payload["tokenSymbol"] = page.token_symbol or "tokens"
    return jsonify(payload)


@gate_bp.route("/verify-page-access", methods=["POST"])
def verify_page_access():
    """
    Report whether the signed-in wallet owns a page.

    Expected JSON body:
        - slug: page slug
    """
    data = _json_body()
    slug = data.get("slug")
    if not slug or not isinstance(slug, str):
        return jsonify({"error": "bad_request", "message": "Missing required parameters"}), 400

    wallet = current_wallet(_cfg())
    if not wallet:
        return jsonify({"error": "unauthorized", "message": "Not authenticated"}), 401

    page = get_services(current_app).store.get_page(slug)
    if page is None:
        raise NotFound(f"Page not found: {slug}")

    return jsonify({"isOwner": is_page_owner(page, wallet)})


@gate_bp.route("/analytics/clicks/<slug>", methods=["GET"])
def click_analytics(slug: str):
    """
    Most recent link clicks for a page (owner only).
    """
    services = get_services(current_app)
    page = services.store.get_page(slug)
    if page is None:
        raise NotFound(f"Page not found: {slug}")

    wallet = current_wallet(_cfg())
    if not wallet:
        return jsonify({"error": "unauthorized", "message": "Authentication required"}), 401
    if not is_page_owner(page, wallet):
        return jsonify({"error": "forbidden", "message": "Access denied"}), 403

    limit = _cfg().get("CLICK_HISTORY_LIMIT", 50)
    return jsonify({"clicks": services.clicks.recent_clicks(slug, limit=limit)})
