"""
Visitor identity.

Wallet login itself happens elsewhere; this module only answers "which wallet,
if any, has this request proven it controls?". Two sources are accepted: the
Flask session (``wallet_address``) and an ``Authorization: Bearer`` JWT whose
``wallet`` claim was signed with ``JWT_SECRET``.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional

import jwt
from flask import request, session

from linkgate.pages import PageRecord

logger = logging.getLogger(__name__)

SESSION_WALLET_KEY = "wallet_address"
WALLET_CLAIM = "wallet"


def issue_wallet_token(wallet_address: str, cfg: Mapping[str, Any], ttl: int = 3600) -> str:
    """Sign a wallet identity token (used by the login collaborator and tests)."""
    now = int(time.time())
    payload: Dict[str, Any] = {"sub": wallet_address, WALLET_CLAIM: wallet_address, "iat": now, "exp": now + ttl}
    return jwt.encode(payload, str(cfg["JWT_SECRET"]), algorithm=str(cfg.get("JWT_ALGORITHM") or "HS256"))


def wallet_from_token(token: str, cfg: Mapping[str, Any]) -> Optional[str]:
    """Verified wallet from a bearer token, or None when invalid."""
    try:
        claims = jwt.decode(
            token,
            str(cfg["JWT_SECRET"]),
            algorithms=[str(cfg.get("JWT_ALGORITHM") or "HS256")],
            options={"require": ["exp"]},
        )
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected wallet token: {e}")
        return None
    wallet = claims.get(WALLET_CLAIM)
    return str(wallet) if wallet else None


def current_wallet(cfg: Mapping[str, Any]) -> Optional[str]:
    """Wallet of the current request, or None for anonymous visitors."""
    wallet = session.get(SESSION_WALLET_KEY)
    if wallet:
        return str(wallet)

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return wallet_from_token(auth_header[len("Bearer ") :].strip(), cfg)
    return None


def same_wallet(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


def is_page_owner(page: PageRecord, wallet_address: Optional[str]) -> bool:
    return same_wallet(page.wallet_address, wallet_address)
