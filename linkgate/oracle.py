"""
Balance Oracle Client

Reads a wallet's fungible token balances and native coin balance from a
Helius-compatible JSON-RPC indexer. The client never retries; the holdings
cache decides what to do when the oracle is down or slow.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import requests

from linkgate import metrics
from linkgate.audit_logger import get_audit_logger
from linkgate.errors import MalformedResponse, OracleUnavailable

logger = logging.getLogger(__name__)

NATIVE_TOKEN = "native"


@dataclass(frozen=True)
class Holding:
    """One wallet's balance of one asset."""

    token_address: str
    balance: str
    decimals: Optional[int] = None
    symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "tokenAddress": data["token_address"],
            "balance": data["balance"],
            "decimals": data["decimals"],
            "symbol": data["symbol"],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Holding":
        return cls(
            token_address=str(data["tokenAddress"]),
            balance=str(data.get("balance") or "0"),
            decimals=data.get("decimals"),
            symbol=data.get("symbol"),
        )


def format_decimal(value: Decimal) -> str:
    """Plain decimal string without exponent or trailing zeros."""
    if value == 0:
        return "0"
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _normalize_balance(raw: Any) -> str:
    if raw is None or raw == "":
        return "0"
    try:
        amount = Decimal(str(raw))
    except InvalidOperation:
        logger.warning(f"Ignoring unparseable balance from oracle: {raw!r}")
        return "0"
    if not amount.is_finite() or amount < 0:
        return "0"
    return format_decimal(amount)


def _asset_address(asset: Dict[str, Any]) -> Optional[str]:
    metadata = (asset.get("content") or {}).get("metadata") or {}
    return asset.get("id") or asset.get("mint") or metadata.get("mint")


class BalanceOracleClient:
    """JSON-RPC client for wallet holdings."""

    def __init__(
        self,
        rpc_url: str,
        api_key: Optional[str],
        timeout: float = 5.0,
        page_limit: int = 1000,
        max_pages: int = 5,
        native_decimals: int = 9,
        session: Optional[requests.Session] = None,
    ):
        self.rpc_url = rpc_url
        self.api_key = api_key
        self.timeout = timeout
        self.page_limit = page_limit
        self.max_pages = max(1, max_pages)
        self.native_decimals = native_decimals
        self.session = session or requests.Session()
        self.audit_logger = get_audit_logger()

    def _call(self, method: str, params: Any) -> Dict[str, Any]:
        if not self.api_key:
            raise OracleUnavailable("Balance oracle API key is not configured")

        payload = {"jsonrpc": "2.0", "id": "token-holdings", "method": method, "params": params}
        try:
            resp = self.session.post(
                self.rpc_url,
                params={"api-key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            metrics.oracle_requests.labels(method=method, outcome="unavailable").inc()
            self.audit_logger.log_oracle_call(method, success=False, error=type(e).__name__)
            raise OracleUnavailable(f"{method} request failed: {e}") from e

        if resp.status_code >= 300:
            metrics.oracle_requests.labels(method=method, outcome="unavailable").inc()
            self.audit_logger.log_oracle_call(method, success=False, error=f"HTTP {resp.status_code}")
            raise OracleUnavailable(f"{method} returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            metrics.oracle_requests.labels(method=method, outcome="malformed").inc()
            raise MalformedResponse(f"{method} returned a non-JSON body") from e

        if not isinstance(data, dict):
            metrics.oracle_requests.labels(method=method, outcome="malformed").inc()
            raise MalformedResponse(f"{method} returned {type(data).__name__}, expected an object")

        if data.get("error"):
            metrics.oracle_requests.labels(method=method, outcome="unavailable").inc()
            self.audit_logger.log_oracle_call(method, success=False, error=str(data["error"]))
            raise OracleUnavailable(f"{method} returned an RPC error: {data['error']}")

        metrics.oracle_requests.labels(method=method, outcome="ok").inc()
        self.audit_logger.log_oracle_call(method, success=True)
        return data

    def fetch_fungible_assets(self, wallet_address: str) -> List[Holding]:
        """All non-zero fungible token balances owned by ``wallet_address``."""
        holdings: List[Holding] = []
        for page in range(1, self.max_pages + 1):
            data = self._call(
                "getAssetsByOwner",
                {
                    "ownerAddress": wallet_address,
                    "page": page,
                    "limit": self.page_limit,
                    "displayOptions": {"showFungible": True},
                },
            )
            result = data.get("result")
            items = result.get("items") if isinstance(result, dict) else None
            if not isinstance(items, list):
                raise MalformedResponse("getAssetsByOwner response is missing result.items")

            for asset in items:
                if not isinstance(asset, dict):
                    continue
                address = _asset_address(asset)
                token_info = asset.get("token_info") or {}
                balance = _normalize_balance(token_info.get("balance"))
                if not address or balance == "0":
                    continue
                holdings.append(
                    Holding(
                        token_address=address,
                        balance=balance,
                        decimals=token_info.get("decimals"),
                        symbol=token_info.get("symbol"),
                    )
                )

            if len(items) < self.page_limit:
                break
        else:
            logger.warning(f"Stopped paging assets for {wallet_address} after {self.max_pages} pages")

        return holdings

    def fetch_native_balance(self, wallet_address: str) -> Holding:
        """Native coin balance, converted from the smallest unit."""
        data = self._call("getBalance", [wallet_address])
        result = data.get("result")
        value = result.get("value") if isinstance(result, dict) else None
        if value is None or isinstance(value, bool):
            raise MalformedResponse("getBalance response is missing result.value")

        try:
            lamports = Decimal(str(value))
        except InvalidOperation as e:
            raise MalformedResponse(f"getBalance returned a non-numeric value: {value!r}") from e

        balance = lamports / (Decimal(10) ** self.native_decimals)
        return Holding(token_address=NATIVE_TOKEN, balance=format_decimal(balance), decimals=self.native_decimals)

    def fetch_holdings(self, wallet_address: str) -> List[Holding]:
        """Native balance first, then every non-zero fungible token."""
        assets = self.fetch_fungible_assets(wallet_address)
        native = self.fetch_native_balance(wallet_address)
        logger.debug(f"Fetched {len(assets)} fungible holdings for {wallet_address}")
        return [native] + assets

    def close(self) -> None:
        self.session.close()
