"""
Holdings cache and per-wallet rate limiter.

Wallet holdings are cached under ``tokens:<wallet>`` and oracle calls are
counted under ``ratelimit:tokens:<wallet>`` in a shared Redis (or a
``MemoryStore`` with the same interface). A cached entry counts as fresh for
``ttl`` seconds but is retained for ``stale_ttl`` seconds so it can be served
when the oracle is rate limited or failing.

Every oracle call first takes a slot with an atomic ``INCR`` on the counter,
whose window expiry is set in the same transaction. Concurrent misses for the
same wallet therefore reach the oracle at most ``max_requests`` times per
window, across processes. No in-process locking is involved.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from linkgate import metrics
from linkgate.audit_logger import get_audit_logger
from linkgate.errors import OracleError, RateLimited
from linkgate.oracle import BalanceOracleClient, Holding

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "tokens:"
RATE_LIMIT_KEY_PREFIX = "ratelimit:tokens:"


def holdings_key(wallet_address: str) -> str:
    return f"{CACHE_KEY_PREFIX}{wallet_address}"


def rate_limit_key(wallet_address: str) -> str:
    return f"{RATE_LIMIT_KEY_PREFIX}{wallet_address}"


@dataclass
class HoldingsResult:
    """Holdings plus where they came from."""

    holdings: List[Holding] = field(default_factory=list)
    fetched_at: float = 0.0
    stale: bool = False
    from_cache: bool = False

    def to_dict(self) -> dict:
        return {
            "tokens": [holding.to_dict() for holding in self.holdings],
            "fetchedAt": self.fetched_at,
            "stale": self.stale,
            "fromCache": self.from_cache,
        }


class HoldingsCache:
    """Read-through cache in front of :class:`BalanceOracleClient`."""

    def __init__(
        self,
        store: Any,
        oracle: BalanceOracleClient,
        ttl: int = 10,
        stale_ttl: int = 3600,
        max_requests: int = 3,
        window: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.oracle = oracle
        self.ttl = ttl
        self.stale_ttl = max(stale_ttl, ttl)
        self.max_requests = max_requests
        self.window = window
        self.clock = clock
        self.audit_logger = get_audit_logger()

    def _read_cached(self, wallet_address: str) -> Optional[HoldingsResult]:
        raw = self.store.get(holdings_key(wallet_address))
        if not raw:
            return None
        try:
            payload = json.loads(raw)
            holdings = [Holding.from_dict(item) for item in payload["tokens"]]
            fetched_at = float(payload["fetchedAt"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable holdings cache entry for {wallet_address}: {e}")
            self.store.delete(holdings_key(wallet_address))
            return None

        stale = self.clock() - fetched_at >= self.ttl
        return HoldingsResult(holdings=holdings, fetched_at=fetched_at, stale=stale, from_cache=True)

    def _write_cached(self, wallet_address: str, holdings: List[Holding], fetched_at: float) -> None:
        payload = {"tokens": [holding.to_dict() for holding in holdings], "fetchedAt": fetched_at}
        self.store.set(holdings_key(wallet_address), json.dumps(payload), ex=self.stale_ttl)

    def _retry_after(self, wallet_address: str) -> int:
        remaining = self.store.ttl(rate_limit_key(wallet_address))
        if remaining is None or remaining < 0:
            return self.window
        return max(1, int(remaining))

    def rate_limit_status(self, wallet_address: str) -> Tuple[int, int]:
        """``(requests used in the current window, seconds until it resets)``."""
        raw = self.store.get(rate_limit_key(wallet_address))
        count = min(int(raw), self.max_requests) if raw else 0
        retry_after = self._retry_after(wallet_address) if count else 0
        return count, retry_after

    def _take_slot(self, wallet_address: str) -> bool:
        """Count one oracle call; False when the window's ceiling is already used."""
        key = rate_limit_key(wallet_address)
        with self.store.pipeline() as pipe:
            pipe.set(key, 0, ex=self.window, nx=True)
            pipe.incr(key)
            _, count = pipe.execute()
        return int(count) <= self.max_requests

    def get_holdings(
        self,
        wallet_address: str,
        force_refresh: bool = False,
        bypass_rate_limit: bool = False,
    ) -> HoldingsResult:
        """Return holdings for ``wallet_address``, consulting the oracle only when needed.

        Args:
            wallet_address: Wallet to look up.
            force_refresh: Skip the fresh-cache shortcut.
            bypass_rate_limit: Skip rate-limit accounting. Only for explicit,
                user-triggered refreshes; never for automatic code paths.

        Raises:
            RateLimited: ceiling reached and nothing cached.
            OracleUnavailable, MalformedResponse: oracle failed and nothing cached.
        """
        cached = self._read_cached(wallet_address)

        if cached is not None and not cached.stale and not force_refresh:
            metrics.holdings_lookups.labels(source="cache").inc()
            return cached

        if not bypass_rate_limit:
            if not self._take_slot(wallet_address):
                retry_after = self._retry_after(wallet_address)
                self.audit_logger.log_rate_limit_exceeded(
                    wallet_address, retry_after, served_stale=cached is not None
                )
                if cached is not None:
                    metrics.holdings_lookups.labels(source="stale").inc()
                    cached.stale = True
                    return cached
                raise RateLimited("Too many holdings requests for this wallet", retry_after=retry_after)

        try:
            holdings = self.oracle.fetch_holdings(wallet_address)
        except OracleError as e:
            if cached is None:
                raise
            logger.warning(f"Serving stale holdings for {wallet_address} after oracle failure: {e}")
            metrics.holdings_lookups.labels(source="stale").inc()
            cached.stale = True
            return cached

        fetched_at = self.clock()
        self._write_cached(wallet_address, holdings, fetched_at)
        metrics.holdings_lookups.labels(source="fresh").inc()
        return HoldingsResult(holdings=holdings, fetched_at=fetched_at, stale=False, from_cache=False)

    def invalidate(self, wallet_address: str) -> None:
        self.store.delete(holdings_key(wallet_address))
