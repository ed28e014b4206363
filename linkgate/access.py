"""
Access Decision Engine

Answers one question: does wallet W hold at least N of token T? Balances and
thresholds are compared as ``Decimal`` values because token amounts routinely
exceed the range where floats are exact.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from linkgate.errors import InvalidAmount
from linkgate.holdings import HoldingsCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    has_access: bool
    balance: str
    required_amount: str
    token_address: str
    stale: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasAccess": self.has_access,
            "balance": self.balance,
            "requiredAmount": self.required_amount,
            "tokenAddress": self.token_address,
            "stale": self.stale,
        }


def parse_amount(value: Any) -> Decimal:
    """Parse a non-negative decimal amount.

    Raises:
        InvalidAmount: for empty, non-numeric, non-finite or negative input.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    text = str(value).strip()
    if not text:
        raise InvalidAmount("Amount is empty")
    try:
        amount = Decimal(text)
    except InvalidOperation as e:
        raise InvalidAmount(f"Invalid amount: {value!r}") from e
    if not amount.is_finite() or amount < 0:
        raise InvalidAmount(f"Amount must be a non-negative number: {value!r}")
    return amount


class AccessDecisionEngine:
    """Compares cached or fetched holdings against a required amount."""

    def __init__(self, holdings_cache: HoldingsCache):
        self.holdings_cache = holdings_cache

    def evaluate(
        self,
        wallet_address: str,
        token_address: str,
        required_amount: str,
        force_refresh: bool = False,
    ) -> AccessDecision:
        """Decide whether ``wallet_address`` holds enough ``token_address``.

        Holdings failures (oracle down, rate limited with nothing cached)
        propagate; they are not a "no".
        """
        required = parse_amount(required_amount)
        result = self.holdings_cache.get_holdings(wallet_address, force_refresh=force_refresh)

        balance = "0"
        wanted = token_address.lower()
        for holding in result.holdings:
            if holding.token_address.lower() == wanted:
                balance = holding.balance
                break

        try:
            held = parse_amount(balance)
        except InvalidAmount:
            logger.warning(f"Treating unparseable balance {balance!r} of {token_address} as zero")
            held = Decimal(0)

        return AccessDecision(
            has_access=held >= required,
            balance=balance,
            required_amount=str(required_amount).strip(),
            token_address=token_address,
            stale=result.stale,
        )
