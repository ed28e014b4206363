"""
Unit tests for the access decision engine.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from linkgate.access import AccessDecisionEngine, parse_amount
from linkgate.errors import InvalidAmount, OracleUnavailable, RateLimited
from linkgate.holdings import HoldingsCache, HoldingsResult
from linkgate.oracle import Holding

WALLET = "Wallet1111111111111111111111111111111111111"


def _cache_with(*holdings, stale=False):
    cache = MagicMock(spec=HoldingsCache)
    cache.get_holdings.return_value = HoldingsResult(holdings=list(holdings), fetched_at=0.0, stale=stale)
    return cache


class TestEvaluate:
    """Balance comparison."""

    def test_exact_balance_grants(self):
        engine = AccessDecisionEngine(_cache_with(Holding("TOKEN123", "50")))

        decision = engine.evaluate(WALLET, "TOKEN123", "50")

        assert decision.has_access is True
        assert decision.balance == "50"

    def test_lower_balance_denies(self):
        engine = AccessDecisionEngine(_cache_with(Holding("TOKEN123", "10")))

        decision = engine.evaluate(WALLET, "TOKEN123", "50")

        assert decision.has_access is False
        assert decision.balance == "10"

    def test_values_beyond_float_precision(self):
        engine = AccessDecisionEngine(_cache_with(Holding("TOKEN123", "1000000000000")))

        assert engine.evaluate(WALLET, "TOKEN123", "999999999999").has_access is True
        assert engine.evaluate(WALLET, "TOKEN123", "1000000000001").has_access is False

    def test_values_beyond_2_pow_53(self):
        held = "9007199254740993"  # 2**53 + 1, not representable as a float
        engine = AccessDecisionEngine(_cache_with(Holding("TOKEN123", held)))

        assert engine.evaluate(WALLET, "TOKEN123", "9007199254740993").has_access is True
        assert engine.evaluate(WALLET, "TOKEN123", "9007199254740994").has_access is False

    def test_fractional_amounts(self):
        engine = AccessDecisionEngine(_cache_with(Holding("TOKEN123", "0.1")))

        assert engine.evaluate(WALLET, "TOKEN123", "0.10").has_access is True
        assert engine.evaluate(WALLET, "TOKEN123", "0.1000000001").has_access is False

    def test_token_match_is_case_insensitive(self):
        engine = AccessDecisionEngine(_cache_with(Holding("token123", "75")))

        decision = engine.evaluate(WALLET, "TOKEN123", "50")

        assert decision.has_access is True
        assert decision.token_address == "TOKEN123"

    def test_missing_token_counts_as_zero(self):
        engine = AccessDecisionEngine(_cache_with(Holding("native", "3")))

        decision = engine.evaluate(WALLET, "TOKEN123", "1")

        assert decision.has_access is False
        assert decision.balance == "0"

    def test_zero_requirement_grants_without_holding(self):
        engine = AccessDecisionEngine(_cache_with())

        assert engine.evaluate(WALLET, "TOKEN123", "0").has_access is True

    def test_stale_flag_is_carried(self):
        engine = AccessDecisionEngine(_cache_with(Holding("TOKEN123", "75"), stale=True))

        assert engine.evaluate(WALLET, "TOKEN123", "50").stale is True

    def test_force_refresh_is_forwarded(self):
        cache = _cache_with(Holding("TOKEN123", "75"))
        engine = AccessDecisionEngine(cache)

        engine.evaluate(WALLET, "TOKEN123", "50", force_refresh=True)

        cache.get_holdings.assert_called_once_with(WALLET, force_refresh=True)

    def test_to_dict(self):
        engine = AccessDecisionEngine(_cache_with(Holding("TOKEN123", "75")))

        assert engine.evaluate(WALLET, "TOKEN123", " 50 ").to_dict() == {
            "hasAccess": True,
            "balance": "75",
            "requiredAmount": "50",
            "tokenAddress": "TOKEN123",
            "stale": False,
        }


class TestFailures:
    """Holdings failures are not a "no"."""

    @pytest.mark.parametrize("error", [OracleUnavailable("down"), RateLimited("slow down", retry_after=5)])
    def test_holdings_failure_propagates(self, error):
        cache = MagicMock(spec=HoldingsCache)
        cache.get_holdings.side_effect = error
        engine = AccessDecisionEngine(cache)

        with pytest.raises(type(error)):
            engine.evaluate(WALLET, "TOKEN123", "50")

    def test_invalid_requirement_is_rejected_before_lookup(self):
        cache = _cache_with(Holding("TOKEN123", "75"))
        engine = AccessDecisionEngine(cache)

        with pytest.raises(InvalidAmount):
            engine.evaluate(WALLET, "TOKEN123", "fifty")
        cache.get_holdings.assert_not_called()


class TestParseAmount:
    @pytest.mark.parametrize("value,expected", [("50", Decimal(50)), (" 1.5 ", Decimal("1.5")), (0, Decimal(0))])
    def test_valid(self, value, expected):
        assert parse_amount(value) == expected

    @pytest.mark.parametrize("value", [None, "", "  ", "abc", "-1", "NaN", "Infinity", True])
    def test_invalid(self, value):
        with pytest.raises(InvalidAmount):
            parse_amount(value)
