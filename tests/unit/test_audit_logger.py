"""
Unit tests for audit logging.
"""

import json
from unittest.mock import patch

import pytest

from linkgate.audit_logger import AuditLogger, get_audit_logger, short_wallet

WALLET = "Wallet1111111111111111111111111111111111abcd"


class TestAuditLogger:
    """Test audit logger functionality."""

    @pytest.fixture
    def audit_logger(self):
        """Create an AuditLogger instance for testing."""
        return AuditLogger()

    def test_log_access_decision(self, audit_logger):
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_access_decision(WALLET, "alice", "gated-1", "denied", balance="10", required="50")

            mock_info.assert_called_once()
            call_args = mock_info.call_args[0][0]
            assert "ACCESS_DECISION" in call_args
            assert "wallet=Wallet...abcd" in call_args
            assert "page=alice" in call_args
            assert "state=denied" in call_args
            assert "balance=10" in call_args
            assert "required=50" in call_args
            assert WALLET not in call_args

    def test_log_owner_bypass(self, audit_logger):
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_owner_bypass(WALLET, "alice", "gated-1")

            call_args = mock_info.call_args[0][0]
            assert "OWNER_BYPASS" in call_args
            assert "link=gated-1" in call_args

    def test_log_oracle_call_success(self, audit_logger):
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_oracle_call("getBalance", success=True)

            call_args = mock_info.call_args[0][0]
            assert "ORACLE_CALL" in call_args
            assert "method=getBalance" in call_args
            assert "status=SUCCESS" in call_args
            assert "error" not in call_args

    def test_log_oracle_call_failure(self, audit_logger):
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_oracle_call("getAssetsByOwner", success=False, error="Timeout")

            call_args = mock_info.call_args[0][0]
            assert "status=FAILURE" in call_args
            assert "error=Timeout" in call_args

    def test_log_rate_limit_exceeded(self, audit_logger):
        with patch.object(audit_logger.logger, "warning") as mock_warning:
            audit_logger.log_rate_limit_exceeded(WALLET, retry_after=7, served_stale=True)

            call_args = mock_warning.call_args[0][0]
            assert "RATE_LIMIT_EXCEEDED" in call_args
            assert "retry_after=7" in call_args
            assert "served_stale=True" in call_args

    def test_log_decrypt_failure(self, audit_logger):
        with patch.object(audit_logger.logger, "error") as mock_error:
            audit_logger.log_decrypt_failure("alice", "gated-1", "MalformedRecord")

            call_args = mock_error.call_args[0][0]
            assert "DECRYPT_FAILURE" in call_args
            assert "error=MalformedRecord" in call_args

    def test_log_event_is_json(self, audit_logger):
        with patch.object(audit_logger.logger, "info") as mock_info:
            audit_logger.log_event("links.saved", slug="alice", count=2)

            payload = json.loads(mock_info.call_args[0][0])
            assert payload["event"] == "links.saved"
            assert payload["slug"] == "alice"
            assert payload["count"] == 2
            assert "timestamp" in payload

    def test_log_security_event(self, audit_logger):
        with patch.object(audit_logger.logger, "warning") as mock_warning:
            audit_logger.log_security_event("links.save_denied", "medium", {"slug": "alice"})

            call_args = mock_warning.call_args[0][0]
            assert "SECURITY_EVENT" in call_args
            assert "severity=medium" in call_args

    def test_log_error_with_context(self, audit_logger):
        with patch.object(audit_logger.logger, "error") as mock_error:
            audit_logger.log_error("OracleUnavailable", "down", {"wallet": "x"})

            call_args = mock_error.call_args[0][0]
            assert "type=OracleUnavailable" in call_args
            assert "context=" in call_args


class TestHelpers:
    def test_get_audit_logger_is_singleton(self):
        assert get_audit_logger() is get_audit_logger()

    @pytest.mark.parametrize(
        "wallet,expected",
        [(None, "anonymous"), ("", "anonymous"), ("short", "short"), (WALLET, "Wallet...abcd")],
    )
    def test_short_wallet(self, wallet, expected):
        assert short_wallet(wallet) == expected
