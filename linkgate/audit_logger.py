"""
Audit logging for linkgate.

Records who was granted or refused a gated destination, and when the balance
oracle or the per-wallet limiter got in the way. Plaintext gated URLs are
never written to the audit trail.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

_logger = logging.getLogger("audit")
_audit_logger = None  # Will be initialized by init_audit_logger


def init_audit_logger():
    """Initialize the audit logger."""
    global _audit_logger

    _logger.setLevel(logging.INFO)

    # Add console handler if not already present
    if not _logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - AUDIT - %(levelname)s - %(message)s"))
        _logger.addHandler(handler)

    _audit_logger = AuditLogger()

    _logger.info("Audit logger initialized")


def get_audit_logger():
    """Get the audit logger instance."""
    global _audit_logger

    if _audit_logger is None:
        init_audit_logger()
    return _audit_logger


def short_wallet(wallet: Optional[str]) -> str:
    """Abbreviate a wallet address for log lines."""
    if not wallet:
        return "anonymous"
    if len(wallet) <= 12:
        return wallet
    return f"{wallet[:6]}...{wallet[-4:]}"


class AuditLogger:
    """
    Audit logging interface for access-control events.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or _logger

    def log_event(self, event: str, **details: Any) -> None:
        """Generic structured audit event."""

        payload = {"event": event, **details, "timestamp": datetime.utcnow().isoformat()}
        self.logger.info(json.dumps(payload, default=str))

    def log_access_decision(
        self,
        wallet: Optional[str],
        page_slug: str,
        link_id: str,
        state: str,
        balance: Optional[str] = None,
        required: Optional[str] = None,
    ):
        """Log the outcome of a gated link resolution."""
        self.logger.info(
            f"ACCESS_DECISION | wallet={short_wallet(wallet)} | page={page_slug} | link={link_id} "
            f"| state={state} | balance={balance} | required={required}"
        )

    def log_owner_bypass(self, wallet: str, page_slug: str, link_id: str):
        """Log an owner previewing their own gated link."""
        self.logger.info(f"OWNER_BYPASS | wallet={short_wallet(wallet)} | page={page_slug} | link={link_id}")

    def log_oracle_call(self, method: str, success: bool, error: Optional[str] = None):
        """Log a balance oracle RPC call."""
        status = "SUCCESS" if success else "FAILURE"
        msg = f"ORACLE_CALL | method={method} | status={status}"
        if error:
            msg += f" | error={error}"
        self.logger.info(msg)

    def log_rate_limit_exceeded(self, wallet: str, retry_after: Optional[int], served_stale: bool):
        """Log a per-wallet holdings rate limit hit."""
        self.logger.warning(
            f"RATE_LIMIT_EXCEEDED | wallet={short_wallet(wallet)} | retry_after={retry_after} "
            f"| served_stale={served_stale}"
        )

    def log_decrypt_failure(self, page_slug: str, link_id: str, error: str):
        """Log a stored gated URL that could not be decrypted."""
        self.logger.error(f"DECRYPT_FAILURE | page={page_slug} | link={link_id} | error={error}")

    def log_security_event(self, event_type: str, severity: str, details: Dict[str, Any]):
        """Log security event."""
        self.logger.warning(f"SECURITY_EVENT | type={event_type} | severity={severity} | details={details}")

    def log_error(self, error_type: str, error_msg: str, context: Optional[Dict[str, Any]] = None):
        """Log application error."""
        msg = f"ERROR | type={error_type} | msg={error_msg}"
        if context:
            msg += f" | context={context}"
        self.logger.error(msg)
