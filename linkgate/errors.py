"""Exception hierarchy for the token-gated link service."""

from __future__ import annotations

from typing import Optional


class LinkGateError(Exception):
    """Base exception for all linkgate errors."""

    pass


class ConfigurationError(LinkGateError):
    """Required configuration is missing or invalid. Fatal at startup."""

    pass


class CipherError(LinkGateError):
    """Base class for URL cipher failures."""

    pass


class MalformedRecord(CipherError):
    """Encrypted record does not have the ``salt:iv:ciphertext`` layout."""

    pass


class DecryptionFailure(CipherError):
    """Record is well formed but could not be decrypted."""

    pass


class OracleError(LinkGateError):
    """Base class for balance oracle failures."""

    pass


class OracleUnavailable(OracleError):
    """Network failure, timeout or error status from the oracle RPC."""

    pass


class MalformedResponse(OracleError):
    """Oracle answered, but not with the expected result shape."""

    pass


class RateLimited(LinkGateError):
    """Per-wallet holdings request ceiling reached and nothing cached."""

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class NotFound(LinkGateError):
    """Page or link does not exist."""

    pass


class InvalidAmount(LinkGateError):
    """Amount is not a non-negative decimal string."""

    pass


class InvalidLinkItem(LinkGateError):
    """Submitted link item has missing fields or fields of the wrong type."""

    pass


class LinkConflict(LinkGateError):
    """Submitted link id already belongs to another page, or repeats in one save."""

    pass
