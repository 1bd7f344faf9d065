"""
Error taxonomy.

- ValidationError: bad input caught before any network call
- UpstreamError: ledger or model service call failed
- DecodeError: malformed stream record
- ProtocolError: delegation addressed to an unconfigured or self-referential agent

Tool-level failures are converted to ``{"success": False, "error": ...}``
results by the toolset; these classes exist so callers can tell them apart.
"""

from typing import Optional


class LedgerAgentsError(Exception):
    """Base exception for all ledger agent errors."""

    def __init__(self, message: str = "", **detail):
        self.detail = detail
        super().__init__(message)


class ValidationError(LedgerAgentsError):
    """Input violates a business rule (unbalanced entry, bad account format, ...)."""


class UpstreamError(LedgerAgentsError):
    """An external service call failed."""


class LedgerAPIError(UpstreamError):
    """Bookkeeping REST API returned an error response."""

    def __init__(self, message: str, status_code: Optional[int] = None, **detail):
        self.status_code = status_code
        super().__init__(message, **detail)


class ModelServiceError(UpstreamError):
    """Language model service failed or returned an error payload."""


class DecodeError(LedgerAgentsError):
    """A stream record could not be parsed."""


class ProtocolError(LedgerAgentsError):
    """Delegation request violates the routing contract."""
