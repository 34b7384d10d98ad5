"""Error kinds raised across the pipeline."""
from typing import Optional


class MarketIntelError(Exception):
    """Base class for pipeline errors."""


class Unauthorized(MarketIntelError):
    """Missing or invalid caller identity or credentials."""


class AuthError(Unauthorized):
    """Marketplace credentials are unconfigured or the exchange was rejected."""


class InvalidTransition(MarketIntelError):
    """Scrape job state machine violation."""


class NotFound(MarketIntelError):
    """Job or listing absent, or not owned by the caller."""


class ExternalServiceError(MarketIntelError):
    """Credential exchange or listing search failed (network or non-2xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(MarketIntelError):
    """Signal extraction received malformed input."""


class InsufficientData(MarketIntelError):
    """No usable comparables left for price banding."""
