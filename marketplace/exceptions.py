"""Exceptions raised by the marketplace client."""
from typing import Optional


class MarketplaceError(Exception):
    """Base exception for marketplace errors"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}" if status_code else message)


class TransientMarketplaceError(MarketplaceError):
    """Failure worth retrying"""
    pass


class RateLimitedError(TransientMarketplaceError):
    """Raised on HTTP 429"""
    pass


class MarketplaceServerError(TransientMarketplaceError):
    """Raised on HTTP 5xx"""
    pass


class MarketplaceConnectionError(TransientMarketplaceError):
    """Raised when the request times out or the connection fails"""
    pass


class InvalidPayloadError(TransientMarketplaceError):
    """Raised when a 2xx response is not a JSON array"""
    pass


class MarketplaceClientError(MarketplaceError):
    """Raised on any other 4xx; never retried"""
    pass
