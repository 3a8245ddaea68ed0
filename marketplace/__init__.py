"""Marketplace module for fetching collection listings.

The client pages through the collection's listings endpoint, sorted by
price, until a short page comes back. Every request passes through the
rate limiter, has its own timeout and is retried with exponential backoff
on 429, 5xx, timeouts and connection failures. Other 4xx responses fail
immediately.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import backoff
import requests
from pydantic import BaseModel

from listings.models import NormalizedListing
from .exceptions import (
    MarketplaceError,
    TransientMarketplaceError,
    RateLimitedError,
    MarketplaceServerError,
    MarketplaceConnectionError,
    InvalidPayloadError,
    MarketplaceClientError,
)
from .normalize import normalize_item, parse_token_num
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'https://api-mainnet.magiceden.dev/v2'
DEFAULT_COLLECTION = 'drifella_iii'
USER_AGENT = 'Drifellascape'


class FetchResult(BaseModel):
    """All normalized listings from one full pass over the collection."""
    listings: List[NormalizedListing]
    pages: int
    skipped: int


class MarketplaceClient:
    """Marketplace listings client"""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        collection: str = DEFAULT_COLLECTION,
        page_limit: int = 100,
        max_retries: int = 3,
        initial_backoff: float = 2.0,
        request_timeout: float = 30.0,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None
    ):
        """Initialize the client.

        Args:
            base_url: Marketplace API root
            collection: Collection symbol
            page_limit: Listings per page; a shorter page ends the pass
            max_retries: Attempts per page, including the first
            initial_backoff: First backoff delay in seconds, doubled per retry
            request_timeout: Per-request timeout in seconds
            rate_limiter: Shared rate limiter, a default one if not given
            session: requests session to reuse
        """
        self.url = f"{base_url.rstrip('/')}/collections/{collection}/listings"
        self.page_limit = page_limit
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.request_timeout = request_timeout
        self.rate_limiter = rate_limiter or RateLimiter()

        self.session = session or requests.Session()
        self.session.headers['accept'] = 'application/json'
        self.session.headers['user-agent'] = USER_AGENT

        self._fetch_page_with_retry = backoff.on_exception(
            backoff.expo,
            TransientMarketplaceError,
            max_tries=max(1, max_retries),
            factor=initial_backoff,
            jitter=None,
            logger=logger,
        )(self._request_page)

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> 'MarketplaceClient':
        return cls(
            base_url=settings['marketplace_base_url'],
            collection=settings['collection'],
            page_limit=settings['page_limit'],
            max_retries=settings['max_retries'],
            initial_backoff=settings['initial_backoff'],
            request_timeout=settings['request_timeout'],
            rate_limiter=RateLimiter(
                min_interval=settings['min_request_interval'],
                max_per_minute=settings['max_requests_per_minute'],
            ),
        )

    def _params(self, offset: int) -> Dict[str, Any]:
        return {
            'offset': offset,
            'limit': self.page_limit,
            'sort': 'listPrice',
            'listingAggMode': 'true',
            'sort_direction': 'asc',
        }

    def _request_page(self, offset: int) -> List[Any]:
        """Make one rate-limited request for the page at ``offset``.

        Raises:
            RateLimitedError: HTTP 429
            MarketplaceServerError: HTTP 5xx
            MarketplaceConnectionError: Timeout or connection failure
            InvalidPayloadError: Response body is not a JSON array
            MarketplaceClientError: Any other non-2xx status
        """
        self.rate_limiter.wait()

        try:
            response = self.session.get(
                self.url,
                params=self._params(offset),
                timeout=self.request_timeout
            )
        except requests.exceptions.Timeout as e:
            raise MarketplaceConnectionError(
                f"Request timed out after {self.request_timeout} seconds"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise MarketplaceConnectionError(
                f"Failed to connect to marketplace: {str(e)}"
            ) from e

        status = response.status_code
        if status == 429:
            raise RateLimitedError(response.text[:200], status)
        if status >= 500:
            raise MarketplaceServerError(response.text[:200], status)
        if status >= 400:
            raise MarketplaceClientError(response.text[:200], status)

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidPayloadError("Response is not valid JSON", status) from e
        if not isinstance(data, list):
            raise InvalidPayloadError("Expected array response", status)
        return data

    def fetch_page(self, offset: int) -> List[Any]:
        """Fetch the raw page at ``offset``, retrying transient failures."""
        return self._fetch_page_with_retry(offset)

    def fetch_all(self) -> FetchResult:
        """Fetch and normalize every listing of the collection.

        Raises:
            MarketplaceError: If a page still fails after all retries
        """
        listings: List[NormalizedListing] = []
        skipped = 0
        offset = 0
        pages = 0

        while True:
            try:
                items = self.fetch_page(offset)
            except MarketplaceError as e:
                logger.error(f"Fetch listings failed after page={pages}, offset={offset}: {e}")
                raise
            pages += 1

            for item in items:
                listing = normalize_item(item)
                if listing is None:
                    skipped += 1
                    continue
                listings.append(listing)

            if len(items) < self.page_limit:
                break
            offset += self.page_limit

        logger.info(f"Fetched listings: pages={pages}, total={len(listings)}, skipped={skipped}")
        return FetchResult(listings=listings, pages=pages, skipped=skipped)

    async def fetch_all_async(self) -> FetchResult:
        """Run ``fetch_all`` in a worker thread."""
        return await asyncio.to_thread(self.fetch_all)

    def close(self) -> None:
        self.session.close()


__all__ = [
    'MarketplaceClient',
    'FetchResult',
    'RateLimiter',
    'normalize_item',
    'parse_token_num',
    'MarketplaceError',
    'TransientMarketplaceError',
    'RateLimitedError',
    'MarketplaceServerError',
    'MarketplaceConnectionError',
    'InvalidPayloadError',
    'MarketplaceClientError',
]
