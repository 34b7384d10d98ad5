"""Marketplace collector: paginated sold and active listing searches."""
import logging
from datetime import datetime
from typing import Any, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from market_intel.auth.token_cache import CredentialCache
from market_intel.config import config
from market_intel.errors import ExternalServiceError
from market_intel.fetch.endpoints import get_finding_url, seller_search_params, sold_search_params
from market_intel.fetch.rate_limit import RateLimiter
from market_intel.models import ListingMode, RawListing

logger = logging.getLogger(__name__)


def is_retryable_status(response: httpx.Response) -> bool:
    """Check if status code is retryable."""
    return response.status_code in (429, 500, 502, 503, 504)


class MarketplaceClient:
    """HTTP client for the listing search API with rate limiting and retries.

    Every call goes through the shared ``CredentialCache``; a credential
    failure surfaces before any listing request is sent.
    """

    def __init__(
        self,
        token_cache: CredentialCache,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        app_id: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.token_cache = token_cache
        self.app_id = app_id if app_id is not None else (config.EBAY_APP_ID or "")
        self.base_url = base_url or get_finding_url()
        self._owns_client = client is None
        if client is None:
            limits = httpx.Limits(max_connections=20, max_keepalive_connections=10)
            client = httpx.AsyncClient(http2=True, timeout=config.TIMEOUT, limits=limits)
        self.client = client
        self.rate_limiter = rate_limiter or RateLimiter(config.RATE_PER_DOMAIN, config.DAILY_CALL_LIMIT)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def authenticate(self) -> str:
        """Make sure a usable token exists before a run starts fetching."""
        return await self.token_cache.get_token()

    async def search_sold(self, keyword: str, page: int, page_size: int, user_id: str) -> list[RawListing]:
        """Fetch one page of sold/completed listings for a keyword."""
        params = sold_search_params(self.app_id, keyword, page, page_size)
        data = await self._call("findCompletedItems", params)
        return parse_finding_response(
            data,
            "findCompletedItemsResponse",
            user_id=user_id,
            search_keyword=keyword,
            mode=ListingMode.SOLD,
        )

    async def search_seller(self, seller_name: str, page: int, page_size: int, user_id: str) -> list[RawListing]:
        """Fetch one page of a seller's active listings."""
        params = seller_search_params(self.app_id, seller_name, page, page_size)
        data = await self._call("findItemsAdvanced", params)
        return parse_finding_response(
            data,
            "findItemsAdvancedResponse",
            user_id=user_id,
            search_keyword=f"seller:{seller_name}",
            mode=ListingMode.ACTIVE,
        )

    async def _call(self, operation: str, params: dict[str, str]) -> dict[str, Any]:
        token = await self.token_cache.get_token()
        try:
            response = await self._fetch(operation, params, token)
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                f"eBay API error: {e.response.status_code} {e.response.reason_phrase}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"eBay API request failed: {type(e).__name__}: {e}") from e

        if response.status_code == 401:
            # Token revoked early; next call exchanges a fresh one
            self.token_cache.invalidate()
        if response.status_code != 200:
            raise ExternalServiceError(
                f"eBay API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(f"eBay API returned invalid JSON: {e}") from e

    @retry(
        stop=stop_after_attempt(config.MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError, httpx.HTTPStatusError)),
        reraise=True,
    )
    async def _fetch(self, operation: str, params: dict[str, str], token: str) -> httpx.Response:
        """Send one search request, retrying transport errors and 429/5xx."""
        await self.rate_limiter.acquire(self.base_url)
        headers = {
            "Authorization": f"Bearer {token}",
            "X-EBAY-SOA-SECURITY-APPNAME": self.app_id,
            "X-EBAY-SOA-OPERATION-NAME": operation,
            "X-EBAY-SOA-RESPONSE-DATA-FORMAT": "JSON",
        }
        try:
            response = await self.client.get(self.base_url, params=params, headers=headers)
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            logger.warning(f"Network error for {operation}: {e}")
            raise

        if is_retryable_status(response):
            response.raise_for_status()
        return response


def _first(value: Any, default: Any = None) -> Any:
    """Finding API wraps every scalar in a one-element list."""
    if isinstance(value, list):
        return value[0] if value else default
    return value if value is not None else default


def _parse_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_finding_response(
    data: dict[str, Any],
    root_key: str,
    user_id: str,
    search_keyword: str,
    mode: ListingMode,
) -> list[RawListing]:
    """Convert a Finding API JSON body into raw listing records."""
    response = _first(data.get(root_key))
    if not response or _first(response.get("ack")) not in ("Success", "Warning"):
        message = "Unknown eBay API error"
        if response:
            error = _first(_first(response.get("errorMessage"), {}).get("error"), {})
            message = _first(error.get("message"), message)
        raise ExternalServiceError(message)

    search_result = _first(response.get("searchResult"), {})
    items = search_result.get("item") or []

    listings = []
    for item in items:
        selling_status = _first(item.get("sellingStatus"), {})
        listing_info = _first(item.get("listingInfo"), {})
        current_price = _first(selling_status.get("currentPrice"), {})
        item_url = _first(item.get("viewItemURL"))
        item_id = _first(item.get("itemId"))
        if not item_id and item_url:
            item_id = item_url.rstrip("/").split("/")[-1].split("?")[0]
        if not item_id:
            logger.debug("Skipping search result without an item id")
            continue

        if mode == ListingMode.SOLD:
            listed_at = _parse_datetime(_first(listing_info.get("endTime")))
            watcher_count = None
        else:
            listed_at = _parse_datetime(_first(listing_info.get("startTime")))
            watcher_count = _parse_int(_first(listing_info.get("watchCount"))) or 0

        listings.append(
            RawListing(
                item_id=str(item_id),
                title=(_first(item.get("title")) or "").strip(),
                description=_first(item.get("subtitle")),
                price=_parse_float(current_price.get("__value__")),
                currency=current_price.get("@currencyId") or "USD",
                listed_at=listed_at,
                item_url=item_url,
                image_url=_first(item.get("galleryURL")),
                watcher_count=watcher_count,
                user_id=user_id,
                search_keyword=search_keyword,
                mode=mode,
            )
        )
    return listings
