"""Application access token cache for the marketplace API."""
import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from market_intel.config import config
from market_intel.errors import AuthError, ExternalServiceError
from market_intel.fetch.endpoints import get_token_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedToken:
    """Token value and absolute expiry (epoch seconds), replaced as one unit."""

    value: str
    expires_at: float

    def is_fresh(self, now: float, margin: float) -> bool:
        return now < self.expires_at - margin


class CredentialCache:
    """Caches one client-credentials token and refreshes it before expiry.

    Constructed once per process and handed to the collectors that need it.
    The cached pair lives in a single immutable ``CachedToken`` and is swapped
    by one reference assignment, so readers never see a token paired with
    another token's expiry. Concurrent refreshes are serialized by a lock and
    re-check freshness, so one stale window costs exactly one exchange.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_url: Optional[str] = None,
        scope: Optional[str] = None,
        user_token: Optional[str] = None,
        safety_margin: float = config.TOKEN_SAFETY_MARGIN,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = client_id if client_id is not None else config.EBAY_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.EBAY_CLIENT_SECRET
        self.token_url = token_url or get_token_url()
        self.scope = scope or config.EBAY_OAUTH_SCOPE
        self.user_token = user_token if user_token is not None else config.EBAY_USER_TOKEN
        self.safety_margin = safety_margin
        self.clock = clock
        self._client = client
        self._owns_client = client is None
        self._token: Optional[CachedToken] = None
        self._lock = asyncio.Lock()
        self.exchange_count = 0

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def current(self) -> Optional[CachedToken]:
        return self._token

    async def get_token(self) -> str:
        """Return a token with more than the safety margin left, exchanging if needed."""
        if not self.is_configured:
            raise AuthError("eBay credentials (EBAY_CLIENT_ID, EBAY_CLIENT_SECRET) not configured")

        if self.user_token:
            return self.user_token

        token = self._token
        if token and token.is_fresh(self.clock(), self.safety_margin):
            return token.value

        async with self._lock:
            token = self._token
            if token and token.is_fresh(self.clock(), self.safety_margin):
                return token.value
            token = await self._exchange()
            self._token = token
            return token.value

    def invalidate(self) -> None:
        """Drop the cached token so the next call exchanges again."""
        self._token = None

    async def _exchange(self) -> CachedToken:
        """Perform the client-credentials grant."""
        logger.info("Requesting eBay application token")
        try:
            response = await self._token_request()
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"eBay OAuth request failed: {e}") from e

        if response.status_code >= 500:
            raise ExternalServiceError(
                f"eBay OAuth error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        if response.status_code != 200:
            raise AuthError(f"eBay OAuth error: {_error_description(response)}")

        try:
            data = response.json()
            value = data["access_token"]
            expires_in = float(data["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            raise AuthError(f"eBay OAuth returned an unusable token response: {e}") from e

        self.exchange_count += 1
        logger.info(f"Obtained eBay token, expires in {expires_in:.0f}s")
        return CachedToken(value=value, expires_at=self.clock() + expires_in)

    @retry(
        stop=stop_after_attempt(config.MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    async def _token_request(self) -> httpx.Response:
        """POST the grant with retries on transport errors."""
        basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        client = self._get_client()
        return await client.post(
            self.token_url,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Authorization": f"Basic {basic}",
            },
            data={"grant_type": "client_credentials", "scope": self.scope},
            timeout=config.TIMEOUT,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(http2=True, timeout=config.TIMEOUT)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def _error_description(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or str(response.status_code)
    return body.get("error_description") or body.get("error") or response.reason_phrase
