"""Rate limiter per host with a daily call budget."""
import asyncio
import logging
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import urlparse

from market_intel.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Spaces requests per host and counts calls against a per-day budget."""

    def __init__(self, rate_per_second: float, daily_limit: Optional[int] = None):
        self.rate_per_second = rate_per_second
        self.min_interval = 1.0 / rate_per_second if rate_per_second > 0 else 0
        self.daily_limit = daily_limit
        self._last_request: Dict[str, float] = defaultdict(lambda: 0.0)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._day: Optional[str] = None
        self._calls_today = 0

    def _get_host(self, url: str) -> str:
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def remaining(self) -> Optional[int]:
        if self.daily_limit is None:
            return None
        self._roll_day()
        return max(self.daily_limit - self._calls_today, 0)

    def _roll_day(self) -> None:
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        if today != self._day:
            self._day = today
            self._calls_today = 0

    def _consume_budget(self) -> None:
        self._roll_day()
        if self.daily_limit is not None and self._calls_today >= self.daily_limit:
            raise ExternalServiceError(
                f"Daily marketplace call limit reached ({self.daily_limit})", status_code=429
            )
        self._calls_today += 1
        if self.daily_limit and self._calls_today == int(self.daily_limit * 0.8):
            logger.warning(f"Marketplace calls at 80% of daily limit ({self._calls_today}/{self.daily_limit})")

    async def acquire(self, url: str) -> None:
        """Wait if necessary to respect the per-host rate, then spend one call."""
        host = self._get_host(url)
        async with self._locks[host]:
            self._consume_budget()
            last = self._last_request[host]
            elapsed = time.monotonic() - last

            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)

            self._last_request[host] = time.monotonic()
