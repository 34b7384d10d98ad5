"""TTL cache for dashboard and global benchmark aggregates."""
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from market_intel.analysis.aggregates import build_dashboard, build_global_benchmarks
from market_intel.config import config
from market_intel.models import CacheRow, utcnow
from market_intel.store.state import GLOBAL_SCOPE, StateDB

logger = logging.getLogger(__name__)

DashboardBuilder = Callable[[StateDB, str, datetime], Awaitable[dict[str, Any]]]
GlobalBuilder = Callable[[StateDB, datetime], Awaitable[dict[str, Any]]]


class AggregateCache:
    """Serves cached aggregates without ever blocking on a refresh.

    A missing dashboard is computed inline on first read. A dashboard older
    than the TTL is returned as is while one background refresh runs for its
    scope; further stale reads of that scope do not queue another. Refreshes
    run under a semaphore of ``max_workers`` slots. A failed refresh is
    logged and the stale row stays in place.
    """

    def __init__(
        self,
        state_db: StateDB,
        ttl_seconds: float = config.DASHBOARD_TTL_SECONDS,
        max_workers: int = config.CACHE_WORKERS,
        clock: Callable[[], datetime] = utcnow,
        dashboard_builder: DashboardBuilder = build_dashboard,
        global_builder: GlobalBuilder = build_global_benchmarks,
    ):
        self.state_db = state_db
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.dashboard_builder = dashboard_builder
        self.global_builder = global_builder
        self._semaphore = asyncio.Semaphore(max_workers)
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self.scheduled_refreshes = 0

    def is_stale(self, row: CacheRow) -> bool:
        return (self.clock() - row.last_updated_at).total_seconds() > self.ttl_seconds

    def is_refreshing(self, scope: str) -> bool:
        return scope in self._in_flight

    async def get_dashboard(self, user_id: str) -> dict[str, Any]:
        row = await self.state_db.read_cache(user_id)
        if row is None:
            logger.info(f"No dashboard cached for {user_id}, computing")
            return await self._refresh_dashboard(user_id)
        if self.is_stale(row):
            self._schedule_refresh(user_id)
        return row.payload

    async def put_dashboard(self, user_id: str, payload: dict[str, Any]) -> None:
        await self.state_db.write_cache(user_id, payload, self.clock())

    async def get_global(self) -> Optional[dict[str, Any]]:
        """Latest global benchmarks, or None before the first scheduled refresh."""
        row = await self.state_db.read_cache(GLOBAL_SCOPE, global_=True)
        return row.payload if row else None

    async def refresh_global(self) -> bool:
        """Recompute global benchmarks from scratch. Returns False on failure."""
        try:
            async with self._semaphore:
                now = self.clock()
                payload = await self.global_builder(self.state_db, now)
                await self.state_db.write_cache(GLOBAL_SCOPE, payload, now, global_=True)
        except Exception:
            logger.exception("Global benchmark refresh failed, keeping previous snapshot")
            return False
        logger.info("Global benchmarks refreshed")
        return True

    async def drain(self) -> None:
        """Wait for every scheduled background refresh to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _schedule_refresh(self, user_id: str) -> bool:
        if user_id in self._in_flight:
            logger.debug(f"Refresh for {user_id} already running")
            return False
        self._in_flight.add(user_id)
        self.scheduled_refreshes += 1
        task = asyncio.create_task(self._background_refresh(user_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"Dashboard for {user_id} is stale, refreshing in background")
        return True

    async def _background_refresh(self, user_id: str) -> None:
        try:
            async with self._semaphore:
                await self._refresh_dashboard(user_id)
        except Exception:
            logger.exception(f"Dashboard refresh for {user_id} failed, serving stale data")
        finally:
            self._in_flight.discard(user_id)

    async def _refresh_dashboard(self, user_id: str) -> dict[str, Any]:
        now = self.clock()
        payload = await self.dashboard_builder(self.state_db, user_id, now)
        await self.state_db.write_cache(user_id, payload, now)
        return payload

