"""Process-wide component wiring, built once at startup."""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from market_intel.analysis.pricing import PriceOptimizer
from market_intel.analysis.trends import TrendEngine
from market_intel.analysis.volatility import VolatilityTracker
from market_intel.auth.token_cache import CredentialCache
from market_intel.cache.aggregate_cache import AggregateCache
from market_intel.config import STATE_DB, config
from market_intel.fetch.client import MarketplaceClient
from market_intel.jobs.job_manager import ScrapeJobManager
from market_intel.jobs.metrics_exporter import MetricsExporter
from market_intel.jobs.runner import AutomationOrchestrator
from market_intel.store.state import StateDB
from market_intel.store.supabase_writer import SupabaseWriter

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Owned instances handed to the CLI and the HTTP layer."""

    state_db: StateDB
    token_cache: CredentialCache
    collector: MarketplaceClient
    job_manager: ScrapeJobManager
    orchestrator: AutomationOrchestrator
    volatility: VolatilityTracker
    pricing: PriceOptimizer
    trends: TrendEngine
    cache: AggregateCache
    writer: Optional[SupabaseWriter] = None

    async def initialize(self) -> None:
        await self.state_db.initialize()
        if self.writer and not await self.writer.test_connection():
            logger.warning("Supabase connection test failed, mirroring will be attempted anyway")

    async def aclose(self) -> None:
        await self.collector.aclose()
        await self.token_cache.aclose()


def build_services(db_path: Path = STATE_DB, use_supabase: Optional[bool] = None) -> Services:
    state_db = StateDB(db_path)
    token_cache = CredentialCache()
    collector = MarketplaceClient(token_cache)
    job_manager = ScrapeJobManager(state_db)

    writer = None
    if use_supabase is None:
        use_supabase = config.supabase_enabled()
    if use_supabase:
        try:
            writer = SupabaseWriter()
        except Exception as e:
            logger.warning(f"Supabase writer initialization failed: {e}")

    orchestrator = AutomationOrchestrator(
        collector,
        state_db,
        job_manager,
        writer=writer,
        metrics_exporter=MetricsExporter(),
    )
    return Services(
        state_db=state_db,
        token_cache=token_cache,
        collector=collector,
        job_manager=job_manager,
        orchestrator=orchestrator,
        volatility=VolatilityTracker(state_db),
        pricing=PriceOptimizer(state_db),
        trends=TrendEngine(state_db),
        cache=AggregateCache(state_db),
        writer=writer,
    )
