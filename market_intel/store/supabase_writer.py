"""Supabase mirror for jobs and listings with batch upsert and retries."""
import asyncio
import logging
from typing import Any, Optional

from supabase import create_client, Client
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from market_intel.config import config
from market_intel.models import ParsedSignal, RawListing, ScrapeJob

logger = logging.getLogger(__name__)

JOBS_TABLE = "scrape_jobs"
LISTINGS_TABLE = "raw_listings"


class SupabaseWriter:
    """Mirrors locally persisted records to Supabase.

    The local store stays the system of record; callers log mirror failures
    and carry on.
    """

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            if not config.supabase_enabled():
                raise ValueError("Supabase configuration missing")
            client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE)
        self.client = client

    async def upsert_listings(self, pairs: list[tuple[RawListing, ParsedSignal]]) -> None:
        """Upsert a page of listings (runs in thread pool since Supabase is sync)."""
        if not pairs:
            return
        data = [self._listing_to_dict(listing, signal) for listing, signal in pairs]
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._upsert_sync, LISTINGS_TABLE, data, "id")
        logger.info(f"Mirrored {len(data)} listings to Supabase")

    async def upsert_job(self, job: ScrapeJob) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._upsert_sync, JOBS_TABLE, [self._job_to_dict(job)], "id")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((Exception,)),
        reraise=True,
    )
    def _upsert_sync(self, table: str, data: list[dict], on_conflict: str) -> None:
        """Synchronous upsert (called from thread pool)."""
        self.client.table(table).upsert(data, on_conflict=on_conflict).execute()

    def _listing_to_dict(self, listing: RawListing, signal: ParsedSignal) -> dict[str, Any]:
        record = listing.model_dump(mode="json")
        record["mode"] = listing.mode.value
        record["signal"] = signal.model_dump(mode="json", exclude={"listing_id"})
        return record

    def _job_to_dict(self, job: ScrapeJob) -> dict[str, Any]:
        return job.model_dump(mode="json")

    async def test_connection(self) -> bool:
        """Test Supabase connection."""
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: self.client.table(JOBS_TABLE).select("id", count="exact").limit(1).execute(),
            )
            logger.info("Supabase connection successful")
            return True
        except Exception as e:
            logger.error(f"Supabase connection test failed: {e}")
            return False
