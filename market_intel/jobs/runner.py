"""Automation orchestrator: collector -> signal parser -> store, per job."""
import logging
from typing import Any, Optional

from market_intel.config import config
from market_intel.errors import InvalidTransition, ParseError
from market_intel.jobs.job_manager import ScrapeJobManager
from market_intel.jobs.metrics_exporter import MetricsExporter
from market_intel.jobs.run_control import PageControl
from market_intel.models import (
    KeywordRun,
    ListingMode,
    ParsedSignal,
    RawListing,
    RunRequest,
    ScrapeJob,
    SellerRun,
)
from market_intel.parse.signals import parse_listing
from market_intel.redact import redact_string
from market_intel.store.state import StateDB
from market_intel.store.supabase_writer import SupabaseWriter

logger = logging.getLogger(__name__)


def request_for(job: ScrapeJob) -> RunRequest:
    """Rebuild the run variant a job was created from."""
    if job.mode == ListingMode.ACTIVE:
        return SellerRun(seller_name=job.seller_name)
    return KeywordRun(keyword=job.keyword)


def seller_summary(job: ScrapeJob) -> dict[str, Any]:
    """Synchronous result returned to seller-mode callers."""
    return {
        "job_id": job.id,
        "seller_name": job.seller_name,
        "status": job.status.value,
        "pages_scraped": job.pages_scraped,
        "items_found": job.items_found,
        "error_message": job.error_message,
    }


class AutomationOrchestrator:
    """Drives one collection run from start to a terminal job state.

    The collector is anything with ``authenticate()``, ``search_sold()`` and
    ``search_seller()`` coroutines (see ``MarketplaceClient``). Pages are
    fetched, parsed and stored strictly in order; a collector or storage
    error fails the job and keeps every page already stored.
    """

    def __init__(
        self,
        collector,
        state_db: StateDB,
        job_manager: ScrapeJobManager,
        writer: Optional[SupabaseWriter] = None,
        metrics_exporter: Optional[MetricsExporter] = None,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        seller_max_pages: Optional[int] = None,
    ):
        self.collector = collector
        self.state_db = state_db
        self.job_manager = job_manager
        self.writer = writer
        self.metrics_exporter = metrics_exporter
        self.page_size = page_size or config.PAGE_SIZE
        self.max_pages = max_pages or config.MAX_PAGES
        self.seller_max_pages = seller_max_pages or config.SELLER_MAX_PAGES

    async def start(self, user_id: str, request: RunRequest) -> ScrapeJob:
        """Create the job and move it to running.

        Raises ``InvalidTransition`` when the same user already has a running
        job for this target; the rejected job is discarded.
        """
        job = await self.job_manager.create(user_id, request)
        try:
            return await self.job_manager.mark_running(job.id)
        except InvalidTransition:
            await self.job_manager.discard(job.id)
            raise

    async def run(self, user_id: str, request: RunRequest) -> ScrapeJob:
        """Start and execute a run in one call."""
        job = await self.start(user_id, request)
        return await self.execute(job)

    async def execute(self, job: ScrapeJob) -> ScrapeJob:
        """Collect every page for a running job and finish it."""
        request = request_for(job)
        control = PageControl(
            max_pages=self.seller_max_pages if isinstance(request, SellerRun) else self.max_pages,
            page_size=self.page_size,
        )
        logger.info("=" * 60)
        logger.info(f"Run {job.id} starting ({request.mode.value}: {request.target}, user {job.user_id})")

        try:
            # Credential failure aborts before any listing request
            await self.collector.authenticate()

            while True:
                page = control.next_page
                listings = await self._fetch_page(request, page, job.user_id)
                pairs, skipped = self._parse_items(listings)
                saved = await self.state_db.insert_listings(job.id, pairs, self.job_manager.clock())
                control.record_page(len(listings), len(saved), skipped)
                await self.job_manager.update_progress(job.id, control.pages_fetched, control.items_saved)
                logger.info(
                    f"Run {job.id} page {page}: {len(listings)} fetched, {len(saved)} saved, {skipped} skipped"
                )
                await self._mirror_listings(saved, pairs)

                should_stop, reason = control.should_stop(len(listings))
                if should_stop:
                    logger.info(f"Run {job.id} stopping: {reason}")
                    break

            job = await self.job_manager.complete(job.id, control.items_saved)
        except Exception as e:
            logger.error(f"Run {job.id} failed on page {control.next_page}: {redact_string(str(e))}")
            job = await self.job_manager.fail(job.id, str(e) or type(e).__name__)

        await self._final_report(job, control)
        return job

    async def _fetch_page(self, request: RunRequest, page: int, user_id: str) -> list[RawListing]:
        if isinstance(request, SellerRun):
            return await self.collector.search_seller(request.seller_name, page, self.page_size, user_id)
        return await self.collector.search_sold(request.keyword, page, self.page_size, user_id)

    def _parse_items(self, listings: list[RawListing]) -> tuple[list[tuple[RawListing, ParsedSignal]], int]:
        """Parse a page; items that fail parsing are skipped, not stored."""
        pairs = []
        skipped = 0
        for listing in listings:
            try:
                pairs.append((listing, parse_listing(listing)))
            except ParseError as e:
                skipped += 1
                logger.debug(f"Skipping item {listing.item_id}: {e}")
        return pairs, skipped

    async def _mirror_listings(self, saved: list[RawListing], pairs: list[tuple[RawListing, ParsedSignal]]) -> None:
        if not self.writer or not saved:
            return
        mirrored = [
            (listing, signal.model_copy(update={"listing_id": listing.id}))
            for listing, (_, signal) in zip(saved, pairs)
        ]
        try:
            await self.writer.upsert_listings(mirrored)
        except Exception as e:
            logger.warning(f"Supabase listing mirror failed: {redact_string(str(e))}")

    async def _final_report(self, job: ScrapeJob, control: PageControl) -> None:
        summary = control.get_summary()
        logger.info(f"Run {job.id} finished: {job.status.value}")
        logger.info(f"Pages: {job.pages_scraped}, items: {job.items_found}, skipped: {summary['items_skipped']}")
        logger.info(f"Elapsed: {summary['elapsed_seconds']:.2f}s")
        logger.info("=" * 60)

        if self.writer:
            try:
                await self.writer.upsert_job(job)
            except Exception as e:
                logger.warning(f"Supabase job mirror failed: {redact_string(str(e))}")
        if self.metrics_exporter:
            try:
                await self.metrics_exporter.export_run(job, summary)
            except OSError as e:
                logger.warning(f"Could not write run metrics: {e}")
