"""Scrape job state machine: pending -> running -> completed | failed."""
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from market_intel.errors import InvalidTransition, NotFound
from market_intel.models import JobStatus, RunRequest, ScrapeJob, SellerRun, utcnow
from market_intel.redact import redact_string
from market_intel.store.state import StateDB

logger = logging.getLogger(__name__)


class ScrapeJobManager:
    """Owns every status change of a scrape job.

    Each transition is a conditional update on the expected current status,
    so a job that already left that status is rejected with
    ``InvalidTransition`` instead of being overwritten.
    """

    def __init__(self, state_db: StateDB, clock: Callable[[], datetime] = utcnow):
        self.state_db = state_db
        self.clock = clock

    async def create(self, user_id: str, request: RunRequest) -> ScrapeJob:
        """Insert a pending job for ``request`` and return it."""
        job = ScrapeJob(
            id=str(uuid.uuid4()),
            user_id=user_id,
            keyword=None if isinstance(request, SellerRun) else request.keyword,
            seller_name=request.seller_name if isinstance(request, SellerRun) else None,
            mode=request.mode,
            status=JobStatus.PENDING,
            created_at=self.clock(),
        )
        await self.state_db.insert_job(job)
        logger.info(f"Created job {job.id} ({job.mode.value}: {request.target}) for user {user_id}")
        return job

    async def mark_running(self, job_id: str) -> ScrapeJob:
        try:
            updated = await self.state_db.update_job_if(
                job_id,
                JobStatus.PENDING,
                {"status": JobStatus.RUNNING, "started_at": self.clock()},
            )
        except sqlite3.IntegrityError as e:
            raise InvalidTransition(f"Another run for the same target is already in progress (job {job_id})") from e
        if not updated:
            await self._reject(job_id, JobStatus.RUNNING)
        return await self.get_by_id(job_id)

    async def discard(self, job_id: str) -> None:
        """Drop a job that was rejected before it ever ran."""
        if not await self.state_db.delete_pending_job(job_id):
            await self._reject(job_id, JobStatus.PENDING)
        logger.info(f"Discarded job {job_id}")

    async def update_progress(self, job_id: str, pages_scraped: int, items_found: int) -> ScrapeJob:
        """Overwrite progress counters; counters never move backwards."""
        updated = await self.state_db.update_job_if(
            job_id,
            JobStatus.RUNNING,
            {"pages_scraped": pages_scraped, "items_found": items_found},
            extra_where="AND pages_scraped <= ? AND items_found <= ?",
            extra_params=(pages_scraped, items_found),
        )
        if not updated:
            job = await self.get_by_id(job_id)
            if job.status == JobStatus.RUNNING:
                raise InvalidTransition(
                    f"Progress for job {job_id} cannot decrease "
                    f"({job.pages_scraped}/{job.items_found} -> {pages_scraped}/{items_found})"
                )
            raise InvalidTransition(f"Job {job_id} is {job.status.value}, progress requires running")
        return await self.get_by_id(job_id)

    async def complete(self, job_id: str, items_found: int) -> ScrapeJob:
        updated = await self.state_db.update_job_if(
            job_id,
            JobStatus.RUNNING,
            {"status": JobStatus.COMPLETED, "items_found": items_found, "completed_at": self.clock()},
        )
        if not updated:
            await self._reject(job_id, JobStatus.COMPLETED)
        logger.info(f"Job {job_id} completed with {items_found} items")
        return await self.get_by_id(job_id)

    async def fail(self, job_id: str, error_message: str) -> ScrapeJob:
        message = redact_string(error_message or "Unknown error")
        updated = await self.state_db.update_job_if(
            job_id,
            JobStatus.RUNNING,
            {"status": JobStatus.FAILED, "error_message": message, "completed_at": self.clock()},
        )
        if not updated:
            await self._reject(job_id, JobStatus.FAILED)
        logger.warning(f"Job {job_id} failed: {message}")
        return await self.get_by_id(job_id)

    async def get_by_id(self, job_id: str) -> ScrapeJob:
        job = await self.state_db.get_job(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        return job

    async def get_for_user(self, job_id: str, user_id: str) -> ScrapeJob:
        """Lookup that hides jobs owned by other users behind ``NotFound``."""
        job = await self.state_db.get_job(job_id)
        if job is None or job.user_id != user_id:
            raise NotFound(f"Job {job_id} not found")
        return job

    async def find_stuck(self, older_than: timedelta, now: Optional[datetime] = None) -> list[ScrapeJob]:
        """Running jobs whose ``started_at`` is older than ``older_than``."""
        now = now or self.clock()
        running = await self.state_db.list_jobs(status=JobStatus.RUNNING, limit=1000)
        return [job for job in running if job.started_at and now - job.started_at > older_than]

    async def _reject(self, job_id: str, target: JobStatus) -> None:
        job = await self.get_by_id(job_id)
        raise InvalidTransition(f"Job {job_id} cannot move from {job.status.value} to {target.value}")
