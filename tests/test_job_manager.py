"""Tests for the scrape job state machine."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from market_intel.errors import InvalidTransition, NotFound
from market_intel.jobs.job_manager import ScrapeJobManager
from market_intel.models import JobStatus, KeywordRun, ListingMode, SellerRun, parse_run_request

T0 = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


def test_full_lifecycle(state_db):
    """Test pending -> running -> completed sets timestamps once."""
    clock = Clock()
    manager = ScrapeJobManager(state_db, clock=clock)

    async def scenario():
        job = await manager.create("u1", KeywordRun("abstract art"))
        assert job.status == JobStatus.PENDING
        assert job.started_at is None

        clock.now = T0 + timedelta(seconds=5)
        job = await manager.mark_running(job.id)
        assert job.status == JobStatus.RUNNING
        assert job.started_at == clock.now

        job = await manager.update_progress(job.id, 1, 100)
        assert (job.pages_scraped, job.items_found) == (1, 100)

        clock.now = T0 + timedelta(seconds=30)
        return await manager.complete(job.id, 100)

    job = asyncio.run(scenario())
    assert job.status == JobStatus.COMPLETED
    assert job.items_found == 100
    assert job.completed_at == T0 + timedelta(seconds=30)
    assert job.started_at == T0 + timedelta(seconds=5)
    assert job.error_message is None


def test_fail_records_redacted_message(state_db):
    """Test failure stores the message with credentials scrubbed."""
    manager = ScrapeJobManager(state_db, clock=Clock())

    async def scenario():
        job = await manager.create("u1", KeywordRun("art"))
        await manager.mark_running(job.id)
        return await manager.fail(job.id, "upstream said Authorization: Bearer abcdefghijklmnop")

    job = asyncio.run(scenario())
    assert job.status == JobStatus.FAILED
    assert job.completed_at is not None
    assert "abcdefghijklmnop" not in job.error_message


def test_mark_running_requires_pending(state_db):
    """Test a running job cannot be marked running again."""
    manager = ScrapeJobManager(state_db, clock=Clock())

    async def scenario():
        job = await manager.create("u1", KeywordRun("art"))
        await manager.mark_running(job.id)
        await manager.mark_running(job.id)

    with pytest.raises(InvalidTransition):
        asyncio.run(scenario())


def test_complete_requires_running(state_db):
    """Test a pending job cannot jump to completed."""
    manager = ScrapeJobManager(state_db, clock=Clock())

    async def scenario():
        job = await manager.create("u1", KeywordRun("art"))
        await manager.complete(job.id, 0)

    with pytest.raises(InvalidTransition):
        asyncio.run(scenario())


def test_repeated_terminal_transition_rejected(state_db):
    """Test a terminal job rejects a second terminal transition untouched."""
    manager = ScrapeJobManager(state_db, clock=Clock())

    async def scenario():
        job = await manager.create("u1", KeywordRun("art"))
        await manager.mark_running(job.id)
        await manager.complete(job.id, 10)
        for call in (manager.complete(job.id, 99), manager.fail(job.id, "late error")):
            with pytest.raises(InvalidTransition):
                await call
        return await manager.get_by_id(job.id)

    job = asyncio.run(scenario())
    assert job.status == JobStatus.COMPLETED
    assert job.items_found == 10
    assert job.error_message is None


def test_progress_only_while_running(state_db):
    """Test progress updates are rejected outside running."""
    manager = ScrapeJobManager(state_db, clock=Clock())

    async def scenario():
        job = await manager.create("u1", KeywordRun("art"))
        await manager.update_progress(job.id, 1, 5)

    with pytest.raises(InvalidTransition):
        asyncio.run(scenario())


def test_progress_never_decreases(state_db):
    """Test counters cannot move backwards."""
    manager = ScrapeJobManager(state_db, clock=Clock())

    async def scenario():
        job = await manager.create("u1", KeywordRun("art"))
        await manager.mark_running(job.id)
        await manager.update_progress(job.id, 2, 200)
        with pytest.raises(InvalidTransition):
            await manager.update_progress(job.id, 1, 100)
        return await manager.get_by_id(job.id)

    job = asyncio.run(scenario())
    assert (job.pages_scraped, job.items_found) == (2, 200)


def test_one_running_job_per_user_and_target(state_db):
    """Test a second concurrent run for the same target is rejected."""
    manager = ScrapeJobManager(state_db, clock=Clock())

    async def scenario():
        first = await manager.create("u1", KeywordRun("art"))
        second = await manager.create("u1", KeywordRun("art"))
        other_user = await manager.create("u2", KeywordRun("art"))
        await manager.mark_running(first.id)
        await manager.mark_running(other_user.id)
        with pytest.raises(InvalidTransition):
            await manager.mark_running(second.id)
        await manager.complete(first.id, 0)
        return await manager.mark_running(second.id)

    job = asyncio.run(scenario())
    assert job.status == JobStatus.RUNNING


def test_get_by_id_missing(state_db):
    """Test unknown job ids raise NotFound."""
    manager = ScrapeJobManager(state_db)
    with pytest.raises(NotFound):
        asyncio.run(manager.get_by_id("missing"))


def test_get_for_user_hides_other_users_jobs(state_db):
    """Test ownership is checked on lookup."""
    manager = ScrapeJobManager(state_db, clock=Clock())

    async def scenario():
        job = await manager.create("owner", SellerRun("studio_jane"))
        found = await manager.get_for_user(job.id, "owner")
        with pytest.raises(NotFound):
            await manager.get_for_user(job.id, "intruder")
        return found

    job = asyncio.run(scenario())
    assert job.mode == ListingMode.ACTIVE
    assert job.keyword is None
    status = job.to_status()
    assert status["keyword"] is None
    assert status["seller_name"] == "studio_jane"


def test_find_stuck(state_db):
    """Test running jobs older than the threshold are reported."""
    clock = Clock()
    manager = ScrapeJobManager(state_db, clock=clock)

    async def scenario():
        old = await manager.create("u1", KeywordRun("old"))
        await manager.mark_running(old.id)
        clock.now = T0 + timedelta(hours=2)
        fresh = await manager.create("u1", KeywordRun("fresh"))
        await manager.mark_running(fresh.id)
        return old, await manager.find_stuck(timedelta(hours=1))

    old, stuck = asyncio.run(scenario())
    assert [job.id for job in stuck] == [old.id]


def test_parse_run_request_variants():
    """Test trigger payloads resolve to exactly one run variant."""
    assert parse_run_request({"keyword": " Abstract Art "}) == KeywordRun("abstract art")
    assert parse_run_request({"sellerName": "studio_jane"}) == SellerRun("studio_jane")
    with pytest.raises(ValueError):
        parse_run_request({"keyword": "a", "sellerName": "b"})
    with pytest.raises(ValueError):
        parse_run_request({})
