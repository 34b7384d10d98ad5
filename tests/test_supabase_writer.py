"""Tests for the optional Supabase mirror."""
import asyncio

from market_intel.jobs.job_manager import ScrapeJobManager
from market_intel.jobs.runner import AutomationOrchestrator
from market_intel.models import JobStatus, KeywordRun, ParsedSignal, RawListing
from market_intel.store.supabase_writer import SupabaseWriter


class FakeQuery:
    def __init__(self, client, table):
        self.client = client
        self.table = table

    def upsert(self, data, on_conflict=None):
        self.client.upserts.append((self.table, data, on_conflict))
        return self

    def select(self, *args, **kwargs):
        return self

    def limit(self, n):
        return self

    def execute(self):
        if self.client.fail:
            raise RuntimeError("supabase unavailable")
        return {"data": []}


class FakeSupabase:
    def __init__(self, fail=False):
        self.fail = fail
        self.upserts = []

    def table(self, name):
        return FakeQuery(self, name)


class OnePageCollector:
    async def authenticate(self):
        return "token"

    async def search_sold(self, keyword, page, page_size, user_id):
        return [RawListing(item_id="1", title="Abstract oil", price=10.0, user_id=user_id, search_keyword=keyword)]


def test_upsert_listings_shape():
    """Test listings are mirrored with their signal."""
    client = FakeSupabase()
    writer = SupabaseWriter(client=client)
    listing = RawListing(id=7, item_id="1", title="Abstract oil", price=10.0, user_id="u1", search_keyword="art")

    asyncio.run(writer.upsert_listings([(listing, ParsedSignal(listing_id=7, style="abstract"))]))

    table, data, on_conflict = client.upserts[0]
    assert table == "raw_listings"
    assert on_conflict == "id"
    assert data[0]["id"] == 7
    assert data[0]["mode"] == "sold"
    assert data[0]["signal"]["style"] == "abstract"
    assert "listing_id" not in data[0]["signal"]


def test_connection_check_reports_failure():
    """Test a failing connection check returns False."""
    assert asyncio.run(SupabaseWriter(client=FakeSupabase()).test_connection()) is True
    assert asyncio.run(SupabaseWriter(client=FakeSupabase(fail=True)).test_connection()) is False


def test_run_mirrors_listings_and_final_job(state_db):
    """Test a run mirrors each stored page and the finished job."""
    client = FakeSupabase()
    manager = ScrapeJobManager(state_db)
    orchestrator = AutomationOrchestrator(
        OnePageCollector(), state_db, manager, writer=SupabaseWriter(client=client), page_size=5
    )

    job = asyncio.run(orchestrator.run("u1", KeywordRun("art")))

    assert job.status == JobStatus.COMPLETED
    tables = [table for table, _, _ in client.upserts]
    assert tables == ["raw_listings", "scrape_jobs"]
    assert client.upserts[1][1][0]["status"] == "completed"
