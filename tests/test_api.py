"""Tests for the HTTP surface."""
import asyncio

import pytest
from fastapi.testclient import TestClient

from market_intel.analysis.pricing import PriceOptimizer
from market_intel.analysis.trends import TrendEngine
from market_intel.analysis.volatility import VolatilityTracker
from market_intel.api.main import app, get_services
from market_intel.auth.token_cache import CredentialCache
from market_intel.cache.aggregate_cache import AggregateCache
from market_intel.config import config
from market_intel.jobs.job_manager import ScrapeJobManager
from market_intel.jobs.runner import AutomationOrchestrator
from market_intel.models import JobStatus, KeywordRun, ListingMode, RawListing
from market_intel.services import Services


class StubCollector:
    """Returns one short page for any search."""

    async def authenticate(self):
        return "token"

    async def search_sold(self, keyword, page, page_size, user_id):
        return [self._listing(f"s{i}", keyword, user_id, ListingMode.SOLD, 20.0 * (i + 1)) for i in range(2)]

    async def search_seller(self, seller_name, page, page_size, user_id):
        return [
            self._listing(f"a{i}", f"seller:{seller_name}", user_id, ListingMode.ACTIVE, 100.0) for i in range(3)
        ]

    async def aclose(self):
        pass

    def _listing(self, item_id, keyword, user_id, mode, price):
        return RawListing(
            item_id=item_id,
            title="Abstract oil painting 24x36 in",
            price=price,
            watcher_count=4 if mode == ListingMode.ACTIVE else None,
            user_id=user_id,
            search_keyword=keyword,
            mode=mode,
        )


@pytest.fixture
def services(state_db):
    collector = StubCollector()
    job_manager = ScrapeJobManager(state_db)
    return Services(
        state_db=state_db,
        token_cache=CredentialCache(client_id="id", client_secret="secret", user_token="token"),
        collector=collector,
        job_manager=job_manager,
        orchestrator=AutomationOrchestrator(collector, state_db, job_manager, page_size=5),
        volatility=VolatilityTracker(state_db),
        pricing=PriceOptimizer(state_db),
        trends=TrendEngine(state_db),
        cache=AggregateCache(state_db),
    )


@pytest.fixture
def client(services, monkeypatch):
    monkeypatch.setattr(config, "API_KEY", None)
    monkeypatch.setattr(config, "CRON_SECRET", None)
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    """Test health check needs no identity."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_start_requires_user(client):
    """Test a missing caller identity is rejected."""
    response = client.post("/scrape/start", json={"keyword": "abstract"})
    assert response.status_code == 401


def test_start_rejects_ambiguous_payload(client):
    """Test keyword and sellerName together are rejected."""
    response = client.post(
        "/scrape/start", json={"keyword": "abstract", "sellerName": "jane"}, headers={"X-User-Id": "u1"}
    )
    assert response.status_code == 400


def test_keyword_run_and_status_lookup(client):
    """Test a keyword run returns a job id whose status is owner-only."""
    response = client.post("/scrape/start", json={"keyword": "Abstract"}, headers={"X-User-Id": "u1"})
    assert response.status_code == 200
    job_id = response.json()["job_id"]
    assert response.json()["keyword"] == "abstract"

    status = client.get(f"/scrape/status/{job_id}", headers={"X-User-Id": "u1"})
    assert status.status_code == 200
    body = status.json()
    assert body["status"] == "completed"
    assert body["items_found"] == 2
    assert body["keyword"] == "abstract"

    other = client.get(f"/scrape/status/{job_id}", headers={"X-User-Id": "u2"})
    assert other.status_code == 404


def test_seller_run_returns_summary(client):
    """Test seller mode answers with a synchronous summary."""
    response = client.post("/scrape/start", json={"sellerName": "studio_jane"}, headers={"X-User-Id": "u1"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["items_found"] == 3
    assert body["seller_name"] == "studio_jane"


def test_duplicate_running_job_conflicts(client, services):
    """Test a second run while one is running for the same target is a conflict."""

    async def occupy():
        job = await services.job_manager.create("u1", KeywordRun("abstract"))
        await services.job_manager.mark_running(job.id)

    asyncio.run(occupy())
    response = client.post("/scrape/start", json={"keyword": "abstract"}, headers={"X-User-Id": "u1"})
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidTransition"

    pending = asyncio.run(services.state_db.list_jobs(user_id="u1", status=JobStatus.PENDING))
    assert pending == []
    assert asyncio.run(services.state_db.job_status_counts("u1")) == {"running": 1}


def test_results_by_type_for_caller(client):
    """Test stored listings come back per type with signals, scoped to the caller."""
    client.post("/scrape/start", json={"keyword": "abstract"}, headers={"X-User-Id": "u1"})
    client.post("/scrape/start", json={"sellerName": "studio_jane"}, headers={"X-User-Id": "u1"})

    sold = client.get("/scrape/results", params={"type": "sold"}, headers={"X-User-Id": "u1"})
    assert sold.status_code == 200
    listings = sold.json()["listings"]
    assert sorted(item["item_id"] for item in listings) == ["s0", "s1"]
    assert all(item["mode"] == "sold" for item in listings)
    assert listings[0]["signal"]["style"] == "abstract"
    assert listings[0]["currency"] == "USD"

    active = client.get("/scrape/results", headers={"X-User-Id": "u1"})
    assert len(active.json()["listings"]) == 3

    other = client.get("/scrape/results", params={"type": "sold"}, headers={"X-User-Id": "u2"})
    assert other.json() == {"listings": []}

    assert client.get("/scrape/results", params={"type": "bogus"}, headers={"X-User-Id": "u1"}).status_code == 422
    assert client.get("/scrape/results").status_code == 401


def test_status_of_seller_job_has_no_keyword(client):
    """Test seller jobs report seller_name and a null keyword."""
    response = client.post("/scrape/start", json={"sellerName": "studio_jane"}, headers={"X-User-Id": "u1"})
    job_id = response.json()["job_id"]

    body = client.get(f"/scrape/status/{job_id}", headers={"X-User-Id": "u1"}).json()
    assert body["keyword"] is None
    assert body["seller_name"] == "studio_jane"


def test_dashboard_stats(client):
    """Test the dashboard is computed on first read."""
    client.post("/scrape/start", json={"keyword": "abstract"}, headers={"X-User-Id": "u1"})
    response = client.get("/dashboard/stats", headers={"X-User-Id": "u1"})
    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == "u1"
    assert body["sold_last_30_days"] == 2
    assert body["jobs"] == {"completed": 1}


def test_dashboard_for_user_named_global(client):
    """Test a user id of "global" is an ordinary dashboard scope."""
    response = client.get("/dashboard/stats", headers={"X-User-Id": "global"})
    assert response.status_code == 200
    assert response.json()["user_id"] == "global"
    assert client.get("/benchmarks").status_code == 404


def test_global_benchmarks_refresh(client, monkeypatch):
    """Test benchmarks appear after an authorized scheduled refresh."""
    monkeypatch.setattr(config, "CRON_SECRET", "cron-secret")
    assert client.get("/benchmarks").status_code == 404

    denied = client.post("/admin/refresh-global", headers={"Authorization": "Bearer wrong"})
    assert denied.status_code == 401

    allowed = client.post("/admin/refresh-global", headers={"Authorization": "Bearer cron-secret"})
    assert allowed.status_code == 200
    assert allowed.json() == {"success": True}

    benchmarks = client.get("/benchmarks")
    assert benchmarks.status_code == 200
    assert benchmarks.json()["users"] == 0


def test_pricing(client):
    """Test pricing needs comparables and then returns bands."""
    assert client.get("/pricing", params={"keyword": "abstract"}).status_code == 422

    client.post("/scrape/start", json={"keyword": "abstract"}, headers={"X-User-Id": "u1"})
    response = client.get("/pricing", params={"keyword": "abstract", "width": 24, "height": 36})
    assert response.status_code == 200
    body = response.json()
    assert body["safe"] == 30.0
    assert body["sample_size"] == 2
    assert body["per_square_inch"] == round(30.0 / (24 * 36), 4)


def test_trends_and_volatility(client):
    """Test read-only analytics endpoints."""
    client.post("/scrape/start", json={"sellerName": "studio_jane"}, headers={"X-User-Id": "u1"})

    trends = client.get("/trends")
    assert trends.status_code == 200
    assert trends.json()["trends"][0]["style"] == "abstract"

    snapshot = client.post("/volatility/snapshot")
    assert snapshot.status_code == 200
    assert snapshot.json() == {"snapshots": 3}

    surges = client.get("/volatility/surges")
    assert surges.status_code == 200
    assert surges.json() == {"surges": []}
