"""FastAPI main application."""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field

from market_intel.config import Config, config
from market_intel.errors import (
    ExternalServiceError,
    InsufficientData,
    InvalidTransition,
    MarketIntelError,
    NotFound,
    ParseError,
    Unauthorized,
)
from market_intel.jobs.metrics_exporter import MetricsExporter
from market_intel.jobs.runner import seller_summary
from market_intel.models import ListingMode, SellerRun, parse_run_request
from market_intel.redact import redact_string
from market_intel.services import Services, build_services

logger = logging.getLogger(__name__)

app = FastAPI(title="Market Intelligence API", version="0.1.0")

ERROR_STATUS = {
    Unauthorized: 401,
    InvalidTransition: 409,
    NotFound: 404,
    ExternalServiceError: 502,
    ParseError: 422,
    InsufficientData: 422,
}

# API Key security (if configured)
API_KEY_HEADER = APIKeyHeader(name="X-API-KEY", auto_error=False)

_services: Optional[Services] = None


def get_services() -> Services:
    """Process-wide services, built on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def verify_api_key(api_key: str = Depends(API_KEY_HEADER)) -> bool:
    """Verify API key if configured."""
    if config.API_KEY:
        if not api_key or api_key != config.API_KEY:
            raise HTTPException(status_code=403, detail="Invalid API key")
    return True


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity, established upstream and forwarded in X-User-Id."""
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized("Missing X-User-Id header")
    return x_user_id.strip()


def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> bool:
    """Scheduled endpoints require ``Bearer <CRON_SECRET>`` when a secret is set."""
    if config.CRON_SECRET and authorization != f"Bearer {config.CRON_SECRET}":
        raise Unauthorized("Invalid scheduler credentials")
    return True


@app.exception_handler(MarketIntelError)
async def market_intel_error_handler(request: Request, exc: MarketIntelError):
    status_code = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {redact_string(str(exc))}")
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": redact_string(str(exc))},
    )


@app.on_event("startup")
async def startup():
    """Initialize on startup."""
    await get_services().initialize()


@app.on_event("shutdown")
async def shutdown():
    if _services is not None:
        await _services.cache.drain()
        await _services.aclose()


class ScrapeStartRequest(BaseModel):
    """Trigger payload: exactly one of keyword or sellerName."""

    model_config = ConfigDict(populate_by_name=True)

    keyword: Optional[str] = None
    seller_name: Optional[str] = Field(default=None, alias="sellerName")


class JobStatusResponse(BaseModel):
    id: str
    keyword: Optional[str] = None
    seller_name: Optional[str] = None
    status: str
    pages_scraped: int
    items_found: int
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: str


@app.get("/health")
async def health():
    """Health check endpoint (no auth required)."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": config.EBAY_ENVIRONMENT,
        "supabase_enabled": config.supabase_enabled(),
    }


@app.get("/metrics")
async def get_metrics(_: bool = Depends(verify_api_key)):
    """Recent per-run metrics (requires API key if configured)."""
    return {"metrics": await MetricsExporter().read_recent(100)}


@app.post("/scrape/start")
async def start_scrape(
    body: ScrapeStartRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
    _: bool = Depends(verify_api_key),
):
    """
    Start a collection run.
    Keyword runs continue in the background and return the job id at once;
    seller runs complete before responding and return a summary.
    """
    try:
        run_request = parse_run_request(body.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if isinstance(run_request, SellerRun):
        job = await services.orchestrator.run(user_id, run_request)
        return seller_summary(job)

    job = await services.orchestrator.start(user_id, run_request)
    background_tasks.add_task(services.orchestrator.execute, job)
    return {"job_id": job.id, "status": job.status.value, "keyword": job.keyword}


@app.get("/scrape/status/{job_id}", response_model=JobStatusResponse)
async def scrape_status(
    job_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
    _: bool = Depends(verify_api_key),
):
    job = await services.job_manager.get_for_user(job_id, user_id)
    return job.to_status()


@app.get("/scrape/results")
async def scrape_results(
    mode: ListingMode = Query(default=ListingMode.ACTIVE, alias="type"),
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
    _: bool = Depends(verify_api_key),
):
    """The caller's newest 100 stored listings of one type, with parsed signals."""
    rows = await services.state_db.list_listings(user_id, mode, limit=100)
    return {
        "listings": [
            {**listing.model_dump(mode="json"), "signal": signal.model_dump(exclude={"listing_id"})}
            for listing, signal in rows
        ]
    }


@app.get("/dashboard/stats")
async def dashboard_stats(
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
    _: bool = Depends(verify_api_key),
):
    return await services.cache.get_dashboard(user_id)


@app.get("/benchmarks")
async def benchmarks(
    services: Services = Depends(get_services),
    _: bool = Depends(verify_api_key),
):
    payload = await services.cache.get_global()
    if payload is None:
        raise NotFound("Global benchmarks have not been computed yet")
    return payload


@app.post("/admin/refresh-global")
async def refresh_global(
    services: Services = Depends(get_services),
    _: bool = Depends(verify_cron_secret),
):
    """Recompute cross-user benchmarks (called by the scheduler)."""
    success = await services.cache.refresh_global()
    return JSONResponse(status_code=200 if success else 500, content={"success": success})


@app.get("/pricing")
async def pricing(
    keyword: Optional[str] = None,
    style: Optional[str] = None,
    subject: Optional[str] = None,
    medium: Optional[str] = None,
    width: Optional[float] = None,
    height: Optional[float] = None,
    services: Services = Depends(get_services),
    _: bool = Depends(verify_api_key),
):
    band = await services.pricing.bands_for(
        keyword=keyword,
        style=style,
        subject=subject,
        medium=medium,
        width_in=width,
        height_in=height,
    )
    return band.model_dump()


@app.get("/trends")
async def trends(
    limit: int = 20,
    services: Services = Depends(get_services),
    _: bool = Depends(verify_api_key),
):
    entries = await services.trends.top_trends(limit=limit)
    return {"trends": [entry.model_dump() for entry in entries]}


@app.post("/volatility/snapshot")
async def volatility_snapshot(
    services: Services = Depends(get_services),
    _: bool = Depends(verify_cron_secret),
):
    written = await services.volatility.snapshot_state()
    return {"snapshots": written}


@app.get("/volatility/surges")
async def volatility_surges(
    services: Services = Depends(get_services),
    _: bool = Depends(verify_api_key),
):
    surges = await services.volatility.detect_surges()
    return {"surges": [surge.model_dump(mode="json") for surge in surges]}


if __name__ == "__main__":
    import uvicorn
    from market_intel.logging_conf import setup_logging

    setup_logging()
    Config.validate()
    uvicorn.run(app, host="0.0.0.0", port=8000)
