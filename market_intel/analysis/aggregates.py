"""Dashboard and global benchmark payload builders."""
import logging
import statistics
from datetime import datetime, timedelta
from typing import Any, Optional

from market_intel.analysis.pricing import compute_price_bands
from market_intel.analysis.trends import rank_trends
from market_intel.errors import InsufficientData
from market_intel.models import ListingMode
from market_intel.store.state import StateDB

logger = logging.getLogger(__name__)

SOLD_WINDOW_DAYS = 30
TOP_TRENDS = 5


def sell_through(sold: int, active: int) -> float:
    """Share of listings that sold, as a percentage."""
    total = sold + active
    return round(100 * sold / total, 2) if total else 0.0


def _bands_or_none(prices: list[float]) -> Optional[dict[str, Any]]:
    try:
        return compute_price_bands(prices).model_dump()
    except InsufficientData:
        return None


def _breakdown(rows: list[dict[str, Any]], field: str) -> dict[str, dict[str, Any]]:
    """Listing counts and sold price stats per value of ``field``."""
    buckets: dict[str, dict[str, Any]] = {}
    for row in rows:
        value = row.get(field)
        if not value:
            continue
        bucket = buckets.setdefault(value, {"listings": 0, "sold": 0, "prices": []})
        bucket["listings"] += 1
        if row["mode"] == ListingMode.SOLD:
            bucket["sold"] += 1
            if row.get("price"):
                bucket["prices"].append(float(row["price"]))

    result = {}
    for value, bucket in sorted(buckets.items()):
        prices = bucket["prices"]
        result[value] = {
            "listings": bucket["listings"],
            "sold": bucket["sold"],
            "median_price": round(statistics.median(prices), 2) if prices else None,
            "mean_price": round(statistics.fmean(prices), 2) if prices else None,
        }
    return result


async def build_dashboard(state_db: StateDB, user_id: str, now: datetime) -> dict[str, Any]:
    """Per-user dashboard stats; every value is JSON-serializable."""
    stats = await state_db.listing_stats(user_id=user_id, sold_since=now - timedelta(days=SOLD_WINDOW_DAYS))
    prices = await state_db.sold_prices(user_id=user_id)
    rows = await state_db.signal_rows(user_id=user_id)
    trends = rank_trends(rows, now, limit=TOP_TRENDS)

    return {
        "user_id": user_id,
        "active_listings": stats["active_listings"],
        "sold_last_30_days": stats["sold_listings"],
        "sell_through_rate": sell_through(stats["sold_listings"], stats["active_listings"]),
        "market_value": stats["market_value"],
        "price_bands": _bands_or_none(prices),
        "top_trends": [t.model_dump() for t in trends],
        "jobs": await state_db.job_status_counts(user_id),
        "generated_at": now.isoformat(),
    }


async def build_global_benchmarks(state_db: StateDB, now: datetime) -> dict[str, Any]:
    """Cross-user benchmarks, recomputed from scratch."""
    stats = await state_db.listing_stats(sold_since=now - timedelta(days=SOLD_WINDOW_DAYS))
    rows = await state_db.signal_rows()
    trends = rank_trends(rows, now, limit=TOP_TRENDS)
    prices = await state_db.sold_prices()

    payload = {
        "users": stats["users"],
        "active_listings": stats["active_listings"],
        "sold_last_30_days": stats["sold_listings"],
        "sell_through_rate": sell_through(stats["sold_listings"], stats["active_listings"]),
        "price_bands": _bands_or_none(prices),
        "styles": _breakdown(rows, "style"),
        "mediums": _breakdown(rows, "medium"),
        "subjects": _breakdown(rows, "subject"),
        "top_trends": [t.model_dump() for t in trends],
        "generated_at": now.isoformat(),
    }
    logger.info(f"Built global benchmarks over {len(rows)} listings from {stats['users']} users")
    return payload
