"""Rank rising style/subject/medium combinations across all stored listings.

For each combination the recent window (last ``recent_days``) is compared
with the baseline window (the ``baseline_days`` before it):

    volume_growth = 100 * (recent_rate - baseline_rate) / max(baseline_rate, 1 / baseline_days)
    price_change  = 100 * (recent_median - baseline_median) / baseline_median
    score         = 0.7 * volume_growth + 0.3 * price_change

Rates are listings per day. ``price_change`` is 0 when either window has no
priced listing.
"""
import logging
import statistics
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from market_intel.config import config
from market_intel.models import TrendEntry, utcnow
from market_intel.store.state import StateDB

logger = logging.getLogger(__name__)

VOLUME_WEIGHT = 0.7
PRICE_WEIGHT = 0.3


def trend_status(volume_growth: float) -> str:
    if volume_growth > 30:
        return "exploding"
    if volume_growth > 10:
        return "rising"
    if volume_growth < -20:
        return "fading"
    return "stable"


def _event_time(row: dict[str, Any]) -> Optional[datetime]:
    ts = row.get("listed_at") or row.get("created_at")
    if ts is not None and ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _median(values: list[float]) -> Optional[float]:
    return statistics.median(values) if values else None


def rank_trends(
    rows: list[dict[str, Any]],
    now: datetime,
    recent_days: int = config.TREND_RECENT_DAYS,
    baseline_days: int = config.TREND_BASELINE_DAYS,
    limit: Optional[int] = None,
) -> list[TrendEntry]:
    """Pure ranking over signal rows (see ``StateDB.signal_rows``)."""
    recent_start = now - timedelta(days=recent_days)
    baseline_start = recent_start - timedelta(days=baseline_days)

    groups: dict[tuple, dict[str, Any]] = {}
    for row in rows:
        combination = (row.get("style"), row.get("subject"), row.get("medium"))
        if combination == (None, None, None):
            continue
        ts = _event_time(row)
        if ts is None or ts < baseline_start or ts > now:
            continue
        group = groups.setdefault(
            combination,
            {"recent": 0, "baseline": 0, "recent_prices": [], "baseline_prices": [], "sources": set()},
        )
        window = "recent" if ts >= recent_start else "baseline"
        group[window] += 1
        if row.get("price"):
            group[f"{window}_prices"].append(float(row["price"]))
        mode = row.get("mode")
        group["sources"].add(getattr(mode, "value", mode))

    entries = []
    for (style, subject, medium), group in groups.items():
        if group["recent"] == 0:
            continue
        recent_rate = group["recent"] / recent_days
        baseline_rate = group["baseline"] / baseline_days
        volume_growth = 100 * (recent_rate - baseline_rate) / max(baseline_rate, 1 / baseline_days)

        recent_median = _median(group["recent_prices"])
        baseline_median = _median(group["baseline_prices"])
        price_change = 0.0
        if recent_median is not None and baseline_median:
            price_change = 100 * (recent_median - baseline_median) / baseline_median

        entries.append(
            TrendEntry(
                style=style,
                subject=subject,
                medium=medium,
                score=round(VOLUME_WEIGHT * volume_growth + PRICE_WEIGHT * price_change, 2),
                volume_growth=round(volume_growth, 2),
                price_change=round(price_change, 2),
                recent_count=group["recent"],
                baseline_count=group["baseline"],
                sources=sorted(s for s in group["sources"] if s),
                status=trend_status(volume_growth),
            )
        )

    entries.sort(key=lambda e: (-e.score, -e.recent_count, tuple(part or "" for part in e.combination)))
    return entries[:limit] if limit else entries


class TrendEngine:
    """Read-only trend ranking over persisted listings and signals."""

    def __init__(
        self,
        state_db: StateDB,
        recent_days: int = config.TREND_RECENT_DAYS,
        baseline_days: int = config.TREND_BASELINE_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.state_db = state_db
        self.recent_days = recent_days
        self.baseline_days = baseline_days
        self.clock = clock

    async def top_trends(self, limit: Optional[int] = 20, user_id: Optional[str] = None) -> list[TrendEntry]:
        rows = await self.state_db.signal_rows(user_id=user_id)
        entries = rank_trends(rows, self.clock(), self.recent_days, self.baseline_days, limit)
        logger.info(f"Ranked {len(entries)} trends from {len(rows)} listings")
        return entries
