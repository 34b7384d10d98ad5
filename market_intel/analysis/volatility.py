"""Price/watcher snapshots and price-drop interest surge detection.

Surge intensity for a price drop from ``p0`` to ``p1`` whose watcher count
rises from ``w0`` to ``w_peak`` (the highest count observed at or after the
drop) is::

    drop      = (p0 - p1) / p0                      in (0, 1]
    ratio     = (w_peak - w0) / max(w0, 1)          >= 0
    intensity = 100 * (0.4 * drop + 0.6 * ratio / (1 + ratio))

Both terms are bounded and strictly increasing, so the score lies in
[0, 100] and grows with either a deeper cut or a larger watcher gain. A drop
only counts as a surge when the watcher gain is at least
``min_watcher_increase`` and the relative watcher gain is at least the
relative price drop ("disproportionate" interest).
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from market_intel.config import config
from market_intel.models import PriceSnapshot, PriceSurge, utcnow
from market_intel.store.state import StateDB

logger = logging.getLogger(__name__)

PRICE_WEIGHT = 0.4
WATCHER_WEIGHT = 0.6


def surge_intensity(drop_pct: float, watcher_ratio: float) -> float:
    drop_pct = min(max(drop_pct, 0.0), 1.0)
    watcher_ratio = max(watcher_ratio, 0.0)
    score = PRICE_WEIGHT * drop_pct + WATCHER_WEIGHT * watcher_ratio / (1 + watcher_ratio)
    return round(100 * score, 2)


def find_surge(
    series: list[PriceSnapshot],
    min_watcher_increase: int = config.SURGE_MIN_WATCHER_INCREASE,
    detected_at: Optional[datetime] = None,
) -> Optional[PriceSurge]:
    """Strongest surge in one item's series, or None.

    ``series`` must be ordered by ``captured_at``.
    """
    if len(series) < 2:
        return None

    best: Optional[PriceSurge] = None
    for i in range(1, len(series)):
        before, after = series[i - 1], series[i]
        if before.price is None or after.price is None or before.price <= 0:
            continue
        if after.price >= before.price:
            continue

        watchers_before = before.watcher_count or 0
        later = [s.watcher_count for s in series[i:] if s.watcher_count is not None]
        if not later:
            continue
        gain = max(later) - watchers_before
        if gain < min_watcher_increase:
            continue

        drop_pct = (before.price - after.price) / before.price
        ratio = gain / max(watchers_before, 1)
        if ratio < drop_pct:
            continue

        intensity = surge_intensity(drop_pct, ratio)
        if best is None or intensity > best.surge_intensity:
            best = PriceSurge(
                item_id=after.item_id,
                old_price=before.price,
                new_price=after.price,
                watcher_increase=gain,
                surge_intensity=intensity,
                detected_at=detected_at or utcnow(),
            )
    return best


class VolatilityTracker:
    """Appends price snapshots and reports surges from their history."""

    def __init__(
        self,
        state_db: StateDB,
        min_watcher_increase: int = config.SURGE_MIN_WATCHER_INCREASE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.state_db = state_db
        self.min_watcher_increase = min_watcher_increase
        self.clock = clock

    async def snapshot_state(self) -> int:
        """Write one snapshot per currently active item; returns the count written."""
        now = self.clock()
        rows = await self.state_db.latest_active_listings()
        snapshots = [
            PriceSnapshot(
                item_id=row["item_id"],
                price=row["price"],
                watcher_count=row["watcher_count"],
                captured_at=now,
            )
            for row in rows
        ]
        written = await self.state_db.insert_snapshots(snapshots)
        logger.info(f"Captured {written} price snapshots")
        return written

    async def detect_surges(self) -> list[PriceSurge]:
        """Surges across all items, strongest first."""
        now = self.clock()
        series_by_item = await self.state_db.snapshot_series()
        surges = []
        for series in series_by_item.values():
            surge = find_surge(series, self.min_watcher_increase, detected_at=now)
            if surge:
                surges.append(surge)
        surges.sort(key=lambda s: (-s.surge_intensity, s.item_id))
        logger.info(f"Detected {len(surges)} surges across {len(series_by_item)} items")
        return surges
