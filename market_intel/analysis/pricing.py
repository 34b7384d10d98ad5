"""Percentile price bands from comparable sold prices."""
import logging
import math
from typing import Iterable, Optional

from market_intel.config import config
from market_intel.errors import InsufficientData
from market_intel.models import PriceBand
from market_intel.store.state import StateDB

logger = logging.getLogger(__name__)

MIN_SAMPLE_FOR_TRIM = 4
HIGH_CONFIDENCE = 20
MEDIUM_CONFIDENCE = 10


def percentile(sorted_values: list[float], q: float) -> float:
    """Linear interpolation between order statistics.

    The rank is ``(n - 1) * q`` on the sorted values, the same rule as
    numpy's default ``linear`` method.
    """
    if not sorted_values:
        raise InsufficientData("No values to take a percentile of")
    pos = (len(sorted_values) - 1) * q
    lower = math.floor(pos)
    upper = math.ceil(pos)
    if lower == upper:
        return sorted_values[lower]
    fraction = pos - lower
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * fraction


def trim_outliers(prices: list[float], multiplier: float = config.OUTLIER_IQR_MULTIPLIER) -> list[float]:
    """Drop values outside the Tukey fences ``[Q1 - k*IQR, Q3 + k*IQR]``.

    Sets smaller than four values are returned unchanged.
    """
    values = sorted(prices)
    if len(values) < MIN_SAMPLE_FOR_TRIM:
        return values
    q1 = percentile(values, 0.25)
    q3 = percentile(values, 0.75)
    spread = q3 - q1
    low, high = q1 - multiplier * spread, q3 + multiplier * spread
    return [v for v in values if low <= v <= high]


def confidence_for(sample_size: int) -> str:
    if sample_size >= HIGH_CONFIDENCE:
        return "high"
    if sample_size >= MEDIUM_CONFIDENCE:
        return "medium"
    return "low"


def compute_price_bands(
    prices: Iterable[Optional[float]],
    multiplier: float = config.OUTLIER_IQR_MULTIPLIER,
    width_in: Optional[float] = None,
    height_in: Optional[float] = None,
) -> PriceBand:
    """Fast-sale / safe / aggressive prices at the 25th / 50th / 75th percentiles.

    Missing and non-positive prices are ignored. Raises ``InsufficientData``
    when nothing usable is left after trimming.
    """
    usable = [float(p) for p in prices if p is not None and p > 0]
    trimmed = trim_outliers(usable, multiplier)
    if not trimmed:
        raise InsufficientData("No comparable sold prices to build price bands from")

    safe = percentile(trimmed, 0.5)
    per_square_inch = None
    if width_in and height_in and width_in > 0 and height_in > 0:
        per_square_inch = round(safe / (width_in * height_in), 4)

    return PriceBand(
        fast_sale=round(percentile(trimmed, 0.25), 2),
        safe=round(safe, 2),
        aggressive=round(percentile(trimmed, 0.75), 2),
        sample_size=len(trimmed),
        outliers_trimmed=len(usable) - len(trimmed),
        min_price=round(trimmed[0], 2),
        max_price=round(trimmed[-1], 2),
        confidence=confidence_for(len(trimmed)),
        per_square_inch=per_square_inch,
    )


class PriceOptimizer:
    """Price bands for stored sold comparables."""

    def __init__(self, state_db: StateDB, multiplier: float = config.OUTLIER_IQR_MULTIPLIER):
        self.state_db = state_db
        self.multiplier = multiplier

    async def bands_for(
        self,
        keyword: Optional[str] = None,
        user_id: Optional[str] = None,
        style: Optional[str] = None,
        subject: Optional[str] = None,
        medium: Optional[str] = None,
        width_in: Optional[float] = None,
        height_in: Optional[float] = None,
    ) -> PriceBand:
        prices = await self.state_db.sold_prices(
            keyword=keyword.lower() if keyword else None,
            user_id=user_id,
            style=style,
            subject=subject,
            medium=medium,
        )
        band = compute_price_bands(prices, self.multiplier, width_in, height_in)
        logger.info(
            f"Price bands for keyword={keyword!r} from {band.sample_size} sales "
            f"({band.outliers_trimmed} outliers trimmed)"
        )
        return band
