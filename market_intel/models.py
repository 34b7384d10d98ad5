"""Data models for jobs, listings, signals and derived analytics."""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ListingMode(str, Enum):
    SOLD = "sold"
    ACTIVE = "active"


@dataclass(frozen=True)
class KeywordRun:
    """Sold-listings pipeline for a search keyword."""

    keyword: str

    @property
    def mode(self) -> ListingMode:
        return ListingMode.SOLD

    @property
    def target(self) -> str:
        return self.keyword


@dataclass(frozen=True)
class SellerRun:
    """Active-listings pipeline for one seller's store."""

    seller_name: str

    @property
    def mode(self) -> ListingMode:
        return ListingMode.ACTIVE

    @property
    def target(self) -> str:
        return self.seller_name


RunRequest = Union[KeywordRun, SellerRun]


def parse_run_request(payload: dict[str, Any]) -> RunRequest:
    """Resolve a trigger payload into exactly one run variant.

    Accepts ``{"keyword": ...}`` or ``{"sellerName": ...}`` (``seller_name``
    is accepted too). Both or neither is a ``ValueError``.
    """
    keyword = (payload.get("keyword") or "").strip()
    seller = (payload.get("sellerName") or payload.get("seller_name") or "").strip()
    if keyword and seller:
        raise ValueError("keyword and sellerName are mutually exclusive")
    if keyword:
        return KeywordRun(keyword=keyword.lower())
    if seller:
        return SellerRun(seller_name=seller)
    raise ValueError("Either keyword or sellerName is required")


class ScrapeJob(BaseModel):
    """One collection run and its progress."""

    id: str
    user_id: str
    keyword: Optional[str] = None
    seller_name: Optional[str] = None
    mode: ListingMode = ListingMode.SOLD
    status: JobStatus = JobStatus.PENDING
    pages_scraped: int = 0
    items_found: int = 0
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_status(self) -> dict[str, Any]:
        """Shape returned by the job status lookup."""
        return {
            "id": self.id,
            "keyword": self.keyword,
            "seller_name": self.seller_name,
            "status": self.status.value,
            "pages_scraped": self.pages_scraped,
            "items_found": self.items_found,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat(),
        }


class RawListing(BaseModel):
    """A listing record as returned by the marketplace search."""

    id: Optional[int] = Field(default=None, description="Store row id, set once persisted")
    item_id: str
    title: str = ""
    description: Optional[str] = None
    price: Optional[float] = None
    currency: str = "USD"
    listed_at: Optional[datetime] = Field(default=None, description="Sold date or listing start")
    item_url: Optional[str] = None
    image_url: Optional[str] = None
    watcher_count: Optional[int] = None
    user_id: str
    search_keyword: str
    mode: ListingMode = ListingMode.SOLD
    job_id: Optional[str] = None


class ParsedSignal(BaseModel):
    """Structured attributes extracted from one listing."""

    listing_id: Optional[int] = None
    style: Optional[str] = None
    subject: Optional[str] = None
    medium: Optional[str] = None
    width_in: Optional[float] = None
    height_in: Optional[float] = None
    orientation: Optional[str] = None


class PriceSnapshot(BaseModel):
    item_id: str
    price: Optional[float] = None
    watcher_count: Optional[int] = None
    captured_at: datetime = Field(default_factory=utcnow)


class PriceSurge(BaseModel):
    item_id: str
    old_price: float
    new_price: float
    watcher_increase: int
    surge_intensity: float
    detected_at: datetime


class PriceBand(BaseModel):
    fast_sale: float
    safe: float
    aggressive: float
    sample_size: int
    outliers_trimmed: int
    min_price: float
    max_price: float
    confidence: str
    per_square_inch: Optional[float] = None


class TrendEntry(BaseModel):
    style: Optional[str] = None
    subject: Optional[str] = None
    medium: Optional[str] = None
    score: float
    volume_growth: float
    price_change: float
    recent_count: int
    baseline_count: int
    sources: list[str] = Field(default_factory=list)
    status: str = "stable"

    @property
    def combination(self) -> tuple[Optional[str], Optional[str], Optional[str]]:
        return (self.style, self.subject, self.medium)


class CacheRow(BaseModel):
    scope: str
    payload: dict[str, Any]
    last_updated_at: datetime
