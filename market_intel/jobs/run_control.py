"""Run control: pagination stop conditions and limits."""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class PageControl:
    """Decides when a paginated collection run stops.

    A run stops after a page shorter than ``page_size`` or once
    ``max_pages`` pages have been fetched, whichever happens first.
    """

    max_pages: int
    page_size: int

    # Internal state
    start_time: float = field(default_factory=time.time)
    pages_fetched: int = 0
    items_seen: int = 0
    items_saved: int = 0
    items_skipped: int = 0

    @property
    def next_page(self) -> int:
        """1-based number of the next page to request."""
        return self.pages_fetched + 1

    def record_page(self, fetched: int, saved: int, skipped: int) -> None:
        self.pages_fetched += 1
        self.items_seen += fetched
        self.items_saved += saved
        self.items_skipped += skipped

    def should_stop(self, last_page_count: Optional[int] = None) -> tuple[bool, Optional[str]]:
        """Check if the run should stop. Returns (should_stop, reason)."""
        if last_page_count is not None and last_page_count < self.page_size:
            return True, f"Short page ({last_page_count} < {self.page_size})"
        if self.pages_fetched >= self.max_pages:
            return True, f"Reached max_pages={self.max_pages}"
        return False, None

    def get_summary(self) -> dict:
        elapsed = time.time() - self.start_time
        return {
            "elapsed_seconds": round(elapsed, 2),
            "pages": self.pages_fetched,
            "items_seen": self.items_seen,
            "items_saved": self.items_saved,
            "items_skipped": self.items_skipped,
        }
