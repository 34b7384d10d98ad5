"""Metrics exporter for finished runs."""
import time
from pathlib import Path
from typing import Optional

import aiofiles
import orjson

from market_intel.config import DATA_DIR
from market_intel.models import ScrapeJob

METRICS_FILE = DATA_DIR / "metrics.jsonl"


class MetricsExporter:
    """Appends one JSON line per finished run."""

    def __init__(self, metrics_file: Optional[Path] = None):
        self.metrics_file = metrics_file or METRICS_FILE

    async def export_run(self, job: ScrapeJob, summary: dict) -> None:
        metrics = {
            "ts": time.time(),
            "job_id": job.id,
            "mode": job.mode.value,
            "target": job.keyword if job.keyword is not None else job.seller_name,
            "status": job.status.value,
            "pages": job.pages_scraped,
            "items": job.items_found,
            "skipped": summary.get("items_skipped", 0),
            "elapsed_seconds": summary.get("elapsed_seconds", 0.0),
        }

        line = orjson.dumps(metrics).decode() + "\n"
        async with aiofiles.open(self.metrics_file, "a") as f:
            await f.write(line)

    async def read_recent(self, limit: int = 100) -> list[dict]:
        if not self.metrics_file.exists():
            return []
        async with aiofiles.open(self.metrics_file, "r") as f:
            lines = [line for line in (await f.read()).splitlines() if line.strip()]
        return [orjson.loads(line) for line in lines[-limit:]]
