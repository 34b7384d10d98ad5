"""SQLite store for jobs, listings, signals, snapshots and cached aggregates."""
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

import aiosqlite
import orjson

from market_intel.config import STATE_DB
from market_intel.models import (
    CacheRow,
    JobStatus,
    ListingMode,
    ParsedSignal,
    PriceSnapshot,
    RawListing,
    ScrapeJob,
)

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS scrape_jobs (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        keyword TEXT,
        seller_name TEXT,
        mode TEXT NOT NULL,
        status TEXT NOT NULL,
        pages_scraped INTEGER NOT NULL DEFAULT 0,
        items_found INTEGER NOT NULL DEFAULT 0,
        error_message TEXT,
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_jobs_user ON scrape_jobs(user_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_status ON scrape_jobs(status)",
    # At most one running job per user and target
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_one_running
    ON scrape_jobs(user_id, mode, COALESCE(keyword, seller_name))
    WHERE status = 'running'
    """,
    """
    CREATE TABLE IF NOT EXISTS raw_listings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id TEXT,
        user_id TEXT NOT NULL,
        item_id TEXT NOT NULL,
        mode TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        price REAL,
        currency TEXT,
        listed_at TEXT,
        item_url TEXT,
        image_url TEXT,
        watcher_count INTEGER,
        search_keyword TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_listings_job ON raw_listings(job_id)",
    "CREATE INDEX IF NOT EXISTS idx_listings_scope ON raw_listings(user_id, search_keyword, mode)",
    "CREATE INDEX IF NOT EXISTS idx_listings_item ON raw_listings(item_id, mode)",
    """
    CREATE TABLE IF NOT EXISTS parsed_signals (
        listing_id INTEGER PRIMARY KEY REFERENCES raw_listings(id),
        style TEXT,
        subject TEXT,
        medium TEXT,
        width_in REAL,
        height_in REAL,
        orientation TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS price_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        item_id TEXT NOT NULL,
        price REAL,
        watcher_count INTEGER,
        captured_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_snapshots_item ON price_snapshots(item_id, captured_at)",
    """
    CREATE TABLE IF NOT EXISTS dashboard_cache (
        user_id TEXT PRIMARY KEY,
        stats_json TEXT NOT NULL,
        last_updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS global_benchmark_cache (
        scope TEXT PRIMARY KEY,
        payload_json TEXT NOT NULL,
        last_updated_at TEXT NOT NULL
    )
    """,
]


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _job_from_row(row: aiosqlite.Row) -> ScrapeJob:
    return ScrapeJob(
        id=row["id"],
        user_id=row["user_id"],
        keyword=row["keyword"],
        seller_name=row["seller_name"],
        mode=ListingMode(row["mode"]),
        status=JobStatus(row["status"]),
        pages_scraped=row["pages_scraped"],
        items_found=row["items_found"],
        error_message=row["error_message"],
        created_at=_dt(row["created_at"]),
        started_at=_dt(row["started_at"]),
        completed_at=_dt(row["completed_at"]),
    )


class StateDB:
    """SQLite database holding every persisted pipeline record.

    Each operation opens its own connection, so concurrent tasks never share
    a cursor. Writes that must land together (a page of listings and their
    signals) run inside one transaction.
    """

    def __init__(self, db_path: Path = STATE_DB):
        self.db_path = db_path

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_path)

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        async with self._connect() as db:
            for statement in _SCHEMA:
                await db.execute(statement)
            await db.commit()
        logger.info(f"State database initialized at {self.db_path}")

    # Jobs

    async def insert_job(self, job: ScrapeJob) -> None:
        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO scrape_jobs (id, user_id, keyword, seller_name, mode, status,
                    pages_scraped, items_found, error_message, created_at, started_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.user_id,
                    job.keyword,
                    job.seller_name,
                    job.mode.value,
                    job.status.value,
                    job.pages_scraped,
                    job.items_found,
                    job.error_message,
                    _ts(job.created_at),
                    _ts(job.started_at),
                    _ts(job.completed_at),
                ),
            )
            await db.commit()

    async def get_job(self, job_id: str) -> Optional[ScrapeJob]:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM scrape_jobs WHERE id = ?", (job_id,))
            row = await cursor.fetchone()
            return _job_from_row(row) if row else None

    async def update_job_if(
        self,
        job_id: str,
        expected_status: JobStatus,
        updates: dict[str, Any],
        extra_where: str = "",
        extra_params: tuple = (),
    ) -> bool:
        """Apply ``updates`` only if the job is still in ``expected_status``.

        Returns False when no row matched, leaving the job untouched.
        """
        columns = ", ".join(f"{name} = ?" for name in updates)
        values = [
            v.value if isinstance(v, JobStatus) else _ts(v) if isinstance(v, datetime) else v
            for v in updates.values()
        ]
        sql = f"UPDATE scrape_jobs SET {columns} WHERE id = ? AND status = ? {extra_where}"
        async with self._connect() as db:
            cursor = await db.execute(sql, (*values, job_id, expected_status.value, *extra_params))
            await db.commit()
            return cursor.rowcount > 0

    async def delete_pending_job(self, job_id: str) -> bool:
        """Remove a job that never started. Returns False if it left pending."""
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM scrape_jobs WHERE id = ? AND status = ?", (job_id, JobStatus.PENDING.value)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def list_jobs(
        self,
        user_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
        limit: int = 100,
    ) -> list[ScrapeJob]:
        conditions, params = [], []
        if user_id is not None:
            conditions.append("user_id = ?")
            params.append(user_id)
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT * FROM scrape_jobs {where} ORDER BY created_at DESC LIMIT ?",
                (*params, limit),
            )
            return [_job_from_row(row) for row in await cursor.fetchall()]

    async def job_status_counts(self, user_id: str) -> dict[str, int]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT status, COUNT(*) FROM scrape_jobs WHERE user_id = ? GROUP BY status",
                (user_id,),
            )
            return {row[0]: row[1] for row in await cursor.fetchall()}

    # Listings and signals

    async def insert_listings(
        self,
        job_id: Optional[str],
        parsed: Iterable[tuple[RawListing, ParsedSignal]],
        created_at: datetime,
    ) -> list[RawListing]:
        """Insert listings with their signals in one transaction.

        Returns the listings with their store ids filled in.
        """
        saved = []
        async with self._connect() as db:
            try:
                for listing, signal in parsed:
                    cursor = await db.execute(
                        """
                        INSERT INTO raw_listings (job_id, user_id, item_id, mode, title, description,
                            price, currency, listed_at, item_url, image_url, watcher_count,
                            search_keyword, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            job_id,
                            listing.user_id,
                            listing.item_id,
                            listing.mode.value,
                            listing.title,
                            listing.description,
                            listing.price,
                            listing.currency,
                            _ts(listing.listed_at),
                            listing.item_url,
                            listing.image_url,
                            listing.watcher_count,
                            listing.search_keyword,
                            _ts(created_at),
                        ),
                    )
                    listing_id = cursor.lastrowid
                    # Signals are written once and never replaced
                    await db.execute(
                        """
                        INSERT OR IGNORE INTO parsed_signals
                            (listing_id, style, subject, medium, width_in, height_in, orientation)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            listing_id,
                            signal.style,
                            signal.subject,
                            signal.medium,
                            signal.width_in,
                            signal.height_in,
                            signal.orientation,
                        ),
                    )
                    saved.append(listing.model_copy(update={"id": listing_id, "job_id": job_id}))
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        return saved

    async def count_job_listings(self, job_id: str) -> int:
        async with self._connect() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM raw_listings WHERE job_id = ?", (job_id,))
            row = await cursor.fetchone()
            return row[0]

    async def list_listings(
        self, user_id: str, mode: ListingMode, limit: int = 100
    ) -> list[tuple[RawListing, ParsedSignal]]:
        """A user's newest listings of one mode, each with its parsed signal."""
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT r.*, s.listing_id, s.style, s.subject, s.medium, s.width_in, s.height_in, s.orientation
                FROM raw_listings r
                LEFT JOIN parsed_signals s ON s.listing_id = r.id
                WHERE r.user_id = ? AND r.mode = ?
                ORDER BY r.created_at DESC, r.id DESC
                LIMIT ?
                """,
                (user_id, mode.value, limit),
            )
            rows = await cursor.fetchall()
        results = []
        for row in rows:
            listing = RawListing(
                id=row["id"],
                job_id=row["job_id"],
                user_id=row["user_id"],
                item_id=row["item_id"],
                mode=ListingMode(row["mode"]),
                title=row["title"],
                description=row["description"],
                price=row["price"],
                currency=row["currency"] or "USD",
                listed_at=_dt(row["listed_at"]),
                item_url=row["item_url"],
                image_url=row["image_url"],
                watcher_count=row["watcher_count"],
                search_keyword=row["search_keyword"],
            )
            signal = ParsedSignal(
                listing_id=row["listing_id"],
                style=row["style"],
                subject=row["subject"],
                medium=row["medium"],
                width_in=row["width_in"],
                height_in=row["height_in"],
                orientation=row["orientation"],
            )
            results.append((listing, signal))
        return results

    async def latest_active_listings(self) -> list[dict[str, Any]]:
        """Most recent active row per marketplace item."""
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT r.item_id, r.price, r.watcher_count
                FROM raw_listings r
                JOIN (
                    SELECT item_id, MAX(id) AS max_id FROM raw_listings
                    WHERE mode = 'active' GROUP BY item_id
                ) latest ON r.id = latest.max_id
                ORDER BY r.item_id
                """
            )
            return [dict(row) for row in await cursor.fetchall()]

    async def sold_prices(
        self,
        keyword: Optional[str] = None,
        user_id: Optional[str] = None,
        style: Optional[str] = None,
        subject: Optional[str] = None,
        medium: Optional[str] = None,
    ) -> list[float]:
        conditions = ["r.mode = 'sold'", "r.price IS NOT NULL", "r.price > 0"]
        params: list[Any] = []
        for column, value in (
            ("r.search_keyword", keyword),
            ("r.user_id", user_id),
            ("s.style", style),
            ("s.subject", subject),
            ("s.medium", medium),
        ):
            if value is not None:
                conditions.append(f"{column} = ?")
                params.append(value)
        async with self._connect() as db:
            cursor = await db.execute(
                f"""
                SELECT r.price FROM raw_listings r
                LEFT JOIN parsed_signals s ON s.listing_id = r.id
                WHERE {' AND '.join(conditions)}
                """,
                params,
            )
            return [row[0] for row in await cursor.fetchall()]

    async def signal_rows(self, user_id: Optional[str] = None) -> list[dict[str, Any]]:
        """Listings joined with their signals, for trend and benchmark aggregation."""
        where = "WHERE r.user_id = ?" if user_id is not None else ""
        params = (user_id,) if user_id is not None else ()
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"""
                SELECT r.id, r.user_id, r.item_id, r.mode, r.price, r.watcher_count,
                       r.listed_at, r.created_at, s.style, s.subject, s.medium
                FROM raw_listings r
                JOIN parsed_signals s ON s.listing_id = r.id
                {where}
                """,
                params,
            )
            rows = []
            for row in await cursor.fetchall():
                record = dict(row)
                record["mode"] = ListingMode(record["mode"])
                record["listed_at"] = _dt(record["listed_at"])
                record["created_at"] = _dt(record["created_at"])
                rows.append(record)
            return rows

    async def listing_stats(self, user_id: Optional[str] = None, sold_since: Optional[datetime] = None) -> dict[str, Any]:
        """Counts and active market value, optionally for one user."""
        user_clause = "AND user_id = ?" if user_id is not None else ""
        user_params: tuple = (user_id,) if user_id is not None else ()
        same_owner = "AND x.user_id = r.user_id" if user_id is not None else ""
        async with self._connect() as db:
            cursor = await db.execute(
                f"""
                SELECT COUNT(*), COALESCE(SUM(price), 0) FROM raw_listings r
                WHERE mode = 'active' {user_clause}
                AND id = (SELECT MAX(id) FROM raw_listings x WHERE x.item_id = r.item_id AND x.mode = 'active'
                          {same_owner})
                """,
                user_params,
            )
            active_count, market_value = await cursor.fetchone()

            sold_clause = "AND COALESCE(listed_at, created_at) >= ?" if sold_since else ""
            sold_params = user_params + ((_ts(sold_since),) if sold_since else ())
            cursor = await db.execute(
                f"SELECT COUNT(*) FROM raw_listings WHERE mode = 'sold' {user_clause} {sold_clause}",
                sold_params,
            )
            (sold_count,) = await cursor.fetchone()

            cursor = await db.execute(
                f"SELECT COUNT(DISTINCT user_id) FROM raw_listings WHERE 1 = 1 {user_clause}",
                user_params,
            )
            (user_count,) = await cursor.fetchone()

        return {
            "active_listings": active_count,
            "market_value": round(float(market_value), 2),
            "sold_listings": sold_count,
            "users": user_count,
        }

    # Snapshots

    async def insert_snapshots(self, snapshots: list[PriceSnapshot]) -> int:
        if not snapshots:
            return 0
        async with self._connect() as db:
            await db.executemany(
                "INSERT INTO price_snapshots (item_id, price, watcher_count, captured_at) VALUES (?, ?, ?, ?)",
                [(s.item_id, s.price, s.watcher_count, _ts(s.captured_at)) for s in snapshots],
            )
            await db.commit()
        return len(snapshots)

    async def snapshot_series(self) -> dict[str, list[PriceSnapshot]]:
        """All snapshots grouped by item, each series ordered by capture time."""
        series: dict[str, list[PriceSnapshot]] = {}
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT item_id, price, watcher_count, captured_at FROM price_snapshots ORDER BY item_id, captured_at, id"
            )
            for item_id, price, watchers, captured_at in await cursor.fetchall():
                series.setdefault(item_id, []).append(
                    PriceSnapshot(item_id=item_id, price=price, watcher_count=watchers, captured_at=_dt(captured_at))
                )
        return series

    # Aggregate cache rows

    async def read_cache(self, scope: str, global_: bool = False) -> Optional[CacheRow]:
        """Cached aggregate for a user, or the benchmark row when ``global_`` is set."""
        if global_:
            sql = "SELECT payload_json, last_updated_at FROM global_benchmark_cache WHERE scope = ?"
        else:
            sql = "SELECT stats_json, last_updated_at FROM dashboard_cache WHERE user_id = ?"
        async with self._connect() as db:
            cursor = await db.execute(sql, (scope,))
            row = await cursor.fetchone()
        if not row:
            return None
        return CacheRow(scope=scope, payload=orjson.loads(row[0]), last_updated_at=_dt(row[1]))

    async def write_cache(
        self, scope: str, payload: dict[str, Any], updated_at: datetime, global_: bool = False
    ) -> None:
        """Overwrite the single row for ``scope`` (last writer wins)."""
        if global_:
            sql = """
                INSERT INTO global_benchmark_cache (scope, payload_json, last_updated_at) VALUES (?, ?, ?)
                ON CONFLICT(scope) DO UPDATE SET payload_json = excluded.payload_json,
                    last_updated_at = excluded.last_updated_at
            """
        else:
            sql = """
                INSERT INTO dashboard_cache (user_id, stats_json, last_updated_at) VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET stats_json = excluded.stats_json,
                    last_updated_at = excluded.last_updated_at
            """
        async with self._connect() as db:
            await db.execute(sql, (scope, orjson.dumps(payload).decode(), _ts(updated_at)))
            await db.commit()
