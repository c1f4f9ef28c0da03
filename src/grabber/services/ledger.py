import json
import logging
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import aiosqlite

from grabber.core.entities import (
    Highlight,
    LedgerRecord,
    LedgerStats,
    ProcessingStatus,
    TagCount,
    WeeklyStats,
)
from grabber.core.schemas import DEFAULT_CATEGORY

logger = logging.getLogger(__name__)

HIGHLIGHT_MIN_SCORE = 8
HIGHLIGHT_LIMIT = 10
TOP_TAG_LIMIT = 10

# Statuses that block a new claim. NULL rows predate the status column and count as completed.
_CLAIM_BLOCKING = (ProcessingStatus.COMPLETED.value, ProcessingStatus.PROCESSING.value)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(value: Optional[datetime] = None) -> str:
    return (value or utc_now()).astimezone(timezone.utc).isoformat()


def _status(value: Optional[str]) -> Optional[ProcessingStatus]:
    if value is None:
        return None
    try:
        return ProcessingStatus(value)
    except ValueError:
        logger.warning(f"Unknown ledger status: {value}")
        return None


class Ledger:
    """
    Durable per-item processing state backed by SQLite.
    Each operation opens its own connection so the store survives crashes
    between calls and concurrent readers work under WAL journaling.
    """

    def __init__(
        self,
        path: str,
        busy_timeout: float = 10.0,
        claim_timeout: float = 1800.0,
        read_only: bool = False,
    ):
        self.path = path
        self.busy_timeout = busy_timeout
        self.claim_timeout = claim_timeout
        self.read_only = read_only

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        if self.read_only:
            # mode=ro never creates the file
            conn = await aiosqlite.connect(f"file:{self.path}?mode=ro", uri=True, timeout=self.busy_timeout)
        else:
            conn = await aiosqlite.connect(self.path, timeout=self.busy_timeout)
        try:
            if not self.read_only:
                await conn.execute("PRAGMA journal_mode=WAL;")
            yield conn
        finally:
            await conn.close()

    async def execute(self, query: str, params: tuple = ()) -> int:
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def fetchone(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()

    async def fetchall(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

    async def init_tables(self) -> None:
        """Initialize the ledger table, migrating tables created before the status column."""
        async with self.connect() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS ledger (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    item_id TEXT UNIQUE NOT NULL,
                    processed_at TEXT NOT NULL,
                    category TEXT NOT NULL,
                    destination_ref TEXT,
                    payload TEXT NOT NULL,
                    status TEXT DEFAULT 'completed'
                )
            """)

            cursor = await conn.execute("PRAGMA table_info(ledger)")
            columns = {row[1] for row in await cursor.fetchall()}
            if "status" not in columns:
                await conn.execute("ALTER TABLE ledger ADD COLUMN status TEXT DEFAULT 'completed'")
                logger.info("Migrated ledger table: added status column")

            await conn.execute("CREATE INDEX IF NOT EXISTS idx_ledger_item_id ON ledger(item_id)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_ledger_processed_at ON ledger(processed_at)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_ledger_category ON ledger(category)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_ledger_status ON ledger(status)")
            await conn.commit()
            logger.info("Ledger tables initialized")

    async def get(self, item_id: str) -> Optional[LedgerRecord]:
        row = await self.fetchone(
            """SELECT item_id, status, processed_at, category, destination_ref, payload
               FROM ledger WHERE item_id = ?""",
            (item_id,),
        )
        if row is None:
            return None
        return LedgerRecord(
            item_id=row[0],
            status=_status(row[1]),
            processed_at=row[2],
            category=row[3],
            destination_ref=row[4],
            payload=row[5],
        )

    async def is_handled(self, item_id: str) -> bool:
        """True if the item completed, or its row predates the status column."""
        row = await self.fetchone("SELECT status FROM ledger WHERE item_id = ?", (item_id,))
        if row is None:
            return False
        return row[0] is None or row[0] == ProcessingStatus.COMPLETED.value

    async def try_claim(self, item_id: str, now: Optional[datetime] = None) -> bool:
        """
        Atomically reserve an item for processing.

        Succeeds for unseen and failed items, and for processing claims older
        than `claim_timeout` (left behind by a crashed worker). BEGIN IMMEDIATE
        takes the write lock before the pre-read, so concurrent claimers serialize.
        """
        now = now or utc_now()
        stale_before = _timestamp(now - timedelta(seconds=self.claim_timeout))

        async with self.connect() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = await conn.execute(
                    "SELECT status, processed_at FROM ledger WHERE item_id = ?",
                    (item_id,),
                )
                existing = await cursor.fetchone()

                if existing is not None:
                    status, processed_at = existing
                    stale = status == ProcessingStatus.PROCESSING.value and processed_at < stale_before
                    if status is None or (status in _CLAIM_BLOCKING and not stale):
                        await conn.rollback()
                        return False
                    if stale:
                        logger.warning(f"Reclaiming stale claim on {item_id} (claimed at {processed_at})")

                await conn.execute(
                    """
                    INSERT INTO ledger (item_id, processed_at, category, destination_ref, payload, status)
                    VALUES (?, ?, ?, NULL, '{}', ?)
                    ON CONFLICT(item_id) DO UPDATE SET
                        processed_at = excluded.processed_at,
                        category = excluded.category,
                        destination_ref = NULL,
                        payload = excluded.payload,
                        status = excluded.status
                    """,
                    (item_id, _timestamp(now), DEFAULT_CATEGORY, ProcessingStatus.PROCESSING.value),
                )
                await conn.commit()
                return True
            except BaseException:
                await conn.rollback()
                raise

    async def release(self, item_id: str, status: ProcessingStatus = ProcessingStatus.FAILED) -> None:
        await self.execute(
            "UPDATE ledger SET status = ?, processed_at = ? WHERE item_id = ?",
            (status.value, _timestamp(), item_id),
        )

    async def commit(
        self,
        item_id: str,
        status: ProcessingStatus,
        category: str,
        destination_ref: Optional[str],
        payload: Union[Dict[str, Any], str],
        processed_at: Optional[datetime] = None,
    ) -> None:
        """Upsert the final record, replacing the claim placeholder."""
        raw = payload if isinstance(payload, str) else json.dumps(payload, default=str)
        await self.execute(
            """
            INSERT INTO ledger (item_id, processed_at, category, destination_ref, payload, status)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(item_id) DO UPDATE SET
                processed_at = excluded.processed_at,
                category = excluded.category,
                destination_ref = excluded.destination_ref,
                payload = excluded.payload,
                status = excluded.status
            """,
            (item_id, _timestamp(processed_at), category, destination_ref, raw, status.value),
        )

    async def recover_stale_claims(self) -> int:
        """Mark every in-progress claim as failed. Only safe while no pass is running."""
        count = await self.execute(
            "UPDATE ledger SET status = ?, processed_at = ? WHERE status = ?",
            (ProcessingStatus.FAILED.value, _timestamp(), ProcessingStatus.PROCESSING.value),
        )
        if count:
            logger.warning(f"Recovered {count} stale claim(s) from a previous run")
        return count

    async def count(self) -> int:
        row = await self.fetchone("SELECT COUNT(*) FROM ledger")
        return row[0]

    async def stats(self) -> LedgerStats:
        rows = await self.fetchall("SELECT category, COUNT(*) FROM ledger GROUP BY category")
        by_category = {category: count for category, count in rows}
        return LedgerStats(total=sum(by_category.values()), by_category=by_category)

    async def weekly_stats(self, since: Optional[datetime] = None) -> WeeklyStats:
        """
        Aggregate the records processed since `since` (default: the last 7 days).
        Only completed rows count; failed rows and in-flight claims are left out.
        Payloads that cannot be read are skipped.
        """
        since = since or utc_now() - timedelta(days=7)
        rows = await self.fetchall(
            """SELECT item_id, category, payload FROM ledger
               WHERE processed_at >= ? AND (status = ? OR status IS NULL)
               ORDER BY processed_at DESC""",
            (_timestamp(since), ProcessingStatus.COMPLETED.value),
        )

        by_category: Dict[str, int] = {}
        tag_counts: Counter = Counter()
        highlights: List[Highlight] = []

        for item_id, category, payload in rows:
            by_category[category] = by_category.get(category, 0) + 1

            analysis = _analysis_from_payload(payload)
            if analysis is None:
                continue

            tags = analysis.get("tags")
            if isinstance(tags, list):
                tag_counts.update(tag for tag in tags if isinstance(tag, str))

            score = analysis.get("relevance_score", analysis.get("relevanceScore"))
            if (
                isinstance(score, (int, float))
                and score >= HIGHLIGHT_MIN_SCORE
                and len(highlights) < HIGHLIGHT_LIMIT
            ):
                highlights.append(Highlight(
                    item_id=item_id,
                    summary=str(analysis.get("summary") or ""),
                    category=category,
                ))

        # Counter.most_common keeps first-encounter order for equal counts
        top_tags = [TagCount(tag=tag, count=count) for tag, count in tag_counts.most_common(TOP_TAG_LIMIT)]

        return WeeklyStats(
            total_processed=len(rows),
            by_category=by_category,
            top_tags=top_tags,
            highlights=highlights,
        )


def _analysis_from_payload(payload: Optional[str]) -> Optional[Dict[str, Any]]:
    if not payload:
        return None
    try:
        data = json.loads(payload)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    analysis = data.get("analysis")
    return analysis if isinstance(analysis, dict) else None
