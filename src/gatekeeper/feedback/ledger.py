"""
Feedback Ledger — append-only record of validation outcomes

Every attempt the retry loop makes is written here: its category, aggregate
score, disposition, failing criteria and whether it was a quality outcome,
a worker failure or a cancellation. Weight adjustments made by the tuner are
recorded in the same table.

Appends from concurrent requests are serialized by one ``asyncio.Lock`` on a
single aiosqlite connection; the autoincrement id preserves insertion order.
"""

import asyncio
import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import aiosqlite

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

KIND_QUALITY = "quality"
KIND_WORKER_FAILURE = "worker_failure"
KIND_CANCELLED = "cancelled"
KIND_WEIGHT_ADJUSTMENT = "weight_adjustment"

ENTRY_KINDS = frozenset(
    {KIND_QUALITY, KIND_WORKER_FAILURE, KIND_CANCELLED, KIND_WEIGHT_ADJUSTMENT}
)


def _utc_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@dataclass(frozen=True)
class LedgerEntry:
    """One immutable ledger row."""

    category: str
    aggregate_score: float
    disposition: str
    issues: Tuple[str, ...] = ()
    kind: str = KIND_QUALITY
    request_id: str = ""
    attempt_index: int = 0
    estimated_cost: int = 0
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_utc_now)
    id: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.aggregate_score <= 1.0:
            raise ValueError(
                f"aggregate_score must be in [0.0, 1.0], got {self.aggregate_score}"
            )
        if self.kind not in ENTRY_KINDS:
            raise ValueError(f"unknown ledger entry kind {self.kind!r}")
        object.__setattr__(self, "issues", tuple(self.issues))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "aggregate_score": self.aggregate_score,
            "disposition": self.disposition,
            "issues": list(self.issues),
            "kind": self.kind,
            "request_id": self.request_id,
            "attempt_index": self.attempt_index,
            "estimated_cost": self.estimated_cost,
            "details": dict(self.details),
            "timestamp": self.timestamp,
        }


class FeedbackLedger:
    """
    Persistent outcome ledger.

    Usage:
        async with FeedbackLedger(":memory:") as ledger:
            await ledger.record(entry)
            top = await ledger.recurring_issues("research", window_size=50)
    """

    DB_PATH = Path.home() / ".gatekeeper" / "ledger.db"

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path == MEMORY:
            self.db_path = MEMORY
        else:
            path = Path(db_path) if db_path else self.DB_PATH
            path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(path)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "FeedbackLedger":
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        await self.close()

    async def open(self) -> None:
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS ledger_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                category TEXT NOT NULL,
                kind TEXT NOT NULL,
                request_id TEXT NOT NULL DEFAULT '',
                attempt_index INTEGER NOT NULL DEFAULT 0,
                aggregate_score REAL NOT NULL,
                disposition TEXT NOT NULL,
                issues TEXT NOT NULL DEFAULT '[]',
                estimated_cost INTEGER NOT NULL DEFAULT 0,
                details TEXT NOT NULL DEFAULT '{}',
                CHECK (aggregate_score BETWEEN 0.0 AND 1.0)
            )
        """)
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_ledger_category
            ON ledger_entries(category, id DESC)
        """)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("FeedbackLedger is not open; use 'async with' or open()")
        return self._db

    async def record(self, entry: LedgerEntry) -> int:
        """Append ``entry`` and return its row id."""
        db = self._conn()
        async with self._lock:
            cursor = await db.execute(
                """INSERT INTO ledger_entries
                   (timestamp, category, kind, request_id, attempt_index,
                    aggregate_score, disposition, issues, estimated_cost, details)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.timestamp,
                    entry.category,
                    entry.kind,
                    entry.request_id,
                    entry.attempt_index,
                    entry.aggregate_score,
                    entry.disposition,
                    json.dumps(list(entry.issues)),
                    entry.estimated_cost,
                    json.dumps(entry.details, sort_keys=True, default=str),
                ),
            )
            await db.commit()
            row_id = cursor.lastrowid
        logger.debug(
            "Ledger #%s: %s %s attempt=%d disposition=%s",
            row_id, entry.category, entry.kind, entry.attempt_index, entry.disposition,
        )
        return row_id

    async def entries(
        self,
        category: Optional[str] = None,
        limit: int = 50,
        kinds: Optional[List[str]] = None,
    ) -> List[LedgerEntry]:
        """The most recent ``limit`` entries, returned in insertion order."""
        db = self._conn()
        clauses: List[str] = []
        params: List[Any] = []
        if category:
            clauses.append("category = ?")
            params.append(category)
        if kinds:
            clauses.append(f"kind IN ({', '.join('?' for _ in kinds)})")
            params.extend(kinds)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        cursor = await db.execute(
            f"""SELECT id, timestamp, category, kind, request_id, attempt_index,
                       aggregate_score, disposition, issues, estimated_cost, details
                FROM ledger_entries {where}
                ORDER BY id DESC LIMIT ?""",
            (*params, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in reversed(rows)]

    async def recurring_issues(
        self,
        category: str,
        window_size: int = 50,
        after: Optional[Mapping[str, int]] = None,
    ) -> List[Tuple[str, int]]:
        """
        Count issues over the last ``window_size`` quality and worker-failure
        entries for ``category``, most frequent first, ties broken by name.

        ``after`` maps an issue to a row id; occurrences at or before that row
        are not counted.
        """
        window = await self.entries(
            category, limit=window_size, kinds=[KIND_QUALITY, KIND_WORKER_FAILURE]
        )
        after = after or {}
        counts: Counter = Counter()
        for entry in window:
            counts.update(
                issue for issue in set(entry.issues)
                if (entry.id or 0) > after.get(issue, 0)
            )
        return sorted(counts.items(), key=lambda item: (-item[1], item[0]))

    async def last_adjustments(self, category: str) -> Dict[str, int]:
        """Row id of the latest weight adjustment per criterion of ``category``."""
        cursor = await self._conn().execute(
            """SELECT id, issues FROM ledger_entries
               WHERE category = ? AND kind = ?
               ORDER BY id""",
            (category, KIND_WEIGHT_ADJUSTMENT),
        )
        latest: Dict[str, int] = {}
        for row_id, issues in await cursor.fetchall():
            for criterion in json.loads(issues):
                latest[criterion] = row_id
        return latest

    async def count(self) -> int:
        cursor = await self._conn().execute("SELECT COUNT(*) FROM ledger_entries")
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    @staticmethod
    def _row_to_entry(row: Any) -> LedgerEntry:
        (
            row_id, timestamp, category, kind, request_id, attempt_index,
            aggregate_score, disposition, issues, estimated_cost, details,
        ) = row
        return LedgerEntry(
            id=row_id,
            timestamp=timestamp,
            category=category,
            kind=kind,
            request_id=request_id,
            attempt_index=attempt_index,
            aggregate_score=aggregate_score,
            disposition=disposition,
            issues=tuple(json.loads(issues)),
            estimated_cost=estimated_cost,
            details=json.loads(details),
        )
