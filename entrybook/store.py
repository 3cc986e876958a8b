"""
SQLite-backed entry store.

Operations
1) insert(): record a value/description with a UTC millisecond timestamp
2) sum_in_range(): total values whose created_at falls inside [from, to]
3) list_page(): newest-first pagination over all entries

Timestamps are stored as ISO-8601 text ending in "Z" so they compare
lexicographically in SQL.
"""
from __future__ import annotations

import logging
import math
import sqlite3
import threading
from contextlib import closing
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Union

from entrybook.config import DB_PATH

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    value INTEGER NOT NULL,
    description TEXT NOT NULL,
    created_at TEXT NOT NULL
)
"""

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass(frozen=True, slots=True)
class Entry:
    """One stored row."""

    id: int
    value: int
    description: str
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def utc_timestamp() -> str:
    """Return the current UTC time as e.g. ``2024-05-01T12:00:00.123Z``."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def clamp_page(page: Any, page_size: Any) -> tuple[int, int]:
    """
    Normalize pagination parameters.

    Non-numeric values fall back to the defaults; ``page`` is clamped to >= 1
    and ``page_size`` to [1, 100].
    """
    try:
        size = int(page_size)
    except (TypeError, ValueError):
        size = DEFAULT_PAGE_SIZE
    try:
        number = int(page)
    except (TypeError, ValueError):
        number = 1
    return max(1, number), max(1, min(MAX_PAGE_SIZE, size))


class EntryStore:
    """Thin wrapper over one SQLite file. Writes are serialized per instance."""

    def __init__(self, db_path: Union[str, Path] = DB_PATH) -> None:
        self.db_path = str(db_path)
        self._write_lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with closing(self._connect()) as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(SCHEMA)
            conn.commit()
        logger.info("Entry store ready at %s", self.db_path)

    def insert(self, value: int, description: str) -> Entry:
        """Persist one entry and return it with its assigned id."""
        created_at = utc_timestamp()
        with self._write_lock, closing(self._connect()) as conn:
            cursor = conn.execute(
                "INSERT INTO entries(value, description, created_at) VALUES (?, ?, ?)",
                (value, description, created_at),
            )
            conn.commit()
            entry_id = cursor.lastrowid
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Inserted entry id=%s value=%s", entry_id, value)
        return Entry(id=int(entry_id), value=value, description=description, created_at=created_at)

    def sum_in_range(self, start: str, end: str) -> int:
        """Sum ``value`` over entries with ``start <= created_at <= end`` (string comparison)."""
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(value), 0) AS total FROM entries "
                "WHERE created_at >= ? AND created_at <= ?",
                (start, end),
            ).fetchone()
        return int(row["total"] or 0)

    def list_page(self, page: Any = 1, page_size: Any = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
        """
        Return one page of entries, newest first.

        Returns
        -------
        Dict[str, Any]
            {"items": [dict], "page": int, "pageSize": int, "total": int, "pages": int}
        """
        number, size = clamp_page(page, page_size)
        offset = (number - 1) * size
        with closing(self._connect()) as conn:
            total = conn.execute("SELECT COUNT(1) AS c FROM entries").fetchone()["c"]
            rows: List[sqlite3.Row] = conn.execute(
                "SELECT id, value, description, created_at FROM entries "
                "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (size, offset),
            ).fetchall()
        return {
            "items": [dict(row) for row in rows],
            "page": number,
            "pageSize": size,
            "total": total,
            "pages": max(1, math.ceil(total / size)),
        }
