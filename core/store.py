"""
SQLite storage for the library cache, tag bookkeeping and search stats.

One database file holds:
- media_library: last-synced projection of every item, one row per (instance, media id)
- instance_tags / quality_profiles: id -> name lookups captured at sync time
- tagged_media: items this application tagged after a confirmed search
- sync_state: when each instance was last synced
- search_history: one row per instance run that searched something
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from core.media import FileSummary, MediaItem

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS media_library (
    instance_key TEXT NOT NULL,
    media_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    monitored INTEGER NOT NULL DEFAULT 0,
    tag_ids TEXT NOT NULL DEFAULT '[]',
    tags TEXT NOT NULL DEFAULT '[]',
    quality_profile_id INTEGER,
    quality_profile_name TEXT,
    status TEXT NOT NULL DEFAULT '',
    added TEXT,
    last_search_time TEXT,
    has_file INTEGER NOT NULL DEFAULT 0,
    date_imported TEXT,
    custom_format_score INTEGER,
    file_ids TEXT NOT NULL DEFAULT '[]',
    synced_at TEXT NOT NULL,
    UNIQUE (instance_key, media_id)
);

CREATE TABLE IF NOT EXISTS instance_tags (
    instance_key TEXT NOT NULL,
    tag_id INTEGER NOT NULL,
    label TEXT NOT NULL,
    PRIMARY KEY (instance_key, tag_id)
);

CREATE TABLE IF NOT EXISTS quality_profiles (
    instance_key TEXT NOT NULL,
    profile_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    PRIMARY KEY (instance_key, profile_id)
);

CREATE TABLE IF NOT EXISTS tagged_media (
    instance_key TEXT NOT NULL,
    tag_id INTEGER NOT NULL,
    media_id INTEGER NOT NULL,
    tagged_at TEXT NOT NULL,
    PRIMARY KEY (instance_key, tag_id, media_id)
);

CREATE TABLE IF NOT EXISTS sync_state (
    instance_key TEXT PRIMARY KEY,
    synced_at TEXT NOT NULL,
    item_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS search_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    application TEXT NOT NULL,
    instance TEXT,
    count INTEGER NOT NULL,
    items TEXT NOT NULL DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_search_history_timestamp ON search_history (timestamp);
"""

UPSERT_MEDIA = """
INSERT INTO media_library (
    instance_key, media_id, title, monitored, tag_ids, tags,
    quality_profile_id, quality_profile_name, status, added, last_search_time,
    has_file, date_imported, custom_format_score, file_ids, synced_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (instance_key, media_id) DO UPDATE SET
    title = excluded.title,
    monitored = excluded.monitored,
    tag_ids = excluded.tag_ids,
    tags = excluded.tags,
    quality_profile_id = excluded.quality_profile_id,
    quality_profile_name = excluded.quality_profile_name,
    status = excluded.status,
    added = excluded.added,
    last_search_time = excluded.last_search_time,
    has_file = excluded.has_file,
    date_imported = excluded.date_imported,
    custom_format_score = excluded.custom_format_score,
    file_ids = excluded.file_ids,
    synced_at = excluded.synced_at
"""


def _item_to_row(instance_key: str, item: MediaItem, synced_at: str) -> tuple:
    return (
        instance_key,
        item.id,
        item.title,
        1 if item.monitored else 0,
        json.dumps(list(item.tag_ids)),
        json.dumps(list(item.tags)),
        item.quality_profile_id,
        item.quality_profile_name,
        item.status,
        item.added,
        item.last_search_time,
        1 if item.file.has_file else 0,
        item.file.imported_at,
        item.file.score,
        json.dumps(list(item.file.file_ids)),
        synced_at,
    )


def _row_to_item(row: sqlite3.Row) -> MediaItem:
    return MediaItem(
        id=row["media_id"],
        title=row["title"],
        monitored=bool(row["monitored"]),
        tag_ids=tuple(json.loads(row["tag_ids"])),
        tags=tuple(json.loads(row["tags"])),
        quality_profile_id=row["quality_profile_id"],
        quality_profile_name=row["quality_profile_name"],
        status=row["status"] or "",
        added=row["added"],
        last_search_time=row["last_search_time"],
        file=FileSummary(
            has_file=bool(row["has_file"]),
            imported_at=row["date_imported"],
            score=row["custom_format_score"],
            file_ids=tuple(json.loads(row["file_ids"])),
        ),
    )


class LibraryStore:
    """Thread-safe access to the SQLite database.

    Each call opens its own connection; writes are serialized with a lock and
    every multi-row write runs inside a single transaction.
    """

    def __init__(self, db_path):
        self.db_path = Path(db_path)
        self._write_lock = threading.Lock()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._write_lock, self._connect() as conn:
            conn.executescript(SCHEMA)
        logger.debug(f"Database ready: {self.db_path}")

    # ------------------------------------------------------------------
    # Library
    # ------------------------------------------------------------------

    def upsert_library(
        self,
        instance_key: str,
        items: Iterable[MediaItem],
        tags: Dict[int, str],
        profiles: Dict[int, str],
        synced_at: str,
    ) -> int:
        """Replace an instance's snapshot in one transaction. Returns the row count written."""
        rows = [_item_to_row(instance_key, item, synced_at) for item in items]
        with self._write_lock, self._connect() as conn:
            with conn:
                conn.executemany(UPSERT_MEDIA, rows)
                conn.execute("DELETE FROM instance_tags WHERE instance_key = ?", (instance_key,))
                conn.executemany(
                    "INSERT INTO instance_tags (instance_key, tag_id, label) VALUES (?, ?, ?)",
                    [(instance_key, tag_id, label) for tag_id, label in tags.items()],
                )
                conn.execute("DELETE FROM quality_profiles WHERE instance_key = ?", (instance_key,))
                conn.executemany(
                    "INSERT INTO quality_profiles (instance_key, profile_id, name) VALUES (?, ?, ?)",
                    [(instance_key, profile_id, name) for profile_id, name in profiles.items()],
                )
                conn.execute(
                    """INSERT INTO sync_state (instance_key, synced_at, item_count) VALUES (?, ?, ?)
                       ON CONFLICT (instance_key) DO UPDATE SET
                           synced_at = excluded.synced_at, item_count = excluded.item_count""",
                    (instance_key, synced_at, len(rows)),
                )
        return len(rows)

    def get_library(self, instance_key: str) -> List[MediaItem]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM media_library WHERE instance_key = ? ORDER BY title COLLATE NOCASE, media_id",
                (instance_key,),
            ).fetchall()
        return [_row_to_item(row) for row in rows]

    def get_titles(self, instance_key: str, media_ids: Iterable[int]) -> Dict[int, str]:
        ids = list(media_ids)
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT media_id, title FROM media_library WHERE instance_key = ? AND media_id IN ({placeholders})",
                [instance_key, *ids],
            ).fetchall()
        return {row["media_id"]: row["title"] for row in rows}

    def get_tags(self, instance_key: str) -> Dict[int, str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT tag_id, label FROM instance_tags WHERE instance_key = ?", (instance_key,)
            ).fetchall()
        return {row["tag_id"]: row["label"] for row in rows}

    def get_quality_profiles(self, instance_key: str) -> Dict[int, str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT profile_id, name FROM quality_profiles WHERE instance_key = ?", (instance_key,)
            ).fetchall()
        return {row["profile_id"]: row["name"] for row in rows}

    def get_sync_state(self, instance_key: str) -> Optional[dict]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT synced_at, item_count FROM sync_state WHERE instance_key = ?", (instance_key,)
            ).fetchone()
        return dict(row) if row else None

    def update_item_tags(self, instance_key: str, media_ids: Iterable[int], tag_id: int, label: str, added: bool) -> None:
        """Apply a confirmed remote tag change to the cached rows."""
        ids = list(media_ids)
        if not ids:
            return
        placeholders = ",".join("?" for _ in ids)
        with self._write_lock, self._connect() as conn:
            with conn:
                rows = conn.execute(
                    f"SELECT media_id, tag_ids, tags FROM media_library "
                    f"WHERE instance_key = ? AND media_id IN ({placeholders})",
                    [instance_key, *ids],
                ).fetchall()
                for row in rows:
                    tag_ids = json.loads(row["tag_ids"])
                    tags = json.loads(row["tags"])
                    if added and tag_id not in tag_ids:
                        tag_ids.append(tag_id)
                        tags.append(label)
                    elif not added and tag_id in tag_ids:
                        tag_ids = [t for t in tag_ids if t != tag_id]
                        tags = [t for t in tags if t != label]
                    conn.execute(
                        "UPDATE media_library SET tag_ids = ?, tags = ? WHERE instance_key = ? AND media_id = ?",
                        (json.dumps(tag_ids), json.dumps(tags), instance_key, row["media_id"]),
                    )
                if added:
                    conn.execute(
                        "INSERT OR REPLACE INTO instance_tags (instance_key, tag_id, label) VALUES (?, ?, ?)",
                        (instance_key, tag_id, label),
                    )

    def reset_instance(self, instance_key: str) -> None:
        """Forget everything stored for an instance."""
        with self._write_lock, self._connect() as conn:
            with conn:
                for table in ("media_library", "instance_tags", "quality_profiles", "tagged_media", "sync_state"):
                    conn.execute(f"DELETE FROM {table} WHERE instance_key = ?", (instance_key,))
        logger.info(f"Cleared stored data for {instance_key}")

    # ------------------------------------------------------------------
    # Tag bookkeeping
    # ------------------------------------------------------------------

    def record_tagged(self, instance_key: str, tag_id: int, media_ids: Iterable[int], tagged_at: str) -> None:
        with self._write_lock, self._connect() as conn:
            with conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO tagged_media (instance_key, tag_id, media_id, tagged_at) VALUES (?, ?, ?, ?)",
                    [(instance_key, tag_id, media_id, tagged_at) for media_id in media_ids],
                )

    def delete_tagged(self, instance_key: str, tag_id: int, media_ids: Iterable[int]) -> None:
        with self._write_lock, self._connect() as conn:
            with conn:
                conn.executemany(
                    "DELETE FROM tagged_media WHERE instance_key = ? AND tag_id = ? AND media_id = ?",
                    [(instance_key, tag_id, media_id) for media_id in media_ids],
                )

    def get_tagged_ids(self, instance_key: str, tag_id: int) -> Set[int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT media_id FROM tagged_media WHERE instance_key = ? AND tag_id = ?",
                (instance_key, tag_id),
            ).fetchall()
        return {row["media_id"] for row in rows}

    # ------------------------------------------------------------------
    # Search stats
    # ------------------------------------------------------------------

    def add_search(self, timestamp: str, application: str, instance: Optional[str], count: int, items: List[dict]) -> None:
        with self._write_lock, self._connect() as conn:
            with conn:
                conn.execute(
                    "INSERT INTO search_history (timestamp, application, instance, count, items) VALUES (?, ?, ?, ?, ?)",
                    (timestamp, application, instance, count, json.dumps(items)),
                )

    def get_searches(self, limit: Optional[int] = None, offset: int = 0) -> List[dict]:
        query = "SELECT timestamp, application, instance, count, items FROM search_history ORDER BY timestamp DESC, id DESC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params = (limit, offset)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            {
                "timestamp": row["timestamp"],
                "application": row["application"],
                "instance": row["instance"],
                "count": row["count"],
                "items": json.loads(row["items"]),
            }
            for row in rows
        ]

    def count_searches(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM search_history").fetchone()[0]

    def clear_searches(self) -> None:
        with self._write_lock, self._connect() as conn:
            with conn:
                conn.execute("DELETE FROM search_history")
