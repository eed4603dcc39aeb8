"""SQLite database schema and queries for Ideaforge."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    kind TEXT NOT NULL,
    config TEXT NOT NULL DEFAULT '{}',
    enabled INTEGER NOT NULL DEFAULT 1,
    last_fetch_at TEXT,
    etag TEXT,
    last_modified TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS raw_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id INTEGER NOT NULL REFERENCES sources(id),
    ext_id TEXT NOT NULL DEFAULT '',
    url TEXT NOT NULL DEFAULT '',
    fetched_at TEXT NOT NULL DEFAULT (datetime('now')),
    raw TEXT NOT NULL DEFAULT '{}',
    hash TEXT NOT NULL UNIQUE,
    normalized INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS enrich_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'queued'
        CHECK (status IN ('queued', 'running', 'done', 'failed')),
    result TEXT,
    errors TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    started_at TEXT,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS ideas (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    source TEXT NOT NULL DEFAULT 'scraper',
    source_url TEXT NOT NULL DEFAULT '',
    raw_data TEXT NOT NULL DEFAULT '{}',
    signals TEXT NOT NULL DEFAULT '{}',
    tags TEXT NOT NULL DEFAULT '[]',
    title_hash TEXT NOT NULL,
    embedding BLOB,
    status TEXT NOT NULL DEFAULT 'completed',
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS scrape_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    scraped_at TEXT NOT NULL DEFAULT (datetime('now')),
    items_found INTEGER NOT NULL DEFAULT 0,
    items_normalized INTEGER NOT NULL DEFAULT 0,
    error TEXT
);

CREATE TABLE IF NOT EXISTS schema_info (
    version INTEGER NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_enrich_jobs_active
    ON enrich_jobs(item_id) WHERE status IN ('queued', 'running');
CREATE INDEX IF NOT EXISTS idx_enrich_jobs_item ON enrich_jobs(item_id, status);
CREATE INDEX IF NOT EXISTS idx_raw_items_source ON raw_items(source_id);
CREATE INDEX IF NOT EXISTS idx_raw_items_normalized ON raw_items(normalized);
CREATE INDEX IF NOT EXISTS idx_ideas_title_hash ON ideas(title_hash);
CREATE INDEX IF NOT EXISTS idx_scrape_log_source ON scrape_log(source, scraped_at DESC);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class IdeaforgeDB:
    """SQLite database for sources, raw items, enrichment jobs and ideas."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> None:
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        row = self.conn.execute(
            "SELECT version FROM schema_info LIMIT 1"
        ).fetchone()
        if row is None:
            self.conn.execute(
                "INSERT INTO schema_info (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            self.conn.commit()

    # ── Sources ─────────────────────────────────────────────────────

    def upsert_source(
        self,
        *,
        name: str,
        kind: str,
        config: dict | None = None,
        enabled: bool = True,
    ) -> int:
        """Insert a source if its name is new. Returns the source id either way."""
        self.conn.execute(
            """INSERT INTO sources (name, kind, config, enabled)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(name) DO NOTHING""",
            (name, kind, json.dumps(config or {}), int(enabled)),
        )
        self.conn.commit()
        row = self.conn.execute(
            "SELECT id FROM sources WHERE name = ?", (name,)
        ).fetchone()
        return row["id"]

    def list_sources(
        self, *, enabled_only: bool = False, name: str | None = None
    ) -> list[dict]:
        query = "SELECT * FROM sources WHERE 1 = 1"
        params: list[Any] = []
        if enabled_only:
            query += " AND enabled = 1"
        if name:
            query += " AND name = ?"
            params.append(name)
        query += " ORDER BY name"
        rows = self.conn.execute(query, params).fetchall()
        return [_source_row(r) for r in rows]

    def get_source(self, source_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _source_row(row) if row else None

    def update_source(
        self,
        source_id: int,
        *,
        enabled: bool | None = None,
        config: dict | None = None,
    ) -> bool:
        """Patch operator-editable fields. Returns False when there is nothing to update."""
        updates = []
        params: list[Any] = []
        if enabled is not None:
            updates.append("enabled = ?")
            params.append(int(enabled))
        if config is not None:
            updates.append("config = ?")
            params.append(json.dumps(config))
        if not updates:
            return False
        updates.append("updated_at = datetime('now')")
        params.append(source_id)
        cur = self.conn.execute(
            f"UPDATE sources SET {', '.join(updates)} WHERE id = ?", params
        )
        self.conn.commit()
        return cur.rowcount > 0

    def record_fetch(
        self,
        source_id: int,
        *,
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> None:
        """Stamp last_fetch_at and keep any cache tokens the upstream handed back."""
        updates = ["last_fetch_at = ?"]
        params: list[Any] = [_now()]
        if etag is not None:
            updates.append("etag = ?")
            params.append(etag)
        if last_modified is not None:
            updates.append("last_modified = ?")
            params.append(last_modified)
        params.append(source_id)
        self.conn.execute(
            f"UPDATE sources SET {', '.join(updates)} WHERE id = ?", params
        )
        self.conn.commit()

    # ── Raw items ───────────────────────────────────────────────────

    def raw_item_exists(self, content_hash: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM raw_items WHERE hash = ?", (content_hash,)
        ).fetchone()
        return row is not None

    def insert_raw_item(
        self,
        *,
        source_id: int,
        ext_id: str,
        url: str,
        raw: dict,
        content_hash: str,
    ) -> int | None:
        """Insert a raw item. Returns the new id, or None if the hash is already stored."""
        try:
            cur = self.conn.execute(
                """INSERT INTO raw_items (source_id, ext_id, url, raw, hash, fetched_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (source_id, ext_id, url, json.dumps(raw, default=str), content_hash, _now()),
            )
            self.conn.commit()
            return cur.lastrowid
        except sqlite3.IntegrityError:
            return None

    def mark_normalized(self, item_id: int) -> None:
        self.conn.execute(
            "UPDATE raw_items SET normalized = 1 WHERE id = ?", (item_id,)
        )
        self.conn.commit()

    def get_raw_item(self, item_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM raw_items WHERE id = ?", (item_id,)
        ).fetchone()
        if row is None:
            return None
        result = dict(row)
        result["raw"] = json.loads(result["raw"])
        result["normalized"] = bool(result["normalized"])
        return result

    def count_raw_items(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM raw_items").fetchone()[0]

    def list_unenriched_item_ids(self, limit: int = 100) -> list[int]:
        """Normalized items with no queued, running or done job."""
        rows = self.conn.execute(
            """SELECT id FROM raw_items
               WHERE normalized = 1
               AND id NOT IN (
                   SELECT item_id FROM enrich_jobs
                   WHERE status IN ('queued', 'running', 'done')
               )
               ORDER BY id LIMIT ?""",
            (limit,),
        ).fetchall()
        return [r["id"] for r in rows]

    # ── Enrichment jobs ─────────────────────────────────────────────

    def create_job(self, item_id: int) -> int | None:
        """Queue a job. Returns None if the item already has a queued or running job."""
        try:
            cur = self.conn.execute(
                "INSERT INTO enrich_jobs (item_id, status, created_at) VALUES (?, 'queued', ?)",
                (item_id, _now()),
            )
            self.conn.commit()
            return cur.lastrowid
        except sqlite3.IntegrityError:
            return None

    def claim_job(self, job_id: int) -> bool:
        """Move a job from queued to running. False if someone else got there first."""
        cur = self.conn.execute(
            """UPDATE enrich_jobs SET status = 'running', started_at = ?
               WHERE id = ? AND status = 'queued'""",
            (_now(), job_id),
        )
        self.conn.commit()
        return cur.rowcount == 1

    def complete_job(self, job_id: int, result: dict) -> None:
        self.conn.execute(
            """UPDATE enrich_jobs
               SET status = 'done', result = ?, completed_at = ?
               WHERE id = ?""",
            (json.dumps(result, default=str), _now(), job_id),
        )
        self.conn.commit()

    def fail_job(self, job_id: int, errors: dict) -> None:
        self.conn.execute(
            """UPDATE enrich_jobs
               SET status = 'failed', errors = ?, attempts = attempts + 1, completed_at = ?
               WHERE id = ?""",
            (json.dumps(errors, default=str), _now(), job_id),
        )
        self.conn.commit()

    def get_job(self, job_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM enrich_jobs WHERE id = ?", (job_id,)
        ).fetchone()
        return _job_row(row) if row else None

    def list_jobs(self, item_id: int) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM enrich_jobs WHERE item_id = ? ORDER BY id", (item_id,)
        ).fetchall()
        return [_job_row(r) for r in rows]

    def list_queued_job_ids(self, limit: int | None = None) -> list[int]:
        query = "SELECT id FROM enrich_jobs WHERE status = 'queued' ORDER BY id"
        params: list[Any] = []
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return [r["id"] for r in self.conn.execute(query, params).fetchall()]

    def has_job(self, item_id: int, statuses: tuple[str, ...]) -> bool:
        placeholders = ", ".join("?" for _ in statuses)
        row = self.conn.execute(
            f"SELECT 1 FROM enrich_jobs WHERE item_id = ? AND status IN ({placeholders}) LIMIT 1",
            (item_id, *statuses),
        ).fetchone()
        return row is not None

    # ── Ideas ───────────────────────────────────────────────────────

    def insert_idea(
        self,
        *,
        title: str,
        description: str = "",
        source: str = "scraper",
        source_url: str = "",
        raw_data: dict | None = None,
        signals: dict | None = None,
        tags: list[str] | None = None,
        title_hash: str,
        embedding: bytes | None = None,
        status: str = "completed",
    ) -> int:
        cur = self.conn.execute(
            """INSERT INTO ideas
               (title, description, source, source_url, raw_data, signals,
                tags, title_hash, embedding, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                title,
                description,
                source,
                source_url,
                json.dumps(raw_data or {}, default=str),
                json.dumps(signals or {}, default=str),
                json.dumps(tags or []),
                title_hash,
                embedding,
                status,
                _now(),
            ),
        )
        self.conn.commit()
        return cur.lastrowid

    def get_idea(self, idea_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM ideas WHERE id = ?", (idea_id,)
        ).fetchone()
        if row is None:
            return None
        result = dict(row)
        result["raw_data"] = json.loads(result["raw_data"])
        result["signals"] = json.loads(result["signals"])
        result["tags"] = json.loads(result["tags"])
        return result

    def find_idea_by_title_hash(self, title_hash: str) -> dict | None:
        row = self.conn.execute(
            "SELECT id, title, created_at FROM ideas WHERE title_hash = ? ORDER BY id LIMIT 1",
            (title_hash,),
        ).fetchone()
        return dict(row) if row else None

    def get_idea_signals(self, idea_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT signals FROM ideas WHERE id = ?", (idea_id,)
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["signals"] or "{}")

    def count_ideas(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM ideas").fetchone()[0]

    # ── Scrape log ──────────────────────────────────────────────────

    def log_scrape(
        self, source: str, items_found: int, items_normalized: int, error: str | None = None
    ) -> None:
        self.conn.execute(
            """INSERT INTO scrape_log (source, items_found, items_normalized, error, scraped_at)
               VALUES (?, ?, ?, ?, ?)""",
            (source, items_found, items_normalized, error, _now()),
        )
        self.conn.commit()

    def get_scrape_stats(self) -> list[dict]:
        """Get last scrape time and counts per source."""
        rows = self.conn.execute(
            """SELECT source,
                      MAX(scraped_at) as last_scrape,
                      SUM(items_found) as total_found,
                      SUM(items_normalized) as total_normalized,
                      SUM(CASE WHEN error IS NOT NULL THEN 1 ELSE 0 END) as failures
               FROM scrape_log GROUP BY source ORDER BY source"""
        ).fetchall()
        return [dict(r) for r in rows]

    # ── Stats ───────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        jobs_by_status = {}
        for row in self.conn.execute(
            "SELECT status, COUNT(*) as cnt FROM enrich_jobs GROUP BY status"
        ).fetchall():
            jobs_by_status[row["status"]] = row["cnt"]
        normalized = self.conn.execute(
            "SELECT COUNT(*) FROM raw_items WHERE normalized = 1"
        ).fetchone()[0]
        return {
            "sources": self.conn.execute("SELECT COUNT(*) FROM sources").fetchone()[0],
            "raw_items": self.count_raw_items(),
            "normalized_items": normalized,
            "jobs_by_status": jobs_by_status,
            "ideas": self.count_ideas(),
        }


def _source_row(row: sqlite3.Row) -> dict:
    result = dict(row)
    result["config"] = json.loads(result["config"] or "{}")
    result["enabled"] = bool(result["enabled"])
    return result


def _job_row(row: sqlite3.Row) -> dict:
    result = dict(row)
    for key in ("result", "errors"):
        if result.get(key):
            result[key] = json.loads(result[key])
    return result
