"""
Content-addressed cache of field translations.

One row per (page uuid, language, field). A cached translation is reused
only while the md5 of the source text is unchanged and it was produced with
the same system prompt; rows written before prompt hashes were tracked
(empty ``prompt_hash``) still match.
"""

from __future__ import annotations

import hashlib
import sqlite3
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ..logging_utils import log

_SCHEMA = """
CREATE TABLE IF NOT EXISTS translation_cache (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    page_uuid TEXT NOT NULL,
    language_code TEXT NOT NULL,
    field_name TEXT NOT NULL,
    field_type TEXT,
    source_hash TEXT NOT NULL,
    prompt_hash TEXT NOT NULL DEFAULT '',
    source_content TEXT,
    translated_content TEXT,
    created_at TEXT,
    updated_at TEXT,
    UNIQUE(page_uuid, language_code, field_name)
);
CREATE INDEX IF NOT EXISTS idx_cache_lookup
    ON translation_cache(page_uuid, language_code, field_name);
"""


def content_hash(text: str) -> str:
    return hashlib.md5((text or "").encode("utf-8")).hexdigest()


class TranslationCache:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.executescript(_SCHEMA)
            self._migrate(conn)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _migrate(conn: sqlite3.Connection) -> None:
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(translation_cache)")}
        if "prompt_hash" not in columns:
            log("Migrating translation cache: adding prompt_hash column")
            conn.execute("ALTER TABLE translation_cache ADD COLUMN prompt_hash TEXT NOT NULL DEFAULT ''")

    def get(
        self,
        page_uuid: str,
        language: str,
        field: str,
        source_content: str,
        prompt_hash: str = "",
    ) -> Optional[str]:
        """Cached translation, or None on a miss or stale entry."""
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT translated_content FROM translation_cache "
                "WHERE page_uuid = ? AND language_code = ? AND field_name = ? "
                "AND source_hash = ? AND (prompt_hash = ? OR prompt_hash = '')",
                (page_uuid, language, field, content_hash(source_content), prompt_hash),
            ).fetchone()
        return row["translated_content"] if row is not None else None

    def set(
        self,
        page_uuid: str,
        language: str,
        field: str,
        field_type: Optional[str],
        source_content: str,
        translated_content: str,
        prompt_hash: str = "",
    ) -> None:
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT INTO translation_cache "
                "(page_uuid, language_code, field_name, field_type, source_hash, prompt_hash, "
                "source_content, translated_content, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(page_uuid, language_code, field_name) DO UPDATE SET "
                "field_type = excluded.field_type, source_hash = excluded.source_hash, "
                "prompt_hash = excluded.prompt_hash, source_content = excluded.source_content, "
                "translated_content = excluded.translated_content, updated_at = excluded.updated_at",
                (
                    page_uuid, language, field, field_type, content_hash(source_content),
                    prompt_hash or "", source_content, translated_content, stamp, stamp,
                ),
            )

    def clear_page(self, page_uuid: str, language: Optional[str] = None) -> int:
        with closing(self._connect()) as conn, conn:
            if language is None:
                cur = conn.execute("DELETE FROM translation_cache WHERE page_uuid = ?", (page_uuid,))
            else:
                cur = conn.execute(
                    "DELETE FROM translation_cache WHERE page_uuid = ? AND language_code = ?",
                    (page_uuid, language),
                )
            return cur.rowcount

    def clear_language(self, language: str) -> int:
        with closing(self._connect()) as conn, conn:
            cur = conn.execute("DELETE FROM translation_cache WHERE language_code = ?", (language,))
            return cur.rowcount

    def get_stats(self) -> Dict[str, Any]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total_entries, "
                "COUNT(DISTINCT page_uuid) AS unique_pages, "
                "COUNT(DISTINCT language_code) AS unique_languages, "
                "COALESCE(SUM(LENGTH(source_content) + LENGTH(translated_content)), 0) AS total_size "
                "FROM translation_cache"
            ).fetchone()
        return dict(row)
