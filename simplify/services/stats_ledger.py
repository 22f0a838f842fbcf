"""
Append-only ledgers of provider calls and finished translation jobs.

- ``StatsLedger`` (``stats.sqlite``): one row per provider call and per
  finalized job, aggregated per provider for cost dashboards
- ``ReportsLedger`` (``reports.sqlite``): one row per finished, failed,
  timed out or cancelled job, listed per language
"""

from __future__ import annotations

import sqlite3
from contextlib import closing
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..logging_utils import log


@dataclass
class TranslationRecord:
    """Normalized outcome of one job, written by the worker when it finalizes."""

    page_id: str
    language_code: str
    status: str
    page_uuid: Optional[str] = None
    page_title: Optional[str] = None
    provider_id: Optional[str] = None
    model: Optional[str] = None
    action: str = "manual"
    strategy: Optional[str] = None
    fields_translated: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class _SqliteLedger:
    SCHEMA = ""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.executescript(self.SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn


class StatsLedger(_SqliteLedger):
    SCHEMA = """
    CREATE TABLE IF NOT EXISTS api_calls (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        provider_id TEXT,
        model TEXT,
        input_tokens INTEGER DEFAULT 0,
        output_tokens INTEGER DEFAULT 0,
        cost REAL,
        success INTEGER DEFAULT 1,
        error TEXT,
        context TEXT,
        page_id TEXT,
        language_code TEXT,
        page_uuid TEXT,
        page_title TEXT,
        action TEXT,
        strategy TEXT,
        status TEXT,
        fields_translated INTEGER DEFAULT 0
    );
    CREATE INDEX IF NOT EXISTS idx_api_calls_provider ON api_calls(provider_id, timestamp);
    """

    def log_api_call(
        self,
        provider_id: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cost: Optional[float],
        success: bool = True,
        error: Optional[str] = None,
        context: str = "",
        page_id: Optional[str] = None,
        language_code: Optional[str] = None,
    ) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT INTO api_calls (timestamp, provider_id, model, input_tokens, output_tokens, "
                "cost, success, error, context, page_id, language_code) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (_now(), provider_id, model, int(input_tokens or 0), int(output_tokens or 0),
                 cost, int(bool(success)), error, context, page_id, language_code),
            )

    def log_translation(self, record: TranslationRecord) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT INTO api_calls (timestamp, provider_id, model, input_tokens, output_tokens, "
                "cost, success, error, context, page_id, language_code, page_uuid, page_title, "
                "action, strategy, status, fields_translated) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'translation', ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    _now(), record.provider_id, record.model, record.input_tokens,
                    record.output_tokens, record.cost, int(record.status == "SUCCESS"),
                    record.error, record.page_id, record.language_code, record.page_uuid,
                    record.page_title, record.action, record.strategy, record.status,
                    record.fields_translated,
                ),
            )

    def get_stats(self, provider_id: str, since: Optional[str] = None) -> Dict[str, Any]:
        """Aggregate provider calls (``context != 'translation'``) since a timestamp."""
        query = (
            "SELECT COUNT(*) AS total_calls, "
            "COALESCE(SUM(success), 0) AS successful_calls, "
            "COALESCE(SUM(input_tokens), 0) AS input_tokens, "
            "COALESCE(SUM(output_tokens), 0) AS output_tokens, "
            "COALESCE(SUM(cost), 0) AS total_cost "
            "FROM api_calls WHERE provider_id = ? AND COALESCE(context, '') != 'translation'"
        )
        params: List[Any] = [provider_id]
        if since:
            query += " AND timestamp >= ?"
            params.append(since)
        with closing(self._connect()) as conn:
            row = dict(conn.execute(query, params).fetchone())
        row["failed_calls"] = row["total_calls"] - row["successful_calls"]
        row["total_tokens"] = row["input_tokens"] + row["output_tokens"]
        return row

    def reset_stats(self, provider_id: str) -> int:
        with closing(self._connect()) as conn, conn:
            cur = conn.execute("DELETE FROM api_calls WHERE provider_id = ?", (provider_id,))
        log(f"Reset {cur.rowcount} stats rows for {provider_id}")
        return cur.rowcount


class ReportsLedger(_SqliteLedger):
    SCHEMA = """
    CREATE TABLE IF NOT EXISTS translation_reports (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        language_code TEXT NOT NULL,
        page_id TEXT,
        page_uuid TEXT,
        page_title TEXT,
        provider_id TEXT,
        model TEXT,
        action TEXT,
        strategy TEXT,
        status TEXT,
        fields_translated INTEGER DEFAULT 0,
        input_tokens INTEGER DEFAULT 0,
        output_tokens INTEGER DEFAULT 0,
        cost REAL,
        error TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_reports_language ON translation_reports(language_code, timestamp);
    """

    def log_translation(self, record: TranslationRecord) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT INTO translation_reports (timestamp, language_code, page_id, page_uuid, "
                "page_title, provider_id, model, action, strategy, status, fields_translated, "
                "input_tokens, output_tokens, cost, error) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    _now(), record.language_code, record.page_id, record.page_uuid,
                    record.page_title, record.provider_id, record.model, record.action,
                    record.strategy, record.status, record.fields_translated,
                    record.input_tokens, record.output_tokens, record.cost, record.error,
                ),
            )

    def get_reports(self, language: str, limit: int = 0, offset: int = 0) -> List[Dict[str, Any]]:
        """Newest first; ``limit=0`` returns everything."""
        query = "SELECT * FROM translation_reports WHERE language_code = ? ORDER BY id DESC"
        params: List[Any] = [language]
        if limit > 0:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        with closing(self._connect()) as conn:
            return [dict(row) for row in conn.execute(query, params)]

    def get_report_count(self, language: str) -> int:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM translation_reports WHERE language_code = ?", (language,)
            ).fetchone()
        return int(row[0])

    def get_summary(self, language: str) -> Dict[str, Any]:
        with closing(self._connect()) as conn:
            totals = dict(conn.execute(
                "SELECT COUNT(*) AS total_jobs, "
                "COALESCE(SUM(fields_translated), 0) AS fields_translated, "
                "COALESCE(SUM(input_tokens), 0) AS input_tokens, "
                "COALESCE(SUM(output_tokens), 0) AS output_tokens, "
                "COALESCE(SUM(cost), 0) AS total_cost "
                "FROM translation_reports WHERE language_code = ?",
                (language,),
            ).fetchone())
            by_status = {
                row["status"]: row["n"]
                for row in conn.execute(
                    "SELECT status, COUNT(*) AS n FROM translation_reports "
                    "WHERE language_code = ? GROUP BY status",
                    (language,),
                )
            }
        totals["by_status"] = by_status
        return totals

    def clear_reports(self, language: str) -> int:
        with closing(self._connect()) as conn, conn:
            cur = conn.execute("DELETE FROM translation_reports WHERE language_code = ?", (language,))
        return cur.rowcount
