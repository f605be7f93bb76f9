from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import uuid
from datetime import datetime
from functools import lru_cache

from app.core.config import settings
from app.schemas.profile import AnalysisRecord

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = (
    "id, account_id, plan_ref, source_uri, attempt_id, model_id, used_fallback, "
    "profile_json, raw_model_output, created_at"
)


class SqliteAnalysisRecordStore:
    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        with self._conn_lock:
            if self._conn is not None:
                return self._conn

            directory = os.path.dirname(self._db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            conn = sqlite3.connect(
                self._db_path,
                check_same_thread=False,
                timeout=5,
                isolation_level=None,
            )
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA busy_timeout=5000;")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS resume_analysis_records (
                    id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL,
                    plan_ref TEXT,
                    source_uri TEXT NOT NULL,
                    attempt_id TEXT UNIQUE,
                    model_id TEXT,
                    used_fallback INTEGER NOT NULL DEFAULT 0,
                    profile_json TEXT NOT NULL,
                    raw_model_output TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_resume_analysis_account
                ON resume_analysis_records (account_id, created_at);
                """
            )
            self._conn = conn
            return conn

    def save(self, record: AnalysisRecord) -> str:
        """Persist a record and return its id. Saving the same attempt twice returns the first id."""
        if record.attempt_id:
            existing = self.find_by_attempt(record.attempt_id)
            if existing is not None and existing.id:
                return existing.id

        record_id = record.id or uuid.uuid4().hex
        profile_json = json.dumps(record.profile().to_payload(), ensure_ascii=False)
        conn = self._get_connection()
        with self._conn_lock:
            conn.execute(
                f"""
                INSERT INTO resume_analysis_records ({_RECORD_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    record.account_id,
                    record.plan_ref,
                    record.source_uri,
                    record.attempt_id,
                    record.model_id,
                    int(record.used_fallback),
                    profile_json,
                    record.raw_model_output,
                    record.created_at.isoformat(),
                ),
            )
            conn.commit()
        logger.info(
            "analysis_record_saved id=%s account=%s fallback=%s",
            record_id,
            record.account_id,
            record.used_fallback,
        )
        return record_id

    def get(self, record_id: str, *, account_id: str | None = None) -> AnalysisRecord | None:
        query = f"SELECT {_RECORD_COLUMNS} FROM resume_analysis_records WHERE id = ?"
        params: tuple = (record_id,)
        if account_id is not None:
            query += " AND account_id = ?"
            params = (record_id, account_id)
        conn = self._get_connection()
        with self._conn_lock:
            row = conn.execute(query, params).fetchone()
        return _row_to_record(row) if row else None

    def find_by_attempt(self, attempt_id: str) -> AnalysisRecord | None:
        conn = self._get_connection()
        with self._conn_lock:
            row = conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM resume_analysis_records WHERE attempt_id = ?",
                (attempt_id,),
            ).fetchone()
        return _row_to_record(row) if row else None

    def list_for_account(self, account_id: str, limit: int = 20) -> list[AnalysisRecord]:
        conn = self._get_connection()
        with self._conn_lock:
            rows = conn.execute(
                f"""
                SELECT {_RECORD_COLUMNS}
                FROM resume_analysis_records
                WHERE account_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (account_id, max(1, int(limit))),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def close(self) -> None:
        with self._conn_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def _row_to_record(row: tuple) -> AnalysisRecord:
    profile = json.loads(row[7]) if row[7] else {}
    return AnalysisRecord.model_validate(
        {
            **profile,
            "id": row[0],
            "account_id": row[1],
            "plan_ref": row[2],
            "source_uri": row[3],
            "attempt_id": row[4],
            "model_id": row[5],
            "used_fallback": bool(row[6]),
            "raw_model_output": row[8],
            "created_at": datetime.fromisoformat(row[9]),
        }
    )


@lru_cache(maxsize=1)
def get_analysis_store() -> SqliteAnalysisRecordStore:
    return SqliteAnalysisRecordStore(settings.analysis_db_path)
