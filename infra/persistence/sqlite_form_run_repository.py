from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Sequence

from domain.models import FormRunRecord, FormRunStatus


class SQLiteFormRunRepository:
    """
    SQLite-backed implementation of ``FormRunRepositoryPort``.

    One row per form run, updated in place as the run moves through
    its statuses. Unresolved question ids are stored as a JSON list.
    """

    _SCHEMA_SQL = """\
    CREATE TABLE IF NOT EXISTS form_runs (
        id          TEXT PRIMARY KEY,
        form_id     TEXT NOT NULL,
        url         TEXT NOT NULL,
        status      TEXT NOT NULL,
        unresolved  TEXT NOT NULL DEFAULT '[]',
        updated_at  TEXT,
        detail      TEXT
    );
    """

    _COLUMNS = "id, form_id, url, status, unresolved, updated_at, detail"

    def __init__(self, db_path: str = ":memory:") -> None:
        self._conn = sqlite3.connect(db_path)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(self._SCHEMA_SQL)

    def __enter__(self) -> "SQLiteFormRunRepository":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def add(self, record: FormRunRecord) -> None:
        self._conn.execute(
            f"INSERT INTO form_runs ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            self._record_to_row(record),
        )
        self._conn.commit()

    def update(self, record: FormRunRecord) -> None:
        cursor = self._conn.execute(
            "UPDATE form_runs SET "
            "form_id=?, url=?, status=?, unresolved=?, updated_at=?, detail=? "
            "WHERE id=?",
            (*self._record_to_row(record)[1:], record.id),
        )
        if cursor.rowcount == 0:
            raise KeyError(f"Unknown form run: {record.id}")
        self._conn.commit()

    def get(self, record_id: str) -> FormRunRecord | None:
        row = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM form_runs WHERE id = ?",
            (record_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def list_all(self) -> Sequence[FormRunRecord]:
        rows = self._conn.execute(
            f"SELECT {self._COLUMNS} FROM form_runs ORDER BY updated_at DESC, id",
        ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def close(self) -> None:
        self._conn.close()

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _record_to_row(r: FormRunRecord) -> tuple[object, ...]:
        return (
            r.id,
            r.form_id,
            r.url,
            r.status.value,
            json.dumps(list(r.unresolved)),
            _utc_iso(r.updated_at),
            r.detail,
        )

    @staticmethod
    def _row_to_record(row: tuple[object, ...]) -> FormRunRecord:
        return FormRunRecord(
            id=str(row[0]),
            form_id=str(row[1]),
            url=str(row[2]),
            status=FormRunStatus(row[3]),
            unresolved=tuple(json.loads(str(row[4]) or "[]")),
            updated_at=_parse_utc(row[5]),
            detail=str(row[6]) if row[6] is not None else None,
        )


def _utc_iso(dt: datetime | None) -> str | None:
    """Naive timestamps are taken as UTC so rows sort consistently."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_utc(value: object) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(str(value))
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)
