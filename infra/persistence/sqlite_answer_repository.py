from __future__ import annotations

import sqlite3
from typing import Sequence

from domain.models import OperatorInstruction


class SQLiteAnswerRepository:
    """
    SQLite-backed implementation of ``AnswerRepositoryPort``.

    Operator answers are keyed by question id; the latest answer wins.
    Instructions are append-only, and their row id is the sequence that
    decides which one is the last explicit instruction.
    """

    _SCHEMA_SQL = """\
    CREATE TABLE IF NOT EXISTS operator_answers (
        question_id TEXT PRIMARY KEY,
        answer      TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS operator_instructions (
        sequence    INTEGER PRIMARY KEY AUTOINCREMENT,
        affirmative INTEGER NOT NULL,
        question_id TEXT
    );
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._conn = sqlite3.connect(db_path)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(self._SCHEMA_SQL)

    def __enter__(self) -> "SQLiteAnswerRepository":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    # -- Answers ------------------------------------------------------------

    def get_answer(self, question_id: str) -> str | None:
        row = self._conn.execute(
            "SELECT answer FROM operator_answers WHERE question_id = ?",
            (question_id,),
        ).fetchone()
        return str(row[0]) if row else None

    def save_answer(self, question_id: str, text: str) -> None:
        self._conn.execute(
            "INSERT INTO operator_answers (question_id, answer) VALUES (?, ?) "
            "ON CONFLICT(question_id) DO UPDATE SET answer = excluded.answer",
            (question_id, text),
        )
        self._conn.commit()

    # -- Instructions -------------------------------------------------------

    def list_instructions(self) -> Sequence[OperatorInstruction]:
        rows = self._conn.execute(
            "SELECT sequence, affirmative, question_id "
            "FROM operator_instructions ORDER BY sequence",
        ).fetchall()
        return [
            OperatorInstruction(sequence=int(r[0]), affirmative=bool(r[1]), question_id=r[2])
            for r in rows
        ]

    def add_instruction(self, affirmative: bool, question_id: str | None = None) -> OperatorInstruction:
        cursor = self._conn.execute(
            "INSERT INTO operator_instructions (affirmative, question_id) VALUES (?, ?)",
            (int(affirmative), question_id),
        )
        self._conn.commit()
        return OperatorInstruction(
            sequence=int(cursor.lastrowid),
            affirmative=affirmative,
            question_id=question_id,
        )

    def close(self) -> None:
        self._conn.close()
