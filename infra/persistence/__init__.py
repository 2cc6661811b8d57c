"""SQLite-backed persistence adapters for domain repository ports."""

from .sqlite_answer_repository import SQLiteAnswerRepository
from .sqlite_form_run_repository import SQLiteFormRunRepository

__all__ = [
    "SQLiteFormRunRepository",
    "SQLiteAnswerRepository",
]
