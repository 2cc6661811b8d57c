"""Infrastructure adapters – concrete implementations of domain ports."""

from .browser import PlaywrightBrowserDriver
from .config import FileSystemConfigProvider
from .documents import FileSystemDocumentStore, FileSystemOutputStore
from .interaction import ConsoleOperatorChannel
from .persistence import SQLiteAnswerRepository, SQLiteFormRunRepository
from .runtime import StructuredLogger, SystemClock, UuidIdGenerator

__all__ = [
    "PlaywrightBrowserDriver",
    "FileSystemConfigProvider",
    "FileSystemDocumentStore",
    "FileSystemOutputStore",
    "ConsoleOperatorChannel",
    "SQLiteFormRunRepository",
    "SQLiteAnswerRepository",
    "SystemClock",
    "UuidIdGenerator",
    "StructuredLogger",
]
