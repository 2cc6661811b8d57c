"""
Reusable fakes and in-memory implementations for tests.
"""

from .fake_answer_repository import InMemoryAnswerRepository
from .fake_browser_driver import FakeBrowserDriver
from .fake_form_run_repository import InMemoryFormRunRepository
from .fake_operator_channel import FakeOperatorChannel
from .fake_runtime import (
    FixedClock,
    InMemoryLogger,
    InMemoryOutputStore,
    SequentialIdGenerator,
)
from .harness import Harness, make_harness

__all__ = [
    "FakeBrowserDriver",
    "FakeOperatorChannel",
    "InMemoryAnswerRepository",
    "InMemoryFormRunRepository",
    "FixedClock",
    "SequentialIdGenerator",
    "InMemoryLogger",
    "InMemoryOutputStore",
    "Harness",
    "make_harness",
]
