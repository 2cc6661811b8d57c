from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from domain.models import (
    CoordinateSpace,
    FieldAnswer,
    FillReport,
    FormQuestion,
    FormRunRecord,
    OperatorInstruction,
    OperatorToken,
    PageElement,
    PageInfo,
    RunContext,
    WaitCondition,
)


@runtime_checkable
class BrowserDriverPort(Protocol):
    """
    The capability-limited tool surface of the remote browser.

    The concrete implementation wraps Playwright. Every call may block on
    remote I/O; waits surface ``WaitTimeoutError`` instead of polling.
    """

    # -- session control ----------------------------------------------------

    async def connect(self, endpoint: str) -> None:
        ...

    async def launch(self) -> None:
        ...

    async def close(self) -> None:
        ...

    def navigation_epoch(self) -> int:
        """Count of page-driven navigations seen so far."""
        ...

    # -- pages ---------------------------------------------------------------

    async def list_pages(self) -> Sequence[PageInfo]:
        ...

    async def select_page(self, page_id: int) -> PageInfo:
        ...

    def active_page_id(self) -> int | None:
        ...

    # -- navigation ----------------------------------------------------------

    async def goto(self, url: str) -> None:
        ...

    # -- observation ---------------------------------------------------------

    async def structural_snapshot(
        self,
        limits: Mapping[str, Any],
    ) -> Sequence[PageElement]:
        ...

    async def list_elements(
        self,
        limits: Mapping[str, Any],
    ) -> Sequence[PageElement]:
        ...

    async def query(
        self,
        selector: str | None,
        text: str | None,
        limits: Mapping[str, Any],
    ) -> Sequence[PageElement]:
        ...

    async def visual_snapshot(
        self,
        limits: Mapping[str, Any],
    ) -> tuple[Sequence[PageElement], CoordinateSpace]:
        ...

    async def scroll_state(self) -> dict[str, Any]:
        ...

    async def page_text(self) -> str:
        ...

    async def screenshot(self) -> bytes:
        ...

    # -- element actions -----------------------------------------------------

    async def click_locator(self, locator: str) -> None:
        ...

    async def click_viewport(self, x: float, y: float) -> None:
        ...

    async def click_page(self, x: float, y: float) -> None:
        ...

    async def fill(self, locator: str, value: str) -> None:
        ...

    async def type_text(self, locator: str, text: str) -> None:
        ...

    async def set_input_files(self, locator: str, paths: Sequence[str]) -> None:
        ...

    async def scroll_by(self, dx: int, dy: int) -> None:
        ...

    async def wait_for(self, condition: WaitCondition) -> None:
        ...

    # -- declarative forms ---------------------------------------------------

    async def audit_form(
        self,
        provider: str = "generic",
    ) -> tuple[int, Sequence[FormQuestion]]:
        """Return (total required questions, unanswered questions)."""
        ...

    async def fill_form(
        self,
        answers: Sequence[FieldAnswer],
        provider: str = "generic",
    ) -> FillReport:
        ...


@runtime_checkable
class OperatorChannelPort(Protocol):
    """
    Operator-facing channel for protocol tokens and blocking questions.

    All methods are asynchronous to make it easy to integrate with
    async-first messaging libraries.
    """

    async def send_token(self, token: OperatorToken, message: str) -> None:
        ...

    async def ask_free_text(self, question_id: str, prompt: str) -> str:
        ...

    async def ask_confirmation(self, prompt: str) -> bool:
        ...


@runtime_checkable
class AnswerRepositoryPort(Protocol):
    """Durable store of operator answers and willingness instructions."""

    @abstractmethod
    def get_answer(self, question_id: str) -> str | None:
        ...

    @abstractmethod
    def save_answer(self, question_id: str, text: str) -> None:
        ...

    @abstractmethod
    def list_instructions(self) -> Sequence[OperatorInstruction]:
        ...

    @abstractmethod
    def add_instruction(self, affirmative: bool, question_id: str | None = None) -> OperatorInstruction:
        ...


@runtime_checkable
class FormRunRepositoryPort(Protocol):
    """Store and query form-run records."""

    @abstractmethod
    def add(self, record: FormRunRecord) -> None:
        ...

    @abstractmethod
    def update(self, record: FormRunRecord) -> None:
        ...

    @abstractmethod
    def get(self, record_id: str) -> FormRunRecord | None:
        ...

    @abstractmethod
    def list_all(self) -> Sequence[FormRunRecord]:
        ...


@runtime_checkable
class DocumentStorePort(Protocol):
    """Read-only access to reference documents in the input area."""

    def read_text(self, path: str, max_chars: int = 20_000) -> str:
        ...

    def read_pdf_text(self, path: str, max_chars: int = 20_000) -> str:
        ...

    def list_dir(self, path: str) -> Sequence[str]:
        ...


@runtime_checkable
class OutputStorePort(Protocol):
    """Write-only access to the output area."""

    def write_text(self, relative_path: str, content: str) -> str:
        ...

    def save_screenshot(
        self,
        run_context: RunContext,
        step_name: str,
        image_bytes: bytes,
    ) -> str:
        ...

    def save_run_metadata(
        self,
        run_context: RunContext,
        metadata: dict[str, object],
    ) -> str:
        ...


@runtime_checkable
class ClockPort(Protocol):
    """Time source for deterministic and easily testable code."""

    def now(self) -> datetime:
        ...


@runtime_checkable
class IdGeneratorPort(Protocol):
    """Generation of stable identifiers for runs and records."""

    def new_run_id(self) -> str:
        ...

    def new_correlation_id(self) -> str:
        ...


@runtime_checkable
class LoggerPort(Protocol):
    """Structured, testable logging abstraction."""

    def info(self, message: str, **fields: Any) -> None:
        ...

    def warning(self, message: str, **fields: Any) -> None:
        ...

    def error(self, message: str, **fields: Any) -> None:
        ...


__all__ = [
    "BrowserDriverPort",
    "OperatorChannelPort",
    "AnswerRepositoryPort",
    "FormRunRepositoryPort",
    "DocumentStorePort",
    "OutputStorePort",
    "ClockPort",
    "IdGeneratorPort",
    "LoggerPort",
]
