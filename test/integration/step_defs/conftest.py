"""Shared fixtures and context for BDD step definitions."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest

from domain.models import (
    Action,
    ActionKind,
    FidelityLevel,
    Intent,
    PageElement,
    ReferenceData,
)
from test.mocks import FakeBrowserDriver, Harness, make_harness

PAGE_URL = "https://jobs.example.test/postings/42"
APPLY = Intent(description="Apply button", text="Apply", role="button")
SUBMIT = Intent(description="Submit button", text="Submit", role="button")
CLICK = Action(kind=ActionKind.CLICK)


@dataclass
class ScenarioContext:
    """Holds mutable state shared across BDD steps."""

    driver: FakeBrowserDriver = field(default_factory=FakeBrowserDriver)
    harness: Harness | None = None
    reference: ReferenceData = field(default_factory=ReferenceData)
    outcome: Any = None

    @property
    def h(self) -> Harness:
        if self.harness is None:
            self.harness = make_harness(self.driver)
        return self.harness

    def run(self, coro: Any) -> Any:
        return asyncio.run(coro)

    def open_page(self, at_version: int | None = None) -> Any:
        self.outcome = self.run(self.h.engine.open(PAGE_URL))
        if at_version is not None:
            self.h.parts.cache.current_version()
            self.h.parts.sessions.session.dom_version = at_version
        return self.outcome


def page_with_buttons(*labels: str, **kwargs: Any) -> FakeBrowserDriver:
    driver = FakeBrowserDriver(**kwargs)
    driver.set_elements(
        FidelityLevel.STRUCTURAL,
        [PageElement(f"#{label.lower()}", "button", label) for label in labels],
    )
    return driver


@pytest.fixture()
def ctx() -> ScenarioContext:
    return ScenarioContext()
