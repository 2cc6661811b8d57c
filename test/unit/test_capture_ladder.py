from __future__ import annotations

import asyncio

import pytest

from domain.errors import AmbiguousTargetError, TargetNotFoundError
from domain.models import (
    BoundingBox,
    CoordinateSpace,
    DetailLevel,
    FidelityLevel,
    Intent,
    PageElement,
)
from test.mocks import FakeBrowserDriver, Harness, make_harness

S, L, Q, V = FidelityLevel.STRUCTURAL, FidelityLevel.LISTING, FidelityLevel.QUERY, FidelityLevel.VISUAL
LOW, HIGH = DetailLevel.LOW, DetailLevel.HIGH

APPLY = Intent(description="apply button", text="Apply", role="button")


def _acquired(driver: FakeBrowserDriver) -> Harness:
    h = make_harness(driver)
    asyncio.run(h.parts.sessions.acquire())
    return h


def _visual_apply() -> PageElement:
    return PageElement(None, "button", "Apply", BoundingBox(100, 200, 80, 20))


# -- minimal level ----------------------------------------------------------


def test_structural_low_is_enough_when_it_resolves() -> None:
    driver = FakeBrowserDriver()
    driver.set_elements(S, [PageElement("role=button[name=\"Apply\"]", "button", "Apply")])
    h = _acquired(driver)

    result = asyncio.run(h.parts.ladder.observe(APPLY))

    assert result.observation.level is S
    assert result.target.locator == 'role=button[name="Apply"]'
    assert driver.captures == [(S, LOW)]


def test_high_detail_is_tried_before_next_level() -> None:
    driver = FakeBrowserDriver()
    driver.set_elements(S, [], detail=LOW)
    driver.set_elements(S, [PageElement("#apply", "button", "Apply")], detail=HIGH)
    h = _acquired(driver)

    result = asyncio.run(h.parts.ladder.observe(APPLY))

    assert result.observation.detail is HIGH
    assert driver.captures == [(S, LOW), (S, HIGH)]


def test_escalates_to_listing_when_structural_misses() -> None:
    driver = FakeBrowserDriver()
    driver.set_elements(L, [PageElement("#apply", "button", "Apply")])
    h = _acquired(driver)

    result = asyncio.run(h.parts.ladder.observe(APPLY))

    assert result.observation.level is L
    assert result.attempts == ((S, LOW), (S, HIGH), (L, LOW))


def test_ambiguity_escalates_to_next_level() -> None:
    driver = FakeBrowserDriver()
    driver.set_elements(S, [PageElement("#a1", "button", "Apply"), PageElement("#a2", "button", "Apply")])
    driver.set_elements(L, [PageElement("#apply-main", "button", "Apply")])
    h = _acquired(driver)

    result = asyncio.run(h.parts.ladder.observe(APPLY))

    assert result.target.locator == "#apply-main"
    assert (S, HIGH) not in driver.captures


def test_exact_text_beats_partial_match() -> None:
    driver = FakeBrowserDriver()
    driver.set_elements(S, [PageElement("#a", "button", "Apply now"), PageElement("#b", "button", "Apply")])
    h = _acquired(driver)

    result = asyncio.run(h.parts.ladder.observe(APPLY))

    assert result.target.locator == "#b"


def test_unresolved_ambiguity_is_reported() -> None:
    driver = FakeBrowserDriver()
    twins = [PageElement("#a1", "button", "Apply"), PageElement("#a2", "button", "Apply")]
    for level in (S, L, Q):
        driver.set_elements(level, twins)
    driver.set_elements(V, [
        PageElement(None, "button", "Apply", BoundingBox(0, 0, 10, 10)),
        PageElement(None, "button", "Apply", BoundingBox(0, 50, 10, 10)),
    ])
    h = _acquired(driver)

    with pytest.raises(AmbiguousTargetError) as excinfo:
        asyncio.run(h.parts.ladder.observe(APPLY))

    assert excinfo.value.matches == 2


# -- visual eligibility -----------------------------------------------------


def test_visual_is_not_tried_without_a_reason() -> None:
    driver = FakeBrowserDriver()
    driver.set_elements(V, [_visual_apply()])
    h = _acquired(driver)

    with pytest.raises(TargetNotFoundError):
        asyncio.run(h.parts.ladder.observe(APPLY))

    assert all(level is not V for level, _ in driver.captures)


def test_visual_is_eligible_after_dom_action_failed() -> None:
    driver = FakeBrowserDriver()
    driver.set_elements(V, [_visual_apply()])
    h = _acquired(driver)
    intent = Intent(description="apply button", text="Apply", role="button", dom_action_failed=True)

    result = asyncio.run(h.parts.ladder.observe(intent))

    assert result.observation.level is V
    assert result.target.point == (140.0, 210.0)
    assert result.target.coordinate_space is CoordinateSpace.VIEWPORT


def test_spatial_intent_goes_straight_to_visual() -> None:
    driver = FakeBrowserDriver(coordinate_space=CoordinateSpace.PAGE)
    driver.set_elements(S, [PageElement("#apply", "button", "Apply")])
    driver.set_elements(V, [_visual_apply()])
    h = _acquired(driver)
    intent = Intent(description="apply button", text="Apply", role="button", requires_spatial=True)

    result = asyncio.run(h.parts.ladder.observe(intent))

    assert driver.captures == [(V, LOW)]
    assert result.target.locator is None
    assert result.target.coordinate_space is CoordinateSpace.PAGE


def test_visual_elements_without_box_are_ignored() -> None:
    driver = FakeBrowserDriver()
    driver.set_elements(V, [PageElement("#apply", "button", "Apply")])
    h = _acquired(driver)
    intent = Intent(description="apply button", text="Apply", requires_spatial=True)

    with pytest.raises(TargetNotFoundError):
        asyncio.run(h.parts.ladder.observe(intent))


# -- caching per level ------------------------------------------------------


def test_query_results_are_not_cached() -> None:
    driver = FakeBrowserDriver()
    driver.set_elements(Q, [PageElement("#apply >> nth=0", "button", "Apply")])
    h = _acquired(driver)

    async def run() -> None:
        await h.parts.ladder.observe(APPLY)
        await h.parts.ladder.observe(APPLY)

    asyncio.run(run())

    assert driver.captures.count((S, LOW)) == 1
    assert driver.captures.count((L, LOW)) == 1
    assert driver.captures.count((Q, LOW)) == 2


def test_min_level_skips_cheaper_levels() -> None:
    driver = FakeBrowserDriver()
    driver.set_elements(S, [PageElement("#apply", "button", "Apply")])
    driver.set_elements(L, [PageElement("#apply-listed", "button", "Apply")])
    h = _acquired(driver)

    result = asyncio.run(h.parts.ladder.observe(APPLY, min_level=L))

    assert result.target.locator == "#apply-listed"
    assert driver.captures == [(L, LOW)]


def test_target_carries_version_and_page() -> None:
    driver = FakeBrowserDriver()
    driver.set_elements(S, [PageElement("#apply", "button", "Apply")])
    h = _acquired(driver)

    result = asyncio.run(h.parts.ladder.observe(APPLY))

    assert result.target.dom_version == h.parts.cache.current_version()
    assert result.target.page_id == 1
    assert result.target.description == "apply button"
