from __future__ import annotations

import asyncio

import pytest

from domain.errors import (
    BrowserConnectionError,
    CoordinateSpaceError,
    GateBlockedError,
    StaleTargetError,
    TargetNotFoundError,
    WaitTimeoutError,
)
from domain.models import (
    Action,
    ActionKind,
    ConnectionState,
    CoordinateSpace,
    DetailLevel,
    ElementTarget,
    FidelityLevel,
    PageObservation,
    WaitCondition,
)
from domain.services.action_executor import clamp_wait
from test.mocks import FakeBrowserDriver, Harness, make_harness


def _acquired(driver: FakeBrowserDriver | None = None) -> Harness:
    h = make_harness(driver)
    asyncio.run(h.parts.sessions.acquire())
    return h


def _locator_target(h: Harness, locator: str = "#apply") -> ElementTarget:
    return ElementTarget(
        dom_version=h.parts.cache.current_version(),
        page_id=h.driver.active_page_id(),
        locator=locator,
        description="apply button",
    )


def _point_target(h: Harness, space: CoordinateSpace | None) -> ElementTarget:
    return ElementTarget(
        dom_version=h.parts.cache.current_version(),
        page_id=h.driver.active_page_id(),
        point=(140.0, 1210.0),
        coordinate_space=space,
        description="apply button",
    )


# -- wait clamping ----------------------------------------------------------


def test_clamp_wait_bounds_timeout() -> None:
    assert clamp_wait(WaitCondition(kind="load", timeout_ms=10)).timeout_ms == 1_000
    assert clamp_wait(WaitCondition(kind="load", timeout_ms=10**9)).timeout_ms == 300_000
    in_range = WaitCondition(kind="text", value="Thanks", timeout_ms=5_000)
    assert clamp_wait(in_range) is in_range


# -- version discipline -----------------------------------------------------


def test_click_bumps_version_by_one() -> None:
    h = _acquired()
    target = _locator_target(h)
    before = target.dom_version

    result = asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.CLICK), target))

    assert result.dom_version == before + 1
    assert h.parts.cache.current_version() == before + 1
    assert ("click_locator", ("#apply",)) in h.driver.calls


def test_stale_target_is_rejected_before_any_browser_call() -> None:
    h = _acquired()
    target = _locator_target(h)
    h.parts.cache.bump("fill")

    with pytest.raises(StaleTargetError):
        asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.CLICK), target))

    assert h.driver.count_calls("click_locator") == 0


def test_target_from_another_page_is_stale() -> None:
    h = _acquired()
    target = _locator_target(h)
    h.driver.active_id = h.driver.open_page("https://jobs.example.test/apply")

    with pytest.raises(StaleTargetError, match="another page"):
        asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.CLICK), target))


def test_failed_action_still_bumps_version() -> None:
    h = _acquired()
    target = _locator_target(h)
    h.driver.fail_next("click_locator", RuntimeError("element intercepts pointer events"))

    with pytest.raises(RuntimeError):
        asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.CLICK), target))

    assert h.parts.cache.current_version() == target.dom_version + 1


def test_fill_without_target_is_rejected() -> None:
    h = _acquired()
    with pytest.raises(TargetNotFoundError):
        asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.FILL, value="Ada")))


def test_set_files_passes_paths() -> None:
    h = _acquired()
    target = _locator_target(h, "#resume")
    action = Action(kind=ActionKind.SET_FILES, files=("/input/cv.txt",))

    asyncio.run(h.parts.executor.perform(action, target))

    assert ("set_input_files", ("#resume", ("/input/cv.txt",))) in h.driver.calls


# -- coordinate dispatch ----------------------------------------------------


def test_page_space_point_uses_page_click() -> None:
    h = _acquired()
    asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.CLICK), _point_target(h, CoordinateSpace.PAGE)))
    assert h.driver.calls[-1] == ("click_page", (140.0, 1210.0))
    assert h.driver.count_calls("click_viewport") == 0


def test_viewport_space_point_uses_viewport_click() -> None:
    h = _acquired()
    asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.CLICK), _point_target(h, CoordinateSpace.VIEWPORT)))
    assert h.driver.calls[-1] == ("click_viewport", (140.0, 1210.0))
    assert h.driver.count_calls("click_page") == 0


def test_point_without_space_is_refused() -> None:
    h = _acquired()
    with pytest.raises(CoordinateSpaceError):
        asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.CLICK), _point_target(h, None)))
    assert h.driver.count_calls("click_page") == 0
    assert h.driver.count_calls("click_viewport") == 0


# -- error translation ------------------------------------------------------


def test_detached_element_becomes_stale_target() -> None:
    h = _acquired()
    h.driver.fail_next("fill", RuntimeError("Element is not attached to the DOM"))

    with pytest.raises(StaleTargetError):
        asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.FILL, value="Ada"), _locator_target(h)))


def test_action_timeout_becomes_wait_timeout() -> None:
    h = _acquired()
    h.driver.fail_next("click_locator", RuntimeError("Timeout 30000ms exceeded."))

    with pytest.raises(WaitTimeoutError):
        asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.CLICK), _locator_target(h)))


def test_wait_timeout_invalidates_cache() -> None:
    h = _acquired()
    cache = h.parts.cache
    cache.put(PageObservation(FidelityLevel.STRUCTURAL, DetailLevel.LOW, cache.current_version(), page_id=1))
    h.driver.fail_next("wait_for", TimeoutError("text 'Thanks' not visible"))
    action = Action(kind=ActionKind.WAIT, condition=WaitCondition(kind="text", value="Thanks"))

    with pytest.raises(WaitTimeoutError):
        asyncio.run(h.parts.executor.perform(action))

    assert cache.get(FidelityLevel.STRUCTURAL, DetailLevel.LOW) is None


def test_scroll_invalidates_without_bumping() -> None:
    h = _acquired()
    cache = h.parts.cache
    version = cache.current_version()
    cache.put(PageObservation(FidelityLevel.VISUAL, DetailLevel.LOW, version, page_id=1))

    asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.SCROLL, scroll_delta=(0, 400))))

    assert cache.current_version() == version
    assert cache.get(FidelityLevel.VISUAL, DetailLevel.LOW) is None
    assert ("scroll_by", (0, 400)) in h.driver.calls


# -- gate checks ------------------------------------------------------------


def test_submit_without_confirmation_is_blocked() -> None:
    h = _acquired()
    with pytest.raises(GateBlockedError):
        asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.SUBMIT), _locator_target(h, "#submit")))
    assert h.driver.count_calls("click_locator") == 0


# -- pages ------------------------------------------------------------------


def test_adopt_new_page_selects_newest_loaded_page() -> None:
    h = _acquired()
    h.driver.open_page("https://jobs.example.test/apply")
    h.driver.open_page("about:blank")

    info = asyncio.run(h.parts.executor.adopt_new_page())

    assert info is not None
    assert info.page_id == 2
    assert h.driver.active_page_id() == 2


def test_adopt_new_page_returns_none_without_other_pages() -> None:
    h = _acquired()
    assert asyncio.run(h.parts.executor.adopt_new_page()) is None


def test_scroll_that_does_not_move_keeps_observations() -> None:
    h = _acquired()
    h.driver.max_scroll_y = 0
    cache = h.parts.cache
    version = cache.current_version()
    cache.put(PageObservation(FidelityLevel.VISUAL, DetailLevel.LOW, version, page_id=1))

    result = asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.SCROLL, scroll_delta=(0, 400))))

    assert result.detail == "0,0"
    assert cache.get(FidelityLevel.VISUAL, DetailLevel.LOW) is not None
    assert "scroll_noop" in h.logger.messages()


# -- lost browser -----------------------------------------------------------


def test_closed_browser_marks_session_lost() -> None:
    h = _acquired()
    h.driver.fail_next("click_locator", RuntimeError("Target page, context or browser has been closed"))

    with pytest.raises(BrowserConnectionError):
        asyncio.run(h.parts.executor.perform(Action(kind=ActionKind.CLICK), _locator_target(h)))

    assert h.parts.sessions.session.state is ConnectionState.DISCONNECTED
    assert "session_lost" in h.logger.messages("warning")
