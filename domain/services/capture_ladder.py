"""Cost-ordered observation strategies with a resolution predicate.

Levels are tried from cheapest to most expensive and the first one whose
observation resolves the intent to exactly one element wins. Inside a level
``low`` detail is tried before ``high``. Visual capture is only eligible
when DOM targeting was ambiguous, a DOM-based action already failed, or the
intent needs a spatial click.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from domain.capture_profiles import capture_limits
from domain.errors import AmbiguousTargetError, TargetNotFoundError
from domain.models import (
    CoordinateSpace,
    DetailLevel,
    ElementTarget,
    FidelityLevel,
    Intent,
    PageElement,
    PageObservation,
)
from domain.ports import BrowserDriverPort, LoggerPort
from domain.services.observation_cache import ObservationCache


class CaptureStrategy(Protocol):
    level: FidelityLevel

    async def capture(
        self,
        intent: Intent,
        limits: Mapping[str, Any],
    ) -> tuple[Sequence[PageElement], CoordinateSpace | None]:
        ...


class StructuralStrategy:
    level = FidelityLevel.STRUCTURAL

    def __init__(self, driver: BrowserDriverPort) -> None:
        self._driver = driver

    async def capture(
        self,
        intent: Intent,
        limits: Mapping[str, Any],
    ) -> tuple[Sequence[PageElement], CoordinateSpace | None]:
        return await self._driver.structural_snapshot(limits), None


class ListingStrategy:
    level = FidelityLevel.LISTING

    def __init__(self, driver: BrowserDriverPort) -> None:
        self._driver = driver

    async def capture(
        self,
        intent: Intent,
        limits: Mapping[str, Any],
    ) -> tuple[Sequence[PageElement], CoordinateSpace | None]:
        return await self._driver.list_elements(limits), None


class QueryStrategy:
    level = FidelityLevel.QUERY

    def __init__(self, driver: BrowserDriverPort) -> None:
        self._driver = driver

    async def capture(
        self,
        intent: Intent,
        limits: Mapping[str, Any],
    ) -> tuple[Sequence[PageElement], CoordinateSpace | None]:
        if not intent.selector and not intent.text:
            return (), None
        return await self._driver.query(intent.selector, intent.text, limits), None


class VisualStrategy:
    level = FidelityLevel.VISUAL

    def __init__(self, driver: BrowserDriverPort) -> None:
        self._driver = driver

    async def capture(
        self,
        intent: Intent,
        limits: Mapping[str, Any],
    ) -> tuple[Sequence[PageElement], CoordinateSpace | None]:
        elements, space = await self._driver.visual_snapshot(limits)
        return elements, space


def default_strategies(driver: BrowserDriverPort) -> list[CaptureStrategy]:
    return [
        StructuralStrategy(driver),
        ListingStrategy(driver),
        QueryStrategy(driver),
        VisualStrategy(driver),
    ]


def _norm(value: str | None) -> str:
    return re.sub(r"\s+", " ", value or "").strip().casefold()


def _candidates(observation: PageObservation, intent: Intent) -> list[PageElement]:
    visual = observation.level is FidelityLevel.VISUAL
    usable = [
        el
        for el in observation.elements
        if (el.bbox is not None if visual else el.locator is not None)
        and (intent.role is None or _norm(el.role) == _norm(intent.role))
    ]
    if intent.selector:
        by_locator = [el for el in usable if el.locator == intent.selector]
        if by_locator or not intent.text:
            return by_locator
    wanted = _norm(intent.text)
    if not wanted:
        return []
    exact = [el for el in usable if _norm(el.text) == wanted]
    if exact:
        return exact
    return [el for el in usable if wanted in _norm(el.text)]


def resolve_target(observation: PageObservation, intent: Intent) -> ElementTarget | None:
    """
    Resolution predicate shared by every level.

    Returns the single matching element as a target, ``None`` when nothing
    matches, and raises ``AmbiguousTargetError`` on several matches.
    """
    matches = _candidates(observation, intent)
    if not matches:
        return None
    if len(matches) > 1:
        raise AmbiguousTargetError(intent.description, len(matches))

    element = matches[0]
    if observation.level is FidelityLevel.VISUAL and element.bbox is not None:
        return ElementTarget(
            dom_version=observation.dom_version,
            page_id=observation.page_id,
            point=element.bbox.center(),
            coordinate_space=observation.coordinate_space,
            description=intent.description,
        )
    return ElementTarget(
        dom_version=observation.dom_version,
        page_id=observation.page_id,
        locator=element.locator,
        description=intent.description,
    )


@dataclass(frozen=True)
class LadderResult:
    observation: PageObservation
    target: ElementTarget
    attempts: Sequence[tuple[FidelityLevel, DetailLevel]] = field(default_factory=tuple)


class CaptureLadder:
    """Selects the cheapest observation that resolves an intent."""

    _DETAILS = (DetailLevel.LOW, DetailLevel.HIGH)

    def __init__(
        self,
        *,
        strategies: Sequence[CaptureStrategy],
        cache: ObservationCache,
        driver: BrowserDriverPort,
        logger: LoggerPort,
        capture_profile: str | None = None,
    ) -> None:
        self._strategies = sorted(strategies, key=lambda s: s.level)
        self._cache = cache
        self._driver = driver
        self._logger = logger
        self._profile = capture_profile

    async def observe(
        self,
        intent: Intent,
        min_level: FidelityLevel | None = None,
    ) -> LadderResult:
        start = max(intent.min_level, min_level or FidelityLevel.STRUCTURAL)
        if intent.requires_spatial:
            # Only boxes with a coordinate space can satisfy a spatial click.
            start = FidelityLevel.VISUAL

        attempts: list[tuple[FidelityLevel, DetailLevel]] = []
        ambiguity: AmbiguousTargetError | None = None

        for strategy in self._strategies:
            if strategy.level < start:
                continue
            if strategy.level is FidelityLevel.VISUAL and not self._visual_allowed(intent, ambiguity):
                break
            for detail in self._DETAILS:
                observation = await self._observe_level(strategy, intent, detail)
                attempts.append((strategy.level, detail))
                try:
                    target = resolve_target(observation, intent)
                except AmbiguousTargetError as exc:
                    ambiguity = exc
                    self._logger.info(
                        "ladder_level_ambiguous",
                        intent=intent.description,
                        level=strategy.level.name,
                        detail=detail.value,
                        matches=exc.matches,
                    )
                    break
                if target is not None:
                    self._logger.info(
                        "ladder_level_hit",
                        intent=intent.description,
                        level=strategy.level.name,
                        detail=detail.value,
                        dom_version=observation.dom_version,
                    )
                    return LadderResult(observation, target, tuple(attempts))

        if ambiguity is not None:
            raise ambiguity
        raise TargetNotFoundError(f"No observation level resolved '{intent.description}'")

    async def _observe_level(
        self,
        strategy: CaptureStrategy,
        intent: Intent,
        detail: DetailLevel,
    ) -> PageObservation:
        cached = self._cache.get(strategy.level, detail)
        if cached is not None and strategy.level is not FidelityLevel.QUERY:
            return cached

        version = self._cache.current_version()
        limits = capture_limits(self._profile, strategy.level, detail)
        elements, space = await strategy.capture(intent, limits)
        observation = PageObservation(
            level=strategy.level,
            detail=detail,
            dom_version=version,
            elements=tuple(elements),
            page_id=self._driver.active_page_id(),
            coordinate_space=space,
        )
        if strategy.level is not FidelityLevel.QUERY:
            self._cache.put(observation)
        return observation

    @staticmethod
    def _visual_allowed(intent: Intent, ambiguity: AmbiguousTargetError | None) -> bool:
        return intent.requires_spatial or intent.dom_action_failed or ambiguity is not None
