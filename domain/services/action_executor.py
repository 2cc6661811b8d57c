from __future__ import annotations

from typing import Sequence

from domain.errors import (
    BrowserConnectionError,
    CoordinateSpaceError,
    FormPilotError,
    StaleTargetError,
    TargetNotFoundError,
    WaitTimeoutError,
)
from domain.models import (
    Action,
    ActionKind,
    ActionResult,
    CoordinateSpace,
    ElementTarget,
    FieldAnswer,
    FillReport,
    FormAuditResult,
    PageInfo,
    WaitCondition,
)
from domain.ports import LoggerPort
from domain.services.interaction_gate import InteractionGate
from domain.services.observation_cache import ObservationCache, StalenessReason
from domain.services.session_manager import SessionManager

_STALE_MARKERS = (
    "stale",
    "not attached to the dom",
    "element is detached",
    "unknown uid",
    "execution context was destroyed",
)
_CLOSED_MARKERS = (
    "target page, context or browser has been closed",
    "browser has been closed",
    "browser has disconnected",
    "connection closed",
    "websocket is not open",
)
_WAIT_TIMEOUT_BOUNDS_MS = (1_000, 300_000)
_BLANK_URLS = ("", "about:blank", "about:newtab", "chrome://newtab/")


def clamp_wait(condition: WaitCondition) -> WaitCondition:
    low, high = _WAIT_TIMEOUT_BOUNDS_MS
    timeout = max(low, min(high, condition.timeout_ms))
    if timeout == condition.timeout_ms:
        return condition
    return WaitCondition(
        kind=condition.kind,
        value=condition.value,
        state=condition.state,
        timeout_ms=timeout,
    )


class ActionExecutor:
    """
    The only component that changes page state.

    Every mutating action bumps the DOM version right after it is issued,
    so cached observations go stale before anyone can read them again.
    """

    def __init__(
        self,
        *,
        sessions: SessionManager,
        cache: ObservationCache,
        gate: InteractionGate,
        logger: LoggerPort,
    ) -> None:
        self._sessions = sessions
        self._cache = cache
        self._gate = gate
        self._logger = logger

    async def perform(self, action: Action, target: ElementTarget | None = None) -> ActionResult:
        self._gate.ensure_may_act(action)
        self._sessions.require()

        if action.kind is ActionKind.WAIT:
            return await self._wait(action)
        if action.kind is ActionKind.SCROLL:
            return await self._scroll(action)
        if action.kind is ActionKind.NAVIGATE:
            return await self.navigate(action.value or "")

        if target is None:
            raise TargetNotFoundError(f"{action.kind.value} needs a resolved target")
        self._ensure_fresh(target)
        self._claim_grant(action)

        try:
            detail = await self._dispatch(action, target)
        except Exception as exc:
            self._cache.bump(f"{action.kind.value}_failed")
            raise self._translate(exc) from exc

        version = self._cache.bump(action.kind.value)
        self._logger.info(
            "action_performed",
            action=action.kind.value,
            target=target.description or target.locator or str(target.point),
            dom_version=version,
        )
        return ActionResult(kind=action.kind, dom_version=version, detail=detail)

    async def navigate(self, url: str) -> ActionResult:
        action = Action(kind=ActionKind.NAVIGATE, value=url)
        self._gate.ensure_may_act(action)
        self._sessions.require()
        self._gate.revoke_submit_grant()
        try:
            await self._sessions.driver.goto(url)
        except Exception as exc:
            self._cache.bump("navigate_failed")
            raise self._translate(exc) from exc
        version = self._cache.bump("navigate")
        self._logger.info("action_performed", action="navigate", target=url, dom_version=version)
        return ActionResult(kind=ActionKind.NAVIGATE, dom_version=version, detail=url)

    async def audit(self, form_id: str, provider: str = "generic") -> FormAuditResult:
        cached = self._cache.get_audit(form_id)
        if cached is not None:
            return cached
        version = self._cache.current_version()
        try:
            total, missing = await self._sessions.driver.audit_form(provider)
        except Exception as exc:
            raise self._translate(exc) from exc
        audit = FormAuditResult(
            form_id=form_id,
            dom_version=version,
            total_count=total,
            unanswered_count=len(missing),
            unresolved=tuple(missing),
        )
        self._cache.put_audit(audit)
        self._logger.info(
            "form_audited",
            form_id=form_id,
            total=total,
            unanswered=audit.unanswered_count,
            dom_version=version,
        )
        return audit

    async def fill_fields(
        self,
        audit: FormAuditResult,
        answers: Sequence[FieldAnswer],
        provider: str = "generic",
    ) -> FillReport:
        """Fill one batch of answers taken from ``audit``; one version bump per batch."""
        self._gate.ensure_may_act(Action(kind=ActionKind.FILL))
        if audit.dom_version != self._cache.current_version():
            raise StaleTargetError(
                f"Audit of {audit.form_id} taken at version {audit.dom_version} is stale",
            )
        self._gate.revoke_submit_grant()
        try:
            report = await self._sessions.driver.fill_form(list(answers), provider)
        except Exception as exc:
            self._cache.bump("fill_form_failed")
            raise self._translate(exc) from exc
        version = self._cache.bump("fill_form")
        self._logger.info(
            "form_filled",
            form_id=audit.form_id,
            ok=report.ok,
            failed=report.failed,
            dom_version=version,
        )
        return report

    async def page_text(self) -> str:
        self._sessions.require()
        try:
            return await self._sessions.driver.page_text()
        except Exception as exc:
            raise self._translate(exc) from exc

    # -- pages --------------------------------------------------------------

    async def list_pages(self) -> Sequence[PageInfo]:
        self._sessions.require()
        return await self._sessions.driver.list_pages()

    async def select_page(self, page_id: int) -> PageInfo:
        self._sessions.require()
        info = await self._sessions.driver.select_page(page_id)
        self._cache.invalidate(StalenessReason.PAGE_SELECTED)
        self._logger.info("page_selected", page_id=page_id, url=info.url)
        return info

    async def adopt_new_page(self) -> PageInfo | None:
        """Select the newest open page other than the active one, if any."""
        pages = [p for p in await self.list_pages() if not p.closed and not p.active]
        if not pages:
            return None
        loaded = [p for p in pages if p.url.lower() not in _BLANK_URLS]
        chosen = max(loaded or pages, key=lambda p: p.page_id)
        return await self.select_page(chosen.page_id)

    # -- internals ----------------------------------------------------------

    def _ensure_fresh(self, target: ElementTarget) -> None:
        current = self._cache.current_version()
        if target.dom_version != current:
            raise StaleTargetError(
                f"Target '{target.description}' resolved at version {target.dom_version}, "
                f"page is at {current}",
            )
        if target.page_id != self._sessions.driver.active_page_id():
            raise StaleTargetError(f"Target '{target.description}' belongs to another page")

    def _claim_grant(self, action: Action) -> None:
        if action.is_irreversible:
            self._gate.consume_submit_grant()
        elif action.is_mutating:
            self._gate.revoke_submit_grant()

    async def _dispatch(self, action: Action, target: ElementTarget) -> str:
        driver = self._sessions.driver
        if action.kind in (ActionKind.CLICK, ActionKind.SUBMIT):
            if target.point is not None:
                x, y = target.point
                if target.coordinate_space is CoordinateSpace.PAGE:
                    await driver.click_page(x, y)
                elif target.coordinate_space is CoordinateSpace.VIEWPORT:
                    await driver.click_viewport(x, y)
                else:
                    raise CoordinateSpaceError(
                        f"Point target '{target.description}' has no coordinate space",
                    )
                return f"{target.coordinate_space.value}:{x:.0f},{y:.0f}"
            await driver.click_locator(self._locator(target))
            return target.locator or ""

        locator = self._locator(target)
        if action.kind is ActionKind.FILL:
            await driver.fill(locator, action.value or "")
        elif action.kind is ActionKind.TYPE:
            await driver.type_text(locator, action.value or "")
        elif action.kind is ActionKind.SET_FILES:
            await driver.set_input_files(locator, list(action.files))
        else:
            raise ValueError(f"Unsupported action: {action.kind.value}")
        return locator

    @staticmethod
    def _locator(target: ElementTarget) -> str:
        if not target.locator:
            raise TargetNotFoundError(f"Target '{target.description}' has no locator")
        return target.locator

    async def _scroll(self, action: Action) -> ActionResult:
        """Scrolling keeps the DOM version; observations are dropped only if the page moved."""
        driver = self._sessions.driver
        dx, dy = action.scroll_delta
        try:
            before = await driver.scroll_state()
            await driver.scroll_by(dx, dy)
            after = await driver.scroll_state()
        except Exception as exc:
            raise self._translate(exc) from exc
        if after != before:
            self._cache.invalidate(StalenessReason.SCROLLED)
        else:
            self._logger.info("scroll_noop", dx=dx, dy=dy)
        detail = f"{after.get('scrollX', 0)},{after.get('scrollY', 0)}"
        return ActionResult(kind=action.kind, dom_version=self._cache.current_version(), detail=detail)

    async def _wait(self, action: Action) -> ActionResult:
        condition = clamp_wait(action.condition or WaitCondition(kind="load"))
        try:
            await self._sessions.driver.wait_for(condition)
        except TimeoutError as exc:
            self._cache.invalidate(StalenessReason.WAIT_FAILED)
            if isinstance(exc, WaitTimeoutError):
                raise
            raise WaitTimeoutError(str(exc)) from exc
        except Exception as exc:
            raise self._translate(exc) from exc
        return ActionResult(kind=action.kind, dom_version=self._cache.current_version())

    def _translate(self, exc: Exception) -> Exception:
        message = str(exc).lower()
        if isinstance(exc, BrowserConnectionError) or any(marker in message for marker in _CLOSED_MARKERS):
            # The next acquire reconnects: attach first, then launch.
            self._sessions.mark_lost()
            self._cache.invalidate(StalenessReason.DOM_CHANGED)
            return exc if isinstance(exc, BrowserConnectionError) else BrowserConnectionError(str(exc))
        if isinstance(exc, FormPilotError):
            return exc
        if isinstance(exc, TimeoutError) or "timeout" in message:
            self._cache.invalidate(StalenessReason.WAIT_FAILED)
            return WaitTimeoutError(str(exc))
        if any(marker in message for marker in _STALE_MARKERS):
            self._cache.invalidate(StalenessReason.STALE_REFERENCE)
            return StaleTargetError(str(exc))
        return exc
