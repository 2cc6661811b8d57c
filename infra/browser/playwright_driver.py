from __future__ import annotations

import json
import re
import time
from typing import Any, Mapping, Sequence

from domain.errors import BrowserConnectionError, ManualInterventionRequired, WaitTimeoutError
from domain.models import (
    BoundingBox,
    CoordinateSpace,
    FieldAnswer,
    FieldFillResult,
    FillReport,
    FormQuestion,
    PageElement,
    PageInfo,
    WaitCondition,
)
from domain.ports import LoggerPort
from domain.services.answer_policy import normalize_key
from infra.browser.page_scripts import (
    AUDIT_FORM_JS,
    CENTER_ON_POINT_JS,
    ELEMENTS_JS,
    GOOGLE_AUDIT_JS,
    SCROLL_STATE_JS,
)


_INTERESTING_ROLES = {
    "button", "link", "textbox", "searchbox", "combobox", "listbox", "option",
    "checkbox", "radio", "tab", "menuitem", "switch", "heading", "spinbutton", "slider",
}
_BLANK_URL_PREFIXES = (
    "about:blank", "about:newtab", "chrome://newtab", "chrome://new-tab-page",
    "chrome-search://local-ntp", "edge://newtab",
)
_AUTH_STATUS_CODES = (401, 407)
_AFFIRMATIVE = ("yes", "true", "y", "1", "checked", "agree")
_GOOGLE_BLOCK = "div.Qr7Oae"
_DETACHED_MARKERS = ("not attached", "detached", "has been closed", "target closed")


def _is_detached(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _DETACHED_MARKERS)


def _is_blank(url: str) -> bool:
    lower = (url or "").lower()
    return not lower or lower.startswith(_BLANK_URL_PREFIXES)


def _ax_value(value: Any) -> str:
    if isinstance(value, dict):
        return re.sub(r"\s+", " ", str(value.get("value") or "")).strip()
    return ""


def _role_locator(role: str, name: str) -> str | None:
    if not role or not name:
        return None
    return f"role={role}[name={json.dumps(name)}]"


class PlaywrightBrowserDriver:
    """
    Playwright-backed implementation of BrowserDriverPort.

    Requires ``playwright`` to be installed and, for ``launch()``, browsers
    set up via ``playwright install chromium``. ``connect()`` attaches to a
    running Chromium over CDP so that existing logins are preserved.

    Pages get stable numeric ids in the order they appear. A page opened by
    the site (a popup or new tab) is tracked but never becomes active on its
    own; callers select it explicitly.
    """

    def __init__(
        self,
        *,
        headless: bool = False,
        action_timeout_ms: int = 30_000,
        logger: LoggerPort | None = None,
    ) -> None:
        self._headless = headless
        self._timeout_ms = action_timeout_ms
        self._logger = logger
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._attached = False
        self._pages: dict[int, Any] = {}
        self._closed_pages: set[int] = set()
        self._page_created: dict[int, float] = {}
        self._next_page_id = 1
        self._active_page_id: int | None = None
        self._epoch = 0
        self._cdp_sessions: dict[int, Any] = {}

    # -- session control ----------------------------------------------------

    async def connect(self, endpoint: str) -> None:
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.connect_over_cdp(endpoint)
        except Exception:
            await self._playwright.stop()
            self._playwright = None
            raise
        contexts = self._browser.contexts
        context = contexts[0] if contexts else await self._browser.new_context()
        self._attached = True
        await self._attach_context(context)

    async def launch(self) -> None:
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self._headless)
        self._attached = False
        await self._attach_context(await self._browser.new_context())

    async def close(self) -> None:
        # An attached browser belongs to the operator: disconnect, never kill it.
        if self._browser and not self._attached:
            await self._browser.close()
        if self._playwright:
            await self._playwright.stop()
        self._playwright = None
        self._browser = None
        self._context = None
        self._pages.clear()
        self._closed_pages.clear()
        self._cdp_sessions.clear()
        self._active_page_id = None

    def navigation_epoch(self) -> int:
        return self._epoch

    # -- pages ---------------------------------------------------------------

    async def list_pages(self) -> Sequence[PageInfo]:
        infos = []
        for page_id, page in self._pages.items():
            closed = page_id in self._closed_pages or page.is_closed()
            title = ""
            if not closed:
                try:
                    title = await page.title()
                except Exception:
                    title = ""
            infos.append(
                PageInfo(
                    page_id=page_id,
                    url=page.url,
                    title=title,
                    active=page_id == self._active_page_id,
                    closed=closed,
                ),
            )
        return infos

    async def select_page(self, page_id: int) -> PageInfo:
        page = self._pages.get(page_id)
        if page is None or page_id in self._closed_pages or page.is_closed():
            raise ValueError(f"No open page for page id {page_id}")
        self._active_page_id = page_id
        await page.bring_to_front()
        return PageInfo(page_id=page_id, url=page.url, title=await page.title(), active=True)

    def active_page_id(self) -> int | None:
        return self._active_page_id

    # -- navigation ----------------------------------------------------------

    async def goto(self, url: str) -> None:
        page = self._ensure_page()
        response = await page.goto(url, wait_until="domcontentloaded")
        if response is not None and response.status in _AUTH_STATUS_CODES:
            raise ManualInterventionRequired(f"Authentication required (HTTP {response.status})")

    # -- observation ---------------------------------------------------------

    async def structural_snapshot(self, limits: Mapping[str, Any]) -> Sequence[PageElement]:
        session = await self._cdp_session()
        tree = await session.send("Accessibility.getFullAXTree")
        max_nodes = int(limits.get("max_nodes", 220))
        max_chars = int(limits.get("max_name_chars", 80))
        interactive_only = bool(limits.get("interactive_only", True))

        elements: list[PageElement] = []
        for node in tree.get("nodes", []):
            if node.get("ignored"):
                continue
            role = _ax_value(node.get("role")).lower()
            name = _ax_value(node.get("name"))
            if not role:
                continue
            if interactive_only and role not in _INTERESTING_ROLES:
                continue
            if not interactive_only and not name and role not in _INTERESTING_ROLES:
                continue
            elements.append(
                PageElement(locator=_role_locator(role, name), role=role, text=name[:max_chars]),
            )
            if len(elements) >= max_nodes:
                break
        return elements

    async def list_elements(self, limits: Mapping[str, Any]) -> Sequence[PageElement]:
        raw = await self._ensure_page().evaluate(
            ELEMENTS_JS,
            {
                "maxItems": int(limits.get("max_items", 120)),
                "maxTextChars": int(limits.get("max_text_chars", 80)),
                "viewportOnly": bool(limits.get("viewport_only", True)),
                "visual": False,
                "fullPage": False,
            },
        )
        return [PageElement(locator=item["locator"], role=item["role"], text=item["text"]) for item in raw]

    async def query(
        self,
        selector: str | None,
        text: str | None,
        limits: Mapping[str, Any],
    ) -> Sequence[PageElement]:
        page = self._ensure_page()
        if selector:
            base = selector
            locator = page.locator(selector)
        else:
            base = f"internal:text={json.dumps(text or '')}i"
            locator = page.get_by_text(text or "")
        limit = int(limits.get("limit", 20))
        max_chars = int(limits.get("max_chars", 180))

        elements: list[PageElement] = []
        count = min(await locator.count(), limit)
        for index in range(count):
            described = await locator.nth(index).evaluate(
                "el => ({ role: (el.getAttribute('role') || el.tagName || '').toLowerCase(),"
                " text: (el.innerText || el.value || el.getAttribute('aria-label') || '')"
                ".replace(/\\s+/g, ' ').trim() })",
            )
            elements.append(
                PageElement(
                    locator=f"{base} >> nth={index}",
                    role=described["role"],
                    text=described["text"][:max_chars],
                ),
            )
        return elements

    async def visual_snapshot(
        self,
        limits: Mapping[str, Any],
    ) -> tuple[Sequence[PageElement], CoordinateSpace]:
        full_page = bool(limits.get("full_page", False))
        raw = await self._ensure_page().evaluate(
            ELEMENTS_JS,
            {
                "maxItems": int(limits.get("max_items", 80)),
                "maxTextChars": int(limits.get("max_text_chars", 60)),
                "viewportOnly": False,
                "visual": True,
                "fullPage": full_page,
            },
        )
        elements = [
            PageElement(
                locator=item["locator"],
                role=item["role"],
                text=item["text"],
                bbox=BoundingBox(item["x"], item["y"], item["width"], item["height"]),
            )
            for item in raw
        ]
        return elements, CoordinateSpace.PAGE if full_page else CoordinateSpace.VIEWPORT

    async def scroll_state(self) -> dict[str, Any]:
        return await self._ensure_page().evaluate(SCROLL_STATE_JS)

    async def page_text(self) -> str:
        return await self._ensure_page().inner_text("body")

    async def screenshot(self) -> bytes:
        return await self._ensure_page().screenshot(full_page=True)

    # -- element actions -----------------------------------------------------

    async def click_locator(self, locator: str) -> None:
        await self._ensure_page().locator(locator).first.click()

    async def click_viewport(self, x: float, y: float) -> None:
        await self._ensure_page().mouse.click(x, y)

    async def click_page(self, x: float, y: float) -> None:
        page = self._ensure_page()
        scroll = await page.evaluate(CENTER_ON_POINT_JS, [x, y])
        await page.mouse.click(x - scroll["scrollX"], y - scroll["scrollY"])

    async def fill(self, locator: str, value: str) -> None:
        await self._ensure_page().locator(locator).first.fill(value)

    async def type_text(self, locator: str, text: str) -> None:
        await self._ensure_page().locator(locator).first.press_sequentially(text)

    async def set_input_files(self, locator: str, paths: Sequence[str]) -> None:
        await self._ensure_page().locator(locator).first.set_input_files(list(paths))

    async def scroll_by(self, dx: int, dy: int) -> None:
        await self._ensure_page().evaluate("([dx, dy]) => window.scrollBy(dx, dy)", [dx, dy])

    async def wait_for(self, condition: WaitCondition) -> None:
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError
        from playwright.async_api import expect

        page = self._ensure_page()
        timeout = condition.timeout_ms
        try:
            if condition.kind == "load":
                await page.wait_for_load_state(condition.value or "load", timeout=timeout)
                return
            if condition.kind == "selector":
                locator = page.locator(condition.value).first
            elif condition.kind == "text":
                locator = page.get_by_text(condition.value).first
            else:
                raise ValueError(f"Unknown wait condition kind: {condition.kind}")

            if condition.state != "enabled":
                await locator.wait_for(state=condition.state, timeout=timeout)
                return
            await locator.wait_for(state="visible", timeout=timeout)
            try:
                await expect(locator).to_be_enabled(timeout=timeout)
            except AssertionError as exc:
                raise WaitTimeoutError(f"'{condition.value}' did not become enabled within {timeout}ms") from exc
        except PlaywrightTimeoutError as exc:
            raise WaitTimeoutError(str(exc)) from exc

    # -- declarative forms ---------------------------------------------------

    async def audit_form(self, provider: str = "generic") -> tuple[int, Sequence[FormQuestion]]:
        script = GOOGLE_AUDIT_JS if provider == "google" else AUDIT_FORM_JS
        payload = await self._ensure_page().evaluate(script, {"maxItems": 200, "maxLabelChars": 180})
        questions = [
            FormQuestion(
                question_id=item.get("selector") or normalize_key(item.get("label") or "") or f"q{index}",
                label=item.get("label") or "",
                kind=item.get("kind") or "text",
                selector=item.get("selector"),
                group_name=item.get("groupName"),
            )
            for index, item in enumerate(payload.get("missing", []), start=1)
        ]
        return int(payload.get("total", len(questions))), questions

    async def fill_form(self, answers: Sequence[FieldAnswer], provider: str = "generic") -> FillReport:
        """
        Fill each answer and report per field.

        A value the control does not accept is reported as a failed field.
        Timeouts and detached elements propagate so the caller can re-audit.
        """
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        results: list[FieldFillResult] = []
        for answer in answers:
            question = answer.question
            try:
                if provider == "google":
                    await self._fill_google(question, answer.value)
                else:
                    await self._fill_generic(question, answer.value)
            except PlaywrightTimeoutError:
                raise
            except PlaywrightError as exc:
                if _is_detached(exc):
                    raise
                results.append(self._field_failed(question, exc))
            except ValueError as exc:
                results.append(self._field_failed(question, exc))
            else:
                results.append(FieldFillResult(question.question_id, ok=True))
        return FillReport(results=tuple(results))

    def _field_failed(self, question: FormQuestion, exc: Exception) -> FieldFillResult:
        if self._logger is not None:
            self._logger.warning("field_fill_failed", question_id=question.question_id, error=str(exc))
        return FieldFillResult(question.question_id, ok=False, error=str(exc))

    async def _fill_generic(self, question: FormQuestion, value: str) -> None:
        page = self._ensure_page()
        if question.kind == "radio" and question.group_name:
            await self._check_radio(page.locator(f'input[type="radio"][name={json.dumps(question.group_name)}]'), value)
            return

        control = page.locator(question.selector).first if question.selector else page.get_by_label(question.label).first
        await control.wait_for(state="visible")
        if question.kind == "checkbox":
            if value.strip().lower() in _AFFIRMATIVE:
                await control.check()
            else:
                await control.uncheck()
        elif question.kind == "select":
            await control.select_option(label=value)
        else:
            await control.fill(value)

    async def _check_radio(self, group: Any, value: str) -> None:
        wanted = value.strip().casefold()
        labels = []
        for index in range(await group.count()):
            option = group.nth(index)
            label = await option.evaluate(
                "el => ((el.labels && el.labels.length ? el.labels[0].textContent : '') || el.value || '')"
                ".replace(/\\s+/g, ' ').trim()",
            )
            labels.append(label)
            if label.casefold() == wanted:
                await option.check()
                return
        for index, label in enumerate(labels):
            if wanted and wanted in label.casefold():
                await group.nth(index).check()
                return
        raise ValueError(f"No radio option matches '{value}' (options: {', '.join(labels) or '-'})")

    async def _fill_google(self, question: FormQuestion, value: str) -> None:
        page = self._ensure_page()
        heading = page.locator("[role=heading]").filter(has_text=re.compile(re.escape(question.label), re.I))
        block = page.locator(_GOOGLE_BLOCK).filter(has=heading).first
        if await block.count() == 0:
            raise ValueError(f"Google Form question not found: {question.label}")
        await block.scroll_into_view_if_needed()

        if question.kind == "select":
            await block.locator("[role=listbox], [role=combobox]").first.click()
            options = page.get_by_role("option", name=value, exact=True)
            for index in range(await options.count()):
                candidate = options.nth(index)
                if await candidate.is_visible():
                    await candidate.click()
                    return
            raise ValueError(f"Dropdown option not visible: {value}")
        if question.kind == "checkbox":
            box = block.get_by_role("checkbox", name=value, exact=True).first
            if await box.get_attribute("aria-checked") != "true":
                await box.click()
            return
        if question.kind == "radio":
            await block.get_by_role("radio", name=value, exact=True).first.click()
            return
        field = block.locator(
            "textarea, input[type=text], input[type=email], input[type=url], input[type=date], input:not([type])",
        ).first
        await field.fill(value)

    # -- internals ----------------------------------------------------------

    def _ensure_page(self) -> Any:
        page = self._pages.get(self._active_page_id) if self._active_page_id is not None else None
        if page is None or page.is_closed():
            raise BrowserConnectionError("No active page. Acquire a session first.")
        return page

    async def _cdp_session(self) -> Any:
        page = self._ensure_page()
        page_id = self._active_page_id
        session = self._cdp_sessions.get(page_id)
        if session is None:
            session = await self._context.new_cdp_session(page)
            await session.send("Accessibility.enable")
            self._cdp_sessions[page_id] = session
        return session

    async def _attach_context(self, context: Any) -> None:
        self._context = context
        context.set_default_timeout(self._timeout_ms)
        for page in context.pages:
            self._attach_page(page)
        if self._best_open_page_id() is None:
            self._attach_page(await context.new_page())
        self._active_page_id = self._best_open_page_id()
        context.on("page", self._attach_page)

    def _attach_page(self, page: Any) -> int:
        for page_id, known in self._pages.items():
            if known is page:
                return page_id
        page_id = self._next_page_id
        self._next_page_id += 1
        self._pages[page_id] = page
        self._page_created[page_id] = time.monotonic()

        def on_navigated(frame: Any) -> None:
            if frame == page.main_frame:
                self._epoch += 1

        def on_close(_: Any) -> None:
            self._closed_pages.add(page_id)
            self._cdp_sessions.pop(page_id, None)
            if self._active_page_id == page_id:
                self._active_page_id = self._best_open_page_id()

        page.on("framenavigated", on_navigated)
        page.on("close", on_close)
        if self._active_page_id is None:
            self._active_page_id = page_id
        if self._logger is not None:
            self._logger.info("page_attached", page_id=page_id, url=page.url)
        return page_id

    def _best_open_page_id(self) -> int | None:
        best_id, best_score = None, float("-inf")
        for page_id, page in self._pages.items():
            if page_id in self._closed_pages or page.is_closed():
                continue
            score = self._page_created[page_id] + (0.0 if _is_blank(page.url) else 1e9)
            if score > best_score:
                best_id, best_score = page_id, score
        return best_id
