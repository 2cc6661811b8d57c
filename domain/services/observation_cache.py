from __future__ import annotations

from enum import Enum

from domain.models import DetailLevel, FidelityLevel, FormAuditResult, PageObservation
from domain.ports import LoggerPort
from domain.services.session_manager import SessionManager


class StalenessReason(str, Enum):
    DOM_CHANGED = "dom_changed"
    SCROLLED = "scrolled"
    STALE_REFERENCE = "stale_reference"
    WAIT_FAILED = "wait_failed"
    OPERATOR_REVERIFY = "operator_reverify"
    RESUMED = "resumed"
    PAGE_SELECTED = "page_selected"


class ObservationCache:
    """
    Remembers the latest observation per (level, detail) and the latest
    audit per form, and serves them only while the DOM version is unchanged.

    The DOM version itself lives on the session. Mutating actions bump it
    eagerly; navigations the page performs on its own are picked up from
    the driver's navigation epoch.
    """

    def __init__(self, *, sessions: SessionManager, logger: LoggerPort) -> None:
        self._sessions = sessions
        self._logger = logger
        self._observations: dict[tuple[FidelityLevel, DetailLevel], PageObservation] = {}
        self._audits: dict[str, FormAuditResult] = {}
        self._session_id: str | None = None
        self._seen_epoch: int | None = None

    def current_version(self) -> int:
        session = self._sessions.require()
        if session.session_id != self._session_id:
            self._session_id = session.session_id
            self._seen_epoch = None
            self._clear()

        epoch = self._sessions.driver.navigation_epoch()
        if self._seen_epoch is None:
            self._seen_epoch = epoch
        elif epoch != self._seen_epoch:
            self._seen_epoch = epoch
            session.dom_version += 1
            self._logger.info(
                "dom_version_bumped",
                reason="page_navigated",
                dom_version=session.dom_version,
            )
        return session.dom_version

    def bump(self, reason: str) -> int:
        version = self.current_version()
        session = self._sessions.require()
        session.dom_version = version + 1
        self._logger.info("dom_version_bumped", reason=reason, dom_version=session.dom_version)
        return session.dom_version

    def get(self, level: FidelityLevel, detail: DetailLevel) -> PageObservation | None:
        version = self.current_version()
        cached = self._observations.get((level, detail))
        if cached is None:
            return None
        if cached.dom_version != version or cached.page_id != self._sessions.driver.active_page_id():
            del self._observations[(level, detail)]
            return None
        return cached

    def put(self, observation: PageObservation) -> None:
        self._observations[(observation.level, observation.detail)] = observation

    def get_audit(self, form_id: str) -> FormAuditResult | None:
        version = self.current_version()
        cached = self._audits.get(form_id)
        if cached is None:
            return None
        if cached.dom_version != version:
            del self._audits[form_id]
            return None
        return cached

    def put_audit(self, audit: FormAuditResult) -> None:
        self._audits[audit.form_id] = audit

    def invalidate(self, reason: StalenessReason) -> None:
        if self._observations or self._audits:
            self._logger.info("cache_invalidated", reason=reason.value)
        self._clear()

    def _clear(self) -> None:
        self._observations.clear()
        self._audits.clear()
