from __future__ import annotations

from dataclasses import replace
from datetime import timezone
from typing import Sequence

from domain.errors import (
    GateBlockedError,
    ManualInterventionRequired,
    StaleTargetError,
    WaitTimeoutError,
)
from domain.models import (
    AcquireMode,
    Action,
    ActionKind,
    ActionResult,
    Completed,
    FormAuditResult,
    FormRunRecord,
    FormRunStatus,
    Intent,
    NeedsConfirmation,
    NeedsInput,
    NeedsIntervention,
    OperatorInput,
    OperatorInputKind,
    Outcome,
    PageInfo,
    ReferenceData,
    RunContext,
)
from domain.ports import ClockPort, FormRunRepositoryPort, IdGeneratorPort, LoggerPort, OutputStorePort
from domain.services.action_executor import ActionExecutor
from domain.services.answer_policy import AnswerResolver
from domain.services.capture_ladder import CaptureLadder
from domain.services.form_completion import FormCompletionLoop
from domain.services.interaction_gate import InteractionGate
from domain.services.observation_cache import ObservationCache, StalenessReason
from domain.services.session_manager import SessionManager


_TARGETED_ACTIONS = frozenset(
    {ActionKind.CLICK, ActionKind.FILL, ActionKind.TYPE, ActionKind.SET_FILES, ActionKind.SUBMIT},
)

_STATUS_BY_OUTCOME = {
    Completed: FormRunStatus.COMPLETED,
    NeedsInput: FormRunStatus.AWAITING_INPUT,
    NeedsIntervention: FormRunStatus.AWAITING_INTERVENTION,
    NeedsConfirmation: FormRunStatus.AWAITING_CONFIRMATION,
}


class ApplicationEngine:
    """
    Entry point for the upstream planner.

    Owns the local retry policy: a stale target or a timed-out wait is
    re-observed and retried once, everything that needs a human goes
    through the interaction gate. While the gate is suspended every call
    returns the pending outcome and issues nothing.
    """

    def __init__(
        self,
        *,
        sessions: SessionManager,
        cache: ObservationCache,
        ladder: CaptureLadder,
        executor: ActionExecutor,
        loop: FormCompletionLoop,
        gate: InteractionGate,
        resolver: AnswerResolver,
        clock: ClockPort,
        id_generator: IdGeneratorPort,
        logger: LoggerPort,
        run_repo: FormRunRepositoryPort | None = None,
        output_store: OutputStorePort | None = None,
        run_context: RunContext | None = None,
        acquire_mode: AcquireMode = AcquireMode.AUTO,
    ) -> None:
        self._sessions = sessions
        self._cache = cache
        self._ladder = ladder
        self._executor = executor
        self._loop = loop
        self._gate = gate
        self._resolver = resolver
        self._clock = clock
        self._id_generator = id_generator
        self._logger = logger
        self._run_repo = run_repo
        self._output_store = output_store
        self._run_context = run_context
        self._acquire_mode = acquire_mode
        self._url = ""
        self._records: dict[str, FormRunRecord] = {}

    @property
    def gate(self) -> InteractionGate:
        return self._gate

    # -- operations ---------------------------------------------------------

    async def open(self, url: str) -> Outcome:
        pending = self._gate.pending_outcome()
        if pending is not None:
            return pending
        await self._sessions.acquire(self._acquire_mode)
        await self._gate.progress(f"Opening {url}")
        self._url = url
        try:
            await self._executor.navigate(url)
        except ManualInterventionRequired as exc:
            return await self._gate.require_manual_intervention(exc.reason)
        await self._capture_step("page_opened")
        intervention = await self._gate.inspect_page(await self._executor.page_text())
        if intervention is not None:
            return intervention
        return Completed(f"Opened {url}")

    async def act(self, intent: Intent, action: Action) -> ActionResult | Outcome:
        pending = self._gate.pending_outcome()
        if pending is not None:
            return pending
        if action.kind is ActionKind.SUBMIT:
            return await self.submit(intent)

        await self._sessions.recover(self._acquire_mode)
        await self._gate.progress(f"{action.kind.value}: {intent.description}")
        try:
            result = await self._act_with_retry(intent, action)
        except ManualInterventionRequired as exc:
            return await self._gate.require_manual_intervention(exc.reason)
        if action.is_mutating:
            intervention = await self._gate.inspect_page(await self._executor.page_text())
            if intervention is not None:
                return intervention
        return result

    async def complete_form(self, form_id: str, reference: ReferenceData, provider: str = "generic") -> Outcome:
        pending = self._gate.pending_outcome()
        if pending is not None:
            return pending
        await self._sessions.recover(self._acquire_mode)
        await self._gate.progress(f"Completing form {form_id}")
        try:
            outcome = await self._loop.complete(form_id, reference, provider)
        except Exception as exc:
            self._record(form_id, FormRunStatus.FAILED, detail=str(exc))
            raise
        audit = self._loop.last_audit
        self._record(
            form_id,
            _STATUS_BY_OUTCOME[type(outcome)],
            unresolved=audit.unresolved_ids if audit is not None else (),
            detail=_describe(outcome),
        )
        await self._capture_step(f"form_{form_id}")
        return outcome

    async def audit(self, form_id: str, provider: str = "generic") -> FormAuditResult:
        return await self._executor.audit(form_id, provider)

    async def submit(self, intent: Intent, form_id: str | None = None) -> ActionResult | Outcome:
        """Ask for confirmation first; with a grant, perform the one irreversible submit."""
        pending = self._gate.pending_outcome()
        if pending is not None:
            return pending
        if not self._gate.submit_granted:
            summary = f"Submit '{intent.description}' on {self._url or 'the current page'}"
            outcome = await self._gate.request_submit_confirmation(summary)
            if form_id is not None:
                self._record(form_id, FormRunStatus.AWAITING_CONFIRMATION, detail=summary)
            return outcome

        await self._sessions.recover(self._acquire_mode)
        await self._gate.progress(f"submit: {intent.description}")
        result = await self._act_with_retry(intent, Action(kind=ActionKind.SUBMIT))
        if form_id is not None:
            self._record(form_id, FormRunStatus.SUBMITTED, detail=intent.description)
        await self._capture_step("submitted")
        intervention = await self._gate.inspect_page(await self._executor.page_text())
        if intervention is not None:
            return intervention
        return result

    # -- pages ---------------------------------------------------------------

    async def list_pages(self) -> Sequence[PageInfo]:
        return await self._executor.list_pages()

    async def select_page(self, page_id: int) -> PageInfo | Outcome:
        pending = self._gate.pending_outcome()
        if pending is not None:
            return pending
        return await self._executor.select_page(page_id)

    async def adopt_new_page(self) -> PageInfo | Outcome | None:
        """Switch to a popup or tab the site opened; ``None`` when there is none."""
        pending = self._gate.pending_outcome()
        if pending is not None:
            return pending
        info = await self._executor.adopt_new_page()
        if info is not None:
            await self._gate.progress(f"Switched to {info.url}")
        return info

    def resume(self, operator_input: OperatorInput) -> None:
        if operator_input.kind is OperatorInputKind.REVERIFY:
            self._cache.invalidate(StalenessReason.OPERATOR_REVERIFY)
            return
        pending = self._gate.pending_outcome()
        self._gate.resume(operator_input)
        if isinstance(pending, NeedsInput):
            self._resolver.remember(pending.question_id, (operator_input.text or "").strip())
        # The operator may have changed the page while the engine waited.
        self._cache.invalidate(StalenessReason.RESUMED)

    async def close(self) -> None:
        if self._gate.state.is_awaiting:
            raise GateBlockedError(f"Cannot close while {self._gate.state.value}")
        self._gate.close()
        await self._sessions.release(explicit=True)

    # -- internals ----------------------------------------------------------

    async def _act_with_retry(self, intent: Intent, action: Action) -> ActionResult:
        if action.kind not in _TARGETED_ACTIONS:
            return await self._executor.perform(action)

        result = await self._ladder.observe(intent)
        try:
            return await self._executor.perform(action, result.target)
        except StaleTargetError as exc:
            self._logger.warning("action_retry", intent=intent.description, reason="stale", error=str(exc))
            self._cache.invalidate(StalenessReason.STALE_REFERENCE)
            retry_intent = intent
        except WaitTimeoutError as exc:
            self._logger.warning("action_retry", intent=intent.description, reason="timeout", error=str(exc))
            retry_intent = replace(intent, dom_action_failed=True)

        result = await self._ladder.observe(retry_intent)
        return await self._executor.perform(action, result.target)

    def _record(
        self,
        form_id: str,
        status: FormRunStatus,
        *,
        unresolved: Sequence[str] = (),
        detail: str | None = None,
    ) -> None:
        if self._run_repo is None:
            return
        now = self._clock.now().astimezone(timezone.utc)
        existing = self._records.get(form_id)
        if existing is None:
            record = FormRunRecord(
                id=self._id_generator.new_correlation_id(),
                form_id=form_id,
                url=self._url,
                status=status,
                unresolved=tuple(unresolved),
                updated_at=now,
                detail=detail,
            )
            self._run_repo.add(record)
        else:
            record = replace(
                existing,
                status=status,
                unresolved=tuple(unresolved),
                updated_at=now,
                detail=detail,
            )
            self._run_repo.update(record)
        self._records[form_id] = record
        self._logger.info("form_run_recorded", form_id=form_id, status=status.value)

    async def _capture_step(self, step_name: str) -> None:
        ctx = self._run_context
        if self._output_store is None or ctx is None or not ctx.is_debug:
            return
        image = await self._sessions.driver.screenshot()
        self._output_store.save_screenshot(ctx, step_name, image)


def _describe(outcome: Outcome) -> str:
    if isinstance(outcome, Completed):
        return outcome.detail
    if isinstance(outcome, NeedsInput):
        return f"{outcome.question_id}: {outcome.prompt}"
    if isinstance(outcome, NeedsIntervention):
        return outcome.reason
    return outcome.summary
