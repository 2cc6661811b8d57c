from __future__ import annotations

from typing import Sequence

from domain.errors import IncompleteFormError, StaleTargetError, WaitTimeoutError
from domain.models import (
    Completed,
    FieldAnswer,
    FormAuditResult,
    FormQuestion,
    Outcome,
    ReferenceData,
)
from domain.ports import LoggerPort
from domain.services.action_executor import ActionExecutor
from domain.services.answer_policy import AnswerResolver
from domain.services.interaction_gate import InteractionGate
from domain.services.observation_cache import ObservationCache, StalenessReason


DEFAULT_MAX_ITERATIONS = 5


class FormCompletionLoop:
    """
    Drives one form to zero unanswered required questions.

    Each iteration audits the form, fills only what the audit reports as
    unresolved, and audits again. A form that is already complete therefore
    costs one audit and no fills, however often ``complete`` is called.
    """

    def __init__(
        self,
        *,
        executor: ActionExecutor,
        cache: ObservationCache,
        gate: InteractionGate,
        resolver: AnswerResolver,
        logger: LoggerPort,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._executor = executor
        self._cache = cache
        self._gate = gate
        self._resolver = resolver
        self._logger = logger
        self._max_iterations = max_iterations
        self.last_audit: FormAuditResult | None = None

    async def complete(
        self,
        form_id: str,
        reference: ReferenceData,
        provider: str = "generic",
    ) -> Outcome:
        pending = self._gate.pending_outcome()
        if pending is not None:
            return pending

        # Every fill batch is followed by an audit, the last one included.
        for iteration in range(1, self._max_iterations + 2):
            audit = await self._executor.audit(form_id, provider)
            self.last_audit = audit
            self._logger.info(
                "form_iteration",
                form_id=form_id,
                iteration=iteration,
                total=audit.total_count,
                unanswered=audit.unanswered_count,
            )
            if audit.is_complete:
                return Completed(
                    f"{form_id}: all {audit.total_count} required questions answered",
                )
            if iteration > self._max_iterations:
                break

            answers, missing = self._plan(audit, reference)
            if answers:
                await self._fill_with_retry(form_id, provider, audit, answers, reference)
                intervention = await self._gate.inspect_page(await self._executor.page_text())
                if intervention is not None:
                    return intervention
            if missing:
                question = missing[0]
                return await self._gate.request_operator_answer(
                    question.question_id,
                    question.label or question.question_id,
                )

        unresolved = self.last_audit.unresolved_ids if self.last_audit is not None else []
        self._logger.error(
            "form_incomplete",
            form_id=form_id,
            iterations=self._max_iterations,
            unresolved=unresolved,
        )
        raise IncompleteFormError(form_id, unresolved, self._max_iterations)

    def _plan(
        self,
        audit: FormAuditResult,
        reference: ReferenceData,
    ) -> tuple[list[FieldAnswer], list[FormQuestion]]:
        answers: list[FieldAnswer] = []
        missing: list[FormQuestion] = []
        for question in audit.unresolved:
            decision = self._resolver.resolve(question, reference)
            if decision.value is None:
                missing.append(question)
            else:
                answers.append(FieldAnswer(question=question, value=decision.value))
        return answers, missing

    async def _fill_with_retry(
        self,
        form_id: str,
        provider: str,
        audit: FormAuditResult,
        answers: Sequence[FieldAnswer],
        reference: ReferenceData,
    ) -> None:
        try:
            await self._executor.fill_fields(audit, answers, provider)
            return
        except StaleTargetError as exc:
            reason, error = StalenessReason.STALE_REFERENCE, exc
        except WaitTimeoutError as exc:
            reason, error = StalenessReason.WAIT_FAILED, exc

        self._logger.warning(
            "form_fill_retry",
            form_id=form_id,
            reason=reason.value,
            error=str(error),
        )
        self._cache.invalidate(reason)
        fresh = await self._executor.audit(form_id, provider)
        retry, _ = self._plan(fresh, reference)
        if retry:
            await self._executor.fill_fields(fresh, retry, provider)
