from __future__ import annotations

from dataclasses import dataclass

from domain.errors import GateBlockedError, InvalidTransitionError
from domain.models import (
    Action,
    InteractionState,
    NeedsConfirmation,
    NeedsInput,
    NeedsIntervention,
    OperatorInput,
    OperatorInputKind,
    OperatorToken,
    Outcome,
)
from domain.ports import LoggerPort, OperatorChannelPort


_HEURISTIC_CHALLENGE_KEYWORDS = [
    "captcha", "recaptcha", "hcaptcha", "i'm not a robot",
    "verify you are human", "are you a robot", "checking your browser",
]
_HEURISTIC_IDENTITY_KEYWORDS = [
    "verify your identity", "verification code", "enter the code we sent",
    "two-factor", "2-step verification", "one-time code",
]
_HEURISTIC_AUTH_KEYWORDS = [
    "sign in to continue", "log in to continue", "login to continue",
    "your session has expired", "please sign in", "please log in",
]


def detect_manual_intervention(page_text: str) -> str | None:
    """Return a reason when the page text shows a human-only step."""
    lower = page_text.lower()
    if any(kw in lower for kw in _HEURISTIC_CHALLENGE_KEYWORDS):
        return "Human-verification challenge detected"
    if any(kw in lower for kw in _HEURISTIC_IDENTITY_KEYWORDS):
        return "Identity check detected"
    if any(kw in lower for kw in _HEURISTIC_AUTH_KEYWORDS):
        return "Authentication required"
    return None


@dataclass(frozen=True)
class GateTransition:
    source: InteractionState
    target: InteractionState
    reason: str


class InteractionGate:
    """
    Decides whether the engine may proceed on its own.

    Every ``awaiting_*`` state is left only through explicit operator input.
    A confirmed submit grants exactly one irreversible action, and any other
    mutating action revokes that grant.
    """

    def __init__(
        self,
        *,
        logger: LoggerPort,
        channel: OperatorChannelPort | None = None,
    ) -> None:
        self._logger = logger
        self._channel = channel
        self._state = InteractionState.RUNNING
        self._pending: Outcome | None = None
        self._submit_granted = False
        self.transitions: list[GateTransition] = []

    @property
    def state(self) -> InteractionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is InteractionState.RUNNING

    @property
    def submit_granted(self) -> bool:
        return self._submit_granted

    def pending_outcome(self) -> Outcome | None:
        return self._pending if self._state.is_awaiting else None

    # -- suspensions --------------------------------------------------------

    async def request_operator_answer(self, question_id: str, prompt: str) -> NeedsInput:
        outcome = NeedsInput(question_id=question_id, prompt=prompt)
        await self._suspend(
            InteractionState.AWAITING_OPERATOR_ANSWER,
            outcome,
            OperatorToken.QUESTION,
            f"{question_id}: {prompt}",
        )
        return outcome

    async def require_manual_intervention(self, reason: str) -> NeedsIntervention:
        outcome = NeedsIntervention(reason=reason)
        await self._suspend(
            InteractionState.AWAITING_MANUAL_INTERVENTION,
            outcome,
            OperatorToken.MANUAL_INTERVENTION,
            reason,
        )
        return outcome

    async def inspect_page(self, page_text: str) -> NeedsIntervention | None:
        """Suspend for the operator when the page shows a human-only step."""
        reason = detect_manual_intervention(page_text)
        if reason is None:
            return None
        return await self.require_manual_intervention(reason)

    async def request_submit_confirmation(self, summary: str) -> NeedsConfirmation:
        outcome = NeedsConfirmation(summary=summary)
        self._submit_granted = False
        await self._suspend(
            InteractionState.AWAITING_SUBMIT_CONFIRMATION,
            outcome,
            OperatorToken.CONFIRM_SUBMIT,
            summary,
        )
        return outcome

    # -- release ------------------------------------------------------------

    def resume(self, operator_input: OperatorInput) -> None:
        state = self._state
        kind = operator_input.kind
        if state is InteractionState.AWAITING_OPERATOR_ANSWER:
            pending = self._pending
            question_id = pending.question_id if isinstance(pending, NeedsInput) else None
            if kind is not OperatorInputKind.ANSWER or operator_input.question_id != question_id:
                raise InvalidTransitionError(
                    f"Waiting for an answer to '{question_id}', got {kind.value}",
                )
            if not (operator_input.text or "").strip():
                raise InvalidTransitionError(f"Empty answer for '{question_id}'")
        elif state is InteractionState.AWAITING_MANUAL_INTERVENTION:
            if kind is not OperatorInputKind.INTERVENTION_DONE:
                raise InvalidTransitionError(f"Waiting for manual intervention, got {kind.value}")
        elif state is InteractionState.AWAITING_SUBMIT_CONFIRMATION:
            if kind is OperatorInputKind.CONFIRM_SUBMIT:
                self._submit_granted = True
            elif kind is not OperatorInputKind.DECLINE_SUBMIT:
                raise InvalidTransitionError(f"Waiting for submit confirmation, got {kind.value}")
        else:
            raise InvalidTransitionError(f"Nothing to resume in state {state.value}")

        self._pending = None
        self._move(InteractionState.RUNNING, f"operator:{kind.value}")

    def close(self) -> None:
        if self._state is not InteractionState.RUNNING:
            raise InvalidTransitionError(f"Cannot close while {self._state.value}")
        self._submit_granted = False
        self._move(InteractionState.CLOSED, "explicit_close")

    # -- action checks ------------------------------------------------------

    def ensure_may_act(self, action: Action) -> None:
        if self._state is not InteractionState.RUNNING:
            raise GateBlockedError(
                f"{action.kind.value} blocked while {self._state.value}",
            )
        if action.is_irreversible and not self._submit_granted:
            raise GateBlockedError(
                f"{action.kind.value} requires operator confirmation",
            )

    def consume_submit_grant(self) -> None:
        self._submit_granted = False

    def revoke_submit_grant(self) -> None:
        if self._submit_granted:
            self._logger.info("submit_grant_revoked")
        self._submit_granted = False

    async def progress(self, message: str) -> None:
        if self._channel is not None:
            await self._channel.send_token(OperatorToken.STEP, message)

    # -- internals ----------------------------------------------------------

    async def _suspend(
        self,
        target: InteractionState,
        outcome: Outcome,
        token: OperatorToken,
        message: str,
    ) -> None:
        if self._state is not InteractionState.RUNNING:
            raise InvalidTransitionError(
                f"Cannot enter {target.value} from {self._state.value}",
            )
        self._pending = outcome
        self._move(target, token.value)
        if self._channel is not None:
            await self._channel.send_token(token, message)

    def _move(self, target: InteractionState, reason: str) -> None:
        self.transitions.append(GateTransition(self._state, target, reason))
        self._logger.info(
            "gate_transition",
            source=self._state.value,
            target=target.value,
            reason=reason,
        )
        self._state = target
