"""
Error taxonomy of the interaction engine.

Mechanical failures (stale reference, timeout, ambiguity) are retried
locally by the engine. Anything that implies missing information or
irreversible risk is surfaced to the operator.
"""

from __future__ import annotations

from typing import Sequence


class FormPilotError(Exception):
    """Base class for all engine errors."""


class BrowserConnectionError(FormPilotError, ConnectionError):
    """The browser session is unreachable by every permitted route."""


class StaleTargetError(FormPilotError):
    """A target was resolved against an observation that is no longer current."""


class WaitTimeoutError(FormPilotError, TimeoutError):
    """A wait condition did not become true before its timeout."""


class AmbiguousTargetError(FormPilotError):
    """More than one element matches the intent at the current fidelity."""

    def __init__(self, description: str, matches: int) -> None:
        super().__init__(f"{matches} elements match '{description}'")
        self.description = description
        self.matches = matches


class TargetNotFoundError(FormPilotError):
    """No observation level could resolve the intent."""


class CoordinateSpaceError(FormPilotError):
    """A coordinate target does not declare the space it was captured in."""


class IncompleteFormError(FormPilotError):
    """The form still has unanswered questions after the iteration bound."""

    def __init__(self, form_id: str, unresolved: Sequence[str], iterations: int) -> None:
        joined = ", ".join(unresolved) or "-"
        super().__init__(
            f"Form {form_id} incomplete after {iterations} iterations; unresolved: {joined}",
        )
        self.form_id = form_id
        self.unresolved = list(unresolved)
        self.iterations = iterations


class ManualInterventionRequired(FormPilotError):
    """
    The page needs a human (login, verification challenge, identity check).

    Never retried: the engine turns it into a gate transition.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class GateBlockedError(FormPilotError):
    """An action was attempted while the interaction gate forbids it."""


class InvalidTransitionError(FormPilotError):
    """The interaction gate was asked for a transition it does not allow."""


class PathNotAllowedError(FormPilotError, PermissionError):
    """A file path falls outside the designated input or output area."""


__all__ = [
    "FormPilotError",
    "BrowserConnectionError",
    "StaleTargetError",
    "WaitTimeoutError",
    "AmbiguousTargetError",
    "TargetNotFoundError",
    "CoordinateSpaceError",
    "IncompleteFormError",
    "ManualInterventionRequired",
    "GateBlockedError",
    "InvalidTransitionError",
    "PathNotAllowedError",
]
