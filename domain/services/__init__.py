"""
Domain services.

These services make the engine's decisions while depending only on
domain models and ports so that infrastructure and UI layers can remain thin.
"""

from .session_manager import SessionManager  # noqa: F401
from .observation_cache import ObservationCache, StalenessReason
from .capture_ladder import (
    CaptureLadder,
    CaptureStrategy,
    LadderResult,
    ListingStrategy,
    QueryStrategy,
    StructuralStrategy,
    VisualStrategy,
    default_strategies,
    resolve_target,
)
from .interaction_gate import GateTransition, InteractionGate, detect_manual_intervention
from .action_executor import ActionExecutor
from .answer_policy import AnswerDecision, AnswerResolver, AnswerSource, is_willingness_question
from .form_completion import FormCompletionLoop
from .engine import ApplicationEngine

__all__ = [
    "SessionManager",
    "ObservationCache",
    "StalenessReason",
    "CaptureStrategy",
    "StructuralStrategy",
    "ListingStrategy",
    "QueryStrategy",
    "VisualStrategy",
    "default_strategies",
    "resolve_target",
    "LadderResult",
    "CaptureLadder",
    "GateTransition",
    "InteractionGate",
    "detect_manual_intervention",
    "ActionExecutor",
    "AnswerSource",
    "AnswerDecision",
    "AnswerResolver",
    "is_willingness_question",
    "FormCompletionLoop",
    "ApplicationEngine",
]
