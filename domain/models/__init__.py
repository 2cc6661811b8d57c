from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Mapping, Sequence, Union


class ConnectionState(str, Enum):
    """Lifecycle states of the one browser connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ATTACHED = "attached"
    LAUNCHED = "launched"
    CLOSED = "closed"


class AcquireMode(str, Enum):
    AUTO = "auto"
    ATTACH = "attach"
    LAUNCH = "launch"


@dataclass
class Session:
    """
    The single long-lived browser connection.

    Mutable on purpose: only ``SessionManager`` changes the connection state,
    and only the observation cache moves ``dom_version`` forward.
    """

    session_id: str
    state: ConnectionState = ConnectionState.DISCONNECTED
    endpoint: str | None = None
    dom_version: int = 0
    close_requested: bool = False

    @property
    def is_live(self) -> bool:
        return self.state in (ConnectionState.ATTACHED, ConnectionState.LAUNCHED)


class FidelityLevel(IntEnum):
    """Observation methods, ordered by capture cost."""

    STRUCTURAL = 0
    LISTING = 1
    QUERY = 2
    VISUAL = 3


class DetailLevel(str, Enum):
    LOW = "low"
    HIGH = "high"


class CoordinateSpace(str, Enum):
    VIEWPORT = "viewport"
    PAGE = "page"


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass(frozen=True)
class PageElement:
    """One addressable element as reported by an observation."""

    locator: str | None
    role: str = ""
    text: str = ""
    bbox: BoundingBox | None = None


@dataclass(frozen=True)
class PageObservation:
    """
    Result of one capture at a given fidelity and detail.

    ``coordinate_space`` is only set for visual captures, where element
    boxes are expressed either relative to the viewport or to the page.
    """

    level: FidelityLevel
    detail: DetailLevel
    dom_version: int
    elements: Sequence[PageElement] = field(default_factory=tuple)
    page_id: int | None = None
    coordinate_space: CoordinateSpace | None = None


@dataclass(frozen=True)
class Intent:
    """What the upstream planner wants to reach on the page."""

    description: str
    text: str | None = None
    role: str | None = None
    selector: str | None = None
    requires_spatial: bool = False
    dom_action_failed: bool = False
    min_level: FidelityLevel = FidelityLevel.STRUCTURAL


@dataclass(frozen=True)
class ElementTarget:
    """
    A resolved reference to one element.

    Carries either a locator or a point plus the coordinate space the point
    was captured in. Valid only for ``dom_version`` on ``page_id``.
    """

    dom_version: int
    page_id: int | None = None
    locator: str | None = None
    point: tuple[float, float] | None = None
    coordinate_space: CoordinateSpace | None = None
    description: str = ""


class ActionKind(str, Enum):
    CLICK = "click"
    FILL = "fill"
    TYPE = "type"
    SET_FILES = "set_files"
    SCROLL = "scroll"
    WAIT = "wait"
    NAVIGATE = "navigate"
    SUBMIT = "submit"


MUTATING_ACTIONS = frozenset(
    {
        ActionKind.CLICK,
        ActionKind.FILL,
        ActionKind.TYPE,
        ActionKind.SET_FILES,
        ActionKind.NAVIGATE,
        ActionKind.SUBMIT,
    }
)
IRREVERSIBLE_ACTIONS = frozenset({ActionKind.SUBMIT})


@dataclass(frozen=True)
class WaitCondition:
    """Condition for ``wait``; ``kind`` is one of selector, text or load."""

    kind: str
    value: str = ""
    state: str = "visible"
    timeout_ms: int = 15_000


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    value: str | None = None
    files: Sequence[str] = field(default_factory=tuple)
    condition: WaitCondition | None = None
    scroll_delta: tuple[int, int] = (0, 600)

    @property
    def is_mutating(self) -> bool:
        return self.kind in MUTATING_ACTIONS

    @property
    def is_irreversible(self) -> bool:
        return self.kind in IRREVERSIBLE_ACTIONS


@dataclass(frozen=True)
class ActionResult:
    kind: ActionKind
    dom_version: int
    detail: str = ""


@dataclass(frozen=True)
class PageInfo:
    page_id: int
    url: str
    title: str = ""
    active: bool = False
    closed: bool = False


@dataclass(frozen=True)
class FormQuestion:
    """
    A required question reported by a form audit.

    ``kind`` is one of text, textarea, select, radio, checkbox or
    contenteditable.
    """

    question_id: str
    label: str
    kind: str = "text"
    selector: str | None = None
    group_name: str | None = None

    @property
    def is_choice(self) -> bool:
        return self.kind in ("radio", "checkbox", "select")


@dataclass(frozen=True)
class FormAuditResult:
    """Audit of one form; authoritative only for ``dom_version``."""

    form_id: str
    dom_version: int
    total_count: int
    unanswered_count: int
    unresolved: Sequence[FormQuestion] = field(default_factory=tuple)

    @property
    def unresolved_ids(self) -> list[str]:
        return [q.question_id for q in self.unresolved]

    @property
    def is_complete(self) -> bool:
        return self.unanswered_count == 0


@dataclass(frozen=True)
class FieldAnswer:
    question: FormQuestion
    value: str


@dataclass(frozen=True)
class FieldFillResult:
    question_id: str
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class FillReport:
    results: Sequence[FieldFillResult] = field(default_factory=tuple)

    @property
    def ok(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)


class InteractionState(str, Enum):
    RUNNING = "running"
    AWAITING_OPERATOR_ANSWER = "awaiting_operator_answer"
    AWAITING_MANUAL_INTERVENTION = "awaiting_manual_intervention"
    AWAITING_SUBMIT_CONFIRMATION = "awaiting_submit_confirmation"
    CLOSED = "closed"

    @property
    def is_awaiting(self) -> bool:
        return self.value.startswith("awaiting_")


class OperatorInputKind(str, Enum):
    ANSWER = "answer"
    INTERVENTION_DONE = "intervention_done"
    CONFIRM_SUBMIT = "confirm_submit"
    DECLINE_SUBMIT = "decline_submit"
    REVERIFY = "reverify"


@dataclass(frozen=True)
class OperatorInput:
    """Explicit input from the operator that may release a gate state."""

    kind: OperatorInputKind
    question_id: str | None = None
    text: str | None = None


@dataclass(frozen=True)
class OperatorInstruction:
    """
    Operator stance on willingness questions.

    ``question_id=None`` means a general instruction. The instruction with
    the highest ``sequence`` wins.
    """

    sequence: int
    affirmative: bool
    question_id: str | None = None


@dataclass(frozen=True)
class ReferenceData:
    """
    Facts the engine may use to answer factual-eligibility questions.

    Keys are normalized question keys such as ``"citizenship"``.
    """

    facts: Mapping[str, str] = field(default_factory=dict)
    instructions: Sequence[OperatorInstruction] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "facts", MappingProxyType(dict(self.facts)))
        object.__setattr__(self, "instructions", tuple(self.instructions))

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.facts.get(key, default)


class OperatorToken(str, Enum):
    """Operator-visible protocol tokens."""

    QUESTION = "QUESTION"
    MANUAL_INTERVENTION = "MANUAL_INTERVENTION"
    CONFIRM_SUBMIT = "CONFIRM_SUBMIT"
    STEP = "STEP"


@dataclass(frozen=True)
class Completed:
    detail: str = ""


@dataclass(frozen=True)
class NeedsInput:
    question_id: str
    prompt: str


@dataclass(frozen=True)
class NeedsIntervention:
    reason: str


@dataclass(frozen=True)
class NeedsConfirmation:
    summary: str


Outcome = Union[Completed, NeedsInput, NeedsIntervention, NeedsConfirmation]


class FormRunStatus(str, Enum):
    """High-level lifecycle states of one form run."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    AWAITING_INPUT = "awaiting_input"
    AWAITING_INTERVENTION = "awaiting_intervention"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SUBMITTED = "submitted"
    FAILED = "failed"


@dataclass(frozen=True)
class FormRunRecord:
    """Persistent record of one form-completion run."""

    id: str
    form_id: str
    url: str
    status: FormRunStatus
    unresolved: Sequence[str] = field(default_factory=tuple)
    updated_at: datetime | None = None
    detail: str | None = None


@dataclass(frozen=True)
class RunContext:
    """
    Per-run context for one engine invocation.

    The output directory is an abstract path; infra decides how it maps
    to the real filesystem.
    """

    run_id: str
    is_debug: bool = False
    output_directory: str | None = None


@dataclass(frozen=True)
class EngineConfig:
    """Engine configuration loaded from config.json."""

    cdp_endpoint: str = "http://127.0.0.1:9222"
    acquire_mode: AcquireMode = AcquireMode.AUTO
    headless: bool = False
    capture_profile: str = "light"
    max_form_iterations: int = 5
    action_timeout_ms: int = 30_000
    input_dirs: Sequence[str] = field(default_factory=tuple)
    output_dir: str = "output"
    debug_mode: bool = False


__all__ = [
    "ConnectionState",
    "AcquireMode",
    "Session",
    "FidelityLevel",
    "DetailLevel",
    "CoordinateSpace",
    "BoundingBox",
    "PageElement",
    "PageObservation",
    "Intent",
    "ElementTarget",
    "ActionKind",
    "MUTATING_ACTIONS",
    "IRREVERSIBLE_ACTIONS",
    "WaitCondition",
    "Action",
    "ActionResult",
    "PageInfo",
    "FormQuestion",
    "FormAuditResult",
    "FieldAnswer",
    "FieldFillResult",
    "FillReport",
    "InteractionState",
    "OperatorInputKind",
    "OperatorInput",
    "OperatorInstruction",
    "ReferenceData",
    "OperatorToken",
    "Completed",
    "NeedsInput",
    "NeedsIntervention",
    "NeedsConfirmation",
    "Outcome",
    "FormRunStatus",
    "FormRunRecord",
    "RunContext",
    "EngineConfig",
]
