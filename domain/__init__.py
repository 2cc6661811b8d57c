"""
Domain layer package.

This package contains the pure decision logic, models and ports that are
independent of any specific browser driver or operator channel.
"""

from .models import (  # noqa: F401
    Action,
    ActionKind,
    ElementTarget,
    FormAuditResult,
    FormQuestion,
    FormRunRecord,
    FormRunStatus,
    Intent,
    OperatorInput,
    OperatorInputKind,
    Outcome,
    ReferenceData,
    RunContext,
    Session,
)
from .ports import (  # noqa: F401
    AnswerRepositoryPort,
    BrowserDriverPort,
    ClockPort,
    DocumentStorePort,
    FormRunRepositoryPort,
    IdGeneratorPort,
    LoggerPort,
    OperatorChannelPort,
    OutputStorePort,
)

__all__ = [
    # Models
    "Session",
    "Intent",
    "ElementTarget",
    "ActionKind",
    "Action",
    "FormQuestion",
    "FormAuditResult",
    "OperatorInputKind",
    "OperatorInput",
    "ReferenceData",
    "Outcome",
    "FormRunStatus",
    "FormRunRecord",
    "RunContext",
    # Ports
    "BrowserDriverPort",
    "OperatorChannelPort",
    "AnswerRepositoryPort",
    "FormRunRepositoryPort",
    "DocumentStorePort",
    "OutputStorePort",
    "ClockPort",
    "IdGeneratorPort",
    "LoggerPort",
]
