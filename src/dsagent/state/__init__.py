"""Local data model: sessions, plans, turns, execution results."""

from dsagent.state.models import (
    CodeBlock,
    ExecutionResult,
    HITLMode,
    InlineImage,
    PlanState,
    PlanStep,
    Session,
    SessionStatus,
    Turn,
    TurnsPage,
)

__all__ = [
    "CodeBlock",
    "ExecutionResult",
    "HITLMode",
    "InlineImage",
    "PlanState",
    "PlanStep",
    "Session",
    "SessionStatus",
    "Turn",
    "TurnsPage",
]
