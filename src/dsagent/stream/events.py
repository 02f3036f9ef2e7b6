"""
Domain events produced by the event normalizer.

The set is closed: every decoded frame maps to at most one of the
classes below, and observers can rely on `kind` for dispatch.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional, Union

from dsagent.hitl.coordinator import HITLRequest
from dsagent.state.models import ExecutionResult, PlanState


class EventKind(str, Enum):
    """Normalized event kinds."""
    THINKING = "thinking"
    ASSISTANT_TEXT = "assistant_text"
    PLAN_UPDATED = "plan_updated"
    CODE_STARTED = "code_started"
    CODE_FINISHED = "code_finished"
    ANSWER_READY = "answer_ready"
    HITL_REQUESTED = "hitl_requested"
    STREAM_COMPLETE = "stream_complete"
    STREAM_ERROR = "stream_error"


class ErrorSource(str, Enum):
    """Where a stream failure originated."""
    APPLICATION = "application"  # "error" event sent by the agent
    TRANSPORT = "transport"      # connection refused/reset/timeout
    PROTOCOL = "protocol"        # HTTP status >= 400


@dataclass(frozen=True)
class Thinking:
    text: str
    kind: ClassVar[EventKind] = EventKind.THINKING


@dataclass(frozen=True)
class AssistantText:
    text: str
    kind: ClassVar[EventKind] = EventKind.ASSISTANT_TEXT


@dataclass(frozen=True)
class PlanUpdated:
    plan: PlanState
    kind: ClassVar[EventKind] = EventKind.PLAN_UPDATED


@dataclass(frozen=True)
class CodeStarted:
    code: str
    kind: ClassVar[EventKind] = EventKind.CODE_STARTED


@dataclass(frozen=True)
class CodeFinished:
    result: ExecutionResult
    kind: ClassVar[EventKind] = EventKind.CODE_FINISHED


@dataclass(frozen=True)
class AnswerReady:
    text: str
    kind: ClassVar[EventKind] = EventKind.ANSWER_READY


@dataclass(frozen=True)
class HITLRequested:
    request: HITLRequest
    kind: ClassVar[EventKind] = EventKind.HITL_REQUESTED


@dataclass(frozen=True)
class StreamComplete:
    """Terminal. `synthesized` is True when the stream ended without "done"."""
    synthesized: bool = False
    kind: ClassVar[EventKind] = EventKind.STREAM_COMPLETE


@dataclass(frozen=True)
class StreamError:
    """Terminal for the current stream; the session stays usable."""
    message: str
    source: ErrorSource = ErrorSource.APPLICATION
    status_code: Optional[int] = None
    kind: ClassVar[EventKind] = EventKind.STREAM_ERROR


DomainEvent = Union[
    Thinking,
    AssistantText,
    PlanUpdated,
    CodeStarted,
    CodeFinished,
    AnswerReady,
    HITLRequested,
    StreamComplete,
    StreamError,
]

TERMINAL_KINDS = frozenset({EventKind.STREAM_COMPLETE, EventKind.STREAM_ERROR})


def is_terminal(event: DomainEvent) -> bool:
    return event.kind in TERMINAL_KINDS
