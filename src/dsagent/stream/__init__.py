"""
Stream processing: raw chunks -> frames -> domain events.

This module provides:
- FrameDecoder: incremental SSE frame decoder
- EventNormalizer: maps wire frames to domain events
- Domain event classes (Thinking, PlanUpdated, AnswerReady, ...)
"""

from dsagent.stream.decoder import FrameDecoder, SSEFrame
from dsagent.stream.events import (
    AnswerReady,
    AssistantText,
    CodeFinished,
    CodeStarted,
    DomainEvent,
    ErrorSource,
    EventKind,
    HITLRequested,
    PlanUpdated,
    StreamComplete,
    StreamError,
    Thinking,
)
from dsagent.stream.normalizer import EventNormalizer

__all__ = [
    "FrameDecoder",
    "SSEFrame",
    "EventNormalizer",
    "AnswerReady",
    "AssistantText",
    "CodeFinished",
    "CodeStarted",
    "DomainEvent",
    "ErrorSource",
    "EventKind",
    "HITLRequested",
    "PlanUpdated",
    "StreamComplete",
    "StreamError",
    "Thinking",
]
