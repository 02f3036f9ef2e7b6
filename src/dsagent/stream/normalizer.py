"""
Event normalizer - maps decoded frames to domain events.

| wire type       | domain event                              |
|-----------------|-------------------------------------------|
| thinking        | Thinking                                  |
| llm_response    | AssistantText                             |
| plan            | PlanUpdated (replaces the plan wholesale) |
| code_executing  | CodeStarted                               |
| code_result     | CodeFinished                              |
| round_complete  | AnswerReady, only if an answer is present |
| done            | StreamComplete                            |
| error           | StreamError                               |
| hitl_request    | HITLRequested                             |

Payloads that fail validation are dropped like undecodable JSON.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from dsagent.hitl.coordinator import HITLKind, HITLRequest
from dsagent.state.models import ExecutionResult, PlanState
from dsagent.stream.decoder import SSEFrame
from dsagent.stream.events import (
    AnswerReady,
    AssistantText,
    CodeFinished,
    CodeStarted,
    DomainEvent,
    ErrorSource,
    HITLRequested,
    PlanUpdated,
    StreamComplete,
    StreamError,
    Thinking,
    is_terminal,
)

logger = logging.getLogger(__name__)


class ThinkingPayload(BaseModel):
    message: Optional[str] = None


class LLMResponsePayload(BaseModel):
    content: Optional[str] = None


class PlanStepPayload(BaseModel):
    number: Optional[int] = None
    description: Optional[str] = None
    completed: Optional[bool] = None


class PlanPayload(BaseModel):
    steps: Optional[List[PlanStepPayload]] = None
    raw_text: Optional[str] = None
    completed_steps: Optional[int] = None
    total_steps: Optional[int] = None


class ImagePayload(BaseModel):
    mime: Optional[str] = None
    data: Optional[str] = None


class CodeExecutingPayload(BaseModel):
    code: str


class CodeResultPayload(BaseModel):
    success: Optional[bool] = None
    stdout: Optional[str] = None
    error: Optional[str] = None
    images: Optional[List[ImagePayload]] = None


class RoundCompletePayload(BaseModel):
    has_answer: Optional[bool] = None
    answer: Optional[str] = None


class ErrorPayload(BaseModel):
    error: Optional[str] = None


class HITLRequestPayload(BaseModel):
    request_type: HITLKind = HITLKind.PLAN
    plan: Optional[Union[PlanPayload, str]] = None
    code: Optional[str] = None
    answer: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None


def _plan_from_payload(payload: PlanPayload) -> PlanState:
    return PlanState.from_dict(payload.model_dump())


def _thinking(data: Dict[str, Any]) -> Optional[DomainEvent]:
    return Thinking(text=ThinkingPayload.model_validate(data).message or "Processing...")


def _llm_response(data: Dict[str, Any]) -> Optional[DomainEvent]:
    return AssistantText(text=LLMResponsePayload.model_validate(data).content or "")


def _plan(data: Dict[str, Any]) -> Optional[DomainEvent]:
    return PlanUpdated(plan=_plan_from_payload(PlanPayload.model_validate(data)))


def _code_executing(data: Dict[str, Any]) -> Optional[DomainEvent]:
    return CodeStarted(code=CodeExecutingPayload.model_validate(data).code)


def _code_result(data: Dict[str, Any]) -> Optional[DomainEvent]:
    payload = CodeResultPayload.model_validate(data)
    return CodeFinished(result=ExecutionResult.from_dict(payload.model_dump()))


def _round_complete(data: Dict[str, Any]) -> Optional[DomainEvent]:
    payload = RoundCompletePayload.model_validate(data)
    if payload.has_answer and payload.answer:
        return AnswerReady(text=payload.answer)
    return None


def _done(data: Dict[str, Any]) -> Optional[DomainEvent]:
    return StreamComplete()


def _error(data: Dict[str, Any]) -> Optional[DomainEvent]:
    return StreamError(message=ErrorPayload.model_validate(data).error or "Unknown error", source=ErrorSource.APPLICATION)


def _hitl_request(data: Dict[str, Any]) -> Optional[DomainEvent]:
    payload = HITLRequestPayload.model_validate(data)

    plan = None
    if isinstance(payload.plan, PlanPayload):
        plan = _plan_from_payload(payload.plan)
    elif isinstance(payload.plan, str):
        plan = PlanState(raw_text=payload.plan)

    return HITLRequested(request=HITLRequest(
        kind=payload.request_type,
        plan=plan,
        code=payload.code,
        answer=payload.answer,
        error=payload.error,
        prompt=payload.message,
    ))


FrameHandler = Callable[[Dict[str, Any]], Optional[DomainEvent]]

HANDLERS: Dict[str, FrameHandler] = {
    "thinking": _thinking,
    "llm_response": _llm_response,
    "plan": _plan,
    "code_executing": _code_executing,
    "code_result": _code_result,
    "round_complete": _round_complete,
    "done": _done,
    "error": _error,
    "hitl_request": _hitl_request,
}


class EventNormalizer:
    """
    Maps frames to domain events in arrival order. One instance per stream.

    Usage:
        normalizer = EventNormalizer()
        for frame in frames:
            event = normalizer.normalize(frame)
        final = normalizer.finish()  # StreamComplete if "done" never came
    """

    def __init__(self):
        self._terminated = False

    @property
    def terminated(self) -> bool:
        """True once a terminal event has been produced."""
        return self._terminated

    def normalize(self, frame: SSEFrame) -> Optional[DomainEvent]:
        handler = HANDLERS.get(frame.event)
        if handler is None:
            logger.debug(f"Ignoring frame type: {frame.event}")
            return None

        try:
            event = handler(frame.data)
        except ValidationError as e:
            logger.warning(f"Dropping invalid {frame.event} payload: {e.error_count()} error(s)")
            return None

        if event is not None and is_terminal(event):
            self._terminated = True
        return event

    def finish(self) -> Optional[DomainEvent]:
        """Synthesize completion for a stream that ended without "done"."""
        if self._terminated:
            return None
        self._terminated = True
        return StreamComplete(synthesized=True)
