"""Tests for the event normalizer."""

import base64
import logging

from dsagent.hitl import HITLKind
from dsagent.state.models import ExecutionResult
from dsagent.stream.decoder import SSEFrame
from dsagent.stream.events import (
    AnswerReady,
    AssistantText,
    CodeFinished,
    CodeStarted,
    ErrorSource,
    EventKind,
    HITLRequested,
    PlanUpdated,
    StreamComplete,
    StreamError,
    Thinking,
)
from dsagent.stream.normalizer import EventNormalizer


def normalize(event, data):
    return EventNormalizer().normalize(SSEFrame(event=event, data=data))


def test_thinking_and_llm_response():
    """Test the simple text events."""
    assert normalize("thinking", {"message": "Loading"}) == Thinking(text="Loading")
    assert normalize("thinking", {}) == Thinking(text="Processing...")
    assert normalize("llm_response", {"content": "Hi"}) == AssistantText(text="Hi")


def test_plan_event():
    """Test that a plan frame becomes a PlanState snapshot."""
    event = normalize("plan", {
        "steps": [
            {"number": 1, "description": "Load data", "completed": True},
            {"number": 2, "description": "Plot", "completed": False},
        ],
        "raw_text": "1. Load data\n2. Plot",
        "completed_steps": 1,
        "total_steps": 2,
    })

    assert isinstance(event, PlanUpdated)
    assert [s.description for s in event.plan.steps] == ["Load data", "Plot"]
    assert event.plan.progress_label == "1/2"
    assert event.plan.progress == 0.5


def test_plan_counters_derived_from_steps():
    """Test that missing counters are derived from the steps."""
    event = normalize("plan", {"steps": [{"description": "a", "completed": True}, {"description": "b"}]})

    assert event.plan.total_steps == 2
    assert event.plan.completed_steps == 1
    assert [s.number for s in event.plan.steps] == [1, 2]


def test_code_events():
    """Test code_executing and code_result."""
    assert normalize("code_executing", {"code": "1+1"}) == CodeStarted(code="1+1")

    event = normalize("code_result", {"success": True, "stdout": "2"})
    assert isinstance(event, CodeFinished)
    assert event.result.success is True
    assert event.result.stdout == "2"
    assert event.result.images == ()


def test_code_result_images_decoded():
    """Test that inline images are base64-decoded and bad ones skipped."""
    png = b"\x89PNG\r\n\x1a\n"
    event = normalize("code_result", {
        "success": True,
        "stdout": "",
        "images": [
            {"mime": "image/png", "data": base64.b64encode(png).decode()},
            {"mime": "image/png", "data": "not base64!!"},
        ],
    })

    assert len(event.result.images) == 1
    assert event.result.images[0].data == png
    assert event.result.images[0].mime == "image/png"


def test_code_result_failure():
    """Test a failed execution result."""
    event = normalize("code_result", {"success": False, "stdout": None, "error": "NameError: x"})

    assert event.result.success is False
    assert event.result.stdout == ""
    assert event.result.error == "NameError: x"


def test_null_optional_fields_use_defaults():
    """Test that JSON null in optional fields is treated as absent."""
    event = normalize("code_result", {"success": True, "stdout": "2", "error": None, "images": None})
    assert event == CodeFinished(result=ExecutionResult(success=True, stdout="2"))

    event = normalize("code_result", {"success": None, "stdout": None})
    assert event.result.success is True
    assert event.result.stdout == ""

    assert normalize("error", {"error": None}) == StreamError(message="Unknown error", source=ErrorSource.APPLICATION)
    assert normalize("thinking", {"message": None}) == Thinking(text="Processing...")
    assert normalize("llm_response", {"content": None}) == AssistantText(text="")
    assert normalize("round_complete", {"has_answer": None, "answer": None}) is None

    plan = normalize("plan", {"steps": [{"number": None, "description": None, "completed": None}], "raw_text": None})
    assert plan.plan.steps[0].description == ""
    assert plan.plan.raw_text == ""


def test_code_result_line_wrapped_image():
    """Test that base64 split over several lines still decodes."""
    data = bytes(range(256))
    event = normalize("code_result", {"images": [{"mime": None, "data": base64.encodebytes(data).decode()}]})

    assert len(event.result.images) == 1
    assert event.result.images[0].data == data
    assert event.result.images[0].mime == "image/png"


def test_round_complete_only_with_answer():
    """Test that round_complete yields AnswerReady only when an answer is present."""
    assert normalize("round_complete", {"has_answer": True, "answer": "42"}) == AnswerReady(text="42")
    assert normalize("round_complete", {"has_answer": False}) is None
    assert normalize("round_complete", {"has_answer": True, "answer": ""}) is None


def test_terminal_events():
    """Test done and error."""
    assert normalize("done", {}) == StreamComplete()

    error = normalize("error", {"error": "LLM quota exceeded"})
    assert error == StreamError(message="LLM quota exceeded", source=ErrorSource.APPLICATION)


def test_hitl_request_plan():
    """Test a plan approval request."""
    event = normalize("hitl_request", {
        "request_type": "plan",
        "plan": {"steps": [{"number": 1, "description": "Load"}], "total_steps": 1, "completed_steps": 0},
        "message": "Approve this plan?",
    })

    assert isinstance(event, HITLRequested)
    assert event.request.kind == HITLKind.PLAN
    assert event.request.plan.total_steps == 1
    assert event.request.prompt == "Approve this plan?"
    assert event.request.artifact is event.request.plan


def test_hitl_request_plan_as_text():
    """Test that a plan given as plain text is kept as raw text."""
    event = normalize("hitl_request", {"request_type": "plan", "plan": "1. Load\n2. Plot"})

    assert event.request.plan.raw_text == "1. Load\n2. Plot"
    assert event.request.plan.steps == ()


def test_hitl_request_code():
    """Test a code approval request."""
    event = normalize("hitl_request", {"request_type": "code", "code": "df.head()"})

    assert event.request.kind == HITLKind.CODE
    assert event.request.artifact == "df.head()"


def test_unknown_and_invalid_frames_dropped():
    """Test that unknown types and invalid payloads produce nothing."""
    assert normalize("message", {"x": 1}) is None
    assert normalize("heartbeat", {}) is None
    assert normalize("code_executing", {}) is None
    assert normalize("hitl_request", {"request_type": "teleport"}) is None


def test_invalid_hitl_request_logged_as_warning(caplog):
    """Test that a dropped approval request is visible in the log."""
    with caplog.at_level(logging.WARNING, logger="dsagent.stream.normalizer"):
        assert normalize("hitl_request", {"request_type": None}) is None

    assert any("hitl_request" in r.getMessage() for r in caplog.records)


def test_finish_synthesizes_completion():
    """Test EOF without done: finish() synthesizes StreamComplete once."""
    normalizer = EventNormalizer()
    normalizer.normalize(SSEFrame("thinking", {"message": "..."}))
    normalizer.normalize(SSEFrame("llm_response", {"content": "partial"}))

    final = normalizer.finish()

    assert final == StreamComplete(synthesized=True)
    assert final.kind == EventKind.STREAM_COMPLETE
    assert normalizer.finish() is None


def test_finish_after_done_is_noop():
    """Test that no completion is synthesized after a real terminal event."""
    normalizer = EventNormalizer()
    normalizer.normalize(SSEFrame("error", {"error": "boom"}))

    assert normalizer.terminated
    assert normalizer.finish() is None
