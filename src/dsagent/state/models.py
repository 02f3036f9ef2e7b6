"""
Local data model for sessions, plans, turns and execution results.

These are plain dataclasses owned by the client. The server is
authoritative for persisted session fields; everything else is rebuilt
from the event stream or from a bulk history fetch.
"""
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Lifecycle status of a session."""
    ACTIVE = "active"
    COMPLETED = "completed"
    ERROR = "error"
    ARCHIVED = "archived"


class HITLMode(str, Enum):
    """When the remote agent must pause for approval."""
    NONE = "none"
    PLAN_ONLY = "plan_only"
    FULL = "full"
    PLAN_AND_ANSWER = "plan_and_answer"
    ON_ERROR = "on_error"


@dataclass
class Session:
    """A conversation session as reported by the server."""
    id: str
    name: str = ""
    status: SessionStatus = SessionStatus.ACTIVE
    model: Optional[str] = None
    hitl_mode: HITLMode = HITLMode.NONE
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        """Create from server JSON, tolerating unknown status/mode values."""
        try:
            status = SessionStatus(data.get("status") or SessionStatus.ACTIVE.value)
        except ValueError:
            logger.warning(f"Unknown session status: {data.get('status')}")
            status = SessionStatus.ACTIVE

        try:
            hitl_mode = HITLMode(data.get("hitl_mode") or HITLMode.NONE.value)
        except ValueError:
            logger.warning(f"Unknown HITL mode: {data.get('hitl_mode')}")
            hitl_mode = HITLMode.NONE

        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            status=status,
            model=data.get("model"),
            hitl_mode=hitl_mode,
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class PlanStep:
    """One step of the agent's plan."""
    number: int
    description: str
    completed: bool = False


@dataclass(frozen=True)
class PlanState:
    """Snapshot of the agent's plan. Replaced wholesale on each update."""
    steps: tuple = ()
    raw_text: str = ""
    completed_steps: int = 0
    total_steps: int = 0

    @property
    def progress(self) -> float:
        """Completed fraction in [0, 1]."""
        if self.total_steps <= 0:
            return 0.0
        return self.completed_steps / self.total_steps

    @property
    def progress_label(self) -> str:
        return f"{self.completed_steps}/{self.total_steps}"

    @property
    def is_complete(self) -> bool:
        return self.total_steps > 0 and self.completed_steps >= self.total_steps

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanState":
        """Build from a plan payload.

        Missing counters are derived from the steps themselves.
        """
        steps = tuple(
            PlanStep(
                number=int(step.get("number") or index + 1),
                description=str(step.get("description") or ""),
                completed=bool(step.get("completed")),
            )
            for index, step in enumerate(data.get("steps") or [])
        )

        total = data.get("total_steps")
        if total is None:
            total = len(steps)

        completed = data.get("completed_steps")
        if completed is None:
            completed = sum(1 for step in steps if step.completed)

        return cls(
            steps=steps,
            raw_text=data.get("raw_text") or "",
            completed_steps=int(completed),
            total_steps=int(total),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [
                {"number": s.number, "description": s.description, "completed": s.completed}
                for s in self.steps
            ],
            "raw_text": self.raw_text,
            "completed_steps": self.completed_steps,
            "total_steps": self.total_steps,
        }


@dataclass(frozen=True)
class InlineImage:
    """An image produced by executed code."""
    mime: str
    data: bytes


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one code execution. Immutable once attached to a turn."""
    success: bool
    stdout: str = ""
    error: Optional[str] = None
    images: tuple = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionResult":
        """Build from a code_result payload or a history record.

        History records use "output" where live events use "stdout".
        Images with undecodable base64 data are skipped. Line-wrapped
        base64 is accepted.
        """
        images = []
        for image in data.get("images") or []:
            try:
                encoded = "".join((image.get("data") or "").split())
                payload = base64.b64decode(encoded, validate=True)
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed inline image: {e}")
                continue
            images.append(InlineImage(mime=image.get("mime") or "image/png", data=payload))

        stdout = data.get("stdout")
        if stdout is None:
            stdout = data.get("output") or ""

        success = data.get("success")
        return cls(
            success=True if success is None else bool(success),
            stdout=stdout,
            error=data.get("error"),
            images=tuple(images),
        )


@dataclass
class CodeBlock:
    """A code sub-turn: code sent for execution and, once closed, its result."""
    code: str
    result: Optional[ExecutionResult] = None

    @property
    def is_open(self) -> bool:
        return self.result is None


@dataclass
class Turn:
    """One round of the conversation."""
    round: int
    timestamp: Optional[str] = None
    user_message: Optional[str] = None
    content: str = ""
    code_blocks: List[CodeBlock] = field(default_factory=list)
    plan: Optional[PlanState] = None
    has_answer: bool = False
    answer: Optional[str] = None
    thinking: Optional[str] = None
    is_complete: bool = False

    @property
    def code(self) -> Optional[str]:
        """Code of the most recent code sub-turn."""
        return self.code_blocks[-1].code if self.code_blocks else None

    @property
    def execution_result(self) -> Optional[ExecutionResult]:
        """Result of the most recent code sub-turn."""
        return self.code_blocks[-1].result if self.code_blocks else None

    def open_code_block(self) -> Optional[CodeBlock]:
        """Most recently opened code sub-turn that has no result yet."""
        for block in reversed(self.code_blocks):
            if block.is_open:
                return block
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        """Rebuild a turn from a history record."""
        code_blocks = []
        if data.get("code"):
            result = data.get("execution_result")
            code_blocks.append(CodeBlock(
                code=data["code"],
                result=ExecutionResult.from_dict(result) if result else None,
            ))

        plan = data.get("plan")
        return cls(
            round=int(data.get("round", 0)),
            timestamp=data.get("timestamp"),
            user_message=data.get("user_message"),
            content=data.get("content") or "",
            code_blocks=code_blocks,
            plan=PlanState.from_dict(plan) if plan else None,
            has_answer=bool(data.get("has_answer", False)),
            answer=data.get("answer"),
            thinking=data.get("thinking"),
            is_complete=bool(data.get("is_complete", True)),
        )


@dataclass
class TurnsPage:
    """One page of turn history."""
    turns: List[Turn] = field(default_factory=list)
    total: int = 0
    has_more: bool = False
