"""
Conversation state rebuilt from domain events.

Holds the active plan, the turn history and a transient "thinking"
status. It is only ever mutated through `apply()` (live events) and
`load_history()` (bulk replay); observers should treat it as read-only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from dsagent.state.models import CodeBlock, PlanState, Turn
from dsagent.stream.events import DomainEvent, EventKind

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ConversationState:
    """Plan and turn history of one session."""
    plan: Optional[PlanState] = None
    turns: List[Turn] = field(default_factory=list)
    thinking: Optional[str] = None

    _pending_user_message: Optional[str] = field(default=None, init=False, repr=False)

    @property
    def current_turn(self) -> Optional[Turn]:
        """The turn still being streamed, if any."""
        if self.turns and not self.turns[-1].is_complete:
            return self.turns[-1]
        return None

    @property
    def last_turn(self) -> Optional[Turn]:
        return self.turns[-1] if self.turns else None

    def clear(self) -> None:
        self.plan = None
        self.turns = []
        self.thinking = None
        self._pending_user_message = None

    def load_history(self, turns: List[Turn]) -> None:
        """Replace local history with turns fetched from the server."""
        self.turns = list(turns)
        self.thinking = None
        self._pending_user_message = None
        for turn in reversed(self.turns):
            if turn.plan is not None:
                self.plan = turn.plan
                break

    def begin_user_message(self, text: str) -> None:
        """Record a message the user just sent; it opens the next turn."""
        self.close_turn()
        self._pending_user_message = text

    def apply(self, event: DomainEvent) -> None:
        """Fold one domain event into the state."""
        kind = event.kind

        if kind == EventKind.THINKING:
            # Transient, never stored in a turn
            self.thinking = event.text
            return

        if kind == EventKind.PLAN_UPDATED:
            self.plan = event.plan
            self._ensure_turn().plan = event.plan

        elif kind == EventKind.ASSISTANT_TEXT:
            turn = self._ensure_turn()
            if turn.content and event.text:
                turn.content = f"{turn.content}\n\n{event.text}"
            elif event.text:
                turn.content = event.text

        elif kind == EventKind.CODE_STARTED:
            self._ensure_turn().code_blocks.append(CodeBlock(code=event.code))

        elif kind == EventKind.CODE_FINISHED:
            turn = self._ensure_turn()
            block = turn.open_code_block()
            if block is None:
                logger.warning("code_result arrived with no open code block")
                block = CodeBlock(code="")
                turn.code_blocks.append(block)
            block.result = event.result

        elif kind == EventKind.ANSWER_READY:
            turn = self._ensure_turn()
            turn.has_answer = True
            turn.answer = event.text
            if not turn.content:
                turn.content = event.text
            turn.is_complete = True

        elif kind in (EventKind.STREAM_COMPLETE, EventKind.STREAM_ERROR):
            self.close_turn()

        # HITL requests are the coordinator's business
        self.thinking = None

    def _ensure_turn(self) -> Turn:
        turn = self.current_turn
        if turn is not None:
            return turn

        turn = Turn(
            round=len(self.turns) + 1,
            timestamp=_now(),
            user_message=self._pending_user_message,
        )
        self._pending_user_message = None
        self.turns.append(turn)
        return turn

    def close_turn(self) -> None:
        """Mark the turn being streamed as complete."""
        turn = self.current_turn
        if turn is not None:
            turn.is_complete = True
        elif self._pending_user_message is not None:
            # Nothing came back for the last message; keep it in history
            self.turns.append(Turn(
                round=len(self.turns) + 1,
                timestamp=_now(),
                user_message=self._pending_user_message,
                is_complete=True,
            ))
            self._pending_user_message = None
        self.thinking = None
