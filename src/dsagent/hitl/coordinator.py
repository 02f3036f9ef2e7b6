"""
Human-in-the-loop coordination.

The remote agent can pause and wait for a local decision about a plan,
a piece of code, an answer or an error. The coordinator tracks whether
such a decision is outstanding and pairs each request with exactly one
response.

States:
    IDLE --request--> AWAITING_DECISION --respond--> IDLE
    AWAITING_DECISION --abandon (disconnect / session replaced)--> IDLE

Policy for a second request while one is outstanding: the latest
request wins. The replaced request is kept in `superseded`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from dsagent.errors import HITLProtocolError
from dsagent.state.models import PlanState

logger = logging.getLogger(__name__)


class HITLKind(str, Enum):
    """What the agent is waiting on."""
    PLAN = "plan"
    CODE = "code"
    ANSWER = "answer"
    ERROR = "error"


class HITLAction(str, Enum):
    """Decision sent back to the agent."""
    APPROVE = "approve"
    REJECT = "reject"
    MODIFY = "modify"
    RETRY = "retry"
    SKIP = "skip"
    FEEDBACK = "feedback"


class HITLState(str, Enum):
    IDLE = "idle"
    AWAITING_DECISION = "awaiting_decision"


@dataclass(frozen=True)
class HITLRequest:
    """A pending decision and the artifact under review."""
    kind: HITLKind
    plan: Optional[PlanState] = None
    code: Optional[str] = None
    answer: Optional[str] = None
    error: Optional[str] = None
    prompt: Optional[str] = None

    @property
    def artifact(self) -> Any:
        """The thing being reviewed, according to the request kind."""
        return {
            HITLKind.PLAN: self.plan,
            HITLKind.CODE: self.code,
            HITLKind.ANSWER: self.answer,
            HITLKind.ERROR: self.error,
        }[self.kind]


@dataclass(frozen=True)
class HITLResponse:
    """A validated decision ready to be sent."""
    action: HITLAction
    message: Optional[str] = None
    modified_plan: Optional[str] = None
    modified_code: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"action": self.action.value}
        if self.message is not None:
            payload["message"] = self.message
        if self.modified_plan is not None:
            payload["modified_plan"] = self.modified_plan
        if self.modified_code is not None:
            payload["modified_code"] = self.modified_code
        return payload


# Sends a response to the server
ResponseSender = Callable[[HITLResponse], Awaitable[None]]

# Called on every state transition with the new state and outstanding request
StateListener = Callable[[HITLState, Optional[HITLRequest]], None]


def build_response(
    request: HITLRequest,
    action: HITLAction | str,
    message: Optional[str] = None,
    modified_plan: Optional[str] = None,
    modified_code: Optional[str] = None,
) -> HITLResponse:
    """
    Validate a decision against the outstanding request.

    Raises:
        HITLProtocolError: if the action is unknown or its payload does not
            fit the request kind
    """
    try:
        action = HITLAction(action)
    except ValueError:
        raise HITLProtocolError(f"Unknown HITL action: {action!r}") from None

    if action == HITLAction.MODIFY:
        if request.kind == HITLKind.PLAN:
            if not modified_plan:
                raise HITLProtocolError("modify on a plan request needs modified_plan")
            if modified_code is not None:
                raise HITLProtocolError("modify on a plan request cannot carry modified_code")
        elif request.kind == HITLKind.CODE:
            if not modified_code:
                raise HITLProtocolError("modify on a code request needs modified_code")
            if modified_plan is not None:
                raise HITLProtocolError("modify on a code request cannot carry modified_plan")
        else:
            raise HITLProtocolError(f"modify is not allowed on a {request.kind.value} request")
    else:
        if modified_plan is not None or modified_code is not None:
            raise HITLProtocolError(f"{action.value} cannot carry modified plan or code")

    if action == HITLAction.FEEDBACK and not (message and message.strip()):
        raise HITLProtocolError("feedback needs a non-empty message")

    return HITLResponse(
        action=action,
        message=message,
        modified_plan=modified_plan,
        modified_code=modified_code,
    )


@dataclass
class HITLCoordinator:
    """
    Tracks the single outstanding HITL request of a session.

    Usage:
        coordinator = HITLCoordinator(sender=send_to_server)
        coordinator.on_request(request)        # from the event stream
        await coordinator.respond("approve")   # from the user
    """
    sender: Optional[ResponseSender] = None
    listener: Optional[StateListener] = None
    superseded: List[HITLRequest] = field(default_factory=list)

    _pending: Optional[HITLRequest] = field(default=None, init=False, repr=False)
    _in_flight: bool = field(default=False, init=False, repr=False)

    @property
    def state(self) -> HITLState:
        return HITLState.AWAITING_DECISION if self._pending else HITLState.IDLE

    @property
    def pending(self) -> Optional[HITLRequest]:
        return self._pending

    @property
    def is_awaiting(self) -> bool:
        return self._pending is not None

    def on_request(self, request: HITLRequest) -> None:
        """Enter AWAITING_DECISION for `request`."""
        if self._pending is not None:
            logger.warning(
                f"HITL request ({request.kind.value}) arrived while "
                f"{self._pending.kind.value} request is outstanding; latest wins"
            )
            self.superseded.append(self._pending)

        self._pending = request
        logger.info(f"Awaiting HITL decision: {request.kind.value}")
        self._notify()

    def prepare(
        self,
        action: HITLAction | str,
        message: Optional[str] = None,
        modified_plan: Optional[str] = None,
        modified_code: Optional[str] = None,
    ) -> HITLResponse:
        """Validate a response without sending it or changing state."""
        if self._pending is None:
            raise HITLProtocolError("No HITL request is outstanding")
        return build_response(self._pending, action, message, modified_plan, modified_code)

    async def respond(
        self,
        action: HITLAction | str,
        message: Optional[str] = None,
        modified_plan: Optional[str] = None,
        modified_code: Optional[str] = None,
    ) -> HITLResponse:
        """
        Validate, send and return to IDLE.

        Validation happens before any network call. If sending fails the
        request stays outstanding so the caller can try again.
        """
        if self._in_flight:
            raise HITLProtocolError("A HITL response is already being sent")

        response = self.prepare(action, message, modified_plan, modified_code)
        request = self._pending

        if self.sender is None:
            raise HITLProtocolError("No response channel configured")

        self._in_flight = True
        try:
            await self.sender(response)
        finally:
            self._in_flight = False

        # A newer request may have arrived while we were sending
        if self._pending is request:
            self._pending = None
            self._notify()

        logger.info(f"Sent HITL response: {response.action.value}")
        return response

    def abandon(self, reason: str = "") -> Optional[HITLRequest]:
        """Drop the outstanding request without responding."""
        request = self._pending
        if request is None:
            return None

        self._pending = None
        logger.info(f"Abandoned HITL request ({request.kind.value}){': ' + reason if reason else ''}")
        self._notify()
        return request

    def _notify(self) -> None:
        if self.listener is None:
            return
        try:
            self.listener(self.state, self._pending)
        except Exception:
            logger.exception(f"HITL listener failed in state {self.state.value}")
