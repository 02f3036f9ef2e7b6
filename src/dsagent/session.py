"""
AgentSession - the client object that owns one conversation.

Data flow:
    transport chunks -> FrameDecoder -> EventNormalizer -> domain events
    domain events -> ConversationState, HITLCoordinator, observer (in that order)

At most one stream is consumed at a time. Sending a new message (or
following a push channel) while a stream is in flight cancels the old
stream first; the old send_message() call then resolves as CANCELLED.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

from dsagent.client.api_client import DSAgentAPIClient
from dsagent.client.transport import CancelToken, StreamHandle
from dsagent.errors import NoActiveSessionError, ProtocolError, TransportError
from dsagent.hitl.coordinator import HITLAction, HITLCoordinator, HITLResponse, StateListener
from dsagent.state.conversation import ConversationState
from dsagent.state.models import HITLMode, Session, Turn
from dsagent.stream.decoder import FrameDecoder, SSEFrame
from dsagent.stream.events import DomainEvent, ErrorSource, EventKind, StreamError, is_terminal
from dsagent.stream.normalizer import EventNormalizer
from dsagent.ws.client import AgentPushClient

logger = logging.getLogger(__name__)

# External observer (UI layer) of normalized events
EventObserver = Callable[[DomainEvent], None]


class SendStatus(str, Enum):
    """How a stream ended for the caller."""
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SendResult:
    """Outcome of send_message() or follow()."""
    status: SendStatus
    turn: Optional[Turn] = None
    error: Optional[StreamError] = None

    @property
    def ok(self) -> bool:
        return self.status == SendStatus.COMPLETED


class AgentSession:
    """
    Owns a session, its conversation state and its HITL coordinator.

    Usage:
        async with DSAgentAPIClient(url, api_key=key) as api:
            agent = AgentSession(api, observer=ui.on_event)
            await agent.create(hitl_mode="plan_only")
            result = await agent.send_message("load sales.csv and plot revenue")
            if agent.hitl.is_awaiting:
                await agent.approve()
    """

    def __init__(
        self,
        api: DSAgentAPIClient,
        observer: Optional[EventObserver] = None,
        hitl_listener: Optional[StateListener] = None,
    ):
        self.api = api
        self.observer = observer
        self.session: Optional[Session] = None
        self.conversation = ConversationState()
        self.hitl = HITLCoordinator(sender=self._send_hitl_response, listener=hitl_listener)

        self._task: Optional[asyncio.Task] = None
        self._token: Optional[CancelToken] = None
        self._handle: Optional[StreamHandle] = None

    @property
    def session_id(self) -> Optional[str]:
        return self.session.id if self.session else None

    @property
    def is_connected(self) -> bool:
        return self.session is not None

    @property
    def is_streaming(self) -> bool:
        return self._task is not None and not self._task.done()

    def _require_session(self) -> Session:
        if self.session is None:
            raise NoActiveSessionError()
        return self.session

    # ==========================================
    # SESSION LIFECYCLE
    # ==========================================

    async def create(
        self,
        name: Optional[str] = None,
        model: Optional[str] = None,
        hitl_mode: HITLMode | str = HITLMode.NONE,
    ) -> Session:
        """Create a new session on the server and make it current."""
        session = await self.api.create_session(name=name, model=model, hitl_mode=hitl_mode)
        await self._replace_session(session)
        logger.info(f"Created session {session.id}")
        return session

    async def resume(self, session_id: str, page_size: int = 50) -> Session:
        """Make an existing session current and replay its turn history."""
        session = await self.api.get_session(session_id)
        await self._replace_session(session)

        turns: List[Turn] = []
        offset = 0
        while True:
            page = await self.api.get_turns(session.id, limit=page_size, offset=offset)
            turns.extend(page.turns)
            offset += len(page.turns)
            if not page.has_more or not page.turns:
                break

        self.conversation.load_history(turns)
        logger.info(f"Resumed session {session.id} ({len(turns)} turns)")
        return session

    async def update(self, **fields: Any) -> Session:
        """
        Update name, status, model or hitl_mode of the current session.

        A new HITL mode applies to the agent's next rounds, not the current one.
        """
        session = self._require_session()
        updated = await self.api.update_session(session.id, **fields)
        self.session = updated
        return updated

    async def delete(self, session_id: Optional[str] = None) -> None:
        """Delete a session (the current one by default)."""
        target = session_id or self._require_session().id
        await self.api.delete_session(target)
        if self.session_id == target:
            await self.disconnect()

    async def disconnect(self) -> None:
        """Stop streaming and forget the session locally."""
        await self._stop_stream()
        self.hitl.abandon("disconnected")
        if self.session:
            logger.info(f"Disconnected from session {self.session.id}")
        self.session = None
        self.conversation.clear()

    async def _replace_session(self, session: Session) -> None:
        await self._stop_stream()
        self.hitl.abandon("session replaced")
        self.session = session
        self.conversation.clear()

    # ==========================================
    # STREAMING
    # ==========================================

    async def send_message(self, text: str) -> SendResult:
        """
        Send a message and wait until its stream ends.

        Resolves with exactly one of COMPLETED, FAILED or CANCELLED. Stream
        failures are reported in the result (and as a StreamError event),
        not raised. Nothing is retried automatically.
        """
        session = self._require_session()
        await self._stop_stream()

        self.conversation.begin_user_message(text)
        handle = self.api.transport.open(session.id, text)
        return await self._run(self._consume_stream(handle), handle.token, handle)

    async def follow(self, client: AgentPushClient) -> SendResult:
        """
        Consume a persistent push connection until it is closed.

        Returns FAILED if the connection could not be opened, or dropped
        and reconnection was exhausted; the caller has to start over with
        a new follow().
        """
        self._require_session()
        await self._stop_stream()

        token = CancelToken()
        return await self._run(self._consume_push(client, token), token)

    async def cancel(self) -> bool:
        """Cancel the in-flight stream. Returns False if nothing was running."""
        if not self.is_streaming:
            return False
        await self._stop_stream()
        return True

    async def _run(self, consumer, token: CancelToken, handle: Optional[StreamHandle] = None) -> SendResult:
        task = asyncio.create_task(consumer)
        self._task, self._token, self._handle = task, token, handle
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            # Our caller went away; don't leave the stream running
            token.cancel()
            task.cancel()
            raise
        finally:
            if self._task is task:
                self._task, self._token, self._handle = None, None, None

        if task.cancelled():
            # Superseded before the consumer got to run
            return self._cancelled()
        return task.result()

    async def _stop_stream(self) -> None:
        task, token = self._task, self._token
        if task is None:
            return

        if token is not None:
            token.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})

        if self._task is task:
            self._task, self._token, self._handle = None, None, None

    async def _consume_stream(self, handle: StreamHandle) -> SendResult:
        decoder = FrameDecoder()
        normalizer = EventNormalizer()

        try:
            async with contextlib.aclosing(handle.chunks()) as chunks:
                async for chunk in chunks:
                    terminal = self._process(normalizer, decoder.feed(chunk))
                    if terminal is not None:
                        return self._result_for(terminal)

            if handle.cancelled:
                return self._cancelled()

            terminal = self._process(normalizer, decoder.flush())
            if terminal is not None:
                return self._result_for(terminal)

            # EOF without "done": never leave the caller waiting
            final = normalizer.finish()
            self._dispatch(final)
            return self._result_for(final)

        except asyncio.CancelledError:
            if handle.cancelled:
                return self._cancelled()
            raise
        except ProtocolError as e:
            return self._fail(StreamError(message=str(e), source=ErrorSource.PROTOCOL, status_code=e.status_code))
        except TransportError as e:
            return self._fail(StreamError(message=str(e), source=ErrorSource.TRANSPORT))

    async def _consume_push(self, client: AgentPushClient, token: CancelToken) -> SendResult:
        normalizer = EventNormalizer()

        try:
            async with contextlib.aclosing(client.listen()) as frames:
                async for frame in frames:
                    if token.cancelled:
                        break
                    # A push channel outlives individual rounds, so "done" does not stop it
                    self._process(normalizer, [frame])
        except asyncio.CancelledError:
            if token.cancelled:
                await client.disconnect()
                return self._cancelled()
            raise
        except TransportError as e:
            return self._fail(StreamError(message=str(e), source=ErrorSource.TRANSPORT))

        if token.cancelled:
            await client.disconnect()
            return self._cancelled()
        return SendResult(status=SendStatus.COMPLETED, turn=self.conversation.last_turn)

    def _process(self, normalizer: EventNormalizer, frames: Iterable[SSEFrame]) -> Optional[DomainEvent]:
        """Dispatch events for `frames`; return the first terminal event, if any."""
        for frame in frames:
            event = normalizer.normalize(frame)
            if event is None:
                continue
            self._dispatch(event)
            if is_terminal(event):
                return event
        return None

    def _dispatch(self, event: DomainEvent) -> None:
        self.conversation.apply(event)

        if event.kind == EventKind.HITL_REQUESTED:
            self.hitl.on_request(event.request)

        if self.observer is not None:
            try:
                self.observer(event)
            except Exception:
                logger.exception(f"Observer failed on {event.kind.value} event")

    def _result_for(self, event: DomainEvent) -> SendResult:
        turn = self.conversation.last_turn
        if event.kind == EventKind.STREAM_ERROR:
            return SendResult(status=SendStatus.FAILED, turn=turn, error=event)
        return SendResult(status=SendStatus.COMPLETED, turn=turn)

    def _fail(self, error: StreamError) -> SendResult:
        logger.warning(f"Stream failed ({error.source.value}): {error.message}")
        self._dispatch(error)
        return self._result_for(error)

    def _cancelled(self) -> SendResult:
        self.conversation.close_turn()
        return SendResult(status=SendStatus.CANCELLED, turn=self.conversation.last_turn)

    # ==========================================
    # HUMAN IN THE LOOP
    # ==========================================

    async def respond(
        self,
        action: HITLAction | str,
        message: Optional[str] = None,
        modified_plan: Optional[str] = None,
        modified_code: Optional[str] = None,
    ) -> HITLResponse:
        """Answer the outstanding HITL request. See HITLCoordinator.respond()."""
        return await self.hitl.respond(action, message, modified_plan, modified_code)

    async def approve(self, message: Optional[str] = None) -> HITLResponse:
        return await self.respond(HITLAction.APPROVE, message)

    async def reject(self, message: Optional[str] = None) -> HITLResponse:
        return await self.respond(HITLAction.REJECT, message)

    async def _send_hitl_response(self, response: HITLResponse) -> None:
        session = self._require_session()
        await self.api.send_hitl_response(session.id, response)
