"""
Persistent WebSocket connection for server-pushed agent events.

Unlike the per-message SSE stream, this connection stays open across
agent rounds and is re-established automatically after an unexpected
close, following a ReconnectPolicy. An intentional disconnect() never
triggers reconnection.

Messages are JSON objects with a "type" field. Most use the same names
and payloads as the SSE stream ("thinking", "plan", "hitl_request", ...).
The push-only shapes ("answer", "complete", a nested code "result") are
mapped onto those, so the same normalizer can handle both.
"""
from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple

import websockets

from dsagent.errors import ReconnectFailedError, TransportError
from dsagent.stream.decoder import SSEFrame
from dsagent.ws.backoff import ReconnectPolicy

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    """Connection lifecycle notifications."""
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    RECONNECTED = "reconnected"
    RECONNECT_FAILED = "reconnect_failed"
    DISCONNECTED = "disconnected"


# Called with the new status and details (attempt, delay, error)
StatusCallback = Callable[[ConnectionStatus, Dict[str, Any]], None]

# Opens a connection; defaults to websockets.connect
Connector = Callable[..., Awaitable[Any]]

CONNECT_ERRORS = (OSError, asyncio.TimeoutError, websockets.WebSocketException)


def _answer(data: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    return "round_complete", {"has_answer": True, "answer": data.get("content")}


def _complete(data: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    return "done", {}


def _thinking(data: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    if data.get("message") is None and "content" in data:
        return "thinking", {"message": data["content"]}
    return "thinking", data


def _code_result(data: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    result = data.get("result")
    if not isinstance(result, dict):
        return "code_result", data
    return "code_result", {
        "success": result.get("success"),
        "stdout": result.get("stdout", result.get("output")),
        "error": result.get("error"),
        "images": result.get("images"),
    }


def _error(data: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    if data.get("error") is None and "message" in data:
        return "error", {"error": data["message"]}
    return "error", data


# Push-only message shapes, mapped onto the stream's frame types.
# Messages already in stream shape pass through unchanged.
PUSH_ADAPTERS: Dict[str, Callable[[Dict[str, Any]], Tuple[str, Dict[str, Any]]]] = {
    "answer": _answer,
    "complete": _complete,
    "thinking": _thinking,
    "code_result": _code_result,
    "error": _error,
}


class AgentPushClient:
    """
    WebSocket client for pushed agent events.

    Usage:
        client = AgentPushClient("ws://localhost:8000/ws/sessions/abc")
        await client.connect()
        async for frame in client.listen():
            event = normalizer.normalize(frame)
        await client.disconnect()
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        policy: Optional[ReconnectPolicy] = None,
        on_status: Optional[StatusCallback] = None,
        connector: Optional[Connector] = None,
        open_timeout: float = 10.0,
    ):
        self.url = url.replace("https://", "wss://").replace("http://", "ws://")
        self.api_key = api_key
        self.policy = policy or ReconnectPolicy()
        self.on_status = on_status
        self.open_timeout = open_timeout
        self._connector = connector or websockets.connect

        self._ws: Optional[Any] = None
        self._intentional_close = False

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        """Open the connection. Raises TransportError on failure."""
        self._intentional_close = False
        try:
            await self._open()
        except CONNECT_ERRORS as e:
            raise TransportError(f"Connection failed: {e}", cause=e) from e

        self.policy.reset()
        logger.info(f"Connected to {self.url}")
        self._emit(ConnectionStatus.CONNECTED)

    async def disconnect(self) -> None:
        """Close the connection without reconnecting."""
        self._intentional_close = True
        await self._close_socket()
        logger.info("Disconnected push channel")
        self._emit(ConnectionStatus.DISCONNECTED)

    async def listen(self) -> AsyncIterator[SSEFrame]:
        """
        Yield frames until disconnect() is called.

        Raises:
            ReconnectFailedError: if the connection dropped and could not
                be re-established within the policy's attempts
        """
        if self._ws is None:
            await self.connect()

        while not self._intentional_close:
            try:
                raw = await self._ws.recv()
            except websockets.ConnectionClosed as e:
                self._ws = None
                if self._intentional_close:
                    break
                logger.warning(f"Push channel closed unexpectedly: {e}")
                await self._reconnect(e)
                continue

            frame = self._parse(raw)
            if frame is not None:
                yield frame

    async def _reconnect(self, cause: BaseException) -> None:
        last_error: BaseException = cause

        while True:
            delay = self.policy.next_delay()
            if delay is None:
                logger.error(f"Failed to reconnect after {self.policy.max_attempts} attempts")
                self._emit(ConnectionStatus.RECONNECT_FAILED, attempts=self.policy.max_attempts, error=str(last_error))
                raise ReconnectFailedError(self.policy.max_attempts, cause=last_error)

            attempt = self.policy.attempts
            self._emit(ConnectionStatus.RECONNECTING, attempt=attempt, delay=delay)
            await asyncio.sleep(delay)

            if self._intentional_close:
                return

            try:
                await self._open()
            except CONNECT_ERRORS as e:
                last_error = e
                logger.warning(f"Reconnect attempt {attempt} failed: {e}")
                continue

            logger.info(f"Reconnected (attempt {attempt})")
            self.policy.reset()
            self._emit(ConnectionStatus.RECONNECTED, attempt=attempt)
            return

    async def _open(self) -> None:
        headers = {"X-API-Key": self.api_key} if self.api_key else None
        self._ws = await asyncio.wait_for(
            self._connector(
                self.url,
                additional_headers=headers,
                ping_interval=30,
                ping_timeout=60,
                close_timeout=10,
            ),
            timeout=self.open_timeout,
        )

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except CONNECT_ERRORS as e:
            logger.debug(f"Error while closing push channel: {e}")

    def _parse(self, raw: Any) -> Optional[SSEFrame]:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.debug(f"Dropping unparseable push message: {e}")
            return None

        if not isinstance(message, dict) or not message.get("type"):
            logger.debug("Dropping push message without a type")
            return None

        event = message["type"]
        data = message.get("data")
        if not isinstance(data, dict):
            data = {k: v for k, v in message.items() if k != "type"}

        adapter = PUSH_ADAPTERS.get(event)
        if adapter is not None:
            event, data = adapter(data)
        return SSEFrame(event=event, data=data)

    def _emit(self, status: ConnectionStatus, **details: Any) -> None:
        if self.on_status:
            self.on_status(status, details)
