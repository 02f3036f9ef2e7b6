"""
SSE transport for the chat stream.

Each sent message opens one streaming POST whose response body is the
agent's event stream. Only one stream may be open per transport:
opening a new one cancels the previous one first (supersede).

Failures are split by cause:
- HTTP status >= 400 -> ProtocolError (terminal, never retried)
- connection refused/reset/timeout -> TransportError (recoverable)
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

import httpx

from dsagent.errors import ProtocolError, TransportError

logger = logging.getLogger(__name__)

# The agent may think (or wait on a HITL decision) for a long time
STREAM_TIMEOUT = httpx.Timeout(connect=10.0, read=None, write=30.0, pool=10.0)


class CancelToken:
    """Cooperative cancellation flag checked at each suspension point."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def error_detail(body: bytes) -> str:
    """Server-provided detail: the JSON "detail" field, or the raw body."""
    text = body.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except ValueError:
        return text
    if isinstance(data, dict) and data.get("detail"):
        detail = data["detail"]
        return detail if isinstance(detail, str) else json.dumps(detail)
    return text


class StreamHandle:
    """
    One open chat stream.

    Iterating chunks() performs the request and yields raw body bytes.
    cancel() sets the token and interrupts the task that is reading.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        session_id: str,
        message: str,
        token: Optional[CancelToken] = None,
    ):
        self.session_id = session_id
        self.message = message
        self.token = token or CancelToken()
        self.closed = False
        self._client = client
        self._reader: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def cancel(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self.token.cancelled:
            return
        self.token.cancel()
        reader = self._reader
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
        logger.debug(f"Cancelled stream for session {self.session_id}")

    async def chunks(self) -> AsyncIterator[bytes]:
        """
        Yield response body chunks as they arrive.

        Raises:
            ProtocolError: on HTTP status >= 400
            TransportError: on connection failure or timeout
        """
        if self.token.cancelled:
            self.closed = True
            return

        self._reader = asyncio.current_task()
        url = f"/api/sessions/{self.session_id}/chat/stream"
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }

        try:
            async with self._client.stream(
                "POST",
                url,
                json={"message": self.message},
                headers=headers,
                timeout=STREAM_TIMEOUT,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise ProtocolError(response.status_code, error_detail(body))

                async for chunk in response.aiter_bytes():
                    if self.token.cancelled:
                        return
                    yield chunk

        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}", cause=e) from e
        except httpx.TransportError as e:
            raise TransportError(f"Connection failed: {e}", cause=e) from e
        except httpx.StreamError as e:
            if self.token.cancelled:
                return
            raise TransportError(f"Stream interrupted: {e}", cause=e) from e
        finally:
            self.closed = True
            self._reader = None


class SSETransport:
    """
    Opens chat streams over a shared httpx.AsyncClient.

    Usage:
        transport = SSETransport(http_client)
        handle = transport.open(session_id, "hello")
        async for chunk in handle.chunks():
            frames = decoder.feed(chunk)
    """

    def __init__(self, client: httpx.AsyncClient):
        self._client = client
        self._active: Optional[StreamHandle] = None

    @property
    def active(self) -> Optional[StreamHandle]:
        """The open stream, if any."""
        if self._active is not None and not self._active.closed and not self._active.cancelled:
            return self._active
        return None

    def open(self, session_id: str, message: str, token: Optional[CancelToken] = None) -> StreamHandle:
        """Create the stream handle, cancelling any stream still open."""
        previous = self.active
        if previous is not None:
            logger.info(f"Superseding in-flight stream for session {previous.session_id}")
            previous.cancel()

        handle = StreamHandle(self._client, session_id, message, token)
        self._active = handle
        return handle

    def cancel(self, handle: Optional[StreamHandle] = None) -> None:
        target = handle or self._active
        if target is not None:
            target.cancel()
