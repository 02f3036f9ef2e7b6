"""
Incremental SSE frame decoder.

Turns an unbounded sequence of byte/text chunks into (event, data)
frames. Chunk boundaries are arbitrary: a chunk may end in the middle
of a line, a field or a multi-byte character, so the decoder keeps the
trailing partial line until the next chunk completes it.

Wire format:
    event: plan
    data: {"steps": [...], "total_steps": 3}

Each non-empty `data:` line is parsed as JSON and emitted immediately,
paired with the most recent `event:` type. A blank line ends the frame
and resets the type to "message".
"""
from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

logger = logging.getLogger(__name__)

DEFAULT_EVENT_TYPE = "message"


@dataclass(frozen=True)
class SSEFrame:
    """One decoded (event-type, payload) unit."""
    event: str
    data: Dict[str, Any] = field(default_factory=dict)


class FrameDecoder:
    """
    Stateful SSE line parser. Create one per stream (or call reset()).

    Usage:
        decoder = FrameDecoder()
        async for chunk in response.aiter_bytes():
            for frame in decoder.feed(chunk):
                handle(frame)
        for frame in decoder.flush():
            handle(frame)
    """

    def __init__(self):
        self._buffer = ""
        self._current_event = DEFAULT_EVENT_TYPE
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        """Trailing text not yet terminated by a newline."""
        return self._buffer

    def reset(self) -> None:
        self._buffer = ""
        self._current_event = DEFAULT_EVENT_TYPE
        self._utf8.reset()

    def feed(self, chunk: Union[bytes, str]) -> List[SSEFrame]:
        """Append a chunk and return every frame it completed."""
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)

        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        frames = []
        for line in lines:
            frame = self._process_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> List[SSEFrame]:
        """Process whatever is left once the stream has ended."""
        tail = self._utf8.decode(b"", final=True)
        remaining = self._buffer + tail
        self._buffer = ""

        frames = []
        for line in remaining.split("\n"):
            frame = self._process_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def _process_line(self, line: str) -> SSEFrame | None:
        line = line.rstrip("\r")

        if not line:
            # Blank line = end of frame
            self._current_event = DEFAULT_EVENT_TYPE
            return None

        if line.startswith(":"):
            # Comment / keep-alive
            return None

        if line.startswith("event:"):
            self._current_event = _field_value(line, "event:").strip() or DEFAULT_EVENT_TYPE
            return None

        if line.startswith("data:"):
            payload = _field_value(line, "data:")
            if not payload.strip():
                return None
            try:
                data = json.loads(payload)
            except json.JSONDecodeError as e:
                logger.debug(f"Dropping unparseable {self._current_event} payload: {e}")
                return None
            if not isinstance(data, dict):
                logger.debug(f"Dropping non-object {self._current_event} payload: {payload[:80]}")
                return None
            return SSEFrame(event=self._current_event, data=data)

        # id:, retry: and unknown fields carry nothing we use
        return None


def _field_value(line: str, prefix: str) -> str:
    value = line[len(prefix):]
    # A single space after the colon is part of the syntax, not the value
    if value.startswith(" "):
        value = value[1:]
    return value
