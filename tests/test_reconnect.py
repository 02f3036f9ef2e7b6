"""Tests for the reconnection policy and the push client."""

import asyncio
import json

import pytest
import websockets

from dsagent.errors import ReconnectFailedError, TransportError
from dsagent.stream.events import AnswerReady, StreamComplete
from dsagent.stream.normalizer import EventNormalizer
from dsagent.ws import AgentPushClient, ConnectionStatus, ReconnectPolicy


def test_backoff_sequence():
    """Test the documented delay sequence and the cap."""
    policy = ReconnectPolicy(base_delay=1.0, max_delay=30.0, max_attempts=5)

    delays = []
    while (delay := policy.next_delay()) is not None:
        delays.append(delay)

    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert policy.exhausted
    assert policy.delay_for(6) == 30.0


def test_reset_after_success():
    """Test that a successful reconnection resets the attempt counter."""
    policy = ReconnectPolicy()
    policy.next_delay()
    policy.next_delay()

    policy.reset()

    assert policy.attempts == 0
    assert policy.next_delay() == 1.0


def test_delay_for_is_one_based():
    """Test that attempt numbers start at 1."""
    with pytest.raises(ValueError):
        ReconnectPolicy().delay_for(0)


def test_from_config():
    """Test building the policy from the client config."""
    policy = ReconnectPolicy.from_config({"reconnect": {"base_delay": 0.5, "max_attempts": 3}})

    assert policy.base_delay == 0.5
    assert policy.max_delay == 30.0
    assert policy.max_attempts == 3
    assert ReconnectPolicy.from_config(None) == ReconnectPolicy()


class FakeSocket:
    """Replays queued messages, then closes or blocks."""

    def __init__(self, messages, close_after=True):
        self.messages = list(messages)
        self.close_after = close_after
        self.closed = asyncio.Event()

    async def recv(self):
        if self.messages:
            return self.messages.pop(0)
        if self.close_after:
            raise websockets.ConnectionClosed(None, None)
        await self.closed.wait()
        raise websockets.ConnectionClosed(None, None)

    async def close(self):
        self.closed.set()


class FakeConnector:
    """Hands out scripted sockets; an exception in the script fails that attempt."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls = []

    async def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def message(event, **data):
    return json.dumps({"type": event, "data": data})


@pytest.mark.asyncio
async def test_push_client_reconnects_after_drop():
    """Test that an unexpected close is followed by a reconnection."""
    statuses = []
    connector = FakeConnector(
        FakeSocket([message("thinking", message="a")]),
        OSError("refused"),
        FakeSocket([message("llm_response", content="b")], close_after=False),
    )
    client = AgentPushClient(
        "http://testserver/ws",
        api_key="k",
        policy=ReconnectPolicy(base_delay=0, max_attempts=3),
        on_status=lambda status, details: statuses.append(status),
        connector=connector,
    )

    frames = []
    async for frame in client.listen():
        frames.append(frame)
        if len(frames) == 2:
            await client.disconnect()

    assert [f.event for f in frames] == ["thinking", "llm_response"]
    assert frames[1].data == {"content": "b"}
    assert statuses == [
        ConnectionStatus.CONNECTED,
        ConnectionStatus.RECONNECTING,
        ConnectionStatus.RECONNECTING,
        ConnectionStatus.RECONNECTED,
        ConnectionStatus.DISCONNECTED,
    ]
    assert client.policy.attempts == 0
    assert connector.calls[0][0] == "ws://testserver/ws"
    assert connector.calls[0][1]["additional_headers"] == {"X-API-Key": "k"}


@pytest.mark.asyncio
async def test_push_client_gives_up():
    """Test that exhausting attempts raises ReconnectFailedError."""
    statuses = []
    connector = FakeConnector(FakeSocket([]), OSError("down"), OSError("down"))
    client = AgentPushClient(
        "ws://testserver/ws",
        policy=ReconnectPolicy(base_delay=0, max_attempts=2),
        on_status=lambda status, details: statuses.append((status, details)),
        connector=connector,
    )

    with pytest.raises(ReconnectFailedError) as excinfo:
        async for _ in client.listen():
            pass

    assert excinfo.value.attempts == 2
    assert excinfo.value.recoverable is False
    assert statuses[-1][0] == ConnectionStatus.RECONNECT_FAILED
    assert statuses[-1][1]["attempts"] == 2


@pytest.mark.asyncio
async def test_initial_connect_failure_raises():
    """Test that the first connection is not retried."""
    client = AgentPushClient("ws://testserver/ws", connector=FakeConnector(OSError("refused")))

    with pytest.raises(TransportError):
        await client.connect()

    assert not client.is_connected


@pytest.mark.asyncio
async def test_unparseable_push_messages_dropped():
    """Test that junk messages are skipped."""
    socket = FakeSocket(["not json", json.dumps({"data": {}}), json.dumps({"type": "done"})], close_after=False)
    client = AgentPushClient("ws://testserver/ws", connector=FakeConnector(socket))

    frames = []
    async for frame in client.listen():
        frames.append(frame)
        await client.disconnect()

    assert [(f.event, f.data) for f in frames] == [("done", {})]


@pytest.mark.asyncio
async def test_push_only_shapes_mapped_to_stream_frames():
    """Test answer, complete and nested code results from the push channel."""
    socket = FakeSocket([
        json.dumps({"type": "thinking", "content": "Working"}),
        json.dumps({"type": "code_result", "result": {"success": True, "output": "2"}}),
        json.dumps({"type": "answer", "content": "The answer is 2"}),
        json.dumps({"type": "error", "message": "Kernel restarted"}),
        json.dumps({"type": "complete"}),
    ], close_after=False)
    client = AgentPushClient("ws://testserver/ws", connector=FakeConnector(socket))

    frames = []
    async for frame in client.listen():
        frames.append(frame)
        if len(frames) == 5:
            await client.disconnect()

    assert [(f.event, f.data) for f in frames] == [
        ("thinking", {"message": "Working"}),
        ("code_result", {"success": True, "stdout": "2", "error": None, "images": None}),
        ("round_complete", {"has_answer": True, "answer": "The answer is 2"}),
        ("error", {"error": "Kernel restarted"}),
        ("done", {}),
    ]

    normalizer = EventNormalizer()
    events = [normalizer.normalize(frame) for frame in frames]
    assert events[1].result.stdout == "2"
    assert events[2] == AnswerReady(text="The answer is 2")
    assert events[4] == StreamComplete()
