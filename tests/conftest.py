"""Pytest configuration and fixtures."""

import json

import httpx
import pytest

from dsagent.client import DSAgentAPIClient
from dsagent.core import config as config_module

SESSION_JSON = {
    "id": "sess-1",
    "name": "analysis",
    "status": "active",
    "model": "gpt-4o",
    "hitl_mode": "none",
    "created_at": "2024-05-01T10:00:00Z",
    "updated_at": "2024-05-01T10:00:00Z",
}


def sse(*frames):
    """Encode (event, data) pairs as an SSE body."""
    lines = []
    for event, data in frames:
        lines.append(f"event: {event}\n")
        lines.append(f"data: {json.dumps(data)}\n\n")
    return "".join(lines).encode("utf-8")


@pytest.fixture
def session_json():
    """A session as returned by the server."""
    return dict(SESSION_JSON)


@pytest.fixture
def make_sse():
    """Build SSE response bodies from (event, data) pairs."""
    return sse


@pytest.fixture
def api_factory():
    """Create API clients backed by an httpx.MockTransport handler."""

    def factory(handler):
        return DSAgentAPIClient(
            "http://testserver",
            api_key="test-key",
            transport=httpx.MockTransport(handler),
        )

    return factory


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point config files at a temp dir and clear DSAGENT_* env vars."""
    home = tmp_path / "home"
    project = tmp_path / "project"
    project.mkdir()

    monkeypatch.setattr(config_module, "DSAGENT_HOME", home)
    monkeypatch.setattr(config_module, "GLOBAL_CONFIG_FILE", home / "config.json")
    monkeypatch.delenv("DSAGENT_SERVER_URL", raising=False)
    monkeypatch.delenv("DSAGENT_API_KEY", raising=False)
    monkeypatch.chdir(project)

    yield project
