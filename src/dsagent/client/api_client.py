"""
DSAgent API Client - REST calls around the streaming protocol.

Covers the session lifecycle, turn history replay and HITL responses.
The chat stream itself lives in dsagent.client.transport and shares this
client's httpx.AsyncClient (base URL, API key header, connection pool).
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from dsagent.core.config import DEFAULT_MODEL, DEFAULT_SERVER_URL
from dsagent.errors import ProtocolError, TransportError
from dsagent.hitl.coordinator import HITLResponse
from dsagent.state.models import HITLMode, Session, SessionStatus, Turn, TurnsPage
from dsagent.client.transport import SSETransport, error_detail

logger = logging.getLogger(__name__)


class SessionCreate(BaseModel):
    """Body of the session-create call."""
    name: str
    model: str = DEFAULT_MODEL
    hitl_mode: HITLMode = HITLMode.NONE


class SessionUpdate(BaseModel):
    """Partial session update. Only fields that are set are sent."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    status: Optional[SessionStatus] = None
    model: Optional[str] = None
    hitl_mode: Optional[HITLMode] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class DSAgentAPIClient:
    """
    Thin client for the DSAgent server API.

    Usage:
        async with DSAgentAPIClient("http://localhost:8000", api_key="...") as api:
            session = await api.create_session("analysis")
            handle = api.transport.open(session.id, "hello")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or DEFAULT_SERVER_URL).rstrip("/")
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=self._build_headers(),
            transport=transport,
        )
        self.transport = SSETransport(self._client)

    def _build_headers(self) -> Dict[str, str]:
        """Build request headers."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    async def close(self) -> None:
        self.transport.cancel()
        await self._client.aclose()

    async def __aenter__(self) -> "DSAgentAPIClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}", cause=e) from e
        except httpx.TransportError as e:
            raise TransportError(f"Cannot reach DSAgent server: {e}", cause=e) from e

        if response.status_code >= 400:
            raise ProtocolError(response.status_code, error_detail(response.content))
        return response

    # ==========================================
    # SERVER
    # ==========================================

    async def health(self) -> bool:
        """True if the server answers its health check."""
        try:
            await self._request("GET", "/health")
            return True
        except (TransportError, ProtocolError) as e:
            logger.debug(f"Health check failed: {e}")
            return False

    # ==========================================
    # SESSIONS
    # ==========================================

    async def create_session(
        self,
        name: Optional[str] = None,
        model: Optional[str] = None,
        hitl_mode: HITLMode | str = HITLMode.NONE,
    ) -> Session:
        """
        Create a new session.

        Args:
            name: Display name (defaults to a timestamped name)
            model: Model identifier
            hitl_mode: When the agent must pause for approval

        Returns:
            The created Session
        """
        body = SessionCreate(
            name=name or f"Session {datetime.now().isoformat()}",
            model=model or DEFAULT_MODEL,
            hitl_mode=HITLMode(hitl_mode),
        )
        response = await self._request("POST", "/api/sessions", json=body.model_dump(mode="json"))
        return Session.from_dict(response.json())

    async def get_session(self, session_id: str) -> Session:
        response = await self._request("GET", f"/api/sessions/{session_id}")
        return Session.from_dict(response.json())

    async def list_sessions(self) -> List[Session]:
        response = await self._request("GET", "/api/sessions")
        data = response.json()
        if isinstance(data, dict):
            data = data.get("sessions") or []
        return [Session.from_dict(item) for item in data]

    async def update_session(self, session_id: str, **fields: Any) -> Session:
        """
        Change some of name, status, model, hitl_mode.

        Only the fields passed are sent; the server leaves the rest alone.
        """
        update = SessionUpdate(**fields)
        response = await self._request("PATCH", f"/api/sessions/{session_id}", json=update.to_payload())
        return Session.from_dict(response.json())

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/api/sessions/{session_id}")

    # ==========================================
    # HISTORY
    # ==========================================

    async def get_turns(self, session_id: str, limit: int = 50, offset: int = 0) -> TurnsPage:
        """Fetch one page of turn history for replay."""
        response = await self._request(
            "GET",
            f"/api/sessions/{session_id}/turns",
            params={"limit": limit, "offset": offset},
        )
        data = response.json()
        turns = [Turn.from_dict(item) for item in data.get("turns") or []]
        return TurnsPage(
            turns=turns,
            total=int(data.get("total", len(turns))),
            has_more=bool(data.get("has_more", False)),
        )

    # ==========================================
    # HUMAN IN THE LOOP
    # ==========================================

    async def send_hitl_response(self, session_id: str, response: HITLResponse) -> None:
        """Send a validated HITL decision."""
        await self._request("POST", f"/api/sessions/{session_id}/hitl/respond", json=response.to_payload())
        logger.debug(f"HITL response delivered for session {session_id}: {response.action.value}")
