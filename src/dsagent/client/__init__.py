"""DSAgent API Client - REST calls and the SSE chat transport."""

from dsagent.client.api_client import DSAgentAPIClient, SessionCreate, SessionUpdate
from dsagent.client.transport import CancelToken, SSETransport, StreamHandle

__all__ = [
    "DSAgentAPIClient",
    "SessionCreate",
    "SessionUpdate",
    "CancelToken",
    "SSETransport",
    "StreamHandle",
]
