"""Exception taxonomy for the DSAgent client."""
from __future__ import annotations

from typing import Optional


class DSAgentError(Exception):
    """Base class for all client errors."""


class TransportError(DSAgentError, ConnectionError):
    """Connection refused, reset or timed out."""

    def __init__(self, message: str, *, recoverable: bool = True, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.recoverable = recoverable
        self.__cause__ = cause


class ReconnectFailedError(TransportError):
    """All reconnection attempts were used up."""

    def __init__(self, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(
            f"Failed to reconnect after {attempts} attempts",
            recoverable=False,
            cause=cause,
        )
        self.attempts = attempts


class ProtocolError(DSAgentError):
    """The server answered with an HTTP status >= 400."""

    def __init__(self, status_code: int, detail: str = ""):
        message = f"Request failed ({status_code})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class HITLProtocolError(DSAgentError, ValueError):
    """A HITL response was rejected locally before reaching the server."""


class NoActiveSessionError(DSAgentError):
    """The operation needs a session but none is open."""

    def __init__(self, message: str = "No active session"):
        super().__init__(message)
