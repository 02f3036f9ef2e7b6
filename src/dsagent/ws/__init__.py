"""
WebSocket push channel.

This module provides:
- AgentPushClient: persistent connection with automatic reconnection
- ReconnectPolicy: exponential backoff schedule
"""

from dsagent.ws.backoff import ReconnectPolicy
from dsagent.ws.client import AgentPushClient, ConnectionStatus

__all__ = ["AgentPushClient", "ConnectionStatus", "ReconnectPolicy"]
