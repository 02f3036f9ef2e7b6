"""
DSAgent - streaming client for the DSAgent conversational agent service.

The client keeps a long-lived event stream with the remote agent, rebuilds
conversation state (turns, plans, code execution results) from it, and
arbitrates the human-in-the-loop approval protocol that can pause the
agent until a local decision is made.

Architecture:
- Transport: one SSE stream per sent message (or a persistent WebSocket)
- Decoder/Normalizer: raw chunks -> frames -> domain events
- AgentSession: owns session state, turn history and the HITL coordinator

Usage:
    dsagent chat                       # Interactive chat
    dsagent chat --hitl-mode plan_only # Ask for plan approval
    dsagent sessions                   # List sessions
"""

__version__ = "0.4.0"
__author__ = "DSAgent Team"
