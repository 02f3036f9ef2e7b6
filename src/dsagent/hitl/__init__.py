"""Human-in-the-loop approval protocol."""

from dsagent.hitl.coordinator import (
    HITLAction,
    HITLCoordinator,
    HITLKind,
    HITLRequest,
    HITLResponse,
    HITLState,
    build_response,
)

__all__ = [
    "HITLAction",
    "HITLCoordinator",
    "HITLKind",
    "HITLRequest",
    "HITLResponse",
    "HITLState",
    "build_response",
]
