"""WebSocket endpoint module for devbridge.

Connection handlers for the two client protocols and the FastAPI
gateway that routes connections to them.

Public API:
    ConnectionHandler -- Abstract base class for per-connection handlers
    CommandSession -- Allowlisted command execution
    AgentSessionHandler -- Coding-agent CLI turns
    create_app -- Gateway application factory
"""

from devbridge.endpoint.base import ConnectionHandler, ProtocolError

__all__ = [
    "AgentSessionHandler",
    "CommandSession",
    "ConnectionHandler",
    "ProtocolError",
    "create_app",
]


def __getattr__(name: str) -> object:
    """Lazy import for components that pull in the web stack."""
    if name == "CommandSession":
        from devbridge.endpoint.terminal import CommandSession
        return CommandSession
    if name == "AgentSessionHandler":
        from devbridge.endpoint.agent import AgentSessionHandler
        return AgentSessionHandler
    if name == "create_app":
        from devbridge.endpoint.server import create_app
        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
