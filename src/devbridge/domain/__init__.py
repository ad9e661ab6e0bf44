"""Domain models for devbridge.

This package contains the allowlist value objects and every message
exchanged over the execution and agent WebSocket protocols. All models
use Pydantic v2 for validation and serialization.
"""

from devbridge.domain.models import (
    AllowedCommandSpec,
    ArgumentPolicy,
    ErrorMessage,
    ExitMessage,
    OutboundMessage,
    OutputChunkMessage,
    SessionState,
    StderrMessage,
    StdoutMessage,
    ValidationResult,
)

__all__ = [
    "AllowedCommandSpec",
    "ArgumentPolicy",
    "ErrorMessage",
    "ExitMessage",
    "OutboundMessage",
    "OutputChunkMessage",
    "SessionState",
    "StderrMessage",
    "StdoutMessage",
    "ValidationResult",
]
