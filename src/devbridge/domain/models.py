"""Core domain models for the devbridge daemon.

These models represent the data flowing through the system: allowlist
entries and validation decisions, and the JSON messages exchanged with
the remote client over the two WebSocket protocols (command execution
and agent sessions).
"""

from __future__ import annotations

import enum
import json
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ArgumentPolicy(str, enum.Enum):
    """What a command accepts after its name."""

    NONE = "none"  # Bare command only
    ANY = "any"  # Any argument string
    PATTERNS = "patterns"  # Argument string must fully match one pattern


class SessionState(str, enum.Enum):
    """State of a command-execution session."""

    IDLE = "idle"
    RUNNING = "running"


# ---------------------------------------------------------------------------
# Allowlist Models
# ---------------------------------------------------------------------------


class AllowedCommandSpec(BaseModel):
    """One entry of the command allow table."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(description="Executable name as typed by the client")
    description: str = Field(default="", description="Human-readable summary")
    policy: ArgumentPolicy = Field(default=ArgumentPolicy.NONE)
    patterns: tuple[re.Pattern[str], ...] = Field(
        default=(), description="Argument patterns, matched against the whole argument string"
    )


class ValidationResult(BaseModel):
    """Outcome of checking a command line against the allowlist."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Wire Messages
# ---------------------------------------------------------------------------


class WireMessage(BaseModel):
    """Base for every JSON message on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# Execution protocol: client -> server


class ExecuteRequest(WireMessage):
    type: Literal["execute"] = "execute"
    command: str = ""


class CancelRequest(WireMessage):
    type: Literal["cancel"] = "cancel"


# Execution protocol: server -> client


class StdoutMessage(WireMessage):
    type: Literal["stdout"] = "stdout"
    data: str


class StderrMessage(WireMessage):
    type: Literal["stderr"] = "stderr"
    data: str


class ExitMessage(WireMessage):
    type: Literal["exit"] = "exit"
    code: int


class ErrorMessage(WireMessage):
    """Shared by both protocols."""

    type: Literal["error"] = "error"
    message: str


# Agent protocol: client -> server


class StartSessionRequest(WireMessage):
    type: Literal["start_session"] = "start_session"


class SendPromptRequest(WireMessage):
    type: Literal["send_prompt"] = "send_prompt"
    session_id: str = Field(default="", alias="sessionId")
    prompt: str = ""


# Agent protocol: server -> client


class OutputChunkMessage(WireMessage):
    """One event from the agent CLI, forwarded uninterpreted.

    ``output`` may legitimately be JSON ``null``, so only ``sessionId``
    is dropped when absent.
    """

    type: Literal["output_chunk"] = "output_chunk"
    output: Any = None
    session_id: str | None = Field(default=None, alias="sessionId")

    def to_json(self) -> str:
        data = self.model_dump(by_alias=True)
        if data["sessionId"] is None:
            del data["sessionId"]
        return json.dumps(data)


OutboundMessage = (
    StdoutMessage | StderrMessage | ExitMessage | ErrorMessage | OutputChunkMessage
)
