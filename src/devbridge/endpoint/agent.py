"""Agent-session handler for the coding-agent WebSocket.

Each conversational turn is an independent agent CLI process run in
non-interactive mode with streaming JSON output. The first turn carries
no session id; the CLI reports one inside its own output stream, and
the client passes it back on every later prompt so the CLI resumes the
same conversation.

Turns are not serialized: two prompts for the same session id run as
two concurrent processes.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from pathlib import Path
from typing import Any

from devbridge.config.settings import DEFAULT_INIT_PROMPT
from devbridge.domain.models import OutputChunkMessage, SendPromptRequest, StartSessionRequest
from devbridge.endpoint.base import ConnectionHandler, ProtocolError, SendFn, decode_message
from devbridge.endpoint.ndjson import NdjsonDecoder

logger = logging.getLogger(__name__)

DEFAULT_AGENT_COMMAND = "claude"
DEFAULT_ALLOWED_TOOLS = "Read,Write,Edit,Execute"
DEFAULT_EXTRA_ARGS = ("--verbose",)
READ_CHUNK_SIZE = 65536

# Field in a CLI stream event that carries the conversation id.
SESSION_ID_FIELD = "session_id"


class _Turn:
    """Mutable state for one spawned agent process."""

    def __init__(self, session_id: str | None) -> None:
        self.session_id = session_id
        # Only a fresh session has to look for its id in the stream.
        self.discovering = session_id is None


class AgentSessionHandler(ConnectionHandler):
    """Spawns one agent CLI process per turn and relays its events."""

    _MESSAGES = {"start_session": StartSessionRequest, "send_prompt": SendPromptRequest}

    def __init__(
        self,
        send: SendFn,
        working_directory: Path | str,
        command: str = DEFAULT_AGENT_COMMAND,
        allowed_tools: str = DEFAULT_ALLOWED_TOOLS,
        init_prompt: str = DEFAULT_INIT_PROMPT,
        extra_args: tuple[str, ...] | list[str] = DEFAULT_EXTRA_ARGS,
    ) -> None:
        super().__init__(send)
        self._working_directory = Path(working_directory)
        self._command = command
        self._allowed_tools = allowed_tools
        self._init_prompt = init_prompt
        self._extra_args = tuple(extra_args)
        self._last_session_id: str | None = None

    @property
    def last_session_id(self) -> str | None:
        """Most recent session id discovered by a ``start_session`` turn."""
        return self._last_session_id

    async def handle_message(self, raw: str | bytes) -> None:
        try:
            message = decode_message(raw, self._MESSAGES)
        except ProtocolError as e:
            logger.warning("Rejected agent message: %s", e)
            await self.send_error(str(e))
            return

        if isinstance(message, StartSessionRequest):
            await self.start_session()
        elif not message.session_id or not message.prompt:
            await self.send_error("Missing sessionId or prompt for send_prompt")
        else:
            await self.send_prompt(message.session_id, message.prompt)

    def build_args(self, prompt: str, resume: str | None = None) -> list[str]:
        """Build the full argv for one CLI invocation."""
        args = [self._command, "-p", prompt, "--allowedTools", self._allowed_tools]
        if resume is not None:
            args.extend(["--resume", resume])
        args.extend(["--output-format", "stream-json"])
        args.extend(self._extra_args)
        return args

    async def start_session(self) -> None:
        """Start a new conversation; its id is discovered from the output."""
        logger.info("Starting agent session")
        await self._start_turn(self.build_args(self._init_prompt), _Turn(None))

    async def send_prompt(self, session_id: str, prompt: str) -> None:
        """Run one more turn of an existing conversation."""
        logger.info("Sending prompt to agent session %s", session_id)
        await self._start_turn(self.build_args(prompt, resume=session_id), _Turn(session_id))

    async def cleanup(self) -> None:
        # Turn processes are short-lived and finish on their own.
        self._closed = True
        if self._tasks:
            logger.info("Connection closed with %d agent turn(s) still running", len(self._tasks))

    async def _start_turn(self, argv: list[str], turn: _Turn) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self._working_directory),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            logger.error("Failed to start agent CLI %s: %s", self._command, e)
            await self.send_error(f"Failed to start agent CLI: {e}")
            return

        logger.info("Agent CLI started (pid=%d)", process.pid)
        self._spawn_task(self._run_turn(process, turn))

    async def _run_turn(self, process: asyncio.subprocess.Process, turn: _Turn) -> None:
        await asyncio.gather(
            self._relay_events(process.stdout, turn),
            self._log_stderr(process.stderr, process.pid),
        )
        returncode = await process.wait()
        logger.info("Agent CLI pid=%d exited with code %s", process.pid, returncode)
        if returncode != 0:
            await self.send_error(f"Agent CLI exited with code {returncode}")

    async def _relay_events(self, stream: asyncio.StreamReader | None, turn: _Turn) -> None:
        if stream is None:
            return
        text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        decoder = NdjsonDecoder()
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for event in decoder.feed(text_decoder.decode(chunk)):
                await self._forward(event, turn)

        tail = decoder.feed(text_decoder.decode(b"", final=True))
        for event in tail + decoder.flush():
            await self._forward(event, turn)

    async def _forward(self, event: Any, turn: _Turn) -> None:
        if turn.discovering and isinstance(event, dict) and SESSION_ID_FIELD in event:
            turn.discovering = False
            value = event[SESSION_ID_FIELD]
            if not isinstance(value, str) or not value:
                logger.warning("Agent CLI reported an invalid session id: %r", value)
                await self.send_error("Invalid sessionId returned from agent CLI")
                return
            turn.session_id = value
            self._last_session_id = value
            logger.info("Discovered agent session %s", value)

        await self.send(OutputChunkMessage(output=event, session_id=turn.session_id))

    @staticmethod
    async def _log_stderr(stream: asyncio.StreamReader | None, pid: int) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            logger.warning(
                "Agent CLI pid=%d stderr: %s", pid, chunk.decode("utf-8", errors="replace").rstrip()
            )
