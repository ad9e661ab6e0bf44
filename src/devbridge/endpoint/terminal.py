"""Command-execution session for the terminal WebSocket.

Runs one allowlisted command at a time for a connection and streams its
stdout/stderr back as they arrive. Commands are executed without a
shell: the command line is split into argv here and handed straight to
the OS, with a minimal environment, in the project directory.

Every timer and delayed kill is bound to the process instance it was
created for, never to the session's "current process" slot, so a late
callback can never act on a later command.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from pathlib import Path

from devbridge.domain.models import (
    CancelRequest,
    ExecuteRequest,
    ExitMessage,
    SessionState,
    StderrMessage,
    StdoutMessage,
)
from devbridge.endpoint.base import ConnectionHandler, ProtocolError, SendFn, decode_message
from devbridge.security.allowlist import DEFAULT_ALLOWLIST, Allowlist

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
DEFAULT_KILL_GRACE = 5.0
DEFAULT_ENV_PASSTHROUGH = ("PATH", "HOME", "USER")
READ_CHUNK_SIZE = 4096

# How long to keep relaying output once the process has exited.
OUTPUT_DRAIN_TIMEOUT = 1.0

# Reported when a process was terminated by a signal.
SIGNAL_EXIT_CODE = 128

CANCEL_NOTICE = "\n[Command cancelled by user]\n"


def split_command(command_line: str) -> list[str]:
    """Split a command line into argv, honouring single and double quotes.

    A quote opens a quoted section that only the same quote character
    closes; the quote characters themselves are dropped. Unquoted spaces
    separate tokens. No other shell syntax is interpreted.
    """
    args: list[str] = []
    current: list[str] = []
    quote_char: str | None = None

    for char in command_line:
        if quote_char is None and char in ("'", '"'):
            quote_char = char
        elif char == quote_char:
            quote_char = None
        elif char == " " and quote_char is None:
            if current:
                args.append("".join(current))
                current = []
        else:
            current.append(char)

    if current:
        args.append("".join(current))
    return args


def exit_code(returncode: int | None) -> int:
    """Map an asyncio return code onto the code reported to the client.

    asyncio reports death-by-signal as a negative return code.
    """
    if returncode is None:
        return 1
    if returncode < 0:
        return SIGNAL_EXIT_CODE
    return returncode


def _send_signal(process: asyncio.subprocess.Process, signum: int) -> None:
    if process.returncode is not None:
        return
    try:
        process.send_signal(signum)
    except ProcessLookupError:
        pass


class CommandSession(ConnectionHandler):
    """Per-connection state machine: Idle <-> Running.

    Holds at most one live process. Transitions back to Idle only when
    that process's exit has been observed, whatever ended it.
    """

    _MESSAGES = {"execute": ExecuteRequest, "cancel": CancelRequest}

    def __init__(
        self,
        send: SendFn,
        working_directory: Path | str,
        allowlist: Allowlist = DEFAULT_ALLOWLIST,
        timeout: float = DEFAULT_TIMEOUT,
        kill_grace: float = DEFAULT_KILL_GRACE,
        env_passthrough: tuple[str, ...] | list[str] = DEFAULT_ENV_PASSTHROUGH,
    ) -> None:
        super().__init__(send)
        self._working_directory = Path(working_directory)
        self._allowlist = allowlist
        self._timeout = timeout
        self._kill_grace = kill_grace
        self._env_passthrough = tuple(env_passthrough)
        self._process: asyncio.subprocess.Process | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def state(self) -> SessionState:
        return SessionState.IDLE if self._process is None else SessionState.RUNNING

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        return self._process

    async def handle_message(self, raw: str | bytes) -> None:
        try:
            message = decode_message(raw, self._MESSAGES)
        except ProtocolError as e:
            await self.send_error(str(e))
            return

        if isinstance(message, ExecuteRequest):
            if not message.command.strip():
                await self.send_error("No command provided")
                return
            await self.execute(message.command)
        else:
            await self.cancel()

    async def execute(self, command_line: str) -> None:
        """Validate and start ``command_line``; output streams in the background."""
        if self._process is not None:
            await self.send_error("A command is already running. Cancel it first.")
            return

        result = self._allowlist.validate(command_line)
        if not result.allowed:
            await self.send_error(result.reason or "Command not allowed")
            return

        argv = split_command(command_line)
        if not argv:
            await self.send_error("Invalid command")
            return

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self._working_directory),
                env=self._build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            logger.warning("Failed to spawn %s: %s", argv, e)
            await self.send_error(f"Failed to execute command: {e}")
            return

        logger.info("Started %s (pid=%d)", argv, process.pid)
        self._process = process
        timer = asyncio.get_running_loop().call_later(
            self._timeout, self._on_timeout, process
        )
        self._timer = timer
        self._spawn_task(self._supervise(process, timer))

    async def cancel(self) -> None:
        """Terminate the running command, escalating to SIGKILL after the grace period."""
        process = self._process
        if process is None:
            await self.send_error("No command is currently running")
            return

        logger.warning("Cancelling pid=%d at client request", process.pid)
        self._terminate(process)
        await self.send(StderrMessage(data=CANCEL_NOTICE))

    async def cleanup(self) -> None:
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        process = self._process
        if process is not None:
            logger.info("Connection closed, terminating pid=%d", process.pid)
            self._terminate(process)

    def _build_env(self) -> dict[str, str]:
        return {name: os.environ[name] for name in self._env_passthrough if name in os.environ}

    def _terminate(self, process: asyncio.subprocess.Process) -> None:
        _send_signal(process, signal.SIGTERM)
        asyncio.get_running_loop().call_later(self._kill_grace, self._force_kill, process)

    @staticmethod
    def _force_kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            logger.warning("pid=%d ignored SIGTERM, sending SIGKILL", process.pid)
            _send_signal(process, signal.SIGKILL)

    def _on_timeout(self, process: asyncio.subprocess.Process) -> None:
        if process is not self._process or process.returncode is not None:
            return
        logger.warning("pid=%d timed out after %gs", process.pid, self._timeout)
        _send_signal(process, signal.SIGTERM)
        self._spawn_task(
            self.send_error(f"Command timed out after {self._timeout:g} seconds")
        )

    async def _supervise(
        self, process: asyncio.subprocess.Process, timer: asyncio.TimerHandle
    ) -> None:
        pumps = [
            asyncio.ensure_future(self._pump(process.stdout, StdoutMessage)),
            asyncio.ensure_future(self._pump(process.stderr, StderrMessage)),
        ]
        try:
            # A background grandchild may hold the pipes open long after
            # the process itself has exited, so exit is driven by wait().
            returncode = await process.wait()
        finally:
            timer.cancel()
            if self._process is process:
                self._process = None
                self._timer = None
            _, pending = await asyncio.wait(pumps, timeout=OUTPUT_DRAIN_TIMEOUT)
            for pump in pending:
                pump.cancel()
            if pending:
                logger.warning(
                    "pid=%d exited with its output still open, dropping the rest",
                    process.pid,
                )

        code = exit_code(returncode)
        logger.info("pid=%d exited with code %d (returncode=%s)", process.pid, code, returncode)
        await self.send(ExitMessage(code=code))

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        message_cls: type[StdoutMessage] | type[StderrMessage],
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                await self.send(message_cls(data=text))
        tail = decoder.decode(b"", final=True)
        if tail:
            await self.send(message_cls(data=tail))
