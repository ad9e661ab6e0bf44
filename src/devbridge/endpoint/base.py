"""Abstract base class for per-connection protocol handlers.

The gateway creates exactly one handler per WebSocket connection and
feeds it every inbound text frame. Handlers never block on a process:
spawning returns immediately and process output is relayed by tasks
the handler owns. Outbound messages go through an async ``send``
callable supplied by the gateway.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from pydantic import BaseModel, ValidationError

from devbridge.domain.models import ErrorMessage, OutboundMessage

logger = logging.getLogger(__name__)

SendFn = Callable[[OutboundMessage], Awaitable[None]]


class ProtocolError(Exception):
    """Raised when an inbound message cannot be decoded."""


def decode_message(raw: str | bytes, models: dict[str, type[BaseModel]]) -> BaseModel:
    """Decode one inbound frame into the model registered for its ``type``.

    Raises:
        ProtocolError: If the frame is not a JSON object, its type is
            unknown, or its fields fail validation.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Failed to parse message: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError("Failed to parse message: expected a JSON object")

    msg_type = data.get("type")
    model = models.get(msg_type) if isinstance(msg_type, str) else None
    if model is None:
        raise ProtocolError(f"Unknown message type: {msg_type}")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Failed to parse message: {e.error_count()} invalid field(s)") from e


class ConnectionHandler(ABC):
    """Handles one connection's protocol messages and owned processes."""

    def __init__(self, send: SendFn) -> None:
        self._send_fn = send
        self._closed = False
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def handle_message(self, raw: str | bytes) -> None:
        """Process one inbound frame.

        Must return promptly; long-running work is delegated to tasks
        started with :meth:`_spawn_task`. Never raises for bad input;
        problems are reported to the client as ``error`` messages.
        """
        ...

    @abstractmethod
    async def cleanup(self) -> None:
        """Release resources when the connection closes.

        Called exactly once by the gateway. No messages may be sent
        afterwards.
        """
        ...

    async def send(self, message: OutboundMessage) -> None:
        if self._closed:
            return
        await self._send_fn(message)

    async def send_error(self, message: str) -> None:
        await self.send(ErrorMessage(message=message))

    def _spawn_task(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Handler task failed", exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Wait until every task started by this handler has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
