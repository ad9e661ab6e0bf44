"""FastAPI gateway for the devbridge daemon.

Accepts WebSocket connections and routes each one, by path, to a fresh
protocol handler:

    WS   /terminal/ws  -> CommandSession (allowlisted shell commands)
    WS   /claude/ws    -> AgentSessionHandler (coding-agent CLI turns)
    WS   anything else -> closed with 1008 (policy violation)

    GET  /health       -> {"status": "ok", "root": ..., "connections": n}
    GET  /commands     -> {"commands": {name: description}}

Keepalive pings are protocol-level WebSocket pings sent by uvicorn at
the configured interval, independent of handler state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field
from starlette.websockets import WebSocketState

from devbridge.config.settings import Settings
from devbridge.domain.models import OutboundMessage
from devbridge.endpoint.agent import AgentSessionHandler
from devbridge.endpoint.base import ConnectionHandler, SendFn
from devbridge.endpoint.terminal import CommandSession
from devbridge.security.allowlist import DEFAULT_ALLOWLIST

logger = logging.getLogger(__name__)

TERMINAL_PATH = "/terminal/ws"
AGENT_PATH = "/claude/ws"

HandlerFactory = Callable[[SendFn], ConnectionHandler]


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str = "ok"
    root: str = Field(description="Project directory commands run in")
    connections: int = Field(default=0, description="Open WebSocket connections")


class CommandsResponse(BaseModel):
    commands: dict[str, str] = Field(description="Allowlisted command names and descriptions")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    terminal_factory: HandlerFactory | None = None,
    agent_factory: HandlerFactory | None = None,
) -> FastAPI:
    """Create the gateway application.

    Args:
        settings: Daemon settings. Defaults to ``Settings()``.
        terminal_factory: Optional handler factory for /terminal/ws (for testing).
        agent_factory: Optional handler factory for /claude/ws (for testing).
    """
    if settings is None:
        settings = Settings()
    root = settings.server.root

    if terminal_factory is None:
        term = settings.terminal

        def terminal_factory(send: SendFn) -> ConnectionHandler:
            return CommandSession(
                send,
                root,
                timeout=term.timeout,
                kill_grace=term.kill_grace,
                env_passthrough=term.env_passthrough,
            )

    if agent_factory is None:
        agent = settings.agent

        def agent_factory(send: SendFn) -> ConnectionHandler:
            return AgentSessionHandler(
                send,
                root,
                command=agent.command,
                allowed_tools=agent.allowed_tools,
                init_prompt=agent.init_prompt,
                extra_args=agent.extra_args,
            )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Gateway serving %s (%d allowlisted commands)",
            root, len(DEFAULT_ALLOWLIST.command_names()),
        )
        yield
        logger.info("Gateway stopped (%d connection(s) open)", len(app.state.connections))

    app = FastAPI(
        title="devbridge",
        description="Local daemon for remote command execution and coding-agent sessions",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.connections = set()

    @app.get("/health")
    async def health_check() -> HealthResponse:
        return HealthResponse(root=str(root), connections=len(app.state.connections))

    @app.get("/commands")
    async def list_commands() -> CommandsResponse:
        return CommandsResponse(commands=DEFAULT_ALLOWLIST.descriptions())

    @app.websocket(TERMINAL_PATH)
    async def terminal_socket(websocket: WebSocket) -> None:
        await _serve_connection(app, websocket, terminal_factory)

    @app.websocket(AGENT_PATH)
    async def agent_socket(websocket: WebSocket) -> None:
        await _serve_connection(app, websocket, agent_factory)

    # Registered last so the routes above take precedence.
    @app.websocket("/{path:path}")
    async def reject_unknown(websocket: WebSocket, path: str) -> None:
        logger.warning("Rejecting WebSocket connection to unknown endpoint /%s", path)
        await websocket.accept()
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid endpoint")

    return app


async def _serve_connection(
    app: FastAPI, websocket: WebSocket, factory: HandlerFactory
) -> None:
    """Pump one connection's frames into its handler until the peer leaves."""
    await websocket.accept()
    handler = factory(_make_sender(websocket))
    app.state.connections.add(handler)
    logger.info("%s connection opened (%s)", websocket.url.path, type(handler).__name__)

    close_code = None
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                close_code = message.get("code")
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await handler.handle_message(raw)
    finally:
        app.state.connections.discard(handler)
        await handler.cleanup()
        logger.info("%s connection closed (code=%s)", websocket.url.path, close_code)


def _make_sender(websocket: WebSocket) -> SendFn:
    async def send(message: OutboundMessage) -> None:
        if (
            websocket.application_state != WebSocketState.CONNECTED
            or websocket.client_state != WebSocketState.CONNECTED
        ):
            return
        try:
            await websocket.send_text(message.to_json())
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.debug("Dropping %s message, connection gone: %s", message.type, e)

    return send


def run(settings: Settings) -> None:
    """Run the gateway under uvicorn with keepalive pings enabled."""
    srv = settings.server
    uvicorn.run(
        create_app(settings),
        host=srv.host,
        port=srv.port,
        ws_ping_interval=srv.ws_ping_interval,
        ws_ping_timeout=srv.ws_ping_timeout,
    )


def main() -> None:
    """Entry point for running the gateway standalone."""
    run(Settings())


if __name__ == "__main__":
    main()
