"""Shared test fixtures for the devbridge test suite.

Provides a recording message sink standing in for the WebSocket, a
small allow table that admits test-only commands, and a fake agent CLI
script factory.
"""

from __future__ import annotations

import asyncio
import stat
from pathlib import Path
from typing import Callable

import pytest

from devbridge.domain.models import AllowedCommandSpec, ArgumentPolicy
from devbridge.security.allowlist import ALLOWED_COMMANDS, Allowlist


class RecordingSink:
    """Collects outbound messages in order and lets tests await them."""

    def __init__(self) -> None:
        self.messages: list = []
        self._changed = asyncio.Event()

    async def __call__(self, message) -> None:
        self.messages.append(message)
        self._changed.set()

    def of_type(self, msg_type: str) -> list:
        return [m for m in self.messages if m.type == msg_type]

    def text(self, msg_type: str) -> str:
        return "".join(m.data for m in self.of_type(msg_type))

    async def wait_for(self, msg_type: str, count: int = 1, timeout: float = 10.0) -> list:
        async def _wait() -> None:
            while len(self.of_type(msg_type)) < count:
                self._changed.clear()
                await self._changed.wait()

        await asyncio.wait_for(_wait(), timeout)
        return self.of_type(msg_type)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def test_allowlist() -> Allowlist:
    """The default table plus ``sleep`` and ``sh`` for process-control tests."""
    extra = (
        AllowedCommandSpec(name="sleep", policy=ArgumentPolicy.ANY),
        AllowedCommandSpec(name="sh", policy=ArgumentPolicy.ANY),
        AllowedCommandSpec(name="no-such-binary-devbridge", policy=ArgumentPolicy.ANY),
    )
    return Allowlist(commands=ALLOWED_COMMANDS + extra)


@pytest.fixture
def fake_agent(tmp_path: Path) -> Callable[..., Path]:
    """Build an executable that mimics the agent CLI.

    The script records its argv (one per line) in ``args.txt`` next to
    itself, writes ``stdout`` verbatim, and exits with ``exit_code``.
    """

    def _build(stdout: str, exit_code: int = 0, name: str = "fake-agent") -> Path:
        payload = tmp_path / f"{name}.out"
        payload.write_text(stdout)
        script = tmp_path / name
        script.write_text(
            "#!/bin/sh\n"
            f'printf \'%s\\n\' "$@" > "{tmp_path}/args.txt"\n'
            f'cat "{payload}"\n'
            f"exit {exit_code}\n"
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _build
