"""Incremental decoder for newline-delimited JSON streams.

Chunks from a pipe arrive with arbitrary boundaries. The decoder keeps
at most one trailing fragment between calls and emits every completed
line exactly once.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


class NdjsonDecoder:
    """Buffers one process's stdout and yields parsed JSON values."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        """The incomplete fragment after the last newline."""
        return self._buffer

    def feed(self, chunk: str) -> list[Any]:
        """Append a chunk and return the values of all completed lines.

        Lines that are not valid JSON are logged and dropped. Blank lines
        are skipped.
        """
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")

        events: list[Any] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError as e:
                logger.warning("Dropping malformed NDJSON line (%s): %.200s", e, line)
        return events

    def flush(self) -> list[Any]:
        """Parse whatever remains once the stream has ended.

        Covers a final line written without a trailing newline. An
        invalid fragment is discarded quietly. The buffer is empty
        afterwards.
        """
        fragment, self._buffer = self._buffer, ""
        if not fragment.strip():
            return []
        try:
            return [json.loads(fragment)]
        except json.JSONDecodeError:
            logger.debug("Discarding unterminated NDJSON fragment: %.200s", fragment)
            return []
