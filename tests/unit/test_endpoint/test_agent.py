"""Tests for the agent-session handler."""

from __future__ import annotations

import json

import pytest

from devbridge.config.settings import DEFAULT_INIT_PROMPT
from devbridge.endpoint.agent import AgentSessionHandler


def _ndjson(*events: object, trailing_newline: bool = True) -> str:
    text = "\n".join(json.dumps(e) for e in events)
    return text + "\n" if trailing_newline else text


def _handler(sink, tmp_path, script) -> AgentSessionHandler:
    return AgentSessionHandler(sink, tmp_path, command=str(script))


class TestBuildArgs:
    def test_new_session(self, sink, tmp_path) -> None:
        handler = AgentSessionHandler(sink, tmp_path)
        assert handler.build_args(DEFAULT_INIT_PROMPT) == [
            "claude",
            "-p",
            DEFAULT_INIT_PROMPT,
            "--allowedTools",
            "Read,Write,Edit,Execute",
            "--output-format",
            "stream-json",
            "--verbose",
        ]

    def test_resume(self, sink, tmp_path) -> None:
        handler = AgentSessionHandler(sink, tmp_path, command="agent", extra_args=[])
        args = handler.build_args("fix the bug", resume="abc")
        assert args[:3] == ["agent", "-p", "fix the bug"]
        assert args[args.index("--resume") + 1] == "abc"
        assert args[-2:] == ["--output-format", "stream-json"]


class TestStartSession:
    @pytest.mark.asyncio
    async def test_discovers_and_attaches_session_id(self, sink, tmp_path, fake_agent) -> None:
        script = fake_agent(
            _ndjson(
                {"type": "system", "subtype": "init", "session_id": "abc-123"},
                {"type": "assistant", "message": "hi"},
                {"type": "result", "result": "done"},
                trailing_newline=False,
            )
        )
        handler = _handler(sink, tmp_path, script)

        await handler.start_session()
        await handler.wait_idle()

        chunks = sink.of_type("output_chunk")
        assert [c.output["type"] for c in chunks] == ["system", "assistant", "result"]
        assert all(c.session_id == "abc-123" for c in chunks)
        assert sink.of_type("error") == []
        assert handler.last_session_id == "abc-123"

        args = (tmp_path / "args.txt").read_text().splitlines()
        assert args[:2] == ["-p", DEFAULT_INIT_PROMPT]
        assert "--resume" not in args

    @pytest.mark.asyncio
    async def test_events_before_discovery_have_no_session_id(self, sink, tmp_path, fake_agent) -> None:
        script = fake_agent(_ndjson({"type": "banner"}, {"session_id": "s1"}))
        handler = _handler(sink, tmp_path, script)

        await handler.start_session()
        await handler.wait_idle()

        first, second = sink.of_type("output_chunk")
        assert first.session_id is None
        assert "sessionId" not in json.loads(first.to_json())
        assert second.session_id == "s1"

    @pytest.mark.asyncio
    async def test_invalid_session_id_reported_and_stream_continues(
        self, sink, tmp_path, fake_agent
    ) -> None:
        script = fake_agent(_ndjson({"session_id": 42}, {"type": "assistant"}, {"session_id": "late"}))
        handler = _handler(sink, tmp_path, script)

        await handler.start_session()
        await handler.wait_idle()

        assert [e.message for e in sink.of_type("error")] == [
            "Invalid sessionId returned from agent CLI"
        ]
        chunks = sink.of_type("output_chunk")
        assert [c.output for c in chunks] == [{"type": "assistant"}, {"session_id": "late"}]
        assert all(c.session_id is None for c in chunks)

    @pytest.mark.asyncio
    async def test_malformed_line_is_skipped(self, sink, tmp_path, fake_agent) -> None:
        script = fake_agent('{"session_id":"x"}\nnot json at all\n{"type":"result"}\n{"broken')
        handler = _handler(sink, tmp_path, script)

        await handler.start_session()
        await handler.wait_idle()

        assert [c.output for c in sink.of_type("output_chunk")] == [
            {"session_id": "x"},
            {"type": "result"},
        ]
        assert sink.of_type("error") == []

    @pytest.mark.asyncio
    async def test_nonzero_exit_reported(self, sink, tmp_path, fake_agent) -> None:
        script = fake_agent(_ndjson({"session_id": "x"}), exit_code=3)
        handler = _handler(sink, tmp_path, script)

        await handler.start_session()
        await handler.wait_idle()

        assert len(sink.of_type("output_chunk")) == 1
        assert [e.message for e in sink.of_type("error")] == ["Agent CLI exited with code 3"]

    @pytest.mark.asyncio
    async def test_missing_executable(self, sink, tmp_path) -> None:
        handler = AgentSessionHandler(sink, tmp_path, command=str(tmp_path / "missing"))
        await handler.start_session()

        errors = sink.of_type("error")
        assert len(errors) == 1
        assert errors[0].message.startswith("Failed to start agent CLI:")


class TestSendPrompt:
    @pytest.mark.asyncio
    async def test_embedded_null_byte_in_prompt(self, sink, tmp_path, fake_agent) -> None:
        handler = _handler(sink, tmp_path, fake_agent(_ndjson({"type": "result"})))
        await handler.send_prompt("abc", "a\x00b")
        await handler.wait_idle()

        errors = sink.of_type("error")
        assert len(errors) == 1
        assert errors[0].message.startswith("Failed to start agent CLI:")
        assert sink.of_type("output_chunk") == []

    @pytest.mark.asyncio
    async def test_resumes_and_tags_every_chunk(self, sink, tmp_path, fake_agent) -> None:
        script = fake_agent(_ndjson({"type": "assistant"}, {"type": "result", "session_id": "other"}))
        handler = _handler(sink, tmp_path, script)

        await handler.send_prompt("abc-123", "list the files")
        await handler.wait_idle()

        chunks = sink.of_type("output_chunk")
        assert len(chunks) == 2
        assert all(c.session_id == "abc-123" for c in chunks)

        args = (tmp_path / "args.txt").read_text().splitlines()
        assert args[:2] == ["-p", "list the files"]
        assert args[args.index("--resume") + 1] == "abc-123"

    @pytest.mark.asyncio
    async def test_turns_are_not_serialized(self, sink, tmp_path, fake_agent) -> None:
        script = fake_agent(_ndjson({"type": "result"}))
        handler = _handler(sink, tmp_path, script)

        await handler.send_prompt("s", "one")
        await handler.send_prompt("s", "two")
        await handler.wait_idle()

        assert len(sink.of_type("output_chunk")) == 2


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_start_session_message(self, sink, tmp_path, fake_agent) -> None:
        handler = _handler(sink, tmp_path, fake_agent(_ndjson({"session_id": "z"})))
        await handler.handle_message('{"type": "start_session"}')
        await handler.wait_idle()
        assert sink.of_type("output_chunk")[0].session_id == "z"

    @pytest.mark.asyncio
    async def test_send_prompt_message_uses_camel_case_field(self, sink, tmp_path, fake_agent) -> None:
        handler = _handler(sink, tmp_path, fake_agent(_ndjson({"type": "result"})))
        await handler.handle_message(
            json.dumps({"type": "send_prompt", "sessionId": "abc", "prompt": "hello"})
        )
        await handler.wait_idle()

        payload = json.loads(sink.of_type("output_chunk")[0].to_json())
        assert payload == {"type": "output_chunk", "output": {"type": "result"}, "sessionId": "abc"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message",
        [
            {"type": "send_prompt", "prompt": "hello"},
            {"type": "send_prompt", "sessionId": "abc"},
            {"type": "send_prompt", "sessionId": "", "prompt": "hello"},
        ],
    )
    async def test_send_prompt_requires_session_and_prompt(self, sink, tmp_path, message) -> None:
        handler = AgentSessionHandler(sink, tmp_path, command=str(tmp_path / "never-run"))
        await handler.handle_message(json.dumps(message))
        assert [e.message for e in sink.of_type("error")] == [
            "Missing sessionId or prompt for send_prompt"
        ]

    @pytest.mark.asyncio
    async def test_unknown_type(self, sink, tmp_path) -> None:
        handler = AgentSessionHandler(sink, tmp_path)
        await handler.handle_message('{"type": "execute", "command": "ls"}')
        assert sink.of_type("error")[0].message == "Unknown message type: execute"

    @pytest.mark.asyncio
    async def test_malformed_json(self, sink, tmp_path) -> None:
        handler = AgentSessionHandler(sink, tmp_path)
        await handler.handle_message("[1, 2")
        assert sink.of_type("error")[0].message.startswith("Failed to parse message")


class TestCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_is_a_safe_noop(self, sink, tmp_path, fake_agent) -> None:
        handler = _handler(sink, tmp_path, fake_agent(_ndjson({"session_id": "z"})))
        await handler.cleanup()
        await handler.cleanup()
        assert handler.closed
        assert sink.messages == []
