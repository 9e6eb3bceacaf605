"""Tests for headless runs."""

import asyncio

import pytest

from conftest import Fail, Pause, ToolCall, assistant_event, init_event, result_event
from claude_relay.headless import HeadlessCollector, run_headless
from claude_relay.models import NormalizedMessage, RelayOptions
from claude_relay.sinks import send_message


class TestRunHeadless:
    """Test the bypass-permissions run collector."""

    @pytest.mark.anyio
    async def test_bypass_run_collects_messages(self, make_orchestrator) -> None:
        orchestrator, engine = make_orchestrator(
            [
                init_event("s1"),
                ToolCall("Bash", {"command": "ls"}),
                assistant_event("done"),
                result_event("success", "s1"),
            ]
        )

        result = await run_headless("list files", orchestrator=orchestrator)

        assert engine.options.permission_mode == "bypassPermissions"
        assert engine.options.can_use_tool is None
        assert engine.permission_results == [None]
        assert orchestrator.broker.pending("s1") == []
        assert result.session_id == "s1"
        assert result.exit_code == 0
        assert len(result.messages) >= 1
        assert all(m.type == "claude-response" for m in result.messages)
        assert result.messages[-1].content == [{"type": "text", "text": "done"}]

    @pytest.mark.anyio
    async def test_resume_and_mode_overridden(self, make_orchestrator) -> None:
        orchestrator, engine = make_orchestrator([init_event("s5"), result_event("success", "s5")])
        options = RelayOptions(resume="old", permission_mode="default", cwd="/tmp")

        result = await run_headless("hi", options, orchestrator=orchestrator)

        assert engine.options.resume is None
        assert engine.options.permission_mode == "bypassPermissions"
        assert str(engine.options.cwd) == "/tmp"
        assert options.resume == "old"
        assert result.session_id == "s5"

    @pytest.mark.anyio
    async def test_failed_result_subtype(self, make_orchestrator) -> None:
        orchestrator, _ = make_orchestrator([init_event("s1"), result_event("error_max_turns", "s1")])

        result = await run_headless("hi", orchestrator=orchestrator)

        assert result.exit_code == 1
        assert result.messages == []

    @pytest.mark.anyio
    async def test_engine_failure_returns_partial_result(self, make_orchestrator) -> None:
        """Failures do not raise; whatever was collected comes back."""
        orchestrator, _ = make_orchestrator(
            [init_event("s1"), assistant_event("partial"), Fail(RuntimeError("boom"))]
        )

        result = await run_headless("hi", orchestrator=orchestrator)

        assert result.exit_code == 1
        assert result.session_id == "s1"
        assert result.messages[-1].content == [{"type": "text", "text": "partial"}]

    @pytest.mark.anyio
    async def test_aborted_run_reports_failure(self, make_orchestrator) -> None:
        """A cancelled turn is not reported as a success."""
        orchestrator, _ = make_orchestrator([init_event("s1"), Pause(), result_event()])
        run = asyncio.create_task(run_headless("hi", orchestrator=orchestrator))
        while not orchestrator.is_active("s1"):
            await asyncio.sleep(0.005)

        assert orchestrator.abort("s1") is True
        result = await asyncio.wait_for(run, 1)

        assert result.exit_code == 1
        assert result.session_id == "s1"
        assert result.messages == []


class TestHeadlessCollector:
    """Test folding of decoded messages."""

    @pytest.mark.anyio
    async def test_session_aborted_sets_failure(self) -> None:
        collector = HeadlessCollector()

        await send_message(collector, NormalizedMessage(type="session-aborted", session_id="s4"))

        result = collector.result(fallback_session_id="other")
        assert result.exit_code == 1
        assert result.session_id == "s4"

    @pytest.mark.anyio
    async def test_folds_messages_from_records(self) -> None:
        collector = HeadlessCollector()

        await send_message(collector, NormalizedMessage(type="session-created", session_id="s1"))
        await send_message(collector, NormalizedMessage(type="claude-response", data={"x": 1}))
        await send_message(collector, NormalizedMessage(type="claude-response"))
        await send_message(
            collector,
            NormalizedMessage(type="claude-complete", exit_code=0, session_id="s1"),
        )

        result = collector.result()
        assert result.session_id == "s1"
        assert result.exit_code == 0
        assert [m.content for m in result.messages] == [{"x": 1}]

    def test_failed_without_completion(self) -> None:
        result = HeadlessCollector().result(failed=True, fallback_session_id="s0")
        assert result.exit_code == 1
        assert result.session_id == "s0"

    def test_result_wire_shape(self) -> None:
        assert HeadlessCollector().result().to_wire() == {
            "sessionId": "",
            "messages": [],
            "exitCode": 0,
        }
