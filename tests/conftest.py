"""Shared pytest fixtures for relay tests."""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field
from typing import Any

import pytest
from claude_agent_sdk import (
    AssistantMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)
from claude_agent_sdk.types import ToolPermissionContext

# Ensure host machine configuration does not affect test results.
for k in list(os.environ):
    if k.startswith("CLAUDE_RELAY_"):
        os.environ.pop(k, None)

from claude_relay.orchestrator import SessionOrchestrator  # noqa: E402
from claude_relay.permissions import PermissionBroker  # noqa: E402


# ---------------------------------------------------------------------------
# SDK message builders
# ---------------------------------------------------------------------------


def init_event(session_id: str) -> SystemMessage:
    return SystemMessage(subtype="init", data={"session_id": session_id, "model": "claude"})


def assistant_event(text: str = "hi") -> AssistantMessage:
    return AssistantMessage(content=[TextBlock(text=text)], model="claude-opus-4-20250514")


def tool_use_event(name: str, tool_input: dict, tool_id: str = "toolu_1") -> AssistantMessage:
    return AssistantMessage(
        content=[ToolUseBlock(id=tool_id, name=name, input=tool_input)],
        model="claude-opus-4-20250514",
    )


def tool_result_event(content: str = "ok", tool_id: str = "toolu_1") -> UserMessage:
    return UserMessage(content=[ToolResultBlock(tool_use_id=tool_id, content=content)])


def result_event(subtype: str = "success", session_id: str = "s1") -> ResultMessage:
    return ResultMessage(
        subtype=subtype,
        duration_ms=10,
        duration_api_ms=8,
        is_error=subtype != "success",
        num_turns=1,
        session_id=session_id,
    )


# ---------------------------------------------------------------------------
# Scripted engine
# ---------------------------------------------------------------------------


@dataclass
class ToolCall:
    """Script step: the engine asks to run a tool."""

    name: str
    input: dict = field(default_factory=dict)


@dataclass
class Pause:
    """Script step: the engine waits until the event is set."""

    event: asyncio.Event = field(default_factory=asyncio.Event)


@dataclass
class Fail:
    """Script step: the engine raises."""

    error: Exception


class FakeEngine:
    """Stand-in for ``claude_agent_sdk.query`` driven by a fixed script.

    Reads the first prompt message, then walks the script: messages are
    yielded, ToolCall steps go through ``options.can_use_tool`` the way the
    CLI does, Pause steps block, Fail steps raise. Afterwards it waits for the
    prompt stream to end, mirroring the CLI waiting for stdin to close.
    """

    def __init__(self, script: list[Any]) -> None:
        self.script = script
        self.options = None
        self.prompts: list[dict] = []
        self.permission_results: list[Any] = []
        self.input_closed = False

    def __call__(self, *, prompt, options):
        self.options = options
        return self._run(prompt, options)

    async def _run(self, prompt, options):
        prompt_iter = prompt.__aiter__()
        first = await anext(prompt_iter, None)
        if first is not None:
            self.prompts.append(first)
        for step in self.script:
            if isinstance(step, ToolCall):
                if options.can_use_tool is None:
                    self.permission_results.append(None)
                    continue
                result = await options.can_use_tool(
                    step.name, step.input, ToolPermissionContext()
                )
                self.permission_results.append(result)
            elif isinstance(step, Pause):
                await step.event.wait()
            elif isinstance(step, Fail):
                raise step.error
            else:
                yield step
        try:
            await asyncio.wait_for(anext(prompt_iter, None), timeout=1.0)
            self.input_closed = True
        except asyncio.TimeoutError:
            self.input_closed = False


class RecordingChannel:
    """Push-channel sink that keeps every decoded frame."""

    def __init__(self) -> None:
        self.frames: list[dict] = []

    def send(self, data: str) -> None:
        self.frames.append(json.loads(data))

    @property
    def messages(self) -> list[dict]:
        return [frame["content"] for frame in self.frames]

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]

    async def wait_for(self, message_type: str, timeout: float = 2.0) -> dict:
        """Wait until a message of the given type has been sent."""

        async def _poll() -> dict:
            while True:
                for message in self.messages:
                    if message["type"] == message_type:
                        return message
                await asyncio.sleep(0.005)

        return await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force the AnyIO pytest plugin to run tests under asyncio.

    The relay uses asyncio primitives directly (events, futures, call_later),
    which are incompatible with the trio backend.
    """
    return "asyncio"


@pytest.fixture
def broker() -> PermissionBroker:
    return PermissionBroker(timeout=5.0)


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def make_orchestrator(broker):
    """Build an orchestrator wired to a FakeEngine running the given script."""

    def _make(script: list[Any], **kwargs) -> tuple[SessionOrchestrator, FakeEngine]:
        engine = FakeEngine(script)
        orchestrator = SessionOrchestrator(broker=broker, query=engine, **kwargs)
        return orchestrator, engine

    return _make
