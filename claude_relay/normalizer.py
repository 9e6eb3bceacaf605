"""Conversion of Agent SDK messages into normalized outward messages."""

from __future__ import annotations

import dataclasses
from enum import Enum
from typing import Any

from claude_agent_sdk import (
    AssistantMessage,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)

from claude_relay.models import NormalizedMessage


class EventKind(str, Enum):
    """Closed set of engine event categories the relay distinguishes."""
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"
    INIT = "init"
    SYSTEM = "system"
    RESULT = "result"
    OTHER = "other"


def classify(message: object) -> EventKind:
    """Map an SDK message to its event kind."""
    if isinstance(message, AssistantMessage):
        return EventKind.ASSISTANT
    if isinstance(message, UserMessage):
        return EventKind.TOOL_RESULT
    if isinstance(message, SystemMessage):
        return EventKind.INIT if message.subtype == "init" else EventKind.SYSTEM
    if isinstance(message, ResultMessage):
        return EventKind.RESULT
    return EventKind.OTHER


def init_session_id(message: SystemMessage) -> str | None:
    """Extract the engine-assigned session id from an init event."""
    data = message.data or {}
    session_id = data.get("session_id")
    return session_id or None


def serialize_block(block: Any) -> dict[str, Any]:
    """Convert one SDK content block to a plain dict."""
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ThinkingBlock):
        return {
            "type": "thinking",
            "thinking": block.thinking,
            "signature": block.signature,
        }
    if isinstance(block, ToolUseBlock):
        return {
            "type": "tool_use",
            "id": block.id,
            "name": block.name,
            "input": block.input if isinstance(block.input, dict) else {},
        }
    if isinstance(block, ToolResultBlock):
        out: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": block.content,
        }
        if block.is_error is not None:
            out["is_error"] = block.is_error
        return out
    if isinstance(block, dict):
        return block
    if dataclasses.is_dataclass(block) and not isinstance(block, type):
        return dataclasses.asdict(block)
    return {"type": "unknown", "value": str(block)}


def serialize_blocks(content: list[Any]) -> list[dict[str, Any]]:
    """Convert SDK content blocks to plain dicts, preserving order."""
    return [serialize_block(block) for block in content]


def normalize(message: object, session_id: str | None) -> list[NormalizedMessage]:
    """Return the outward messages for one engine event.

    Assistant turns produce two responses: the converted turn and, for
    older consumers, its bare content array. User turns carrying content
    blocks become a tool_result response. Everything else produces nothing;
    session bookkeeping for init and result events lives in the orchestrator.

    Args:
        message: SDK message from the query stream.
        session_id: Session id currently known for the run.
    """
    kind = classify(message)
    if kind is EventKind.ASSISTANT:
        content = serialize_blocks(message.content)
        converted = {
            "type": "assistant",
            "content": content,
            "session_id": session_id,
        }
        return [
            NormalizedMessage(type="claude-response", data=converted, session_id=session_id),
            NormalizedMessage(type="claude-response", data=content, session_id=session_id),
        ]
    if kind is EventKind.TOOL_RESULT:
        content = message.content
        if not isinstance(content, list) or not content:
            # Plain-text echo of the prompt.
            return []
        converted = {"type": "tool_result", "content": serialize_blocks(content)}
        return [
            NormalizedMessage(type="claude-response", data=converted, session_id=session_id)
        ]
    # INIT, SYSTEM, RESULT and OTHER are never forwarded as responses.
    return []
