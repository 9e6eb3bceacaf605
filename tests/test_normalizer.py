"""Tests for SDK message normalization."""

from claude_agent_sdk import SystemMessage, TextBlock, ThinkingBlock, ToolUseBlock, UserMessage

from conftest import assistant_event, init_event, result_event, tool_result_event
from claude_relay.normalizer import (
    EventKind,
    classify,
    init_session_id,
    normalize,
    serialize_blocks,
)


class TestClassify:
    """Test event kind classification."""

    def test_kinds(self) -> None:
        assert classify(assistant_event()) is EventKind.ASSISTANT
        assert classify(tool_result_event()) is EventKind.TOOL_RESULT
        assert classify(init_event("s1")) is EventKind.INIT
        assert classify(SystemMessage(subtype="compact_boundary", data={})) is EventKind.SYSTEM
        assert classify(result_event()) is EventKind.RESULT
        assert classify({"type": "mystery"}) is EventKind.OTHER

    def test_init_session_id(self) -> None:
        assert init_session_id(init_event("abc")) == "abc"
        assert init_session_id(SystemMessage(subtype="init", data={})) is None


class TestSerializeBlocks:
    """Test conversion of content blocks to plain dicts."""

    def test_mixed_blocks(self) -> None:
        blocks = [
            ThinkingBlock(thinking="hmm", signature="sig"),
            TextBlock(text="Let me look"),
            ToolUseBlock(id="t1", name="Read", input={"file_path": "/x"}),
        ]
        assert serialize_blocks(blocks) == [
            {"type": "thinking", "thinking": "hmm", "signature": "sig"},
            {"type": "text", "text": "Let me look"},
            {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "/x"}},
        ]

    def test_tool_result_omits_unset_error_flag(self) -> None:
        [block] = tool_result_event("done", "t9").content
        assert serialize_blocks([block]) == [
            {"type": "tool_result", "tool_use_id": "t9", "content": "done"}
        ]

    def test_dicts_pass_through(self) -> None:
        raw = {"type": "image", "source": {"data": "..."}}
        assert serialize_blocks([raw]) == [raw]


class TestNormalize:
    """Test outward messages produced per event."""

    def test_assistant_produces_turn_and_content(self) -> None:
        out = normalize(assistant_event("hi"), "s1")

        assert [m.type for m in out] == ["claude-response", "claude-response"]
        assert out[0].data == {
            "type": "assistant",
            "content": [{"type": "text", "text": "hi"}],
            "session_id": "s1",
        }
        assert out[1].data == [{"type": "text", "text": "hi"}]
        assert all(m.session_id == "s1" for m in out)

    def test_tool_result_turn(self) -> None:
        [message] = normalize(tool_result_event("ok"), "s1")
        assert message.type == "claude-response"
        assert message.data["type"] == "tool_result"
        assert message.data["content"][0]["content"] == "ok"

    def test_plain_user_echo_dropped(self) -> None:
        assert normalize(UserMessage(content="hello"), "s1") == []
        assert normalize(UserMessage(content=[]), "s1") == []

    def test_bookkeeping_and_unknown_events_dropped(self) -> None:
        assert normalize(init_event("s1"), None) == []
        assert normalize(result_event(), "s1") == []
        event = {"type": "stream_event", "event": {"type": "message_start"}}
        assert normalize(event, "s1") == []

    def test_normalization_is_deterministic(self) -> None:
        """The same event normalizes to identical envelopes every time."""
        event = assistant_event("same")
        first = [m.to_wire() for m in normalize(event, "s1")]
        second = [m.to_wire() for m in normalize(event, "s1")]
        assert first == second
