"""Tool names reported by the engine and the subset that needs approval."""

from __future__ import annotations

from enum import Enum


class ToolType(str, Enum):
    """Built-in tools the engine may ask to run."""
    READ = "Read"
    WRITE = "Write"
    EDIT = "Edit"
    BASH = "Bash"
    GREP = "Grep"
    GLOB = "Glob"
    LS = "LS"
    MULTI_EDIT = "MultiEdit"
    NOTEBOOK_READ = "NotebookRead"
    NOTEBOOK_EDIT = "NotebookEdit"
    WEB_FETCH = "WebFetch"
    TODO_READ = "TodoRead"
    TODO_WRITE = "TodoWrite"
    WEB_SEARCH = "WebSearch"
    TASK = "Task"
    MCP_TOOL = "MCPTool"


APPROVABLE_TOOLS: frozenset[str] = frozenset(
    tool.value
    for tool in (
        ToolType.WRITE,
        ToolType.EDIT,
        ToolType.MULTI_EDIT,
        ToolType.BASH,
        ToolType.GLOB,
        ToolType.WEB_FETCH,
        ToolType.WEB_SEARCH,
        ToolType.MCP_TOOL,
    )
)

MCP_TOOL_PREFIX = "mcp__"


def requires_approval(tool_name: str, *, strict: bool = True) -> bool:
    """Return True if the tool must be approved before the engine runs it.

    Args:
        tool_name: Tool name as reported by the engine.
        strict: When False, namespaced MCP tools (``mcp__server__tool``)
            are treated as external-integration calls as well.
    """
    if tool_name in APPROVABLE_TOOLS:
        return True
    if not strict and tool_name.startswith(MCP_TOOL_PREFIX):
        return True
    return False
