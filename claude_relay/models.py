"""Pydantic models for the wire protocol, control messages and run options."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

CLAUDE_CHAT_TYPE = "claude-chat"

MessageType = Literal[
    "session-created",
    "claude-response",
    "claude-error",
    "claude-complete",
    "claude-interactive-prompt",
    "claude-status",
    "session-aborted",
    "permission-request",
]

PermissionMode = Literal["default", "acceptEdits", "plan", "bypassPermissions"]

BYPASS_PERMISSIONS: PermissionMode = "bypassPermissions"


class _WireModel(BaseModel):
    """Base for models that travel with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump using wire aliases, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Outward protocol ---


class PermissionPayload(_WireModel):
    """Tool call awaiting an external allow/deny decision."""
    tool_name: str = Field(alias="toolName")
    input: dict[str, Any] = Field(default_factory=dict)
    request_id: str = Field(alias="requestId")


class NormalizedMessage(_WireModel):
    """The only shape in which engine activity leaves the relay."""
    type: MessageType
    session_id: str | None = Field(default=None, alias="sessionId")
    data: Any = None
    permission_payload: PermissionPayload | None = Field(
        default=None, alias="permissionPayload"
    )
    error: str | None = None
    exit_code: int | None = Field(default=None, alias="exitCode")
    is_new_session: bool | None = Field(default=None, alias="isNewSession")


class WireEnvelope(_WireModel):
    """Protocol envelope wrapping every outward message."""
    type: Literal["claude-chat"] = CLAUDE_CHAT_TYPE
    content: NormalizedMessage


class PermissionDecision(_WireModel):
    """Allow/deny answer for a pending approval."""
    behavior: Literal["allow", "deny"]
    updated_input: dict[str, Any] | None = Field(default=None, alias="updatedInput")
    message: str | None = None
    interrupt: bool = False

    @classmethod
    def deny(cls, message: str) -> PermissionDecision:
        return cls(behavior="deny", message=message)


class CollectedMessage(_WireModel):
    """A response payload captured by the headless collector."""
    type: str
    content: Any = None


class HeadlessResult(_WireModel):
    """Everything a headless run produced, in arrival order."""
    session_id: str = Field(default="", alias="sessionId")
    messages: list[CollectedMessage] = Field(default_factory=list)
    exit_code: int = Field(default=0, alias="exitCode")


# --- Run options ---


class LoggingOptions(_WireModel):
    """Logging configuration forwarded to the host's logging setup."""
    level: str | None = None
    format: str | None = None


class RelayOptions(_WireModel):
    """Configuration a caller supplies for one run."""
    resume: str | None = None
    cwd: str | None = None
    allowed_tools: list[str] = Field(default_factory=list, alias="allowedTools")
    disallowed_tools: list[str] = Field(default_factory=list, alias="disallowedTools")
    permission_mode: PermissionMode | None = Field(default=None, alias="permissionMode")
    model: str | None = None
    additional_directories: list[str] = Field(
        default_factory=list, alias="additionalDirectories"
    )
    fork_session: bool = Field(default=False, alias="forkSession")
    executable_path: str | None = Field(
        default=None, alias="pathToClaudeCodeExecutable"
    )
    logging: LoggingOptions | None = None


# --- Inward control messages ---


class CommandMessage(_WireModel):
    """Start a turn with the given prompt."""
    type: Literal["claude-command"]
    command: str = ""
    options: RelayOptions = Field(default_factory=RelayOptions)


class PermissionResponseMessage(_WireModel):
    """Answer to a previously emitted permission-request."""
    type: Literal["claude-permission-response"]
    session_id: str = Field(alias="sessionId")
    request_id: str = Field(alias="requestId")
    result: PermissionDecision


class AbortMessage(_WireModel):
    """Cancel the in-flight turn of a session."""
    type: Literal["abort-session"]
    session_id: str = Field(alias="sessionId")


ControlMessage = Annotated[
    Union[CommandMessage, PermissionResponseMessage, AbortMessage],
    Field(discriminator="type"),
]

control_message_adapter: TypeAdapter[ControlMessage] = TypeAdapter(ControlMessage)
