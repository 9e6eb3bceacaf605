"""Centralized environment configuration for the relay.

All environment variables are read through this module using the CLAUDE_RELAY_
prefix for consistency.

Usage:
    from claude_relay.settings import settings

    timeout = settings.permission_timeout_seconds()
"""

from __future__ import annotations

import os


def _get(name: str, default: str = "") -> str:
    """Get an environment variable value."""
    return os.environ.get(name, "").strip() or default


def _get_bool(name: str, default: bool = False) -> bool:
    """Get a boolean environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    return value.lower() in ("1", "true", "yes")


def _get_int(name: str, default: int = 0) -> int:
    """Get an integer environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(name: str, default: float = 0.0) -> float:
    """Get a float environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Settings:
    """Centralized settings for the relay.

    Environment variables use the CLAUDE_RELAY_ prefix.
    """

    # -------------------------------------------------------------------------
    # Session Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def permission_timeout_seconds() -> float:
        """Seconds an approval request may stay unanswered before it is denied.

        Env: CLAUDE_RELAY_PERMISSION_TIMEOUT_SECONDS (default: 100)
        """
        return _get_float("CLAUDE_RELAY_PERMISSION_TIMEOUT_SECONDS", default=100.0)

    @staticmethod
    def max_session_created() -> int:
        """How many session-created messages a single run may emit.

        The engine only reports its session identity once per turn, so one
        rebind per run is the expected ceiling.

        Env: CLAUDE_RELAY_MAX_SESSION_CREATED (default: 1)
        """
        return _get_int("CLAUDE_RELAY_MAX_SESSION_CREATED", default=1)

    @staticmethod
    def strict_tool_names() -> bool:
        """Match approval-requiring tools by exact name only.

        When disabled, MCP tools reported as ``mcp__<server>__<tool>`` are
        also gated as external-integration calls.

        Env: CLAUDE_RELAY_STRICT_TOOL_NAMES (default: 1)
        """
        return _get_bool("CLAUDE_RELAY_STRICT_TOOL_NAMES", default=True)

    # -------------------------------------------------------------------------
    # Engine Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def model() -> str:
        """Claude model used when a run does not name one.

        Env: CLAUDE_RELAY_MODEL (default: claude-opus-4-20250514)
        """
        return _get("CLAUDE_RELAY_MODEL", default="claude-opus-4-20250514")

    @staticmethod
    def cli_path() -> str:
        """Path to the Claude Code executable. Empty means the SDK default.

        Env: CLAUDE_RELAY_CLI_PATH
        """
        return _get("CLAUDE_RELAY_CLI_PATH")

    # -------------------------------------------------------------------------
    # Logging Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def log_level() -> str:
        """Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

        Env: CLAUDE_RELAY_LOG_LEVEL (default: INFO)
        """
        return _get("CLAUDE_RELAY_LOG_LEVEL", default="INFO").upper()

    @staticmethod
    def log_format() -> str:
        """Log format: "console" for dev-friendly, "json" for structured.

        Env: CLAUDE_RELAY_LOG_FORMAT (default: console)
        """
        return _get("CLAUDE_RELAY_LOG_FORMAT", default="console").lower()


# Singleton instance for convenient imports
settings = Settings()
