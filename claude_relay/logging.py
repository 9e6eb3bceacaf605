"""Structlog configuration used by the relay and its host process."""

from __future__ import annotations

import logging
import logging.config
import sys

import structlog

from claude_relay.settings import settings


def _add_engine_fields(
    logger: logging.Logger | None, name: str, event_dict: dict
) -> dict:
    """Tag records emitted by the Claude Agent SDK's own stdlib loggers.

    Args:
        logger: Logging.Logger instance (unused by this processor).
        name: Logger name passed by structlog.
        event_dict: Structlog event dict to enrich.
    """
    record = event_dict.get("_record")
    if record is not None and record.name.startswith("claude_agent_sdk"):
        event_dict["source"] = "engine"
    return event_dict


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog + stdlib logging.

    Args:
        level: Log level name; falls back to CLAUDE_RELAY_LOG_LEVEL.
        fmt: "console" or "json"; falls back to CLAUDE_RELAY_LOG_FORMAT.
    """
    log_level_name = (level or settings.log_level()).upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    log_format = (fmt or settings.log_format()).lower()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        # Default to a dev-friendly console renderer.
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors + [_add_engine_fields],
    )

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"()": lambda: formatter}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "stream": sys.stderr,
                }
            },
            "root": {"handlers": ["default"], "level": log_level},
            "loggers": {
                "claude_agent_sdk": {
                    "handlers": ["default"],
                    "level": log_level,
                    "propagate": False,
                },
            },
        }
    )
