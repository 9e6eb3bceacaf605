"""Routing of inward control messages from a consumer connection."""

from __future__ import annotations

import asyncio

import structlog
from pydantic import ValidationError

from claude_relay.models import (
    AbortMessage,
    CommandMessage,
    ControlMessage,
    NormalizedMessage,
    PermissionResponseMessage,
    control_message_adapter,
)
from claude_relay.orchestrator import SessionOrchestrator
from claude_relay.sinks import Sink, send_message

logger = structlog.get_logger(__name__)


class ControlDispatcher:
    """Feeds one consumer's inward records to the orchestrator and broker.

    A dispatcher is bound to the sink of the connection it serves; runs it
    starts stream their messages back to that sink.
    """

    def __init__(self, orchestrator: SessionOrchestrator, sink: Sink) -> None:
        self._orchestrator = orchestrator
        self._sink = sink
        self._tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def dispatch(self, raw: str | bytes) -> ControlMessage | None:
        """Handle one inward record.

        Returns:
            The decoded message, or None if it was malformed or rejected.
        """
        try:
            message = control_message_adapter.validate_json(raw)
        except ValidationError as exc:
            logger.warning("Invalid control message", error=str(exc))
            await send_message(
                self._sink,
                NormalizedMessage(
                    type="claude-error",
                    error=f"Invalid control message ({exc.error_count()} errors)",
                ),
            )
            return None

        if isinstance(message, CommandMessage):
            if not self._start(message):
                await send_message(
                    self._sink,
                    NormalizedMessage(
                        type="claude-error",
                        error="Session already has a turn in progress",
                        session_id=message.options.resume,
                    ),
                )
                return None
        elif isinstance(message, PermissionResponseMessage):
            self._orchestrator.broker.resolve(
                message.session_id, message.request_id, message.result
            )
        elif isinstance(message, AbortMessage):
            self._orchestrator.abort(message.session_id)
        return message

    def _start(self, message: CommandMessage) -> bool:
        resume = message.options.resume
        if resume and self._orchestrator.is_active(resume):
            logger.warning("Rejecting command for busy session", session_id=resume)
            return False
        task = asyncio.create_task(self._run(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, message: CommandMessage) -> None:
        try:
            await self._orchestrator.run(message.command, message.options, self._sink)
        except Exception:
            # Already reported to the sink by the orchestrator.
            logger.warning("Run ended with an error", resume=message.options.resume)

    async def join(self) -> None:
        """Wait for every run started by this dispatcher to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding runs and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
