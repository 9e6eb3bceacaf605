"""Run a turn without a live consumer and collect what it produced."""

from __future__ import annotations

import structlog

from claude_relay.models import (
    BYPASS_PERMISSIONS,
    CollectedMessage,
    HeadlessResult,
    NormalizedMessage,
    RelayOptions,
)
from claude_relay.orchestrator import SessionOrchestrator
from claude_relay.sinks import RecordStream

logger = structlog.get_logger(__name__)


class HeadlessCollector(RecordStream):
    """Byte-stream sink that folds decoded messages into a HeadlessResult."""

    def __init__(self) -> None:
        super().__init__()
        self.session_id: str | None = None
        self.exit_code: int | None = None
        self.messages: list[CollectedMessage] = []

    def handle(self, message: NormalizedMessage) -> None:
        if message.type == "session-created" and message.session_id:
            self.session_id = message.session_id
        elif message.type == "claude-complete":
            self.exit_code = message.exit_code or 0
            if message.session_id:
                self.session_id = message.session_id
        elif message.type == "session-aborted":
            self.exit_code = 1
            if message.session_id:
                self.session_id = message.session_id
        elif message.type == "claude-response" and message.data:
            self.messages.append(CollectedMessage(type=message.type, content=message.data))
        super().handle(message)

    def result(self, *, failed: bool = False, fallback_session_id: str | None = None) -> HeadlessResult:
        """Build the result from everything observed so far.

        Args:
            failed: The run raised; an unobserved or zero exit code becomes 1.
            fallback_session_id: Used when no message carried a session id.
        """
        exit_code = self.exit_code or 0
        if failed:
            exit_code = exit_code or 1
        return HeadlessResult(
            session_id=self.session_id or fallback_session_id or "",
            messages=list(self.messages),
            exit_code=exit_code,
        )


async def run_headless(
    command: str,
    options: RelayOptions | None = None,
    *,
    orchestrator: SessionOrchestrator | None = None,
) -> HeadlessResult:
    """Run a fresh session with every permission bypassed.

    Any ``resume`` in the options is ignored. Failures are logged and the
    partial result is returned instead of raising.
    """
    if orchestrator is None:
        from claude_relay import default_orchestrator

        orchestrator = default_orchestrator

    options = (options or RelayOptions()).model_copy(
        update={"permission_mode": BYPASS_PERMISSIONS, "resume": None}
    )
    collector = HeadlessCollector()
    try:
        session_id = await orchestrator.run(command, options, collector)
    except Exception:
        logger.exception("Headless run failed", session_id=collector.session_id)
        return collector.result(failed=True)
    return collector.result(fallback_session_id=session_id)
