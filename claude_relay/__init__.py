"""Session orchestration between the Claude Agent SDK and message consumers.

Usage:
    from claude_relay import run_session, handle_permission_response

    session_id = await run_session("hello", RelayOptions(cwd="/repo"), websocket)

The module-level helpers share one process-wide broker and orchestrator.
Build your own ``PermissionBroker``/``SessionOrchestrator`` pair when
isolation is needed.
"""

from __future__ import annotations

from typing import Any

from claude_relay.headless import HeadlessCollector
from claude_relay.headless import run_headless as _run_headless
from claude_relay.models import (
    HeadlessResult,
    NormalizedMessage,
    PermissionDecision,
    RelayOptions,
)
from claude_relay.orchestrator import SessionOrchestrator
from claude_relay.permissions import PermissionBroker
from claude_relay.sinks import RecordStream, Sink, send_message
from claude_relay.tools import requires_approval

default_broker = PermissionBroker()
default_orchestrator = SessionOrchestrator(broker=default_broker)


async def run_session(
    command: str, options: RelayOptions | None, sink: Sink
) -> str | None:
    """Run one turn on the default orchestrator."""
    return await default_orchestrator.run(command, options, sink)


async def run_headless(command: str, options: RelayOptions | None = None) -> HeadlessResult:
    """Run a bypass-permissions turn on the default orchestrator."""
    return await _run_headless(command, options, orchestrator=default_orchestrator)


def handle_permission_response(
    session_id: str, request_id: str, decision: PermissionDecision | dict[str, Any]
) -> bool:
    """Resolve a pending approval on the default broker."""
    return default_broker.resolve(session_id, request_id, decision)


def abort_session(session_id: str) -> bool:
    """Abort an active run on the default orchestrator."""
    return default_orchestrator.abort(session_id)


__all__ = [
    "HeadlessCollector",
    "HeadlessResult",
    "NormalizedMessage",
    "PermissionBroker",
    "PermissionDecision",
    "RecordStream",
    "RelayOptions",
    "SessionOrchestrator",
    "abort_session",
    "default_broker",
    "default_orchestrator",
    "handle_permission_response",
    "requires_approval",
    "run_headless",
    "run_session",
    "send_message",
]
