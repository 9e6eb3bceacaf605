"""Drives one Agent SDK query end to end and reports it to a sink."""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from claude_agent_sdk import ClaudeAgentOptions, ResultMessage
from claude_agent_sdk import query as sdk_query
from claude_agent_sdk.types import PermissionResultAllow, PermissionResultDeny

from claude_relay.logging import configure_logging
from claude_relay.models import (
    NormalizedMessage,
    PermissionDecision,
    PermissionPayload,
    RelayOptions,
)
from claude_relay.normalizer import EventKind, classify, init_session_id, normalize
from claude_relay.permissions import PermissionBroker
from claude_relay.settings import settings
from claude_relay.sinks import Sink, send_message
from claude_relay.tools import requires_approval

logger = structlog.get_logger(__name__)

QueryFn = Callable[..., AsyncIterator[Any]]

NO_SESSION_MESSAGE = "Cannot approve permission without a session ID"


@dataclass
class CancellationHandle:
    """Stop signal shared by a run, its prompt stream and its stream consumer."""

    stop: asyncio.Event = field(default_factory=asyncio.Event)
    turn_done: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def triggered(self) -> bool:
        return self.stop.is_set()

    def trigger(self) -> None:
        self.stop.set()
        # Releases the prompt stream so the engine's input closes.
        self.turn_done.set()


@dataclass
class Session:
    """Runtime state of the session owned by one in-flight run."""

    process_key: str
    session_id: str | None
    cwd: str
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)
    permission_mode: str | None = None
    model: str | None = None
    handle: CancellationHandle = field(default_factory=CancellationHandle)
    started_with_id: bool = False
    session_created_sent: int = 0
    completed: bool = False


class SessionOrchestrator:
    """Runs engine turns and correlates them with approvals and cancellation.

    Each ``run`` owns one Session. Active runs are tracked by their current
    process key (the requested session id, a placeholder until the engine
    reports one, then the engine's id) so ``abort`` can reach them.
    """

    def __init__(
        self,
        broker: PermissionBroker | None = None,
        query: QueryFn | None = None,
        *,
        max_session_created: int | None = None,
        strict_tool_names: bool | None = None,
    ) -> None:
        self._broker = broker if broker is not None else PermissionBroker()
        self._query = query if query is not None else sdk_query
        if max_session_created is None:
            max_session_created = settings.max_session_created()
        self._max_session_created = max_session_created
        if strict_tool_names is None:
            strict_tool_names = settings.strict_tool_names()
        self._strict_tool_names = strict_tool_names
        self._active: dict[str, CancellationHandle] = {}

    @property
    def broker(self) -> PermissionBroker:
        return self._broker

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active

    def active_sessions(self) -> list[str]:
        return list(self._active)

    async def run(
        self, command: str, options: RelayOptions | None, sink: Sink
    ) -> str | None:
        """Run one turn and stream its normalized messages to the sink.

        Args:
            command: Prompt to send. An empty prompt sends nothing.
            options: Run configuration.
            sink: Push channel or byte stream receiving the messages.

        Returns:
            The final session id, which may differ from ``options.resume``.

        Raises:
            Exception: Whatever the engine raised, after ``claude-error`` and
                ``claude-complete`` have been sent to the sink.
        """
        options = options or RelayOptions()
        if options.logging is not None:
            configure_logging(options.logging.level, options.logging.format)

        session: Session | None = None
        try:
            session = self._open_session(options)
            logger.info(
                "Starting run",
                process_key=session.process_key,
                resume=options.resume,
                cwd=session.cwd,
                permission_mode=session.permission_mode,
                model=session.model,
            )
            logger.debug("Prompt", prompt=(command or "")[:200])
            await self._stream(session, command, options, sink)
            logger.info(
                "Run finished",
                session_id=session.session_id,
                aborted=session.handle.triggered,
            )
            return session.session_id
        except Exception as exc:
            session_id = session.session_id if session else options.resume
            logger.exception("Run failed", session_id=session_id)
            self._release(session)
            is_new = not options.resume and bool(command)
            await send_message(
                sink,
                NormalizedMessage(
                    type="claude-error",
                    error=str(exc) or "Unknown error occurred",
                    session_id=session_id,
                ),
            )
            await send_message(
                sink,
                NormalizedMessage(
                    type="claude-complete",
                    exit_code=1,
                    is_new_session=is_new,
                    session_id=session_id,
                ),
            )
            raise
        finally:
            self._release(session)

    def abort(self, session_id: str) -> bool:
        """Signal the run currently bound to ``session_id`` to stop.

        The run stays registered until it has unwound, so the session keeps
        counting as busy until then.

        Returns:
            True if an active run was signalled, False if none was found or
            it is already stopping.
        """
        handle = self._active.get(session_id)
        if handle is None:
            logger.info("No active run to abort", session_id=session_id)
            return False
        if handle.triggered:
            logger.info("Run is already stopping", session_id=session_id)
            return False
        handle.trigger()
        self._broker.cancel_session(session_id)
        logger.info("Aborted run", session_id=session_id)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_session(self, options: RelayOptions) -> Session:
        process_key = options.resume or f"pending-{uuid.uuid4().hex}"
        session = Session(
            process_key=process_key,
            session_id=options.resume,
            cwd=options.cwd or os.getcwd(),
            allowed_tools=list(options.allowed_tools),
            disallowed_tools=list(options.disallowed_tools),
            permission_mode=options.permission_mode,
            model=options.model or settings.model(),
            started_with_id=bool(options.resume),
        )
        self._active[process_key] = session.handle
        return session

    def _release(self, session: Session | None) -> None:
        if session is None:
            return
        if self._active.get(session.process_key) is session.handle:
            del self._active[session.process_key]

    def _rekey(self, session: Session, new_key: str) -> None:
        if session.process_key == new_key:
            return
        owner = self._active.get(new_key)
        if owner is not None and owner is not session.handle:
            # The other run keeps the key; this one stays reachable under its own.
            logger.warning(
                "Session already owned by another run; keeping previous key",
                session_id=new_key,
                process_key=session.process_key,
            )
            return
        if self._active.get(session.process_key) is session.handle:
            del self._active[session.process_key]
            self._active[new_key] = session.handle
        session.process_key = new_key

    def _build_options(
        self,
        session: Session,
        options: RelayOptions,
        can_use_tool: Callable[..., Any] | None,
    ) -> ClaudeAgentOptions:
        def stderr_handler(line: str) -> None:
            logger.debug("Engine stderr", process_key=session.process_key, line=line)

        kwargs: dict[str, Any] = dict(
            cwd=session.cwd,
            allowed_tools=session.allowed_tools,
            disallowed_tools=session.disallowed_tools,
            permission_mode=session.permission_mode,
            model=session.model,
            resume=options.resume,
            add_dirs=list(options.additional_directories),
            fork_session=options.fork_session,
            stderr=stderr_handler,
        )
        cli_path = options.executable_path or settings.cli_path()
        if cli_path:
            kwargs["cli_path"] = cli_path
        if can_use_tool is not None:
            kwargs["can_use_tool"] = can_use_tool
        return ClaudeAgentOptions(**kwargs)

    def _make_can_use_tool(self, session: Session, sink: Sink):
        """Create the approval callback handed to the engine."""

        async def can_use_tool(tool_name: str, tool_input: dict[str, Any], context: Any):
            logger.debug(
                "Tool permission request",
                session_id=session.session_id,
                tool_name=tool_name,
            )
            if not requires_approval(tool_name, strict=self._strict_tool_names):
                return PermissionResultAllow(updated_input=tool_input)

            session_id = session.session_id
            if not session_id:
                logger.warning(
                    "Denying tool without a session id",
                    process_key=session.process_key,
                    tool_name=tool_name,
                )
                return PermissionResultDeny(message=NO_SESSION_MESSAGE)

            request_id = str(uuid.uuid4())

            async def announce() -> None:
                logger.info(
                    "Sending permission request",
                    session_id=session_id,
                    request_id=request_id,
                    tool_name=tool_name,
                )
                await send_message(
                    sink,
                    NormalizedMessage(
                        type="permission-request",
                        session_id=session_id,
                        permission_payload=PermissionPayload(
                            tool_name=tool_name,
                            input=tool_input,
                            request_id=request_id,
                        ),
                    ),
                )

            decision = await self._broker.request(session_id, request_id, announce)

            logger.info(
                "Permission decided",
                session_id=session_id,
                request_id=request_id,
                behavior=decision.behavior,
            )
            return _to_permission_result(decision, tool_input)

        return can_use_tool

    async def _stream(
        self, session: Session, command: str, options: RelayOptions, sink: Sink
    ) -> None:
        handle = session.handle
        is_new_session = not session.started_with_id and bool(command)

        async def prompt_stream():
            if command:
                yield {
                    "type": "user",
                    "message": {"role": "user", "content": command},
                    "parent_tool_use_id": None,
                    "session_id": session.session_id or "",
                }
                # Keep input open until the turn ends so approvals can round-trip.
                await handle.turn_done.wait()

        can_use_tool = None
        if session.permission_mode != "bypassPermissions":
            can_use_tool = self._make_can_use_tool(session, sink)
        agent_options = self._build_options(session, options, can_use_tool)

        stream = self._query(prompt=prompt_stream(), options=agent_options)
        # The stream is consumed entirely inside one task so the SDK's task
        # group is entered and exited in the same task when it is cancelled.
        consumer = asyncio.create_task(
            self._consume(session, stream, is_new_session, sink)
        )
        stopped = asyncio.create_task(handle.stop.wait())
        try:
            await asyncio.wait({consumer, stopped}, return_when=asyncio.FIRST_COMPLETED)
            if consumer.done():
                consumer.result()
            else:
                logger.info("Cancelling engine stream", session_id=session.session_id)
        finally:
            stopped.cancel()
            if not consumer.done():
                consumer.cancel()
                [outcome] = await asyncio.gather(consumer, return_exceptions=True)
                if not isinstance(outcome, asyncio.CancelledError) and outcome is not None:
                    logger.debug("Engine stream ended while stopping", error=repr(outcome))

        if handle.triggered and not session.completed:
            await send_message(
                sink,
                NormalizedMessage(type="session-aborted", session_id=session.session_id),
            )

    async def _consume(
        self,
        session: Session,
        stream: AsyncIterator[Any],
        is_new_session: bool,
        sink: Sink,
    ) -> None:
        handle = session.handle
        try:
            async for message in stream:
                if handle.triggered:
                    break
                kind = classify(message)
                logger.debug(
                    "Received message",
                    process_key=session.process_key,
                    kind=kind.value,
                    message_type=type(message).__name__,
                )

                for outgoing in normalize(message, session.session_id):
                    await send_message(sink, outgoing)

                if kind is EventKind.INIT:
                    await self._bind_session(session, init_session_id(message), sink)
                elif kind is EventKind.RESULT:
                    await self._complete(session, message, is_new_session, sink)
        finally:
            handle.turn_done.set()
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except RuntimeError as exc:
                    # The SDK's anyio cancel scopes can complain when the
                    # generator is closed from a different task.
                    logger.debug("Ignoring query close error", error=str(exc))

    async def _bind_session(
        self, session: Session, engine_session_id: str | None, sink: Sink
    ) -> None:
        if not engine_session_id:
            return
        if engine_session_id == session.session_id:
            logger.info("Engine resumed requested session", session_id=engine_session_id)
            return

        logger.warning(
            "Engine assigned a different session; rebinding",
            requested=session.session_id,
            actual=engine_session_id,
        )
        session.session_id = engine_session_id
        self._rekey(session, engine_session_id)
        if session.session_created_sent < self._max_session_created:
            session.session_created_sent += 1
            await send_message(
                sink,
                NormalizedMessage(type="session-created", session_id=engine_session_id),
            )

    async def _complete(
        self,
        session: Session,
        message: ResultMessage,
        is_new_session: bool,
        sink: Sink,
    ) -> None:
        session.handle.turn_done.set()
        exit_code = 0 if message.subtype == "success" else 1
        logger.info(
            "Turn complete",
            session_id=session.session_id,
            subtype=message.subtype,
            exit_code=exit_code,
            num_turns=getattr(message, "num_turns", None),
            total_cost_usd=getattr(message, "total_cost_usd", None),
        )
        self._release(session)
        session.completed = True
        await send_message(
            sink,
            NormalizedMessage(
                type="claude-complete",
                exit_code=exit_code,
                is_new_session=is_new_session,
                session_id=session.session_id,
            ),
        )


def _to_permission_result(decision: PermissionDecision, tool_input: dict[str, Any]):
    """Translate a wire decision into the engine's permission result type."""
    if decision.behavior == "allow":
        updated = decision.updated_input if decision.updated_input is not None else tool_input
        return PermissionResultAllow(updated_input=updated)
    return PermissionResultDeny(message=decision.message or "", interrupt=decision.interrupt)
