"""Registry correlating approval requests with the callers awaiting them."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from claude_relay.models import PermissionDecision
from claude_relay.settings import settings

logger = structlog.get_logger(__name__)

TIMEOUT_MESSAGE = "Permission request timed out"
ABORTED_MESSAGE = "Session was aborted"


@dataclass
class PendingPermission:
    """A permission request waiting for an external decision."""

    session_id: str
    request_id: str
    on_resolve: Callable[[PermissionDecision], None]
    timer: asyncio.TimerHandle | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PermissionBroker:
    """Pending approvals keyed by (session id, request id).

    Every entry is settled exactly once: by ``resolve``, by its timeout
    (deny), or by ``cancel_session`` (deny). Settling removes the entry
    first, so whichever comes second finds nothing and is a no-op.
    """

    def __init__(self, timeout: float | None = None) -> None:
        if timeout is None:
            timeout = settings.permission_timeout_seconds()
        self._timeout = timeout
        self._pending: dict[tuple[str, str], PendingPermission] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    def __len__(self) -> int:
        return len(self._pending)

    def pending(self, session_id: str) -> list[str]:
        """Return request ids still awaiting a decision for a session."""
        return [rid for (sid, rid) in self._pending if sid == session_id]

    def register(
        self,
        session_id: str,
        request_id: str,
        on_resolve: Callable[[PermissionDecision], None],
    ) -> PendingPermission:
        """Register a pending approval and arm its timeout.

        Args:
            session_id: Session the request belongs to.
            request_id: Unique identifier for this permission request.
            on_resolve: Called once with the final decision.

        Raises:
            ValueError: If the pair is already pending.
        """
        key = (session_id, request_id)
        if key in self._pending:
            raise ValueError(
                f"Permission request {request_id} already pending for session {session_id}"
            )
        loop = asyncio.get_running_loop()
        pending = PendingPermission(
            session_id=session_id,
            request_id=request_id,
            on_resolve=on_resolve,
        )
        pending.timer = loop.call_later(self._timeout, self._expire, key, pending)
        self._pending[key] = pending
        logger.debug(
            "Registered permission request",
            session_id=session_id,
            request_id=request_id,
            timeout=self._timeout,
        )
        return pending

    def resolve(
        self,
        session_id: str,
        request_id: str,
        decision: PermissionDecision | dict[str, Any],
    ) -> bool:
        """Settle a pending approval with the caller's decision.

        Returns:
            True if the request was pending, False if it was unknown,
            already resolved, or expired.
        """
        if not isinstance(decision, PermissionDecision):
            decision = PermissionDecision.model_validate(decision)
        pending = self._pending.pop((session_id, request_id), None)
        if pending is None:
            logger.warning(
                "No pending permission request found",
                session_id=session_id,
                request_id=request_id,
            )
            return False
        logger.debug(
            "Resolving permission request",
            session_id=session_id,
            request_id=request_id,
            behavior=decision.behavior,
        )
        self._settle(pending, decision)
        return True

    def withdraw(self, session_id: str, request_id: str) -> bool:
        """Drop a pending approval without invoking its resolver."""
        pending = self._pending.pop((session_id, request_id), None)
        if pending is None:
            return False
        if pending.timer is not None:
            pending.timer.cancel()
        return True

    def cancel_session(self, session_id: str, message: str = ABORTED_MESSAGE) -> int:
        """Deny every pending approval of a session.

        Returns:
            Number of requests that were settled.
        """
        keys = [key for key in self._pending if key[0] == session_id]
        for key in keys:
            pending = self._pending.pop(key)
            self._settle(pending, PermissionDecision.deny(message))
        if keys:
            logger.info(
                "Denied pending permission requests",
                session_id=session_id,
                count=len(keys),
            )
        return len(keys)

    def expect(self, session_id: str, request_id: str) -> asyncio.Future[PermissionDecision]:
        """Register a request and return a future settled with its decision.

        Callers that stop waiting early should ``withdraw`` the request.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[PermissionDecision] = loop.create_future()

        def _on_resolve(decision: PermissionDecision) -> None:
            if not future.done():
                future.set_result(decision)

        self.register(session_id, request_id, _on_resolve)
        return future

    async def request(
        self,
        session_id: str,
        request_id: str,
        announce: Callable[[], Awaitable[None]] | None = None,
    ) -> PermissionDecision:
        """Register a request and wait until it is settled.

        Args:
            session_id: Session the request belongs to.
            request_id: Unique identifier for this permission request.
            announce: Awaited once the request is registered, typically to
                tell the consumer about it. A decision arriving while it runs
                is not lost.
        """
        future = self.expect(session_id, request_id)
        try:
            if announce is not None:
                await announce()
            return await future
        finally:
            self.withdraw(session_id, request_id)

    def _settle(self, pending: PendingPermission, decision: PermissionDecision) -> None:
        if pending.timer is not None:
            pending.timer.cancel()
        pending.on_resolve(decision)

    def _expire(self, key: tuple[str, str], pending: PendingPermission) -> None:
        if self._pending.get(key) is not pending:
            return
        del self._pending[key]
        logger.warning(
            "Permission request timed out",
            session_id=pending.session_id,
            request_id=pending.request_id,
            timeout=self._timeout,
            waited_seconds=round(
                (datetime.now(timezone.utc) - pending.created_at).total_seconds(), 3
            ),
        )
        pending.on_resolve(PermissionDecision.deny(TIMEOUT_MESSAGE))
