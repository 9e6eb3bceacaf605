"""Delivery of normalized messages to push-channel or byte-stream consumers."""

from __future__ import annotations

import asyncio
import inspect
import io
from collections.abc import Callable
from typing import Any, Protocol, Union, runtime_checkable

import structlog
from pydantic import ValidationError

from claude_relay.models import NormalizedMessage, WireEnvelope

logger = structlog.get_logger(__name__)


@runtime_checkable
class PushChannel(Protocol):
    """Socket-like consumer that receives whole text frames."""

    def send(self, data: str) -> Any: ...


@runtime_checkable
class ByteStream(Protocol):
    """Stream consumer that receives newline-terminated records."""

    def write(self, data: bytes) -> Any: ...


Sink = Union[PushChannel, ByteStream]


def encode_message(message: NormalizedMessage) -> str:
    """Serialize a message inside the protocol envelope."""
    return WireEnvelope(content=message).model_dump_json(by_alias=True, exclude_none=True)


async def send_message(sink: Sink, message: NormalizedMessage) -> None:
    """Deliver one message to whichever consumer shape is attached.

    Sinks exposing ``send`` get the JSON frame; anything else is treated
    as a stream and gets the frame plus a trailing newline. Async
    ``send``/``write``/``drain`` implementations are awaited.
    """
    payload = encode_message(message)
    send = getattr(sink, "send", None)
    if callable(send):
        result = send(payload)
        if inspect.isawaitable(result):
            await result
        return

    record = payload + "\n"
    if isinstance(sink, io.TextIOBase):
        result = sink.write(record)
    else:
        result = sink.write(record.encode("utf-8"))
    if inspect.isawaitable(result):
        await result
    drain = getattr(sink, "drain", None)
    if callable(drain):
        drained = drain()
        if inspect.isawaitable(drained):
            await drained


class RecordStream:
    """In-process byte stream that decodes records back into messages.

    Bytes may arrive split at arbitrary points; partial records are
    buffered until their newline shows up. A malformed record is logged
    and skipped without affecting the records around it.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._handlers: list[Callable[[NormalizedMessage], None]] = []
        self._subscribers: list[asyncio.Queue[NormalizedMessage]] = []
        self.malformed_records = 0

    def on_message(self, handler: Callable[[NormalizedMessage], None]) -> None:
        """Register a callback invoked for every decoded message."""
        self._handlers.append(handler)

    def subscribe(self) -> asyncio.Queue[NormalizedMessage]:
        """Return a queue that receives every decoded message."""
        queue: asyncio.Queue[NormalizedMessage] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[NormalizedMessage]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def write(self, data: bytes | str) -> int:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buffer += data
        *records, self._buffer = self._buffer.split(b"\n")
        for record in records:
            if record.strip():
                self._feed(record)
        return len(data)

    def _feed(self, record: bytes) -> None:
        try:
            envelope = WireEnvelope.model_validate_json(record)
        except ValidationError as exc:
            self.malformed_records += 1
            logger.warning(
                "Skipping malformed record",
                error=str(exc),
                record=record[:200].decode("utf-8", errors="replace"),
            )
            return
        self.handle(envelope.content)

    def handle(self, message: NormalizedMessage) -> None:
        """Dispatch a decoded message to handlers and subscribers."""
        for handler in self._handlers:
            handler(message)
        for queue in self._subscribers:
            queue.put_nowait(message)
