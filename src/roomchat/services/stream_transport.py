"""Server-to-client event transport for send runs.

A run executes in its own asyncio task and writes into an :class:`EventChannel`;
the HTTP response only drains that channel. When the client goes away the
channel is detached: later writes are dropped and logged once, while the run
keeps going so its persistence work finishes normally.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Dict, FrozenSet, Optional, Set, Tuple

from ..domain.chat_models import StreamEvent

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Which event types may follow the last one sent (None = nothing sent yet).
_NEXT: Dict[Optional[str], FrozenSet[str]] = {
    None: frozenset({"user_message_saved", "error"}),
    "user_message_saved": frozenset({"ai_response_chunk", "ai_response_complete", "error"}),
    "ai_response_chunk": frozenset({"ai_response_chunk", "ai_response_complete", "error"}),
    "ai_response_complete": frozenset(),
    "error": frozenset(),
}

_END = object()

# SSE comment line; clients skip it, but it resets their read timeout.
KEEP_ALIVE = ": keep-alive\n\n"


class TransportWriteFailure(Exception):
    """The consumer of a run's events is gone."""


class EventChannel:
    def __init__(self, label: str = "run") -> None:
        self.label = label
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._last: Optional[str] = None
        self._closed = False
        self._detached = False
        self._write_failure: Optional[TransportWriteFailure] = None

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def last_event_type(self) -> Optional[str]:
        return self._last

    @property
    def write_failure(self) -> Optional[TransportWriteFailure]:
        return self._write_failure

    def send(self, event: StreamEvent) -> bool:
        """Queue ``event`` for the client; False when it was not delivered."""
        if self._closed or event.type not in _NEXT[self._last]:
            logger.error(
                "stream_event_out_of_order",
                extra={"run": self.label, "after": self._last, "event": event.type},
            )
            return False
        self._last = event.type
        if self._detached:
            if self._write_failure is None:
                self._write_failure = TransportWriteFailure(f"client of {self.label} disconnected")
                logger.warning("transport_write_failed", extra={"run": self.label, "event": event.type})
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END)

    def detach(self) -> None:
        if self._detached:
            return
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()
        logger.info("stream_client_detached", extra={"run": self.label, "after": self._last})

    async def next_event(self) -> Optional[StreamEvent]:
        """Wait for the next event; None once the run has closed the channel."""
        item = await self._queue.get()
        if item is _END:
            return None
        assert isinstance(item, StreamEvent)
        return item

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self.next_event()
            if event is None:
                return
            yield event


_RUNS: Set["asyncio.Task[None]"] = set()


def start_run(events: AsyncIterator[StreamEvent], label: str) -> Tuple[EventChannel, "asyncio.Task[None]"]:
    """Drive ``events`` to completion in a background task feeding a channel."""
    channel = EventChannel(label)

    async def pump() -> None:
        try:
            async for event in events:
                channel.send(event)
        except Exception as exc:
            logger.exception("send_run_crashed run=%s", label)
            channel.send(
                StreamEvent(
                    type="error",
                    data={"message": "Message processing failed", "details": str(exc), "code": type(exc).__name__},
                )
            )
        finally:
            channel.close()

    task = asyncio.create_task(pump(), name=f"send-run-{label}")
    _RUNS.add(task)
    task.add_done_callback(_RUNS.discard)
    return channel, task


def encode_sse(event: StreamEvent) -> str:
    return f"data: {json.dumps(event.model_dump())}\n\n"


async def sse_frames(
    channel: EventChannel,
    task: "asyncio.Task[None]",
    heartbeat: Optional[float] = 15.0,
) -> AsyncIterator[str]:
    """Render the channel as SSE frames; detach it if the client stops reading.

    While the run is quiet (for example waiting on a request/response provider)
    a keep-alive comment is sent every ``heartbeat`` seconds.
    """
    completed = False
    try:
        while True:
            try:
                event = await asyncio.wait_for(channel.next_event(), heartbeat)
            except asyncio.TimeoutError:
                yield KEEP_ALIVE
                continue
            if event is None:
                break
            yield encode_sse(event)
        completed = True
    finally:
        if not completed:
            channel.detach()
    await task
