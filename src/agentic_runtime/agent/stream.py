"""
Bounded, ordered event channel from a run to its caller.
"""

import asyncio
from typing import Callable

import structlog

from ..events import Event, EventKind, Payload

logger = structlog.get_logger()

_END = object()


class EventStream:
    """Ordered channel of run events with backpressure.

    The producing run awaits ``emit``; when ``maxsize`` events are waiting
    unread, the producer suspends until the consumer catches up. Sequence
    numbers are assigned here, so they are strictly increasing per run.
    Listeners are called synchronously on every emitted event and must not
    block.
    """

    def __init__(self, run_id: str, maxsize: int = 100):
        self.run_id = run_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._sequence = 0
        self._closed = False
        self._listeners: list[Callable[[Event], None]] = []

    @property
    def closed(self) -> bool:
        """True once the terminal event has been emitted."""
        return self._closed

    @property
    def last_sequence_no(self) -> int:
        return self._sequence

    def subscribe(self, listener: Callable[[Event], None]) -> None:
        self._listeners.append(listener)

    async def emit(self, kind: EventKind, payload: Payload, turn_id: int = 0) -> Event:
        if self._closed:
            raise RuntimeError(f"event stream for run {self.run_id} is closed")

        self._sequence += 1
        event = Event(
            run_id=self.run_id,
            turn_id=turn_id,
            sequence_no=self._sequence,
            kind=kind,
            payload=payload,
        )
        if event.is_terminal:
            self._closed = True

        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning("Event listener failed", error=str(e), run_id=self.run_id)

        await self._queue.put(event)
        if self._closed:
            await self._queue.put(_END)
        return event

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> Event:
        item = await self._queue.get()
        if item is _END:
            # Keep the stream exhausted for repeated iteration.
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        return item

    async def collect(self) -> list[Event]:
        """Drain the stream until the terminal event."""
        return [event async for event in self]
