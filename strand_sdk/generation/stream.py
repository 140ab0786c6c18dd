# strand_sdk/generation/stream.py
# SPDX-License-Identifier: Apache-2.0
"""
Replayable multi-consumer event stream.

``EventStream`` wraps one forward-only producer of ``Chunk`` events
followed by exactly one ``Final`` event. Any number of consumers may
iterate it, joining before, during, or after production, and all of them
observe the identical ordered event history and the identical terminal
outcome.

Driving
-------
The first consumer to pull an event becomes the driver: it is the only
one that ever awaits the producer. Every other consumer replays the
recorded history from index 0 and then waits for the driver to append
more. Production is therefore paced by the driver; a slow follower never
blocks anyone.

Termination
-----------
- ``Final``: the driver records it, closes the producer and stops pulling.
- Producer raises: the same exception object is re-raised to every
  current and future consumer after the events produced before it.
- Producer ends without ``Final``: ``ProtocolViolation`` for everyone.
- Driver abandoned mid-stream (``break`` + close, cancellation): the
  producer is closed and never pulled again; other consumers receive
  ``StreamAbandoned`` once they have replayed what was recorded.

Usage
-----
    stream = client.generate_natural_language("Say hello!")

    async for event in stream:
        if isinstance(event, Chunk):
            print(event.text, end="")

    final = await stream.result()
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import AsyncIterator, List, Optional

from strand_sdk.generation.generation_base import (
    Chunk,
    Final,
    ProtocolViolation,
    StreamAbandoned,
    StreamEvent,
)

LOG = logging.getLogger(__name__)


class StreamState(enum.Enum):
    NOT_STARTED = "not_started"
    STREAMING = "streaming"
    FINISHED = "finished"
    ERRORED = "errored"


class EventStream:
    """Broadcasts one producer's events to any number of consumers."""

    def __init__(self, producer: AsyncIterator[StreamEvent]) -> None:
        self._producer = producer
        self._producer_closed = False
        self._events: List[StreamEvent] = []
        self._state = StreamState.NOT_STARTED
        self._error: Optional[BaseException] = None
        self._driver_claimed = False
        self._changed = asyncio.Event()

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def events(self) -> List[StreamEvent]:
        """Snapshot of the events recorded so far."""
        return list(self._events)

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._consume()

    async def result(self) -> Final:
        """Resolve to the ``Final`` event, driving the stream if nobody else is."""
        events = self._consume()
        try:
            async for event in events:
                if isinstance(event, Final):
                    return event
        finally:
            await events.aclose()
        # Unreachable for a terminated stream; consumers raise instead.
        raise ProtocolViolation()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _consume(self) -> AsyncIterator[StreamEvent]:
        # The role is decided on the first pull, not when the iterator is created.
        if not self._driver_claimed:
            self._driver_claimed = True
            inner = self._drive()
        else:
            inner = self._follow()
        try:
            async for event in inner:
                yield event
        finally:
            await inner.aclose()

    def _notify(self) -> None:
        waiter, self._changed = self._changed, asyncio.Event()
        waiter.set()

    def _terminate(self, state: StreamState, error: Optional[BaseException] = None) -> None:
        if self._state in (StreamState.FINISHED, StreamState.ERRORED):
            return
        self._state = state
        self._error = error
        self._notify()

    async def _close_producer(self) -> None:
        if self._producer_closed:
            return
        self._producer_closed = True
        aclose = getattr(self._producer, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception:  # noqa: BLE001
            LOG.debug("event producer aclose() failed", exc_info=True)

    async def _drive(self) -> AsyncIterator[StreamEvent]:
        self._state = StreamState.STREAMING
        try:
            while True:
                try:
                    event = await self._producer.__anext__()
                except StopAsyncIteration:
                    LOG.debug("event producer ended after %d events without a final event", len(self._events))
                    error = ProtocolViolation(
                        "event stream ended without a final event; the adapter must emit exactly one Final"
                    )
                    self._terminate(StreamState.ERRORED, error)
                    raise error from None
                except Exception as exc:
                    LOG.debug("event producer raised after %d events: %r", len(self._events), exc)
                    self._terminate(StreamState.ERRORED, exc)
                    raise

                if not isinstance(event, (Chunk, Final)):
                    error = ProtocolViolation(f"unexpected stream event type: {type(event).__name__}")
                    self._terminate(StreamState.ERRORED, error)
                    raise error

                self._events.append(event)
                if isinstance(event, Final):
                    await self._close_producer()
                    self._terminate(StreamState.FINISHED)
                    yield event
                    return
                self._notify()
                yield event
        finally:
            if self._state is StreamState.STREAMING:
                LOG.debug("driving consumer stopped after %d events; stream abandoned", len(self._events))
                self._terminate(StreamState.ERRORED, StreamAbandoned())
            await self._close_producer()

    async def _follow(self) -> AsyncIterator[StreamEvent]:
        index = 0
        while True:
            # Capture the waiter before inspecting state so a notification
            # issued while we are suspended in ``yield`` is never lost.
            waiter = self._changed
            while index < len(self._events):
                event = self._events[index]
                index += 1
                yield event
            if self._state is StreamState.FINISHED:
                return
            if self._state is StreamState.ERRORED:
                if self._error is None:
                    raise ProtocolViolation("event stream errored without recording an error")
                raise self._error
            await waiter.wait()


__all__ = [
    "StreamState",
    "EventStream",
]
