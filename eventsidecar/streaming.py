"""Broadcasting of events to client streams."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import AsyncIterable, AsyncIterator, Iterable, Sequence, Union

from .endpoint import Endpoint
from .events import BroadcastShutdown, EventFilter, ServerSentEvent
from .sse_filtering import OutboundEvent, filter_map_server_sent_event

_log = logging.getLogger(__name__)

BroadcastMessage = Union[ServerSentEvent, BroadcastShutdown]


class Lagged(Exception):
    """A receiver fell behind and ``amount`` messages were dropped for it."""

    def __init__(self, amount: int) -> None:
        super().__init__(f"receiver lagged by {amount} messages")
        self.amount = amount


class Broadcaster:
    """A bounded broadcast channel: every receiver sees every retained message."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("broadcast capacity must be at least 1")
        self._buffer: deque[BroadcastMessage] = deque(maxlen=capacity)
        self._next_seq = 0
        self._receivers: set[BroadcastReceiver] = set()

    @property
    def _oldest_seq(self) -> int:
        return self._next_seq - len(self._buffer)

    def subscribe(self) -> "BroadcastReceiver":
        """A new receiver that sees messages sent from now on."""
        receiver = BroadcastReceiver(self, self._next_seq)
        self._receivers.add(receiver)
        return receiver

    def send(self, message: BroadcastMessage) -> int:
        """Send to all receivers; returns how many receivers there are."""
        self._buffer.append(message)
        self._next_seq += 1
        for receiver in self._receivers:
            receiver._wake.set()
        return len(self._receivers)

    def receiver_count(self) -> int:
        return len(self._receivers)

    def _detach(self, receiver: "BroadcastReceiver") -> None:
        self._receivers.discard(receiver)


class BroadcastReceiver:
    """One subscriber's view of a ``Broadcaster``."""

    def __init__(self, broadcaster: Broadcaster, position: int) -> None:
        self._broadcaster = broadcaster
        self._position = position
        self._wake = asyncio.Event()
        self._closed = False

    async def recv(self) -> BroadcastMessage:
        """Wait for the next message.

        Raises Lagged if messages were dropped before this receiver read them;
        the receiver then resumes at the oldest retained message.
        """
        channel = self._broadcaster
        while True:
            if self._closed:
                raise RuntimeError("receiver is closed")
            oldest = channel._oldest_seq
            if self._position < oldest:
                missed = oldest - self._position
                self._position = oldest
                raise Lagged(missed)
            if self._position < channel._next_seq:
                message = channel._buffer[self._position - oldest]
                self._position += 1
                return message
            self._wake.clear()
            await self._wake.wait()

    def close(self) -> None:
        """Stop receiving; the broadcaster no longer counts this receiver."""
        if not self._closed:
            self._closed = True
            self._broadcaster._detach(self)
            self._wake.set()


async def _iterate(
    source: AsyncIterable[ServerSentEvent] | Iterable[ServerSentEvent],
) -> AsyncIterator[ServerSentEvent]:
    if isinstance(source, AsyncIterable):
        async for event in source:
            yield event
    else:
        for event in source:
            yield event


async def stream_to_client(
    initial_events: AsyncIterable[ServerSentEvent] | Iterable[ServerSentEvent],
    ongoing_events: BroadcastReceiver,
    stream_filter: Endpoint,
    event_filter: Sequence[EventFilter],
) -> AsyncIterator[OutboundEvent]:
    """Yield the events one client should see.

    The initial events are served first, then the ongoing ones, skipping any
    ongoing event whose ID was already served initially. The stream ends on a
    broadcast shutdown and raises Lagged if the client fell behind.
    """
    initial_ids: set[int] = set()
    try:
        async for event in _iterate(initial_events):
            if event.id is not None:
                initial_ids.add(event.id)
            outbound = filter_map_server_sent_event(event, stream_filter, event_filter)
            if outbound is not None:
                yield outbound

        while True:
            try:
                message = await ongoing_events.recv()
            except Lagged as lagged:
                _log.info(
                    "client lagged by %d events - dropping event stream connection to client",
                    lagged.amount,
                )
                raise
            if isinstance(message, BroadcastShutdown):
                return
            if message.id is not None and message.id in initial_ids:
                _log.debug("skipped duplicate event %d", message.id)
                continue
            outbound = filter_map_server_sent_event(message, stream_filter, event_filter)
            if outbound is not None:
                yield outbound
    finally:
        ongoing_events.close()