"""The event loop that buffers events and feeds subscribed clients."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from itertools import dropwhile
from typing import Generic, Iterator, Optional, Tuple, TypeVar

from .config import Config
from .events import (
    BroadcastShutdown,
    EventType,
    Filter,
    ProtocolVersion,
    ServerSentEvent,
    SseData,
)
from .gateway import NewSubscriberInfo
from .sse_filtering import ID_MAX
from .streaming import Broadcaster

_log = logging.getLogger(__name__)

SIDECAR_VERSION = ProtocolVersion.from_parts(1, 0, 0)

InboundData = Tuple[Optional[int], SseData, Optional[Filter], Optional[str]]
BufferedEvent = Tuple[ProtocolVersion, ServerSentEvent]

T = TypeVar("T")


class EventBuffer(Generic[T]):
    """A ring buffer keeping the most recent ``capacity`` items, oldest first."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("event buffer capacity must be at least 1")
        self._items: deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def push(self, item: T) -> None:
        """Append ``item``, evicting the oldest one when full."""
        self._items.append(item)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)


def _buffered_id(event: ServerSentEvent) -> int:
    if event.id is None:
        raise ValueError("buffered event has no ID")
    return event.id


class EventStreamCore:
    """State of the event stream: the event buffer and the latest API version."""

    def __init__(
        self,
        config: Config,
        broadcaster: Broadcaster,
        sidecar_version: ProtocolVersion = SIDECAR_VERSION,
    ) -> None:
        self.broadcaster = broadcaster
        self.buffer: EventBuffer[BufferedEvent] = EventBuffer(config.event_stream_buffer_length)
        self.latest_protocol_version: ProtocolVersion | None = None
        self.sidecar_version = sidecar_version

    def handle_incoming_data(self, data: InboundData | None) -> bool:
        """Buffer and broadcast one event; returns False once the source is exhausted."""
        if data is None:
            _log.info("shutting down HTTP server")
            return False
        index, sse_data, inbound_filter, json_data = data
        _log.debug("Event stream server received %r", sse_data)
        event = ServerSentEvent(
            id=index, data=sse_data, json_data=json_data, inbound_filter=inbound_filter
        )
        if sse_data.event_type is EventType.API_VERSION:
            self.latest_protocol_version = sse_data.payload
        elif self.latest_protocol_version is None:
            _log.error("Trying to buffer data without an api version observed beforehand")
        else:
            self.buffer.push((self.latest_protocol_version, event))
        # Sending fails harmlessly when no clients are connected.
        self.broadcaster.send(event)
        return True

    def _buffered_from(self, start_index: int) -> list[BufferedEvent]:
        items = list(self.buffer)
        if not items:
            return []
        size = self.buffer.capacity
        first_id = _buffered_id(items[0][1])
        # Near the wrap of the ID space, shift every ID by the buffer size so
        # that IDs past the wrap compare as later than those before it.
        in_wraparound_zone = first_id > ID_MAX - size or first_id < size

        def before_start(item: BufferedEvent) -> bool:
            event_id = _buffered_id(item[1])
            if in_wraparound_zone:
                return (event_id + size) & ID_MAX < (start_index + size) & ID_MAX
            return event_id < start_index

        return list(dropwhile(before_start, items))

    def register_new_subscriber(self, subscriber: NewSubscriberInfo) -> None:
        """Send a new client its initial events, then mark their end with None."""
        send = subscriber.initial_events_sender.put_nowait
        send(ServerSentEvent.sidecar_version_event(self.sidecar_version))
        observed_events = False
        if subscriber.start_from is not None:
            observed_version: ProtocolVersion | None = None
            for version, event in self._buffered_from(subscriber.start_from):
                if observed_version != version:
                    send(ServerSentEvent.initial_event(version))
                    observed_version = version
                send(event)
                observed_events = True
        if not observed_events and self.latest_protocol_version is not None:
            send(ServerSentEvent.initial_event(self.latest_protocol_version))
        send(None)


async def run(
    config: Config,
    data_queue: "asyncio.Queue[InboundData | None]",
    broadcaster: Broadcaster,
    subscriber_queue: "asyncio.Queue[NewSubscriberInfo]",
) -> None:
    """Serve events until ``None`` arrives on ``data_queue``, then broadcast shutdown."""
    core = EventStreamCore(config, broadcaster)
    subscriber_get = asyncio.ensure_future(subscriber_queue.get())
    data_get = asyncio.ensure_future(data_queue.get())
    try:
        while True:
            done, _ = await asyncio.wait(
                {subscriber_get, data_get}, return_when=asyncio.FIRST_COMPLETED
            )
            if subscriber_get in done:
                core.register_new_subscriber(subscriber_get.result())
                subscriber_get = asyncio.ensure_future(subscriber_queue.get())
            if data_get in done:
                if not core.handle_incoming_data(data_get.result()):
                    break
                data_get = asyncio.ensure_future(data_queue.get())
    finally:
        for task in (subscriber_get, data_get):
            if not task.done():
                task.cancel()
        broadcaster.send(BroadcastShutdown())