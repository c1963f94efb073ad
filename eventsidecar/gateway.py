"""Admission of new clients to the event stream."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Mapping, Union

from .events import ServerSentEvent
from .sse_filtering import (
    SSE_API_ROOT_PATH,
    HttpResponse,
    OutboundEvent,
    create_404,
    create_422,
    create_503,
    get_filter,
    parse_query,
    path_to_filter,
)
from .streaming import Broadcaster, BroadcastReceiver, stream_to_client

_log = logging.getLogger(__name__)


@dataclass
class NewSubscriberInfo:
    """Passed to the server whenever a new client subscribes.

    The server puts the client's initial events on ``initial_events_sender``
    and then ``None`` to mark their end.
    """

    start_from: int | None
    initial_events_sender: "asyncio.Queue[ServerSentEvent | None]"


async def _drain(
    queue: "asyncio.Queue[ServerSentEvent | None]",
) -> AsyncIterator[ServerSentEvent]:
    while True:
        event = await queue.get()
        if event is None:
            return
        yield event


class _ClientStream:
    """The outbound events of one client; closing it releases its subscription."""

    def __init__(
        self, events: AsyncIterator[OutboundEvent], receiver: BroadcastReceiver
    ) -> None:
        self._events = events
        self._receiver = receiver

    def __aiter__(self) -> "_ClientStream":
        return self

    async def __anext__(self) -> OutboundEvent:
        return await self._events.__anext__()

    async def aclose(self) -> None:
        try:
            await self._events.aclose()  # type: ignore[attr-defined]
        finally:
            self._receiver.close()

    async def __aenter__(self) -> "_ClientStream":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


ClientResponse = Union[HttpResponse, _ClientStream]


class SseGateway:
    """Turns client requests into event streams or error responses."""

    def __init__(
        self,
        broadcaster: Broadcaster,
        max_concurrent_subscribers: int,
        subscriber_queue: "asyncio.Queue[NewSubscriberInfo]",
    ) -> None:
        self._broadcaster = broadcaster
        self._max_concurrent_subscribers = max_concurrent_subscribers
        self._subscriber_queue = subscriber_queue

    def handle_request(
        self,
        path_param: str | None = None,
        query: Mapping[str, str] | None = None,
    ) -> ClientResponse:
        """Answer a request for ``/events[/<path_param>]?<query>``.

        Returns an error response, or an async iterator of the client's events.
        """
        if self._broadcaster.receiver_count() >= self._max_concurrent_subscribers:
            _log.info(
                "event stream server has max subscribers (%d): rejecting new one",
                self._max_concurrent_subscribers,
            )
            return create_503()

        path = SSE_API_ROOT_PATH if path_param is None else path_param
        event_filter = get_filter(path)
        endpoint = path_to_filter(path)
        if event_filter is None or endpoint is None:
            return create_404()
        try:
            start_from = parse_query(query or {})
        except ValueError:
            return create_422()

        initial_events: "asyncio.Queue[ServerSentEvent | None]" = asyncio.Queue()
        self._subscriber_queue.put_nowait(NewSubscriberInfo(start_from, initial_events))
        receiver = self._broadcaster.subscribe()
        events = stream_to_client(_drain(initial_events), receiver, endpoint, event_filter)
        return _ClientStream(events, receiver)