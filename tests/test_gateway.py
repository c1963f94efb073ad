import asyncio

import pytest

from eventsidecar.events import (
    BroadcastShutdown,
    EventType,
    Filter,
    ProtocolVersion,
    SseData,
    ServerSentEvent,
)
from eventsidecar.gateway import NewSubscriberInfo, SseGateway
from eventsidecar.sse_filtering import (
    INVALID_PATH_MESSAGE,
    INVALID_QUERY_MESSAGE,
    TOO_MANY_SUBSCRIBERS_MESSAGE,
    HttpResponse,
    OutboundEvent,
)
from eventsidecar.streaming import Broadcaster


def _block(tag: str) -> SseData:
    return SseData(EventType.BLOCK_ADDED, {"block_hash": tag})


def _gateway(max_subscribers: int = 10):
    broadcaster = Broadcaster(64)
    subscribers: asyncio.Queue = asyncio.Queue()
    return SseGateway(broadcaster, max_subscribers, subscribers), broadcaster, subscribers


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["bad", "mainbad", "deploysbad", "sigsbad", ""])
async def test_bad_path_gives_404(path):
    gateway, broadcaster, subscribers = _gateway()
    response = gateway.handle_request(path, {})
    assert response == HttpResponse(404, INVALID_PATH_MESSAGE)
    assert response.body.strip() == (
        "invalid path: expected '/events/main', '/events/deploys' or '/events/sigs'"
    )
    assert subscribers.empty()
    assert broadcaster.receiver_count() == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["main", "deploys", "sigs"])
@pytest.mark.parametrize(
    "query",
    [
        {"not-a-kv-pair": ""},
        {"start_fro": "0"},
        {"start_from": "not-integer"},
        {"start_from": "'0'"},
        {"start_from": "0", "extra": "1"},
    ],
)
async def test_bad_query_gives_422(path, query):
    gateway, broadcaster, subscribers = _gateway()
    response = gateway.handle_request(path, query)
    assert response == HttpResponse(422, INVALID_QUERY_MESSAGE)
    assert response.body.strip() == "invalid query: expected single field 'start_from=<EVENT ID>'"
    assert broadcaster.receiver_count() == 0


@pytest.mark.asyncio
async def test_valid_request_registers_subscriber():
    gateway, broadcaster, subscribers = _gateway()
    stream = gateway.handle_request("deploys", {"start_from": "25"})
    info = subscribers.get_nowait()
    assert isinstance(info, NewSubscriberInfo)
    assert info.start_from == 25
    assert broadcaster.receiver_count() == 1
    await stream.aclose()
    assert broadcaster.receiver_count() == 0


@pytest.mark.asyncio
async def test_missing_path_defaults_to_root():
    gateway, broadcaster, subscribers = _gateway()
    stream = gateway.handle_request(None, None)
    info = subscribers.get_nowait()
    assert info.start_from is None
    info.initial_events_sender.put_nowait(None)
    fault = ServerSentEvent(4, SseData(EventType.FAULT, {"era_id": 1}))
    broadcaster.send(fault)
    broadcaster.send(BroadcastShutdown())
    received = [event async for event in stream]
    assert received == [OutboundEvent(fault.data.to_json_value(), "4")]


@pytest.mark.asyncio
async def test_subscriber_limit():
    gateway, broadcaster, subscribers = _gateway(max_subscribers=1)
    first = gateway.handle_request("main", {})
    rejected = gateway.handle_request("sigs", {})
    assert rejected == HttpResponse(503, TOO_MANY_SUBSCRIBERS_MESSAGE)
    assert subscribers.qsize() == 1
    await first.aclose()
    again = gateway.handle_request("sigs", {})
    assert not isinstance(again, HttpResponse)
    assert subscribers.qsize() == 2
    assert broadcaster.receiver_count() == 1
    await again.aclose()


@pytest.mark.asyncio
async def test_stream_serves_initial_then_ongoing_without_duplicates():
    gateway, broadcaster, subscribers = _gateway()
    stream = gateway.handle_request("main", {})
    info = subscribers.get_nowait()
    version = ProtocolVersion.from_parts(1, 2, 3)
    first = ServerSentEvent(3, _block("a"), inbound_filter=Filter.MAIN)
    second = ServerSentEvent(4, _block("b"), inbound_filter=Filter.MAIN)
    info.initial_events_sender.put_nowait(ServerSentEvent.initial_event(version))
    info.initial_events_sender.put_nowait(first)
    info.initial_events_sender.put_nowait(None)
    broadcaster.send(first)
    broadcaster.send(second)
    broadcaster.send(BroadcastShutdown())

    received = [event async for event in stream]
    assert received == [
        OutboundEvent(SseData.api_version(version).to_json_value()),
        OutboundEvent(first.data.to_json_value(), "3"),
        OutboundEvent(second.data.to_json_value(), "4"),
    ]
    assert broadcaster.receiver_count() == 0


@pytest.mark.asyncio
async def test_stream_filters_by_path():
    gateway, broadcaster, subscribers = _gateway()
    stream = gateway.handle_request("sigs", {})
    info = subscribers.get_nowait()
    info.initial_events_sender.put_nowait(None)
    signature = ServerSentEvent(
        9, SseData(EventType.FINALITY_SIGNATURE, {"signature": "00"})
    )
    broadcaster.send(ServerSentEvent(8, _block("x")))
    broadcaster.send(signature)
    broadcaster.send(BroadcastShutdown())
    received = [event async for event in stream]
    assert received == [OutboundEvent(signature.data.to_json_value(), "9")]


@pytest.mark.asyncio
async def test_sidecar_stream_receives_sidecar_version():
    gateway, broadcaster, subscribers = _gateway()
    async with gateway.handle_request("sidecar", {}) as stream:
        info = subscribers.get_nowait()
        version = ProtocolVersion.from_parts(1, 0, 0)
        info.initial_events_sender.put_nowait(ServerSentEvent.sidecar_version_event(version))
        info.initial_events_sender.put_nowait(None)
        broadcaster.send(BroadcastShutdown())
        received = [event async for event in stream]
    assert received == [OutboundEvent(SseData.sidecar_version(version).to_json_value())]