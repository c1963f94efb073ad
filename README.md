# eventsidecar

The core of a server-sent events (SSE) stream server, built on `asyncio` and the
standard library. It has no runtime dependencies. Incoming events are kept in a ring
buffer and broadcast to subscribed clients. Each client chooses an endpoint and may ask
to replay buffered events from a given event ID.

## Modules

- `eventsidecar.config.Config`: the server settings.
  - `Config.new(port, buffer_length=None, max_subscribers=None)` binds to
    `0.0.0.0:<port>`.
  - The default buffer length is 5000 and the default subscriber limit is 100.
  - `Config.default()` uses port 0.
- `eventsidecar.events`: the event model.
  - `ProtocolVersion` is a version such as `1.2.3`.
  - `Filter` is the inbound endpoint an event came from.
  - `EventFilter` is a kind of event a stream can subscribe to.
  - `EventType` is the variant of an event.
  - `SseData` is an event payload. `to_json_value()` gives its externally tagged JSON
    form, for example `{"ApiVersion": "1.2.3"}` or `"Shutdown"`.
  - `ServerSentEvent` is an event with its optional ID.
  - `BroadcastShutdown` is the message that ends every client stream.
- `eventsidecar.endpoint.Endpoint`: the outbound endpoints `events`, `events/main`,
  `events/deploys`, `events/sigs` and `events/sidecar`.
- `eventsidecar.event_indexer.EventIndexer`: a 32-bit event ID counter.
  - It wraps to 0 after `0xFFFFFFFF`.
  - It is saved to an `sse_index` file in a storage directory when you call `persist()`
    or `close()`, or when a `with` block exits.
  - If that file is missing or corrupt, the counter starts from 0.
- `eventsidecar.sse_filtering`: decides what each stream receives.
  - `get_filter` and `path_to_filter` map a path element to the event kinds and the
    endpoint it serves.
  - `parse_query` validates the `start_from` query.
  - `create_404`, `create_422` and `create_503` build `HttpResponse` values.
  - `filter_map_server_sent_event` turns an event into an `OutboundEvent`, or returns
    `None` when the stream should skip it. `OutboundEvent.render()` gives the wire form,
    which is `data:<json>`, then an optional `id:<n>`, then a blank line.
- `eventsidecar.streaming`: broadcasting to clients.
  - `Broadcaster` is a bounded broadcast channel.
  - `BroadcastReceiver.recv()` raises `Lagged` when a receiver falls behind.
  - `stream_to_client` serves a client's initial events and then the live ones. It drops
    live events whose ID was already served and stops on `BroadcastShutdown`.
- `eventsidecar.gateway.SseGateway`: handles a client request.
  - `handle_request(path_param=None, query=None)` first checks the subscriber limit and
    returns a 503 response if it has been reached.
  - Next it returns a 404 response for an unknown path and a 422 response for a bad query.
  - Otherwise it registers a `NewSubscriberInfo` and returns an async iterator of the
    client's `OutboundEvent`s. The iterator can be used with `async with`.
- `eventsidecar.http_server`: the event loop.
  - `EventBuffer` is the ring buffer.
  - `EventStreamCore` buffers and broadcasts incoming data. It sends each new subscriber
    the sidecar version (`1.0.0`), any requested buffered events (correctly across ID
    wrap-around) and the latest API version.
  - `run(config, data_queue, broadcaster, subscriber_queue)` serves until `None` arrives
    on `data_queue`, then broadcasts `BroadcastShutdown`.

## Endpoints and query

`path_param` is one of `main`, `deploys`, `sigs` or `sidecar`. Pass `None` for the root
`events` stream. The only query field accepted is `start_from=<EVENT ID>`, a value from
0 to 4294967295. Any other non-empty query gets a 422 response.

## Example

```python
import asyncio

from eventsidecar.config import Config
from eventsidecar.events import EventType, Filter, ProtocolVersion, SseData
from eventsidecar.gateway import SseGateway
from eventsidecar.http_server import run
from eventsidecar.streaming import Broadcaster


async def main():
    config = Config.new(18888, buffer_length=100, max_subscribers=10)
    broadcaster = Broadcaster(1000)
    data_queue = asyncio.Queue()
    subscriber_queue = asyncio.Queue()
    server = asyncio.create_task(run(config, data_queue, broadcaster, subscriber_queue))
    gateway = SseGateway(broadcaster, config.max_concurrent_subscribers, subscriber_queue)

    version = ProtocolVersion.from_parts(1, 2, 3)
    await data_queue.put((None, SseData.api_version(version), Filter.MAIN, None))
    await data_queue.put(
        (0, SseData(EventType.BLOCK_ADDED, {"block_hash": "ab"}), Filter.MAIN, None)
    )
    await asyncio.sleep(0.01)

    stream = gateway.handle_request("main", {"start_from": "0"})
    await data_queue.put(None)  # ends the server once the subscriber is registered
    async with stream:
        async for event in stream:
            print(event.render(), end="")
    await server


asyncio.run(main())
```

## What this package does not do

It does not open a socket or speak HTTP. `SseGateway.handle_request` takes an already
parsed path element and query, and returns either an `HttpResponse` or an async iterator
of events. Serving these over the network is left to whatever web server you put in
front of it. `run` does not number events. Each item on `data_queue` already carries its
ID, which can come from an `EventIndexer`. The package provides no command-line program,
and its only storage is the `sse_index` counter file.

## Installing and testing

```
pip install ".[test]"
pytest
```