"""Request parsing and per-stream filtering of server-sent events."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .endpoint import Endpoint
from .events import EventFilter, EventType, Filter, ServerSentEvent

_log = logging.getLogger(__name__)

SSE_API_ROOT_PATH = "events"
SSE_API_MAIN_PATH = "main"
SSE_API_DEPLOYS_PATH = "deploys"
SSE_API_SIGNATURES_PATH = "sigs"
SSE_API_SIDECAR_PATH = "sidecar"
QUERY_FIELD = "start_from"

ID_MAX = 0xFFFFFFFF

EVENTS_FILTER: tuple[EventFilter, ...] = (
    EventFilter.API_VERSION,
    EventFilter.BLOCK_ADDED,
    EventFilter.DEPLOY_PROCESSED,
    EventFilter.FAULT,
    EventFilter.FINALITY_SIGNATURE,
)
MAIN_FILTER: tuple[EventFilter, ...] = (
    EventFilter.API_VERSION,
    EventFilter.BLOCK_ADDED,
    EventFilter.DEPLOY_PROCESSED,
    EventFilter.DEPLOY_EXPIRED,
    EventFilter.FAULT,
    EventFilter.STEP,
)
DEPLOYS_FILTER: tuple[EventFilter, ...] = (
    EventFilter.API_VERSION,
    EventFilter.DEPLOY_ACCEPTED,
)
SIGNATURES_FILTER: tuple[EventFilter, ...] = (
    EventFilter.API_VERSION,
    EventFilter.FINALITY_SIGNATURE,
)
SIDECAR_FILTER: tuple[EventFilter, ...] = (EventFilter.SIDECAR_VERSION,)

_EVENT_FILTERS = {
    SSE_API_ROOT_PATH: EVENTS_FILTER,
    SSE_API_MAIN_PATH: MAIN_FILTER,
    SSE_API_DEPLOYS_PATH: DEPLOYS_FILTER,
    SSE_API_SIGNATURES_PATH: SIGNATURES_FILTER,
    SSE_API_SIDECAR_PATH: SIDECAR_FILTER,
}

_ENDPOINTS = {
    SSE_API_ROOT_PATH: Endpoint.EVENTS,
    SSE_API_MAIN_PATH: Endpoint.MAIN,
    SSE_API_DEPLOYS_PATH: Endpoint.DEPLOYS,
    SSE_API_SIGNATURES_PATH: Endpoint.SIGS,
    SSE_API_SIDECAR_PATH: Endpoint.SIDECAR,
}

_ID_PATTERN = re.compile(r"\+?[0-9]+")

INVALID_QUERY_MESSAGE = f"invalid query: expected single field '{QUERY_FIELD}=<EVENT ID>'\n"
INVALID_PATH_MESSAGE = (
    f"invalid path: expected '/{SSE_API_ROOT_PATH}/{SSE_API_MAIN_PATH}', "
    f"'/{SSE_API_ROOT_PATH}/{SSE_API_DEPLOYS_PATH}' or "
    f"'/{SSE_API_ROOT_PATH}/{SSE_API_SIGNATURES_PATH}'\n"
)
TOO_MANY_SUBSCRIBERS_MESSAGE = "server has reached limit of subscribers"


@dataclass(frozen=True)
class HttpResponse:
    """A plain HTTP response with a status code and a text body."""

    status: int
    body: str


@dataclass(frozen=True)
class OutboundEvent:
    """An event ready to be written to a client's SSE stream."""

    data: Any
    id: str | None = None

    def render(self) -> str:
        """The wire form of the event: a data line, an optional id line, a blank line."""
        text = json.dumps(self.data, separators=(",", ":"))
        lines = [f"data:{line}" for line in text.split("\n")]
        if self.id is not None:
            lines.append(f"id:{self.id}")
        return "\n".join(lines) + "\n\n"


def get_filter(path_param: str) -> tuple[EventFilter, ...] | None:
    """The event kinds served by the final URL path element, or None if unknown."""
    return _EVENT_FILTERS.get(path_param)


def path_to_filter(path_param: str) -> Endpoint | None:
    """The endpoint named by the final URL path element, or None if unknown."""
    return _ENDPOINTS.get(path_param)


def parse_query(query: Mapping[str, str]) -> int | None:
    """The starting event ID from the query, or None if the query is empty.

    Raises ValueError unless the query holds exactly one field, ``start_from``,
    mapped to a valid event ID.
    """
    if not query:
        return None
    if len(query) > 1:
        raise ValueError(INVALID_QUERY_MESSAGE.strip())
    raw = query.get(QUERY_FIELD)
    if raw is None or not _ID_PATTERN.fullmatch(raw):
        raise ValueError(INVALID_QUERY_MESSAGE.strip())
    value = int(raw)
    if value > ID_MAX:
        raise ValueError(INVALID_QUERY_MESSAGE.strip())
    return value


def create_404() -> HttpResponse:
    """Response for an unknown path."""
    return HttpResponse(404, INVALID_PATH_MESSAGE)


def create_422() -> HttpResponse:
    """Response for a malformed query string."""
    return HttpResponse(422, INVALID_QUERY_MESSAGE)


def create_503() -> HttpResponse:
    """Response when the server already has its maximum of subscribers."""
    return HttpResponse(503, TOO_MANY_SUBSCRIBERS_MESSAGE)


def determine_id(event: ServerSentEvent) -> str | None:
    """The id to send with the event, or None if the event is malformed.

    Only version events may lack an ID, and API version events must lack one;
    an absent ID becomes the empty string.
    """
    event_type = event.data.event_type
    if event.id is not None:
        if event_type is EventType.API_VERSION:
            _log.error("ApiVersion should have no event ID")
            return None
        return str(event.id)
    if not event_type.is_version:
        _log.error("only ApiVersion and SidecarVersion may have no event ID")
        return None
    return ""


def should_send_shutdown(event: ServerSentEvent, stream_filter: Endpoint) -> bool:
    """Whether a shutdown from the event's inbound filter goes to ``stream_filter``."""
    inbound = event.inbound_filter
    if inbound is None:
        return stream_filter is Endpoint.SIDECAR
    if inbound is Filter.MAIN and stream_filter is Endpoint.EVENTS:
        return True
    if inbound is Filter.EVENTS and stream_filter is Endpoint.MAIN:
        return True
    return stream_filter.is_corresponding_to(inbound)


def _event_json(event: ServerSentEvent) -> Any:
    if event.json_data is not None:
        return json.loads(event.json_data)
    return event.data.to_json_value()


def _deploy_accepted_json(event: ServerSentEvent) -> Any:
    if event.json_data is not None:
        return json.loads(event.json_data)
    return {"DeployAccepted": event.data.payload}


def filter_map_server_sent_event(
    event: ServerSentEvent,
    stream_filter: Endpoint,
    event_filter: Sequence[EventFilter],
) -> OutboundEvent | None:
    """Map the event to its outbound form, or None if the stream should skip it."""
    if not event.data.should_include(event_filter):
        return None
    event_id = determine_id(event)
    if event_id is None:
        return None

    event_type = event.data.event_type
    if event_type.is_version:
        return OutboundEvent(_event_json(event))
    if event_type is EventType.DEPLOY_ACCEPTED:
        return OutboundEvent(_deploy_accepted_json(event), event_id)
    if event_type is EventType.SHUTDOWN:
        if should_send_shutdown(event, stream_filter):
            return OutboundEvent(_event_json(event), event_id)
        return None
    return OutboundEvent(_event_json(event), event_id)