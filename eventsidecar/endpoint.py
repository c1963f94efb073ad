"""Outbound endpoints served by the event stream server."""

from __future__ import annotations

from enum import Enum

from .events import Filter


class Endpoint(Enum):
    """Every endpoint a client may subscribe to."""

    EVENTS = "events"
    MAIN = "events/main"
    DEPLOYS = "events/deploys"
    SIGS = "events/sigs"
    SIDECAR = "events/sidecar"

    def __str__(self) -> str:
        return self.value

    def is_corresponding_to(self, filter: Filter) -> bool:
        """Whether this endpoint matches the given inbound filter."""
        return _CORRESPONDING.get(self) is filter


_CORRESPONDING = {
    Endpoint.EVENTS: Filter.EVENTS,
    Endpoint.MAIN: Filter.MAIN,
    Endpoint.DEPLOYS: Filter.DEPLOYS,
    Endpoint.SIGS: Filter.SIGS,
}