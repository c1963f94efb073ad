"""Event data carried through the event stream server."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable


@dataclass(frozen=True, order=True)
class ProtocolVersion:
    """A semantic protocol version."""

    major: int
    minor: int
    patch: int

    def __post_init__(self) -> None:
        for part in (self.major, self.minor, self.patch):
            if not isinstance(part, int) or part < 0 or part > 0xFFFFFFFF:
                raise ValueError(f"invalid protocol version part: {part!r}")

    @classmethod
    def from_parts(cls, major: int, minor: int, patch: int) -> "ProtocolVersion":
        return cls(major, minor, patch)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


class Filter(Enum):
    """The inbound endpoint an event was received from."""

    EVENTS = "events"
    MAIN = "events/main"
    DEPLOYS = "events/deploys"
    SIGS = "events/sigs"

    def __str__(self) -> str:
        return self.value


class EventFilter(Enum):
    """Kinds of event a client stream may subscribe to."""

    API_VERSION = "ApiVersion"
    SIDECAR_VERSION = "SidecarVersion"
    BLOCK_ADDED = "BlockAdded"
    DEPLOY_ACCEPTED = "DeployAccepted"
    DEPLOY_PROCESSED = "DeployProcessed"
    DEPLOY_EXPIRED = "DeployExpired"
    FAULT = "Fault"
    FINALITY_SIGNATURE = "FinalitySignature"
    STEP = "Step"


class EventType(Enum):
    """The variant of an ``SseData`` value; the value is its JSON tag."""

    API_VERSION = "ApiVersion"
    SIDECAR_VERSION = "SidecarVersion"
    BLOCK_ADDED = "BlockAdded"
    DEPLOY_ACCEPTED = "DeployAccepted"
    DEPLOY_PROCESSED = "DeployProcessed"
    DEPLOY_EXPIRED = "DeployExpired"
    FAULT = "Fault"
    FINALITY_SIGNATURE = "FinalitySignature"
    STEP = "Step"
    SHUTDOWN = "Shutdown"

    @property
    def event_filter(self) -> EventFilter | None:
        """The subscription kind matching this variant, None for shutdown."""
        if self is EventType.SHUTDOWN:
            return None
        return EventFilter(self.value)

    @property
    def is_version(self) -> bool:
        return self in (EventType.API_VERSION, EventType.SIDECAR_VERSION)


@dataclass
class SseData:
    """The payload of one server-sent event."""

    event_type: EventType
    payload: Any = None

    def __post_init__(self) -> None:
        if self.event_type.is_version:
            if not isinstance(self.payload, ProtocolVersion):
                raise TypeError(f"{self.event_type.value} requires a ProtocolVersion payload")
        elif self.event_type is EventType.SHUTDOWN:
            if self.payload is not None:
                raise ValueError("Shutdown carries no payload")
        elif self.payload is None:
            raise ValueError(f"{self.event_type.value} requires a payload")

    @classmethod
    def api_version(cls, version: ProtocolVersion) -> "SseData":
        return cls(EventType.API_VERSION, version)

    @classmethod
    def sidecar_version(cls, version: ProtocolVersion) -> "SseData":
        return cls(EventType.SIDECAR_VERSION, version)

    @classmethod
    def shutdown(cls) -> "SseData":
        return cls(EventType.SHUTDOWN)

    def should_include(self, filters: Iterable[EventFilter]) -> bool:
        """Whether a stream subscribed to ``filters`` receives this event.

        Shutdown is always included.
        """
        wanted = self.event_type.event_filter
        return wanted is None or wanted in set(filters)

    def to_json_value(self) -> Any:
        """The externally tagged JSON form of this event."""
        if self.event_type is EventType.SHUTDOWN:
            return EventType.SHUTDOWN.value
        if self.event_type.is_version:
            return {self.event_type.value: str(self.payload)}
        return {self.event_type.value: copy.deepcopy(self.payload)}


@dataclass
class ServerSentEvent:
    """The components of a single SSE."""

    id: int | None
    data: SseData
    json_data: str | None = None
    inbound_filter: Filter | None = None

    @classmethod
    def initial_event(cls, version: ProtocolVersion) -> "ServerSentEvent":
        """The first event sent to every subscribing client."""
        return cls(id=None, data=SseData.api_version(version))

    @classmethod
    def sidecar_version_event(cls, version: ProtocolVersion) -> "ServerSentEvent":
        return cls(id=None, data=SseData.sidecar_version(version))


@dataclass(frozen=True)
class BroadcastShutdown:
    """Broadcast message telling every client stream to terminate."""