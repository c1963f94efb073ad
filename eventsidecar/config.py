"""Configuration of the event stream server."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_ADDRESS = "0.0.0.0"
DEFAULT_EVENT_STREAM_BUFFER_LENGTH = 5000
DEFAULT_MAX_CONCURRENT_SUBSCRIBERS = 100


@dataclass
class Config:
    """SSE HTTP server configuration."""

    address: str
    event_stream_buffer_length: int
    max_concurrent_subscribers: int

    @classmethod
    def new(
        cls,
        port: int,
        buffer_length: int | None = None,
        max_subscribers: int | None = None,
    ) -> "Config":
        """Build a config bound to all interfaces on ``port``."""
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"port out of range: {port}")
        return cls(
            address=f"{DEFAULT_ADDRESS}:{port}",
            event_stream_buffer_length=(
                DEFAULT_EVENT_STREAM_BUFFER_LENGTH if buffer_length is None else buffer_length
            ),
            max_concurrent_subscribers=(
                DEFAULT_MAX_CONCURRENT_SUBSCRIBERS if max_subscribers is None else max_subscribers
            ),
        )

    @classmethod
    def default(cls) -> "Config":
        """The default config: port 0 and default limits."""
        return cls.new(0)