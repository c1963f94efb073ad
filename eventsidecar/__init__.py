"""Server-sent event stream core: event model, filtering, ID indexing, buffering, replay and broadcast."""

__version__ = "0.1.0"