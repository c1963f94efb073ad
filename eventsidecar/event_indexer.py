"""Persistent, wrapping index for outbound events."""

from __future__ import annotations

import logging
import os
import struct
from pathlib import Path
from types import TracebackType

CACHE_FILENAME = "sse_index"
INDEX_MAX = 0xFFFFFFFF

_FORMAT = struct.Struct("<I")
_log = logging.getLogger(__name__)


class EventIndexer:
    """Hands out event IDs, persisting the next one between sessions."""

    def __init__(self, storage_path: str | os.PathLike[str]) -> None:
        storage = Path(storage_path)
        try:
            storage.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            _log.error("Failed to create directory for sse cache: %s", err)
        self._cache = storage / CACHE_FILENAME
        self._index = self._load()

    def _load(self) -> int:
        try:
            cached = self._cache.read_bytes()
        except OSError as err:
            if self._cache.exists():
                _log.warning("failed to read sse cache file %s: %s", self._cache, err)
            return 0
        if len(cached) != _FORMAT.size:
            _log.warning(
                "failed to parse sse cache file %s (%d bytes)", self._cache, len(cached)
            )
            return 0
        return _FORMAT.unpack(cached)[0]

    def next_index(self) -> int:
        """Return the current index and advance, wrapping past the maximum."""
        index = self._index
        self._index = (index + 1) & INDEX_MAX
        return index

    def current_index(self) -> int:
        return self._index

    def persist(self) -> None:
        """Write the next index to the cache file; failures are only logged."""
        try:
            self._cache.write_bytes(_FORMAT.pack(self._index))
        except OSError as err:
            _log.warning("failed to write sse cache file %s: %s", self._cache, err)
        else:
            _log.debug("cached sse index %d to file %s", self._index, self._cache)

    def close(self) -> None:
        self.persist()

    def __enter__(self) -> "EventIndexer":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()