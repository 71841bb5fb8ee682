import dataclasses
import json
import logging
import os
import threading
import time
from typing import Dict, Optional

from core.errors import CacheError
from core.file_ops import atomic_write
from core.models import ImageFileIdentity, ImageMetadata, Message

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


@dataclasses.dataclass
class MetadataCacheEntry(Message):
    file_size: int = 0
    modified_time: int = 0
    metadata: ImageMetadata = dataclasses.field(default_factory=ImageMetadata)
    cached_at: float = 0.0


class MetadataCache:
    """Process-lifetime map of path -> metadata snapshot.

    Entries are keyed by path and only served while the file's size and mtime
    still match. The map is persisted to a single JSON file by ``flush()``,
    called once during orderly shutdown; entries older than the retention
    window are dropped when the file is loaded.
    """

    def __init__(self, cache_file: Optional[str] = None, retention_days: int = DEFAULT_RETENTION_DAYS):
        self._cache_file = cache_file
        self._retention_seconds = retention_days * 24 * 60 * 60
        self._entries: Dict[str, MetadataCacheEntry] = {}
        self._lock = threading.Lock()
        if cache_file:
            self._load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, identity: ImageFileIdentity) -> Optional[ImageMetadata]:
        """Metadata for identity.path if the file is unchanged; stale entries are dropped."""
        with self._lock:
            entry = self._entries.get(identity.path)
            if entry is None:
                return None
            if entry.file_size == identity.file_size and entry.modified_time == identity.modified_time:
                return entry.metadata
            del self._entries[identity.path]
        logger.debug(f"Metadata cache entry for {identity.path} is stale")
        return None

    def store(self, identity: ImageFileIdentity, metadata: ImageMetadata) -> None:
        entry = MetadataCacheEntry(
            file_size=identity.file_size,
            modified_time=identity.modified_time,
            metadata=metadata,
            cached_at=time.time(),
        )
        with self._lock:
            self._entries[identity.path] = entry

    def invalidate(self, path: str) -> None:
        with self._lock:
            self._entries.pop(path, None)

    def flush(self) -> bool:
        """Write all entries to the cache file. Returns False when there was nothing to write."""
        if not self._cache_file:
            return False
        with self._lock:
            if not self._entries:
                return False
            snapshot = {path: entry.model_dump() for path, entry in self._entries.items()}
        try:
            os.makedirs(os.path.dirname(os.path.abspath(self._cache_file)), exist_ok=True)
            atomic_write(self._cache_file, json.dumps(snapshot).encode("utf-8"))
        except OSError as e:
            raise CacheError(f"Failed to write metadata cache {self._cache_file}: {e}") from e
        logger.info("Flushed %d metadata cache entries to %s", len(snapshot), self._cache_file)
        return True

    def _load(self) -> None:
        if not os.path.exists(self._cache_file):
            return
        try:
            with open(self._cache_file, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError("top-level value is not an object")
            entries = {path: MetadataCacheEntry.model_validate(value) for path, value in raw.items()}
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable metadata cache {self._cache_file}: {e}")
            return

        cutoff = time.time() - self._retention_seconds
        fresh = {path: entry for path, entry in entries.items() if entry.cached_at >= cutoff}
        expired = len(entries) - len(fresh)
        with self._lock:
            self._entries = fresh
        logger.info("Loaded %d metadata cache entries (%d expired)", len(fresh), expired)
