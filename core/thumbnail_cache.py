import hashlib
import json
import logging
import os
from typing import Dict, Optional

from core.errors import CacheError
from core.file_ops import atomic_write, remove_files
from core.models import ImageFileIdentity, ThumbnailCacheEntry, ThumbnailConfig

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".json"


def cache_key(path: str) -> str:
    """First 16 hex chars of the SHA-256 of the normalized source path."""
    normalized = os.path.normpath(os.path.abspath(path))
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]


class ThumbnailCacheManager:
    """Thumbnails on disk as ``<key>.<format>`` plus a ``<key>.json`` sidecar.

    The sidecar records the source file identity and the generation config; a
    thumbnail is reused only while both still match.
    """

    def __init__(self, cache_dir: str):
        self.cache_dir = os.path.expanduser(cache_dir)
        os.makedirs(self.cache_dir, exist_ok=True)

    def sidecar_path(self, key: str) -> str:
        return os.path.join(self.cache_dir, key + SIDECAR_SUFFIX)

    @staticmethod
    def thumbnail_filename(key: str, fmt: str) -> str:
        return f"{key}.{fmt}"

    def thumbnail_path(self, entry: ThumbnailCacheEntry) -> str:
        return os.path.join(self.cache_dir, entry.thumbnail_filename)

    def load_entry(self, key: str) -> Optional[ThumbnailCacheEntry]:
        """Sidecar for key, or None if missing. Raises CacheError if it is corrupt."""
        path = self.sidecar_path(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise CacheError(f"Unreadable thumbnail sidecar {path}: {e}") from e
        if not isinstance(raw, dict):
            raise CacheError(f"Thumbnail sidecar {path} is not a JSON object")
        try:
            return ThumbnailCacheEntry.model_validate(raw)
        except (TypeError, AttributeError) as e:
            raise CacheError(f"Malformed thumbnail sidecar {path}: {e}") from e

    def should_regenerate(self, key: str, identity: ImageFileIdentity, config: ThumbnailConfig) -> bool:
        try:
            entry = self.load_entry(key)
        except CacheError as e:
            logger.warning(f"{e}; regenerating")
            return True
        if entry is None:
            return True
        if not os.path.exists(self.thumbnail_path(entry)):
            return True
        return not entry.is_valid_for(identity, config)

    def load_thumbnail(self, key: str, entry: ThumbnailCacheEntry) -> bytes:
        path = self.thumbnail_path(entry)
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise CacheError(f"Cannot read cached thumbnail {path}: {e}") from e

    def save(self, key: str, data: bytes, entry: ThumbnailCacheEntry) -> None:
        """Write thumbnail then sidecar, replacing whatever was cached for key."""
        previous = None
        try:
            previous = self.load_entry(key)
        except CacheError:
            pass
        try:
            atomic_write(self.thumbnail_path(entry), data)
            atomic_write(self.sidecar_path(key), entry.model_dump_json(indent=2).encode("utf-8"))
        except OSError as e:
            raise CacheError(f"Failed to write thumbnail cache entry {key}: {e}") from e
        if previous is not None and previous.thumbnail_filename != entry.thumbnail_filename:
            remove_files([self.thumbnail_path(previous)])

    def invalidate(self, key: str) -> None:
        paths = [self.sidecar_path(key)]
        try:
            entry = self.load_entry(key)
        except CacheError:
            entry = None
        if entry is not None:
            paths.append(self.thumbnail_path(entry))
        remove_files(paths)

    def _files(self):
        try:
            names = os.listdir(self.cache_dir)
        except FileNotFoundError:
            return []
        return [os.path.join(self.cache_dir, n) for n in names
                if os.path.isfile(os.path.join(self.cache_dir, n))]

    def clear(self) -> int:
        """Delete every cached file. Per-file failures are skipped; returns the count removed."""
        removed = remove_files(self._files())
        logger.info(f"Cleared {removed} files from thumbnail cache {self.cache_dir}")
        return removed

    def stats(self) -> Dict[str, int]:
        files = self._files()
        total = 0
        for path in files:
            try:
                total += os.path.getsize(path)
            except OSError:
                continue
        return {"file_count": len(files), "total_bytes": total}
