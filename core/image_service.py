import asyncio
import dataclasses
import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Awaitable, Callable, List, Optional, Sequence

from core.errors import CacheError, ImageIOError
from core.file_ops import atomic_write, file_identity
from core.image_reader import ImageReader
from core.metadata_cache import DEFAULT_RETENTION_DAYS, MetadataCache
from core.models import BatchItemResult, ImageMetadata, ThumbnailCacheEntry, ThumbnailConfig, ThumbnailResult
from core.path_lock import PathLockService, normalize_path
from core.thumbnail_cache import ThumbnailCacheManager, cache_key
from core.thumbnail_generator import build_metadata, generate
from metadata.codec import embed_rating
from metadata.rating import validate_rating

logger = logging.getLogger(__name__)


class ImageService:
    """Async request surface over the parsers, codecs and caches.

    Blocking file and CPU work runs on a thread pool. Everything that reads a
    file to fill a cache, or rewrites it, runs under that path's lock so the
    operations on one file are totally ordered while different files proceed
    in parallel.
    """

    def __init__(self, thumbnail_cache: ThumbnailCacheManager, metadata_cache: MetadataCache,
                 thumbnail_config: Optional[ThumbnailConfig] = None, num_workers: int = 4,
                 path_locks: Optional[PathLockService] = None):
        self.thumbnail_cache = thumbnail_cache
        self.metadata_cache = metadata_cache
        self.thumbnail_config = thumbnail_config or ThumbnailConfig()
        self.path_locks = path_locks or PathLockService()
        self._executor = ThreadPoolExecutor(max_workers=max(1, num_workers), thread_name_prefix="imagelens")
        self._closed = False

    @classmethod
    def from_config(cls, config_manager) -> "ImageService":
        return cls(
            ThumbnailCacheManager(config_manager.thumbnail_dir),
            MetadataCache(config_manager.metadata_cache_file,
                          int(config_manager.get("metadata_cache.retention_days", DEFAULT_RETENTION_DAYS))),
            thumbnail_config=config_manager.thumbnail_config,
            num_workers=int(config_manager.get("workers", 4)),
        )

    async def _run(self, func: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args))

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def read_metadata(self, path: str) -> ImageMetadata:
        path = normalize_path(path)
        identity = await self._run(file_identity, path)
        cached = self.metadata_cache.get(identity)
        if cached is not None:
            return cached
        async with self.path_locks.exclusive(path):
            return await self._run(self._read_metadata_locked, path)

    def _read_metadata_locked(self, path: str) -> ImageMetadata:
        identity = file_identity(path)
        # why: another task may have filled the entry while we waited for the lock
        cached = self.metadata_cache.get(identity)
        if cached is not None:
            return cached
        with ImageReader.open(path) as reader:
            metadata = build_metadata(reader)
        self.metadata_cache.store(identity, metadata)
        return metadata

    # ------------------------------------------------------------------
    # Thumbnails
    # ------------------------------------------------------------------

    async def load_thumbnail(self, path: str, config: Optional[ThumbnailConfig] = None) -> ThumbnailResult:
        path = normalize_path(path)
        config = dataclasses.replace(config or self.thumbnail_config)
        async with self.path_locks.exclusive(path):
            return await self._run(self._load_thumbnail_locked, path, config)

    async def generate_thumbnail(self, path: str) -> bytes:
        result = await self.load_thumbnail(path)
        return result.data

    def _load_thumbnail_locked(self, path: str, config: ThumbnailConfig) -> ThumbnailResult:
        identity = file_identity(path)
        key = cache_key(path)
        if not self.thumbnail_cache.should_regenerate(key, identity, config):
            try:
                entry = self.thumbnail_cache.load_entry(key)
                data = self.thumbnail_cache.load_thumbnail(key, entry)
                logger.debug(f"Thumbnail cache hit for {path}")
                return ThumbnailResult(path, data, entry)
            except CacheError as e:
                logger.warning(f"Discarding cached thumbnail for {path}: {e}")

        with ImageReader.open(path) as reader:
            bundle = generate(reader, config)
        thumb = bundle.thumbnail
        entry = ThumbnailCacheEntry(
            source_identity=identity,
            generation_config=config,
            thumbnail_filename=self.thumbnail_cache.thumbnail_filename(key, config.format),
            thumbnail_width=thumb.width,
            thumbnail_height=thumb.height,
            thumbnail_mime_type=thumb.mime_type,
            metadata=bundle.metadata,
            created_at=time.time(),
        )
        self.thumbnail_cache.save(key, thumb.data, entry)
        self.metadata_cache.store(identity, bundle.metadata)
        return ThumbnailResult(path, thumb.data, entry)

    async def clear_thumbnail_cache(self) -> int:
        return await self._run(self.thumbnail_cache.clear)

    # ------------------------------------------------------------------
    # Rating
    # ------------------------------------------------------------------

    async def write_rating(self, path: str, rating: int) -> None:
        path = normalize_path(path)
        validate_rating(rating)
        async with self.path_locks.exclusive(path):
            await self._run(self._write_rating_locked, path, rating)

    def _write_rating_locked(self, path: str, rating: int) -> None:
        with ImageReader.open(path) as reader:
            fmt = reader.format
            data = reader.to_bytes()
        updated = embed_rating(data, fmt, rating)
        if updated == data:
            logger.debug(f"Rating {rating} already stored in {path}")
        else:
            try:
                atomic_write(path, updated, copy_mode_from=path)
            except OSError as e:
                raise ImageIOError(f"Failed to write {path}: {e}") from e
            logger.info(f"Wrote rating {rating} to {path}")
        self.metadata_cache.invalidate(path)
        self.thumbnail_cache.invalidate(cache_key(path))

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def _fan_out(self, paths: Sequence[str],
                       operation: Callable[[str], Awaitable]) -> List[BatchItemResult]:
        results = await asyncio.gather(*(operation(p) for p in paths), return_exceptions=True)
        items = []
        for path, result in zip(paths, results):
            if isinstance(result, Exception):
                logger.debug(f"Batch item {path} failed: {result}")
                items.append(BatchItemResult(path=path, error=str(result) or type(result).__name__))
            elif isinstance(result, BaseException):
                raise result
            else:
                items.append(BatchItemResult(path=path, value=result))
        return items

    async def read_metadata_batch(self, paths: Sequence[str]) -> List[BatchItemResult]:
        return await self._fan_out(paths, self.read_metadata)

    async def generate_thumbnails_batch(self, paths: Sequence[str]) -> List[BatchItemResult]:
        return await self._fan_out(paths, self.load_thumbnail)

    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Flush the metadata cache once and stop the worker pool."""
        if self._closed:
            return
        self._closed = True
        try:
            self.metadata_cache.flush()
        except CacheError as e:
            logger.error(f"Metadata cache flush failed: {e}")
        self._executor.shutdown(wait=True)
        logger.info("ImageService shut down")
