import json
import time

import pytest

from core.errors import CacheError
from core.metadata_cache import MetadataCache
from core.models import CaptureDates, ImageFileIdentity, ImageMetadata


def _identity(path="/img/a.png", size=100, mtime=1_000):
    return ImageFileIdentity(path=path, file_size=size, modified_time=mtime)


def _metadata(rating=3):
    return ImageMetadata(width=10, height=20, file_size=100, mime_type="image/png", rating=rating,
                         capture_dates=CaptureDates(original="2024:01:01 00:00:00"))


def test_get_after_store():
    cache = MetadataCache()
    cache.store(_identity(), _metadata())
    assert cache.get(_identity()) == _metadata()


def test_changed_file_is_a_miss_and_drops_entry():
    cache = MetadataCache()
    cache.store(_identity(), _metadata())
    assert cache.get(_identity(mtime=2_000)) is None
    assert len(cache) == 0


def test_changed_size_is_a_miss():
    cache = MetadataCache()
    cache.store(_identity(), _metadata())
    assert cache.get(_identity(size=101)) is None


def test_invalidate():
    cache = MetadataCache()
    cache.store(_identity("/a"), _metadata())
    cache.store(_identity("/b"), _metadata())
    cache.invalidate("/a")
    assert cache.get(_identity("/a")) is None
    assert len(cache) == 1


def test_flush_and_reload(tmp_path):
    cache_file = str(tmp_path / "metadata.json")
    cache = MetadataCache(cache_file)
    cache.store(_identity(), _metadata(rating=5))
    assert cache.flush() is True

    reloaded = MetadataCache(cache_file)
    restored = reloaded.get(_identity())
    assert restored == _metadata(rating=5)
    assert isinstance(restored.capture_dates, CaptureDates)


def test_flush_without_entries_or_file(tmp_path):
    assert MetadataCache(str(tmp_path / "metadata.json")).flush() is False
    in_memory = MetadataCache()
    in_memory.store(_identity(), _metadata())
    assert in_memory.flush() is False


def test_expired_entries_dropped_on_load(tmp_path):
    cache_file = tmp_path / "metadata.json"
    cache = MetadataCache(str(cache_file))
    cache.store(_identity("/old"), _metadata())
    cache.store(_identity("/new"), _metadata())
    cache.flush()

    raw = json.loads(cache_file.read_text())
    raw["/old"]["cached_at"] = time.time() - 31 * 24 * 60 * 60
    cache_file.write_text(json.dumps(raw))

    reloaded = MetadataCache(str(cache_file), retention_days=30)
    assert reloaded.get(_identity("/old")) is None
    assert reloaded.get(_identity("/new")) is not None


def test_corrupt_file_ignored(tmp_path, caplog):
    cache_file = tmp_path / "metadata.json"
    cache_file.write_text("{not json")
    cache = MetadataCache(str(cache_file))
    assert len(cache) == 0
    assert "Ignoring unreadable metadata cache" in caplog.text


def test_flush_failure_raises_cache_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    cache = MetadataCache(str(blocker / "metadata.json"))
    cache.store(_identity(), _metadata())
    with pytest.raises(CacheError):
        cache.flush()
