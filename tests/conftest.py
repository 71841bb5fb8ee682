"""
Shared pytest fixtures for imagelens tests.
"""
import io
import os
import sys

# Ensure project root is on path for all tests
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest
from PIL import Image, PngImagePlugin

from config.config_manager import ConfigManager, merge_over_defaults, validate
from core.image_service import ImageService
from core.metadata_cache import MetadataCache
from core.models import ThumbnailConfig
from core.thumbnail_cache import ThumbnailCacheManager

SAMPLE_PARAMETERS = (
    "masterpiece, (best quality:1.2), landscape\n"
    "Negative prompt: lowres, (bad hands:1.4)\n"
    "Steps: 20, Sampler: Euler a, Schedule type: Karras, CFG scale: 7, Seed: 12345, "
    "Size: 512x768, Model: sd_xl_base, Denoising strength: 0.4, Clip skip: 2"
)


class MockConfigManager(ConfigManager):
    """ConfigManager fed from a plain dict; never touches a config file."""

    def __init__(self, overrides: dict | None = None):
        self.config_path = None
        base = {"logging_level": "DEBUG", "thumbnails": {"size": 64}}
        self.config = validate(merge_over_defaults(overrides or {}, merge_over_defaults(base)))

    def save_config(self, config):
        pass


def png_bytes(size=(64, 48), color=(200, 80, 40), mode="RGB", text: dict | None = None) -> bytes:
    """Encode a solid-colour PNG, optionally with tEXt chunks."""
    info = None
    if text:
        info = PngImagePlugin.PngInfo()
        for key, value in text.items():
            info.add_text(key, value)
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, "PNG", pnginfo=info)
    return buf.getvalue()


def jpeg_bytes(size=(64, 48), color=(30, 120, 220), exif: Image.Exif | None = None) -> bytes:
    buf = io.BytesIO()
    kwargs = {"quality": 90}
    if exif is not None:
        kwargs["exif"] = exif
    Image.new("RGB", size, color).save(buf, "JPEG", **kwargs)
    return buf.getvalue()


def webp_bytes(size=(64, 48), color=(10, 200, 10), lossless=False) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, "WEBP", lossless=lossless)
    return buf.getvalue()


@pytest.fixture()
def image_dir(tmp_path):
    d = tmp_path / "images"
    d.mkdir()
    return d


@pytest.fixture()
def png_file(image_dir):
    path = image_dir / "generated.png"
    path.write_bytes(png_bytes(size=(800, 600), text={"parameters": SAMPLE_PARAMETERS, "Comment": "keep me"}))
    return str(path)


@pytest.fixture()
def jpeg_file(image_dir):
    path = image_dir / "photo.jpg"
    path.write_bytes(jpeg_bytes(size=(640, 480)))
    return str(path)


@pytest.fixture()
def webp_file(image_dir):
    path = image_dir / "picture.webp"
    path.write_bytes(webp_bytes(size=(120, 90)))
    return str(path)


@pytest.fixture()
def cache_env(tmp_path):
    """Thumbnail and metadata caches rooted in tmp_path."""
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    return {
        "cache_dir": cache_dir,
        "thumbnail_dir": str(cache_dir / "thumbnails"),
        "metadata_file": str(cache_dir / "metadata_cache.json"),
        "config": MockConfigManager({"cache_dir": str(cache_dir)}),
    }


@pytest.fixture()
def service(cache_env):
    svc = ImageService(
        ThumbnailCacheManager(cache_env["thumbnail_dir"]),
        MetadataCache(cache_env["metadata_file"]),
        thumbnail_config=ThumbnailConfig(size=64),
        num_workers=4,
    )
    yield svc
    svc.shutdown()
