import os

import pytest
import yaml

from config.config_manager import DEFAULT_CONFIG, ConfigManager
from core.image_service import ImageService
from core.models import ThumbnailConfig


def test_missing_file_writes_defaults(tmp_path):
    path = tmp_path / "conf" / "config.yaml"
    cm = ConfigManager(str(path))
    assert cm.config == DEFAULT_CONFIG
    assert yaml.safe_load(path.read_text()) == DEFAULT_CONFIG


def test_partial_file_merged_with_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"thumbnails": {"size": 128}, "workers": 2}))
    cm = ConfigManager(str(path))
    assert cm.get("thumbnails.size") == 128
    assert cm.get("thumbnails.format") == "webp"
    assert cm.get("workers") == 2
    assert cm.get("metadata_cache.retention_days") == 30


def test_defaults_not_mutated(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"thumbnails": {"size": 32}}))
    ConfigManager(str(path)).set("thumbnails.quality", 10)
    assert DEFAULT_CONFIG["thumbnails"] == {"size": 256, "quality": 70, "format": "webp", "dir": None}


def test_get_default_for_missing_or_null(tmp_path):
    cm = ConfigManager(str(tmp_path / "config.yaml"))
    assert cm.get("nope.deeper", 7) == 7
    assert cm.get("thumbnails.dir", "fallback") == "fallback"
    assert cm.get("workers.size", "x") == "x"


def test_set_persists(tmp_path):
    path = tmp_path / "config.yaml"
    cm = ConfigManager(str(path))
    cm.set("thumbnails.format", "png")
    assert ConfigManager(str(path)).get("thumbnails.format") == "png"


def test_cache_dir_expanded(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    cm = ConfigManager(str(tmp_path / "config.yaml"))
    assert cm.cache_dir == os.path.join(str(tmp_path), ".imagelens")


def test_xdg_default_location(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    cm = ConfigManager()
    assert cm.config_path == os.path.join(str(tmp_path), "imagelens", "config.yaml")
    assert os.path.exists(cm.config_path)


@pytest.mark.parametrize("content", ["key: [unclosed", "- just\n- a list\n"])
def test_malformed_file(tmp_path, content):
    path = tmp_path / "config.yaml"
    path.write_text(content)
    with pytest.raises(ValueError):
        ConfigManager(str(path))


@pytest.mark.parametrize("override", [
    {"thumbnails": {"size": 0}},
    {"thumbnails": {"quality": 101}},
    {"thumbnails": {"format": "gif"}},
    {"workers": "many"},
    {"metadata_cache": "off"},
])
def test_invalid_values_rejected(tmp_path, override):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(override))
    with pytest.raises(ValueError):
        ConfigManager(str(path))


def test_set_rejects_invalid_value_and_keeps_old(tmp_path):
    cm = ConfigManager(str(tmp_path / "config.yaml"))
    with pytest.raises(ValueError):
        cm.set("thumbnails.size", -1)
    assert cm.get("thumbnails.size") == 256


def test_derived_paths_and_thumbnail_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"cache_dir": str(tmp_path / "c"),
                                    "thumbnails": {"format": "PNG", "size": 96}}))
    cm = ConfigManager(str(path))
    assert cm.thumbnail_dir == os.path.join(str(tmp_path / "c"), "thumbnails")
    assert cm.metadata_cache_file == os.path.join(str(tmp_path / "c"), "metadata_cache.json")
    assert cm.thumbnail_config == ThumbnailConfig(size=96, quality=70, format="png")


def test_service_from_config(cache_env):
    config = cache_env["config"]
    service = ImageService.from_config(config)
    try:
        assert service.thumbnail_config == ThumbnailConfig(size=64)
        assert service.thumbnail_cache.cache_dir == cache_env["thumbnail_dir"]
        assert os.path.isdir(cache_env["thumbnail_dir"])
    finally:
        service.shutdown()
