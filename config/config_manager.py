import copy
import os
from typing import Any, Optional

import yaml

from core.models import ThumbnailConfig

DEFAULT_CONFIG = {
    "logging_level": "INFO",
    "cache_dir": "~/.imagelens",
    "thumbnails": {
        "size": 256,
        "quality": 70,
        "format": "webp",
        "dir": None,  # defaults to <cache_dir>/thumbnails
    },
    "metadata_cache": {
        "file": None,  # defaults to <cache_dir>/metadata_cache.json
        "retention_days": 30,
    },
    "workers": 4,
}

THUMBNAIL_FORMATS = ("webp", "jpeg", "png")


def config_home() -> str:
    return os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")


def merge_over_defaults(overrides: dict, defaults: dict = DEFAULT_CONFIG) -> dict:
    """Recursively overlay overrides on a copy of defaults."""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_over_defaults(value, current)
        else:
            merged[key] = value
    return merged


def _positive_int(config: dict, section: str, key: str) -> None:
    value = config[section][key] if section else config[key]
    name = f"{section}.{key}" if section else key
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"Config value {name} must be a positive integer, got {value!r}")


def validate(config: dict) -> dict:
    """Reject values the service cannot run with. Returns config unchanged."""
    for section in ("thumbnails", "metadata_cache"):
        if not isinstance(config.get(section), dict):
            raise ValueError(f"Config section {section!r} must be a mapping")
    _positive_int(config, "thumbnails", "size")
    _positive_int(config, "thumbnails", "quality")
    _positive_int(config, "metadata_cache", "retention_days")
    _positive_int(config, None, "workers")
    if not 1 <= config["thumbnails"]["quality"] <= 100:
        raise ValueError("Config value thumbnails.quality must be between 1 and 100")
    fmt = str(config["thumbnails"]["format"]).lower()
    if fmt not in THUMBNAIL_FORMATS:
        raise ValueError(f"Config value thumbnails.format must be one of {', '.join(THUMBNAIL_FORMATS)}")
    return config


class ConfigManager:
    """YAML settings at ``$XDG_CONFIG_HOME/imagelens/config.yaml`` layered over DEFAULT_CONFIG.

    A missing file is created with the defaults. Malformed YAML or invalid
    values raise ValueError.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or os.path.join(config_home(), "imagelens", "config.yaml")
        self.config = self.load_config()

    def load_config(self) -> dict:
        try:
            with open(self.config_path, "r") as f:
                user_config = yaml.safe_load(f)
        except FileNotFoundError:
            self.save_config(DEFAULT_CONFIG)
            return copy.deepcopy(DEFAULT_CONFIG)
        except yaml.YAMLError as exc:
            raise ValueError(f"Malformed config at {self.config_path}") from exc
        if user_config is None:
            user_config = {}
        if not isinstance(user_config, dict):
            raise ValueError(f"Config at {self.config_path} must be a mapping")
        return validate(merge_over_defaults(user_config))

    def save_config(self, config: dict) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.config_path)), exist_ok=True)
        with open(self.config_path, "w") as f:
            yaml.safe_dump(config, f, default_flow_style=False)

    def get(self, key: str, default: Any = None) -> Any:
        """Dotted lookup, e.g. ``get("thumbnails.size")``; None values yield default."""
        node: Any = self.config
        for part in key.split("."):
            if not isinstance(node, dict):
                return default
            node = node.get(part)
        return default if node is None else node

    def set(self, key: str, value: Any) -> None:
        *parents, leaf = key.split(".")
        candidate = copy.deepcopy(self.config)
        node = candidate
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
        self.config = validate(candidate)
        self.save_config(self.config)

    @property
    def logging_level(self) -> str:
        return str(self.get("logging_level", "INFO"))

    @property
    def cache_dir(self) -> str:
        return os.path.expanduser(self.get("cache_dir", "~/.imagelens"))

    @property
    def thumbnail_dir(self) -> str:
        return os.path.expanduser(self.get("thumbnails.dir") or os.path.join(self.cache_dir, "thumbnails"))

    @property
    def metadata_cache_file(self) -> str:
        return os.path.expanduser(self.get("metadata_cache.file")
                                  or os.path.join(self.cache_dir, "metadata_cache.json"))

    @property
    def thumbnail_config(self) -> ThumbnailConfig:
        return ThumbnailConfig(
            size=self.get("thumbnails.size"),
            quality=self.get("thumbnails.quality"),
            format=str(self.get("thumbnails.format")).lower(),
        )
