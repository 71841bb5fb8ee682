import dataclasses
import json
import typing
from typing import Any, List, Optional


# ==============================================================================
#  Base Message class
# ==============================================================================

def _unwrap_optional(hint):
    """Return X for Optional[X], otherwise the hint unchanged."""
    if typing.get_origin(hint) is typing.Union:
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


@dataclasses.dataclass
class Message:
    """Base for all persisted and wire models. Provides dict/JSON round-trip."""

    @classmethod
    def model_validate(cls, data: dict):
        """Construct from dict, recursively hydrating nested Message fields."""
        hints = typing.get_type_hints(cls)
        kwargs = {}
        for f in dataclasses.fields(cls):
            if f.name not in data:
                continue
            val = data[f.name]
            hint = _unwrap_optional(hints.get(f.name))
            origin = getattr(hint, '__origin__', None)
            # List[MessageSubclass]
            if origin is list and val:
                inner = getattr(hint, '__args__', (None,))[0]
                if inner and isinstance(inner, type) and issubclass(inner, Message):
                    val = [inner.model_validate(v) if isinstance(v, dict) else v for v in val]
            # Dict[str, MessageSubclass]
            elif origin is dict and val:
                args = getattr(hint, '__args__', ())
                inner = args[1] if len(args) > 1 else None
                if inner and isinstance(inner, type) and issubclass(inner, Message):
                    val = {k: inner.model_validate(v) if isinstance(v, dict) else v for k, v in val.items()}
            # Bare (or Optional) MessageSubclass field
            elif isinstance(hint, type) and issubclass(hint, Message) and isinstance(val, dict):
                val = hint.model_validate(val)
            kwargs[f.name] = val
        return cls(**kwargs)

    def model_dump(self) -> dict:
        return dataclasses.asdict(self)

    def model_dump_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.model_dump(), indent=indent)


# ==============================================================================
#  File identity
# ==============================================================================

@dataclasses.dataclass
class ImageFileIdentity(Message):
    """Cache fingerprint of a source file.

    Two identities match when size and nanosecond mtime are equal; the path is
    carried for logging only.
    """
    path: str = ""
    file_size: int = 0
    modified_time: int = 0

    def matches(self, other: Optional["ImageFileIdentity"]) -> bool:
        if other is None:
            return False
        return self.file_size == other.file_size and self.modified_time == other.modified_time


# ==============================================================================
#  Generation parameters
# ==============================================================================

@dataclasses.dataclass
class SdTag(Message):
    name: str = ""
    weight: Optional[float] = None


@dataclasses.dataclass
class GenerationParameters(Message):
    positive_tags: List[SdTag] = dataclasses.field(default_factory=list)
    negative_tags: List[SdTag] = dataclasses.field(default_factory=list)
    steps: Optional[str] = None
    sampler: Optional[str] = None
    schedule_type: Optional[str] = None
    cfg_scale: Optional[str] = None
    seed: Optional[str] = None
    size: Optional[str] = None
    model: Optional[str] = None
    denoising_strength: Optional[str] = None
    clip_skip: Optional[str] = None
    raw_text: str = ""


# ==============================================================================
#  Image metadata snapshot
# ==============================================================================

@dataclasses.dataclass
class CaptureDates(Message):
    original: Optional[str] = None
    created: Optional[str] = None
    modified: Optional[str] = None


@dataclasses.dataclass
class ImageMetadata(Message):
    width: int = 0
    height: int = 0
    file_size: int = 0
    mime_type: str = ""
    rating: Optional[int] = None
    capture_dates: CaptureDates = dataclasses.field(default_factory=CaptureDates)
    generation_parameters: Optional[GenerationParameters] = None


# ==============================================================================
#  Thumbnail cache
# ==============================================================================

@dataclasses.dataclass
class ThumbnailConfig(Message):
    size: int = 256
    quality: int = 70
    format: str = "webp"


@dataclasses.dataclass
class ThumbnailCacheEntry(Message):
    """Sidecar record stored next to a cached thumbnail."""
    source_identity: ImageFileIdentity = dataclasses.field(default_factory=ImageFileIdentity)
    generation_config: ThumbnailConfig = dataclasses.field(default_factory=ThumbnailConfig)
    thumbnail_filename: str = ""
    thumbnail_width: int = 0
    thumbnail_height: int = 0
    thumbnail_mime_type: str = ""
    metadata: ImageMetadata = dataclasses.field(default_factory=ImageMetadata)
    created_at: float = 0.0

    def is_valid_for(self, identity: ImageFileIdentity, config: ThumbnailConfig) -> bool:
        return self.source_identity.matches(identity) and self.generation_config == config


@dataclasses.dataclass
class ThumbnailResult:
    """Thumbnail bytes plus the sidecar entry they belong to (not persisted)."""
    path: str
    data: bytes
    entry: ThumbnailCacheEntry

    @property
    def width(self) -> int:
        return self.entry.thumbnail_width

    @property
    def height(self) -> int:
        return self.entry.thumbnail_height

    @property
    def mime_type(self) -> str:
        return self.entry.thumbnail_mime_type


@dataclasses.dataclass
class BatchItemResult(Message):
    """Per-path outcome of a batch request; exactly one of value/error is set."""
    path: str = ""
    value: Optional[Any] = None
    error: Optional[str] = None
