import dataclasses
from typing import Dict, List, Optional

from core.models import ImageMetadata, Message


class ValidationError(Exception):
    """A request dict that does not fit its request model."""


def validate_request(model_cls, data: dict):
    try:
        return model_cls.model_validate(data)
    except (TypeError, ValueError) as e:
        raise ValidationError(str(e)) from e


# ==============================================================================
#  Base Models & Common Structures
# ==============================================================================

@dataclasses.dataclass
class Request(Message):
    """Base model for all client-to-server requests."""
    command: str = ""

@dataclasses.dataclass
class Response(Message):
    """Base model for all server-to-client responses."""
    status: str = "success"
    message: Optional[str] = None

@dataclasses.dataclass
class ErrorResponse(Response):
    """Standardized error response."""
    status: str = "error"
    message: str = ""

@dataclasses.dataclass
class ThumbnailPayload(Message):
    """Encoded thumbnail; data is base64."""
    data: str = ""
    width: int = 0
    height: int = 0
    mime_type: str = ""

# ==============================================================================
#  Request/Response Models
# ==============================================================================

# --- Read Metadata ---
@dataclasses.dataclass
class ReadMetadataRequest(Request):
    command: str = "read_metadata"
    path: str = ""

@dataclasses.dataclass
class ReadMetadataResponse(Response):
    metadata: ImageMetadata = dataclasses.field(default_factory=ImageMetadata)

# --- Read Metadata Batch ---
@dataclasses.dataclass
class ReadMetadataBatchRequest(Request):
    command: str = "read_metadata_batch"
    paths: List[str] = dataclasses.field(default_factory=list)

@dataclasses.dataclass
class ReadMetadataBatchResponse(Response):
    metadata: Dict[str, ImageMetadata] = dataclasses.field(default_factory=dict)
    errors: Dict[str, str] = dataclasses.field(default_factory=dict)

# --- Generate Thumbnail ---
@dataclasses.dataclass
class GenerateThumbnailRequest(Request):
    command: str = "generate_thumbnail"
    path: str = ""
    # None means "use the configured value"
    size: Optional[int] = None
    quality: Optional[int] = None
    format: Optional[str] = None

@dataclasses.dataclass
class GenerateThumbnailResponse(Response):
    thumbnail: ThumbnailPayload = dataclasses.field(default_factory=ThumbnailPayload)

# --- Thumbnail Batch ---
@dataclasses.dataclass
class ThumbnailBatchRequest(Request):
    command: str = "thumbnail_batch"
    paths: List[str] = dataclasses.field(default_factory=list)

@dataclasses.dataclass
class ThumbnailBatchResponse(Response):
    thumbnails: Dict[str, ThumbnailPayload] = dataclasses.field(default_factory=dict)
    errors: Dict[str, str] = dataclasses.field(default_factory=dict)

# --- Write Rating ---
@dataclasses.dataclass
class WriteRatingRequest(Request):
    command: str = "write_rating"
    path: str = ""
    rating: int = 0

    def __post_init__(self):
        if isinstance(self.rating, bool) or not isinstance(self.rating, int) or not (0 <= self.rating <= 5):
            raise ValueError(f"rating must be an integer 0-5, got {self.rating!r}")

# --- Clear Thumbnail Cache ---
@dataclasses.dataclass
class ClearThumbnailCacheRequest(Request):
    command: str = "clear_thumbnail_cache"

@dataclasses.dataclass
class ClearThumbnailCacheResponse(Response):
    removed: int = 0
