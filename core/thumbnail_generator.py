import dataclasses
import io
import logging
from typing import Tuple

from PIL import Image

from core.errors import ImageDecodeError, InvalidInputError
from core.image_reader import ImageReader
from core.models import ImageMetadata, ThumbnailConfig
from metadata.codec import read_embedded_metadata

logger = logging.getLogger(__name__)

# Above this edge length a cheap bilinear pass runs before the Lanczos resize.
PREDOWNSCALE_THRESHOLD = 512

_ENCODERS = {
    "webp": ("WEBP", "image/webp"),
    "jpeg": ("JPEG", "image/jpeg"),
    "jpg": ("JPEG", "image/jpeg"),
    "png": ("PNG", "image/png"),
}

_ENCODER_MODES = {
    "WEBP": ("RGB", "RGBA"),
    "JPEG": ("RGB", "L"),
    "PNG": ("RGB", "RGBA", "L", "LA"),
}


@dataclasses.dataclass
class GeneratedThumbnail:
    data: bytes
    width: int
    height: int
    mime_type: str


@dataclasses.dataclass
class ThumbnailBundle:
    """Thumbnail and metadata snapshot built from one load of the source bytes."""
    thumbnail: GeneratedThumbnail
    metadata: ImageMetadata


def encoder_for(fmt: str) -> Tuple[str, str]:
    try:
        return _ENCODERS[fmt.lower()]
    except KeyError:
        raise InvalidInputError(f"Unsupported thumbnail format: {fmt}") from None


def to_resizable(img: Image.Image) -> Image.Image:
    """16-bit grayscale cannot be resampled; scale it down to 8-bit L."""
    if img.mode.startswith("I;16"):
        return img.convert("I").point(lambda v: v * (1 / 257)).convert("L")
    return img


def _fit(img: Image.Image, size: int) -> Image.Image:
    img = img.copy()
    if max(img.size) > PREDOWNSCALE_THRESHOLD:
        intermediate = min(size * 4, PREDOWNSCALE_THRESHOLD)
        img.thumbnail((intermediate, intermediate), Image.Resampling.BILINEAR)
    img.thumbnail((size, size), Image.Resampling.LANCZOS)
    return img


def resize(img: Image.Image, size: int) -> Image.Image:
    """Fit img into a size x size box, keeping the aspect ratio."""
    if size <= 0:
        raise InvalidInputError(f"Thumbnail size must be positive, got {size}")
    try:
        return _fit(to_resizable(img), size)
    except (OSError, ValueError) as e:
        raise ImageDecodeError(f"Failed to resize {img.mode} image: {e}") from e


def encode(img: Image.Image, config: ThumbnailConfig) -> GeneratedThumbnail:
    pil_format, mime_type = encoder_for(config.format)
    allowed = _ENCODER_MODES[pil_format]
    buf = io.BytesIO()
    try:
        if img.mode not in allowed:
            has_alpha = "A" in img.getbands() or "transparency" in img.info
            img = img.convert("RGBA" if has_alpha and "RGBA" in allowed else "RGB")
        if pil_format == "PNG":
            img.save(buf, pil_format, optimize=True)
        else:
            img.save(buf, pil_format, quality=config.quality)
    except (OSError, ValueError) as e:
        raise ImageDecodeError(f"Failed to encode {pil_format} thumbnail: {e}") from e
    return GeneratedThumbnail(buf.getvalue(), img.width, img.height, mime_type)


def build_metadata(reader: ImageReader) -> ImageMetadata:
    """Metadata snapshot from the reader's bytes without decoding pixels."""
    width, height = reader.dimensions()
    embedded = read_embedded_metadata(reader.data, reader.format)
    return ImageMetadata(
        width=width,
        height=height,
        file_size=len(reader),
        mime_type=reader.mime_type,
        rating=embedded.rating,
        capture_dates=embedded.capture_dates,
        generation_parameters=embedded.generation_parameters,
    )


def generate(reader: ImageReader, config: ThumbnailConfig) -> ThumbnailBundle:
    metadata = build_metadata(reader)
    img = reader.decode()
    try:
        thumb = encode(resize(img, config.size), config)
    finally:
        img.close()
    logger.debug(f"Generated {thumb.width}x{thumb.height} {thumb.mime_type} thumbnail for {reader.path}")
    return ThumbnailBundle(thumb, metadata)
