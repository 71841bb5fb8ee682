from typing import Tuple

from formats import jpeg, png, webp
from formats.image_format import ImageFormat

_DIMENSION_READERS = {
    ImageFormat.PNG: png.read_dimensions,
    ImageFormat.JPEG: jpeg.read_dimensions,
    ImageFormat.WEBP: webp.read_dimensions,
}


def read_dimensions(data, fmt: ImageFormat) -> Tuple[int, int]:
    """Return (width, height) by walking the container headers of data."""
    return _DIMENSION_READERS[fmt](data)


__all__ = ["ImageFormat", "read_dimensions", "png", "jpeg", "webp"]
