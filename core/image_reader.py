import io
import logging
import mmap
import os
from typing import Optional, Tuple

from PIL import Image

from core.errors import ImageDecodeError, ImageIOError
from formats import ImageFormat, read_dimensions

logger = logging.getLogger(__name__)


class ImageReader:
    """Read-only byte view of an image file.

    The file is memory-mapped when possible; empty files and files that cannot
    be mapped are read into a buffer instead. The container format is sniffed
    once from the leading bytes.
    """

    def __init__(self, path: str, data, mapping: Optional[mmap.mmap] = None):
        self.path = path
        self._data = data
        self._mmap = mapping
        self.format = ImageFormat.sniff(data)

    @classmethod
    def open(cls, path: str) -> "ImageReader":
        try:
            with open(path, "rb") as f:
                mapping = None
                try:
                    if os.fstat(f.fileno()).st_size > 0:
                        mapping = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
                except (OSError, ValueError) as e:
                    logger.debug(f"mmap failed for {path}, falling back to buffered read: {e}")
                data = mapping if mapping is not None else f.read()
        except OSError as e:
            raise ImageIOError(f"Cannot read {path}: {e}") from e
        try:
            return cls(path, data, mapping)
        except Exception:
            if mapping is not None:
                mapping.close()
            raise

    @property
    def data(self):
        return self._data

    @property
    def mime_type(self) -> str:
        return self.format.mime_type

    def __len__(self) -> int:
        return len(self._data)

    def dimensions(self) -> Tuple[int, int]:
        return read_dimensions(self._data, self.format)

    def to_bytes(self) -> bytes:
        return bytes(self._data[:])

    def decode(self) -> Image.Image:
        """Fully decode the pixels with Pillow.

        Any failure inside the imaging library surfaces as ImageDecodeError.
        """
        try:
            img = Image.open(io.BytesIO(self.to_bytes()))
            img.load()
            return img
        except Exception as e:  # decoders raise OSError, SyntaxError, struct.error, ... on corrupt data
            raise ImageDecodeError(f"Failed to decode {self.path}: {e}") from e

    def close(self) -> None:
        if self._mmap is not None:
            self._mmap.close()
            self._mmap = None
        self._data = b""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
