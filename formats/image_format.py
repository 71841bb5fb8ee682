import enum

from core.errors import UnsupportedVariantError

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SOI = b"\xff\xd8"


class ImageFormat(enum.Enum):
    """Container formats this package can parse, detected from magic bytes."""
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES[self]

    @property
    def supports_rating_write(self) -> bool:
        return self is not ImageFormat.WEBP

    @classmethod
    def sniff(cls, data) -> "ImageFormat":
        """Identify the container from its leading bytes.

        Raises UnsupportedVariantError for anything that is not PNG, JPEG or WebP.
        """
        if data[:8] == PNG_SIGNATURE:
            return cls.PNG
        if data[:2] == JPEG_SOI:
            return cls.JPEG
        if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
            return cls.WEBP
        raise UnsupportedVariantError(f"Unrecognized image signature: {bytes(data[:12])!r}")


_MIME_TYPES = {
    ImageFormat.PNG: "image/png",
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.WEBP: "image/webp",
}
