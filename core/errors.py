"""Exception hierarchy shared by the parsers, codecs, caches and service."""


class ImageLensError(Exception):
    """Base class for every error raised by this package."""


class ImageIOError(ImageLensError):
    """File missing, unreadable or unwritable."""


class FormatError(ImageLensError):
    """Structural problem found while walking an image container."""


class MalformedHeaderError(FormatError):
    pass


class SegmentNotFoundError(FormatError):
    pass


class UnsupportedVariantError(FormatError):
    pass


class ImageDecodeError(ImageLensError):
    """Pixel decoding failed inside the imaging library."""


class MetadataError(ImageLensError):
    pass


class MetadataDecodeError(MetadataError):
    """EXIF/XMP container could not be read."""


class MetadataEncodeError(MetadataError):
    """EXIF/XMP container could not be rebuilt or embedded."""


class ParseError(ImageLensError):
    """Generation-parameter text is missing a required section."""


class InvalidInputError(ImageLensError):
    pass


class CacheError(ImageLensError):
    """Thumbnail sidecar or metadata cache file could not be read or written."""
