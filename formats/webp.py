"""WebP (RIFF) header parsing. Read-only."""
import struct
from typing import Optional, Tuple

from core.errors import MalformedHeaderError, UnsupportedVariantError

VP8 = b"VP8 "
VP8L = b"VP8L"
VP8X = b"VP8X"
EXIF = b"EXIF"
XMP = b"XMP "

_VP8_START_CODE = b"\x9d\x01\x2a"
_VP8L_SIGNATURE = 0x2F


def _check_container(data) -> None:
    if len(data) < 12 or data[:4] != b"RIFF" or data[8:12] != b"WEBP":
        raise MalformedHeaderError("Invalid RIFF/WEBP container header")


def read_dimensions(data) -> Tuple[int, int]:
    """Return (width, height) from the first sub-chunk of the container."""
    _check_container(data)
    if len(data) < 20:
        raise MalformedHeaderError("WebP truncated before first chunk")
    fourcc = bytes(data[12:16])
    body = 20

    if fourcc == VP8:
        # 3-byte frame tag, start code, then 14-bit width/height (2 scale bits each)
        if len(data) < body + 10:
            raise MalformedHeaderError("VP8 frame header truncated")
        if data[body + 3:body + 6] != _VP8_START_CODE:
            raise MalformedHeaderError("VP8 key frame start code not found")
        width, height = struct.unpack_from("<HH", data, body + 6)
        return width & 0x3FFF, height & 0x3FFF

    if fourcc == VP8L:
        if len(data) < body + 5:
            raise MalformedHeaderError("VP8L header truncated")
        if data[body] != _VP8L_SIGNATURE:
            raise MalformedHeaderError("VP8L signature byte missing")
        (bits,) = struct.unpack_from("<I", data, body + 1)
        return (bits & 0x3FFF) + 1, ((bits >> 14) & 0x3FFF) + 1

    if fourcc == VP8X:
        if len(data) < body + 10:
            raise MalformedHeaderError("VP8X header truncated")
        # flags (1) + reserved (3), then 24-bit canvas width-1 and height-1
        width = int.from_bytes(data[body + 4:body + 7], "little") + 1
        height = int.from_bytes(data[body + 7:body + 10], "little") + 1
        return width, height

    raise UnsupportedVariantError(f"Unsupported WebP sub-format {fourcc!r}")


def find_chunk(data, fourcc: bytes) -> Optional[bytes]:
    """Return the payload of the first top-level chunk with the given FourCC."""
    _check_container(data)
    size = len(data)
    pos = 12
    while pos + 8 <= size:
        chunk_id = bytes(data[pos:pos + 4])
        (length,) = struct.unpack_from("<I", data, pos + 4)
        start = pos + 8
        end = start + length
        if end > size:
            return None
        if chunk_id == fourcc:
            return bytes(data[start:end])
        # chunks are padded to an even length
        pos = end + (length & 1)
    return None
