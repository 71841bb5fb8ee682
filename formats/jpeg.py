"""JPEG marker-segment walking.

Only the header segments before Start-Of-Scan are visited; entropy-coded data
is never parsed. Rewrites splice a single APP1 segment and copy every other
byte through unchanged.
"""
import dataclasses
import struct
from typing import Iterator, Optional, Tuple

from core.errors import MalformedHeaderError, MetadataEncodeError, SegmentNotFoundError
from formats.image_format import JPEG_SOI

APP1 = 0xE1
SOS = 0xDA
EOI = 0xD9

EXIF_IDENTIFIER = b"Exif\x00\x00"
XMP_IDENTIFIER = b"http://ns.adobe.com/xap/1.0/\x00"

# Markers without a length field: TEM and RST0-RST7.
_STANDALONE_MARKERS = {0x01, *range(0xD0, 0xD8)}
# Start-Of-Frame variants; C4 (DHT), C8 (JPG) and CC (DAC) share the range but are not frames.
_SOF_MARKERS = {0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}

MAX_SEGMENT_LENGTH = 0xFFFF


@dataclasses.dataclass(frozen=True)
class JpegSegment:
    marker: int
    offset: int          # position of the 0xFF that introduces the marker
    payload_start: int
    end: int             # one past the last byte of the segment

    def payload(self, data) -> bytes:
        return bytes(data[self.payload_start:self.end])


def _check_soi(data) -> None:
    if len(data) < 2 or data[:2] != JPEG_SOI:
        raise MalformedHeaderError("Invalid JPEG start-of-image marker")


def iter_segments(data) -> Iterator[JpegSegment]:
    """Yield header segments after SOI, stopping at SOS, EOI or a truncated segment."""
    _check_soi(data)
    size = len(data)
    pos = 2
    while pos < size:
        if data[pos] != 0xFF:
            raise MalformedHeaderError(f"Expected JPEG marker at offset {pos}")
        offset = pos
        while pos < size and data[pos] == 0xFF:
            pos += 1
        if pos >= size:
            return
        marker = data[pos]
        pos += 1
        if marker in _STANDALONE_MARKERS:
            yield JpegSegment(marker, offset, pos, pos)
            continue
        if marker == EOI or pos + 2 > size:
            return
        (length,) = struct.unpack_from(">H", data, pos)
        if length < 2:
            raise MalformedHeaderError(f"Invalid JPEG segment length {length} at offset {offset}")
        end = pos + length
        if end > size:
            return
        yield JpegSegment(marker, offset, pos + 2, end)
        if marker == SOS:
            return
        pos = end


def read_dimensions(data) -> Tuple[int, int]:
    """Return (width, height) from the first Start-Of-Frame segment."""
    for segment in iter_segments(data):
        if segment.marker in _SOF_MARKERS:
            if segment.end - segment.payload_start < 5:
                raise MalformedHeaderError("Start-Of-Frame segment too short")
            height, width = struct.unpack_from(">HH", data, segment.payload_start + 1)
            return width, height
    raise SegmentNotFoundError("No Start-Of-Frame marker found in JPEG")


def find_app1(data, identifier: bytes) -> Optional[Tuple[JpegSegment, bytes]]:
    """Return the first APP1 segment whose payload starts with identifier,
    together with the payload that follows the identifier."""
    for segment in iter_segments(data):
        if segment.marker != APP1:
            continue
        payload = segment.payload(data)
        if payload.startswith(identifier):
            return segment, payload[len(identifier):]
    return None


def build_app1(identifier: bytes, body: bytes) -> bytes:
    length = 2 + len(identifier) + len(body)
    if length > MAX_SEGMENT_LENGTH:
        raise MetadataEncodeError(
            f"APP1 payload of {length} bytes exceeds the {MAX_SEGMENT_LENGTH}-byte segment limit")
    return b"\xff" + bytes([APP1]) + struct.pack(">H", length) + identifier + body


def upsert_app1(data, identifier: bytes, body: bytes) -> bytes:
    """Replace the APP1 segment tagged with identifier, or insert one right after SOI."""
    segment_bytes = build_app1(identifier, body)
    found = find_app1(data, identifier)
    if found is not None:
        segment, _ = found
        return bytes(data[:segment.offset]) + segment_bytes + bytes(data[segment.end:])
    return bytes(data[:2]) + segment_bytes + bytes(data[2:])
